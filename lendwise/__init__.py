"""
Lendwise

Informal loan ledger: borrowers, principal disbursement and a running ledger of
payments against daily accruing interest, with Decimal money throughout.
"""

__version__ = "1.0.0"
