"""
Payment Allocation Module

Splits a payment between accrued interest and principal and derives the
resulting balance and loan status. Interest is paid first. When a payment does
not cover the accrued interest the shortfall is not tracked separately; it stays
in the balance and earns interest from the next payment onward.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .currency import Money
from .loans import LoanStatus

DEFAULT_DUST_THRESHOLD = Decimal('1.00')


@dataclass(frozen=True)
class PaymentAllocation:
    """How one payment is applied to a loan"""
    interest_component: Money
    principal_component: Money
    new_balance: Money
    status: LoanStatus
    unpaid_interest: Money   # Accrued interest left uncovered, capitalised into the balance
    overpayment: Money       # Amount by which the payment exceeded balance plus interest


def allocate(current_balance: Money, accrued_interest: Money, amount_paid: Money,
             dust_threshold: Optional[Money] = None) -> PaymentAllocation:
    """
    Allocate a payment against accrued interest and principal.

    Args:
        current_balance: Balance before the payment
        accrued_interest: Interest accrued since the last payment
        amount_paid: Non-negative payment amount; callers reject zero or less
        dust_threshold: Balances strictly below this clear to zero (default 1.00)

    Returns:
        PaymentAllocation with interest_component + principal_component == amount_paid
    """
    currency = current_balance.currency
    zero = Money.zero(currency)
    if dust_threshold is None:
        dust_threshold = Money(DEFAULT_DUST_THRESHOLD, currency)

    if amount_paid >= accrued_interest:
        interest_component = accrued_interest
        principal_component = amount_paid - accrued_interest
        unpaid_interest = zero
    else:
        interest_component = amount_paid
        principal_component = zero
        unpaid_interest = accrued_interest - amount_paid

    raw_balance = current_balance + accrued_interest - amount_paid
    overpayment = -raw_balance if raw_balance.is_negative() else zero

    new_balance = zero if raw_balance < dust_threshold else raw_balance
    status = LoanStatus.COMPLETED if new_balance <= zero else LoanStatus.ACTIVE

    return PaymentAllocation(
        interest_component=interest_component,
        principal_component=principal_component,
        new_balance=new_balance,
        status=status,
        unpaid_interest=unpaid_interest,
        overpayment=overpayment,
    )
