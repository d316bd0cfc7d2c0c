"""
Loan Repository Module

The persistence collaborator of the ledger. LoanRepository is the interface the
ledger depends on; StorageLoanRepository implements it over any StorageInterface
using normalised borrowers, loans and loan_payments tables.
"""

from abc import ABC, abstractmethod
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .currency import Money, Currency
from .exceptions import ConcurrentModificationError, LoanNotFoundError
from .loans import Borrower, Loan, LoanStatus, Payment
from .storage import StorageInterface


class LoanRepository(ABC):
    """Read and write operations the ledger needs"""

    @abstractmethod
    def fetch_loan(self, loan_id: str) -> Optional[Loan]:
        """Load a loan with its borrower and payment history, None if unknown"""

    @abstractmethod
    def fetch_all_loans(self) -> List[Loan]:
        """Load every loan in creation order"""

    @abstractmethod
    def persist_new_loan(self, loan: Loan) -> None:
        """Store a freshly created loan and its borrower"""

    @abstractmethod
    def persist_payment_and_updated_loan(self, loan: Loan, payment: Payment) -> None:
        """
        Append a payment and store the loan state it produced as one atomic unit.

        Raises:
            ConcurrentModificationError: If the stored loan is not at loan.version
        """

    @abstractmethod
    def persist_updated_loan(self, loan: Loan) -> None:
        """Store corrected loan state without a new payment (reconciliation)"""


class StorageLoanRepository(LoanRepository):
    """LoanRepository backed by a document StorageInterface"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

        self.borrowers_table = "borrowers"
        self.loans_table = "loans"
        self.payments_table = "loan_payments"

    def fetch_loan(self, loan_id: str) -> Optional[Loan]:
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict is None:
            return None
        return self._assemble(loan_dict)

    def fetch_all_loans(self) -> List[Loan]:
        return [self._assemble(data) for data in self.storage.load_all(self.loans_table)]

    def persist_new_loan(self, loan: Loan) -> None:
        with self.storage.atomic():
            if self.storage.exists(self.loans_table, loan.id):
                raise ValueError(f"Loan {loan.id} already exists")
            self.storage.save(self.borrowers_table, loan.borrower.id,
                              self._borrower_to_dict(loan.borrower))
            self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))

    def persist_payment_and_updated_loan(self, loan: Loan, payment: Payment) -> None:
        with self.storage.atomic():
            self._check_version(loan)
            self.storage.save(self.payments_table, payment.id, self._payment_to_dict(payment))
            self._write_loan(loan)

    def persist_updated_loan(self, loan: Loan) -> None:
        with self.storage.atomic():
            self._check_version(loan)
            self._write_loan(loan)

    def _check_version(self, loan: Loan) -> None:
        stored = self.storage.load(self.loans_table, loan.id)
        if stored is None:
            raise LoanNotFoundError(loan.id)
        stored_version = stored.get('version', 0)
        if stored_version != loan.version:
            raise ConcurrentModificationError(loan.id, loan.version, stored_version)

    def _write_loan(self, loan: Loan) -> None:
        # The in-memory loan only advances once the write is part of the transaction
        data = self._loan_to_dict(loan)
        data['version'] = loan.version + 1
        self.storage.save(self.loans_table, loan.id, data)
        loan.version += 1

    def _assemble(self, loan_dict: Dict[str, Any]) -> Loan:
        borrower_dict = self.storage.load(self.borrowers_table, loan_dict['borrower_id'])
        if borrower_dict is None:
            raise LookupError(f"Borrower {loan_dict['borrower_id']} missing for loan {loan_dict['id']}")

        payments = [self._payment_from_dict(data)
                    for data in self.storage.find(self.payments_table, {"loan_id": loan_dict['id']})]
        payments.sort(key=lambda p: p.sequence)

        return self._loan_from_dict(loan_dict, self._borrower_from_dict(borrower_dict), payments)

    @staticmethod
    def _borrower_to_dict(borrower: Borrower) -> Dict[str, Any]:
        return {
            'id': borrower.id,
            'name': borrower.name,
            'id_proof': borrower.id_proof,
            'phone': borrower.phone,
            'email': borrower.email,
            'address': borrower.address,
        }

    @staticmethod
    def _borrower_from_dict(data: Dict[str, Any]) -> Borrower:
        return Borrower(
            id=data['id'],
            name=data['name'],
            id_proof=data.get('id_proof', ""),
            phone=data.get('phone', ""),
            email=data.get('email', ""),
            address=data.get('address', ""),
        )

    @staticmethod
    def _loan_to_dict(loan: Loan) -> Dict[str, Any]:
        return {
            'id': loan.id,
            'created_at': loan.created_at.isoformat(),
            'updated_at': loan.updated_at.isoformat(),
            'borrower_id': loan.borrower.id,
            'currency': loan.currency.code,
            'principal_amount': str(loan.principal_amount.amount),
            'interest_rate': str(loan.interest_rate),
            'start_date': loan.start_date.isoformat(),
            'last_payment_date': loan.interest_cursor.isoformat(),
            'status': loan.status.value,
            'current_balance': str(loan.current_balance.amount),
            'version': loan.version,
        }

    @staticmethod
    def _loan_from_dict(data: Dict[str, Any], borrower: Borrower, payments: List[Payment]) -> Loan:
        currency = Currency[data['currency']]
        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower=borrower,
            principal_amount=Money(Decimal(data['principal_amount']), currency),
            interest_rate=Decimal(data['interest_rate']),
            start_date=date.fromisoformat(data['start_date']),
            last_payment_date=date.fromisoformat(data['last_payment_date']),
            status=LoanStatus(data['status']),
            current_balance=Money(Decimal(data['current_balance']), currency),
            payments=payments,
            version=data.get('version', 0),
        )

    @staticmethod
    def _payment_to_dict(payment: Payment) -> Dict[str, Any]:
        return {
            'id': payment.id,
            'created_at': payment.created_at.isoformat(),
            'updated_at': payment.updated_at.isoformat(),
            'loan_id': payment.loan_id,
            'sequence': payment.sequence,
            'payment_date': payment.payment_date.isoformat(),
            'currency': payment.amount_paid.currency.code,
            'amount_paid': str(payment.amount_paid.amount),
            'interest_component': str(payment.interest_component.amount),
            'principal_component': str(payment.principal_component.amount),
            'remaining_balance': str(payment.remaining_balance.amount),
            'accrued_interest': str(payment.accrued_interest.amount),
            'days_elapsed': payment.days_elapsed,
            'backdated': payment.backdated,
            'note': payment.note,
        }

    @staticmethod
    def _payment_from_dict(data: Dict[str, Any]) -> Payment:
        currency = Currency[data['currency']]

        def get_money(key: str) -> Money:
            return Money(Decimal(data[key]), currency)

        return Payment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            sequence=data['sequence'],
            payment_date=date.fromisoformat(data['payment_date']),
            amount_paid=get_money('amount_paid'),
            interest_component=get_money('interest_component'),
            principal_component=get_money('principal_component'),
            remaining_balance=get_money('remaining_balance'),
            accrued_interest=get_money('accrued_interest'),
            days_elapsed=data.get('days_elapsed', 0),
            backdated=data.get('backdated', False),
            note=data.get('note'),
        )
