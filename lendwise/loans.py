"""
Loan Module

Borrower, loan and payment records plus the loan factory. A loan's payment
history is append-only; its balance, interest cursor and status are caches of
the most recent payment.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from enum import Enum
import uuid

from .currency import Money, Currency, to_decimal
from .exceptions import InvalidLoanError
from .storage import StorageRecord


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "Active"          # Balance outstanding
    COMPLETED = "Completed"    # Balance cleared to zero
    DEFAULTED = "Defaulted"    # Reserved; no operation sets it yet


@dataclass
class Borrower:
    """Person a loan is made to"""
    name: str
    id_proof: str = ""      # e.g. national ID, PAN, driving licence number
    phone: str = ""
    email: str = ""
    address: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name or ID proof"""
        needle = query.strip().lower()
        return needle in self.name.lower() or needle in self.id_proof.lower()


@dataclass
class Payment(StorageRecord):
    """One recorded payment against a loan"""
    loan_id: str
    sequence: int                       # 1-based recording order
    payment_date: date
    amount_paid: Money
    interest_component: Money
    principal_component: Money
    remaining_balance: Money
    accrued_interest: Money             # Interest accrued over the span this payment closes
    days_elapsed: int = 0
    backdated: bool = False
    note: Optional[str] = None

    def __post_init__(self):
        if not self.amount_paid.is_positive():
            raise ValueError("Payment amount must be positive")
        if self.interest_component.is_negative() or self.principal_component.is_negative():
            raise ValueError("Payment components must be non-negative")
        if self.interest_component + self.principal_component != self.amount_paid:
            raise ValueError(f"Payment amount {self.amount_paid.to_string()} does not equal "
                             f"interest {self.interest_component.to_string()} + "
                             f"principal {self.principal_component.to_string()}")

    @property
    def unpaid_interest(self) -> Money:
        """Accrued interest this payment left uncovered"""
        if self.interest_component >= self.accrued_interest:
            return Money.zero(self.amount_paid.currency)
        return self.accrued_interest - self.interest_component


def _total(amounts: Iterable[Money], currency: Currency) -> Money:
    result = Money.zero(currency)
    for amount in amounts:
        result = result + amount
    return result


@dataclass
class Loan(StorageRecord):
    """Loan with its borrower, fixed terms and payment history"""
    borrower: Borrower
    principal_amount: Money
    interest_rate: Decimal              # Monthly percent, 1.0 means 1% per month
    start_date: date
    last_payment_date: Optional[date] = None
    status: LoanStatus = LoanStatus.ACTIVE
    current_balance: Optional[Money] = None
    payments: List[Payment] = field(default_factory=list)
    version: int = 0                    # Bumped on every persisted change

    def __post_init__(self):
        self.interest_rate = to_decimal(self.interest_rate)
        if self.current_balance is None:
            self.current_balance = self.principal_amount
        if self.last_payment_date is None:
            self.last_payment_date = self.start_date

    @property
    def currency(self) -> Currency:
        return self.principal_amount.currency

    @property
    def interest_cursor(self) -> date:
        """Date up to which interest has been accounted for"""
        return self.last_payment_date or self.start_date

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.status == LoanStatus.COMPLETED

    @property
    def last_payment(self) -> Optional[Payment]:
        return self.payments[-1] if self.payments else None

    @property
    def total_paid(self) -> Money:
        return _total((p.amount_paid for p in self.payments), self.currency)

    @property
    def total_interest_paid(self) -> Money:
        return _total((p.interest_component for p in self.payments), self.currency)

    @property
    def total_principal_paid(self) -> Money:
        return _total((p.principal_component for p in self.payments), self.currency)

    @property
    def unpaid_interest_carried(self) -> Money:
        """Interest that underpayments left in the balance instead of settling"""
        return _total((p.unpaid_interest for p in self.payments), self.currency)


def monthly_rate_from_annual(annual_rate_percent) -> Decimal:
    """Convert an annual percentage to the monthly percentage loans are stored with (12% -> 1%)"""
    return to_decimal(annual_rate_percent) / Decimal(12)


def new_loan(borrower: Borrower, principal_amount: Money, monthly_rate_percent,
             start_date: date) -> Loan:
    """
    Create a loan in its initial state.

    The loan starts Active with current_balance equal to the principal, its
    interest cursor on start_date and no payments. No interest accrues here.

    Raises:
        InvalidLoanError: If the principal is not positive or the rate is negative or not a number
    """
    if not principal_amount.is_positive():
        raise InvalidLoanError("Principal amount must be positive")
    try:
        rate = to_decimal(monthly_rate_percent)
    except ValueError as e:
        raise InvalidLoanError(f"Invalid interest rate: {e}")
    if rate < Decimal('0'):
        raise InvalidLoanError("Interest rate cannot be negative")

    now = datetime.now(timezone.utc)
    return Loan(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        borrower=borrower,
        principal_amount=principal_amount,
        interest_rate=rate,
        start_date=start_date,
        last_payment_date=start_date,
        status=LoanStatus.ACTIVE,
        current_balance=principal_amount,
        payments=[],
    )
