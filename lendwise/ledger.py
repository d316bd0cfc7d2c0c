"""
Loan Ledger Module

Creates loans and records payments against them: accrues interest since the
last payment, allocates the payment, appends it to the history and persists
the new loan state in one atomic write. Also answers portfolio queries and
rebuilds loan state from the payment history when the two disagree.
"""

import threading
import warnings
import weakref
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union
import uuid

from .allocation import DEFAULT_DUST_THRESHOLD, allocate
from .audit import AuditEventType, AuditTrail
from .currency import Currency, Money, to_decimal
from .exceptions import (
    BackdatedPaymentError, BackdatedPaymentWarning, InvalidLoanError, InvalidPaymentError,
    LoanNotFoundError,
)
from .interest import calculate_accrual
from .loans import Borrower, Loan, LoanStatus, Payment, new_loan
from .logging_config import get_logger, log_action
from .repository import LoanRepository

logger = get_logger(__name__)

Amount = Union[Money, Decimal, int, str, float]


@dataclass(frozen=True)
class InterestQuote:
    """Interest a loan has accrued since its last payment, as of a date"""
    loan_id: str
    from_date: date
    as_of: date
    days_elapsed: int
    interest: Money
    current_balance: Money
    payoff_amount: Money        # Paying this on as_of clears the loan
    backdated: bool = False


@dataclass(frozen=True)
class PortfolioSummary:
    """Totals across all loans in one currency"""
    currency: Currency
    total_loans: int
    active_loans: int
    completed_loans: int
    defaulted_loans: int
    total_outstanding: Money        # Sum of active balances
    total_principal_disbursed: Money
    total_collected: Money
    total_interest_collected: Money


@dataclass(frozen=True)
class ReplayResult:
    """Loan state rebuilt by re-running every recorded payment from the loan's terms"""
    current_balance: Money
    last_payment_date: date
    status: LoanStatus
    mismatched_sequences: Tuple[int, ...] = ()

    def matches(self, loan: Loan) -> bool:
        return (not self.mismatched_sequences
                and self.current_balance == loan.current_balance
                and self.last_payment_date == loan.interest_cursor
                and self.status == loan.status)


@dataclass
class ReconciliationResult:
    loan: Loan
    corrections: Dict[str, Tuple[str, str]] = field(default_factory=dict)  # field -> (stored, derived)

    @property
    def changed(self) -> bool:
        return bool(self.corrections)


class LoanLedger:
    """
    Loan factory and payment ledger over an injected LoanRepository.

    record_payment is serialised per loan inside this process; the repository's
    version check rejects writes that lost a race with another process.
    """

    def __init__(
        self,
        repository: LoanRepository,
        audit_trail: Optional[AuditTrail] = None,
        default_currency: Currency = Currency.INR,
        dust_threshold: Amount = DEFAULT_DUST_THRESHOLD,
        reject_backdated_payments: bool = False
    ):
        self.repository = repository
        self.audit_trail = audit_trail
        self.default_currency = default_currency
        self.dust_threshold = to_decimal(dust_threshold.amount if isinstance(dust_threshold, Money)
                                         else dust_threshold)
        self.reject_backdated_payments = reject_backdated_payments

        # Entries disappear once no caller holds the loan's lock
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _loan_lock(self, loan_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[loan_id] = lock
            return lock

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str, metadata: Dict) -> None:
        if self.audit_trail is not None:
            self.audit_trail.log_event(event_type, entity_type, entity_id, metadata)

    def _to_money(self, amount: Amount, currency: Currency) -> Money:
        if isinstance(amount, Money):
            return amount
        return Money(to_decimal(amount), currency)

    # Loan creation and lookup

    def create_loan(
        self,
        borrower: Borrower,
        principal_amount: Amount,
        monthly_rate_percent: Amount,
        start_date: Optional[date] = None
    ) -> Loan:
        """
        Create, persist and audit a new Active loan

        Args:
            borrower: Borrower the loan is made to
            principal_amount: Amount disbursed (Money or a number in the default currency)
            monthly_rate_percent: Monthly interest in percent, 1.0 means 1% per month
            start_date: Disbursement date, defaults to today

        Returns:
            The created Loan

        Raises:
            InvalidLoanError: If the principal is not positive or the rate is negative
        """
        try:
            principal = self._to_money(principal_amount, self.default_currency)
        except ValueError as e:
            raise InvalidLoanError(f"Invalid principal amount: {e}")
        loan = new_loan(borrower, principal, monthly_rate_percent, start_date or date.today())
        self.repository.persist_new_loan(loan)

        self._audit(AuditEventType.LOAN_CREATED, "loan", loan.id, {
            "borrower_id": borrower.id,
            "borrower_name": borrower.name,
            "principal_amount": principal.to_string(),
            "monthly_rate_percent": str(loan.interest_rate),
            "start_date": loan.start_date,
        })
        log_action(logger, "info", "Loan created", loan_id=loan.id, action="create_loan",
                   extra={"principal_amount": str(principal.amount), "currency": principal.currency.code})
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        loan = self.repository.fetch_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        loans = self.repository.fetch_all_loans()
        if status is not None:
            loans = [loan for loan in loans if loan.status == status]
        return loans

    def search_loans(self, query: str, status: Optional[LoanStatus] = LoanStatus.ACTIVE) -> List[Loan]:
        """Loans whose borrower name or ID proof contains query (case-insensitive)"""
        return [loan for loan in self.list_loans(status) if loan.borrower.matches(query)]

    def get_payments(self, loan_id: str) -> List[Payment]:
        return self.get_loan(loan_id).payments

    # Payments

    def record_payment(
        self,
        loan_id: str,
        amount_paid: Amount,
        payment_date: Optional[date] = None,
        note: Optional[str] = None
    ) -> Loan:
        """
        Record a payment against a loan

        Accrues interest from the loan's last payment date to payment_date on
        the current balance, allocates the payment interest-first, appends the
        Payment and persists the updated loan.

        Args:
            loan_id: Loan ID
            amount_paid: Positive payment amount
            payment_date: Calendar date of the payment, defaults to today
            note: Optional free text kept on the payment

        Returns:
            The updated Loan

        Raises:
            InvalidPaymentError: If amount_paid is not positive
            LoanNotFoundError: If the loan does not exist
            BackdatedPaymentError: If the date precedes the last payment and backdating is rejected
            ConcurrentModificationError: If the loan changed in storage meanwhile
        """
        try:
            raw_amount = amount_paid.amount if isinstance(amount_paid, Money) else to_decimal(amount_paid)
        except ValueError as e:
            raise InvalidPaymentError(f"Invalid payment amount: {e}")
        if raw_amount <= Decimal('0'):
            raise InvalidPaymentError(f"Payment amount must be positive, got {raw_amount}")

        if payment_date is None:
            payment_date = date.today()
        elif isinstance(payment_date, datetime):
            payment_date = payment_date.date()

        with self._loan_lock(loan_id):
            loan = self.get_loan(loan_id)
            amount = self._to_money(amount_paid, loan.currency)
            if amount.currency != loan.currency:
                raise InvalidPaymentError(
                    f"Payment currency {amount.currency.code} does not match loan currency {loan.currency.code}")
            if not amount.is_positive():
                raise InvalidPaymentError(f"Payment amount rounds to zero in {loan.currency.code}")

            from_date = loan.interest_cursor
            accrual = calculate_accrual(loan.current_balance, loan.interest_rate, from_date, payment_date)
            if accrual.backdated:
                self._check_backdated(loan, payment_date)

            allocation = allocate(loan.current_balance, accrual.interest, amount,
                                  Money(self.dust_threshold, loan.currency))

            now = datetime.now(timezone.utc)
            payment = Payment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                sequence=len(loan.payments) + 1,
                payment_date=payment_date,
                amount_paid=amount,
                interest_component=allocation.interest_component,
                principal_component=allocation.principal_component,
                remaining_balance=allocation.new_balance,
                accrued_interest=accrual.interest,
                days_elapsed=accrual.days_elapsed,
                backdated=accrual.backdated,
                note=note,
            )

            previous_status = loan.status
            loan.payments.append(payment)
            loan.current_balance = allocation.new_balance
            loan.last_payment_date = payment_date
            loan.status = allocation.status
            loan.touch()

            self.repository.persist_payment_and_updated_loan(loan, payment)

        self._audit(AuditEventType.PAYMENT_RECORDED, "loan", loan.id, {
            "payment_id": payment.id,
            "payment_date": payment_date,
            "amount_paid": amount.to_string(),
            "interest_component": payment.interest_component.to_string(),
            "principal_component": payment.principal_component.to_string(),
            "remaining_balance": payment.remaining_balance.to_string(),
            "days_elapsed": accrual.days_elapsed,
            "unpaid_interest": allocation.unpaid_interest.to_string(),
        })
        if accrual.backdated:
            self._audit(AuditEventType.BACKDATED_PAYMENT, "loan", loan.id, {
                "payment_id": payment.id,
                "payment_date": payment_date,
                "interest_cursor": from_date,
            })
        if loan.is_completed and previous_status != LoanStatus.COMPLETED:
            self._audit(AuditEventType.LOAN_COMPLETED, "loan", loan.id, {
                "payment_id": payment.id,
                "total_paid": loan.total_paid.to_string(),
            })

        log_action(logger, "info", "Payment recorded", loan_id=loan.id, action="record_payment",
                   extra={
                       "payment_id": payment.id,
                       "amount_paid": str(amount.amount),
                       "accrued_interest": str(accrual.interest.amount),
                       "remaining_balance": str(payment.remaining_balance.amount),
                       "status": loan.status.value,
                   })
        return loan

    def _check_backdated(self, loan: Loan, payment_date: date) -> None:
        message = (f"Payment date {payment_date.isoformat()} precedes last payment date "
                   f"{loan.interest_cursor.isoformat()} on loan {loan.id}; no interest accrued")
        if self.reject_backdated_payments:
            raise BackdatedPaymentError(message)
        warnings.warn(message, BackdatedPaymentWarning, stacklevel=3)
        log_action(logger, "warning", message, loan_id=loan.id, action="record_payment",
                   extra={"payment_date": payment_date.isoformat(),
                          "interest_cursor": loan.interest_cursor.isoformat()})

    # Queries

    def quote_interest(self, loan_id: str, as_of: Optional[date] = None) -> InterestQuote:
        """Interest accrued since the last payment and the amount that would clear the loan on as_of"""
        loan = self.get_loan(loan_id)
        as_of = as_of or date.today()
        accrual = calculate_accrual(loan.current_balance, loan.interest_rate, loan.interest_cursor, as_of)
        return InterestQuote(
            loan_id=loan.id,
            from_date=loan.interest_cursor,
            as_of=as_of,
            days_elapsed=accrual.days_elapsed,
            interest=accrual.interest,
            current_balance=loan.current_balance,
            payoff_amount=loan.current_balance + accrual.interest,
            backdated=accrual.backdated,
        )

    def portfolio_summary(self, currency: Optional[Currency] = None) -> PortfolioSummary:
        currency = currency or self.default_currency
        loans = [loan for loan in self.list_loans() if loan.currency == currency]
        zero = Money.zero(currency)

        outstanding = principal = collected = interest = zero
        counts = {status: 0 for status in LoanStatus}
        for loan in loans:
            counts[loan.status] += 1
            if loan.is_active:
                outstanding = outstanding + loan.current_balance
            principal = principal + loan.principal_amount
            collected = collected + loan.total_paid
            interest = interest + loan.total_interest_paid

        return PortfolioSummary(
            currency=currency,
            total_loans=len(loans),
            active_loans=counts[LoanStatus.ACTIVE],
            completed_loans=counts[LoanStatus.COMPLETED],
            defaulted_loans=counts[LoanStatus.DEFAULTED],
            total_outstanding=outstanding,
            total_principal_disbursed=principal,
            total_collected=collected,
            total_interest_collected=interest,
        )

    # History replay

    def replay_payments(self, loan: Loan) -> ReplayResult:
        """
        Re-run every recorded (date, amount) pair from the loan's principal and start date.

        A payment whose recomputed components or remaining balance differ from
        the stored ones is reported by sequence number.
        """
        balance = loan.principal_amount
        cursor = loan.start_date
        status = LoanStatus.ACTIVE
        dust = Money(self.dust_threshold, loan.currency)
        mismatched = []

        for payment in loan.payments:
            accrual = calculate_accrual(balance, loan.interest_rate, cursor, payment.payment_date)
            allocation = allocate(balance, accrual.interest, payment.amount_paid, dust)
            if (allocation.interest_component != payment.interest_component
                    or allocation.principal_component != payment.principal_component
                    or allocation.new_balance != payment.remaining_balance):
                mismatched.append(payment.sequence)
            balance = allocation.new_balance
            cursor = payment.payment_date
            status = allocation.status

        return ReplayResult(
            current_balance=balance,
            last_payment_date=cursor,
            status=status,
            mismatched_sequences=tuple(mismatched),
        )

    def reconcile_loan(self, loan_id: str) -> ReconciliationResult:
        """
        Repair cached loan state from the payment history.

        The last payment is the source of truth for current_balance and
        last_payment_date; status follows the balance. A Defaulted loan with
        a balance keeps its status.
        """
        with self._loan_lock(loan_id):
            loan = self.get_loan(loan_id)
            last = loan.last_payment
            balance = last.remaining_balance if last else loan.principal_amount
            cursor = last.payment_date if last else loan.start_date
            if balance.is_zero():
                status = LoanStatus.COMPLETED
            elif loan.status == LoanStatus.DEFAULTED:
                status = LoanStatus.DEFAULTED
            else:
                status = LoanStatus.ACTIVE

            corrections = {}
            if balance != loan.current_balance:
                corrections["current_balance"] = (str(loan.current_balance.amount), str(balance.amount))
            if cursor != loan.interest_cursor:
                corrections["last_payment_date"] = (loan.interest_cursor.isoformat(), cursor.isoformat())
            if status != loan.status:
                corrections["status"] = (loan.status.value, status.value)

            if not corrections:
                return ReconciliationResult(loan=loan)

            loan.current_balance = balance
            loan.last_payment_date = cursor
            loan.status = status
            loan.touch()
            self.repository.persist_updated_loan(loan)

        self._audit(AuditEventType.LOAN_RECONCILED, "loan", loan.id,
                    {name: {"stored": old, "derived": new} for name, (old, new) in corrections.items()})
        log_action(logger, "warning", "Loan state reconciled from payment history",
                   loan_id=loan.id, action="reconcile_loan", extra={"corrections": corrections})
        return ReconciliationResult(loan=loan, corrections=corrections)
