"""
Loan endpoints
"""

import warnings
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status

from .dependencies import LendingSystem, get_lending_system
from .schemas import (
    CreateLoanRequest, RecordPaymentRequest,
    loan_to_dict, payment_to_dict, quote_to_dict, summary_to_dict,
)
from ..currency import Currency, Money, to_decimal
from ..exceptions import (
    BackdatedPaymentWarning, ConcurrentModificationError, InvalidLoanError,
    InvalidPaymentError, BackdatedPaymentError, LoanNotFoundError,
)
from ..loans import LoanStatus, monthly_rate_from_annual


router = APIRouter()


def _decimal(value: str, field: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} is not a valid finite decimal: {value!r}")


def _currency(code: Optional[str], system: LendingSystem) -> Currency:
    code = (code or system.config.default_currency).upper()
    try:
        return Currency[code]
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Unsupported currency: {code}")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a loan for a new borrower"""
    if (request.monthly_interest_rate is None) == (request.annual_interest_rate is None):
        raise HTTPException(status_code=400,
                            detail="Provide exactly one of monthly_interest_rate or annual_interest_rate")

    if request.monthly_interest_rate is not None:
        monthly_rate = _decimal(request.monthly_interest_rate, "monthly_interest_rate")
    else:
        monthly_rate = monthly_rate_from_annual(_decimal(request.annual_interest_rate, "annual_interest_rate"))

    principal = Money(_decimal(request.principal_amount, "principal_amount"), _currency(request.currency, system))

    try:
        loan = system.ledger.create_loan(
            borrower=request.borrower.to_borrower(),
            principal_amount=principal,
            monthly_rate_percent=monthly_rate,
            start_date=request.start_date,
        )
    except InvalidLoanError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "loan_id": loan.id,
        "loan": loan_to_dict(loan),
        "message": "Loan created successfully"
    }


@router.get("")
async def list_loans(
    status_filter: Optional[str] = Query(None, alias="status"),
    q: Optional[str] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """List loans, optionally filtered by status and borrower name / ID proof"""
    loan_status = None
    if status_filter:
        try:
            loan_status = LoanStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown loan status: {status_filter}")

    if q:
        loans = system.ledger.search_loans(q, status=loan_status)
    else:
        loans = system.ledger.list_loans(status=loan_status)

    return {"loans": [loan_to_dict(loan, include_payments=False) for loan in loans]}


@router.get("/summary")
async def portfolio_summary(
    currency: Optional[str] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Portfolio totals (outstanding, collected, counts by status)"""
    summary = system.ledger.portfolio_summary(_currency(currency, system))
    return summary_to_dict(summary)


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details with payment history"""
    try:
        loan = system.ledger.get_loan(loan_id)
    except LoanNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return loan_to_dict(loan)


@router.post("/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
async def record_payment(
    loan_id: str,
    request: RecordPaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a payment; the response lists any anomaly warnings raised while recording"""
    amount = _decimal(request.amount, "amount")

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", BackdatedPaymentWarning)
        try:
            loan = system.ledger.record_payment(
                loan_id=loan_id,
                amount_paid=amount,
                payment_date=request.payment_date,
                note=request.note,
            )
        except LoanNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except (InvalidPaymentError, BackdatedPaymentError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ConcurrentModificationError as e:
            raise HTTPException(status_code=409, detail=str(e))

    return {
        "payment": payment_to_dict(loan.last_payment),
        "loan": loan_to_dict(loan, include_payments=False),
        "warnings": [str(w.message) for w in caught if issubclass(w.category, BackdatedPaymentWarning)],
        "message": "Payment recorded successfully"
    }


@router.get("/{loan_id}/payments")
async def list_payments(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Payment history in recording order"""
    try:
        payments = system.ledger.get_payments(loan_id)
    except LoanNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"payments": [payment_to_dict(p) for p in payments]}


@router.get("/{loan_id}/interest")
async def quote_interest(
    loan_id: str,
    as_of: Optional[date] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Interest accrued since the last payment as of a date (defaults to today)"""
    try:
        quote = system.ledger.quote_interest(loan_id, as_of)
    except LoanNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return quote_to_dict(quote)


@router.post("/{loan_id}/reconcile")
async def reconcile_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Rebuild cached balance, interest cursor and status from the payment history"""
    try:
        result = system.ledger.reconcile_loan(loan_id)
    except LoanNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConcurrentModificationError as e:
        raise HTTPException(status_code=409, detail=str(e))

    replay = system.ledger.replay_payments(result.loan)
    return {
        "loan": loan_to_dict(result.loan, include_payments=False),
        "changed": result.changed,
        "corrections": {name: {"stored": old, "derived": new}
                        for name, (old, new) in result.corrections.items()},
        "history_consistent": replay.matches(result.loan),
        "mismatched_payments": list(replay.mismatched_sequences),
    }
