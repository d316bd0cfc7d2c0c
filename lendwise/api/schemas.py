"""
Pydantic schemas for API requests and response helpers
"""

from datetime import date
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..currency import Money
from ..ledger import InterestQuote, PortfolioSummary
from ..loans import Borrower, Loan, Payment


class BorrowerModel(BaseModel):
    name: str = Field(..., min_length=1)
    id_proof: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""

    def to_borrower(self) -> Borrower:
        return Borrower(
            name=self.name,
            id_proof=self.id_proof,
            phone=self.phone,
            email=self.email,
            address=self.address,
        )


class CreateLoanRequest(BaseModel):
    borrower: BorrowerModel
    principal_amount: str = Field(..., description="Decimal amount as string")
    monthly_interest_rate: Optional[str] = Field(None, description="Percent per month, e.g. '1.0'")
    annual_interest_rate: Optional[str] = Field(None, description="Percent per year, stored as annual / 12")
    start_date: Optional[date] = None
    currency: Optional[str] = Field(None, description="Currency code, defaults to the configured currency")


class RecordPaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: Optional[date] = None
    note: Optional[str] = None


def money_to_dict(money: Money) -> Dict[str, str]:
    return {"amount": str(money.amount), "currency": money.currency.code}


def borrower_to_dict(borrower: Borrower) -> Dict[str, Any]:
    return {
        "id": borrower.id,
        "name": borrower.name,
        "id_proof": borrower.id_proof,
        "phone": borrower.phone,
        "email": borrower.email,
        "address": borrower.address,
    }


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "loan_id": payment.loan_id,
        "sequence": payment.sequence,
        "date": payment.payment_date.isoformat(),
        "amount_paid": money_to_dict(payment.amount_paid),
        "interest_component": money_to_dict(payment.interest_component),
        "principal_component": money_to_dict(payment.principal_component),
        "remaining_balance": money_to_dict(payment.remaining_balance),
        "accrued_interest": money_to_dict(payment.accrued_interest),
        "days_elapsed": payment.days_elapsed,
        "backdated": payment.backdated,
        "note": payment.note,
    }


def loan_to_dict(loan: Loan, include_payments: bool = True) -> Dict[str, Any]:
    result = {
        "id": loan.id,
        "borrower": borrower_to_dict(loan.borrower),
        "principal_amount": money_to_dict(loan.principal_amount),
        "interest_rate": str(loan.interest_rate),
        "start_date": loan.start_date.isoformat(),
        "last_payment_date": loan.interest_cursor.isoformat(),
        "status": loan.status.value,
        "current_balance": money_to_dict(loan.current_balance),
        "total_paid": money_to_dict(loan.total_paid),
        "total_interest_paid": money_to_dict(loan.total_interest_paid),
        "unpaid_interest_carried": money_to_dict(loan.unpaid_interest_carried),
        "payment_count": len(loan.payments),
    }
    if include_payments:
        result["payments"] = [payment_to_dict(p) for p in loan.payments]
    return result


def quote_to_dict(quote: InterestQuote) -> Dict[str, Any]:
    return {
        "loan_id": quote.loan_id,
        "from_date": quote.from_date.isoformat(),
        "as_of": quote.as_of.isoformat(),
        "days_elapsed": quote.days_elapsed,
        "interest": money_to_dict(quote.interest),
        "current_balance": money_to_dict(quote.current_balance),
        "payoff_amount": money_to_dict(quote.payoff_amount),
        "backdated": quote.backdated,
    }


def summary_to_dict(summary: PortfolioSummary) -> Dict[str, Any]:
    return {
        "currency": summary.currency.code,
        "total_loans": summary.total_loans,
        "active_loans": summary.active_loans,
        "completed_loans": summary.completed_loans,
        "defaulted_loans": summary.defaulted_loans,
        "total_outstanding": money_to_dict(summary.total_outstanding),
        "total_principal_disbursed": money_to_dict(summary.total_principal_disbursed),
        "total_collected": money_to_dict(summary.total_collected),
        "total_interest_collected": money_to_dict(summary.total_interest_collected),
    }
