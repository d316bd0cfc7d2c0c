"""Exception hierarchy for the loan ledger."""


class LendwiseError(Exception):
    """Base exception for all ledger errors."""


class InvalidLoanError(LendwiseError, ValueError):
    """Raised when loan terms are rejected at creation."""


class InvalidPaymentError(LendwiseError, ValueError):
    """Raised when a payment amount is not strictly positive."""


class LoanNotFoundError(LendwiseError, LookupError):
    """Raised when a referenced loan has no persisted record."""

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} not found")


class BackdatedPaymentError(LendwiseError, ValueError):
    """Raised for a payment dated before the interest cursor when backdating is disallowed."""


class ConcurrentModificationError(LendwiseError):
    """Raised when a loan changed in storage between read and write."""

    def __init__(self, loan_id: str, expected_version: int, actual_version: int):
        self.loan_id = loan_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Loan {loan_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class BackdatedPaymentWarning(UserWarning):
    """Emitted when a payment date precedes the loan's last payment date."""
