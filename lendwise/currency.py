"""
Money Module

Fixed-point money for the loan ledger. Amounts are Decimal values quantized to
the currency's minor unit with ROUND_HALF_UP. NEVER uses float for monetary values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

# High precision for intermediate interest arithmetic
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 currency codes with minor-unit precision"""
    INR = ("INR", 2)  # Indian Rupee
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    GBP = ("GBP", 2)  # British Pound
    KES = ("KES", 2)  # Kenyan Shilling
    JPY = ("JPY", 0)  # Japanese Yen

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        """Smallest representable amount, e.g. Decimal('0.01')"""
        return Decimal(1).scaleb(-self.precision)


def round_amount(value: Decimal, currency: Currency) -> Decimal:
    """Round a Decimal to the currency's minor unit, half away from zero"""
    return value.quantize(currency.quantum, rounding=ROUND_HALF_UP)


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    """
    Convert a number to Decimal via its string form so floats keep their printed value

    Raises:
        ValueError: If value is not a number, or is NaN or infinite
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a valid number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Amount must be a finite number, got {value!r}")
    return result


@dataclass(frozen=True)
class Money:
    """
    Immutable money value. The amount is always rounded to the currency precision,
    so every Money already satisfies the two-decimal rule of the ledger.
    """
    amount: Decimal
    currency: Currency = Currency.INR

    def __post_init__(self):
        object.__setattr__(self, 'amount', round_amount(to_decimal(self.amount), self.currency))

    @classmethod
    def zero(cls, currency: Currency = Currency.INR) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
