"""
Interest Accrual Module

Simple daily interest between two dates on a diminishing balance. A monthly
rate is spread over a fixed 30-day month, interest is never compounded within
a span, and the amount is computed once on the balance at span start.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Tuple, Union

from .currency import Money, to_decimal

DAYS_PER_MONTH = 30
SECONDS_PER_DAY = 86400

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class AccrualResult:
    """Interest accrued over one span"""
    from_date: DateLike
    to_date: DateLike
    days_elapsed: int
    daily_rate: Decimal
    interest: Money
    backdated: bool = False  # to_date preceded from_date; span clamped to zero


def elapsed_days(from_date: DateLike, to_date: DateLike) -> Tuple[int, bool]:
    """
    Whole days between two points in time, rounded up.

    Returns:
        (days, backdated) where days is clamped to 0 and backdated is True
        when to_date precedes from_date

    Raises:
        ValueError: If one argument is a naive datetime and the other is timezone-aware
    """
    if isinstance(from_date, datetime) or isinstance(to_date, datetime):
        datetimes = [d for d in (from_date, to_date) if isinstance(d, datetime)]
        if len({d.tzinfo is None for d in datetimes}) > 1:
            raise ValueError("Cannot count days between a naive and a timezone-aware datetime")
        tz = datetimes[0].tzinfo
        start = _as_datetime(from_date, tz)
        end = _as_datetime(to_date, tz)
        seconds = (end - start).total_seconds()
        if seconds < 0:
            return 0, True
        return math.ceil(seconds / SECONDS_PER_DAY), False

    days = (to_date - from_date).days
    if days < 0:
        return 0, True
    return days, False


def _as_datetime(value: DateLike, tz) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day, tzinfo=tz)


def daily_rate(monthly_rate_percent) -> Decimal:
    """Daily rate as a fraction: (monthly % / 100) / 30"""
    return to_decimal(monthly_rate_percent) / Decimal(100) / Decimal(DAYS_PER_MONTH)


def calculate_accrual(current_balance: Money, monthly_rate_percent,
                      from_date: DateLike, to_date: DateLike) -> AccrualResult:
    """Accrue simple interest on current_balance from from_date to to_date"""
    days, backdated = elapsed_days(from_date, to_date)
    rate = to_decimal(monthly_rate_percent)

    # Multiply before dividing so the 1/3000 factor is applied once
    raw = current_balance.amount * rate * Decimal(days) / Decimal(100 * DAYS_PER_MONTH)

    return AccrualResult(
        from_date=from_date,
        to_date=to_date,
        days_elapsed=days,
        daily_rate=daily_rate(rate),
        interest=Money(raw, current_balance.currency),
        backdated=backdated,
    )


def accrued_interest(current_balance: Money, monthly_rate_percent,
                     from_date: DateLike, to_date: DateLike) -> Money:
    """Interest accrued on current_balance over the span, rounded to the minor unit"""
    return calculate_accrual(current_balance, monthly_rate_percent, from_date, to_date).interest
