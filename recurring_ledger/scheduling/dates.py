"""
Billing Date Arithmetic

DESIGN DECISION: Everything in this module is a pure function.
No I/O, no clock reads unless the caller omits `now`, no randomness.
Calling `advance` repeatedly from the same starting point with the same
anchors always reproduces the same sequence, which is what makes an
interrupted processor run safe to repeat.

Month numbering:
- Python `datetime.month` is 1-12
- Subscription anchors (`anchor_month`, the yearly `month` selector) are 0-11
Conversion happens only in `billing_datetime` and `advance`.
"""

import calendar
from datetime import datetime, timedelta
from typing import Optional, Union

from recurring_ledger.models.ledger import FirstOccurrence, Interval


BILLING_HOUR = 12
FALLBACK_INTERVAL_DAYS = 30


# =============================================================================
# HELPERS
# =============================================================================

def days_in_month(year: int, month: int) -> int:
    """Number of days in `month` (1-12) of `year`."""
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> int:
    """Clamp day to the valid range for the given year/month (1-12)."""
    return min(max(day, 1), days_in_month(year, month))


def normalize_day_input(day: int) -> int:
    """Clamp a user-entered day of month into 1-31."""
    return min(max(int(day), 1), 31)


def at_billing_hour(value: datetime, hour: int = BILLING_HOUR) -> datetime:
    """Same calendar day, time of day reset to the billing hour."""
    return value.replace(hour=hour, minute=0, second=0, microsecond=0)


def billing_datetime(
    year: int,
    month_index: int,
    day: int,
    hour: int = BILLING_HOUR,
) -> datetime:
    """
    Build a billing datetime from a 0-based month index.

    The month index may overflow (12 is January of the following year) or
    be negative; it is folded into the year first. The day is clamped to
    the length of the resulting month.
    """
    year += month_index // 12
    month = month_index % 12 + 1
    return datetime(year, month, clamp_day(year, month, day), hour)


# =============================================================================
# DATE ADVANCER
# =============================================================================

def advance(
    current: datetime,
    interval: Union[Interval, str],
    anchor_day: Optional[int] = None,
    anchor_month: Optional[int] = None,
    billing_hour: int = BILLING_HOUR,
    fallback_days: int = FALLBACK_INTERVAL_DAYS,
) -> datetime:
    """
    Compute the single next occurrence strictly after `current`.

    Args:
        current: The occurrence being moved past
        interval: Recurrence cadence; unknown values never raise
        anchor_day: Monthly/yearly target day of month (clamped)
        anchor_month: Yearly target month, 0-11 (taken modulo 12)
        billing_hour: Hour of day the result is normalized to
        fallback_days: Step used for unknown intervals

    Rules:
        daily   -> +1 day
        weekly  -> +7 days
        monthly -> next calendar month, day = anchor_day or current.day,
                   clamped to the month length (31 in April gives the 30th,
                   it never spills into May)
        yearly  -> next year, month = anchor_month or current month,
                   day = anchor_day or 1, clamped (Feb 29 -> Feb 28)
        other   -> +fallback_days
    """
    base = at_billing_hour(current, billing_hour)

    if interval == Interval.DAILY:
        return base + timedelta(days=1)

    if interval == Interval.WEEKLY:
        return base + timedelta(days=7)

    if interval == Interval.MONTHLY:
        target_day = anchor_day if anchor_day is not None else current.day
        year, month = base.year, base.month + 1
        if month > 12:
            year, month = year + 1, 1
        return base.replace(
            year=year,
            month=month,
            day=clamp_day(year, month, target_day),
        )

    if interval == Interval.YEARLY:
        month_index = anchor_month if anchor_month is not None else current.month - 1
        month = month_index % 12 + 1
        target_day = anchor_day if anchor_day is not None else 1
        year = base.year + 1
        return base.replace(
            year=year,
            month=month,
            day=clamp_day(year, month, target_day),
        )

    return base + timedelta(days=fallback_days)


def occurrences_between(
    start: datetime,
    until: datetime,
    interval: Union[Interval, str],
    anchor_day: Optional[int] = None,
    anchor_month: Optional[int] = None,
    limit: Optional[int] = 1000,
    billing_hour: int = BILLING_HOUR,
    fallback_days: int = FALLBACK_INTERVAL_DAYS,
) -> list[datetime]:
    """
    All occurrences from `start` (inclusive) up to `until` (inclusive).

    `start` is treated as an occurrence itself, like a subscription's
    next billing date. At most `limit` dates are returned; `limit=None`
    returns every one. Later dates are stepped with the same billing
    hour and fallback step the processor uses.
    """
    result = []
    current = start
    while current <= until and (limit is None or len(result) < limit):
        result.append(current)
        current = advance(
            current,
            interval,
            anchor_day,
            anchor_month,
            billing_hour=billing_hour,
            fallback_days=fallback_days,
        )
    return result


# =============================================================================
# FIRST OCCURRENCE
# =============================================================================

def compute_first_occurrence(
    interval: Union[Interval, str],
    weekday: Optional[int] = None,
    month_day: Optional[int] = None,
    month: Optional[int] = None,
    now: Optional[datetime] = None,
    billing_hour: int = BILLING_HOUR,
) -> FirstOccurrence:
    """
    Compute the first billing date and anchors for a new subscription.

    Args:
        interval: Chosen cadence
        weekday: Weekly only, Monday = 0. Defaults to today's weekday.
        month_day: Monthly only, 1-31. Defaults to today's day.
        month: Yearly only, 0-11. Defaults to the current month.
        now: Reference time (wall clock if omitted)

    Weekly rolls forward to the next matching weekday; today counts, so a
    subscription created on its own weekday starts today at the billing
    hour. Monthly and yearly start this month/year if that date is still
    ahead of `now`, otherwise one period later.
    """
    now = now or datetime.now()
    start = at_billing_hour(now, billing_hour)

    if interval == Interval.WEEKLY:
        target = weekday if weekday is not None else now.weekday()
        offset = (target - now.weekday()) % 7
        return FirstOccurrence(next_billing_date=start + timedelta(days=offset))

    if interval == Interval.MONTHLY:
        target_day = normalize_day_input(month_day if month_day is not None else now.day)
        candidate = billing_datetime(now.year, now.month - 1, target_day, billing_hour)
        if candidate <= now:
            candidate = billing_datetime(now.year, now.month, target_day, billing_hour)
        return FirstOccurrence(next_billing_date=candidate, anchor_day=target_day)

    if interval == Interval.YEARLY:
        target_month = (month if month is not None else now.month - 1) % 12
        candidate = billing_datetime(now.year, target_month, 1, billing_hour)
        if candidate <= now:
            candidate = billing_datetime(now.year + 1, target_month, 1, billing_hour)
        return FirstOccurrence(
            next_billing_date=candidate,
            anchor_day=1,
            anchor_month=target_month,
        )

    # Daily (and anything unrecognized) starts today
    return FirstOccurrence(next_billing_date=start)
