"""Recurring-billing scheduler: date arithmetic and the catch-up processor."""

from recurring_ledger.scheduling.dates import (
    BILLING_HOUR,
    advance,
    at_billing_hour,
    billing_datetime,
    clamp_day,
    compute_first_occurrence,
    days_in_month,
    occurrences_between,
)
from recurring_ledger.scheduling.processor import CatchUpPlan, SubscriptionProcessor

__all__ = [
    "BILLING_HOUR",
    "CatchUpPlan",
    "SubscriptionProcessor",
    "advance",
    "at_billing_hour",
    "billing_datetime",
    "clamp_day",
    "compute_first_occurrence",
    "days_in_month",
    "occurrences_between",
]
