"""
Schedule and Ledger Query Engine

DESIGN DECISION: Queries are READ-ONLY.
Projections walk each subscription forward with the same `advance` function,
billing hour and fallback step the processor uses, so "what will be billed"
and "what gets billed" agree. Nothing is written; stored state is untouched.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from recurring_ledger.config import SchedulerSettings, get_settings
from recurring_ledger.models.ledger import (
    LedgerTotals,
    ProjectedTotals,
    ScheduledOccurrence,
    Subscription,
    TransactionKind,
)
from recurring_ledger.scheduling.dates import occurrences_between
from recurring_ledger.services.storage import LedgerStorageInterface


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


class ScheduleQueryExecutor:
    """
    Answers "what is coming up" questions about the subscriptions.

    GUARANTEES:
    - Only projects from stored subscriptions
    - Never writes
    - Occurrences already due (not yet processed) are included
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[SchedulerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().scheduler

    async def upcoming_occurrences(
        self,
        until: datetime,
        limit: int = 100,
    ) -> list[ScheduledOccurrence]:
        """
        List every projected occurrence up to `until`, oldest first.

        Args:
            until: Inclusive cutoff
            limit: Maximum number of occurrences returned
        """
        if limit < 1:
            raise QueryExecutionError("Limit must be at least 1")

        return await self._collect(until, limit)

    async def projected_totals(self, until: datetime) -> ProjectedTotals:
        """Sum projected income and expense up to `until`, with no occurrence limit."""
        occurrences = await self._collect(until, None)

        income = sum(
            (o.amount for o in occurrences if o.kind == TransactionKind.INCOME),
            Decimal("0"),
        )
        expense = sum(
            (o.amount for o in occurrences if o.kind == TransactionKind.EXPENSE),
            Decimal("0"),
        )
        return ProjectedTotals(
            until=until,
            occurrence_count=len(occurrences),
            income=income,
            expense=expense,
        )

    async def next_occurrence(self, subscription_id) -> Optional[ScheduledOccurrence]:
        """The next billing of one subscription, or None if it doesn't exist."""
        sub = await self._storage.get_subscription(subscription_id)
        if sub is None:
            return None
        return self._occurrence(sub, sub.next_billing_date)

    async def _collect(
        self,
        until: datetime,
        limit: Optional[int],
    ) -> list[ScheduledOccurrence]:
        try:
            subscriptions = await self._storage.list_subscriptions()
        except Exception as e:
            raise QueryExecutionError(f"Failed to load subscriptions: {e}")

        occurrences = []
        for sub in subscriptions:
            occurrences.extend(self._project(sub, until, limit))

        occurrences.sort(key=lambda o: (o.date, o.title))
        return occurrences[:limit]

    def _project(
        self,
        sub: Subscription,
        until: datetime,
        limit: Optional[int],
    ) -> list[ScheduledOccurrence]:
        dates = occurrences_between(
            sub.next_billing_date,
            until,
            sub.interval,
            sub.anchor_day,
            sub.anchor_month,
            limit=limit,
            billing_hour=self._settings.billing_hour,
            fallback_days=self._settings.fallback_interval_days,
        )
        return [self._occurrence(sub, when) for when in dates]

    def _occurrence(self, sub: Subscription, when: datetime) -> ScheduledOccurrence:
        return ScheduledOccurrence(
            subscription_id=sub.id,
            title=sub.title,
            kind=sub.kind,
            amount=sub.amount,
            date=when,
        )


class LedgerQueryExecutor:
    """Read-only summaries over recorded transactions."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def totals(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> LedgerTotals:
        """
        Total income, total expenses and balance of the ledger.

        Manual and generated transactions count alike. Both bounds are
        inclusive; omit them to total the whole ledger.
        """
        if date_from and date_to and date_from > date_to:
            raise QueryExecutionError("date_from must not be after date_to")

        try:
            transactions = await self._storage.list_transactions(
                date_from=date_from,
                date_to=date_to,
                limit=None,
            )
        except Exception as e:
            raise QueryExecutionError(f"Failed to load transactions: {e}")

        total_income = Decimal("0")
        total_expenses = Decimal("0")
        for txn in transactions:
            if txn.kind == TransactionKind.INCOME:
                total_income += txn.amount
            else:
                total_expenses += txn.amount

        return LedgerTotals(
            date_from=date_from,
            date_to=date_to,
            transaction_count=len(transactions),
            total_income=total_income,
            total_expenses=total_expenses,
        )
