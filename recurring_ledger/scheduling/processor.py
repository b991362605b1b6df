"""
Subscription Processor

Brings every subscription's next billing date back into the future,
materializing one transaction per occurrence that came due in the meantime.

FLOW:
1. Load all subscriptions
2. Plan: per subscription, while next_billing_date <= now, emit a
   transaction dated at that billing date and advance with the stored
   interval/anchors
3. Commit every queued write as ONE batch
4. Return the number of transactions created

GUARANTEES:
- Occurrences of one subscription are emitted oldest first
- Anchors are read, never rewritten, so monthly day-31 rules keep
  targeting the 31st (clamped) instead of drifting to the 28th
- A run never partially applies: the batch commit is all-or-nothing
- Nothing is dropped: an occurrence that wasn't committed is still due
  and the next trigger picks it up
- Work per run is bounded by `max_occurrences_per_run`, not by time

Automated processing is best-effort. Load, planning and commit failures
are logged and the run reports 0; the caller just waits for the next
trigger.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from recurring_ledger.audit import AuditLogger, create_correlation_id
from recurring_ledger.config import SchedulerSettings, get_settings
from recurring_ledger.models.ledger import (
    BatchOperation,
    Subscription,
    Transaction,
)
from recurring_ledger.scheduling.dates import advance
from recurring_ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class CatchUpPlan(BaseModel):
    """Writes planned for one run, before they are committed."""

    operations: list[BatchOperation] = Field(default_factory=list)
    created_count: int = 0
    updated_subscription_ids: list[UUID] = Field(default_factory=list)

    # Set when the occurrence cap stopped the run early
    capped_subscription_id: Optional[UUID] = None
    unknown_interval_ids: list[UUID] = Field(default_factory=list)

    @property
    def capped(self) -> bool:
        return self.capped_subscription_id is not None


class SubscriptionProcessor:
    """
    Catch-up engine for recurring subscriptions.

    Runs on one instance are serialized through `run_lock`. Pass the same
    lock to every processor that shares a store in this process; across
    processes, the compare-and-set on each subscription update makes the
    store reject an overlapping run instead of double-processing.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[SchedulerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        run_lock: Optional[asyncio.Lock] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().scheduler
        self._audit_logger = audit_logger
        self._run_lock = run_lock or asyncio.Lock()

    @property
    def max_occurrences_per_run(self) -> int:
        return self._settings.max_occurrences_per_run

    async def process_due_subscriptions(
        self,
        now_override: Optional[datetime] = None,
    ) -> int:
        """
        Materialize every due occurrence.

        Args:
            now_override: Reference time for the whole run. Defaults to the
                wall clock, read once.

        Returns:
            Number of transactions created (0 if the run failed)
        """
        now = now_override or datetime.now()
        run_id = create_correlation_id()

        async with self._run_lock:
            return await self._run(now, run_id)

    async def _run(self, now: datetime, run_id: UUID) -> int:
        log = logger.bind(run_id=str(run_id))

        try:
            subscriptions = await self._storage.list_subscriptions()
        except Exception as e:
            log.error("subscriptions_load_failed", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_processing_failed(
                    run_id=run_id, stage="load", error_message=str(e),
                )
            return 0

        if self._audit_logger:
            await self._audit_logger.log_processing_started(
                run_id=run_id, now=now, subscription_count=len(subscriptions),
            )

        try:
            plan = self.plan_catch_up(subscriptions, now)
        except Exception as e:
            log.error(
                "catch_up_planning_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            if self._audit_logger:
                await self._audit_logger.log_processing_failed(
                    run_id=run_id, stage="plan", error_message=str(e),
                )
            return 0

        if self._audit_logger:
            for subscription_id in plan.unknown_interval_ids:
                sub = next(s for s in subscriptions if s.id == subscription_id)
                await self._audit_logger.log_unknown_interval(
                    run_id=run_id, subscription_id=subscription_id, interval=str(sub.interval),
                )
            if plan.capped:
                await self._audit_logger.log_occurrence_cap_reached(
                    run_id=run_id,
                    subscription_id=plan.capped_subscription_id,
                    cap=self.max_occurrences_per_run,
                )

        if not plan.operations:
            log.debug("no_due_subscriptions", subscription_count=len(subscriptions))
            if self._audit_logger:
                await self._audit_logger.log_processing_completed(
                    run_id=run_id, created_count=0, updated_subscriptions=0, capped=False,
                )
            return 0

        try:
            await self._storage.commit_batch(plan.operations)
        except Exception as e:
            log.error(
                "batch_commit_failed",
                error=str(e),
                error_type=type(e).__name__,
                operation_count=len(plan.operations),
            )
            if self._audit_logger:
                await self._audit_logger.log_processing_failed(
                    run_id=run_id, stage="commit", error_message=str(e),
                )
            return 0

        log.info(
            "subscriptions_processed",
            created_count=plan.created_count,
            updated_subscriptions=len(plan.updated_subscription_ids),
            capped=plan.capped,
        )
        if self._audit_logger:
            await self._audit_logger.log_batch_committed(
                run_id=run_id, operation_count=len(plan.operations),
            )
            await self._audit_logger.log_processing_completed(
                run_id=run_id,
                created_count=plan.created_count,
                updated_subscriptions=len(plan.updated_subscription_ids),
                capped=plan.capped,
            )

        return plan.created_count

    def plan_catch_up(
        self,
        subscriptions: list[Subscription],
        now: datetime,
    ) -> CatchUpPlan:
        """
        Build the batch for one run without touching storage.

        The occurrence cap counts across all subscriptions. When it is hit
        the subscription in progress keeps the occurrences emitted so far
        and every later subscription waits for the next run.
        """
        plan = CatchUpPlan()
        remaining = self.max_occurrences_per_run

        for sub in subscriptions:
            if not sub.has_known_interval and sub.is_due(now):
                logger.debug(
                    "unknown_interval_fallback",
                    subscription_id=str(sub.id),
                    interval=str(sub.interval),
                    fallback_days=self._settings.fallback_interval_days,
                )
                plan.unknown_interval_ids.append(sub.id)

            billing_date = sub.next_billing_date
            emitted = 0

            while billing_date <= now:
                if remaining == 0:
                    plan.capped_subscription_id = sub.id
                    break
                plan.operations.append(
                    self._storage.create_transaction(self._build_transaction(sub, billing_date))
                )
                billing_date = advance(
                    billing_date,
                    sub.interval,
                    sub.anchor_day,
                    sub.anchor_month,
                    billing_hour=self._settings.billing_hour,
                    fallback_days=self._settings.fallback_interval_days,
                )
                emitted += 1
                remaining -= 1

            if emitted:
                plan.operations.append(
                    self._storage.update_subscription_next_billing_date(
                        sub.id,
                        billing_date,
                        expected_next_billing_date=sub.next_billing_date,
                    )
                )
                plan.created_count += emitted
                plan.updated_subscription_ids.append(sub.id)

            if plan.capped:
                logger.warning(
                    "occurrence_cap_reached",
                    subscription_id=str(sub.id),
                    cap=self.max_occurrences_per_run,
                    deferred_from=billing_date.isoformat(),
                )
                break

        return plan

    def _build_transaction(self, sub: Subscription, occurrence: datetime) -> Transaction:
        if sub.notes:
            notes = f"{self._settings.auto_note_prefix} {sub.notes}"
        else:
            notes = self._settings.auto_note_placeholder

        return Transaction(
            kind=sub.kind,
            title=sub.title,
            amount=sub.amount,
            category_id=sub.category_id,
            date=occurrence,
            notes=notes,
            source_subscription_id=sub.id,
        )
