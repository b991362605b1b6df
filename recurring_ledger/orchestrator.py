"""
Main Orchestrator for Recurring Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Subscription creation (input → validate → first occurrence → save → catch up)
2. Subscription deletion
3. Processing due subscriptions (any trigger: app start, periodic wake,
   manual "sync now")
4. Manual transactions (input → validate → save), edits and deletions

DESIGN DECISION: The orchestrator draws the line between user actions and
automated processing:
- User actions surface their failures (validation messages, StorageError)
- Automated processing never raises; it reports a count and retries on
  the next trigger
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from recurring_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from recurring_ledger.config import SchedulerSettings, get_settings
from recurring_ledger.models.ledger import (
    Interval,
    Subscription,
    SubscriptionDraft,
    Transaction,
    TransactionDraft,
    ValidationResult,
)
from recurring_ledger.queries import LedgerQueryExecutor, ScheduleQueryExecutor
from recurring_ledger.scheduling import SubscriptionProcessor, compute_first_occurrence
from recurring_ledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
)
from recurring_ledger.validation import SubscriptionValidator, TransactionValidator


logger = structlog.get_logger(__name__)


class SubscriptionFlow:
    """
    Orchestrates subscription lifecycle and processing.

    Flow for a new subscription:
    1. Validate → reject with user-facing issues if anything is wrong
    2. Schedule → compute first billing date and anchors
    3. Save → persist the subscription
    4. Catch up → run the processor once, so a subscription whose first
       occurrence is already due (e.g. a daily one created after noon) is
       billed right away
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        processor: Optional[SubscriptionProcessor] = None,
        validator: Optional[SubscriptionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        scheduler_settings: Optional[SchedulerSettings] = None,
    ):
        self._storage = storage
        self._scheduler_settings = scheduler_settings or get_settings().scheduler
        self._audit_logger = audit_logger
        self._processor = processor or SubscriptionProcessor(
            storage,
            settings=self._scheduler_settings,
            audit_logger=audit_logger,
        )
        self._validator = validator or SubscriptionValidator()

    @property
    def processor(self) -> SubscriptionProcessor:
        return self._processor

    async def create_subscription(
        self,
        draft: SubscriptionDraft,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[Subscription], ValidationResult]:
        """
        Validate, schedule and save a new subscription.

        Returns:
            (subscription, validation_result)
            subscription is None if validation failed.

        Raises:
            StorageError: If the subscription could not be saved
        """
        correlation_id = correlation_id or create_correlation_id()
        now = now or datetime.now()

        result = self._validator.validate(draft)
        if not result.is_valid:
            if self._audit_logger:
                await self._audit_logger.log_subscription_rejected(
                    issues=[
                        {"field": i.field, "type": i.issue_type, "message": i.message}
                        for i in result.issues
                    ],
                    correlation_id=correlation_id,
                )
            return None, result

        interval = Interval(draft.interval)
        first = compute_first_occurrence(
            interval,
            weekday=draft.weekday,
            month_day=draft.month_day,
            month=draft.month,
            now=now,
            billing_hour=self._scheduler_settings.billing_hour,
        )

        subscription = Subscription(
            kind=draft.kind,
            title=draft.title,
            amount=self._validator.parse_amount(draft.amount),
            category_id=draft.category_id,
            notes=draft.notes or None,
            interval=interval,
            next_billing_date=first.next_billing_date,
            anchor_day=first.anchor_day,
            anchor_month=first.anchor_month,
        )

        await self._storage.save_subscription(subscription)

        if self._audit_logger:
            await self._audit_logger.log_subscription_created(
                subscription_id=subscription.id,
                title=subscription.title,
                interval=interval.value,
                next_billing_date=subscription.next_billing_date,
                correlation_id=correlation_id,
            )

        created = await self._processor.process_due_subscriptions(now_override=now)
        if created:
            logger.info(
                "subscription_billed_on_creation",
                subscription_id=str(subscription.id),
                created_count=created,
            )
            subscription = await self._storage.get_subscription(subscription.id) or subscription

        return subscription, result

    async def delete_subscription(
        self,
        subscription_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete a subscription.

        Transactions it already generated are kept; they are independent
        records once created.

        Raises:
            StorageError: If the delete failed
        """
        correlation_id = correlation_id or create_correlation_id()

        deleted = await self._storage.delete_subscription(subscription_id)
        if deleted and self._audit_logger:
            await self._audit_logger.log_subscription_deleted(
                subscription_id=subscription_id,
                correlation_id=correlation_id,
            )
        return deleted

    async def process_due(self, now: Optional[datetime] = None) -> int:
        """
        Materialize every due occurrence.

        Never raises; returns the number of transactions created.
        """
        return await self._processor.process_due_subscriptions(now_override=now)


class TransactionFlow:
    """
    Orchestrates manually entered transactions.

    Manual entries are saved one at a time, outside the processor's batch.
    Generated transactions can be edited or deleted here too; once created
    they no longer depend on their subscription.
    """

    EDITABLE_FIELDS = ("kind", "title", "amount", "category_id", "date", "notes")

    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator or TransactionValidator()
        self._audit_logger = audit_logger

    async def add_transaction(
        self,
        draft: TransactionDraft,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[Transaction], ValidationResult]:
        """
        Validate and save a manual transaction.

        Returns:
            (transaction, validation_result)
            transaction is None if validation failed.

        Raises:
            StorageError: If the transaction could not be saved
        """
        correlation_id = correlation_id or create_correlation_id()

        result = await self._validate(draft, now, correlation_id)
        if not result.is_valid:
            return None, result

        transaction = Transaction(
            kind=draft.kind,
            title=draft.title,
            amount=self._validator.parse_amount(draft.amount),
            category_id=draft.category_id,
            date=draft.date,
            notes=draft.notes or None,
        )
        await self._storage.save_transaction(transaction)

        logger.info(
            "transaction_recorded",
            transaction_id=str(transaction.id),
            kind=transaction.kind.value,
        )
        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                transaction_id=transaction.id,
                title=transaction.title,
                kind=transaction.kind.value,
                date=transaction.date,
                correlation_id=correlation_id,
            )
        return transaction, result

    async def update_transaction(
        self,
        transaction_id: UUID,
        draft: TransactionDraft,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[Transaction], ValidationResult]:
        """
        Replace the editable fields of a stored transaction.

        The ID, creation time and source subscription are kept.

        Raises:
            NotFoundError: No transaction with this ID exists
            StorageError: If the update failed
        """
        correlation_id = correlation_id or create_correlation_id()

        existing = await self._storage.get_transaction(transaction_id)
        if existing is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        result = await self._validate(draft, now, correlation_id, transaction_id)
        if not result.is_valid:
            return None, result

        updated = existing.model_copy(update={
            "kind": draft.kind,
            "title": draft.title,
            "amount": self._validator.parse_amount(draft.amount),
            "category_id": draft.category_id,
            "date": draft.date,
            "notes": draft.notes or None,
        })
        await self._storage.update_transaction(updated)

        if self._audit_logger:
            changed = [
                name for name in self.EDITABLE_FIELDS
                if getattr(existing, name) != getattr(updated, name)
            ]
            await self._audit_logger.log_transaction_updated(
                transaction_id=transaction_id,
                changed_fields=changed,
                correlation_id=correlation_id,
            )
        return updated, result

    async def delete_transaction(
        self,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete a transaction.

        Raises:
            StorageError: If the delete failed
        """
        correlation_id = correlation_id or create_correlation_id()

        deleted = await self._storage.delete_transaction(transaction_id)
        if deleted and self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )
        return deleted

    async def _validate(
        self,
        draft: TransactionDraft,
        now: Optional[datetime],
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
    ) -> ValidationResult:
        result = self._validator.validate(draft, now=now)
        if not result.is_valid and self._audit_logger:
            await self._audit_logger.log_transaction_rejected(
                issues=[
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in result.issues
                ],
                correlation_id=correlation_id,
                transaction_id=transaction_id,
            )
        return result


def create_app_components(
    use_sheets: bool = False,
) -> tuple[
    SubscriptionFlow,
    TransactionFlow,
    ScheduleQueryExecutor,
    LedgerQueryExecutor,
    Optional[GoogleSheetsClient],
]:
    """
    Factory function to create all application components.

    Args:
        use_sheets: Whether to use Google Sheets storage.
                    Falls back to in-memory storage if it isn't configured.

    Returns:
        (subscription_flow, transaction_flow, schedule_queries,
         ledger_queries, sheets_client)
    """
    configure_logging(get_settings().app.debug_mode)

    sheets_client = None
    storage: LedgerStorageInterface
    audit_logger: AuditLogger

    if use_sheets:
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("sheets_storage_unavailable", error=str(e))
            sheets_client = None
            storage = InMemoryLedgerStorage()
            audit_logger = AuditLogger(InMemoryAuditStorage())
    else:
        storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    settings = get_settings().scheduler
    processor = SubscriptionProcessor(
        storage,
        settings=settings,
        audit_logger=audit_logger,
        run_lock=asyncio.Lock(),
    )
    subscription_flow = SubscriptionFlow(
        storage,
        processor=processor,
        audit_logger=audit_logger,
        scheduler_settings=settings,
    )

    transaction_flow = TransactionFlow(storage, audit_logger=audit_logger)

    return (
        subscription_flow,
        transaction_flow,
        ScheduleQueryExecutor(storage, settings=settings),
        LedgerQueryExecutor(storage),
        sheets_client,
    )
