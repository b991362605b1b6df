"""
Integration tests for the subscription and transaction flows and the
schedule and ledger queries.

Uses in-memory storage throughout.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from recurring_ledger.audit import AuditLogger
from recurring_ledger.config import AppSettings, SchedulerSettings
from recurring_ledger.models.audit import AuditEventType
from recurring_ledger.models.ledger import (
    Interval,
    Subscription,
    SubscriptionDraft,
    Transaction,
    TransactionDraft,
    TransactionKind,
)
from recurring_ledger.orchestrator import SubscriptionFlow, TransactionFlow
from recurring_ledger.queries import (
    LedgerQueryExecutor,
    QueryExecutionError,
    ScheduleQueryExecutor,
)
from recurring_ledger.scheduling import SubscriptionProcessor
from recurring_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    NotFoundError,
    StorageError,
)
from recurring_ledger.validation import SubscriptionValidator, TransactionValidator


def make_flow(storage, audit_storage=None) -> SubscriptionFlow:
    return SubscriptionFlow(
        storage,
        validator=SubscriptionValidator(AppSettings()),
        audit_logger=AuditLogger(audit_storage) if audit_storage is not None else None,
        scheduler_settings=SchedulerSettings(),
    )


class BrokenSaveStorage(InMemoryLedgerStorage):
    async def save_subscription(self, subscription):
        raise StorageError("disk full")


class TestCreateSubscription:
    """Tests for SubscriptionFlow.create_subscription."""

    def test_monthly_31_end_to_end(self):
        """Test created 2025-01-20, processed 2025-02-15: one entry on Jan 31, next Feb 28."""
        async def scenario():
            storage = InMemoryLedgerStorage()
            flow = make_flow(storage)
            sub, result = await flow.create_subscription(
                SubscriptionDraft(
                    title="Rent",
                    amount="1200",
                    category_id="housing",
                    interval="monthly",
                    month_day=31,
                ),
                now=datetime(2025, 1, 20, 10),
            )
            created = await flow.process_due(now=datetime(2025, 2, 15, 9))
            return (
                sub,
                result,
                created,
                await storage.list_transactions(),
                await storage.get_subscription(sub.id),
            )

        sub, result, created, transactions, stored = asyncio.run(scenario())

        assert result.is_valid is True
        assert sub.next_billing_date == datetime(2025, 1, 31, 12)
        assert sub.anchor_day == 31
        assert created == 1
        assert [t.date for t in transactions] == [datetime(2025, 1, 31, 12)]
        assert stored.next_billing_date == datetime(2025, 2, 28, 12)

    def test_daily_after_noon_billed_on_creation(self):
        """Test a first occurrence already due is processed right away."""
        async def scenario():
            storage = InMemoryLedgerStorage()
            sub, _ = await make_flow(storage).create_subscription(
                SubscriptionDraft(
                    title="Coffee", amount="3.50", category_id="food", interval="daily"
                ),
                now=datetime(2025, 3, 10, 15),
            )
            return sub, await storage.list_transactions()

        sub, transactions = asyncio.run(scenario())

        assert len(transactions) == 1
        assert transactions[0].date == datetime(2025, 3, 10, 12)
        assert transactions[0].notes == "[Auto-Subscription]"
        assert sub.next_billing_date == datetime(2025, 3, 11, 12)

    def test_yearly_anchors(self):
        async def scenario():
            sub, _ = await make_flow(InMemoryLedgerStorage()).create_subscription(
                SubscriptionDraft(
                    kind=TransactionKind.INCOME,
                    title="Bonus",
                    amount="5000",
                    category_id="salary",
                    interval="yearly",
                    month=11,
                ),
                now=datetime(2025, 3, 15, 10),
            )
            return sub

        sub = asyncio.run(scenario())

        assert sub.kind == TransactionKind.INCOME
        assert sub.next_billing_date == datetime(2025, 12, 1, 12)
        assert sub.anchor_month == 11
        assert sub.anchor_day == 1

    def test_invalid_draft_is_rejected_and_audited(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            audit_storage = InMemoryAuditStorage()
            sub, result = await make_flow(storage, audit_storage).create_subscription(
                SubscriptionDraft(title="", amount="abc", category_id="x"),
            )
            return sub, result, await storage.list_subscriptions(), audit_storage.events

        sub, result, stored, events = asyncio.run(scenario())

        assert sub is None
        assert result.is_valid is False
        assert stored == []
        assert events[0].event_type == AuditEventType.SUBSCRIPTION_REJECTED
        assert len(events[0].details["issues"]) == 2

    def test_creation_is_audited(self):
        async def scenario():
            audit_storage = InMemoryAuditStorage()
            await make_flow(InMemoryLedgerStorage(), audit_storage).create_subscription(
                SubscriptionDraft(
                    title="Gym", amount="25", category_id="health", interval="weekly", weekday=0
                ),
                now=datetime(2025, 3, 12, 9),
            )
            return audit_storage.events

        events = asyncio.run(scenario())

        assert events[0].event_type == AuditEventType.SUBSCRIPTION_CREATED
        assert events[0].details["next_billing_date"] == "2025-03-17T12:00:00"

    def test_storage_error_surfaces(self):
        async def scenario():
            await make_flow(BrokenSaveStorage()).create_subscription(
                SubscriptionDraft(title="Gym", amount="25", category_id="health"),
                now=datetime(2025, 3, 12, 9),
            )

        with pytest.raises(StorageError):
            asyncio.run(scenario())


class TestDeleteSubscription:
    """Tests for SubscriptionFlow.delete_subscription."""

    def test_delete_keeps_generated_transactions(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            audit_storage = InMemoryAuditStorage()
            flow = make_flow(storage, audit_storage)
            sub, _ = await flow.create_subscription(
                SubscriptionDraft(
                    title="Coffee", amount="3.50", category_id="food", interval="daily"
                ),
                now=datetime(2025, 3, 10, 15),
            )
            deleted = await flow.delete_subscription(sub.id)
            again = await flow.delete_subscription(sub.id)
            return deleted, again, await storage.list_transactions(), audit_storage.events

        deleted, again, transactions, events = asyncio.run(scenario())

        assert deleted is True
        assert again is False
        assert len(transactions) == 1
        deletions = [e for e in events if e.event_type == AuditEventType.SUBSCRIPTION_DELETED]
        assert len(deletions) == 1


def sample_subscriptions() -> list[Subscription]:
    return [
        Subscription(
            kind=TransactionKind.EXPENSE,
            title="Rent",
            amount=Decimal("10"),
            category_id="housing",
            interval=Interval.MONTHLY,
            next_billing_date=datetime(2025, 1, 31, 12),
            anchor_day=31,
        ),
        Subscription(
            kind=TransactionKind.INCOME,
            title="Allowance",
            amount=Decimal("100"),
            category_id="income",
            interval=Interval.WEEKLY,
            next_billing_date=datetime(2025, 1, 6, 12),
        ),
    ]


class TestScheduleQueries:
    """Tests for read-only schedule projections."""

    def test_upcoming_occurrences(self):
        async def scenario():
            queries = ScheduleQueryExecutor(InMemoryLedgerStorage(sample_subscriptions()))
            return await queries.upcoming_occurrences(datetime(2025, 4, 30, 12))

        occurrences = asyncio.run(scenario())
        rent = [o.date for o in occurrences if o.title == "Rent"]

        assert rent == [
            datetime(2025, 1, 31, 12),
            datetime(2025, 2, 28, 12),
            datetime(2025, 3, 31, 12),
            datetime(2025, 4, 30, 12),
        ]
        assert [o.date for o in occurrences] == sorted(o.date for o in occurrences)

    def test_projection_does_not_write(self):
        async def scenario():
            storage = InMemoryLedgerStorage(sample_subscriptions())
            await ScheduleQueryExecutor(storage).upcoming_occurrences(datetime(2025, 4, 30, 12))
            return storage.commit_count, await storage.list_subscriptions()

        commits, subscriptions = asyncio.run(scenario())

        assert commits == 0
        assert subscriptions[0].next_billing_date == datetime(2025, 1, 31, 12)

    def test_limit(self):
        async def scenario():
            queries = ScheduleQueryExecutor(InMemoryLedgerStorage(sample_subscriptions()))
            return await queries.upcoming_occurrences(datetime(2025, 12, 31, 12), limit=3)

        assert len(asyncio.run(scenario())) == 3

    def test_invalid_limit(self):
        queries = ScheduleQueryExecutor(InMemoryLedgerStorage())
        with pytest.raises(QueryExecutionError):
            asyncio.run(queries.upcoming_occurrences(datetime(2025, 1, 1), limit=0))

    def test_projected_totals(self):
        async def scenario():
            queries = ScheduleQueryExecutor(InMemoryLedgerStorage(sample_subscriptions()))
            return await queries.projected_totals(datetime(2025, 1, 31, 12))

        totals = asyncio.run(scenario())

        # Weekly: Jan 6, 13, 20, 27. Monthly: Jan 31.
        assert totals.occurrence_count == 5
        assert totals.income == Decimal("400")
        assert totals.expense == Decimal("10")
        assert totals.net == Decimal("390")

    def test_next_occurrence(self):
        async def scenario():
            subscriptions = sample_subscriptions()
            queries = ScheduleQueryExecutor(InMemoryLedgerStorage(subscriptions))
            return (
                await queries.next_occurrence(subscriptions[1].id),
                await queries.next_occurrence(uuid4()),
            )

        found, missing = asyncio.run(scenario())

        assert found.date == datetime(2025, 1, 6, 12)
        assert found.kind == TransactionKind.INCOME
        assert missing is None

    def test_projection_matches_processor_at_configured_hour(self):
        """Test projections use the same billing hour the processor bills at."""
        settings = SchedulerSettings(billing_hour=9)
        until = datetime(2025, 1, 3, 10)

        def coffee() -> Subscription:
            return Subscription(
                kind=TransactionKind.EXPENSE,
                title="Coffee",
                amount=Decimal("3.50"),
                category_id="food",
                interval=Interval.DAILY,
                next_billing_date=datetime(2025, 1, 1, 9),
            )

        async def scenario():
            queries = ScheduleQueryExecutor(InMemoryLedgerStorage([coffee()]), settings=settings)
            projected = await queries.upcoming_occurrences(until)

            storage = InMemoryLedgerStorage([coffee()])
            await SubscriptionProcessor(storage, settings=settings).process_due_subscriptions(until)
            billed = await storage.list_transactions()
            return projected, billed

        projected, billed = asyncio.run(scenario())

        assert [o.date for o in projected] == sorted(t.date for t in billed)
        assert [o.date for o in projected] == [
            datetime(2025, 1, 1, 9),
            datetime(2025, 1, 2, 9),
            datetime(2025, 1, 3, 9),
        ]

    def test_projected_totals_are_not_truncated(self):
        """Test long horizons are summed in full."""
        start = datetime(2000, 1, 1, 12)
        until = datetime(2030, 1, 1, 12)

        async def scenario():
            storage = InMemoryLedgerStorage([
                Subscription(
                    kind=TransactionKind.EXPENSE,
                    title="Coffee",
                    amount=Decimal("1"),
                    category_id="food",
                    interval=Interval.DAILY,
                    next_billing_date=start,
                ),
            ])
            queries = ScheduleQueryExecutor(storage, settings=SchedulerSettings())
            return await queries.projected_totals(until)

        totals = asyncio.run(scenario())

        expected = (until - start).days + 1
        assert expected > 10000
        assert totals.occurrence_count == expected
        assert totals.expense == Decimal(expected)


NOW = datetime(2025, 3, 10, 15)


def make_transaction_flow(storage, audit_storage=None) -> TransactionFlow:
    return TransactionFlow(
        storage,
        validator=TransactionValidator(AppSettings()),
        audit_logger=AuditLogger(audit_storage) if audit_storage is not None else None,
    )


def groceries(**overrides) -> TransactionDraft:
    fields = dict(
        title="Groceries",
        amount="54.20",
        category_id="food",
        date=datetime(2025, 3, 9, 18),
    )
    fields.update(overrides)
    return TransactionDraft(**fields)


class TestTransactionFlow:
    """Tests for manually entered transactions."""

    def test_add_transaction(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            audit_storage = InMemoryAuditStorage()
            txn, result = await make_transaction_flow(storage, audit_storage).add_transaction(
                groceries(notes="Market"), now=NOW,
            )
            return txn, result, await storage.list_transactions(), audit_storage.events

        txn, result, stored, events = asyncio.run(scenario())

        assert result.is_valid is True
        assert txn.amount == Decimal("54.20")
        assert txn.is_generated is False
        assert [t.id for t in stored] == [txn.id]
        assert events[0].event_type == AuditEventType.TRANSACTION_CREATED
        assert events[0].entity_id == txn.id

    def test_future_transaction_rejected(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            audit_storage = InMemoryAuditStorage()
            txn, result = await make_transaction_flow(storage, audit_storage).add_transaction(
                groceries(date=datetime(2025, 3, 11, 8)), now=NOW,
            )
            return txn, result, await storage.list_transactions(), audit_storage.events

        txn, result, stored, events = asyncio.run(scenario())

        assert txn is None
        assert result.first_error_message == "Date cannot be in the future."
        assert stored == []
        assert events[0].event_type == AuditEventType.TRANSACTION_REJECTED

    def test_update_keeps_identity(self):
        """Test editing a generated entry keeps its ID, creation time and source."""
        source_id = uuid4()
        original = Transaction(
            kind=TransactionKind.EXPENSE,
            title="Rent",
            amount=Decimal("1200"),
            category_id="housing",
            date=datetime(2025, 2, 28, 12),
            notes="[Auto-Subscription]",
            source_subscription_id=source_id,
        )

        async def scenario():
            storage = InMemoryLedgerStorage(transactions=[original])
            audit_storage = InMemoryAuditStorage()
            updated, result = await make_transaction_flow(storage, audit_storage).update_transaction(
                original.id,
                groceries(title="Rent", amount="1250", category_id="housing",
                          date=datetime(2025, 2, 28, 12), notes="[Auto-Subscription]"),
                now=NOW,
            )
            return updated, result, await storage.get_transaction(original.id), audit_storage.events

        updated, result, stored, events = asyncio.run(scenario())

        assert result.is_valid is True
        assert stored.id == original.id
        assert stored.created_at == original.created_at
        assert stored.source_subscription_id == source_id
        assert stored.amount == Decimal("1250")
        assert events[0].event_type == AuditEventType.TRANSACTION_UPDATED
        assert events[0].details["changed_fields"] == ["amount"]

    def test_update_missing_transaction(self):
        flow = make_transaction_flow(InMemoryLedgerStorage())
        with pytest.raises(NotFoundError):
            asyncio.run(flow.update_transaction(uuid4(), groceries(), now=NOW))

    def test_invalid_update_leaves_record(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            flow = make_transaction_flow(storage)
            txn, _ = await flow.add_transaction(groceries(), now=NOW)
            updated, result = await flow.update_transaction(txn.id, groceries(amount="0"), now=NOW)
            return txn, updated, result, await storage.get_transaction(txn.id)

        txn, updated, result, stored = asyncio.run(scenario())

        assert updated is None
        assert result.is_valid is False
        assert stored.amount == txn.amount

    def test_delete_transaction(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            audit_storage = InMemoryAuditStorage()
            flow = make_transaction_flow(storage, audit_storage)
            txn, _ = await flow.add_transaction(groceries(), now=NOW)
            deleted = await flow.delete_transaction(txn.id)
            again = await flow.delete_transaction(txn.id)
            return deleted, again, await storage.list_transactions(), audit_storage.events

        deleted, again, stored, events = asyncio.run(scenario())

        assert (deleted, again) == (True, False)
        assert stored == []
        deletions = [e for e in events if e.event_type == AuditEventType.TRANSACTION_DELETED]
        assert len(deletions) == 1


class TestLedgerQueries:
    """Tests for ledger totals."""

    def test_totals_include_manual_and_generated(self):
        async def scenario():
            storage = InMemoryLedgerStorage(sample_subscriptions())
            flow = make_transaction_flow(storage)
            await flow.add_transaction(
                groceries(kind=TransactionKind.INCOME, title="Refund", amount="25",
                          date=datetime(2025, 1, 15, 10)),
                now=NOW,
            )
            await flow.add_transaction(groceries(amount="40", date=datetime(2025, 1, 20, 10)), now=NOW)
            await SubscriptionProcessor(
                storage, settings=SchedulerSettings()
            ).process_due_subscriptions(datetime(2025, 1, 31, 13))
            return await LedgerQueryExecutor(storage).totals()

        totals = asyncio.run(scenario())

        # Generated: allowance 4 x 100 income, rent 10 expense
        assert totals.transaction_count == 7
        assert totals.total_income == Decimal("425")
        assert totals.total_expenses == Decimal("50")
        assert totals.balance == Decimal("375")

    def test_totals_within_range(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            flow = make_transaction_flow(storage)
            for day in (1, 10, 20):
                await flow.add_transaction(
                    groceries(amount="10", date=datetime(2025, 3, day, 12)), now=NOW,
                )
            return await LedgerQueryExecutor(storage).totals(
                date_from=datetime(2025, 3, 5), date_to=datetime(2025, 3, 31),
            )

        totals = asyncio.run(scenario())

        assert totals.transaction_count == 2
        assert totals.total_expenses == Decimal("20")
        assert totals.balance == Decimal("-20")

    def test_empty_ledger(self):
        totals = asyncio.run(LedgerQueryExecutor(InMemoryLedgerStorage()).totals())
        assert totals.transaction_count == 0
        assert totals.balance == Decimal("0")

    def test_inverted_range(self):
        queries = LedgerQueryExecutor(InMemoryLedgerStorage())
        with pytest.raises(QueryExecutionError):
            asyncio.run(queries.totals(date_from=datetime(2025, 2, 1), date_to=datetime(2025, 1, 1)))
