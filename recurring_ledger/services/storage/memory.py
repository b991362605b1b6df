"""
In-Memory Storage Implementation

Used by tests and as the default backend when Google Sheets isn't
configured. Data lives only as long as the process.

Commits are serialized through an asyncio.Lock and the whole batch is
checked before anything is applied, so a failing batch leaves the store
exactly as it was.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.ledger import (
    BatchOperation,
    CreateTransactionOperation,
    Subscription,
    Transaction,
    TransactionKind,
    UpdateNextBillingDateOperation,
)
from recurring_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageChange,
    StorageError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dict-backed ledger storage."""

    def __init__(
        self,
        subscriptions: Optional[list[Subscription]] = None,
        transactions: Optional[list[Transaction]] = None,
    ):
        super().__init__()
        self._subscriptions: dict[UUID, Subscription] = {
            sub.id: sub for sub in (subscriptions or [])
        }
        self._transactions: dict[UUID, Transaction] = {
            txn.id: txn for txn in (transactions or [])
        }
        self._lock = asyncio.Lock()
        self.commit_count = 0

    async def commit_batch(self, operations: list[BatchOperation]) -> None:
        async with self._lock:
            # Stage everything first; apply only if the whole batch is valid
            staged_dates: dict[UUID, datetime] = {}
            new_transactions: list[Transaction] = []

            for operation in operations:
                if isinstance(operation, CreateTransactionOperation):
                    txn = operation.transaction
                    if txn.id in self._transactions or any(
                        t.id == txn.id for t in new_transactions
                    ):
                        raise DuplicateError(f"Transaction already exists: {txn.id}")
                    new_transactions.append(txn)
                elif isinstance(operation, UpdateNextBillingDateOperation):
                    sub = self._subscriptions.get(operation.subscription_id)
                    if sub is None:
                        raise NotFoundError(
                            f"Subscription not found: {operation.subscription_id}"
                        )
                    current = staged_dates.get(sub.id, sub.next_billing_date)
                    expected = operation.expected_next_billing_date
                    if expected is not None and current != expected:
                        raise ConflictError(
                            f"Subscription {sub.id} was advanced to "
                            f"{current.isoformat()} (expected {expected.isoformat()})"
                        )
                    staged_dates[sub.id] = operation.next_billing_date
                else:
                    raise StorageError(f"Unsupported operation: {operation!r}")

            now = datetime.utcnow()
            for txn in new_transactions:
                self._transactions[txn.id] = txn
            for sub_id, next_date in staged_dates.items():
                self._subscriptions[sub_id] = self._subscriptions[sub_id].model_copy(
                    update={"next_billing_date": next_date, "updated_at": now}
                )
            self.commit_count += 1

        self._notify(StorageChange(
            created_transaction_ids=[t.id for t in new_transactions],
            updated_subscription_ids=list(staged_dates),
        ))

    async def list_subscriptions(self) -> list[Subscription]:
        return [sub.model_copy() for sub in self._subscriptions.values()]

    async def get_subscription(self, subscription_id: UUID) -> Optional[Subscription]:
        sub = self._subscriptions.get(subscription_id)
        return sub.model_copy() if sub else None

    async def save_subscription(self, subscription: Subscription) -> bool:
        async with self._lock:
            if subscription.id in self._subscriptions:
                raise DuplicateError(f"Subscription already exists: {subscription.id}")
            self._subscriptions[subscription.id] = subscription.model_copy()
        self._notify(StorageChange(updated_subscription_ids=[subscription.id]))
        return True

    async def delete_subscription(self, subscription_id: UUID) -> bool:
        async with self._lock:
            removed = self._subscriptions.pop(subscription_id, None)
        if removed is None:
            return False
        self._notify(StorageChange(deleted_subscription_ids=[subscription_id]))
        return True

    async def list_transactions(
        self,
        kind: Optional[TransactionKind] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        subscription_id: Optional[UUID] = None,
        limit: Optional[int] = 1000,
    ) -> list[Transaction]:
        transactions = []
        for txn in self._transactions.values():
            if kind and txn.kind != kind:
                continue
            if date_from and txn.date < date_from:
                continue
            if date_to and txn.date > date_to:
                continue
            if subscription_id and txn.source_subscription_id != subscription_id:
                continue
            transactions.append(txn)

        transactions.sort(key=lambda t: t.date, reverse=True)
        return transactions[:limit]

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        txn = self._transactions.get(transaction_id)
        return txn.model_copy() if txn else None

    async def save_transaction(self, transaction: Transaction) -> bool:
        async with self._lock:
            if transaction.id in self._transactions:
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
            self._transactions[transaction.id] = transaction.model_copy()
        self._notify(StorageChange(created_transaction_ids=[transaction.id]))
        return True

    async def update_transaction(self, transaction: Transaction) -> bool:
        async with self._lock:
            if transaction.id not in self._transactions:
                raise NotFoundError(f"Transaction not found: {transaction.id}")
            self._transactions[transaction.id] = transaction.model_copy()
        self._notify(StorageChange(updated_transaction_ids=[transaction.id]))
        return True

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        async with self._lock:
            removed = self._transactions.pop(transaction_id, None)
        if removed is None:
            return False
        self._notify(StorageChange(deleted_transaction_ids=[transaction_id]))
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
