"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the scheduler decoupled from storage implementation

The scheduler needs very little: list subscriptions, queue writes, and
commit the queued writes atomically. The remaining methods serve the
subscription and manual transaction CRUD flows.

Queued writes are plain operation objects. Building one performs no I/O;
nothing reaches the store until `commit_batch` is awaited.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from recurring_ledger.models.ledger import (
    BatchOperation,
    CreateTransactionOperation,
    Subscription,
    Transaction,
    TransactionKind,
    UpdateNextBillingDateOperation,
)
from recurring_ledger.models.audit import AuditEvent


class StorageChange(BaseModel):
    """Notification sent to change listeners after a successful write."""

    created_transaction_ids: list[UUID] = Field(default_factory=list)
    updated_subscription_ids: list[UUID] = Field(default_factory=list)
    deleted_subscription_ids: list[UUID] = Field(default_factory=list)
    updated_transaction_ids: list[UUID] = Field(default_factory=list)
    deleted_transaction_ids: list[UUID] = Field(default_factory=list)


ChangeListener = Callable[[StorageChange], None]


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (Google Sheets, SQLite, etc.)
    must implement these methods.
    """

    def __init__(self):
        self._listeners: list[ChangeListener] = []

    # -------------------------------------------------------------------------
    # Batched writes (no I/O until commit)
    # -------------------------------------------------------------------------

    def create_transaction(self, transaction: Transaction) -> CreateTransactionOperation:
        """Queue creation of a transaction."""
        return CreateTransactionOperation(transaction=transaction)

    def update_subscription_next_billing_date(
        self,
        subscription_id: UUID,
        next_billing_date: datetime,
        expected_next_billing_date: Optional[datetime] = None,
    ) -> UpdateNextBillingDateOperation:
        """
        Queue a move of a subscription's next billing date.

        If `expected_next_billing_date` is given, the commit fails with
        ConflictError when the stored value no longer matches it.
        """
        return UpdateNextBillingDateOperation(
            subscription_id=subscription_id,
            next_billing_date=next_billing_date,
            expected_next_billing_date=expected_next_billing_date,
        )

    @abstractmethod
    async def commit_batch(self, operations: list[BatchOperation]) -> None:
        """
        Apply all operations atomically.

        Either every operation is applied or none is.

        Raises:
            ConflictError: A subscription was advanced by another writer
            NotFoundError: An update targets a missing subscription
            StorageError: The backend failed; nothing was applied
        """
        pass

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_subscriptions(self) -> list[Subscription]:
        """
        Load every subscription.

        Returns:
            All stored subscriptions, in storage order
        """
        pass

    @abstractmethod
    async def get_subscription(self, subscription_id: UUID) -> Optional[Subscription]:
        """
        Retrieve a subscription by its ID.

        Returns:
            The subscription if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_subscription(self, subscription: Subscription) -> bool:
        """
        Save a new subscription.

        Returns:
            True if saved successfully

        Raises:
            DuplicateError: A subscription with this ID already exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def delete_subscription(self, subscription_id: UUID) -> bool:
        """
        Delete a subscription by ID.

        Transactions it already generated are left alone.

        Returns:
            True if deleted, False if it didn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_transactions(
        self,
        kind: Optional[TransactionKind] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        subscription_id: Optional[UUID] = None,
        limit: Optional[int] = 1000,
    ) -> list[Transaction]:
        """
        List transactions with optional filters.

        Args:
            kind: Filter by income/expense
            date_from: Transactions on or after this time
            date_to: Transactions on or before this time
            subscription_id: Only entries generated by this subscription
            limit: Maximum number of results (None for all)

        Returns:
            Matching transactions, newest first
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> bool:
        """
        Save a single transaction outside of a batch (manual entries).

        Returns:
            True if saved successfully

        Raises:
            DuplicateError: A transaction with this ID already exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> bool:
        """
        Replace a stored transaction with the same ID.

        Returns:
            True if updated

        Raises:
            NotFoundError: No transaction with this ID exists
            StorageError: If update fails
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction by ID.

        Returns:
            True if deleted, False if it didn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Change notification
    # -------------------------------------------------------------------------

    def add_change_listener(self, listener: ChangeListener) -> None:
        """Register a callback invoked after every successful write."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, change: StorageChange) -> None:
        for listener in list(self._listeners):
            listener(change)


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one processor run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConflictError(StorageError):
    """A record changed since it was read; the batch was not applied."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
