"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the persistent backend because:
1. Users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

ATOMICITY:
A processor run is committed as ONE `spreadsheets.batchUpdate` call
(appendCells for new transactions, updateCells for advanced subscriptions).
The Sheets API applies a batchUpdate all-or-nothing: if any request is
invalid, none is applied. Before sending, the stored next billing dates
are compared with what the processor read, so an overlapping run is
rejected with ConflictError instead of double-processing.

TRADEOFFS:
- The compare-and-set check and the batchUpdate are two calls; a writer
  slipping in between them is not detected. Triggers are rare enough in
  practice.
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recurring_ledger.config import get_settings
from recurring_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageChange,
    StorageError,
)


logger = structlog.get_logger(__name__)


# Column mappings for Subscriptions sheet
SUBSCRIPTION_COLUMNS = [
    "id",
    "kind",
    "title",
    "amount",
    "category_id",
    "notes",
    "interval",
    "next_billing_date",
    "anchor_day",
    "anchor_month",
    "created_at",
    "updated_at",
]

# Column mappings for Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "kind",
    "title",
    "amount",
    "category_id",
    "date",
    "notes",
    "source_subscription_id",
    "created_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

NEXT_BILLING_DATE_COLUMN = SUBSCRIPTION_COLUMNS.index("next_billing_date")
UPDATED_AT_COLUMN = SUBSCRIPTION_COLUMNS.index("updated_at")

# Errors that a retry cannot fix
_NON_RETRYABLE = (ConflictError, NotFoundError, DuplicateError)


def _safe_getter(row: list):
    """Return a getter that tolerates short rows and blank cells."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _string_cell(value: str) -> dict:
    return {"userEnteredValue": {"stringValue": value}}


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_subscriptions_sheet(self) -> gspread.Worksheet:
        """Get or create the Subscriptions worksheet."""
        return self._get_or_create_sheet(
            self._settings.subscriptions_sheet_name, SUBSCRIPTION_COLUMNS, 500
        )

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, 5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000
        )


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    One subscription per row in the Subscriptions sheet, one transaction
    per row in the Transactions sheet. Dates are ISO-8601 strings.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        super().__init__()
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _subscription_to_row(self, sub: Subscription) -> list:
        interval = sub.interval.value if hasattr(sub.interval, "value") else sub.interval
        return [
            str(sub.id),
            sub.kind.value,
            sub.title,
            str(sub.amount),
            sub.category_id,
            sub.notes or "",
            interval,
            sub.next_billing_date.isoformat(),
            str(sub.anchor_day) if sub.anchor_day is not None else "",
            str(sub.anchor_month) if sub.anchor_month is not None else "",
            sub.created_at.isoformat(),
            sub.updated_at.isoformat(),
        ]

    def _row_to_subscription(self, row: list) -> Subscription:
        safe_get = _safe_getter(row)
        sub = Subscription(
            id=UUID(safe_get(0)),
            kind=TransactionKind(safe_get(1)),
            title=safe_get(2),
            amount=Decimal(safe_get(3)),
            category_id=safe_get(4),
            notes=safe_get(5) or None,
            interval=safe_get(6),
            next_billing_date=datetime.fromisoformat(safe_get(7)),
            anchor_day=int(safe_get(8)) if safe_get(8) else None,
            anchor_month=int(safe_get(9)) if safe_get(9) else None,
            created_at=datetime.fromisoformat(safe_get(10)),
            updated_at=datetime.fromisoformat(safe_get(11)),
        )

        stored = (safe_get(8), safe_get(9))
        normalized = (
            str(sub.anchor_day) if sub.anchor_day is not None else "",
            str(sub.anchor_month) if sub.anchor_month is not None else "",
        )
        if stored != normalized:
            logger.debug(
                "subscription_anchor_normalized",
                subscription_id=str(sub.id),
                stored_anchor_day=stored[0],
                stored_anchor_month=stored[1],
                anchor_day=sub.anchor_day,
                anchor_month=sub.anchor_month,
            )
        return sub

    def _transaction_to_row(self, txn: Transaction) -> list:
        return [
            str(txn.id),
            txn.kind.value,
            txn.title,
            str(txn.amount),
            txn.category_id,
            txn.date.isoformat(),
            txn.notes or "",
            str(txn.source_subscription_id) if txn.source_subscription_id else "",
            txn.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        safe_get = _safe_getter(row)
        return Transaction(
            id=UUID(safe_get(0)),
            kind=TransactionKind(safe_get(1)),
            title=safe_get(2),
            amount=Decimal(safe_get(3)),
            category_id=safe_get(4),
            date=datetime.fromisoformat(safe_get(5)),
            notes=safe_get(6) or None,
            source_subscription_id=UUID(safe_get(7)) if safe_get(7) else None,
            created_at=datetime.fromisoformat(safe_get(8)),
        )

    # -------------------------------------------------------------------------
    # Batch commit
    # -------------------------------------------------------------------------

    def _build_batch_requests(
        self,
        operations: list[BatchOperation],
        subscriptions_sheet: gspread.Worksheet,
        transactions_sheet: gspread.Worksheet,
    ) -> tuple[list[dict], StorageChange]:
        """
        Check the batch against the current sheet and build the requests.

        Raises ConflictError / NotFoundError before anything is sent.
        """
        # Locate every subscription row (row 1 is the header)
        located: dict[str, tuple[int, str]] = {}
        for row_index, row in enumerate(subscriptions_sheet.get_all_values()[1:], start=1):
            if row and row[0]:
                stored = row[NEXT_BILLING_DATE_COLUMN] if len(row) > NEXT_BILLING_DATE_COLUMN else ""
                located[row[0]] = (row_index, stored)

        new_rows: list[dict] = []
        requests: list[dict] = []
        change = StorageChange()
        staged: dict[str, datetime] = {}
        updated_at = datetime.utcnow().isoformat()

        for operation in operations:
            if isinstance(operation, CreateTransactionOperation):
                row = self._transaction_to_row(operation.transaction)
                new_rows.append({"values": [_string_cell(value) for value in row]})
                change.created_transaction_ids.append(operation.transaction.id)
            elif isinstance(operation, UpdateNextBillingDateOperation):
                key = str(operation.subscription_id)
                if key not in located:
                    raise NotFoundError(f"Subscription not found: {key}")
                row_index, stored = located[key]
                current = staged.get(key) or datetime.fromisoformat(stored)
                expected = operation.expected_next_billing_date
                if expected is not None and current != expected:
                    raise ConflictError(
                        f"Subscription {key} was advanced to {current.isoformat()} "
                        f"(expected {expected.isoformat()})"
                    )
                staged[key] = operation.next_billing_date
                for column, value in (
                    (NEXT_BILLING_DATE_COLUMN, operation.next_billing_date.isoformat()),
                    (UPDATED_AT_COLUMN, updated_at),
                ):
                    requests.append({
                        "updateCells": {
                            "range": {
                                "sheetId": subscriptions_sheet.id,
                                "startRowIndex": row_index,
                                "endRowIndex": row_index + 1,
                                "startColumnIndex": column,
                                "endColumnIndex": column + 1,
                            },
                            "rows": [{"values": [_string_cell(value)]}],
                            "fields": "userEnteredValue",
                        }
                    })
                change.updated_subscription_ids.append(operation.subscription_id)
            else:
                raise StorageError(f"Unsupported operation: {operation!r}")

        if new_rows:
            requests.insert(0, {
                "appendCells": {
                    "sheetId": transactions_sheet.id,
                    "rows": new_rows,
                    "fields": "userEnteredValue",
                }
            })

        return requests, change

    @retry(
        retry=retry_if_not_exception_type(_NON_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def commit_batch(self, operations: list[BatchOperation]) -> None:
        """Commit all operations with a single atomic batchUpdate."""
        if not operations:
            return
        try:
            subscriptions_sheet = self._client.get_subscriptions_sheet()
            transactions_sheet = self._client.get_transactions_sheet()
            requests, change = self._build_batch_requests(
                operations, subscriptions_sheet, transactions_sheet
            )
            self._client.get_spreadsheet().batch_update({"requests": requests})
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to commit batch: {e}")

        self._notify(change)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def list_subscriptions(self) -> list[Subscription]:
        try:
            sheet = self._client.get_subscriptions_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to list subscriptions: {e}")

        subscriptions = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                subscriptions.append(self._row_to_subscription(row))
            except Exception as e:
                logger.warning("subscription_row_skipped", row_id=row[0], error=str(e))
        return subscriptions

    async def get_subscription(self, subscription_id: UUID) -> Optional[Subscription]:
        try:
            sheet = self._client.get_subscriptions_sheet()
            all_rows = sheet.get_all_values()[1:]

            for row in all_rows:
                if row and row[0] == str(subscription_id):
                    return self._row_to_subscription(row)

            return None
        except Exception as e:
            raise StorageError(f"Failed to get subscription: {e}")

    @retry(
        retry=retry_if_not_exception_type(_NON_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_subscription(self, subscription: Subscription) -> bool:
        try:
            sheet = self._client.get_subscriptions_sheet()
            existing = sheet.get_all_values()[1:]
            if any(row and row[0] == str(subscription.id) for row in existing):
                raise DuplicateError(f"Subscription already exists: {subscription.id}")
            sheet.append_row(self._subscription_to_row(subscription), value_input_option="RAW")
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save subscription: {e}")

        self._notify(StorageChange(updated_subscription_ids=[subscription.id]))
        return True

    async def delete_subscription(self, subscription_id: UUID) -> bool:
        try:
            sheet = self._client.get_subscriptions_sheet()
            all_rows = sheet.get_all_values()

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(subscription_id):
                    sheet.delete_rows(idx)
                    break
            else:
                return False
        except Exception as e:
            raise StorageError(f"Failed to delete subscription: {e}")

        self._notify(StorageChange(deleted_subscription_ids=[subscription_id]))
        return True

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def list_transactions(
        self,
        kind: Optional[TransactionKind] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        subscription_id: Optional[UUID] = None,
        limit: Optional[int] = 1000,
    ) -> list[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                txn = self._row_to_transaction(row)
            except Exception:
                continue  # Skip malformed rows

            # Apply filters
            if kind and txn.kind != kind:
                continue
            if date_from and txn.date < date_from:
                continue
            if date_to and txn.date > date_to:
                continue
            if subscription_id and txn.source_subscription_id != subscription_id:
                continue

            transactions.append(txn)

        # Sort by date descending (newest first)
        transactions.sort(key=lambda t: t.date, reverse=True)
        return transactions[:limit]

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]

            for row in all_rows:
                if row and row[0] == str(transaction_id):
                    return self._row_to_transaction(row)

            return None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    @retry(
        retry=retry_if_not_exception_type(_NON_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_transaction(self, transaction: Transaction) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            existing = sheet.get_all_values()[1:]
            if any(row and row[0] == str(transaction.id) for row in existing):
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
            sheet.append_row(self._transaction_to_row(transaction), value_input_option="RAW")
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

        self._notify(StorageChange(created_transaction_ids=[transaction.id]))
        return True

    async def update_transaction(self, transaction: Transaction) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()

            for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
                if row and row[0] == str(transaction.id):
                    new_row = self._transaction_to_row(transaction)
                    for col_idx, value in enumerate(new_row, start=1):
                        sheet.update_cell(idx, col_idx, value)
                    break
            else:
                raise NotFoundError(f"Transaction not found: {transaction.id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

        self._notify(StorageChange(updated_transaction_ids=[transaction.id]))
        return True

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(transaction_id):
                    sheet.delete_rows(idx)
                    break
            else:
                return False
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

        self._notify(StorageChange(deleted_transaction_ids=[transaction_id]))
        return True


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)
        details: dict[str, Any] = json.loads(safe_get(8)) if safe_get(8) else {}

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=details,
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging should not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]

            events = []
            for row in all_rows:
                if row and len(row) > 6 and row[6] == str(correlation_id):
                    try:
                        events.append(self._row_to_event(row))
                    except Exception:
                        continue

            # Sort chronologically
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]

            events = []
            for row in all_rows:
                if row and row[0]:
                    try:
                        events.append(self._row_to_event(row))
                    except Exception:
                        continue

            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
