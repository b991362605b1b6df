"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Traceability of generated transactions back to a processor run
2. Debugging capability when automated processing fails quietly
3. User can see history of their subscriptions

The audit logger:
- Is async to match the storage boundary
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from recurring_ledger.models.audit import AuditEvent, AuditEventBuilder
from recurring_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(debug_mode: bool = False) -> None:
    """
    Route structlog output through the stdlib root logger.

    Debug-level events (unknown-interval fallbacks, empty runs) are only
    emitted when debug_mode is on.
    """
    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if debug_mode else logging.INFO,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("recurring_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_subscription_created(
        self,
        subscription_id: UUID,
        title: str,
        interval: str,
        next_billing_date: datetime,
        correlation_id: UUID,
    ) -> None:
        """Log a new subscription."""
        await self.log(AuditEventBuilder.subscription_created(
            subscription_id=subscription_id,
            title=title,
            interval=interval,
            next_billing_date=next_billing_date,
            correlation_id=correlation_id,
        ))

    async def log_subscription_rejected(
        self,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log rejected subscription input."""
        await self.log(AuditEventBuilder.subscription_rejected(
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_subscription_deleted(
        self,
        subscription_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.subscription_deleted(
            subscription_id=subscription_id,
            correlation_id=correlation_id,
        ))

    async def log_transaction_created(
        self,
        transaction_id: UUID,
        title: str,
        kind: str,
        date: datetime,
        correlation_id: UUID,
    ) -> None:
        """Log a manually recorded transaction."""
        await self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            title=title,
            kind=kind,
            date=date,
            correlation_id=correlation_id,
        ))

    async def log_transaction_rejected(
        self,
        issues: list[dict],
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_rejected(
            issues=issues,
            correlation_id=correlation_id,
            transaction_id=transaction_id,
        ))

    async def log_transaction_updated(
        self,
        transaction_id: UUID,
        changed_fields: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        transaction_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_processing_started(
        self,
        run_id: UUID,
        now: datetime,
        subscription_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.processing_started(
            run_id=run_id,
            now=now,
            subscription_count=subscription_count,
        ))

    async def log_processing_completed(
        self,
        run_id: UUID,
        created_count: int,
        updated_subscriptions: int,
        capped: bool,
    ) -> None:
        """Log the outcome of a processor run."""
        await self.log(AuditEventBuilder.processing_completed(
            run_id=run_id,
            created_count=created_count,
            updated_subscriptions=updated_subscriptions,
            capped=capped,
        ))

    async def log_processing_failed(
        self,
        run_id: UUID,
        stage: str,
        error_message: str,
    ) -> None:
        """Log a processor run that aborted."""
        await self.log(AuditEventBuilder.processing_failed(
            run_id=run_id,
            stage=stage,
            error_message=error_message,
        ))

    async def log_occurrence_cap_reached(
        self,
        run_id: UUID,
        subscription_id: UUID,
        cap: int,
    ) -> None:
        await self.log(AuditEventBuilder.occurrence_cap_reached(
            run_id=run_id,
            subscription_id=subscription_id,
            cap=cap,
        ))

    async def log_unknown_interval(
        self,
        run_id: UUID,
        subscription_id: UUID,
        interval: str,
    ) -> None:
        await self.log(AuditEventBuilder.unknown_interval(
            run_id=run_id,
            subscription_id=subscription_id,
            interval=interval,
        ))

    async def log_batch_committed(
        self,
        run_id: UUID,
        operation_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.batch_committed(
            run_id=run_id,
            operation_count=operation_count,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action or processor run.
    Pass it through all subsequent operations.
    """
    return uuid4()
