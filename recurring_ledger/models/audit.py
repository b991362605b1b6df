"""
Audit Models for Recurring Ledger

Every significant action in the system is logged for audit purposes.
This provides:
1. Traceability of every generated transaction back to a processor run
2. Debugging information when a run fails or hits the occurrence cap
3. Ability to reconstruct the history of a subscription

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Subscription lifecycle (user actions)
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_REJECTED = "subscription_rejected"
    SUBSCRIPTION_DELETED = "subscription_deleted"

    # Manual transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_REJECTED = "transaction_rejected"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Processor runs
    PROCESSING_STARTED = "processing_started"
    PROCESSING_COMPLETED = "processing_completed"
    PROCESSING_FAILED = "processing_failed"
    OCCURRENCE_CAP_REACHED = "occurrence_cap_reached"
    UNKNOWN_INTERVAL = "unknown_interval"

    # Persistence
    BATCH_COMMITTED = "batch_committed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'subscription', 'run')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one processor run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.subscription_created(subscription_id, title, ...)
        event = AuditEventBuilder.processing_completed(run_id, created_count, ...)
    """

    @staticmethod
    def subscription_created(
        subscription_id: UUID,
        title: str,
        interval: str,
        next_billing_date: datetime,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_CREATED,
            entity_type="subscription",
            entity_id=subscription_id,
            correlation_id=correlation_id,
            description=f"Subscription created: {title} ({interval})",
            details={
                "interval": interval,
                "next_billing_date": next_billing_date.isoformat(),
            },
            is_user_action=True,
        )

    @staticmethod
    def subscription_rejected(
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="subscription",
            correlation_id=correlation_id,
            description=f"Subscription input rejected with {len(issues)} issues",
            details={
                "issues": issues,
            },
            is_user_action=True,
        )

    @staticmethod
    def subscription_deleted(
        subscription_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_DELETED,
            entity_type="subscription",
            entity_id=subscription_id,
            correlation_id=correlation_id,
            description="Subscription deleted",
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        transaction_id: UUID,
        title: str,
        kind: str,
        date: datetime,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: {title} ({kind})",
            details={
                "date": date.isoformat(),
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_rejected(
        issues: list[dict],
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction input rejected with {len(issues)} issues",
            details={
                "issues": issues,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        transaction_id: UUID,
        changed_fields: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated: {len(changed_fields)} fields changed",
            details={
                "changed_fields": changed_fields,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction deleted",
            is_user_action=True,
        )

    @staticmethod
    def processing_started(
        run_id: UUID,
        now: datetime,
        subscription_count: int
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROCESSING_STARTED,
            severity=AuditSeverity.DEBUG,
            entity_type="run",
            entity_id=run_id,
            correlation_id=run_id,
            description=f"Processing {subscription_count} subscriptions",
            details={
                "now": now.isoformat(),
                "subscription_count": subscription_count,
            },
        )

    @staticmethod
    def processing_completed(
        run_id: UUID,
        created_count: int,
        updated_subscriptions: int,
        capped: bool
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROCESSING_COMPLETED,
            entity_type="run",
            entity_id=run_id,
            correlation_id=run_id,
            description=f"Created {created_count} transactions from due subscriptions",
            details={
                "created_count": created_count,
                "updated_subscriptions": updated_subscriptions,
                "capped": capped,
            },
        )

    @staticmethod
    def processing_failed(
        run_id: UUID,
        stage: str,
        error_message: str
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROCESSING_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="run",
            entity_id=run_id,
            correlation_id=run_id,
            description=f"Processing failed during {stage}",
            error_message=error_message,
            details={
                "stage": stage,
            },
        )

    @staticmethod
    def occurrence_cap_reached(
        run_id: UUID,
        subscription_id: UUID,
        cap: int
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_CAP_REACHED,
            severity=AuditSeverity.WARNING,
            entity_type="subscription",
            entity_id=subscription_id,
            correlation_id=run_id,
            description=f"Occurrence cap of {cap} reached; remaining occurrences deferred",
            details={
                "cap": cap,
            },
        )

    @staticmethod
    def unknown_interval(
        run_id: UUID,
        subscription_id: UUID,
        interval: str
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNKNOWN_INTERVAL,
            severity=AuditSeverity.DEBUG,
            entity_type="subscription",
            entity_id=subscription_id,
            correlation_id=run_id,
            description=f"Unknown interval '{interval}', using fallback advance",
            details={
                "interval": interval,
            },
        )

    @staticmethod
    def batch_committed(
        run_id: UUID,
        operation_count: int
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_COMMITTED,
            severity=AuditSeverity.DEBUG,
            entity_type="run",
            entity_id=run_id,
            correlation_id=run_id,
            description=f"Committed batch of {operation_count} operations",
            details={
                "operation_count": operation_count,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
