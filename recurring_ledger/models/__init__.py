"""
Data Models Package

This package contains all Pydantic models used in the Recurring Ledger system.
All data flowing through the system must conform to these schemas.
"""

from recurring_ledger.models.ledger import (
    BatchOperation,
    CreateTransactionOperation,
    FirstOccurrence,
    Interval,
    LedgerTotals,
    ProjectedTotals,
    ScheduledOccurrence,
    Subscription,
    SubscriptionDraft,
    Transaction,
    TransactionDraft,
    TransactionKind,
    UpdateNextBillingDateOperation,
    ValidationIssue,
    ValidationResult,
)
from recurring_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BatchOperation",
    "CreateTransactionOperation",
    "FirstOccurrence",
    "Interval",
    "LedgerTotals",
    "ProjectedTotals",
    "ScheduledOccurrence",
    "Subscription",
    "SubscriptionDraft",
    "Transaction",
    "TransactionDraft",
    "TransactionKind",
    "UpdateNextBillingDateOperation",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
