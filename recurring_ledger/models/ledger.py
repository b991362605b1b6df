"""
Core Data Models for Recurring Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: Billing dates are naive local datetimes.
Every scheduled date is normalized to a fixed hour (noon by default), so
daylight-saving transitions can never move an occurrence onto another
calendar day.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """Direction of money flow."""
    INCOME = "income"
    EXPENSE = "expense"


class Interval(str, Enum):
    """
    Supported recurrence cadences.

    DESIGN DECISION: Stored records may still carry an interval string this
    enum doesn't know (older data, manual edits). Such values are kept as
    plain strings and the date advancer falls back to a fixed step instead
    of refusing the record.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


IntervalValue = Annotated[
    Union[Interval, str],
    Field(union_mode="left_to_right"),
]


# =============================================================================
# CORE LEDGER MODELS
# =============================================================================

class Subscription(BaseModel):
    """
    A recurring income or expense.

    `next_billing_date` is the next occurrence that has NOT been
    materialized yet. Only the processor (and explicit user edits) move it.

    Anchors:
    - monthly: `anchor_day` is the target day of month (1-31)
    - yearly: `anchor_month` (0-11, January = 0) and `anchor_day`
    - daily/weekly: no anchors
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique subscription ID"
    )

    kind: TransactionKind = Field(
        ...,
        description="Income or expense"
    )
    title: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display title (e.g. 'Rent')"
    )
    amount: Annotated[
        Decimal,
        Field(gt=0, description="Amount per occurrence (always positive)")
    ]
    category_id: str = Field(
        default="",
        description="Category reference (not enforced by the scheduler)"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000,
    )

    # Recurrence rule
    interval: IntervalValue = Field(
        ...,
        description="Recurrence cadence"
    )
    next_billing_date: datetime = Field(
        ...,
        description="Next occurrence not yet materialized"
    )
    anchor_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description="Target day of month for monthly/yearly recurrences"
    )
    anchor_month: Optional[int] = Field(
        default=None,
        ge=0,
        le=11,
        description="Target month (0-11) for yearly recurrences"
    )

    # Timestamps
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
    )

    @field_validator('anchor_day', mode='before')
    @classmethod
    def clamp_anchor_day(cls, v):
        """Stored days outside 1-31 are clamped, never rejected."""
        if v is None or v == "":
            return None
        return min(max(int(v), 1), 31)

    @field_validator('anchor_month', mode='before')
    @classmethod
    def fold_anchor_month(cls, v):
        """Stored months outside 0-11 wrap around, as the date advancer does."""
        if v is None or v == "":
            return None
        return int(v) % 12

    @property
    def has_known_interval(self) -> bool:
        return isinstance(self.interval, Interval)

    def is_due(self, now: datetime) -> bool:
        """An occurrence is due once its billing date is at or before now."""
        return self.next_billing_date <= now


class Transaction(BaseModel):
    """
    A single income or expense entry.

    Transactions created by the processor are dated at the occurrence's
    billing date, not at the time the processor ran. Once created they are
    independent of the subscription that produced them.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    kind: TransactionKind
    title: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    amount: Annotated[
        Decimal,
        Field(gt=0, description="Transaction amount (always positive)")
    ]
    category_id: str = ""
    date: datetime = Field(
        ...,
        description="When the transaction happened (occurrence date for generated entries)"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1100,
    )

    # Traceability only - no foreign key semantics
    source_subscription_id: Optional[UUID] = Field(
        default=None,
        description="Subscription that generated this entry, if any"
    )

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
    )

    @property
    def is_generated(self) -> bool:
        return self.source_subscription_id is not None

    @property
    def signed_amount(self) -> Decimal:
        """Amount with expenses negative."""
        if self.kind == TransactionKind.EXPENSE:
            return -self.amount
        return self.amount


class FirstOccurrence(BaseModel):
    """Schedule fields computed when a subscription is created."""

    next_billing_date: datetime
    anchor_day: Optional[int] = Field(default=None, ge=1, le=31)
    anchor_month: Optional[int] = Field(default=None, ge=0, le=11)


class SubscriptionDraft(BaseModel):
    """
    Raw user input for a new subscription.

    Nothing here is trusted yet - it goes through SubscriptionValidator
    before a Subscription is built from it. Amount is kept as text because
    that is what the form submits.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: TransactionKind = TransactionKind.EXPENSE
    title: str = ""
    amount: str = ""
    category_id: str = ""
    notes: Optional[str] = None
    interval: str = Interval.MONTHLY.value

    # Interval-specific selectors
    weekday: Optional[int] = Field(
        default=None,
        description="Weekly: target weekday, Monday = 0"
    )
    month_day: Optional[int] = Field(
        default=None,
        description="Monthly: target day of month"
    )
    month: Optional[int] = Field(
        default=None,
        description="Yearly: target month, January = 0"
    )


class TransactionDraft(BaseModel):
    """
    Raw user input for a manual transaction.

    Checked by TransactionValidator before a Transaction is built from it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: TransactionKind = TransactionKind.EXPENSE
    title: str = ""
    amount: str = ""
    category_id: str = ""
    date: Optional[datetime] = None
    notes: Optional[str] = None


# =============================================================================
# BATCH OPERATIONS
# =============================================================================

class CreateTransactionOperation(BaseModel):
    """Queued creation of one transaction."""

    op: Literal["create_transaction"] = "create_transaction"
    transaction: Transaction


class UpdateNextBillingDateOperation(BaseModel):
    """
    Queued move of a subscription's next billing date.

    `expected_next_billing_date` is the value the writer read before
    advancing. Storage rejects the whole batch if the stored value differs,
    which is how overlapping runs are kept from double-processing.
    """

    op: Literal["update_next_billing_date"] = "update_next_billing_date"
    subscription_id: UUID
    next_billing_date: datetime
    expected_next_billing_date: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_monotonic(self) -> 'UpdateNextBillingDateOperation':
        """Billing dates only ever move forward."""
        if self.expected_next_billing_date is not None:
            if self.next_billing_date < self.expected_next_billing_date:
                raise ValueError("Next billing date cannot move backwards")
        return self


BatchOperation = Union[CreateTransactionOperation, UpdateNextBillingDateOperation]


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'too_long')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Result of validating user input for a subscription."""

    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    is_valid: bool
    issues: list[ValidationIssue] = Field(
        default_factory=list,
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def first_error_message(self) -> Optional[str]:
        for issue in self.issues:
            if issue.severity == "error":
                return issue.message
        return None


# =============================================================================
# SCHEDULE PROJECTION MODELS
# =============================================================================

class ScheduledOccurrence(BaseModel):
    """A projected (not yet materialized) occurrence."""

    subscription_id: UUID
    title: str
    kind: TransactionKind
    amount: Decimal
    date: datetime


class ProjectedTotals(BaseModel):
    """Sums of projected occurrences up to a cutoff."""

    until: datetime
    occurrence_count: int = Field(ge=0)
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")

    @property
    def net(self) -> Decimal:
        return self.income - self.expense

    @field_validator('income', 'expense')
    @classmethod
    def non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Totals are sums of positive amounts")
        return v


class LedgerTotals(BaseModel):
    """Sums of recorded transactions, optionally within a date range."""

    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    transaction_count: int = Field(ge=0)
    total_income: Decimal = Field(default=Decimal("0"), ge=0)
    total_expenses: Decimal = Field(default=Decimal("0"), ge=0)

    @property
    def balance(self) -> Decimal:
        """Income minus expenses."""
        return self.total_income - self.total_expenses
