"""
Tests for Recurring Ledger

Test strategy:
1. Unit tests for individual components (models, date arithmetic, validators)
2. Integration tests for flows (with in-memory storage)
3. No real API calls in tests (Google Sheets is mocked)
"""

import pytest
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from recurring_ledger.models.ledger import (
    FirstOccurrence,
    Interval,
    LedgerTotals,
    ProjectedTotals,
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


def make_subscription(**overrides) -> Subscription:
    fields = dict(
        kind=TransactionKind.EXPENSE,
        title="Rent",
        amount=Decimal("1200.00"),
        category_id="housing",
        interval=Interval.MONTHLY,
        next_billing_date=datetime(2025, 1, 31, 12),
        anchor_day=31,
    )
    fields.update(overrides)
    return Subscription(**fields)


class TestSubscriptionModel:
    """Tests for the Subscription model."""

    def test_subscription_creation(self):
        """Test Subscription model creation."""
        sub = make_subscription()
        assert sub.title == "Rent"
        assert sub.interval == Interval.MONTHLY
        assert sub.anchor_day == 31
        assert sub.anchor_month is None

    def test_subscription_strips_whitespace(self):
        """Test that whitespace is stripped from the title."""
        sub = make_subscription(title="  Netflix  ")
        assert sub.title == "Netflix"

    def test_subscription_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        with pytest.raises(ValueError):
            make_subscription(amount=Decimal("0"))
        with pytest.raises(ValueError):
            make_subscription(amount=Decimal("-5"))

    def test_subscription_normalizes_out_of_range_anchors(self):
        """Test stored anchors are clamped (day) or wrapped (month), not rejected."""
        assert make_subscription(anchor_day=32).anchor_day == 31
        assert make_subscription(anchor_day=0).anchor_day == 1
        yearly = make_subscription(interval=Interval.YEARLY, anchor_day=1, anchor_month=12)
        assert yearly.anchor_month == 0
        assert make_subscription(interval=Interval.YEARLY, anchor_month=-1).anchor_month == 11

    def test_subscription_rejects_non_numeric_anchor(self):
        with pytest.raises(ValueError):
            make_subscription(anchor_day="last")

    def test_known_interval_string_becomes_enum(self):
        """Test interval strings read from storage map onto the enum."""
        sub = make_subscription(interval="weekly", anchor_day=None)
        assert sub.interval is Interval.WEEKLY
        assert sub.has_known_interval is True

    def test_unknown_interval_is_preserved(self):
        """Test an unrecognized interval is kept instead of rejected."""
        sub = make_subscription(interval="fortnightly", anchor_day=None)
        assert sub.interval == "fortnightly"
        assert sub.has_known_interval is False

    def test_is_due_includes_exact_billing_time(self):
        """Test due check is inclusive of the billing date."""
        sub = make_subscription()
        assert sub.is_due(datetime(2025, 1, 31, 12)) is True
        assert sub.is_due(datetime(2025, 1, 31, 11, 59)) is False


class TestTransactionModel:
    """Tests for the Transaction model."""

    def test_generated_transaction(self):
        """Test is_generated follows source_subscription_id."""
        txn = Transaction(
            kind=TransactionKind.EXPENSE,
            title="Rent",
            amount=Decimal("1200"),
            date=datetime(2025, 1, 31, 12),
            source_subscription_id=uuid4(),
        )
        assert txn.is_generated is True

    def test_signed_amount(self):
        """Test expenses are negative and income positive."""
        expense = Transaction(
            kind=TransactionKind.EXPENSE,
            title="Rent",
            amount=Decimal("1200"),
            date=datetime(2025, 1, 31, 12),
        )
        income = Transaction(
            kind=TransactionKind.INCOME,
            title="Salary",
            amount=Decimal("3000"),
            date=datetime(2025, 1, 31, 12),
        )
        assert expense.signed_amount == Decimal("-1200")
        assert income.signed_amount == Decimal("3000")
        assert expense.is_generated is False


class TestBatchOperations:
    """Tests for queued batch operations."""

    def test_update_rejects_backwards_move(self):
        """Test that next billing date cannot move backwards."""
        with pytest.raises(ValueError, match="Next billing date cannot move backwards"):
            UpdateNextBillingDateOperation(
                subscription_id=uuid4(),
                next_billing_date=datetime(2025, 1, 1, 12),
                expected_next_billing_date=datetime(2025, 2, 1, 12),
            )

    def test_update_without_expectation(self):
        """Test an update without compare-and-set value is accepted."""
        op = UpdateNextBillingDateOperation(
            subscription_id=uuid4(),
            next_billing_date=datetime(2025, 1, 1, 12),
        )
        assert op.expected_next_billing_date is None
        assert op.op == "update_next_billing_date"


class TestDraftAndProjectionModels:
    """Tests for input and projection models."""

    def test_draft_defaults(self):
        """Test SubscriptionDraft defaults to a monthly expense."""
        draft = SubscriptionDraft(title=" Gym ", amount=" 25 ")
        assert draft.kind == TransactionKind.EXPENSE
        assert draft.interval == "monthly"
        assert draft.title == "Gym"
        assert draft.amount == "25"

    def test_first_occurrence_bounds(self):
        """Test FirstOccurrence rejects an invalid anchor month."""
        with pytest.raises(ValueError):
            FirstOccurrence(next_billing_date=datetime(2025, 1, 1, 12), anchor_month=12)

    def test_projected_totals_net(self):
        """Test net is income minus expense."""
        totals = ProjectedTotals(
            until=datetime(2025, 2, 1),
            occurrence_count=3,
            income=Decimal("3000"),
            expense=Decimal("1250"),
        )
        assert totals.net == Decimal("1750")

    def test_projected_totals_rejects_negative(self):
        with pytest.raises(ValueError):
            ProjectedTotals(
                until=datetime(2025, 2, 1),
                occurrence_count=0,
                expense=Decimal("-1"),
            )

    def test_transaction_draft_defaults(self):
        draft = TransactionDraft(title=" Lunch ", amount=" 12 ")
        assert draft.kind == TransactionKind.EXPENSE
        assert draft.title == "Lunch"
        assert draft.date is None

    def test_ledger_totals_balance(self):
        """Test balance is income minus expenses and may go negative."""
        totals = LedgerTotals(
            transaction_count=2,
            total_income=Decimal("100"),
            total_expenses=Decimal("250.50"),
        )
        assert totals.balance == Decimal("-150.50")


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_CREATED,
            description="Subscription created",
        )
        assert event.event_type == AuditEventType.SUBSCRIPTION_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.PROCESSING_COMPLETED,
            description="Created 3 transactions",
            details={"created_count": 3},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "processing_completed"
        assert log_dict["details"]["created_count"] == 3

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_DELETED,
            description="Subscription deleted",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "subscription_deleted"  # event_type
        assert row[10] == "True"  # is_user_action

    def test_audit_event_builder_subscription_created(self):
        """Test AuditEventBuilder.subscription_created."""
        correlation_id = uuid4()
        subscription_id = uuid4()

        event = AuditEventBuilder.subscription_created(
            subscription_id=subscription_id,
            title="Rent",
            interval="monthly",
            next_billing_date=datetime(2025, 1, 31, 12),
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.SUBSCRIPTION_CREATED
        assert event.entity_id == subscription_id
        assert event.correlation_id == correlation_id
        assert event.is_user_action is True
        assert event.details["next_billing_date"] == "2025-01-31T12:00:00"

    def test_audit_event_builder_cap_reached(self):
        """Test AuditEventBuilder.occurrence_cap_reached."""
        run_id = uuid4()
        subscription_id = uuid4()

        event = AuditEventBuilder.occurrence_cap_reached(
            run_id=run_id,
            subscription_id=subscription_id,
            cap=500,
        )

        assert event.event_type == AuditEventType.OCCURRENCE_CAP_REACHED
        assert event.severity == AuditSeverity.WARNING
        assert event.entity_id == subscription_id
        assert event.correlation_id == run_id
        assert event.is_user_action is False

    def test_audit_event_builder_transaction_updated(self):
        transaction_id = uuid4()
        event = AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            changed_fields=["amount", "date"],
            correlation_id=uuid4(),
        )
        assert event.event_type == AuditEventType.TRANSACTION_UPDATED
        assert event.entity_type == "transaction"
        assert event.details["changed_fields"] == ["amount", "date"]
        assert event.is_user_action is True


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required.",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.first_error_message == "Amount is required."

    def test_validation_result_info_only(self):
        """Test that informational issues don't count as errors."""
        result = ValidationResult(
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="month_day",
                    issue_type="short_months",
                    message="Last day used in short months",
                    severity="info",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
        assert result.first_error_message is None


class TestIntervals:
    """Tests for the interval enum."""

    def test_all_intervals_exist(self):
        """Test that expected intervals exist."""
        for value in ["daily", "weekly", "monthly", "yearly"]:
            assert Interval(value) is not None

    def test_interval_values(self):
        assert Interval.MONTHLY.value == "monthly"
        assert TransactionKind.INCOME.value == "income"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
