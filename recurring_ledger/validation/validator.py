"""
Subscription and Transaction Input Validation

DESIGN DECISION: Validation of user input happens BEFORE any schedule is
computed or anything is saved, and it never silently fixes values.
Every problem is reported as a ValidationIssue so the form can show it.

The scheduler itself is lenient (it clamps anchors and falls back on
unknown intervals) because stored data must never stop a run. User input
is held to a stricter standard: a bad value is rejected, not clamped.
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

from recurring_ledger.config import AppSettings, get_settings
from recurring_ledger.models.ledger import (
    Interval,
    SubscriptionDraft,
    TransactionDraft,
    ValidationIssue,
    ValidationResult,
)


class FieldValidator:
    """Checks shared by every ledger entry form: title, amount, category."""

    entity_name = "Entry"

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def parse_amount(self, value: str) -> Decimal:
        """Parse an amount that already passed validation."""
        return Decimal(value.strip())

    def _validate_title(self, title: str) -> list[ValidationIssue]:
        title = (title or "").strip()
        if not title:
            return [ValidationIssue(
                field="title",
                issue_type="missing",
                message="Title is required.",
                severity="error",
            )]
        max_length = self._settings.max_title_length
        if len(title) > max_length:
            return [ValidationIssue(
                field="title",
                issue_type="too_long",
                message=f"Title must be {max_length} characters or fewer.",
                severity="error",
            )]
        return []

    def _validate_amount(self, amount: str) -> list[ValidationIssue]:
        if not amount or not amount.strip():
            return [ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required.",
                severity="error",
            )]
        try:
            value = Decimal(amount.strip())
        except InvalidOperation:
            return [ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message="Amount must be a valid number.",
                severity="error",
            )]
        if value.is_nan():
            return [ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message="Amount must be a valid number.",
                severity="error",
            )]
        if not value.is_finite():
            return [ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be a finite number.",
                severity="error",
            )]
        if value <= 0:
            return [ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero.",
                severity="error",
            )]
        return []

    def _validate_category(self, category_id: str) -> list[ValidationIssue]:
        if not category_id or not category_id.strip():
            return [ValidationIssue(
                field="category_id",
                issue_type="missing",
                message="Please select a category.",
                severity="error",
            )]
        return []

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Build a short message for the form.

        Errors first; informational notes only when nothing is wrong.
        """
        if result.is_valid:
            notes = [i.message for i in result.issues if i.severity != "error"]
            if notes:
                return f"{self.entity_name} looks good. Note: " + " ".join(notes)
            return f"{self.entity_name} looks good."

        errors = [i.message for i in result.issues if i.severity == "error"]
        if len(errors) == 1:
            return errors[0]
        return "Please fix the following:\n" + "\n".join(f"- {msg}" for msg in errors)


class SubscriptionValidator(FieldValidator):
    """Validates a SubscriptionDraft submitted by the user."""

    entity_name = "Subscription"

    def validate(self, draft: SubscriptionDraft) -> ValidationResult:
        """
        Check every field of the draft.

        Returns a ValidationResult; `is_valid` is False if any error-level
        issue was found.
        """
        issues: list[ValidationIssue] = []
        issues.extend(self._validate_title(draft.title))
        issues.extend(self._validate_amount(draft.amount))
        issues.extend(self._validate_category(draft.category_id))
        issues.extend(self._validate_schedule(draft))

        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    def _validate_schedule(self, draft: SubscriptionDraft) -> list[ValidationIssue]:
        try:
            interval = Interval(draft.interval)
        except ValueError:
            return [ValidationIssue(
                field="interval",
                issue_type="invalid_value",
                message=f"Unknown interval '{draft.interval}'. "
                        f"Choose one of: {', '.join(i.value for i in Interval)}.",
                severity="error",
            )]

        issues = []
        if interval == Interval.WEEKLY and draft.weekday is not None:
            if not 0 <= draft.weekday <= 6:
                issues.append(ValidationIssue(
                    field="weekday",
                    issue_type="out_of_range",
                    message="Weekday must be between 0 (Monday) and 6 (Sunday).",
                    severity="error",
                ))
        elif interval == Interval.MONTHLY and draft.month_day is not None:
            if not 1 <= draft.month_day <= 31:
                issues.append(ValidationIssue(
                    field="month_day",
                    issue_type="out_of_range",
                    message="Day of month must be between 1 and 31.",
                    severity="error",
                ))
            elif draft.month_day > 28:
                issues.append(ValidationIssue(
                    field="month_day",
                    issue_type="short_months",
                    message=f"In months without a day {draft.month_day}, "
                            "the last day of the month is used.",
                    severity="info",
                ))
        elif interval == Interval.YEARLY and draft.month is not None:
            if not 0 <= draft.month <= 11:
                issues.append(ValidationIssue(
                    field="month",
                    issue_type="out_of_range",
                    message="Month must be between 0 (January) and 11 (December).",
                    severity="error",
                ))
        return issues


class TransactionValidator(FieldValidator):
    """
    Validates a manual TransactionDraft.

    Manual entries record money that already moved, so a date from
    tomorrow onwards is rejected. Generated transactions never pass through
    here; the processor dates them at their billing date.
    """

    entity_name = "Transaction"

    def validate(
        self,
        draft: TransactionDraft,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Check every field of the draft.

        Args:
            draft: The submitted form
            now: Local reference time for the future-date check
        """
        issues: list[ValidationIssue] = []
        issues.extend(self._validate_title(draft.title))
        issues.extend(self._validate_amount(draft.amount))
        issues.extend(self._validate_category(draft.category_id))
        issues.extend(self._validate_date(draft.date, now or datetime.now()))

        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    def _validate_date(
        self,
        date: Optional[datetime],
        now: datetime,
    ) -> list[ValidationIssue]:
        if date is None:
            return [ValidationIssue(
                field="date",
                issue_type="missing",
                message="Please enter a valid date.",
                severity="error",
            )]
        start_of_tomorrow = datetime(now.year, now.month, now.day) + timedelta(days=1)
        if date >= start_of_tomorrow:
            return [ValidationIssue(
                field="date",
                issue_type="in_future",
                message="Date cannot be in the future.",
                severity="error",
            )]
        return []
