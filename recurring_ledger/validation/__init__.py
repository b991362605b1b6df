"""Validation package."""

from recurring_ledger.validation.validator import (
    FieldValidator,
    SubscriptionValidator,
    TransactionValidator,
)

__all__ = ["FieldValidator", "SubscriptionValidator", "TransactionValidator"]
