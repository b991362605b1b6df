"""
Recurring Ledger - Source Package

A personal income/expense ledger that automates recurring transactions
("subscriptions": rent, salary, streaming fees) on daily, weekly, monthly
and yearly cadences.

DESIGN PRINCIPLES:
1. One transaction per due occurrence, dated when it was due
2. Anchors pin the recurrence; clamping never drifts the billing day
3. All writes of a run land in one atomic batch
4. Automated processing fails quietly and retries on the next trigger
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Recurring Ledger Team"
