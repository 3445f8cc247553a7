"""
Scheduled and on-demand account syncs.
"""

from .executor import SyncExecutor
from .scheduler import (
    DEFAULT_ANCHORS,
    ScheduleAnchors,
    SyncScheduler,
    TickSummary,
    is_due,
    select_due_accounts,
)

__all__ = [
    "SyncExecutor",
    "SyncScheduler",
    "ScheduleAnchors",
    "DEFAULT_ANCHORS",
    "TickSummary",
    "is_due",
    "select_due_accounts",
]
