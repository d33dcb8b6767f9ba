"""Queue scheduling, session lifecycle and priority review selection."""

from .preferences import QueuePreferences
from .queue import Continue, QueueInfo, QueueScheduler, QueueSessionState, SelectedItem
from .review import PriorityReviewBuilder, ReviewEntry, ReviewKind, ReviewSelection, mix_review_entries
from .session import QueueSessionManager, SessionSummary

__all__ = [
    "QueueScheduler",
    "QueueInfo",
    "QueueSessionState",
    "SelectedItem",
    "Continue",
    "QueuePreferences",
    "QueueSessionManager",
    "SessionSummary",
    "PriorityReviewBuilder",
    "ReviewEntry",
    "ReviewKind",
    "ReviewSelection",
    "mix_review_entries",
]
