"""Storage abstractions for opencode-ralph."""

from .models import RunState
from .notes import DEFAULT_NOTES, NotesJournal, NotesJournalError
from .state import RateLimits, RateWindow, StateStore, count_recent, prune_timestamps

__all__ = [
    "DEFAULT_NOTES",
    "NotesJournal",
    "NotesJournalError",
    "RateLimits",
    "RateWindow",
    "RunState",
    "StateStore",
    "count_recent",
    "prune_timestamps",
]
