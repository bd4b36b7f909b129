# errors.py
"""Typed failures surfaced by the matching engine to its callers."""
from typing import Optional


class MatchingError(Exception):
    """Base class for every engine failure."""


class NoCandidates(MatchingError):
    """Nobody suitable is waiting right now; try again later."""


class CandidateStale(MatchingError):
    """The chosen candidate was paired by someone else first; re-attempt immediately."""


class PersistenceError(MatchingError):
    """The store rejected a read or write."""


class NotFound(MatchingError):
    """A profile or match id no longer resolves."""


class MatchmakingExhausted(MatchingError):
    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"no match after {attempts} attempts: {last_error!r}")


class NotParticipant(MatchingError):
    """Sender is not one of the two sides of the match."""


class ChatClosed(MatchingError):
    """The match has expired or been deactivated."""
