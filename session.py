# session.py
"""Session-level orchestration: resume an existing chat or run the matching loop."""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from arbiter import attempt_match
from config import (
    ALLOW_ZERO_SCORE_FALLBACK,
    MATCH_MAX_ATTEMPTS,
    MATCH_RETRY_BASE_DELAY,
    MATCH_RETRY_MAX_DELAY,
)
from database import Store
from errors import CandidateStale, MatchmakingExhausted, NoCandidates, NotFound, PersistenceError
from models import MatchRecord, Profile, utcnow
from sweeper import sweep_expired

logger = logging.getLogger(__name__)


@dataclass
class Resume:
    match: MatchRecord
    partner: Profile


@dataclass
class EnterMatching:
    user: Profile


@dataclass
class SessionState:
    """State for one user session; never shared between sessions."""
    user_id: str
    swept_on_start: bool = False
    attempts: int = 0


@dataclass
class RetryPolicy:
    max_attempts: int = MATCH_MAX_ATTEMPTS
    base_delay: float = MATCH_RETRY_BASE_DELAY
    max_delay: float = MATCH_RETRY_MAX_DELAY

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def resolve(store: Store, user_id: str) -> Union[Resume, EnterMatching]:
    user = store.get_profile(user_id)
    if user is None:
        raise NotFound(f"profile {user_id} not found")

    match = store.find_active_match(user_id)
    if match is None:
        return EnterMatching(user)

    partner_id = match.partner_of(user_id)
    partner = store.get_profile(partner_id)
    if partner is None:
        raise NotFound(f"partner {partner_id} of match {match.id} not found")
    return Resume(match, partner)


def _sweep_quietly(store: Store, now: datetime) -> None:
    try:
        sweep_expired(store, now=now)
    except PersistenceError:
        logger.exception("opportunistic sweep failed")


def find_friend(
    store: Store,
    session: SessionState,
    *,
    policy: Optional[RetryPolicy] = None,
    allow_zero_score_fallback: bool = ALLOW_ZERO_SCORE_FALLBACK,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], None] = time.sleep,
) -> Resume:
    """
    Keep trying to pair `session.user_id` until a match exists or the retry
    policy runs out. A lost race is re-attempted straight away; an empty pool
    or a store failure waits with exponential backoff.
    Raises MatchmakingExhausted after `policy.max_attempts` attempts.
    """
    policy = policy or RetryPolicy()
    if not session.swept_on_start:
        _sweep_quietly(store, clock())
        session.swept_on_start = True

    last_error = None
    for attempt in range(1, policy.max_attempts + 1):
        session.attempts += 1
        try:
            state = resolve(store, session.user_id)
            if isinstance(state, Resume):
                return state

            now = clock()
            _sweep_quietly(store, now)
            match_id = attempt_match(store, state.user,
                                     allow_zero_score_fallback=allow_zero_score_fallback, now=now)
            state = resolve(store, session.user_id)
        except CandidateStale as exc:
            last_error = exc
            continue
        except (NoCandidates, PersistenceError) as exc:
            last_error = exc
            if attempt < policy.max_attempts:
                wait = policy.delay(attempt)
                logger.info("no match for %s yet (%s); retrying in %.1fs", session.user_id, exc, wait)
                sleep(wait)
            continue

        if isinstance(state, Resume):
            return state
        # Match already swept or released between commit and lookup.
        logger.warning("match %s for %s vanished before it could be resumed", match_id, session.user_id)

    raise MatchmakingExhausted(policy.max_attempts, last_error)
