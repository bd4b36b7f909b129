# arbiter.py
"""Decides whether to pair a user with their best candidate and commits the pairing.

No locking happens here: two arbiters running for the same pair converge on a
single record through the existence checks below and the store's
compare-and-swap in `Store.commit_match`. Nothing is retried in-process; the
caller owns retries.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from config import ALLOW_ZERO_SCORE_FALLBACK, MATCH_DURATION_HOURS
from database import Store
from errors import CandidateStale, NoCandidates, NotFound
from matcher import select_candidates
from models import MatchRecord, Profile, utcnow

logger = logging.getLogger(__name__)

MATCH_DURATION = timedelta(hours=MATCH_DURATION_HOURS)


def _ensure_flagged(store: Store, match: MatchRecord) -> None:
    for user_id in (match.user_a, match.user_b):
        if not store.update_profile(user_id, matched=True):
            raise NotFound(f"profile {user_id} in match {match.id} no longer exists")


def _joined_concurrently(store: Store, user: Profile, best: Profile) -> Optional[str]:
    """Id of a record `best` committed with `user` while we were deciding, if any."""
    match = store.find_match_between(user.id, best.id)
    if match is None:
        return None
    logger.info("%s matched %s concurrently in match %s", best.id, user.id, match.id)
    _ensure_flagged(store, match)
    return match.id


def attempt_match(
    store: Store,
    user: Profile,
    *,
    allow_zero_score_fallback: bool = ALLOW_ZERO_SCORE_FALLBACK,
    duration: timedelta = MATCH_DURATION,
    now: Optional[datetime] = None,
) -> str:
    """Pair `user` with their top-ranked candidate and return the match id.

    Raises NoCandidates when nobody acceptable is waiting, CandidateStale when
    the chosen candidate was taken in the meantime, and PersistenceError when
    the store write fails.
    """
    now = now or utcnow()

    fresh = store.get_profile(user.id)
    if fresh is None:
        raise NotFound(f"profile {user.id} not found")
    if fresh.matched and store.release_profile(user.id):
        # Flag left behind by a sweep that deactivated the record but failed to release us.
        logger.warning("user %s was flagged matched with no active match; released", user.id)

    # Already paired (e.g. a duplicate request): hand back the same record.
    current = store.find_active_match(user.id)
    if current is not None:
        logger.info("user %s already in match %s", user.id, current.id)
        _ensure_flagged(store, current)
        return current.id

    ranked = select_candidates(store, user.id)
    if not ranked:
        raise NoCandidates(f"no unmatched users available for {user.id}")

    best, best_score = ranked[0]
    logger.info("best candidate for %s is %s with score %d", user.id, best.id, best_score)
    if best_score <= 0 and not allow_zero_score_fallback:
        raise NoCandidates(f"no compatible users for {user.id}")

    existing = store.find_match_between(user.id, best.id)
    if existing is not None:
        logger.info("existing match %s between %s and %s", existing.id, user.id, best.id)
        _ensure_flagged(store, existing)
        return existing.id

    still_unmatched = store.list_profiles(unmatched=True, exclude_id=user.id)
    if not any(p.id == best.id for p in still_unmatched):
        joined = _joined_concurrently(store, user, best)
        if joined is not None:
            return joined
        logger.info("candidate %s was taken before %s could match", best.id, user.id)
        raise CandidateStale(f"{best.id} is no longer unmatched")

    match = store.commit_match(user.id, best.id, expires_at=now + duration, now=now)
    if match is None:
        joined = _joined_concurrently(store, user, best)
        if joined is not None:
            return joined
        logger.info("lost the race pairing %s with %s", user.id, best.id)
        raise CandidateStale(f"{user.id} or {best.id} was matched concurrently")

    logger.info("match %s created: %s <-> %s (score %d, expires %s)",
                match.id, user.id, best.id, best_score, match.expires_at.isoformat())
    return match.id
