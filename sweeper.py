# sweeper.py
import asyncio
import logging
from datetime import datetime
from typing import Optional

from database import Store
from errors import PersistenceError
from models import utcnow

logger = logging.getLogger(__name__)


def _release(store: Store, user_id: str, match_id: str) -> None:
    try:
        if not store.release_profile(user_id):
            logger.warning("user %s from expired match %s was not released", user_id, match_id)
    except PersistenceError:
        # the user's next attempt_match clears the stuck flag
        logger.exception("failed to release user %s from expired match %s", user_id, match_id)


def sweep_expired(store: Store, *, now: Optional[datetime] = None) -> int:
    """
    Deactivate every active match whose expires_at has passed and put both
    participants back in the unmatched pool. Returns how many matches were released.

    Best effort: a failure on one record, or on one of its profiles, is logged
    and everything else is still processed.
    """
    now = now or utcnow()
    released = 0
    for match in store.list_matches(active=True, expired_before=now):
        try:
            if not store.deactivate_match(match.id):
                # another sweep got here first
                continue
        except PersistenceError:
            logger.exception("failed to deactivate expired match %s", match.id)
            continue
        for user_id in (match.user_a, match.user_b):
            _release(store, user_id, match.id)
        released += 1
        logger.info("match %s expired at %s; released %s and %s",
                    match.id, match.expires_at.isoformat(), match.user_a, match.user_b)
    return released


async def run_periodic_sweeps(store: Store, interval: float) -> None:
    """Sweep every `interval` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            count = await asyncio.to_thread(sweep_expired, store)
        except PersistenceError:
            logger.exception("periodic sweep failed")
            continue
        if count:
            logger.info("periodic sweep released %d matches", count)
