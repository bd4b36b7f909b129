"""Expiry sweeping."""

import asyncio
from datetime import timedelta

import pytest

from arbiter import attempt_match
from errors import PersistenceError
from sweeper import run_periodic_sweeps, sweep_expired
from tests.conftest import T0, assert_invariants

EXPIRY = T0 + timedelta(hours=48)


@pytest.fixture
def matched_pair(store, make_profile):
    a = make_profile("Alice", interests=["Music", "Travel", "Art"])
    b = make_profile("Bob", interests=["Music", "Travel", "Cooking"])
    match_id = attempt_match(store, a, now=T0)
    return a, b, match_id


def test_releases_expired_match(store, matched_pair):
    a, b, match_id = matched_pair
    assert sweep_expired(store, now=EXPIRY + timedelta(seconds=1)) == 1

    assert not store.get_match(match_id).active
    assert not store.get_profile(a.id).matched
    assert not store.get_profile(b.id).matched
    assert_invariants(store)


def test_expiry_timestamp_is_untouched(store, matched_pair):
    _, _, match_id = matched_pair
    sweep_expired(store, now=EXPIRY + timedelta(seconds=1))
    assert store.get_match(match_id).expires_at == EXPIRY


@pytest.mark.parametrize("offset", [timedelta(hours=-1), timedelta(0)])
def test_live_match_is_kept(store, matched_pair, offset):
    a, _, match_id = matched_pair
    assert sweep_expired(store, now=EXPIRY + offset) == 0
    assert store.get_match(match_id).active
    assert store.get_profile(a.id).matched


def test_second_sweep_is_noop(store, matched_pair):
    later = EXPIRY + timedelta(minutes=5)
    assert sweep_expired(store, now=later) == 1
    assert sweep_expired(store, now=later) == 0


def test_released_users_can_match_again(store, matched_pair):
    a, b, old_id = matched_pair
    sweep_expired(store, now=EXPIRY + timedelta(seconds=1))

    new_id = attempt_match(store, a, now=EXPIRY + timedelta(seconds=2))
    assert new_id != old_id
    assert store.get_match(new_id).partner_of(a.id) == b.id
    assert_invariants(store)


def test_failure_on_one_record_does_not_stop_the_rest(store, hooked_store, make_profile):
    people = [make_profile(n, interests=[n, "Music", "Travel"]) for n in ("A", "B", "C", "D")]
    first = attempt_match(store, people[0], now=T0)
    second = attempt_match(store, people[2], now=T0 + timedelta(minutes=1))

    def store_down():
        raise PersistenceError("database is locked")

    hooked_store.before("deactivate_match", 1, store_down)
    assert sweep_expired(hooked_store, now=EXPIRY + timedelta(hours=1)) == 1
    assert store.get_match(first).active
    assert not store.get_match(second).active
    assert_invariants(store)

    # the skipped record is picked up next time
    assert sweep_expired(hooked_store, now=EXPIRY + timedelta(hours=1)) == 1
    assert store.list_matches(active=True) == []
    assert_invariants(store)


def test_one_profile_reset_failure_still_releases_the_partner(store, hooked_store, matched_pair):
    a, b, match_id = matched_pair

    def store_down():
        raise PersistenceError("disk I/O error")

    # first release_profile call is for a (user_a of the record)
    hooked_store.before("release_profile", 1, store_down)
    assert sweep_expired(hooked_store, now=EXPIRY + timedelta(seconds=1)) == 1
    assert not store.get_match(match_id).active
    assert store.get_profile(a.id).matched
    assert not store.get_profile(b.id).matched
    assert hooked_store.calls["release_profile"] == 2

    # a clears the stuck flag on the next attempt and b is in the pool again
    later = EXPIRY + timedelta(minutes=1)
    new_id = attempt_match(store, a, now=later)
    assert store.get_match(new_id).partner_of(a.id) == b.id
    assert_invariants(store)


def test_concurrent_sweeper_already_deactivated(store, hooked_store, matched_pair):
    a, b, match_id = matched_pair
    hooked_store.before("deactivate_match", 1, lambda: store.deactivate_match(match_id))
    # the other sweeper owns the release; this one reports nothing
    assert sweep_expired(hooked_store, now=EXPIRY + timedelta(seconds=1)) == 0
    assert hooked_store.calls["release_profile"] == 0


def test_periodic_sweeps_run_until_cancelled(store, matched_pair):
    _, _, match_id = matched_pair

    async def scenario():
        task = asyncio.create_task(run_periodic_sweeps(store, 0.01))
        for _ in range(200):
            await asyncio.sleep(0.01)
            if not store.get_match(match_id).active:
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    # T0 is in the past, so the real clock already sees the match as expired
    asyncio.run(scenario())
    assert not store.get_match(match_id).active
