"""Shared fixtures for the matching engine tests."""

from collections import Counter
from datetime import datetime, timezone

import pytest

from database import Store
from models import ProfileCreate


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Stores
# ============================================================================

class HookedStore(Store):
    """Store that runs a callback right before the N-th call of a method.

    Lets tests reproduce an interleaving (another session writing between
    two steps of the arbiter or sweeper) deterministically. Hooks should write
    through a plain Store so their own calls aren't counted.
    """

    HOOKED = ("list_profiles", "find_active_match", "find_match_between", "commit_match",
              "deactivate_match", "release_profile")

    def __init__(self, path: str):
        super().__init__(path)
        self.calls = Counter()
        self.hooks = {}

    def before(self, method: str, call: int, fn):
        assert method in self.HOOKED
        self.hooks[(method, call)] = fn

    def _run_hooks(self, method: str):
        self.calls[method] += 1
        hook = self.hooks.pop((method, self.calls[method]), None)
        if hook is not None:
            hook()

    def list_profiles(self, **kwargs):
        self._run_hooks("list_profiles")
        return super().list_profiles(**kwargs)

    def find_active_match(self, user_id):
        self._run_hooks("find_active_match")
        return super().find_active_match(user_id)

    def find_match_between(self, user_id, other_id):
        self._run_hooks("find_match_between")
        return super().find_match_between(user_id, other_id)

    def commit_match(self, user_a, user_b, expires_at, now=None):
        self._run_hooks("commit_match")
        return super().commit_match(user_a, user_b, expires_at, now=now)

    def deactivate_match(self, match_id):
        self._run_hooks("deactivate_match")
        return super().deactivate_match(match_id)

    def release_profile(self, profile_id):
        self._run_hooks("release_profile")
        return super().release_profile(profile_id)


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "test.db")


@pytest.fixture
def store(db_path) -> Store:
    s = Store(db_path)
    s.init_db()
    return s


@pytest.fixture
def hooked_store(store, db_path) -> HookedStore:
    return HookedStore(db_path)


# ============================================================================
# Profiles
# ============================================================================

@pytest.fixture
def make_profile(store):
    """Factory creating a stored profile with sensible defaults."""
    def _make(name, interests=("Music", "Travel", "Art"), vibe="deep", style="thoughtful"):
        return store.create_profile(
            ProfileCreate(name=name, vibe=vibe, interests=list(interests), communication_style=style),
            now=T0,
        )
    return _make


# ============================================================================
# Test Utilities
# ============================================================================

def assert_invariants(store: Store) -> None:
    """matched=True <=> exactly one active match; never more than one."""
    active = store.list_matches(active=True)
    refs = Counter()
    for m in active:
        refs[m.user_a] += 1
        refs[m.user_b] += 1
    for profile in store.list_profiles():
        assert refs[profile.id] <= 1, f"{profile.name} is in {refs[profile.id]} active matches"
        assert profile.matched == (refs[profile.id] == 1), f"{profile.name} matched flag out of sync"
