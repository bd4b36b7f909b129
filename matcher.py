# matcher.py
import logging
from typing import Dict, FrozenSet, List, Tuple

from database import Store
from errors import NotFound
from models import CommunicationStyle, Profile, Vibe

logger = logging.getLogger(__name__)

INTEREST_WEIGHT = 3
STYLE_WEIGHT = 2
VIBE_WEIGHT = 1


def _verify_symmetric(name: str, table: Dict[str, FrozenSet[str]]) -> Dict[str, FrozenSet[str]]:
    for a, partners in table.items():
        for b in partners:
            if a not in table.get(b, frozenset()):
                raise ValueError(f"{name} compatibility is not symmetric: {a} -> {b} has no way back")
    return table


# Directed adjacency: every edge must be listed from both ends.
STYLE_COMPATIBILITY = _verify_symmetric("style", {
    CommunicationStyle.DIRECT.value: frozenset({"direct", "energetic"}),
    CommunicationStyle.THOUGHTFUL.value: frozenset({"thoughtful", "calm"}),
    CommunicationStyle.ENERGETIC.value: frozenset({"energetic", "direct"}),
    CommunicationStyle.CALM.value: frozenset({"calm", "thoughtful"}),
})

VIBE_COMPATIBILITY = _verify_symmetric("vibe", {
    Vibe.DEEP.value: frozenset({"deep", "supportive"}),
    Vibe.LIGHTHEARTED.value: frozenset({"lighthearted", "creative"}),
    Vibe.SUPPORTIVE.value: frozenset({"supportive", "deep"}),
    Vibe.CREATIVE.value: frozenset({"creative", "lighthearted"}),
})


def styles_compatible(a: CommunicationStyle, b: CommunicationStyle) -> bool:
    return CommunicationStyle(b).value in STYLE_COMPATIBILITY.get(CommunicationStyle(a).value, frozenset())


def vibes_compatible(a: Vibe, b: Vibe) -> bool:
    return Vibe(b).value in VIBE_COMPATIBILITY.get(Vibe(a).value, frozenset())


def shared_interests(user: Profile, candidate: Profile) -> set:
    # Exact, case-sensitive overlap; positions don't matter.
    return set(user.interests) & set(candidate.interests)


def score(user: Profile, candidate: Profile) -> int:
    """3 per shared interest, +2 for compatible styles, +1 for compatible vibes."""
    return (
        INTEREST_WEIGHT * len(shared_interests(user, candidate))
        + (STYLE_WEIGHT if styles_compatible(user.communication_style, candidate.communication_style) else 0)
        + (VIBE_WEIGHT if vibes_compatible(user.vibe, candidate.vibe) else 0)
    )


def rank_candidates(user: Profile, pool: List[Profile]) -> List[Tuple[Profile, int]]:
    scored = [(other, score(user, other)) for other in pool if other.id != user.id]
    # sorted() is stable, so ties keep the store's order
    scored.sort(key=lambda pair: -pair[1])
    return scored


def select_candidates(store: Store, user_id: str) -> List[Tuple[Profile, int]]:
    """
    Return every unmatched profile other than `user_id`, scored against it and
    ranked best first. Empty when nobody else is waiting.
    """
    me = store.get_profile(user_id)
    if me is None:
        raise NotFound(f"profile {user_id} not found")

    pool = store.list_profiles(unmatched=True, exclude_id=user_id)
    ranked = rank_candidates(me, pool)
    for other, points in ranked:
        logger.debug("candidate %s (%s) for %s scored %d", other.id, other.name, user_id, points)
    return ranked
