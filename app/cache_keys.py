"""Cache key generators and invalidation helpers.

Keys follow the `"<entityKind>:<identifier>"` convention so that a whole
family of related entries can be dropped with a single substring pattern.
"""

import logging

from .cache import TTLCache

logger = logging.getLogger(__name__)


def user(username: str) -> str:
    return f"user:{username}"


def user_light(username: str) -> str:
    return f"{user(username)}_light"


def user_profiles(user_id: str) -> str:
    return f"userProfiles:{user_id}"


def agent_profile(profile_id: str) -> str:
    return f"agentProfile:{profile_id}"


def client_profile(profile_id: str) -> str:
    return f"clientProfile:{profile_id}"


def posts(kind: str = "all") -> str:
    return f"posts:{kind}"


def companies() -> str:
    return "companies:list"


def agents() -> str:
    return "agents:list"


def clients() -> str:
    return "clients:list"


def invalidate_user_cache(cache: TTLCache, username: str) -> int:
    """Drop everything cached for `username`, plus every profiles listing.

    The profiles entries are keyed by user id rather than username, so the
    whole `userProfiles:` family goes.
    """

    removed = cache.invalidate_pattern(user(username))
    removed += cache.invalidate_pattern("userProfiles:")
    logger.info("Invalidated %d user cache entries for %s", removed, username)
    return removed


def invalidate_posts_cache(cache: TTLCache) -> int:
    removed = cache.invalidate_pattern("posts:")
    logger.info("Invalidated %d posts cache entries", removed)
    return removed
