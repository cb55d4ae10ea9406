from app import cache_keys
from app.cache import TTLCache


def test_key_formats():
    assert cache_keys.user("alice") == "user:alice"
    assert cache_keys.user_light("alice") == "user:alice_light"
    assert cache_keys.user_profiles("42") == "userProfiles:42"
    assert cache_keys.agent_profile("a1") == "agentProfile:a1"
    assert cache_keys.client_profile("c1") == "clientProfile:c1"
    assert cache_keys.posts() == "posts:all"
    assert cache_keys.posts("popular") == "posts:popular"
    assert cache_keys.companies() == "companies:list"
    assert cache_keys.agents() == "agents:list"
    assert cache_keys.clients() == "clients:list"


def test_invalidate_user_cache_drops_user_family_and_all_profiles():
    cache = TTLCache()
    cache.set(cache_keys.user("alice"), {"_id": "user-1"})
    cache.set(cache_keys.user_light("alice"), {"_id": "user-1"})
    cache.set(cache_keys.user_profiles("user-1"), {})
    cache.set(cache_keys.user_profiles("user-2"), {})
    cache.set(cache_keys.user("bob"), {"_id": "user-2"})
    cache.set(cache_keys.posts(), [])

    removed = cache_keys.invalidate_user_cache(cache, "alice")

    assert removed == 4
    assert cache.get(cache_keys.user("bob")) == {"_id": "user-2"}
    assert cache.get(cache_keys.posts()) == []


def test_invalidate_posts_cache():
    cache = TTLCache()
    cache.set(cache_keys.posts(), [1])
    cache.set(cache_keys.posts("id:p1"), {"_id": "p1"})
    cache.set(cache_keys.agents(), [])

    assert cache_keys.invalidate_posts_cache(cache) == 2
    assert cache.get(cache_keys.agents()) == []
