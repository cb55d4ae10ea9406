"""
Tests for the content-store client: read-through caching and the mutations
that invalidate it.
"""
import json
from urllib.parse import parse_qs

import httpx
import pytest

from app import cache_keys
from app.sanity_client import ContentStoreConfigError, SanityClient, user_document_id
from app.schemas import PostCreate, PostFilter, SortConfig

FULL_USER = '"companies": companies[]->'
LIGHT_USER = '"fullName": coreIdentity.fullName'
USER_BY_ID = "_id == $userId"
LIKES = '"likes": coalesce(likes, [])'
AGENTS = 'references(*[_type == "agentProfile"]._id)'
LATEST_POSTS = '[_type == "post"] | order(createdAt desc)'


def test_user_document_id():
    assert user_document_id("abc") == "user-abc"
    assert user_document_id("user-abc") == "user-abc"


@pytest.mark.asyncio
async def test_query_sends_json_encoded_params(sanity, store):
    store.results[FULL_USER] = {"_id": "user-1"}
    await sanity.query('*[_type == "user" && x == $name]{"companies": companies[]->}', {"name": "alice"})

    request = store.requests[0]
    params = parse_qs(request.url.query.decode())
    assert json.loads(params["$name"][0]) == "alice"
    assert request.url.path.endswith(f"/data/query/{sanity.dataset}")
    assert "Authorization" not in request.headers


@pytest.mark.asyncio
async def test_get_user_is_served_from_cache(sanity, store, cache):
    store.results[FULL_USER] = {"_id": "user-1", "personalDetails": {"username": "alice"}}

    first = await sanity.get_user("alice")
    second = await sanity.get_user("alice")

    assert first == second == {"_id": "user-1", "personalDetails": {"username": "alice"}}
    assert store.query_count() == 1
    assert cache.get(cache_keys.user("alice")) == first


@pytest.mark.asyncio
async def test_missing_user_is_not_cached(sanity, store, cache):
    assert await sanity.get_user("ghost") is None
    assert await sanity.get_user("ghost") is None
    assert store.query_count() == 2
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_light_user_uses_its_own_key(sanity, store, cache):
    store.results[LIGHT_USER] = {"_id": "user-1", "username": "alice"}
    await sanity.get_user_light("alice")
    assert cache.get("user:alice_light") == {"_id": "user-1", "username": "alice"}
    assert cache.get("user:alice") is None


@pytest.mark.asyncio
async def test_user_profiles_default_when_absent(sanity):
    assert await sanity.get_user_profiles("1") == {"agentProfiles": [], "clientProfiles": []}


@pytest.mark.asyncio
async def test_unfiltered_agent_listing_is_cached(sanity, store, cache):
    store.results[AGENTS] = [{"userProfile": {"_id": "user-1"}}]

    await sanity.list_agents()
    await sanity.list_agents()
    assert store.query_count() == 1
    assert cache.get(cache_keys.agents()) == [{"userProfile": {"_id": "user-1"}}]

    await sanity.list_agents({"industry": ["finance"]})
    await sanity.list_agents(search="bob")
    await sanity.list_agents(sort=SortConfig(field="_createdAt"))
    assert store.query_count() == 4


@pytest.mark.asyncio
async def test_list_posts_cache_key_follows_filter(sanity, store, cache):
    store.results['[_type == "post"'] = [{"_id": "p1"}]
    await sanity.list_posts()
    await sanity.list_posts(PostFilter(sort_by="popular"))
    assert cache.get("posts:all") == [{"_id": "p1"}]
    assert cache.get("posts:popular:10") == [{"_id": "p1"}]


@pytest.mark.asyncio
async def test_create_post_invalidates_posts(sanity, store, cache):
    cache.set(cache_keys.posts(), [{"_id": "old"}])
    cache.set(cache_keys.agents(), [])

    await sanity.create_post(PostCreate(author_id="abc", title="Hello", content="World", tags=["ai"]))

    doc = store.mutations[0]["create"]
    assert doc["_type"] == "post"
    assert doc["author"] == {"_type": "reference", "_ref": "user-abc"}
    assert doc["tags"] == ["ai"]
    assert cache.get(cache_keys.posts()) is None
    assert cache.get(cache_keys.agents()) == []


@pytest.mark.asyncio
async def test_toggle_like_adds_like(sanity, store):
    store.results[USER_BY_ID] = {"_id": "user-abc", "username": "alice", "profilePicture": None}
    store.results[LIKES] = {"likes": []}

    assert await sanity.toggle_like("post-1", "abc") == "like"

    patch = store.mutations[0]["patch"]
    assert patch["id"] == "post-1"
    assert patch["insert"]["after"] == "likes[-1]"
    assert patch["insert"]["items"][0]["personalDetails"]["username"] == "alice"


@pytest.mark.asyncio
async def test_toggle_like_removes_existing_like(sanity, store, cache):
    store.results[USER_BY_ID] = {"_id": "user-abc", "username": "alice"}
    store.results[LIKES] = {"likes": [
        {"_key": "k1", "personalDetails": {"username": "alice"}},
        {"_key": "k2", "personalDetails": {"username": "bob"}},
    ]}
    cache.set(cache_keys.posts("id:post-1"), {"_id": "post-1"})

    assert await sanity.toggle_like("post-1", "abc") == "unlike"

    patch = store.mutations[0]["patch"]
    assert patch["set"]["likes"] == [{"_key": "k2", "personalDetails": {"username": "bob"}}]
    assert cache.get(cache_keys.posts("id:post-1")) is None


@pytest.mark.asyncio
async def test_toggle_like_unknown_user(sanity, store):
    assert await sanity.toggle_like("post-1", "nobody") is None
    assert store.mutations == []


@pytest.mark.asyncio
async def test_add_reply_targets_parent_comment(sanity, store):
    key = await sanity.add_comment("post-1", "nice", "abc", parent_comment_key="c1")

    patch = store.mutations[0]["patch"]
    path = 'comments[_key == "c1"].replies'
    assert patch["setIfMissing"] == {path: []}
    assert patch["insert"]["after"] == f"{path}[-1]"
    assert patch["insert"]["items"][0]["_key"] == key
    assert patch["insert"]["items"][0]["author"]["_ref"] == "user-abc"


@pytest.mark.asyncio
async def test_delete_comment_unsets_by_key(sanity, store):
    await sanity.delete_comment("post-1", "c1")
    assert store.mutations[0]["patch"]["unset"] == ['comments[_key == "c1"]']


@pytest.mark.asyncio
async def test_update_user_invalidates_user_family(sanity, store, cache):
    store.results[LIGHT_USER] = {"_id": "user-1", "username": "alice"}
    cache.set(cache_keys.user("alice"), {"_id": "user-1"})
    cache.set(cache_keys.user_profiles("user-1"), {})
    cache.set(cache_keys.user("bob"), {"_id": "user-2"})

    await sanity.update_user("alice", {"coreIdentity.tagline": "Automation nerd"})

    assert store.mutations[0] == {"patch": {"id": "user-1", "set": {"coreIdentity.tagline": "Automation nerd"}}}
    assert cache.get(cache_keys.user("alice")) is None
    assert cache.get(cache_keys.user_profiles("user-1")) is None
    assert cache.get(cache_keys.user("bob")) == {"_id": "user-2"}


@pytest.mark.asyncio
async def test_update_unknown_user_returns_none(sanity, store):
    assert await sanity.update_user("ghost", {"a": 1}) is None
    assert store.mutations == []


@pytest.mark.asyncio
async def test_mutation_without_token_raises(store, cache):
    client = SanityClient(cache, base_url="https://test.api.sanity.io/v1", token="",
                          transport=httpx.MockTransport(store.handler))
    with pytest.raises(ContentStoreConfigError):
        await client.delete_comment("post-1", "c1")
    assert store.requests == []


@pytest.mark.asyncio
async def test_upstream_error_propagates_and_is_not_cached(sanity, store, cache):
    store.fail_with = 503
    with pytest.raises(httpx.HTTPStatusError):
        await sanity.list_companies()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_only_mutations_carry_the_token(sanity, store):
    await sanity.list_companies()
    await sanity.delete_comment("post-1", "c1")

    query_request, mutate_request = store.requests
    assert "Authorization" not in query_request.headers
    assert mutate_request.headers["Authorization"] == "Bearer secret"
