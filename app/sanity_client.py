import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx

from . import cache_keys, queries
from .cache import TTLCache
from .schemas import PostCreate, PostFilter, SortConfig
from .settings import settings

logger = logging.getLogger(__name__)


class ContentStoreConfigError(RuntimeError):
    """Raised when a write is attempted without an API token configured."""


def user_document_id(user_id: str) -> str:
    return user_id if user_id.startswith("user-") else f"user-{user_id}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SanityClient:
    """Thin async client for the hosted content store, with read-through caching.

    Parameters
    ----------
    cache : TTLCache
        Cache shared by every read method. Owned by the caller.
    base_url : Optional[str]
        Base URL for queries. Defaults to `settings.sanity_base_url` (CDN when
        enabled).
    mutate_url : Optional[str]
        Base URL for mutations. Defaults to `settings.sanity_api_url`.
    token : Optional[str]
        API token. Required by mutation methods only.
    transport : Optional[httpx.AsyncBaseTransport]
        Custom transport, used by tests to stub the content store.

    Notes
    -----
    - Uses `httpx` with `settings.request_timeout` per request.
    - Mutations invalidate the cache families they make stale.
    """

    def __init__(self, cache: TTLCache, base_url: Optional[str] = None, mutate_url: Optional[str] = None,
                 token: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cache = cache
        self.base_url = base_url or settings.sanity_base_url
        self.mutate_url = mutate_url or base_url or settings.sanity_api_url
        self.dataset = settings.sanity_dataset
        self.token = token if token is not None else settings.sanity_token
        self._transport = transport

    def _client(self, authenticated: bool = False) -> httpx.AsyncClient:
        # only writes carry the token
        headers = {"Authorization": f"Bearer {self.token}"} if authenticated and self.token else None
        return httpx.AsyncClient(timeout=settings.request_timeout, headers=headers, transport=self._transport)

    async def query(self, groq: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Run a GROQ query and return its `result`.

        Parameters
        ----------
        groq : str
            Query text.
        params : Optional[Mapping[str, Any]]
            Query parameters, sent JSON-encoded as `$name=<value>`.

        Raises
        ------
        httpx.HTTPStatusError
            If the response has a 4xx/5xx status code.
        httpx.RequestError
            For transport-level errors (DNS, timeouts, etc.).
        """

        query_params = {"query": groq}
        for name, value in (params or {}).items():
            query_params[f"${name}"] = json.dumps(value)
        url = f"{self.base_url}/data/query/{self.dataset}"
        async with self._client() as client:
            r = await client.get(url, params=query_params)
            r.raise_for_status()
            return r.json().get("result")

    async def mutate(self, mutations: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Submit a transaction of mutations.

        Returns
        -------
        Dict[str, Any]
            The raw response: `transactionId` and `results`.

        Raises
        ------
        ContentStoreConfigError
            If no API token is configured.
        """

        if not self.token:
            raise ContentStoreConfigError("SANITY_API_TOKEN is not configured")
        url = f"{self.mutate_url}/data/mutate/{self.dataset}"
        async with self._client(authenticated=True) as client:
            r = await client.post(url, params={"returnIds": "true"}, json={"mutations": mutations})
            r.raise_for_status()
            data = r.json()
        logger.info("Committed %d mutation(s) in transaction %s", len(mutations), data.get("transactionId"))
        return data

    async def _cached(self, key: str, ttl: int, groq: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached
        logger.debug("Cache miss for %s", key)
        data = await self.query(groq, params)
        if data is not None:
            self.cache.set(key, data, ttl)
        return data

    # --- users ------------------------------------------------------------

    async def get_user(self, username: str) -> Optional[Dict[str, Any]]:
        """Fetch the full user document for `username`, or `None`."""

        return await self._cached(cache_keys.user(username), settings.cache_ttl_user,
                                  queries.USER_BY_USERNAME, {"username": username})

    async def get_user_light(self, username: str) -> Optional[Dict[str, Any]]:
        """Fetch only the identity fields needed for avatars and bylines."""

        return await self._cached(cache_keys.user_light(username), settings.cache_ttl_user_light,
                                  queries.USER_LIGHT_BY_USERNAME, {"username": username})

    async def get_user_profiles(self, user_id: str) -> Dict[str, Any]:
        doc_id = user_document_id(user_id)
        data = await self._cached(cache_keys.user_profiles(doc_id), settings.cache_ttl_profiles,
                                  queries.USER_PROFILES, {"userId": doc_id})
        return data or {"agentProfiles": [], "clientProfiles": []}

    async def update_user(self, username: str, changes: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Set fields on the user document and drop the user's cached reads.

        Returns `None` when no user has that username.
        """

        user = await self.get_user_light(username)
        if user is None:
            return None
        result = await self.mutate([{"patch": {"id": user["_id"], "set": dict(changes)}}])
        cache_keys.invalidate_user_cache(self.cache, username)
        return result

    # --- profiles & listings ---------------------------------------------

    async def get_agent_profile(self, profile_id: str) -> Optional[Dict[str, Any]]:
        return await self._cached(cache_keys.agent_profile(profile_id), settings.cache_ttl_profiles,
                                  queries.AGENT_PROFILE, {"profileId": profile_id})

    async def get_client_profile(self, profile_id: str) -> Optional[Dict[str, Any]]:
        return await self._cached(cache_keys.client_profile(profile_id), settings.cache_ttl_profiles,
                                  queries.CLIENT_PROFILE, {"profileId": profile_id})

    async def _list_profiles(self, kind: str, key: str, filters: Optional[Mapping[str, Any]],
                             search: str, sort: Optional[SortConfig]) -> List[Dict[str, Any]]:
        groq = queries.build_profile_query(kind, filters, search, sort)
        # Only the default listing is shared between callers.
        if filters or search or sort:
            return await self.query(groq) or []
        return await self._cached(key, settings.cache_ttl_lists, groq) or []

    async def list_agents(self, filters: Optional[Mapping[str, Any]] = None, search: str = "",
                          sort: Optional[SortConfig] = None) -> List[Dict[str, Any]]:
        return await self._list_profiles("agent", cache_keys.agents(), filters, search, sort)

    async def list_clients(self, filters: Optional[Mapping[str, Any]] = None, search: str = "",
                           sort: Optional[SortConfig] = None) -> List[Dict[str, Any]]:
        return await self._list_profiles("client", cache_keys.clients(), filters, search, sort)

    async def list_companies(self) -> List[Dict[str, Any]]:
        return await self._cached(cache_keys.companies(), settings.cache_ttl_lists, queries.COMPANIES) or []

    # --- posts ------------------------------------------------------------

    async def list_posts(self, post_filter: Optional[PostFilter] = None) -> List[Dict[str, Any]]:
        post_filter = post_filter or PostFilter()
        key = cache_keys.posts(post_filter.cache_kind())
        return await self._cached(key, settings.cache_ttl_posts, queries.all_posts(post_filter)) or []

    async def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        return await self._cached(cache_keys.posts(f"id:{post_id}"), settings.cache_ttl_posts,
                                  queries.post_by_id(post_id))

    async def get_post_likes(self, post_id: str) -> List[Dict[str, Any]]:
        # Read fresh: toggling a like depends on the current list.
        data = await self.query(queries.post_likes(post_id))
        return (data or {}).get("likes") or []

    async def get_post_comments(self, post_id: str) -> List[Dict[str, Any]]:
        data = await self._cached(cache_keys.posts(f"comments:{post_id}"), settings.cache_ttl_posts,
                                  queries.post_comments(post_id))
        return (data or {}).get("comments") or []

    async def create_post(self, post: PostCreate) -> Dict[str, Any]:
        doc = {
            "_id": f"post-{uuid.uuid4().hex}",
            "_type": "post",
            "title": post.title,
            "content": post.content,
            "author": {"_type": "reference", "_ref": user_document_id(post.author_id)},
            "tags": post.tags,
            "isAchievement": post.is_achievement,
            "createdAt": _now_iso(),
            "likes": [],
            "comments": [],
        }
        if post.achievement_type:
            doc["achievementType"] = post.achievement_type
        result = await self.mutate([{"create": doc}])
        cache_keys.invalidate_posts_cache(self.cache)
        return result

    async def toggle_like(self, post_id: str, user_id: str) -> Optional[str]:
        """Like the post for `user_id`, or remove the like if already present.

        Returns
        -------
        Optional[str]
            `"like"` or `"unlike"`; `None` when the user does not exist.
        """

        user = await self.query(queries.USER_BY_ID, {"userId": user_document_id(user_id)})
        if not user:
            return None
        username = user.get("username")
        likes = await self.get_post_likes(post_id)
        remaining = [like for like in likes if (like.get("personalDetails") or {}).get("username") != username]

        if len(remaining) != len(likes):
            action = "unlike"
            patch = {"id": post_id, "set": {"likes": remaining}}
        else:
            action = "like"
            like = {
                "_type": "like",
                "_key": f"{user_id}-{uuid.uuid4().hex[:8]}",
                "likedAt": _now_iso(),
                "personalDetails": {"username": username, "profilePicture": user.get("profilePicture")},
            }
            patch = {"id": post_id, "setIfMissing": {"likes": []},
                     "insert": {"after": "likes[-1]", "items": [like]}}

        await self.mutate([{"patch": patch}])
        cache_keys.invalidate_posts_cache(self.cache)
        logger.info("User %s %sd post %s", user_id, action, post_id)
        return action

    async def add_comment(self, post_id: str, text: str, author_id: str,
                          parent_comment_key: Optional[str] = None) -> str:
        """Append a comment, or a reply when `parent_comment_key` is given.

        Returns the new comment's `_key`.
        """

        comment = {
            "_key": uuid.uuid4().hex,
            "content": text,
            "author": {"_type": "reference", "_ref": user_document_id(author_id)},
            "createdAt": _now_iso(),
            "isEdited": False,
            "replies": [],
        }
        if parent_comment_key:
            path = f"comments[_key == {queries.quote(parent_comment_key)}].replies"
        else:
            path = "comments"
        patch = {"id": post_id, "setIfMissing": {path: []},
                 "insert": {"after": f"{path}[-1]", "items": [comment]}}
        await self.mutate([{"patch": patch}])
        cache_keys.invalidate_posts_cache(self.cache)
        return comment["_key"]

    async def delete_comment(self, post_id: str, comment_key: str) -> None:
        path = f"comments[_key == {queries.quote(comment_key)}]"
        await self.mutate([{"patch": {"id": post_id, "unset": [path]}}])
        cache_keys.invalidate_posts_cache(self.cache)
