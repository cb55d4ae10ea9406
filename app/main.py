import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from .cache import TTLCache
from .logging_setup import setup_logging
from .queries import FILTER_CONFIGS
from .sanity_client import ContentStoreConfigError, SanityClient
from .schemas import (
    CacheInvalidation,
    CacheStats,
    CommentCreate,
    CommentResult,
    EntityType,
    FilterConfig,
    Health,
    LikeRequest,
    LikeResult,
    ListResponse,
    MutationResult,
    PostCreate,
    PostFilter,
    SORT_FIELD_PATTERN,
    SortConfig,
    SortOrder,
    UserPatch,
)
from .settings import settings

logger = logging.getLogger(__name__)
router = APIRouter()


def get_client(request: Request) -> SanityClient:
    return request.app.state.client


def _parse_filters(filters: Optional[str]) -> Dict[str, Any]:
    if not filters:
        return {}
    try:
        parsed = json.loads(filters)
    except ValueError:
        raise HTTPException(status_code=400, detail="filters must be a JSON object")
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="filters must be a JSON object")
    return parsed


def _sort(field: Optional[str], order: SortOrder) -> Optional[SortConfig]:
    return SortConfig(field=field, order=order) if field else None


def _mutation_result(data: Dict[str, Any]) -> MutationResult:
    return MutationResult(
        transaction_id=data.get("transactionId"),
        document_ids=[r["id"] for r in data.get("results", []) if r.get("id")],
    )


async def _upstream_status_error(request: Request, exc: httpx.HTTPStatusError):
    logger.error("Content store returned %s for %s", exc.response.status_code, exc.request.url)
    return JSONResponse(status_code=502, content={"detail": f"Content store returned {exc.response.status_code}"})


async def _upstream_request_error(request: Request, exc: httpx.RequestError):
    logger.error("Content store unreachable: %s", exc)
    return JSONResponse(status_code=502, content={"detail": "Content store unreachable"})


async def _config_error(request: Request, exc: ContentStoreConfigError):
    logger.error("%s", exc)
    return JSONResponse(status_code=500, content={"detail": "Server configuration error"})


def create_app(client: Optional[SanityClient] = None) -> FastAPI:
    """Build the API and wire its single cache and content-store client.

    Parameters
    ----------
    client : Optional[SanityClient]
        Pre-built client (tests pass one backed by a mock transport). When
        omitted, a client with a fresh `TTLCache` is created from `settings`.
    """

    setup_logging(settings.log_level)
    app = FastAPI(title="Marketplace Content Proxy API", version="1.0.0")
    app.state.client = client or SanityClient(TTLCache(settings.cache_ttl_default))
    app.add_exception_handler(httpx.HTTPStatusError, _upstream_status_error)
    app.add_exception_handler(httpx.RequestError, _upstream_request_error)
    app.add_exception_handler(ContentStoreConfigError, _config_error)
    app.include_router(router)
    return app


@router.get("/health", response_model=Health)
async def health():
    """Liveness check for the service."""

    return {"status": "ok", "time": datetime.now(timezone.utc)}


@router.get("/v1/users/{username}")
async def get_user(username: str, light: bool = Query(False, description="Identity fields only"),
                   client: SanityClient = Depends(get_client)):
    """Return a user document by username.

    Raises
    ------
    HTTPException
        404 if no user has that username.
    """

    user = await (client.get_user_light(username) if light else client.get_user(username))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.patch("/v1/users/{username}", response_model=MutationResult)
async def update_user(username: str, body: UserPatch, client: SanityClient = Depends(get_client)):
    result = await client.update_user(username, body.changes)
    if result is None:
        raise HTTPException(status_code=404, detail="User not found")
    return _mutation_result(result)


@router.get("/v1/users/{user_id}/profiles")
async def get_user_profiles(user_id: str, client: SanityClient = Depends(get_client)):
    return await client.get_user_profiles(user_id)


@router.get("/v1/agents", response_model=ListResponse)
async def list_agents(
        search: str = Query("", description="Matches name, tagline, bio and username"),
        filters: Optional[str] = Query(None, description='JSON object, e.g. {"industry": ["finance"]}'),
        sort: Optional[str] = Query(None, pattern=SORT_FIELD_PATTERN, description="GROQ field to order by"),
        order: SortOrder = Query("desc"),
        client: SanityClient = Depends(get_client),
):
    """List users that hold an agent profile.

    Notes
    -----
    - Supported filters: `availability`, `industry`, `automationServices`,
      `toolsExpertise`, `hourlyRate` (`[min, max]` in dollars).
    - The unfiltered listing is served from the cache.
    """

    items = await client.list_agents(_parse_filters(filters), search, _sort(sort, order))
    return {"count": len(items), "data": items}


@router.get("/v1/clients", response_model=ListResponse)
async def list_clients(
        search: str = Query(""),
        filters: Optional[str] = Query(None),
        sort: Optional[str] = Query(None, pattern=SORT_FIELD_PATTERN),
        order: SortOrder = Query("desc"),
        client: SanityClient = Depends(get_client),
):
    items = await client.list_clients(_parse_filters(filters), search, _sort(sort, order))
    return {"count": len(items), "data": items}


@router.get("/v1/agent-profiles/{profile_id}")
async def get_agent_profile(profile_id: str, client: SanityClient = Depends(get_client)):
    profile = await client.get_agent_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Agent profile not found")
    return profile


@router.get("/v1/client-profiles/{profile_id}")
async def get_client_profile(profile_id: str, client: SanityClient = Depends(get_client)):
    profile = await client.get_client_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Client profile not found")
    return profile


@router.get("/v1/companies", response_model=ListResponse)
async def list_companies(client: SanityClient = Depends(get_client)):
    items = await client.list_companies()
    return {"count": len(items), "data": items}


@router.get("/v1/posts", response_model=ListResponse)
async def list_posts(
        username: Optional[str] = Query(None),
        tag: Optional[str] = Query(None),
        achievement_only: bool = Query(False),
        sort_by: str = Query("latest", pattern="^(latest|popular)$"),
        limit: int = Query(10, ge=1, le=100),
        client: SanityClient = Depends(get_client),
):
    post_filter = PostFilter(username=username, tag=tag, achievement_only=achievement_only,
                             sort_by=sort_by, limit=limit)
    items = await client.list_posts(post_filter)
    return {"count": len(items), "data": items}


@router.post("/v1/posts", response_model=MutationResult, status_code=201)
async def create_post(body: PostCreate, client: SanityClient = Depends(get_client)):
    return _mutation_result(await client.create_post(body))


@router.get("/v1/posts/{post_id}")
async def get_post(post_id: str, client: SanityClient = Depends(get_client)):
    post = await client.get_post(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.post("/v1/posts/{post_id}/like", response_model=LikeResult)
async def like_post(post_id: str, body: LikeRequest, client: SanityClient = Depends(get_client)):
    """Toggle the caller's like on a post.

    Raises
    ------
    HTTPException
        404 if `user_id` does not resolve to a user.
    """

    action = await client.toggle_like(post_id, body.user_id)
    if action is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"action": action, "post_id": post_id}


@router.get("/v1/posts/{post_id}/comments")
async def list_comments(post_id: str, client: SanityClient = Depends(get_client)) -> List[Dict[str, Any]]:
    return await client.get_post_comments(post_id)


@router.post("/v1/posts/{post_id}/comments", response_model=CommentResult, status_code=201)
async def add_comment(post_id: str, body: CommentCreate, client: SanityClient = Depends(get_client)):
    key = await client.add_comment(post_id, body.text, body.author_id, body.parent_comment_key)
    return {"post_id": post_id, "comment_key": key}


@router.delete("/v1/posts/{post_id}/comments/{comment_key}", status_code=204, response_class=Response)
async def delete_comment(post_id: str, comment_key: str, client: SanityClient = Depends(get_client)):
    await client.delete_comment(post_id, comment_key)
    return Response(status_code=204)


@router.get("/v1/filters/{entity_type}", response_model=List[FilterConfig])
async def list_filters(entity_type: EntityType):
    """Filters a listing page can offer for `entity_type`."""

    return FILTER_CONFIGS[entity_type]


@router.get("/v1/cache/stats", response_model=CacheStats)
async def cache_stats(client: SanityClient = Depends(get_client)):
    return client.cache.stats()


@router.delete("/v1/cache", response_model=CacheInvalidation)
async def invalidate_cache(pattern: Optional[str] = Query(None, description="Key substring; omit to clear all"),
                           client: SanityClient = Depends(get_client)):
    if pattern:
        removed = client.cache.invalidate_pattern(pattern)
    else:
        removed = len(client.cache)
        client.cache.clear()
    logger.info("Cache invalidation pattern=%r removed=%d", pattern, removed)
    return {"pattern": pattern, "removed": removed}


app = create_app()
