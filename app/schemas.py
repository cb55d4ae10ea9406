from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

EntityType = Literal["agent", "client", "project", "company", "feed"]
FilterType = Literal["select", "multiSelect", "range", "toggle", "search"]
SortOrder = Literal["asc", "desc"]

# a plain attribute path such as `_createdAt` or `coreIdentity.fullName`
SORT_FIELD_PATTERN = r"^[A-Za-z_][A-Za-z0-9_.]*$"


class FilterOption(BaseModel):
    label: str
    value: Union[str, int]


class FilterConfig(BaseModel):
    """A single filter a listing page can offer.

    Notes
    -----
    - `field` is the GROQ path the filter value is compared against.
    - `type` decides how the value is rendered into a condition (see
      `app.queries.build_filter_query`).
    """

    id: str
    label: str
    type: FilterType
    field: str
    options: List[FilterOption] = Field(default_factory=list)


class SortConfig(BaseModel):
    field: str = Field(..., pattern=SORT_FIELD_PATTERN)
    order: SortOrder = "desc"


class PostFilter(BaseModel):
    username: Optional[str] = None
    tag: Optional[str] = None
    achievement_only: bool = False
    sort_by: Literal["latest", "popular"] = "latest"
    limit: int = Field(10, ge=1, le=100)

    def cache_kind(self) -> str:
        """Stable suffix for the `posts:<kind>` cache key of this filter."""

        parts = [self.sort_by, str(self.limit)]
        if self.username:
            parts.append(f"user={self.username}")
        if self.tag:
            parts.append(f"tag={self.tag}")
        if self.achievement_only:
            parts.append("achievements")
        if parts == ["latest", "10"]:
            return "all"
        return ":".join(parts)


class PostCreate(BaseModel):
    author_id: str
    title: str
    content: str
    tags: List[str] = Field(default_factory=list)
    is_achievement: bool = False
    achievement_type: Optional[str] = None


class LikeRequest(BaseModel):
    user_id: str


class LikeResult(BaseModel):
    action: Literal["like", "unlike"]
    post_id: str


class CommentCreate(BaseModel):
    author_id: str
    text: str = Field(..., min_length=1)
    parent_comment_key: Optional[str] = None


class CommentResult(BaseModel):
    post_id: str
    comment_key: str


class UserPatch(BaseModel):
    """Partial update of a user document; keys are GROQ paths."""

    changes: Dict[str, Any] = Field(..., min_length=1)


class MutationResult(BaseModel):
    transaction_id: Optional[str] = None
    document_ids: List[str] = Field(default_factory=list)


class ListResponse(BaseModel):
    count: int
    data: List[Dict[str, Any]]


class CacheStats(BaseModel):
    entries: int
    hits: int
    misses: int
    evictions: int
    default_ttl_ms: int


class CacheInvalidation(BaseModel):
    pattern: Optional[str] = None
    removed: int


class Health(BaseModel):
    status: str
    time: datetime
