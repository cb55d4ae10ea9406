"""GROQ query builders for the content store.

Listing pages send a filter state (a mapping of filter id to value), an
optional free-text search and an optional sort. The helpers here turn that
into a GROQ string. Values are escaped before being interpolated.
"""

from typing import Any, Dict, List, Mapping, Optional

from .schemas import EntityType, FilterConfig, FilterOption, PostFilter, SortConfig

DOCUMENT_TYPES: Dict[str, str] = {
    "agent": "agentProfile",
    "client": "clientProfile",
    "project": "project",
    "company": "company",
    "feed": "post",
}


def _options(*pairs) -> List[FilterOption]:
    return [FilterOption(label=label, value=value) for label, value in pairs]


FILTER_CONFIGS: Dict[str, List[FilterConfig]] = {
    "agent": [
        FilterConfig(id="availability", label="Availability", type="toggle", field="availability.currentStatus"),
        FilterConfig(id="industry", label="Industry", type="multiSelect", field="mustHaveRequirements.industryDomain"),
        FilterConfig(id="automationServices", label="Automation Services", type="multiSelect",
                     field="automationExpertise.automationServices"),
        FilterConfig(id="toolsExpertise", label="Tools Expertise", type="multiSelect",
                     field="automationExpertise.toolsExpertise"),
        FilterConfig(id="hourlyRate", label="Hourly Rate", type="range", field="pricing.hourlyRateRange"),
    ],
    "client": [
        FilterConfig(id="availability", label="Has Active Projects", type="toggle", field="activeProjects"),
        FilterConfig(id="industry", label="Industry", type="multiSelect", field="mustHaveRequirements.industryDomain"),
        FilterConfig(id="automationNeeds", label="Automation Needs", type="multiSelect",
                     field="automationNeeds.automationRequirements"),
        FilterConfig(id="budgetRange", label="Budget Range", type="multiSelect",
                     field="projectPreferences.budgetRange"),
        FilterConfig(id="tools", label="Current Tools", type="multiSelect", field="automationNeeds.currentTools"),
    ],
    "project": [
        FilterConfig(id="priority", label="Priority", type="select", field="priority",
                     options=_options(("Low", "low"), ("Medium", "medium"), ("High", "high"))),
        FilterConfig(id="status", label="Status", type="select", field="status",
                     options=_options(("Open", "open"), ("In Progress", "in-progress"),
                                      ("Completed", "completed"), ("On Hold", "on-hold"))),
        FilterConfig(id="budget", label="Budget", type="range", field="budget"),
        FilterConfig(id="industry", label="Industry", type="multiSelect", field="industryDomain"),
        FilterConfig(id="duration", label="Duration (weeks)", type="range", field="duration"),
    ],
    "company": [
        FilterConfig(id="industries", label="Industries", type="multiSelect", field="industries"),
        FilterConfig(id="teamSize", label="Team Size", type="select", field="teamSize"),
        FilterConfig(id="location", label="Location", type="search", field="location"),
    ],
    "feed": [
        FilterConfig(id="authorType", label="Author Type", type="multiSelect", field="authorType",
                     options=_options(("Agents", "agent"), ("Clients", "client"))),
        FilterConfig(id="industry", label="Industry", type="multiSelect",
                     field="author.mustHaveRequirements.industryDomain"),
        FilterConfig(id="isAchievement", label="Achievements Only", type="toggle", field="isAchievement"),
        FilterConfig(id="achievementType", label="Achievement Type", type="multiSelect", field="achievementType",
                     options=_options(("Project Completion", "projectCompletion"),
                                      ("Milestone Achievement", "milestoneAchievement"),
                                      ("Skill Certification", "skillCertification"),
                                      ("Business Growth", "businessGrowth"),
                                      ("Client Success", "clientSuccess"),
                                      ("Innovation", "innovation"))),
        FilterConfig(id="tags", label="Tags", type="search", field="tags"),
    ],
}


def quote(value: Any) -> str:
    """Render `value` as a GROQ string literal."""

    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return quote(value)


def _order(sort: Optional[SortConfig]) -> str:
    if sort is None:
        return ""
    return f" | order({sort.field} {sort.order})"


def _condition(config: FilterConfig, value: Any) -> Optional[str]:
    if config.type == "toggle":
        return f"{config.field} == {_literal(value)}"
    if config.type == "select":
        return f"{config.field} == {quote(value)}" if value else None
    if config.type == "multiSelect":
        if isinstance(value, (list, tuple)) and value:
            return f"{config.field} in [{','.join(quote(v) for v in value)}]"
        return None
    if config.type == "range":
        if not isinstance(value, (list, tuple)):
            return None
        bounds = []
        lo = value[0] if len(value) > 0 else None
        hi = value[1] if len(value) > 1 else None
        # non-numeric bounds are dropped
        if _is_number(lo):
            bounds.append(f"{config.field} >= {lo}")
        if _is_number(hi):
            bounds.append(f"{config.field} <= {hi}")
        return " && ".join(bounds) or None
    if config.type == "search":
        return f"{config.field} match {quote(f'*{value}*')}" if value else None
    return None


def build_filter_query(entity_type: EntityType, filters: Optional[Mapping[str, Any]] = None,
                       search: str = "", sort: Optional[SortConfig] = None) -> str:
    """Build a GROQ listing query for a generic entity page.

    Parameters
    ----------
    entity_type : EntityType
        Listing page kind; mapped to its document `_type`.
    filters : Optional[Mapping[str, Any]]
        Filter id to value. Ids without a config for `entity_type` are ignored.
    search : str
        Free text matched against `name` and `description`.
    sort : Optional[SortConfig]
        Optional ordering appended as a pipe.

    Returns
    -------
    str
        e.g. `*[_type == "project" && status == "open"] | order(createdAt desc)`.
    """

    configs = {c.id: c for c in FILTER_CONFIGS[entity_type]}
    conditions = []
    if search:
        pattern = quote(f"*{search}*")
        conditions.append(f"(name match {pattern} || description match {pattern})")
    for key, value in (filters or {}).items():
        config = configs.get(key)
        if config is None:
            continue
        cond = _condition(config, value)
        if cond:
            conditions.append(cond)

    query = f"*[_type == {quote(DOCUMENT_TYPES[entity_type])}"
    if conditions:
        query += " && " + " && ".join(conditions)
    query += "]"
    return query + _order(sort)


# --- agent / client listings -------------------------------------------------

_PROFILE_SEARCH_FIELDS = (
    "coreIdentity.fullName",
    "coreIdentity.tagline",
    "coreIdentity.bio",
    "personalDetails.username",
)

_USER_CARD_PROJECTION = """{
  "userProfile": {
    _id,
    clerkId,
    "personalDetails": {
      "username": personalDetails.username,
      "website": personalDetails.website,
      "socialLinks": personalDetails.socialLinks,
      "profilePicture": personalDetails.profilePicture.asset->url,
      "bannerImage": personalDetails.bannerImage.asset->url
    },
    coreIdentity,
    "companyDetails": select(
      hasCompany && count(companies) > 0 => companies[0]->{name, bio, "logo": logo.asset->url,
                                                        "industry": coalesce(industry, "other")},
      null
    )
  },
  "%(kind)s": *[_type == "%(kind)s" && references(^._id)][0]
}"""


def _any_of(values, template: str) -> Optional[str]:
    if not isinstance(values, (list, tuple)) or not values:
        return None
    return "(" + " || ".join(template.format(v=quote(v)) for v in values) + ")"


def hourly_rate_buckets(low: float, high: float) -> List[str]:
    """Map a `[low, high]` dollar range to the stored hourly-rate buckets."""

    buckets = []
    if low <= 25:
        buckets.append("under25")
    if low <= 25 and high >= 25:
        buckets.append("25to50")
    if low <= 50 and high >= 50:
        buckets.append("50to100")
    if high >= 100:
        buckets.append("over100")
    return buckets


def _agent_condition(key: str, value: Any) -> Optional[str]:
    profile = '*[_type == "agentProfile" && references(^._id)][0]'
    if key == "availability":
        return f'{profile}.availability.currentStatus == "available"'
    if key == "industry":
        return _any_of(value, "{v} in " + profile + ".mustHaveRequirements.industryDomain")
    if key == "automationServices":
        return _any_of(value, "{v} in " + profile + ".automationExpertise.automationServices")
    if key == "toolsExpertise":
        return _any_of(value, "{v} in " + profile + ".automationExpertise.toolsExpertise")
    if (key == "hourlyRate" and isinstance(value, (list, tuple)) and len(value) == 2
            and all(_is_number(v) for v in value)):
        return _any_of(hourly_rate_buckets(value[0], value[1]), profile + ".pricing.hourlyRateRange == {v}")
    return None


def _client_condition(key: str, value: Any) -> Optional[str]:
    profile = '*[_type == "clientProfile" && references(^._id)][0]'
    if key == "availability":
        return 'count(*[_type == "project" && references(^._id) && status == "active"]) > 0'
    if key == "industry":
        return _any_of(value, "{v} in " + profile + ".mustHaveRequirements.industryDomain")
    if key == "automationNeeds":
        return _any_of(value, "{v} in " + profile + ".automationNeeds.automationRequirements")
    if key == "tools":
        return _any_of(value, "{v} in " + profile + ".automationNeeds.currentTools")
    if key == "budgetRange":
        return _any_of(value, profile + ".projectPreferences.budgetRange == {v}")
    return None


def build_profile_query(kind: str, filters: Optional[Mapping[str, Any]] = None,
                        search: str = "", sort: Optional[SortConfig] = None) -> str:
    """Build the listing query for users holding an agent or client profile.

    `kind` is either `"agent"` or `"client"`. Falsy filter values are skipped.
    """

    if kind not in ("agent", "client"):
        raise ValueError(f"Unknown profile kind: {kind}")
    doc_type = DOCUMENT_TYPES[kind]
    to_condition = _agent_condition if kind == "agent" else _client_condition

    conditions = []
    if search:
        pattern = quote(f"*{search}*")
        conditions.append("(" + " || ".join(f"{f} match {pattern}" for f in _PROFILE_SEARCH_FIELDS) + ")")
    for key, value in (filters or {}).items():
        if not value:
            continue
        cond = to_condition(key, value)
        if cond:
            conditions.append(cond)

    query = f'*[_type == "user" && references(*[_type == "{doc_type}"]._id)'
    if conditions:
        query += " && (" + " && ".join(conditions) + ")"
    query += "]"
    return query + _order(sort) + " " + _USER_CARD_PROJECTION % {"kind": doc_type}


# --- users ---------------------------------------------------------------------

USER_BY_USERNAME = """*[_type == "user" && personalDetails.username == $username][0]{
  ...,
  "personalDetails": personalDetails{
    ...,
    "profilePicture": profilePicture.asset->url,
    "bannerImage": bannerImage.asset->url
  },
  "companies": companies[]->{_id, name},
  "agentProfiles": *[_type == "agentProfile" && references(^._id)]{_id, profileId},
  "clientProfiles": *[_type == "clientProfile" && references(^._id)]{_id, profileId}
}"""

USER_LIGHT_BY_USERNAME = """*[_type == "user" && personalDetails.username == $username][0]{
  _id,
  clerkId,
  "username": personalDetails.username,
  "profilePicture": personalDetails.profilePicture.asset->url,
  "fullName": coreIdentity.fullName,
  "tagline": coreIdentity.tagline
}"""

USER_BY_ID = """*[_type == "user" && _id == $userId][0]{
  _id,
  "username": personalDetails.username,
  "profilePicture": personalDetails.profilePicture.asset->url
}"""

USER_PROFILES = """{
  "agentProfiles": *[_type == "agentProfile" && references($userId)],
  "clientProfiles": *[_type == "clientProfile" && references($userId)]
}"""

AGENT_PROFILE = '*[_type == "agentProfile" && _id == $profileId][0]'
CLIENT_PROFILE = '*[_type == "clientProfile" && _id == $profileId][0]'

COMPANIES = """*[_type == "company"] | order(name asc){
  ...,
  "logo": logo.asset->url
}"""


# --- posts ---------------------------------------------------------------------

_AUTHOR_PROJECTION = """{
    _id,
    personalDetails{username, "profilePicture": profilePicture.asset->url},
    coreIdentity{fullName, tagline, bio},
    mustHaveRequirements{industryDomain}
  }"""

POST_PROJECTION = """{
  ...,
  "author": coalesce(author->%(author)s, author->userId->%(author)s),
  media[]{type, caption, altText, "url": file.asset->url},
  comments[]{_key, "text": coalesce(content, text), createdAt, isEdited, updatedAt,
             "author": author->%(author)s},
  likes[]{_key, likedAt, personalDetails}
}""" % {"author": _AUTHOR_PROJECTION}


def all_posts(post_filter: Optional[PostFilter] = None) -> str:
    """Feed query honouring author, tag and achievement filters."""

    post_filter = post_filter or PostFilter()
    conditions = []
    if post_filter.username:
        conditions.append(f"author->personalDetails.username == {quote(post_filter.username)}")
    if post_filter.tag:
        conditions.append(f"{quote(post_filter.tag)} in tags")
    if post_filter.achievement_only:
        conditions.append("isAchievement == true")

    query = '*[_type == "post"'
    if conditions:
        query += " && " + " && ".join(conditions)
    query += "]"
    if post_filter.sort_by == "latest":
        query += " | order(createdAt desc)"
    else:
        query += " | order(length(likes) desc, createdAt desc)"
    return query + f"[0...{post_filter.limit}]" + POST_PROJECTION


def _require_id(post_id: str) -> str:
    if not post_id:
        raise ValueError("Post ID is required")
    return quote(post_id)


def post_by_id(post_id: str) -> str:
    return f'*[_type == "post" && _id == {_require_id(post_id)}]{POST_PROJECTION}[0]'


def post_likes(post_id: str) -> str:
    return f'*[_type == "post" && _id == {_require_id(post_id)}][0]{{"likes": coalesce(likes, [])}}'


def post_comments(post_id: str) -> str:
    return (
        f'*[_type == "post" && _id == {_require_id(post_id)}][0]{{'
        f'"comments": comments[]{{_key, "text": coalesce(content, text), createdAt, isEdited, updatedAt, '
        f'"author": author->{_AUTHOR_PROJECTION}, '
        f'"replies": replies[]{{_key, "text": coalesce(content, text), createdAt, '
        f'"author": author->{_AUTHOR_PROJECTION}}}}}}}'
    )
