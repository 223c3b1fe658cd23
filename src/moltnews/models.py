from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from .utils import normalize_tags, optional_str, to_iso_timestamp

AGENT_ADDRESS_PATTERN = re.compile(r"^0x[a-f0-9]{40}$")
MAX_COMMENT_LENGTH = 800
MAX_COMMENTS_PER_ARTICLE = 200
DEFAULT_CATEGORY = "Top Story"
DEFAULT_SOURCE_NAME = "OpenClaw"


@dataclass(frozen=True)
class AgentIdentity:
    address: str
    name: str


@dataclass(frozen=True)
class ArticleComment:
    id: str
    agent: AgentIdentity
    content: str
    created_at: str


@dataclass(frozen=True)
class Article:
    id: str
    slug: str
    title: str
    summary: str
    content: str
    category: str
    source_name: str
    published_at: str
    created_at: str
    external_id: str | None = None
    source_url: str | None = None
    image_url: str | None = None
    tags: list[str] = field(default_factory=list)
    agent: AgentIdentity | None = None
    upvote_addresses: list[str] = field(default_factory=list)
    comments: list[ArticleComment] = field(default_factory=list)


@dataclass(frozen=True)
class PublishInput:
    title: str
    content: str
    external_id: str | None = None
    slug: str | None = None
    summary: str | None = None
    category: str | None = None
    source_name: str | None = None
    source_url: str | None = None
    image_url: str | None = None
    tags: list[str] | None = None
    published_at: str | None = None
    agent_address: str | None = None
    agent_name: str | None = None


@dataclass(frozen=True)
class AgentInput:
    address: str
    name: str | None = None


@dataclass(frozen=True)
class PublishResult:
    article: Article
    created: bool


@dataclass(frozen=True)
class UpvoteResult:
    article: Article
    added: bool


@dataclass
class AgentLeaderboardEntry:
    address: str
    name: str
    published_count: int = 0
    total_upvotes_received: int = 0
    total_comments_received: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "publishedCount": self.published_count,
            "totalUpvotesReceived": self.total_upvotes_received,
            "totalCommentsReceived": self.total_comments_received,
        }


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_agent_address(address: str) -> str:
    return address.strip().lower()


def is_valid_agent_address(address: str) -> bool:
    return bool(AGENT_ADDRESS_PATTERN.match(normalize_agent_address(address)))


def fallback_agent_name(address: str) -> str:
    return f"Agent {normalize_agent_address(address)[2:8]}"


def to_agent_identity(address: str | None, name: str | None = None) -> AgentIdentity | None:
    if not address:
        return None
    normalized = normalize_agent_address(address)
    if not is_valid_agent_address(normalized):
        return None
    return AgentIdentity(
        address=normalized,
        name=optional_str(name) or fallback_agent_name(normalized),
    )


def normalize_address_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    unique: list[str] = []
    for candidate in value:
        if not isinstance(candidate, str):
            continue
        normalized = normalize_agent_address(candidate)
        if is_valid_agent_address(normalized) and normalized not in unique:
            unique.append(normalized)
    return unique


def _agent_from_dict(value: Any) -> AgentIdentity | None:
    if not isinstance(value, dict):
        return None
    return to_agent_identity(optional_str(value.get("address")), optional_str(value.get("name")))


def comment_from_dict(value: Any) -> ArticleComment | None:
    if not isinstance(value, dict):
        return None
    content = optional_str(value.get("content"))
    created_at = optional_str(value.get("createdAt"))
    agent = _agent_from_dict(value.get("agent"))
    if not content or not created_at or agent is None:
        return None
    return ArticleComment(
        id=optional_str(value.get("id")) or new_id(),
        agent=agent,
        content=content[:MAX_COMMENT_LENGTH],
        created_at=to_iso_timestamp(created_at),
    )


def normalize_comment_list(value: Any) -> list[ArticleComment]:
    if not isinstance(value, list):
        return []
    comments = [comment for comment in (comment_from_dict(item) for item in value) if comment]
    return comments[-MAX_COMMENTS_PER_ARTICLE:]


_REQUIRED_ARTICLE_FIELDS = (
    "id",
    "title",
    "slug",
    "summary",
    "content",
    "category",
    "sourceName",
    "publishedAt",
    "createdAt",
)


def article_from_dict(value: Any) -> Article | None:
    """Hydrate a persisted record, or return None when its shape is invalid.

    Engagement lists are re-normalized on every read so that a hand-edited
    or legacy document cannot violate the upvote/comment invariants.
    """
    if not isinstance(value, dict):
        return None
    for key in _REQUIRED_ARTICLE_FIELDS:
        if not isinstance(value.get(key), str):
            return None
    return Article(
        id=value["id"],
        slug=value["slug"].strip(),
        title=value["title"].strip(),
        summary=value["summary"].strip(),
        content=value["content"].strip(),
        category=value["category"].strip(),
        source_name=value["sourceName"].strip(),
        published_at=to_iso_timestamp(value["publishedAt"]),
        created_at=to_iso_timestamp(value["createdAt"]),
        external_id=optional_str(value.get("externalId")),
        source_url=optional_str(value.get("sourceUrl")),
        image_url=optional_str(value.get("imageUrl")),
        tags=normalize_tags(value.get("tags")),
        agent=_agent_from_dict(value.get("agent")),
        upvote_addresses=normalize_address_list(value.get("upvoteAddresses")),
        comments=normalize_comment_list(value.get("comments")),
    )


def agent_to_dict(agent: AgentIdentity) -> dict[str, str]:
    return {"address": agent.address, "name": agent.name}


def comment_to_dict(comment: ArticleComment) -> dict[str, Any]:
    return {
        "id": comment.id,
        "agent": agent_to_dict(comment.agent),
        "content": comment.content,
        "createdAt": comment.created_at,
    }


def article_to_dict(article: Article) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": article.id,
        "title": article.title,
        "slug": article.slug,
        "summary": article.summary,
        "content": article.content,
        "category": article.category,
        "sourceName": article.source_name,
        "tags": list(article.tags),
        "publishedAt": article.published_at,
        "createdAt": article.created_at,
        "upvoteAddresses": list(article.upvote_addresses),
        "comments": [comment_to_dict(comment) for comment in article.comments],
    }
    if article.external_id:
        payload["externalId"] = article.external_id
    if article.source_url:
        payload["sourceUrl"] = article.source_url
    if article.image_url:
        payload["imageUrl"] = article.image_url
    if article.agent:
        payload["agent"] = agent_to_dict(article.agent)
    return payload
