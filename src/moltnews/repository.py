from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timezone

from .errors import NotFoundError, ValidationError
from .models import (
    DEFAULT_CATEGORY,
    DEFAULT_SOURCE_NAME,
    MAX_COMMENT_LENGTH,
    MAX_COMMENTS_PER_ARTICLE,
    AgentIdentity,
    AgentInput,
    Article,
    ArticleComment,
    PublishInput,
    PublishResult,
    UpvoteResult,
    fallback_agent_name,
    is_valid_agent_address,
    new_id,
    normalize_agent_address,
    to_agent_identity,
)
from .serializer import WriteSerializer
from .storage.base import ArticleStore
from .utils import (
    format_timestamp,
    log_event,
    normalize_slug,
    normalize_tags,
    optional_str,
    summarize_content,
    to_iso_timestamp,
)

WORDS_PER_MINUTE = 220

logger = logging.getLogger("moltnews.repository")


def estimate_reading_minutes(content: str) -> int:
    words = len(content.split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def resolve_mutation_agent(agent: AgentInput) -> AgentIdentity:
    address = normalize_agent_address(agent.address or "")
    if not is_valid_agent_address(address):
        raise ValidationError("Invalid agent address.")
    return AgentIdentity(
        address=address,
        name=optional_str(agent.name) or fallback_agent_name(address),
    )


class ArticleRepository:
    """Sole owner of article records.

    Reads go straight to the store. Publish, upvote and comment each run their
    full read-modify-write inside one serializer turn.
    """

    def __init__(self, store: ArticleStore, serializer: WriteSerializer | None = None) -> None:
        self.store = store
        self.serializer = serializer or WriteSerializer()

    async def list(self, limit: int | None = None) -> list[Article]:
        if limit is not None and limit <= 0:
            limit = None
        return await self.store.list_articles(limit)

    async def get_by_slug(self, slug: str) -> Article | None:
        return await self.store.get_article(slug)

    async def publish(self, payload: PublishInput) -> PublishResult:
        return await self.serializer.enqueue(lambda: self._publish(payload))

    async def upvote(self, slug: str, agent: AgentInput) -> UpvoteResult:
        return await self.serializer.enqueue(lambda: self._upvote(slug, agent))

    async def comment(self, slug: str, agent: AgentInput, content: str) -> Article:
        return await self.serializer.enqueue(lambda: self._comment(slug, agent, content))

    async def _publish(self, payload: PublishInput) -> PublishResult:
        self.store.ensure_writable()
        title = optional_str(payload.title)
        content = optional_str(payload.content)
        if not title:
            raise ValidationError("title is required")
        if not content:
            raise ValidationError("content is required")

        external_id = optional_str(payload.external_id)
        source_url = optional_str(payload.source_url)
        if external_id:
            existing = await self.store.find_by_external_id(external_id)
            if existing is not None:
                log_event(logger, logging.INFO, "publish_deduplicated", slug=existing.slug, key="external_id")
                return PublishResult(article=existing, created=False)
        if source_url:
            existing = await self.store.find_by_source_url(source_url)
            if existing is not None:
                log_event(logger, logging.INFO, "publish_deduplicated", slug=existing.slug, key="source_url")
                return PublishResult(article=existing, created=False)

        now = datetime.now(tz=timezone.utc)
        base_slug = normalize_slug(optional_str(payload.slug) or title, now=now)
        slug = await self.store.unique_slug(base_slug)
        article = Article(
            id=new_id(),
            slug=slug,
            title=title,
            summary=summarize_content(payload.summary, content),
            content=content,
            category=optional_str(payload.category) or DEFAULT_CATEGORY,
            source_name=optional_str(payload.source_name) or DEFAULT_SOURCE_NAME,
            published_at=to_iso_timestamp(payload.published_at),
            created_at=format_timestamp(now),
            external_id=external_id,
            source_url=source_url,
            image_url=optional_str(payload.image_url),
            tags=normalize_tags(payload.tags),
            agent=to_agent_identity(payload.agent_address, payload.agent_name),
        )
        await self.store.insert_article(article)
        log_event(
            logger,
            logging.INFO,
            "article_published",
            slug=article.slug,
            backend=self.store.name,
            agent=article.agent.address if article.agent else None,
        )
        return PublishResult(article=article, created=True)

    async def _load(self, slug: str) -> Article:
        article = await self.store.get_article(slug)
        if article is None:
            raise NotFoundError("Article not found.")
        return article

    async def _upvote(self, slug: str, agent: AgentInput) -> UpvoteResult:
        self.store.ensure_writable()
        identity = resolve_mutation_agent(agent)
        article = await self._load(slug)
        if identity.address in article.upvote_addresses:
            return UpvoteResult(article=article, added=False)
        updated = replace(article, upvote_addresses=[*article.upvote_addresses, identity.address])
        await self.store.save_article(updated)
        log_event(logger, logging.INFO, "article_upvoted", slug=slug, agent=identity.address)
        return UpvoteResult(article=updated, added=True)

    async def _comment(self, slug: str, agent: AgentInput, content: str) -> Article:
        self.store.ensure_writable()
        identity = resolve_mutation_agent(agent)
        article = await self._load(slug)
        text = (content or "").strip()
        if not text:
            raise ValidationError("Comment content is required.")
        comment = ArticleComment(
            id=new_id(),
            agent=identity,
            content=text[:MAX_COMMENT_LENGTH],
            created_at=to_iso_timestamp(),
        )
        comments = [*article.comments, comment][-MAX_COMMENTS_PER_ARTICLE:]
        updated = replace(article, comments=comments)
        await self.store.save_article(updated)
        log_event(logger, logging.INFO, "article_commented", slug=slug, agent=identity.address)
        return updated
