from __future__ import annotations

import json
import logging

from ..errors import BackendFailureError
from ..models import Article, article_from_dict, article_to_dict
from ..utils import log_event, sha256_hex, timestamp_millis
from .base import ArticleStore, suffix_candidates
from .kv import Command, RestKVClient

logger = logging.getLogger("moltnews.storage.remote")


class RemoteKVStore(ArticleStore):
    name = "remote"

    def __init__(self, client: RestKVClient, key_prefix: str = "molt:news") -> None:
        self.client = client
        self.key_prefix = key_prefix

    @property
    def published_set_key(self) -> str:
        return f"{self.key_prefix}:published"

    def article_key(self, slug: str) -> str:
        return f"{self.key_prefix}:article:slug:{slug}"

    def external_id_key(self, external_id: str) -> str:
        return f"{self.key_prefix}:index:external:{external_id}"

    def source_url_key(self, source_url: str) -> str:
        return f"{self.key_prefix}:index:source:{sha256_hex(source_url)}"

    async def list_articles(self, limit: int | None = None) -> list[Article]:
        slugs = await self.client.range_recent(self.published_set_key, limit)
        if not slugs:
            return []
        replies = await self.client.pipeline([["GET", self.article_key(slug)] for slug in slugs])
        articles: list[Article] = []
        for reply in replies:
            if reply.error:
                raise BackendFailureError(reply.error)
            article = _parse_article(reply.result)
            if article is not None:
                articles.append(article)
        return articles

    async def get_article(self, slug: str) -> Article | None:
        return _parse_article(await self.client.get(self.article_key(slug)))

    async def find_by_external_id(self, external_id: str) -> Article | None:
        return await self._resolve_index(self.external_id_key(external_id))

    async def find_by_source_url(self, source_url: str) -> Article | None:
        return await self._resolve_index(self.source_url_key(source_url))

    async def unique_slug(self, desired_slug: str) -> str:
        for candidate in suffix_candidates(desired_slug):
            if not await self.client.get(self.article_key(candidate)):
                return candidate

    async def insert_article(self, article: Article) -> None:
        await self._persist(article)

    async def save_article(self, article: Article) -> None:
        await self._persist(article)

    async def _resolve_index(self, index_key: str) -> Article | None:
        slug = await self.client.get(index_key)
        if not slug:
            return None
        return await self.get_article(str(slug))

    async def _persist(self, article: Article) -> None:
        """Write the body, the ordered-set entry and both dedup indices in one
        MULTI/EXEC; any failed sub-command fails the whole write."""
        score = timestamp_millis(article.published_at) or 0
        commands: list[Command] = [
            ["SET", self.article_key(article.slug), json.dumps(article_to_dict(article))],
            ["ZADD", self.published_set_key, score, article.slug],
        ]
        if article.external_id:
            commands.append(["SET", self.external_id_key(article.external_id), article.slug])
        if article.source_url:
            commands.append(["SET", self.source_url_key(article.source_url), article.slug])
        replies = await self.client.multi_exec(commands)
        if len(replies) != len(commands):
            raise BackendFailureError("Key-value transaction returned an unexpected reply count.")
        for reply in replies:
            if reply.error:
                log_event(
                    logger,
                    logging.ERROR,
                    "kv_transaction_failed",
                    slug=article.slug,
                    error=reply.error,
                )
                raise BackendFailureError(reply.error)


def _parse_article(raw: object) -> Article | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return article_from_dict(json.loads(raw))
    except json.JSONDecodeError:
        return None
