from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from typing import Any

from ..errors import BackendFailureError, BackendUnavailableError
from ..models import Article, article_from_dict, article_to_dict
from ..utils import log_event, timestamp_millis
from .base import ArticleStore, suffix_candidates

logger = logging.getLogger("moltnews.storage.local")


class LocalFileStore(ArticleStore):
    """Keeps the whole article collection in one JSON document.

    Every mutation rewrites the document wholesale, which is fine for small
    corpora; large feeds belong on the remote backend.
    """

    name = "local"

    def __init__(self, path: str, allow_writes: bool = True) -> None:
        self.path = path
        self.allow_writes = allow_writes

    def ensure_writable(self) -> None:
        if not self.allow_writes:
            raise BackendUnavailableError(
                "Writable storage is not configured. Set KV_REST_API_URL and "
                "KV_REST_API_TOKEN to use the remote store."
            )

    async def list_articles(self, limit: int | None = None) -> list[Article]:
        articles = await self._read()
        if limit is not None and limit > 0:
            return articles[:limit]
        return articles

    async def get_article(self, slug: str) -> Article | None:
        for article in await self._read():
            if article.slug == slug:
                return article
        return None

    async def find_by_external_id(self, external_id: str) -> Article | None:
        for article in await self._read():
            if article.external_id == external_id:
                return article
        return None

    async def find_by_source_url(self, source_url: str) -> Article | None:
        for article in await self._read():
            if article.source_url == source_url:
                return article
        return None

    async def unique_slug(self, desired_slug: str) -> str:
        taken = {article.slug for article in await self._read()}
        return next(slug for slug in suffix_candidates(desired_slug) if slug not in taken)

    async def insert_article(self, article: Article) -> None:
        self.ensure_writable()
        articles = await self._read()
        await self._write([article, *articles])

    async def save_article(self, article: Article) -> None:
        self.ensure_writable()
        articles = await self._read()
        for index, existing in enumerate(articles):
            if existing.slug == article.slug:
                articles[index] = article
                break
        else:
            raise BackendFailureError(f"Article {article.slug} vanished before it could be saved.")
        await self._write(articles)

    async def _read(self) -> list[Article]:
        return await asyncio.to_thread(read_articles_file, self.path)

    async def _write(self, articles: list[Article]) -> None:
        await asyncio.to_thread(write_articles_file, self.path, articles)


def sort_by_published(articles: list[Article]) -> list[Article]:
    return sorted(
        articles,
        key=lambda article: timestamp_millis(article.published_at) or 0,
        reverse=True,
    )


def read_articles_file(path: str) -> list[Article]:
    if not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload: Any = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        log_event(logger, logging.ERROR, "articles_file_unreadable", path=path, error=str(exc))
        raise BackendFailureError(f"Unable to read article store {path}: {exc}") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("articles"), list):
        return []
    articles = [article_from_dict(item) for item in payload["articles"]]
    return sort_by_published([article for article in articles if article is not None])


def write_articles_file(path: str, articles: list[Article]) -> None:
    """Serialize to a sibling temp file, then rename it over ``path``.

    A failure at any point leaves the previous document untouched.
    """
    directory = os.path.dirname(os.path.abspath(path))
    document = json.dumps(
        {"articles": [article_to_dict(article) for article in sort_by_published(articles)]},
        indent=2,
        ensure_ascii=False,
    )
    temp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=directory, prefix=f".{os.path.basename(path)}.", suffix=".tmp"
        )
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(document)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
        temp_path = None
    except OSError as exc:
        log_event(logger, logging.ERROR, "articles_file_write_failed", path=path, error=str(exc))
        raise BackendFailureError(f"Unable to write article store {path}: {exc}") from exc
    finally:
        if temp_path and os.path.exists(temp_path):
            os.remove(temp_path)
