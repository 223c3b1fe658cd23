from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import Article


class ArticleStore(ABC):
    """Storage port shared by the local file and remote key-value backends.

    Stores never enforce write ordering themselves; callers funnel every
    mutation through a ``WriteSerializer``.
    """

    name = "abstract"

    def ensure_writable(self) -> None:
        return None

    @abstractmethod
    async def list_articles(self, limit: int | None = None) -> list[Article]:
        raise NotImplementedError

    @abstractmethod
    async def get_article(self, slug: str) -> Article | None:
        raise NotImplementedError

    @abstractmethod
    async def find_by_external_id(self, external_id: str) -> Article | None:
        raise NotImplementedError

    @abstractmethod
    async def find_by_source_url(self, source_url: str) -> Article | None:
        raise NotImplementedError

    @abstractmethod
    async def unique_slug(self, desired_slug: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def insert_article(self, article: Article) -> None:
        raise NotImplementedError

    @abstractmethod
    async def save_article(self, article: Article) -> None:
        raise NotImplementedError


def suffix_candidates(desired_slug: str):
    yield desired_slug
    index = 2
    while True:
        yield f"{desired_slug}-{index}"
        index += 1
