from __future__ import annotations

import httpx

from ..config import Config
from .base import ArticleStore
from .kv import RestKVClient
from .local import LocalFileStore
from .remote import RemoteKVStore

__all__ = ["ArticleStore", "LocalFileStore", "RemoteKVStore", "RestKVClient", "build_store"]


def build_store(config: Config, transport: httpx.AsyncBaseTransport | None = None) -> ArticleStore:
    if config.remote.configured:
        client = RestKVClient(
            config.remote.url,
            config.remote.token,
            timeout_seconds=config.remote.timeout_seconds,
            transport=transport,
        )
        return RemoteKVStore(client, key_prefix=config.remote.key_prefix)
    return LocalFileStore(
        config.storage.articles_path,
        allow_writes=config.storage.allow_local_writes,
    )
