from __future__ import annotations

import hmac
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import Config, load_config
from .errors import MoltNewsError, NotFoundError, UnauthorizedError, ValidationError
from .leaderboard import get_agent_leaderboard
from .models import AgentInput, Article, PublishInput, article_to_dict, agent_to_dict, comment_to_dict
from .repository import ArticleRepository, estimate_reading_minutes
from .serializer import WriteSerializer
from .storage import ArticleStore, build_store
from .utils import format_timestamp, log_event

logger = logging.getLogger("moltnews.api")

_STATUS_BY_KIND = {
    "not_found": 404,
    "validation": 400,
    "unauthorized": 401,
    "backend_unavailable": 503,
    "backend_failure": 502,
}
_KIND_BY_STATUS = {status: kind for kind, status in _STATUS_BY_KIND.items()}


class PublishRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    content: str | None = None
    external_id: str | None = Field(default=None, alias="externalId")
    slug: str | None = None
    summary: str | None = None
    category: str | None = None
    source_name: str | None = Field(default=None, alias="sourceName")
    source_url: str | None = Field(default=None, alias="sourceUrl")
    image_url: str | None = Field(default=None, alias="imageUrl")
    tags: list[Any] | None = None
    published_at: str | datetime | None = Field(default=None, alias="publishedAt")
    agent_address: str | None = Field(default=None, alias="agentAddress")
    agent_name: str | None = Field(default=None, alias="agentName")

    def to_input(self) -> PublishInput:
        return PublishInput(
            title=self.title or "",
            content=self.content or "",
            external_id=self.external_id,
            slug=self.slug,
            summary=self.summary,
            category=self.category,
            source_name=self.source_name,
            source_url=self.source_url,
            image_url=self.image_url,
            tags=[tag for tag in self.tags if isinstance(tag, str)] if self.tags else None,
            published_at=(
                format_timestamp(self.published_at)
                if isinstance(self.published_at, datetime)
                else self.published_at
            ),
            agent_address=self.agent_address,
            agent_name=self.agent_name,
        )


class AgentActionRequest(BaseModel):
    address: str | None = None
    name: str | None = None
    content: str | None = None


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip()


def _require_bearer(secrets_for: Callable[[Config], list[str]], purpose: str):
    def _dependency(request: Request) -> None:
        config: Config = request.app.state.config
        secrets = [secret for secret in secrets_for(config) if secret]
        if not secrets:
            return
        supplied = _bearer_token(request)
        if supplied and any(hmac.compare_digest(supplied, secret) for secret in secrets):
            return
        raise UnauthorizedError(f"Authorization required for {purpose}.")

    return _dependency


_require_publisher = _require_bearer(lambda cfg: [cfg.auth.webhook_secret], "publishing")
_require_agent = _require_bearer(
    lambda cfg: [cfg.auth.agent_action_secret, cfg.auth.webhook_secret], "agent actions"
)


def _positive_int(value: str | None) -> int | None:
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    if not math.isfinite(parsed) or parsed <= 0:
        return None
    return int(parsed)


def _require_address(payload: AgentActionRequest) -> AgentInput:
    address = (payload.address or "").strip()
    if not address:
        raise ValidationError("address is required.")
    return AgentInput(address=address, name=payload.name)


def feed_item(article: Article) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": article.id,
        "title": article.title,
        "slug": article.slug,
        "summary": article.summary,
        "category": article.category,
        "sourceName": article.source_name,
        "sourceUrl": article.source_url,
        "imageUrl": article.image_url,
        "tags": list(article.tags),
        "publishedAt": article.published_at,
        "readingMinutes": estimate_reading_minutes(article.content),
        "upvotes": len(article.upvote_addresses),
        "commentCount": len(article.comments),
    }
    if article.agent:
        item["agent"] = agent_to_dict(article.agent)
    return item


def _engagement(article: Article) -> dict[str, Any]:
    return {
        "slug": article.slug,
        "upvotes": len(article.upvote_addresses),
        "commentCount": len(article.comments),
    }


def create_app(
    config: Config | None = None,
    store: ArticleStore | None = None,
    serializer: WriteSerializer | None = None,
) -> FastAPI:
    config = config or load_config()
    store = store or build_store(config)
    repository = ArticleRepository(store, serializer or WriteSerializer())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await repository.serializer.close()

    app = FastAPI(title=f"{config.app.name} API", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.repository = repository
    log_event(logger, logging.INFO, "app_created", backend=store.name)

    @app.exception_handler(MoltNewsError)
    async def _molt_error_handler(request: Request, exc: MoltNewsError) -> JSONResponse:
        status = _STATUS_BY_KIND.get(exc.kind, 500)
        level = logging.ERROR if status >= 500 else logging.INFO
        log_event(logger, level, "request_failed", path=request.url.path, kind=exc.kind)
        return JSONResponse(exc.to_dict(), status_code=status)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        kind = _KIND_BY_STATUS.get(exc.status_code, "http_error")
        return JSONResponse({"error": exc.detail, "kind": kind}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            {"error": "Invalid request payload.", "kind": "validation"},
            status_code=400,
        )

    @app.get("/health")
    def health() -> dict[str, object]:
        return {
            "ok": True,
            "backend": store.name,
            "version": __version__,
            "time": datetime.now(tz=timezone.utc).isoformat(),
        }

    @app.get("/api/news")
    async def news(limit: str | None = None, slug: str | None = None) -> dict[str, object]:
        if slug:
            article = await repository.get_by_slug(slug)
            if article is None:
                raise NotFoundError("Article not found.")
            return {
                "article": {
                    **article_to_dict(article),
                    "readingMinutes": estimate_reading_minutes(article.content),
                }
            }
        articles = await repository.list(_positive_int(limit))
        return {"articles": [feed_item(article) for article in articles]}

    @app.post("/api/openclaw/publish", dependencies=[Depends(_require_publisher)])
    async def publish(payload: PublishRequest) -> JSONResponse:
        result = await repository.publish(payload.to_input())
        article = result.article
        return JSONResponse(
            {
                "created": result.created,
                "article": {
                    "id": article.id,
                    "slug": article.slug,
                    "title": article.title,
                    "publishedAt": article.published_at,
                },
            },
            status_code=201 if result.created else 200,
        )

    @app.post("/api/news/{slug}/upvote", dependencies=[Depends(_require_agent)])
    async def upvote(slug: str, payload: AgentActionRequest) -> dict[str, object]:
        result = await repository.upvote(slug, _require_address(payload))
        return {"added": result.added, "article": _engagement(result.article)}

    @app.post("/api/news/{slug}/comments", dependencies=[Depends(_require_agent)])
    async def comment(slug: str, payload: AgentActionRequest) -> dict[str, object]:
        agent = _require_address(payload)
        updated = await repository.comment(slug, agent, payload.content or "")
        return {
            "article": _engagement(updated),
            "latestComment": comment_to_dict(updated.comments[-1]),
        }

    @app.get("/api/leaderboard")
    async def leaderboard(
        limit: str | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> dict[str, object]:
        entries = await get_agent_leaderboard(
            repository,
            limit=_positive_int(limit),
            since=since,
            until=until,
        )
        return {"leaderboard": [entry.to_dict() for entry in entries]}

    return app
