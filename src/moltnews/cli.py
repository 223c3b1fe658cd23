from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import yaml
from pydantic import ValidationError as PayloadValidationError

from .api import PublishRequest
from .config import ConfigError, load_config
from .errors import MoltNewsError
from .leaderboard import get_agent_leaderboard
from .models import PublishInput, article_to_dict
from .repository import ArticleRepository
from .storage import build_store
from .utils import configure_logging, json_dumps, log_event


def _print(payload: Any) -> None:
    sys.stdout.write(json_dumps(payload, indent=2) + "\n")


def _repository(args: argparse.Namespace) -> ArticleRepository:
    config = load_config(args.config)
    return ArticleRepository(build_store(config))


def _load_payload(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        if path.endswith((".yml", ".yaml")):
            data = yaml.safe_load(handle)
        else:
            data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError("payload must be an object")
    return data


def _publish_input(data: dict[str, Any]) -> PublishInput:
    # Same checks as the HTTP route; YAML turns unquoted 0x... and bare digits into ints.
    return PublishRequest.model_validate(data).to_input()


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    config = load_config(args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port
    log_event(logger, logging.INFO, "serve_start", host=host, port=port, backend=config.backend_name)
    uvicorn.run("moltnews.api:create_app", factory=True, host=host, port=port)
    return 0


def _cmd_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    repository = _repository(args)
    articles = asyncio.run(repository.list(args.limit))
    _print(
        [
            {
                "slug": article.slug,
                "title": article.title,
                "publishedAt": article.published_at,
                "upvotes": len(article.upvote_addresses),
                "commentCount": len(article.comments),
            }
            for article in articles
        ]
    )
    return 0


def _cmd_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    repository = _repository(args)
    article = asyncio.run(repository.get_by_slug(args.slug))
    if article is None:
        log_event(logger, logging.ERROR, "article_not_found", slug=args.slug)
        return 1
    _print(article_to_dict(article))
    return 0


def _cmd_publish(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        publish_input = _publish_input(_load_payload(args.path))
    except (OSError, ValueError, yaml.YAMLError, PayloadValidationError) as exc:
        log_event(logger, logging.ERROR, "payload_error", path=args.path, error=str(exc))
        return 1
    repository = _repository(args)
    result = asyncio.run(repository.publish(publish_input))
    _print({"created": result.created, "slug": result.article.slug, "id": result.article.id})
    return 0


def _cmd_leaderboard(args: argparse.Namespace, logger: logging.Logger) -> int:
    repository = _repository(args)
    entries = asyncio.run(
        get_agent_leaderboard(repository, limit=args.limit, since=args.since, until=args.until)
    )
    _print(entries)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="moltnews", description="Molt News article store")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to MOLT_CONFIG)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")
    serve_parser.set_defaults(func=_cmd_serve)

    list_parser = subparsers.add_parser("list", help="List articles, newest first")
    list_parser.add_argument("--limit", type=int, default=None, help="Maximum articles to show")
    list_parser.set_defaults(func=_cmd_list)

    show_parser = subparsers.add_parser("show", help="Show one article")
    show_parser.add_argument("slug", help="Article slug")
    show_parser.set_defaults(func=_cmd_show)

    publish_parser = subparsers.add_parser("publish", help="Publish an article from a JSON or YAML file")
    publish_parser.add_argument("path", help="Payload file")
    publish_parser.set_defaults(func=_cmd_publish)

    board_parser = subparsers.add_parser("leaderboard", help="Rank publishing agents")
    board_parser.add_argument("--limit", type=int, default=None, help="Maximum entries")
    board_parser.add_argument("--since", default=None, help="Inclusive lower publish-time bound")
    board_parser.add_argument("--until", default=None, help="Exclusive upper publish-time bound")
    board_parser.set_defaults(func=_cmd_leaderboard)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = configure_logging("moltnews")
    try:
        return args.func(args, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    except MoltNewsError as exc:
        log_event(logger, logging.ERROR, "command_failed", kind=exc.kind, error=exc.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
