from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

SUMMARY_LENGTH = 180
MAX_TAGS = 8


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    parts = [f"event={event}"]
    for key, value in fields.items():
        parts.append(f"{key}={value}")
    logger.log(level, " ".join(parts))


def configure_logging(logger_name: str, default_level: str = "INFO") -> logging.Logger:
    level_name = os.environ.get("MOLT_LOG_LEVEL", default_level).upper()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            stream=sys.stdout,
            level=getattr(logging, level_name, logging.INFO),
            format="%(asctime)s %(levelname)s %(message)s",
        )
    _ensure_stdout_handler(level_name)
    _maybe_add_file_handler(level_name)
    _apply_log_overrides()
    return logging.getLogger(logger_name)


def _apply_log_overrides() -> None:
    overrides = os.environ.get("MOLT_LOG_LEVELS", "")
    if not overrides:
        return
    for item in overrides.split(","):
        if not item.strip() or "=" not in item:
            continue
        name, level = item.split("=", 1)
        logger = logging.getLogger(name.strip())
        logger.setLevel(getattr(logging, level.strip().upper(), logging.INFO))


def _maybe_add_file_handler(level_name: str) -> None:
    log_path = os.environ.get("MOLT_LOG_FILE")
    if not log_path:
        return
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == os.path.abspath(log_path):
            return
    os.makedirs(os.path.dirname(os.path.abspath(log_path)), exist_ok=True)
    handler = logging.FileHandler(log_path)
    handler.setLevel(getattr(logging, level_name, logging.INFO))
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    root.addHandler(handler)


def _ensure_stdout_handler(level_name: str) -> None:
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stdout:
            return
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level_name, logging.INFO))
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    root.addHandler(handler)


def json_dumps(value: Any, indent: int | None = None) -> str:
    return json.dumps(value, default=_json_default, sort_keys=True, indent=indent)


def _json_default(value: Any) -> Any:
    # Result types expose their camelCase wire shape through to_dict().
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_slug(value: str, now: datetime | None = None) -> str:
    """Lowercase, drop anything but [a-z0-9], whitespace and hyphens, then
    hyphenate. Empty results fall back to ``story-<epoch millis>``."""
    sanitized = value.lower().strip()
    sanitized = re.sub(r"[^a-z0-9\s-]", "", sanitized)
    sanitized = re.sub(r"\s+", "-", sanitized)
    sanitized = re.sub(r"-+", "-", sanitized)
    sanitized = sanitized.strip("-")
    if sanitized:
        return sanitized
    return f"story-{epoch_millis(now or datetime.now(tz=timezone.utc))}"


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def summarize_content(summary: str | None, content: str) -> str:
    if summary and summary.strip():
        return summary.strip()
    collapsed = collapse_whitespace(content)
    if len(collapsed) <= SUMMARY_LENGTH:
        return collapsed
    return f"{collapsed[:SUMMARY_LENGTH - 3]}..."


def normalize_tags(tags: Any) -> list[str]:
    if not isinstance(tags, (list, tuple)):
        return []
    result: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        cleaned = tag.strip()
        if cleaned and cleaned not in result:
            result.append(cleaned)
    return result[:MAX_TAGS]


def _normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _normalize_datetime(value)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return _normalize_datetime(datetime.fromisoformat(iso_text))
    except ValueError:
        pass
    try:
        return _normalize_datetime(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        return None


def format_timestamp(value: datetime) -> str:
    normalized = _normalize_datetime(value)
    return normalized.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_iso_timestamp(value: Any = None) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        parsed = datetime.now(tz=timezone.utc)
    return format_timestamp(parsed)


def epoch_millis(value: datetime) -> int:
    return round(_normalize_datetime(value).timestamp() * 1000)


def timestamp_millis(value: str) -> int | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return epoch_millis(parsed)
