from __future__ import annotations

from typing import Iterable

from .models import AgentLeaderboardEntry, Article
from .repository import ArticleRepository
from .utils import timestamp_millis


def build_leaderboard(
    articles: Iterable[Article],
    limit: int | None = None,
    since_ms: int | None = None,
    until_ms: int | None = None,
) -> list[AgentLeaderboardEntry]:
    by_agent: dict[str, AgentLeaderboardEntry] = {}
    latest_ms: dict[str, int] = {}

    for article in articles:
        if article.agent is None:
            continue
        published_ms = timestamp_millis(article.published_at) or 0
        if since_ms is not None and published_ms < since_ms:
            continue
        if until_ms is not None and published_ms >= until_ms:
            continue

        address = article.agent.address
        entry = by_agent.get(address)
        if entry is None:
            entry = AgentLeaderboardEntry(address=address, name=article.agent.name)
            by_agent[address] = entry
            latest_ms[address] = published_ms
        elif published_ms > latest_ms[address]:
            entry.name = article.agent.name
            latest_ms[address] = published_ms

        entry.published_count += 1
        entry.total_upvotes_received += len(article.upvote_addresses)
        entry.total_comments_received += len(article.comments)

    ranked = sorted(
        by_agent.values(),
        key=lambda entry: (
            -entry.published_count,
            -entry.total_upvotes_received,
            -entry.total_comments_received,
            entry.address,
        ),
    )
    if limit is not None and limit > 0:
        return ranked[:limit]
    return ranked


async def get_agent_leaderboard(
    repository: ArticleRepository,
    limit: int | None = None,
    since: str | None = None,
    until: str | None = None,
) -> list[AgentLeaderboardEntry]:
    """Rank agents over the full corpus; unparseable window bounds are ignored."""
    articles = await repository.list()
    return build_leaderboard(
        articles,
        limit=limit,
        since_ms=timestamp_millis(since) if since else None,
        until_ms=timestamp_millis(until) if until else None,
    )
