from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

import httpx

from ..errors import BackendFailureError
from ..utils import log_event

logger = logging.getLogger("moltnews.storage.kv")

Command = Sequence[str | int | float]


@dataclass(frozen=True)
class KVReply:
    result: Any = None
    error: str | None = None


class RestKVClient:
    """Client for an Upstash-compatible Redis REST endpoint.

    Single commands go to the base URL, ``pipeline`` batches to ``/pipeline``
    and atomic batches to ``/multi-exec``. Batch forms return one ``KVReply``
    per command, in input order.
    """

    def __init__(
        self,
        url: str,
        token: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def get(self, key: str) -> str | None:
        return await self.command(["GET", key])

    async def set(self, key: str, value: str) -> None:
        await self.command(["SET", key, value])

    async def add_to_ordered_set(self, set_key: str, score: float, member: str) -> None:
        await self.command(["ZADD", set_key, score, member])

    async def range_recent(self, set_key: str, limit: int | None = None) -> list[str]:
        end = limit - 1 if limit is not None and limit > 0 else -1
        result = await self.command(["ZREVRANGE", set_key, 0, end])
        if not isinstance(result, list):
            return []
        return [str(member) for member in result]

    async def command(self, command: Command) -> Any:
        payload = await self._request("", list(command))
        if not isinstance(payload, dict):
            raise BackendFailureError("Invalid key-value response payload.")
        if "error" in payload:
            raise BackendFailureError(str(payload["error"]))
        return payload.get("result")

    async def pipeline(self, commands: list[Command]) -> list[KVReply]:
        return _parse_batch(await self._request("/pipeline", [list(c) for c in commands]), "pipeline")

    async def multi_exec(self, commands: list[Command]) -> list[KVReply]:
        return _parse_batch(
            await self._request("/multi-exec", [list(c) for c in commands]), "transaction"
        )

    async def _request(self, endpoint: str, body: Any) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                headers=headers,
                transport=self._transport,
            ) as client:
                response = await client.post(f"{self.url}{endpoint}", json=body)
        except httpx.HTTPError as exc:
            log_event(logger, logging.ERROR, "kv_request_failed", endpoint=endpoint or "/", error=str(exc))
            raise BackendFailureError(f"Key-value request failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendFailureError(
                f"Key-value response was not JSON (status {response.status_code})"
            ) from exc
        if response.is_error:
            detail = (
                str(payload["error"])
                if isinstance(payload, dict) and "error" in payload
                else f"Key-value request failed with status {response.status_code}"
            )
            log_event(
                logger,
                logging.ERROR,
                "kv_request_rejected",
                endpoint=endpoint or "/",
                status=response.status_code,
            )
            raise BackendFailureError(detail)
        return payload


def _parse_batch(payload: Any, label: str) -> list[KVReply]:
    if not isinstance(payload, list):
        raise BackendFailureError(f"Invalid key-value {label} response.")
    replies: list[KVReply] = []
    for entry in payload:
        if not isinstance(entry, dict):
            replies.append(KVReply(error=f"malformed {label} entry"))
            continue
        error = entry.get("error")
        replies.append(KVReply(result=entry.get("result"), error=str(error) if error else None))
    return replies
