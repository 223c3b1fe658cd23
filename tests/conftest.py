from __future__ import annotations

import json

import httpx
import pytest

from moltnews.config import load_config
from moltnews.repository import ArticleRepository
from moltnews.storage import LocalFileStore, RemoteKVStore, RestKVClient

KV_URL = "https://kv.example.test"
KV_TOKEN = "kv-token"

AGENT_A = "0x" + "a" * 40
AGENT_B = "0x" + "b" * 40
AGENT_C = "0x" + "c" * 40


class FakeKVServer:
    """In-memory stand-in for an Upstash-style Redis REST endpoint."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.fail_commands: set[str] = set()
        self.calls: list[tuple[str, object]] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("authorization") != f"Bearer {KV_TOKEN}":
            return httpx.Response(401, json={"error": "Unauthorized"})
        body = json.loads(request.content)
        path = request.url.path
        self.calls.append((path, body))
        if path == "/pipeline":
            return httpx.Response(200, json=[self._execute(command) for command in body])
        if path == "/multi-exec":
            if any(str(command[0]).upper() in self.fail_commands for command in body):
                return httpx.Response(
                    200,
                    json=[
                        {"error": "ERR simulated failure"}
                        if str(command[0]).upper() in self.fail_commands
                        else {"result": "QUEUED"}
                        for command in body
                    ],
                )
            return httpx.Response(200, json=[self._execute(command) for command in body])
        reply = self._execute(body)
        return httpx.Response(400 if "error" in reply else 200, json=reply)

    def _execute(self, command: list) -> dict:
        name = str(command[0]).upper()
        if name in self.fail_commands:
            return {"error": f"ERR {name} failed"}
        if name == "GET":
            return {"result": self.values.get(command[1])}
        if name == "SET":
            self.values[command[1]] = command[2]
            return {"result": "OK"}
        if name == "ZADD":
            members = self.zsets.setdefault(command[1], {})
            added = 0 if command[3] in members else 1
            members[command[3]] = float(command[2])
            return {"result": added}
        if name == "ZREVRANGE":
            members = self.zsets.get(command[1], {})
            ordered = sorted(members, key=lambda member: (members[member], member), reverse=True)
            start, end = int(command[2]), int(command[3])
            stop = None if end == -1 else end + 1
            return {"result": ordered[start:stop]}
        return {"error": f"ERR unknown command {name}"}


@pytest.fixture
def local_config(tmp_path):
    return load_config(environ={"MOLT_DATA_DIR": str(tmp_path / "data")})


@pytest.fixture
def remote_config(tmp_path):
    return load_config(
        environ={
            "MOLT_DATA_DIR": str(tmp_path / "data"),
            "KV_REST_API_URL": KV_URL,
            "KV_REST_API_TOKEN": KV_TOKEN,
        }
    )


@pytest.fixture
def fake_kv():
    return FakeKVServer()


@pytest.fixture
def local_store(tmp_path):
    return LocalFileStore(str(tmp_path / "data" / "articles.json"))


@pytest.fixture
def remote_store(fake_kv):
    client = RestKVClient(KV_URL, KV_TOKEN, transport=fake_kv.transport())
    return RemoteKVStore(client, key_prefix="molt:news")


@pytest.fixture(params=["local", "remote"])
def repository(request):
    store = request.getfixturevalue(f"{request.param}_store")
    return ArticleRepository(store)
