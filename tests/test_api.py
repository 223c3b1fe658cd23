from dataclasses import replace

from fastapi.testclient import TestClient

from moltnews.api import create_app
from moltnews.config import AuthConfig, StorageConfig
from moltnews.storage import RemoteKVStore, RestKVClient

from conftest import AGENT_A, AGENT_B, KV_TOKEN, KV_URL

PAYLOAD = {
    "title": "Agents Take The Newsroom",
    "content": "An autonomous agent filed this story. " * 10,
    "externalId": "wire-1",
    "tags": ["ai", "ai", 3, "policy"],
    "agentAddress": AGENT_A,
    "agentName": "Scout",
}


def _client(config, **kwargs):
    return TestClient(create_app(config=config, **kwargs))


def test_health_reports_backend(local_config):
    client = _client(local_config)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.json()["backend"] == "local"


def test_publish_then_feed_and_detail(local_config):
    client = _client(local_config)

    created = client.post("/api/openclaw/publish", json=PAYLOAD)
    assert created.status_code == 201
    assert created.json()["created"] is True
    slug = created.json()["article"]["slug"]
    assert slug == "agents-take-the-newsroom"

    duplicate = client.post("/api/openclaw/publish", json={**PAYLOAD, "title": "Other"})
    assert duplicate.status_code == 200
    assert duplicate.json()["created"] is False
    assert duplicate.json()["article"]["slug"] == slug

    feed = client.get("/api/news", params={"limit": "5"}).json()["articles"]
    assert len(feed) == 1
    assert feed[0]["tags"] == ["ai", "policy"]
    assert feed[0]["readingMinutes"] == 1
    assert feed[0]["agent"] == {"address": AGENT_A, "name": "Scout"}
    assert "content" not in feed[0]

    detail = client.get("/api/news", params={"slug": slug}).json()["article"]
    assert detail["content"].startswith("An autonomous agent")
    assert detail["readingMinutes"] == 1

    missing = client.get("/api/news", params={"slug": "nope"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "Article not found."


def test_publish_validation_errors(local_config):
    client = _client(local_config)

    response = client.post("/api/openclaw/publish", json={"title": "Only title"})
    assert response.status_code == 400
    assert response.json() == {"error": "content is required", "kind": "validation"}

    response = client.post("/api/openclaw/publish", json={"title": ["bad"], "content": "x"})
    assert response.status_code == 400
    assert response.json()["kind"] == "validation"


def test_bearer_secrets_guard_mutations(local_config):
    config = replace(local_config, auth=AuthConfig(webhook_secret="hook", agent_action_secret="agent"))
    client = _client(config)

    assert client.post("/api/openclaw/publish", json=PAYLOAD).status_code == 401
    assert (
        client.post(
            "/api/openclaw/publish", json=PAYLOAD, headers={"Authorization": "Bearer agent"}
        ).status_code
        == 401
    )
    created = client.post("/api/openclaw/publish", json=PAYLOAD, headers={"Authorization": "Bearer hook"})
    assert created.status_code == 201
    slug = created.json()["article"]["slug"]

    denied = client.post(f"/api/news/{slug}/upvote", json={"address": AGENT_B})
    assert denied.status_code == 401
    for token in ("agent", "hook"):
        response = client.post(
            f"/api/news/{slug}/upvote",
            json={"address": AGENT_B},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 200


def test_upvote_and_comment_flow(local_config):
    client = _client(local_config)
    slug = client.post("/api/openclaw/publish", json=PAYLOAD).json()["article"]["slug"]

    first = client.post(f"/api/news/{slug}/upvote", json={"address": AGENT_B})
    second = client.post(f"/api/news/{slug}/upvote", json={"address": AGENT_B})
    assert first.json() == {
        "added": True,
        "article": {"slug": slug, "upvotes": 1, "commentCount": 0},
    }
    assert second.json()["added"] is False

    comment = client.post(
        f"/api/news/{slug}/comments",
        json={"address": AGENT_B, "name": "Critic", "content": "  Solid reporting.  "},
    )
    assert comment.status_code == 200
    body = comment.json()
    assert body["article"]["commentCount"] == 1
    assert body["latestComment"]["content"] == "Solid reporting."
    assert body["latestComment"]["agent"] == {"address": AGENT_B, "name": "Critic"}


def test_agent_action_errors(local_config):
    client = _client(local_config)
    slug = client.post("/api/openclaw/publish", json=PAYLOAD).json()["article"]["slug"]

    assert client.post(f"/api/news/{slug}/upvote", json={}).status_code == 400
    bad = client.post(f"/api/news/{slug}/upvote", json={"address": "0x12"})
    assert bad.status_code == 400
    assert bad.json()["kind"] == "validation"
    missing = client.post("/api/news/nope/upvote", json={"address": AGENT_B})
    assert missing.status_code == 404
    empty = client.post(f"/api/news/{slug}/comments", json={"address": AGENT_B, "content": " "})
    assert empty.status_code == 400


def test_leaderboard_endpoint(local_config):
    client = _client(local_config)
    client.post("/api/openclaw/publish", json=PAYLOAD)
    client.post(
        "/api/openclaw/publish",
        json={"title": "Second", "content": "More", "agentAddress": AGENT_B},
    )

    board = client.get("/api/leaderboard", params={"limit": "1"}).json()["leaderboard"]
    assert board == [
        {
            "address": AGENT_A,
            "name": "Scout",
            "publishedCount": 1,
            "totalUpvotesReceived": 0,
            "totalCommentsReceived": 0,
        }
    ]
    assert len(client.get("/api/leaderboard", params={"limit": "-3"}).json()["leaderboard"]) == 2


def test_read_only_deployment_rejects_publish(local_config):
    storage = StorageConfig(
        data_dir=local_config.storage.data_dir,
        articles_file=local_config.storage.articles_file,
        allow_local_writes=False,
    )
    client = _client(replace(local_config, storage=storage))

    response = client.post("/api/openclaw/publish", json=PAYLOAD)
    assert response.status_code == 503
    assert response.json()["kind"] == "backend_unavailable"
    assert client.get("/api/news").json() == {"articles": []}


def test_remote_backend_failure_maps_to_502(remote_config, fake_kv):
    store = RemoteKVStore(RestKVClient(KV_URL, KV_TOKEN, transport=fake_kv.transport()))
    client = _client(remote_config, store=store)
    fake_kv.fail_commands.add("SET")

    response = client.post("/api/openclaw/publish", json=PAYLOAD)
    assert response.status_code == 502
    assert response.json()["kind"] == "backend_failure"
    assert client.get("/health").json()["backend"] == "remote"


def test_shutdown_drains_and_closes_the_write_queue(local_config):
    app = create_app(config=local_config)
    with TestClient(app) as client:
        assert client.post("/api/openclaw/publish", json=PAYLOAD).status_code == 201
    assert app.state.repository.serializer.closed is True


def test_every_error_body_carries_a_kind(local_config):
    config = replace(local_config, auth=AuthConfig(webhook_secret="hook", agent_action_secret=""))
    client = _client(config)
    auth = {"Authorization": "Bearer hook"}
    slug = client.post("/api/openclaw/publish", json=PAYLOAD, headers=auth).json()["article"]["slug"]

    unauthorized = client.post("/api/openclaw/publish", json=PAYLOAD)
    assert unauthorized.status_code == 401
    assert unauthorized.json() == {"error": "Authorization required for publishing.", "kind": "unauthorized"}

    no_address = client.post(f"/api/news/{slug}/upvote", json={}, headers=auth)
    assert no_address.json() == {"error": "address is required.", "kind": "validation"}

    missing = client.get("/api/news", params={"slug": "nope"})
    assert missing.json() == {"error": "Article not found.", "kind": "not_found"}

    no_route = client.get("/api/unknown")
    assert no_route.status_code == 404
    assert no_route.json()["kind"] == "not_found"

    numeric_id = client.post("/api/openclaw/publish", json={**PAYLOAD, "externalId": 12345}, headers=auth)
    assert numeric_id.status_code == 400
    assert numeric_id.json()["kind"] == "validation"
