import asyncio
import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient
from sse_starlette.sse import AppStatus

from api import routes
from api.app import create_app
from api.models import ChannelDataRequest
from api.session_manager import APISessionManager
from api.streaming import iter_sse_events, sse_payload
from conftest import CSV_TEXT, VIDEOS, FakeAdapter, FakeSource, stream_of


@pytest.fixture(autouse=True)
def _fresh_sse_exit_event():
    # sse-starlette keeps a module-level exit event bound to the first event loop
    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None


@pytest.fixture
def client():
    app = create_app(session_manager_factory=lambda: APISessionManager(max_sessions=2, adapter_factory=FakeAdapter))
    with TestClient(app) as c:
        yield c


def _new_session(client) -> str:
    resp = client.post("/api/sessions")
    assert resp.status_code == 201
    return resp.json()["session_id"]


def test_status(client):
    body = client.get("/api/status").json()
    assert body["status"] == "ok"
    assert body["active_sessions"] == 0
    assert body["max_sessions"] == 2


def test_session_lifecycle(client):
    sid = _new_session(client)
    assert [s["session_id"] for s in client.get("/api/sessions").json()] == [sid]

    detail = client.get(f"/api/sessions/{sid}").json()
    assert detail["datasets"] == []
    assert detail["busy"] is False

    assert client.delete(f"/api/sessions/{sid}").status_code == 204
    assert client.get(f"/api/sessions/{sid}").status_code == 404
    assert client.delete(f"/api/sessions/{sid}").status_code == 404


def test_session_limit(client):
    _new_session(client)
    _new_session(client)
    resp = client.post("/api/sessions")
    assert resp.status_code == 429


def test_invalid_session_id(client):
    assert client.get("/api/sessions/..%2Fetc").status_code in (400, 404)


def test_upload_json_dataset(client):
    sid = _new_session(client)
    resp = client.post(
        f"/api/sessions/{sid}/datasets",
        json={"name": "channel.json", "content": json.dumps(VIDEOS)},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["kind"] == "records"
    assert body["count"] == 5
    assert body["summary"].startswith("**JSON Data: 5 videos**")

    detail = client.get(f"/api/sessions/{sid}").json()
    assert [d["name"] for d in detail["datasets"]] == ["channel.json"]


def test_upload_csv_adds_engagement_rate(client):
    sid = _new_session(client)
    body = client.post(
        f"/api/sessions/{sid}/datasets",
        json={"name": "videos.csv", "content": CSV_TEXT},
    ).json()
    assert body["kind"] == "tabular"
    assert body["fields"][-1] == "engagement_rate"


def test_upload_replaces_previous_dataset_of_same_kind(client):
    sid = _new_session(client)
    client.post(f"/api/sessions/{sid}/datasets", json={"name": "a.json", "content": json.dumps(VIDEOS)})
    client.post(f"/api/sessions/{sid}/datasets", json={"name": "b.json", "content": json.dumps(VIDEOS[:2])})
    detail = client.get(f"/api/sessions/{sid}").json()
    assert [(d["name"], d["count"]) for d in detail["datasets"]] == [("b.json", 2)]


def test_upload_parse_failure_is_400(client):
    sid = _new_session(client)
    resp = client.post(f"/api/sessions/{sid}/datasets", json={"name": "bad.json", "content": "{oops"})
    assert resp.status_code == 400
    assert "bad.json" in resp.json()["detail"]


def test_chat_requires_message_or_image(client):
    sid = _new_session(client)
    assert client.post(f"/api/sessions/{sid}/chat", json={"message": "  "}).status_code == 422


def test_chat_rejects_bad_image_data(client):
    sid = _new_session(client)
    resp = client.post(
        f"/api/sessions/{sid}/chat",
        json={"message": "hi", "images": [{"data": "***", "mime_type": "image/png"}]},
    )
    assert resp.status_code == 400


def test_chat_busy_session_is_409(client):
    sid = _new_session(client)
    state = routes.session_manager.get_session(sid)
    assert state.try_acquire()
    try:
        resp = client.post(f"/api/sessions/{sid}/chat", json={"message": "hello"})
        assert resp.status_code == 409
    finally:
        state.release()


def test_channel_data_without_key_is_500(client, monkeypatch):
    monkeypatch.delenv("YOUTUBE_API_KEY", raising=False)
    resp = client.post("/api/youtube/channel-data", json={"url": "https://www.youtube.com/@x"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "YOUTUBE_API_KEY not configured on server"


@pytest.mark.parametrize(
    "payload, limit",
    [
        ({"url": "@x"}, 10),
        ({"url": "@x", "maxVideos": 0}, 1),
        ({"url": "@x", "maxVideos": "500"}, 100),
        ({"reference": "@x", "limit": "oops"}, 10),
        ({"reference": "@x", "limit": 42}, 42),
    ],
)
def test_channel_request_limit_is_clamped(payload, limit):
    req = ChannelDataRequest.model_validate(payload)
    assert req.reference == "@x"
    assert req.limit == limit


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    import config

    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "home" / "config.json")
    monkeypatch.setattr(config, "_LOCAL_CONFIG_PATH", tmp_path / "local.json")
    yield config
    monkeypatch.undo()
    config.reload_config()


def test_config_update_merges_and_reloads(client, isolated_config):
    isolated_config.CONFIG_PATH.parent.mkdir(parents=True)
    isolated_config.CONFIG_PATH.write_text(json.dumps({"ingest": {"max_limit": 50}}))

    resp = client.put("/api/config", json={"config": {"ingest": {"page_size": 25}, "api_key": "secret"}})
    assert resp.status_code == 200

    saved = json.loads(isolated_config.CONFIG_PATH.read_text())
    assert saved == {"ingest": {"max_limit": 50, "page_size": 25}}
    assert isolated_config.INGEST_PAGE_SIZE == 25

    body = client.get("/api/config").json()
    assert body["ingest"] == {"max_limit": 50, "page_size": 25}
    assert "ingest.page_size" in body["_descriptions"]


def test_config_schema(client):
    descriptions = client.get("/api/config/schema").json()["descriptions"]
    assert "model" in descriptions


def test_missing_google_key_is_500_not_429():
    def no_key():
        raise RuntimeError("GOOGLE_API_KEY not configured on server")

    app = create_app(session_manager_factory=lambda: APISessionManager(adapter_factory=no_key))
    with TestClient(app) as c:
        resp = c.post("/api/sessions")
    assert resp.status_code == 500
    assert resp.json()["detail"] == "GOOGLE_API_KEY not configured on server"


# ---- SSE routes ----


def _stream_events(client, url, payload) -> tuple[bytes, list[dict]]:
    with client.stream("POST", url, json=payload) as resp:
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        body = b"".join(resp.iter_bytes())
    return body, list(iter_sse_events([body]))


def test_channel_data_streams_progress_then_complete(client, monkeypatch):
    monkeypatch.setenv("YOUTUBE_API_KEY", "test-key")
    monkeypatch.setattr(routes, "source_factory", lambda api_key: FakeSource(total=3))

    body, events = _stream_events(client, "/api/youtube/channel-data", {"url": "@tester", "maxVideos": 3})

    assert body.startswith(b"data: ")
    assert b"\r\n" not in body
    assert body.endswith(b"\n\n")
    progress = [e for e in events if e["type"] == "progress"]
    assert [p["percent"] for p in progress] == [5, 10, 20, 40, 40, 57, 73, 100]
    assert events[-1]["type"] == "complete"
    assert events[-1]["channelTitle"] == "Test Channel"
    assert [v["video_id"] for v in events[-1]["data"]] == ["v1", "v2", "v3"]


def test_channel_data_error_event_is_last(client, monkeypatch):
    monkeypatch.setenv("YOUTUBE_API_KEY", "test-key")
    monkeypatch.setattr(routes, "source_factory", lambda api_key: FakeSource(fail_listing=True))

    _, events = _stream_events(client, "/api/youtube/channel-data", {"url": "@tester"})

    assert events[-1] == {"type": "error", "message": "quota exceeded"}
    assert not any(e["type"] == "complete" for e in events)


@pytest.fixture
def streaming_client():
    adapter = FakeAdapter(stream_chunks=stream_of("Rows ", "look fine."))
    app = create_app(session_manager_factory=lambda: APISessionManager(adapter_factory=lambda: adapter))
    with TestClient(app) as c:
        yield c


def test_chat_streams_start_to_turn(streaming_client):
    sid = _new_session(streaming_client)
    _, events = _stream_events(streaming_client, f"/api/sessions/{sid}/chat", {"message": "hello"})

    assert [e["type"] for e in events] == ["start", "text", "text", "turn"]
    assert events[0]["mode"] == "generation"
    assert events[-1]["turn"]["content"] == "Rows look fine."

    detail = streaming_client.get(f"/api/sessions/{sid}").json()
    assert detail["busy"] is False
    assert [t["id"] for t in detail["turns"]] == [events[0]["turn_id"]]


def test_chat_with_only_fresh_upload_uses_default_prompt(streaming_client):
    sid = _new_session(streaming_client)
    streaming_client.post(f"/api/sessions/{sid}/datasets", json={"name": "v.csv", "content": CSV_TEXT})

    _, events = _stream_events(streaming_client, f"/api/sessions/{sid}/chat", {"message": ""})
    assert events[-1]["type"] == "turn"

    # The upload is no longer fresh, so an empty message is rejected again
    assert streaming_client.post(f"/api/sessions/{sid}/chat", json={"message": ""}).status_code == 422


def test_closing_stream_sets_worker_cancel_event(monkeypatch):
    pool = ThreadPoolExecutor(max_workers=1)
    monkeypatch.setattr(routes, "_thread_pool", pool)
    cancelled = threading.Event()

    def work(emit, cancel_event):
        emit({"type": "progress", "message": "Resolving channel...", "percent": 5})
        if cancel_event.wait(timeout=5):
            cancelled.set()

    async def scenario():
        events = routes._stream_from_worker(work).body_iterator
        first = await events.__anext__()
        await events.aclose()
        await asyncio.get_running_loop().run_in_executor(None, cancelled.wait, 5)
        return first

    try:
        first = asyncio.run(scenario())
    finally:
        pool.shutdown(wait=True)
    assert first == sse_payload({"type": "progress", "message": "Resolving channel...", "percent": 5})
    assert cancelled.is_set()
