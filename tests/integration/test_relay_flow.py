"""End-to-end relay flow over HTTP and the realtime socket."""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chatrelay.security.signing import SIGNATURE_HEADER, sign_payload
from chatrelay.server.app import create_app
from chatrelay.store.chatbots import ChatbotStore
from chatrelay.store.db import Database
from tests.conftest import SECRET, WIDGET_ORIGIN, make_chatbot, make_settings

SOCKET_HEADERS = {"origin": WIDGET_ORIGIN}


def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not reached in time")


def _join(ws: Any, chatbot_id: str, session_id: str) -> None:
    ws.send_json({"event": "join", "data": {"chatbotId": chatbot_id, "sessionId": session_id}})


def _callback(client: TestClient, body: dict[str, Any], chatbot_id: str = "c1") -> httpx.Response:
    raw = json.dumps(body).encode()
    return client.post(
        f"/webhook/{chatbot_id}/response",
        content=raw,
        headers={"Content-Type": "application/json", SIGNATURE_HEADER: sign_payload(SECRET, raw)},
    )


@pytest.fixture
def forwarded() -> list[httpx.Request]:
    return []


@pytest.fixture
def app(
    tmp_path: Path, db: Database, store: ChatbotStore, forwarded: list[httpx.Request],
) -> FastAPI:
    store.save_chatbot(make_chatbot(webhook_secret=SECRET))
    store.save_chatbot(make_chatbot(id="c2", webhook_secret=SECRET))

    def webhook(request: httpx.Request) -> httpx.Response:
        forwarded.append(request)
        return httpx.Response(200, text="")

    return create_app(
        make_settings(tmp_path), db=db, webhook_transport=httpx.MockTransport(webhook),
    )


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def test_message_then_callback_reaches_session(
    app: FastAPI, client: TestClient, forwarded: list[httpx.Request],
) -> None:
    router = app.state.session_router
    with client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws:
        _join(ws, "c1", "s1")
        _wait_until(lambda: router.connection_count("c1", "s1") == 1)

        resp = client.post(
            "/widget/c1/message",
            json={"sessionId": "s1", "message": "hello"},
            headers={"Origin": WIDGET_ORIGIN},
        )
        assert resp.json() == {"success": True, "response": None}
        assert json.loads(forwarded[0].content)["message"] == "hello"

        resp = _callback(client, {"session_id": "s1", "output": "hello back", "quickReplies": ["More"]})
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        frame = ws.receive_json()
        assert frame["event"] == "message"
        assert frame["data"]["type"] == "bot_message"
        assert frame["data"]["message"] == "hello back"
        assert frame["data"]["quickReplies"] == ["More"]
        assert frame["data"]["timestamp"]


def test_sessions_are_isolated(app: FastAPI, client: TestClient) -> None:
    router = app.state.session_router
    with (
        client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws1,
        client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws2,
    ):
        _join(ws1, "c1", "s1")
        _join(ws2, "c1", "s2")
        _wait_until(lambda: router.has_room("c1", "s1") and router.has_room("c1", "s2"))

        _callback(client, {"sessionId": "s1", "text": "for s1"})
        _callback(client, {"sessionId": "s2", "text": "for s2"})

        assert ws1.receive_json()["data"]["message"] == "for s1"
        # s2's first frame is its own message, not s1's
        assert ws2.receive_json()["data"]["message"] == "for s2"


def test_same_session_id_on_other_chatbot_is_isolated(app: FastAPI, client: TestClient) -> None:
    router = app.state.session_router
    with (
        client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws1,
        client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws2,
    ):
        _join(ws1, "c1", "s1")
        _join(ws2, "c2", "s1")
        _wait_until(lambda: router.has_room("c1", "s1") and router.has_room("c2", "s1"))

        _callback(client, {"sessionId": "s1", "text": "from c2"}, chatbot_id="c2")
        _callback(client, {"sessionId": "s1", "text": "from c1"}, chatbot_id="c1")

        assert ws1.receive_json()["data"]["message"] == "from c1"
        assert ws2.receive_json()["data"]["message"] == "from c2"


def test_all_tabs_of_a_session_receive(app: FastAPI, client: TestClient) -> None:
    router = app.state.session_router
    with (
        client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as tab1,
        client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as tab2,
    ):
        _join(tab1, "c1", "s1")
        _join(tab2, "c1", "s1")
        _wait_until(lambda: router.connection_count("c1", "s1") == 2)

        _callback(client, {"sessionId": "s1", "message": "first"})
        _callback(client, {"sessionId": "s1", "message": "second"})

        for tab in (tab1, tab2):
            assert tab.receive_json()["data"]["message"] == "first"
            assert tab.receive_json()["data"]["message"] == "second"


def test_typing_reaches_peers_only(app: FastAPI, client: TestClient) -> None:
    router = app.state.session_router
    with (
        client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as sender,
        client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as peer,
    ):
        _join(sender, "c1", "s1")
        _join(peer, "c1", "s1")
        _wait_until(lambda: router.connection_count("c1", "s1") == 2)

        sender.send_json({"event": "typing", "data": {"chatbotId": "c1", "sessionId": "s1", "isTyping": True}})
        assert peer.receive_json() == {"event": "user_typing", "data": {"isTyping": True}}

        _callback(client, {"sessionId": "s1", "message": "after typing"})
        assert sender.receive_json()["event"] == "message"


def test_foreign_origin_cannot_join(app: FastAPI, client: TestClient) -> None:
    router = app.state.session_router
    with client.websocket_connect("/socket.io", headers={"origin": "https://evil.example.net"}) as ws:
        _join(ws, "c1", "s1")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Origin not allowed"}}
    assert not router.has_room("c1", "s1")


def test_unknown_chatbot_cannot_join(client: TestClient) -> None:
    with client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws:
        _join(ws, "ghost", "s1")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid chatbot"}}


def test_malformed_frames(client: TestClient) -> None:
    with client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid frame"}}
        ws.send_json({"event": "shout", "data": {}})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unknown event: shout"}}


def test_binary_frames_rejected(app: FastAPI, client: TestClient) -> None:
    router = app.state.session_router
    with client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws:
        ws.send_bytes(b'{"event":"join","data":{"chatbotId":"c1","sessionId":"s1"}}')
        assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid frame"}}
        assert not router.has_room("c1", "s1")

        # The connection stays usable after a rejected frame
        _join(ws, "c1", "s1")
        _wait_until(lambda: router.has_room("c1", "s1"))


def test_disconnect_removes_room(app: FastAPI, client: TestClient) -> None:
    router = app.state.session_router
    with client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws:
        _join(ws, "c1", "s1")
        _wait_until(lambda: router.has_room("c1", "s1"))
    _wait_until(lambda: not router.has_room("c1", "s1"))

    resp = _callback(client, {"sessionId": "s1", "text": "nobody home"})
    assert resp.json() == {"success": True}


def test_leave_removes_room(app: FastAPI, client: TestClient) -> None:
    router = app.state.session_router
    with client.websocket_connect("/socket.io", headers=SOCKET_HEADERS) as ws:
        _join(ws, "c1", "s1")
        _wait_until(lambda: router.has_room("c1", "s1"))
        ws.send_json({"event": "leave", "data": {"chatbotId": "c1", "sessionId": "s1"}})
        _wait_until(lambda: not router.has_room("c1", "s1"))


def test_callback_signature_enforced(client: TestClient) -> None:
    raw = b'{"sessionId":"s1","text":"hi"}'
    missing = client.post("/webhook/c1/response", content=raw)
    wrong = client.post(
        "/webhook/c1/response", content=raw, headers={SIGNATURE_HEADER: sign_payload("nope", raw)},
    )
    assert (missing.status_code, missing.json()) == (401, {"error": "Missing signature"})
    assert (wrong.status_code, wrong.json()) == (401, {"error": "Invalid signature"})


def test_callback_validation(client: TestClient) -> None:
    no_session = _callback(client, {"text": "hi"})
    unknown = client.post("/webhook/ghost/response", content=b"{}")
    assert no_session.status_code == 400
    assert unknown.status_code == 404
    assert unknown.json() == {"error": "Chatbot not found"}


def test_callback_rate_limited(
    tmp_path: Path, db: Database, store: ChatbotStore,
) -> None:
    app = create_app(make_settings(tmp_path, webhook_rate_limit_max=1), db=db)
    with TestClient(app) as client:
        first = client.post("/webhook/c1/response", content=b'{"sessionId":"s1"}')
        second = client.post("/webhook/c1/response", content=b'{"sessionId":"s1"}')
    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json() == {"error": "Too many requests"}
