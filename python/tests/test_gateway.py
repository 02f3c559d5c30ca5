"""Integration tests exercising the gateway via FastAPI's TestClient."""

from __future__ import annotations

import time
from contextlib import ExitStack
from typing import Any

from fastapi.testclient import TestClient

from mockroom.gateway import SessionGateway, TokenBucket


def join(ws, room_code: str, name: str, **extra: Any) -> dict[str, Any]:
    ws.send_json({"type": "join-room", "roomCode": room_code, "displayName": name, **extra})
    message = ws.receive_json()
    assert message["type"] == "room-joined", message
    return message


def edit(ws, base: int, start: int, end: int, text: str) -> None:
    ws.send_json({"type": "edit", "baseRevision": base, "range": [start, end], "insertedText": text})


def receive_type(ws, message_type: str) -> dict[str, Any]:
    """Read messages until one of ``message_type`` arrives."""

    while True:
        message = ws.receive_json()
        if message["type"] == message_type:
            return message


def assert_still_responsive(ws) -> None:
    ws.send_json({"type": "ping"})
    assert ws.receive_json()["type"] == "pong"


def test_health_endpoint(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert "timestamp" in body


def test_unknown_room_returns_404(client: TestClient):
    assert client.get("/api/rooms/NOPE").status_code == 404


def test_join_edit_and_late_joiner(client: TestClient):
    with client.websocket_connect("/ws") as ws1:
        joined = join(ws1, "ABC1", "Ada")
        assert joined["revision"] == 0
        assert joined["documentSnapshot"] == ""
        assert joined["role"] == "host"
        assert joined["resumeToken"]

        edit(ws1, 0, 0, 0, "let x=1;")
        assert ws1.receive_json() == {"type": "edit-ack", "acceptedRevision": 1}

        with client.websocket_connect("/ws") as ws2:
            late = join(ws2, "ABC1", "Grace")
            assert late["documentSnapshot"] == "let x=1;"
            assert late["revision"] == 1
            assert late["role"] == "candidate"
            assert [p["displayName"] for p in late["participants"]] == ["Ada", "Grace"]

            presence = ws1.receive_json()
            assert presence["type"] == "presence-joined"
            assert presence["participant"]["participantId"] == late["participantId"]

            room = client.get("/api/rooms/ABC1").json()
            assert room["roomCode"] == "ABC1"
            assert room["revision"] == 1
            assert len(room["participants"]) == 2


def test_concurrent_inserts_at_same_offset(client: TestClient):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        join(ws1, "ABC1", "Ada")
        edit(ws1, 0, 0, 0, "let x=1;")
        assert ws1.receive_json()["acceptedRevision"] == 1
        join(ws2, "ABC1", "Grace")
        receive_type(ws1, "presence-joined")

        # Both composed against revision 1; Ada's reaches the server first
        edit(ws1, 1, 0, 0, "A")
        assert ws1.receive_json() == {"type": "edit-ack", "acceptedRevision": 2}
        edit(ws2, 1, 0, 0, "B")

        applied = ws2.receive_json()
        assert applied["type"] == "operation-applied"
        assert (applied["revision"], applied["range"], applied["insertedText"]) == (2, [0, 0], "A")
        assert ws2.receive_json() == {"type": "edit-ack", "acceptedRevision": 3}

        transformed = ws1.receive_json()
        assert transformed["revision"] == 3
        assert transformed["range"] == [1, 1]

        ws2.send_json({"type": "sync-request"})
        snapshot = ws2.receive_json()
        assert snapshot == {
            "type": "document-snapshot",
            "documentSnapshot": "ABlet x=1;",
            "revision": 3,
            "reason": "requested",
        }


def test_room_events_before_join_are_rejected(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        edit(ws, 0, 0, 0, "x")
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "not_joined"

        ws.send_json({"type": "chat-send", "text": "hello"})
        assert ws.receive_json()["code"] == "not_joined"

        # Leaving without a room is a no-op
        ws.send_json({"type": "leave-room"})
        assert_still_responsive(ws)


def test_joining_twice_is_rejected(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        join(ws, "ABC1", "Ada")
        ws.send_json({"type": "join-room", "roomCode": "XYZ9", "displayName": "Ada"})
        assert ws.receive_json()["code"] == "already_joined"


def test_room_full(client: TestClient, settings):
    with ExitStack() as stack:
        sockets = [stack.enter_context(client.websocket_connect("/ws")) for _ in range(settings.max_participants + 1)]
        for index, ws in enumerate(sockets[:-1]):
            join(ws, "ABC1", f"user{index}")

        sockets[-1].send_json({"type": "join-room", "roomCode": "ABC1", "displayName": "late"})
        error = sockets[-1].receive_json()
        assert error["code"] == "room_full"
        assert error["details"]["maxParticipants"] == settings.max_participants

        # Still usable for another room
        join(sockets[-1], "XYZ9", "late")


def test_malformed_and_stale_edits(client: TestClient, settings):
    with client.websocket_connect("/ws") as ws:
        join(ws, "ABC1", "Ada")

        edit(ws, 0, 4, 9, "x")
        assert ws.receive_json()["code"] == "malformed_operation"

        for base in range(settings.history_limit + 2):
            edit(ws, base, 0, 0, "x")
            assert ws.receive_json()["acceptedRevision"] == base + 1

        edit(ws, 0, 0, 0, "stale")
        snapshot = ws.receive_json()
        assert snapshot["type"] == "document-snapshot"
        assert snapshot["reason"] == "history_too_old"
        assert snapshot["revision"] == settings.history_limit + 2
        error = ws.receive_json()
        assert error["code"] == "history_too_old"


def test_chat_is_ordered_for_everyone(client: TestClient):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        join(ws1, "ABC1", "Ada")
        join(ws2, "ABC1", "Grace")

        ws1.send_json({"type": "chat-send", "text": "hi"})
        ws2.send_json({"type": "chat-send", "text": "hello"})

        for ws in (ws1, ws2):
            first = receive_type(ws, "chat-message")
            second = receive_type(ws, "chat-message")
            assert (first["sequence"], second["sequence"]) == (1, 2)

        with client.websocket_connect("/ws") as ws3:
            joined = join(ws3, "ABC1", "Alan")
            assert [m["text"] for m in joined["chatHistory"]] in (["hi", "hello"], ["hello", "hi"])


def test_blank_chat_is_invalid(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        join(ws, "ABC1", "Ada")
        ws.send_json({"type": "chat-send", "text": "   "})
        assert ws.receive_json()["code"] == "invalid_message"


def test_signal_relay(client: TestClient):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        a = join(ws1, "ABC1", "Ada")
        b = join(ws2, "ABC1", "Grace")

        for kind in ("offer", "ice-candidate"):
            ws1.send_json({"type": "signal", "to": b["participantId"], "kind": kind, "payload": {"n": kind}})

        first = ws2.receive_json()
        second = ws2.receive_json()
        assert [first["kind"], second["kind"]] == ["offer", "ice-candidate"]
        assert first["from"] == a["participantId"]
        assert first["payload"] == {"n": "offer"}

        # Unknown targets are dropped without an error
        ws1.send_json({"type": "signal", "to": "p-nobody", "kind": "answer", "payload": {}})
        receive_type(ws1, "presence-joined")
        assert_still_responsive(ws1)


def test_explicit_leave(client: TestClient):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        a = join(ws1, "ABC1", "Ada")
        join(ws2, "ABC1", "Grace")

        ws1.send_json({"type": "leave-room"})
        assert receive_type(ws1, "room-left")["roomCode"] == "ABC1"

        left = ws2.receive_json()
        assert left == {"type": "presence-left", "roomCode": "ABC1", "participantId": a["participantId"]}

        # The connection may join again
        join(ws1, "XYZ9", "Ada")


def test_resume_within_grace_replays_missed_operations(client: TestClient):
    with client.websocket_connect("/ws") as ws_b:
        with client.websocket_connect("/ws") as ws_a:
            a = join(ws_a, "ABC1", "Ada")
            join(ws_b, "ABC1", "Grace")

        state = ws_b.receive_json()
        assert state["type"] == "presence-state"
        assert state["state"] == "disconnected-pending-rejoin"

        edit(ws_b, 0, 0, 0, "hi")
        assert ws_b.receive_json()["acceptedRevision"] == 1
        ws_b.send_json({"type": "chat-send", "text": "where did you go?"})
        receive_type(ws_b, "chat-message")

        with client.websocket_connect("/ws") as ws_a2:
            ws_a2.send_json(
                {
                    "type": "resume-session",
                    "participantId": a["participantId"],
                    "resumeToken": a["resumeToken"],
                    "lastChatSequence": 0,
                    "lastRevision": 0,
                }
            )
            resumed = ws_a2.receive_json()
            assert resumed["type"] == "session-resumed"
            assert resumed["revision"] == 1
            assert resumed["documentSnapshot"] is None
            assert [(op["range"], op["insertedText"]) for op in resumed["operations"]] == [([0, 0], "hi")]
            assert [m["text"] for m in resumed["chatHistory"]] == ["where did you go?"]

            state = ws_b.receive_json()
            assert (state["type"], state["state"]) == ("presence-state", "connected")

            edit(ws_a2, 1, 2, 2, "!")
            assert ws_a2.receive_json()["acceptedRevision"] == 2


def test_resume_with_wrong_token_is_rejected(client: TestClient):
    with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_x:
        a = join(ws_a, "ABC1", "Ada")
        ws_x.send_json({"type": "resume-session", "participantId": a["participantId"], "resumeToken": "guess"})
        assert ws_x.receive_json()["code"] == "resume_rejected"


def test_participant_is_evicted_after_grace(client: TestClient, gateway: SessionGateway):
    with client.websocket_connect("/ws") as ws_b:
        with client.websocket_connect("/ws") as ws_a:
            a = join(ws_a, "ABC1", "Ada")
            join(ws_b, "ABC1", "Grace")

        assert receive_type(ws_b, "presence-state")["state"] == "disconnected-pending-rejoin"
        left = receive_type(ws_b, "presence-left")
        assert left["participantId"] == a["participantId"]
        assert gateway.registry.find(a["participantId"]) is None

        with client.websocket_connect("/ws") as ws_a2:
            ws_a2.send_json(
                {"type": "resume-session", "participantId": a["participantId"], "resumeToken": a["resumeToken"]}
            )
            assert ws_a2.receive_json()["code"] == "resume_rejected"


def test_last_participant_eviction_discards_room(client: TestClient, gateway: SessionGateway):
    with client.websocket_connect("/ws") as ws:
        join(ws, "ABC1", "Ada")
    assert gateway.registry.has_room("ABC1")

    deadline = time.monotonic() + gateway.settings.rejoin_grace_seconds + 2.0
    while gateway.registry.has_room("ABC1") and time.monotonic() < deadline:
        time.sleep(0.02)
    assert not gateway.registry.has_room("ABC1")
    assert client.get("/api/rooms/ABC1").status_code == 404


def test_invalid_frames_report_errors(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["code"] == "invalid_message"

        ws.send_json({"type": "teleport"})
        assert ws.receive_json()["code"] == "invalid_message"

        ws.send_json({"type": "edit", "baseRevision": "soon"})
        assert ws.receive_json()["code"] == "invalid_message"

        assert_still_responsive(ws)


def test_binary_frame_is_rejected_without_closing(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        ws.send_bytes(b'{"type":"ping"}')
        error = ws.receive_json()
        assert (error["type"], error["code"]) == ("error", "invalid_message")

        assert_still_responsive(ws)


def test_resume_without_revision_gets_snapshot(client: TestClient):
    with client.websocket_connect("/ws") as ws_b:
        with client.websocket_connect("/ws") as ws_a:
            a = join(ws_a, "ABC1", "Ada")
            join(ws_b, "ABC1", "Grace")

        receive_type(ws_b, "presence-state")
        edit(ws_b, 0, 0, 0, "hi")
        assert receive_type(ws_b, "edit-ack")["acceptedRevision"] == 1

        with client.websocket_connect("/ws") as ws_a2:
            ws_a2.send_json(
                {"type": "resume-session", "participantId": a["participantId"], "resumeToken": a["resumeToken"]}
            )
            resumed = receive_type(ws_a2, "session-resumed")
            assert resumed["revision"] == 1
            assert resumed["documentSnapshot"] == "hi"
            assert resumed["operations"] is None


def test_token_bucket_limits_bursts():
    bucket = TokenBucket(rate=3, window=60.0)
    assert [bucket.is_allowed() for _ in range(4)] == [True, True, True, False]


def test_gateway_can_be_mounted_on_existing_app(settings):
    from fastapi import FastAPI

    host_app = FastAPI()
    gateway = SessionGateway(settings)
    gateway.mount(host_app, prefix="/interview")

    with TestClient(host_app) as client:
        assert client.get("/interview/api/health").json()["status"] == "ok"
        with client.websocket_connect("/interview/ws") as ws:
            joined = join(ws, "ABC1", "Ada")
            assert joined["roomCode"] == "ABC1"
