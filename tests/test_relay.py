"""
Realtime relay — hub fan‑out rules and the WebSocket endpoint.
"""
import json

import pytest
from starlette.websockets import WebSocketDisconnect, WebSocketState

from receiptsplit.main import app
from receiptsplit.relay import RelayHub
from receiptsplit.config import settings
from receiptsplit.routers.realtime import keepalive, relay_frame


class FakeConnection:
    def __init__(self, name, open=True, fail=False):
        self.name = name
        self.sent = []
        self.fail = fail
        state = WebSocketState.CONNECTED if open else WebSocketState.DISCONNECTED
        self.client_state = state
        self.application_state = state

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def send_text(self, data):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(json.loads(data))


# =====================================================================
# Hub
# =====================================================================
@pytest.mark.anyio
class TestRelayHub:
    async def test_fan_out_excludes_sender(self):
        hub = RelayHub()
        conns = [FakeConnection(f"c{i}") for i in range(4)]
        for conn in conns:
            await hub.join("r1", conn)

        delivered = await hub.broadcast("r1", conns[2], {"type": "state_update"})

        assert delivered == 3
        assert conns[2].sent == []
        for i in (0, 1, 3):
            assert conns[i].sent == [{"type": "state_update"}]

    async def test_groups_are_isolated(self):
        hub = RelayHub()
        a1, a2 = FakeConnection("a1"), FakeConnection("a2")
        b1, b2 = FakeConnection("b1"), FakeConnection("b2")
        for conn in (a1, a2):
            await hub.join("A", conn)
        for conn in (b1, b2):
            await hub.join("B", conn)

        await hub.broadcast("A", a1, {"n": 1})

        assert a2.sent == [{"n": 1}]
        assert b1.sent == [] and b2.sent == []

    async def test_empty_group_removed(self):
        hub = RelayHub()
        c1, c2 = FakeConnection("c1"), FakeConnection("c2")
        await hub.join("r1", c1)
        await hub.join("r1", c2)
        assert await hub.group_size("r1") == 2

        await hub.leave("r1", c1)
        assert hub.group_count == 1
        await hub.leave("r1", c2)
        assert hub.group_count == 0
        assert await hub.group_size("r1") == 0

    async def test_leave_unknown_is_noop(self):
        hub = RelayHub()
        await hub.leave("never", FakeConnection("x"))
        assert hub.group_count == 0

    async def test_closed_peer_skipped(self):
        hub = RelayHub()
        sender, closed, live = FakeConnection("s"), FakeConnection("c", open=False), FakeConnection("l")
        for conn in (sender, closed, live):
            await hub.join("r1", conn)

        assert await hub.broadcast("r1", sender, {"x": 1}) == 1
        assert closed.sent == []
        assert live.sent == [{"x": 1}]

    async def test_failing_peer_does_not_affect_siblings(self):
        hub = RelayHub()
        sender, broken, live = FakeConnection("s"), FakeConnection("b", fail=True), FakeConnection("l")
        for conn in (sender, broken, live):
            await hub.join("r1", conn)

        assert await hub.broadcast("r1", sender, {"x": 1}) == 1
        assert live.sent == [{"x": 1}]


@pytest.mark.anyio
class TestRelayFrame:
    async def test_stamps_timestamp(self):
        hub = RelayHub()
        sender, peer = FakeConnection("s"), FakeConnection("p")
        await hub.join("r1", sender)
        await hub.join("r1", peer)

        raw = json.dumps({"type": "state_update", "receiptId": "r1", "timestamp": "old"})
        assert await relay_frame(hub, "r1", sender, raw) == 1

        msg = peer.sent[0]
        assert msg["type"] == "state_update"
        assert msg["receiptId"] == "r1"
        assert msg["timestamp"] != "old"

    @pytest.mark.parametrize("raw", ["not json", "{broken", "[1, 2]", "42"])
    async def test_malformed_dropped(self, raw):
        hub = RelayHub()
        sender, peer = FakeConnection("s"), FakeConnection("p")
        await hub.join("r1", sender)
        await hub.join("r1", peer)

        assert await relay_frame(hub, "r1", sender, raw) == 0
        assert peer.sent == []

@pytest.mark.anyio
class TestKeepalive:
    async def test_stops_once_socket_not_open(self):
        conn = FakeConnection("gone", open=False)
        await keepalive(conn, 0)
        assert conn.sent == []

    async def test_stops_when_send_fails(self):
        conn = FakeConnection("broken", fail=True)
        await keepalive(conn, 0)
        assert conn.sent == []


# =====================================================================
# WebSocket endpoint
# =====================================================================
class TestRelayEndpoint:
    def test_connected_ack(self, client):
        with client.websocket_connect("/api/websocket?receiptId=r1") as ws:
            msg = ws.receive_json()
        assert msg["type"] == "connected"
        assert msg["receiptId"] == "r1"
        assert msg["timestamp"]

    def test_missing_receipt_id_closes(self, client):
        with client.websocket_connect("/api/websocket") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 1008
        assert exc_info.value.reason == "Receipt ID is required"

    def test_relays_to_peer_and_survives_bad_frames(self, client):
        with client.websocket_connect("/api/websocket?receiptId=r1") as a, \
                client.websocket_connect("/api/websocket?receiptId=r1") as b:
            a.receive_json()
            b.receive_json()

            a.send_text("this is not json")
            a.send_json({"type": "state_update", "receiptId": "r1", "changes": {"people": ["Alice"]}})

            msg = b.receive_json()
            assert msg["changes"] == {"people": ["Alice"]}
            assert msg["timestamp"]

            b.send_json({"type": "state_update", "receiptId": "r1", "changes": {"people": ["Bob"]}})
            echo_check = a.receive_json()
            assert echo_check["changes"] == {"people": ["Bob"]}

    def test_one_group_per_receipt(self, client):
        with client.websocket_connect("/api/websocket?receiptId=r9") as a, \
                client.websocket_connect("/api/websocket?receiptId=r9") as b, \
                client.websocket_connect("/api/websocket?receiptId=r10") as c:
            for ws in (a, b, c):
                ws.receive_json()
            assert app.state.relay.group_count == 2

    def test_ping_every_interval(self, client, monkeypatch):
        monkeypatch.setattr(settings, "RELAY_PING_INTERVAL", 0.05)
        with client.websocket_connect("/api/websocket?receiptId=r1") as ws:
            assert ws.receive_json()["type"] == "connected"
            first = ws.receive_json()
            second = ws.receive_json()
        assert first["type"] == "ping" and first["timestamp"]
        assert second["type"] == "ping"
