"""Mesh transport tests.

Codec and protocol tests run without sockets, using a fake datagram
transport. The "live" tests bind a real UDP socket on 127.0.0.1 with an
OS-assigned port.
"""

import asyncio
import json

import pytest

from core.notifier import Notifier
from core.store import MemoryStore
from mesh.transport import (
    MeshProtocol,
    SignalDecodeError,
    decode_signal,
    encode_signal,
    send_signal,
    start_listener,
)
from schemas.records import EventType, OperationOutcome
from schemas.signal import PROTOCOL_VERSION, Signal, SignalType
from signals.router import CAPABILITIES, SignalRouter


def wire(**obj) -> bytes:
    return json.dumps(obj).encode()


class FakeDatagramTransport:
    def __init__(self):
        self.sent: list[tuple[bytes, tuple]] = []

    def get_extra_info(self, name, default=None):
        return ("127.0.0.1", 3028) if name == "sockname" else default

    def sendto(self, data, addr):
        self.sent.append((data, addr))


# ── Codec ─────────────────────────────────────────────────────────────────────

class TestCodec:
    def test_encode_uses_wire_names(self):
        signal = Signal(signal_type=SignalType.HEARTBEAT, timestamp=10, payload={"sender": "a"})
        obj = json.loads(encode_signal(signal))
        assert obj == {
            "signalType": 0x0004,
            "version": PROTOCOL_VERSION,
            "timestamp": 10,
            "payload": {"sender": "a"},
        }

    def test_decode_full_signal(self):
        signal = decode_signal(wire(
            signalType=0x0202, version=256, timestamp=1_700_000_000,
            payload={"sender": "search-mcp", "search_id": "s-1"},
        ))
        assert signal.signal_type == SignalType.SEARCH_COMPLETED
        assert signal.sender == "search-mcp"
        assert signal.data() == {"search_id": "s-1"}

    def test_decode_defaults_missing_header_fields(self):
        signal = decode_signal(wire(signalType=0x0004))
        assert signal.payload == {}
        assert signal.timestamp is None
        assert signal.version == PROTOCOL_VERSION

    def test_decode_fixes_malformed_header_fields(self):
        signal = decode_signal(wire(
            signalType=0x0004, timestamp=1_700_000_000.7, version="v1", payload=["x"],
        ))
        assert signal.timestamp == 1_700_000_000
        assert signal.version == PROTOCOL_VERSION
        assert signal.payload == {}

    def test_decode_keeps_unknown_type(self):
        assert decode_signal(wire(signalType=0x9999)).signal_type == 0x9999

    @pytest.mark.parametrize("data", [
        b"not json",
        b"\xff\xfe",
        b"[1, 2, 3]",
        wire(payload={"sender": "a"}),
        wire(signalType="HEARTBEAT"),
    ])
    def test_decode_rejects_non_signals(self, data):
        with pytest.raises(SignalDecodeError) as info:
            decode_signal(data)
        assert info.value.raw == data


# ── Protocol (no sockets) ─────────────────────────────────────────────────────

@pytest.fixture
def wired():
    store = MemoryStore()
    router = SignalRouter(store, Notifier(), observer_id="observer-test")
    protocol = MeshProtocol(router)
    transport = FakeDatagramTransport()
    protocol.connection_made(transport)
    return store, protocol, transport


class TestMeshProtocol:
    def test_datagram_is_routed(self, wired):
        store, protocol, _ = wired
        protocol.datagram_received(
            wire(signalType=0x0101, payload={"sender": "a", "path": "/x"}), ("10.0.0.2", 5000)
        )
        events = store.attention_events()
        assert [e.event_type for e in events] == [EventType.FILE, EventType.SIGNAL]
        assert events[1].context["source_address"] == "10.0.0.2"

    def test_garbage_is_dropped(self, wired):
        store, protocol, _ = wired
        protocol.datagram_received(b"garbage", ("10.0.0.2", 5000))
        assert store.attention_events() == []

    def test_nan_result_count_does_not_inflate_quality(self, wired):
        store, protocol, _ = wired
        protocol.datagram_received(
            b'{"signalType": 514, "payload": {"sender": "a", "search_id": "s", "results_count": NaN}}',
            ("10.0.0.2", 5000),
        )
        [op] = store.operations()
        assert op.operation_id == "s"
        assert op.outcome == OperationOutcome.PARTIAL
        assert op.quality_score == 0.0

    def test_dock_reply_goes_back_to_sender(self, wired):
        _, protocol, transport = wired
        protocol.datagram_received(
            wire(signalType=0x0001, payload={"sender": "search-mcp"}), ("10.0.0.2", 5000)
        )
        [(data, addr)] = transport.sent
        assert addr == ("10.0.0.2", 5000)
        reply = decode_signal(data)
        assert reply.signal_type == SignalType.DOCK_APPROVED
        assert reply.sender == "observer-test"

    def test_reply_after_close_is_dropped(self, wired):
        _, protocol, transport = wired
        protocol.connection_lost(None)
        protocol.send_response("10.0.0.2", 5000, Signal(signal_type=SignalType.DOCK_APPROVED))
        assert transport.sent == []


# ── Loopback ──────────────────────────────────────────────────────────────────

@pytest.mark.live
class TestLoopback:
    async def test_dock_round_trip(self):
        store = MemoryStore()
        router = SignalRouter(store, Notifier(), observer_id="observer-test")
        transport, _ = await start_listener(router, "127.0.0.1", 0)
        port = transport.get_extra_info("sockname")[1]
        try:
            request = Signal(
                signal_type=SignalType.DOCK_REQUEST,
                timestamp=1_700_000_000,
                payload={"sender": "search-mcp"},
            )
            reply = await asyncio.to_thread(send_signal, request, "127.0.0.1", port, 2.0)
        finally:
            transport.close()

        assert reply is not None
        assert reply.signal_type == SignalType.DOCK_APPROVED
        assert reply.payload["approved"] is True
        assert reply.payload["capabilities"] == CAPABILITIES
        [event] = store.attention_events()
        assert event.target == "DOCK_REQUEST"

    async def test_fire_and_forget(self):
        store = MemoryStore()
        router = SignalRouter(store, Notifier())
        transport, _ = await start_listener(router, "127.0.0.1", 0)
        port = transport.get_extra_info("sockname")[1]
        try:
            signal = Signal(signal_type=SignalType.HEARTBEAT, payload={"sender": "a"})
            assert await asyncio.to_thread(send_signal, signal, "127.0.0.1", port) is None
            for _ in range(50):
                if store.attention_events():
                    break
                await asyncio.sleep(0.02)
        finally:
            transport.close()

        assert [e.target for e in store.attention_events()] == ["HEARTBEAT"]
