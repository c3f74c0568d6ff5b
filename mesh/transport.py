"""Mesh transport — UDP datagrams in, routed signals out.

Each datagram carries exactly one signal encoded as a UTF-8 JSON object:

    {"signalType": 514, "version": 256, "timestamp": 1767225600,
     "payload": {"sender": "search-mcp", "search_id": "s-1", ...}}

The transport owns decoding and the reply path; it knows nothing about
signal families. Datagrams that are not a signal at all (invalid JSON, no
integer signalType) are logged and dropped here. They never reach the
router, which only ever sees well-formed Signal objects.

There is no delivery, ordering, or exactly-once guarantee. Re-delivered
datagrams are routed again; the router's idempotent operation recording is
what keeps the derived log clean.
"""

import asyncio
import json
import logging
import socket

from pydantic import ValidationError

from schemas.signal import Signal
from signals.router import SignalRouter

logger = logging.getLogger(__name__)

MAX_DATAGRAM_BYTES = 65_507


class SignalDecodeError(Exception):
    """Raised when a datagram cannot be decoded into a Signal.

    Includes the raw bytes so callers can log them without re-wrapping.
    """

    def __init__(self, message: str, raw: bytes):
        super().__init__(message)
        self.raw = raw


def encode_signal(signal: Signal) -> bytes:
    """Serialize a signal to its wire form."""
    return json.dumps(signal.to_wire(), default=str).encode("utf-8")


def decode_signal(data: bytes) -> Signal:
    """Parse one datagram into a Signal.

    A missing or empty payload becomes {}, a non-integer timestamp or
    version falls back to the default, and a payload without "sender" is
    still accepted (Signal.sender reports "unknown").

    Raises:
        SignalDecodeError: If the bytes are not a JSON object or carry no
            usable integer signalType.
    """
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SignalDecodeError(f"Datagram is not valid JSON: {exc}", raw=data) from exc

    if not isinstance(obj, dict):
        raise SignalDecodeError("Datagram is not a JSON object", raw=data)
    if not isinstance(obj.get("payload"), dict):
        obj["payload"] = {}
    # Header fields other than the type are defaulted, never fatal.
    for key in ("timestamp", "version"):
        value = obj.get(key)
        if isinstance(value, float):
            obj[key] = int(value)
        elif not isinstance(value, int):
            obj.pop(key, None)

    try:
        return Signal.model_validate(obj)
    except ValidationError as exc:
        raise SignalDecodeError(f"Datagram is not a signal: {exc}", raw=data) from exc


class MeshProtocol(asyncio.DatagramProtocol):
    """asyncio datagram protocol that feeds every signal to the router.

    Also acts as the router's Responder: dock replies go back out through
    the same socket the request arrived on.

    Attributes:
        _router: Receives every decoded signal.
        _transport: Set once the endpoint is bound.
    """

    def __init__(self, router: SignalRouter) -> None:
        self._router = router
        self._transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport
        self._router.set_responder(self)
        sockname = transport.get_extra_info("sockname")
        logger.info("Mesh listener bound on %s.", sockname)

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        try:
            signal = decode_signal(data)
        except SignalDecodeError as exc:
            logger.warning(
                "Dropping undecodable datagram from %s:%s: %s", addr[0], addr[1], exc
            )
            return
        self._router.route(signal, (addr[0], addr[1]))

    def error_received(self, exc: Exception) -> None:
        logger.error("Mesh socket error: %s", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            logger.error("Mesh listener closed with error: %s", exc)
        self._transport = None

    def send_response(self, host: str, port: int, signal: Signal) -> None:
        """Send a signal back to one peer. Called by the router for dock replies."""
        if self._transport is None:
            logger.warning("Mesh listener not bound, dropping reply to %s:%s.", host, port)
            return
        self._transport.sendto(encode_signal(signal), (host, port))


async def start_listener(
    router: SignalRouter,
    host: str,
    port: int,
) -> tuple[asyncio.DatagramTransport, MeshProtocol]:
    """Bind the mesh listener on the running event loop.

    Args:
        router: The router every decoded signal is handed to.
        host:   Interface to bind, e.g. "0.0.0.0".
        port:   UDP port to bind. 0 picks a free port (tests use this).

    Returns:
        The transport (close it to stop listening) and the protocol.
    """
    loop = asyncio.get_running_loop()
    return await loop.create_datagram_endpoint(
        lambda: MeshProtocol(router),
        local_addr=(host, port),
    )


def send_signal(signal: Signal, host: str, port: int, timeout: float = 0.0) -> Signal | None:
    """Fire one signal at a mesh node from a plain blocking socket.

    Used by the CLI and demo scripts. When timeout is positive, waits that
    long for a single reply datagram (e.g. the DOCK_APPROVED answer to a
    DOCK_REQUEST) and returns it decoded.

    Returns:
        The reply Signal, or None if no reply was requested or none arrived.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.sendto(encode_signal(signal), (host, port))
        if timeout <= 0:
            return None
        sock.settimeout(timeout)
        try:
            data, _ = sock.recvfrom(MAX_DATAGRAM_BYTES)
        except socket.timeout:
            logger.info("No reply from %s:%s within %.1fs.", host, port, timeout)
            return None
        return decode_signal(data)
