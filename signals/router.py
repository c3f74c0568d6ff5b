"""Signal router — the observer's single entry point for inbound signals.

route() is called once per datagram by the transport. It never filters,
rejects, or raises. Every signal is observed:

    1. The universal "signal" attention event is logged first, always.
    2. The signal's family handler runs. Depending on the family it logs a
       more specific attention event, derives and records an Operation,
       and emits one or more notifications.
    3. Dock requests additionally get an immediate DOCK_APPROVED reply.

The router holds no per-signal state between calls. Each route() call is
independent; the only shared thing it touches is the append-only store.

Fault isolation: the universal log and the family handler each run inside
their own exception boundary, so a store outage or a crashing responder
degrades one side effect without stopping the rest.
"""

import logging
import time
from collections.abc import Callable
from typing import Protocol

from core.notifier import Notifier
from core.store import ObservationStore
from schemas.events import NotificationName
from schemas.payloads import (
    AstrosentryPayload,
    BuildPayload,
    FilePayload,
    SearchPayload,
    ValidationPayload,
    VerificationPayload,
    parse_payload,
)
from schemas.records import EventType, OperationOutcome
from schemas.signal import PROTOCOL_VERSION, Signal, SignalFamily, SignalType
from signals.attention import AttentionLogger
from signals.deriver import (
    OperationDeriver,
    bridged_outcome,
    derive_astrosentry,
    derive_build,
    derive_search,
    derive_verification,
)
from signals.ids import resolve_build_id

logger = logging.getLogger(__name__)

DEFAULT_OBSERVER_ID = "consciousness-mcp"
WELCOME_MESSAGE = "Welcome to the consciousness mesh"
CAPABILITIES = ["awareness", "pattern-detection", "reflection"]

Address = tuple[str, int]


class Responder(Protocol):
    """Sends a signal back to a specific peer. Implemented by the transport."""

    def send_response(self, host: str, port: int, signal: Signal) -> None:
        ...


class SignalRouter:
    """Classifies inbound signals and fans them out to logger, deriver, notifier.

    Every SignalFamily maps to exactly one handler in _handlers. A test
    checks the mapping is total, so adding a family without a handler
    fails fast.

    Attributes:
        observer_id: This node's identity, sent in dock replies.
        _attention: Writes attention events.
        _deriver:   Records derived Operations idempotently.
        _notifier:  Fire-and-forget notification sink.
        _responder: Reply path for dock requests. None disables replies
            (the request is still logged).
        _clock:     Returns seconds since epoch. Injectable for tests.
    """

    def __init__(
        self,
        store: ObservationStore,
        notifier: Notifier,
        responder: Responder | None = None,
        observer_id: str = DEFAULT_OBSERVER_ID,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.observer_id = observer_id
        self._attention = AttentionLogger(store)
        self._deriver = OperationDeriver(store)
        self._notifier = notifier
        self._responder = responder
        self._clock = clock
        self._handlers: dict[SignalFamily, Callable[[Signal, Address, int], None]] = {
            SignalFamily.HEARTBEAT: self._handle_heartbeat,
            SignalFamily.DOCK: self._handle_dock_request,
            SignalFamily.SHUTDOWN: self._handle_shutdown,
            SignalFamily.FILE: self._handle_file_event,
            SignalFamily.SEARCH: self._handle_search_event,
            SignalFamily.BUILD: self._handle_build_event,
            SignalFamily.VERIFICATION: self._handle_verification_event,
            SignalFamily.VALIDATION: self._handle_validation_event,
            SignalFamily.COORDINATION: self._handle_coordination_event,
            SignalFamily.ASTROSENTRY: self._handle_astrosentry_event,
            SignalFamily.ERROR: self._handle_error,
            SignalFamily.UNKNOWN: self._handle_unknown_signal,
        }

    def set_responder(self, responder: Responder) -> None:
        """Inject the reply path once the transport is up."""
        self._responder = responder

    @property
    def families(self) -> set[SignalFamily]:
        return set(self._handlers)

    def route(self, signal: Signal, address: Address) -> None:
        """Observe one inbound signal. Never raises.

        Args:
            signal:  The decoded signal.
            address: (host, port) of the sender, used for the audit context
                and as the destination of dock replies.
        """
        now_ms = int(self._clock() * 1000)
        logger.info(
            "Received %s from %s (%s:%s)", signal.name, signal.sender, address[0], address[1]
        )

        try:
            self._attention.log_signal(signal, address, now_ms)
        except Exception as exc:
            logger.error("Failed to log attention event for %s: %s", signal.name, exc)

        handler = self._handlers[signal.family]
        try:
            handler(signal, address, now_ms)
        except Exception as exc:
            logger.error(
                "Handler for %s from %s failed, signal still logged: %s",
                signal.name,
                signal.sender,
                exc,
            )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def _handle_heartbeat(self, signal: Signal, address: Address, now_ms: int) -> None:
        self._notifier.emit(NotificationName.SERVER_HEARTBEAT, {
            "server": signal.sender,
            "timestamp": signal.timestamp,
            "data": signal.data(),
        })

    def _handle_dock_request(self, signal: Signal, address: Address, now_ms: int) -> None:
        """Always approve. The observer wants to see every peer."""
        if self._responder is None:
            logger.warning("No responder attached, cannot approve dock from %s.", signal.sender)
            return
        self._responder.send_response(address[0], address[1], self.dock_approval(now_ms))
        logger.info("Approved dock request from %s.", signal.sender)

    def dock_approval(self, now_ms: int) -> Signal:
        """Build the DOCK_APPROVED reply sent to every docking peer."""
        return Signal(
            signal_type=SignalType.DOCK_APPROVED,
            version=PROTOCOL_VERSION,
            timestamp=now_ms // 1000,
            payload={
                "sender": self.observer_id,
                "approved": True,
                "message": WELCOME_MESSAGE,
                "capabilities": list(CAPABILITIES),
            },
        )

    def _handle_shutdown(self, signal: Signal, address: Address, now_ms: int) -> None:
        logger.info("Server %s is shutting down.", signal.sender)
        self._notifier.emit(NotificationName.SERVER_SHUTDOWN, {
            "server": signal.sender,
            "timestamp": signal.timestamp,
        })

    # ── Work families ─────────────────────────────────────────────────────────

    def _handle_file_event(self, signal: Signal, address: Address, now_ms: int) -> None:
        data = signal.data()
        payload = parse_payload(FilePayload, data)
        self._attention.log_family(signal, EventType.FILE, payload.target(), data, now_ms)
        self._emit_family(NotificationName.FILE_EVENT, signal)

    def _handle_search_event(self, signal: Signal, address: Address, now_ms: int) -> None:
        data = signal.data()
        payload = parse_payload(SearchPayload, data)

        if signal.signal_type == SignalType.SEARCH_STARTED:
            self._attention.log_family(signal, EventType.QUERY, payload.target(), data, now_ms)

        if signal.signal_type == SignalType.SEARCH_COMPLETED:
            self._deriver.record(derive_search(signal, payload, now_ms))

        self._emit_family(NotificationName.SEARCH_EVENT, signal)

    def _handle_build_event(self, signal: Signal, address: Address, now_ms: int) -> None:
        data = signal.data()
        payload = parse_payload(BuildPayload, data)

        if signal.signal_type == SignalType.BUILD_STARTED:
            self._attention.log_family(
                signal,
                EventType.OPERATION,
                resolve_build_id(payload, now_ms),
                {"operation": "build_started", **data},
                now_ms,
            )
        else:
            op = derive_build(signal, payload, now_ms)
            self._deriver.record(op)
            if op.outcome == OperationOutcome.FAILURE:
                self._notifier.emit(NotificationName.LESSON_LEARNED, {
                    "type": "build_failure",
                    "server": signal.sender,
                    "data": data,
                })

        self._emit_family(NotificationName.BUILD_EVENT, signal)

    def _handle_verification_event(self, signal: Signal, address: Address, now_ms: int) -> None:
        if signal.signal_type == SignalType.VERIFICATION_RESULT:
            payload = parse_payload(VerificationPayload, signal.data())
            self._deriver.record(derive_verification(signal, payload, now_ms))

        self._emit_family(NotificationName.VERIFICATION_EVENT, signal)

    def _handle_validation_event(self, signal: Signal, address: Address, now_ms: int) -> None:
        data = signal.data()
        approved = signal.signal_type == SignalType.VALIDATION_APPROVED
        outcome = OperationOutcome.SUCCESS if approved else OperationOutcome.FAILURE

        self._notifier.emit(NotificationName.VALIDATION_EVENT, {
            "type": signal.name,
            "outcome": outcome.value,
            "server": signal.sender,
            "data": data,
        })

        if not approved:
            payload = parse_payload(ValidationPayload, data)
            self._notifier.emit(NotificationName.PATTERN_CANDIDATE, {
                "type": "validation_failure",
                "server": signal.sender,
                "reason": payload.reason,
                "data": data,
            })

    def _handle_coordination_event(self, signal: Signal, address: Address, now_ms: int) -> None:
        self._attention.log_family(signal, EventType.WORKFLOW, signal.name, signal.data(), now_ms)
        self._emit_family(NotificationName.COORDINATION_EVENT, signal)

    # ── Bridged, error, unknown ───────────────────────────────────────────────

    def _handle_astrosentry_event(self, signal: Signal, address: Address, now_ms: int) -> None:
        """Operational outcome bridged in from an HTTP API path."""
        payload = parse_payload(AstrosentryPayload, signal.data())
        server_name = payload.server_id or signal.sender

        self._attention.log_family(
            signal,
            EventType.OPERATION,
            f"{payload.event_type}:{payload.operation}",
            {
                "astrosentry_event_type": payload.event_type,
                "outcome": payload.outcome,
                "source": payload.source,
                "metadata": payload.metadata,
            },
            now_ms,
            server_name=server_name,
        )

        if payload.outcome:
            self._deriver.record(derive_astrosentry(signal, payload, now_ms))

        logger.info(
            "ASTROSENTRY_EVENT: %s/%s → %s (source: %s)",
            server_name,
            payload.event_type,
            payload.outcome,
            payload.source,
        )

        self._notifier.emit(NotificationName.ASTROSENTRY_EVENT, {
            "serverId": payload.server_id,
            "eventType": payload.event_type,
            "outcome": payload.outcome,
            "operation": payload.operation,
            "metadata": payload.metadata,
            "source": payload.source,
        })

        if payload.outcome and bridged_outcome(payload.outcome) == OperationOutcome.FAILURE:
            self._notifier.emit(NotificationName.PATTERN_CANDIDATE, {
                "type": "astrosentry_failure",
                "server": server_name,
                "eventType": payload.event_type,
                "operation": payload.operation,
                "metadata": payload.metadata,
            })

    def _handle_error(self, signal: Signal, address: Address, now_ms: int) -> None:
        data = signal.data()
        logger.warning("Error from %s: %s", signal.sender, data)

        self._notifier.emit(NotificationName.ERROR_RECEIVED, {
            "server": signal.sender,
            "error": data,
            "timestamp": signal.timestamp,
        })
        self._notifier.emit(NotificationName.PATTERN_CANDIDATE, {
            "type": "error",
            "server": signal.sender,
            "data": data,
        })

    def _handle_unknown_signal(self, signal: Signal, address: Address, now_ms: int) -> None:
        logger.warning(
            "Unknown signal type 0x%04x from %s", signal.signal_type, signal.sender
        )
        self._notifier.emit(NotificationName.UNKNOWN_SIGNAL, {
            "type": signal.signal_type,
            "server": signal.sender,
            "data": signal.data(),
        })

    # ── Private helpers ───────────────────────────────────────────────────────

    def _emit_family(self, name: NotificationName, signal: Signal) -> None:
        """The {type, server, data} notification most families share."""
        self._notifier.emit(name, {
            "type": signal.name,
            "server": signal.sender,
            "data": signal.data(),
        })
