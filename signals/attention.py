"""Attention event logger.

Writes the audit log. The router calls log_signal() for every inbound
signal before anything else happens, and some families call log() again
with a more specific event (a file path, a search query, a build id).

A store failure here is isolated: it is logged and reported as False, and
routing carries on. Re-delivered signals produce repeated
events; nothing here deduplicates them.
"""

import logging

from core.store import ObservationStore
from schemas.records import AttentionEvent, EventType
from schemas.signal import Signal
from signals.deriver import event_timestamp

logger = logging.getLogger(__name__)


class AttentionLogger:
    """Builds and persists AttentionEvents.

    Attributes:
        _store: The backing store. Only insert_attention_event() is used.
    """

    def __init__(self, store: ObservationStore) -> None:
        self._store = store

    def log(self, event: AttentionEvent) -> bool:
        """Persist one event, absorbing every failure.

        Returns:
            True if the store accepted the event, False otherwise.
        """
        try:
            self._store.insert_attention_event(event)
        except Exception as exc:
            logger.error(
                "Failed to log %s attention event for %s (target=%s): %s",
                event.event_type.value,
                event.server_name,
                event.target,
                exc,
            )
            return False
        return True

    def log_signal(self, signal: Signal, address: tuple[str, int], now_ms: int) -> bool:
        """Record the universal "signal" event every inbound signal gets.

        Args:
            signal:  The inbound signal.
            address: (host, port) the datagram came from.
            now_ms:  Receipt time, used when the signal carries no timestamp.
        """
        host, port = address
        return self.log(AttentionEvent(
            timestamp=event_timestamp(signal, now_ms),
            server_name=signal.sender,
            event_type=EventType.SIGNAL,
            target=signal.name,
            context={
                "signal_type": signal.signal_type,
                "data": signal.data(),
                "source_address": host,
                "source_port": port,
            },
        ))

    def log_family(
        self,
        signal: Signal,
        event_type: EventType,
        target: str,
        context: dict,
        now_ms: int,
        server_name: str | None = None,
    ) -> bool:
        """Record a family-specific event alongside the universal one.

        Args:
            server_name: Overrides the signal's sender, for bridged
                events that speak for another server.
        """
        return self.log(AttentionEvent(
            timestamp=event_timestamp(signal, now_ms),
            server_name=server_name or signal.sender,
            event_type=event_type,
            target=target,
            context=context,
        ))
