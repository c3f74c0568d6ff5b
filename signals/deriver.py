"""Operation deriver — turns terminal signals into Operation records.

Derivation is deterministic: the same signal and the same clock reading
always produce the same Operation. No store access happens during
derivation; the derive_* functions are pure and are tested on their own.

Recording is idempotent. The mesh delivers at least once, so a completion
signal may arrive twice with the same operation_id. The second insert
raises DuplicateKeyError, which record() treats as the expected case and
logs at debug. Any other store failure is a real persistence fault: it is
logged at error and reported as FAILED, but still never raised.

Outcome and quality rules per family:
    search  — success if results_count > 0 else partial;
              quality = min(1, results_count / 10), 0 when absent
    build   — success if completed else failure; quality 0.9 / 0.2
    verify  — SUPPORTED → success, CONTRADICTED → failure, else partial;
              quality = confidence, 0.5 when absent or zero
    bridged — "success" / "failure" / anything else → partial;
              quality 1.0 / 0.0 / 0.5
"""

import logging
from enum import Enum

from core.store import DuplicateKeyError, ObservationStore
from schemas.payloads import AstrosentryPayload, BuildPayload, SearchPayload, VerificationPayload
from schemas.records import Operation, OperationOutcome
from schemas.signal import Signal, SignalType
from signals.ids import (
    resolve_build_id,
    resolve_search_id,
    resolve_verification_id,
    synthesize_astrosentry_id,
)

logger = logging.getLogger(__name__)

BUILD_SUCCESS_QUALITY = 0.9
BUILD_FAILURE_QUALITY = 0.2
DEFAULT_VERIFY_CONFIDENCE = 0.5
SEARCH_RESULTS_FOR_FULL_QUALITY = 10

_ASTROSENTRY_QUALITY = {
    OperationOutcome.SUCCESS: 1.0,
    OperationOutcome.FAILURE: 0.0,
    OperationOutcome.PARTIAL: 0.5,
}


class RecordResult(str, Enum):
    """What happened when an Operation was handed to the store."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


def event_timestamp(signal: Signal, now_ms: int) -> int:
    """Producer timestamp in ms, or now_ms when the producer left it zero/missing."""
    if signal.timestamp:
        return int(signal.timestamp * 1000)
    return now_ms


# ── Derivation ────────────────────────────────────────────────────────────────

def derive_search(signal: Signal, payload: SearchPayload, now_ms: int) -> Operation:
    """Operation for a SEARCH_COMPLETED signal."""
    results = payload.results_count or 0
    return Operation(
        timestamp=event_timestamp(signal, now_ms),
        server_name=signal.sender,
        operation_type="search",
        operation_id=resolve_search_id(payload, now_ms),
        input_summary=payload.query or "unknown",
        outcome=OperationOutcome.SUCCESS if results > 0 else OperationOutcome.PARTIAL,
        quality_score=min(1.0, results / SEARCH_RESULTS_FOR_FULL_QUALITY),
        lessons={"results_count": payload.results_count},
        duration_ms=payload.duration_ms,
    )


def derive_build(signal: Signal, payload: BuildPayload, now_ms: int) -> Operation:
    """Operation for a BUILD_COMPLETED or BUILD_FAILED signal."""
    succeeded = signal.signal_type == SignalType.BUILD_COMPLETED
    return Operation(
        timestamp=event_timestamp(signal, now_ms),
        server_name=signal.sender,
        operation_type="build",
        operation_id=resolve_build_id(payload, now_ms),
        input_summary=payload.server_name or payload.description or "unknown",
        outcome=OperationOutcome.SUCCESS if succeeded else OperationOutcome.FAILURE,
        quality_score=BUILD_SUCCESS_QUALITY if succeeded else BUILD_FAILURE_QUALITY,
        lessons=signal.data(),
        duration_ms=payload.duration_ms,
    )


def verdict_outcome(verdict: str | None) -> OperationOutcome:
    if verdict == "SUPPORTED":
        return OperationOutcome.SUCCESS
    if verdict == "CONTRADICTED":
        return OperationOutcome.FAILURE
    return OperationOutcome.PARTIAL


def derive_verification(signal: Signal, payload: VerificationPayload, now_ms: int) -> Operation:
    """Operation for a VERIFICATION_RESULT signal."""
    return Operation(
        timestamp=event_timestamp(signal, now_ms),
        server_name=signal.sender,
        operation_type="verify",
        operation_id=resolve_verification_id(payload, now_ms),
        input_summary=payload.claim or "unknown",
        outcome=verdict_outcome(payload.verdict),
        quality_score=payload.confidence or DEFAULT_VERIFY_CONFIDENCE,
        lessons={
            "verdict": payload.verdict,
            "constraints": payload.constraints,
            "sources": payload.sources,
        },
        duration_ms=payload.duration_ms,
    )


def bridged_outcome(outcome: str | None) -> OperationOutcome:
    if outcome == "success":
        return OperationOutcome.SUCCESS
    if outcome == "failure":
        return OperationOutcome.FAILURE
    return OperationOutcome.PARTIAL


def derive_astrosentry(signal: Signal, payload: AstrosentryPayload, now_ms: int) -> Operation:
    """Operation for an ASTROSENTRY_EVENT that carries an outcome."""
    server_name = payload.server_id or signal.sender
    outcome = bridged_outcome(payload.outcome)
    return Operation(
        timestamp=event_timestamp(signal, now_ms),
        server_name=server_name,
        operation_type=payload.event_type or "unknown",
        operation_id=synthesize_astrosentry_id(payload, server_name, now_ms),
        input_summary=payload.operation or "unknown",
        outcome=outcome,
        quality_score=_ASTROSENTRY_QUALITY[outcome],
        lessons=dict(payload.metadata),
    )


# ── Recording ─────────────────────────────────────────────────────────────────

class OperationDeriver:
    """Hands derived Operations to the store without ever raising.

    Attributes:
        _store: The backing store. Only insert_operation() is used.
    """

    def __init__(self, store: ObservationStore) -> None:
        self._store = store

    def record(self, op: Operation) -> RecordResult:
        """Insert an Operation, absorbing every failure.

        Args:
            op: The derived Operation.

        Returns:
            INSERTED on success, DUPLICATE when the operation_id already
            exists (a re-delivered completion), FAILED on any other store
            error.
        """
        try:
            self._store.insert_operation(op)
        except DuplicateKeyError:
            logger.debug("Operation '%s' already recorded, ignoring re-delivery.", op.operation_id)
            return RecordResult.DUPLICATE
        except Exception as exc:
            logger.error(
                "Failed to record %s operation '%s': %s",
                op.operation_type,
                op.operation_id,
                exc,
            )
            return RecordResult.FAILED
        return RecordResult.INSERTED
