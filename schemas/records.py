"""Audit and operation record schemas.

The observer produces two kinds of durable record:

- AttentionEvent: the uniform audit record. At least one is written for
  every inbound signal; some families add a second, more specific one.
- Operation: a derived record summarizing a completed (or partially
  completed) unit of work, with an outcome and a quality score. Only
  terminal or summarizable signals produce one.

Both are built by the router for the duration of one route() call and then
handed to the store, which owns persistence.
"""

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class EventType(str, Enum):
    """What kind of thing an AttentionEvent observed.

    Chosen by the handling family, not by signal type alone: a build start
    is an "operation", a search start is a "query", a handoff is a
    "workflow", and every signal also gets a "signal" event.
    """

    SIGNAL = "signal"
    FILE = "file"
    QUERY = "query"
    OPERATION = "operation"
    WORKFLOW = "workflow"


class OperationOutcome(str, Enum):
    """How a unit of work ended."""

    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class AttentionEvent(BaseModel):
    """One observation in the audit log.

    Attributes:
        timestamp: Milliseconds since epoch. Derived from the signal's own
            timestamp when the producer stamped one, else the observer's
            clock at receipt.
        server_name: The server the event is about, normally the signal's
            sender, or the bridged server id for astrosentry events.
        event_type: See EventType.
        target: Short human-meaningful subject: a file path, a search
            query, a build id, a signal name, or "eventType:operation" for
            bridged events.
        context: Remaining payload fields plus handler-added metadata.
    """

    timestamp: int
    server_name: str
    event_type: EventType
    target: str
    context: dict = Field(default_factory=dict)


class Operation(BaseModel):
    """A completed unit of work derived from a terminal signal.

    Attributes:
        timestamp: Milliseconds since epoch, same derivation as
            AttentionEvent.timestamp.
        server_name: Server that performed the work.
        operation_type: "search", "build", "verify", or the astrosentry
            event-type string for bridged operations.
        operation_id: Stable identifier and uniqueness key in the store.
            Re-delivery of the same completion signal yields the same id,
            which is what makes recording idempotent.
        input_summary: Short description of what was attempted.
        outcome: See OperationOutcome.
        quality_score: Family-specific score clamped to [0.0, 1.0].
        lessons: Free-form context kept for later pattern analysis.
        duration_ms: How long the work took, when the producer reported it.
    """

    timestamp: int
    server_name: str
    operation_type: str
    operation_id: str
    input_summary: str
    outcome: OperationOutcome
    quality_score: float = Field(ge=0.0, le=1.0)
    lessons: dict = Field(default_factory=dict)
    duration_ms: float | None = None

    @field_validator("quality_score", mode="before")
    @classmethod
    def _clamp_quality(cls, value):
        # Producer-supplied scores (e.g. verifier confidence) can drift out of range.
        return max(0.0, min(1.0, float(value)))
