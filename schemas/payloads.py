"""Family-specific payload views.

A Signal carries an open payload map. Each handler family reads a handful
of well-known fields out of it; these models name those fields and their
types so the router works with attributes instead of dict lookups.

Views are built with parse_payload(), which never raises. A field whose
value has the wrong type is dropped and treated as missing, because the
observer defaults malformed fields rather than rejecting the signal.
"""

import logging
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

P = TypeVar("P", bound="FamilyPayload")


class FamilyPayload(BaseModel):
    """Base for all payload views. Unlisted fields are ignored, not errors."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
        allow_inf_nan=False,
    )


class FilePayload(FamilyPayload):
    path: str | None = None
    file: str | None = None

    def target(self) -> str:
        return self.path or self.file or "unknown"


class SearchPayload(FamilyPayload):
    query: str | None = None
    search_term: str | None = None
    search_id: str | None = None
    results_count: float | None = None
    duration_ms: float | None = None

    def target(self) -> str:
        return self.query or self.search_term or "unknown"


class BuildPayload(FamilyPayload):
    build_id: str | None = None
    server_name: str | None = None
    description: str | None = None
    duration_ms: float | None = None


class VerificationPayload(FamilyPayload):
    verification_id: str | None = None
    claim: str | None = None
    verdict: str | None = None
    confidence: float | None = None
    constraints: list | dict | str | None = None
    sources: list | dict | str | None = None
    duration_ms: float | None = None


class ValidationPayload(FamilyPayload):
    reason: str | None = None


class AstrosentryPayload(FamilyPayload):
    """An operational outcome bridged in from an HTTP API path.

    Attributes:
        server_id: The server the bridged operation ran on ("serverId").
        event_type: Category of the operation ("eventType"); becomes the
            Operation's operation_type.
        outcome: "success", "failure", or anything else (treated as partial).
            None means the event carries no outcome and no Operation is
            derived.
        operation: Name of the specific operation that ran.
        source: Bridge tag identifying the non-native path, e.g. "http".
        metadata: Open-ended extra fields, stored verbatim as lessons.
    """

    server_id: str | None = Field(default=None, alias="serverId")
    event_type: str | None = Field(default=None, alias="eventType")
    outcome: str | None = None
    operation: str | None = None
    source: str | None = None
    metadata: dict = Field(default_factory=dict)


def parse_payload(model: type[P], data: dict) -> P:
    """Build a payload view from raw signal data, dropping invalid fields.

    Args:
        model: The FamilyPayload subclass to build.
        data:  The signal payload (with or without "sender").

    Returns:
        An instance of model. Fields that failed validation are left at
        their defaults; a warning names them.
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        bad = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
        logger.warning(
            "Dropping invalid %s fields: %s", model.__name__, ", ".join(sorted(bad))
        )
        return model.model_validate({k: v for k, v in data.items() if k not in bad})
