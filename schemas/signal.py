"""Signal schema.

Signals are the typed datagrams every node in the mesh broadcasts: heartbeats,
file events, search/build/verification progress, coordination handoffs. The
observer receives all of them and never rejects one. The only thing a
signal must carry is an integer type.

The wire format uses camelCase keys ("signalType"); the model accepts both
the wire names and the Python field names.
"""

from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field

PROTOCOL_VERSION = 0x0100


class SignalType(IntEnum):
    """Every signal type the mesh protocol defines.

    Codes are grouped by family in the high byte. Any integer outside this
    enum is still a valid signal. It is routed to the unknown-signal
    fallback rather than rejected.
    """

    DOCK_REQUEST = 0x0001
    DOCK_APPROVED = 0x0002
    HEARTBEAT = 0x0004
    UNDOCK = 0x0005
    SHUTDOWN = 0x0006
    ERROR = 0x00FF

    FILE_DISCOVERED = 0x0101
    FILE_INDEXED = 0x0102
    FILE_MODIFIED = 0x0103
    FILE_DELETED = 0x0104

    SEARCH_STARTED = 0x0201
    SEARCH_COMPLETED = 0x0202
    SEARCH_RESULT = 0x0203

    BUILD_STARTED = 0x0301
    BUILD_COMPLETED = 0x0302
    BUILD_FAILED = 0x0303

    VERIFICATION_STARTED = 0x0401
    VERIFICATION_RESULT = 0x0402
    CLAIM_EXTRACTED = 0x0403

    VALIDATION_APPROVED = 0x0501
    VALIDATION_REJECTED = 0x0502

    HANDOFF_REQUEST = 0x0601
    HANDOFF_APPROVED = 0x0602
    HANDOFF_COMPLETED = 0x0603
    MODE_SWITCH = 0x0604

    ASTROSENTRY_EVENT = 0x0701


class SignalFamily(str, Enum):
    """The handler family a signal type belongs to.

    Each family has exactly one handler in the router. UNKNOWN covers codes
    outside SignalType as well as known codes the observer has no use for
    as inbound traffic (e.g. DOCK_APPROVED, which only the observer sends).
    """

    HEARTBEAT = "heartbeat"
    DOCK = "dock"
    SHUTDOWN = "shutdown"
    FILE = "file"
    SEARCH = "search"
    BUILD = "build"
    VERIFICATION = "verification"
    VALIDATION = "validation"
    COORDINATION = "coordination"
    ASTROSENTRY = "astrosentry"
    ERROR = "error"
    UNKNOWN = "unknown"


_FAMILIES: dict[SignalType, SignalFamily] = {
    SignalType.HEARTBEAT: SignalFamily.HEARTBEAT,
    SignalType.DOCK_REQUEST: SignalFamily.DOCK,
    SignalType.UNDOCK: SignalFamily.SHUTDOWN,
    SignalType.SHUTDOWN: SignalFamily.SHUTDOWN,
    SignalType.FILE_DISCOVERED: SignalFamily.FILE,
    SignalType.FILE_INDEXED: SignalFamily.FILE,
    SignalType.FILE_MODIFIED: SignalFamily.FILE,
    SignalType.FILE_DELETED: SignalFamily.FILE,
    SignalType.SEARCH_STARTED: SignalFamily.SEARCH,
    SignalType.SEARCH_COMPLETED: SignalFamily.SEARCH,
    SignalType.SEARCH_RESULT: SignalFamily.SEARCH,
    SignalType.BUILD_STARTED: SignalFamily.BUILD,
    SignalType.BUILD_COMPLETED: SignalFamily.BUILD,
    SignalType.BUILD_FAILED: SignalFamily.BUILD,
    SignalType.VERIFICATION_STARTED: SignalFamily.VERIFICATION,
    SignalType.VERIFICATION_RESULT: SignalFamily.VERIFICATION,
    SignalType.CLAIM_EXTRACTED: SignalFamily.VERIFICATION,
    SignalType.VALIDATION_APPROVED: SignalFamily.VALIDATION,
    SignalType.VALIDATION_REJECTED: SignalFamily.VALIDATION,
    SignalType.HANDOFF_REQUEST: SignalFamily.COORDINATION,
    SignalType.HANDOFF_APPROVED: SignalFamily.COORDINATION,
    SignalType.HANDOFF_COMPLETED: SignalFamily.COORDINATION,
    SignalType.MODE_SWITCH: SignalFamily.COORDINATION,
    SignalType.ASTROSENTRY_EVENT: SignalFamily.ASTROSENTRY,
    SignalType.ERROR: SignalFamily.ERROR,
}


def family_of(code: int) -> SignalFamily:
    """Return the handler family for a raw signal type code."""
    try:
        return _FAMILIES.get(SignalType(code), SignalFamily.UNKNOWN)
    except ValueError:
        return SignalFamily.UNKNOWN


def signal_name(code: int) -> str:
    """Human-readable name for a signal type code.

    Unrecognized codes render as hex (e.g. "UNKNOWN_0x9999") so they are
    still distinguishable in the audit log.
    """
    try:
        return SignalType(code).name
    except ValueError:
        return f"UNKNOWN_0x{code:04x}"


class Signal(BaseModel):
    """A single datagram received from (or sent to) the mesh.

    Attributes:
        signal_type: Raw integer type tag. Kept as int rather than SignalType
            so unrecognized codes survive decoding and reach the fallback
            handler untouched.
        version: Protocol version tag (0x0100 for the current protocol).
        timestamp: Producer-supplied seconds since epoch. Zero or None means
            the producer did not stamp it; consumers fall back to their own
            clock.
        payload: Open map of fields. Always carries "sender", the logical
            name of the originating server ("unknown" if a malformed datagram
            omitted it). Everything else is family-specific.
    """

    model_config = ConfigDict(populate_by_name=True)

    signal_type: int = Field(alias="signalType")
    version: int = PROTOCOL_VERSION
    timestamp: int | None = None
    payload: dict = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return signal_name(self.signal_type)

    @property
    def family(self) -> SignalFamily:
        return family_of(self.signal_type)

    @property
    def sender(self) -> str:
        sender = self.payload.get("sender")
        return sender if isinstance(sender, str) and sender else "unknown"

    def data(self) -> dict:
        """Return the payload without the sender field."""
        return {k: v for k, v in self.payload.items() if k != "sender"}

    def to_wire(self) -> dict:
        """Serialize with the camelCase keys the mesh expects."""
        return self.model_dump(by_alias=True)
