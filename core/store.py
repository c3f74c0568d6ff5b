"""Observation store.

The store is the append-only backing log behind the observer: attention
events and operations go in, and the HTTP API reads them back out. The
router depends only on the ObservationStore interface, never on a concrete
backend.

Two backends ship:
    MemoryStore  — in-process lists, used by tests and the CLI dry runs.
    SQLiteStore  — a single-file database, used by the running service.

Both enforce the one uniqueness rule the router relies on: an operation_id
can be inserted once. A second insert raises DuplicateKeyError, which the
router treats as an expected re-delivery rather than a failure.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod

from schemas.records import AttentionEvent, EventType, Operation, OperationOutcome

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 100


class StorageError(Exception):
    """Raised when the backing store rejects a write or a read fails."""


class DuplicateKeyError(StorageError):
    """Raised when an operation_id already exists in the store.

    Includes the offending id so callers can log it without re-parsing
    the message.
    """

    def __init__(self, operation_id: str):
        super().__init__(f"Operation '{operation_id}' already recorded")
        self.operation_id = operation_id


class ObservationStore(ABC):
    """Abstract base class for every store backend.

    Writes are synchronous and treated as fast and local by the router.
    Reads return newest-first.
    """

    @abstractmethod
    def insert_attention_event(self, event: AttentionEvent) -> None:
        """Append one attention event.

        Raises:
            StorageError: If the backend rejects the write.
        """
        ...

    @abstractmethod
    def insert_operation(self, op: Operation) -> None:
        """Append one operation.

        Raises:
            DuplicateKeyError: If op.operation_id already exists.
            StorageError: If the backend rejects the write for any other reason.
        """
        ...

    @abstractmethod
    def attention_events(
        self,
        limit: int = DEFAULT_QUERY_LIMIT,
        server_name: str | None = None,
        event_type: EventType | None = None,
    ) -> list[AttentionEvent]:
        """Return the most recent attention events, newest first."""
        ...

    @abstractmethod
    def operations(
        self,
        limit: int = DEFAULT_QUERY_LIMIT,
        server_name: str | None = None,
        outcome: OperationOutcome | None = None,
    ) -> list[Operation]:
        """Return the most recent operations, newest first."""
        ...

    def close(self) -> None:
        """Release any resources held by the backend. No-op by default."""


class MemoryStore(ObservationStore):
    """In-RAM store. Lost on restart; uniqueness is checked like SQLite's."""

    def __init__(self) -> None:
        self._events: list[AttentionEvent] = []
        self._operations: dict[str, Operation] = {}

    def insert_attention_event(self, event: AttentionEvent) -> None:
        self._events.append(event)

    def insert_operation(self, op: Operation) -> None:
        if op.operation_id in self._operations:
            raise DuplicateKeyError(op.operation_id)
        self._operations[op.operation_id] = op

    def attention_events(self, limit=DEFAULT_QUERY_LIMIT, server_name=None, event_type=None):
        matches = [
            e for e in reversed(self._events)
            if (server_name is None or e.server_name == server_name)
            and (event_type is None or e.event_type == event_type)
        ]
        return matches[:limit]

    def operations(self, limit=DEFAULT_QUERY_LIMIT, server_name=None, outcome=None):
        matches = [
            op for op in reversed(list(self._operations.values()))
            if (server_name is None or op.server_name == server_name)
            and (outcome is None or op.outcome == outcome)
        ]
        return matches[:limit]


_SCHEMA = """
CREATE TABLE IF NOT EXISTS attention_events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp   INTEGER NOT NULL,
    server_name TEXT    NOT NULL,
    event_type  TEXT    NOT NULL,
    target      TEXT    NOT NULL,
    context     TEXT    NOT NULL
);
CREATE TABLE IF NOT EXISTS operations (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp      INTEGER NOT NULL,
    server_name    TEXT    NOT NULL,
    operation_type TEXT    NOT NULL,
    operation_id   TEXT    NOT NULL UNIQUE,
    input_summary  TEXT    NOT NULL,
    outcome        TEXT    NOT NULL,
    quality_score  REAL    NOT NULL,
    lessons        TEXT    NOT NULL,
    duration_ms    REAL
);
CREATE INDEX IF NOT EXISTS idx_attention_server ON attention_events(server_name);
CREATE INDEX IF NOT EXISTS idx_operations_server ON operations(server_name);
"""


class SQLiteStore(ObservationStore):
    """Single-file SQLite backend.

    The connection is shared between the event loop (UDP datagrams) and the
    HTTP worker threads, so every statement runs under one lock.

    Attributes:
        path: Database file path, or ":memory:" for a throwaway database.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open store at {path}: {exc}") from exc
        logger.info("Opened observation store at %s.", path)

    def insert_attention_event(self, event: AttentionEvent) -> None:
        self._write(
            "INSERT INTO attention_events "
            "(timestamp, server_name, event_type, target, context) VALUES (?, ?, ?, ?, ?)",
            (
                event.timestamp,
                event.server_name,
                event.event_type.value,
                event.target,
                _dumps(event.context),
            ),
        )

    def insert_operation(self, op: Operation) -> None:
        try:
            self._write(
                "INSERT INTO operations "
                "(timestamp, server_name, operation_type, operation_id, input_summary, "
                "outcome, quality_score, lessons, duration_ms) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    op.timestamp,
                    op.server_name,
                    op.operation_type,
                    op.operation_id,
                    op.input_summary,
                    op.outcome.value,
                    op.quality_score,
                    _dumps(op.lessons),
                    op.duration_ms,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DuplicateKeyError(op.operation_id) from exc
            raise StorageError(str(exc)) from exc

    def attention_events(self, limit=DEFAULT_QUERY_LIMIT, server_name=None, event_type=None):
        clauses, params = _filters(
            server_name=server_name,
            event_type=event_type.value if event_type else None,
        )
        rows = self._read(
            f"SELECT * FROM attention_events{clauses} ORDER BY id DESC LIMIT ?",
            (*params, limit),
        )
        return [
            AttentionEvent(
                timestamp=row["timestamp"],
                server_name=row["server_name"],
                event_type=row["event_type"],
                target=row["target"],
                context=json.loads(row["context"]),
            )
            for row in rows
        ]

    def operations(self, limit=DEFAULT_QUERY_LIMIT, server_name=None, outcome=None):
        clauses, params = _filters(
            server_name=server_name,
            outcome=outcome.value if outcome else None,
        )
        rows = self._read(
            f"SELECT * FROM operations{clauses} ORDER BY id DESC LIMIT ?",
            (*params, limit),
        )
        return [
            Operation(
                timestamp=row["timestamp"],
                server_name=row["server_name"],
                operation_type=row["operation_type"],
                operation_id=row["operation_id"],
                input_summary=row["input_summary"],
                outcome=row["outcome"],
                quality_score=row["quality_score"],
                lessons=json.loads(row["lessons"]),
                duration_ms=row["duration_ms"],
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Private ───────────────────────────────────────────────────────────────

    def _write(self, sql: str, params: tuple) -> None:
        """Run one INSERT and commit. IntegrityError is left for the caller."""
        with self._lock:
            try:
                self._conn.execute(sql, params)
                self._conn.commit()
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StorageError(str(exc)) from exc

    def _read(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc


def _filters(**columns) -> tuple[str, tuple]:
    """Build a WHERE clause from the non-None column filters."""
    active = {k: v for k, v in columns.items() if v is not None}
    if not active:
        return "", ()
    clause = " WHERE " + " AND ".join(f"{name} = ?" for name in active)
    return clause, tuple(active.values())


def _dumps(value: dict) -> str:
    """Serialize a context/lessons map; non-JSON values fall back to str()."""
    return json.dumps(value, default=str)
