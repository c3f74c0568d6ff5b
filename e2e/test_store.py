"""Store backend tests.

Both backends run the same contract: newest-first reads, filters, limits,
and the operation_id uniqueness rule. SQLite runs against ":memory:" and a
temp file, so no database is left behind.
"""

import pytest

from core.store import DuplicateKeyError, MemoryStore, SQLiteStore, StorageError
from schemas.records import AttentionEvent, EventType, Operation, OperationOutcome


def make_event(n: int, server="search-mcp", event_type=EventType.SIGNAL) -> AttentionEvent:
    return AttentionEvent(
        timestamp=1_700_000_000_000 + n,
        server_name=server,
        event_type=event_type,
        target=f"target-{n}",
        context={"n": n, "nested": {"ok": True}},
    )


def make_op(op_id: str, server="search-mcp", outcome=OperationOutcome.SUCCESS) -> Operation:
    return Operation(
        timestamp=1_700_000_000_000,
        server_name=server,
        operation_type="search",
        operation_id=op_id,
        input_summary="query",
        outcome=outcome,
        quality_score=0.7,
        lessons={"results_count": 7},
        duration_ms=12.5,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    s = MemoryStore() if request.param == "memory" else SQLiteStore(":memory:")
    yield s
    s.close()


class TestAttentionEvents:
    def test_newest_first(self, store):
        for n in range(3):
            store.insert_attention_event(make_event(n))
        assert [e.target for e in store.attention_events()] == ["target-2", "target-1", "target-0"]

    def test_round_trips_context(self, store):
        store.insert_attention_event(make_event(1))
        [event] = store.attention_events()
        assert event == make_event(1)

    def test_identical_events_are_both_kept(self, store):
        store.insert_attention_event(make_event(1))
        store.insert_attention_event(make_event(1))
        assert len(store.attention_events()) == 2

    def test_limit(self, store):
        for n in range(5):
            store.insert_attention_event(make_event(n))
        assert len(store.attention_events(limit=2)) == 2

    def test_filters(self, store):
        store.insert_attention_event(make_event(1, server="a"))
        store.insert_attention_event(make_event(2, server="b", event_type=EventType.FILE))
        store.insert_attention_event(make_event(3, server="b"))
        assert [e.target for e in store.attention_events(server_name="b")] == ["target-3", "target-2"]
        assert [e.target for e in store.attention_events(event_type=EventType.FILE)] == ["target-2"]
        assert store.attention_events(server_name="a", event_type=EventType.FILE) == []


class TestOperations:
    def test_round_trip(self, store):
        store.insert_operation(make_op("s-1"))
        assert store.operations() == [make_op("s-1")]

    def test_duplicate_id_raises(self, store):
        store.insert_operation(make_op("s-1"))
        with pytest.raises(DuplicateKeyError) as info:
            store.insert_operation(make_op("s-1", server="other"))
        assert info.value.operation_id == "s-1"
        assert len(store.operations()) == 1

    def test_duplicate_is_a_storage_error(self):
        assert issubclass(DuplicateKeyError, StorageError)

    def test_newest_first_and_filters(self, store):
        store.insert_operation(make_op("a", server="x"))
        store.insert_operation(make_op("b", server="y", outcome=OperationOutcome.FAILURE))
        store.insert_operation(make_op("c", server="y"))
        assert [op.operation_id for op in store.operations()] == ["c", "b", "a"]
        assert [op.operation_id for op in store.operations(server_name="y")] == ["c", "b"]
        failed = store.operations(outcome=OperationOutcome.FAILURE)
        assert [op.operation_id for op in failed] == ["b"]

    def test_missing_duration(self, store):
        op = make_op("s-1").model_copy(update={"duration_ms": None})
        store.insert_operation(op)
        assert store.operations()[0].duration_ms is None


class TestSQLiteStore:
    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "observer.db")
        first = SQLiteStore(path)
        first.insert_operation(make_op("s-1"))
        first.insert_attention_event(make_event(1))
        first.close()

        second = SQLiteStore(path)
        try:
            assert [op.operation_id for op in second.operations()] == ["s-1"]
            assert len(second.attention_events()) == 1
            with pytest.raises(DuplicateKeyError):
                second.insert_operation(make_op("s-1"))
        finally:
            second.close()

    def test_non_json_values_are_stringified(self):
        store = SQLiteStore(":memory:")
        event = make_event(1).model_copy(update={"context": {"raw": b"bytes"}})
        store.insert_attention_event(event)
        assert store.attention_events()[0].context == {"raw": "b'bytes'"}
        store.close()

    def test_other_constraint_failures_are_not_duplicates(self):
        store = SQLiteStore(":memory:")
        store._conn.execute(
            "CREATE TRIGGER reject_ops BEFORE INSERT ON operations "
            "BEGIN SELECT RAISE(ABORT, 'operation rejected'); END"
        )
        try:
            with pytest.raises(StorageError) as excinfo:
                store.insert_operation(make_op("s-1"))
            assert not isinstance(excinfo.value, DuplicateKeyError)
            assert "operation rejected" in str(excinfo.value)
        finally:
            store.close()

    def test_unopenable_path_raises(self, tmp_path):
        with pytest.raises(StorageError):
            SQLiteStore(str(tmp_path / "missing-dir" / "observer.db"))
