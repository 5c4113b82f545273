"""Tests for SessionRegistry bookkeeping."""

import threading

import pytest

from stepgraph.errors import SessionAlreadyActiveError
from stepgraph.graph.channels import Snapshot
from stepgraph.runtime.session_registry import SessionRegistry


@pytest.fixture
def registry():
    return SessionRegistry()


class TestStart:
    def test_start_registers(self, registry):
        handle = registry.start("s-1", Snapshot({"a": 1}), graph_id="g")
        assert handle.session_id == "s-1"
        assert handle.graph_id == "g"
        assert handle.cancelled is False
        assert handle.run_id
        assert "s-1" in registry
        assert registry.get_snapshot("s-1") == {"a": 1}

    def test_duplicate_rejected_and_first_untouched(self, registry):
        first = registry.start("s-1", Snapshot({"a": 1}))
        with pytest.raises(SessionAlreadyActiveError) as exc_info:
            registry.start("s-1", Snapshot({"a": 2}))
        assert exc_info.value.session_id == "s-1"
        assert registry.get_snapshot("s-1") == {"a": 1}
        assert registry.get_handle("s-1").run_id == first.run_id

    def test_returned_handle_is_a_copy(self, registry):
        handle = registry.start("s-1", Snapshot())
        handle.cancelled = True
        assert registry.is_cancelled("s-1") is False


class TestCancel:
    def test_cancel_sets_flag(self, registry):
        registry.start("s-1", Snapshot())
        assert registry.cancel("s-1") is True
        assert registry.is_cancelled("s-1") is True

    def test_cancel_is_idempotent(self, registry):
        registry.start("s-1", Snapshot())
        registry.cancel("s-1")
        assert registry.cancel("s-1") is True
        assert registry.is_cancelled("s-1") is True

    def test_cancel_unknown_is_noop(self, registry):
        assert registry.cancel("ghost") is False
        assert registry.is_cancelled("ghost") is False
        assert registry.active_count() == 0


class TestSnapshots:
    def test_update_snapshot(self, registry):
        registry.start("s-1", Snapshot({"a": 1}))
        registry.update_snapshot("s-1", Snapshot({"a": 2}), current_node="n1")
        handle = registry.get_handle("s-1")
        assert handle.latest_snapshot == {"a": 2}
        assert handle.current_node == "n1"
        assert handle.steps_executed == 1

    def test_update_unknown_is_ignored(self, registry):
        registry.update_snapshot("ghost", Snapshot({"a": 2}))
        assert registry.get_snapshot("ghost") is None

    def test_get_snapshot_unknown(self, registry):
        assert registry.get_snapshot("ghost") is None
        assert registry.get_handle("ghost") is None


class TestClear:
    def test_clear_removes(self, registry):
        registry.start("s-1", Snapshot())
        assert registry.clear("s-1") is True
        assert "s-1" not in registry
        assert registry.get_snapshot("s-1") is None
        assert registry.clear("s-1") is False

    def test_clear_with_stale_run_id_keeps_newer_run(self, registry):
        old = registry.start("s-1", Snapshot())
        registry.clear("s-1", run_id=old.run_id)
        new = registry.start("s-1", Snapshot())

        assert registry.clear("s-1", run_id=old.run_id) is False
        assert "s-1" in registry
        assert registry.clear("s-1", run_id=new.run_id) is True

    def test_session_id_reusable_after_clear(self, registry):
        registry.start("s-1", Snapshot())
        registry.cancel("s-1")
        registry.clear("s-1")
        handle = registry.start("s-1", Snapshot())
        assert handle.cancelled is False


class TestQueries:
    def test_active_sessions(self, registry):
        registry.start("s-1", Snapshot())
        registry.start("s-2", Snapshot())
        assert sorted(registry.active_session_ids()) == ["s-1", "s-2"]
        assert registry.active_count() == 2

    def test_concurrent_starts_admit_exactly_one(self, registry):
        admitted = []
        rejected = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                registry.start("shared", Snapshot())
                admitted.append(1)
            except SessionAlreadyActiveError:
                rejected.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(admitted) == 1
        assert len(rejected) == 7
