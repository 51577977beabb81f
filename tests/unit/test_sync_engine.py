# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for the offline write queue
# =============================================================================

from unittest.mock import MagicMock

import pytest

from clinic_core.data.supabase_client import SupabaseWritePusher
from clinic_core.offline.sync_engine import SyncEngine, SyncStatus

MARY = ("t1", "u-mary")
BOB = ("t2", "u-bob")


@pytest.fixture
def engine_factory(local_db):
    def _make(pusher=None, owner=MARY, **kwargs):
        engine = SyncEngine(local_db, **kwargs)
        if pusher is not None:
            engine.register_pusher(owner, pusher)
        return engine
    return _make


class TestFlush:
    def test_pushes_in_order_and_clears_queue(self, engine_factory):
        pushed = []
        engine = engine_factory(pushed.append)
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)
        engine.enqueue("UPDATE", "revenue", {"id": "r1", "amount": 2}, owner=MARY)

        assert engine.flush()
        assert [op["operation"] for op in pushed] == ["INSERT", "UPDATE"]
        assert engine.state.status is SyncStatus.IDLE
        assert engine.state.pending_count == 0
        assert engine.state.total_synced == 2

    def test_offline_keeps_queue(self, engine_factory):
        pusher = MagicMock()
        engine = engine_factory(pusher, is_online=lambda: False)
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)

        assert not engine.flush()
        pusher.assert_not_called()
        assert engine.state.status is SyncStatus.OFFLINE
        assert engine.pending_count == 1

    def test_no_pusher_is_offline(self, engine_factory):
        engine = engine_factory()
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)
        assert not engine.flush()
        assert engine.pending_count == 1

    def test_failed_push_counts_attempt(self, engine_factory):
        engine = engine_factory(MagicMock(side_effect=RuntimeError("503")))
        engine.MAX_RETRY_ATTEMPTS = 2
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)

        assert not engine.flush()
        assert engine.state.status is SyncStatus.ERROR
        assert engine.state.pending_count == 1

        engine.flush()
        assert engine.state.pending_count == 0
        assert engine.state.failed_count == 1

    def test_callbacks_see_status_changes(self, engine_factory):
        seen = []
        engine = engine_factory(lambda op: None)
        engine.register_callback(lambda state: seen.append(state.status))
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)
        engine.flush()
        assert SyncStatus.SYNCING in seen
        assert seen[-1] is SyncStatus.IDLE

    def test_connection_restored_triggers_flush(self, engine_factory):
        pushed = []
        engine = engine_factory(pushed.append)
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)
        state = MagicMock()
        state.status.value = "online"
        engine.on_connection_change(state)
        assert len(pushed) == 1


class TestOwners:
    def test_each_owner_is_pushed_with_its_own_pusher(self, engine_factory):
        mary_pushed, bob_pushed = [], []
        engine = engine_factory(mary_pushed.append)
        engine.register_pusher(BOB, bob_pushed.append)
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)
        engine.enqueue("INSERT", "revenue", {"id": "r2"}, owner=BOB)

        assert engine.flush()
        assert [op["record_id"] for op in mary_pushed] == ["r1"]
        assert [op["record_id"] for op in bob_pushed] == ["r2"]

    def test_writes_of_logged_out_owner_wait(self, engine_factory):
        pushed = []
        engine = engine_factory(pushed.append)
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)
        engine.enqueue("INSERT", "revenue", {"id": "r2"}, owner=BOB)

        engine.flush()

        assert [op["record_id"] for op in pushed] == ["r1"]
        assert engine.pending_count_for(BOB) == 1
        assert engine.pending_count_for(MARY) == 0

    def test_unregister_stops_pushing(self, engine_factory):
        pusher = MagicMock()
        engine = engine_factory(pusher)
        engine.unregister_pusher(MARY)
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)

        assert not engine.flush()
        pusher.assert_not_called()

    def test_unregister_leaves_a_newer_pusher(self, engine_factory):
        old, new = MagicMock(), MagicMock()
        engine = engine_factory(old)
        engine.register_pusher(MARY, new)

        engine.unregister_pusher(MARY, old)
        engine.enqueue("INSERT", "revenue", {"id": "r1"}, owner=MARY)
        engine.flush()

        new.assert_called_once()
        old.assert_not_called()


class TestSupabaseWritePusher:
    def test_insert_never_upserts(self, mock_supabase):
        SupabaseWritePusher(mock_supabase)(
            {"operation": "INSERT", "table": "revenue", "record_id": "r1", "data": {"id": "r1"}}
        )
        table = mock_supabase.table.return_value
        mock_supabase.table.assert_called_with("revenue")
        table.insert.assert_called_once_with({"id": "r1"})
        table.upsert.assert_not_called()

    def test_update_targets_the_queued_id(self, mock_supabase):
        SupabaseWritePusher(mock_supabase)(
            {"operation": "UPDATE", "table": "revenue", "record_id": "r1", "data": {"id": "r1", "amount": 5}}
        )
        table = mock_supabase.table.return_value
        table.update.assert_called_once_with({"id": "r1", "amount": 5})
        table.update.return_value.eq.assert_called_once_with("id", "r1")
        table.upsert.assert_not_called()

    def test_delete_by_id(self, mock_supabase):
        SupabaseWritePusher(mock_supabase)(
            {"operation": "DELETE", "table": "revenue", "record_id": "r1", "data": {"id": "r1"}}
        )
        mock_supabase.table.return_value.delete.return_value.eq.assert_called_once_with("id", "r1")

    def test_unknown_operation_raises(self, mock_supabase):
        with pytest.raises(ValueError):
            SupabaseWritePusher(mock_supabase)(
                {"operation": "MERGE", "table": "revenue", "record_id": "r1", "data": {"id": "r1"}}
            )
