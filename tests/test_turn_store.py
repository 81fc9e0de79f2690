"""Unit tests for SupabaseTurnStore and InMemoryTurnStore."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock, patch, MagicMock
from models.conversation import ConversationTurn, Role
from services.turn_store import (
    SupabaseTurnStore, InMemoryTurnStore, StoreUnavailable, DuplicateTurnIndex
)


ROW = {
    "id": 7,
    "conversation_id": "whatsapp_4917",
    "turn_index": 1,
    "role": "user",
    "content": "Hallo",
    "metadata": {"level": "A1"},
    "created_at": "2026-02-21T02:08:26.18976+00:00"
}


class PostgrestError(Exception):
    """Stand-in for postgrest's APIError, which carries the SQLSTATE as ``code``."""

    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


class TestSupabaseTurnStore:
    """Test suite for SupabaseTurnStore."""

    @pytest.fixture
    def mock_client(self):
        return MagicMock()

    @pytest.fixture
    def store(self, mock_client):
        with patch('services.turn_store.create_client', return_value=mock_client):
            yield SupabaseTurnStore(
                supabase_url="https://test.supabase.co",
                supabase_key="test_key"
            )

    def test_initialization_without_credentials(self):
        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_KEY"):
            SupabaseTurnStore(supabase_url=None, supabase_key="test_key")

    @patch('services.turn_store.create_client')
    def test_initialization_success(self, mock_create_client):
        store = SupabaseTurnStore(
            supabase_url="https://test.supabase.co",
            supabase_key="test_key",
            table_name="turns"
        )

        assert store.table_name == "turns"
        mock_create_client.assert_called_once_with("https://test.supabase.co", "test_key")

    def test_select_turns_parses_rows(self, store, mock_client):
        query = mock_client.table.return_value.select.return_value.eq.return_value.order.return_value
        query.limit.return_value.execute.return_value = Mock(data=[ROW])

        turns = store.select_turns("whatsapp_4917", limit=60)

        mock_client.table.assert_called_with("conversation_turns")
        query.limit.assert_called_once_with(60)
        assert len(turns) == 1
        turn = turns[0]
        assert turn.id == 7
        assert turn.role is Role.USER
        assert turn.metadata == {"level": "A1"}
        assert turn.created_at == datetime(2026, 2, 21, 2, 8, 26, 189760, tzinfo=timezone.utc)

    def test_select_turns_without_limit(self, store, mock_client):
        query = mock_client.table.return_value.select.return_value.eq.return_value.order.return_value
        query.execute.return_value = Mock(data=[])

        assert store.select_turns("whatsapp_4917") == []
        query.limit.assert_not_called()

    def test_select_turns_wraps_errors(self, store, mock_client):
        mock_client.table.return_value.select.side_effect = Exception("connection reset")

        with pytest.raises(StoreUnavailable, match="connection reset"):
            store.select_turns("whatsapp_4917")

    def test_count_turns(self, store, mock_client):
        mock_client.table.return_value.select.return_value.eq.return_value.execute.return_value = Mock(count=42)

        assert store.count_turns("whatsapp_4917") == 42
        mock_client.table.return_value.select.assert_called_with("id", count="exact")

    def test_count_turns_none_is_zero(self, store, mock_client):
        mock_client.table.return_value.select.return_value.eq.return_value.execute.return_value = Mock(count=None)

        assert store.count_turns("whatsapp_4917") == 0

    def test_last_turn_index(self, store, mock_client):
        query = mock_client.table.return_value.select.return_value.eq.return_value.order.return_value
        query.limit.return_value.execute.return_value = Mock(data=[{"turn_index": 60}])

        assert store.last_turn_index("whatsapp_4917") == 60
        mock_client.table.return_value.select.return_value.eq.return_value.order.assert_called_with(
            "turn_index", desc=True
        )

    def test_last_turn_index_empty(self, store, mock_client):
        query = mock_client.table.return_value.select.return_value.eq.return_value.order.return_value
        query.limit.return_value.execute.return_value = Mock(data=[])

        assert store.last_turn_index("whatsapp_4917") == 0

    def test_insert_turn(self, store, mock_client):
        mock_client.table.return_value.insert.return_value.execute.return_value = Mock(data=[ROW])
        turn = ConversationTurn("whatsapp_4917", 1, Role.USER, "Hallo", {"level": "A1"})

        stored = store.insert_turn(turn)

        record = mock_client.table.return_value.insert.call_args[0][0]
        assert record["turn_index"] == 1
        assert record["role"] == "user"
        assert record["metadata"] == {"level": "A1"}
        assert stored.id == 7

    def test_insert_unique_violation_raises_duplicate(self, store, mock_client):
        mock_client.table.return_value.insert.return_value.execute.side_effect = PostgrestError(
            "duplicate key value violates unique constraint", "23505"
        )

        with pytest.raises(DuplicateTurnIndex) as exc_info:
            store.insert_turn(ConversationTurn("whatsapp_4917", 5, Role.USER, "Hallo"))

        assert exc_info.value.turn_index == 5

    def test_insert_other_error_is_unavailable(self, store, mock_client):
        mock_client.table.return_value.insert.return_value.execute.side_effect = PostgrestError(
            "permission denied", "42501"
        )

        with pytest.raises(StoreUnavailable) as exc_info:
            store.insert_turn(ConversationTurn("whatsapp_4917", 5, Role.USER, "Hallo"))

        assert not isinstance(exc_info.value, DuplicateTurnIndex)

    def test_apply_compaction_is_single_rpc(self, store, mock_client):
        store.apply_compaction("whatsapp_4917", [11, 12], [(16, 11), (17, 12)])

        mock_client.rpc.assert_called_once_with(
            "compact_conversation_turns",
            {
                "p_conversation_id": "whatsapp_4917",
                "p_delete_ids": [11, 12],
                "p_updates": [{"id": 16, "turn_index": 11}, {"id": 17, "turn_index": 12}]
            }
        )
        mock_client.rpc.return_value.execute.assert_called_once()

    def test_apply_compaction_wraps_errors(self, store, mock_client):
        mock_client.rpc.return_value.execute.side_effect = Exception("timeout")

        with pytest.raises(StoreUnavailable, match="compact turns"):
            store.apply_compaction("whatsapp_4917", [1], [])

    def test_evict_oldest_is_single_rpc(self, store, mock_client):
        mock_client.rpc.return_value.execute.return_value = Mock(data={"evicted": 5, "renumbered": 45})

        assert store.evict_oldest("whatsapp_4917", header_size=10, capacity=60, eviction_batch=5) == (5, 45)
        mock_client.rpc.assert_called_once_with(
            "evict_conversation_turns",
            {
                "p_conversation_id": "whatsapp_4917",
                "p_header_size": 10,
                "p_capacity": 60,
                "p_eviction_batch": 5
            }
        )

    def test_evict_oldest_below_capacity_reports_nothing(self, store, mock_client):
        mock_client.rpc.return_value.execute.return_value = Mock(data=[{"evicted": 0, "renumbered": 0}])

        assert store.evict_oldest("whatsapp_4917", 10, 60, 5) == (0, 0)

    def test_evict_oldest_wraps_errors(self, store, mock_client):
        mock_client.rpc.return_value.execute.side_effect = Exception("timeout")

        with pytest.raises(StoreUnavailable, match="evict turns"):
            store.evict_oldest("whatsapp_4917", 10, 60, 5)

    def test_delete_dialogue(self, store, mock_client):
        query = mock_client.table.return_value.delete.return_value.eq.return_value
        query.gt.return_value.execute.return_value = Mock(data=[{}, {}, {}])

        assert store.delete_dialogue("whatsapp_4917", 10) == 3
        query.gt.assert_called_once_with("turn_index", 10)

    def test_parse_timestamp_formats(self, store):
        assert store._parse_timestamp("2026-02-21T02:08:26Z") == datetime(2026, 2, 21, 2, 8, 26, tzinfo=timezone.utc)
        assert store._parse_timestamp("2026-02-21T02:08:26.1234567-02:00").microsecond == 123456
        assert store._parse_timestamp("2026-02-21T02:08:26.5").microsecond == 500000


class TestInMemoryTurnStore:
    """Test suite for InMemoryTurnStore."""

    @pytest.fixture
    def store(self):
        store = InMemoryTurnStore()
        for index in range(1, 6):
            store.insert_turn(ConversationTurn("c1", index, Role.USER, f"turn {index}"))
        return store

    def test_select_is_ordered_and_limited(self, store):
        turns = store.select_turns("c1", limit=3)
        assert [t.turn_index for t in turns] == [1, 2, 3]

    def test_returned_turns_are_copies(self, store):
        store.select_turns("c1")[0].content = "changed"
        assert store.select_turns("c1")[0].content == "turn 1"

    def test_duplicate_insert_raises(self, store):
        with pytest.raises(DuplicateTurnIndex):
            store.insert_turn(ConversationTurn("c1", 3, Role.USER, "again"))

    def test_compaction_rejects_duplicate_indices_atomically(self, store):
        ids = {t.turn_index: t.id for t in store.select_turns("c1")}

        with pytest.raises(StoreUnavailable):
            store.apply_compaction("c1", [ids[1]], [(ids[4], 2)])

        assert [t.turn_index for t in store.select_turns("c1")] == [1, 2, 3, 4, 5]

    def test_compaction_deletes_and_renumbers(self, store):
        ids = {t.turn_index: t.id for t in store.select_turns("c1")}

        store.apply_compaction("c1", [ids[2], ids[3]], [(ids[4], 2), (ids[5], 3)])

        turns = store.select_turns("c1")
        assert [(t.turn_index, t.content) for t in turns] == [(1, "turn 1"), (2, "turn 4"), (3, "turn 5")]

    def test_count_and_last_index(self, store):
        assert store.count_turns("c1") == 5
        assert store.last_turn_index("c1") == 5
        assert store.count_turns("other") == 0
        assert store.last_turn_index("other") == 0

    def test_delete_dialogue(self, store):
        assert store.delete_dialogue("c1", 2) == 3
        assert [t.turn_index for t in store.select_turns("c1")] == [1, 2]

    def test_evict_oldest_drops_batch_and_renumbers(self, store):
        evicted, renumbered = store.evict_oldest("c1", header_size=1, capacity=5, eviction_batch=2)

        assert (evicted, renumbered) == (2, 2)
        turns = store.select_turns("c1")
        assert [(t.turn_index, t.content) for t in turns] == [(1, "turn 1"), (2, "turn 4"), (3, "turn 5")]

    def test_evict_oldest_below_capacity_is_noop(self, store):
        assert store.evict_oldest("c1", header_size=1, capacity=6, eviction_batch=2) == (0, 0)
        assert store.count_turns("c1") == 5
