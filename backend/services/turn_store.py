"""Datastore access for conversation turns (Supabase PostgreSQL or in-memory)."""
import itertools
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from supabase import create_client, Client

from models.conversation import ConversationTurn, Role
from config import SUPABASE_URL, SUPABASE_KEY, TURNS_TABLE

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"

_COLUMNS = "id, conversation_id, turn_index, role, content, metadata, created_at"


class StoreUnavailable(RuntimeError):
    """The underlying datastore call failed (network, timeout, permission)."""


class DuplicateTurnIndex(StoreUnavailable):
    """An insert collided with an existing (conversation_id, turn_index)."""

    def __init__(self, conversation_id: str, turn_index: int):
        self.conversation_id = conversation_id
        self.turn_index = turn_index
        super().__init__(
            f"Turn index {turn_index} already exists in conversation {conversation_id}"
        )


class SupabaseTurnStore:
    """
    Turn storage backed by a Supabase table.

    Plain reads, inserts and deletes go through the table API. A maintenance
    pass is a single call to the ``evict_conversation_turns`` Postgres
    function and a repair a single call to ``compact_conversation_turns``
    (see ``migrations/001_create_conversation_turns.sql``), so each commits as
    one transaction under a conversation-scoped advisory lock.
    """

    def __init__(
        self,
        supabase_url: str = SUPABASE_URL,
        supabase_key: str = SUPABASE_KEY,
        table_name: str = TURNS_TABLE
    ):
        """
        Initialize the turn store with a Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the turns table

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

        self.table_name = table_name
        self.client: Client = create_client(supabase_url, supabase_key)
        logger.info(f"SupabaseTurnStore initialized with table: {table_name}")

    def _table(self):
        return self.client.table(self.table_name)

    def count_turns(self, conversation_id: str) -> int:
        try:
            response = (
                self._table()
                .select("id", count="exact")
                .eq("conversation_id", conversation_id)
                .execute()
            )
        except Exception as e:
            raise self._unavailable("count turns", conversation_id, e)
        return response.count if response.count is not None else 0

    def select_turns(self, conversation_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        """
        Retrieve turns for a conversation ordered by turn_index ascending.

        Args:
            conversation_id: ID of the conversation
            limit: Optional cap on the number of turns returned

        Returns:
            List of ConversationTurn objects, empty for an unknown conversation
        """
        try:
            query = (
                self._table()
                .select(_COLUMNS)
                .eq("conversation_id", conversation_id)
                .order("turn_index", desc=False)
            )
            if limit is not None:
                query = query.limit(limit)
            response = query.execute()
        except Exception as e:
            raise self._unavailable("select turns", conversation_id, e)

        return [self._row_to_turn(row) for row in (response.data or [])]

    def last_turn_index(self, conversation_id: str) -> int:
        try:
            response = (
                self._table()
                .select("turn_index")
                .eq("conversation_id", conversation_id)
                .order("turn_index", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise self._unavailable("read last turn index", conversation_id, e)
        return response.data[0]["turn_index"] if response.data else 0

    def insert_turn(self, turn: ConversationTurn) -> ConversationTurn:
        """
        Insert a turn and return it with its datastore id.

        Raises:
            DuplicateTurnIndex: If the turn_index is already taken
            StoreUnavailable: On any other datastore failure
        """
        record = {
            "conversation_id": turn.conversation_id,
            "turn_index": turn.turn_index,
            "role": turn.role.value,
            "content": turn.content,
            "metadata": turn.metadata,
            "created_at": turn.created_at.isoformat()
        }
        try:
            response = self._table().insert(record).execute()
        except Exception as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateTurnIndex(turn.conversation_id, turn.turn_index)
            raise self._unavailable("insert turn", turn.conversation_id, e)

        if not response.data:
            raise StoreUnavailable(f"Insert into {self.table_name} returned no row")
        return self._row_to_turn(response.data[0])

    def apply_compaction(
        self,
        conversation_id: str,
        delete_ids: Sequence[int],
        renumber: Sequence[Tuple[int, int]]
    ) -> None:
        """
        Delete rows and renumber survivors in one transaction.

        Args:
            conversation_id: ID of the conversation
            delete_ids: Row ids to delete
            renumber: (row id, new turn_index) pairs
        """
        try:
            self.client.rpc(
                "compact_conversation_turns",
                {
                    "p_conversation_id": conversation_id,
                    "p_delete_ids": list(delete_ids),
                    "p_updates": [
                        {"id": row_id, "turn_index": new_index}
                        for row_id, new_index in renumber
                    ]
                }
            ).execute()
        except Exception as e:
            raise self._unavailable("compact turns", conversation_id, e)

    def evict_oldest(
        self,
        conversation_id: str,
        header_size: int,
        capacity: int,
        eviction_batch: int
    ) -> Tuple[int, int]:
        """
        Run one maintenance pass inside the database.

        The ``evict_conversation_turns`` function re-counts under the
        conversation's advisory lock and does nothing below capacity, so
        workers that all saw a full conversation evict only one batch.

        Returns:
            (turns evicted, turns renumbered)
        """
        try:
            response = self.client.rpc(
                "evict_conversation_turns",
                {
                    "p_conversation_id": conversation_id,
                    "p_header_size": header_size,
                    "p_capacity": capacity,
                    "p_eviction_batch": eviction_batch
                }
            ).execute()
        except Exception as e:
            raise self._unavailable("evict turns", conversation_id, e)

        result = response.data or {}
        if isinstance(result, list):
            result = result[0] if result else {}
        return result.get("evicted", 0), result.get("renumbered", 0)

    def delete_dialogue(self, conversation_id: str, header_size: int) -> int:
        try:
            response = (
                self._table()
                .delete()
                .eq("conversation_id", conversation_id)
                .gt("turn_index", header_size)
                .execute()
            )
        except Exception as e:
            raise self._unavailable("delete dialogue", conversation_id, e)
        return len(response.data or [])

    def _unavailable(self, action: str, conversation_id: str, error: Exception) -> StoreUnavailable:
        error_msg = f"Failed to {action} for conversation {conversation_id}: {error}"
        logger.error(error_msg)
        return StoreUnavailable(error_msg)

    def _row_to_turn(self, row: Dict) -> ConversationTurn:
        return ConversationTurn(
            conversation_id=row["conversation_id"],
            turn_index=row["turn_index"],
            role=Role(row["role"]),
            content=row["content"],
            metadata=row.get("metadata") or {},
            created_at=self._parse_timestamp(row["created_at"]),
            id=row.get("id")
        )

    def _parse_timestamp(self, timestamp_str: str) -> datetime:
        """
        Parse timestamp string from Supabase, handling various formats.

        Supabase can return timestamps with varying microsecond precision,
        which Python's fromisoformat() can't always handle. This method
        normalizes the fractional part to six digits.
        """
        timestamp_str = timestamp_str.replace("Z", "+00:00")

        if "." in timestamp_str:
            base, rest = timestamp_str.split(".", 1)
            for sign in ("+", "-"):
                if sign in rest:
                    fraction, tz = rest.split(sign, 1)
                    timestamp_str = f"{base}.{fraction[:6].ljust(6, '0')}{sign}{tz}"
                    break
            else:
                timestamp_str = f"{base}.{rest[:6].ljust(6, '0')}"

        return datetime.fromisoformat(timestamp_str)


class InMemoryTurnStore:
    """
    Process-local turn storage with the same contract as SupabaseTurnStore.

    Every method runs under one lock, so a compaction is never observed
    half-applied. Returned turns are copies.
    """

    def __init__(self):
        self._turns: Dict[str, List[ConversationTurn]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def count_turns(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._turns.get(conversation_id, []))

    def select_turns(self, conversation_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        with self._lock:
            turns = sorted(self._turns.get(conversation_id, []), key=lambda t: t.turn_index)
            if limit is not None:
                turns = turns[:limit]
            return [replace(t) for t in turns]

    def last_turn_index(self, conversation_id: str) -> int:
        with self._lock:
            return max((t.turn_index for t in self._turns.get(conversation_id, [])), default=0)

    def insert_turn(self, turn: ConversationTurn) -> ConversationTurn:
        with self._lock:
            turns = self._turns.setdefault(turn.conversation_id, [])
            if any(t.turn_index == turn.turn_index for t in turns):
                raise DuplicateTurnIndex(turn.conversation_id, turn.turn_index)
            stored = replace(turn, id=next(self._ids), metadata=dict(turn.metadata))
            turns.append(stored)
            return replace(stored)

    def apply_compaction(
        self,
        conversation_id: str,
        delete_ids: Sequence[int],
        renumber: Sequence[Tuple[int, int]]
    ) -> None:
        with self._lock:
            doomed = set(delete_ids)
            new_index = dict(renumber)
            compacted = [
                replace(t, turn_index=new_index.get(t.id, t.turn_index))
                for t in self._turns.get(conversation_id, [])
                if t.id not in doomed
            ]
            indices = [t.turn_index for t in compacted]
            if len(indices) != len(set(indices)):
                # Mirrors the deferred unique constraint: nothing is applied.
                raise StoreUnavailable(
                    f"Compaction of conversation {conversation_id} would duplicate turn indices"
                )
            self._turns[conversation_id] = compacted

    def evict_oldest(
        self,
        conversation_id: str,
        header_size: int,
        capacity: int,
        eviction_batch: int
    ) -> Tuple[int, int]:
        with self._lock:
            turns = sorted(self._turns.get(conversation_id, []), key=lambda t: t.turn_index)
            if len(turns) < capacity:
                return 0, 0

            header = [t for t in turns if t.turn_index <= header_size]
            dialogue = [t for t in turns if t.turn_index > header_size]
            survivors = dialogue[eviction_batch:]
            renumbered = 0
            for offset, turn in enumerate(survivors, start=1):
                if turn.turn_index != header_size + offset:
                    turn.turn_index = header_size + offset
                    renumbered += 1
            self._turns[conversation_id] = header + survivors
            return len(dialogue) - len(survivors), renumbered

    def delete_dialogue(self, conversation_id: str, header_size: int) -> int:
        with self._lock:
            turns = self._turns.get(conversation_id, [])
            kept = [t for t in turns if t.turn_index <= header_size]
            self._turns[conversation_id] = kept
            return len(turns) - len(kept)
