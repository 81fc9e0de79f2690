"""
Bounded conversation log.

Each conversation keeps a permanent header segment (turns
``1..header_size``, typically onboarding/system turns) followed by a rolling
dialogue window of at most ``window_size`` turns. When an append finds the
conversation at capacity, the oldest ``eviction_batch`` dialogue turns are
deleted and the survivors renumbered to ``header_size + 1 ...`` before the
new turn is inserted. Turn indices are always a contiguous run from 1.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from models.conversation import ConversationTurn, Role
from services.history_cache import HistoryCache
from services.turn_store import DuplicateTurnIndex, StoreUnavailable
from config import HEADER_SIZE, WINDOW_SIZE, EVICTION_BATCH, APPEND_MAX_ATTEMPTS

logger = logging.getLogger(__name__)


class IntegrityViolation(Exception):
    """Stored turn indices have a gap or duplicate, usually after a partial maintenance pass."""

    def __init__(self, conversation_id: str, reason: str):
        self.conversation_id = conversation_id
        self.reason = reason
        super().__init__(f"Conversation {conversation_id} failed integrity check: {reason}")


@dataclass(frozen=True)
class LogPolicy:
    """
    Retention limits of the conversation log.

    Attributes:
        header_size: Number of permanent turns at the start of a conversation
        window_size: Maximum number of dialogue turns kept after the header
        eviction_batch: Dialogue turns dropped by one maintenance pass
    """
    header_size: int = HEADER_SIZE
    window_size: int = WINDOW_SIZE
    eviction_batch: int = EVICTION_BATCH

    def __post_init__(self):
        if self.header_size < 0:
            raise ValueError("header_size cannot be negative")
        if self.window_size < 1:
            raise ValueError("window_size must be at least 1")
        if not 1 <= self.eviction_batch <= self.window_size:
            raise ValueError("eviction_batch must be between 1 and window_size")

    @property
    def capacity(self) -> int:
        return self.header_size + self.window_size

    @classmethod
    def from_config(cls) -> "LogPolicy":
        return cls(header_size=HEADER_SIZE, window_size=WINDOW_SIZE, eviction_batch=EVICTION_BATCH)


@dataclass
class CompactionResult:
    """What a maintenance or repair pass changed."""
    evicted: int = 0
    renumbered: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.evicted or self.renumbered)


class ConversationLog:
    """Capacity-bounded, per-conversation message history on top of a turn store."""

    def __init__(
        self,
        store,
        policy: Optional[LogPolicy] = None,
        cache: Optional[HistoryCache] = None,
        max_attempts: int = APPEND_MAX_ATTEMPTS
    ):
        """
        Args:
            store: SupabaseTurnStore or InMemoryTurnStore
            policy: Retention limits (defaults to the deployment configuration)
            cache: Optional history cache; disabled when omitted
            max_attempts: Append attempts when another writer takes the same index
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.policy = policy or LogPolicy.from_config()
        self.cache = cache if cache is not None else HistoryCache(0)
        self.max_attempts = max_attempts
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, conversation_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = self._locks[conversation_id] = threading.Lock()
            return lock

    def load_history(self, conversation_id: str) -> List[ConversationTurn]:
        """
        Load a conversation's turns in turn_index order.

        Args:
            conversation_id: ID of the conversation

        Returns:
            Up to ``capacity`` turns; an empty list for a new conversation

        Raises:
            IntegrityViolation: If the stored indices are not exactly 1..N
            StoreUnavailable: If the datastore call fails
        """
        cached = self.cache.get(conversation_id)
        if cached is not None:
            return cached

        generation = self.cache.generation()
        turns = self.store.select_turns(conversation_id, limit=self.policy.capacity)
        self._check_contiguous(conversation_id, turns)
        self.cache.put(conversation_id, turns, generation)

        header, dialogue = self.split(turns)
        logger.debug(
            f"Loaded conversation {conversation_id}: "
            f"{len(header)} header turns, {len(dialogue)} dialogue turns"
        )
        return turns

    def load_history_repairing(self, conversation_id: str) -> List[ConversationTurn]:
        """Load history, running one repair pass first if the indices are damaged."""
        try:
            return self.load_history(conversation_id)
        except IntegrityViolation as e:
            logger.warning(f"{e}; running repair pass")
            self.repair(conversation_id)
            return self.load_history(conversation_id)

    def append_turn(
        self,
        conversation_id: str,
        role: Union[Role, str],
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """
        Append a turn, evicting old dialogue turns first if the log is full.

        Args:
            conversation_id: ID of the conversation
            role: system, user or assistant
            content: Message text; must be non-empty for user and assistant
            metadata: Opaque data stored alongside the turn

        Returns:
            The turn_index assigned to the new turn

        Raises:
            ValueError: For an unknown role or empty user/assistant content
            IntegrityViolation: If the stored indices are not contiguous
            StoreUnavailable: If the datastore fails or the index race is lost repeatedly
        """
        role = Role(role)
        if role is not Role.SYSTEM and not (content and content.strip()):
            raise ValueError(f"Content cannot be empty for {role.value} turns")

        with self._lock_for(conversation_id):
            try:
                for attempt in range(1, self.max_attempts + 1):
                    count = self.store.count_turns(conversation_id)
                    if count >= self.policy.capacity:
                        self._run_maintenance(conversation_id)
                        # Another worker may have compacted first
                        count = self.store.count_turns(conversation_id)

                    last_index = self.store.last_turn_index(conversation_id)
                    if last_index != count:
                        if attempt < self.max_attempts:
                            logger.warning(
                                f"Conversation {conversation_id} changed while appending "
                                f"(attempt {attempt}/{self.max_attempts}), re-reading"
                            )
                            continue
                        raise IntegrityViolation(
                            conversation_id, f"{count} turns stored but last turn_index is {last_index}"
                        )

                    turn = ConversationTurn(
                        conversation_id=conversation_id,
                        turn_index=last_index + 1,
                        role=role,
                        content=content,
                        metadata=dict(metadata or {})
                    )
                    try:
                        stored = self.store.insert_turn(turn)
                    except DuplicateTurnIndex:
                        logger.warning(
                            f"Turn index {turn.turn_index} taken in conversation {conversation_id} "
                            f"(attempt {attempt}/{self.max_attempts}), retrying"
                        )
                        continue

                    logger.info(
                        f"Appended {role.value} turn {stored.turn_index} to conversation {conversation_id}"
                    )
                    return stored.turn_index
            finally:
                self.cache.invalidate(conversation_id)

        raise StoreUnavailable(
            f"Could not assign a turn index in conversation {conversation_id} "
            f"after {self.max_attempts} attempts"
        )

    def _run_maintenance(self, conversation_id: str) -> CompactionResult:
        """
        Evict the oldest dialogue batch and renumber survivors in one atomic store call.

        The store re-checks capacity under its own lock, so a pass that lost
        the race to another writer's pass evicts nothing.
        """
        evicted, renumbered = self.store.evict_oldest(
            conversation_id,
            header_size=self.policy.header_size,
            capacity=self.policy.capacity,
            eviction_batch=self.policy.eviction_batch
        )
        result = CompactionResult(evicted=evicted, renumbered=renumbered)
        if result.changed:
            logger.info(
                f"Maintenance pass on conversation {conversation_id}: "
                f"evicted {evicted} dialogue turns, renumbered {renumbered}",
                extra={"conversation_id": conversation_id, "capacity": self.policy.capacity}
            )
        else:
            logger.debug(f"Conversation {conversation_id} already compacted by another writer")
        return result

    def repair(self, conversation_id: str) -> CompactionResult:
        """
        Recompute dialogue indices so the conversation is contiguous again.

        Dialogue turns are re-sorted by their old index (ties broken by
        creation time) and reassigned directly after the header. Only turns
        whose index changes are written, so repairing an intact conversation
        is a no-op.

        Raises:
            IntegrityViolation: If the header segment itself is damaged
        """
        header_size = self.policy.header_size
        with self._lock_for(conversation_id):
            try:
                turns = self.store.select_turns(conversation_id)
                header_indices = sorted(t.turn_index for t in turns if t.turn_index <= header_size)
                if header_indices != list(range(1, len(header_indices) + 1)):
                    raise IntegrityViolation(conversation_id, "header segment is damaged and cannot be repaired")

                dialogue = sorted(
                    (t for t in turns if t.turn_index > header_size),
                    key=lambda t: (t.turn_index, t.created_at, t.id or 0)
                )
                start = len(header_indices) + 1
                renumber = [
                    (turn.id, start + offset)
                    for offset, turn in enumerate(dialogue)
                    if turn.turn_index != start + offset
                ]
                if renumber:
                    self.store.apply_compaction(conversation_id, [], renumber)
                    logger.warning(f"Repaired conversation {conversation_id}: renumbered {len(renumber)} turns")
                return CompactionResult(renumbered=len(renumber))
            finally:
                self.cache.invalidate(conversation_id)

    def seed_header(self, conversation_id: str, messages: Sequence[Dict[str, Any]]) -> int:
        """
        Pre-seed the header of an empty conversation.

        Args:
            conversation_id: ID of the conversation
            messages: Dicts with ``role``, ``content`` and optional ``metadata``

        Returns:
            Number of turns written
        """
        if len(messages) > self.policy.header_size:
            raise ValueError(
                f"Cannot seed {len(messages)} turns into a header of {self.policy.header_size}"
            )

        with self._lock_for(conversation_id):
            try:
                if self.store.count_turns(conversation_id):
                    raise ValueError(f"Conversation {conversation_id} already has turns")
                for index, message in enumerate(messages, start=1):
                    self.store.insert_turn(ConversationTurn(
                        conversation_id=conversation_id,
                        turn_index=index,
                        role=Role(message["role"]),
                        content=message["content"],
                        metadata=dict(message.get("metadata") or {})
                    ))
            finally:
                self.cache.invalidate(conversation_id)

        logger.info(f"Seeded {len(messages)} header turns into conversation {conversation_id}")
        return len(messages)

    def reset_dialogue(self, conversation_id: str) -> int:
        """Drop the whole dialogue window, keeping the header. Returns turns removed."""
        with self._lock_for(conversation_id):
            try:
                removed = self.store.delete_dialogue(conversation_id, self.policy.header_size)
            finally:
                self.cache.invalidate(conversation_id)
        logger.info(f"Reset dialogue of conversation {conversation_id}: removed {removed} turns")
        return removed

    def split(self, turns: Sequence[ConversationTurn]) -> Tuple[List[ConversationTurn], List[ConversationTurn]]:
        """Split turns into (header, dialogue), each in turn_index order."""
        ordered = sorted(turns, key=lambda t: t.turn_index)
        header = [t for t in ordered if t.turn_index <= self.policy.header_size]
        dialogue = [t for t in ordered if t.turn_index > self.policy.header_size]
        return header, dialogue

    def assemble_prompt(
        self,
        history: Sequence[ConversationTurn],
        pending: Optional[str] = None,
        pending_role: Union[Role, str] = Role.USER,
        system_prompt: Optional[str] = None
    ) -> List[Dict[str, str]]:
        """
        Build the message list for the text-generation service.

        Order: optional system prompt, header turns, dialogue turns, pending turn.
        """
        header, dialogue = self.split(history)
        messages = []
        if system_prompt:
            messages.append({"role": Role.SYSTEM.value, "content": system_prompt})
        messages.extend(turn.to_message() for turn in header)
        messages.extend(turn.to_message() for turn in dialogue)
        if pending is not None:
            messages.append({"role": Role(pending_role).value, "content": pending})
        return messages

    def _check_contiguous(self, conversation_id: str, turns: Sequence[ConversationTurn]) -> None:
        seen = set()
        for expected, turn in enumerate(turns, start=1):
            if turn.turn_index in seen:
                raise IntegrityViolation(conversation_id, f"duplicate turn_index {turn.turn_index}")
            if turn.turn_index != expected:
                raise IntegrityViolation(
                    conversation_id, f"expected turn_index {expected}, found {turn.turn_index}"
                )
            seen.add(turn.turn_index)
