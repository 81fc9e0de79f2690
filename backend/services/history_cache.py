"""Bounded in-memory cache of loaded conversation histories."""
import logging
import threading
from collections import OrderedDict
from dataclasses import replace
from typing import List, Optional

from models.conversation import ConversationTurn

logger = logging.getLogger(__name__)


class HistoryCache:
    """
    Least-recently-used cache keyed by conversation id.

    Purely a read optimization in front of the turn store: writers must
    invalidate the conversation they touch. ``max_entries=0`` disables it.

    Readers take a ``generation()`` token before reading the store and hand
    it to ``put``; a snapshot read before any later invalidation is dropped
    instead of cached.
    """

    def __init__(self, max_entries: int = 0):
        if max_entries < 0:
            raise ValueError("max_entries cannot be negative")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, List[ConversationTurn]]" = OrderedDict()
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_entries > 0

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, conversation_id: str) -> Optional[List[ConversationTurn]]:
        if not self.enabled:
            return None
        with self._lock:
            turns = self._entries.get(conversation_id)
            if turns is None:
                return None
            self._entries.move_to_end(conversation_id)
            return [replace(t) for t in turns]

    def put(self, conversation_id: str, turns: List[ConversationTurn], generation: Optional[int] = None) -> bool:
        """Cache a snapshot. Returns False when it was dropped as stale or the cache is off."""
        if not self.enabled:
            return False
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(f"Dropped stale history snapshot of conversation {conversation_id}")
                return False
            self._entries[conversation_id] = [replace(t) for t in turns]
            self._entries.move_to_end(conversation_id)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"History cache evicted conversation {evicted}")
            return True

    def invalidate(self, conversation_id: str) -> None:
        with self._lock:
            self._generation += 1
            self._entries.pop(conversation_id, None)

    def __len__(self) -> int:
        return len(self._entries)
