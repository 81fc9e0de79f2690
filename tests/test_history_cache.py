"""Unit tests for HistoryCache."""
import sys
sys.path.insert(0, 'backend')

import pytest
from models.conversation import ConversationTurn, Role
from services.history_cache import HistoryCache


def turns(conversation_id, count=2):
    return [ConversationTurn(conversation_id, i, Role.USER, f"turn {i}") for i in range(1, count + 1)]


def test_disabled_cache_stores_nothing():
    cache = HistoryCache(0)
    cache.put("c1", turns("c1"))

    assert not cache.enabled
    assert cache.get("c1") is None
    assert len(cache) == 0


def test_negative_size_rejected():
    with pytest.raises(ValueError):
        HistoryCache(-1)


def test_get_returns_copies():
    cache = HistoryCache(2)
    cache.put("c1", turns("c1"))

    cache.get("c1")[0].content = "changed"

    assert cache.get("c1")[0].content == "turn 1"


def test_least_recently_used_is_evicted():
    cache = HistoryCache(2)
    cache.put("c1", turns("c1"))
    cache.put("c2", turns("c2"))
    cache.get("c1")
    cache.put("c3", turns("c3"))

    assert cache.get("c2") is None
    assert cache.get("c1") is not None
    assert cache.get("c3") is not None


def test_invalidate():
    cache = HistoryCache(2)
    cache.put("c1", turns("c1"))
    cache.invalidate("c1")
    cache.invalidate("missing")

    assert cache.get("c1") is None


def test_snapshot_read_before_invalidation_is_dropped():
    cache = HistoryCache(2)
    generation = cache.generation()
    cache.invalidate("c1")

    assert not cache.put("c1", turns("c1"), generation)
    assert cache.get("c1") is None


def test_snapshot_with_current_generation_is_cached():
    cache = HistoryCache(2)
    cache.invalidate("c1")
    generation = cache.generation()

    assert cache.put("c1", turns("c1"), generation)
    assert len(cache.get("c1")) == 2
