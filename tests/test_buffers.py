"""
Tests for the bounded per-thread containers.
"""

import pytest

from persona_core.utils.buffers import BoundedHistory, TTLCache


class Item:
    def __init__(self, item_id):
        self.id = item_id


def history(capacity=3):
    return BoundedHistory(capacity, key=lambda item: item.id)


class TestBoundedHistory:
    """Ring buffer addressed by item id."""

    def test_append_and_lookup(self):
        h = history()
        a, b = Item("a"), Item("b")
        assert h.append(a) is None
        assert h.append(b) is None

        assert len(h) == 2
        assert h.get("a") is a
        assert h.latest() is b
        assert "b" in h
        assert "zzz" not in h

    def test_previous_and_next_follow_position(self):
        h = history()
        for name in "abc":
            h.append(Item(name))

        assert h.previous_id("a") is None
        assert h.previous_id("b") == "a"
        assert h.next_id("b") == "c"
        assert h.next_id("c") is None
        assert h.previous_id("missing") is None

    def test_oldest_is_evicted_at_capacity(self):
        h = history(capacity=2)
        h.append(Item("a"))
        h.append(Item("b"))
        dropped = h.append(Item("c"))

        assert dropped.id == "a"
        assert [i.id for i in h] == ["b", "c"]
        assert h.get("a") is None
        assert h.index_of("b") == 0
        assert h.previous_id("b") is None
        assert h.previous_id("c") == "b"

    def test_links_stay_consistent_over_many_evictions(self):
        h = history(capacity=50)
        for n in range(120):
            h.append(Item(f"s{n}"))

        ids = [i.id for i in h.items()]
        assert len(ids) == 50
        assert ids[0] == "s70"
        for prev, cur in zip(ids, ids[1:]):
            assert h.next_id(prev) == cur
            assert h.previous_id(cur) == prev

    def test_duplicate_id_rejected(self):
        h = history()
        h.append(Item("a"))
        with pytest.raises(ValueError):
            h.append(Item("a"))

    def test_tail_and_clear(self):
        h = history(capacity=5)
        for name in "abcd":
            h.append(Item(name))

        assert [i.id for i in h.tail(2)] == ["c", "d"]
        assert h.tail(0) == []
        h.clear()
        assert len(h) == 0
        assert h.latest() is None

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            BoundedHistory(0, key=lambda item: item.id)


class TestTTLCache:
    """Lazily expiring cache."""

    def test_entry_expires_after_ttl(self):
        now = [0.0]
        cache = TTLCache(10, clock=lambda: now[0])
        cache.set("k", "v")

        now[0] = 9.9
        assert cache.get("k") == "v"
        now[0] = 10.0
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_invalidate_by_predicate(self):
        cache = TTLCache(60)
        cache.set(("t1", None), 1)
        cache.set(("t1", "w"), 2)
        cache.set(("t2", None), 3)

        dropped = cache.invalidate(lambda key: key[0] == "t1")
        assert dropped == 2
        assert cache.get(("t2", None)) == 3
        assert cache.get(("t1", None)) is None
