"""
Test RingBuffer - bounded FIFO used for question and topic history
"""

import pytest

from survey_engine.utils.ring_buffer import RingBuffer


def test_push_within_capacity():
    buffer = RingBuffer(3)
    assert buffer.push("a") is None
    assert buffer.push("b") is None
    assert buffer.to_list() == ["a", "b"]
    assert len(buffer) == 2


def test_push_evicts_oldest_when_full():
    buffer = RingBuffer(2, ["a", "b"])
    evicted = buffer.push("c")
    assert evicted == "a"
    assert buffer.to_list() == ["b", "c"]
    assert len(buffer) == 2


def test_never_exceeds_capacity():
    buffer = RingBuffer(5)
    for i in range(20):
        buffer.push(i)
        assert len(buffer) <= 5
    assert buffer.to_list() == [15, 16, 17, 18, 19]


def test_evict_empty_returns_none():
    buffer = RingBuffer(1)
    assert buffer.evict() is None


def test_last_returns_most_recent_oldest_first():
    buffer = RingBuffer(5, ["a", "b", "c", "d"])
    assert buffer.last(2) == ["c", "d"]
    assert buffer.last(10) == ["a", "b", "c", "d"]
    assert buffer.last(0) == []


def test_equality_includes_capacity():
    assert RingBuffer(3, [1, 2]) == RingBuffer(3, [1, 2])
    assert RingBuffer(3, [1, 2]) != RingBuffer(4, [1, 2])


def test_invalid_capacity():
    with pytest.raises(ValueError):
        RingBuffer(0)
