"""
Tests for chat feed merge: out-of-order batches, duplicates, deletes before arrival.
"""
from __future__ import annotations

from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from paddock.chat.batching import ChatFeed


def _msg(msg_id: int, text: str = "hi") -> dict:
    return {"id": msg_id, "message": text, "user_id": "u1", "track_id": "monza"}


def test_load_initial_reverses_newest_first_history():
    feed = ChatFeed()
    feed.load_initial([_msg(3), _msg(2), _msg(1)])
    assert [m["id"] for m in feed.messages] == [1, 2, 3]
    assert feed.last_seen_id == 3


def test_apply_batch_sorts_and_dedupes():
    """Overlapping and out-of-order batches end up sorted by id with no duplicates."""
    feed = ChatFeed()
    feed.load_initial([_msg(2), _msg(1)])
    new = feed.apply_batch({"messages": [_msg(5), _msg(2), _msg(3)]})
    assert [m["id"] for m in new] == [5, 3]
    feed.apply_batch({"messages": [_msg(4), _msg(5)]})
    assert [m["id"] for m in feed.messages] == [1, 2, 3, 4, 5]
    assert feed.last_seen_id == 5


def test_apply_batch_ignores_malformed_payload():
    feed = ChatFeed()
    assert feed.apply_batch({"messages": None}) == []
    assert feed.apply_batch({}) == []
    assert len(feed) == 0


def test_delete_removes_held_message():
    feed = ChatFeed()
    feed.apply_batch({"messages": [_msg(1), _msg(2)]})
    assert feed.apply_delete({"messageId": 1}) is True
    assert [m["id"] for m in feed.messages] == [2]


def test_delete_before_arrival_blocks_message():
    """A delete that races ahead of its batch keeps the message out."""
    feed = ChatFeed()
    assert feed.apply_delete({"messageId": 7}) is False
    feed.apply_batch({"messages": [_msg(7), _msg(8)]})
    assert [m["id"] for m in feed.messages] == [8]
    feed.load_initial([_msg(8), _msg(7)])
    assert [m["id"] for m in feed.messages] == [8]


def test_add_sent_then_batch_echo_is_not_duplicated():
    feed = ChatFeed()
    assert feed.add_sent(_msg(10, "mine")) is True
    feed.apply_batch({"messages": [_msg(10, "mine"), _msg(11)]})
    assert [m["id"] for m in feed.messages] == [10, 11]
    assert feed.add_sent(_msg(10, "mine")) is False


def test_max_messages_keeps_newest():
    feed = ChatFeed(max_messages=3)
    feed.apply_batch({"messages": [_msg(i) for i in range(1, 6)]})
    assert [m["id"] for m in feed.messages] == [3, 4, 5]
    feed.apply_batch({"messages": [_msg(6)]})
    assert [m["id"] for m in feed.messages] == [4, 5, 6]


def test_since():
    feed = ChatFeed()
    feed.apply_batch({"messages": [_msg(1), _msg(2), _msg(3)]})
    assert [m["id"] for m in feed.since(1)] == [2, 3]
    assert feed.since(3) == []
