"""
Merge state for a live chat stream delivered in batches.

Batches may arrive out of order, overlap with history or with the sender's own
optimistic copy, and a deletion can arrive before the batch carrying the
deleted message. The feed keeps messages sorted by id, without duplicates,
and never re-admits a deleted id.
"""
from __future__ import annotations

from typing import Any, Iterable

ChatRow = dict[str, Any]


class ChatFeed:

    def __init__(self, max_messages: int | None = None) -> None:
        self.max_messages = max_messages
        self.messages: list[ChatRow] = []
        self.deleted_ids: set[int] = set()
        self.last_seen_id: int = 0
        self._ids: set[int] = set()

    def __len__(self) -> int:
        return len(self.messages)

    def _trim(self) -> None:
        if self.max_messages is not None and len(self.messages) > self.max_messages:
            dropped = self.messages[: len(self.messages) - self.max_messages]
            self.messages = self.messages[len(dropped):]
            self._ids.difference_update(m["id"] for m in dropped)

    def load_initial(self, rows_newest_first: Iterable[ChatRow]) -> None:
        """Replace the feed with a history page queried newest-first."""
        rows = [r for r in rows_newest_first if r["id"] not in self.deleted_ids]
        rows.reverse()
        self.messages = rows
        self._ids = {r["id"] for r in rows}
        if rows:
            self.last_seen_id = max(self.last_seen_id, rows[-1]["id"])
        self._trim()

    def apply_batch(self, batch: dict[str, Any]) -> list[ChatRow]:
        """Merge a chat_batch payload. Returns the messages that were actually new."""
        incoming = batch.get("messages")
        if not isinstance(incoming, list):
            return []
        new_messages: list[ChatRow] = []
        for msg in incoming:
            msg_id = msg["id"]
            if msg_id in self.deleted_ids or msg_id in self._ids:
                continue
            new_messages.append(msg)
            self._ids.add(msg_id)
        if not new_messages:
            return []
        self.messages = sorted(self.messages + new_messages, key=lambda m: m["id"])
        self.last_seen_id = max(self.last_seen_id, self.messages[-1]["id"])
        self._trim()
        return new_messages

    def apply_delete(self, event: dict[str, Any]) -> bool:
        """Apply a message_deleted payload. Returns True if a held message was removed."""
        message_id = event["messageId"]
        self.deleted_ids.add(message_id)
        if message_id not in self._ids:
            return False
        self._ids.discard(message_id)
        self.messages = [m for m in self.messages if m["id"] != message_id]
        return True

    def add_sent(self, message: ChatRow) -> bool:
        """Optimistically add the sender's own row as returned by send."""
        return bool(self.apply_batch({"messages": [message]}))

    def since(self, after_id: int) -> list[ChatRow]:
        return [m for m in self.messages if m["id"] > after_id]
