"""
Realtime broadcast for live chat.

One topic per track (f1:race:{track_id}). Sent messages are collected into a
pending batch and fanned out as a single chat_batch event after a short
interval, or at once when the batch is full. Deletions are broadcast
immediately. The hub keeps a ChatFeed per track so late joiners get a
snapshot consistent with what live subscribers have seen.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from paddock.chat.batching import ChatFeed, ChatRow

logger = logging.getLogger(__name__)

EVENT_BATCH = "chat_batch"
EVENT_DELETED = "message_deleted"
EVENT_STATUS = "chat_status"
EVENT_SNAPSHOT = "chat_snapshot"


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


def topic_for(track_id: str) -> str:
    return f"f1:race:{track_id}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatHub:

    def __init__(self, batch_interval_ms: int = 250, batch_max_size: int = 50, history_limit: int = 100) -> None:
        self.batch_interval = batch_interval_ms / 1000.0
        self.batch_max_size = batch_max_size
        self.history_limit = history_limit
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._pending: dict[str, list[ChatRow]] = {}
        self._flush_tasks: dict[str, asyncio.Task] = {}
        self._history: dict[str, ChatFeed] = {}

    # ---------- Subscriptions ----------

    def subscribe(self, track_id: str, subscriber: Subscriber) -> None:
        self._subscribers.setdefault(topic_for(track_id), []).append(subscriber)

    def unsubscribe(self, track_id: str, subscriber: Subscriber) -> None:
        topic = topic_for(track_id)
        remaining = [s for s in self._subscribers.get(topic, []) if s is not subscriber]
        if remaining:
            self._subscribers[topic] = remaining
        else:
            self._subscribers.pop(topic, None)

    def subscriber_count(self, track_id: str) -> int:
        return len(self._subscribers.get(topic_for(track_id), []))

    # ---------- History ----------

    def has_history(self, track_id: str) -> bool:
        return track_id in self._history

    def seed_history(self, track_id: str, rows_newest_first: list[ChatRow]) -> None:
        """Load persisted history the first time a track is touched in this process."""
        feed = ChatFeed(max_messages=self.history_limit)
        feed.load_initial(rows_newest_first)
        self._history[track_id] = feed

    def snapshot(self, track_id: str, after_id: int = 0) -> list[ChatRow]:
        feed = self._history.get(track_id)
        return feed.since(after_id) if feed else []

    # ---------- Publishing ----------

    async def publish(self, track_id: str, message: ChatRow) -> None:
        """Queue a message for the next batch. History sees it at once so a late joiner does not miss it."""
        self._history.setdefault(track_id, ChatFeed(max_messages=self.history_limit)).add_sent(message)
        pending = self._pending.setdefault(track_id, [])
        pending.append(message)
        if len(pending) >= self.batch_max_size or self.batch_interval <= 0:
            await self.flush(track_id)
            return
        if track_id not in self._flush_tasks:
            self._flush_tasks[track_id] = asyncio.create_task(self._flush_later(track_id))

    async def _flush_later(self, track_id: str) -> None:
        try:
            await asyncio.sleep(self.batch_interval)
        finally:
            if self._flush_tasks.get(track_id) is asyncio.current_task():
                del self._flush_tasks[track_id]
        await self.flush(track_id)

    async def flush(self, track_id: str) -> int:
        """Send the pending batch now. Returns the number of messages sent."""
        task = self._flush_tasks.pop(track_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        messages = self._pending.pop(track_id, [])
        if not messages:
            return 0
        payload = {"messages": messages, "track_id": track_id, "timestamp": _now_iso()}
        feed = self._history.setdefault(track_id, ChatFeed(max_messages=self.history_limit))
        feed.apply_batch(payload)
        await self._broadcast(track_id, {"event": EVENT_BATCH, "payload": payload})
        return len(messages)

    async def broadcast_delete(self, track_id: str, message_id: int, deleted_by: str) -> None:
        pending = self._pending.get(track_id)
        if pending:
            self._pending[track_id] = [m for m in pending if m["id"] != message_id]
        payload = {
            "type": "delete",
            "messageId": message_id,
            "track_id": track_id,
            "deletedBy": deleted_by,
            "timestamp": _now_iso(),
        }
        if track_id in self._history:
            self._history[track_id].apply_delete(payload)
        await self._broadcast(track_id, {"event": EVENT_DELETED, "payload": payload})

    async def broadcast_status(self, track_id: str, status: dict[str, Any]) -> None:
        """Tell connected clients the room opened, closed or went read-only."""
        if status.get("mode") != "open":
            await self.flush(track_id)
        await self._broadcast(track_id, {"event": EVENT_STATUS, "payload": {"track_id": track_id, **status}})

    async def _broadcast(self, track_id: str, event: dict[str, Any]) -> None:
        for subscriber in list(self._subscribers.get(topic_for(track_id), [])):
            try:
                await subscriber.send_json(event)
            except Exception:
                logger.warning("Dropping chat subscriber on %s after failed send", topic_for(track_id), exc_info=True)
                self.unsubscribe(track_id, subscriber)

    async def close(self) -> None:
        """Flush everything pending; used on shutdown."""
        for track_id in list(self._pending):
            await self.flush(track_id)

    def reset(self) -> None:
        for task in self._flush_tasks.values():
            task.cancel()
        self._flush_tasks.clear()
        self._pending.clear()
        self._history.clear()
        self._subscribers.clear()
