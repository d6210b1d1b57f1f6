"""
Live race chat: status, send, delete, report and admin toggle.

Messages are persisted first and then handed to the hub, which batches them
out to WebSocket subscribers. Sends are idempotent on
(track_id, user_id, client_nonce) so a client retrying after a timeout never
posts twice.
"""
from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from paddock.chat.hub import ChatHub
from paddock.config import get_settings
from paddock.errors import ConflictError, NotFoundError, PermissionDenied, RateLimited, ValidationFailed
from paddock.models import ChatMessage, ChatMode, ChatRoom, ReportTargetType, User, as_utc
from paddock.persistence.repositories import CatalogRepository, ChatRepository, ReportRepository
from paddock.race_weekend import ChatStatus, chat_status
from paddock.rate_limit import MinIntervalLimiter
from paddock.services.account_service import ensure_not_banned, is_admin

logger = logging.getLogger(__name__)


class ChatService:

    def __init__(self, hub: ChatHub, slow_mode: MinIntervalLimiter | None = None) -> None:
        self.hub = hub
        self.slow_mode = slow_mode or MinIntervalLimiter(0)
        self._chat_repo = ChatRepository()
        self._catalog_repo = CatalogRepository()
        self._report_repo = ReportRepository()

    # ---------- Status ----------

    def status(self, conn: sqlite3.Connection, track_id: str, now: datetime | None = None) -> ChatStatus:
        track = self._catalog_repo.get_track(conn, track_id)
        if track is None:
            raise NotFoundError("Track not found")
        settings = get_settings()
        return chat_status(
            track,
            self._chat_repo.get_room(conn, track_id),
            now or datetime.now(timezone.utc),
            grace_hours=settings.chat_read_only_grace_hours,
            default_slow_mode_ms=settings.chat_default_slow_mode_ms,
        )

    # ---------- History ----------

    def recent_messages(self, conn: sqlite3.Connection, track_id: str, after_id: int = 0) -> list[dict[str, Any]]:
        """Latest non-deleted messages, oldest first."""
        if self._catalog_repo.get_track(conn, track_id) is None:
            raise NotFoundError("Track not found")
        rows = self._chat_repo.list_recent(conn, track_id, get_settings().chat_history_limit, after_id=after_id)
        return [m.to_dict() for m in reversed(rows)]

    def ensure_history(self, conn: sqlite3.Connection, track_id: str) -> None:
        """Seed the hub's per-track history from the database on first use."""
        if self.hub.has_history(track_id):
            return
        rows = self._chat_repo.list_recent(conn, track_id, self.hub.history_limit)
        self.hub.seed_history(track_id, [m.to_dict() for m in rows])

    # ---------- Send / delete ----------

    async def send_message(
        self,
        conn: sqlite3.Connection,
        user: User,
        track_id: str,
        text: str,
        client_nonce: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        ensure_not_banned(user, now)
        status = self.status(conn, track_id, now)
        if status.mode != ChatMode.OPEN:
            raise PermissionDenied("Chat is read-only" if status.mode == ChatMode.READ_ONLY else "Chat is closed")
        message = (text or "").strip()
        if not message:
            raise ValidationFailed("Message cannot be empty")
        max_length = get_settings().chat_max_message_length
        if len(message) > max_length:
            raise ValidationFailed(f"Message must be {max_length} characters or less")

        nonce = client_nonce or str(uuid.uuid4())
        existing = self._chat_repo.get_by_nonce(conn, track_id, user.id, nonce)
        if existing is not None:
            return existing.to_dict()

        slow_key = f"{track_id}:{user.id}"
        interval = status.slow_mode_ms / 1000.0
        if interval > 0 and not self.slow_mode.check(slow_key, interval=interval):
            raise RateLimited("Slow mode is on. Please wait before sending another message")

        self.ensure_history(conn, track_id)
        try:
            created = self._chat_repo.create_message(conn, track_id, user.id, message, user.name, nonce, now=now)
        except sqlite3.IntegrityError:
            duplicate = self._chat_repo.get_by_nonce(conn, track_id, user.id, nonce)
            if duplicate is None:
                raise
            return duplicate.to_dict()
        self.slow_mode.record(slow_key)
        row = created.to_dict()
        await self.hub.publish(track_id, row)
        return row

    def _get_message(self, conn: sqlite3.Connection, message_id: int) -> ChatMessage:
        message = self._chat_repo.get_message(conn, message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return message

    async def delete_message(
        self, conn: sqlite3.Connection, admin: User, message_id: int, now: datetime | None = None
    ) -> ChatMessage:
        if not is_admin(admin):
            raise PermissionDenied("Admin access required")
        message = self._get_message(conn, message_id)
        await self.remove_message(conn, message, admin.id, now)
        return message

    async def remove_message(
        self, conn: sqlite3.Connection, message: ChatMessage, deleted_by: str, now: datetime | None = None
    ) -> bool:
        """Soft delete and broadcast. Already-deleted messages are left alone."""
        if not self._chat_repo.soft_delete(conn, message.id, deleted_by, now=now):
            return False
        logger.info("Chat message %s on %s deleted by %s", message.id, message.track_id, deleted_by)
        await self.hub.broadcast_delete(message.track_id, message.id, deleted_by)
        return True

    # ---------- Reports ----------

    def report_message(self, conn: sqlite3.Connection, user: User, message_id: int, reason: str) -> None:
        if not (reason or "").strip():
            raise ValidationFailed("Message ID and reason are required")
        self._get_message(conn, message_id)
        try:
            self._report_repo.create(
                conn, user.id, ReportTargetType.CHAT_MESSAGE.value, str(message_id), reason.strip()
            )
        except sqlite3.IntegrityError:
            raise ConflictError("You have already reported this message")

    # ---------- Admin ----------

    async def toggle_chat(
        self, conn: sqlite3.Connection, admin: User, track_id: str, enabled: bool, now: datetime | None = None
    ) -> dict[str, Any]:
        """Enable or disable a track's chat and open/close its rooms that have not ended."""
        if not is_admin(admin):
            raise PermissionDenied("Admin access required")
        now = now or datetime.now(timezone.utc)
        if not self._catalog_repo.set_chat_enabled(conn, track_id, enabled):
            raise NotFoundError("Track not found")
        mode = ChatMode.OPEN.value if enabled else ChatMode.CLOSED.value
        self._chat_repo.set_active_room_mode(conn, track_id, mode, now)
        status = self.status(conn, track_id, now)
        await self.hub.broadcast_status(track_id, status.to_dict())
        logger.info("Chat for %s %s by %s", track_id, "enabled" if enabled else "disabled", admin.id)
        return {"success": True, "enabled": enabled, "status": status.to_dict()}

    async def update_room(
        self,
        conn: sqlite3.Connection,
        admin: User,
        track_id: str,
        mode: str = ChatMode.OPEN.value,
        slow_mode_ms: int | None = None,
        opens_at: datetime | None = None,
        closes_at: datetime | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Create or replace the room override for a track and push the new status."""
        if not is_admin(admin):
            raise PermissionDenied("Admin access required")
        if self._catalog_repo.get_track(conn, track_id) is None:
            raise NotFoundError("Track not found")
        if mode not in {m.value for m in ChatMode}:
            raise ValidationFailed("Invalid chat mode")
        if slow_mode_ms is not None and slow_mode_ms < 0:
            raise ValidationFailed("Slow mode must be zero or more milliseconds")
        if opens_at is not None and closes_at is not None and as_utc(closes_at) <= as_utc(opens_at):
            raise ValidationFailed("Room must close after it opens")
        self._chat_repo.upsert_room(conn, track_id, mode, slow_mode_ms, opens_at, closes_at)
        room = self._chat_repo.get_room(conn, track_id) or ChatRoom(track_id=track_id, mode=mode)
        status = self.status(conn, track_id, now)
        await self.hub.broadcast_status(track_id, status.to_dict())
        logger.info("Chat room for %s set to %s by %s", track_id, mode, admin.id)
        return {"room": room.to_dict(), "status": status.to_dict()}
