"""
In-app notifications and notification preferences.
Every notification is stored; an email is queued only when the recipient's
matching email preference is on. Delivery of queued email is out of process.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from paddock.errors import NotFoundError
from paddock.models import Notification, NotificationKind, NotificationPreferences
from paddock.persistence.repositories import NotificationRepository, UserRepository

logger = logging.getLogger(__name__)

_EMAIL_PREFERENCE_FOR_KIND = {
    NotificationKind.LIKE.value: "email_likes",
    NotificationKind.COMMENT.value: "email_comments",
    NotificationKind.FOLLOW.value: "email_follows",
    NotificationKind.MENTION.value: "email_mentions",
    NotificationKind.POLL_RESULTS.value: "email_poll_votes",
}


class NotificationService:

    def __init__(self) -> None:
        self._repo = NotificationRepository()
        self._user_repo = UserRepository()

    # ---------- Preferences ----------

    def get_preferences(self, conn: sqlite3.Connection, user_id: str) -> NotificationPreferences:
        """Get-or-create: a user without a row gets the defaults (all on)."""
        prefs = self._repo.get_preferences(conn, user_id)
        if prefs is None:
            prefs = self._repo.create_preferences(conn, user_id)
        return prefs

    def update_preferences(
        self, conn: sqlite3.Connection, user_id: str, updates: dict[str, bool]
    ) -> NotificationPreferences:
        self.get_preferences(conn, user_id)
        self._repo.update_preferences(conn, user_id, updates)
        return self.get_preferences(conn, user_id)

    # ---------- Delivery ----------

    def notify(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        kind: str,
        payload: dict[str, Any],
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Notification | None:
        """Create a notification. Users are never notified about their own actions."""
        if actor_id is not None and actor_id == user_id:
            return None
        notification = self._repo.create(conn, user_id, kind, payload, actor_id=actor_id, now=now)
        pref_field = _EMAIL_PREFERENCE_FOR_KIND.get(kind)
        if pref_field and getattr(self.get_preferences(conn, user_id), pref_field):
            recipient = self._user_repo.get(conn, user_id)
            if recipient is not None:
                self._repo.enqueue_email(
                    conn, recipient.email, f"notification_{kind}", payload, user_id=user_id, now=now
                )
        return notification

    # ---------- Inbox ----------

    def list(
        self, conn: sqlite3.Connection, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> dict[str, Any]:
        items = self._repo.list_for_user(conn, user_id, unread_only=unread_only, limit=limit)
        return {
            "notifications": [n.to_dict() for n in items],
            "unread_count": self._repo.unread_count(conn, user_id),
        }

    def mark_read(self, conn: sqlite3.Connection, user_id: str, notification_id: str) -> None:
        notification = self._repo.get(conn, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification not found")
        self._repo.mark_read(conn, notification_id)

    def mark_all_read(self, conn: sqlite3.Connection, user_id: str) -> int:
        return self._repo.mark_all_read(conn, user_id)
