"""
Moderation and admin tools: report queue, content removal, user actions,
track tip review, catalog edits and dashboard metrics.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

from paddock.errors import ConflictError, NotFoundError, PermissionDenied, ValidationFailed
from paddock.models import PollStatus, Report, ReportStatus, ReportTargetType, TipStatus, TrackTip, User
from paddock.persistence.repositories import (
    CatalogRepository,
    ChatRepository,
    CommentRepository,
    GridRepository,
    NotificationRepository,
    PollRepository,
    PostRepository,
    ReportRepository,
    TrackTipRepository,
    UserRepository,
)
from paddock.services.account_service import is_admin
from paddock.services.chat_service import ChatService
from paddock.services.points import PointsService
from paddock.validation import validate_uuid

logger = logging.getLogger(__name__)

BAN_DURATION = timedelta(days=100 * 365)
REPORT_REASON_MAX_LENGTH = 500
USER_ACTIONS = ("ban", "unban", "reset_strikes", "adjust_points")
CATALOG_TABLES = ("drivers", "teams", "tracks")


def require_admin(user: User | None) -> User:
    if user is None or not is_admin(user):
        raise PermissionDenied("Admin access required")
    return user


class ModerationService:

    def __init__(self, chat: ChatService) -> None:
        self._chat = chat
        self._report_repo = ReportRepository()
        self._user_repo = UserRepository()
        self._post_repo = PostRepository()
        self._comment_repo = CommentRepository()
        self._grid_repo = GridRepository()
        self._chat_repo = ChatRepository()
        self._tip_repo = TrackTipRepository()
        self._catalog_repo = CatalogRepository()
        self._poll_repo = PollRepository()
        self._notification_repo = NotificationRepository()
        self._points = PointsService()

    # ---------- Reports ----------

    def _target_exists(self, conn: sqlite3.Connection, target_type: str, target_id: str) -> bool:
        if target_type == ReportTargetType.POST.value:
            return self._post_repo.get(conn, target_id) is not None
        if target_type == ReportTargetType.COMMENT.value:
            return self._comment_repo.get(conn, target_id) is not None
        if target_type == ReportTargetType.GRID.value:
            return self._grid_repo.get(conn, target_id) is not None
        if target_type == ReportTargetType.PROFILE.value:
            return self._user_repo.get(conn, target_id) is not None
        if target_type == ReportTargetType.CHAT_MESSAGE.value:
            return target_id.isdigit() and self._chat_repo.get_message(conn, int(target_id)) is not None
        return False

    def create_report(
        self, conn: sqlite3.Connection, reporter: User, target_type: str, target_id: str, reason: str
    ) -> Report:
        if target_type not in {t.value for t in ReportTargetType}:
            raise ValidationFailed("Unsupported target type")
        clean_reason = (reason or "").strip()
        if not clean_reason:
            raise ValidationFailed("A reason is required")
        if len(clean_reason) > REPORT_REASON_MAX_LENGTH:
            raise ValidationFailed(f"Reason must be {REPORT_REASON_MAX_LENGTH} characters or less")
        if not self._target_exists(conn, target_type, target_id):
            raise NotFoundError("Reported content not found")
        try:
            return self._report_repo.create(conn, reporter.id, target_type, target_id, clean_reason)
        except sqlite3.IntegrityError:
            raise ConflictError("You have already reported this")

    def list_reports(self, conn: sqlite3.Connection, status: str | None = ReportStatus.OPEN.value) -> list[Report]:
        return self._report_repo.list(conn, status=status)

    def _get_report(self, conn: sqlite3.Connection, report_id: int) -> Report:
        report = self._report_repo.get(conn, report_id)
        if report is None:
            raise NotFoundError("Report not found")
        return report

    async def remove_content(self, conn: sqlite3.Connection, admin: User, report_id: int) -> Report:
        """
        Remove the reported content and resolve the report. Profiles are never
        deleted; chat messages are soft-deleted and the deletion broadcast.
        """
        require_admin(admin)
        report = self._get_report(conn, report_id)
        target_type, target_id = report.target_type, report.target_id
        if target_type == ReportTargetType.POST.value:
            self._post_repo.delete(conn, target_id)
        elif target_type == ReportTargetType.COMMENT.value:
            self._comment_repo.delete(conn, target_id)
        elif target_type == ReportTargetType.GRID.value:
            self._grid_repo.delete(conn, target_id)
        elif target_type == ReportTargetType.CHAT_MESSAGE.value:
            message = self._chat_repo.get_message(conn, int(target_id))
            if message is not None:
                await self._chat.remove_message(conn, message, admin.id)
        elif target_type != ReportTargetType.PROFILE.value:
            raise ValidationFailed("Unsupported target type")
        self._report_repo.set_status(conn, report.id, ReportStatus.RESOLVED_REMOVED.value)
        logger.info("Report %s resolved by %s: %s %s removed", report.id, admin.id, target_type, target_id)
        return self._get_report(conn, report.id)

    def dismiss_report(self, conn: sqlite3.Connection, admin: User, report_id: int) -> Report:
        require_admin(admin)
        report = self._get_report(conn, report_id)
        self._report_repo.set_status(conn, report.id, ReportStatus.DISMISSED.value)
        return self._get_report(conn, report.id)

    # ---------- Users ----------

    def user_action(
        self,
        conn: sqlite3.Connection,
        admin: User,
        user_id: str,
        action: str,
        delta_points: int = 0,
        banned_until: datetime | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        require_admin(admin)
        if action not in USER_ACTIONS:
            raise ValidationFailed("Unsupported action")
        target = self._user_repo.get(conn, user_id)
        if target is None:
            raise NotFoundError("User not found")
        if action == "ban":
            until = banned_until or (now or datetime.now(timezone.utc)) + BAN_DURATION
            self._user_repo.set_banned_until(conn, user_id, until)
        elif action == "unban":
            self._user_repo.set_banned_until(conn, user_id, None)
        elif action == "reset_strikes":
            self._user_repo.set_strikes(conn, user_id, 0)
        else:
            self._points.adjust(conn, user_id, delta_points)
        logger.info("Admin %s applied %s to %s", admin.id, action, user_id)
        updated = self._user_repo.get(conn, user_id)
        if updated is None:
            raise NotFoundError("User not found")
        return {
            "id": updated.id,
            "username": updated.username,
            "points": updated.points,
            "strikes": updated.strikes,
            "banned_until": updated.banned_until.isoformat() if updated.banned_until else None,
        }

    # ---------- Track tips ----------

    def list_tips(self, conn: sqlite3.Connection, admin: User, status: str | None = TipStatus.PENDING.value) -> list[TrackTip]:
        require_admin(admin)
        return self._tip_repo.list(conn, status=status)

    def review_tip(self, conn: sqlite3.Connection, admin: User, tip_id: str, approve: bool) -> TrackTip:
        require_admin(admin)
        status = TipStatus.APPROVED.value if approve else TipStatus.REJECTED.value
        if not validate_uuid(tip_id) or not self._tip_repo.set_status(conn, tip_id, status):
            raise NotFoundError("Tip not found")
        tip = self._tip_repo.get(conn, tip_id)
        if tip is None:
            raise NotFoundError("Tip not found")
        return tip

    # ---------- Catalog ----------

    def update_catalog(
        self, conn: sqlite3.Connection, admin: User, table: str, item_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        require_admin(admin)
        if table not in CATALOG_TABLES:
            raise ValidationFailed("Unknown catalog table")
        if not self._catalog_repo.update(conn, table, item_id, fields):
            raise NotFoundError(f"{table[:-1].title()} not found")
        if table == "drivers":
            item = self._catalog_repo.get_driver(conn, item_id)
        elif table == "teams":
            item = self._catalog_repo.get_team(conn, item_id)
        else:
            item = self._catalog_repo.get_track(conn, item_id)
        if item is None:
            raise NotFoundError(f"{table[:-1].title()} not found")
        return item.to_dict()

    # ---------- Chat logs ----------

    def chat_logs(self, conn: sqlite3.Connection, admin: User, track_id: str) -> list[dict[str, Any]]:
        """Every message for a track, oldest first, removed ones included with who removed them."""
        require_admin(admin)
        if self._catalog_repo.get_track(conn, track_id) is None:
            raise NotFoundError("Track not found")
        messages = self._chat_repo.list_all(conn, track_id)
        authors = self._user_repo.get_many(conn, sorted({m.user_id for m in messages}))
        logs = []
        for message in messages:
            row = message.to_dict()
            row["deleted_at"] = message.deleted_at.isoformat() if message.deleted_at else None
            row["deleted_by"] = message.deleted_by
            author = authors.get(message.user_id)
            row["user"] = {
                "id": message.user_id,
                "username": author.username if author else None,
                "profile_image_url": author.profile_image_url if author else None,
            }
            logs.append(row)
        return logs

    # ---------- Dashboard ----------

    def metrics(self, conn: sqlite3.Connection, admin: User, now: datetime | None = None) -> dict[str, int]:
        require_admin(admin)
        now = now or datetime.now(timezone.utc)
        return {
            "users": self._user_repo.count(conn),
            "open_reports": self._report_repo.count_by_status(conn, ReportStatus.OPEN.value),
            "pending_tips": len(self._tip_repo.list(conn, status=TipStatus.PENDING.value)),
            "live_polls": self._poll_repo.count_by_status(conn, PollStatus.LIVE.value),
            "chat_messages_24h": self._chat_repo.count_since(conn, now - timedelta(hours=24)),
            "pending_emails": self._notification_repo.count_emails(conn, "pending"),
        }

    def list_emails(self, conn: sqlite3.Connection, admin: User, status: str | None = None) -> list[dict[str, Any]]:
        require_admin(admin)
        return self._notification_repo.list_emails(conn, status=status)
