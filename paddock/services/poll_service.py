"""
Community polls: create, list, vote, close.

Vote flow: per-user throttle, poll must be live and unexpired, the option must
belong to the poll; an existing vote is moved to the new option rather than
duplicated. Closing a poll notifies every voter once.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any

from paddock.config import get_settings
from paddock.errors import NotFoundError, PermissionDenied, RateLimited, ValidationFailed
from paddock.models import ActivityType, NotificationKind, Poll, PollStatus, User, as_utc
from paddock.persistence.repositories import PollRepository
from paddock.rate_limit import MinIntervalLimiter
from paddock.services.account_service import ensure_not_banned, is_admin
from paddock.services.notification_service import NotificationService
from paddock.services.points import PointsService
from paddock.validation import validate_uuid

logger = logging.getLogger(__name__)

QUESTION_MAX_LENGTH = 200
MIN_OPTIONS = 2
MAX_OPTIONS = 4
OPTION_MAX_LENGTH = 100


def validate_poll(
    question: str,
    options: list[str],
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> tuple[str, list[str]]:
    """
    Clean a poll draft. Blank options are dropped before counting, so
    ["Yes", " "] is a one-option poll and is rejected.
    """
    q = (question or "").strip()
    if not q:
        raise ValidationFailed("Question is required")
    if len(q) > QUESTION_MAX_LENGTH:
        raise ValidationFailed(f"Question must be {QUESTION_MAX_LENGTH} characters or less")
    labels = [o.strip() for o in options or [] if o and o.strip()]
    if len(labels) < MIN_OPTIONS:
        raise ValidationFailed(f"Poll must have at least {MIN_OPTIONS} options")
    if len(labels) > MAX_OPTIONS:
        raise ValidationFailed(f"Poll can have at most {MAX_OPTIONS} options")
    if any(len(label) > OPTION_MAX_LENGTH for label in labels):
        raise ValidationFailed(f"Options must be {OPTION_MAX_LENGTH} characters or less")
    if len({label.lower() for label in labels}) != len(labels):
        raise ValidationFailed("Options must be unique")
    if expires_at is not None and as_utc(expires_at) <= as_utc(now or datetime.now(timezone.utc)):
        raise ValidationFailed("Expiry must be in the future")
    return q, labels


class PollService:

    def __init__(self, vote_limiter: MinIntervalLimiter | None = None) -> None:
        self.vote_limiter = vote_limiter or MinIntervalLimiter(get_settings().vote_min_interval_seconds)
        self._repo = PollRepository()
        self._notifications = NotificationService()
        self._points = PointsService()

    def _get(self, conn: sqlite3.Connection, poll_id: str) -> Poll:
        poll = self._repo.get(conn, poll_id) if validate_uuid(poll_id) else None
        if poll is None:
            raise NotFoundError("Poll not found")
        return poll

    def create(
        self,
        conn: sqlite3.Connection,
        author: User,
        question: str,
        options: list[str],
        expires_at: datetime | None = None,
        status: str = PollStatus.LIVE.value,
        now: datetime | None = None,
    ) -> Poll:
        ensure_not_banned(author, now)
        if status not in (PollStatus.LIVE.value, PollStatus.DRAFT.value):
            raise ValidationFailed("status must be 'live' or 'draft'")
        if expires_at is not None:
            expires_at = as_utc(expires_at)
        q, labels = validate_poll(question, options, expires_at, now)
        poll = self._repo.create(conn, q, author.id, labels, status, expires_at=expires_at, now=now)
        logger.info("Poll %s created by %s", poll.id, author.id)
        return poll

    def list(self, conn: sqlite3.Connection, status: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        polls = self._repo.list(conn, status=status, limit=limit)
        return [self._with_counts(conn, p) for p in polls]

    def _with_counts(self, conn: sqlite3.Connection, poll: Poll, viewer: User | None = None) -> dict[str, Any]:
        counts = self._repo.vote_counts(conn, poll.id)
        d = poll.to_dict()
        for option in d["options"]:
            option["votes"] = counts.get(option["id"], 0)
        d["total_votes"] = sum(counts.values())
        if viewer is not None:
            vote = self._repo.get_vote(conn, poll.id, viewer.id)
            d["user_vote"] = vote.option_id if vote else None
        return d

    def detail(self, conn: sqlite3.Connection, poll_id: str, viewer: User | None = None) -> dict[str, Any]:
        return self._with_counts(conn, self._get(conn, poll_id), viewer)

    def vote(
        self,
        conn: sqlite3.Connection,
        user: User,
        poll_id: str,
        option_id: str,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        ensure_not_banned(user, now)
        if not self.vote_limiter.check(user.id):
            raise RateLimited("Please wait before voting again")
        poll = self._get(conn, poll_id)
        if poll.status != PollStatus.LIVE.value:
            raise ValidationFailed("Poll is not accepting votes")
        if poll.is_expired(now):
            raise ValidationFailed("Poll has expired")
        if option_id not in {o.id for o in poll.options}:
            raise ValidationFailed("Invalid option for this poll")

        existing = self._repo.get_vote(conn, poll_id, user.id)
        if existing is not None:
            self._repo.update_vote(conn, existing.id, option_id)
            updated = "updated"
        else:
            try:
                self._repo.create_vote(conn, poll_id, option_id, user.id, now=now)
            except sqlite3.IntegrityError:
                # concurrent first vote from the same user; move it instead
                vote = self._repo.get_vote(conn, poll_id, user.id)
                if vote is None:
                    raise
                self._repo.update_vote(conn, vote.id, option_id)
            updated = "created"
            self._points.award(conn, user.id, ActivityType.POLL_VOTE.value, reference_id=poll_id, once=True, now=now)
        self.vote_limiter.record(user.id)

        counts = self._repo.vote_counts(conn, poll_id)
        return {
            "success": True,
            "voteCounts": {o.id: counts.get(o.id, 0) for o in poll.options},
            "totalVotes": sum(counts.values()),
            "updated": updated,
        }

    def _close_and_notify(self, conn: sqlite3.Connection, poll: Poll, now: datetime) -> int:
        if not self._repo.close(conn, poll.id, now=now):
            return 0
        counts = self._repo.vote_counts(conn, poll.id)
        winner = max(poll.options, key=lambda o: (counts.get(o.id, 0), -o.position), default=None)
        payload = {
            "poll_id": poll.id,
            "question": poll.question,
            "winning_option": winner.label if winner else None,
            "total_votes": sum(counts.values()),
        }
        voters = self._repo.voter_ids(conn, poll.id)
        for voter_id in voters:
            self._notifications.notify(conn, voter_id, NotificationKind.POLL_RESULTS.value, payload, now=now)
        logger.info("Poll %s closed, %d voters notified", poll.id, len(voters))
        return len(voters)

    def close(self, conn: sqlite3.Connection, user: User, poll_id: str, now: datetime | None = None) -> dict[str, Any]:
        poll = self._get(conn, poll_id)
        if poll.author_id != user.id and not is_admin(user):
            raise PermissionDenied("Only the poll author or an admin can close this poll")
        if poll.status == PollStatus.CLOSED.value:
            raise ValidationFailed("Poll is already closed")
        notified = self._close_and_notify(conn, poll, now or datetime.now(timezone.utc))
        return {"poll": self.detail(conn, poll_id), "notified": notified}

    def close_expired(self, conn: sqlite3.Connection, now: datetime | None = None) -> list[str]:
        """Close every live poll past its expiry. Returns the ids closed."""
        now = now or datetime.now(timezone.utc)
        closed: list[str] = []
        for poll_id in self._repo.list_expired_live(conn, now):
            poll = self._repo.get(conn, poll_id)
            if poll is not None:
                self._close_and_notify(conn, poll, now)
                closed.append(poll_id)
        return closed
