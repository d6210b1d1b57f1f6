"""
Social graph and user content: follows, posts, comments, likes, mentions,
hot/trending comment queries, check-ins and track tips.
"""
from __future__ import annotations

import logging
import re
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

from paddock.errors import ConflictError, NotFoundError, ValidationFailed
from paddock.models import ActivityType, Comment, EntityType, NotificationKind, Post, TipStatus, TrackTip, User
from paddock.persistence.repositories import (
    CatalogRepository,
    CommentRepository,
    EngagementRepository,
    FollowRepository,
    GridRepository,
    PostRepository,
    TrackTipRepository,
    UserRepository,
)
from paddock.ranking import (
    SORT_HOT,
    SORT_NEW,
    TIME_WINDOWS,
    HotPage,
    Personalization,
    rank_hot,
    rank_trending,
    window_cutoff,
)
from paddock.services.account_service import ensure_not_banned
from paddock.services.notification_service import NotificationService
from paddock.services.points import PointsService
from paddock.validation import sanitize_tip_content, validate_tip_type

logger = logging.getLogger(__name__)

POST_MAX_LENGTH = 2000
COMMENT_MAX_LENGTH = 1000
TRENDING_DAYS = 7

_MENTION_RE = re.compile(r"(?<![\w@])@([A-Za-z0-9_.]{3,30})")


def extract_mentions(text: str) -> list[str]:
    """Distinct @usernames in order of first appearance."""
    return list(dict.fromkeys(m.rstrip(".") for m in _MENTION_RE.findall(text)))


def _clean_text(raw: str, max_length: int, label: str) -> str:
    text = (raw or "").strip()
    if not text:
        raise ValidationFailed(f"{label} cannot be empty")
    if len(text) > max_length:
        raise ValidationFailed(f"{label} must be {max_length} characters or less")
    return text


class SocialService:

    def __init__(self) -> None:
        self._user_repo = UserRepository()
        self._follow_repo = FollowRepository()
        self._post_repo = PostRepository()
        self._comment_repo = CommentRepository()
        self._catalog_repo = CatalogRepository()
        self._grid_repo = GridRepository()
        self._tip_repo = TrackTipRepository()
        self._engagement_repo = EngagementRepository()
        self._notifications = NotificationService()
        self._points = PointsService()

    def _user_by_username(self, conn: sqlite3.Connection, username: str) -> User:
        user = self._user_repo.get_by_username(conn, username)
        if user is None:
            raise NotFoundError("Profile not found")
        return user

    # ---------- Follows ----------

    def follow(self, conn: sqlite3.Connection, follower: User, username: str) -> None:
        target = self._user_by_username(conn, username)
        if target.id == follower.id:
            raise ValidationFailed("You cannot follow yourself")
        try:
            self._follow_repo.create(conn, follower.id, target.id)
        except sqlite3.IntegrityError:
            raise ConflictError("Already following")
        self._notifications.notify(
            conn, target.id, NotificationKind.FOLLOW.value,
            {"follower_id": follower.id, "follower_username": follower.username},
            actor_id=follower.id,
        )

    def unfollow(self, conn: sqlite3.Connection, follower: User, username: str) -> None:
        target = self._user_by_username(conn, username)
        if not self._follow_repo.delete(conn, follower.id, target.id):
            raise NotFoundError("Not following")

    def _public_users(self, conn: sqlite3.Connection, user_ids: list[str]) -> list[dict[str, Any]]:
        users = self._user_repo.get_many(conn, user_ids)
        return [users[uid].to_public_dict() for uid in user_ids if uid in users]

    def followers(self, conn: sqlite3.Connection, username: str) -> list[dict[str, Any]]:
        target = self._user_by_username(conn, username)
        return self._public_users(conn, self._follow_repo.follower_ids(conn, target.id))

    def following(self, conn: sqlite3.Connection, username: str) -> list[dict[str, Any]]:
        target = self._user_by_username(conn, username)
        return self._public_users(conn, self._follow_repo.followee_ids(conn, target.id))

    # ---------- Mentions ----------

    def _notify_mentions(
        self, conn: sqlite3.Connection, author: User, text: str, context: dict[str, Any]
    ) -> list[str]:
        notified: list[str] = []
        for username in extract_mentions(text):
            mentioned = self._user_repo.get_by_username(conn, username)
            if mentioned is None or mentioned.id == author.id:
                continue
            self._notifications.notify(
                conn, mentioned.id, NotificationKind.MENTION.value,
                {**context, "author_username": author.username},
                actor_id=author.id,
            )
            notified.append(mentioned.id)
        return notified

    # ---------- Posts ----------

    def create_post(
        self,
        conn: sqlite3.Connection,
        user: User,
        content: str,
        parent_page_type: str | None = None,
        parent_page_id: str | None = None,
    ) -> Post:
        ensure_not_banned(user)
        text = _clean_text(content, POST_MAX_LENGTH, "Post")
        post = self._post_repo.create(conn, user.id, text, parent_page_type, parent_page_id)
        self._points.award(conn, user.id, ActivityType.FAN_POST.value, reference_id=post.id)
        self._notify_mentions(conn, user, text, {"post_id": post.id})
        return post

    def list_posts(self, conn: sqlite3.Connection, username: str, limit: int = 50) -> list[Post]:
        user = self._user_by_username(conn, username)
        return self._post_repo.list_by_user(conn, user.id, limit=limit)

    # ---------- Comments ----------

    def _entity_exists(self, conn: sqlite3.Connection, entity_type: str, entity_id: str) -> bool:
        if entity_type == EntityType.DRIVER.value:
            return self._catalog_repo.get_driver(conn, entity_id) is not None
        if entity_type == EntityType.TEAM.value:
            return self._catalog_repo.get_team(conn, entity_id) is not None
        if entity_type == EntityType.TRACK.value:
            return self._catalog_repo.get_track(conn, entity_id) is not None
        if entity_type == EntityType.GRID.value:
            return self._grid_repo.get(conn, entity_id) is not None
        if entity_type == EntityType.POST.value:
            return self._post_repo.get(conn, entity_id) is not None
        return False

    def create_comment(
        self,
        conn: sqlite3.Connection,
        user: User,
        entity_type: str,
        entity_id: str,
        content: str,
        parent_id: str | None = None,
    ) -> Comment:
        """
        Comment on a driver, team, track, grid or post. A reply names its
        parent, which must be on the same entity; replies notify the parent author.
        """
        ensure_not_banned(user)
        if entity_type not in {e.value for e in EntityType}:
            raise ValidationFailed(f"Invalid entity type: {entity_type}")
        text = _clean_text(content, COMMENT_MAX_LENGTH, "Comment")
        if not self._entity_exists(conn, entity_type, entity_id):
            raise NotFoundError(f"{entity_type.title()} not found")
        parent: Comment | None = None
        if parent_id:
            parent = self._comment_repo.get(conn, parent_id)
            if parent is None or parent.entity_type != entity_type or parent.entity_id != entity_id:
                raise ValidationFailed("Reply must belong to a comment on the same page")
        comment = self._comment_repo.create(conn, entity_type, entity_id, user.id, text, parent_id=parent_id)
        self._points.award(conn, user.id, ActivityType.COMMENT.value, reference_id=comment.id)
        if parent is not None:
            self._notifications.notify(
                conn, parent.author_id, NotificationKind.COMMENT.value,
                {"comment_id": comment.id, "parent_id": parent.id, "entity_type": entity_type, "entity_id": entity_id},
                actor_id=user.id,
            )
        self._notify_mentions(
            conn, user, text, {"comment_id": comment.id, "entity_type": entity_type, "entity_id": entity_id}
        )
        return comment

    def list_comments(self, conn: sqlite3.Connection, entity_type: str, entity_id: str) -> list[dict[str, Any]]:
        comments = self._comment_repo.list_for_entity(conn, entity_type, entity_id)
        authors = self._user_repo.get_many(conn, list({c.author_id for c in comments}))
        out = []
        for c in comments:
            d = c.to_dict()
            author = authors.get(c.author_id)
            d["author_username"] = author.username if author else None
            d["like_count"] = self._comment_repo.like_count(conn, c.id)
            out.append(d)
        return out

    def like_comment(self, conn: sqlite3.Connection, user: User, comment_id: str) -> int:
        ensure_not_banned(user)
        comment = self._comment_repo.get(conn, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        try:
            self._comment_repo.add_like(conn, comment_id, user.id)
        except sqlite3.IntegrityError:
            raise ConflictError("Already liked")
        self._notifications.notify(
            conn, comment.author_id, NotificationKind.LIKE.value,
            {"comment_id": comment.id, "entity_type": comment.entity_type, "entity_id": comment.entity_id},
            actor_id=user.id,
        )
        return self._comment_repo.like_count(conn, comment_id)

    def unlike_comment(self, conn: sqlite3.Connection, user: User, comment_id: str) -> int:
        if not self._comment_repo.remove_like(conn, comment_id, user.id):
            raise NotFoundError("Like not found")
        return self._comment_repo.like_count(conn, comment_id)

    # ---------- Hot / trending ----------

    def personalization_for(self, conn: sqlite3.Connection, viewer: User | None) -> Personalization:
        if viewer is None:
            return Personalization()
        return Personalization(
            following_ids=set(self._follow_repo.followee_ids(conn, viewer.id)),
            favorite_driver_id=viewer.favorite_driver_id,
            favorite_team_id=viewer.favorite_team_id,
            favorite_track_ids=set(viewer.favorite_track_ids),
        )

    def hot_comments(
        self,
        conn: sqlite3.Connection,
        viewer: User | None,
        time_window: str = "week",
        sort_mode: str = SORT_HOT,
        page: int = 1,
        limit: int = 20,
        now: datetime | None = None,
    ) -> HotPage:
        if time_window not in TIME_WINDOWS:
            raise ValidationFailed(f"time_window must be one of {', '.join(TIME_WINDOWS)}")
        if sort_mode not in (SORT_HOT, SORT_NEW):
            raise ValidationFailed("sort must be 'hot' or 'new'")
        now = now or datetime.now(timezone.utc)
        candidates = self._comment_repo.list_with_stats(
            conn, window_cutoff(time_window, now), exclude_author_id=viewer.id if viewer else None
        )
        return rank_hot(
            candidates, self.personalization_for(conn, viewer), now,
            sort_mode=sort_mode, page=page, limit=limit,
        )

    def trending_comments(
        self,
        conn: sqlite3.Connection,
        days: int = TRENDING_DAYS,
        limit: int = 5,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        candidates = self._comment_repo.list_with_stats(conn, now - timedelta(days=days))
        return rank_trending(candidates, limit=limit)

    # ---------- Check-ins ----------

    def check_in(self, conn: sqlite3.Connection, user: User, track_id: str) -> dict[str, Any]:
        """One check-in per user per track; each earns check_in points."""
        ensure_not_banned(user)
        if self._catalog_repo.get_track(conn, track_id) is None:
            raise NotFoundError("Track not found")
        try:
            self._engagement_repo.create_check_in(conn, user.id, track_id)
        except sqlite3.IntegrityError:
            raise ConflictError("Already checked in to this race")
        awarded = self._points.award(conn, user.id, ActivityType.CHECK_IN.value, reference_id=track_id)
        return {
            "track_id": track_id,
            "points_awarded": awarded,
            "check_in_count": self._engagement_repo.check_in_count(conn, track_id),
        }

    # ---------- Track tips ----------

    def submit_tip(self, conn: sqlite3.Connection, user: User, track_id: str, tip_type: str, content: str) -> TrackTip:
        """Tips are held for review before they show on the track page."""
        ensure_not_banned(user)
        if not validate_tip_type(tip_type):
            raise ValidationFailed("Tip type must be one of: tips, stays, transit")
        if self._catalog_repo.get_track(conn, track_id) is None:
            raise NotFoundError("Track not found")
        text = sanitize_tip_content(content)
        return self._tip_repo.create(conn, track_id, user.id, tip_type, text)

    def list_tips(self, conn: sqlite3.Connection, track_id: str) -> list[TrackTip]:
        return self._tip_repo.list(conn, track_id=track_id, status=TipStatus.APPROVED.value)
