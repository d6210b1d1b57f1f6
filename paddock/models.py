"""
Data models for the fan community backend.
Domain objects only: no persistence or API logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------- Enums ----------
class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class EntityType(str, Enum):
    """Things a comment can hang off."""
    DRIVER = "driver"
    TEAM = "team"
    TRACK = "track"
    GRID = "grid"
    POST = "post"


class GridType(str, Enum):
    DRIVER = "driver"
    TEAM = "team"
    TRACK = "track"


class PollStatus(str, Enum):
    """Poll lifecycle: draft -> live -> closed."""
    DRAFT = "draft"
    LIVE = "live"
    CLOSED = "closed"


class CommentStatus(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"


class ChatMode(str, Enum):
    OPEN = "open"
    READ_ONLY = "read_only"
    CLOSED = "closed"


class ReportTargetType(str, Enum):
    POST = "post"
    COMMENT = "comment"
    GRID = "grid"
    PROFILE = "profile"
    CHAT_MESSAGE = "chat_message"


class ReportStatus(str, Enum):
    OPEN = "open"
    RESOLVED_REMOVED = "resolved_removed"
    DISMISSED = "dismissed"


class NotificationKind(str, Enum):
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"
    MENTION = "mention"
    POLL_RESULTS = "poll_results"


class ActivityType(str, Enum):
    """Fan point activities."""
    GRID_RANKING = "grid_ranking"
    FAVORITE_SELECTION = "favorite_selection"
    POLL_VOTE = "poll_vote"
    COMMENT = "comment"
    FAN_POST = "fan_post"
    CHECK_IN = "check_in"


class TipStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ---------- User / profile ----------
@dataclass
class User:
    """
    An account and its public profile. username is NULL until onboarding.
    banned_until in the future means the user cannot post, vote or chat.
    """
    id: str
    email: str
    created_at: datetime
    password_hash: str | None = None
    username: str | None = None
    display_name: str | None = None
    bio: str | None = None
    date_of_birth: str | None = None
    show_age_on_profile: bool = False
    profile_image_url: str | None = None
    favorite_driver_id: str | None = None
    favorite_team_id: str | None = None
    favorite_track_ids: list[str] = field(default_factory=list)
    role: str = Role.USER.value
    points: int = 0
    strikes: int = 0
    banned_until: datetime | None = None
    onboarded_at: datetime | None = None

    def is_banned(self, now: datetime) -> bool:
        return self.banned_until is not None and self.banned_until > now

    @property
    def name(self) -> str:
        return self.display_name or self.username or self.email.split("@")[0]

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "bio": self.bio,
            "profile_image_url": self.profile_image_url,
            "favorite_driver_id": self.favorite_driver_id,
            "favorite_team_id": self.favorite_team_id,
            "favorite_track_ids": list(self.favorite_track_ids),
            "points": self.points,
            "created_at": self.created_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Owner/admin view: includes email and moderation fields."""
        d = self.to_public_dict()
        d.update({
            "email": self.email,
            "date_of_birth": self.date_of_birth,
            "show_age_on_profile": self.show_age_on_profile,
            "role": self.role,
            "strikes": self.strikes,
            "banned_until": _iso(self.banned_until),
            "onboarded_at": _iso(self.onboarded_at),
        })
        return d


# ---------- Catalog ----------
@dataclass
class Team:
    id: str
    name: str
    active: bool = True
    color: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "active": self.active, "color": self.color}


@dataclass
class Driver:
    id: str
    name: str
    country: str | None = None
    number: int | None = None
    team_id: str | None = None
    headshot_url: str | None = None
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "country": self.country,
            "number": self.number,
            "team_id": self.team_id,
            "headshot_url": self.headshot_url,
            "active": self.active,
        }


@dataclass
class Track:
    """A circuit and its race weekend dates (ISO dates or datetimes)."""
    id: str
    name: str
    location: str | None = None
    country: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    chat_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "country": self.country,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "chat_enabled": self.chat_enabled,
        }


# ---------- Live chat ----------
@dataclass
class ChatRoom:
    """Per-track chat overrides. mode may force closed or read_only inside the window."""
    track_id: str
    mode: str = ChatMode.OPEN.value
    slow_mode_ms: int | None = None
    opens_at: datetime | None = None
    closes_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "mode": self.mode,
            "slow_mode_ms": self.slow_mode_ms,
            "opens_at": _iso(self.opens_at),
            "closes_at": _iso(self.closes_at),
        }


@dataclass
class ChatMessage:
    """Message ids are monotonically increasing integers; clients order by id."""
    id: int
    track_id: str
    user_id: str
    message: str
    display_name: str
    created_at: datetime
    client_nonce: str | None = None
    deleted_at: datetime | None = None
    deleted_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "track_id": self.track_id,
            "user_id": self.user_id,
            "message": self.message,
            "display_name": self.display_name,
            "created_at": self.created_at.isoformat(),
            "client_nonce": self.client_nonce,
        }


# ---------- Polls ----------
@dataclass
class PollOption:
    id: str
    poll_id: str
    label: str
    position: int


@dataclass
class Poll:
    id: str
    question: str
    author_id: str
    status: str  # PollStatus value
    created_at: datetime
    expires_at: datetime | None = None
    closed_at: datetime | None = None
    options: list[PollOption] = field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) <= as_utc(now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "author_id": self.author_id,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "expires_at": _iso(self.expires_at),
            "closed_at": _iso(self.closed_at),
            "options": [
                {"id": o.id, "label": o.label, "position": o.position} for o in self.options
            ],
        }


@dataclass
class Vote:
    id: str
    poll_id: str
    option_id: str
    user_id: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "poll_id": self.poll_id,
            "option_id": self.option_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
        }


# ---------- Grids ----------
@dataclass
class Grid:
    """
    A user's ranked list of one catalog type. ranked_items is an ordered list of
    {"id", "name"}; previous_state is the list before the last update.
    """
    id: str
    user_id: str
    type: str  # GridType value
    ranked_items: list[dict[str, str]]
    created_at: datetime
    updated_at: datetime
    blurb: str | None = None
    previous_state: list[dict[str, str]] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "ranked_items": self.ranked_items,
            "blurb": self.blurb,
            "previous_state": self.previous_state,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ---------- Posts / comments ----------
@dataclass
class Post:
    id: str
    user_id: str
    content: str
    created_at: datetime
    parent_page_type: str | None = None
    parent_page_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "parent_page_type": self.parent_page_type,
            "parent_page_id": self.parent_page_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Comment:
    id: str
    entity_type: str
    entity_id: str
    author_id: str
    content: str
    status: str
    created_at: datetime
    parent_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "author_id": self.author_id,
            "content": self.content,
            "status": self.status,
            "parent_id": self.parent_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class CommentStats:
    """A top-level comment with its engagement counts; input to ranking."""
    comment: Comment
    like_count: int
    reply_count: int
    entity_name: str
    author_username: str | None = None


# ---------- Moderation ----------
@dataclass
class Report:
    id: int
    reporter_id: str
    target_type: str
    target_id: str
    reason: str
    status: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "reporter_id": self.reporter_id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "reason": self.reason,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TrackTip:
    id: str
    track_id: str
    user_id: str
    tip_type: str
    content: str
    status: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "track_id": self.track_id,
            "user_id": self.user_id,
            "tip_type": self.tip_type,
            "content": self.content,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }


# ---------- Notifications ----------
@dataclass
class Notification:
    id: str
    user_id: str
    kind: str
    payload: dict[str, Any]
    created_at: datetime
    actor_id: str | None = None
    read_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "read": self.read_at is not None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class NotificationPreferences:
    user_id: str
    email_likes: bool = True
    email_comments: bool = True
    email_follows: bool = True
    email_mentions: bool = True
    email_poll_votes: bool = True
    push_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email_likes": self.email_likes,
            "email_comments": self.email_comments,
            "email_follows": self.email_follows,
            "email_mentions": self.email_mentions,
            "email_poll_votes": self.email_poll_votes,
            "push_enabled": self.push_enabled,
        }
