"""
Repository interfaces for community data.
No business logic: only read/write operations. sqlite3.IntegrityError is left
to callers, which decide whether a duplicate is a conflict or a no-op.
"""
from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from paddock.models import (
    ChatMessage,
    ChatRoom,
    Comment,
    CommentStats,
    Driver,
    Grid,
    Notification,
    NotificationPreferences,
    Poll,
    PollOption,
    Post,
    Report,
    Team,
    Track,
    TrackTip,
    User,
    Vote,
    as_utc,
)


def _parse_datetime(s: str | None) -> datetime | None:
    if s is None:
        return None
    parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _required_datetime(s: str) -> datetime:
    parsed = _parse_datetime(s)
    if parsed is None:
        raise ValueError("expected datetime string")
    return parsed


def _stamp(now: datetime | None) -> str:
    """Stored timestamps always carry +00:00 so SQL string compares order correctly."""
    return as_utc(now or datetime.now(timezone.utc)).isoformat()


def _opt_stamp(dt: datetime | None) -> str | None:
    return as_utc(dt).isoformat() if dt else None


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------- UserRepository ----------


_USER_COLS = (
    "id, email, password_hash, username, display_name, bio, date_of_birth, show_age_on_profile, "
    "profile_image_url, favorite_driver_id, favorite_team_id, favorite_track_ids, role, points, "
    "strikes, banned_until, onboarded_at, created_at"
)

# Columns a profile edit may touch; anything else goes through dedicated methods.
PROFILE_FIELDS = (
    "username",
    "display_name",
    "bio",
    "date_of_birth",
    "show_age_on_profile",
    "profile_image_url",
    "favorite_driver_id",
    "favorite_team_id",
    "favorite_track_ids",
)


def _row_to_user(r: sqlite3.Row) -> User:
    return User(
        id=r["id"],
        email=r["email"],
        password_hash=r["password_hash"],
        username=r["username"],
        display_name=r["display_name"],
        bio=r["bio"],
        date_of_birth=r["date_of_birth"],
        show_age_on_profile=bool(r["show_age_on_profile"]),
        profile_image_url=r["profile_image_url"],
        favorite_driver_id=r["favorite_driver_id"],
        favorite_team_id=r["favorite_team_id"],
        favorite_track_ids=json.loads(r["favorite_track_ids"] or "[]"),
        role=r["role"],
        points=r["points"],
        strikes=r["strikes"],
        banned_until=_parse_datetime(r["banned_until"]),
        onboarded_at=_parse_datetime(r["onboarded_at"]),
        created_at=_required_datetime(r["created_at"]),
    )


class UserRepository:
    """CRUD for users and their profile columns."""

    def create(
        self,
        conn: sqlite3.Connection,
        email: str,
        password_hash: str,
        role: str = "user",
        now: datetime | None = None,
    ) -> User:
        uid = _new_id()
        stamp = _stamp(now)
        conn.execute(
            "INSERT INTO users (id, email, password_hash, role, created_at) VALUES (?, ?, ?, ?, ?)",
            (uid, email.lower(), password_hash, role, stamp),
        )
        conn.commit()
        return self.get(conn, uid) or User(
            id=uid, email=email.lower(), password_hash=password_hash, role=role,
            created_at=_required_datetime(stamp),
        )

    def get(self, conn: sqlite3.Connection, user_id: str) -> User | None:
        row = conn.execute(f"SELECT {_USER_COLS} FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row else None

    def get_by_email(self, conn: sqlite3.Connection, email: str) -> User | None:
        row = conn.execute(f"SELECT {_USER_COLS} FROM users WHERE email = ?", (email.lower(),)).fetchone()
        return _row_to_user(row) if row else None

    def get_by_username(self, conn: sqlite3.Connection, username: str) -> User | None:
        row = conn.execute(
            f"SELECT {_USER_COLS} FROM users WHERE username = ? COLLATE NOCASE", (username,)
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_many(self, conn: sqlite3.Connection, user_ids: list[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        marks = ", ".join("?" for _ in user_ids)
        rows = conn.execute(f"SELECT {_USER_COLS} FROM users WHERE id IN ({marks})", tuple(user_ids)).fetchall()
        return {r["id"]: _row_to_user(r) for r in rows}

    def update_profile(self, conn: sqlite3.Connection, user_id: str, fields: dict[str, Any]) -> None:
        updates = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
        if not updates:
            return
        if "favorite_track_ids" in updates:
            updates["favorite_track_ids"] = json.dumps(list(updates["favorite_track_ids"] or []))
        if "show_age_on_profile" in updates:
            updates["show_age_on_profile"] = int(bool(updates["show_age_on_profile"]))
        assignments = ", ".join(f"{k} = ?" for k in updates)
        conn.execute(f"UPDATE users SET {assignments} WHERE id = ?", (*updates.values(), user_id))
        conn.commit()

    def mark_onboarded(self, conn: sqlite3.Connection, user_id: str, now: datetime | None = None) -> None:
        conn.execute(
            "UPDATE users SET onboarded_at = COALESCE(onboarded_at, ?) WHERE id = ?",
            (_stamp(now), user_id),
        )
        conn.commit()

    def set_password_hash(self, conn: sqlite3.Connection, user_id: str, password_hash: str) -> None:
        conn.execute("UPDATE users SET password_hash = ? WHERE id = ?", (password_hash, user_id))
        conn.commit()

    def set_role(self, conn: sqlite3.Connection, user_id: str, role: str) -> None:
        conn.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
        conn.commit()

    def set_banned_until(self, conn: sqlite3.Connection, user_id: str, until: datetime | None) -> None:
        conn.execute(
            "UPDATE users SET banned_until = ? WHERE id = ?",
            (_opt_stamp(until), user_id),
        )
        conn.commit()

    def set_strikes(self, conn: sqlite3.Connection, user_id: str, strikes: int) -> None:
        conn.execute("UPDATE users SET strikes = ? WHERE id = ?", (strikes, user_id))
        conn.commit()

    def add_points(self, conn: sqlite3.Connection, user_id: str, delta: int) -> None:
        """Points never go below zero."""
        conn.execute("UPDATE users SET points = MAX(points + ?, 0) WHERE id = ?", (delta, user_id))
        conn.commit()

    def list_leaderboard(self, conn: sqlite3.Connection, limit: int) -> list[tuple[str, str | None, int]]:
        rows = conn.execute(
            "SELECT id, username, points FROM users WHERE username IS NOT NULL "
            "ORDER BY points DESC, username COLLATE NOCASE LIMIT ?",
            (limit,),
        ).fetchall()
        return [(r["id"], r["username"], r["points"]) for r in rows]

    def search(self, conn: sqlite3.Connection, query: str, limit: int) -> list[User]:
        pattern = f"%{query}%"
        rows = conn.execute(
            f"SELECT {_USER_COLS} FROM users WHERE username LIKE ? OR display_name LIKE ? "
            "ORDER BY username LIMIT ?",
            (pattern, pattern, limit),
        ).fetchall()
        return [_row_to_user(r) for r in rows]

    def count(self, conn: sqlite3.Connection) -> int:
        return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]


# ---------- FollowRepository ----------


class FollowRepository:

    def create(self, conn: sqlite3.Connection, follower_id: str, followee_id: str, now: datetime | None = None) -> None:
        conn.execute(
            "INSERT INTO follows (follower_id, followee_id, created_at) VALUES (?, ?, ?)",
            (follower_id, followee_id, _stamp(now)),
        )
        conn.commit()

    def delete(self, conn: sqlite3.Connection, follower_id: str, followee_id: str) -> bool:
        cur = conn.execute(
            "DELETE FROM follows WHERE follower_id = ? AND followee_id = ?", (follower_id, followee_id)
        )
        conn.commit()
        return cur.rowcount > 0

    def exists(self, conn: sqlite3.Connection, follower_id: str, followee_id: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM follows WHERE follower_id = ? AND followee_id = ?", (follower_id, followee_id)
        ).fetchone()
        return row is not None

    def followee_ids(self, conn: sqlite3.Connection, follower_id: str) -> list[str]:
        rows = conn.execute("SELECT followee_id FROM follows WHERE follower_id = ?", (follower_id,)).fetchall()
        return [r[0] for r in rows]

    def follower_ids(self, conn: sqlite3.Connection, followee_id: str) -> list[str]:
        rows = conn.execute(
            "SELECT follower_id FROM follows WHERE followee_id = ? ORDER BY created_at DESC", (followee_id,)
        ).fetchall()
        return [r[0] for r in rows]

    def counts(self, conn: sqlite3.Connection, user_id: str) -> dict[str, int]:
        followers = conn.execute("SELECT COUNT(*) FROM follows WHERE followee_id = ?", (user_id,)).fetchone()[0]
        following = conn.execute("SELECT COUNT(*) FROM follows WHERE follower_id = ?", (user_id,)).fetchone()[0]
        return {"follower_count": followers, "following_count": following}


# ---------- CatalogRepository ----------


_CATALOG_EDITABLE = {
    "drivers": ("name", "country", "number", "team_id", "headshot_url", "active"),
    "teams": ("name", "active", "color"),
    "tracks": ("name", "location", "country", "start_date", "end_date", "chat_enabled"),
}


def _row_to_driver(r: sqlite3.Row) -> Driver:
    return Driver(
        id=r["id"], name=r["name"], country=r["country"], number=r["number"],
        team_id=r["team_id"], headshot_url=r["headshot_url"], active=bool(r["active"]),
    )


def _row_to_team(r: sqlite3.Row) -> Team:
    return Team(id=r["id"], name=r["name"], active=bool(r["active"]), color=r["color"])


def _row_to_track(r: sqlite3.Row) -> Track:
    return Track(
        id=r["id"], name=r["name"], location=r["location"], country=r["country"],
        start_date=r["start_date"], end_date=r["end_date"], chat_enabled=bool(r["chat_enabled"]),
    )


class CatalogRepository:
    """Drivers, teams and tracks."""

    def list_drivers(self, conn: sqlite3.Connection, active_only: bool = True) -> list[Driver]:
        sql = "SELECT * FROM drivers" + (" WHERE active = 1" if active_only else "") + " ORDER BY name"
        return [_row_to_driver(r) for r in conn.execute(sql).fetchall()]

    def list_teams(self, conn: sqlite3.Connection, active_only: bool = True) -> list[Team]:
        sql = "SELECT * FROM teams" + (" WHERE active = 1" if active_only else "") + " ORDER BY name"
        return [_row_to_team(r) for r in conn.execute(sql).fetchall()]

    def list_tracks(self, conn: sqlite3.Connection) -> list[Track]:
        rows = conn.execute("SELECT * FROM tracks ORDER BY start_date IS NULL, start_date, name").fetchall()
        return [_row_to_track(r) for r in rows]

    def get_driver(self, conn: sqlite3.Connection, driver_id: str) -> Driver | None:
        row = conn.execute("SELECT * FROM drivers WHERE id = ?", (driver_id,)).fetchone()
        return _row_to_driver(row) if row else None

    def get_team(self, conn: sqlite3.Connection, team_id: str) -> Team | None:
        row = conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
        return _row_to_team(row) if row else None

    def get_track(self, conn: sqlite3.Connection, track_id: str) -> Track | None:
        row = conn.execute("SELECT * FROM tracks WHERE id = ?", (track_id,)).fetchone()
        return _row_to_track(row) if row else None

    def names(self, conn: sqlite3.Connection, table: str, ids: list[str]) -> dict[str, str]:
        """id -> name for drivers, teams or tracks."""
        if table not in _CATALOG_EDITABLE or not ids:
            return {}
        marks = ", ".join("?" for _ in ids)
        rows = conn.execute(f"SELECT id, name FROM {table} WHERE id IN ({marks})", tuple(ids)).fetchall()
        return {r["id"]: r["name"] for r in rows}

    def update(self, conn: sqlite3.Connection, table: str, item_id: str, fields: dict[str, Any]) -> bool:
        allowed = _CATALOG_EDITABLE[table]
        updates = {k: (int(v) if isinstance(v, bool) else v) for k, v in fields.items() if k in allowed}
        if not updates:
            return conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (item_id,)).fetchone() is not None
        assignments = ", ".join(f"{k} = ?" for k in updates)
        cur = conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", (*updates.values(), item_id))
        conn.commit()
        return cur.rowcount > 0

    def set_chat_enabled(self, conn: sqlite3.Connection, track_id: str, enabled: bool) -> bool:
        cur = conn.execute("UPDATE tracks SET chat_enabled = ? WHERE id = ?", (int(enabled), track_id))
        conn.commit()
        return cur.rowcount > 0

    def search(self, conn: sqlite3.Connection, table: str, query: str, limit: int) -> list[dict[str, str]]:
        if table not in _CATALOG_EDITABLE:
            return []
        rows = conn.execute(
            f"SELECT id, name FROM {table} WHERE name LIKE ? ORDER BY name LIMIT ?",
            (f"%{query}%", limit),
        ).fetchall()
        return [{"id": r["id"], "name": r["name"]} for r in rows]


# ---------- ChatRepository ----------


def _row_to_message(r: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        id=r["id"],
        track_id=r["track_id"],
        user_id=r["user_id"],
        message=r["message"],
        display_name=r["display_name"],
        client_nonce=r["client_nonce"],
        created_at=_required_datetime(r["created_at"]),
        deleted_at=_parse_datetime(r["deleted_at"]),
        deleted_by=r["deleted_by"],
    )


class ChatRepository:
    """Chat rooms and live chat messages."""

    def get_room(self, conn: sqlite3.Connection, track_id: str) -> ChatRoom | None:
        row = conn.execute("SELECT * FROM chat_rooms WHERE track_id = ?", (track_id,)).fetchone()
        if row is None:
            return None
        return ChatRoom(
            track_id=row["track_id"],
            mode=row["mode"],
            slow_mode_ms=row["slow_mode_ms"],
            opens_at=_parse_datetime(row["opens_at"]),
            closes_at=_parse_datetime(row["closes_at"]),
        )

    def upsert_room(
        self,
        conn: sqlite3.Connection,
        track_id: str,
        mode: str,
        slow_mode_ms: int | None = None,
        opens_at: datetime | None = None,
        closes_at: datetime | None = None,
    ) -> None:
        conn.execute(
            """INSERT INTO chat_rooms (track_id, mode, slow_mode_ms, opens_at, closes_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(track_id) DO UPDATE SET
                 mode = excluded.mode,
                 slow_mode_ms = excluded.slow_mode_ms,
                 opens_at = excluded.opens_at,
                 closes_at = excluded.closes_at""",
            (
                track_id, mode, slow_mode_ms,
                _opt_stamp(opens_at),
                _opt_stamp(closes_at),
            ),
        )
        conn.commit()

    def set_active_room_mode(self, conn: sqlite3.Connection, track_id: str, mode: str, now: datetime) -> int:
        """Update rooms that have not closed yet (or have no close time)."""
        cur = conn.execute(
            "UPDATE chat_rooms SET mode = ? WHERE track_id = ? AND (closes_at IS NULL OR closes_at >= ?)",
            (mode, track_id, _stamp(now)),
        )
        conn.commit()
        return cur.rowcount

    def create_message(
        self,
        conn: sqlite3.Connection,
        track_id: str,
        user_id: str,
        message: str,
        display_name: str,
        client_nonce: str,
        now: datetime | None = None,
    ) -> ChatMessage:
        stamp = _stamp(now)
        cur = conn.execute(
            """INSERT INTO live_chat_messages (track_id, user_id, message, display_name, client_nonce, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (track_id, user_id, message, display_name, client_nonce, stamp),
        )
        conn.commit()
        return self.get_message(conn, cur.lastrowid) or ChatMessage(
            id=cur.lastrowid, track_id=track_id, user_id=user_id, message=message,
            display_name=display_name, client_nonce=client_nonce, created_at=_required_datetime(stamp),
        )

    def get_message(self, conn: sqlite3.Connection, message_id: int) -> ChatMessage | None:
        row = conn.execute("SELECT * FROM live_chat_messages WHERE id = ?", (message_id,)).fetchone()
        return _row_to_message(row) if row else None

    def get_by_nonce(
        self, conn: sqlite3.Connection, track_id: str, user_id: str, client_nonce: str
    ) -> ChatMessage | None:
        row = conn.execute(
            "SELECT * FROM live_chat_messages WHERE track_id = ? AND user_id = ? AND client_nonce = ?",
            (track_id, user_id, client_nonce),
        ).fetchone()
        return _row_to_message(row) if row else None

    def list_recent(
        self, conn: sqlite3.Connection, track_id: str, limit: int, after_id: int = 0
    ) -> list[ChatMessage]:
        """Newest first, deleted excluded."""
        rows = conn.execute(
            """SELECT * FROM live_chat_messages
               WHERE track_id = ? AND deleted_at IS NULL AND id > ?
               ORDER BY id DESC LIMIT ?""",
            (track_id, after_id, limit),
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    def list_all(self, conn: sqlite3.Connection, track_id: str) -> list[ChatMessage]:
        """Full log for a track, oldest first, deleted rows included."""
        rows = conn.execute(
            "SELECT * FROM live_chat_messages WHERE track_id = ? ORDER BY created_at, id", (track_id,)
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    def soft_delete(self, conn: sqlite3.Connection, message_id: int, deleted_by: str, now: datetime | None = None) -> bool:
        cur = conn.execute(
            "UPDATE live_chat_messages SET deleted_at = ?, deleted_by = ? WHERE id = ? AND deleted_at IS NULL",
            (_stamp(now), deleted_by, message_id),
        )
        conn.commit()
        return cur.rowcount > 0

    def count_since(self, conn: sqlite3.Connection, since: datetime) -> int:
        return conn.execute(
            "SELECT COUNT(*) FROM live_chat_messages WHERE created_at >= ?", (_stamp(since),)
        ).fetchone()[0]


# ---------- PollRepository ----------


def _row_to_poll(r: sqlite3.Row) -> Poll:
    return Poll(
        id=r["id"],
        question=r["question"],
        author_id=r["author_id"],
        status=r["status"],
        created_at=_required_datetime(r["created_at"]),
        expires_at=_parse_datetime(r["expires_at"]),
        closed_at=_parse_datetime(r["closed_at"]),
    )


class PollRepository:
    """Polls, options and votes."""

    def create(
        self,
        conn: sqlite3.Connection,
        question: str,
        author_id: str,
        option_labels: list[str],
        status: str,
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> Poll:
        pid = _new_id()
        stamp = _stamp(now)
        conn.execute(
            "INSERT INTO polls (id, question, author_id, status, expires_at, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (pid, question, author_id, status, _opt_stamp(expires_at), stamp),
        )
        options = [PollOption(id=_new_id(), poll_id=pid, label=label, position=i + 1) for i, label in enumerate(option_labels)]
        for o in options:
            conn.execute(
                "INSERT INTO poll_options (id, poll_id, label, position) VALUES (?, ?, ?, ?)",
                (o.id, pid, o.label, o.position),
            )
        conn.commit()
        return self.get(conn, pid) or Poll(
            id=pid, question=question, author_id=author_id, status=status,
            created_at=_required_datetime(stamp), expires_at=_parse_datetime(_opt_stamp(expires_at)), options=options,
        )

    def get(self, conn: sqlite3.Connection, poll_id: str) -> Poll | None:
        row = conn.execute("SELECT * FROM polls WHERE id = ?", (poll_id,)).fetchone()
        if row is None:
            return None
        poll = _row_to_poll(row)
        poll.options = self.get_options(conn, poll_id)
        return poll

    def get_options(self, conn: sqlite3.Connection, poll_id: str) -> list[PollOption]:
        rows = conn.execute(
            "SELECT id, poll_id, label, position FROM poll_options WHERE poll_id = ? ORDER BY position",
            (poll_id,),
        ).fetchall()
        return [PollOption(id=r["id"], poll_id=r["poll_id"], label=r["label"], position=r["position"]) for r in rows]

    def list(self, conn: sqlite3.Connection, status: str | None = None, limit: int = 50) -> list[Poll]:
        if status:
            rows = conn.execute(
                "SELECT * FROM polls WHERE status = ? ORDER BY created_at DESC LIMIT ?", (status, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM polls ORDER BY created_at DESC LIMIT ?", (limit,)).fetchall()
        polls = [_row_to_poll(r) for r in rows]
        for p in polls:
            p.options = self.get_options(conn, p.id)
        return polls

    def list_expired_live(self, conn: sqlite3.Connection, now: datetime) -> list[str]:
        rows = conn.execute(
            "SELECT id FROM polls WHERE status = 'live' AND expires_at IS NOT NULL AND expires_at <= ?",
            (_stamp(now),),
        ).fetchall()
        return [r[0] for r in rows]

    def close(self, conn: sqlite3.Connection, poll_id: str, now: datetime | None = None) -> bool:
        cur = conn.execute(
            "UPDATE polls SET status = 'closed', closed_at = ? WHERE id = ? AND status != 'closed'",
            (_stamp(now), poll_id),
        )
        conn.commit()
        return cur.rowcount > 0

    def get_vote(self, conn: sqlite3.Connection, poll_id: str, user_id: str) -> Vote | None:
        row = conn.execute("SELECT * FROM votes WHERE poll_id = ? AND user_id = ?", (poll_id, user_id)).fetchone()
        if row is None:
            return None
        return Vote(
            id=row["id"], poll_id=row["poll_id"], option_id=row["option_id"],
            user_id=row["user_id"], created_at=_required_datetime(row["created_at"]),
        )

    def create_vote(
        self, conn: sqlite3.Connection, poll_id: str, option_id: str, user_id: str, now: datetime | None = None
    ) -> Vote:
        vid = _new_id()
        stamp = _stamp(now)
        conn.execute(
            "INSERT INTO votes (id, poll_id, option_id, user_id, created_at) VALUES (?, ?, ?, ?, ?)",
            (vid, poll_id, option_id, user_id, stamp),
        )
        conn.commit()
        return Vote(id=vid, poll_id=poll_id, option_id=option_id, user_id=user_id, created_at=_required_datetime(stamp))

    def update_vote(self, conn: sqlite3.Connection, vote_id: str, option_id: str) -> None:
        conn.execute("UPDATE votes SET option_id = ? WHERE id = ?", (option_id, vote_id))
        conn.commit()

    def vote_counts(self, conn: sqlite3.Connection, poll_id: str) -> dict[str, int]:
        rows = conn.execute(
            "SELECT option_id, COUNT(*) AS n FROM votes WHERE poll_id = ? GROUP BY option_id", (poll_id,)
        ).fetchall()
        return {r["option_id"]: r["n"] for r in rows}

    def voter_ids(self, conn: sqlite3.Connection, poll_id: str) -> list[str]:
        rows = conn.execute("SELECT DISTINCT user_id FROM votes WHERE poll_id = ?", (poll_id,)).fetchall()
        return [r[0] for r in rows]

    def count_by_status(self, conn: sqlite3.Connection, status: str) -> int:
        return conn.execute("SELECT COUNT(*) FROM polls WHERE status = ?", (status,)).fetchone()[0]


# ---------- GridRepository ----------


def _row_to_grid(r: sqlite3.Row) -> Grid:
    return Grid(
        id=r["id"],
        user_id=r["user_id"],
        type=r["type"],
        ranked_items=json.loads(r["ranked_items"]),
        blurb=r["blurb"],
        previous_state=json.loads(r["previous_state"]) if r["previous_state"] else None,
        created_at=_required_datetime(r["created_at"]),
        updated_at=_required_datetime(r["updated_at"]),
    )


class GridRepository:

    def create(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        grid_type: str,
        ranked_items: list[dict[str, str]],
        blurb: str | None,
        now: datetime | None = None,
    ) -> Grid:
        gid = _new_id()
        stamp = _stamp(now)
        conn.execute(
            """INSERT INTO grids (id, user_id, type, ranked_items, blurb, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (gid, user_id, grid_type, json.dumps(ranked_items), blurb, stamp, stamp),
        )
        conn.commit()
        created = _required_datetime(stamp)
        return self.get(conn, gid) or Grid(
            id=gid, user_id=user_id, type=grid_type, ranked_items=ranked_items,
            created_at=created, updated_at=created, blurb=blurb,
        )

    def update(
        self,
        conn: sqlite3.Connection,
        grid_id: str,
        ranked_items: list[dict[str, str]],
        blurb: str | None,
        previous_state: list[dict[str, str]] | None,
        now: datetime | None = None,
    ) -> None:
        conn.execute(
            "UPDATE grids SET ranked_items = ?, blurb = ?, previous_state = ?, updated_at = ? WHERE id = ?",
            (
                json.dumps(ranked_items), blurb,
                json.dumps(previous_state) if previous_state is not None else None,
                _stamp(now), grid_id,
            ),
        )
        conn.commit()

    def get(self, conn: sqlite3.Connection, grid_id: str) -> Grid | None:
        row = conn.execute("SELECT * FROM grids WHERE id = ?", (grid_id,)).fetchone()
        return _row_to_grid(row) if row else None

    def get_for_user(self, conn: sqlite3.Connection, user_id: str, grid_type: str) -> Grid | None:
        row = conn.execute("SELECT * FROM grids WHERE user_id = ? AND type = ?", (user_id, grid_type)).fetchone()
        return _row_to_grid(row) if row else None

    def list_for_user(self, conn: sqlite3.Connection, user_id: str) -> list[Grid]:
        rows = conn.execute("SELECT * FROM grids WHERE user_id = ? ORDER BY type", (user_id,)).fetchall()
        return [_row_to_grid(r) for r in rows]

    def list_by_type(self, conn: sqlite3.Connection, grid_type: str) -> list[Grid]:
        rows = conn.execute("SELECT * FROM grids WHERE type = ?", (grid_type,)).fetchall()
        return [_row_to_grid(r) for r in rows]

    def delete(self, conn: sqlite3.Connection, grid_id: str) -> bool:
        cur = conn.execute("DELETE FROM grids WHERE id = ?", (grid_id,))
        conn.commit()
        return cur.rowcount > 0

    def add_like(self, conn: sqlite3.Connection, grid_id: str, user_id: str, now: datetime | None = None) -> None:
        conn.execute(
            "INSERT INTO grid_likes (grid_id, user_id, created_at) VALUES (?, ?, ?)", (grid_id, user_id, _stamp(now))
        )
        conn.commit()

    def remove_like(self, conn: sqlite3.Connection, grid_id: str, user_id: str) -> bool:
        cur = conn.execute("DELETE FROM grid_likes WHERE grid_id = ? AND user_id = ?", (grid_id, user_id))
        conn.commit()
        return cur.rowcount > 0

    def like_count(self, conn: sqlite3.Connection, grid_id: str) -> int:
        return conn.execute("SELECT COUNT(*) FROM grid_likes WHERE grid_id = ?", (grid_id,)).fetchone()[0]

    def has_liked(self, conn: sqlite3.Connection, grid_id: str, user_id: str) -> bool:
        row = conn.execute("SELECT 1 FROM grid_likes WHERE grid_id = ? AND user_id = ?", (grid_id, user_id)).fetchone()
        return row is not None


# ---------- PostRepository ----------


def _row_to_post(r: sqlite3.Row) -> Post:
    return Post(
        id=r["id"], user_id=r["user_id"], content=r["content"],
        parent_page_type=r["parent_page_type"], parent_page_id=r["parent_page_id"],
        created_at=_required_datetime(r["created_at"]),
    )


class PostRepository:

    def create(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        content: str,
        parent_page_type: str | None = None,
        parent_page_id: str | None = None,
        now: datetime | None = None,
    ) -> Post:
        pid = _new_id()
        stamp = _stamp(now)
        conn.execute(
            """INSERT INTO posts (id, user_id, content, parent_page_type, parent_page_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (pid, user_id, content, parent_page_type, parent_page_id, stamp),
        )
        conn.commit()
        return Post(
            id=pid, user_id=user_id, content=content, parent_page_type=parent_page_type,
            parent_page_id=parent_page_id, created_at=_required_datetime(stamp),
        )

    def get(self, conn: sqlite3.Connection, post_id: str) -> Post | None:
        row = conn.execute("SELECT * FROM posts WHERE id = ?", (post_id,)).fetchone()
        return _row_to_post(row) if row else None

    def list_by_user(self, conn: sqlite3.Connection, user_id: str, limit: int = 50) -> list[Post]:
        rows = conn.execute(
            "SELECT * FROM posts WHERE user_id = ? ORDER BY created_at DESC LIMIT ?", (user_id, limit)
        ).fetchall()
        return [_row_to_post(r) for r in rows]

    def delete(self, conn: sqlite3.Connection, post_id: str) -> bool:
        cur = conn.execute("DELETE FROM posts WHERE id = ?", (post_id,))
        conn.commit()
        return cur.rowcount > 0


# ---------- CommentRepository ----------


def _row_to_comment(r: sqlite3.Row) -> Comment:
    return Comment(
        id=r["id"], entity_type=r["entity_type"], entity_id=r["entity_id"], author_id=r["author_id"],
        parent_id=r["parent_id"], content=r["content"], status=r["status"],
        created_at=_required_datetime(r["created_at"]),
    )


class CommentRepository:

    def create(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        author_id: str,
        content: str,
        parent_id: str | None = None,
        status: str = "approved",
        now: datetime | None = None,
    ) -> Comment:
        cid = _new_id()
        stamp = _stamp(now)
        conn.execute(
            """INSERT INTO comments (id, entity_type, entity_id, author_id, parent_id, content, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (cid, entity_type, entity_id, author_id, parent_id, content, status, stamp),
        )
        conn.commit()
        return Comment(
            id=cid, entity_type=entity_type, entity_id=entity_id, author_id=author_id, parent_id=parent_id,
            content=content, status=status, created_at=_required_datetime(stamp),
        )

    def get(self, conn: sqlite3.Connection, comment_id: str) -> Comment | None:
        row = conn.execute("SELECT * FROM comments WHERE id = ?", (comment_id,)).fetchone()
        return _row_to_comment(row) if row else None

    def list_for_entity(self, conn: sqlite3.Connection, entity_type: str, entity_id: str) -> list[Comment]:
        rows = conn.execute(
            """SELECT * FROM comments WHERE entity_type = ? AND entity_id = ? AND status = 'approved'
               ORDER BY created_at""",
            (entity_type, entity_id),
        ).fetchall()
        return [_row_to_comment(r) for r in rows]

    def list_with_stats(
        self,
        conn: sqlite3.Connection,
        since: datetime,
        exclude_author_id: str | None = None,
    ) -> list[CommentStats]:
        """
        Approved top-level comments since a cutoff with like and approved-reply counts,
        the entity's display name and the author's username.
        """
        rows = conn.execute(
            """SELECT c.*,
                      (SELECT COUNT(*) FROM comment_likes l WHERE l.comment_id = c.id) AS like_count,
                      (SELECT COUNT(*) FROM comments r WHERE r.parent_id = c.id AND r.status = 'approved') AS reply_count,
                      COALESCE(d.name, t.name, tr.name) AS entity_name,
                      u.username AS author_username
               FROM comments c
               LEFT JOIN drivers d ON c.entity_type = 'driver' AND d.id = c.entity_id
               LEFT JOIN teams t ON c.entity_type = 'team' AND t.id = c.entity_id
               LEFT JOIN tracks tr ON c.entity_type = 'track' AND tr.id = c.entity_id
               LEFT JOIN users u ON u.id = c.author_id
               WHERE c.status = 'approved' AND c.parent_id IS NULL AND c.created_at >= ?
                 AND c.author_id != ?
               ORDER BY c.created_at DESC""",
            (_stamp(since), exclude_author_id or ""),
        ).fetchall()
        return [
            CommentStats(
                comment=_row_to_comment(r),
                like_count=r["like_count"],
                reply_count=r["reply_count"],
                entity_name=r["entity_name"] or f"Unknown {r['entity_type'].replace('_', ' ').title()}",
                author_username=r["author_username"],
            )
            for r in rows
        ]

    def delete(self, conn: sqlite3.Connection, comment_id: str) -> bool:
        cur = conn.execute("DELETE FROM comments WHERE id = ?", (comment_id,))
        conn.commit()
        return cur.rowcount > 0

    def add_like(self, conn: sqlite3.Connection, comment_id: str, user_id: str, now: datetime | None = None) -> None:
        conn.execute(
            "INSERT INTO comment_likes (comment_id, user_id, created_at) VALUES (?, ?, ?)",
            (comment_id, user_id, _stamp(now)),
        )
        conn.commit()

    def remove_like(self, conn: sqlite3.Connection, comment_id: str, user_id: str) -> bool:
        cur = conn.execute("DELETE FROM comment_likes WHERE comment_id = ? AND user_id = ?", (comment_id, user_id))
        conn.commit()
        return cur.rowcount > 0

    def like_count(self, conn: sqlite3.Connection, comment_id: str) -> int:
        return conn.execute("SELECT COUNT(*) FROM comment_likes WHERE comment_id = ?", (comment_id,)).fetchone()[0]


# ---------- ReportRepository ----------


def _row_to_report(r: sqlite3.Row) -> Report:
    return Report(
        id=r["id"], reporter_id=r["reporter_id"], target_type=r["target_type"], target_id=r["target_id"],
        reason=r["reason"], status=r["status"], created_at=_required_datetime(r["created_at"]),
    )


class ReportRepository:

    def create(
        self,
        conn: sqlite3.Connection,
        reporter_id: str,
        target_type: str,
        target_id: str,
        reason: str,
        now: datetime | None = None,
    ) -> Report:
        stamp = _stamp(now)
        cur = conn.execute(
            "INSERT INTO reports (reporter_id, target_type, target_id, reason, created_at) VALUES (?, ?, ?, ?, ?)",
            (reporter_id, target_type, target_id, reason, stamp),
        )
        conn.commit()
        return self.get(conn, cur.lastrowid) or Report(
            id=cur.lastrowid, reporter_id=reporter_id, target_type=target_type, target_id=target_id,
            reason=reason, status="open", created_at=_required_datetime(stamp),
        )

    def get(self, conn: sqlite3.Connection, report_id: int) -> Report | None:
        row = conn.execute("SELECT * FROM reports WHERE id = ?", (report_id,)).fetchone()
        return _row_to_report(row) if row else None

    def list(self, conn: sqlite3.Connection, status: str | None = None, limit: int = 100) -> list[Report]:
        if status:
            rows = conn.execute(
                "SELECT * FROM reports WHERE status = ? ORDER BY created_at DESC LIMIT ?", (status, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM reports ORDER BY created_at DESC LIMIT ?", (limit,)).fetchall()
        return [_row_to_report(r) for r in rows]

    def set_status(self, conn: sqlite3.Connection, report_id: int, status: str) -> bool:
        cur = conn.execute("UPDATE reports SET status = ? WHERE id = ?", (status, report_id))
        conn.commit()
        return cur.rowcount > 0

    def count_by_status(self, conn: sqlite3.Connection, status: str) -> int:
        return conn.execute("SELECT COUNT(*) FROM reports WHERE status = ?", (status,)).fetchone()[0]


# ---------- TrackTipRepository ----------


def _row_to_tip(r: sqlite3.Row) -> TrackTip:
    return TrackTip(
        id=r["id"], track_id=r["track_id"], user_id=r["user_id"], tip_type=r["tip_type"],
        content=r["content"], status=r["status"], created_at=_required_datetime(r["created_at"]),
    )


class TrackTipRepository:

    def create(
        self,
        conn: sqlite3.Connection,
        track_id: str,
        user_id: str,
        tip_type: str,
        content: str,
        now: datetime | None = None,
    ) -> TrackTip:
        tid = _new_id()
        stamp = _stamp(now)
        conn.execute(
            "INSERT INTO track_tips (id, track_id, user_id, tip_type, content, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (tid, track_id, user_id, tip_type, content, stamp),
        )
        conn.commit()
        return self.get(conn, tid) or TrackTip(
            id=tid, track_id=track_id, user_id=user_id, tip_type=tip_type, content=content,
            status="pending", created_at=_required_datetime(stamp),
        )

    def get(self, conn: sqlite3.Connection, tip_id: str) -> TrackTip | None:
        row = conn.execute("SELECT * FROM track_tips WHERE id = ?", (tip_id,)).fetchone()
        return _row_to_tip(row) if row else None

    def list(self, conn: sqlite3.Connection, track_id: str | None = None, status: str | None = None) -> list[TrackTip]:
        clauses, args = [], []
        if track_id:
            clauses.append("track_id = ?")
            args.append(track_id)
        if status:
            clauses.append("status = ?")
            args.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = conn.execute(f"SELECT * FROM track_tips {where} ORDER BY created_at DESC", tuple(args)).fetchall()
        return [_row_to_tip(r) for r in rows]

    def set_status(self, conn: sqlite3.Connection, tip_id: str, status: str) -> bool:
        cur = conn.execute("UPDATE track_tips SET status = ? WHERE id = ?", (status, tip_id))
        conn.commit()
        return cur.rowcount > 0


# ---------- NotificationRepository ----------


_PREF_FIELDS = (
    "email_likes", "email_comments", "email_follows", "email_mentions", "email_poll_votes", "push_enabled",
)


def _row_to_notification(r: sqlite3.Row) -> Notification:
    return Notification(
        id=r["id"], user_id=r["user_id"], kind=r["kind"], actor_id=r["actor_id"],
        payload=json.loads(r["payload"] or "{}"), read_at=_parse_datetime(r["read_at"]),
        created_at=_required_datetime(r["created_at"]),
    )


class NotificationRepository:
    """Notifications, notification preferences and the outgoing email queue."""

    def create(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        kind: str,
        payload: dict[str, Any],
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Notification:
        nid = _new_id()
        stamp = _stamp(now)
        conn.execute(
            "INSERT INTO notifications (id, user_id, kind, actor_id, payload, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (nid, user_id, kind, actor_id, json.dumps(payload), stamp),
        )
        conn.commit()
        return Notification(
            id=nid, user_id=user_id, kind=kind, actor_id=actor_id, payload=payload,
            created_at=_required_datetime(stamp),
        )

    def get(self, conn: sqlite3.Connection, notification_id: str) -> Notification | None:
        row = conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
        return _row_to_notification(row) if row else None

    def list_for_user(
        self, conn: sqlite3.Connection, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        sql = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            sql += " AND read_at IS NULL"
        rows = conn.execute(sql + " ORDER BY created_at DESC LIMIT ?", (user_id, limit)).fetchall()
        return [_row_to_notification(r) for r in rows]

    def unread_count(self, conn: sqlite3.Connection, user_id: str) -> int:
        return conn.execute(
            "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND read_at IS NULL", (user_id,)
        ).fetchone()[0]

    def mark_read(self, conn: sqlite3.Connection, notification_id: str, now: datetime | None = None) -> None:
        conn.execute(
            "UPDATE notifications SET read_at = COALESCE(read_at, ?) WHERE id = ?", (_stamp(now), notification_id)
        )
        conn.commit()

    def mark_all_read(self, conn: sqlite3.Connection, user_id: str, now: datetime | None = None) -> int:
        cur = conn.execute(
            "UPDATE notifications SET read_at = ? WHERE user_id = ? AND read_at IS NULL", (_stamp(now), user_id)
        )
        conn.commit()
        return cur.rowcount

    def get_preferences(self, conn: sqlite3.Connection, user_id: str) -> NotificationPreferences | None:
        row = conn.execute("SELECT * FROM notification_preferences WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return NotificationPreferences(user_id=row["user_id"], **{f: bool(row[f]) for f in _PREF_FIELDS})

    def create_preferences(self, conn: sqlite3.Connection, user_id: str, now: datetime | None = None) -> NotificationPreferences:
        stamp = _stamp(now)
        conn.execute(
            "INSERT OR IGNORE INTO notification_preferences (user_id, created_at, updated_at) VALUES (?, ?, ?)",
            (user_id, stamp, stamp),
        )
        conn.commit()
        return self.get_preferences(conn, user_id) or NotificationPreferences(user_id=user_id)

    def update_preferences(
        self, conn: sqlite3.Connection, user_id: str, updates: dict[str, bool], now: datetime | None = None
    ) -> None:
        fields = {k: int(bool(v)) for k, v in updates.items() if k in _PREF_FIELDS}
        if not fields:
            return
        assignments = ", ".join(f"{k} = ?" for k in fields)
        conn.execute(
            f"UPDATE notification_preferences SET {assignments}, updated_at = ? WHERE user_id = ?",
            (*fields.values(), _stamp(now), user_id),
        )
        conn.commit()

    def enqueue_email(
        self,
        conn: sqlite3.Connection,
        to_email: str,
        template: str,
        payload: dict[str, Any],
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> str:
        eid = _new_id()
        conn.execute(
            "INSERT INTO email_queue (id, user_id, to_email, template, payload, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (eid, user_id, to_email, template, json.dumps(payload), _stamp(now)),
        )
        conn.commit()
        return eid

    def list_emails(self, conn: sqlite3.Connection, status: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        if status:
            rows = conn.execute(
                "SELECT * FROM email_queue WHERE status = ? ORDER BY created_at DESC LIMIT ?", (status, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM email_queue ORDER BY created_at DESC LIMIT ?", (limit,)).fetchall()
        return [{**dict(r), "payload": json.loads(r["payload"] or "{}")} for r in rows]

    def count_emails(self, conn: sqlite3.Connection, status: str) -> int:
        return conn.execute("SELECT COUNT(*) FROM email_queue WHERE status = ?", (status,)).fetchone()[0]


# ---------- EngagementRepository ----------


class EngagementRepository:
    """Fan point ledger, race check-ins and waitlist signups."""

    def record_points(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        activity_type: str,
        points: int,
        reference_id: str | None = None,
        now: datetime | None = None,
    ) -> None:
        conn.execute(
            """INSERT INTO point_events (id, user_id, activity_type, points, reference_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (_new_id(), user_id, activity_type, points, reference_id, _stamp(now)),
        )
        conn.commit()

    def has_points_for(self, conn: sqlite3.Connection, user_id: str, activity_type: str, reference_id: str | None) -> bool:
        row = conn.execute(
            "SELECT 1 FROM point_events WHERE user_id = ? AND activity_type = ? AND reference_id IS ?",
            (user_id, activity_type, reference_id),
        ).fetchone()
        return row is not None

    def points_history(self, conn: sqlite3.Connection, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        rows = conn.execute(
            "SELECT activity_type, points, reference_id, created_at FROM point_events "
            "WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def create_check_in(self, conn: sqlite3.Connection, user_id: str, track_id: str, now: datetime | None = None) -> None:
        conn.execute(
            "INSERT INTO check_ins (user_id, track_id, created_at) VALUES (?, ?, ?)", (user_id, track_id, _stamp(now))
        )
        conn.commit()

    def check_in_count(self, conn: sqlite3.Connection, track_id: str) -> int:
        return conn.execute("SELECT COUNT(*) FROM check_ins WHERE track_id = ?", (track_id,)).fetchone()[0]

    def add_waitlist(self, conn: sqlite3.Connection, email: str, now: datetime | None = None) -> bool:
        """False when the email was already on the list."""
        cur = conn.execute(
            "INSERT OR IGNORE INTO waitlist_signups (email, created_at) VALUES (?, ?)", (email.lower(), _stamp(now))
        )
        conn.commit()
        return cur.rowcount > 0
