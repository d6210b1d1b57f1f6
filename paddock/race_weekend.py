"""
Race weekend windows and live chat status.
A track's chat opens at start_date and stays open until 24h after end_date;
after that it is read-only for a grace period, then closed.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from paddock.models import ChatMode, ChatRoom, Track


@dataclass
class ChatStatus:
    mode: str  # ChatMode value
    opens_at: datetime | None = None
    closes_at: datetime | None = None
    slow_mode_ms: int = 0
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": ChatMode(self.mode).value,
            "opens_at": self.opens_at.isoformat() if self.opens_at else None,
            "closes_at": self.closes_at.isoformat() if self.closes_at else None,
            "slow_mode_ms": self.slow_mode_ms,
            "reason": self.reason,
        }


def parse_track_date(value: str | None) -> datetime | None:
    """Date-only strings are UTC midnight so the window does not shift with local time."""
    if not value:
        return None
    if len(value) <= 10:
        return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def race_weekend_window(track: Track) -> tuple[datetime | None, datetime | None]:
    start = parse_track_date(track.start_date)
    end_day = parse_track_date(track.end_date)
    if start is None or end_day is None:
        return None, None
    return start, end_day + timedelta(hours=24)


def is_race_weekend_active(track: Track, now: datetime) -> bool:
    if not track.chat_enabled:
        return False
    start, end = race_weekend_window(track)
    if start is None or end is None:
        return False
    return start <= now <= end


def chat_status(
    track: Track,
    room: ChatRoom | None,
    now: datetime,
    grace_hours: int = 24,
    default_slow_mode_ms: int = 0,
) -> ChatStatus:
    slow_mode_ms = room.slow_mode_ms if room and room.slow_mode_ms is not None else default_slow_mode_ms
    if not track.chat_enabled:
        return ChatStatus(mode=ChatMode.CLOSED, reason="disabled")
    if room is not None and room.mode == ChatMode.CLOSED:
        return ChatStatus(mode=ChatMode.CLOSED, reason="closed_by_admin")
    start, end = race_weekend_window(track)
    if start is None or end is None:
        return ChatStatus(mode=ChatMode.CLOSED, reason="no_schedule")
    if now < start:
        return ChatStatus(mode=ChatMode.CLOSED, opens_at=start, closes_at=end, reason="not_started")
    if now <= end:
        mode = ChatMode.READ_ONLY if room is not None and room.mode == ChatMode.READ_ONLY else ChatMode.OPEN
        return ChatStatus(mode=mode, opens_at=start, closes_at=end, slow_mode_ms=slow_mode_ms)
    if now <= end + timedelta(hours=grace_hours):
        return ChatStatus(mode=ChatMode.READ_ONLY, opens_at=start, closes_at=end, reason="ended")
    return ChatStatus(mode=ChatMode.CLOSED, opens_at=start, closes_at=end, reason="ended")


def format_time_until(target: datetime | None, now: datetime) -> str:
    """Countdown label: '2d 4h', '3h 15m', '42m'. Empty when target is missing or past."""
    if target is None:
        return ""
    seconds = int((target - now).total_seconds())
    if seconds < 0:
        return ""
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
