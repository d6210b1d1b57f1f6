"""
Tests for race weekend windows, chat status and countdown labels.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from paddock.models import ChatRoom, Track
from paddock.race_weekend import (
    chat_status,
    format_time_until,
    is_race_weekend_active,
    parse_track_date,
    race_weekend_window,
)

MONZA = Track(id="monza", name="Monza", start_date="2026-09-04", end_date="2026-09-06")
START = datetime(2026, 9, 4, tzinfo=timezone.utc)
END = datetime(2026, 9, 7, tzinfo=timezone.utc)


def test_parse_track_date_date_only_is_utc_midnight():
    assert parse_track_date("2026-09-04") == START
    assert parse_track_date("2026-09-04T13:00:00Z") == datetime(2026, 9, 4, 13, tzinfo=timezone.utc)
    assert parse_track_date(None) is None


def test_window_runs_until_day_after_end():
    assert race_weekend_window(MONZA) == (START, END)
    assert race_weekend_window(Track(id="x", name="X")) == (None, None)


def test_is_race_weekend_active():
    assert is_race_weekend_active(MONZA, START + timedelta(hours=1))
    assert is_race_weekend_active(MONZA, END)
    assert not is_race_weekend_active(MONZA, END + timedelta(seconds=1))
    disabled = Track(id="monza", name="Monza", start_date="2026-09-04", end_date="2026-09-06", chat_enabled=False)
    assert not is_race_weekend_active(disabled, START + timedelta(hours=1))


def test_chat_status_before_during_after():
    before = chat_status(MONZA, None, START - timedelta(days=1))
    assert before.mode == "closed"
    assert before.reason == "not_started"
    assert before.opens_at == START

    during = chat_status(MONZA, None, START + timedelta(hours=5), default_slow_mode_ms=2000)
    assert during.mode == "open"
    assert during.slow_mode_ms == 2000

    grace = chat_status(MONZA, None, END + timedelta(hours=3))
    assert grace.mode == "read_only"
    assert grace.reason == "ended"

    after = chat_status(MONZA, None, END + timedelta(hours=25))
    assert after.mode == "closed"


def test_chat_status_room_overrides():
    now = START + timedelta(hours=5)
    assert chat_status(MONZA, ChatRoom(track_id="monza", mode="closed"), now).reason == "closed_by_admin"
    assert chat_status(MONZA, ChatRoom(track_id="monza", mode="read_only"), now).mode == "read_only"
    slow = chat_status(MONZA, ChatRoom(track_id="monza", slow_mode_ms=5000), now, default_slow_mode_ms=1000)
    assert slow.slow_mode_ms == 5000


def test_chat_status_disabled_and_unscheduled():
    disabled = Track(id="spa", name="Spa", start_date="2026-07-17", end_date="2026-07-19", chat_enabled=False)
    assert chat_status(disabled, None, START).reason == "disabled"
    assert chat_status(Track(id="tbd", name="TBD"), None, START).reason == "no_schedule"


def test_chat_status_to_dict():
    d = chat_status(MONZA, None, START + timedelta(hours=1)).to_dict()
    assert d["mode"] == "open"
    assert d["opens_at"] == START.isoformat()
    assert d["closes_at"] == END.isoformat()


def test_format_time_until():
    now = datetime(2026, 9, 1, tzinfo=timezone.utc)
    assert format_time_until(now + timedelta(days=2, hours=4), now) == "2d 4h"
    assert format_time_until(now + timedelta(hours=3, minutes=15), now) == "3h 15m"
    assert format_time_until(now + timedelta(minutes=42), now) == "42m"
    assert format_time_until(now - timedelta(minutes=1), now) == ""
    assert format_time_until(None, now) == ""
