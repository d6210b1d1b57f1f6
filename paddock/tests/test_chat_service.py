"""
Tests for live chat: status gating, idempotent send, slow mode, deletes, reports, admin toggle.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from paddock.chat.hub import ChatHub
from paddock.errors import ConflictError, NotFoundError, PermissionDenied, RateLimited, ValidationFailed
from paddock.persistence.db import get_connection, init_db, set_db_path
from paddock.persistence.repositories import ChatRepository, UserRepository
from paddock.services.chat_service import ChatService

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CATALOG = PROJECT_ROOT / "paddock" / "data" / "catalog.json"

# Monza weekend in the bundled catalog: 2026-09-04 .. 2026-09-06
DURING = datetime(2026, 9, 5, 14, 0, tzinfo=timezone.utc)
BEFORE = datetime(2026, 9, 1, tzinfo=timezone.utc)
GRACE = datetime(2026, 9, 7, 12, 0, tzinfo=timezone.utc)


class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)


@pytest.fixture
def db_conn(tmp_path):
    db_path = tmp_path / "chat_test.db"
    set_db_path(db_path)
    init_db(db_path=db_path, catalog_path=CATALOG)
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def hub():
    return ChatHub(batch_interval_ms=0)


@pytest.fixture
def chat(hub):
    return ChatService(hub)


@pytest.fixture
def fan(db_conn):
    repo = UserRepository()
    user = repo.create(db_conn, "fan@example.com", "x")
    repo.update_profile(db_conn, user.id, {"username": "tifosi", "display_name": "Tifosi"})
    return repo.get(db_conn, user.id)


@pytest.fixture
def admin(db_conn):
    return UserRepository().create(db_conn, "admin@example.com", "x", role="admin")


def test_status_by_schedule(db_conn, chat):
    assert chat.status(db_conn, "monza", BEFORE).reason == "not_started"
    assert chat.status(db_conn, "monza", DURING).mode == "open"
    assert chat.status(db_conn, "monza", GRACE).mode == "read_only"
    with pytest.raises(NotFoundError):
        chat.status(db_conn, "imola", DURING)


def test_send_message_broadcasts_batch(db_conn, chat, hub, fan):
    sock = FakeSocket()
    hub.subscribe("monza", sock)
    row = asyncio.run(chat.send_message(db_conn, fan, "monza", "  Forza Ferrari!  ", "n-1", now=DURING))
    assert row["message"] == "Forza Ferrari!"
    assert row["display_name"] == "Tifosi"
    assert sock.sent[0]["event"] == "chat_batch"
    assert sock.sent[0]["payload"]["messages"][0]["id"] == row["id"]
    assert [m["id"] for m in chat.recent_messages(db_conn, "monza")] == [row["id"]]


def test_send_message_is_idempotent_per_nonce(db_conn, chat, fan):
    first = asyncio.run(chat.send_message(db_conn, fan, "monza", "hello", "same", now=DURING))
    again = asyncio.run(chat.send_message(db_conn, fan, "monza", "hello", "same", now=DURING))
    assert again["id"] == first["id"]
    assert len(chat.recent_messages(db_conn, "monza")) == 1


def test_send_rejected_outside_window_and_when_read_only(db_conn, chat, fan):
    with pytest.raises(PermissionDenied, match="Chat is closed"):
        asyncio.run(chat.send_message(db_conn, fan, "monza", "early", now=BEFORE))
    with pytest.raises(PermissionDenied, match="read-only"):
        asyncio.run(chat.send_message(db_conn, fan, "monza", "late", now=GRACE))


def test_send_validates_text(db_conn, chat, fan):
    with pytest.raises(ValidationFailed, match="empty"):
        asyncio.run(chat.send_message(db_conn, fan, "monza", "   ", now=DURING))
    with pytest.raises(ValidationFailed, match="500"):
        asyncio.run(chat.send_message(db_conn, fan, "monza", "x" * 501, now=DURING))


def test_slow_mode(db_conn, chat, fan, admin):
    asyncio.run(chat.update_room(db_conn, admin, "monza", "open", slow_mode_ms=60_000, now=DURING))
    asyncio.run(chat.send_message(db_conn, fan, "monza", "one", now=DURING))
    with pytest.raises(RateLimited, match="Slow mode"):
        asyncio.run(chat.send_message(db_conn, fan, "monza", "two", now=DURING))


def test_admin_delete_broadcasts_and_hides(db_conn, chat, hub, fan, admin):
    row = asyncio.run(chat.send_message(db_conn, fan, "monza", "spam", now=DURING))
    sock = FakeSocket()
    hub.subscribe("monza", sock)
    with pytest.raises(PermissionDenied):
        asyncio.run(chat.delete_message(db_conn, fan, row["id"]))
    asyncio.run(chat.delete_message(db_conn, admin, row["id"]))
    assert sock.sent[-1]["event"] == "message_deleted"
    assert sock.sent[-1]["payload"]["messageId"] == row["id"]
    assert chat.recent_messages(db_conn, "monza") == []
    assert hub.snapshot("monza") == []


def test_report_message_once(db_conn, chat, fan, admin):
    row = asyncio.run(chat.send_message(db_conn, fan, "monza", "rude", now=DURING))
    chat.report_message(db_conn, admin, row["id"], "abuse")
    with pytest.raises(ConflictError, match="already reported"):
        chat.report_message(db_conn, admin, row["id"], "abuse")
    with pytest.raises(ValidationFailed):
        chat.report_message(db_conn, admin, row["id"], "  ")
    with pytest.raises(NotFoundError):
        chat.report_message(db_conn, admin, 9999, "abuse")


def test_toggle_chat(db_conn, chat, hub, fan, admin):
    sock = FakeSocket()
    hub.subscribe("monza", sock)
    result = asyncio.run(chat.toggle_chat(db_conn, admin, "monza", False, now=DURING))
    assert result["enabled"] is False
    assert result["status"]["reason"] == "disabled"
    assert sock.sent[-1]["event"] == "chat_status"
    with pytest.raises(PermissionDenied):
        asyncio.run(chat.send_message(db_conn, fan, "monza", "hello?", now=DURING))

    result = asyncio.run(chat.toggle_chat(db_conn, admin, "monza", True, now=DURING))
    assert result["status"]["mode"] == "open"
    with pytest.raises(PermissionDenied):
        asyncio.run(chat.toggle_chat(db_conn, fan, "monza", True, now=DURING))


def test_update_room(db_conn, chat, hub, fan, admin):
    sock = FakeSocket()
    hub.subscribe("monza", sock)
    result = asyncio.run(chat.update_room(db_conn, admin, "monza", "read_only", now=DURING))
    assert result["room"]["mode"] == "read_only"
    assert result["status"]["mode"] == "read_only"
    assert sock.sent[-1]["event"] == "chat_status"
    with pytest.raises(PermissionDenied, match="read-only"):
        asyncio.run(chat.send_message(db_conn, fan, "monza", "hi", now=DURING))

    opens = datetime(2026, 9, 4, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    result = asyncio.run(chat.update_room(db_conn, admin, "monza", "open", opens_at=opens, closes_at=opens + timedelta(days=3), now=DURING))
    assert result["room"]["opens_at"] == "2026-09-04T10:00:00+00:00"
    assert ChatRepository().get_room(db_conn, "monza").mode == "open"

    with pytest.raises(ValidationFailed):
        asyncio.run(chat.update_room(db_conn, admin, "monza", "open", opens_at=opens, closes_at=opens, now=DURING))
    with pytest.raises(ValidationFailed):
        asyncio.run(chat.update_room(db_conn, admin, "monza", "shouting", now=DURING))
    with pytest.raises(NotFoundError):
        asyncio.run(chat.update_room(db_conn, admin, "nowhere", "open", now=DURING))
    with pytest.raises(PermissionDenied):
        asyncio.run(chat.update_room(db_conn, fan, "monza", "closed", now=DURING))


def test_banned_user_cannot_chat(db_conn, chat, fan):
    UserRepository().set_banned_until(db_conn, fan.id, DURING + timedelta(days=1))
    banned = UserRepository().get(db_conn, fan.id)
    with pytest.raises(PermissionDenied, match="suspended"):
        asyncio.run(chat.send_message(db_conn, banned, "monza", "hi", now=DURING))
