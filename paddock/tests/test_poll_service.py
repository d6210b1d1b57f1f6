"""
Tests for polls: creation rules, voting (create/move/throttle), closing and notifications.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from paddock.errors import NotFoundError, PermissionDenied, RateLimited, ValidationFailed
from paddock.persistence.db import get_connection, init_db, set_db_path
from paddock.persistence.repositories import NotificationRepository, UserRepository
from paddock.rate_limit import MinIntervalLimiter
from paddock.services.poll_service import PollService

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CATALOG = PROJECT_ROOT / "paddock" / "data" / "catalog.json"
NOW = datetime.now(timezone.utc)


@pytest.fixture
def db_conn(tmp_path):
    db_path = tmp_path / "polls_test.db"
    set_db_path(db_path)
    init_db(db_path=db_path, catalog_path=CATALOG)
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def polls():
    return PollService(vote_limiter=MinIntervalLimiter(0))


@pytest.fixture
def author(db_conn):
    return UserRepository().create(db_conn, "author@example.com", "x")


@pytest.fixture
def voter(db_conn):
    return UserRepository().create(db_conn, "voter@example.com", "x")


@pytest.fixture
def poll(db_conn, polls, author):
    return polls.create(db_conn, author, "Who takes pole at Monza?", ["Leclerc", "Norris", "Verstappen"])


def test_create_poll_with_options_in_order(poll):
    assert poll.status == "live"
    assert [o.label for o in poll.options] == ["Leclerc", "Norris", "Verstappen"]
    assert [o.position for o in poll.options] == [1, 2, 3]


def test_create_poll_rejects_single_option(db_conn, polls, author):
    with pytest.raises(ValidationFailed, match="at least 2 options"):
        polls.create(db_conn, author, "Yes?", ["Yes", "   "])


def test_create_poll_rejects_unknown_status(db_conn, polls, author):
    with pytest.raises(ValidationFailed):
        polls.create(db_conn, author, "Q?", ["a", "b"], status="closed")


def test_vote_then_change_vote(db_conn, polls, poll, voter):
    """Second vote moves the existing vote instead of adding one."""
    first, second = poll.options[0].id, poll.options[1].id
    result = polls.vote(db_conn, voter, poll.id, first)
    assert result["updated"] == "created"
    assert result["voteCounts"][first] == 1
    assert result["totalVotes"] == 1

    result = polls.vote(db_conn, voter, poll.id, second)
    assert result["updated"] == "updated"
    assert result["voteCounts"] == {poll.options[0].id: 0, second: 1, poll.options[2].id: 0}
    assert result["totalVotes"] == 1

    detail = polls.detail(db_conn, poll.id, viewer=voter)
    assert detail["user_vote"] == second
    assert detail["total_votes"] == 1


def test_vote_awards_points_once(db_conn, polls, poll, voter):
    polls.vote(db_conn, voter, poll.id, poll.options[0].id)
    polls.vote(db_conn, voter, poll.id, poll.options[1].id)
    assert UserRepository().get(db_conn, voter.id).points == 2


def test_vote_throttled(db_conn, author, voter):
    polls = PollService(vote_limiter=MinIntervalLimiter(60))
    poll = polls.create(db_conn, author, "Safety car?", ["Yes", "No"])
    polls.vote(db_conn, voter, poll.id, poll.options[0].id)
    with pytest.raises(RateLimited, match="Please wait"):
        polls.vote(db_conn, voter, poll.id, poll.options[1].id)


def test_vote_rejects_invalid_option(db_conn, polls, poll, voter):
    with pytest.raises(ValidationFailed, match="Invalid option"):
        polls.vote(db_conn, voter, poll.id, "not-an-option")


def test_vote_rejects_draft_and_expired(db_conn, polls, author, voter):
    draft = polls.create(db_conn, author, "Draft?", ["a", "b"], status="draft")
    with pytest.raises(ValidationFailed, match="not accepting votes"):
        polls.vote(db_conn, voter, draft.id, draft.options[0].id)

    expiring = polls.create(db_conn, author, "Soon?", ["a", "b"], expires_at=NOW + timedelta(hours=1), now=NOW)
    with pytest.raises(ValidationFailed, match="expired"):
        polls.vote(db_conn, voter, expiring.id, expiring.options[0].id, now=NOW + timedelta(hours=2))


def test_banned_user_cannot_vote(db_conn, polls, poll, voter):
    UserRepository().set_banned_until(db_conn, voter.id, NOW + timedelta(days=1))
    banned = UserRepository().get(db_conn, voter.id)
    with pytest.raises(PermissionDenied):
        polls.vote(db_conn, banned, poll.id, poll.options[0].id)


def test_close_requires_author(db_conn, polls, poll, voter):
    with pytest.raises(PermissionDenied):
        polls.close(db_conn, voter, poll.id)


def test_close_notifies_voters(db_conn, polls, poll, author, voter):
    polls.vote(db_conn, voter, poll.id, poll.options[2].id)
    result = polls.close(db_conn, author, poll.id)
    assert result["notified"] == 1
    assert result["poll"]["status"] == "closed"

    repo = NotificationRepository()
    notes = repo.list_for_user(db_conn, voter.id)
    assert len(notes) == 1
    assert notes[0].kind == "poll_results"
    assert notes[0].payload["winning_option"] == "Verstappen"
    emails = repo.list_emails(db_conn)
    assert [e["template"] for e in emails] == ["notification_poll_results"]

    with pytest.raises(ValidationFailed, match="already closed"):
        polls.close(db_conn, author, poll.id)


def test_close_expired(db_conn, polls, author):
    expiring = polls.create(db_conn, author, "Soon?", ["a", "b"], expires_at=NOW + timedelta(minutes=5), now=NOW)
    open_poll = polls.create(db_conn, author, "Later?", ["a", "b"])
    closed = polls.close_expired(db_conn, now=NOW + timedelta(minutes=10))
    assert closed == [expiring.id]
    assert polls.detail(db_conn, open_poll.id)["status"] == "live"
    assert polls.close_expired(db_conn, now=NOW + timedelta(minutes=10)) == []


def test_close_expired_with_offset_expiry(db_conn, polls, author):
    created = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)
    cest = timezone(timedelta(hours=2))
    past = polls.create(db_conn, author, "Q1?", ["a", "b"], expires_at=datetime(2026, 7, 1, 14, 30, tzinfo=cest), now=created)
    future = polls.create(db_conn, author, "Q2?", ["a", "b"], expires_at=datetime(2026, 7, 1, 16, 0, tzinfo=cest), now=created)
    assert polls.detail(db_conn, past.id)["expires_at"] == "2026-07-01T12:30:00+00:00"
    closed = polls.close_expired(db_conn, now=datetime(2026, 7, 1, 13, 0, tzinfo=timezone.utc))
    assert closed == [past.id]
    assert polls.detail(db_conn, future.id)["status"] == "live"


def test_naive_expiry_is_read_as_utc(db_conn, polls, author):
    created = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)
    poll = polls.create(db_conn, author, "Q?", ["a", "b"], expires_at=datetime(2026, 7, 1, 13, 0), now=created)
    assert polls.detail(db_conn, poll.id)["expires_at"] == "2026-07-01T13:00:00+00:00"
    with pytest.raises(ValidationFailed):
        polls.create(db_conn, author, "Q?", ["a", "b"], expires_at=datetime(2026, 7, 1, 11, 0), now=created)


def test_detail_rejects_malformed_id(db_conn, polls):
    with pytest.raises(NotFoundError):
        polls.detail(db_conn, "not-a-uuid")


def test_list_polls_by_status(db_conn, polls, poll, author):
    polls.create(db_conn, author, "Draft?", ["a", "b"], status="draft")
    live = polls.list(db_conn, status="live")
    assert [p["id"] for p in live] == [poll.id]
    assert live[0]["total_votes"] == 0
    assert len(polls.list(db_conn)) == 2
