"""
API integration tests.
Uses TestClient to avoid starting a server.
Requires: pip install httpx (for TestClient)
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

try:
    from fastapi.testclient import TestClient
    HAS_HTTPX = True
except (ImportError, RuntimeError):
    HAS_HTTPX = False

# Ensure project root on path
import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

pytestmark = pytest.mark.skipif(not HAS_HTTPX, reason="httpx required for TestClient")

from paddock import api
from paddock.api import app
from paddock.persistence.db import init_db, set_db_path
from paddock.rate_limit import FixedWindowLimiter, MinIntervalLimiter

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CATALOG = PROJECT_ROOT / "paddock" / "data" / "catalog.json"
PASSWORD = "Paddock2026"


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Use a temporary DB and fresh in-process limiter/chat state for each test."""
    db_path = tmp_path / "test.db"
    set_db_path(db_path)
    init_db(db_path=db_path, catalog_path=CATALOG)
    monkeypatch.setattr(api.accounts, "limiter", FixedWindowLimiter(100, 900))
    monkeypatch.setattr(api.polls, "vote_limiter", MinIntervalLimiter(0))
    monkeypatch.setattr(api.chat, "slow_mode", MinIntervalLimiter(0))
    monkeypatch.setattr(api.chat_hub, "batch_interval", 0)
    api.chat_hub.reset()
    yield db_path
    api.chat_hub.reset()


@pytest.fixture
def client():
    return TestClient(app)


def _signup(client, email: str, username: str | None = None) -> tuple[str, dict]:
    resp = client.post("/auth/signup", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    token = data["token"]
    if username:
        resp = client.patch("/profiles/me", json={"username": username}, headers=_auth(token))
        assert resp.status_code == 200, resp.text
    return token, data["user"]


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _open_chat_today(client, admin_token: str, track_id: str = "monza") -> None:
    today = datetime.now(timezone.utc).date()
    resp = client.patch(
        f"/admin/tracks/{track_id}",
        json={"start_date": (today - timedelta(days=1)).isoformat(), "end_date": (today + timedelta(days=1)).isoformat()},
        headers=_auth(admin_token),
    )
    assert resp.status_code == 200, resp.text


# ---------- Health / catalog ----------


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_catalog_lists(client):
    """Drivers carry their team name; teams and tracks come from the catalog file."""
    drivers = client.get("/drivers").json()["drivers"]
    leclerc = next(d for d in drivers if d["id"] == "leclerc")
    assert leclerc["team_name"] == "Ferrari"
    assert len(client.get("/teams").json()["teams"]) == 10
    tracks = client.get("/tracks").json()["tracks"]
    assert {"monza", "spa", "suzuka"} <= {t["id"] for t in tracks}


def test_upcoming_tracks(client):
    resp = client.get("/tracks/upcoming", params={"limit": 3})
    assert resp.status_code == 200
    tracks = resp.json()["tracks"]
    assert len(tracks) <= 3
    for t in tracks:
        assert "chat" in t
        assert "is_live" in t


# ---------- Auth ----------


def test_signup_login_me(client):
    token, user = _signup(client, "fan@example.com")
    assert user["email"] == "fan@example.com"
    assert "password_hash" not in user

    me = client.get("/auth/me", headers=_auth(token))
    assert me.status_code == 200
    assert me.json()["user"]["id"] == user["id"]
    assert me.json()["is_admin"] is False

    login = client.post("/auth/login", json={"email": "fan@example.com", "password": PASSWORD})
    assert login.status_code == 200
    bad = client.post("/auth/login", json={"email": "fan@example.com", "password": "Wrong2026x"})
    assert bad.status_code == 401
    assert bad.json()["detail"] == "Invalid email or password"


def test_signup_errors(client):
    _signup(client, "fan@example.com")
    assert client.post("/auth/signup", json={"email": "fan@example.com", "password": PASSWORD}).status_code == 409
    assert client.post("/auth/signup", json={"email": "not-an-email", "password": PASSWORD}).status_code == 422
    weak = client.post("/auth/signup", json={"email": "new@example.com", "password": "weak"})
    assert weak.status_code == 400


def test_me_requires_token(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers=_auth("garbage")).status_code == 401


def test_auth_rate_limit(client, monkeypatch):
    """The check endpoint only reports; failed logins are what use up the window."""
    monkeypatch.setattr(api.accounts, "limiter", FixedWindowLimiter(5, 900))
    bad = {"email": "nobody@example.com", "password": "WrongPass1"}
    statuses = []
    for _ in range(5):
        statuses.append(client.post("/auth/rate-limit", json={"endpoint": "login"}).status_code)
        statuses.append(client.post("/auth/login", json=bad).status_code)
    assert statuses == [200, 401] * 5
    resp = client.post("/auth/rate-limit", json={"endpoint": "login"})
    assert resp.status_code == 429
    assert resp.json()["detail"] == "Too many requests. Please try again later."
    assert client.post("/auth/login", json=bad).status_code == 429
    other_ip = client.post("/auth/rate-limit", json={"endpoint": "login"}, headers={"x-forwarded-for": "10.1.1.1"})
    assert other_ip.status_code == 200


def test_auth_rate_limit_check_alone_never_blocks(client, monkeypatch):
    monkeypatch.setattr(api.accounts, "limiter", FixedWindowLimiter(2, 900))
    for _ in range(6):
        assert client.post("/auth/rate-limit", json={"endpoint": "signup"}).status_code == 200


def test_password_reset_request_does_not_leak(client):
    _signup(client, "fan@example.com")
    known = client.post("/auth/password-reset/request", json={"email": "fan@example.com"})
    unknown = client.post("/auth/password-reset/request", json={"email": "ghost@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()


def test_reset_password_rejects_bad_token(client):
    resp = client.post(
        "/auth/reset-password",
        json={"token": "nope", "password": "NewPaddock1", "confirm_password": "NewPaddock1"},
    )
    assert resp.status_code == 401


# ---------- Profiles / social ----------


def test_onboarding_and_profile(client):
    token, _ = _signup(client, "fan@example.com")
    resp = client.post(
        "/onboarding",
        json={"username": "tifosi", "date_of_birth": "2000-05-05", "favorite_driver_id": "leclerc"},
        headers=_auth(token),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["user"]["points"] == 5

    profile = client.get("/profiles/tifosi")
    assert profile.status_code == 200
    assert profile.json()["favorite_driver_id"] == "leclerc"
    assert "email" not in profile.json()
    assert client.get("/profiles/nobody").status_code == 404


def test_onboarding_under_13_rejected(client):
    token, _ = _signup(client, "kid@example.com")
    young = (datetime.now(timezone.utc).date() - timedelta(days=365 * 10)).isoformat()
    resp = client.post("/onboarding", json={"username": "kid_fan", "date_of_birth": young}, headers=_auth(token))
    assert resp.status_code == 400


def test_follow_and_notifications(client):
    alice, _ = _signup(client, "alice@example.com", "alice")
    bob, _ = _signup(client, "bob@example.com", "bob")
    assert client.post("/profiles/bob/follow", headers=_auth(alice)).status_code == 200
    assert client.post("/profiles/bob/follow", headers=_auth(alice)).status_code == 409
    followers = client.get("/profiles/bob/followers").json()["followers"]
    assert [f["username"] for f in followers] == ["alice"]

    inbox = client.get("/notifications", headers=_auth(bob)).json()
    assert inbox["unread_count"] == 1
    assert inbox["notifications"][0]["kind"] == "follow"
    note_id = inbox["notifications"][0]["id"]
    assert client.post(f"/notifications/{note_id}/read", headers=_auth(alice)).status_code == 404
    assert client.post(f"/notifications/{note_id}/read", headers=_auth(bob)).status_code == 200
    assert client.get("/notifications", headers=_auth(bob)).json()["unread_count"] == 0

    assert client.delete("/profiles/bob/follow", headers=_auth(alice)).status_code == 200


def test_notification_preferences(client):
    token, _ = _signup(client, "fan@example.com")
    prefs = client.get("/notifications/preferences", headers=_auth(token)).json()
    assert prefs["email_likes"] is True
    updated = client.patch("/notifications/preferences", json={"email_likes": False}, headers=_auth(token)).json()
    assert updated["email_likes"] is False
    assert updated["email_follows"] is True


def test_comments_and_hot_feed(client):
    alice, _ = _signup(client, "alice@example.com", "alice")
    bob, _ = _signup(client, "bob@example.com", "bob")
    resp = client.post(
        "/comments",
        json={"entity_type": "track", "entity_id": "monza", "content": "Temple of speed"},
        headers=_auth(alice),
    )
    assert resp.status_code == 200, resp.text
    comment_id = resp.json()["id"]
    like = client.post(f"/comments/{comment_id}/like", headers=_auth(bob))
    assert like.json() == {"liked": True, "like_count": 1}

    hot = client.get("/comments/hot", params={"time_window": "day"}).json()
    assert hot["totalCount"] == 1
    assert hot["comments"][0]["entity_name"] == "Autodromo Nazionale Monza"
    assert hot["hasMore"] is False
    assert client.get("/comments/hot", params={"sort": "top"}).status_code == 400

    listed = client.get("/comments", params={"entity_type": "track", "entity_id": "monza"}).json()["comments"]
    assert listed[0]["like_count"] == 1


def test_posts(client):
    token, _ = _signup(client, "fan@example.com", "pitlane")
    assert client.post("/posts", json={"content": "Lights out"}, headers=_auth(token)).status_code == 200
    posts = client.get("/profiles/pitlane/posts").json()["posts"]
    assert [p["content"] for p in posts] == ["Lights out"]
    assert client.post("/posts", json={"content": "  "}, headers=_auth(token)).status_code == 400


# ---------- Polls ----------


def test_poll_with_one_option_rejected(client):
    token, _ = _signup(client, "fan@example.com")
    resp = client.post("/polls", json={"question": "Rain?", "options": ["Yes"]}, headers=_auth(token))
    assert resp.status_code == 400
    assert "at least 2 options" in resp.json()["detail"]


def test_poll_naive_expiry_stored_as_utc(client):
    token, _ = _signup(client, "fan@example.com")
    resp = client.post(
        "/polls",
        json={"question": "Rain at Spa?", "options": ["Yes", "No"], "expires_at": "2099-01-01T00:00:00"},
        headers=_auth(token),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["expires_at"] == "2099-01-01T00:00:00+00:00"
    past = client.post(
        "/polls",
        json={"question": "Rain?", "options": ["Yes", "No"], "expires_at": "2000-01-01T00:00:00"},
        headers=_auth(token),
    )
    assert past.status_code == 400


def test_poll_malformed_id_is_not_found(client):
    assert client.get("/polls/not-a-uuid").status_code == 404


def test_poll_vote_flow(client):
    author, _ = _signup(client, "author@example.com")
    voter, _ = _signup(client, "voter@example.com")
    poll = client.post(
        "/polls", json={"question": "Who wins?", "options": ["Norris", "Piastri"]}, headers=_auth(author)
    ).json()
    first, second = poll["options"][0]["id"], poll["options"][1]["id"]

    vote = client.post(f"/polls/{poll['id']}/vote", json={"option_id": first}, headers=_auth(voter)).json()
    assert vote["updated"] == "created"
    assert vote["totalVotes"] == 1
    vote = client.post(f"/polls/{poll['id']}/vote", json={"option_id": second}, headers=_auth(voter)).json()
    assert vote["updated"] == "updated"
    assert vote["voteCounts"][second] == 1

    detail = client.get(f"/polls/{poll['id']}", headers=_auth(voter)).json()
    assert detail["user_vote"] == second
    assert client.post(f"/polls/{poll['id']}/close", headers=_auth(voter)).status_code == 403
    closed = client.post(f"/polls/{poll['id']}/close", headers=_auth(author)).json()
    assert closed["notified"] == 1
    assert client.post(f"/polls/{poll['id']}/vote", json={"option_id": first}, headers=_auth(voter)).status_code == 400


# ---------- Grids ----------


def test_grid_save_and_community(client):
    token, user = _signup(client, "fan@example.com", "gridfan")
    resp = client.put("/grids/team", json={"item_ids": ["mclaren", "ferrari"]}, headers=_auth(token))
    assert resp.status_code == 200, resp.text
    grid = resp.json()["grid"]
    assert grid["ranked_items"][0] == {"id": "mclaren", "name": "McLaren"}

    community = client.get("/grids/community/team").json()
    assert community["ranking"][0]["id"] == "mclaren"
    assert client.get(f"/grids/{grid['id']}").json()["owner_username"] == "gridfan"
    assert [g["id"] for g in client.get("/profiles/gridfan/grids").json()["grids"]] == [grid["id"]]
    assert client.put("/grids/team", json={"item_ids": ["brawn"]}, headers=_auth(token)).status_code == 400


def test_leaderboard_and_points(client):
    token, _ = _signup(client, "fan@example.com", "checker")
    resp = client.post("/tracks/spa/check-in", headers=_auth(token))
    assert resp.json()["points_awarded"] == 5
    assert client.post("/tracks/spa/check-in", headers=_auth(token)).status_code == 409
    board = client.get("/leaderboard").json()["leaderboard"]
    assert board[0]["username"] == "checker"
    assert board[0]["points"] == 5
    mine = client.get("/profiles/me/points", headers=_auth(token)).json()
    assert mine["points"] == 5
    assert mine["history"][0]["activity_type"] == "check_in"


# ---------- Live chat ----------


def test_chat_send_and_poll(client):
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, _ = _signup(client, "fan@example.com")
    _open_chat_today(client, admin)
    assert client.get("/tracks/monza/chat/status").json()["mode"] == "open"

    resp = client.post(
        "/tracks/monza/chat/messages", json={"message": "Forza!", "client_nonce": "n-1"}, headers=_auth(fan)
    )
    assert resp.status_code == 200, resp.text
    msg = resp.json()
    again = client.post(
        "/tracks/monza/chat/messages", json={"message": "Forza!", "client_nonce": "n-1"}, headers=_auth(fan)
    ).json()
    assert again["id"] == msg["id"]
    messages = client.get("/tracks/monza/chat/messages").json()["messages"]
    assert [m["id"] for m in messages] == [msg["id"]]

    assert client.delete(f"/chat/messages/{msg['id']}", headers=_auth(fan)).status_code == 403
    assert client.delete(f"/chat/messages/{msg['id']}", headers=_auth(admin)).status_code == 200
    assert client.get("/tracks/monza/chat/messages").json()["messages"] == []


def test_chat_closed_outside_weekend(client):
    fan, _ = _signup(client, "fan@example.com")
    resp = client.post("/tracks/yas_marina/chat/messages", json={"message": "Too early"}, headers=_auth(fan))
    assert resp.status_code == 403


def test_chat_report_and_toggle(client):
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, _ = _signup(client, "fan@example.com")
    _open_chat_today(client, admin)
    msg = client.post("/tracks/monza/chat/messages", json={"message": "hmm"}, headers=_auth(fan)).json()
    assert client.post("/chat/report", json={"messageId": msg["id"], "reason": "spam"}, headers=_auth(admin)).status_code == 200
    assert client.post("/chat/report", json={"messageId": msg["id"], "reason": "spam"}, headers=_auth(admin)).status_code == 409

    assert client.post("/admin/chat/toggle", json={"trackId": "monza", "enabled": False}, headers=_auth(fan)).status_code == 403
    resp = client.post("/admin/chat/toggle", json={"trackId": "monza", "enabled": False}, headers=_auth(admin))
    assert resp.json()["status"]["mode"] == "closed"
    assert client.post("/tracks/monza/chat/messages", json={"message": "hello?"}, headers=_auth(fan)).status_code == 403


def test_admin_chat_room_modes_and_toggle(client):
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, _ = _signup(client, "fan@example.com")
    _open_chat_today(client, admin)
    assert client.put("/admin/chat/rooms/monza", json={"mode": "read_only"}, headers=_auth(fan)).status_code == 403
    assert client.put("/admin/chat/rooms/nowhere", json={"mode": "open"}, headers=_auth(admin)).status_code == 404
    assert client.put("/admin/chat/rooms/monza", json={"mode": "loud"}, headers=_auth(admin)).status_code == 400

    resp = client.put("/admin/chat/rooms/monza", json={"mode": "read_only"}, headers=_auth(admin))
    assert resp.status_code == 200, resp.text
    assert resp.json()["room"]["mode"] == "read_only"
    assert resp.json()["status"]["mode"] == "read_only"
    assert client.post("/tracks/monza/chat/messages", json={"message": "hi"}, headers=_auth(fan)).status_code == 403

    # Toggling rewrites the mode of the existing room
    client.post("/admin/chat/toggle", json={"trackId": "monza", "enabled": False}, headers=_auth(admin))
    resp = client.post("/admin/chat/toggle", json={"trackId": "monza", "enabled": True}, headers=_auth(admin))
    assert resp.json()["status"]["mode"] == "open"
    assert client.post("/tracks/monza/chat/messages", json={"message": "hi"}, headers=_auth(fan)).status_code == 200


def test_admin_chat_room_slow_mode(client):
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, _ = _signup(client, "fan@example.com")
    _open_chat_today(client, admin)
    resp = client.put("/admin/chat/rooms/monza", json={"mode": "open", "slowModeMs": 60000}, headers=_auth(admin))
    assert resp.json()["status"]["slow_mode_ms"] == 60000
    first = client.post("/tracks/monza/chat/messages", json={"message": "one"}, headers=_auth(fan))
    assert first.status_code == 200
    second = client.post("/tracks/monza/chat/messages", json={"message": "two"}, headers=_auth(fan))
    assert second.status_code == 429


def test_admin_chat_logs(client):
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, fan_user = _signup(client, "fan@example.com", username="tifosi")
    _open_chat_today(client, admin)
    first = client.post("/tracks/monza/chat/messages", json={"message": "first"}, headers=_auth(fan)).json()
    second = client.post("/tracks/monza/chat/messages", json={"message": "second"}, headers=_auth(fan)).json()
    client.delete(f"/chat/messages/{first['id']}", headers=_auth(admin))

    assert client.get("/admin/chat/monza/logs", headers=_auth(fan)).status_code == 403
    assert client.get("/admin/chat/nowhere/logs", headers=_auth(admin)).status_code == 404
    logs = client.get("/admin/chat/monza/logs", headers=_auth(admin)).json()["messages"]
    assert [m["id"] for m in logs] == [first["id"], second["id"]]
    assert logs[0]["deleted_at"] is not None
    assert logs[0]["deleted_by"] is not None
    assert logs[1]["deleted_at"] is None
    assert logs[1]["user"] == {"id": fan_user["id"], "username": "tifosi", "profile_image_url": None}


def test_chat_websocket_snapshot_and_send(client):
    """Connect, get status + history, send over the socket and see the batch and ack."""
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, _ = _signup(client, "fan@example.com")
    _open_chat_today(client, admin)
    earlier = client.post("/tracks/monza/chat/messages", json={"message": "first"}, headers=_auth(fan)).json()

    with client.websocket_connect(f"/ws/chat/monza?token={fan}") as ws:
        status = ws.receive_json()
        assert status["event"] == "chat_status"
        assert status["payload"]["mode"] == "open"
        snapshot = ws.receive_json()
        assert snapshot["event"] == "chat_snapshot"
        assert [m["id"] for m in snapshot["payload"]["messages"]] == [earlier["id"]]

        ws.send_json({"type": "send", "message": "second", "client_nonce": "ws-1"})
        events = [ws.receive_json(), ws.receive_json()]
        kinds = {e["event"] for e in events}
        assert kinds == {"chat_batch", "chat_ack"}
        ack = next(e for e in events if e["event"] == "chat_ack")
        assert ack["payload"]["message"] == "second"


def test_chat_websocket_anonymous_cannot_send(client):
    with client.websocket_connect("/ws/chat/monza") as ws:
        ws.receive_json()
        ws.receive_json()
        ws.send_json({"type": "send", "message": "hi"})
        error = ws.receive_json()
        assert error["event"] == "error"
        assert error["payload"]["status"] == 401


# ---------- Feed ----------


def test_feed_sections(client):
    token, _ = _signup(client, "fan@example.com", "feeder")
    resp = client.get("/feed", headers=_auth(token))
    assert resp.status_code == 200
    feed = resp.json()
    assert feed["errors"] == []
    for section in ("hot_comments", "live_polls", "community_grids", "upcoming_race", "leaderboard"):
        assert section in feed
    assert set(feed["community_grids"]) == {"driver", "team", "track"}


# ---------- Reports / admin ----------


def test_reports_and_admin_removal(client):
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, _ = _signup(client, "fan@example.com", "poster")
    post = client.post("/posts", json={"content": "off topic"}, headers=_auth(fan)).json()
    report = client.post(
        "/reports", json={"target_type": "post", "target_id": post["id"], "reason": "spam"}, headers=_auth(fan)
    )
    assert report.status_code == 200, report.text

    assert client.get("/admin/reports", headers=_auth(fan)).status_code == 403
    reports = client.get("/admin/reports", headers=_auth(admin)).json()["reports"]
    assert [r["target_id"] for r in reports] == [post["id"]]
    removed = client.post("/admin/reports/remove", json={"reportId": reports[0]["id"]}, headers=_auth(admin))
    assert removed.json()["report"]["status"] == "resolved_removed"
    assert client.get("/profiles/poster/posts").json()["posts"] == []


def test_admin_user_actions_and_metrics(client):
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, fan_user = _signup(client, "fan@example.com")
    resp = client.post(
        "/admin/users/actions", json={"action": "adjust_points", "userId": fan_user["id"], "deltaPoints": 12},
        headers=_auth(admin),
    )
    assert resp.json()["profile"]["points"] == 12
    client.post("/admin/users/actions", json={"action": "ban", "userId": fan_user["id"]}, headers=_auth(admin))
    assert client.post("/posts", json={"content": "am I banned?"}, headers=_auth(fan)).status_code == 403

    metrics = client.get("/admin/metrics", headers=_auth(admin)).json()
    assert metrics["users"] == 2
    assert "chat_messages_24h" in metrics


def test_track_tips_review(client):
    admin, _ = _signup(client, "steward@whosonpole.org")
    fan, _ = _signup(client, "fan@example.com")
    tip = client.post(
        "/tracks/silverstone/tips", json={"tip_type": "transit", "content": "Get the shuttle bus"}, headers=_auth(fan)
    ).json()
    assert client.get("/tracks/silverstone/tips").json()["tips"] == []
    pending = client.get("/admin/track-tips", headers=_auth(admin)).json()["tips"]
    assert [t["id"] for t in pending] == [tip["id"]]
    client.post(f"/admin/track-tips/{tip['id']}/review", json={"approve": True}, headers=_auth(admin))
    assert [t["id"] for t in client.get("/tracks/silverstone/tips").json()["tips"]] == [tip["id"]]


# ---------- Waitlist ----------


def test_contact_form(client):
    assert client.post("/contact-form-handler", data={"email": "Fan@Example.com"}).json() == {"ok": True}
    assert client.post("/contact-form-handler", data={"email": "fan@example.com"}).json() == {"ok": True}
    assert client.post("/contact-form-handler", data={"email": "bot@example.com", "website": "spam"}).status_code == 200
    assert client.post("/contact-form-handler", data={"email": ""}).status_code == 400


def test_coming_soon_subscribe(client):
    resp = client.post("/coming-soon/subscribe", json={"email": "fan@example.com"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert client.post("/coming-soon/subscribe", json={"email": "nope"}).status_code == 422


# ---------- Background sweep ----------


class _StopSweep(BaseException):
    pass


def test_poll_expiry_loop_keeps_running_after_errors(monkeypatch, caplog):
    calls = []

    def flaky_close_expired(conn, now=None):
        calls.append(len(calls))
        if len(calls) == 1:
            raise ValueError("bad row")
        if len(calls) == 3:
            raise _StopSweep()
        return []

    monkeypatch.setattr(api.polls, "close_expired", flaky_close_expired)
    with pytest.raises(_StopSweep):
        asyncio.run(api._poll_expiry_loop(0))
    assert len(calls) == 3
    assert "Poll expiry sweep failed" in caplog.text
