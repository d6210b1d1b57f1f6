"""
REST and WebSocket API for the F1 fan community backend.
Thin wrappers around the services and repositories.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncGenerator, Generator

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from paddock.auth import decode_token
from paddock.chat.hub import EVENT_SNAPSHOT, EVENT_STATUS, ChatHub
from paddock.config import get_settings
from paddock.errors import PaddockError
from paddock.logging_config import configure_logging
from paddock.models import User
from paddock.persistence import UserRepository, get_connection, get_db_path, init_db
from paddock.rate_limit import MinIntervalLimiter
from paddock.services import (
    AccountService,
    CatalogService,
    ChatService,
    FeedService,
    GridService,
    ModerationService,
    NotificationService,
    PointsService,
    PollService,
    SocialService,
    WaitlistService,
    is_admin,
)

logger = logging.getLogger(__name__)

settings = get_settings()


@contextmanager
def db_conn() -> Generator[sqlite3.Connection, None, None]:
    """Yield a DB connection, ensure close on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


# ---------- Services (process-local state: limiters, chat hub) ----------
chat_hub = ChatHub(
    batch_interval_ms=settings.chat_batch_interval_ms,
    batch_max_size=settings.chat_batch_max_size,
    history_limit=settings.chat_history_limit,
)
accounts = AccountService()
catalog = CatalogService()
social = SocialService()
points = PointsService()
polls = PollService()
grids = GridService()
notifications = NotificationService()
chat = ChatService(chat_hub, slow_mode=MinIntervalLimiter(0))
moderation = ModerationService(chat)
feed_service = FeedService(social, polls, grids, catalog, points)
waitlist = WaitlistService()


# ---------- Startup: ensure DB and catalog ----------
def _ensure_db() -> None:
    init_db(db_path=get_db_path(), catalog_path=settings.catalog_path)


async def _poll_expiry_loop(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            with db_conn() as conn:
                closed = polls.close_expired(conn)
        except Exception:
            logger.exception("Poll expiry sweep failed")
            continue
        if closed:
            logger.info("Closed %d expired polls", len(closed))


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging(settings.log_level)
    _ensure_db()
    sweeper = None
    if settings.poll_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(_poll_expiry_loop(settings.poll_sweep_interval_seconds))
    logger.info("Paddock API started (%s)", settings.environment)
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
        await chat_hub.close()


# ---------- FastAPI app ----------
app = FastAPI(
    title="Paddock API",
    description="Backend for the F1 fan community: profiles, polls, grids and live race chat",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaddockError)
async def paddock_error_handler(request: Request, exc: PaddockError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ---------- Auth dependencies ----------
security = HTTPBearer(auto_error=False)


def _get_current_user(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> User | None:
    """User from the bearer token, or None if no/invalid token."""
    if credentials is None:
        return None
    user_id = decode_token(credentials.credentials)
    if not user_id:
        return None
    with db_conn() as conn:
        return UserRepository().get(conn, user_id)


def _require_user(user: User | None = Depends(_get_current_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def _require_admin(user: User = Depends(_require_user)) -> User:
    if not is_admin(user):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# ---------- Request models ----------


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class PasswordResetRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str
    confirm_password: str


class RateLimitCheckRequest(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=50)


class ProfileUpdateRequest(BaseModel):
    username: str | None = None
    display_name: str | None = None
    bio: str | None = None
    date_of_birth: str | None = Field(None, description="YYYY-MM-DD")
    show_age_on_profile: bool | None = None
    profile_image_url: str | None = Field(None, max_length=500)
    favorite_driver_id: str | None = None
    favorite_team_id: str | None = None
    favorite_track_ids: list[str] | None = None


class OnboardingRequest(ProfileUpdateRequest):
    username: str
    date_of_birth: str


class CreatePostRequest(BaseModel):
    content: str
    parent_page_type: str | None = None
    parent_page_id: str | None = None


class CreateCommentRequest(BaseModel):
    entity_type: str
    entity_id: str
    content: str
    parent_id: str | None = None


class CreatePollRequest(BaseModel):
    question: str
    options: list[str]
    expires_at: datetime | None = None
    status: str = "live"


class VoteRequest(BaseModel):
    option_id: str


class SaveGridRequest(BaseModel):
    item_ids: list[str]
    blurb: str | None = None


class TrackTipRequest(BaseModel):
    tip_type: str
    content: str


class PreferencesUpdateRequest(BaseModel):
    email_likes: bool | None = None
    email_comments: bool | None = None
    email_follows: bool | None = None
    email_mentions: bool | None = None
    email_poll_votes: bool | None = None
    push_enabled: bool | None = None


class SendChatMessageRequest(BaseModel):
    message: str
    client_nonce: str | None = Field(None, max_length=64)


class ChatReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int = Field(..., alias="messageId")
    reason: str


class ChatToggleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    track_id: str = Field(..., alias="trackId")
    enabled: bool


class ChatRoomRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: str = "open"
    slow_mode_ms: int | None = Field(None, ge=0, alias="slowModeMs")
    opens_at: datetime | None = Field(None, alias="opensAt")
    closes_at: datetime | None = Field(None, alias="closesAt")


class CreateReportRequest(BaseModel):
    target_type: str
    target_id: str
    reason: str


class RemoveReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_id: int = Field(..., alias="reportId")


class UserActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    user_id: str = Field(..., alias="userId")
    delta_points: int = Field(0, alias="deltaPoints")
    banned_until: datetime | None = Field(None, alias="bannedUntil")


class TipReviewRequest(BaseModel):
    approve: bool


class DriverUpdateRequest(BaseModel):
    name: str | None = None
    country: str | None = None
    number: int | None = None
    team_id: str | None = None
    headshot_url: str | None = None
    active: bool | None = None


class TeamUpdateRequest(BaseModel):
    name: str | None = None
    color: str | None = None
    active: bool | None = None


class TrackUpdateRequest(BaseModel):
    name: str | None = None
    location: str | None = None
    country: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    chat_enabled: bool | None = None


class SubscribeRequest(BaseModel):
    email: EmailStr


# ---------- Health ----------


@app.get("/health")
def health() -> dict[str, Any]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# ---------- Auth ----------


@app.post("/auth/signup")
def signup(req: SignupRequest, request: Request) -> dict[str, Any]:
    """Create an account. Passwords hashed, never stored plain."""
    accounts.check_rate_limit(_client_ip(request), "signup")
    with db_conn() as conn:
        user, token = accounts.signup(conn, req.email, req.password)
        return {"user": user.to_dict(), "token": token}


@app.post("/auth/login")
def login(req: LoginRequest, request: Request) -> dict[str, Any]:
    accounts.check_rate_limit(_client_ip(request), "login")
    with db_conn() as conn:
        user, token = accounts.login(conn, req.email, req.password)
        return {"user": user.to_dict(), "token": token}


@app.post("/auth/rate-limit")
def check_rate_limit(req: RateLimitCheckRequest, request: Request) -> dict[str, Any]:
    """Whether the client ip may still attempt the given endpoint. Does not use up an attempt."""
    accounts.check_rate_limit(_client_ip(request), req.endpoint, count=False)
    return {"success": True}


@app.get("/auth/me")
def me(user: User = Depends(_require_user)) -> dict[str, Any]:
    return {"user": user.to_dict(), "is_admin": is_admin(user)}


@app.post("/auth/password-reset/request")
def request_password_reset(req: PasswordResetRequest) -> dict[str, Any]:
    with db_conn() as conn:
        accounts.request_password_reset(conn, req.email)
    return {"success": True, "message": "If that address has an account, a reset link is on its way."}


@app.post("/auth/reset-password")
def reset_password(req: ResetPasswordRequest) -> dict[str, Any]:
    with db_conn() as conn:
        accounts.reset_password(conn, req.token, req.password, req.confirm_password)
    return {"success": True}


# ---------- Profiles ----------


@app.get("/profiles/{username}")
def get_profile(username: str, viewer: User | None = Depends(_get_current_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return accounts.get_profile(conn, username, viewer=viewer)


@app.patch("/profiles/me")
def update_my_profile(req: ProfileUpdateRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        updated = accounts.update_profile(conn, user, req.model_dump(exclude_unset=True))
        return {"user": updated.to_dict()}


@app.get("/profiles/me/points")
def my_points(user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"points": user.points, "history": points.history(conn, user.id)}


@app.post("/onboarding")
def onboarding(req: OnboardingRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        updated = accounts.onboard(conn, user, req.model_dump(exclude_unset=True), today=date.today())
        return {"user": updated.to_dict()}


@app.get("/profiles/{username}/followers")
def list_followers(username: str) -> dict[str, Any]:
    with db_conn() as conn:
        return {"followers": social.followers(conn, username)}


@app.get("/profiles/{username}/following")
def list_following(username: str) -> dict[str, Any]:
    with db_conn() as conn:
        return {"following": social.following(conn, username)}


@app.post("/profiles/{username}/follow")
def follow(username: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        social.follow(conn, user, username)
    return {"following": True}


@app.delete("/profiles/{username}/follow")
def unfollow(username: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        social.unfollow(conn, user, username)
    return {"following": False}


@app.get("/profiles/{username}/posts")
def list_posts(username: str, limit: int = Query(default=50, ge=1, le=200)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"posts": [p.to_dict() for p in social.list_posts(conn, username, limit=limit)]}


@app.get("/profiles/{username}/grids")
def list_profile_grids(username: str) -> dict[str, Any]:
    with db_conn() as conn:
        owner = accounts.get_by_username(conn, username)
        return {"grids": grids.list_for_user(conn, owner.id)}


# ---------- Catalog ----------


@app.get("/drivers")
def list_drivers() -> dict[str, Any]:
    with db_conn() as conn:
        return {"drivers": catalog.drivers(conn)}


@app.get("/teams")
def list_teams() -> dict[str, Any]:
    with db_conn() as conn:
        return {"teams": catalog.teams(conn)}


@app.get("/tracks")
def list_tracks() -> dict[str, Any]:
    with db_conn() as conn:
        return {"tracks": catalog.tracks(conn)}


@app.get("/tracks/upcoming")
def upcoming_tracks(limit: int = Query(default=5, ge=1, le=30)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"tracks": catalog.upcoming_races(conn, limit=limit)}


@app.get("/search")
def search(q: str = Query(..., min_length=1, max_length=100), limit: int = Query(default=10, ge=1, le=50)) -> dict[str, Any]:
    with db_conn() as conn:
        return accounts.search(conn, q, limit=limit)


# ---------- Posts / comments ----------


@app.post("/posts")
def create_post(req: CreatePostRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        post = social.create_post(conn, user, req.content, req.parent_page_type, req.parent_page_id)
        return post.to_dict()


@app.post("/comments")
def create_comment(req: CreateCommentRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        comment = social.create_comment(conn, user, req.entity_type, req.entity_id, req.content, req.parent_id)
        return comment.to_dict()


@app.get("/comments")
def list_comments(entity_type: str, entity_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        return {"comments": social.list_comments(conn, entity_type, entity_id)}


@app.get("/comments/hot")
def hot_comments(
    time_window: str = Query(default="week"),
    sort: str = Query(default="hot"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    viewer: User | None = Depends(_get_current_user),
) -> dict[str, Any]:
    """Ranked comments; personalized for a signed-in viewer."""
    with db_conn() as conn:
        return social.hot_comments(conn, viewer, time_window=time_window, sort_mode=sort, page=page, limit=limit).to_dict()


@app.get("/comments/trending")
def trending_comments(
    days: int = Query(default=7, ge=1, le=90),
    limit: int = Query(default=5, ge=1, le=50),
) -> dict[str, Any]:
    with db_conn() as conn:
        return {"comments": social.trending_comments(conn, days=days, limit=limit)}


@app.post("/comments/{comment_id}/like")
def like_comment(comment_id: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"liked": True, "like_count": social.like_comment(conn, user, comment_id)}


@app.delete("/comments/{comment_id}/like")
def unlike_comment(comment_id: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"liked": False, "like_count": social.unlike_comment(conn, user, comment_id)}


# ---------- Polls ----------


@app.post("/polls")
def create_poll(req: CreatePollRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        poll = polls.create(conn, user, req.question, req.options, expires_at=req.expires_at, status=req.status)
        return poll.to_dict()


@app.get("/polls")
def list_polls(
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
) -> dict[str, Any]:
    with db_conn() as conn:
        return {"polls": polls.list(conn, status=status, limit=limit)}


@app.get("/polls/{poll_id}")
def get_poll(poll_id: str, viewer: User | None = Depends(_get_current_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return polls.detail(conn, poll_id, viewer=viewer)


@app.post("/polls/{poll_id}/vote")
def cast_vote(poll_id: str, req: VoteRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return polls.vote(conn, user, poll_id, req.option_id)


@app.post("/polls/{poll_id}/close")
def close_poll(poll_id: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return polls.close(conn, user, poll_id)


# ---------- Grids ----------


@app.put("/grids/{grid_type}")
def save_grid(grid_type: str, req: SaveGridRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return grids.save(conn, user, grid_type, req.item_ids, req.blurb)


@app.get("/grids/community/{grid_type}")
def community_grid(grid_type: str, limit: int = Query(default=10, ge=1, le=50)) -> dict[str, Any]:
    with db_conn() as conn:
        return grids.community(conn, grid_type, limit=limit)


@app.get("/grids/{grid_id}")
def get_grid(grid_id: str, viewer: User | None = Depends(_get_current_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return grids.detail(conn, grid_id, viewer=viewer)


@app.post("/grids/{grid_id}/like")
def like_grid(grid_id: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"liked": True, "like_count": grids.like(conn, user, grid_id)}


@app.delete("/grids/{grid_id}/like")
def unlike_grid(grid_id: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"liked": False, "like_count": grids.unlike(conn, user, grid_id)}


# ---------- Engagement ----------


@app.get("/leaderboard")
def get_leaderboard(limit: int = Query(default=50, ge=1, le=200)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"leaderboard": points.leaderboard(conn, limit=limit)}


@app.post("/tracks/{track_id}/check-in")
def check_in(track_id: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return social.check_in(conn, user, track_id)


@app.post("/tracks/{track_id}/tips")
def submit_tip(track_id: str, req: TrackTipRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return social.submit_tip(conn, user, track_id, req.tip_type, req.content).to_dict()


@app.get("/tracks/{track_id}/tips")
def list_tips(track_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        return {"tips": [t.to_dict() for t in social.list_tips(conn, track_id)]}


# ---------- Notifications ----------


@app.get("/notifications")
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(_require_user),
) -> dict[str, Any]:
    with db_conn() as conn:
        return notifications.list(conn, user.id, unread_only=unread_only, limit=limit)


@app.get("/notifications/preferences")
def get_preferences(user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return notifications.get_preferences(conn, user.id).to_dict()


@app.patch("/notifications/preferences")
def update_preferences(req: PreferencesUpdateRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    updates = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
    with db_conn() as conn:
        return notifications.update_preferences(conn, user.id, updates).to_dict()


@app.post("/notifications/read-all")
def mark_all_read(user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"marked": notifications.mark_all_read(conn, user.id)}


@app.post("/notifications/{notification_id}/read")
def mark_read(notification_id: str, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        notifications.mark_read(conn, user.id, notification_id)
    return {"success": True}


# ---------- Live chat ----------


@app.get("/tracks/{track_id}/chat/status")
def get_chat_status(track_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        return chat.status(conn, track_id).to_dict()


@app.get("/tracks/{track_id}/chat/messages")
def get_chat_messages(track_id: str, after_id: int = Query(default=0, ge=0)) -> dict[str, Any]:
    """Polling fallback for clients without a WebSocket."""
    with db_conn() as conn:
        return {"messages": chat.recent_messages(conn, track_id, after_id=after_id)}


@app.post("/tracks/{track_id}/chat/messages")
async def send_chat_message(
    track_id: str, req: SendChatMessageRequest, user: User = Depends(_require_user)
) -> dict[str, Any]:
    with db_conn() as conn:
        return await chat.send_message(conn, user, track_id, req.message, req.client_nonce)


@app.delete("/chat/messages/{message_id}")
async def delete_chat_message(message_id: int, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        await chat.delete_message(conn, admin, message_id)
    return {"success": True}


@app.post("/chat/report")
def report_chat_message(req: ChatReportRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        chat.report_message(conn, user, req.message_id, req.reason)
    return {"success": True}


@app.post("/admin/chat/toggle")
async def toggle_chat(req: ChatToggleRequest, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return await chat.toggle_chat(conn, admin, req.track_id, req.enabled)


@app.put("/admin/chat/rooms/{track_id}")
async def update_chat_room(track_id: str, req: ChatRoomRequest, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return await chat.update_room(
            conn, admin, track_id, req.mode, req.slow_mode_ms, req.opens_at, req.closes_at
        )


@app.get("/admin/chat/{track_id}/logs")
def chat_logs(track_id: str, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"messages": moderation.chat_logs(conn, admin, track_id)}


@app.websocket("/ws/chat/{track_id}")
async def websocket_chat(websocket: WebSocket, track_id: str, token: str | None = None, after_id: int = 0):
    """
    Subscribe to a track's chat. On connect the server sends chat_status and a
    chat_snapshot of recent history, then chat_batch / message_deleted /
    chat_status events as they happen. Signed-in clients may send
    {"type": "send", "message": ..., "client_nonce": ...}; the saved row comes
    back as chat_ack, failures as error.
    """
    await websocket.accept()
    with db_conn() as conn:
        try:
            status = chat.status(conn, track_id)
        except PaddockError as e:
            await websocket.close(code=4404, reason=e.message)
            return
        chat.ensure_history(conn, track_id)
        user_id = decode_token(token) if token else None
        user = UserRepository().get(conn, user_id) if user_id else None
    chat_hub.subscribe(track_id, websocket)
    try:
        await websocket.send_json({"event": EVENT_STATUS, "payload": {"track_id": track_id, **status.to_dict()}})
        await websocket.send_json({
            "event": EVENT_SNAPSHOT,
            "payload": {"track_id": track_id, "messages": chat_hub.snapshot(track_id, after_id)},
        })
        while True:
            raw = await websocket.receive_text()
            await _handle_chat_frame(websocket, track_id, user, raw)
    except WebSocketDisconnect:
        pass
    finally:
        chat_hub.unsubscribe(track_id, websocket)


async def _handle_chat_frame(websocket: WebSocket, track_id: str, user: User | None, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_json({"event": "error", "payload": {"status": 400, "detail": "Invalid JSON"}})
        return
    if not isinstance(frame, dict) or frame.get("type") != "send":
        return
    if user is None:
        await websocket.send_json({"event": "error", "payload": {"status": 401, "detail": "Authentication required"}})
        return
    try:
        with db_conn() as conn:
            row = await chat.send_message(conn, user, track_id, str(frame.get("message", "")), frame.get("client_nonce"))
    except PaddockError as e:
        await websocket.send_json({"event": "error", "payload": {"status": e.status_code, "detail": e.message}})
        return
    await websocket.send_json({"event": "chat_ack", "payload": row})


# ---------- Feed ----------


@app.get("/feed")
async def get_feed(viewer: User | None = Depends(_get_current_user)) -> dict[str, Any]:
    return await feed_service.build(viewer)


# ---------- Reports ----------


@app.post("/reports")
def create_report(req: CreateReportRequest, user: User = Depends(_require_user)) -> dict[str, Any]:
    with db_conn() as conn:
        return moderation.create_report(conn, user, req.target_type, req.target_id, req.reason).to_dict()


# ---------- Admin ----------


@app.get("/admin/reports")
def admin_list_reports(
    status: str | None = Query(default="open"),
    admin: User = Depends(_require_admin),
) -> dict[str, Any]:
    with db_conn() as conn:
        return {"reports": [r.to_dict() for r in moderation.list_reports(conn, status=status)]}


@app.post("/admin/reports/remove")
async def admin_remove_reported(req: RemoveReportRequest, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        report = await moderation.remove_content(conn, admin, req.report_id)
    return {"success": True, "report": report.to_dict()}


@app.post("/admin/reports/{report_id}/dismiss")
def admin_dismiss_report(report_id: int, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"success": True, "report": moderation.dismiss_report(conn, admin, report_id).to_dict()}


@app.post("/admin/users/actions")
def admin_user_action(req: UserActionRequest, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        profile = moderation.user_action(
            conn, admin, req.user_id, req.action, delta_points=req.delta_points, banned_until=req.banned_until
        )
    return {"success": True, "profile": profile}


@app.get("/admin/metrics")
def admin_metrics(admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return moderation.metrics(conn, admin)


@app.get("/admin/emails")
def admin_emails(status: str | None = None, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"emails": moderation.list_emails(conn, admin, status=status)}


@app.get("/admin/track-tips")
def admin_track_tips(status: str | None = Query(default="pending"), admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"tips": [t.to_dict() for t in moderation.list_tips(conn, admin, status=status)]}


@app.post("/admin/track-tips/{tip_id}/review")
def admin_review_tip(tip_id: str, req: TipReviewRequest, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return moderation.review_tip(conn, admin, tip_id, req.approve).to_dict()


@app.patch("/admin/drivers/{driver_id}")
def admin_update_driver(driver_id: str, req: DriverUpdateRequest, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return moderation.update_catalog(conn, admin, "drivers", driver_id, req.model_dump(exclude_unset=True))


@app.patch("/admin/teams/{team_id}")
def admin_update_team(team_id: str, req: TeamUpdateRequest, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return moderation.update_catalog(conn, admin, "teams", team_id, req.model_dump(exclude_unset=True))


@app.patch("/admin/tracks/{track_id}")
def admin_update_track(track_id: str, req: TrackUpdateRequest, admin: User = Depends(_require_admin)) -> dict[str, Any]:
    with db_conn() as conn:
        return moderation.update_catalog(conn, admin, "tracks", track_id, req.model_dump(exclude_unset=True))


# ---------- Waitlist ----------


@app.post("/contact-form-handler")
def contact_form(email: str = Form(""), website: str = Form("")) -> dict[str, Any]:
    """Form post from the landing page. website is a honeypot field."""
    with db_conn() as conn:
        waitlist.subscribe(conn, email, honeypot=website)
    return {"ok": True}


@app.post("/coming-soon/subscribe")
def coming_soon_subscribe(req: SubscribeRequest) -> dict[str, Any]:
    with db_conn() as conn:
        waitlist.subscribe(conn, req.email)
    return {"success": True, "message": "Thank you for subscribing!"}


# ---------- Run with: uvicorn paddock.api:app --reload ----------
