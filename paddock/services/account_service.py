"""
Accounts and profiles: signup, login, password reset, onboarding, profile
edits and search.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timezone
from typing import Any

from paddock.auth import (
    PURPOSE_RESET,
    create_access_token,
    create_reset_token,
    decode_token,
    hash_password,
    verify_password,
)
from paddock.config import get_settings
from paddock.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDenied,
    RateLimited,
    ValidationFailed,
)
from paddock.models import ActivityType, Role, User
from paddock.persistence.repositories import (
    CatalogRepository,
    FollowRepository,
    NotificationRepository,
    UserRepository,
)
from paddock.rate_limit import FixedWindowLimiter
from paddock.services.points import PointsService
from paddock.validation import (
    compute_age,
    normalize_username,
    require_min_age,
    validate_password,
    validate_password_reset,
)

logger = logging.getLogger(__name__)

BIO_MAX_LENGTH = 500
DISPLAY_NAME_MAX_LENGTH = 50


def is_admin(user: User | None) -> bool:
    """Admins have the admin role or an address on the staff domain."""
    if user is None:
        return False
    return user.role == Role.ADMIN.value or user.email.lower().endswith(get_settings().admin_email_domain)


def ensure_not_banned(user: User, now: datetime | None = None) -> None:
    if user.is_banned(now or datetime.now(timezone.utc)):
        raise PermissionDenied("Your account is suspended")


def _parse_dob(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationFailed("Date of birth must be YYYY-MM-DD")


class AccountService:
    """
    Login and signup attempts are limited per client ip and endpoint with a
    fixed window. Limiter state lives on the service instance.
    """

    def __init__(self, limiter: FixedWindowLimiter | None = None) -> None:
        settings = get_settings()
        self.limiter = limiter or FixedWindowLimiter(
            settings.auth_rate_limit_max, settings.auth_rate_limit_window_seconds
        )
        self._user_repo = UserRepository()
        self._follow_repo = FollowRepository()
        self._catalog_repo = CatalogRepository()
        self._notification_repo = NotificationRepository()
        self._points = PointsService()

    # ---------- Auth ----------

    def check_rate_limit(self, ip: str, endpoint: str, count: bool = True) -> None:
        """Raise RateLimited when ip is over the limit for endpoint. count=False only peeks."""
        key = f"{ip}:{endpoint}"
        ok = self.limiter.hit(key) if count else self.limiter.allowed(key)
        if not ok:
            raise RateLimited("Too many requests. Please try again later.")

    def signup(self, conn: sqlite3.Connection, email: str, password: str) -> tuple[User, str]:
        error = validate_password(password)
        if error:
            raise ValidationFailed(error)
        if self._user_repo.get_by_email(conn, email):
            raise ConflictError("An account with this email already exists")
        try:
            user = self._user_repo.create(conn, email, hash_password(password))
        except sqlite3.IntegrityError:
            raise ConflictError("An account with this email already exists")
        self._notification_repo.create_preferences(conn, user.id)
        logger.info("New account %s", user.id)
        return user, create_access_token(user.id)

    def login(self, conn: sqlite3.Connection, email: str, password: str) -> tuple[User, str]:
        user = self._user_repo.get_by_email(conn, email)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        ensure_not_banned(user)
        return user, create_access_token(user.id)

    def request_password_reset(self, conn: sqlite3.Connection, email: str) -> None:
        """Queue a reset email. Unknown addresses are ignored so the response leaks nothing."""
        user = self._user_repo.get_by_email(conn, email)
        if user is None:
            logger.info("Password reset requested for unknown address")
            return
        token = create_reset_token(user.id)
        self._notification_repo.enqueue_email(
            conn, user.email, "password_reset", {"token": token}, user_id=user.id
        )

    def reset_password(self, conn: sqlite3.Connection, token: str, password: str, confirm_password: str) -> User:
        user_id = decode_token(token, purpose=PURPOSE_RESET)
        if not user_id:
            raise AuthenticationError("Reset link is invalid or has expired")
        validate_password_reset(password, confirm_password)
        user = self._user_repo.get(conn, user_id)
        if user is None:
            raise AuthenticationError("Reset link is invalid or has expired")
        self._user_repo.set_password_hash(conn, user.id, hash_password(password))
        logger.info("Password reset for %s", user.id)
        return user

    # ---------- Profiles ----------

    def _reload(self, conn: sqlite3.Connection, user_id: str) -> User:
        user = self._user_repo.get(conn, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def get_by_username(self, conn: sqlite3.Connection, username: str) -> User:
        user = self._user_repo.get_by_username(conn, username)
        if user is None:
            raise NotFoundError("Profile not found")
        return user

    def get_profile(
        self,
        conn: sqlite3.Connection,
        username: str,
        viewer: User | None = None,
        today: date | None = None,
    ) -> dict[str, Any]:
        user = self.get_by_username(conn, username)
        own = viewer is not None and viewer.id == user.id
        profile = user.to_dict() if own else user.to_public_dict()
        profile.update(self._follow_repo.counts(conn, user.id))
        if user.show_age_on_profile and user.date_of_birth:
            profile["age"] = compute_age(_parse_dob(user.date_of_birth), today or date.today())
        if viewer is not None and not own:
            profile["is_following"] = self._follow_repo.exists(conn, viewer.id, user.id)
        return profile

    def _check_favorites(self, conn: sqlite3.Connection, fields: dict[str, Any]) -> None:
        driver_id = fields.get("favorite_driver_id")
        if driver_id and self._catalog_repo.get_driver(conn, driver_id) is None:
            raise ValidationFailed("Unknown driver")
        team_id = fields.get("favorite_team_id")
        if team_id and self._catalog_repo.get_team(conn, team_id) is None:
            raise ValidationFailed("Unknown team")
        for track_id in fields.get("favorite_track_ids") or []:
            if self._catalog_repo.get_track(conn, track_id) is None:
                raise ValidationFailed("Unknown track")

    def _clean_profile_fields(self, conn: sqlite3.Connection, user: User, fields: dict[str, Any]) -> dict[str, Any]:
        cleaned = dict(fields)
        if "username" in cleaned:
            cleaned["username"] = normalize_username(cleaned["username"])
            existing = self._user_repo.get_by_username(conn, cleaned["username"])
            if existing is not None and existing.id != user.id:
                raise ConflictError("Username is already taken")
        if "display_name" in cleaned and cleaned["display_name"] is not None:
            cleaned["display_name"] = cleaned["display_name"].strip() or None
            if cleaned["display_name"] and len(cleaned["display_name"]) > DISPLAY_NAME_MAX_LENGTH:
                raise ValidationFailed(f"Display name must be {DISPLAY_NAME_MAX_LENGTH} characters or less")
        if "bio" in cleaned and cleaned["bio"] is not None:
            cleaned["bio"] = cleaned["bio"].strip() or None
            if cleaned["bio"] and len(cleaned["bio"]) > BIO_MAX_LENGTH:
                raise ValidationFailed(f"Bio must be {BIO_MAX_LENGTH} characters or less")
        if cleaned.get("date_of_birth"):
            _parse_dob(cleaned["date_of_birth"])
        if "favorite_track_ids" in cleaned:
            cleaned["favorite_track_ids"] = list(dict.fromkeys(cleaned["favorite_track_ids"] or []))
        self._check_favorites(conn, cleaned)
        return cleaned

    def update_profile(self, conn: sqlite3.Connection, user: User, fields: dict[str, Any]) -> User:
        cleaned = self._clean_profile_fields(conn, user, fields)
        if cleaned.get("date_of_birth"):
            require_min_age(_parse_dob(cleaned["date_of_birth"]), date.today())
        try:
            self._user_repo.update_profile(conn, user.id, cleaned)
        except sqlite3.IntegrityError:
            raise ConflictError("Username is already taken")
        return self._reload(conn, user.id)

    def onboard(
        self,
        conn: sqlite3.Connection,
        user: User,
        fields: dict[str, Any],
        today: date | None = None,
    ) -> User:
        """
        Finish the signup wizard: username and date of birth are required and
        the user must be at least 13. Choosing favourites earns points once.
        """
        if not fields.get("username"):
            raise ValidationFailed("Username is required")
        if not fields.get("date_of_birth"):
            raise ValidationFailed("Date of birth is required")
        cleaned = self._clean_profile_fields(conn, user, fields)
        require_min_age(_parse_dob(cleaned["date_of_birth"]), today or date.today())
        try:
            self._user_repo.update_profile(conn, user.id, cleaned)
        except sqlite3.IntegrityError:
            raise ConflictError("Username is already taken")
        self._user_repo.mark_onboarded(conn, user.id)
        if cleaned.get("favorite_driver_id") or cleaned.get("favorite_team_id") or cleaned.get("favorite_track_ids"):
            self._points.award(conn, user.id, ActivityType.FAVORITE_SELECTION.value, once=True)
        return self._reload(conn, user.id)

    # ---------- Search ----------

    def search(self, conn: sqlite3.Connection, query: str, limit: int = 10) -> dict[str, Any]:
        q = query.strip()
        if len(q) < 2:
            return {"profiles": [], "drivers": [], "teams": [], "tracks": []}
        return {
            "profiles": [
                {"id": u.id, "username": u.username, "display_name": u.display_name}
                for u in self._user_repo.search(conn, q, limit)
                if u.username
            ],
            "drivers": self._catalog_repo.search(conn, "drivers", q, limit),
            "teams": self._catalog_repo.search(conn, "teams", q, limit),
            "tracks": self._catalog_repo.search(conn, "tracks", q, limit),
        }
