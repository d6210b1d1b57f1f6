"""
Password hashing and JWT handling.
Passwords are never stored in plain text. Tokens carry the user id in `sub`
and a `purpose` claim so a password-reset token cannot be used as a session.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from passlib.context import CryptContext
from jose import JWTError, jwt

from paddock.config import get_settings

# pbkdf2_sha256 avoids the bcrypt 72-byte limit and backend probing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PURPOSE_ACCESS = "access"
PURPOSE_RESET = "reset"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def _encode(subject: str, purpose: str, minutes: int) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    to_encode = {"sub": subject, "exp": expire, "purpose": purpose}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(subject: str) -> str:
    return _encode(subject, PURPOSE_ACCESS, get_settings().access_token_expire_minutes)


def create_reset_token(subject: str) -> str:
    return _encode(subject, PURPOSE_RESET, get_settings().reset_token_expire_minutes)


def decode_token(token: str, purpose: str = PURPOSE_ACCESS) -> str | None:
    """Return the subject, or None if the token is invalid, expired or for another purpose."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("purpose", PURPOSE_ACCESS) != purpose:
        return None
    return payload.get("sub")
