"""
Domain errors raised by services. The API maps status_code to the HTTP response.
"""
from __future__ import annotations


class PaddockError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationFailed(PaddockError):
    """Input rejected (poll shape, password rules, grid size...)."""
    status_code = 400


class AuthenticationError(PaddockError):
    status_code = 401


class PermissionDenied(PaddockError):
    """Authenticated but not allowed: banned, not admin, chat closed."""
    status_code = 403


class NotFoundError(PaddockError):
    status_code = 404


class ConflictError(PaddockError):
    """Duplicate row (username taken, already following, already reported)."""
    status_code = 409


class RateLimited(PaddockError):
    status_code = 429
