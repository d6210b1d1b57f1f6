"""
Persistence layer for community data.
No business logic, only read/write interfaces.
"""
from .db import get_connection, get_db_path, init_db, set_db_path
from .repositories import (
    CatalogRepository,
    ChatRepository,
    CommentRepository,
    EngagementRepository,
    FollowRepository,
    GridRepository,
    NotificationRepository,
    PollRepository,
    PostRepository,
    ReportRepository,
    TrackTipRepository,
    UserRepository,
)

__all__ = [
    "get_connection",
    "get_db_path",
    "init_db",
    "set_db_path",
    "CatalogRepository",
    "ChatRepository",
    "CommentRepository",
    "EngagementRepository",
    "FollowRepository",
    "GridRepository",
    "NotificationRepository",
    "PollRepository",
    "PostRepository",
    "ReportRepository",
    "TrackTipRepository",
    "UserRepository",
]
