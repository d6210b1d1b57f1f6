"""
Service layer: domain rules over the repositories.
Services raise PaddockError subclasses; the API maps them to HTTP responses.
"""
from .account_service import AccountService, ensure_not_banned, is_admin
from .catalog_service import CatalogService
from .chat_service import ChatService
from .feed_service import FeedService
from .grid_service import GridService
from .moderation_service import ModerationService
from .notification_service import NotificationService
from .points import PointsService
from .poll_service import PollService, validate_poll
from .social_service import SocialService
from .waitlist_service import WaitlistService

__all__ = [
    "AccountService",
    "CatalogService",
    "ChatService",
    "FeedService",
    "GridService",
    "ModerationService",
    "NotificationService",
    "PointsService",
    "PollService",
    "SocialService",
    "WaitlistService",
    "ensure_not_banned",
    "is_admin",
    "validate_poll",
]
