"""
Home feed assembled from independent sections.

Sections load concurrently, each on its own connection in a worker thread.
A section that fails is logged, returned as null and named in "errors"; the
rest of the feed is still served.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable

from paddock.models import GridType, PollStatus, User
from paddock.persistence.db import get_connection
from paddock.services.catalog_service import CatalogService
from paddock.services.grid_service import GridService
from paddock.services.poll_service import PollService
from paddock.services.points import PointsService
from paddock.services.social_service import SocialService

logger = logging.getLogger(__name__)

Loader = Callable[[sqlite3.Connection], Any]

FEED_HOT_LIMIT = 10
FEED_POLL_LIMIT = 5
FEED_GRID_LIMIT = 5
FEED_LEADERBOARD_LIMIT = 10


class FeedService:

    def __init__(
        self,
        social: SocialService,
        polls: PollService,
        grids: GridService,
        catalog: CatalogService,
        points: PointsService,
    ) -> None:
        self._social = social
        self._polls = polls
        self._grids = grids
        self._catalog = catalog
        self._points = points

    def _sections(self, viewer: User | None, now: datetime) -> dict[str, Loader]:
        return {
            "hot_comments": lambda conn: self._social.hot_comments(
                conn, viewer, time_window="week", limit=FEED_HOT_LIMIT, now=now
            ).to_dict(),
            "live_polls": lambda conn: self._polls.list(conn, status=PollStatus.LIVE.value, limit=FEED_POLL_LIMIT),
            "community_grids": lambda conn: {
                t.value: self._grids.community(conn, t.value, limit=FEED_GRID_LIMIT) for t in GridType
            },
            "upcoming_race": lambda conn: next(iter(self._catalog.upcoming_races(conn, now=now, limit=1)), None),
            "leaderboard": lambda conn: self._points.leaderboard(conn, limit=FEED_LEADERBOARD_LIMIT),
        }

    @staticmethod
    def _run(loader: Loader) -> Any:
        conn = get_connection()
        try:
            return loader(conn)
        finally:
            conn.close()

    async def build(self, viewer: User | None, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        sections = self._sections(viewer, now)
        results = await asyncio.gather(
            *(asyncio.to_thread(self._run, loader) for loader in sections.values()),
            return_exceptions=True,
        )
        feed: dict[str, Any] = {}
        errors: list[str] = []
        for name, result in zip(sections, results):
            if isinstance(result, Exception):
                logger.error("Feed section %s failed", name, exc_info=result)
                feed[name] = None
                errors.append(name)
            else:
                feed[name] = result
        feed["errors"] = errors
        feed["generated_at"] = now.isoformat()
        return feed
