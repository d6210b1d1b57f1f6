"""
Fan points: a ledger of point events plus the running total on the user row.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from paddock.models import ActivityType
from paddock.persistence.repositories import EngagementRepository, UserRepository
from paddock.ranking import leaderboard

logger = logging.getLogger(__name__)

POINTS_BY_ACTIVITY: dict[str, int] = {
    ActivityType.GRID_RANKING.value: 10,
    ActivityType.FAVORITE_SELECTION.value: 5,
    ActivityType.POLL_VOTE.value: 2,
    ActivityType.COMMENT.value: 3,
    ActivityType.FAN_POST.value: 5,
    ActivityType.CHECK_IN.value: 5,
}


class PointsService:

    def __init__(self) -> None:
        self._engagement_repo = EngagementRepository()
        self._user_repo = UserRepository()

    def award(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        activity_type: str,
        reference_id: str | None = None,
        once: bool = False,
        now: datetime | None = None,
    ) -> int:
        """
        Record points for an activity. With once=True the same
        (user, activity, reference) only ever earns once. Returns points awarded.
        """
        points = POINTS_BY_ACTIVITY.get(activity_type)
        if points is None:
            raise ValueError(f"Unknown activity type: {activity_type}")
        if once and self._engagement_repo.has_points_for(conn, user_id, activity_type, reference_id):
            return 0
        self._engagement_repo.record_points(conn, user_id, activity_type, points, reference_id, now=now)
        self._user_repo.add_points(conn, user_id, points)
        logger.debug("Awarded %s points to %s for %s", points, user_id, activity_type)
        return points

    def adjust(self, conn: sqlite3.Connection, user_id: str, delta: int) -> None:
        """Manual admin adjustment; not part of the activity ledger."""
        self._user_repo.add_points(conn, user_id, delta)

    def history(self, conn: sqlite3.Connection, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return self._engagement_repo.points_history(conn, user_id, limit=limit)

    def leaderboard(self, conn: sqlite3.Connection, limit: int = 50) -> list[dict[str, Any]]:
        return leaderboard(self._user_repo.list_leaderboard(conn, limit), limit=limit)
