"""
Grids: a user's top-10 ranking of drivers, teams or tracks.
One grid per user per type; saving again keeps the previous order so the
grid page can show movement, and writes a profile post about the update.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any

from paddock.errors import ConflictError, NotFoundError, ValidationFailed
from paddock.models import ActivityType, Grid, GridType, NotificationKind, User
from paddock.persistence.repositories import CatalogRepository, GridRepository, UserRepository
from paddock.ranking import GRID_MAX_ITEMS, consensus_ranking, rank_changes
from paddock.services.account_service import ensure_not_banned
from paddock.services.notification_service import NotificationService
from paddock.services.points import PointsService
from paddock.services.social_service import SocialService

logger = logging.getLogger(__name__)

BLURB_MAX_LENGTH = 140

_CATALOG_TABLE = {
    GridType.DRIVER.value: "drivers",
    GridType.TEAM.value: "teams",
    GridType.TRACK.value: "tracks",
}

GRID_TITLES = {
    GridType.DRIVER.value: "Top Drivers",
    GridType.TEAM.value: "Top Teams",
    GridType.TRACK.value: "Top Tracks",
}


def _check_type(grid_type: str) -> str:
    if grid_type not in _CATALOG_TABLE:
        raise ValidationFailed("Grid type must be driver, team or track")
    return grid_type


class GridService:

    def __init__(self) -> None:
        self._repo = GridRepository()
        self._catalog_repo = CatalogRepository()
        self._user_repo = UserRepository()
        self._social = SocialService()
        self._notifications = NotificationService()
        self._points = PointsService()

    def _resolve_items(self, conn: sqlite3.Connection, grid_type: str, item_ids: list[str]) -> list[dict[str, str]]:
        if not item_ids:
            raise ValidationFailed("Grid must rank at least one item")
        if len(item_ids) > GRID_MAX_ITEMS:
            raise ValidationFailed(f"Grid can rank at most {GRID_MAX_ITEMS} items")
        if len(set(item_ids)) != len(item_ids):
            raise ValidationFailed("Grid items must be unique")
        names = self._catalog_repo.names(conn, _CATALOG_TABLE[grid_type], item_ids)
        missing = [i for i in item_ids if i not in names]
        if missing:
            raise ValidationFailed(f"Unknown {grid_type}: {', '.join(missing)}")
        return [{"id": i, "name": names[i]} for i in item_ids]

    def save(
        self,
        conn: sqlite3.Connection,
        user: User,
        grid_type: str,
        item_ids: list[str],
        blurb: str | None = None,
    ) -> dict[str, Any]:
        """Create or replace the user's grid of this type."""
        ensure_not_banned(user)
        _check_type(grid_type)
        items = self._resolve_items(conn, grid_type, item_ids)
        clean_blurb = (blurb or "").strip() or None
        if clean_blurb and len(clean_blurb) > BLURB_MAX_LENGTH:
            raise ValidationFailed(f"Blurb must be {BLURB_MAX_LENGTH} characters or less")

        existing = self._repo.get_for_user(conn, user.id, grid_type)
        if existing is None:
            grid = self._repo.create(conn, user.id, grid_type, items, clean_blurb)
            created = True
            self._points.award(conn, user.id, ActivityType.GRID_RANKING.value, reference_id=grid_type, once=True)
        else:
            self._repo.update(conn, existing.id, items, clean_blurb, previous_state=existing.ranked_items)
            grid = self._get(conn, existing.id)
            created = False
            self._social.create_post(
                conn, user,
                clean_blurb or f"Updated their {GRID_TITLES[grid_type]} grid",
                parent_page_type="grid", parent_page_id=grid.id,
            )
        logger.info("Grid %s %s for %s", grid.id, "created" if created else "updated", user.id)
        return {
            "grid": grid.to_dict(),
            "created": created,
            "rank_changes": rank_changes(grid.previous_state, grid.ranked_items),
        }

    def _get(self, conn: sqlite3.Connection, grid_id: str) -> Grid:
        grid = self._repo.get(conn, grid_id)
        if grid is None:
            raise NotFoundError("Grid not found")
        return grid

    def detail(self, conn: sqlite3.Connection, grid_id: str, viewer: User | None = None) -> dict[str, Any]:
        grid = self._get(conn, grid_id)
        owner = self._user_repo.get(conn, grid.user_id)
        d = grid.to_dict()
        d["title"] = GRID_TITLES.get(grid.type, grid.type)
        d["owner_username"] = owner.username if owner else None
        d["like_count"] = self._repo.like_count(conn, grid.id)
        d["rank_changes"] = rank_changes(grid.previous_state, grid.ranked_items)
        if viewer is not None:
            d["liked"] = self._repo.has_liked(conn, grid.id, viewer.id)
        return d

    def list_for_user(self, conn: sqlite3.Connection, user_id: str) -> list[dict[str, Any]]:
        return [g.to_dict() for g in self._repo.list_for_user(conn, user_id)]

    def like(self, conn: sqlite3.Connection, user: User, grid_id: str) -> int:
        ensure_not_banned(user)
        grid = self._get(conn, grid_id)
        if grid.user_id == user.id:
            raise ValidationFailed("You cannot like your own grid")
        try:
            self._repo.add_like(conn, grid_id, user.id)
        except sqlite3.IntegrityError:
            raise ConflictError("Already liked")
        self._notifications.notify(
            conn, grid.user_id, NotificationKind.LIKE.value,
            {"grid_id": grid.id, "grid_type": grid.type},
            actor_id=user.id,
        )
        return self._repo.like_count(conn, grid_id)

    def unlike(self, conn: sqlite3.Connection, user: User, grid_id: str) -> int:
        self._get(conn, grid_id)
        if not self._repo.remove_like(conn, grid_id, user.id):
            raise NotFoundError("Like not found")
        return self._repo.like_count(conn, grid_id)

    def community(self, conn: sqlite3.Connection, grid_type: str, limit: int = GRID_MAX_ITEMS) -> dict[str, Any]:
        """Consensus ranking across every user's grid of this type."""
        _check_type(grid_type)
        grids = self._repo.list_by_type(conn, grid_type)
        return {
            "type": grid_type,
            "title": GRID_TITLES[grid_type],
            "grid_count": len(grids),
            "ranking": consensus_ranking(grids, limit=limit),
        }
