"""
Read side of the catalog: drivers, teams, tracks and the race calendar.
"""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any

from paddock.config import get_settings
from paddock.persistence.repositories import CatalogRepository, ChatRepository
from paddock.race_weekend import chat_status, format_time_until, is_race_weekend_active, race_weekend_window


class CatalogService:

    def __init__(self) -> None:
        self._repo = CatalogRepository()
        self._chat_repo = ChatRepository()

    def drivers(self, conn: sqlite3.Connection) -> list[dict[str, Any]]:
        teams = {t.id: t.name for t in self._repo.list_teams(conn, active_only=False)}
        out = []
        for d in self._repo.list_drivers(conn):
            row = d.to_dict()
            row["team_name"] = teams.get(d.team_id) if d.team_id else None
            out.append(row)
        return out

    def teams(self, conn: sqlite3.Connection) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._repo.list_teams(conn)]

    def tracks(self, conn: sqlite3.Connection) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._repo.list_tracks(conn)]

    def upcoming_races(
        self, conn: sqlite3.Connection, now: datetime | None = None, limit: int = 5
    ) -> list[dict[str, Any]]:
        """
        Tracks whose race weekend has not finished, soonest first, with the
        live chat status and a countdown to the start.
        """
        now = now or datetime.now(timezone.utc)
        settings = get_settings()
        upcoming: list[tuple[datetime, dict[str, Any]]] = []
        for track in self._repo.list_tracks(conn):
            start, end = race_weekend_window(track)
            if start is None or end is None or end < now:
                continue
            status = chat_status(
                track, self._chat_repo.get_room(conn, track.id), now,
                grace_hours=settings.chat_read_only_grace_hours,
                default_slow_mode_ms=settings.chat_default_slow_mode_ms,
            )
            row = track.to_dict()
            row.update({
                "is_live": is_race_weekend_active(track, now),
                "starts_in": format_time_until(start, now),
                "chat": status.to_dict(),
            })
            upcoming.append((start, row))
        upcoming.sort(key=lambda pair: pair[0])
        return [row for _, row in upcoming[:limit]]
