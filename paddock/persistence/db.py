"""
Database connection and initialization.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from .schema import all_schema_sql

logger = logging.getLogger(__name__)

_db_path: Path | None = None


def _default_db_path() -> Path:
    from paddock.config import get_settings
    return Path(get_settings().db_path)


def set_db_path(path: str | Path) -> None:
    """Set the database path. Call before first get_connection if not using the configured one."""
    global _db_path
    _db_path = Path(path)


def get_db_path() -> Path:
    if _db_path is not None:
        return _db_path
    return _default_db_path()


def get_connection(db_path: str | Path | None = None) -> sqlite3.Connection:
    """
    Return a new SQLite connection with Row factory and foreign keys on.
    Use as context manager or ensure close() is called.
    """
    path = Path(db_path) if db_path else get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def load_catalog_into_db(conn: sqlite3.Connection, catalog_path: Path) -> dict[str, int]:
    """
    Load teams, drivers and tracks from a catalog JSON file.
    Existing rows are kept so admin edits survive restarts.
    """
    data = json.loads(Path(catalog_path).read_text())
    counts = {"teams": 0, "drivers": 0, "tracks": 0}
    for t in data.get("teams", []):
        cur = conn.execute(
            "INSERT OR IGNORE INTO teams (id, name, active, color) VALUES (?, ?, ?, ?)",
            (t["id"], t["name"], int(t.get("active", True)), t.get("color")),
        )
        counts["teams"] += cur.rowcount
    for d in data.get("drivers", []):
        cur = conn.execute(
            """INSERT OR IGNORE INTO drivers (id, name, country, number, team_id, headshot_url, active)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                d["id"], d["name"], d.get("country"), d.get("number"),
                d.get("team_id"), d.get("headshot_url"), int(d.get("active", True)),
            ),
        )
        counts["drivers"] += cur.rowcount
    for tr in data.get("tracks", []):
        cur = conn.execute(
            """INSERT OR IGNORE INTO tracks (id, name, location, country, start_date, end_date, chat_enabled)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                tr["id"], tr["name"], tr.get("location"), tr.get("country"),
                tr.get("start_date"), tr.get("end_date"), int(tr.get("chat_enabled", True)),
            ),
        )
        counts["tracks"] += cur.rowcount
    conn.commit()
    return counts


def init_db(
    db_path: str | Path | None = None,
    catalog_path: str | Path | None = None,
) -> None:
    """
    Create or ensure all tables exist.
    If catalog_path is provided, also load drivers, teams and tracks.
    """
    conn = get_connection(db_path)
    try:
        conn.executescript(all_schema_sql())
        conn.commit()
        if catalog_path:
            counts = load_catalog_into_db(conn, Path(catalog_path))
            logger.info("Catalog loaded: %s", counts)
    finally:
        conn.close()
