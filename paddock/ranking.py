"""
Ranking and popularity scores for community content.

Hot comments: weighted engagement with exponential time decay and a boost for
content the viewer is personally connected to. Trending comments: a plain
weighted engagement score over a fixed window. Grids: rank movement between
saves and a community consensus ranking (Borda count).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import cmp_to_key
from typing import Any, Iterable

from paddock.models import CommentStats, Grid

# ---------- Hot comment weights ----------
LIKE_WEIGHT = 1.0
REPLY_WEIGHT = 1.5
HALF_LIFE_HOURS = 18
MIN_ENGAGEMENT_THRESHOLD = 1
PERSONALIZATION_BOOST = 1.3
SCORE_TIE_EPSILON = 0.01

# Personalized content is shown alone once there is enough of it; otherwise
# the feed is topped up with non-personalized content to this size.
PERSONALIZED_TARGET = 10
MIXED_FEED_SIZE = 20

# ---------- Trending comment weights ----------
TRENDING_LIKE_WEIGHT = 2
TRENDING_REPLY_WEIGHT = 1
TRENDING_MIN_SCORE = 3

# ---------- Grids ----------
GRID_MAX_ITEMS = 10

SORT_HOT = "hot"
SORT_NEW = "new"
TIME_WINDOWS = ("day", "week", "month", "all")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------- Scores ----------


def engagement_score(likes: int, replies: int) -> float:
    return likes * LIKE_WEIGHT + replies * REPLY_WEIGHT


def time_decay(created_at: datetime, now: datetime) -> float:
    """Halves every HALF_LIFE_HOURS. Future timestamps count as age 0."""
    age_hours = max((now - created_at).total_seconds() / 3600.0, 0.0)
    return 0.5 ** (age_hours / HALF_LIFE_HOURS)


def hot_score(likes: int, replies: int, created_at: datetime, is_personalized: bool, now: datetime) -> float:
    multiplier = PERSONALIZATION_BOOST if is_personalized else 1.0
    return engagement_score(likes, replies) * time_decay(created_at, now) * multiplier


def trending_score(likes: int, replies: int) -> int:
    return likes * TRENDING_LIKE_WEIGHT + replies * TRENDING_REPLY_WEIGHT


def window_cutoff(window: str, now: datetime) -> datetime:
    if window == "day":
        return now - timedelta(days=1)
    if window == "week":
        return now - timedelta(days=7)
    if window == "month":
        return now - timedelta(days=30)
    return _EPOCH


# ---------- Hot comments ----------


@dataclass
class Personalization:
    """What the viewer is connected to: followed authors and favourite entities."""
    following_ids: set[str] = field(default_factory=set)
    favorite_driver_id: str | None = None
    favorite_team_id: str | None = None
    favorite_track_ids: set[str] = field(default_factory=set)

    def matches(self, stats: CommentStats) -> bool:
        c = stats.comment
        if c.author_id in self.following_ids:
            return True
        if c.entity_type == "driver":
            return c.entity_id == self.favorite_driver_id
        if c.entity_type == "team":
            return c.entity_id == self.favorite_team_id
        if c.entity_type == "track":
            return c.entity_id in self.favorite_track_ids
        return False


@dataclass
class RankedComment:
    stats: CommentStats
    engagement_score: float
    hot_score: float
    is_personalized: bool

    def to_dict(self) -> dict[str, Any]:
        c = self.stats.comment
        return {
            **c.to_dict(),
            "entity_name": self.stats.entity_name,
            "author_username": self.stats.author_username,
            "like_count": self.stats.like_count,
            "reply_count": self.stats.reply_count,
            "engagement_score": self.engagement_score,
            "hot_score": self.hot_score,
            "is_personalized": self.is_personalized,
        }


@dataclass
class HotPage:
    comments: list[RankedComment]
    has_more: bool
    total_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "comments": [c.to_dict() for c in self.comments],
            "hasMore": self.has_more,
            "totalCount": self.total_count,
        }


def _newest_first(a: RankedComment, b: RankedComment) -> int:
    ta, tb = a.stats.comment.created_at, b.stats.comment.created_at
    return (tb > ta) - (tb < ta)


def _compare_hot(a: RankedComment, b: RankedComment) -> int:
    diff = b.hot_score - a.hot_score
    if abs(diff) < SCORE_TIE_EPSILON:
        return _newest_first(a, b)
    return 1 if diff > 0 else -1


def _sort(items: list[RankedComment], sort_mode: str) -> list[RankedComment]:
    comparator = _compare_hot if sort_mode == SORT_HOT else _newest_first
    return sorted(items, key=cmp_to_key(comparator))


def score_comments(
    candidates: Iterable[CommentStats],
    personalization: Personalization,
    now: datetime,
) -> list[RankedComment]:
    """Score every candidate that meets the engagement threshold."""
    scored: list[RankedComment] = []
    for stats in candidates:
        if stats.like_count + stats.reply_count < MIN_ENGAGEMENT_THRESHOLD:
            continue
        personalized = personalization.matches(stats)
        scored.append(RankedComment(
            stats=stats,
            engagement_score=engagement_score(stats.like_count, stats.reply_count),
            hot_score=hot_score(
                stats.like_count, stats.reply_count, stats.comment.created_at, personalized, now
            ),
            is_personalized=personalized,
        ))
    return scored


def rank_hot(
    candidates: Iterable[CommentStats],
    personalization: Personalization,
    now: datetime,
    sort_mode: str = SORT_HOT,
    page: int = 1,
    limit: int = 20,
) -> HotPage:
    """
    Rank comments for the hot feed. Personalized comments come first; when
    there are fewer than PERSONALIZED_TARGET of them the list is filled up to
    MIXED_FEED_SIZE with the best non-personalized ones and re-sorted.
    """
    ranked = _sort(score_comments(candidates, personalization, now), sort_mode)
    personalized = [c for c in ranked if c.is_personalized]
    others = [c for c in ranked if not c.is_personalized]

    final = list(personalized)
    if len(final) < PERSONALIZED_TARGET:
        needed = min(MIXED_FEED_SIZE - len(final), len(others))
        final = _sort(final + others[:needed], sort_mode)

    offset = (max(page, 1) - 1) * limit
    total = len(final)
    return HotPage(
        comments=final[offset:offset + limit],
        has_more=offset + limit < total,
        total_count=total,
    )


# ---------- Trending comments ----------


def rank_trending(candidates: Iterable[CommentStats], limit: int = 5) -> list[dict[str, Any]]:
    """Comments whose trending score reaches TRENDING_MIN_SCORE, best first, newest on ties."""
    rows: list[tuple[int, datetime, CommentStats]] = []
    for stats in candidates:
        score = trending_score(stats.like_count, stats.reply_count)
        if score >= TRENDING_MIN_SCORE:
            rows.append((score, stats.comment.created_at, stats))
    rows.sort(key=lambda r: (r[0], r[1]), reverse=True)
    return [
        {
            **stats.comment.to_dict(),
            "entity_name": stats.entity_name,
            "author_username": stats.author_username,
            "like_count": stats.like_count,
            "reply_count": stats.reply_count,
            "engagement_score": score,
        }
        for score, _, stats in rows[:limit]
    ]


# ---------- Grids ----------


def rank_changes(
    previous: list[dict[str, str]] | None,
    current: list[dict[str, str]],
) -> list[dict[str, Any]]:
    """
    Movement of each current item since the previous save: positive means it
    moved up. movement is None for items that were not ranked before.
    """
    prev_positions = {item["id"]: i for i, item in enumerate(previous or [])}
    out: list[dict[str, Any]] = []
    for i, item in enumerate(current):
        before = prev_positions.get(item["id"])
        out.append({
            "id": item["id"],
            "name": item.get("name"),
            "position": i + 1,
            "movement": None if before is None else before - i,
        })
    return out


def consensus_ranking(grids: Iterable[Grid], limit: int = GRID_MAX_ITEMS) -> list[dict[str, Any]]:
    """
    Community ranking over many users' grids. Position p (1-based) earns
    GRID_MAX_ITEMS - p + 1 points. Ordered by points, then appearances, then name.
    """
    points: dict[str, int] = {}
    appearances: dict[str, int] = {}
    names: dict[str, str] = {}
    for grid in grids:
        for i, item in enumerate(grid.ranked_items[:GRID_MAX_ITEMS]):
            item_id = item["id"]
            points[item_id] = points.get(item_id, 0) + GRID_MAX_ITEMS - i
            appearances[item_id] = appearances.get(item_id, 0) + 1
            names.setdefault(item_id, item.get("name") or item_id)
    ordered = sorted(points, key=lambda k: (-points[k], -appearances[k], names[k]))
    return [
        {
            "rank": i + 1,
            "id": item_id,
            "name": names[item_id],
            "points": points[item_id],
            "appearances": appearances[item_id],
        }
        for i, item_id in enumerate(ordered[:limit])
    ]


# ---------- Fan leaderboard ----------


def leaderboard(entries: Iterable[tuple[str, str | None, int]], limit: int = 50) -> list[dict[str, Any]]:
    """
    entries: (user_id, username, points). Ordered by points desc then username;
    equal points share a rank (1, 2, 2, 4).
    """
    ordered = sorted(entries, key=lambda e: (-e[2], (e[1] or "").lower()))
    out: list[dict[str, Any]] = []
    prev_points: int | None = None
    rank = 0
    for i, (user_id, username, pts) in enumerate(ordered[:limit]):
        if pts != prev_points:
            rank = i + 1
            prev_points = pts
        out.append({"rank": rank, "user_id": user_id, "username": username, "points": pts})
    return out
