"""
Per-channel baselines and per-item ranking scores.
"""

import logging
import math
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Iterable, Optional, Sequence

from tubewatch.models.records import RankCandidate, RankedItem

log = logging.getLogger(__name__)

BASELINE_WINDOW = 50
DEFAULT_RANK_LIMIT = 10

METRICS = ("views", "vph", "viral_ratio", "z_score", "engagement_rate")
METRIC_ALIASES = {"viral": "viral_ratio", "er": "engagement_rate"}


@dataclass(frozen=True)
class Baseline:
    mean: float
    std_dev: float


def compute_baseline(views: Sequence[float]) -> Optional[Baseline]:
    """
    Mean and population standard deviation of a channel's view counts.

    Returns None for an empty sequence so callers keep the stored values.
    """
    if not views:
        return None
    count = len(views)
    mean = sum(views) / count
    variance = sum((v - mean) ** 2 for v in views) / count
    return Baseline(mean=mean, std_dev=math.sqrt(variance))


def recompute_baseline(conn: sqlite3.Connection, channel_id: str) -> Optional[Baseline]:
    """
    Recomputes and persists a channel's baseline inside the caller's transaction.

    The mean and deviation use the newest items only; `last_upload_at` is the
    newest publish time over all of the channel's items.
    """
    rows = conn.execute(
        "SELECT view_count FROM videos WHERE channel_id = ? "
        "ORDER BY published_at DESC LIMIT ?",
        (channel_id, BASELINE_WINDOW),
    ).fetchall()
    baseline = compute_baseline([float(row[0]) for row in rows])
    if baseline is None:
        log.debug(f"No items for channel {channel_id}; baseline left unchanged.")
        return None

    last_upload = conn.execute(
        "SELECT MAX(published_at) FROM videos WHERE channel_id = ?", (channel_id,)
    ).fetchone()[0]
    conn.execute(
        "UPDATE channels SET avg_views = ?, std_dev = ?, last_upload_at = ? "
        "WHERE id = ?",
        (baseline.mean, baseline.std_dev, last_upload, channel_id),
    )
    return baseline


def score(candidate: RankCandidate, now: datetime) -> RankedItem:
    views = float(candidate.view_count)
    hours = (now - candidate.published_at).total_seconds() / 3600.0
    vph = views / max(hours, 1.0) if hours > 0 else views

    avg = candidate.channel_avg
    std = candidate.channel_std_dev
    viral_ratio = views / avg if avg > 0 else 0.0
    z_score = (views - avg) / std if std > 0 else 0.0

    interactions = (candidate.like_count or 0) + (candidate.comment_count or 0)
    engagement_rate = interactions / views if views > 0 else 0.0

    return RankedItem(
        candidate=candidate,
        vph=vph,
        viral_ratio=viral_ratio,
        z_score=z_score,
        engagement_rate=engagement_rate,
    )


def resolve_metric(metric: str) -> str:
    """Maps CLI shorthands ('viral', 'er') onto metric names."""
    name = METRIC_ALIASES.get(metric, metric)
    if name not in METRICS:
        raise ValueError(
            f"Unknown metric '{metric}'. Choose one of: "
            f"{', '.join(METRICS + tuple(METRIC_ALIASES))}."
        )
    return name


def _compare(a: float, b: float) -> int:
    # NaN on either side compares equal, leaving the input order in place.
    if math.isnan(a) or math.isnan(b):
        return 0
    return (a > b) - (a < b)


def rank(
    candidates: Iterable[RankCandidate],
    metric: str = "views",
    order: str = "desc",
    limit: int = DEFAULT_RANK_LIMIT,
    now: Optional[datetime] = None,
) -> list[RankedItem]:
    """
    Scores every candidate and returns the top `limit` by the chosen metric.

    The sort is stable, so ties keep the order the candidates arrived in.
    """
    name = resolve_metric(metric)
    now = now or datetime.now(timezone.utc)
    scored = [score(candidate, now) for candidate in candidates]

    descending = order.lower() != "asc"

    def compare(x: RankedItem, y: RankedItem) -> int:
        result = _compare(getattr(x, name), getattr(y, name))
        return -result if descending else result

    scored.sort(key=cmp_to_key(compare))
    return scored[: max(limit, 0)]
