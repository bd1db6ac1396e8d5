"""Monthly user-growth curve from first-activity timestamps."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable

from hnstats.models import GrowthPoint
from hnstats.reduce import month_key
from hnstats.store import BucketStore

logger = logging.getLogger(__name__)


def growth_curve(first_times: Iterable[int]) -> list[GrowthPoint]:
    """Tally users per first-activity month, ascending, with a running total."""
    counts: Counter[str] = Counter()
    for ts in first_times:
        month = month_key(ts)
        if month:
            counts[month] += 1

    points: list[GrowthPoint] = []
    cumulative = 0
    for month in sorted(counts):
        cumulative += counts[month]
        points.append(
            GrowthPoint(month=month, new_users=counts[month], total_users=cumulative)
        )
    return points


def collect_growth(stores: Iterable[BucketStore]) -> tuple[list[GrowthPoint], int]:
    """Scan every finalized bucket and return ``(curve, unique_users)``.

    Must only run once all shards are ingested: a later shard can still
    lower a user's ``first_time``.
    """
    curve = growth_curve(ts for store in stores for ts in store.first_times())
    users = curve[-1].total_users if curve else 0
    logger.info("Growth curve: %d months, %d users", len(curve), users)
    return curve, users
