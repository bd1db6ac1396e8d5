"""Percentile-trimmed effective time range of a shard."""

from __future__ import annotations

import math
import sqlite3
from typing import NamedTuple

from hnstats.models import Shard

# Ranks read instead of the true min/max, to drop corrupted extremes.
P_LOW = 0.01
P_HIGH = 0.99

_RANK_QUERY = "SELECT time FROM items WHERE time IS NOT NULL ORDER BY time LIMIT 1 OFFSET ?"


class EffectiveRange(NamedTuple):
    tmin_eff: int | None
    tmax_eff: int | None
    time_null: int
    time_count: int


def percentile_offsets(n: int) -> tuple[int, int]:
    """Return the 0-indexed ranks of the low and high cut for *n* timestamps.

    Small shards collapse: with ``n == 2`` both ranks are 0.
    """
    return math.floor((n - 1) * P_LOW), math.floor((n - 1) * P_HIGH)


def _time_at(con: sqlite3.Connection, offset: int) -> int | None:
    row = con.execute(_RANK_QUERY, (offset,)).fetchone()
    return row[0] if row else None


def effective_range(con: sqlite3.Connection, shard: Shard) -> EffectiveRange:
    """Compute ``tmin_eff``/``tmax_eff`` and the null-time count for a shard.

    Without any timestamped rows the manifest's ``tmin``/``tmax`` are passed
    through unchanged.
    """
    time_count = con.execute(
        "SELECT COUNT(*) FROM items WHERE time IS NOT NULL"
    ).fetchone()[0] or 0
    time_null = con.execute(
        "SELECT COUNT(*) FROM items WHERE time IS NULL"
    ).fetchone()[0] or 0

    tmin_eff, tmax_eff = shard.tmin, shard.tmax
    if time_count > 0:
        lo, hi = percentile_offsets(time_count)
        found_lo = _time_at(con, lo)
        found_hi = _time_at(con, hi)
        tmin_eff = found_lo if found_lo is not None else tmin_eff
        tmax_eff = found_hi if found_hi is not None else tmax_eff

    return EffectiveRange(tmin_eff, tmax_eff, time_null, time_count)
