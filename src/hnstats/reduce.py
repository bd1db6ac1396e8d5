"""Per-user aggregate reduction.

Every field of :class:`UserAggregate` is combined with an operation that is
commutative and associative (min, max, sum, count, or an argmax that follows
``max_score``), so a bucket can be fed items in any order and in any batch
split and still end up with the same rows.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import NamedTuple
from urllib.parse import urlsplit

from hnstats.models import Item, UserAggregate

# Type-conditioned counters, in schema order.
COUNTER_FIELDS: tuple[str, ...] = (
    "comments",
    "stories",
    "ask",
    "show",
    "launch",
    "jobs",
    "polls",
)

_TYPE_COUNTERS: dict[str, str] = {
    "comment": "comments",
    "story": "stories",
    "job": "jobs",
    "poll": "polls",
}

# Story-only title prefixes.
_TITLE_PREFIXES: list[tuple[str, re.Pattern[str]]] = [
    ("ask", re.compile(r"Ask HN:", re.IGNORECASE)),
    ("show", re.compile(r"Show HN:", re.IGNORECASE)),
    ("launch", re.compile(r"Launch HN:", re.IGNORECASE)),
]

_DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}


class Contribution(NamedTuple):
    """What one item adds to its author's bucket."""

    aggregate: UserAggregate
    domain: str | None
    month: str | None


@dataclass
class FoldResult:
    """A buffer of contributions reduced to one row per key."""

    users: dict[str, UserAggregate] = field(default_factory=dict)
    domains: Counter[tuple[str, str]] = field(default_factory=Counter)
    months: Counter[tuple[str, str]] = field(default_factory=Counter)


def classify(item: Item) -> dict[str, int]:
    """Return the 0/1 type counters for a single item."""
    counts = dict.fromkeys(COUNTER_FIELDS, 0)
    counter = _TYPE_COUNTERS.get(item.type or "")
    if counter:
        counts[counter] = 1
    if item.type == "story" and item.title:
        for name, pattern in _TITLE_PREFIXES:
            if pattern.match(item.title):
                counts[name] = 1
    return counts


def _render_host(host: str) -> str:
    """Render *host* the way a browser's ``URL.host`` shows it."""
    if ":" in host:
        return f"[{host}]"
    if not host.isascii():
        host = host.encode("idna").decode("ascii")
    return host


def domain_from_url(url: str | None) -> str | None:
    """Extract the host of *url* without a leading ``www.``.

    Internationalised hosts come back punycoded and IPv6 hosts bracketed.
    Returns None for absent, relative or unparsable URLs.
    """
    if not url:
        return None
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
        port = parts.port
        if host:
            host = _render_host(host)
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    if port is not None and _DEFAULT_PORTS.get(parts.scheme.lower()) != port:
        host = f"{host}:{port}"
    return host.removeprefix("www.")


def month_key(ts: int | None) -> str | None:
    """Return the UTC ``YYYY-MM`` for an epoch-seconds timestamp."""
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(ts, tz=UTC).strftime("%Y-%m")
    except (OverflowError, OSError, ValueError):
        return None


def _score(item: Item) -> float:
    if item.score is None or not math.isfinite(item.score):
        return 0
    return item.score


def _min_present(a: float | None, b: float | None) -> float | None:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _max_present(a: float | None, b: float | None) -> float | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def aggregate_from_item(username: str, item: Item) -> UserAggregate:
    """Build the aggregate a user would have after seeing only *item*."""
    score = _score(item)
    return UserAggregate(
        username=username,
        first_time=item.time,
        last_time=item.time,
        items=1,
        **classify(item),
        sum_score=score,
        max_score=score,
        min_score=score,
        max_score_id=item.id,
        max_score_title=item.title or None,
    )


def merge_aggregates(
    existing: UserAggregate | None, incoming: UserAggregate
) -> UserAggregate:
    """Combine two aggregates for the same user.

    The argmax fields move to *incoming* only when its ``max_score`` is
    strictly greater than the existing one, so ties keep what was seen first.
    """
    if existing is None:
        return incoming.model_copy()

    improved = existing.max_score is None or (
        incoming.max_score is not None and incoming.max_score > existing.max_score
    )
    holder = incoming if improved else existing

    return UserAggregate(
        username=existing.username,
        first_time=_min_present(existing.first_time, incoming.first_time),
        last_time=_max_present(existing.last_time, incoming.last_time),
        items=existing.items + incoming.items,
        **{
            name: getattr(existing, name) + getattr(incoming, name)
            for name in COUNTER_FIELDS
        },
        sum_score=existing.sum_score + incoming.sum_score,
        max_score=_max_present(existing.max_score, incoming.max_score),
        min_score=_min_present(existing.min_score, incoming.min_score),
        max_score_id=holder.max_score_id,
        max_score_title=holder.max_score_title,
    )


def reduce_item(
    existing: UserAggregate | None, username: str, item: Item
) -> UserAggregate:
    """Apply one item to a user's aggregate."""
    return merge_aggregates(existing, aggregate_from_item(username, item))


def contribution_from_item(username: str, item: Item) -> Contribution:
    return Contribution(
        aggregate=aggregate_from_item(username, item),
        domain=domain_from_url(item.url),
        month=month_key(item.time),
    )


def fold(contributions: Iterable[Contribution]) -> FoldResult:
    """Reduce a buffer of contributions to one aggregate per user."""
    result = FoldResult()
    for contrib in contributions:
        username = contrib.aggregate.username
        result.users[username] = merge_aggregates(
            result.users.get(username), contrib.aggregate
        )
        if contrib.domain:
            result.domains[(username, contrib.domain)] += 1
        if contrib.month:
            result.months[(username, contrib.month)] += 1
    return result
