"""SQLite-backed per-bucket user statistics store."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from pathlib import Path

from hnstats.buckets import BUCKET_COUNT, bucket_char
from hnstats.models import UserAggregate
from hnstats.reduce import Contribution, fold, merge_aggregates

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE users (
    username        TEXT PRIMARY KEY,
    first_time      INTEGER,
    last_time       INTEGER,
    items           INTEGER,
    comments        INTEGER,
    stories         INTEGER,
    ask             INTEGER,
    show            INTEGER,
    launch          INTEGER,
    jobs            INTEGER,
    polls           INTEGER,
    avg_score       REAL,
    sum_score       INTEGER,
    max_score       INTEGER,
    min_score       INTEGER,
    max_score_id    INTEGER,
    max_score_title TEXT
);

CREATE TABLE user_domains (
    username TEXT NOT NULL,
    domain   TEXT NOT NULL,
    count    INTEGER NOT NULL,
    PRIMARY KEY (username, domain)
);

CREATE TABLE user_months (
    username TEXT NOT NULL,
    month    TEXT NOT NULL,
    count    INTEGER NOT NULL,
    PRIMARY KEY (username, month)
);
"""

_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_users_last_time ON users(last_time);
CREATE INDEX IF NOT EXISTS idx_users_items ON users(items);
CREATE INDEX IF NOT EXISTS idx_user_domains ON user_domains(username);
CREATE INDEX IF NOT EXISTS idx_user_months ON user_months(username);
"""

USER_COLUMNS: tuple[str, ...] = tuple(UserAggregate.model_fields)

_UPSERT_USER = (
    f"INSERT OR REPLACE INTO users ({', '.join(USER_COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in USER_COLUMNS)})"
)

_UPSERT_DOMAIN = """
INSERT INTO user_domains (username, domain, count) VALUES (?, ?, ?)
ON CONFLICT(username, domain) DO UPDATE SET count = count + excluded.count
"""

_UPSERT_MONTH = """
INSERT INTO user_months (username, month, count) VALUES (?, ?, ?)
ON CONFLICT(username, month) DO UPDATE SET count = count + excluded.count
"""

# Stay well below SQLite's bound-parameter limit.
_LOOKUP_CHUNK = 500


class BucketStore:
    """One output bucket: ``users``, ``user_domains`` and ``user_months``.

    The database at *db_path* is recreated on construction.
    """

    def __init__(self, db_path: Path, sid: int) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        if db_path.exists():
            db_path.unlink()
        self.path = db_path
        self.sid = sid
        self.char = bucket_char(sid)
        self._con = sqlite3.connect(str(db_path))
        self._con.row_factory = sqlite3.Row
        self._con.execute("PRAGMA journal_mode = MEMORY")
        self._con.execute("PRAGMA synchronous = OFF")
        self._con.executescript(_SCHEMA)

    # ── public ──────────────────────────────────────────────────────────

    def apply(self, contributions: Iterable[Contribution]) -> int:
        """Merge a buffer of contributions in a single transaction.

        Returns the number of distinct users touched.
        """
        folded = fold(contributions)
        if not folded.users:
            return 0
        with self._con:
            existing = self._load_users(folded.users.keys())
            merged = [
                merge_aggregates(existing.get(name), agg).model_dump()
                for name, agg in folded.users.items()
            ]
            self._con.executemany(_UPSERT_USER, merged)
            self._con.executemany(
                _UPSERT_DOMAIN,
                [(u, d, n) for (u, d), n in folded.domains.items()],
            )
            self._con.executemany(
                _UPSERT_MONTH,
                [(u, m, n) for (u, m), n in folded.months.items()],
            )
        return len(folded.users)

    def get_user(self, username: str) -> UserAggregate | None:
        return self._load_users([username]).get(username)

    def domain_counts(self, username: str) -> dict[str, int]:
        cur = self._con.execute(
            "SELECT domain, count FROM user_domains WHERE username = ?", (username,)
        )
        return {row["domain"]: row["count"] for row in cur}

    def month_counts(self, username: str) -> dict[str, int]:
        cur = self._con.execute(
            "SELECT month, count FROM user_months WHERE username = ?", (username,)
        )
        return {row["month"]: row["count"] for row in cur}

    def finalize(self) -> None:
        """Derive ``avg_score`` and build the secondary indexes."""
        with self._con:
            self._con.execute(
                "UPDATE users SET avg_score = CAST(sum_score AS REAL) / NULLIF(items, 0)"
            )
        self._con.executescript(_INDEXES)

    def first_times(self) -> Iterator[int]:
        """Yield every non-null ``first_time`` in the bucket."""
        cur = self._con.execute(
            "SELECT first_time FROM users WHERE first_time IS NOT NULL"
        )
        for row in cur:
            yield row[0]

    def user_count(self) -> int:
        cur = self._con.execute("SELECT COUNT(*) FROM users")
        return cur.fetchone()[0]  # type: ignore[no-any-return]

    def close(self) -> None:
        self._con.close()

    # ── private ─────────────────────────────────────────────────────────

    def _load_users(self, usernames: Iterable[str]) -> dict[str, UserAggregate]:
        names = list(usernames)
        found: dict[str, UserAggregate] = {}
        for start in range(0, len(names), _LOOKUP_CHUNK):
            chunk = names[start : start + _LOOKUP_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            cur = self._con.execute(
                f"SELECT * FROM users WHERE username IN ({placeholders})", chunk
            )
            for row in cur:
                found[row["username"]] = UserAggregate(**dict(row))
        return found


def create_bucket_stores(out_dir: Path) -> list[BucketStore]:
    """Create the fixed set of fresh bucket stores under *out_dir*."""
    stores = [
        BucketStore(out_dir / f"user_{sid}.sqlite", sid) for sid in range(BUCKET_COUNT)
    ]
    logger.info("Created %d bucket stores in %s", len(stores), out_dir)
    return stores


def close_all(stores: Iterable[BucketStore]) -> None:
    for store in stores:
        store.close()
