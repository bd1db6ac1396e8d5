"""Shared fixtures: tiny item shards on disk."""

from __future__ import annotations

import gzip
import shutil
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from hnstats import config

_ITEMS_SCHEMA = """
CREATE TABLE items (
    id    INTEGER PRIMARY KEY,
    type  TEXT,
    time  INTEGER,
    by    TEXT,
    title TEXT,
    url   TEXT,
    score INTEGER
)
"""

_COLUMNS = ("id", "type", "time", "by", "title", "url", "score")

ShardWriter = Callable[..., Path]


def write_items(db_path: Path, items: list[dict[str, Any]]) -> Path:
    con = sqlite3.connect(str(db_path))
    con.execute(_ITEMS_SCHEMA)
    con.executemany(
        f"INSERT INTO items ({', '.join(_COLUMNS)}) VALUES ({', '.join('?' for _ in _COLUMNS)})",
        [tuple(item.get(c) for c in _COLUMNS) for item in items],
    )
    con.commit()
    con.close()
    return db_path


@pytest.fixture(autouse=True)
def _thread_worker(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(config.WORKER_ENV, "threads")


@pytest.fixture
def shard_writer(tmp_path: Path) -> ShardWriter:
    """Return ``write(name, items, gz=False) -> Path`` creating shards in ``tmp_path/shards``."""
    shards_dir = tmp_path / "shards"
    shards_dir.mkdir()

    def write(name: str, items: list[dict[str, Any]], gz: bool = False) -> Path:
        raw = write_items(shards_dir / name, items)
        if not gz:
            return raw
        gz_path = raw.with_name(raw.name + ".gz")
        with open(raw, "rb") as src, gzip.open(gz_path, "wb") as dst:
            shutil.copyfileobj(src, dst)
        raw.unlink()
        return gz_path

    return write
