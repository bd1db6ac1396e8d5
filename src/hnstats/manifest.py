"""Manifest input parsing and output assembly."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

from hnstats.buckets import ALPHABET
from hnstats.models import (
    BucketMeta,
    GrowthPoint,
    ShardManifest,
    UserStatsManifest,
    UserTotals,
)
from hnstats.shardfiles import gzip_file, validate_gzip
from hnstats.store import BucketStore

logger = logging.getLogger(__name__)


class ManifestError(Exception):
    """Raised when the input manifest is missing, unreadable or empty."""


def utc_now_iso() -> str:
    """Current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def load_manifest(path: Path) -> ShardManifest:
    """Parse the shard manifest at *path*."""
    if not path.exists():
        raise ManifestError(f"Manifest not found: {path}")
    try:
        manifest = ShardManifest.model_validate_json(path.read_bytes())
    except ValidationError as exc:
        raise ManifestError(f"Invalid manifest {path}: {exc}") from exc
    if not manifest.shards:
        raise ManifestError("No shards found in manifest.")
    logger.info("Loaded manifest %s: %d shards", path, len(manifest.shards))
    return manifest


def publish_bucket(store: BucketStore, gzip_out: bool, keep_sqlite: bool) -> BucketMeta:
    """Close *store* and describe its final artifact, gzipping if asked."""
    store.close()
    final_path = store.path
    size = final_path.stat().st_size
    if gzip_out:
        gz_path = final_path.with_name(final_path.name + ".gz")
        size = gzip_file(final_path, gz_path)
        validate_gzip(gz_path)
        if not keep_sqlite:
            final_path.unlink()
        final_path = gz_path
    return BucketMeta(sid=store.sid, char=store.char, file=final_path.name, bytes=size)


def assemble_user_manifest(
    buckets: list[BucketMeta],
    users: int,
    growth: list[GrowthPoint],
    created_at: str | None = None,
) -> UserStatsManifest:
    return UserStatsManifest(
        version=1,
        created_at=created_at or utc_now_iso(),
        shards=buckets,
        alphabet=ALPHABET,
        totals=UserTotals(users=users),
        user_growth=growth,
    )


def write_json(path: Path, model: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(model.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Wrote %s", path)
