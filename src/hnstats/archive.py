"""Archive index — per-shard counts and effective time ranges."""

from __future__ import annotations

import logging
import sqlite3
import tempfile
from pathlib import Path

from hnstats.manifest import load_manifest, utc_now_iso, write_json
from hnstats.models import ArchiveIndex, ManifestFile, Shard, ShardManifest, ShardSummary
from hnstats.ranges import effective_range
from hnstats.shardfiles import ShardMissingError, ensure_writable_or_backup, open_shard

logger = logging.getLogger(__name__)

# Sibling manifests listed in the index when present.
MANIFEST_FILES: list[tuple[str, str]] = [
    ("static-manifest.json", "Shard metadata, ranges, and snapshot time."),
    ("filter-manifest.json", "Prime filter data for the main view."),
]

_COUNTS_QUERY = """
SELECT
    COUNT(*) AS items,
    SUM(CASE WHEN type = 'comment' THEN 1 ELSE 0 END) AS comments,
    SUM(CASE WHEN type IS NOT 'comment' THEN 1 ELSE 0 END) AS posts
FROM items
"""


def list_manifest_files(docs_dir: Path) -> list[ManifestFile]:
    found: list[ManifestFile] = []
    for name, note in MANIFEST_FILES:
        path = docs_dir / name
        if path.exists():
            found.append(ManifestFile(file=name, bytes=path.stat().st_size, note=note))
    return found


def summarize_shard(db_path: Path, shard: Shard, file_bytes: int) -> ShardSummary:
    """Count items in one shard and estimate its effective time range."""
    con = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
    try:
        rng = effective_range(con, shard)
        items, comments, posts = con.execute(_COUNTS_QUERY).fetchone()
    finally:
        con.close()

    return ShardSummary(
        sid=shard.sid,
        file=shard.file,
        tmin=shard.tmin,
        tmax=shard.tmax,
        tmin_eff=rng.tmin_eff,
        tmax_eff=rng.tmax_eff,
        time_null=rng.time_null,
        id_lo=shard.id_lo,
        id_hi=shard.id_hi,
        count=items or 0,
        posts=posts or 0,
        comments=comments or 0,
        bytes=file_bytes,
    )


def build_archive_index(
    manifest: ShardManifest, shards_dir: Path, docs_dir: Path
) -> ArchiveIndex:
    """Summarise every shard. Any missing shard aborts the whole pass."""
    shards = manifest.ordered_shards()
    index = ArchiveIndex(
        generated_at=utc_now_iso(),
        snapshot_time=manifest.snapshot_time,
        manifests=list_manifest_files(docs_dir),
    )
    index.totals.shards = len(shards)

    with tempfile.TemporaryDirectory(
        prefix="hnstats-archive-", ignore_cleanup_errors=True
    ) as scratch:
        for position, shard in enumerate(shards, 1):
            logger.info("[scan] shard %d/%d sid %d", position, len(shards), shard.sid)
            shard_path = shards_dir / shard.file
            if not shard_path.exists():
                raise ShardMissingError(f"Shard missing: {shard_path}")
            size = shard_path.stat().st_size
            with open_shard(shard_path, Path(scratch)) as db_path:
                summary = summarize_shard(db_path, shard, size)

            index.totals.items += summary.count
            index.totals.comments += summary.comments
            index.totals.posts += summary.posts
            index.totals.bytes += size
            index.shards.append(summary)

    logger.info(
        "[scan] %d shards, %s items", len(shards), f"{index.totals.items:,}"
    )
    return index


def write_archive_index(index: ArchiveIndex, out_path: Path) -> None:
    ensure_writable_or_backup(out_path)
    write_json(out_path, index)


def run_archive_index(
    manifest_path: Path, shards_dir: Path, out_path: Path
) -> ArchiveIndex:
    """Build and write the archive index next to the input manifest."""
    manifest = load_manifest(manifest_path)
    index = build_archive_index(manifest, shards_dir, manifest_path.parent)
    write_archive_index(index, out_path)
    return index
