"""User-statistics pass — wires shards → stream → buckets → growth → manifest."""

from __future__ import annotations

import logging
import tempfile
import time
import zlib
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from hnstats import config
from hnstats.buckets import BUCKET_COUNT, bucket_for
from hnstats.channel import QueryError, stream_rows
from hnstats.growth import collect_growth
from hnstats.manifest import (
    assemble_user_manifest,
    load_manifest,
    publish_bucket,
    write_json,
)
from hnstats.models import Item, Shard, UserStatsManifest
from hnstats.reduce import Contribution, contribution_from_item
from hnstats.shardfiles import open_shard
from hnstats.store import BucketStore, close_all, create_bucket_stores

logger = logging.getLogger(__name__)

ITEMS_QUERY = (
    "SELECT id, type, time, by, title, url, score FROM items WHERE by IS NOT NULL"
)


@dataclass
class AggregationProgress:
    """Running counters of the aggregation pass. Informational only."""

    shards_total: int = 0
    shards_done: int = 0
    shards_skipped: int = 0
    items: int = 0
    users: int = 0  # distinct per shard, summed across shards


def _scan_shard(
    db_path: Path,
    progress: AggregationProgress,
    *,
    batch_size: int,
    mode: str | None,
    progress_every: int,
) -> list[list[Contribution]]:
    """Stream one shard and route every item into its bucket's buffer."""
    buffers: list[list[Contribution]] = [[] for _ in range(BUCKET_COUNT)]
    seen: set[str] = set()

    for batch in stream_rows(db_path, ITEMS_QUERY, batch_size=batch_size, mode=mode):
        for row in batch:
            item = Item.model_validate(row)
            username = str(item.by)
            if username not in seen:
                seen.add(username)
                progress.users += 1
            buffers[bucket_for(username)].append(contribution_from_item(username, item))
            progress.items += 1
            if progress_every and progress.items % progress_every == 0:
                logger.info(
                    "  items %s | users %s", f"{progress.items:,}", f"{progress.users:,}"
                )
    return buffers


def aggregate_shards(
    shards: Sequence[Shard],
    shards_dir: Path,
    stores: Sequence[BucketStore],
    scratch_dir: Path,
    *,
    batch_size: int = config.BATCH_SIZE,
    mode: str | None = None,
    progress_every: int = config.PROGRESS_EVERY,
) -> AggregationProgress:
    """Fold every shard's items into the bucket stores, one shard at a time.

    Missing or undecompressable shards are skipped with a warning. A shard
    whose scan fails, or which holds a row that does not fit the item schema,
    is skipped as a whole: none of its rows are committed.
    """
    progress = AggregationProgress(shards_total=len(shards))
    ordered = sorted(shards, key=lambda s: s.sid)

    for index, shard in enumerate(ordered, 1):
        shard_path = shards_dir / shard.file
        if not shard_path.exists():
            logger.warning("Missing shard file: %s", shard_path)
            progress.shards_skipped += 1
            continue

        logger.info("[users] shard %d/%d sid %d", index, len(ordered), shard.sid)
        try:
            with open_shard(shard_path, scratch_dir) as db_path:
                buffers = _scan_shard(
                    db_path,
                    progress,
                    batch_size=batch_size,
                    mode=mode,
                    progress_every=progress_every,
                )
        except (OSError, EOFError, zlib.error) as exc:
            logger.warning("Failed to open shard %d: %s", shard.sid, exc)
            progress.shards_skipped += 1
            continue
        except (QueryError, ValidationError) as exc:
            logger.error("Scan of shard %d failed, skipping it: %s", shard.sid, exc)
            progress.shards_skipped += 1
            continue

        for idx, buffer in enumerate(buffers):
            if buffer:
                stores[idx].apply(buffer)
        progress.shards_done += 1
        logger.info(
            "[users] shard %d/%d sid %d | items %s | users %s ok",
            index,
            len(ordered),
            shard.sid,
            f"{progress.items:,}",
            f"{progress.users:,}",
        )

    return progress


def build_user_stats(
    manifest_path: Path,
    shards_dir: Path,
    out_dir: Path,
    out_manifest: Path,
    *,
    gzip_out: bool = False,
    keep_sqlite: bool = False,
    batch_size: int = config.BATCH_SIZE,
    mode: str | None = None,
) -> UserStatsManifest:
    """Execute the full user-statistics pass and write its manifest."""
    start = time.perf_counter()
    manifest = load_manifest(manifest_path)
    shards = manifest.ordered_shards()

    out_dir.mkdir(parents=True, exist_ok=True)
    stores = create_bucket_stores(out_dir)
    try:
        # ── 1. Aggregate every shard ─────────────────────────────────────
        with tempfile.TemporaryDirectory(
            prefix="hnstats-user-", ignore_cleanup_errors=True
        ) as scratch:
            progress = aggregate_shards(
                shards,
                shards_dir,
                stores,
                Path(scratch),
                batch_size=batch_size,
                mode=mode,
            )
        logger.info(
            "[users] items %s | users %s | shards %d ok, %d skipped",
            f"{progress.items:,}",
            f"{progress.users:,}",
            progress.shards_done,
            progress.shards_skipped,
        )

        # ── 2. Derived fields and indexes ────────────────────────────────
        for store in stores:
            store.finalize()

        # ── 3. Growth curve over final first_time values ─────────────────
        growth, users = collect_growth(stores)

        # ── 4. Publish buckets ───────────────────────────────────────────
        buckets = [publish_bucket(store, gzip_out, keep_sqlite) for store in stores]
    finally:
        close_all(stores)

    result = assemble_user_manifest(buckets, users, growth)
    write_json(out_manifest, result)
    logger.info("User stats done in %.1fs", time.perf_counter() - start)
    return result
