"""CLI entry-point: ``python -m hnstats archive-index`` / ``python -m hnstats user-stats``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from hnstats import config
from hnstats.archive import run_archive_index
from hnstats.channel import WORKER_MODES
from hnstats.manifest import ManifestError
from hnstats.pipeline import build_user_stats
from hnstats.shardfiles import GzipValidationError, ShardMissingError

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--manifest",
        type=Path,
        default=config.MANIFEST_PATH,
        help=f"Shard manifest (default: {config.MANIFEST_PATH}).",
    )
    parser.add_argument(
        "--shards-dir",
        type=Path,
        default=config.SHARDS_DIR,
        help=f"Directory holding the item shards (default: {config.SHARDS_DIR}).",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=config.LOG_LEVEL,
        help=f"Logging level (default: {config.LOG_LEVEL}).",
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hnstats",
        description="Build the archive index and per-user statistics from item shards.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── archive-index ─────────────────────────────────────────────────
    archive_parser = sub.add_parser(
        "archive-index", help="Summarise item counts and time ranges per shard."
    )
    _add_common(archive_parser)
    archive_parser.add_argument(
        "--out",
        type=Path,
        default=config.ARCHIVE_INDEX_PATH,
        help=f"Output JSON path (default: {config.ARCHIVE_INDEX_PATH}).",
    )

    # ── user-stats ────────────────────────────────────────────────────
    users_parser = sub.add_parser(
        "user-stats", help="Build bucketed per-user statistics databases."
    )
    _add_common(users_parser)
    users_parser.add_argument(
        "--out-dir",
        type=Path,
        default=config.USER_STATS_DIR,
        help=f"Directory for user_<sid>.sqlite buckets (default: {config.USER_STATS_DIR}).",
    )
    users_parser.add_argument(
        "--out-manifest",
        type=Path,
        default=config.USER_STATS_MANIFEST,
        help=f"Output manifest path (default: {config.USER_STATS_MANIFEST}).",
    )
    users_parser.add_argument(
        "--gzip",
        action="store_true",
        help="Publish buckets as validated .sqlite.gz files.",
    )
    users_parser.add_argument(
        "--keep-sqlite",
        action="store_true",
        help="With --gzip, keep the uncompressed .sqlite next to the .gz.",
    )
    users_parser.add_argument(
        "--batch-size",
        type=int,
        default=config.BATCH_SIZE,
        help=f"Rows per streamed batch (default: {config.BATCH_SIZE}).",
    )
    users_parser.add_argument(
        "--worker",
        choices=WORKER_MODES,
        default=None,
        help=f"Where the shard scan runs (default: ${config.WORKER_ENV} or auto).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    _setup_logging(args.log_level)

    try:
        if args.command == "archive-index":
            run_archive_index(args.manifest, args.shards_dir, args.out)
        else:
            if args.batch_size < 1:
                parser.error(f"--batch-size must be positive, got {args.batch_size}")
            build_user_stats(
                args.manifest,
                args.shards_dir,
                args.out_dir,
                args.out_manifest,
                gzip_out=args.gzip,
                keep_sqlite=args.keep_sqlite,
                batch_size=args.batch_size,
                mode=args.worker,
            )
    except (ManifestError, ShardMissingError, GzipValidationError) as exc:
        logger.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
