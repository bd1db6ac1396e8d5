"""Shard and artifact file handling: gzip in, gzip out, protected outputs."""

from __future__ import annotations

import gzip
import logging
import os
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# 1MB buffer for streaming copies.
BUFFER_SIZE = 1024 * 1024


class ShardMissingError(FileNotFoundError):
    """Raised when a shard listed in the manifest has no backing file."""


class GzipValidationError(RuntimeError):
    """Raised when a freshly written gzip artifact does not decompress."""


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove scratch file %s: %s", path, exc)


@contextmanager
def open_shard(shard_path: Path, scratch_dir: Path) -> Iterator[Path]:
    """Yield a path SQLite can open for *shard_path*.

    ``.gz`` shards are decompressed into *scratch_dir*; the scratch copy is
    removed when the block exits, whatever the outcome.
    """
    if shard_path.suffix != ".gz":
        yield shard_path
        return

    scratch = scratch_dir / shard_path.stem
    try:
        with gzip.open(shard_path, "rb") as src, open(scratch, "wb") as dst:
            shutil.copyfileobj(src, dst, BUFFER_SIZE)
        yield scratch
    finally:
        _discard(scratch)


def gzip_file(src: Path, dst: Path) -> int:
    """Compress *src* to *dst* at level 9 and return the compressed size."""
    tmp = dst.with_name(dst.name + ".tmp")
    with open(src, "rb") as fin, gzip.open(tmp, "wb", compresslevel=9) as fout:
        shutil.copyfileobj(fin, fout, BUFFER_SIZE)
    os.replace(tmp, dst)
    return dst.stat().st_size


def validate_gzip(path: Path) -> None:
    """Decompress *path* fully; raise :class:`GzipValidationError` on failure."""
    try:
        with gzip.open(path, "rb") as fh:
            while fh.read(BUFFER_SIZE):
                pass
    except (OSError, EOFError) as exc:
        raise GzipValidationError(f"gzip validation failed for {path}: {exc}") from exc


def ensure_writable_or_backup(path: Path, stamp: str | None = None) -> Path | None:
    """Move a non-writable *path* into ``backups-<stamp>/`` beside it.

    Returns the backup location, or None when nothing had to move.
    """
    if not path.exists() or os.access(path, os.W_OK):
        return None
    stamp = stamp or datetime.now(UTC).isoformat().replace(":", "-").replace(".", "-")
    backup_dir = path.parent / f"backups-{stamp}"
    backup_dir.mkdir(parents=True, exist_ok=True)
    dest = backup_dir / path.name
    path.rename(dest)
    logger.info("Moved protected file to %s", dest)
    return dest
