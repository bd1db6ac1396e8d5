"""Unit tests for shard/artifact file helpers."""

import gzip
from pathlib import Path

import pytest

from hnstats.shardfiles import (
    GzipValidationError,
    ensure_writable_or_backup,
    gzip_file,
    open_shard,
    validate_gzip,
)


class TestOpenShard:
    def test_plain_file_passes_through(self, tmp_path: Path) -> None:
        shard = tmp_path / "s.sqlite"
        shard.write_bytes(b"data")
        with open_shard(shard, tmp_path / "scratch") as path:
            assert path == shard
        assert shard.exists()

    def test_gz_is_decompressed_then_removed(self, tmp_path: Path) -> None:
        shard = tmp_path / "s.sqlite.gz"
        shard.write_bytes(gzip.compress(b"payload"))
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        with open_shard(shard, scratch) as path:
            assert path == scratch / "s.sqlite"
            assert path.read_bytes() == b"payload"
        assert not (scratch / "s.sqlite").exists()

    def test_scratch_removed_when_body_fails(self, tmp_path: Path) -> None:
        shard = tmp_path / "s.sqlite.gz"
        shard.write_bytes(gzip.compress(b"payload"))
        with pytest.raises(RuntimeError):
            with open_shard(shard, tmp_path):
                raise RuntimeError("boom")
        assert not (tmp_path / "s.sqlite").exists()

    def test_truncated_gz_raises(self, tmp_path: Path) -> None:
        shard = tmp_path / "s.sqlite.gz"
        shard.write_bytes(gzip.compress(b"x" * 10_000)[:20])
        with pytest.raises(EOFError):
            with open_shard(shard, tmp_path):
                pass
        assert not (tmp_path / "s.sqlite").exists()


class TestGzip:
    def test_round_trip_and_size(self, tmp_path: Path) -> None:
        src = tmp_path / "a.sqlite"
        src.write_bytes(b"abc" * 1000)
        dst = tmp_path / "a.sqlite.gz"
        size = gzip_file(src, dst)
        assert size == dst.stat().st_size
        assert not (tmp_path / "a.sqlite.gz.tmp").exists()
        validate_gzip(dst)
        assert gzip.decompress(dst.read_bytes()) == src.read_bytes()

    def test_validate_rejects_garbage(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.gz"
        bad.write_bytes(b"definitely not gzip")
        with pytest.raises(GzipValidationError):
            validate_gzip(bad)


class TestEnsureWritableOrBackup:
    def test_absent_or_writable_is_left_alone(self, tmp_path: Path) -> None:
        assert ensure_writable_or_backup(tmp_path / "missing.json") is None
        target = tmp_path / "ok.json"
        target.write_text("{}")
        assert ensure_writable_or_backup(target) is None
        assert target.exists()

    def test_protected_file_moves_to_backup_dir(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "archive-index.json"
        target.write_text("old")
        monkeypatch.setattr("hnstats.shardfiles.os.access", lambda path, mode: False)

        dest = ensure_writable_or_backup(target, stamp="2024-01-01T00-00-00")

        assert dest == tmp_path / "backups-2024-01-01T00-00-00" / "archive-index.json"
        assert dest.read_text() == "old"
        assert not target.exists()
