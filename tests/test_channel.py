"""Unit tests for the backpressured streaming channel."""

import queue
import threading
import time
from pathlib import Path

import pytest
from conftest import write_items

from hnstats import config
from hnstats.channel import QueryError, produce_rows, stream_rows, worker_mode

_QUERY = "SELECT id, by FROM items ORDER BY id"


def _db(tmp_path: Path, n: int) -> Path:
    return write_items(
        tmp_path / "items.sqlite",
        [{"id": i, "type": "comment", "by": f"u{i}"} for i in range(1, n + 1)],
    )


def _drain(outbox: queue.Queue) -> list[dict]:
    messages = []
    while True:
        msg = outbox.get(timeout=5)
        messages.append(msg)
        if msg["type"] == "batch":
            continue
        return messages


class TestProducer:
    def test_one_batch_in_flight(self, tmp_path: Path) -> None:
        db = _db(tmp_path, 25)
        outbox: queue.Queue = queue.Queue()
        inbox: queue.Queue = queue.Queue()
        worker = threading.Thread(
            target=produce_rows, args=(str(db), _QUERY, (), outbox, inbox, 10)
        )
        worker.start()

        sizes = []
        while True:
            msg = outbox.get(timeout=5)
            if msg["type"] != "batch":
                break
            sizes.append(len(msg["data"]))
            # The producer is suspended until we ack.
            time.sleep(0.05)
            assert outbox.empty()
            inbox.put({"type": "ack"})

        worker.join(timeout=5)
        assert msg == {"type": "done"}
        assert sizes == [10, 10, 5]
        assert outbox.empty()

    def test_error_is_terminal(self, tmp_path: Path) -> None:
        db = _db(tmp_path, 3)
        outbox: queue.Queue = queue.Queue()
        inbox: queue.Queue = queue.Queue()
        produce_rows(str(db), "SELECT nope FROM items", (), outbox, inbox, 10)

        messages = _drain(outbox)
        assert len(messages) == 1
        assert messages[0]["type"] == "error"
        assert "nope" in messages[0]["error"]
        assert outbox.empty()

    def test_missing_database_is_an_error(self, tmp_path: Path) -> None:
        outbox: queue.Queue = queue.Queue()
        produce_rows(str(tmp_path / "absent.sqlite"), _QUERY, (), outbox, queue.Queue(), 10)
        assert outbox.get(timeout=5)["type"] == "error"
        assert outbox.empty()

    def test_empty_result_sends_only_done(self, tmp_path: Path) -> None:
        db = _db(tmp_path, 0)
        outbox: queue.Queue = queue.Queue()
        produce_rows(str(db), _QUERY, (), outbox, queue.Queue(), 10)
        assert _drain(outbox) == [{"type": "done"}]

    def test_stop_releases_producer(self, tmp_path: Path) -> None:
        db = _db(tmp_path, 30)
        outbox: queue.Queue = queue.Queue()
        inbox: queue.Queue = queue.Queue()
        worker = threading.Thread(
            target=produce_rows, args=(str(db), _QUERY, (), outbox, inbox, 10)
        )
        worker.start()
        assert outbox.get(timeout=5)["type"] == "batch"
        inbox.put({"type": "stop"})
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert outbox.empty()


class TestStreamRows:
    @pytest.mark.parametrize("mode", ["threads", "processes", "serial"])
    def test_delivers_every_row_in_order(self, tmp_path: Path, mode: str) -> None:
        db = _db(tmp_path, 2345)
        batches = list(stream_rows(db, _QUERY, batch_size=1000, mode=mode))
        assert [len(b) for b in batches] == [1000, 1000, 345]
        ids = [row["id"] for batch in batches for row in batch]
        assert ids == list(range(1, 2346))
        assert batches[0][0] == {"id": 1, "by": "u1"}

    def test_params(self, tmp_path: Path) -> None:
        db = _db(tmp_path, 50)
        rows = [
            row
            for batch in stream_rows(db, "SELECT id FROM items WHERE id > ?", (45,))
            for row in batch
        ]
        assert [r["id"] for r in rows] == [46, 47, 48, 49, 50]

    @pytest.mark.parametrize("mode", ["threads", "processes", "serial"])
    def test_error_raises(self, tmp_path: Path, mode: str) -> None:
        db = _db(tmp_path, 5)
        with pytest.raises(QueryError):
            list(stream_rows(db, "SELECT * FROM missing_table", mode=mode))

    @pytest.mark.parametrize("mode", ["threads", "serial"])
    def test_default_batch_size_follows_config(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, mode: str
    ) -> None:
        monkeypatch.setattr(config, "BATCH_SIZE", 7)
        db = _db(tmp_path, 20)
        assert [len(b) for b in stream_rows(db, _QUERY, mode=mode)] == [7, 7, 6]

    def test_abandoned_stream_joins_producer(self, tmp_path: Path) -> None:
        db = _db(tmp_path, 100)
        stream = stream_rows(db, _QUERY, batch_size=10, mode="threads")
        first = next(stream)
        assert len(first) == 10
        stream.close()  # must not hang waiting on the suspended producer


class TestWorkerMode:
    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(config.WORKER_ENV, "serial")
        assert worker_mode() == "serial"
        monkeypatch.setenv(config.WORKER_ENV, "PROCESSES")
        assert worker_mode() == "processes"

    def test_auto(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(config.WORKER_ENV, raising=False)
        assert worker_mode() in {"threads", "processes"}

    def test_auto_follows_gil(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(config.WORKER_ENV, raising=False)
        monkeypatch.setattr("hnstats.channel.is_gil_enabled", lambda: True)
        assert worker_mode() == "processes"
        monkeypatch.setattr("hnstats.channel.is_gil_enabled", lambda: False)
        assert worker_mode() == "threads"
