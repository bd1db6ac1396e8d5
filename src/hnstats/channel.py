"""Backpressured row streaming from an isolated SQLite reader.

A producer owns the cursor and runs in a worker thread or process. It sends
rows to the consumer in ``batch`` messages of at most ``batch_size`` rows and
will not touch the cursor again until the consumer answers with ``ack``, so
at most one batch is ever in flight. The stream ends with exactly one
terminal message, ``done`` or ``error``.

Messages are plain dicts so they cross process boundaries unchanged::

    {"type": "batch", "data": [row, ...]}   producer → consumer
    {"type": "ack"}                         consumer → producer
    {"type": "done"}                        producer → consumer
    {"type": "error", "error": "..."}       producer → consumer
    {"type": "stop"}                        consumer → producer (stream abandoned)
"""

from __future__ import annotations

import logging
import multiprocessing
import os
import queue
import sqlite3
import sys
import threading
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any, Protocol

from hnstats import config

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Message = dict[str, Any]

WORKER_MODES = ("threads", "processes", "serial")


class QueryError(Exception):
    """Raised when the producer ends a stream with an ``error`` message."""


class Mailbox(Protocol):
    def put(self, obj: Message) -> None: ...

    def get(self) -> Message: ...


def is_gil_enabled() -> bool:
    """Whether threads in this interpreter share one GIL.

    Interpreters that predate free-threaded builds always have one.
    """
    check = getattr(sys, "_is_gil_enabled", None)
    return True if check is None else check()


def worker_mode() -> str:
    """Pick where the shard reader's producer lives.

    ``$HNSTATS_WORKER`` wins when it names one of :data:`WORKER_MODES`.
    Otherwise the producer goes to a separate process while a GIL would make
    it compete with the consumer for the interpreter, and to a thread on
    free-threaded builds. ``serial`` keeps the cursor in the caller's thread.
    """
    override = os.environ.get(config.WORKER_ENV, "").lower()
    if override in WORKER_MODES:
        return override
    if override:
        logger.warning("Unknown %s=%r; using auto selection", config.WORKER_ENV, override)
    return "processes" if is_gil_enabled() else "threads"


def _connect_readonly(db_path: str) -> sqlite3.Connection:
    uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
    con = sqlite3.connect(uri, uri=True)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA cache_size = -500000")
    return con


def produce_rows(
    db_path: str,
    query: str,
    params: Sequence[Any],
    outbox: Mailbox,
    inbox: Mailbox,
    batch_size: int,
) -> None:
    """Producer side of the channel. Runs inside the worker."""

    def send_and_wait(batch: list[Row]) -> bool:
        outbox.put({"type": "batch", "data": batch})
        # Suspend until the consumer has dealt with this batch.
        reply = inbox.get()
        return reply.get("type") == "ack"

    try:
        con = _connect_readonly(db_path)
        try:
            batch: list[Row] = []
            # The first fetch may block for a long time (full scan or sort).
            for row in con.execute(query, tuple(params)):
                batch.append(dict(row))
                if len(batch) >= batch_size:
                    if not send_and_wait(batch):
                        return
                    batch = []
            if batch and not send_and_wait(batch):
                return
        finally:
            con.close()
    except Exception as exc:  # every failure becomes the terminal message
        outbox.put({"type": "error", "error": str(exc)})
        return
    outbox.put({"type": "done"})


class _Worker(Protocol):
    def start(self) -> None: ...

    def join(self, timeout: float | None = None) -> None: ...


def _start_producer(
    mode: str,
    db_path: str,
    query: str,
    params: Sequence[Any],
    batch_size: int,
) -> tuple[Mailbox, Mailbox, _Worker]:
    args: tuple[Any, ...]
    worker: _Worker
    if mode == "processes":
        ctx = multiprocessing.get_context()
        outbox: Mailbox = ctx.Queue()
        inbox: Mailbox = ctx.Queue()
        args = (db_path, query, list(params), outbox, inbox, batch_size)
        worker = ctx.Process(target=produce_rows, args=args, daemon=True)
    else:
        outbox = queue.Queue()
        inbox = queue.Queue()
        args = (db_path, query, list(params), outbox, inbox, batch_size)
        worker = threading.Thread(target=produce_rows, args=args, daemon=True)
    worker.start()
    return outbox, inbox, worker


def _serial_batches(
    db_path: str, query: str, params: Sequence[Any], batch_size: int
) -> Iterator[list[Row]]:
    try:
        con = _connect_readonly(db_path)
    except sqlite3.Error as exc:
        raise QueryError(str(exc)) from exc
    try:
        cur = con.execute(query, tuple(params))
        while True:
            rows = cur.fetchmany(batch_size)
            if not rows:
                return
            yield [dict(row) for row in rows]
    except sqlite3.Error as exc:
        raise QueryError(str(exc)) from exc
    finally:
        con.close()


def stream_rows(
    db_path: str | Path,
    query: str,
    params: Sequence[Any] = (),
    *,
    batch_size: int | None = None,
    mode: str | None = None,
) -> Iterator[list[Row]]:
    """Consumer side of the channel: yield batches of rows in cursor order.

    The ack for a batch is sent when the caller asks for the next one, so the
    producer stays suspended while the caller is still processing. Without an
    explicit *batch_size* the configured ``HNSTATS_BATCH_SIZE`` applies. Raises
    :class:`QueryError` if the producer reports a failure.
    """
    batch_size = batch_size or config.BATCH_SIZE
    mode = mode or worker_mode()
    db_path = str(db_path)
    if mode == "serial":
        yield from _serial_batches(db_path, query, params, batch_size)
        return

    outbox, inbox, worker = _start_producer(mode, db_path, query, params, batch_size)
    finished = False
    try:
        while True:
            msg = outbox.get()
            kind = msg.get("type")
            if kind == "batch":
                yield msg["data"]
                inbox.put({"type": "ack"})
            elif kind == "done":
                finished = True
                return
            else:
                finished = True
                raise QueryError(msg.get("error", "unknown producer error"))
    finally:
        if not finished:
            # Abandoned mid-stream; let the producer release its cursor.
            inbox.put({"type": "stop"})
        worker.join()
