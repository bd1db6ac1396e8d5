"""Centralised configuration loaded from environment variables and dotenv."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── Paths ──────────────────────────────────────────────────────────────────
DOCS_DIR: Path = Path(os.getenv("HNSTATS_DOCS_DIR", "docs"))

MANIFEST_PATH: Path = DOCS_DIR / "static-manifest.json"
SHARDS_DIR: Path = DOCS_DIR / "static-shards"
USER_STATS_DIR: Path = DOCS_DIR / "static-user-stats-shards"
USER_STATS_MANIFEST: Path = DOCS_DIR / "static-user-stats-manifest.json"
ARCHIVE_INDEX_PATH: Path = DOCS_DIR / "archive-index.json"

# ── Streaming ──────────────────────────────────────────────────────────────
BATCH_SIZE: int = int(os.getenv("HNSTATS_BATCH_SIZE", "1000"))

# Read at call time so the policy can be switched per run.
WORKER_ENV = "HNSTATS_WORKER"

# ── Logging ────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("HNSTATS_LOG_LEVEL", "INFO")
PROGRESS_EVERY: int = int(os.getenv("HNSTATS_PROGRESS_EVERY", "200000"))
