"""Domain models used across the aggregation passes."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Shard(BaseModel):
    sid: int
    file: str
    tmin: int | None = None
    tmax: int | None = None
    id_lo: int | None = None
    id_hi: int | None = None


class ShardManifest(BaseModel):
    shards: list[Shard] = Field(default_factory=list)
    snapshot_time: int | str | None = None

    def ordered_shards(self) -> list[Shard]:
        """Return shards in ascending ``sid`` order."""
        return sorted(self.shards, key=lambda s: s.sid)


class Item(BaseModel):
    id: int
    type: str | None = None
    time: int | None = None
    by: str | None = None
    title: str | None = None
    url: str | None = None
    score: float | None = None


class UserAggregate(BaseModel):
    username: str
    first_time: int | None = None
    last_time: int | None = None
    items: int = 0
    comments: int = 0
    stories: int = 0
    ask: int = 0
    show: int = 0
    launch: int = 0
    jobs: int = 0
    polls: int = 0
    avg_score: float | None = None  # derived once after ingestion
    sum_score: float = 0
    max_score: float | None = None
    min_score: float | None = None
    max_score_id: int | None = None
    max_score_title: str | None = None


class GrowthPoint(BaseModel):
    month: str
    new_users: int
    total_users: int


# ── User-stats manifest ────────────────────────────────────────────────────


class BucketMeta(BaseModel):
    sid: int
    char: str
    file: str
    bytes: int


class UserTotals(BaseModel):
    users: int = 0


class UserStatsManifest(BaseModel):
    version: int = 1
    created_at: str
    shards: list[BucketMeta] = Field(default_factory=list)
    alphabet: str
    totals: UserTotals = Field(default_factory=UserTotals)
    user_growth: list[GrowthPoint] = Field(default_factory=list)


# ── Archive index ──────────────────────────────────────────────────────────


class ShardSummary(BaseModel):
    sid: int
    file: str
    tmin: int | None = None
    tmax: int | None = None
    tmin_eff: int | None = None
    tmax_eff: int | None = None
    time_null: int = 0
    id_lo: int | None = None
    id_hi: int | None = None
    count: int = 0
    posts: int = 0
    comments: int = 0
    bytes: int = 0


class ArchiveTotals(BaseModel):
    items: int = 0
    posts: int = 0
    comments: int = 0
    bytes: int = 0
    shards: int = 0


class ManifestFile(BaseModel):
    file: str
    bytes: int
    note: str = ""


class ArchiveIndex(BaseModel):
    generated_at: str
    snapshot_time: int | str | None = None
    totals: ArchiveTotals = Field(default_factory=ArchiveTotals)
    manifests: list[ManifestFile] = Field(default_factory=list)
    shards: list[ShardSummary] = Field(default_factory=list)
