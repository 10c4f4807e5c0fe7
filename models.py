"""Shared typed models for the sync job."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class TriggerKind(StrEnum):
    SCHEDULE = "schedule"
    PUSH = "push"
    MANUAL = "manual"


class RunOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    NO_OP = "no-op"


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    """One incoming trigger: a cron tick, a push, or a manual dispatch."""

    kind: TriggerKind
    occurred_at: datetime
    ref: str | None = None
    actor: str | None = None


@dataclass(frozen=True, slots=True)
class Video:
    """Source item listed in the job configuration."""

    video_id: str
    title: str = ""
    url: str = ""


@dataclass(frozen=True, slots=True)
class Chunk:
    index: int
    text: str
    embedding: tuple[float, ...] = ()


@dataclass(frozen=True, slots=True)
class TranscriptRecord:
    """Cleaned, chunked and embedded transcript for one video."""

    video_id: str
    title: str
    url: str
    text_hash: str
    chunks: tuple[Chunk, ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "video_id": self.video_id,
            "title": self.title,
            "url": self.url,
            "text_hash": self.text_hash,
            "chunks": [
                {"index": c.index, "text": c.text, "embedding": list(c.embedding)}
                for c in self.chunks
            ],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TranscriptRecord:
        return cls(
            video_id=payload["video_id"],
            title=payload.get("title", ""),
            url=payload.get("url", ""),
            text_hash=payload.get("text_hash", ""),
            chunks=tuple(
                Chunk(
                    index=int(c["index"]),
                    text=c["text"],
                    embedding=tuple(float(v) for v in c.get("embedding", [])),
                )
                for c in payload.get("chunks", [])
            ),
        )


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Immutable dataset produced by one Run.

    Records are kept sorted by video_id so that two Snapshots built from the
    same data serialize to the same bytes regardless of fetch order.
    """

    records: tuple[TranscriptRecord, ...] = ()
    embedding_model: str = ""

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.records, key=lambda r: r.video_id))
        object.__setattr__(self, "records", ordered)

    @property
    def is_empty(self) -> bool:
        return not self.records

    def by_id(self) -> dict[str, TranscriptRecord]:
        return {r.video_id: r for r in self.records}

    def to_payload(self) -> dict[str, Any]:
        return {
            "embedding_model": self.embedding_model,
            "records": [r.to_payload() for r in self.records],
        }

    def canonical_json(self) -> str:
        return json.dumps(self.to_payload(), sort_keys=True, separators=(",", ":"))

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Snapshot:
        return cls(
            records=tuple(TranscriptRecord.from_payload(r) for r in payload.get("records", [])),
            embedding_model=payload.get("embedding_model", ""),
        )


EMPTY_SNAPSHOT = Snapshot()


@dataclass(frozen=True, slots=True)
class PublishedState:
    """Versioned record of the currently published Snapshot.

    version 0 is the empty baseline. (version, content_hash) is the token
    checked at publish time.
    """

    version: int
    content_hash: str
    snapshot: Snapshot
    message: str = ""
    published_at: datetime | None = None
    run_id: str | None = None

    @classmethod
    def baseline(cls) -> PublishedState:
        return cls(version=0, content_hash=EMPTY_SNAPSHOT.content_hash, snapshot=EMPTY_SNAPSHOT)


@dataclass(frozen=True, slots=True)
class SnapshotDiff:
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    changed: tuple[str, ...] = ()
    # (previous, candidate) when the embedding model differs
    embedding_model: tuple[str, str] | None = None

    @property
    def is_material(self) -> bool:
        return bool(self.added or self.removed or self.changed or self.embedding_model)


@dataclass(frozen=True, slots=True)
class PublishDecision:
    should_publish: bool
    diff: SnapshotDiff
    message: str


@dataclass(slots=True)
class Run:
    """One execution of the job, from admitted trigger to publish decision."""

    run_id: str
    job_name: str
    trigger: TriggerKind
    started_at: datetime
    finished_at: datetime | None = None
    outcome: RunOutcome | None = None
    reason: str = ""
    version: int | None = None
    content_hash: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def finish(self, outcome: RunOutcome, finished_at: datetime, reason: str = "") -> None:
        self.outcome = outcome
        self.finished_at = finished_at
        self.reason = reason
