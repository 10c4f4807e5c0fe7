from pathlib import Path
from typing import Any

from job_config import JobConfig, parse_config
from models import Chunk, Snapshot, TranscriptRecord
from report import build_status, format_status, summarize_runs
from snapshot_store import SnapshotStore


def _config(tmp_path: Path) -> JobConfig:
    data: dict[str, Any] = {
        "name": "daily-index",
        "schedule": "0 6 * * *",
        "executor": {"transcript_api_url": "https://t.example.com", "videos": ["a"]},
        "publish": {"snapshot_path": "data/index.json"},
    }
    return parse_config(data, base_dir=tmp_path)


def test_summarize_runs_counts_and_latest() -> None:
    rows = [
        {"run_id": "1", "trigger": "schedule", "outcome": "success", "reason": "initial snapshot"},
        {"run_id": "2", "trigger": "manual", "outcome": "no-op", "reason": "no material change"},
        {"run_id": "3", "trigger": "schedule", "outcome": "failure", "reason": "ItemFetchError"},
        {"run_id": "4", "trigger": "schedule", "outcome": "success", "reason": "update"},
    ]
    summary = summarize_runs(rows)

    assert summary["total_runs"] == 4
    assert summary["outcomes"] == {"success": 2, "no-op": 1, "failure": 1}
    assert summary["triggers"] == {"schedule": 3, "manual": 1}
    assert summary["last_success"]["run_id"] == "4"
    assert summary["last_failure"]["run_id"] == "3"


def test_build_status_on_fresh_job(tmp_path: Path) -> None:
    status = build_status(_config(tmp_path))

    assert status["published_version"] == 0
    assert status["records"] == 0
    assert status["runs"]["total_runs"] == 0
    assert "published version: 0" in format_status(status)


def test_build_status_after_publish(tmp_path: Path) -> None:
    config = _config(tmp_path)
    snapshot = Snapshot(
        records=(TranscriptRecord("a", "A", "u", "h", (Chunk(0, "text", (1.0,)),)),),
        embedding_model="m",
    )
    SnapshotStore(config.publish.snapshot_path, config.publish.history_path).compare_and_publish(
        snapshot, expected_version=0, message="initial snapshot"
    )

    status = build_status(config)

    assert status["published_version"] == 1
    assert status["records"] == 1
    assert status["publish_count"] == 1
    assert "last message:      initial snapshot" in format_status(status)
