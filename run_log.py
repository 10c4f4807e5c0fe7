"""CSV run log: one row per Run."""

from __future__ import annotations

import csv
import logging
from pathlib import Path

from models import Run

LOGGER = logging.getLogger(__name__)

RUN_LOG_COLUMNS = [
    "run_id",
    "job",
    "trigger",
    "started_at",
    "finished_at",
    "duration_seconds",
    "outcome",      # success | failure | no-op
    "reason",       # failure reason or publish summary
    "version",      # published version after the Run (empty on failure)
    "content_hash", # candidate snapshot hash, when one was produced
]


def append_run(run: Run, path: Path) -> None:
    """Append a row for run to the CSV (creating it with a header if needed)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    write_header = not path.exists() or path.stat().st_size == 0

    duration: float | str = ""
    if run.finished_at is not None:
        duration = round((run.finished_at - run.started_at).total_seconds(), 3)

    row = {
        "run_id": run.run_id,
        "job": run.job_name,
        "trigger": str(run.trigger),
        "started_at": run.started_at.isoformat(),
        "finished_at": run.finished_at.isoformat() if run.finished_at else "",
        "duration_seconds": duration,
        "outcome": str(run.outcome) if run.outcome else "",
        "reason": _as_text(run.reason, max_len=400),
        "version": "" if run.version is None else run.version,
        "content_hash": run.content_hash,
    }

    with path.open("a", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=RUN_LOG_COLUMNS)
        if write_header:
            writer.writeheader()
        writer.writerow(row)

    LOGGER.info("Recorded run_id=%s outcome=%s in %s", run.run_id, row["outcome"], path)


def read_runs(path: Path) -> list[dict[str, str]]:
    path = Path(path)
    if not path.exists():
        return []
    with path.open(newline="", encoding="utf-8") as fh:
        return list(csv.DictReader(fh))


def _as_text(value: str, max_len: int = 500) -> str:
    """Single-line, stripped, truncated to max_len chars."""
    s = " ".join(value.split()) if isinstance(value, str) else ""
    if len(s) > max_len:
        return s[: max_len - 1] + "…"
    return s
