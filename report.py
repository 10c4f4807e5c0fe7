"""Status reporting over the run log and publish history.

Used by ``main.py status``; also runnable standalone:
    python report.py [path/to/sync_job.yaml]
"""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Any

from job_config import JobConfig
from run_log import read_runs
from snapshot_store import SnapshotStore
from trigger import TriggerController

LOGGER = logging.getLogger(__name__)

RECENT_RUNS_N = 5


def summarize_runs(rows: list[dict[str, str]]) -> dict[str, Any]:
    """Counts per outcome and trigger, plus the latest success and failure."""
    outcomes = Counter(r.get("outcome", "") for r in rows)
    triggers = Counter(r.get("trigger", "") for r in rows)

    last_success = next((r for r in reversed(rows) if r.get("outcome") == "success"), None)
    last_failure = next((r for r in reversed(rows) if r.get("outcome") == "failure"), None)

    return {
        "total_runs": len(rows),
        "outcomes": dict(outcomes),
        "triggers": dict(triggers),
        "last_success": last_success,
        "last_failure": last_failure,
        "recent": rows[-RECENT_RUNS_N:],
    }


def build_status(config: JobConfig) -> dict[str, Any]:
    store = SnapshotStore(config.publish.snapshot_path, config.publish.history_path)
    head = store.load()
    controller = TriggerController(config)
    last_tick = controller.last_fired_tick()

    return {
        "job": config.name,
        "published_version": head.version,
        "published_content_hash": head.content_hash,
        "published_at": head.published_at.isoformat() if head.published_at else None,
        "published_message": head.message,
        "records": len(head.snapshot.records),
        "publish_count": len(store.history()),
        "last_fired_tick": last_tick.isoformat() if last_tick else None,
        "runs": summarize_runs(read_runs(config.run_log_path)),
    }


def format_status(status: dict[str, Any]) -> str:
    runs = status["runs"]
    lines = [
        f"job:               {status['job']}",
        f"published version: {status['published_version']} ({status['records']} records)",
        f"content hash:      {status['published_content_hash'][:12]}",
        f"published at:      {status['published_at'] or '-'}",
        f"last message:      {(status['published_message'] or '-').splitlines()[0]}",
        f"last schedule tick:{' ' + status['last_fired_tick'] if status['last_fired_tick'] else ' -'}",
        f"runs:              {runs['total_runs']} "
        + " ".join(f"{k}={v}" for k, v in sorted(runs["outcomes"].items())),
    ]
    if runs["last_failure"]:
        failure = runs["last_failure"]
        lines.append(f"last failure:      {failure.get('started_at')} {failure.get('reason')}")
    if runs["recent"]:
        lines.append("recent runs:")
        for row in runs["recent"]:
            lines.append(
                f"  {row.get('started_at', '')}  {row.get('trigger', ''):<8} "
                f"{row.get('outcome', ''):<7} v{row.get('version') or '-'}  {row.get('reason', '')}"
            )
    return "\n".join(lines)


if __name__ == "__main__":
    import sys

    from dotenv import load_dotenv

    from job_config import load_config

    load_dotenv()
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(message)s")
    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    print(format_status(build_status(load_config(config_path))))
