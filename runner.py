"""Runs one trigger end to end: admit -> ETL -> change-gated publish -> record."""

from __future__ import annotations

import importlib
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable

from errors import ConfigurationError, SyncJobError
from job_config import JobConfig, resolve_secrets
from models import Run, RunOutcome, Snapshot, TriggerEvent
from publisher import ChangeGatedPublisher, decide
from run_log import append_run
from secrets_env import injected_secrets
from snapshot_store import SnapshotStore
from trigger import RunLock, TriggerController, run_with_deadline

LOGGER = logging.getLogger(__name__)

SKIPPED_LOCKED = "locked"
SKIPPED_NOT_DUE = "not-due"


@dataclass(frozen=True, slots=True)
class RunReport:
    """What happened to one trigger: a finished Run, or why none started."""

    run: Run | None
    skipped: str | None = None
    published: bool = False


def load_entry_point(entry_point: str) -> Callable[..., Snapshot]:
    module_name, _, attr = entry_point.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import executor entry point module {module_name!r}: {exc}") from exc
    func = getattr(module, attr, None)
    if not callable(func):
        raise ConfigurationError(f"Executor entry point {entry_point!r} is not a callable")
    return func


def execute_run(
    config: JobConfig,
    event: TriggerEvent,
    *,
    environ: dict[str, str] | None = None,
    dry_run: bool = False,
    now: datetime | None = None,
) -> RunReport:
    """Handle one trigger event for the job.

    Raises ConfigurationError before any Run starts (missing secrets, bad
    entry point). Every other failure becomes a Run with outcome failure and
    leaves the published Snapshot as it was.
    """
    now = now or datetime.now(UTC)
    lock = RunLock(config.lock_path)
    if not lock.acquire(owner=str(event.kind)):
        LOGGER.warning("Another Run of job=%s holds %s; skipping %s trigger", config.name, config.lock_path, event.kind)
        return RunReport(run=None, skipped=SKIPPED_LOCKED)

    with lock:
        secrets = resolve_secrets(config, environ)
        executor_fn = load_entry_point(config.entry_point)

        controller = TriggerController(config)
        admitted = controller.should_start(event, now) if dry_run else controller.admit(event, now)
        if not admitted:
            return RunReport(run=None, skipped=SKIPPED_NOT_DUE)

        run = Run(
            run_id=uuid.uuid4().hex[:12],
            job_name=config.name,
            trigger=event.kind,
            started_at=datetime.now(UTC),
        )
        LOGGER.info("Run %s started: job=%s trigger=%s dry_run=%s", run.run_id, config.name, event.kind, dry_run)

        published = False
        # Redaction stays attached until the failure is logged and recorded.
        with injected_secrets(secrets) as redactor:
            try:
                published = _run_stages(config, run, executor_fn, dry_run)
            except SyncJobError as exc:
                run.finish(RunOutcome.FAILURE, datetime.now(UTC), reason=f"{type(exc).__name__}: {exc}")
                LOGGER.exception("Run %s failed: %s", run.run_id, exc)
            except Exception as exc:  # broad so every Run gets an outcome recorded
                run.finish(RunOutcome.FAILURE, datetime.now(UTC), reason=f"unexpected {type(exc).__name__}: {exc}")
                LOGGER.exception("Run %s failed unexpectedly: %s", run.run_id, exc)
            finally:
                run.reason = redactor.redact(run.reason)
                if not dry_run:
                    append_run(run, config.run_log_path)

    LOGGER.info("Run %s finished: outcome=%s reason=%s", run.run_id, run.outcome, run.reason)
    return RunReport(run=run, published=published)


def _run_stages(
    config: JobConfig,
    run: Run,
    executor_fn: Callable[..., Snapshot],
    dry_run: bool,
) -> bool:
    store = SnapshotStore(config.publish.snapshot_path, config.publish.history_path)
    base = store.load()
    LOGGER.info("Run %s base: version=%s content_hash=%s", run.run_id, base.version, base.content_hash[:12])

    candidate = run_with_deadline(
        lambda cancel_event: executor_fn(config.executor, previous=base.snapshot, cancel_event=cancel_event),
        max_seconds=config.max_run_seconds,
    )
    run.content_hash = candidate.content_hash

    if dry_run:
        decision = decide(candidate, base)
        verdict = "would publish" if decision.should_publish else "no material change"
        run.version = base.version
        run.finish(RunOutcome.NO_OP, datetime.now(UTC), reason=f"dry-run: {verdict}: {decision.message.splitlines()[0]}")
        return False

    result = ChangeGatedPublisher(config.publish, store=store).publish(candidate, base, run_id=run.run_id)
    run.version = result.state.version
    if result.commit_sha:
        run.details["commit_sha"] = result.commit_sha

    if result.published:
        run.finish(RunOutcome.SUCCESS, datetime.now(UTC), reason=result.decision.message.splitlines()[0])
    else:
        run.finish(RunOutcome.NO_OP, datetime.now(UTC), reason="no material change")
    return result.published
