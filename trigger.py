"""Trigger controller: decides when a Run starts and keeps Runs from overlapping."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, TypeVar

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logging.getLogger(__name__).warning(
        "fcntl not available (non-POSIX). Run locking is disabled; "
        "overlapping triggers for the same job will not be skipped."
    )

from errors import RunTimeoutError
from job_config import JobConfig
from models import TriggerEvent, TriggerKind

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class TriggerController:
    """Evaluates trigger events against the job's configured triggers.

    The last schedule tick that started a Run is persisted in a small JSON
    state file, so evaluating the same tick again (a re-delivered cron event,
    a second evaluation in the same minute) never starts a second Run.
    """

    def __init__(self, config: JobConfig, state_path: Path | None = None) -> None:
        self.config = config
        self.state_path = Path(state_path or config.trigger_state_path)

    def should_start(self, event: TriggerEvent, now: datetime | None = None) -> bool:
        now = now or event.occurred_at
        if event.kind == TriggerKind.SCHEDULE:
            return self._schedule_due(now) is not None
        if event.kind == TriggerKind.PUSH:
            return self._push_matches(event)
        if event.kind == TriggerKind.MANUAL:
            if not self.config.manual_trigger:
                LOGGER.info("Manual trigger ignored: manual_trigger is disabled for job=%s", self.config.name)
            return self.config.manual_trigger
        return False

    def admit(self, event: TriggerEvent, now: datetime | None = None) -> bool:
        """Decide and, for schedule triggers, consume the due tick.

        Call this while holding the job's RunLock so two evaluations cannot
        both see the same tick as unconsumed.
        """
        now = now or event.occurred_at
        if event.kind != TriggerKind.SCHEDULE:
            return self.should_start(event, now)

        tick = self._schedule_due(now)
        if tick is None:
            return False
        self._save_state({**self._load_state(), "last_fired_tick": tick.isoformat()})
        LOGGER.info("Schedule tick %s admitted for job=%s", tick.isoformat(), self.config.name)
        return True

    def next_fire(self, after: datetime, count: int = 1) -> list[datetime]:
        if not self.config.schedule.active:
            return []
        return self.config.schedule.cron.upcoming(after, count)  # type: ignore[union-attr]

    def last_fired_tick(self) -> datetime | None:
        raw = self._load_state().get("last_fired_tick")
        return datetime.fromisoformat(raw) if raw else None

    def _schedule_due(self, now: datetime) -> datetime | None:
        schedule = self.config.schedule
        if not schedule.active:
            LOGGER.info("Schedule trigger ignored: no enabled schedule for job=%s", self.config.name)
            return None

        tick = schedule.cron.previous_tick(now)  # type: ignore[union-attr]
        last = self.last_fired_tick()
        if last is not None and tick <= last:
            LOGGER.info(
                "Schedule tick %s already fired for job=%s; not starting another Run",
                tick.isoformat(),
                self.config.name,
            )
            return None
        return tick

    def _push_matches(self, event: TriggerEvent) -> bool:
        if not self.config.push_trigger:
            LOGGER.info("Push trigger ignored: push_trigger is disabled for job=%s", self.config.name)
            return False
        if not self.config.push_branches:
            return True
        branch = _branch_from_ref(event.ref)
        if branch not in self.config.push_branches:
            LOGGER.info("Push to ref=%s ignored: branch not in %s", event.ref, list(self.config.push_branches))
            return False
        return True

    def _load_state(self) -> dict[str, Any]:
        if not self.state_path.exists():
            return {}
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Trigger state %s unreadable, starting fresh: %s", self.state_path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save_state(self, state: dict[str, Any]) -> None:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.state_path.name}.", dir=self.state_path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(state, fh, indent=2, sort_keys=True)
        os.replace(tmp_name, self.state_path)


class RunLock:
    """Non-blocking, exclusive per-job lock held for the whole Run.

    ``acquire()`` returns False instead of waiting when another process (or
    thread) already holds the lock, so overlapping triggers are skipped.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._fh = None

    def acquire(self, owner: str = "") -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")
        if _HAS_FCNTL:
            try:
                _fcntl.flock(fh, _fcntl.LOCK_EX | _fcntl.LOCK_NB)
            except BlockingIOError:
                fh.close()
                return False
        else:
            LOGGER.warning("Run lock %s is not enforced on this platform; overlapping Runs are possible", self.path)
        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()} owner={owner} since={datetime.now(UTC).isoformat()}\n")
        fh.flush()
        self._fh = fh
        return True

    def release(self) -> None:
        if self._fh is None:
            return
        if _HAS_FCNTL:
            _fcntl.flock(self._fh, _fcntl.LOCK_UN)
        self._fh.close()
        self._fh = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def __enter__(self) -> RunLock:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def run_with_deadline(
    func: Callable[[threading.Event], T],
    max_seconds: float,
    cancel_event: threading.Event | None = None,
) -> T:
    """Run func in a worker thread and wait at most max_seconds.

    On expiry the cancel event handed to func is set and RunTimeoutError is
    raised. The caller never sees a late result, so nothing computed after
    the deadline can be published.
    """
    cancel_event = cancel_event or threading.Event()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-run")
    future = pool.submit(func, cancel_event)
    try:
        return future.result(timeout=max_seconds)
    except FuturesTimeoutError:
        if future.done():
            raise
        cancel_event.set()
        raise RunTimeoutError(f"Run exceeded max_run_seconds={max_seconds:g} and was cancelled") from None
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


def _branch_from_ref(ref: str | None) -> str:
    if not ref:
        return ""
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref
