"""Versioned on-disk storage for the published Snapshot."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Generator

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logging.getLogger(__name__).warning(
        "fcntl not available (non-POSIX). Snapshot store locking is disabled; "
        "do not run concurrent publishers on this platform."
    )

from errors import PublishConflictError, SyncJobError
from models import PublishedState, Snapshot

LOGGER = logging.getLogger(__name__)


@contextmanager
def _exclusive_lock(lock_path: Path) -> Generator[None, None, None]:
    """Hold an exclusive flock on lock_path for the duration of the block."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a", encoding="utf-8") as fh:
        if _HAS_FCNTL:
            _fcntl.flock(fh, _fcntl.LOCK_EX)
        try:
            yield
        finally:
            if _HAS_FCNTL:
                _fcntl.flock(fh, _fcntl.LOCK_UN)


class SnapshotStore:
    """Single published Snapshot guarded by compare-and-publish.

    The document on disk is replaced atomically (temp file + os.replace), so a
    reader sees either the previous state or the new one, never a mix.
    """

    def __init__(self, snapshot_path: Path, history_path: Path | None = None) -> None:
        self.snapshot_path = Path(snapshot_path)
        self.history_path = Path(history_path) if history_path else self.snapshot_path.with_suffix(".history.jsonl")
        self.lock_path = self.snapshot_path.with_name(f".{self.snapshot_path.name}.lock")

    def load(self) -> PublishedState:
        if not self.snapshot_path.exists():
            return PublishedState.baseline()
        try:
            document = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SyncJobError(f"Published snapshot {self.snapshot_path} is unreadable: {exc}") from exc
        return _state_from_document(document)

    def compare_and_publish(
        self,
        snapshot: Snapshot,
        expected_version: int,
        message: str,
        run_id: str | None = None,
        finalize: Callable[[PublishedState], None] | None = None,
    ) -> PublishedState:
        """Publish snapshot as version expected_version + 1.

        Raises PublishConflictError, leaving the store untouched, when the
        head is no longer expected_version. ``finalize`` runs under the same
        lock after the file is written (e.g. a git commit); if it raises, the
        previous head is put back and the error propagates.
        """
        with _exclusive_lock(self.lock_path):
            head = self.load()
            if head.version != expected_version:
                raise PublishConflictError(
                    f"Published head moved to version {head.version} (expected {expected_version})"
                )

            state = PublishedState(
                version=expected_version + 1,
                content_hash=snapshot.content_hash,
                snapshot=snapshot,
                message=message,
                published_at=datetime.now(UTC),
                run_id=run_id,
            )
            self._write(state)
            history_size = self._append_history(state)
            if finalize is not None:
                try:
                    finalize(state)
                except BaseException:
                    self._rollback(head, history_size)
                    raise

        LOGGER.info(
            "Published snapshot version=%s content_hash=%s to %s",
            state.version,
            state.content_hash[:12],
            self.snapshot_path,
        )
        return state

    def _rollback(self, head: PublishedState, history_size: int) -> None:
        if head.version == 0:
            self.snapshot_path.unlink(missing_ok=True)
        else:
            self._write(head)
        with self.history_path.open("r+b") as fh:
            fh.truncate(history_size)
        LOGGER.warning("Rolled published snapshot back to version=%s", head.version)

    def history(self) -> list[dict[str, Any]]:
        if not self.history_path.exists():
            return []
        entries = []
        with self.history_path.open(encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if line:
                    entries.append(json.loads(line))
        return entries

    def _write(self, state: PublishedState) -> None:
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.snapshot_path.name}.",
            suffix=".tmp",
            dir=self.snapshot_path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(_state_to_document(state), fh, indent=2, sort_keys=True)
                fh.write("\n")
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.snapshot_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _append_history(self, state: PublishedState) -> int:
        """Append one history line and return the file size before it."""
        self.history_path.parent.mkdir(parents=True, exist_ok=True)
        previous_size = self.history_path.stat().st_size if self.history_path.exists() else 0
        entry = {
            "version": state.version,
            "content_hash": state.content_hash,
            "message": state.message,
            "published_at": state.published_at.isoformat() if state.published_at else None,
            "run_id": state.run_id,
            "records": len(state.snapshot.records),
        }
        with self.history_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry, sort_keys=True) + "\n")
        return previous_size


def _state_to_document(state: PublishedState) -> dict[str, Any]:
    return {
        "version": state.version,
        "content_hash": state.content_hash,
        "message": state.message,
        "published_at": state.published_at.isoformat() if state.published_at else None,
        "run_id": state.run_id,
        "snapshot": state.snapshot.to_payload(),
    }


def _state_from_document(document: Any) -> PublishedState:
    if not isinstance(document, dict) or "version" not in document or "snapshot" not in document:
        raise SyncJobError("Published snapshot document is missing 'version' or 'snapshot'")

    snapshot = Snapshot.from_payload(document["snapshot"])
    stored_hash = document.get("content_hash", "")
    if stored_hash and stored_hash != snapshot.content_hash:
        raise SyncJobError(
            f"Published snapshot content_hash mismatch: stored={stored_hash[:12]} "
            f"computed={snapshot.content_hash[:12]}"
        )

    published_raw = document.get("published_at")
    return PublishedState(
        version=int(document["version"]),
        content_hash=snapshot.content_hash,
        snapshot=snapshot,
        message=document.get("message", ""),
        published_at=datetime.fromisoformat(published_raw) if published_raw else None,
        run_id=document.get("run_id"),
    )
