"""Change-gated publisher: diff the candidate, publish only on material change."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from errors import DivergedStateError
from git_ops import commit_paths, find_repo_root
from job_config import PublishSettings
from models import PublishDecision, PublishedState, Snapshot, SnapshotDiff
from snapshot_store import SnapshotStore

LOGGER = logging.getLogger(__name__)

INITIAL_MESSAGE = "initial snapshot"
_MAX_IDS_IN_MESSAGE = 10


@dataclass(frozen=True, slots=True)
class PublishResult:
    decision: PublishDecision
    state: PublishedState
    commit_sha: str | None = None

    @property
    def published(self) -> bool:
        return self.decision.should_publish


def diff_snapshots(candidate: Snapshot, last: Snapshot) -> SnapshotDiff:
    """Structural per-record diff keyed by video_id.

    A record counts as changed when its serialized content differs; nothing
    time-based takes part in the comparison. A different embedding model is
    material on its own, since it changes the content hash.
    """
    new = candidate.by_id()
    old = last.by_id()
    added = sorted(set(new) - set(old))
    removed = sorted(set(old) - set(new))
    changed = sorted(
        video_id
        for video_id in set(new) & set(old)
        if new[video_id].to_payload() != old[video_id].to_payload()
    )
    model_change = None
    if candidate.embedding_model != last.embedding_model and (candidate.records or last.records):
        model_change = (last.embedding_model, candidate.embedding_model)
    return SnapshotDiff(
        added=tuple(added),
        removed=tuple(removed),
        changed=tuple(changed),
        embedding_model=model_change,
    )


def decide(candidate: Snapshot, base: PublishedState) -> PublishDecision:
    diff = diff_snapshots(candidate, base.snapshot)
    if base.version == 0:
        message = INITIAL_MESSAGE
    else:
        message = _describe(diff)
    return PublishDecision(should_publish=diff.is_material, diff=diff, message=message)


def _describe(diff: SnapshotDiff) -> str:
    summary = (
        f"update transcript index: {len(diff.added)} added, "
        f"{len(diff.removed)} removed, {len(diff.changed)} changed"
    )
    lines = [summary]
    for label, ids in (("added", diff.added), ("removed", diff.removed), ("changed", diff.changed)):
        if not ids:
            continue
        shown = ", ".join(ids[:_MAX_IDS_IN_MESSAGE])
        more = len(ids) - _MAX_IDS_IN_MESSAGE
        lines.append(f"{label}: {shown}" + (f" (+{more} more)" if more > 0 else ""))
    if diff.embedding_model:
        previous_model, candidate_model = diff.embedding_model
        lines.append(f"embedding model: {previous_model} -> {candidate_model}")
    return lines[0] if len(lines) == 1 else lines[0] + "\n\n" + "\n".join(lines[1:])


class ChangeGatedPublisher:
    """Publishes a candidate Snapshot over a known base, or does nothing."""

    def __init__(self, settings: PublishSettings, store: SnapshotStore | None = None) -> None:
        self.settings = settings
        self.store = store or SnapshotStore(settings.snapshot_path, settings.history_path)

    def publish(self, candidate: Snapshot, base: PublishedState, run_id: str | None = None) -> PublishResult:
        """Publish candidate if it materially differs from base.

        Raises DivergedStateError when the store's head is no longer base, and
        PublishConflictError when another writer wins the final write. Either
        way the published Snapshot is left as it was.
        """
        decision = decide(candidate, base)
        if not decision.should_publish:
            LOGGER.info(
                "No material change against version=%s (content_hash=%s); skipping publish",
                base.version,
                base.content_hash[:12],
            )
            return PublishResult(decision=decision, state=base)

        head = self.store.load()
        if head.version != base.version or head.content_hash != base.content_hash:
            raise DivergedStateError(
                f"Base version={base.version} is stale; published head is version={head.version}"
            )

        LOGGER.info(
            "Material change detected: added=%s removed=%s changed=%s",
            len(decision.diff.added),
            len(decision.diff.removed),
            len(decision.diff.changed),
        )

        commits: list[str] = []

        def _commit(state: PublishedState) -> None:
            sha = self._git_commit(decision.message)
            if sha:
                commits.append(sha)

        state = self.store.compare_and_publish(
            candidate,
            expected_version=base.version,
            message=decision.message,
            run_id=run_id,
            finalize=_commit if self.settings.git_commit else None,
        )
        return PublishResult(decision=decision, state=state, commit_sha=commits[0] if commits else None)

    def _git_commit(self, message: str) -> str | None:
        repo = self.settings.git_repo or find_repo_root(self.store.snapshot_path.parent)
        paths = [self.store.snapshot_path]
        if self.store.history_path.exists():
            paths.append(self.store.history_path)
        return commit_paths(repo, paths, message)
