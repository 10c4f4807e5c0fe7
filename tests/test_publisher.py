from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from errors import DivergedStateError
from job_config import PublishSettings
from models import Chunk, PublishedState, Snapshot, TranscriptRecord
from publisher import INITIAL_MESSAGE, ChangeGatedPublisher, decide, diff_snapshots
from snapshot_store import SnapshotStore


def _record(video_id: str, text: str = "hello") -> TranscriptRecord:
    return TranscriptRecord(
        video_id=video_id,
        title=video_id,
        url=f"https://www.youtube.com/watch?v={video_id}",
        text_hash=text,
        chunks=(Chunk(index=0, text=text, embedding=(1.0,)),),
    )


def _snapshot(*records: TranscriptRecord) -> Snapshot:
    return Snapshot(records=records, embedding_model="m")


@pytest.fixture
def settings(tmp_path: Path) -> PublishSettings:
    return PublishSettings(
        snapshot_path=tmp_path / "index.json",
        history_path=tmp_path / "index.history.jsonl",
    )


def test_diff_reports_added_removed_changed() -> None:
    last = _snapshot(_record("a"), _record("b"), _record("c"))
    candidate = _snapshot(_record("a"), _record("b", "edited"), _record("d"))

    diff = diff_snapshots(candidate, last)

    assert diff.added == ("d",)
    assert diff.removed == ("c",)
    assert diff.changed == ("b",)


def test_decide_identical_snapshot_is_not_material() -> None:
    snapshot = _snapshot(_record("a"))
    base = PublishedState(version=3, content_hash=snapshot.content_hash, snapshot=snapshot)
    decision = decide(_snapshot(_record("a")), base)
    assert decision.should_publish is False


def test_decide_against_empty_baseline_uses_initial_message() -> None:
    decision = decide(_snapshot(_record("a")), PublishedState.baseline())
    assert decision.should_publish is True
    assert decision.message == INITIAL_MESSAGE


def test_decide_update_message_names_what_changed() -> None:
    old = _snapshot(_record("a"))
    base = PublishedState(version=1, content_hash=old.content_hash, snapshot=old)
    decision = decide(_snapshot(_record("a", "new text"), _record("b")), base)

    first_line, *rest = decision.message.splitlines()
    assert first_line == "update transcript index: 1 added, 0 removed, 1 changed"
    assert "added: b" in rest
    assert "changed: a" in rest


def test_publish_identical_snapshot_is_noop(settings: PublishSettings) -> None:
    publisher = ChangeGatedPublisher(settings)
    snapshot = _snapshot(_record("a"))
    first = publisher.publish(snapshot, PublishedState.baseline(), run_id="r1")
    before = settings.snapshot_path.read_bytes()

    second = publisher.publish(_snapshot(_record("a")), first.state, run_id="r2")

    assert first.published is True
    assert first.state.message == INITIAL_MESSAGE
    assert second.published is False
    assert second.state == first.state
    assert settings.snapshot_path.read_bytes() == before
    assert len(publisher.store.history()) == 1


def test_publish_with_stale_base_raises_diverged(settings: PublishSettings) -> None:
    publisher = ChangeGatedPublisher(settings)
    baseline = PublishedState.baseline()
    publisher.publish(_snapshot(_record("a")), baseline, run_id="r1")
    before = settings.snapshot_path.read_bytes()

    with pytest.raises(DivergedStateError):
        publisher.publish(_snapshot(_record("b")), baseline, run_id="r2")

    assert settings.snapshot_path.read_bytes() == before


def test_publish_with_git_commit_records_sha(settings: PublishSettings, tmp_path: Path) -> None:
    git_settings = PublishSettings(
        snapshot_path=settings.snapshot_path,
        history_path=settings.history_path,
        git_commit=True,
        git_repo=tmp_path,
    )
    publisher = ChangeGatedPublisher(git_settings)

    with patch("publisher.commit_paths", return_value="abc123") as mock_commit:
        result = publisher.publish(_snapshot(_record("a")), PublishedState.baseline(), run_id="r1")

    assert result.commit_sha == "abc123"
    repo, paths, message = mock_commit.call_args.args
    assert repo == tmp_path
    assert settings.snapshot_path in paths
    assert settings.history_path in paths
    assert message == INITIAL_MESSAGE


def test_publish_git_failure_leaves_prior_state(settings: PublishSettings, tmp_path: Path) -> None:
    git_settings = PublishSettings(
        snapshot_path=settings.snapshot_path,
        history_path=settings.history_path,
        git_commit=True,
        git_repo=tmp_path,
    )
    publisher = ChangeGatedPublisher(git_settings)

    with patch("publisher.commit_paths", side_effect=RuntimeError("git commit failed")):
        with pytest.raises(RuntimeError):
            publisher.publish(_snapshot(_record("a")), PublishedState.baseline(), run_id="r1")

    assert publisher.store.load().version == 0
    assert publisher.store.history() == []


def test_embedding_model_change_alone_is_material() -> None:
    old = _snapshot(_record("a"))
    base = PublishedState(version=2, content_hash=old.content_hash, snapshot=old)
    candidate = Snapshot(records=(_record("a"),), embedding_model="other-model")

    decision = decide(candidate, base)

    assert decision.should_publish is True
    assert decision.diff.embedding_model == ("m", "other-model")
    assert decision.diff.changed == ()
    assert decision.message.splitlines()[-1] == "embedding model: m -> other-model"
