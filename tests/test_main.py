"""Tests for the CLI entrypoint (main.main)."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

import main
from models import Run, RunOutcome, TriggerKind
from runner import SKIPPED_LOCKED, SKIPPED_NOT_DUE, RunReport

_VALID_YAML = (
    "name: cli-job\n"
    "schedule: '0 6 * * *'\n"
    "executor:\n"
    "  transcript_api_url: https://t.example.com\n"
    "  videos: [a]\n"
)


def _report(outcome: RunOutcome | None, skipped: str | None = None, published: bool = False) -> RunReport:
    if outcome is None:
        return RunReport(run=None, skipped=skipped)
    run = Run(run_id="r1", job_name="cli-job", trigger=TriggerKind.MANUAL, started_at=datetime.now(UTC))
    run.finish(outcome, datetime.now(UTC))
    return RunReport(run=run, published=published)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "sync_job.yaml"
    path.write_text(_VALID_YAML, encoding="utf-8")
    return path


@pytest.mark.parametrize("report,expected", [
    (_report(RunOutcome.SUCCESS, published=True), main.EXIT_OK),
    (_report(RunOutcome.NO_OP), main.EXIT_OK),
    (_report(RunOutcome.FAILURE), main.EXIT_FAILURE),
    (_report(None, skipped=SKIPPED_LOCKED), main.EXIT_LOCKED),
    (_report(None, skipped=SKIPPED_NOT_DUE), main.EXIT_OK),
])
def test_run_exit_codes(config_file: Path, report: RunReport, expected: int, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    with patch("main.execute_run", return_value=report):
        assert main.main(["--config", str(config_file), "run", "--trigger", "manual"]) == expected


def test_run_passes_trigger_event(config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    with patch("main.execute_run", return_value=_report(RunOutcome.NO_OP)) as mock_run:
        main.main(["--config", str(config_file), "run", "--trigger", "push", "--ref", "refs/heads/main", "--dry-run"])

    config, event = mock_run.call_args.args
    assert config.name == "cli-job"
    assert event.kind == TriggerKind.PUSH
    assert event.ref == "refs/heads/main"
    assert mock_run.call_args.kwargs == {"dry_run": True}


def test_run_writes_github_output(config_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    output = tmp_path / "github_output"
    monkeypatch.setenv("GITHUB_OUTPUT", str(output))
    with patch("main.execute_run", return_value=_report(RunOutcome.SUCCESS, published=True)):
        main.main(["--config", str(config_file), "run"])

    assert output.read_text(encoding="utf-8").splitlines() == ["outcome=success", "published=true"]


def test_malformed_schedule_is_config_error(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(_VALID_YAML.replace("'0 6 * * *'", "'0 6 * *'"), encoding="utf-8")
    with patch("main.execute_run") as mock_run:
        assert main.main(["--config", str(path), "run", "--trigger", "schedule"]) == main.EXIT_CONFIG_ERROR
    mock_run.assert_not_called()


def test_validate_config_ok(config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main.main(["--config", str(config_file), "validate-config"]) == main.EXIT_OK
    assert "OK: job=cli-job" in capsys.readouterr().out


def test_next_fire_prints_ticks(config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main.main(["--config", str(config_file), "next-fire", "--count", "2"]) == main.EXIT_OK
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 2
    assert all(line.endswith("06:00:00+00:00") for line in lines)


def test_status_prints_summary(config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main.main(["--config", str(config_file), "status"]) == main.EXIT_OK
    assert "job:               cli-job" in capsys.readouterr().out


def test_config_path_defaults_to_env_variable(
    config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("SYNC_JOB_CONFIG", str(config_file))
    assert main.main(["validate-config"]) == main.EXIT_OK
    assert "OK: job=cli-job" in capsys.readouterr().out
