"""Typed job configuration loaded once from YAML at Run start.

Example::

    name: transcript-index
    schedule: "0 6 * * *"
    push_trigger:
      branches: [main]
    manual_trigger: true
    env:
      OPENAI_API_KEY: secrets.OPENAI_API_KEY
    executor:
      transcript_api_url: https://transcripts.example.com/api/transcripts
      videos:
        - id: dQw4w9WgXcQ
          title: Launch talk
    publish:
      snapshot_path: data/index.json
      git_commit: true
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from errors import ConfigurationError
from models import Video
from schedule import CronSchedule

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "sync_job.yaml"
DEFAULT_ENTRY_POINT = "executor:run_etl"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

ON_ITEM_FAILURE_POLICIES = frozenset({"abort", "skip"})

_TOP_LEVEL_KEYS = frozenset({
    "name",
    "schedule",
    "push_trigger",
    "manual_trigger",
    "env",
    "entry_point",
    "max_run_seconds",
    "state_dir",
    "executor",
    "publish",
})
_SCHEDULE_KEYS = frozenset({"cron", "enabled", "timezone"})
_PUSH_KEYS = frozenset({"enabled", "branches"})
_EXECUTOR_KEYS = frozenset({
    "videos",
    "transcript_api_url",
    "embedding_model",
    "chunk_chars",
    "max_workers",
    "request_timeout_seconds",
    "max_attempts",
    "on_item_failure",
})
_PUBLISH_KEYS = frozenset({"snapshot_path", "history_path", "git_commit", "git_repo"})

_SECRET_REF = re.compile(r"^secrets\.([A-Za-z_][A-Za-z0-9_]*)$")
_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ENTRY_POINT = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_]\w*$")
_JOB_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass(frozen=True, slots=True)
class ScheduleConfig:
    cron: CronSchedule | None
    enabled: bool = True

    @property
    def active(self) -> bool:
        return self.enabled and self.cron is not None


@dataclass(frozen=True, slots=True)
class ExecutorSettings:
    videos: tuple[Video, ...]
    transcript_api_url: str
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    chunk_chars: int = 1200
    max_workers: int = 4
    request_timeout_seconds: float = 20.0
    max_attempts: int = 3
    on_item_failure: str = "abort"


@dataclass(frozen=True, slots=True)
class PublishSettings:
    snapshot_path: Path
    history_path: Path
    git_commit: bool = False
    git_repo: Path | None = None


@dataclass(frozen=True, slots=True)
class JobConfig:
    name: str
    schedule: ScheduleConfig
    push_trigger: bool
    push_branches: tuple[str, ...]
    manual_trigger: bool
    env: dict[str, str]
    entry_point: str
    max_run_seconds: float
    state_dir: Path
    executor: ExecutorSettings
    publish: PublishSettings
    source_path: Path | None = field(default=None, compare=False)

    @property
    def lock_path(self) -> Path:
        return self.state_dir / f"{self.name}.lock"

    @property
    def trigger_state_path(self) -> Path:
        return self.state_dir / f"{self.name}.trigger.json"

    @property
    def run_log_path(self) -> Path:
        return self.state_dir / f"{self.name}.runs.csv"


def default_config_path() -> str:
    """Config path from SYNC_JOB_CONFIG, looked up on each call."""
    return os.getenv("SYNC_JOB_CONFIG", DEFAULT_CONFIG_FILE)


def load_config(path: str | os.PathLike[str] | None = None) -> JobConfig:
    """Read and validate a YAML job configuration file."""
    config_path = Path(path or default_config_path())
    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read job configuration {config_path}: {exc}") from exc

    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Job configuration {config_path} is not valid YAML: {exc}") from exc

    config = parse_config(data, base_dir=config_path.resolve().parent, source_path=config_path)
    LOGGER.info(
        "Loaded job config name=%s schedule=%s push=%s manual=%s videos=%s",
        config.name,
        config.schedule.cron.expression if config.schedule.cron else None,
        config.push_trigger,
        config.manual_trigger,
        len(config.executor.videos),
    )
    return config


def parse_config(
    data: Any,
    base_dir: Path | None = None,
    source_path: Path | None = None,
) -> JobConfig:
    """Validate an already-decoded mapping into a JobConfig."""
    base_dir = base_dir or Path.cwd()
    root = _require_mapping(data, "job configuration")
    _reject_unknown(root, _TOP_LEVEL_KEYS, "job configuration")

    name = root.get("name")
    if not isinstance(name, str) or not _JOB_NAME.match(name):
        raise ConfigurationError(f"'name' must be a simple identifier, got {name!r}")

    schedule = _parse_schedule(root.get("schedule"))
    push_enabled, push_branches = _parse_push(root.get("push_trigger", False))
    manual = _require_bool(root.get("manual_trigger", True), "manual_trigger")

    if not (schedule.active or push_enabled or manual):
        raise ConfigurationError("At least one trigger (schedule, push_trigger, manual_trigger) must be enabled")

    entry_point = root.get("entry_point", DEFAULT_ENTRY_POINT)
    if not isinstance(entry_point, str) or not _ENTRY_POINT.match(entry_point):
        raise ConfigurationError(f"'entry_point' must look like 'module:function', got {entry_point!r}")

    max_run_seconds = _require_number(root.get("max_run_seconds", 1800), "max_run_seconds", minimum=1)
    state_dir = _resolve(base_dir, root.get("state_dir", ".sync_state"), "state_dir")

    return JobConfig(
        name=name,
        schedule=schedule,
        push_trigger=push_enabled,
        push_branches=push_branches,
        manual_trigger=manual,
        env=_parse_env(root.get("env", {})),
        entry_point=entry_point,
        max_run_seconds=float(max_run_seconds),
        state_dir=state_dir,
        executor=_parse_executor(root.get("executor")),
        publish=_parse_publish(root.get("publish", {}), base_dir, name),
        source_path=source_path,
    )


def resolve_secrets(config: JobConfig, environ: dict[str, str] | None = None) -> dict[str, str]:
    """Map each configured env var name to its secret value.

    Secrets are looked up in the process environment, where the automation
    platform places them. A missing secret is a configuration error.
    """
    source = os.environ if environ is None else environ
    resolved: dict[str, str] = {}
    missing: list[str] = []
    for var_name, reference in config.env.items():
        secret_name = _SECRET_REF.match(reference).group(1)  # type: ignore[union-attr]
        value = source.get(secret_name)
        if not value:
            missing.append(secret_name)
            continue
        resolved[var_name] = value
    if missing:
        raise ConfigurationError(f"Missing secrets in environment: {', '.join(sorted(missing))}")
    return resolved


def _parse_schedule(value: Any) -> ScheduleConfig:
    if value is None:
        return ScheduleConfig(cron=None, enabled=False)
    if isinstance(value, str):
        return ScheduleConfig(cron=CronSchedule(value))

    block = _require_mapping(value, "schedule")
    _reject_unknown(block, _SCHEDULE_KEYS, "schedule")
    if "cron" not in block:
        raise ConfigurationError("'schedule.cron' is required when 'schedule' is a mapping")
    timezone = block.get("timezone", "UTC")
    if not isinstance(timezone, str):
        raise ConfigurationError("'schedule.timezone' must be a string")
    return ScheduleConfig(
        cron=CronSchedule(block["cron"], timezone=timezone),
        enabled=_require_bool(block.get("enabled", True), "schedule.enabled"),
    )


def _parse_push(value: Any) -> tuple[bool, tuple[str, ...]]:
    if isinstance(value, bool):
        return value, ()
    block = _require_mapping(value, "push_trigger")
    _reject_unknown(block, _PUSH_KEYS, "push_trigger")
    branches = block.get("branches", [])
    if not isinstance(branches, list) or not all(isinstance(b, str) and b for b in branches):
        raise ConfigurationError("'push_trigger.branches' must be a list of branch names")
    return _require_bool(block.get("enabled", True), "push_trigger.enabled"), tuple(branches)


def _parse_env(value: Any) -> dict[str, str]:
    block = _require_mapping(value, "env")
    env: dict[str, str] = {}
    for var_name, reference in block.items():
        if not isinstance(var_name, str) or not _ENV_NAME.match(var_name):
            raise ConfigurationError(f"Invalid environment variable name in 'env': {var_name!r}")
        if not isinstance(reference, str) or not _SECRET_REF.match(reference):
            raise ConfigurationError(
                f"'env.{var_name}' must reference a secret as 'secrets.NAME', got {reference!r}"
            )
        env[var_name] = reference
    return env


def _parse_executor(value: Any) -> ExecutorSettings:
    block = _require_mapping(value, "executor")
    _reject_unknown(block, _EXECUTOR_KEYS, "executor")

    api_url = block.get("transcript_api_url")
    if not isinstance(api_url, str) or not api_url.startswith(("http://", "https://")):
        raise ConfigurationError("'executor.transcript_api_url' must be an http(s) URL")

    policy = block.get("on_item_failure", "abort")
    if policy not in ON_ITEM_FAILURE_POLICIES:
        raise ConfigurationError(
            f"'executor.on_item_failure' must be one of {sorted(ON_ITEM_FAILURE_POLICIES)}, got {policy!r}"
        )

    model = block.get("embedding_model", DEFAULT_EMBEDDING_MODEL)
    if not isinstance(model, str) or not model:
        raise ConfigurationError("'executor.embedding_model' must be a non-empty string")

    return ExecutorSettings(
        videos=_parse_videos(block.get("videos")),
        transcript_api_url=api_url.rstrip("/"),
        embedding_model=model,
        chunk_chars=int(_require_number(block.get("chunk_chars", 1200), "executor.chunk_chars", minimum=50)),
        max_workers=int(_require_number(block.get("max_workers", 4), "executor.max_workers", minimum=1)),
        request_timeout_seconds=float(
            _require_number(block.get("request_timeout_seconds", 20), "executor.request_timeout_seconds", minimum=1)
        ),
        max_attempts=int(_require_number(block.get("max_attempts", 3), "executor.max_attempts", minimum=1)),
        on_item_failure=policy,
    )


def _parse_videos(value: Any) -> tuple[Video, ...]:
    if not isinstance(value, list) or not value:
        raise ConfigurationError("'executor.videos' must be a non-empty list")

    videos: dict[str, Video] = {}
    for item in value:
        if isinstance(item, str):
            item = {"id": item}
        if not isinstance(item, dict) or not isinstance(item.get("id"), str) or not item["id"].strip():
            raise ConfigurationError(f"Each video needs a non-empty 'id', got {item!r}")
        video_id = item["id"].strip()
        if video_id in videos:
            raise ConfigurationError(f"Duplicate video id in 'executor.videos': {video_id}")
        videos[video_id] = Video(
            video_id=video_id,
            title=str(item.get("title", "")).strip(),
            url=str(item.get("url") or f"https://www.youtube.com/watch?v={video_id}"),
        )
    return tuple(videos.values())


def _parse_publish(value: Any, base_dir: Path, job_name: str) -> PublishSettings:
    block = _require_mapping(value, "publish")
    _reject_unknown(block, _PUBLISH_KEYS, "publish")

    snapshot_path = _resolve(base_dir, block.get("snapshot_path", f"data/{job_name}.json"), "publish.snapshot_path")
    history_default = snapshot_path.with_name(f"{snapshot_path.stem}.history.jsonl")
    history_raw = block.get("history_path")
    history_path = history_default if history_raw is None else _resolve(base_dir, history_raw, "publish.history_path")

    git_repo_raw = block.get("git_repo")
    return PublishSettings(
        snapshot_path=snapshot_path,
        history_path=history_path,
        git_commit=_require_bool(block.get("git_commit", False), "publish.git_commit"),
        git_repo=None if git_repo_raw is None else _resolve(base_dir, git_repo_raw, "publish.git_repo"),
    )


def _require_mapping(value: Any, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{label}' must be a mapping, got {type(value).__name__}")
    return value


def _reject_unknown(block: dict[str, Any], allowed: frozenset[str], label: str) -> None:
    unknown = set(block) - allowed
    if unknown:
        raise ConfigurationError(f"Unknown keys in {label}: {', '.join(sorted(map(str, unknown)))}")


def _require_bool(value: Any, label: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{label}' must be true or false, got {value!r}")
    return value


def _require_number(value: Any, label: str, minimum: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < minimum:
        raise ConfigurationError(f"'{label}' must be a number >= {minimum}, got {value!r}")
    return value


def _resolve(base_dir: Path, value: Any, label: str) -> Path:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"'{label}' must be a non-empty path string")
    path = Path(value)
    return path if path.is_absolute() else base_dir / path
