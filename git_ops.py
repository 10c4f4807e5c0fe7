"""Minimal git plumbing for committing published snapshot files."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from errors import SyncJobError

LOGGER = logging.getLogger(__name__)


class GitCommitError(SyncJobError):
    pass


def _run_git(repo_path: Path, args: list[str]) -> tuple[int, str, str]:
    p = subprocess.run(
        ["git", "--no-pager", *args],
        cwd=str(repo_path),
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        env={**os.environ, "GIT_PAGER": "cat", "PAGER": "cat"},
    )
    return p.returncode, (p.stdout or "").strip(), (p.stderr or "").strip()


def find_repo_root(start: Path) -> Path:
    rc, out, err = _run_git(start, ["rev-parse", "--show-toplevel"])
    if rc != 0:
        raise GitCommitError(f"{start} is not inside a git repository: {err or out}")
    return Path(out)


def commit_paths(repo_path: Path, paths: list[Path], message: str) -> str | None:
    """Stage paths and commit them with message.

    Returns the new commit sha, or None when the staged tree has no changes.
    """
    try:
        relative = [str(Path(p).resolve().relative_to(repo_path.resolve())) for p in paths]
    except ValueError as exc:
        raise GitCommitError(f"Published files must live inside {repo_path}: {exc}") from exc

    rc, out, err = _run_git(repo_path, ["add", "--", *relative])
    if rc != 0:
        raise GitCommitError(f"git add failed: {err or out}")

    rc, _, _ = _run_git(repo_path, ["diff", "--cached", "--quiet", "--", *relative])
    if rc == 0:
        LOGGER.info("git: nothing to commit for %s", ", ".join(relative))
        return None

    rc, out, err = _run_git(repo_path, ["commit", "-m", message, "--", *relative])
    if rc != 0:
        _run_git(repo_path, ["reset", "-q", "--", *relative])
        raise GitCommitError(f"git commit failed: {err or out}")

    rc, sha, err = _run_git(repo_path, ["rev-parse", "HEAD"])
    if rc != 0:
        raise GitCommitError(f"git rev-parse failed: {err}")
    LOGGER.info("git: committed %s as %s", ", ".join(relative), sha[:12])
    return sha
