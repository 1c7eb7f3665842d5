"""Shared fixtures for commitci tests."""

import os
import shutil
import subprocess
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from commitci.config import Settings
from commitci.types import BuildResult, BuildStatus, Revision

GIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "commitci tests",
    "GIT_AUTHOR_EMAIL": "tests@example.com",
    "GIT_COMMITTER_NAME": "commitci tests",
    "GIT_COMMITTER_EMAIL": "tests@example.com",
}


def _git(*args: str, cwd: Path) -> str:
    env = dict(os.environ)
    env.update(GIT_IDENTITY)
    result = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with temporary paths and quick Python pipeline steps."""
    return Settings(
        work_dir=tmp_path / "work",
        results_dir=tmp_path / "results",
        db_url=f"sqlite:///{tmp_path / 'results.sqlite'}",
        test_command=[sys.executable, "-c", "print('tests passed')"],
        package_command=[sys.executable, "-c", "print('packaged')"],
    )


@pytest.fixture
def revision() -> Revision:
    """A revision that is never fetched from a real host."""
    return Revision(owner="acme", name="widget", commit="abc123", branch="main")


@pytest.fixture
def make_result(revision):
    """Factory for BuildResult instances."""

    def _make(
        commit: str = revision.commit,
        status: BuildStatus = BuildStatus.SUCCESS,
        logs: tuple[str, ...] = ("line one", "line two"),
    ) -> BuildResult:
        started_at = datetime(2024, 3, 1, 12, 30, 15, 123456, tzinfo=timezone.utc)
        return BuildResult(
            revision=Revision(
                owner=revision.owner,
                name=revision.name,
                commit=commit,
                branch=revision.branch,
            ),
            status=status,
            logs=logs,
            started_at=started_at,
            finished_at=started_at + timedelta(seconds=42, microseconds=7),
        )

    return _make


@pytest.fixture
def git_remote(tmp_path):
    """Create a local remote ``acme/widget`` with two commits on main.

    Returns:
        Tuple of (base URL, first commit, second commit).
    """
    if shutil.which("git") is None:
        pytest.skip("git executable not available")

    seed = tmp_path / "seed"
    seed.mkdir()
    _git("init", "--quiet", cwd=seed)
    _git("checkout", "--quiet", "-b", "main", cwd=seed)

    (seed / "README.md").write_text("v1\n")
    _git("add", "README.md", cwd=seed)
    _git("commit", "--quiet", "-m", "first", cwd=seed)
    first = _git("rev-parse", "HEAD", cwd=seed)

    (seed / "README.md").write_text("v2\n")
    _git("commit", "--quiet", "-am", "second", cwd=seed)
    second = _git("rev-parse", "HEAD", cwd=seed)

    remote_root = tmp_path / "remote"
    (remote_root / "acme").mkdir(parents=True)
    bare = remote_root / "acme" / "widget.git"
    _git("clone", "--quiet", "--bare", str(seed), str(bare), cwd=tmp_path)
    return remote_root.as_uri(), first, second
