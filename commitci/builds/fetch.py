"""Source fetch module.

This module handles:
- Clone URL construction for the hosting provider
- Cloning a repository and checking out a branch and commit
- Staging each attempt in a fresh directory and publishing it on success
- Removing checkouts once a build is done
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
import tempfile
from pathlib import Path

from commitci.types import Revision, is_valid_commit_id

logger = logging.getLogger(__name__)

DEFAULT_CLONE_BASE_URL = "https://github.com"

REPO_PART_PATTERN = re.compile(r"[A-Za-z0-9_.-]+")

# Never block on a credential prompt for a missing or private repository
GIT_ENV_OVERRIDE = {"GIT_TERMINAL_PROMPT": "0"}


class FetchError(Exception):
    """Raised when the source tree for a revision cannot be fetched."""

    def __init__(self, message: str, code: str = "fetch_error") -> None:
        """Initialize FetchError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


def build_clone_url(revision: Revision, base_url: str = DEFAULT_CLONE_BASE_URL) -> str:
    """Build the clone URL for a revision's repository.

    Args:
        revision: Revision to fetch.
        base_url: Base URL of the hosting provider.

    Returns:
        URL of the form ``{base_url}/{owner}/{name}.git``.
    """
    return f"{base_url.rstrip('/')}/{revision.owner}/{revision.name}.git"


def _validate_revision(revision: Revision) -> None:
    for label, value in (("owner", revision.owner), ("name", revision.name)):
        if not REPO_PART_PATTERN.fullmatch(value) or value in (".", ".."):
            raise FetchError(
                f"Invalid repository {label}: {value!r}", code="invalid_revision"
            )
    if not revision.branch or revision.branch.startswith("-"):
        raise FetchError(
            f"Invalid branch name: {revision.branch!r}", code="invalid_revision"
        )
    if not is_valid_commit_id(revision.commit):
        raise FetchError(
            f"Invalid commit identifier: {revision.commit!r}", code="invalid_revision"
        )


def _git(args: list[str], cwd: Path | None = None, timeout: int | None = None) -> None:
    """Run a git command, raising FetchError if it does not succeed."""
    cmd = ["git", *args]
    env = dict(os.environ)
    env.update(GIT_ENV_OVERRIDE)

    logger.debug("Running %s", shlex.join(cmd))
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise FetchError(
            f"{shlex.join(cmd)} timed out after {timeout}s", code="timeout"
        ) from e
    except OSError as e:
        raise FetchError(
            f"Failed to run git: {e}", code="execution_error"
        ) from e

    if result.returncode != 0:
        raise FetchError(
            f"{shlex.join(cmd)} failed: {result.stderr.strip()}", code="git_error"
        )


def clone_revision(
    revision: Revision,
    dest: Path,
    base_url: str = DEFAULT_CLONE_BASE_URL,
    timeout: int | None = None,
) -> None:
    """Clone a repository into ``dest`` and check out the revision.

    Sequence: clone the full repository, switch to the branch (which must
    exist on the remote), then detach at the commit.

    Args:
        revision: Revision to check out.
        dest: Empty or missing destination directory.
        base_url: Base URL of the hosting provider.
        timeout: Timeout for each git invocation in seconds.

    Raises:
        FetchError: If any step fails.
    """
    url = build_clone_url(revision, base_url)
    logger.info("Cloning %s into %s", url, dest)

    _git(["clone", "--quiet", "--", url, str(dest)], timeout=timeout)
    _git(
        ["checkout", "--quiet", "-B", revision.branch, f"origin/{revision.branch}"],
        cwd=dest,
        timeout=timeout,
    )
    _git(
        ["checkout", "--quiet", "--detach", revision.commit],
        cwd=dest,
        timeout=timeout,
    )


def _publish(staging: Path, dest: Path) -> None:
    """Move a finished checkout to its published location."""
    if dest.exists():
        logger.info("Replacing previous checkout at %s", dest)
        shutil.rmtree(dest)
    os.replace(staging, dest)


def fetch_project_files(
    revision: Revision,
    work_dir: Path,
    base_url: str = DEFAULT_CLONE_BASE_URL,
    timeout: int | None = None,
    retries: int = 0,
) -> Path | None:
    """Fetch the source tree of a revision into ``<work_dir>/<commit>``.

    Every attempt clones into a fresh, uniquely named staging directory
    under ``work_dir``; only a complete checkout is renamed to the
    published path. Failed attempts leave nothing behind.

    Args:
        revision: Revision to fetch.
        work_dir: Root directory for checkouts.
        base_url: Base URL of the hosting provider.
        timeout: Timeout for each git invocation in seconds.
        retries: Extra attempts after a failed one.

    Returns:
        Absolute path of the checkout, or None if the revision could not
        be fetched for any reason.
    """
    try:
        _validate_revision(revision)
        work_dir = Path(work_dir).absolute()
        work_dir.mkdir(parents=True, exist_ok=True)
    except (FetchError, OSError) as e:
        logger.error("Cannot fetch %s@%s: %s", revision.slug, revision.commit, e)
        return None

    dest = work_dir / revision.commit
    attempts = retries + 1

    for attempt in range(1, attempts + 1):
        staging: Path | None = None
        try:
            staging = Path(
                tempfile.mkdtemp(prefix=f".{revision.commit}-", dir=work_dir)
            )
            clone_revision(revision, staging, base_url=base_url, timeout=timeout)
            _publish(staging, dest)
            logger.info(
                "Fetched %s@%s (%s) into %s",
                revision.slug,
                revision.commit,
                revision.branch,
                dest,
            )
            return dest
        except (FetchError, OSError) as e:
            logger.warning(
                "Fetch attempt %d/%d for %s@%s failed: %s",
                attempt,
                attempts,
                revision.slug,
                revision.commit,
                e,
            )
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)

    logger.error(
        "Failed to fetch %s@%s on branch %s",
        revision.slug,
        revision.commit,
        revision.branch,
    )
    return None


def remove_workdir(path: Path) -> bool:
    """Remove a checkout directory.

    Args:
        path: Checkout to remove.

    Returns:
        True if removed, False if it did not exist or could not be removed.
    """
    if not path.exists():
        return False

    logger.debug("Removing checkout %s", path)
    try:
        shutil.rmtree(path)
        return True
    except OSError as e:
        logger.warning("Failed to remove checkout %s: %s", path, e)
        return False


__all__ = [
    "DEFAULT_CLONE_BASE_URL",
    "FetchError",
    "build_clone_url",
    "clone_revision",
    "fetch_project_files",
    "remove_workdir",
]
