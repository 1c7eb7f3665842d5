"""Build service module.

This module provides the high-level build API:
- build_project(): fetch -> test step -> package step -> classify -> persist
- Locking so that at most one build per commit runs at a time
- BuildQueue: background build trigger with one in-flight build per commit
- Result lookup helpers for presentation layers

Every build attempt produces exactly one BuildResult; failures inside the
pipeline are converted into FAILURE or ERROR results, never raised.
"""

from __future__ import annotations

import fcntl
import logging
import os
import re
import threading
import time
from collections.abc import Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from commitci.builds.fetch import fetch_project_files, remove_workdir
from commitci.builds.runner import CommandResult, execute
from commitci.builds.store import ResultStore, StoreWriteError, get_result_store
from commitci.config import get_settings
from commitci.types import STATUS_STYLES, BuildResult, BuildStatus, Revision

if TYPE_CHECKING:
    from commitci.config import Settings

logger = logging.getLogger(__name__)

FETCH_FAILED_MESSAGE = "Failed to fetch project files"
LOCK_DIR_NAME = ".locks"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class BuildLockTimeout(TimeoutError):
    """Raised when the per-commit build lock cannot be acquired in time."""

    def __init__(self, commit: str, code: str = "build_in_progress") -> None:
        super().__init__(f"Timeout waiting for build lock on {commit}")
        self.commit = commit
        self.code = code


@dataclass(frozen=True)
class PipelineStep:
    """One external build-tool invocation of the pipeline."""

    name: str
    argv: tuple[str, ...]


def pipeline_steps(settings: Settings) -> list[PipelineStep]:
    """Return the fixed pipeline: test step, then package step."""
    return [
        PipelineStep("test", tuple(settings.test_command)),
        PipelineStep("package", tuple(settings.package_command)),
    ]


def _lock_path(lock_dir: Path, key: str) -> Path:
    safe_key = re.sub(r"[^A-Za-z0-9._-]", "_", key)[:64]
    return lock_dir / f"build_{safe_key}.lock"


def _acquire(fd: int, key: str, timeout: float | None) -> None:
    if timeout is None:
        fcntl.flock(fd, fcntl.LOCK_EX)
        return

    deadline = time.monotonic() + timeout
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            if time.monotonic() >= deadline:
                raise BuildLockTimeout(key) from None
            time.sleep(0.1)


@contextmanager
def build_lock(
    lock_dir: Path,
    key: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Acquire the exclusive build lock for a commit.

    Uses a file lock so that builds of the same commit are serialized
    across threads and processes sharing ``lock_dir``.

    Args:
        lock_dir: Directory for lock files.
        key: Commit identifier to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        BuildLockTimeout: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = _lock_path(lock_dir, key)

    logger.debug("Acquiring build lock for %s", key)
    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        _acquire(fd, key, timeout)
        logger.debug("Build lock acquired for %s", key)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Build lock released for %s", key)
    finally:
        os.close(fd)


def classify_status(outcomes: list[CommandResult]) -> BuildStatus:
    """Classify a completed pipeline.

    Args:
        outcomes: Result of every step that ran.

    Returns:
        ERROR if a step hit its deadline, SUCCESS if every step succeeded,
        FAILURE otherwise.
    """
    if any(o.timed_out for o in outcomes):
        return BuildStatus.ERROR
    if all(o.success for o in outcomes):
        return BuildStatus.SUCCESS
    return BuildStatus.FAILURE


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _make_result(
    revision: Revision,
    status: BuildStatus,
    logs: list[str],
    started_at: datetime,
) -> BuildResult:
    # Clamp against wall-clock steps backwards
    finished_at = max(_now(), started_at)
    return BuildResult(
        revision=revision,
        status=status,
        logs=tuple(logs),
        started_at=started_at,
        finished_at=finished_at,
    )


def _run_pipeline(
    revision: Revision,
    settings: Settings,
    started_at: datetime,
) -> BuildResult:
    project_path = fetch_project_files(
        revision,
        settings.work_dir,
        base_url=settings.clone_base_url,
        timeout=settings.fetch_timeout,
        retries=settings.fetch_retries,
    )
    if project_path is None:
        logger.error("Failed to fetch the project files for commit %s", revision.commit)
        return _make_result(
            revision, BuildStatus.ERROR, [FETCH_FAILED_MESSAGE], started_at
        )

    outcomes: list[CommandResult] = []
    step_logs: list[list[str]] = []
    try:
        # Every step runs even after a failure so the result carries all logs
        for step in pipeline_steps(settings):
            output: list[str] = []
            logger.info("Running %s step for %s", step.name, revision.commit)
            outcomes.append(
                execute(step.argv, project_path, output, timeout=settings.step_timeout)
            )
            step_logs.append(output)
    finally:
        if not settings.keep_workdir:
            remove_workdir(project_path)

    status = classify_status(outcomes)
    logs = [line for output in step_logs for line in output]
    return _make_result(revision, status, logs, started_at)


def _persist(store: ResultStore, result: BuildResult) -> None:
    try:
        store.save(result)
    except StoreWriteError as e:
        logger.error("Build result for %s was not persisted: %s", result.commit, e)


def build_project(
    revision: Revision,
    settings: Settings | None = None,
    store: ResultStore | None = None,
) -> BuildResult:
    """Build a revision and persist the outcome.

    This is the main entry point for the build pipeline. It:
    1. Records the start time
    2. Takes the per-commit build lock
    3. Fetches the source tree (ERROR without running any step on failure)
    4. Runs the test step and the package step
    5. Classifies the outcome and persists the BuildResult

    Args:
        revision: Revision to build.
        settings: Application settings.
        store: Result store; created from settings if not provided.

    Returns:
        The BuildResult, which has also been handed to the store. A build
        rejected because another build of the same commit held the lock
        past ``settings.lock_timeout`` returns an ERROR result that is not
        persisted.
    """
    if settings is None:
        settings = get_settings()

    started_at = _now()
    logger.info(
        "Starting build of %s@%s (%s)", revision.slug, revision.commit, revision.branch
    )

    try:
        if store is None:
            store = get_result_store(settings)

        lock_dir = settings.work_dir / LOCK_DIR_NAME
        with build_lock(lock_dir, revision.commit, timeout=settings.lock_timeout):
            result = _run_pipeline(revision, settings, started_at)
            _persist(store, result)

    except BuildLockTimeout:
        logger.warning(
            "Build of %s rejected: another build of this commit is in progress",
            revision.commit,
        )
        return _make_result(
            revision,
            BuildStatus.ERROR,
            [f"Another build of commit {revision.commit} is in progress"],
            started_at,
        )

    except Exception as e:
        logger.exception("Build of %s aborted", revision.commit)
        result = _make_result(
            revision, BuildStatus.ERROR, [f"Build aborted: {e}"], started_at
        )
        if store is not None:
            _persist(store, result)
        return result

    logger.info(
        "Build of %s finished with status %s in %.1fs",
        revision.commit,
        result.status.name,
        result.duration,
    )
    return result


def get_result(
    commit: str,
    store: ResultStore | None = None,
    settings: Settings | None = None,
) -> BuildResult | None:
    """Look up the stored result for a commit.

    Args:
        commit: Commit identifier.
        store: Result store; created from settings if not provided.
        settings: Application settings.

    Returns:
        BuildResult, or None if not found or unreadable.
    """
    if store is None:
        store = get_result_store(settings or get_settings())
    return store.get(commit)


def build_info(result: BuildResult) -> dict[str, Any]:
    """Return the fields a build page displays for a result.

    Args:
        result: Build result to describe.

    Returns:
        Dictionary with owner, repository, hash, status, status style,
        branch, log lines and the local start date.
    """
    rev = result.revision
    return {
        "owner": rev.owner,
        "repository": rev.name,
        "hash": rev.commit,
        "status": result.status.name,
        "status_style": STATUS_STYLES[result.status],
        "branch": rev.branch,
        "logs": list(result.logs),
        "date": result.started_at.astimezone().strftime(DATE_FORMAT),
    }


class BuildQueue:
    """Background build trigger.

    Runs builds on a thread pool. At most one build per commit is in
    flight: submitting a commit that is already building returns the
    existing future instead of starting a second build.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: ResultStore | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        self.store = store if store is not None else get_result_store(self.settings)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or self.settings.max_concurrent_builds,
            thread_name_prefix="commitci-build",
        )
        self._in_flight: dict[str, Future[BuildResult]] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> BuildQueue:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def submit(self, revision: Revision) -> Future[BuildResult]:
        """Schedule a build of a revision.

        Args:
            revision: Revision to build.

        Returns:
            Future resolving to the BuildResult.
        """
        with self._lock:
            existing = self._in_flight.get(revision.commit)
            if existing is not None:
                logger.info("Build of %s already in flight", revision.commit)
                return existing

            future = self._executor.submit(
                build_project, revision, self.settings, self.store
            )
            self._in_flight[revision.commit] = future

        future.add_done_callback(partial(self._forget, revision.commit))
        logger.info("Queued build of %s@%s", revision.slug, revision.commit)
        return future

    def _forget(self, commit: str, future: Future[BuildResult]) -> None:
        with self._lock:
            if self._in_flight.get(commit) is future:
                del self._in_flight[commit]

    def in_flight(self) -> list[str]:
        """Return the commits currently queued or building."""
        with self._lock:
            return sorted(self._in_flight)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting builds, optionally waiting for running ones."""
        self._executor.shutdown(wait=wait)


__all__ = [
    "BuildLockTimeout",
    "BuildQueue",
    "FETCH_FAILED_MESSAGE",
    "PipelineStep",
    "build_info",
    "build_lock",
    "build_project",
    "classify_status",
    "get_result",
    "pipeline_steps",
]
