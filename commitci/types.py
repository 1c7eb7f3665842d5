"""Shared type definitions for commitci.

This module contains the dataclasses and enums shared across subpackages
to avoid circular imports.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

# Commit identifiers double as directory and file names
COMMIT_ID_PATTERN = re.compile(r"[A-Za-z0-9_][A-Za-z0-9._-]*")


class BuildStatus(str, Enum):
    """Outcome of a build attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


# Display category for each status, as used by build pages
STATUS_STYLES: dict[BuildStatus, str] = {
    BuildStatus.SUCCESS: "status-success",
    BuildStatus.FAILURE: "status-failure",
    BuildStatus.PENDING: "status-pending",
    BuildStatus.ERROR: "status-error",
}


@dataclass(frozen=True)
class Revision:
    """A specific commit, on a specific branch, of a remote repository.

    Attributes:
        owner: Repository owner (user or organisation).
        name: Repository name.
        commit: Commit identifier (revision hash).
        branch: Branch the commit is expected on.
    """

    owner: str
    name: str
    commit: str
    branch: str

    @property
    def slug(self) -> str:
        """Return ``owner/name``."""
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class BuildResult:
    """Outcome of one build attempt.

    Attributes:
        revision: The revision that was built.
        status: Final build status.
        logs: Captured output lines, in pipeline order.
        started_at: When the attempt started (UTC).
        finished_at: When the attempt finished (UTC).
    """

    revision: Revision
    status: BuildStatus
    logs: tuple[str, ...]
    started_at: datetime
    finished_at: datetime

    @property
    def commit(self) -> str:
        """Return the persistence key of this result."""
        return self.revision.commit

    @property
    def duration(self) -> float:
        """Return the build duration in seconds."""
        return (self.finished_at - self.started_at).total_seconds()


def is_valid_commit_id(commit: str) -> bool:
    """Check that a commit identifier is safe to use as a path component."""
    return bool(COMMIT_ID_PATTERN.fullmatch(commit)) and ".." not in commit


__all__ = [
    "BuildResult",
    "BuildStatus",
    "COMMIT_ID_PATTERN",
    "Revision",
    "STATUS_STYLES",
    "is_valid_commit_id",
]
