"""Build result ORM model.

This module defines the BuildResultRecord model used by the SQL result
store. One row holds the latest build result for a commit.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from commitci.builds.schema import FORMAT_VERSION, BuildResultSchema
from commitci.db import Base
from commitci.types import BuildResult


def _to_naive_utc(value: datetime) -> datetime:
    """Normalize a timestamp to naive UTC for portable storage."""
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class BuildResultRecord(Base):
    """ORM model for persisted build results.

    Attributes:
        commit: Commit identifier (primary key).
        format_version: Record format version.
        owner: Repository owner.
        name: Repository name.
        branch: Branch name.
        status: Build status value.
        logs: JSON array of captured log lines.
        started_at: Build start time (naive UTC).
        finished_at: Build finish time (naive UTC).
    """

    __tablename__ = "build_results"

    commit: Mapped[str] = mapped_column(String(255), primary_key=True)
    format_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=FORMAT_VERSION
    )

    # Revision
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    branch: Mapped[str] = mapped_column(String(255), nullable=False)

    # Outcome
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    logs: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of BuildResultRecord."""
        return f"<BuildResultRecord(commit='{self.commit}', status='{self.status}')>"

    @classmethod
    def from_result(cls, result: BuildResult) -> "BuildResultRecord":
        """Create a record from a BuildResult."""
        rev = result.revision
        return cls(
            commit=rev.commit,
            format_version=FORMAT_VERSION,
            owner=rev.owner,
            name=rev.name,
            branch=rev.branch,
            status=result.status.value,
            logs=list(result.logs),
            started_at=_to_naive_utc(result.started_at),
            finished_at=_to_naive_utc(result.finished_at),
        )

    def to_result(self) -> BuildResult:
        """Convert back to a BuildResult.

        Raises:
            pydantic.ValidationError: If the stored row is not a valid record.
        """
        schema = BuildResultSchema.model_validate(
            {
                "format_version": self.format_version,
                "revision": {
                    "owner": self.owner,
                    "name": self.name,
                    "commit": self.commit,
                    "branch": self.branch,
                },
                "status": self.status,
                "logs": self.logs,
                "started_at": self.started_at.replace(tzinfo=timezone.utc),
                "finished_at": self.finished_at.replace(tzinfo=timezone.utc),
            }
        )
        return schema.to_result()


__all__ = ["BuildResultRecord"]
