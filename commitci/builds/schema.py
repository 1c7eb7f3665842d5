"""Pydantic models for the persisted build result format.

A persisted record is a self-describing JSON document carrying an explicit
``format_version``. Records with an unknown version, unknown fields, or
missing fields fail validation instead of being half-read.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from commitci.types import BuildResult, BuildStatus, Revision

FORMAT_VERSION = 1


class RevisionSchema(BaseModel):
    """Schema for a revision descriptor.

    Attributes:
        owner: Repository owner.
        name: Repository name.
        commit: Commit identifier.
        branch: Branch name.
    """

    model_config = ConfigDict(extra="forbid")

    owner: str = Field(description="Repository owner")
    name: str = Field(description="Repository name")
    commit: str = Field(min_length=1, description="Commit identifier")
    branch: str = Field(description="Branch name")


class BuildResultSchema(BaseModel):
    """Schema for a persisted build result (format version 1)."""

    model_config = ConfigDict(extra="forbid")

    format_version: Literal[1] = Field(
        default=FORMAT_VERSION, description="Record format version"
    )
    revision: RevisionSchema
    status: BuildStatus
    logs: list[str] = Field(default_factory=list)
    started_at: AwareDatetime
    finished_at: AwareDatetime

    @model_validator(mode="after")
    def validate_times(self) -> BuildResultSchema:
        """Validate the build did not finish before it started."""
        if self.finished_at < self.started_at:
            raise ValueError("finished_at must not be earlier than started_at")
        return self

    @classmethod
    def from_result(cls, result: BuildResult) -> BuildResultSchema:
        """Create a schema instance from a BuildResult."""
        rev = result.revision
        return cls(
            revision=RevisionSchema(
                owner=rev.owner, name=rev.name, commit=rev.commit, branch=rev.branch
            ),
            status=result.status,
            logs=list(result.logs),
            started_at=result.started_at,
            finished_at=result.finished_at,
        )

    def to_result(self) -> BuildResult:
        """Convert back to a BuildResult with UTC timestamps."""
        return BuildResult(
            revision=Revision(
                owner=self.revision.owner,
                name=self.revision.name,
                commit=self.revision.commit,
                branch=self.revision.branch,
            ),
            status=self.status,
            logs=tuple(self.logs),
            started_at=_as_utc(self.started_at),
            finished_at=_as_utc(self.finished_at),
        )


def _as_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


__all__ = ["BuildResultSchema", "FORMAT_VERSION", "RevisionSchema"]
