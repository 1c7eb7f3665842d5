"""Build result persistence.

This module handles:
- Saving build results keyed by commit identifier (last write wins)
- Looking results up again, reporting missing or corrupt records as None
- Atomic file writes (temporary file + rename) so readers never see a
  partially written record
- An alternative SQLAlchemy-backed store

Records use the versioned JSON format defined in builds/schema.py.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from commitci.builds.models import BuildResultRecord
from commitci.builds.schema import BuildResultSchema
from commitci.db import get_session, open_database
from commitci.types import BuildResult, is_valid_commit_id

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from commitci.config import Settings

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


class StoreWriteError(Exception):
    """Raised when a build result cannot be persisted."""

    def __init__(
        self, message: str, commit: str, code: str = "store_write_error"
    ) -> None:
        super().__init__(message)
        self.commit = commit
        self.code = code


class ResultStore(ABC):
    """Durable key-value persistence of build results keyed by commit."""

    @abstractmethod
    def save(self, result: BuildResult) -> None:
        """Persist a result, replacing any previous one for the same commit.

        Raises:
            StoreWriteError: If the result could not be written.
        """

    @abstractmethod
    def get(self, commit: str) -> BuildResult | None:
        """Return the stored result for a commit, or None.

        None covers a missing key as well as an unreadable or corrupt
        record. This method never raises.
        """


def _to_schema(result: BuildResult) -> BuildResultSchema:
    """Validate a result against the record format before writing it.

    Raises:
        StoreWriteError: If the result is not a valid record, for example
            because its timestamps carry no timezone.
    """
    try:
        return BuildResultSchema.from_result(result)
    except ValidationError as e:
        raise StoreWriteError(
            f"Build result for {result.commit} is not a valid record: {e}",
            commit=result.commit,
            code="invalid_record",
        ) from e


class FileResultStore(ResultStore):
    """Result store keeping one JSON file per commit under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"FileResultStore(root={str(self.root)!r})"

    def path_for(self, commit: str) -> Path:
        """Return the record path for a commit."""
        return self.root / f"{commit}{RECORD_SUFFIX}"

    def save(self, result: BuildResult) -> None:
        commit = result.commit
        if not is_valid_commit_id(commit):
            raise StoreWriteError(
                f"Invalid commit identifier for storage: {commit!r}",
                commit=commit,
                code="invalid_key",
            )

        payload = _to_schema(result).model_dump_json(indent=2)
        path = self.path_for(commit)
        tmp_path: Path | None = None

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.root,
                prefix=f".{commit}.",
                suffix=".tmp",
                delete=False,
            ) as tmp_file:
                tmp_path = Path(tmp_file.name)
                tmp_file.write(payload)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise StoreWriteError(
                f"Failed to write build result to {path}: {e}", commit=commit
            ) from e

        logger.info("Saved build result for %s to %s", commit, path)

    def get(self, commit: str) -> BuildResult | None:
        if not is_valid_commit_id(commit):
            logger.debug("Rejected lookup for invalid commit identifier %r", commit)
            return None

        path = self.path_for(commit)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No build result for %s", commit)
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Unreadable build result %s: %s", path, e)
            return None

        try:
            schema = BuildResultSchema.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Corrupt build result %s (%d validation errors)", path, e.error_count()
            )
            return None

        if schema.revision.commit != commit:
            logger.warning(
                "Build result %s belongs to commit %s", path, schema.revision.commit
            )
            return None

        return schema.to_result()


class SqlResultStore(ResultStore):
    """Result store keeping one row per commit in a SQL database."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def save(self, result: BuildResult) -> None:
        _to_schema(result)
        record = BuildResultRecord.from_result(result)
        try:
            with get_session(self.session_factory) as session:
                session.merge(record)
        except SQLAlchemyError as e:
            raise StoreWriteError(
                f"Failed to write build result for {result.commit}: {e}",
                commit=result.commit,
            ) from e

        logger.info("Saved build result for %s", result.commit)

    def get(self, commit: str) -> BuildResult | None:
        try:
            with get_session(self.session_factory) as session:
                record = session.get(BuildResultRecord, commit)
                if record is None:
                    logger.debug("No build result for %s", commit)
                    return None
                return record.to_result()
        except SQLAlchemyError as e:
            logger.warning("Unreadable build result for %s: %s", commit, e)
            return None
        except ValueError as e:
            # Covers undecodable JSON columns as well as failed validation
            logger.warning("Corrupt build result for %s: %s", commit, e)
            return None


def get_result_store(settings: Settings) -> ResultStore:
    """Create the result store selected by settings.

    Args:
        settings: Application settings.

    Returns:
        FileResultStore or SqlResultStore.
    """
    if settings.store_backend == "sqlite":
        return SqlResultStore(open_database(settings.db_url))
    return FileResultStore(settings.results_dir)


__all__ = [
    "FileResultStore",
    "ResultStore",
    "SqlResultStore",
    "StoreWriteError",
    "get_result_store",
]
