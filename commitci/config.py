"""Configuration settings for commitci.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_work_dir() -> Path:
    """Return the default working directory root for checkouts."""
    return Path.home() / ".cache" / "commitci" / "work"


def _default_results_dir() -> Path:
    """Return the default directory for persisted build results."""
    return Path.home() / ".local" / "share" / "commitci" / "results"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "commitci" / "results.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the COMMITCI_ prefix.
    List values (commands) are given as JSON arrays, e.g.
    ``COMMITCI_TEST_COMMAND='["pytest", "-q"]'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COMMITCI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Root directory for fetched checkouts and lock files",
    )
    results_dir: Path = Field(
        default_factory=_default_results_dir,
        description="Root directory for the file result store",
    )

    # Result store
    store_backend: Literal["file", "sqlite"] = Field(
        default="file",
        description="Result store backend",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for the sqlite backend",
    )

    # Source fetching
    clone_base_url: str = Field(
        default="https://github.com",
        description="Base URL of the hosting provider used to build clone URLs",
    )
    fetch_timeout: int = Field(
        default=600,
        ge=1,
        description="Timeout for each git invocation while fetching",
    )
    fetch_retries: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Extra clone attempts after a failed fetch",
    )
    keep_workdir: bool = Field(
        default=False,
        description="Keep the checkout on disk after the build finishes",
    )

    # Pipeline
    test_command: list[str] = Field(
        default_factory=lambda: ["mvn", "test"],
        min_length=1,
        description="Argument vector of the test step",
    )
    package_command: list[str] = Field(
        default_factory=lambda: ["mvn", "package"],
        min_length=1,
        description="Argument vector of the package step",
    )
    step_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Deadline for each pipeline step (no deadline if not set)",
    )

    # Concurrency
    lock_timeout: float | None = Field(
        default=None,
        ge=0,
        description="Wait limit for the per-commit build lock (blocks if not set)",
    )
    max_concurrent_builds: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Maximum concurrent builds in the build queue",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
