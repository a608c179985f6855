"""Centralized configuration for record-search using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


class Settings(BaseSettings):
    """Strictly typed configuration loaded from ``RECORD_SEARCH_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RECORD_SEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    environment: str = Field(default="development", min_length=1, description="Deployment environment name")
    base_index_dir: Path = Field(
        default=Path("var/search-index"),
        description="Directory holding one index per environment",
    )
    index_path: Path | None = Field(
        default=None,
        description="Explicit index directory; overrides base_index_dir/environment",
    )
    database_path: Path = Field(
        default=Path("var/records.sqlite"),
        description="SQLite database holding records and the index job queue",
    )

    rebuild_batch_size: int = Field(default=1000, ge=1, description="Records loaded per batch during a rebuild")
    query_lookahead: int = Field(
        default=100,
        ge=0,
        description="Matches ranked beyond the requested page to keep sort and collapse stable",
    )
    flush_each_job: bool = Field(
        default=False,
        description="Commit the index after every job instead of once per batch",
    )

    declarations: str = Field(
        default="",
        description="'module:attribute' naming the EntityDeclaration list the CLI loads",
    )

    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return normalized

    def resolved_index_path(self) -> Path:
        """Index directory: the explicit ``index_path`` or ``base_index_dir/environment``."""
        if self.index_path is not None:
            return self.index_path
        return self.base_index_dir / self.environment
