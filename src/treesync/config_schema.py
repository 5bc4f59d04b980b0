"""Configuration schema for treesync.

Pydantic models for the YAML config file: a ``github`` connection
section, named ``sync`` profiles and a ``logging`` section.

Usage:
    from treesync.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    profile = unified.get_profile("notes")
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from .sync.paths import DEFAULT_QUARANTINE_DIR, normalize_path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitHubConfig(BaseModel):
    """GitHub connection settings.

    All fields are optional: env vars and CLI args can supply them at
    runtime instead.
    """

    token: str | None = Field(
        default=None, description="GitHub personal access token"
    )
    owner: str | None = Field(default=None, description="Repository owner")
    repo: str | None = Field(default=None, description="Repository name")
    branch: str | None = Field(default=None, description="Branch to sync")
    api_url: str | None = Field(default=None, description="API base URL")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent content transfers (1-100)",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient API failures (0-10)",
    )

    model_config = {"frozen": True}


class SyncProfileConfig(BaseModel):
    """One local tree synced with the configured branch."""

    local_root: str = Field(description="Local directory to sync")
    state_dir: str = Field(
        default=".treesync", description="Directory holding the sync cache"
    )
    quarantine_dir: str = Field(
        default=DEFAULT_QUARANTINE_DIR,
        description="Top-level directory receiving clashed remote versions",
    )
    exclude: list[str] = Field(
        default_factory=list,
        description="fnmatch globs of paths never synced",
    )
    track_hidden: bool = Field(
        default=False, description="Sync dot-files and dot-directories"
    )
    push_local_on_clash: bool = Field(
        default=True,
        description="Push the local version of clashed files",
    )
    device_name: str = Field(
        default="treesync", description="Name used in commit messages"
    )

    model_config = {"frozen": True}

    @field_validator("quarantine_dir")
    @classmethod
    def _normalize_quarantine_dir(cls, value: str) -> str:
        return normalize_path(value)

    @property
    def local_root_path(self) -> Path:
        return Path(self.local_root).expanduser().resolve()

    @property
    def state_dir_path(self) -> Path:
        return Path(self.state_dir).expanduser().resolve()


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    sync: dict[str, SyncProfileConfig] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def get_profile(self, name: str) -> SyncProfileConfig:
        """Return the sync profile *name*.

        Raises:
            ValueError: If no such profile is configured.
        """
        if name not in self.sync:
            available = ", ".join(sorted(self.sync)) or "none"
            raise ValueError(
                f"Sync profile '{name}' not found (available: {available})"
            )
        return self.sync[name]

    def github_fallbacks(self) -> dict:
        """Non-default ``github`` values, for ``load_config`` fallbacks."""
        return {
            k: v for k, v in self.github.model_dump().items() if v is not None
        }


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from ``load_hierarchical_config()`` output.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a section has invalid values.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)
