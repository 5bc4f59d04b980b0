"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import UnifiedConfig, build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.client import GitHubClient
from ..logger import apply_config_level
from .tools.sync import reset_engines

logger = logging.getLogger(__name__)

_ENV_HINT = "Ensure GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO are set."


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def resolve_configuration(
    config_overrides: dict[str, Any] | None = None,
) -> tuple[Config, UnifiedConfig]:
    """Merge every configuration source.

    Precedence: CLI args > env vars (.env loaded first) > YAML > defaults.

    Args:
        config_overrides: Values from the CLI (owner, repo, branch,
            insecure, debug, config_file).

    Returns:
        The connection ``Config`` and the full ``UnifiedConfig`` holding
        the sync profiles.

    Raises:
        RuntimeError: If configuration is missing or invalid.
    """
    overrides = config_overrides or {}
    explicit = overrides.get("config_file")
    explicit_path = Path(explicit) if explicit else None

    try:
        # .env first so ${VAR} interpolation in YAML can see its values
        load_dotenv()

        sources = []
        config_files = discover_config_files(explicit_path)
        unified = build_config(load_hierarchical_config(explicit_path))
        if config_files:
            sources.append(f"config file: {config_files[0]}")

        config = load_config(
            owner=overrides.get("owner"),
            repo=overrides.get("repo"),
            branch=overrides.get("branch"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=unified.github_fallbacks(),
        )
        apply_config_level(unified.logging.level, config.debug)

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("Repository: %s/%s@%s", config.owner, config.repo, config.branch)
        _stderr_print(
            f"  Repository: {config.owner}/{config.repo} (branch {config.branch})"
        )
        if unified.sync:
            _stderr_print(f"  Sync profiles: {', '.join(sorted(unified.sync))}")
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(f"  {_ENV_HINT}")
        raise RuntimeError(f"Configuration error: {e}. {_ENV_HINT}") from e

    return config, unified


async def connect(config: Config) -> GitHubClient:
    """Create a client and fail fast if the repository is unreachable."""
    logger.info("Validating GitHub connection...")
    _stderr_print("  Validating GitHub connection...")
    try:
        client = GitHubClient(config)
        full_name = await run_sync(client.validate_connection)
        logger.info("Successfully connected to %s", full_name)
        _stderr_print(f"  Connected to {full_name}")
        init_semaphore(config.max_parallel_requests)
        _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")
    except Exception as e:
        logger.error("Failed to connect to GitHub: %s", e)
        _stderr_print("ERROR: GitHub connection failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO.")
        raise RuntimeError(
            f"GitHub connection failed: {e}. "
            "Check GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO."
        ) from e
    return client


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Merge all configuration sources via ``resolve_configuration()``
    - Create GitHubClient and validate repository access
    - Fail fast if GitHub is unreachable

    On shutdown:
    - Drop the per-profile sync engines

    Args:
        config_overrides: Optional dict with config values from CLI

    Yields:
        Dict with 'client' (GitHubClient) and 'config' (UnifiedConfig)

    Raises:
        RuntimeError: If configuration is invalid or GitHub connection fails.
    """
    logger.info("MCP server starting...")
    _stderr_print("treesync MCP server starting...")

    config, unified = resolve_configuration(config_overrides)
    client = await connect(config)
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"client": client, "config": unified}
    finally:
        reset_engines()
        logger.info("MCP server shutting down")
        _stderr_print("treesync MCP server shutting down.")
