"""MCP tool handlers for tree sync.

Defines two tools:

- ``repo_sync`` -- run a named sync profile (with optional dry-run).
- ``repo_sync_status`` -- show cache summary for a named sync profile.

One ``SyncEngine`` is kept per profile for the life of the server, so a
second ``repo_sync`` call while one is running is rejected as
``already_syncing`` instead of racing it.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...config_schema import SyncProfileConfig, UnifiedConfig
from ...core.async_utils import run_sync
from ...core.client import GitHubClient
from ...sync.engine import SyncEngine
from ...sync.reporter import format_sync_report, report_to_json
from ...sync.state import SyncState
from .errors import build_error_response, translate_sync_error

logger = logging.getLogger(__name__)

_engines: dict[str, SyncEngine] = {}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_PROFILE_SCHEMA = {
    "type": "string",
    "description": "Name of sync profile from config",
}

SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="repo_sync",
        description=(
            "Synchronize a local directory with a GitHub branch using a "
            "named sync profile. Files changed on both sides are never "
            "overwritten: the remote version is saved in the quarantine "
            "directory and reported as an unresolved clash."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "profile": _PROFILE_SCHEMA,
                "dry_run": {
                    "type": "boolean",
                    "default": False,
                    "description": "Preview changes without applying them",
                },
            },
            "required": ["profile"],
        },
    ),
    types.Tool(
        name="repo_sync_status",
        description=(
            "Show sync state for a profile -- last sync time, remote "
            "revision, tracked files and files waiting in quarantine."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"profile": _PROFILE_SCHEMA},
            "required": ["profile"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Engine registry
# ---------------------------------------------------------------------------


def get_engine(
    profile_name: str,
    profile: SyncProfileConfig,
    client: GitHubClient,
) -> SyncEngine:
    """Return the long-lived engine for *profile_name*, creating it once."""
    engine = _engines.get(profile_name)
    if engine is None:
        engine = SyncEngine.from_profile(profile_name, profile, client)
        _engines[profile_name] = engine
    return engine


def reset_engines() -> None:
    """Forget every engine (used on shutdown)."""
    _engines.clear()


# ---------------------------------------------------------------------------
# Tool handler
# ---------------------------------------------------------------------------


async def handle_sync_tool(
    name: str,
    arguments: dict[str, Any] | None,
    client: GitHubClient,
    config: UnifiedConfig,
) -> types.CallToolResult:
    """Dispatch and execute a sync tool.

    Args:
        name: Tool name (``repo_sync`` or ``repo_sync_status``).
        arguments: Tool arguments dict.
        client: Pre-configured GitHubClient instance.
        config: Loaded configuration holding the sync profiles.

    Returns:
        ``CallToolResult`` with tool output or error details.
    """
    args = arguments or {}

    try:
        profile_name = args.get("profile")
        if not profile_name:
            return build_error_response(
                "validation_error",
                "profile is required",
                "Provide the 'profile' parameter with a sync profile name.",
            )
        try:
            profile = config.get_profile(profile_name)
        except ValueError as exc:
            return build_error_response(
                "not_found",
                str(exc),
                "Check the 'sync' section of .treesync/config.yml.",
            )

        match name:
            case "repo_sync":
                return await _handle_repo_sync(
                    profile_name, profile, client, bool(args.get("dry_run"))
                )
            case "repo_sync_status":
                return await _handle_repo_sync_status(profile_name, profile)
            case _:
                raise ValueError(f"Unknown sync tool: {name}")

    except ValueError as exc:
        return build_error_response(
            "validation_error",
            str(exc),
            "Check parameter values and retry.",
        )
    except Exception as exc:
        logger.exception("Sync tool error: %s", exc)
        return build_error_response(
            "server_error",
            str(exc),
            "Check sync profile configuration and GitHub connectivity.",
        )


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_repo_sync(
    profile_name: str,
    profile: SyncProfileConfig,
    client: GitHubClient,
    dry_run: bool,
) -> types.CallToolResult:
    """Handle the ``repo_sync`` tool."""
    engine = get_engine(profile_name, profile, client)
    outcome = await engine.sync(dry_run=dry_run)

    if not outcome.success and outcome.error is not None:
        return translate_sync_error(outcome.error)

    return types.CallToolResult(
        content=[
            types.TextContent(type="text", text=format_sync_report(outcome))
        ],
        structuredContent=report_to_json(outcome),
    )


def _list_quarantined(profile: SyncProfileConfig) -> list[str]:
    root = profile.local_root_path / profile.quarantine_dir
    if not root.is_dir():
        return []
    return sorted(
        p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()
    )


async def _handle_repo_sync_status(
    profile_name: str,
    profile: SyncProfileConfig,
) -> types.CallToolResult:
    """Handle the ``repo_sync_status`` tool."""
    state = SyncState(profile.state_dir_path)
    cache = await run_sync(state.load, profile_name)
    last_sync = await run_sync(state.last_sync, profile_name)
    quarantined = await run_sync(_list_quarantined, profile)

    engine = _engines.get(profile_name)
    phase = engine.phase.value if engine is not None else "idle"

    lines = [
        f"Sync status for '{profile_name}'",
        f"  Local root:    {profile.local_root}",
        f"  Last sync:     {last_sync or 'never'}",
        f"  Revision:      {cache.last_synced_revision or 'none'}",
        f"  Phase:         {phase}",
        f"  Local files:   {len(cache.local_snapshot)}",
        f"  Remote files:  {len(cache.last_synced_remote_snapshot)}",
        f"  Quarantined:   {len(quarantined)}",
    ]
    lines.extend(f"    {path}" for path in quarantined)

    structured = {
        "profile_name": profile_name,
        "local_root": profile.local_root,
        "last_sync": last_sync,
        "revision": cache.last_synced_revision,
        "phase": phase,
        "local_files": len(cache.local_snapshot),
        "remote_files": len(cache.last_synced_remote_snapshot),
        "quarantined": quarantined,
    }

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=structured,
    )
