"""MCP server for tree sync using stdio transport.

Exposes the sync engine to AI agents as MCP tools, so an agent editing
a local directory can push its edits to a GitHub branch and pull the
branch's changes without ever losing a file changed on both sides.

Transport: stdio (for Claude Desktop/Code integration)
Protocol: JSON-RPC 2.0 over MCP

The same entry point runs a single sync from the command line with
``--sync-once PROFILE``.
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import ensure_config
from ..config_schema import UnifiedConfig
from ..core.async_utils import run_sync
from ..core.client import GitHubClient
from ..logger import setup_logging
from ..sync.engine import SyncEngine
from ..sync.reporter import format_sync_report
from .lifespan import connect, resolve_configuration, server_lifespan
from .tools import SYNC_TOOLS, build_error_response, handle_sync_tool

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("treesync")

# Global client and config (initialized in main)
_github_client: GitHubClient | None = None
_unified_config: UnifiedConfig | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available)
# ---------------------------------------------------------------------------

PING_TOOL = types.Tool(
    name="ping",
    description="Test GitHub connectivity and return the repository name",
    inputSchema={
        "type": "object",
        "properties": {},
        "required": [],
    },
)


async def _handle_ping(client: GitHubClient) -> types.CallToolResult:
    """Handle ping tool -- test GitHub connectivity."""
    try:
        full_name = await run_sync(client.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=(
                        f"treesync connected successfully to {full_name} "
                        f"(branch {client.branch})."
                    ),
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"GitHub connection failed: {e}. Check GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO.",
                )
            ],
            isError=True,
        )


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_client() -> GitHubClient:
    """Get the global GitHubClient instance.

    Raises:
        RuntimeError: If client is not initialized
    """
    if _github_client is None:
        raise RuntimeError(
            "GitHubClient not initialized. Server lifespan not started."
        )
    return _github_client


def set_client(client: GitHubClient | None) -> None:
    """Set the global GitHubClient instance (None to clear)."""
    global _github_client
    _github_client = client


def get_config() -> UnifiedConfig:
    """Get the loaded configuration.

    Raises:
        RuntimeError: If configuration is not loaded
    """
    if _unified_config is None:
        raise RuntimeError(
            "Configuration not loaded. Server lifespan not started."
        )
    return _unified_config


def set_config(config: UnifiedConfig | None) -> None:
    """Set the loaded configuration (None to clear)."""
    global _unified_config
    _unified_config = config


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available tools: ping plus the sync tools."""
    return [PING_TOOL, *SYNC_TOOLS]


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Dispatch a tool call by name.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    client = get_client()
    if name == PING_TOOL.name:
        return await _handle_ping(client)
    if name in {tool.name for tool in SYNC_TOOLS}:
        return await handle_sync_tool(name, arguments, client, get_config())
    return build_error_response(
        "unknown_tool",
        f"Unknown tool: {name}",
        "Use list_tools to see available tools.",
    )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), validates the
    GitHub connection via the lifespan manager, and serves JSON-RPC on
    stdio.

    Args:
        config_overrides: Optional dict with CLI values (owner, repo,
            branch, insecure, debug, config_file, log_file)
    """
    overrides = config_overrides or {}

    # Must run BEFORE stdio_server so nothing reaches stdout during
    # protocol negotiation
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    async with server_lifespan(config_overrides=config_overrides) as ctx:
        # Set here rather than in the lifespan: under ``python -m`` this
        # module is __main__, and the lifespan would import a second copy.
        set_client(ctx["client"])
        set_config(ctx["config"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="treesync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_client(None)
            set_config(None)


async def sync_once(
    profile_name: str,
    dry_run: bool = False,
    config_overrides: dict | None = None,
) -> int:
    """Run one sync from the command line and print the report.

    Returns:
        Process exit code: 0 on success, 1 on failure, 2 when the sync
        succeeded but left unresolved clashes.
    """
    config, unified = resolve_configuration(config_overrides)
    try:
        profile = unified.get_profile(profile_name)
    except ValueError as e:
        raise RuntimeError(str(e)) from e

    client = await connect(config)
    engine = SyncEngine.from_profile(profile_name, profile, client)
    outcome = await engine.sync(dry_run=dry_run)

    print(format_sync_report(outcome))
    if not outcome.success:
        return 1
    return 2 if outcome.unresolved_clashes else 0


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="treesync - sync a local directory with a GitHub branch without losing edits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the MCP server (config from .env or .treesync/config.yml)
  treesync

  # Sync the "notes" profile once and print the report
  treesync --sync-once notes

  # Preview what a sync would do
  treesync --sync-once notes --dry-run

  # Write a starter config file
  treesync --init-config

Note: Without --sync-once, this server uses stdio transport for JSON-RPC
communication with MCP clients. All user-facing messages are written to
stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--owner",
        help="Override repository owner (takes precedence over GITHUB_OWNER and config files)",
    )
    parser.add_argument(
        "--repo",
        help="Override repository name (takes precedence over GITHUB_REPO and config files)",
    )
    parser.add_argument(
        "--branch",
        help="Override branch to sync (takes precedence over GITHUB_BRANCH and config files)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--config",
        help="Path to a config file (default: TREESYNC_CONFIG, .treesync/config.yml, then XDG)",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: /tmp/treesync.log in server mode, stderr only for --sync-once)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--sync-once",
        metavar="PROFILE",
        help="Run one sync of PROFILE, print the report and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="With --sync-once: report planned operations without applying them",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a starter .treesync/config.yml if no config file exists, then exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"treesync version {__version__}",
    )

    args = parser.parse_args()

    if args.init_config:
        path = ensure_config()
        print(f"Config file: {path}", file=sys.stderr)
        return

    if args.dry_run and not args.sync_once:
        parser.error("--dry-run requires --sync-once")

    config_overrides = {}
    if args.owner:
        config_overrides["owner"] = args.owner
    if args.repo:
        config_overrides["repo"] = args.repo
    if args.branch:
        config_overrides["branch"] = args.branch
    if args.insecure:
        config_overrides["insecure"] = True
    if args.debug:
        config_overrides["debug"] = True
    if args.config:
        config_overrides["config_file"] = args.config
    if args.log_file:
        config_overrides["log_file"] = args.log_file

    if config_overrides:
        print(
            f"Config overrides from CLI: {', '.join(config_overrides)}",
            file=sys.stderr,
        )

    try:
        if args.sync_once:
            setup_logging(mode="cli", debug=args.debug, log_file=args.log_file)
            sys.exit(
                asyncio.run(
                    sync_once(
                        args.sync_once,
                        dry_run=args.dry_run,
                        config_overrides=config_overrides or None,
                    )
                )
            )
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError as e:
        # Lifespan errors were already printed to stderr
        if args.sync_once:
            print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
