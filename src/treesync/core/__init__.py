"""Core GitHub client functionality shared between CLI and MCP server."""

from .async_utils import run_sync
from .client import GitHubClient, RefConflictError

__all__ = ["GitHubClient", "RefConflictError", "run_sync"]
