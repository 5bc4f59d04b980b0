"""MCP tool handlers for tree sync.

Wraps the sync engine with async handlers and structured error
responses.
"""

from .errors import build_error_response, translate_sync_error
from .sync import SYNC_TOOLS, handle_sync_tool

__all__ = [
    "SYNC_TOOLS",
    "build_error_response",
    "handle_sync_tool",
    "translate_sync_error",
]
