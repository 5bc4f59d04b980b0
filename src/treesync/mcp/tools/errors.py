"""Error response builders for MCP tool handlers.

Failures are returned as structured tool results with a corrective
action, so an agent can recover without human intervention.
"""

import mcp.types as types

from ...sync.errors import SyncErrorType
from ...sync.models import SyncErrorInfo


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (validation_error, not_found, network,
            remote_access, remote_not_found, filesystem, already_syncing,
            api_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Sync profile 'x' not found", "Check config.yml.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


_CORRECTIVE_ACTIONS: dict[SyncErrorType, str] = {
    SyncErrorType.NETWORK: (
        "Check network connectivity and retry repo_sync; nothing was "
        "recorded, so the retry starts from the same state."
    ),
    SyncErrorType.REMOTE_ACCESS: (
        "Check that GITHUB_TOKEN is valid and has contents read/write "
        "access to the repository."
    ),
    SyncErrorType.REMOTE_NOT_FOUND: (
        "Check the github owner, repo and branch settings."
    ),
    SyncErrorType.FILESYSTEM: (
        "Check that the profile's local_root exists and is writable."
    ),
    SyncErrorType.ALREADY_SYNCING: (
        "Wait for the running sync to finish, then call repo_sync again."
    ),
    SyncErrorType.API_ERROR: (
        "Wait a few minutes (rate limit or server error) and retry."
    ),
    SyncErrorType.UNKNOWN: "Check the server log file for details.",
}


def translate_sync_error(error: SyncErrorInfo) -> types.CallToolResult:
    """Turn a failed sync outcome into a tool error response.

    Args:
        error: Error details from ``SyncOutcome.error``.

    Returns:
        CallToolResult with isError=True and corrective action
    """
    message = error.detail_message
    if error.source:
        message = f"{message} (during {error.source})"
    if error.user_message and error.user_message not in message:
        message = f"{message}. {error.user_message}"
    return build_error_response(
        error.error_type.value,
        message,
        _CORRECTIVE_ACTIONS[error.error_type],
    )
