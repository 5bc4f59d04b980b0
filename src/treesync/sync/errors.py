"""Error taxonomy for sync failures.

Every failure that ends a sync is reported as a ``SyncError`` with one
of the ``SyncErrorType`` categories.  ``categorize_error`` maps the
exceptions raised by the stores and the GitHub client into that
taxonomy so callers only ever see one exception type.
"""

from __future__ import annotations

from enum import Enum

import requests

from ..core.client import RefConflictError


class SyncErrorType(str, Enum):
    """Category of a sync failure."""

    NETWORK = "network"
    REMOTE_ACCESS = "remote_access"
    REMOTE_NOT_FOUND = "remote_not_found"
    FILESYSTEM = "filesystem"
    ALREADY_SYNCING = "already_syncing"
    API_ERROR = "api_error"
    UNKNOWN = "unknown"


_USER_MESSAGES: dict[SyncErrorType, str] = {
    SyncErrorType.NETWORK: "Please check your internet connection.",
    SyncErrorType.REMOTE_ACCESS: "Check your GitHub personal access token.",
    SyncErrorType.REMOTE_NOT_FOUND: "Check your repo and branch settings.",
    SyncErrorType.FILESYSTEM: "File system error: {detail}",
    SyncErrorType.ALREADY_SYNCING: "A sync is already in progress.",
    SyncErrorType.API_ERROR: "GitHub API error: {detail}",
    SyncErrorType.UNKNOWN: "Unexpected sync error: {detail}",
}


class SyncError(Exception):
    """A categorized sync failure.

    Attributes:
        error_type: Failure category.
        detail_message: Human-readable description.
        source: Name of the operation that failed, when known.
        cause: Underlying exception, when there is one.
    """

    def __init__(
        self,
        error_type: SyncErrorType,
        detail_message: str,
        source: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(detail_message)
        self.error_type = error_type
        self.detail_message = detail_message
        self.source = source
        self.cause = cause

    def __repr__(self) -> str:
        return (
            f"SyncError({self.error_type.value!r}, {self.detail_message!r}, "
            f"source={self.source!r})"
        )

    @property
    def retryable(self) -> bool:
        """Whether retrying the whole sync later may succeed."""
        return self.error_type in (
            SyncErrorType.NETWORK,
            SyncErrorType.API_ERROR,
            SyncErrorType.ALREADY_SYNCING,
        )

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self.error_type].format(
            detail=self.detail_message
        )

    @classmethod
    def already_syncing(cls) -> SyncError:
        return cls(
            SyncErrorType.ALREADY_SYNCING,
            "Sync already in progress",
            source="sync",
        )


def _http_status(exc: requests.HTTPError) -> int | None:
    if exc.response is None:
        return None
    return exc.response.status_code


def _rate_limited(exc: requests.HTTPError) -> bool:
    if exc.response is None:
        return False
    return exc.response.headers.get("X-RateLimit-Remaining") == "0"


def categorize_error(
    exc: BaseException, source: str | None = None
) -> SyncError:
    """Map any exception raised during a sync to a ``SyncError``.

    Args:
        exc: The exception to categorize.
        source: Operation name to record when ``exc`` does not carry one.

    Returns:
        A ``SyncError``; ``exc`` itself when it already is one.
    """
    match exc:
        case SyncError():
            if exc.source is None and source is not None:
                exc.source = source
            return exc
        case RefConflictError():
            return SyncError(
                SyncErrorType.NETWORK,
                f"Remote branch moved during sync, retry later: {exc}",
                source,
                exc,
            )
        case requests.HTTPError():
            status = _http_status(exc)
            match status:
                case 403 if _rate_limited(exc):
                    error_type = SyncErrorType.API_ERROR
                case 401 | 403:
                    error_type = SyncErrorType.REMOTE_ACCESS
                case 404:
                    error_type = SyncErrorType.REMOTE_NOT_FOUND
                case None:
                    error_type = SyncErrorType.NETWORK
                case _:
                    error_type = SyncErrorType.API_ERROR
            return SyncError(error_type, str(exc), source, exc)
        case requests.RequestException():
            # requests exceptions subclass OSError; match them first.
            return SyncError(SyncErrorType.NETWORK, str(exc), source, exc)
        case OSError():
            return SyncError(SyncErrorType.FILESYSTEM, str(exc), source, exc)
        case _:
            return SyncError(
                SyncErrorType.UNKNOWN,
                str(exc) or type(exc).__name__,
                source,
                exc,
            )
