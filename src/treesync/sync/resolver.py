"""Clash resolution.

Every ``(LocalState, ChangeKind)`` pair maps to exactly one rule in
``RESOLUTION_TABLE``.  The rules never overwrite or delete a local file
that may hold unseen work: remote content that cannot be applied safely
is written to the quarantine area instead, mirroring its original path.

Rules:

- local changed, remote changed -- compare bytes; identical is vacuous,
  otherwise quarantine the remote version.
- local changed, remote deleted -- keep the local file.
- local deleted, remote changed -- restore the remote version if the
  file is confirmed absent, otherwise quarantine.
- untracked, remote changed -- compare bytes when the file exists,
  quarantine when existence is unknown.
- untracked, remote deleted -- keep whatever is there locally.
- protected, remote changed -- always quarantine.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..file_handler import detect_content_kind
from .models import (
    ChangeKind,
    Clash,
    ClashResolution,
    Existence,
    LocalState,
    ResolutionAction,
)
from .paths import PathPolicy
from .stores import LocalStore, RemoteStore

logger = logging.getLogger(__name__)

#: Resolution plus the remote bytes to write, when there are any.
Resolved = tuple[ClashResolution, bytes | None]
#: Every rule receives the existence check; rules that ignore it keep the signature.
Rule = Callable[["ClashResolver", Clash, Existence], Resolved]


class ClashResolver:
    """Decides and prepares the resolution of each clash.

    Resolution reads content but performs no writes; the engine applies
    the returned bytes during execution.

    Args:
        local_store: Local store, read for byte comparison.
        remote_store: Remote store, read for the remote version.
        policy: Protected-path policy providing quarantine paths.
    """

    def __init__(
        self,
        local_store: LocalStore,
        remote_store: RemoteStore,
        policy: PathPolicy,
    ) -> None:
        self._local = local_store
        self._remote = remote_store
        self._policy = policy

    def resolve_clash(
        self, clash: Clash, existence: Existence = Existence.UNKNOWN
    ) -> Resolved:
        """Resolve a single clash.

        Args:
            clash: The clash to resolve.
            existence: Probe answer for the path, when it was probed.

        Returns:
            Tuple of (resolution, remote bytes to write or None).
        """
        rule = RESOLUTION_TABLE[(clash.local_state, clash.remote_kind)]
        resolution, data = rule(self, clash, existence)
        logger.debug(
            "Clash %s (%s/%s) -> %s%s",
            clash.path,
            clash.local_state.value,
            clash.remote_kind.value,
            resolution.action.value,
            "" if resolution.resolved else " (unresolved)",
        )
        return resolution, data

    # -- building blocks ---------------------------------------------------

    def _skip(self, clash: Clash, resolved: bool, reason: str) -> Resolved:
        return (
            ClashResolution(
                clash=clash,
                action=ResolutionAction.SKIP,
                resolved=resolved,
                reason=reason,
            ),
            None,
        )

    def _quarantine(
        self, clash: Clash, remote: bytes, reason: str
    ) -> Resolved:
        return (
            ClashResolution(
                clash=clash,
                action=ResolutionAction.QUARANTINE,
                resolved=False,
                quarantine_path=self._policy.quarantine_path(clash.path),
                content_kind=detect_content_kind(remote),
                reason=reason,
            ),
            remote,
        )

    def _direct_write(
        self, clash: Clash, remote: bytes, reason: str
    ) -> Resolved:
        return (
            ClashResolution(
                clash=clash,
                action=ResolutionAction.DIRECT_WRITE,
                resolved=True,
                content_kind=detect_content_kind(remote),
                reason=reason,
            ),
            remote,
        )

    def _read_local(self, path: str) -> bytes | None:
        try:
            return self._local.read_content(path)
        except OSError as exc:
            logger.warning(
                "Could not read local %s for comparison, "
                "quarantining remote version: %s",
                path,
                exc,
            )
            return None

    def _compare(self, clash: Clash) -> Resolved:
        remote = self._remote.read_content(clash.path)
        local = self._read_local(clash.path)
        if local is not None and local == remote:
            return self._skip(clash, True, "identical content on both sides")
        return self._quarantine(
            clash, remote, "both sides changed with different content"
        )

    # -- rules -------------------------------------------------------------

    def compare_or_quarantine(
        self, clash: Clash, existence: Existence
    ) -> Resolved:
        return self._compare(clash)

    def keep_local(self, clash: Clash, existence: Existence) -> Resolved:
        return self._skip(
            clash, False, "remote deletion ignored, local file kept"
        )

    def restore_remote(self, clash: Clash, existence: Existence) -> Resolved:
        remote = self._remote.read_content(clash.path)
        if existence is Existence.ABSENT:
            return self._direct_write(
                clash, remote, "restored remote version of deleted file"
            )
        return self._quarantine(
            clash, remote, "local deletion could not be confirmed"
        )

    def probe_then_compare(
        self, clash: Clash, existence: Existence
    ) -> Resolved:
        if existence is Existence.EXISTS:
            return self._compare(clash)
        remote = self._remote.read_content(clash.path)
        if existence is Existence.ABSENT:
            return self._direct_write(clash, remote, "absent locally")
        return self._quarantine(
            clash, remote, "local existence unknown, not overwriting"
        )

    def keep_untracked(self, clash: Clash, existence: Existence) -> Resolved:
        return self._skip(
            clash, False, "remote deletion of an untracked local file ignored"
        )

    def always_quarantine(
        self, clash: Clash, existence: Existence
    ) -> Resolved:
        remote = self._remote.read_content(clash.path)
        return self._quarantine(clash, remote, "protected path")

    def vacuous(self, clash: Clash, existence: Existence) -> Resolved:
        return self._skip(clash, True, "deleted on both sides")


def _build_table() -> dict[tuple[LocalState, ChangeKind], Rule]:
    changed = (ChangeKind.ADDED, ChangeKind.MODIFIED)
    table: dict[tuple[LocalState, ChangeKind], Rule] = {}
    for kind in changed:
        table[(LocalState.ADDED, kind)] = ClashResolver.compare_or_quarantine
        table[(LocalState.MODIFIED, kind)] = ClashResolver.compare_or_quarantine
        table[(LocalState.REMOVED, kind)] = ClashResolver.restore_remote
        table[(LocalState.UNTRACKED, kind)] = ClashResolver.probe_then_compare
        table[(LocalState.PROTECTED, kind)] = ClashResolver.always_quarantine
    table[(LocalState.ADDED, ChangeKind.REMOVED)] = ClashResolver.keep_local
    table[(LocalState.MODIFIED, ChangeKind.REMOVED)] = ClashResolver.keep_local
    table[(LocalState.REMOVED, ChangeKind.REMOVED)] = ClashResolver.vacuous
    table[(LocalState.UNTRACKED, ChangeKind.REMOVED)] = (
        ClashResolver.keep_untracked
    )
    table[(LocalState.PROTECTED, ChangeKind.REMOVED)] = ClashResolver.vacuous
    return table


RESOLUTION_TABLE = _build_table()
