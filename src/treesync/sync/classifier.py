"""Partition detected changes into safe changes and clashes.

A remote change is safe to apply only when the local side is known to
be untouched: the path is tracked in the cached local snapshot and has
no local change.  Everything else is a clash candidate.  Candidates
whose local status is unknown are probed in a single batch, together
with every local deletion, because a deletion may be an artefact of a
stale cache rather than a real local delete.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection

from .models import (
    Change,
    ChangeKind,
    Clash,
    ClassificationResult,
    Existence,
    LocalState,
)
from .paths import PathPolicy
from .prober import ExistenceProber, assume_exists

logger = logging.getLogger(__name__)

_LOCAL_STATE_FOR_KIND = {
    ChangeKind.ADDED: LocalState.ADDED,
    ChangeKind.MODIFIED: LocalState.MODIFIED,
    ChangeKind.REMOVED: LocalState.REMOVED,
}


class ClashClassifier:
    """Classifies one sync's local and remote changes.

    Args:
        policy: Protected-path policy.
        prober: Existence prober over the local store.
        is_trackable: Whether the local store could report a path in
            its snapshot at all.
    """

    def __init__(
        self,
        policy: PathPolicy,
        prober: ExistenceProber,
        is_trackable: Callable[[str], bool],
    ) -> None:
        self._policy = policy
        self._prober = prober
        self._is_trackable = is_trackable

    def local_state_for(
        self,
        path: str,
        local_change: Change | None,
        tracked_paths: Collection[str],
    ) -> LocalState | None:
        """Local side of a remotely changed path.

        Returns:
            None when the remote change is safe to apply, otherwise the
            local state of the clash candidate.
        """
        if self._policy.is_protected(path):
            return LocalState.PROTECTED
        if not self._is_trackable(path):
            return LocalState.UNTRACKED
        if local_change is not None:
            return _LOCAL_STATE_FOR_KIND[local_change.kind]
        if path in tracked_paths:
            return None
        return LocalState.UNTRACKED

    def classify(
        self,
        local_changes: list[Change],
        remote_changes: list[Change],
        tracked_paths: Collection[str],
    ) -> ClassificationResult:
        """Split changes into ``safe_local``, ``safe_remote`` and ``clashes``.

        Args:
            local_changes: Local snapshot vs cached local snapshot.
            remote_changes: Remote snapshot vs cached remote snapshot.
            tracked_paths: Paths of the cached local snapshot.

        Returns:
            The classification, including every probe answer.
        """
        local_by_path = {c.path: c for c in local_changes}

        safe_remote: list[Change] = []
        candidates: list[tuple[Change, LocalState]] = []
        for change in remote_changes:
            state = self.local_state_for(
                change.path, local_by_path.get(change.path), tracked_paths
            )
            if state is None:
                safe_remote.append(change)
            else:
                candidates.append((change, state))

        to_probe = {
            change.path
            for change, state in candidates
            if state is LocalState.UNTRACKED
        }
        to_probe.update(
            c.path
            for c in local_changes
            if c.kind is ChangeKind.REMOVED
            and not self._policy.is_protected(c.path)
        )
        probe_results = self._prober.probe(to_probe)

        clashes: list[Clash] = []
        for change, state in candidates:
            if state is LocalState.UNTRACKED:
                existence = probe_results[change.path]
                if not assume_exists(existence):
                    if change.kind is ChangeKind.REMOVED:
                        logger.debug(
                            "Remote deletion of %s is vacuous: absent locally",
                            change.path,
                        )
                    else:
                        safe_remote.append(change)
                    continue
            clashes.append(
                Clash(
                    path=change.path,
                    local_state=state,
                    remote_kind=change.kind,
                )
            )

        clashed = {c.path for c in clashes}
        safe_local: list[Change] = []
        held: list[str] = []
        for change in local_changes:
            if change.path in clashed or self._policy.is_protected(
                change.path
            ):
                continue
            if change.kind is ChangeKind.REMOVED:
                existence = probe_results.get(change.path, Existence.UNKNOWN)
                if assume_exists(existence):
                    held.append(change.path)
                    continue
            safe_local.append(change)

        if held:
            logger.warning(
                "Not pushing %d deletion(s) that could not be confirmed "
                "locally: %s",
                len(held),
                ", ".join(held),
            )

        return ClassificationResult(
            safe_local=safe_local,
            safe_remote=sorted(safe_remote, key=lambda c: c.path),
            clashes=clashes,
            held_deletions=held,
            probe_results=probe_results,
        )
