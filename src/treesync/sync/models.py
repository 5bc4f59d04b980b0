"""Pydantic models for the tree sync engine.

Defines the data contracts passed between the sync phases:

- ``ChangeKind``, ``LocalState``, ``Existence``: tagged variants used by
  detection, classification and probing.
- ``Change``, ``Clash``, ``ClashResolution``: per-path records.
- ``DetectionResult``, ``ClassificationResult``, ``ExecutionResult``:
  phase outputs handed explicitly from one phase to the next.
- ``SyncCache``: the persisted baseline of the last successful sync.
- ``SyncOutcome``: terminal result of one sync attempt.

All models are frozen (immutable) so a phase can never mutate the
output of the phase before it.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from .errors import SyncErrorType

#: Normalized path -> content hash.
Snapshot = dict[str, str]


class ChangeKind(str, Enum):
    """How a path differs between a snapshot and its cached baseline."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class LocalState(str, Enum):
    """Local side of a clash.

    ``UNTRACKED`` paths have a local status that cannot be read from the
    cached snapshot and must be probed.  ``PROTECTED`` paths live in the
    quarantine area or match an exclude pattern; they are never probed
    and never written directly.
    """

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    UNTRACKED = "untracked"
    PROTECTED = "protected"


class Existence(str, Enum):
    """Three-valued result of a local existence probe."""

    EXISTS = "exists"
    ABSENT = "absent"
    UNKNOWN = "unknown"


class ResolutionAction(str, Enum):
    """What the resolver decided to do with a clash."""

    SKIP = "skip"
    QUARANTINE = "quarantine"
    DIRECT_WRITE = "direct_write"


class OpKind(str, Enum):
    WRITE = "write"
    DELETE = "delete"
    QUARANTINE = "quarantine"


class Side(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class SyncPhase(str, Enum):
    """Orchestrator state machine phases."""

    IDLE = "idle"
    DETECTING = "detecting"
    CLASSIFYING = "classifying"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Per-path records
# ---------------------------------------------------------------------------


class Change(BaseModel):
    """A difference between a snapshot and its cached baseline.

    Attributes:
        path: Normalized path.
        kind: Added, modified or removed.
        content_hash: Hash in the current snapshot; None when removed.
    """

    path: str
    kind: ChangeKind
    content_hash: str | None = None

    model_config = {"frozen": True}


class Clash(BaseModel):
    """A path changed remotely whose local side cannot be ignored.

    Attributes:
        path: Normalized path.
        local_state: What happened (or may have happened) locally.
        remote_kind: What happened remotely.
    """

    path: str
    local_state: LocalState
    remote_kind: ChangeKind

    model_config = {"frozen": True}


class ClashResolution(BaseModel):
    """Decision taken for a single clash.

    Attributes:
        clash: The clash being resolved.
        action: Skip, quarantine or direct write.
        resolved: False when the clash is reported to the user as
            unresolved data.
        quarantine_path: Local path receiving the remote content, set
            only for ``QUARANTINE``.
        content_kind: ``"text"`` or ``"binary"`` for the remote content,
            when remote content was read.
        reason: Short human-readable explanation.
    """

    clash: Clash
    action: ResolutionAction
    resolved: bool
    quarantine_path: str | None = None
    content_kind: str | None = None
    reason: str = ""

    model_config = {"frozen": True}

    @property
    def path(self) -> str:
        return self.clash.path


class FileOp(BaseModel):
    """One file operation applied during execution."""

    path: str
    op: OpKind
    side: Side

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Phase outputs
# ---------------------------------------------------------------------------


class DetectionResult(BaseModel):
    """Output of the detecting phase.

    Attributes:
        local_snapshot: Current local snapshot (protected paths removed).
        remote_snapshot: Remote snapshot at ``remote_revision``.
        remote_revision: Current remote revision, None for an empty
            repository.
        local_changes: Local snapshot vs cached local snapshot.
        remote_changes: Remote snapshot vs cached remote snapshot.
    """

    local_snapshot: dict[str, str]
    remote_snapshot: dict[str, str]
    remote_revision: str | None = None
    local_changes: list[Change] = []
    remote_changes: list[Change] = []

    model_config = {"frozen": True}

    @property
    def has_changes(self) -> bool:
        return bool(self.local_changes or self.remote_changes)


class ClassificationResult(BaseModel):
    """Output of the classifying phase.

    Attributes:
        safe_local: Local changes that can be pushed unilaterally.
        safe_remote: Remote changes that can be applied locally.
        clashes: Contested paths awaiting resolution.
        held_deletions: Local removals that were not confirmed absent
            and are therefore not pushed.
        probe_results: Existence answers for every probed path.
    """

    safe_local: list[Change] = []
    safe_remote: list[Change] = []
    clashes: list[Clash] = []
    held_deletions: list[str] = []
    probe_results: dict[str, Existence] = {}

    model_config = {"frozen": True}


class ExecutionResult(BaseModel):
    """Output of the executing phase, before persistence."""

    local_ops: list[FileOp] = []
    remote_ops: list[FileOp] = []
    unresolved: list[ClashResolution] = []
    new_local_snapshot: dict[str, str]
    new_remote_snapshot: dict[str, str]
    new_revision: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Persisted cache and outcome
# ---------------------------------------------------------------------------


class SyncCache(BaseModel):
    """Baseline recorded by the last successful sync.

    Attributes:
        local_snapshot: Local snapshot after the last sync.
        last_synced_revision: Remote commit the last sync ended on.
        last_synced_remote_snapshot: Remote snapshot at that commit.
    """

    local_snapshot: dict[str, str] = {}
    last_synced_revision: str | None = None
    last_synced_remote_snapshot: dict[str, str] = {}

    model_config = {"frozen": True}


class SyncErrorInfo(BaseModel):
    """Serializable form of a ``SyncError`` carried by an outcome."""

    error_type: SyncErrorType
    detail_message: str
    source: str | None = None
    cause: str | None = None
    user_message: str = ""

    model_config = {"frozen": True}


class SyncOutcome(BaseModel):
    """Terminal result of one sync attempt.

    Attributes:
        profile_name: Sync profile that ran.
        dry_run: True when nothing was applied.
        success: True when every planned write was applied.
        phase: Final phase (``SUCCEEDED`` or ``FAILED``).
        local_ops: Operations applied to the local store.
        remote_ops: Operations pushed to the remote store.
        unresolved_clashes: Clashes left for the user to resolve.
        held_deletions: Local deletions not pushed because the file
            could not be confirmed absent.
        revision: Remote revision recorded in the cache.
        error: Failure details when ``success`` is False.
        started_at: ISO 8601 timestamp when the sync started.
        completed_at: ISO 8601 timestamp when the sync finished.
    """

    profile_name: str = "default"
    dry_run: bool = False
    success: bool
    phase: SyncPhase
    local_ops: list[FileOp] = []
    remote_ops: list[FileOp] = []
    unresolved_clashes: list[ClashResolution] = []
    held_deletions: list[str] = []
    revision: str | None = None
    error: SyncErrorInfo | None = None
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def pushed(self) -> list[FileOp]:
        """Remote writes and deletions."""
        return list(self.remote_ops)

    @property
    def pulled(self) -> list[FileOp]:
        """Local writes and deletions, excluding quarantine writes."""
        return [op for op in self.local_ops if op.op != OpKind.QUARANTINE]

    @property
    def quarantined(self) -> list[FileOp]:
        """Quarantine writes."""
        return [op for op in self.local_ops if op.op == OpKind.QUARANTINE]

    @property
    def has_operations(self) -> bool:
        return bool(self.local_ops or self.remote_ops)

    def summary(self) -> str:
        """Format a human-readable summary of the sync run.

        Returns:
            Multi-line summary string with counts by operation.
        """
        status = "succeeded" if self.success else "failed"
        lines = [
            f"Sync {status} for profile '{self.profile_name}'"
            + (" (dry run)" if self.dry_run else ""),
            f"  Pushed:      {len(self.pushed)}",
            f"  Pulled:      {len(self.pulled)}",
            f"  Quarantined: {len(self.quarantined)}",
            f"  Unresolved:  {len(self.unresolved_clashes)}",
            f"  Held:        {len(self.held_deletions)}",
        ]
        if self.error is not None:
            lines.append(
                f"  Error:       {self.error.error_type.value}: "
                f"{self.error.detail_message}"
            )
        return "\n".join(lines)
