"""Sync orchestrator.

The ``SyncEngine`` runs one sync of a local tree against a remote
branch as a linear state machine::

    IDLE -> DETECTING -> CLASSIFYING -> EXECUTING -> SUCCEEDED | FAILED

1. **Detecting** -- scan the local tree and list the remote revision
   concurrently, diff each against its cached snapshot.
2. **Classifying** -- split changes into safe pushes, safe pulls and
   clashes; probe ambiguous paths in one batch; resolve each clash.
3. **Executing** -- strictly ordered: push to the remote, write
   quarantine files, apply remote changes locally, persist the cache.

Any failure ends the run as ``FAILED`` before the cache is written, so
the next run starts from the same baseline and re-derives the same plan.
Unresolved clashes are data in the outcome, not failures.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from ..core.async_utils import (
    gather_limited,
    map_limited,
    run_sync,
    run_sync_limited,
)
from .classifier import ClashClassifier
from .detector import detect
from .errors import SyncError, categorize_error
from .models import (
    ChangeKind,
    ClashResolution,
    ClassificationResult,
    DetectionResult,
    ExecutionResult,
    Existence,
    FileOp,
    LocalState,
    OpKind,
    ResolutionAction,
    Side,
    SyncCache,
    SyncErrorInfo,
    SyncOutcome,
    SyncPhase,
)
from .paths import PathPolicy
from .prober import ExistenceProber
from .resolver import ClashResolver
from .state import SyncState
from .remote import GitHubRemoteStore
from .stores import FilesystemLocalStore, LocalStore, RemoteStore

if TYPE_CHECKING:
    from ..config_schema import SyncProfileConfig
    from ..core.client import GitHubClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RUNNING = frozenset(
    {SyncPhase.DETECTING, SyncPhase.CLASSIFYING, SyncPhase.EXECUTING}
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def commit_message(device_name: str) -> str:
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return f"Commit from {device_name} on {today}"


class SyncEngine:
    """Orchestrate sync runs for one profile.

    One engine instance owns the "is a sync running" state for its
    profile; share the instance between callers.

    Args:
        local_store: Local file tree.
        remote_store: Remote branch.
        state: Cache persistence.
        profile_name: Name of the sync profile (used for the cache file).
        policy: Protected-path policy.
        device_name: Name recorded in commit messages.
        push_local_on_clash: Also push the local version of clashed
            paths, so both stores converge on it while the remote
            version waits in quarantine.
    """

    def __init__(
        self,
        local_store: LocalStore,
        remote_store: RemoteStore,
        state: SyncState,
        profile_name: str = "default",
        policy: PathPolicy | None = None,
        device_name: str = "treesync",
        push_local_on_clash: bool = True,
    ) -> None:
        self.local = local_store
        self.remote = remote_store
        self.state = state
        self.profile_name = profile_name
        self.policy = policy or PathPolicy()
        self.device_name = device_name
        self.push_local_on_clash = push_local_on_clash

        self.prober = ExistenceProber(local_store)
        self.classifier = ClashClassifier(
            self.policy, self.prober, local_store.is_trackable
        )
        self.resolver = ClashResolver(local_store, remote_store, self.policy)

        self._lock = threading.Lock()
        self._phase = SyncPhase.IDLE
        self.last_outcome: SyncOutcome | None = None

    @classmethod
    def from_profile(
        cls,
        profile_name: str,
        profile: SyncProfileConfig,
        client: GitHubClient,
    ) -> SyncEngine:
        """Wire a filesystem tree and a GitHub branch per *profile*."""
        exclude = list(profile.exclude)
        root, state_dir = profile.local_root_path, profile.state_dir_path
        if state_dir != root and state_dir.is_relative_to(root):
            # The cache must never sync itself
            exclude.append(state_dir.relative_to(root).as_posix() + "/")
        policy = PathPolicy(profile.quarantine_dir, exclude)
        return cls(
            local_store=FilesystemLocalStore(
                profile.local_root_path, policy, profile.track_hidden
            ),
            remote_store=GitHubRemoteStore(client),
            state=SyncState(profile.state_dir_path),
            profile_name=profile_name,
            policy=policy,
            device_name=profile.device_name,
            push_local_on_clash=profile.push_local_on_clash,
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def is_syncing(self) -> bool:
        return self._phase in _RUNNING

    def _try_begin(self) -> bool:
        """Compare-and-set from a resting phase to ``DETECTING``."""
        with self._lock:
            if self._phase in _RUNNING:
                return False
            self._phase = SyncPhase.DETECTING
            return True

    def _enter(self, phase: SyncPhase) -> None:
        with self._lock:
            self._phase = phase
        logger.debug("Sync '%s' entering %s", self.profile_name, phase.value)

    async def _step(
        self, source: str, func: Callable[..., T], *args: Any
    ) -> T:
        """Run blocking *func* in a worker thread, tagging failures."""
        try:
            return await run_sync(func, *args)
        except Exception as exc:
            raise categorize_error(exc, source) from exc

    async def _step_limited(
        self, source: str, func: Callable[..., T], *args: Any
    ) -> T:
        try:
            return await run_sync_limited(func, *args)
        except Exception as exc:
            raise categorize_error(exc, source) from exc

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def sync(self, dry_run: bool = False) -> SyncOutcome:
        """Run one sync.

        Args:
            dry_run: Stop after classification and report the planned
                operations without applying anything.

        Returns:
            The terminal outcome.  A call made while another sync is
            running returns an ``already_syncing`` failure immediately.
        """
        started_at = _now()
        if not self._try_begin():
            logger.warning(
                "Sync '%s' rejected: already syncing", self.profile_name
            )
            return self._failure(SyncError.already_syncing(), started_at)

        try:
            cache = await self._step(
                "load_cache", self.state.load, self.profile_name
            )
            detection = await self._detect(cache)

            self._enter(SyncPhase.CLASSIFYING)
            classification = await self._step(
                "classify",
                self.classifier.classify,
                detection.local_changes,
                detection.remote_changes,
                frozenset(cache.local_snapshot),
            )
            resolutions = await self._resolve(classification)

            if dry_run:
                outcome = self._dry_run_outcome(
                    detection, classification, resolutions, started_at
                )
            else:
                self._enter(SyncPhase.EXECUTING)
                execution = await self._execute(
                    cache, detection, classification, resolutions
                )
                await self._persist(cache, execution)
                outcome = SyncOutcome(
                    profile_name=self.profile_name,
                    success=True,
                    phase=SyncPhase.SUCCEEDED,
                    local_ops=execution.local_ops,
                    remote_ops=execution.remote_ops,
                    unresolved_clashes=execution.unresolved,
                    held_deletions=classification.held_deletions,
                    revision=execution.new_revision,
                    started_at=started_at,
                    completed_at=_now(),
                )
        except Exception as exc:
            error = categorize_error(exc, "sync")
            logger.error(
                "Sync '%s' failed in %s (%s): %s",
                self.profile_name,
                error.source,
                error.error_type.value,
                error.detail_message,
            )
            outcome = self._failure(error, started_at)
            self._enter(SyncPhase.FAILED)
        except BaseException:
            # Cancelled: release the gate, nothing was persisted
            logger.warning("Sync '%s' cancelled", self.profile_name)
            self._enter(SyncPhase.FAILED)
            raise
        else:
            self._enter(SyncPhase.SUCCEEDED)
            logger.info(
                "Sync '%s' done: %d pushed, %d pulled, %d quarantined, "
                "%d unresolved",
                self.profile_name,
                len(outcome.pushed),
                len(outcome.pulled),
                len(outcome.quarantined),
                len(outcome.unresolved_clashes),
            )

        self.last_outcome = outcome
        return outcome

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _detect(self, cache: SyncCache) -> DetectionResult:
        local_task = asyncio.ensure_future(
            self._step("read_local_snapshot", self.local.read_snapshot)
        )
        remote_task = asyncio.ensure_future(self._read_remote(cache))
        tasks = (local_task, remote_task)
        try:
            # Both sides finish before the outcome is known
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        errors = [task.exception() for task in tasks if task.exception()]
        for extra in errors[1:]:
            logger.warning("Remote listing also failed: %s", extra)
        if errors:
            raise errors[0]

        local_snapshot = local_task.result()
        revision, remote_snapshot = remote_task.result()
        local_snapshot = self.policy.filter_snapshot(local_snapshot)
        detection = DetectionResult(
            local_snapshot=local_snapshot,
            remote_snapshot=remote_snapshot,
            remote_revision=revision,
            local_changes=detect(local_snapshot, cache.local_snapshot),
            remote_changes=detect(
                remote_snapshot, cache.last_synced_remote_snapshot
            ),
        )
        logger.debug(
            "Detected %d local and %d remote change(s)",
            len(detection.local_changes),
            len(detection.remote_changes),
        )
        return detection

    async def _read_remote(
        self, cache: SyncCache
    ) -> tuple[str | None, dict[str, str]]:
        revision = await self._step(
            "current_revision", self.remote.current_revision
        )
        if revision == cache.last_synced_revision:
            # Unchanged revision: the cached listing is still exact
            return revision, dict(cache.last_synced_remote_snapshot)
        snapshot = await self._step(
            "read_remote_snapshot", self.remote.read_snapshot_at, revision
        )
        return revision, snapshot

    def _replaces_quarantined(self, path: str, data: bytes | None) -> bool:
        """True when *path* already holds a different quarantined version."""
        try:
            existing = self.local.read_content(path)
        except OSError:
            return False
        return existing != data

    async def _resolve(
        self, classification: ClassificationResult
    ) -> list[tuple[ClashResolution, bytes | None]]:
        probes = classification.probe_results
        return await gather_limited(
            [
                self._step_limited(
                    "resolve_clash",
                    self.resolver.resolve_clash,
                    clash,
                    probes.get(clash.path, Existence.UNKNOWN),
                )
                for clash in classification.clashes
            ]
        )

    def _carried_forward(
        self, resolutions: list[tuple[ClashResolution, bytes | None]]
    ) -> list[str]:
        """Clashed paths whose local version is pushed as well."""
        if not self.push_local_on_clash:
            return []
        return [
            res.path
            for res, _ in resolutions
            if not res.resolved
            and res.clash.local_state
            in (LocalState.ADDED, LocalState.MODIFIED)
        ]

    async def _execute(
        self,
        cache: SyncCache,
        detection: DetectionResult,
        classification: ClassificationResult,
        resolutions: list[tuple[ClashResolution, bytes | None]],
    ) -> ExecutionResult:
        new_local = dict(detection.local_snapshot)
        # Held deletions keep their baseline so the next sync re-checks them
        for path in classification.held_deletions:
            if path in cache.local_snapshot:
                new_local[path] = cache.local_snapshot[path]
        local_ops: list[FileOp] = []
        remote_ops: list[FileOp] = []

        # 1. Push safe local changes (deletions were confirmed absent)
        writes: dict[str, bytes] = {}
        deletes: list[str] = []
        push_paths = [
            c.path
            for c in classification.safe_local
            if c.kind is not ChangeKind.REMOVED
        ] + self._carried_forward(resolutions)
        for path in push_paths:
            data = await self._step("read_local", self.local.read_content, path)
            writes[path] = data
            new_local[path] = self.local.hash_content(path, data)
            remote_ops.append(FileOp(path=path, op=OpKind.WRITE, side=Side.REMOTE))
        for change in classification.safe_local:
            if change.kind is ChangeKind.REMOVED:
                deletes.append(change.path)
                remote_ops.append(
                    FileOp(path=change.path, op=OpKind.DELETE, side=Side.REMOTE)
                )

        new_revision = detection.remote_revision
        new_remote = dict(detection.remote_snapshot)
        if writes or deletes:
            applied = await self._step(
                "push",
                self.remote.apply_changes,
                writes,
                deletes,
                detection.remote_revision,
                commit_message(self.device_name),
            )
            new_revision = applied.new_revision
            new_remote = dict(applied.new_snapshot)

        # 2. Quarantine remote versions of unresolved clashes
        for res, data in resolutions:
            if res.action is ResolutionAction.QUARANTINE:
                if await run_sync(
                    self._replaces_quarantined, res.quarantine_path, data
                ):
                    logger.warning(
                        "Replacing earlier quarantined version of %s at %s",
                        res.path,
                        res.quarantine_path,
                    )
                await self._step(
                    "write_quarantine",
                    self.local.write_content,
                    res.quarantine_path,
                    data,
                )
                local_ops.append(
                    FileOp(
                        path=res.quarantine_path,
                        op=OpKind.QUARANTINE,
                        side=Side.LOCAL,
                    )
                )

        # 3. Apply safe remote changes and direct writes locally
        incoming = [
            c.path
            for c in classification.safe_remote
            if c.kind is not ChangeKind.REMOVED
        ]
        try:
            contents = await map_limited(self.remote.read_content, incoming)
        except Exception as exc:
            raise categorize_error(exc, "read_remote") from exc
        pulls = dict(zip(incoming, contents))
        pulls.update(
            (res.path, data)
            for res, data in resolutions
            if res.action is ResolutionAction.DIRECT_WRITE
        )
        for path in sorted(pulls):
            data = pulls[path]
            await self._step("apply_remote", self.local.write_content, path, data)
            if self.local.is_trackable(path):
                new_local[path] = self.local.hash_content(path, data)
            local_ops.append(FileOp(path=path, op=OpKind.WRITE, side=Side.LOCAL))
        for change in classification.safe_remote:
            if change.kind is ChangeKind.REMOVED:
                await self._step("apply_remote", self.local.delete, change.path)
                new_local.pop(change.path, None)
                local_ops.append(
                    FileOp(path=change.path, op=OpKind.DELETE, side=Side.LOCAL)
                )

        return ExecutionResult(
            local_ops=local_ops,
            remote_ops=remote_ops,
            unresolved=[res for res, _ in resolutions if not res.resolved],
            new_local_snapshot=new_local,
            new_remote_snapshot=new_remote,
            new_revision=new_revision,
        )

    async def _persist(
        self, cache: SyncCache, execution: ExecutionResult
    ) -> None:
        """4. Write the new cache, unless nothing changed."""
        new_cache = SyncCache(
            local_snapshot=execution.new_local_snapshot,
            last_synced_revision=execution.new_revision,
            last_synced_remote_snapshot=execution.new_remote_snapshot,
        )
        if new_cache == cache:
            logger.info("Sync '%s': already in sync", self.profile_name)
            return
        await self._step(
            "persist",
            self.state.persist,
            self.profile_name,
            execution.new_local_snapshot,
            execution.new_remote_snapshot,
            execution.new_revision,
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _dry_run_outcome(
        self,
        detection: DetectionResult,
        classification: ClassificationResult,
        resolutions: list[tuple[ClashResolution, bytes | None]],
        started_at: str,
    ) -> SyncOutcome:
        pushed = [
            FileOp(
                path=c.path,
                op=OpKind.DELETE if c.kind is ChangeKind.REMOVED else OpKind.WRITE,
                side=Side.REMOTE,
            )
            for c in classification.safe_local
        ] + [
            FileOp(path=p, op=OpKind.WRITE, side=Side.REMOTE)
            for p in self._carried_forward(resolutions)
        ]
        pulled = [
            FileOp(
                path=res.quarantine_path or res.path,
                op=(
                    OpKind.QUARANTINE
                    if res.action is ResolutionAction.QUARANTINE
                    else OpKind.WRITE
                ),
                side=Side.LOCAL,
            )
            for res, _ in resolutions
            if res.action is not ResolutionAction.SKIP
        ] + [
            FileOp(
                path=c.path,
                op=OpKind.DELETE if c.kind is ChangeKind.REMOVED else OpKind.WRITE,
                side=Side.LOCAL,
            )
            for c in classification.safe_remote
        ]
        return SyncOutcome(
            profile_name=self.profile_name,
            dry_run=True,
            success=True,
            phase=SyncPhase.SUCCEEDED,
            local_ops=pulled,
            remote_ops=pushed,
            unresolved_clashes=[res for res, _ in resolutions if not res.resolved],
            held_deletions=classification.held_deletions,
            revision=detection.remote_revision,
            started_at=started_at,
            completed_at=_now(),
        )

    def _failure(self, error: SyncError, started_at: str) -> SyncOutcome:
        return SyncOutcome(
            profile_name=self.profile_name,
            success=False,
            phase=SyncPhase.FAILED,
            error=SyncErrorInfo(
                error_type=error.error_type,
                detail_message=error.detail_message,
                source=error.source,
                cause=repr(error.cause) if error.cause is not None else None,
                user_message=error.user_message,
            ),
            started_at=started_at,
            completed_at=_now(),
        )
