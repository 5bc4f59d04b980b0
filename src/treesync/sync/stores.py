"""Store interfaces consumed by the sync engine, plus the filesystem store.

``LocalStore`` and ``RemoteStore`` are structural protocols: the engine
only relies on these methods, so tests can pass in-memory fakes and the
GitHub store lives in its own module (``treesync.sync.remote``).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from ..file_handler import content_hash, resolve_under, write_bytes_atomic
from .models import Existence, Snapshot
from .paths import PathPolicy, is_hidden, normalize_path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class LocalStore(Protocol):
    """Primitive operations on the local file tree."""

    def read_snapshot(self) -> Snapshot:
        """Hash every trackable file; keys are normalized paths."""
        ...  # pragma: no cover

    def read_content(self, path: str) -> bytes: ...  # pragma: no cover

    def write_content(self, path: str, data: bytes) -> None: ...  # pragma: no cover

    def delete(self, path: str) -> None: ...  # pragma: no cover

    def stat_batch(self, paths: list[str]) -> dict[str, Existence]:
        """Report ``EXISTS`` or ``ABSENT`` for every path.

        May raise for the whole batch, but never answers wrongly for
        a single path.
        """
        ...  # pragma: no cover

    def is_trackable(self, path: str) -> bool:
        """Whether ``read_snapshot`` would ever report *path*."""
        ...  # pragma: no cover

    def hash_content(self, path: str, data: bytes) -> str:
        """Snapshot hash for *data* stored at *path*."""
        ...  # pragma: no cover


class RemoteApplyResult(BaseModel):
    """Remote state after a successful ``apply_changes``."""

    new_revision: str | None = None
    new_snapshot: dict[str, str]

    model_config = {"frozen": True}


class RemoteStore(Protocol):
    """Primitive operations on the remote versioned tree."""

    def current_revision(self) -> str | None:
        """Head revision of the tracked branch; None for an empty repo."""
        ...  # pragma: no cover

    def read_snapshot_at(self, revision: str | None) -> Snapshot: ...  # pragma: no cover

    def read_content(self, path: str) -> bytes: ...  # pragma: no cover

    def apply_changes(
        self,
        writes: dict[str, bytes],
        deletes: list[str],
        expected_revision: str | None,
        message: str,
    ) -> RemoteApplyResult:
        """Commit *writes* and *deletes* on top of *expected_revision*.

        Either the branch moves to the new commit or nothing changes.

        Raises:
            RefConflictError: If the branch no longer points at
                *expected_revision*.
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Filesystem implementation
# ---------------------------------------------------------------------------


class FilesystemLocalStore:
    """``LocalStore`` backed by a directory on disk.

    Args:
        root: Root directory of the synced tree.
        policy: Protected-path policy; protected directories are not
            scanned.
        track_hidden: Include dot-files and dot-directories.
    """

    def __init__(
        self,
        root: Path,
        policy: PathPolicy,
        track_hidden: bool = False,
    ) -> None:
        self.root = Path(root)
        self.policy = policy
        self.track_hidden = track_hidden

    def is_trackable(self, path: str) -> bool:
        if self.policy.is_protected(path):
            return False
        return self.track_hidden or not is_hidden(path)

    def hash_content(self, path: str, data: bytes) -> str:
        return content_hash(path, data)

    def read_snapshot(self) -> Snapshot:
        snapshot: Snapshot = {}
        if not self.root.is_dir():
            raise FileNotFoundError(f"Local root not found: {self.root}")

        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            prefix = "" if rel_dir == "." else rel_dir + "/"
            # Prune in place so os.walk skips protected subtrees
            dirnames[:] = sorted(
                d
                for d in dirnames
                if self.is_trackable(normalize_path(prefix + d))
            )
            for filename in sorted(filenames):
                path = normalize_path(prefix + filename)
                if not self.is_trackable(path):
                    continue
                full = Path(dirpath) / filename
                if full.is_symlink() or not full.is_file():
                    continue
                snapshot[path] = content_hash(path, full.read_bytes())

        logger.debug(
            "Scanned %d local files under %s", len(snapshot), self.root
        )
        return snapshot

    def read_content(self, path: str) -> bytes:
        return resolve_under(self.root, path).read_bytes()

    def write_content(self, path: str, data: bytes) -> None:
        write_bytes_atomic(resolve_under(self.root, path), data)

    def delete(self, path: str) -> None:
        target = resolve_under(self.root, path)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.debug("Delete of %s skipped: already absent", path)

    def stat_batch(self, paths: Iterable[str]) -> dict[str, Existence]:
        results: dict[str, Existence] = {}
        for path in paths:
            try:
                os.lstat(resolve_under(self.root, path))
            except (FileNotFoundError, NotADirectoryError):
                results[path] = Existence.ABSENT
            else:
                results[path] = Existence.EXISTS
        return results
