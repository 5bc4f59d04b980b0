"""Sync cache persistence layer.

Manages the JSON state file holding the ``SyncCache`` of each sync
profile (``sync_{profile_name}.json`` in the state directory): the local
snapshot, the last-synced remote revision and the remote snapshot at
that revision.

Key design choices:

* **Atomic writes** -- ``persist()`` writes to a temp file then calls
  ``os.replace()``, so a failed or interrupted write leaves the
  previous file byte-for-byte unchanged.
* **Single record** -- the three fields are always read and written
  together; there is no per-entry update.
* **Tolerant load** -- a missing or unreadable file yields an empty
  cache, which makes the next sync treat every path as untracked and
  probe it rather than guess.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .models import SyncCache

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class SyncState:
    """Load and persist the sync cache for a given profile.

    Args:
        state_dir: Directory where state files are stored
            (typically ``.treesync/``).
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, profile_name: str) -> SyncCache:
        """Load the sync cache from disk.

        Args:
            profile_name: The sync profile name (used in the filename).

        Returns:
            The cache.  An empty cache when the file does not exist or
            cannot be parsed.
        """
        raw = self._read_raw(profile_name)
        if raw is None:
            return SyncCache()
        try:
            cache = SyncCache.model_validate(
                {
                    "local_snapshot": raw.get("local_snapshot") or {},
                    "last_synced_revision": raw.get("last_synced_revision"),
                    "last_synced_remote_snapshot": raw.get(
                        "last_synced_remote_snapshot"
                    )
                    or {},
                }
            )
        except ValidationError as exc:
            logger.warning(
                "Sync cache for '%s' is invalid, starting from an empty "
                "cache: %s",
                profile_name,
                exc,
            )
            return SyncCache()
        self._warn_on_drift(profile_name, cache)
        return cache

    def persist(
        self,
        profile_name: str,
        local_snapshot: dict[str, str],
        remote_snapshot: dict[str, str],
        revision: str | None,
    ) -> SyncCache:
        """Replace the cache atomically.

        Creates ``state_dir`` if it does not exist.  The ``last_sync``
        field is set to the current UTC ISO 8601 timestamp.

        Args:
            profile_name: The sync profile name.
            local_snapshot: Local snapshot after this sync.
            remote_snapshot: Remote snapshot at *revision*.
            revision: Remote revision this sync ended on.

        Returns:
            The cache that was written.
        """
        cache = SyncCache(
            local_snapshot=dict(local_snapshot),
            last_synced_revision=revision,
            last_synced_remote_snapshot=dict(remote_snapshot),
        )
        document = {
            "version": STATE_VERSION,
            "last_sync": datetime.now(timezone.utc).isoformat(),
            "profile": profile_name,
            **cache.model_dump(),
        }

        self._state_dir.mkdir(parents=True, exist_ok=True)
        target = self._state_path(profile_name)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2, sort_keys=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.debug(
            "Persisted sync cache for '%s' at revision %s",
            profile_name,
            revision,
        )
        return cache

    def last_sync(self, profile_name: str) -> str | None:
        """Timestamp of the last persisted sync, or None."""
        raw = self._read_raw(profile_name)
        if raw is None:
            return None
        return raw.get("last_sync")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_raw(self, profile_name: str) -> dict | None:
        path = self._state_path(profile_name)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Could not read sync cache %s, starting from an empty "
                "cache: %s",
                path,
                exc,
            )
            return None
        if not isinstance(raw, dict):
            logger.warning("Sync cache %s is not an object, ignoring", path)
            return None
        return raw

    @staticmethod
    def _warn_on_drift(profile_name: str, cache: SyncCache) -> None:
        if (
            cache.last_synced_revision
            and not cache.local_snapshot
            and not cache.last_synced_remote_snapshot
        ):
            logger.warning(
                "Sync cache for '%s' has a revision but no snapshots; "
                "every path will be treated as untracked",
                profile_name,
            )
        elif not cache.local_snapshot and cache.last_synced_remote_snapshot:
            logger.warning(
                "Sync cache for '%s' has an empty local snapshot but %d "
                "remote entries; remote files will be probed before "
                "being written",
                profile_name,
                len(cache.last_synced_remote_snapshot),
            )

    def _state_path(self, profile_name: str) -> Path:
        """Return the path to the state file for *profile_name*."""
        return self._state_dir / f"sync_{profile_name}.json"
