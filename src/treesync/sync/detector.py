"""Snapshot diffing.

``detect`` compares the current snapshot of one store with the cached
snapshot of the same store.  It never compares the two stores with each
other: local hashes and remote blob SHAs live in different spaces.
"""

from __future__ import annotations

from collections.abc import Mapping

from .models import Change, ChangeKind


def detect(
    current: Mapping[str, str], cached: Mapping[str, str]
) -> list[Change]:
    """Diff *current* against *cached*.

    Args:
        current: Snapshot of the store now.
        cached: Snapshot of the same store at the last sync.

    Returns:
        Changes sorted by path; unchanged paths are omitted.
    """
    changes: list[Change] = []
    for path in sorted(current.keys() | cached.keys()):
        now = current.get(path)
        before = cached.get(path)
        if now is None:
            changes.append(Change(path=path, kind=ChangeKind.REMOVED))
        elif before is None:
            changes.append(
                Change(path=path, kind=ChangeKind.ADDED, content_hash=now)
            )
        elif now != before:
            changes.append(
                Change(path=path, kind=ChangeKind.MODIFIED, content_hash=now)
            )
    return changes
