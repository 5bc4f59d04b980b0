"""Path normalization and the protected-path policy.

Both stores key their snapshots by the same normalized form so that
differences in OS-level Unicode normalization or separators never show
up as spurious changes:

1. **Normalize** -- NFC, ``/`` separators, no leading ``./`` or ``/``.
2. **Protect** -- paths inside the quarantine area, or matching an
   exclude glob, never take part in normal sync.
"""

from __future__ import annotations

import fnmatch
import unicodedata
from collections.abc import Iterable
from pathlib import PurePosixPath

DEFAULT_QUARANTINE_DIR = "_conflicts"


def normalize_path(path: str) -> str:
    """Return the canonical snapshot key for *path*.

    Raises:
        ValueError: If the path is empty or escapes the store root.
    """
    text = unicodedata.normalize("NFC", path).replace("\\", "/")
    parts = [p for p in text.split("/") if p not in ("", ".")]
    if not parts:
        raise ValueError(f"Empty path: {path!r}")
    if ".." in parts:
        raise ValueError(f"Path escapes the store root: {path!r}")
    return "/".join(parts)


def is_hidden(path: str) -> bool:
    """True when any segment of *path* starts with a dot."""
    return any(part.startswith(".") for part in path.split("/"))


class PathPolicy:
    """Decides which paths are protected from normal sync.

    Args:
        quarantine_dir: Top-level directory receiving quarantined remote
            content.
        exclude: fnmatch globs of administratively excluded paths.
    """

    def __init__(
        self,
        quarantine_dir: str = DEFAULT_QUARANTINE_DIR,
        exclude: Iterable[str] = (),
    ) -> None:
        self.quarantine_dir = normalize_path(quarantine_dir)
        self.exclude = list(exclude)

    def in_quarantine(self, path: str) -> bool:
        return path == self.quarantine_dir or path.startswith(
            self.quarantine_dir + "/"
        )

    def is_excluded(self, path: str) -> bool:
        for pattern in self.exclude:
            if fnmatch.fnmatch(path, pattern):
                return True
            # A directory pattern ("build/") covers everything below it
            if pattern.endswith("/") and (path + "/").startswith(pattern):
                return True
        return False

    def is_protected(self, path: str) -> bool:
        """True for quarantined or excluded paths."""
        return self.in_quarantine(path) or self.is_excluded(path)

    def quarantine_path(self, path: str) -> str:
        """Location in the quarantine area mirroring *path*."""
        return str(PurePosixPath(self.quarantine_dir) / path)

    def filter_snapshot(self, snapshot: dict[str, str]) -> dict[str, str]:
        """Drop protected paths from *snapshot*."""
        return {
            path: digest
            for path, digest in snapshot.items()
            if not self.is_protected(path)
        }
