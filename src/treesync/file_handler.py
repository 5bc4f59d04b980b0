"""File handler module: path containment, atomic byte I/O, content detection.

Provides the file I/O infrastructure used by the filesystem store and
the quarantine writer.  Content is always handled as raw bytes; the
text/binary distinction is informational only.
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

# =============================================================================
# Path Validation
# =============================================================================


def resolve_under(root: Path, rel_path: str) -> Path:
    """Join *rel_path* onto *root* and make sure it stays inside it.

    Args:
        root: Store root directory.
        rel_path: Normalized ``/``-separated relative path.

    Returns:
        Absolute path of the target file.

    Raises:
        ValueError: If the resolved path is outside *root*.
    """
    root_resolved = root.resolve()
    target = (root_resolved / rel_path).resolve()
    if not target.is_relative_to(root_resolved):
        raise ValueError(
            f"Path is outside store root: {rel_path} not under {root_resolved}"
        )
    return target


# =============================================================================
# File Read/Write
# =============================================================================


def write_bytes_atomic(path: Path, data: bytes) -> int:
    """Write *data* to *path* atomically, creating parent directories.

    The bytes go to a temporary file in the same directory which then
    replaces the target, so readers never observe a partial file.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(data)


def content_hash(path: str, data: bytes) -> str:
    """Local content hash: SHA-1 over the path and the bytes.

    Including the path means a rename is always seen as a remove plus an
    add, never as an unchanged file.
    """
    digest = hashlib.sha1()
    digest.update(path.encode("utf-8"))
    digest.update(data)
    return digest.hexdigest()


# =============================================================================
# Content Detection
# =============================================================================


def detect_content_kind(data: bytes) -> str:
    """Classify *data* as ``"text"`` or ``"binary"``.

    Empty content counts as text.  NUL bytes or a failed charset
    detection mean binary.
    """
    if not data:
        return "text"
    if b"\x00" in data[:8192]:
        return "binary"
    result = from_bytes(data[:65536]).best()
    if result is None:
        return "binary"
    return "text"
