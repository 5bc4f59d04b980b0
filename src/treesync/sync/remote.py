"""``RemoteStore`` backed by a GitHub branch.

Snapshots map normalized paths to Git blob SHAs read from the recursive
tree of a commit.  ``apply_changes`` builds one commit per sync:

1. create a blob for every write whose content is not already there;
2. create a tree on top of the previous tree (``sha: null`` deletes);
3. create a commit whose parent is the expected revision;
4. advance the branch, conditionally on it still being at the expected
   revision.

Nothing is visible on the branch until step 4, so a failure anywhere
leaves the remote unchanged from the sync's point of view.
"""

from __future__ import annotations

import hashlib
import logging

from ..core.client import GitHubClient
from .models import Snapshot
from .paths import normalize_path
from .stores import RemoteApplyResult

logger = logging.getLogger(__name__)

_DEFAULT_MODE = "100644"


def git_blob_sha(data: bytes) -> str:
    """SHA Git assigns to a blob holding *data*."""
    digest = hashlib.sha1()
    digest.update(b"blob %d\0" % len(data))
    digest.update(data)
    return digest.hexdigest()


class GitHubRemoteStore:
    """Remote store over a single branch of a GitHub repository.

    The store remembers the tree of the last revision it listed so that
    ``read_content`` can resolve a path to its blob.
    """

    def __init__(self, client: GitHubClient) -> None:
        self._client = client
        self._revision: str | None = None
        self._tree_sha: str | None = None
        self._index: Snapshot = {}
        self._modes: dict[str, str] = {}
        # normalized path -> path as stored in the repository
        self._names: dict[str, str] = {}

    def current_revision(self) -> str | None:
        return self._client.get_ref()

    def read_snapshot_at(self, revision: str | None) -> Snapshot:
        if revision is None:
            self._load_index(None, None, [])
            return {}
        commit = self._client.get_commit(revision)
        tree_sha = commit["tree"]["sha"]
        entries = self._client.get_tree(tree_sha)
        self._load_index(revision, tree_sha, entries)
        logger.debug(
            "Listed %d remote files at %s", len(self._index), revision
        )
        return dict(self._index)

    def read_content(self, path: str) -> bytes:
        sha = self._index.get(path)
        if sha is None:
            raise KeyError(f"{path} is not in remote revision {self._revision}")
        return self._client.get_blob(sha)

    def apply_changes(
        self,
        writes: dict[str, bytes],
        deletes: list[str],
        expected_revision: str | None,
        message: str,
    ) -> RemoteApplyResult:
        if self._revision != expected_revision or (
            expected_revision is not None and self._tree_sha is None
        ):
            self.read_snapshot_at(expected_revision)

        new_index = dict(self._index)
        entries: list[dict] = []
        for path, data in sorted(writes.items()):
            if self._index.get(path) == git_blob_sha(data):
                continue
            sha = self._client.create_blob(data)
            entries.append(
                {
                    "path": self._names.get(path, path),
                    "mode": self._modes.get(path, _DEFAULT_MODE),
                    "type": "blob",
                    "sha": sha,
                }
            )
            new_index[path] = sha
        for path in sorted(deletes):
            if path not in self._index:
                continue
            entries.append(
                {
                    "path": self._names.get(path, path),
                    "mode": self._modes.get(path, _DEFAULT_MODE),
                    "type": "blob",
                    "sha": None,
                }
            )
            del new_index[path]

        if not entries:
            logger.info("Remote already matches the pushed content")
            return RemoteApplyResult(
                new_revision=expected_revision, new_snapshot=new_index
            )

        tree_sha = self._client.create_tree(self._tree_sha, entries)
        parents = [expected_revision] if expected_revision else []
        commit_sha = self._client.create_commit(message, tree_sha, parents)
        if expected_revision is None:
            self._client.create_ref(commit_sha)
        else:
            self._client.update_ref(commit_sha, expected_revision)
        logger.info(
            "Committed %d change(s) to %s as %s",
            len(entries),
            self._client.branch,
            commit_sha,
        )

        self._revision = commit_sha
        self._tree_sha = tree_sha
        self._index = new_index
        return RemoteApplyResult(
            new_revision=commit_sha, new_snapshot=dict(new_index)
        )

    def _load_index(
        self, revision: str | None, tree_sha: str | None, entries: list[dict]
    ) -> None:
        index: Snapshot = {}
        modes: dict[str, str] = {}
        names: dict[str, str] = {}
        for entry in entries:
            if entry.get("type") != "blob":
                continue
            path = normalize_path(entry["path"])
            index[path] = entry["sha"]
            modes[path] = entry.get("mode", _DEFAULT_MODE)
            names[path] = entry["path"]
        self._revision = revision
        self._tree_sha = tree_sha
        self._index = index
        self._modes = modes
        self._names = names
