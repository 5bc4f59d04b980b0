"""Shared pytest fixtures for treesync tests."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest
import requests
from dotenv import load_dotenv

from treesync.config import Config
from treesync.core.client import RefConflictError
from treesync.file_handler import content_hash
from treesync.sync.engine import SyncEngine
from treesync.sync.models import Existence
from treesync.sync.paths import PathPolicy, is_hidden
from treesync.sync.remote import git_blob_sha
from treesync.sync.state import SyncState
from treesync.sync.stores import RemoteApplyResult

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live GitHub repository",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live GitHub repository"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


class MemoryLocalStore:
    """LocalStore over a dict, with failure injection.

    Attributes:
        files: Path -> bytes.
        stat_error: Raised by ``stat_batch`` when set.
        unanswered: Paths ``stat_batch`` leaves out of its answer.
        fail_writes: Paths whose ``write_content`` raises ``OSError``.
        snapshot_gate: When set, ``read_snapshot`` waits for it.
    """

    def __init__(self, files=None, policy=None, track_hidden=False):
        self.files: dict[str, bytes] = dict(files or {})
        self.policy = policy or PathPolicy()
        self.track_hidden = track_hidden
        self.stat_error: Exception | None = None
        self.unanswered: set[str] = set()
        self.fail_writes: set[str] = set()
        self.snapshot_gate: threading.Event | None = None
        self.stat_calls: list[list[str]] = []
        self.writes: list[str] = []
        self.deletes: list[str] = []

    def is_trackable(self, path):
        if self.policy.is_protected(path):
            return False
        return self.track_hidden or not is_hidden(path)

    def hash_content(self, path, data):
        return content_hash(path, data)

    def read_snapshot(self):
        if self.snapshot_gate is not None:
            self.snapshot_gate.wait(timeout=5)
        return {
            path: content_hash(path, data)
            for path, data in self.files.items()
            if self.is_trackable(path)
        }

    def read_content(self, path):
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    def write_content(self, path, data):
        if path in self.fail_writes:
            raise PermissionError(f"Permission denied: {path}")
        self.files[path] = data
        self.writes.append(path)

    def delete(self, path):
        self.files.pop(path, None)
        self.deletes.append(path)

    def stat_batch(self, paths):
        paths = list(paths)
        self.stat_calls.append(paths)
        if self.stat_error is not None:
            raise self.stat_error
        return {
            path: Existence.EXISTS if path in self.files else Existence.ABSENT
            for path in paths
            if path not in self.unanswered
        }


class MemoryRemoteStore:
    """RemoteStore over an in-memory commit history.

    Revisions are ``r1``, ``r2``... ; ``head`` is None until the first
    commit.  ``commit()`` simulates another writer.
    """

    def __init__(self, files=None):
        self.history: dict[str, dict[str, bytes]] = {}
        self.head: str | None = None
        self.messages: list[str] = []
        self.apply_calls: list[tuple[dict, list, str | None]] = []
        self.apply_error: Exception | None = None
        self.read_calls: list[str] = []
        if files:
            self.commit(writes=files)

    @property
    def files(self) -> dict[str, bytes]:
        return dict(self.history.get(self.head, {})) if self.head else {}

    def commit(self, writes=None, deletes=(), message="remote edit"):
        tree = self.files
        tree.update(writes or {})
        for path in deletes:
            tree.pop(path, None)
        self.head = f"r{len(self.history) + 1}"
        self.history[self.head] = tree
        self.messages.append(message)
        return self.head

    def snapshot(self, revision=None):
        tree = self.history.get(revision or self.head, {})
        return {path: git_blob_sha(data) for path, data in tree.items()}

    def current_revision(self):
        return self.head

    def read_snapshot_at(self, revision):
        if revision is None:
            return {}
        return self.snapshot(revision)

    def read_content(self, path):
        self.read_calls.append(path)
        return self.files[path]

    def apply_changes(self, writes, deletes, expected_revision, message):
        self.apply_calls.append((dict(writes), list(deletes), expected_revision))
        if self.apply_error is not None:
            raise self.apply_error
        if self.head != expected_revision:
            raise RefConflictError("main", expected_revision, self.head)
        revision = self.commit(writes=writes, deletes=deletes, message=message)
        return RemoteApplyResult(
            new_revision=revision, new_snapshot=self.snapshot(revision)
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def policy():
    return PathPolicy("_conflicts", ["*.tmp"])


@pytest.fixture
def local_store(policy):
    return MemoryLocalStore(policy=policy)


@pytest.fixture
def remote_store():
    return MemoryRemoteStore()


@pytest.fixture
def sync_state(tmp_path):
    return SyncState(tmp_path / "state")


@pytest.fixture
def make_engine(local_store, remote_store, sync_state, policy):
    """Factory for a SyncEngine over the in-memory stores."""

    def _make(**kwargs):
        return SyncEngine(
            local_store=local_store,
            remote_store=remote_store,
            state=sync_state,
            profile_name="test",
            policy=policy,
            device_name="laptop",
            **kwargs,
        )

    return _make


@pytest.fixture
def seed_cache(local_store, remote_store, sync_state):
    """Record the current state of both stores as the last sync."""

    def _seed():
        return sync_state.persist(
            "test",
            local_store.read_snapshot(),
            remote_store.snapshot() if remote_store.head else {},
            remote_store.head,
        )

    return _seed


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        github_token="ghp_test",
        owner="octo",
        repo="notes",
        branch="main",
        api_url="https://api.github.com",
        max_retries=2,
    )


@pytest.fixture
def mock_github_client(mock_config):
    """Create a mock GitHubClient instance for testing."""
    from treesync.core.client import GitHubClient

    client = MagicMock(spec=GitHubClient)
    client.config = mock_config
    client.branch = mock_config.branch
    return client


@pytest.fixture
def http_response():
    """Factory fixture for ``requests.Response`` objects."""

    def _create(status=200, json_body=None, headers=None):
        import json

        response = requests.Response()
        response.status_code = status
        response.headers.update(headers or {})
        if json_body is not None:
            response._content = json.dumps(json_body).encode()
        else:
            response._content = b""
        response.url = "https://api.github.com/repos/octo/notes"
        return response

    return _create


@pytest.fixture(autouse=True)
def _reset_globals():
    """Each test starts without a transfer semaphore or cached engines."""
    from treesync.core import async_utils
    from treesync.mcp.tools import sync as sync_tools

    async_utils._semaphore = None
    sync_tools.reset_engines()
    yield
    async_utils._semaphore = None
    sync_tools.reset_engines()
