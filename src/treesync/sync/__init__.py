"""Two-way sync between a local file tree and a GitHub branch.

Architecture
------------
Each side is compared only against its own cached snapshot from the last
successful sync -- local content hashes are never compared to remote
blob SHAs.  Paths changed on one side only are applied to the other;
paths whose local status is contested or unknown are never overwritten:
the remote version is written to a quarantine directory next to the
local file tree instead.

Modules:

- ``engine``     -- ``SyncEngine``: the detect/classify/execute state machine.
- ``detector``   -- ``detect``: snapshot diffing.
- ``prober``     -- ``ExistenceProber``: batched, three-valued existence checks.
- ``classifier`` -- ``ClashClassifier``: safe changes vs clashes.
- ``resolver``   -- ``ClashResolver`` and the total resolution table.
- ``state``      -- ``SyncState``: atomic cache persistence.
- ``stores``     -- ``LocalStore``/``RemoteStore`` protocols,
  ``FilesystemLocalStore``.
- ``remote``     -- ``GitHubRemoteStore``.
- ``paths``      -- path normalization and ``PathPolicy``.
- ``errors``     -- ``SyncError`` taxonomy.
- ``models``     -- immutable data contracts.
- ``reporter``   -- human-readable and JSON output.

Usage example
-------------
::

    from pathlib import Path
    from treesync.core.client import GitHubClient
    from treesync.sync import (
        FilesystemLocalStore, GitHubRemoteStore, PathPolicy, SyncEngine,
        SyncState, format_sync_report,
    )

    policy = PathPolicy(quarantine_dir="_conflicts", exclude=["*.tmp"])
    engine = SyncEngine(
        local_store=FilesystemLocalStore(Path("notes"), policy),
        remote_store=GitHubRemoteStore(GitHubClient(config)),
        state=SyncState(Path(".treesync")),
        profile_name="notes",
        policy=policy,
    )
    outcome = await engine.sync()
    print(format_sync_report(outcome))
"""

from .engine import SyncEngine
from .errors import SyncError, SyncErrorType, categorize_error
from .models import (
    Change,
    ChangeKind,
    Clash,
    ClashResolution,
    Existence,
    LocalState,
    SyncCache,
    SyncOutcome,
    SyncPhase,
)
from .paths import PathPolicy, normalize_path
from .remote import GitHubRemoteStore
from .reporter import format_sync_report, report_to_json
from .state import SyncState
from .stores import FilesystemLocalStore, LocalStore, RemoteStore

__all__ = [
    "Change",
    "ChangeKind",
    "Clash",
    "ClashResolution",
    "Existence",
    "FilesystemLocalStore",
    "GitHubRemoteStore",
    "LocalState",
    "LocalStore",
    "PathPolicy",
    "RemoteStore",
    "SyncCache",
    "SyncEngine",
    "SyncError",
    "SyncErrorType",
    "SyncOutcome",
    "SyncPhase",
    "SyncState",
    "categorize_error",
    "format_sync_report",
    "normalize_path",
    "report_to_json",
]
