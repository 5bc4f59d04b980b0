"""Tests for sync cache persistence.

Covers:
- Load returns an empty cache when the file doesn't exist
- Persist creates the file and state dir, with the documented layout
- Persist/load round-trip preserves all fields
- Corrupt or invalid files degrade to an empty cache
- A failed write leaves the previous file untouched
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from treesync.sync.models import SyncCache
from treesync.sync.state import STATE_VERSION, SyncState


class TestSyncStateLoad:
    """Tests for SyncState.load()."""

    def test_load_returns_empty_cache_when_file_missing(self, tmp_path: Path):
        ss = SyncState(tmp_path / "nonexistent")
        assert ss.load("myprofile") == SyncCache()

    def test_corrupt_json_gives_empty_cache(self, tmp_path: Path, caplog):
        (tmp_path / "sync_bad.json").write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            cache = SyncState(tmp_path).load("bad")

        assert cache == SyncCache()
        assert "Could not read sync cache" in caplog.text

    def test_invalid_fields_give_empty_cache(self, tmp_path: Path):
        (tmp_path / "sync_odd.json").write_text(
            json.dumps({"local_snapshot": ["not", "a", "dict"]}),
            encoding="utf-8",
        )
        assert SyncState(tmp_path).load("odd") == SyncCache()

    def test_non_object_root_is_ignored(self, tmp_path: Path):
        (tmp_path / "sync_list.json").write_text("[1, 2]", encoding="utf-8")
        assert SyncState(tmp_path).load("list") == SyncCache()

    def test_revision_without_snapshots_warns(self, tmp_path: Path, caplog):
        (tmp_path / "sync_drift.json").write_text(
            json.dumps({"last_synced_revision": "abc"}), encoding="utf-8"
        )

        with caplog.at_level(logging.WARNING):
            cache = SyncState(tmp_path).load("drift")

        assert cache.last_synced_revision == "abc"
        assert "treated as untracked" in caplog.text


class TestSyncStatePersist:
    """Tests for SyncState.persist()."""

    def test_persist_creates_state_dir_and_file(self, tmp_path: Path):
        state_dir = tmp_path / "nested" / ".treesync"
        SyncState(state_dir).persist("demo", {}, {}, None)
        assert (state_dir / "sync_demo.json").is_file()

    def test_document_layout(self, tmp_path: Path):
        SyncState(tmp_path).persist("demo", {"a": "1"}, {"a": "sha"}, "rev1")

        doc = json.loads((tmp_path / "sync_demo.json").read_text())

        assert doc["version"] == STATE_VERSION
        assert doc["profile"] == "demo"
        assert "T" in doc["last_sync"]
        assert doc["local_snapshot"] == {"a": "1"}
        assert doc["last_synced_remote_snapshot"] == {"a": "sha"}
        assert doc["last_synced_revision"] == "rev1"

    def test_round_trip(self, tmp_path: Path):
        ss = SyncState(tmp_path)
        written = ss.persist("p", {"a": "1", "b/c": "2"}, {"a": "x"}, "rev")

        assert ss.load("p") == written
        assert ss.last_sync("p") is not None

    def test_last_sync_none_before_first_persist(self, tmp_path: Path):
        assert SyncState(tmp_path).last_sync("p") is None

    def test_profiles_are_independent(self, tmp_path: Path):
        ss = SyncState(tmp_path)
        ss.persist("one", {"a": "1"}, {}, "r1")
        ss.persist("two", {"b": "2"}, {}, "r2")

        assert ss.load("one").local_snapshot == {"a": "1"}
        assert ss.load("two").last_synced_revision == "r2"

    def test_failed_write_keeps_previous_file(self, tmp_path: Path):
        ss = SyncState(tmp_path)
        ss.persist("p", {"a": "1"}, {}, "r1")
        before = (tmp_path / "sync_p.json").read_bytes()

        with patch(
            "treesync.sync.state.os.replace", side_effect=OSError("disk full")
        ):
            with pytest.raises(OSError, match="disk full"):
                ss.persist("p", {"a": "2"}, {}, "r2")

        assert (tmp_path / "sync_p.json").read_bytes() == before
        assert list(tmp_path.glob("*.tmp")) == []
