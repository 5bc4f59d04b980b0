"""Tests for the repo_sync and repo_sync_status MCP tools.

Covers:
- Tool definitions (names, required params, annotations)
- Argument validation and unknown profiles
- repo_sync success, dry run and failed outcomes
- One engine per profile
- repo_sync_status over a persisted cache and quarantine directory
"""

from unittest.mock import AsyncMock, MagicMock, patch

import mcp.types as types
import pytest

from treesync.config_schema import SyncProfileConfig, UnifiedConfig
from treesync.mcp.tools import sync as sync_tools
from treesync.mcp.tools.sync import SYNC_TOOLS, handle_sync_tool
from treesync.sync.errors import SyncErrorType
from treesync.sync.models import (
    ClashResolution,
    Clash,
    ChangeKind,
    FileOp,
    LocalState,
    OpKind,
    ResolutionAction,
    Side,
    SyncErrorInfo,
    SyncOutcome,
    SyncPhase,
)
from treesync.sync.state import SyncState

STARTED = "2026-01-01T00:00:00+00:00"


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


def _outcome(**overrides):
    defaults = {
        "profile_name": "notes",
        "success": True,
        "phase": SyncPhase.SUCCEEDED,
        "started_at": STARTED,
        "completed_at": STARTED,
    }
    defaults.update(overrides)
    return SyncOutcome(**defaults)


@pytest.fixture
def profile(tmp_path):
    root = tmp_path / "notes"
    root.mkdir()
    return SyncProfileConfig(
        local_root=str(root), state_dir=str(tmp_path / "state")
    )


@pytest.fixture
def unified(profile):
    return UnifiedConfig(sync={"notes": profile})


@pytest.fixture
def engine():
    eng = MagicMock()
    eng.sync = AsyncMock(return_value=_outcome())
    eng.phase = SyncPhase.IDLE
    with patch.object(
        sync_tools.SyncEngine, "from_profile", return_value=eng
    ) as factory:
        eng.factory = factory
        yield eng


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


class TestToolDefinitions:
    def test_names(self):
        assert [t.name for t in SYNC_TOOLS] == ["repo_sync", "repo_sync_status"]

    def test_profile_required(self):
        for tool in SYNC_TOOLS:
            assert tool.inputSchema["required"] == ["profile"]

    def test_status_is_read_only(self):
        status = SYNC_TOOLS[1]
        assert status.annotations.readOnlyHint is True
        assert SYNC_TOOLS[0].annotations.readOnlyHint is False


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    """Tests for argument checks shared by both tools."""

    async def test_missing_profile(self, mock_github_client, unified):
        result = await handle_sync_tool(
            "repo_sync", {}, mock_github_client, unified
        )
        assert result.isError is True
        assert "validation_error" in _text(result)

    async def test_none_arguments(self, mock_github_client, unified):
        result = await handle_sync_tool(
            "repo_sync_status", None, mock_github_client, unified
        )
        assert result.isError is True

    async def test_unknown_profile(self, mock_github_client, unified):
        result = await handle_sync_tool(
            "repo_sync", {"profile": "docs"}, mock_github_client, unified
        )
        text = _text(result)
        assert result.isError is True
        assert "Error (not_found)" in text
        assert "available: notes" in text

    async def test_unknown_tool(self, mock_github_client, unified):
        result = await handle_sync_tool(
            "repo_frobnicate", {"profile": "notes"}, mock_github_client, unified
        )
        assert "Unknown sync tool" in _text(result)


# ---------------------------------------------------------------------------
# repo_sync
# ---------------------------------------------------------------------------


class TestRepoSync:
    """Tests for the repo_sync tool."""

    async def test_success_report(self, mock_github_client, unified, engine):
        engine.sync.return_value = _outcome(
            remote_ops=[FileOp(path="a.md", op=OpKind.WRITE, side=Side.REMOTE)],
            revision="c2",
        )

        result = await handle_sync_tool(
            "repo_sync", {"profile": "notes"}, mock_github_client, unified
        )

        assert not result.isError
        assert "a.md" in _text(result)
        assert result.structuredContent["revision"] == "c2"
        engine.sync.assert_awaited_once_with(dry_run=False)

    async def test_dry_run_flag(self, mock_github_client, unified, engine):
        engine.sync.return_value = _outcome(dry_run=True)

        result = await handle_sync_tool(
            "repo_sync",
            {"profile": "notes", "dry_run": True},
            mock_github_client,
            unified,
        )

        engine.sync.assert_awaited_once_with(dry_run=True)
        assert "DRY RUN" in _text(result)

    async def test_unresolved_clashes_are_not_errors(
        self, mock_github_client, unified, engine
    ):
        engine.sync.return_value = _outcome(
            unresolved_clashes=[
                ClashResolution(
                    clash=Clash(
                        path="todo.md",
                        local_state=LocalState.MODIFIED,
                        remote_kind=ChangeKind.MODIFIED,
                    ),
                    action=ResolutionAction.QUARANTINE,
                    resolved=False,
                    quarantine_path="_conflicts/todo.md",
                    content_kind="text",
                    reason="both sides changed with different content",
                )
            ]
        )

        result = await handle_sync_tool(
            "repo_sync", {"profile": "notes"}, mock_github_client, unified
        )

        assert not result.isError
        assert "_conflicts/todo.md" in _text(result)
        assert result.structuredContent["counts"]["unresolved"] == 1

    async def test_failed_outcome_is_error(
        self, mock_github_client, unified, engine
    ):
        engine.sync.return_value = _outcome(
            success=False,
            phase=SyncPhase.FAILED,
            error=SyncErrorInfo(
                error_type=SyncErrorType.ALREADY_SYNCING,
                detail_message="A sync is already in progress",
            ),
        )

        result = await handle_sync_tool(
            "repo_sync", {"profile": "notes"}, mock_github_client, unified
        )

        assert result.isError is True
        assert "Error (already_syncing)" in _text(result)
        assert "Wait for the running sync" in _text(result)

    async def test_engine_reused_per_profile(
        self, mock_github_client, unified, engine
    ):
        for _ in range(2):
            await handle_sync_tool(
                "repo_sync", {"profile": "notes"}, mock_github_client, unified
            )

        engine.factory.assert_called_once()
        assert sync_tools._engines["notes"] is engine

    async def test_unexpected_exception(self, mock_github_client, unified, engine):
        engine.sync.side_effect = RuntimeError("boom")

        result = await handle_sync_tool(
            "repo_sync", {"profile": "notes"}, mock_github_client, unified
        )

        assert result.isError is True
        assert "Error (server_error): boom" in _text(result)


# ---------------------------------------------------------------------------
# repo_sync_status
# ---------------------------------------------------------------------------


class TestRepoSyncStatus:
    """Tests for the repo_sync_status tool."""

    async def test_never_synced(self, mock_github_client, unified):
        result = await handle_sync_tool(
            "repo_sync_status", {"profile": "notes"}, mock_github_client, unified
        )

        text = _text(result)
        assert "Last sync:     never" in text
        assert result.structuredContent["phase"] == "idle"
        assert result.structuredContent["quarantined"] == []

    async def test_after_sync(self, mock_github_client, unified, profile):
        SyncState(profile.state_dir_path).persist(
            "notes", {"a.md": "h1", "b.md": "h2"}, {"a.md": "s1"}, "c7"
        )
        clash_dir = profile.local_root_path / "_conflicts" / "docs"
        clash_dir.mkdir(parents=True)
        (clash_dir / "plan.md").write_text("remote version")

        result = await handle_sync_tool(
            "repo_sync_status", {"profile": "notes"}, mock_github_client, unified
        )

        data = result.structuredContent
        assert data["revision"] == "c7"
        assert data["local_files"] == 2
        assert data["remote_files"] == 1
        assert data["last_sync"] is not None
        assert data["quarantined"] == ["docs/plan.md"]
        assert "    docs/plan.md" in _text(result)

    async def test_reports_running_engine_phase(
        self, mock_github_client, unified
    ):
        running = MagicMock()
        running.phase = SyncPhase.EXECUTING
        sync_tools._engines["notes"] = running

        result = await handle_sync_tool(
            "repo_sync_status", {"profile": "notes"}, mock_github_client, unified
        )

        assert result.structuredContent["phase"] == "executing"
