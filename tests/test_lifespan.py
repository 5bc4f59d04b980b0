"""Tests for treesync.mcp.lifespan -- server startup/shutdown lifecycle.

Tests resolve_configuration(), connect() and the server_lifespan()
async context manager which:
- Merges CLI overrides, env vars and YAML config
- Creates GitHubClient and validates repository access
- Initializes the transfer semaphore
- Fails fast on config errors or connection failures
- Prints status messages to stderr, never stdout
"""

import textwrap
from unittest.mock import MagicMock, patch

import pytest

import treesync.core.async_utils as async_utils
from treesync.mcp.lifespan import connect, resolve_configuration, server_lifespan
from treesync.mcp.tools import sync as sync_tools

_ENV_KEYS = (
    "GITHUB_TOKEN",
    "GITHUB_OWNER",
    "GITHUB_REPO",
    "GITHUB_BRANCH",
    "GITHUB_API_URL",
    "TREESYNC_CONFIG",
    "TREESYNC_DEBUG",
    "TREESYNC_INSECURE",
    "TREESYNC_MAX_PARALLEL_REQUESTS",
    "TREESYNC_MAX_RETRIES",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    with patch("treesync.mcp.lifespan.load_dotenv"):
        yield tmp_path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / ".treesync" / "config.yml"
    path.parent.mkdir()
    path.write_text(
        textwrap.dedent("""\
        github:
          token: ghp_yaml
          owner: octo
          repo: notes
          max_parallel_requests: 3
        sync:
          notes:
            local_root: ~/notes
        logging:
          level: INFO
        """)
    )
    return path


@pytest.fixture
def github_client_cls():
    client = MagicMock()
    client.validate_connection.return_value = "octo/notes"
    with patch(
        "treesync.mcp.lifespan.GitHubClient", return_value=client
    ) as cls:
        yield cls


# -------------------------------------------------------------------------
# resolve_configuration()
# -------------------------------------------------------------------------


class TestResolveConfiguration:
    """Tests for resolve_configuration() source merging."""

    def test_yaml_only(self, config_file, capsys):
        config, unified = resolve_configuration()

        assert config.github_token == "ghp_yaml"
        assert config.max_parallel_requests == 3
        assert list(unified.sync) == ["notes"]

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "octo/notes" in captured.err
        assert "Sync profiles: notes" in captured.err

    def test_cli_overrides_yaml(self, config_file):
        config, _ = resolve_configuration({"repo": "other", "branch": "drafts"})
        assert config.repo == "other"
        assert config.branch == "drafts"

    def test_env_overrides_yaml(self, config_file, monkeypatch):
        monkeypatch.setenv("GITHUB_OWNER", "env-owner")
        config, _ = resolve_configuration()
        assert config.owner == "env-owner"

    def test_explicit_config_file(self, tmp_path):
        path = tmp_path / "elsewhere.yml"
        path.write_text("github:\n  token: t\n  owner: o\n  repo: r\n")

        config, unified = resolve_configuration({"config_file": str(path)})

        assert config.repo == "r"
        assert unified.sync == {}

    def test_missing_token_is_runtime_error(self):
        with pytest.raises(RuntimeError, match="Configuration error"):
            resolve_configuration()

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(RuntimeError, match="Config file not found"):
            resolve_configuration({"config_file": str(tmp_path / "nope.yml")})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / ".treesync" / "config.yml"
        path.parent.mkdir()
        path.write_text("github: [unclosed\n")

        with pytest.raises(RuntimeError, match="Configuration error"):
            resolve_configuration()


# -------------------------------------------------------------------------
# connect()
# -------------------------------------------------------------------------


class TestConnect:
    """Tests for connect() fail-fast behavior."""

    async def test_validates_and_initializes_semaphore(
        self, mock_config, github_client_cls
    ):
        client = await connect(mock_config)

        assert client is github_client_cls.return_value
        client.validate_connection.assert_called_once()
        assert async_utils._semaphore is not None

    async def test_connection_failure(self, mock_config, github_client_cls):
        github_client_cls.return_value.validate_connection.side_effect = (
            ConnectionError("unreachable")
        )

        with pytest.raises(RuntimeError, match="GitHub connection failed"):
            await connect(mock_config)

        assert async_utils._semaphore is None


# -------------------------------------------------------------------------
# server_lifespan()
# -------------------------------------------------------------------------


class TestServerLifespan:
    """Tests for the server_lifespan() context manager."""

    async def test_yields_client_and_config(self, config_file, github_client_cls):
        async with server_lifespan() as ctx:
            assert ctx["client"] is github_client_cls.return_value
            assert ctx["config"].get_profile("notes").local_root == "~/notes"

    async def test_engines_dropped_on_shutdown(
        self, config_file, github_client_cls
    ):
        async with server_lifespan():
            sync_tools._engines["notes"] = MagicMock()

        assert sync_tools._engines == {}

    async def test_config_error_fails_fast(self, github_client_cls):
        with pytest.raises(RuntimeError):
            async with server_lifespan():
                pytest.fail("should not start")

        github_client_cls.assert_not_called()
