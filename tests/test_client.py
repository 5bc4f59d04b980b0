"""Tests for the GitHub Git Data API client.

HTTP is mocked at the session level: ``_get_session`` is patched to
return a MagicMock whose ``request`` yields real ``requests.Response``
objects built by the ``http_response`` fixture.
"""

from __future__ import annotations

import base64
from unittest.mock import MagicMock, patch

import pytest
import requests

from treesync.core.client import (
    EMPTY_TREE_SHA,
    GitHubClient,
    RefConflictError,
    is_retryable,
    retry_with_backoff,
)


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(mock_config, session):
    gh = GitHubClient(mock_config)
    with patch.object(GitHubClient, "_get_session", return_value=session):
        yield gh


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("treesync.core.client.time.sleep") as sleep:
        yield sleep


def _http_error(http_response, status, headers=None):
    return requests.HTTPError(response=http_response(status, headers=headers))


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class TestIsRetryable:
    """Tests for is_retryable()."""

    def test_transport_errors(self):
        assert is_retryable(requests.ConnectionError("reset"))
        assert is_retryable(requests.Timeout("slow"))

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_transient_statuses(self, http_response, status):
        assert is_retryable(_http_error(http_response, status))

    @pytest.mark.parametrize("status", [400, 401, 404, 409, 422])
    def test_client_errors(self, http_response, status):
        assert not is_retryable(_http_error(http_response, status))

    def test_403_only_when_rate_limited(self, http_response):
        assert is_retryable(
            _http_error(http_response, 403, {"X-RateLimit-Remaining": "0"})
        )
        assert not is_retryable(_http_error(http_response, 403))

    def test_other_exceptions(self):
        assert not is_retryable(ValueError("bad"))


class TestRetryWithBackoff:
    """Tests for retry_with_backoff()."""

    def test_succeeds_after_transient_failures(self, no_sleep):
        func = MagicMock(
            side_effect=[requests.ConnectionError("a"), requests.Timeout("b"), "ok"]
        )

        assert retry_with_backoff(func, max_retries=3, initial_backoff=1.0) == "ok"
        assert func.call_count == 3
        assert [c.args[0] for c in no_sleep.call_args_list] == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        func = MagicMock(side_effect=requests.ConnectionError("down"))

        with pytest.raises(requests.ConnectionError):
            retry_with_backoff(func, max_retries=2)

        assert func.call_count == 3

    def test_non_retryable_raised_immediately(self, http_response):
        func = MagicMock(side_effect=_http_error(http_response, 404))

        with pytest.raises(requests.HTTPError):
            retry_with_backoff(func, max_retries=5)

        assert func.call_count == 1

    def test_backoff_is_capped(self, no_sleep):
        func = MagicMock(side_effect=[requests.Timeout("x")] * 4 + ["ok"])

        retry_with_backoff(func, max_retries=4, initial_backoff=10, max_backoff=15)

        assert [c.args[0] for c in no_sleep.call_args_list] == [10, 15, 15, 15]


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestSession:
    def test_headers_and_verify(self, mock_config):
        session = GitHubClient(mock_config)._create_session()

        assert session.headers["Authorization"] == "Bearer ghp_test"
        assert session.headers["Accept"] == "application/vnd.github+json"
        assert session.headers["X-GitHub-Api-Version"] == "2022-11-28"
        assert session.verify is True

    def test_repo_url(self, mock_config):
        assert (
            GitHubClient(mock_config).repo_url
            == "https://api.github.com/repos/octo/notes"
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class TestRefs:
    """Tests for ref reads and conditional updates."""

    def test_validate_connection(self, client, session, http_response):
        session.request.return_value = http_response(
            200, {"full_name": "octo/notes"}
        )
        assert client.validate_connection() == "octo/notes"

    def test_get_ref(self, client, session, http_response):
        session.request.return_value = http_response(
            200, {"object": {"sha": "abc"}}
        )

        assert client.get_ref() == "abc"
        method, url = session.request.call_args[0]
        assert method == "GET"
        assert url.endswith("/git/ref/heads/main")

    def test_empty_repository_has_no_ref(self, client, session, http_response):
        session.request.return_value = http_response(409, {"message": "empty"})
        assert client.get_ref() is None

    def test_missing_branch_raises(self, client, session, http_response):
        session.request.return_value = http_response(404, {"message": "nope"})
        with pytest.raises(requests.HTTPError):
            client.get_ref()

    def test_update_ref_checks_expected(self, client, session, http_response):
        session.request.return_value = http_response(
            200, {"object": {"sha": "moved"}}
        )

        with pytest.raises(RefConflictError) as exc_info:
            client.update_ref("new", "old")

        assert exc_info.value.actual == "moved"
        assert session.request.call_count == 1

    def test_update_ref_fast_forward(self, client, session, http_response):
        session.request.side_effect = [
            http_response(200, {"object": {"sha": "old"}}),
            http_response(200, {"object": {"sha": "new"}}),
        ]

        client.update_ref("new", "old")

        method, url = session.request.call_args[0]
        assert method == "PATCH"
        assert url.endswith("/git/refs/heads/main")
        assert session.request.call_args[1]["json"] == {
            "sha": "new",
            "force": False,
        }

    def test_update_ref_rejected_is_conflict(self, client, session, http_response):
        session.request.side_effect = [
            http_response(200, {"object": {"sha": "old"}}),
            http_response(422, {"message": "Update is not a fast forward"}),
        ]
        with pytest.raises(RefConflictError):
            client.update_ref("new", "old")

    def test_create_ref(self, client, session, http_response):
        session.request.return_value = http_response(201, {"ref": "refs/heads/main"})

        client.create_ref("first")

        assert session.request.call_args[1]["json"] == {
            "ref": "refs/heads/main",
            "sha": "first",
        }


class TestObjects:
    """Tests for blob/tree/commit endpoints."""

    def test_get_tree(self, client, session, http_response):
        session.request.return_value = http_response(
            200, {"tree": [{"path": "a", "type": "blob", "sha": "s"}]}
        )
        assert client.get_tree("t1") == [{"path": "a", "type": "blob", "sha": "s"}]
        assert session.request.call_args[0][1].endswith("git/trees/t1?recursive=1")

    def test_truncated_tree_raises(self, client, session, http_response):
        session.request.return_value = http_response(
            200, {"tree": [], "truncated": True}
        )
        with pytest.raises(RuntimeError, match="too large"):
            client.get_tree("t1")

    def test_empty_tree_needs_no_request(self, client, session):
        assert client.get_tree(EMPTY_TREE_SHA) == []
        session.request.assert_not_called()

    def test_get_blob_decodes_base64(self, client, session, http_response):
        session.request.return_value = http_response(
            200,
            {
                "content": base64.b64encode(b"\x00binary").decode(),
                "encoding": "base64",
            },
        )
        assert client.get_blob("b1") == b"\x00binary"

    def test_create_blob_retries(self, client, session, http_response):
        session.request.side_effect = [
            http_response(502),
            http_response(201, {"sha": "b1"}),
        ]
        assert client.create_blob(b"data") == "b1"
        assert session.request.call_count == 2

    def test_create_tree_omits_empty_base(self, client, session, http_response):
        session.request.return_value = http_response(201, {"sha": "t2"})

        client.create_tree(None, [])

        assert "base_tree" not in session.request.call_args[1]["json"]

    def test_create_commit_is_not_retried(self, client, session, http_response):
        session.request.return_value = http_response(502)

        with pytest.raises(requests.HTTPError):
            client.create_commit("m", "t", ["p"])

        assert session.request.call_count == 1
