"""GitHub Git Data API client.

Thin wrapper over ``requests`` for the blob/tree/commit/ref endpoints
used by the remote store.  Requests that are safe to repeat (reads and
content-addressed creates) go through ``retry_with_backoff``; commit
creation and ref updates are sent exactly once.
"""

import base64
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

import requests

from ..config import Config

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: SHA of the empty tree; GitHub answers 404 when asked for it.
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

API_VERSION = "2022-11-28"

DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 30.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Client errors that a retry cannot fix
_NON_RETRYABLE_STATUS = frozenset({400, 401, 404, 409, 422})


class RefConflictError(RuntimeError):
    """The branch moved between reading it and updating it."""

    def __init__(self, branch: str, expected: str | None, actual: str | None):
        super().__init__(
            f"Branch '{branch}' is at {actual}, expected {expected}"
        )
        self.branch = branch
        self.expected = expected
        self.actual = actual


def is_retryable(exc: Exception) -> bool:
    """Whether *exc* is a transient or rate-limit failure."""
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        status = exc.response.status_code
        if status in _NON_RETRYABLE_STATUS:
            return False
        if status == 403:
            return exc.response.headers.get("X-RateLimit-Remaining") == "0"
        return status == 429 or status >= 500
    return False


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = 3,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    should_retry: Callable[[Exception], bool] = is_retryable,
) -> T:
    """Execute *func* with exponential backoff on retryable failures.

    Args:
        func: Function to execute.
        max_retries: Maximum number of retry attempts.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        should_retry: Predicate selecting the exceptions worth retrying.

    Returns:
        Result of the function.

    Raises:
        The last exception if it is not retryable or retries run out.
    """
    backoff = initial_backoff
    for attempt in range(max_retries + 1):
        try:
            return func()
        except Exception as exc:
            if not should_retry(exc) or attempt == max_retries:
                raise
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                attempt + 1,
                max_retries + 1,
                exc,
                backoff,
            )
            time.sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)
    raise AssertionError("unreachable")  # pragma: no cover


class GitHubClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.repo_url = (
            f"{config.api_url}/repos/{config.owner}/{config.repo}"
        )

    @property
    def branch(self) -> str:
        return self.config.branch

    @property
    def session(self) -> requests.Session:
        """Session of the current thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.github_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            }
        )
        session.verify = not self.config.insecure
        return session

    def _request(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        retry: bool = True,
    ) -> Any:
        """Send one API request and decode the JSON body.

        Args:
            method: HTTP method.
            path: Path relative to the repository URL ("" for the repo).
            payload: JSON body.
            retry: Retry transient failures with backoff.

        Raises:
            requests.HTTPError: For non-2xx responses.
        """
        url = f"{self.repo_url}/{path}" if path else self.repo_url
        headers = {}
        if method == "GET":
            # Bypass conditional-request caching so a fresh ref is seen
            headers["If-None-Match"] = ""

        def send() -> Any:
            response = self._get_session().request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=(10, 60),
            )
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()

        logger.debug("%s %s", method, url)
        if not retry:
            return send()
        return retry_with_backoff(send, max_retries=self.config.max_retries)

    # ------------------------------------------------------------------
    # Repository / refs
    # ------------------------------------------------------------------

    def validate_connection(self) -> str:
        """Check that the repository is reachable with the token.

        Returns:
            The repository's full name.
        """
        repo = self._request("GET", "")
        return repo["full_name"]

    def get_ref(self) -> str | None:
        """Commit SHA the branch points at.

        Returns:
            None when the repository is empty (no commits yet).

        Raises:
            requests.HTTPError: 404 when the branch does not exist.
        """
        try:
            ref = self._request("GET", f"git/ref/heads/{self.branch}")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 409:
                logger.info("Repository %s is empty", self.repo_url)
                return None
            raise
        return ref["object"]["sha"]

    def update_ref(self, sha: str, expected: str) -> None:
        """Move the branch to *sha* only if it still points at *expected*.

        Raises:
            RefConflictError: If the branch moved, or the update is not a
                fast-forward.
        """
        current = self.get_ref()
        if current != expected:
            raise RefConflictError(self.branch, expected, current)
        try:
            self._request(
                "PATCH",
                f"git/refs/heads/{self.branch}",
                {"sha": sha, "force": False},
                retry=False,
            )
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code in (
                409,
                422,
            ):
                raise RefConflictError(
                    self.branch, expected, None
                ) from exc
            raise

    def create_ref(self, sha: str) -> None:
        """Create the branch, for the first commit of an empty repository."""
        try:
            self._request(
                "POST",
                "git/refs",
                {"ref": f"refs/heads/{self.branch}", "sha": sha},
                retry=False,
            )
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 422:
                raise RefConflictError(self.branch, None, "existing") from exc
            raise

    # ------------------------------------------------------------------
    # Git objects
    # ------------------------------------------------------------------

    def get_commit(self, sha: str) -> dict:
        return self._request("GET", f"git/commits/{sha}")

    def get_tree(self, sha: str) -> list[dict]:
        """Recursive listing of the tree *sha*.

        Raises:
            RuntimeError: If GitHub truncated the listing; a partial
                listing would look like remote deletions.
        """
        if sha == EMPTY_TREE_SHA:
            return []
        tree = self._request("GET", f"git/trees/{sha}?recursive=1")
        if tree.get("truncated"):
            raise RuntimeError(
                f"Tree {sha} is too large to list in one request"
            )
        return tree.get("tree", [])

    def get_blob(self, sha: str) -> bytes:
        blob = self._request("GET", f"git/blobs/{sha}")
        if blob.get("encoding") == "base64":
            return base64.b64decode(blob["content"])
        return blob["content"].encode("utf-8")

    def create_blob(self, data: bytes) -> str:
        # Blobs are content-addressed, so a repeated create is harmless
        blob = self._request(
            "POST",
            "git/blobs",
            {
                "content": base64.b64encode(data).decode("ascii"),
                "encoding": "base64",
            },
        )
        return blob["sha"]

    def create_tree(self, base_tree: str | None, entries: list[dict]) -> str:
        payload: dict[str, Any] = {"tree": entries}
        if base_tree and base_tree != EMPTY_TREE_SHA:
            payload["base_tree"] = base_tree
        tree = self._request("POST", "git/trees", payload)
        return tree["sha"]

    def create_commit(
        self, message: str, tree: str, parents: list[str]
    ) -> str:
        commit = self._request(
            "POST",
            "git/commits",
            {"message": message, "tree": tree, "parents": parents},
            retry=False,
        )
        return commit["sha"]
