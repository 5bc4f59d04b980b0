"""Connection configuration for the GitHub remote.

Reads GitHub connection settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GITHUB_TOKEN: Personal access token (required)
    GITHUB_OWNER: Repository owner, user or organization (required)
    GITHUB_REPO: Repository name (required)
    GITHUB_BRANCH: Branch to sync (optional, default: main)
    GITHUB_API_URL: API base URL (optional, default: https://api.github.com)
    TREESYNC_INSECURE: Skip SSL verification (optional, default: false)
    TREESYNC_DEBUG: Enable debug logging (optional, default: false)
    TREESYNC_MAX_PARALLEL_REQUESTS: Max parallel API requests (optional, default: 5)
    TREESYNC_MAX_RETRIES: Retries for transient API failures (optional, default: 3)
"""

import logging
import os
import re
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass
class Config:
    github_token: str
    owner: str
    repo: str
    branch: str = "main"
    api_url: str = DEFAULT_API_URL
    insecure: bool = False
    debug: bool = False
    max_parallel_requests: int = 5
    max_retries: int = 3


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the API URL is malformed or a name is invalid.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if not config.github_token.strip():
        raise ValueError(
            "GitHub token cannot be empty. Set GITHUB_TOKEN environment variable."
        )

    for label, value in (("owner", config.owner), ("repo", config.repo)):
        if not _NAME_RE.match(value):
            raise ValueError(
                f"Invalid GitHub {label} '{value}': only letters, digits, "
                "'-', '_' and '.' are allowed"
            )

    if not config.branch.strip() or config.branch.startswith("/"):
        raise ValueError(f"Invalid branch name '{config.branch}'")

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _ranged_int(
    env_key: str, fb: dict, fb_key: str, default: int, low: int, high: int
) -> int:
    raw = os.getenv(env_key)
    if raw is None:
        return int(fb.get(fb_key, default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    token: str | None = None,
    owner: str | None = None,
    repo: str | None = None,
    branch: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        token: Override personal access token.
        owner: Override repository owner.
        repo: Override repository name.
        branch: Override branch name.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from the YAML config ``github``
            section, used when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If token, owner or repo is missing after checking
            all sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > error/default ---

    final_token = token or os.getenv("GITHUB_TOKEN") or fb.get("token")
    if not final_token:
        raise ValueError(
            "GitHub token not found. Set GITHUB_TOKEN environment variable, "
            "pass --token CLI argument, or add 'token' to config.yml."
        )

    final_owner = owner or os.getenv("GITHUB_OWNER") or fb.get("owner")
    if not final_owner:
        raise ValueError(
            "GitHub owner not found. Set GITHUB_OWNER environment variable, "
            "pass --owner CLI argument, or add 'owner' to config.yml."
        )

    final_repo = repo or os.getenv("GITHUB_REPO") or fb.get("repo")
    if not final_repo:
        raise ValueError(
            "GitHub repo not found. Set GITHUB_REPO environment variable, "
            "pass --repo CLI argument, or add 'repo' to config.yml."
        )

    final_branch = (
        branch or os.getenv("GITHUB_BRANCH") or fb.get("branch") or "main"
    )
    final_api_url = (
        os.getenv("GITHUB_API_URL") or fb.get("api_url") or DEFAULT_API_URL
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    def get_bool_env(key: str) -> bool | None:
        """Return True/False from env var, or None if unset."""
        val = os.getenv(key)
        if val is None:
            return None
        return val.lower() in ("true", "1", "yes", "on")

    if insecure:
        final_insecure = True
    else:
        env_insecure = get_bool_env("TREESYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = get_bool_env("TREESYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    final_max_parallel = _ranged_int(
        "TREESYNC_MAX_PARALLEL_REQUESTS",
        fb,
        "max_parallel_requests",
        5,
        1,
        100,
    )
    final_max_retries = _ranged_int(
        "TREESYNC_MAX_RETRIES", fb, "max_retries", 3, 0, 10
    )

    config = Config(
        github_token=final_token.strip(),
        owner=final_owner.strip(),
        repo=final_repo.strip(),
        branch=final_branch.strip(),
        api_url=final_api_url,
        insecure=final_insecure,
        debug=final_debug,
        max_parallel_requests=final_max_parallel,
        max_retries=final_max_retries,
    )

    validate_config(config)

    return config
