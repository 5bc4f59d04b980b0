"""
Hierarchical YAML configuration loader for treesync.

Finds config files by convention, supports ``!include`` for splitting
profiles into their own files, interpolates ``${VAR}`` references from
the environment, and merges files with "project wins" semantics.

Usage:
    from treesync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TREESYNC_CONFIG"
PROJECT_DIR = ".treesync"

# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to its default, or to ``""``
    when there is none.  A ``${`` without a closing brace is kept as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_tree(obj: Any) -> Any:
    match obj:
        case str():
            return interpolate_env_vars(obj)
        case dict():
            return {k: _interpolate_tree(v) for k, v in obj.items()}
        case list():
            return [_interpolate_tree(item) for item in obj]
        case _:
            return obj


# ---------------------------------------------------------------------------
# YAML !include support
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with ``!include``; the global SafeLoader stays untouched.

    Each loader carries the chain of files being included so that a
    file including itself, directly or not, is reported instead of
    recursing forever.
    """

    include_chain: list[Path]


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by ``!include path`` relative to the includer."""
    ref = Path(loader.construct_scalar(node)).expanduser()
    includer = Path(loader.name).resolve()
    target = (ref if ref.is_absolute() else includer.parent / ref).resolve()

    chain = loader.include_chain
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {includer})"
        )
    return load_yaml_file(target, _chain=[*chain, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def load_yaml_file(path: Path, *, _chain: list[Path] | None = None) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader.include_chain = _chain or [path]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# File discovery
# ---------------------------------------------------------------------------


def _xdg_config_home() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    return Path(xdg) if xdg else Path.home() / ".config"


def discover_config_files(explicit: Path | None = None) -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. *explicit* (``--config``), or the ``TREESYNC_CONFIG`` env var.
        2. ``.treesync/config.yml`` / ``config.yaml`` in the CWD.
        3. ``$XDG_CONFIG_HOME/treesync/config.yml`` / ``config.yaml``.

    Raises:
        FileNotFoundError: If an explicitly named file does not exist.
    """
    candidates: list[Path] = []

    named = explicit or (
        Path(os.environ[CONFIG_ENV_VAR]) if os.environ.get(CONFIG_ENV_VAR) else None
    )
    if named is not None:
        named = named.expanduser().resolve()
        if not named.exists():
            raise FileNotFoundError(f"Config file not found: {named}")
        candidates.append(named)

    for base in (Path.cwd() / PROJECT_DIR, _xdg_config_home() / "treesync"):
        candidates.append(base / "config.yml")
        candidates.append(base / "config.yaml")

    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# Starter config
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# treesync configuration
#
# Connection settings can also come from the environment:
#   GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO, GITHUB_BRANCH
#
# github:
#   token: ${GITHUB_TOKEN}
#   owner: my-user
#   repo: my-notes
#   branch: main
#   max_retries: 3
#
# sync:
#   notes:
#     local_root: ~/notes
#     state_dir: .treesync
#     quarantine_dir: _conflicts
#     device_name: laptop
#     exclude:
#       - "*.tmp"
#       - "build/"
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a starter one if none exists.

    Args:
        target: Where to create the file; defaults to
            ``CWD / .treesync / config.yml``.

    Returns:
        Path to the existing or newly created config file.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or Path.cwd() / PROJECT_DIR / "config.yml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(explicit: Path | None = None) -> dict[str, Any]:
    """Load and merge every discovered config file.

    Files are applied from lowest to highest precedence; top-level keys
    of a higher-precedence file **replace** those of lower ones.  Env
    var interpolation runs once on the merged result.

    Returns:
        The merged dict; empty when no config file exists.
    """
    paths = discover_config_files(explicit)
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = load_yaml_file(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_tree(merged)
