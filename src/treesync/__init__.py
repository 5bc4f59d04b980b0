"""Keep a local file tree and a GitHub branch in sync."""

__version__ = "0.3.0"
