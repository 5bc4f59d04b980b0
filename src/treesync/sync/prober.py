"""Batched, best-effort local existence checks.

Probing never raises.  A failed or incomplete answer degrades to
``Existence.UNKNOWN`` and callers must treat ``UNKNOWN`` like
``EXISTS``: an unnecessary quarantine is recoverable, a lost file is not.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import Existence
from .stores import LocalStore

logger = logging.getLogger(__name__)


def assume_exists(existence: Existence) -> bool:
    """Conservative reading of a probe answer."""
    return existence is not Existence.ABSENT


class ExistenceProber:
    """Wraps ``LocalStore.stat_batch`` with the conservative fallback."""

    def __init__(self, local_store: LocalStore) -> None:
        self._store = local_store

    def probe(self, paths: Iterable[str]) -> dict[str, Existence]:
        """Check which *paths* exist locally, in one round-trip.

        Args:
            paths: Normalized paths to check.

        Returns:
            An answer for every requested path.
        """
        wanted = sorted(set(paths))
        if not wanted:
            return {}

        try:
            answers = self._store.stat_batch(wanted)
        except Exception as exc:
            logger.warning(
                "Couldn't check if some paths exist locally - "
                "conservatively treating as clash: %s",
                exc,
            )
            return {path: Existence.UNKNOWN for path in wanted}

        results: dict[str, Existence] = {}
        missing = []
        for path in wanted:
            answer = answers.get(path)
            if answer is None:
                missing.append(path)
                answer = Existence.UNKNOWN
            results[path] = answer
        if missing:
            logger.warning(
                "Existence check returned no answer for %d path(s), "
                "treating as unknown: %s",
                len(missing),
                ", ".join(missing),
            )
        return results
