"""Resumable checkpoint cursor over a forward-only enumeration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docflow.app.ports import BlobStorePort

logger = logging.getLogger(__name__)


def should_skip(candidate: str, cursor: str, reached: bool) -> bool:
    """Return True while enumeration has not yet reached ``cursor``.

    Skipping stops at the first candidate equal to ``cursor`` (or immediately
    when ``cursor`` is empty). Callers flip ``reached`` to True on the first
    False result and never skip again in that run.
    """
    if reached or not cursor:
        return False
    return candidate != cursor


@dataclass
class CheckpointGate:
    """Holds the per-run ``reached`` flag for :func:`should_skip`.

    ``skipped`` counts candidates dropped before the checkpoint was reached.
    """

    cursor: str
    reached: bool = False
    skipped: int = 0

    def __post_init__(self) -> None:
        if not self.cursor:
            self.reached = True

    def should_skip(self, candidate: str) -> bool:
        if should_skip(candidate, self.cursor, self.reached):
            self.skipped += 1
            return True
        if not self.reached:
            logger.info("checkpoint %s reached after %d skipped", self.cursor, self.skipped)
        self.reached = True
        return False


class CheckpointCursor:
    """Durable single-value bookmark for one pipeline stage.

    ``advance`` must only be called once the work for every key up to and
    including the new value has been durably committed downstream.
    """

    def __init__(self, store: BlobStorePort, *, stage: str, key: str | None = None) -> None:
        self._store = store
        self.stage = stage
        self._key = key or stage
        self._current: str | None = None

    def read(self) -> str:
        """Return the stored cursor, initialising it to empty on first use."""
        value = self._store.get(self._key)
        if value is None:
            self._store.set(self._key, "")
            value = ""
        self._current = value
        logger.info("(%s checkpoint) %s", self.stage, value or "<start>")
        return value

    def advance(self, new_cursor: str) -> bool:
        """Persist ``new_cursor``; returns False when it equals the stored value."""
        if self._current is not None and new_cursor == self._current:
            return False
        self._store.set(self._key, new_cursor)
        self._current = new_cursor
        logger.info("(%s checkpoint) next: %s", self.stage, new_cursor)
        return True

    def reset(self) -> None:
        """Clear the cursor so the next run starts from the beginning."""
        self._store.set(self._key, "")
        self._current = ""

    def gate(self) -> CheckpointGate:
        """Read the cursor and return a fresh per-run skip gate."""
        return CheckpointGate(cursor=self.read())
