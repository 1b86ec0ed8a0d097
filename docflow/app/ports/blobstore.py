"""Durable single-value blob store port."""

from typing import Protocol


class BlobStorePort(Protocol):
    """Port interface for a durable key → small value store.

    One object per key (a bucket object, a file, a row). Used for stage
    checkpoints and for idempotency markers.

    Adapters raise ``StoreAccessDenied`` for permission failures and
    ``TransientStoreError`` for recoverable I/O failures. A missing key is not
    an error.
    """

    def get(self, key: str) -> str | None:
        """Return the stored value, or ``None`` when ``key`` is absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Create or overwrite ``key`` with ``value``."""
        ...

    def exists(self, key: str) -> bool:
        """Return True when ``key`` is present (value is irrelevant)."""
        ...
