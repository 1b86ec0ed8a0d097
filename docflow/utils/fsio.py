"""Filesystem helpers used by the local adapters."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from docflow.errors import StoreAccessDenied, TransientStoreError


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Write ``content`` to ``path`` atomically (temp file + replace)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(temp_fd, "wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        if Path(temp_path).exists():
            Path(temp_path).unlink()
        raise


def atomic_write_text(path: Path, content: str) -> None:
    atomic_write_bytes(path, content.encode("utf-8"))


@contextmanager
def store_errors(action: str, target: object) -> Iterator[None]:
    """Translate ``OSError`` into the store error taxonomy.

    ``PermissionError`` becomes :class:`StoreAccessDenied`; any other
    ``OSError`` becomes :class:`TransientStoreError`.
    """
    try:
        yield
    except PermissionError as exc:
        raise StoreAccessDenied(f"permission denied to {action} {target}: {exc}") from exc
    except OSError as exc:
        raise TransientStoreError(f"failed to {action} {target}: {exc}") from exc


def safe_relative(key: str) -> Path:
    """Return ``key`` as a relative path, rejecting absolute or escaping keys.

    Raises:
        ValueError: If ``key`` is empty, absolute, or contains ``..``.
    """
    if not key:
        raise ValueError("key must not be empty")
    relative = Path(key)
    if relative.is_absolute() or ".." in relative.parts:
        raise ValueError(f"invalid key: {key!r}")
    return relative
