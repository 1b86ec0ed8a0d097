"""Filesystem-backed single-value blob store."""

from __future__ import annotations

from pathlib import Path

from docflow.app.ports import BlobStorePort
from docflow.utils.fsio import atomic_write_text, safe_relative, store_errors


class FileSystemBlobStore(BlobStorePort):
    """One small UTF-8 file per key under ``root``.

    Keys may contain ``/`` to form sub-directories. Writes are atomic, so a
    reader never sees a partially written value.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / safe_relative(key)

    def get(self, key: str) -> str | None:
        path = self._path(key)
        with store_errors("read", path):
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        with store_errors("write", path):
            atomic_write_text(path, value)

    def exists(self, key: str) -> bool:
        path = self._path(key)
        with store_errors("stat", path):
            return path.is_file()

    def count(self) -> int:
        """Number of stored keys."""
        with store_errors("list", self.root):
            if not self.root.is_dir():
                return 0
            return sum(
                1 for path in self.root.rglob("*") if path.is_file() and not path.name.startswith(".")
            )
