"""Filesystem-backed ordered object enumeration."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

from docflow.app.ports import ObjectAttrs, ObjectSourcePort
from docflow.utils.fsio import safe_relative, store_errors


class FileSystemObjectSource(ObjectSourcePort):
    """Enumerate files under ``root`` in sorted name order.

    Object names are POSIX paths relative to ``root``. Checksums are not
    provided; callers hash the content themselves.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def list_objects(self, pattern: str) -> Iterator[ObjectAttrs]:
        if not self.root.is_dir():
            raise FileNotFoundError(f"Source directory not found: {self.root}")

        with store_errors("list", self.root):
            paths = sorted(
                path for path in self.root.glob(pattern) if path.is_file()
            )

        for path in paths:
            name = path.relative_to(self.root).as_posix()
            with store_errors("stat", path):
                try:
                    size = path.stat().st_size
                except FileNotFoundError:
                    # Removed after listing.
                    continue
            yield ObjectAttrs(name=name, size=size)

    def read_bytes(self, name: str) -> bytes:
        path = self.root / safe_relative(name)
        with store_errors("read", path):
            return path.read_bytes()
