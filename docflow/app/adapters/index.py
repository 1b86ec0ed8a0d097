"""Filesystem-backed content index."""

from __future__ import annotations

import bisect
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from docflow.app.ports import ContentIndexPort
from docflow.errors import RecordDecodeError
from docflow.utils.fsio import atomic_write_text, store_errors
from docflow.utils.hashing import compute_sha256

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


class FileSystemContentIndex(ContentIndexPort):
    """Content records as ``records/<identity>.json`` plus a ProcessedMarker namespace.

    ProcessedMarkers live in ``processed/<sha256(path)>.json`` so arbitrary
    source paths map to flat file names.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.records_dir = self.root / "records"
        self.processed_dir = self.root / "processed"

    def _record_path(self, identity: str) -> Path:
        if not identity or "/" in identity or identity.startswith("."):
            raise ValueError(f"invalid identity: {identity!r}")
        return self.records_dir / f"{identity}{RECORD_SUFFIX}"

    def _marker_path(self, path: str) -> Path:
        return self.processed_dir / f"{compute_sha256(path.encode('utf-8'))}{RECORD_SUFFIX}"

    def get(self, identity: str) -> dict[str, Any] | None:
        record_path = self._record_path(identity)
        with store_errors("read", record_path):
            try:
                raw = record_path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
        return _load_document(identity, raw)

    def put(self, identity: str, document: Mapping[str, Any]) -> None:
        record_path = self._record_path(identity)
        payload = json.dumps(dict(document), separators=(",", ":"), sort_keys=True)
        with store_errors("write", record_path):
            atomic_write_text(record_path, payload)

    def query(self, *, start_after: str = "", limit: int) -> list[tuple[str, dict[str, Any]]]:
        identities = self._sorted_identities()
        start = bisect.bisect_right(identities, start_after) if start_after else 0

        results: list[tuple[str, dict[str, Any]]] = []
        for identity in identities[start:]:
            if len(results) >= limit:
                break
            try:
                document = self.get(identity)
            except RecordDecodeError as exc:
                logger.warning("%s", exc)
                # Surfaces as a per-record decode error to the caller.
                document = {"hash": identity}
            if document is None:
                # Removed between listing and read.
                continue
            results.append((identity, document))
        return results

    def is_processed(self, path: str) -> bool:
        marker = self._marker_path(path)
        with store_errors("stat", marker):
            return marker.is_file()

    def mark_processed(self, path: str, identity: str) -> None:
        marker = self._marker_path(path)
        payload = json.dumps({"path": path, "hash": identity}, separators=(",", ":"), sort_keys=True)
        with store_errors("write", marker):
            atomic_write_text(marker, payload)

    def count(self) -> int:
        return len(self._sorted_identities())

    def _sorted_identities(self) -> list[str]:
        with store_errors("list", self.records_dir):
            if not self.records_dir.is_dir():
                return []
            return sorted(
                entry.name[: -len(RECORD_SUFFIX)]
                for entry in self.records_dir.iterdir()
                if entry.is_file() and entry.name.endswith(RECORD_SUFFIX)
                and not entry.name.startswith(".")
            )


def _load_document(identity: str, raw: str) -> dict[str, Any]:
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RecordDecodeError(f"corrupt index document {identity}: {exc}") from exc
    if not isinstance(document, dict):
        raise RecordDecodeError(f"index document {identity} is not an object")
    return document
