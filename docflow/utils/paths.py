"""Path and URI helpers shared by the stages."""

from __future__ import annotations

import mimetypes
from pathlib import PurePosixPath


def filename_from_path(path: str) -> str:
    """Return the last ``/``-separated component of an object path or URI."""
    return path.rsplit("/", 1)[-1]


def join_uri(prefix: str, path: str) -> str:
    """Join an object path onto a URI prefix such as ``gs://bucket/`` or ``file:///srv/images/``."""
    if not prefix:
        return path
    if not prefix.endswith("/"):
        prefix += "/"
    return prefix + path.lstrip("/")


def mime_type_from_name(name: str) -> str | None:
    """Best-effort MIME type from the object name's extension."""
    suffix = PurePosixPath(name).suffix.lower()
    if not suffix:
        return None
    mime_type, _ = mimetypes.guess_type(f"object{suffix}")
    return mime_type
