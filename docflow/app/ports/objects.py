"""Ordered object enumeration port and object attribute DTO."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol

from pydantic import BaseModel, Field


class ObjectAttrs(BaseModel):
    """Attributes of one object in the source store."""

    name: str = Field(..., description="Object name (``/``-separated path within the store)")
    size: int = Field(..., ge=0, description="Object size in bytes")
    checksum: str | None = Field(
        None, description="Store-provided checksum, when the store supplies one"
    )


class ObjectSourcePort(Protocol):
    """Port interface for glob-filtered, stably ordered object enumeration.

    Enumeration cannot seek; resuming is done by the caller skipping until the
    checkpoint name is seen again.
    """

    def list_objects(self, pattern: str) -> Iterator[ObjectAttrs]:
        """Yield objects matching ``pattern`` in a stable order."""
        ...

    def read_bytes(self, name: str) -> bytes:
        """Return the full content of object ``name``."""
        ...
