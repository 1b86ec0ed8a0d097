"""Content index port, ContentRecord DTO and the index decode boundary."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError, field_validator

from docflow.errors import RecordDecodeError
from docflow.utils.hashing import is_sha256_hex


class ContentMetadata(BaseModel):
    """Metadata captured on first sighting of a piece of content."""

    mime_type: str = Field(..., min_length=1, description="MIME type derived from the name")
    width: int = Field(..., ge=0, description="Image width in pixels")
    height: int = Field(..., ge=0, description="Image height in pixels")
    size: int = Field(..., ge=0, description="Content size in bytes")


class ContentRecord(BaseModel):
    """One unique piece of content and every path it was discovered under."""

    hash: str = Field(..., description="SHA-256 content identity (64 hex chars)")
    mime_type: str = Field(..., min_length=1)
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)
    pixels: int = Field(..., ge=0, description="width * height")
    size: int = Field(..., ge=0, description="Content size in bytes")
    image_paths: list[str] = Field(
        ..., min_length=1, description="Source paths in discovery order, unique"
    )

    @field_validator("hash")
    @classmethod
    def _validate_hash(cls, value: str) -> str:
        if not is_sha256_hex(value):
            raise ValueError("hash must be a 64-character lowercase hex SHA-256 digest")
        return value

    @field_validator("image_paths")
    @classmethod
    def _validate_paths(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("image_paths must not contain duplicates")
        return value

    @classmethod
    def first_sighting(
        cls, identity: str, path: str, metadata: ContentMetadata
    ) -> "ContentRecord":
        return cls(
            hash=identity,
            mime_type=metadata.mime_type,
            width=metadata.width,
            height=metadata.height,
            pixels=metadata.width * metadata.height,
            size=metadata.size,
            image_paths=[path],
        )


def decode_record(document: Mapping[str, Any]) -> ContentRecord:
    """Validate a raw index document into a ``ContentRecord``.

    Raises:
        RecordDecodeError: If the document does not match the schema.
    """
    try:
        return ContentRecord.model_validate(dict(document))
    except ValidationError as exc:
        ident = document.get("hash", "<unknown>") if isinstance(document, Mapping) else "<unknown>"
        raise RecordDecodeError(f"invalid content record {ident}: {exc}") from exc


class ContentIndexPort(Protocol):
    """Port interface for the durable content index.

    Documents are schemaless mappings; callers decode them with
    :func:`decode_record`. The index also owns ProcessedMarkers, which map a
    source path to the identity it was registered under.
    """

    def get(self, identity: str) -> dict[str, Any] | None:
        """Return the raw document for ``identity`` or ``None``."""
        ...

    def put(self, identity: str, document: Mapping[str, Any]) -> None:
        """Create or overwrite the document for ``identity``."""
        ...

    def query(self, *, start_after: str = "", limit: int) -> list[tuple[str, dict[str, Any]]]:
        """Return up to ``limit`` ``(identity, document)`` pairs ordered by identity.

        Only identities strictly greater than ``start_after`` are returned.
        """
        ...

    def is_processed(self, path: str) -> bool:
        """Return True when a ProcessedMarker exists for ``path``."""
        ...

    def mark_processed(self, path: str, identity: str) -> None:
        """Record that ``path`` has been registered under ``identity``."""
        ...
