"""Content identity and the deduplication index registrar."""

from __future__ import annotations

import logging
from enum import Enum

from docflow.app.ports import ContentIndexPort, ContentMetadata, ContentRecord, decode_record
from docflow.utils.hashing import compute_sha256

logger = logging.getLogger(__name__)


class RegisterOutcome(str, Enum):
    """Result of registering a path under a content identity."""

    CREATED = "created"
    MERGED = "merged"
    UNCHANGED = "unchanged"


def identify(content: bytes) -> str:
    """Return the content identity (SHA-256 hex digest) of ``content``.

    Callers reject zero-length or unreadable content before calling this.
    """
    return compute_sha256(content)


class ContentIdentity:
    """Merge discovery paths under a content identity in the durable index.

    Two sightings of bit-identical content always land on the same record.
    Paths are kept unique and in discovery order. Store errors propagate; this
    class never retries.
    """

    def __init__(self, index: ContentIndexPort) -> None:
        self._index = index

    def identify(self, content: bytes) -> str:
        return identify(content)

    def register(
        self,
        identity: str,
        path: str,
        metadata: ContentMetadata,
    ) -> RegisterOutcome:
        """Create or extend the record for ``identity`` with ``path``."""
        existing = self._index.get(identity)

        if existing is None:
            record = ContentRecord.first_sighting(identity, path, metadata)
            self._index.put(identity, record.model_dump(mode="json"))
            logger.debug("created record %s for %s", identity, path)
            return RegisterOutcome.CREATED

        record = decode_record(existing)
        if path in record.image_paths:
            return RegisterOutcome.UNCHANGED

        record.image_paths.append(path)
        self._index.put(identity, record.model_dump(mode="json"))
        logger.debug(
            "merged %s into record %s (%d paths)", path, identity, len(record.image_paths)
        )
        return RegisterOutcome.MERGED
