"""Batch envelope codec and the bounded batch accumulator."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from docflow.app.idempotency import IdempotencyGuard
from docflow.app.ports import BlobStorePort
from docflow.errors import EnvelopeDecodeError
from docflow.utils.paths import filename_from_path, mime_type_from_name

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


class BatchItem(BaseModel):
    """Reference to one item travelling through the queue."""

    key: str = Field(..., min_length=1, description="Idempotency key (content identity)")
    uri: str = Field(..., min_length=1, description="Location the bulk operation reads")
    mime_type: str = Field(default=DEFAULT_MIME_TYPE, min_length=1)
    size: int | None = Field(default=None, ge=0, description="Byte size when known")


class BatchEnvelope(BaseModel):
    """Ordered list of item references transported as one message.

    Wire format: base64 of the JSON object ``{"items": [...]}``. Plain JSON
    arrays of URI strings are also accepted on decode; their key is the URI's
    filename.
    """

    items: list[BatchItem] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def keys(self) -> list[str]:
        return [item.key for item in self.items]

    def encode(self) -> bytes:
        payload = json.dumps(
            self.model_dump(mode="json", exclude_none=True),
            separators=(",", ":"),
            sort_keys=True,
        )
        return base64.b64encode(payload.encode("utf-8"))

    @classmethod
    def decode(cls, data: bytes | str) -> "BatchEnvelope":
        """Decode a wire message.

        Raises:
            EnvelopeDecodeError: If the data is not base64, not JSON, or not an envelope.
        """
        raw = data.encode("ascii", errors="replace") if isinstance(data, str) else data
        try:
            decoded = base64.b64decode(raw, validate=True)
            payload: Any = json.loads(decoded.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise EnvelopeDecodeError(f"undecodable batch envelope: {exc}") from exc

        if isinstance(payload, list):
            payload = {"items": [_legacy_item(entry) for entry in payload]}

        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise EnvelopeDecodeError(f"invalid batch envelope: {exc}") from exc


def _legacy_item(entry: Any) -> Any:
    if not isinstance(entry, str):
        return entry
    return {
        "key": filename_from_path(entry),
        "uri": entry,
        "mime_type": mime_type_from_name(entry) or DEFAULT_MIME_TYPE,
    }


class AdmitResult(str, Enum):
    ACCEPTED = "accepted"
    SKIPPED = "skipped"


class Batcher:
    """Accumulates admitted items into batches of at most ``max_size``.

    An item is skipped when the idempotency guard already holds a success
    marker for it, when it fails a cheap precondition (zero size, missing
    metadata), or, with ``dispatch_marks`` set, when it was pre-marked at
    publish time by an earlier run. Run-level limits belong to the caller.
    """

    def __init__(
        self,
        guard: IdempotencyGuard,
        *,
        max_size: int,
        dispatch_marks: BlobStorePort | None = None,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._guard = guard
        self._dispatch_marks = dispatch_marks
        self.max_size = max_size
        self._items: list[BatchItem] = []
        self._keys: set[str] = set()
        self.accepted = 0
        self.skipped_done = 0
        self.skipped_invalid = 0

    def __len__(self) -> int:
        return len(self._items)

    def admit(self, item: BatchItem) -> AdmitResult:
        if len(self._items) >= self.max_size:
            raise RuntimeError("batch is full; take() it before admitting more items")

        if item.size == 0 or not item.mime_type:
            self.skipped_invalid += 1
            logger.debug("skip %s: failed precondition", item.key)
            return AdmitResult.SKIPPED

        if item.key in self._keys or self._guard.exists(item.key):
            self.skipped_done += 1
            return AdmitResult.SKIPPED

        if self._dispatch_marks is not None and self._dispatch_marks.exists(item.key):
            self.skipped_done += 1
            return AdmitResult.SKIPPED

        self._items.append(item)
        self._keys.add(item.key)
        self.accepted += 1
        return AdmitResult.ACCEPTED

    def restore(self, envelope: BatchEnvelope) -> None:
        """Put a taken batch back in front of the buffer without re-admitting it."""
        restored = [item for item in envelope.items if item.key not in self._keys]
        self._items[:0] = restored
        self._keys.update(item.key for item in restored)

    def should_flush(self, *, source_exhausted: bool = False) -> bool:
        if len(self._items) >= self.max_size:
            return True
        return source_exhausted and bool(self._items)

    def take(self) -> BatchEnvelope:
        envelope = BatchEnvelope(items=list(self._items))
        self._items.clear()
        self._keys.clear()
        return envelope
