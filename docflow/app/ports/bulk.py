"""Bulk remote operation port (batch OCR)."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field

# google.rpc.Code values used by bulk providers.
STATUS_OK = 0
STATUS_INVALID_ARGUMENT = 3
STATUS_NOT_FOUND = 5
STATUS_INTERNAL = 13


class BulkDocument(BaseModel):
    """One input of a bulk request."""

    uri: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)


class ItemStatus(BaseModel):
    """Per-input outcome reported by the provider."""

    uri: str
    code: int = Field(..., description="0 = success, anything else is a failure")
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.code == STATUS_OK


class BulkOperationPort(Protocol):
    """Port interface for the bulk remote operation.

    The call blocks until the provider finishes the whole batch.
    """

    def process(self, documents: list[BulkDocument], output_uri: str) -> list[ItemStatus]:
        """Submit ``documents`` and return one status per input.

        Raises:
            BulkOperationError: If the call failed as a whole. Any per-item
                statuses the provider still reported are attached.
        """
        ...
