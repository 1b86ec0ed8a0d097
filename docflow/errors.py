"""Error taxonomy shared by every pipeline stage.

Fatal errors (configuration, permission) abort the process. Transient errors
are logged and the current item or batch is skipped or retried on the next
loop iteration.
"""

from __future__ import annotations


class DocflowError(Exception):
    """Base class for all docflow errors."""


class ConfigurationError(DocflowError):
    """Raised at startup when required configuration is missing or invalid."""

    def __init__(self, message: str, *, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class StoreAccessDenied(DocflowError):
    """Raised when a durable store refuses access. Retrying cannot succeed."""


class TransientStoreError(DocflowError):
    """Raised for recoverable durable-store failures (timeouts, I/O hiccups)."""


class RecordDecodeError(DocflowError, ValueError):
    """Raised when an index document does not match the ContentRecord schema."""


class CheckpointNotFoundError(DocflowError):
    """Raised when a stored checkpoint does not exist in the enumerated source."""


class EnvelopeDecodeError(DocflowError, ValueError):
    """Raised when an inbound batch message cannot be decoded."""


class PublishError(DocflowError):
    """Raised when a batch could not be published to the queue."""


class BulkOperationError(DocflowError):
    """Raised when the bulk remote operation fails as a whole.

    ``statuses`` carries any per-item results the provider still reported.
    """

    def __init__(self, message: str, *, statuses: list | None = None) -> None:
        super().__init__(message)
        self.statuses = list(statuses or [])


FATAL_ERRORS: tuple[type[DocflowError], ...] = (ConfigurationError, StoreAccessDenied)
