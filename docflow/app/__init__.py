"""Application layer for docflow.

Stage logic talks to durable stores, the queue and the bulk provider only
through port interfaces; concrete adapters are wired in ``docflow.bootstrap``.
"""

__all__ = [
    "Batcher",
    "BatchEnvelope",
    "BatchItem",
    "CheckpointCursor",
    "ContentIdentity",
    "DedupeService",
    "Dispatcher",
    "IdempotencyGuard",
    "IndexCandidateSource",
    "RateLimitedConsumer",
]

from docflow.app.batcher import BatchEnvelope, BatchItem, Batcher
from docflow.app.checkpoint import CheckpointCursor
from docflow.app.consumer import RateLimitedConsumer
from docflow.app.dedupe_service import DedupeService
from docflow.app.dispatcher import Dispatcher, IndexCandidateSource
from docflow.app.idempotency import IdempotencyGuard
from docflow.app.identity import ContentIdentity
