"""Port interfaces for the docflow application layer.

These protocol interfaces define contracts for adapters.
Stage logic depends on these ports, never on concrete implementations.
"""

__all__ = [
    "BlobStorePort",
    "BulkDocument",
    "BulkOperationPort",
    "ContentIndexPort",
    "ContentMetadata",
    "ContentRecord",
    "ItemStatus",
    "ObjectAttrs",
    "ObjectSourcePort",
    "QueueMessage",
    "QueuePort",
    "decode_record",
]

from docflow.app.ports.blobstore import BlobStorePort
from docflow.app.ports.bulk import BulkDocument, BulkOperationPort, ItemStatus
from docflow.app.ports.index import (
    ContentIndexPort,
    ContentMetadata,
    ContentRecord,
    decode_record,
)
from docflow.app.ports.objects import ObjectAttrs, ObjectSourcePort
from docflow.app.ports.queue import QueueMessage, QueuePort
