"""Concrete adapters wiring application ports to local implementations."""

from __future__ import annotations

from .blobstore import FileSystemBlobStore
from .index import FileSystemContentIndex
from .objects import FileSystemObjectSource
from .queue import DirectoryMessage, DirectoryQueue
from .tesseract_bulk import TesseractBulkOCRAdapter

__all__ = [
    "DirectoryMessage",
    "DirectoryQueue",
    "FileSystemBlobStore",
    "FileSystemContentIndex",
    "FileSystemObjectSource",
    "TesseractBulkOCRAdapter",
]
