"""Utility modules for common operations."""

from docflow.utils.hashing import compute_sha256
from docflow.utils.paths import filename_from_path, join_uri

__all__ = [
    "compute_sha256",
    "filename_from_path",
    "join_uri",
]
