"""Hashing utilities for content identity."""

import hashlib

SHA256_HEX_LENGTH = 64


def compute_sha256(content: bytes) -> str:
    """Compute SHA-256 hash of content.

    Args:
        content: Bytes to hash

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(content).hexdigest()


def is_sha256_hex(value: str) -> bool:
    """Return True when ``value`` looks like a lowercase SHA-256 hex digest."""
    if len(value) != SHA256_HEX_LENGTH:
        return False
    return all(ch in "0123456789abcdef" for ch in value)
