"""docflow - resumable, idempotent batch pipeline for bulk document OCR.

Stages: dedupe (content identity index) → dispatch (batches onto a queue)
→ consume (rate-limited bulk OCR with idempotency markers).
"""

__version__ = "0.1.0"
__author__ = "docflow Contributors"

__all__ = ["__version__"]
