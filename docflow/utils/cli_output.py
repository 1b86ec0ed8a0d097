"""Minimal CLI JSON output wrapper.

Wraps command JSON outputs with schema metadata (schema_id, schema_version,
producer, produced_at) so downstream tooling can route them.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from docflow import __version__


def json_response(
    schema_id: str,
    schema_version: int,
    **data: Any,
) -> str:
    """Create schema-wrapped JSON response for CLI output.

    Example:
        >>> json_response("dispatch_summary", 1, batches=2)
        {
          "schema_id": "dispatch_summary",
          "schema_version": 1,
          "producer": "docflow-0.1.0",
          "produced_at": "2025-12-12T10:30:00+00:00",
          "batches": 2
        }
    """
    wrapped = {
        "schema_id": schema_id,
        "schema_version": schema_version,
        "producer": f"docflow-{__version__}",
        "produced_at": datetime.now(UTC).isoformat(),
        **data,
    }
    return json.dumps(wrapped, indent=2, default=str)
