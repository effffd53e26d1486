"""Generate run identifiers and stable checksums.

What:
  Provide helpers for creating unique run IDs attached to every sync pass and
  SHA-256 checksums used to derive synthetic ``Message-ID`` values.

Why:
  Keeping the formats in one place avoids subtle inconsistencies between the
  CLI run records, the engine logs and the receiver.

How:
  Combines ISO8601 timestamps with random suffixes for IDs and wraps
  ``hashlib`` with a consistent ``sha256:`` prefix for checksums.

Interfaces:
  :func:`new_run_id` and :func:`checksum`.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone


def new_run_id() -> str:
    """Return a sortable, collision resistant identifier for a run.

    Returns:
      Identifier such as ``2024-01-01T00:00:00+00:00#1a2b3c``.
    """

    timestamp = datetime.now(timezone.utc).isoformat()
    suffix = secrets.token_hex(3)
    return f"{timestamp}#{suffix}"


def checksum(data: bytes) -> str:
    """Compute a namespaced SHA-256 digest (``sha256:<hex>``) for ``data``."""

    return f"sha256:{hashlib.sha256(data).hexdigest()}"
