"""Structured JSON logging for the synchronization engine.

What:
  Offer a small facade over a text stream so the engine and the IMAP providers
  emit one JSON object per line with consistent fields and automatic removal
  of message content and credentials.

Why:
  Sync passes run unattended from cron or the ``watch`` loop. Operators grep
  the logs to find out why a cursor did not move or why a topic flipped its
  archived state; a fixed layout keeps that trivial while making sure raw
  message bytes and passwords never reach shared log storage.

How:
  :class:`JsonLogger` stamps every entry with an ISO8601 timestamp, severity
  and component name, merges a recursively redacted copy of the keyword
  arguments, and flushes the stream after each line.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`.

Invariants & Safety:
  - Keys listed in :data:`SENSITIVE_KEYS` are replaced with ``[redacted]`` at
    any nesting depth.
  - Values that are not JSON serialisable (sets, bytes, enums) are rendered
    through ``str`` instead of raising inside a sync pass.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"body", "raw", "password", "subject"})


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Emits single-line JSON log entries that include timestamps, severity, a
      component tag and optional supplemental fields.

    Why:
      Sharing one logger type between the engine, providers and receiver keeps
      the schema uniform for dashboards and for test assertions that parse
      the captured stream.

    How:
      Stores the destination stream and component label and exposes
      :meth:`log` plus the :meth:`debug`, :meth:`info`, :meth:`warning` and
      :meth:`error` shortcuts.
    """

    stream: Any = field(default_factory=lambda: sys.stdout)
    component: str = "mailmirror"

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Serialise ``message`` and ``extra`` as one JSON line.

        Args:
          level: Severity name (``"info"``, ``"WARN"``...), upper-cased on output.
          message: Event name, e.g. ``"pass_completed"``.
          extra: Context fields, redacted recursively before serialisation.
        """

        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            payload.update(self._redact(extra))
        json.dump(payload, self.stream, separators=(",", ":"), default=str)
        self.stream.write("\n")
        self.stream.flush()

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("ERROR", message, extra=kwargs)

    def child(self, component: str) -> "JsonLogger":
        """Return a logger writing to the same stream under ``component``."""

        return JsonLogger(stream=self.stream, component=component)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``data`` with sensitive values masked.

        What:
          Walks the mapping and replaces values stored under
          :data:`SENSITIVE_KEYS` with the ``[redacted]`` sentinel.

        Why:
          Raw RFC 822 payloads and server passwords flow through the same call
          sites as UIDs and counters; masking at the logger keeps individual
          call sites simple.

        How:
          Recurse into nested dictionaries, keep every other value untouched.

        Args:
          data: Arbitrary metadata to sanitise.

        Returns:
          A sanitised shallow copy of ``data``.
        """

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS:
                result[key] = REDACTED
            elif isinstance(value, dict):
                result[key] = JsonLogger._redact(value)
            else:
                result[key] = value
        return result


def get_logger(component: str) -> JsonLogger:
    """Construct a :class:`JsonLogger` bound to ``component`` on ``stdout``."""

    return JsonLogger(component=component)
