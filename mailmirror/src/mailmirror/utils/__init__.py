"""Expose the public utility surface for mailmirror.

What:
  Re-export logging, identifier and MIME helpers that other packages import
  without knowing the underlying module layout.

Interfaces:
  ``JsonLogger``, ``get_logger``, ``new_run_id``, ``checksum``,
  ``parse_message``.
"""

from .ids import checksum, new_run_id
from .logging import JsonLogger, get_logger
from .mime import parse_message

__all__ = [
    "JsonLogger",
    "get_logger",
    "new_run_id",
    "checksum",
    "parse_message",
]
