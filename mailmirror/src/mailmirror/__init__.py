"""
Module: mailmirror.__init__

What:
  Aggregate package exports for the mailmirror IMAP synchronization engine and
  expose the primary namespace segments (configuration, core logic, IMAP
  providers, local store and utilities).

Why:
  Keeping the exports in one place gives the CLI and embedding applications a
  stable surface while the internal layout evolves.

Interfaces:
  - config: Configuration schema, loaders and the run status store.
  - core: Cursor, topic state mapper, message ingestion and the sync engine.
  - imap: Provider contract plus the generic and Gmail providers.
  - store: Local mirror records and the SQLite backend.
  - utils: Logging, identifiers and MIME parsing helpers.

Invariants:
  - The engine only depends on the ``imap.protocol`` and ``store.base``
    contracts; concrete providers and stores are wired by the CLI.
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "core",
    "imap",
    "store",
    "utils",
]
