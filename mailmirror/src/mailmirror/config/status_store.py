"""Run status persistence for the sync scheduler.

What:
  Provide a filesystem-backed accessor for ``status.yaml`` holding the recent
  pass outcomes per mailbox (run id, timings, ok/error, metrics).

Why:
  The CLI is the scheduler of this project: operators and monitoring need to
  know when a mailbox last synced, whether it failed, and where its cursor
  stands, without opening the SQLite store. Passes themselves are idempotent,
  so this document is purely informational.

How:
  Wrap :func:`~mailmirror.config.loader.load_status` and
  :func:`~mailmirror.config.loader.dump_status`. Every write is a
  load-modify-save cycle; the history is trimmed to ``history_limit`` records.

Interfaces:
  ``StatusStore`` exposing ``load``, ``save``, ``save_run`` and ``last_run``.

Invariants & Safety:
  - ``status.yaml`` is recreated empty when absent.
  - No message content is ever written; only counters and error strings.
"""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

from .loader import dump_status, load_status
from .schema import RunMetrics, RunRecord, StatusDocument


class StatusStore:
    """High-level wrapper for the status document on disk."""

    def __init__(self, path: Path, *, history_limit: int = 50):
        """Create a status store that writes to ``path``.

        Args:
          path: Location of ``status.yaml``; parents are created.
          history_limit: Number of run records kept across all mailboxes.
        """
        self._path = Path(path)
        self._history_limit = history_limit
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self.save(StatusDocument())

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StatusDocument:
        """Load the current document, recreating it when the file vanished."""
        try:
            return load_status(self._path.read_bytes())
        except FileNotFoundError:
            document = StatusDocument()
            self.save(document)
            return document

    def save(self, document: StatusDocument) -> None:
        self._path.write_bytes(dump_status(document))

    def save_run(
        self,
        *,
        run_id: str,
        mailbox: str,
        started_at: datetime,
        ended_at: datetime,
        ok: bool,
        error: Optional[str],
        metrics: Mapping[str, Any],
    ) -> RunRecord:
        """Append one pass outcome and trim the history.

        What:
          Records the run as a :class:`RunRecord`.

        Why:
          ``mailmirror status`` and external monitoring read the last record
          per mailbox to decide whether a mailbox is healthy.

        How:
          Load the document, append the validated record, keep the newest
          ``history_limit`` entries and save.

        Returns:
          The stored record.
        """
        record = RunRecord(
            run_id=run_id,
            mailbox=mailbox,
            started_at=started_at.isoformat(),
            ended_at=ended_at.isoformat(),
            ok=ok,
            error=error,
            metrics=RunMetrics(**dict(metrics)),
        )
        document = self.load()
        document.runs.append(record)
        document.runs = document.runs[-self._history_limit:]
        self.save(document)
        return record

    def last_run(self, mailbox: str) -> Optional[RunRecord]:
        return self.load().last_run(mailbox)
