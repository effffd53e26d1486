"""mailmirror command-line interface wiring for operational flows.

What:
  Provide a Typer-based entry point exposing ``sync`` (one pass per mailbox),
  ``watch`` (repeated passes) and ``status`` (cursor and last run per
  mailbox).

Why:
  The engine only knows how to run one pass; something has to decide when
  passes run and to serialize them per mailbox. The CLI is that scheduler for
  cron jobs and long-running service units.

How:
  Load the runtime configuration, open the SQLite mirror and the status
  store, build the configured provider for every mailbox and run passes
  sequentially through :class:`~mailmirror.core.engine.SyncEngine`. Helpers in
  :mod:`mailmirror._wiring` hold intervals, backoff and construction logic.

Interfaces:
  ``app`` (Typer application), ``sync``, ``watch``, ``status``, ``main``.

Invariants & Safety:
  - Exit codes follow shell expectations (``0`` success, ``1`` failure).
  - Mailboxes are processed one at a time, so two passes never overlap on
    the same mailbox.
  - ``watch`` records failed cycles and retries with capped exponential
    backoff.
  - Run records contain counters only, never message content.
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import List, Optional

import typer

from ._wiring import (
    build_provider,
    exponential_backoff,
    mailbox_label,
    open_status_store,
    open_store,
    pass_metrics,
    resolve_interval,
)
from .config.loader import ConfigLoadError, load_runtime_config
from .config.schema import MailboxConfig, RuntimeConfig
from .config.status_store import StatusStore
from .core.engine import SyncEngine
from .core.receiver import EmailReceiver
from .store.sqlite import SqliteStore
from .utils.ids import new_run_id
from .utils.logging import get_logger


app = typer.Typer(help="mailmirror IMAP synchronization entry point")

LOGGER = logging.getLogger("mailmirror.cli")


def _load_runtime() -> RuntimeConfig:
    try:
        return load_runtime_config()
    except ConfigLoadError as exc:
        LOGGER.error("runtime_load_failed: %s", exc)
        raise typer.Exit(code=1) from exc


def _select_mailboxes(runtime: RuntimeConfig, name: Optional[str]) -> List[MailboxConfig]:
    """Return every configured mailbox, or the one matching ``name``."""

    if name is None:
        return list(runtime.mailboxes)
    try:
        return [runtime.find_mailbox(name)]
    except KeyError as exc:
        LOGGER.error("unknown_mailbox: %s", name)
        raise typer.Exit(code=1) from exc


def _sync_mailbox(
    runtime: RuntimeConfig,
    mailbox: MailboxConfig,
    *,
    store: SqliteStore,
    status_store: StatusStore,
) -> bool:
    """Run one pass for ``mailbox`` and record its outcome.

    What:
      Builds the provider and engine, runs the pass and appends a run record
      to ``status.yaml``.

    Why:
      Both ``sync`` and ``watch`` need identical bookkeeping, including for
      failed passes whose partial counters help diagnose a stuck cursor.

    How:
      Any exception from provider construction or the pass is logged and
      stored as a failed record; the caller decides on the exit code or the
      backoff.

    Returns:
      ``True`` when the pass completed.
    """

    label = mailbox_label(mailbox)
    run_id = new_run_id()
    started_at = datetime.now(timezone.utc)
    engine: Optional[SyncEngine] = None
    logger = get_logger("engine")
    try:
        record = store.get_or_create_mailbox(mailbox.name, mailbox.group)
        provider = build_provider(mailbox, runtime.sync, logger=logger.child(f"imap.{mailbox.provider}"))
        engine = SyncEngine(
            provider,
            store,
            EmailReceiver(store, logger=logger.child("receiver")),
            settings=runtime.sync,
            logger=logger,
        )
        engine.run_pass(record)
    except Exception as exc:
        status_store.save_run(
            run_id=run_id,
            mailbox=label,
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
            ok=False,
            error=str(exc),
            metrics=pass_metrics(engine),
        )
        LOGGER.error("sync_failed run_id=%s mailbox=%s error=%s", run_id, label, exc)
        return False

    metrics = pass_metrics(engine)
    status_store.save_run(
        run_id=run_id,
        mailbox=label,
        started_at=started_at,
        ended_at=datetime.now(timezone.utc),
        ok=True,
        error=None,
        metrics=metrics,
    )
    LOGGER.info(
        "sync_completed run_id=%s mailbox=%s ingested=%s failed=%s pushed=%s last_seen_uid=%s",
        run_id,
        label,
        metrics.get("ingested"),
        len(metrics.get("failed_uids", [])),
        metrics.get("pushed"),
        metrics.get("last_seen_uid"),
    )
    return True


def _sync_all(
    runtime: RuntimeConfig,
    mailboxes: List[MailboxConfig],
    *,
    store: SqliteStore,
    status_store: StatusStore,
) -> bool:
    ok = True
    for mailbox in mailboxes:
        ok = _sync_mailbox(runtime, mailbox, store=store, status_store=status_store) and ok
    return ok


@app.command("sync")
def sync(
    mailbox: Optional[str] = typer.Option(None, "--mailbox", help="Only sync this mailbox (name or group/name)"),
) -> None:
    """Run a single synchronization pass for the configured mailboxes."""

    runtime = _load_runtime()
    mailboxes = _select_mailboxes(runtime, mailbox)
    status_store = open_status_store(runtime)
    store = open_store(runtime)
    try:
        ok = _sync_all(runtime, mailboxes, store=store, status_store=status_store)
    finally:
        store.close()
    if not ok:
        raise typer.Exit(code=1)


@app.command("watch")
def watch(
    interval: Optional[int] = typer.Option(None, help="Override polling interval in seconds"),
    mailbox: Optional[str] = typer.Option(None, "--mailbox", help="Only watch this mailbox (name or group/name)"),
) -> None:
    """Continuously synchronize mailboxes.

    What:
      Runs a pass for every mailbox per cycle, sleeping the interval after a
      good cycle and a capped exponential backoff after a failed one.

    Why:
      Long-running deployments keep one process alive instead of relying on
      cron, while still recovering from outages without hammering the server.
    """

    runtime = _load_runtime()
    mailboxes = _select_mailboxes(runtime, mailbox)
    status_store = open_status_store(runtime)
    store = open_store(runtime)
    base_interval = resolve_interval(runtime=runtime, override=interval)
    failures = 0

    try:
        while True:
            if _sync_all(runtime, mailboxes, store=store, status_store=status_store):
                failures = 0
                time.sleep(base_interval)
                continue
            failures += 1
            delay = exponential_backoff(failures=failures - 1)
            LOGGER.error("watch_cycle_failed failures=%s backoff=%s", failures, delay)
            time.sleep(delay)
    except KeyboardInterrupt:
        LOGGER.info("watch_stopped")
        raise typer.Exit(code=0) from None
    finally:
        store.close()


@app.command("status")
def status() -> None:
    """Print the cursor and the last run of every configured mailbox."""

    runtime = _load_runtime()
    status_store = open_status_store(runtime)
    store = open_store(runtime)
    try:
        known = {(item.group, item.name): item for item in store.list_mailboxes()}
    finally:
        store.close()
    for mailbox in runtime.mailboxes:
        label = mailbox_label(mailbox)
        record = known.get((mailbox.group, mailbox.name))
        cursor = (
            f"uid_validity={record.uid_validity} last_seen_uid={record.last_seen_uid}"
            if record is not None
            else "never synchronized"
        )
        last = status_store.last_run(label)
        if last is None:
            run = "no runs"
        elif last.ok:
            run = f"last_run={last.ended_at} ok"
        else:
            run = f"last_run={last.ended_at} failed: {last.error}"
        typer.echo(f"{label}: {cursor}; {run}")


def main() -> None:
    """Execute the Typer application entry point."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
