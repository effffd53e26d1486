"""mailmirror.core.engine

What:
  Run one bidirectional synchronization pass between a remote IMAP folder and
  the local mirror: validate the epoch, reconcile a sample of already-seen
  messages, ingest a bounded batch of new ones, persist the cursor, then push
  local topic edits back as flag and label deltas.

Why:
  Passes run unattended and repeatedly. They must never ingest a message
  twice, never lose a message that failed to ingest, and survive UIDVALIDITY
  changes. Centralising the orchestration keeps these guarantees in one place
  regardless of the caller (``sync`` command, ``watch`` loop or tests).

How:
  - Load the persisted cursor, validate it against the server epoch and
    partition the server UIDs around ``last_seen_uid``.
  - Sample old UIDs with an injectable :class:`random.Random` and take the
    lowest new UIDs, bounding network and database work per pass.
  - Feed each message to :class:`~mailmirror.core.mapper.TopicStateMapper`;
    new messages go through :func:`~mailmirror.core.receiver.ingest` first and
    the cursor is folded over the results.
  - Write the cursor once, then drain the mirrors flagged ``sync_enabled``.

Interfaces:
  - :class:`PassState` and :class:`PassStats` describing a pass.
  - :class:`SyncEngine` with :meth:`SyncEngine.run_pass`.

Invariants & Safety:
  - The provider connection is released even when the pass fails.
  - Only :class:`~mailmirror.core.receiver.ProcessingError` is recovered;
    provider errors end the pass in :attr:`PassState.FAILED` and propagate.
  - ``last_seen_uid`` never passes a UID whose ingestion failed.
  - Read-only mode issues no ``store`` command.
"""
from __future__ import annotations

import enum
import random
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence

from ..config.schema import SyncSettings
from ..imap.protocol import FetchField, Provider
from ..store.base import Store
from ..store.models import Mailbox
from ..utils.logging import JsonLogger, get_logger
from .cursor import Cursor, partition_uids, select_batches
from .mapper import TopicStateMapper
from .receiver import IngestResult, Receiver, ingest


class PassState(str, enum.Enum):
    """States a pass moves through; any state may fall to ``FAILED``."""

    IDLE = "idle"
    CONNECTED = "connected"
    VALIDATING_EPOCH = "validating_epoch"
    CURSOR_RESET = "cursor_reset"
    PULLING_OLD = "pulling_old"
    PULLING_NEW = "pulling_new"
    CURSOR_PERSISTED = "cursor_persisted"
    PUSHING_LOCAL = "pushing_local"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PassStats:
    """Summary of one pass.

    Attributes:
      state: Last state reached.
      uid_validity: Server epoch seen by the pass.
      last_seen_uid: Cursor position after the pass.
      cursor_reset: Whether the epoch changed and the cursor restarted at 0.
      old_checked: Old messages fetched for reconciliation.
      old_updated: Old messages whose topic changed.
      new_fetched: New messages fetched with their body.
      ingested: New messages ingested successfully.
      failed_uids: New UIDs whose ingestion failed.
      pushed: Mirrors pushed back to the server.
      elapsed_s: Wall time of the pass.
    """

    state: PassState = PassState.IDLE
    uid_validity: int = 0
    last_seen_uid: int = 0
    cursor_reset: bool = False
    old_checked: int = 0
    old_updated: int = 0
    new_fetched: int = 0
    ingested: int = 0
    failed_uids: List[int] = field(default_factory=list)
    pushed: int = 0
    elapsed_s: float = 0.0

    def as_metrics(self) -> Dict[str, object]:
        """Counters without the state, shaped like a status run record."""

        data = asdict(self)
        data.pop("state")
        return data


class SyncEngine:
    """Orchestrate synchronization passes for mailboxes of one provider.

    What:
      Binds a provider, a store and a receiver and runs passes against them.

    Why:
      The engine depends on protocols only, so tests drive it with in-memory
      fakes and the CLI with ``imapclient``-backed providers.

    How:
      :meth:`run_pass` walks the :class:`PassState` machine, logging every
      transition as ``pass_state``. The stats of the latest pass stay
      available as :attr:`last_stats`, including for failed passes.

    Attributes:
      last_stats: :class:`PassStats` of the most recent pass, if any.
    """

    def __init__(
        self,
        provider: Provider,
        store: Store,
        receiver: Receiver,
        *,
        settings: Optional[SyncSettings] = None,
        logger: Optional[JsonLogger] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """Prepare the engine.

        Args:
          provider: Server adapter.
          store: Local mirror.
          receiver: Converts new messages into mirrors.
          settings: Batch sizes and read-only/tagging switches.
          logger: Structured logger.
          rng: Random source for old-UID sampling.
        """

        self._provider = provider
        self._store = store
        self._receiver = receiver
        self._settings = settings or SyncSettings()
        self._logger = logger or get_logger("engine")
        self._rng = rng or random.Random()
        self._mapper = TopicStateMapper(provider, store, logger=self._logger.child("mapper"))
        self.last_stats: Optional[PassStats] = None

    def run_pass(self, mailbox: Mailbox) -> PassStats:
        """Run one inbound and outbound reconciliation for ``mailbox``.

        What:
          Executes the full pass and returns its :class:`PassStats`.

        Why:
          Callers schedule passes; everything between connecting and
          disconnecting belongs to the engine so the cursor can only be written
          at one well-defined point.

        How:
          Connect, validate the epoch, pull old then new messages, persist
          the cursor, push local edits, disconnect in ``finally``.

        Args:
          mailbox: Store record carrying the persisted cursor.

        Returns:
          Statistics of the completed pass.

        Raises:
          Exception: Any provider or store error; the pass is marked
            ``FAILED`` and the previously persisted cursor is kept.
        """

        stats = PassStats()
        self.last_stats = stats
        started = time.monotonic()
        try:
            self._provider.connect()
            try:
                self._run(mailbox, stats)
            finally:
                self._provider.disconnect()
        except Exception as exc:
            stats.elapsed_s = round(time.monotonic() - started, 3)
            self._transition(mailbox, stats, PassState.FAILED)
            self._logger.error(
                "pass_failed",
                mailbox=mailbox.name,
                group=mailbox.group,
                error=f"{type(exc).__name__}: {exc}",
            )
            raise
        stats.elapsed_s = round(time.monotonic() - started, 3)
        self._logger.info("pass_completed", mailbox=mailbox.name, group=mailbox.group, **stats.as_metrics())
        return stats

    def _run(self, mailbox: Mailbox, stats: PassStats) -> None:
        self._transition(mailbox, stats, PassState.CONNECTED)
        status = self._provider.open_mailbox(mailbox.name, writable=False)

        self._transition(mailbox, stats, PassState.VALIDATING_EPOCH)
        cursor = Cursor(uid_validity=mailbox.uid_validity, last_seen_uid=mailbox.last_seen_uid)
        if not cursor.matches(status.uid_validity):
            self._logger.warning(
                "uid_validity_mismatch",
                mailbox=mailbox.name,
                stored=cursor.uid_validity,
                server=status.uid_validity,
                last_seen_uid=cursor.last_seen_uid,
            )
            stats.cursor_reset = True
            self._transition(mailbox, stats, PassState.CURSOR_RESET)
        cursor = cursor.validate(status.uid_validity)
        stats.uid_validity = cursor.uid_validity

        server_uids = self._provider.list_uids()
        old, new = partition_uids(server_uids, cursor.last_seen_uid)
        old_batch, new_batch = select_batches(
            old,
            new,
            old_sample_size=self._settings.old_sample_size,
            new_batch_size=self._settings.new_batch_size,
            rng=self._rng,
        )
        self._logger.debug(
            "uids_partitioned",
            mailbox=mailbox.name,
            old=len(old),
            new=len(new),
            old_batch=len(old_batch),
            new_batch=len(new_batch),
        )

        self._transition(mailbox, stats, PassState.PULLING_OLD)
        self._pull_old(mailbox, cursor, old_batch, stats)

        self._transition(mailbox, stats, PassState.PULLING_NEW)
        cursor = self._pull_new(mailbox, cursor, new_batch, stats)

        self._store.save_cursor(mailbox.id, cursor.uid_validity, cursor.last_seen_uid)
        stats.last_seen_uid = cursor.last_seen_uid
        self._transition(mailbox, stats, PassState.CURSOR_PERSISTED)

        if self._settings.read_only:
            self._logger.info("outbound_skipped", mailbox=mailbox.name, reason="read_only")
        else:
            self._transition(mailbox, stats, PassState.PUSHING_LOCAL)
            caught_up = cursor.last_seen_uid >= max(server_uids, default=0)
            self._push_local(mailbox, cursor, stats, caught_up=caught_up)
        self._transition(mailbox, stats, PassState.DONE)

    def _pull_old(self, mailbox: Mailbox, cursor: Cursor, uids: Sequence[int], stats: PassStats) -> None:
        """Reconcile flags and labels of already ingested messages."""

        if not uids:
            return
        messages = self._provider.fetch(uids, FetchField.METADATA)
        for uid in uids:
            message = messages.get(uid)
            if message is None:
                continue
            stats.old_checked += 1
            incoming = self._store.find_incoming(mailbox.id, cursor.uid_validity, uid)
            if self._mapper.apply_inbound(incoming, message, mailbox_name=mailbox.name):
                stats.old_updated += 1

    def _pull_new(self, mailbox: Mailbox, cursor: Cursor, uids: Sequence[int], stats: PassStats) -> Cursor:
        """Ingest new messages in ascending order and advance the cursor.

        A UID that vanished between search and fetch counts as processed: it
        will not come back under this epoch.
        """

        if not uids:
            return cursor
        messages = self._provider.fetch(uids, FetchField.FULL)
        stats.new_fetched = len(messages)
        results: List[IngestResult] = []
        for uid in sorted(uids):
            message = messages.get(uid)
            if message is None:
                self._logger.warning("message_vanished", mailbox=mailbox.name, uid=uid)
                results.append(IngestResult(uid=uid))
                continue
            result = ingest(
                self._receiver,
                message,
                mailbox=mailbox,
                uid_validity=cursor.uid_validity,
                logger=self._logger,
            )
            results.append(result)
            if not result.ok:
                stats.failed_uids.append(uid)
                continue
            stats.ingested += 1
            self._mapper.apply_inbound(result.incoming, message, mailbox_name=mailbox.name)
        return cursor.advance(results)

    def _push_local(self, mailbox: Mailbox, cursor: Cursor, stats: PassStats, *, caught_up: bool = False) -> None:
        """Send local topic edits back as flag and label deltas.

        Mirrors from an earlier epoch are left pending while the current
        epoch is still being ingested: their UID no longer designates the
        same message, and ingestion rebinds them by ``Message-ID``. Once every
        server UID has been ingested (``caught_up``) an unbound stale mirror
        refers to a message that is gone, so its pending edit is dropped.
        ``sync_enabled`` is cleared only after both stores succeeded.
        """

        if not self._settings.tagging_enabled:
            self._logger.info("outbound_skipped", mailbox=mailbox.name, reason="tagging_disabled")
            return
        pending = self._store.pending_sync(mailbox.id)
        if not pending:
            return
        self._provider.open_mailbox(mailbox.name, writable=True)
        for incoming in pending:
            if incoming.uid_validity != cursor.uid_validity:
                if caught_up:
                    self._store.clear_sync(incoming.id)
                    self._logger.warning(
                        "outbound_stale_dropped",
                        mailbox=mailbox.name,
                        uid=incoming.uid,
                        uid_validity=incoming.uid_validity,
                    )
                else:
                    self._logger.debug("outbound_stale_epoch", mailbox=mailbox.name, uid=incoming.uid)
                continue
            remote = self._provider.fetch([incoming.uid], FetchField.METADATA).get(incoming.uid)
            if remote is None:
                self._logger.warning("outbound_missing", mailbox=mailbox.name, uid=incoming.uid)
                continue
            topic = self._store.get_topic(incoming.topic_id)
            flags, labels = self._mapper.outbound_state(topic)
            self._provider.store(incoming.uid, FetchField.FLAGS, remote.flags, flags)
            self._provider.store(incoming.uid, FetchField.LABELS, remote.labels, labels)
            self._store.clear_sync(incoming.id)
            stats.pushed += 1
            self._logger.info("outbound_pushed", mailbox=mailbox.name, uid=incoming.uid, flags=flags, labels=labels)

    def _transition(self, mailbox: Mailbox, stats: PassStats, state: PassState) -> None:
        stats.state = state
        self._logger.info("pass_state", mailbox=mailbox.name, state=state.value)
