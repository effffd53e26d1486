"""Message ingestion: turn fetched RFC 822 bytes into local posts.

What:
  Define the :class:`Receiver` contract, the explicit :class:`IngestResult`
  returned per message, the :func:`ingest` adapter that is the only place a
  :class:`ProcessingError` becomes a failed result, and :class:`EmailReceiver`,
  the default receiver that threads messages into topics.

Why:
  A malformed message must not abort a pass, yet the cursor must not move past
  it either. Returning a value per message lets the engine fold the batch into
  a cursor position (see :meth:`mailmirror.core.cursor.Cursor.advance`) instead
  of relying on control flow.

How:
  :class:`EmailReceiver` parses with :func:`mailmirror.utils.mime.parse_message`,
  reuses existing mirrors for idempotent re-ingestion, re-binds mirrors after
  an epoch change by ``Message-ID``, and otherwise creates a post either in the
  topic of a known parent or in a new topic.

Interfaces:
  :class:`Receiver`, :class:`ProcessingError`, :class:`IngestResult`,
  :func:`ingest`, :class:`EmailReceiver`.

Invariants & Safety:
  - Receiving the same ``(mailbox, uid_validity, uid)`` twice returns the same
    mirror and creates nothing.
  - Errors other than :class:`ProcessingError` propagate and fail the pass.
"""
from __future__ import annotations

from dataclasses import dataclass
from email.errors import MessageError
from typing import Optional, Protocol

from ..imap.protocol import RemoteMessage
from ..store.base import Store
from ..store.models import IncomingMessage, Mailbox
from ..utils.ids import checksum
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import parse_message

NO_SUBJECT = "(no subject)"


class ProcessingError(Exception):
    """Raised by a receiver when a message cannot be turned into a post."""


class Receiver(Protocol):
    def receive(self, raw: bytes, *, mailbox: Mailbox, uid_validity: int, uid: int) -> IncomingMessage:
        """Ingest ``raw`` and return its mirror.

        Raises:
          ProcessingError: When the message is unusable.
        """


@dataclass(frozen=True)
class IngestResult:
    """Outcome of ingesting one new message."""

    uid: int
    incoming: Optional[IncomingMessage] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, uid: int, incoming: IncomingMessage) -> "IngestResult":
        return cls(uid=uid, incoming=incoming)

    @classmethod
    def failure(cls, uid: int, error: str) -> "IngestResult":
        return cls(uid=uid, error=error)


def ingest(
    receiver: Receiver,
    message: RemoteMessage,
    *,
    mailbox: Mailbox,
    uid_validity: int,
    logger: Optional[JsonLogger] = None,
) -> IngestResult:
    """Run ``receiver`` on ``message`` and capture processing failures.

    A message fetched without a body counts as a processing failure so the
    cursor stays behind it.
    """

    log = logger or get_logger("receiver")
    try:
        if message.body is None:
            raise ProcessingError("message body was not fetched")
        incoming = receiver.receive(
            message.body,
            mailbox=mailbox,
            uid_validity=uid_validity,
            uid=message.uid,
        )
    except ProcessingError as exc:
        log.error("ingest_failed", mailbox=mailbox.name, uid=message.uid, error=str(exc))
        return IngestResult.failure(message.uid, str(exc))
    return IngestResult.success(message.uid, incoming)


class EmailReceiver:
    """Default receiver storing messages as posts in the local store."""

    def __init__(self, store: Store, *, logger: Optional[JsonLogger] = None):
        self._store = store
        self._logger = logger or get_logger("receiver")

    def receive(self, raw: bytes, *, mailbox: Mailbox, uid_validity: int, uid: int) -> IncomingMessage:
        """Create or reuse the mirror for one message.

        What:
          Returns the mirror linking ``(mailbox, uid_validity, uid)`` to a post.

        Why:
          The engine may re-ingest UIDs after a partial batch or an epoch
          change; neither may duplicate posts.

        How:
          1. Reject empty payloads, unparseable headers and messages without
             ``From``.
          2. Return an existing mirror for the same key.
          3. Re-bind a mirror of the same ``Message-ID`` from an earlier
             epoch; within the same epoch add a second mirror to its post.
          4. Thread into the topic of the closest known parent, or open a
             topic titled by the subject, then create post and mirror.

        Raises:
          ProcessingError: For unusable messages.
        """

        if not raw or not raw.strip():
            raise ProcessingError("empty message")
        existing = self._store.find_incoming(mailbox.id, uid_validity, uid)
        if existing is not None:
            return existing

        try:
            parsed = parse_message(raw)
        except (MessageError, IndexError, ValueError) as exc:
            raise ProcessingError(f"unparseable message: {exc!r}") from exc
        if not parsed.sender:
            raise ProcessingError("message has no From header")
        message_id = parsed.message_id or checksum(raw)

        previous = self._store.find_incoming_by_message_id(mailbox.id, message_id)
        if previous is not None and previous.uid_validity == uid_validity:
            # Same message stored twice in the folder.
            post = self._store.get_post(previous.post_id)
            return self._store.create_incoming(mailbox.id, uid_validity, uid, post)
        if previous is not None:
            rebound = self._store.rebind_incoming(previous.id, uid_validity, uid)
            self._logger.info(
                "incoming_rebound",
                mailbox=mailbox.name,
                uid=uid,
                previous_uid=previous.uid,
                previous_uid_validity=previous.uid_validity,
            )
            return rebound

        parent = self._store.find_post_by_message_ids(parsed.thread_ids)
        if parent is not None:
            topic_id = parent.topic_id
        else:
            topic_id = self._store.create_topic(parsed.subject or NO_SUBJECT).id
        post = self._store.create_post(
            topic_id,
            message_id=message_id,
            subject=parsed.subject,
            sender=parsed.sender,
            body=parsed.body,
        )
        incoming = self._store.create_incoming(mailbox.id, uid_validity, uid, post)
        self._logger.info(
            "incoming_created",
            mailbox=mailbox.name,
            uid=uid,
            topic_id=topic_id,
            post_number=post.post_number,
        )
        return incoming
