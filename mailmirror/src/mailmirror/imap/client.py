"""Generic IMAP provider with mailmirror-specific guardrails.

What:
  Wrap the third-party ``imapclient`` library behind the
  :class:`~mailmirror.imap.protocol.Provider` contract: connection lifecycle,
  folder selection with UIDVALIDITY reporting, UID range listing, metadata and
  body fetching, delta flag stores and the tag translation helpers.

Why:
  Direct use of ``imapclient`` exposes sharp edges: bytes versus text in
  responses, the ``N:*`` search quirk that returns the highest UID even when it
  is below ``N``, ``\\Recent`` being server-owned, and unbounded command rates.
  Centralised guardrails keep the engine free of protocol details.

How:
  :class:`ImapConfig` carries the connection parameters resolved from the
  runtime configuration. :class:`ImapProvider` owns one ``IMAPClient`` handle,
  decodes responses into :class:`~mailmirror.imap.protocol.RemoteMessage`
  snapshots and tracks mutation timestamps to enforce a 500-actions-per-minute
  limit.

Interfaces:
  :class:`ImapConfig` and :class:`ImapProvider`.

Invariants & Safety:
  - All operations run in UID mode; sequence numbers are never used.
  - ``list_uids`` only returns UIDs inside the requested range.
  - ``store`` never tries to remove ``\\Recent``.
  - Generic servers have no labels: the selected folder name is reported as
    the single label and label stores are ignored.
"""
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from imapclient import IMAPClient

from ..config.schema import MailboxConfig
from ..utils.logging import JsonLogger, get_logger
from .protocol import FetchField, MailboxStatus, ProviderError, RateLimitExceeded, RemoteMessage, UidRange
from .tags import IGNORED_FLAGS, clean_tag, flag_for_tag

RATE_LIMIT_ACTIONS = 500
RATE_LIMIT_WINDOW_S = 60.0

_BODY_ITEM = "BODY.PEEK[]"
_BODY_KEY = b"BODY[]"


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


@dataclass
class ImapConfig:
    """Connection parameters for one IMAP account.

    Attributes:
      host: IMAP hostname.
      username: Login credential.
      password: Password or app-specific token.
      port: IMAP port (defaults to 993).
      ssl: Whether to use TLS.
      timeout_s: Socket timeout handed to ``IMAPClient``.
      max_tag_length: Upper bound for tags produced by :meth:`ImapProvider.to_tag`.
    """

    host: str
    username: str
    password: str
    port: int = 993
    ssl: bool = True
    timeout_s: Optional[float] = None
    max_tag_length: int = 20

    @classmethod
    def from_mailbox(cls, mailbox: MailboxConfig, *, max_tag_length: int = 20) -> "ImapConfig":
        """Build the connection envelope for a configured mailbox.

        Resolves ``password_env`` at call time so secrets never sit in the
        cached runtime configuration.
        """

        server = mailbox.server
        return cls(
            host=server.host,
            username=server.username,
            password=server.resolve_password(),
            port=server.port,
            ssl=server.ssl,
            timeout_s=server.timeout_s,
            max_tag_length=max_tag_length,
        )


class ImapProvider:
    """Rate-limited provider backed by ``imapclient.IMAPClient``.

    What:
      Owns a single IMAP connection and exposes the operations the engine
      needs, translating between IMAP responses and mailmirror value types.

    Why:
      Ensures every IMAP interaction respects provider rate limits, decodes
      responses uniformly, and releases the connection even when a pass fails.

    How:
      :meth:`connect` lazily creates the ``IMAPClient`` and logs in;
      :meth:`disconnect` logs out inside ``try``/``finally``. Mutating helpers
      call :meth:`_throttle` first. Subclasses override
      :meth:`_labels_item`, :meth:`_decode_labels` and :meth:`_store_labels`
      to add label support.
    """

    name = "generic"

    def __init__(self, config: ImapConfig, *, logger: Optional[JsonLogger] = None):
        """Store ``config`` without touching the network.

        Args:
          config: Fully-populated connection envelope.
          logger: Structured logger; defaults to a ``stdout`` logger.
        """

        self._config = config
        self._client: Optional[IMAPClient] = None
        self._selected: Optional[str] = None
        self._actions: Deque[float] = deque()
        self._logger = logger or get_logger(f"imap.{self.name}")

    def __enter__(self) -> "ImapProvider":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    @property
    def config(self) -> ImapConfig:
        return self._config

    @property
    def client(self) -> IMAPClient:
        """Return the connected ``IMAPClient``.

        Raises:
          ProviderError: If accessed before :meth:`connect`.
        """

        if self._client is None:
            raise ProviderError("IMAP client not connected")
        return self._client

    @property
    def selected(self) -> Optional[str]:
        return self._selected

    def connect(self) -> None:
        """Open the connection and log in.

        What:
          Instantiates ``IMAPClient`` in UID mode with the configured host,
          port, TLS and timeout, then authenticates.

        Why:
          Deferring the network round trip until a pass starts keeps provider
          construction cheap for the CLI ``status`` command.

        How:
          A second call while connected is a no-op. When login fails the
          half-open socket is shut down before the error propagates.
        """

        if self._client is not None:
            return
        client = IMAPClient(
            self._config.host,
            port=self._config.port,
            ssl=self._config.ssl,
            use_uid=True,
            timeout=self._config.timeout_s,
        )
        try:
            client.login(self._config.username, self._config.password)
        except Exception:
            client.shutdown()
            raise
        self._client = client
        self._logger.info("imap_connected", host=self._config.host, user=self._config.username)

    def disconnect(self) -> None:
        """Log out and drop the handle, even if ``LOGOUT`` fails."""

        if self._client is None:
            return
        try:
            self._client.logout()
        finally:
            self._client = None
            self._selected = None
            self._logger.info("imap_disconnected", host=self._config.host)

    def open_mailbox(self, name: str, *, writable: bool = False) -> MailboxStatus:
        """Select ``name`` and report its UIDVALIDITY.

        Args:
          name: Remote folder name.
          writable: Select read-write when ``True``; reads use ``EXAMINE``.

        Returns:
          :class:`MailboxStatus` for the folder.

        Raises:
          ProviderError: If the server omits ``UIDVALIDITY``.
        """

        response = self.client.select_folder(name, readonly=not writable)
        self._selected = name
        uid_validity = response.get(b"UIDVALIDITY")
        if uid_validity is None:
            raise ProviderError(f"server did not report UIDVALIDITY for {name}")
        return MailboxStatus(
            name=name,
            uid_validity=int(uid_validity),
            exists=int(response.get(b"EXISTS", 0)),
        )

    def list_uids(self, uid_range: UidRange = UidRange()) -> List[int]:
        """Return ascending UIDs of the selected folder inside ``uid_range``.

        ``UID SEARCH N:*`` answers with the highest UID even when it is lower
        than ``N``, so results are filtered client side.
        """

        uids = self.client.search(["UID", uid_range.to_criteria()])
        return sorted({int(uid) for uid in uids if uid_range.contains(int(uid))})

    def fetch(self, uids: Iterable[int], fields: Sequence[str]) -> Dict[int, RemoteMessage]:
        """Fetch ``fields`` for ``uids`` and decode the response.

        What:
          Maps ``FLAGS``, ``LABELS`` and ``BODY`` to IMAP data items and returns
          one :class:`RemoteMessage` per UID present on the server.

        How:
          ``BODY`` is fetched with ``BODY.PEEK[]`` so the ``\\Seen`` flag is
          not set as a side effect. ``UID`` needs no data item because
          ``IMAPClient`` keys responses by UID in UID mode.

        Args:
          uids: Message UIDs to request.
          fields: Names from :class:`~mailmirror.imap.protocol.FetchField`.

        Returns:
          Mapping of UID to snapshot; missing UIDs are omitted.
        """

        wanted = [int(uid) for uid in uids]
        if not wanted:
            return {}
        items: List[str] = []
        if FetchField.FLAGS in fields:
            items.append("FLAGS")
        labels_item = self._labels_item()
        if FetchField.LABELS in fields and labels_item:
            items.append(labels_item)
        if FetchField.BODY in fields:
            items.append(_BODY_ITEM)
        if not items:
            items.append("UID")
        response = self.client.fetch(wanted, items)
        result: Dict[int, RemoteMessage] = {}
        for uid, data in response.items():
            flags = tuple(_decode(flag) for flag in data.get(b"FLAGS", ()))
            labels: Tuple[str, ...] = ()
            if FetchField.LABELS in fields:
                labels = self._decode_labels(data)
            body = data.get(_BODY_KEY) if FetchField.BODY in fields else None
            result[int(uid)] = RemoteMessage(uid=int(uid), flags=flags, labels=labels, body=body)
        return result

    def store(
        self,
        uid: int,
        field: str,
        old_values: Iterable[str],
        new_values: Iterable[str],
    ) -> None:
        """Send the additions and removals between ``old_values`` and ``new_values``.

        Raises:
          ValueError: For fields other than ``FLAGS`` and ``LABELS``.
          RateLimitExceeded: When the rolling action budget is exhausted.
        """

        old = [value for value in old_values if value]
        new = [value for value in new_values if value]
        additions = [value for value in new if value not in old]
        removals = [value for value in old if value not in new]
        if field == FetchField.FLAGS:
            removals = [value for value in removals if value.lower() not in IGNORED_FLAGS]
            self._store_flags(uid, additions, removals)
        elif field == FetchField.LABELS:
            self._store_labels(uid, additions, removals)
        else:
            raise ValueError(f"unsupported store field: {field}")

    def to_tag(self, name: str) -> str:
        return clean_tag(name, self._config.max_tag_length)

    def tag_to_flag(self, tag: str) -> str:
        return flag_for_tag(tag)

    def tag_to_label(self, tag: str) -> str:
        return ""

    def _labels_item(self) -> Optional[str]:
        return None

    def _decode_labels(self, data: Mapping[bytes, Any]) -> Tuple[str, ...]:
        return (self._selected,) if self._selected else ()

    def _store_flags(self, uid: int, additions: List[str], removals: List[str]) -> None:
        if additions:
            self._throttle()
            self.client.add_flags([uid], additions)
        if removals:
            self._throttle()
            self.client.remove_flags([uid], removals)
        if additions or removals:
            self._logger.info("flags_stored", uid=uid, added=additions, removed=removals)

    def _store_labels(self, uid: int, additions: List[str], removals: List[str]) -> None:
        if additions or removals:
            self._logger.debug("labels_unsupported", uid=uid)

    def _throttle(self) -> None:
        """Enforce the per-minute action limit before mutating the mailbox.

        Drops timestamps older than the window, raises
        :class:`RateLimitExceeded` when the budget is spent, and records the
        current action otherwise.
        """

        now = time.monotonic()
        while self._actions and now - self._actions[0] > RATE_LIMIT_WINDOW_S:
            self._actions.popleft()
        if len(self._actions) >= RATE_LIMIT_ACTIONS:
            raise RateLimitExceeded("IMAP action rate limit exceeded")
        self._actions.append(now)
