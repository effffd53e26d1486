"""Provider contract consumed by the synchronization engine.

What:
  Define the structural :class:`Provider` protocol, the value types exchanged
  with it (:class:`RemoteMessage`, :class:`MailboxStatus`, :class:`UidRange`)
  and the fetch/store field names.

Why:
  The engine must not know whether it talks to a generic IMAP server, Gmail or
  an in-memory fake. Pinning the surface in one protocol keeps the engine
  testable and lets providers evolve independently.

How:
  ``typing.Protocol`` for the capability set and frozen dataclasses for the
  snapshots so values cannot be mutated once fetched.

Interfaces:
  :class:`Provider`, :class:`RemoteMessage`, :class:`MailboxStatus`,
  :class:`UidRange`, :class:`FetchField`, :class:`ProviderError`,
  :class:`RateLimitExceeded`.

Invariants & Safety:
  - UIDs are plain integers; sequence numbers never cross this boundary.
  - ``store`` is a delta operation: implementations send only the additions
    and removals between ``old_values`` and ``new_values``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple


class ProviderError(RuntimeError):
    """Raised when the remote server cannot complete a request."""


class RateLimitExceeded(ProviderError):
    """Raised when more mutating commands were issued than the rolling limit allows."""


class FetchField:
    """Names of the attributes a provider can fetch or store."""

    UID = "UID"
    FLAGS = "FLAGS"
    LABELS = "LABELS"
    BODY = "BODY"

    METADATA: Tuple[str, ...] = (UID, FLAGS, LABELS)
    FULL: Tuple[str, ...] = (UID, FLAGS, LABELS, BODY)


@dataclass(frozen=True)
class UidRange:
    """Inclusive UID range; ``stop`` of ``None`` means "up to the highest UID"."""

    start: int = 1
    stop: Optional[int] = None

    @classmethod
    def after(cls, uid: int) -> "UidRange":
        return cls(start=uid + 1)

    def contains(self, uid: int) -> bool:
        if uid < self.start:
            return False
        return self.stop is None or uid <= self.stop

    def to_criteria(self) -> str:
        stop = "*" if self.stop is None else str(self.stop)
        return f"{self.start}:{stop}"


@dataclass(frozen=True)
class MailboxStatus:
    """State reported by the server when a folder is selected."""

    name: str
    uid_validity: int
    exists: int = 0


@dataclass(frozen=True)
class RemoteMessage:
    """Snapshot of one message as fetched from the server."""

    uid: int
    flags: Tuple[str, ...] = ()
    labels: Tuple[str, ...] = ()
    body: Optional[bytes] = None


class Provider(Protocol):
    """Capability set a mail server adapter must expose to the engine.

    What:
      Connection lifecycle, UID listing, metadata/body fetching, delta stores
      and the translation helpers between server markers and local tags.

    Why:
      Structural typing lets fakes in tests stand in for network-backed
      providers without inheritance.
    """

    def connect(self) -> None:
        """Open the connection and authenticate."""

    def disconnect(self) -> None:
        """Release the connection; safe to call when already disconnected."""

    def open_mailbox(self, name: str, *, writable: bool = False) -> MailboxStatus:
        """Select ``name`` and return its status including ``uid_validity``."""

    def list_uids(self, uid_range: UidRange = UidRange()) -> List[int]:
        """Return the ascending UIDs of the selected folder within ``uid_range``."""

    def fetch(self, uids: Iterable[int], fields: Sequence[str]) -> Mapping[int, RemoteMessage]:
        """Fetch ``fields`` for ``uids``; UIDs missing on the server are absent."""

    def store(
        self,
        uid: int,
        field: str,
        old_values: Iterable[str],
        new_values: Iterable[str],
    ) -> None:
        """Apply the difference between ``old_values`` and ``new_values``."""

    def to_tag(self, name: str) -> str:
        """Translate a folder name, flag or label into a tag (blank to drop)."""

    def tag_to_flag(self, tag: str) -> str:
        """Translate a tag back into a flag (blank when none)."""

    def tag_to_label(self, tag: str) -> str:
        """Translate a tag back into a label (blank when none)."""
