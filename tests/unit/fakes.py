"""In-memory doubles used by unit tests.

What:
  Provide :class:`FakeImapBackend`, a drop-in replacement for
  :class:`imapclient.IMAPClient`, and :class:`FakeProvider`, an in-memory
  implementation of :class:`mailmirror.imap.protocol.Provider`, plus
  :func:`make_message` to build RFC 822 payloads.

Why:
  Provider tests must exercise the ``imapclient`` response handling without a
  server, and engine tests must observe exactly which UIDs were fetched and
  which ``store`` deltas were issued.

How:
  :class:`FakeImapBackend` keeps per-folder dictionaries of
  :class:`_MessageRecord` entries and answers with the bytes-keyed responses
  ``imapclient`` produces. :class:`FakeProvider` keeps
  :class:`~mailmirror.imap.protocol.RemoteMessage` snapshots and records every
  call.

Interfaces:
  :class:`FakeImapBackend`, :class:`FakeProvider`, :func:`make_message`.

Invariants & Safety:
  - Methods never touch the network.
  - ``FakeImapBackend.search`` reproduces the ``N:*`` quirk: when no UID is at
    least ``N`` the highest UID is returned anyway.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from mailmirror.imap.protocol import FetchField, MailboxStatus, RemoteMessage, UidRange


def make_message(
    subject: str = "Printer on fire",
    *,
    message_id: Optional[str] = "<m1@example.com>",
    sender: Optional[str] = "alice@example.com",
    in_reply_to: Optional[str] = None,
    references: Optional[str] = None,
    body: str = "Hello there",
) -> bytes:
    """Build a small RFC 822 message."""

    message = EmailMessage()
    if sender is not None:
        message["From"] = sender
    message["To"] = "support@example.com"
    if subject:
        message["Subject"] = subject
    if message_id is not None:
        message["Message-ID"] = message_id
    if in_reply_to is not None:
        message["In-Reply-To"] = in_reply_to
    if references is not None:
        message["References"] = references
    message.set_content(body)
    return message.as_bytes()


@dataclass
class _MessageRecord:
    uid: int
    flags: List[bytes] = field(default_factory=list)
    labels: List[bytes] = field(default_factory=list)
    body: bytes = b""


class FakeImapBackend:
    """Minimal IMAP backend satisfying the subset the providers rely upon."""

    def __init__(self, uid_validity: int = 7) -> None:
        self.uid_validity = uid_validity
        self.folders: Dict[str, Dict[int, _MessageRecord]] = {"INBOX": {}}
        self.selected: Optional[str] = None
        self.readonly: Optional[bool] = None
        self.logged_in = False
        self.logged_out = False
        self.shut_down = False
        self.login_error: Optional[Exception] = None
        self.searches: List[list] = []
        self.fetches: List[Tuple[List[int], List[str]]] = []
        self.mutations: List[Tuple[str, List[int], List[str]]] = []

    # Test helpers -------------------------------------------------------
    def add(
        self,
        uid: int,
        *,
        folder: str = "INBOX",
        flags: Sequence[bytes] = (),
        labels: Sequence[bytes] = (),
        body: bytes = b"",
    ) -> None:
        self.folders.setdefault(folder, {})[uid] = _MessageRecord(uid, list(flags), list(labels), body)

    # Session management -------------------------------------------------
    def login(self, username: str, password: str) -> None:
        if self.login_error is not None:
            raise self.login_error
        self.logged_in = True

    def logout(self) -> None:
        self.logged_out = True

    def shutdown(self) -> None:
        self.shut_down = True

    # Mailbox helpers ----------------------------------------------------
    def select_folder(self, name: str, readonly: bool = False) -> Dict[bytes, object]:
        if name not in self.folders:
            raise KeyError(name)
        self.selected = name
        self.readonly = readonly
        return {
            b"EXISTS": len(self.folders[name]),
            b"UIDVALIDITY": self.uid_validity,
            b"UIDNEXT": max(self.folders[name], default=0) + 1,
        }

    def search(self, criteria):
        self.searches.append(list(criteria))
        uids = sorted(self.folders[self.selected])
        if list(criteria[:1]) != ["UID"]:
            return uids
        start, _, stop = criteria[1].partition(":")
        low = int(start)
        if stop == "*":
            matching = [uid for uid in uids if uid >= low]
            if not matching and uids:
                return [uids[-1]]
            return matching
        return [uid for uid in uids if low <= uid <= int(stop)]

    def fetch(self, uids: Iterable[int], items: Iterable[str]):
        wanted = list(uids)
        requested = list(items)
        self.fetches.append((wanted, requested))
        folder = self.folders[self.selected]
        response = {}
        for seq, uid in enumerate(wanted, start=1):
            record = folder.get(uid)
            if record is None:
                continue
            data: Dict[bytes, object] = {b"SEQ": seq}
            if "FLAGS" in requested:
                data[b"FLAGS"] = tuple(record.flags)
            if "X-GM-LABELS" in requested:
                data[b"X-GM-LABELS"] = tuple(record.labels)
            if "BODY.PEEK[]" in requested:
                data[b"BODY[]"] = record.body
            response[uid] = data
        return response

    def add_flags(self, uids, flags) -> None:
        self._mutate("add_flags", uids, flags, "flags", add=True)

    def remove_flags(self, uids, flags) -> None:
        self._mutate("remove_flags", uids, flags, "flags", add=False)

    def add_gmail_labels(self, uids, labels) -> None:
        self._mutate("add_gmail_labels", uids, labels, "labels", add=True)

    def remove_gmail_labels(self, uids, labels) -> None:
        self._mutate("remove_gmail_labels", uids, labels, "labels", add=False)

    def _mutate(self, name: str, uids, values, attribute: str, *, add: bool) -> None:
        self.mutations.append((name, list(uids), list(values)))
        for uid in uids:
            current: List[bytes] = getattr(self.folders[self.selected][uid], attribute)
            for value in values:
                encoded = value.encode("utf-8") if isinstance(value, str) else value
                if add and encoded not in current:
                    current.append(encoded)
                elif not add and encoded in current:
                    current.remove(encoded)


class FakeProvider:
    """In-memory provider recording every call made by the engine.

    ``to_tag`` is the identity; ``tag_to_flag`` and ``tag_to_label`` read the
    ``flag_map`` and ``label_map`` dictionaries.
    """

    def __init__(
        self,
        *,
        uid_validity: int = 1,
        flag_map: Optional[Dict[str, str]] = None,
        label_map: Optional[Dict[str, str]] = None,
    ) -> None:
        self.uid_validity = uid_validity
        self.messages: Dict[int, RemoteMessage] = {}
        self.flag_map = dict(flag_map or {})
        self.label_map = dict(label_map or {})
        self.connected = False
        self.connects = 0
        self.disconnects = 0
        self.opened: List[Tuple[str, bool]] = []
        self.fetches: List[Tuple[List[int], Tuple[str, ...]]] = []
        self.store_calls: List[Tuple[int, str, Tuple[str, ...], Tuple[str, ...]]] = []
        self.fail_on: Optional[str] = None

    def add_message(
        self,
        uid: int,
        *,
        flags: Sequence[str] = (),
        labels: Sequence[str] = ("\\Inbox",),
        body: Optional[bytes] = None,
    ) -> None:
        if body is None:
            body = make_message(f"Message {uid}", message_id=f"<m{uid}@example.com>")
        self.messages[uid] = RemoteMessage(uid=uid, flags=tuple(flags), labels=tuple(labels), body=body)

    def _maybe_fail(self, name: str) -> None:
        if self.fail_on == name:
            raise ConnectionError(f"{name} failed")

    def connect(self) -> None:
        self._maybe_fail("connect")
        self.connected = True
        self.connects += 1

    def disconnect(self) -> None:
        self.connected = False
        self.disconnects += 1

    def open_mailbox(self, name: str, *, writable: bool = False) -> MailboxStatus:
        self._maybe_fail("open_mailbox")
        self.opened.append((name, writable))
        return MailboxStatus(name=name, uid_validity=self.uid_validity, exists=len(self.messages))

    def list_uids(self, uid_range: UidRange = UidRange()) -> List[int]:
        self._maybe_fail("list_uids")
        return [uid for uid in sorted(self.messages) if uid_range.contains(uid)]

    def fetch(self, uids: Iterable[int], fields: Sequence[str]) -> Dict[int, RemoteMessage]:
        self._maybe_fail("fetch")
        wanted = list(uids)
        self.fetches.append((wanted, tuple(fields)))
        result = {}
        for uid in wanted:
            message = self.messages.get(uid)
            if message is None:
                continue
            body = message.body if FetchField.BODY in fields else None
            result[uid] = RemoteMessage(uid=uid, flags=message.flags, labels=message.labels, body=body)
        return result

    def store(self, uid: int, field: str, old_values: Iterable[str], new_values: Iterable[str]) -> None:
        self._maybe_fail("store")
        new = tuple(new_values)
        self.store_calls.append((uid, field, tuple(old_values), new))
        message = self.messages[uid]
        if field == FetchField.FLAGS:
            self.messages[uid] = RemoteMessage(uid=uid, flags=new, labels=message.labels, body=message.body)
        else:
            self.messages[uid] = RemoteMessage(uid=uid, flags=message.flags, labels=new, body=message.body)

    def to_tag(self, name: str) -> str:
        return name

    def tag_to_flag(self, tag: str) -> str:
        return self.flag_map.get(tag, "")

    def tag_to_label(self, tag: str) -> str:
        return self.label_map.get(tag, "")
