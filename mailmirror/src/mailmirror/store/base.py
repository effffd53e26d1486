"""Store contract used by the engine, the mapper and the receiver.

What:
  Describe the persistence operations a sync pass needs: cursor state per
  mailbox, mirrors keyed by ``(mailbox, uid_validity, uid)``, topics with
  archived state and tags, and posts.

Why:
  The engine is tested against the real SQLite store and could run against a
  forum database; a structural protocol keeps it independent of both.

Invariants & Safety:
  - ``save_cursor`` writes ``uid_validity`` and ``last_seen_uid`` together.
  - ``set_topic_archived``/``set_topic_tags`` with ``skip_sync=False`` mark the
    topic's first-post mirrors ``sync_enabled``; with ``skip_sync=True`` they
    leave mirrors untouched.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, Sequence

from .models import IncomingMessage, Mailbox, Post, Topic


class Store(Protocol):
    def get_or_create_mailbox(self, name: str, group: str) -> Mailbox:
        ...

    def get_mailbox(self, mailbox_id: int) -> Mailbox:
        ...

    def list_mailboxes(self) -> List[Mailbox]:
        ...

    def save_cursor(self, mailbox_id: int, uid_validity: int, last_seen_uid: int) -> Mailbox:
        ...

    def find_incoming(self, mailbox_id: int, uid_validity: int, uid: int) -> Optional[IncomingMessage]:
        ...

    def find_incoming_by_message_id(self, mailbox_id: int, message_id: str) -> Optional[IncomingMessage]:
        ...

    def create_incoming(self, mailbox_id: int, uid_validity: int, uid: int, post: Post) -> IncomingMessage:
        ...

    def rebind_incoming(self, incoming_id: int, uid_validity: int, uid: int) -> IncomingMessage:
        ...

    def pending_sync(self, mailbox_id: int) -> List[IncomingMessage]:
        ...

    def clear_sync(self, incoming_id: int) -> None:
        ...

    def create_topic(self, title: str) -> Topic:
        ...

    def get_topic(self, topic_id: int) -> Topic:
        ...

    def create_post(self, topic_id: int, *, message_id: str, subject: str, sender: str, body: str) -> Post:
        ...

    def get_post(self, post_id: int) -> Post:
        ...

    def find_post_by_message_ids(self, message_ids: Sequence[str]) -> Optional[Post]:
        ...

    def set_topic_archived(self, topic_id: int, archived: bool, *, skip_sync: bool = False) -> Topic:
        ...

    def set_topic_tags(self, topic_id: int, tags: Iterable[str], *, skip_sync: bool = False) -> Topic:
        ...
