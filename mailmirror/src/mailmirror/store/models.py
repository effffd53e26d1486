"""Records persisted by the local store."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Tuple


@dataclass(frozen=True)
class Mailbox:
    """One remote folder mirrored for a group, with its persisted cursor."""

    id: int
    name: str
    group: str
    uid_validity: int = 0
    last_seen_uid: int = 0


@dataclass(frozen=True)
class Topic:
    """Thread of posts carrying the archived state and tags."""

    id: int
    title: str
    archived: bool = False
    tags: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Post:
    id: int
    topic_id: int
    post_number: int
    message_id: str
    subject: str = ""
    sender: str = ""
    body: str = ""


@dataclass(frozen=True)
class IncomingMessage:
    """Mirror linking a remote ``(mailbox, uid_validity, uid)`` to a post.

    ``sync_enabled`` is set when the topic was edited locally and the change
    still has to be pushed to the server.
    """

    id: int
    mailbox_id: int
    uid_validity: int
    uid: int
    message_id: str
    post_id: int
    topic_id: int
    post_number: int
    sync_enabled: bool = False

    @property
    def is_first_post(self) -> bool:
        return self.post_number == 1

    @property
    def key(self) -> Tuple[int, int, int]:
        return (self.mailbox_id, self.uid_validity, self.uid)
