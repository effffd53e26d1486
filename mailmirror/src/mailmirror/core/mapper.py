"""Translate between server markers and local topic state.

What:
  Derive a topic's archived state and tag set from a message's flags, labels
  and mailbox name (inbound), and derive the flags and labels a message should
  carry from a topic (outbound).

Why:
  Both directions must agree on the same vocabulary, otherwise a pass would
  undo what the previous pass pushed. Keeping both derivations next to each
  other makes the round trip easy to audit.

How:
  Tag translation is delegated to the provider (``to_tag``, ``tag_to_flag``,
  ``tag_to_label``); the mapper applies changes to the store with
  ``skip_sync=True`` so inbound updates never trigger an outbound push.

Interfaces:
  :class:`TopicStateMapper`, :data:`INBOX_LABELS`.

Invariants & Safety:
  - Only first-post mirrors drive topic state.
  - Mirrors with ``sync_enabled`` hold local edits not yet pushed; inbound
    updates leave them alone.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from ..imap.protocol import Provider, RemoteMessage
from ..store.base import Store
from ..store.models import IncomingMessage, Topic
from ..utils.logging import JsonLogger, get_logger

INBOX_LABELS = frozenset({"\\Inbox", "INBOX"})
INBOX_LABEL = "\\Inbox"


class TopicStateMapper:
    """Apply server state to topics and derive server state from topics."""

    def __init__(self, provider: Provider, store: Store, *, logger: Optional[JsonLogger] = None):
        self._provider = provider
        self._store = store
        self._logger = logger or get_logger("mapper")

    @staticmethod
    def is_email_archived(labels: Iterable[str]) -> bool:
        """A message is archived when none of its labels marks the inbox."""

        return not any(label in INBOX_LABELS for label in labels)

    def inbound_tags(self, mailbox_name: str, flags: Iterable[str], labels: Iterable[str]) -> List[str]:
        """Tags for a message: mailbox name, then flags, then labels.

        Blank translations are dropped and duplicates keep their first
        position.
        """

        tags: List[str] = []
        for name in [mailbox_name, *flags, *labels]:
            tag = self._provider.to_tag(name) if name else ""
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    def apply_inbound(self, incoming: Optional[IncomingMessage], message: RemoteMessage, *, mailbox_name: str) -> bool:
        """Bring the mirror's topic in line with ``message``.

        What:
          Flips the archived state when it disagrees with the labels and
          replaces the tag set when it differs.

        Why:
          Server-side moves, flag changes and label edits must show up
          locally without marking the topic for an outbound push.

        How:
          Skip missing mirrors, non-first posts and mirrors waiting for an
          outbound push; otherwise write through the store with
          ``skip_sync=True``.

        Returns:
          ``True`` when the topic changed.
        """

        if incoming is None or not incoming.is_first_post or incoming.sync_enabled:
            return False
        topic = self._store.get_topic(incoming.topic_id)
        changed = False
        archived = self.is_email_archived(message.labels)
        if topic.archived != archived:
            topic = self._store.set_topic_archived(topic.id, archived, skip_sync=True)
            changed = True
            self._logger.info("topic_archived" if archived else "topic_unarchived", topic_id=topic.id, uid=message.uid)
        tags = self.inbound_tags(mailbox_name, message.flags, message.labels)
        if frozenset(tags) != topic.tags:
            self._store.set_topic_tags(topic.id, tags, skip_sync=True)
            changed = True
            self._logger.info("topic_tagged", topic_id=topic.id, uid=message.uid, tags=tags)
        return changed

    def outbound_flags(self, topic: Topic) -> List[str]:
        flags: List[str] = []
        for tag in sorted(topic.tags):
            flag = self._provider.tag_to_flag(tag)
            if flag and flag not in flags:
                flags.append(flag)
        return flags

    def outbound_labels(self, topic: Topic) -> List[str]:
        """Labels for a topic; unarchived topics also get ``\\Inbox``."""

        labels: List[str] = []
        for tag in sorted(topic.tags):
            label = self._provider.tag_to_label(tag)
            if label and label not in labels:
                labels.append(label)
        if not topic.archived and INBOX_LABEL not in labels:
            labels.append(INBOX_LABEL)
        return labels

    def outbound_state(self, topic: Topic) -> Tuple[List[str], List[str]]:
        return self.outbound_flags(topic), self.outbound_labels(topic)
