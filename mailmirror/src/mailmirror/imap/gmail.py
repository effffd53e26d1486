"""Gmail flavour of the IMAP provider.

What:
  Extend :class:`~mailmirror.imap.client.ImapProvider` with Gmail labels: read
  through the ``X-GM-LABELS`` fetch item and written with
  ``add_gmail_labels``/``remove_gmail_labels``.

Why:
  Gmail models folders as labels and archiving as removing ``\\Inbox``; the
  engine only sees labels and tags, so the provider owns the vocabulary.

How:
  Override the label hooks of the generic provider and the tag translation
  tables. Label names arrive in modified UTF-7 and are decoded with
  ``imapclient.imap_utf7``.

Interfaces:
  :class:`GmailProvider`.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from imapclient import imap_utf7

from .client import ImapProvider
from .tags import SYSTEM_FLAGS, clean_tag

LABELS_ITEM = "X-GM-LABELS"

# Markers with a dedicated tag; ``\Inbox`` is covered by the archived state.
LABEL_TAGS: Dict[str, str] = {
    "\\inbox": "",
    "\\important": "important",
    "\\starred": "starred",
}
TAG_LABELS: Dict[str, str] = {
    "important": "\\Important",
    "starred": "\\Starred",
}


def _decode_label(value: Any) -> str:
    if isinstance(value, bytes):
        return imap_utf7.decode(value)
    return str(value)


class GmailProvider(ImapProvider):
    """Provider for Gmail accounts with full label support."""

    name = "gmail"

    def to_tag(self, name: str) -> str:
        key = (name or "").strip().lower()
        if key in LABEL_TAGS:
            return LABEL_TAGS[key]
        return clean_tag(name, self._config.max_tag_length)

    def tag_to_label(self, tag: str) -> str:
        """Map a tag to a Gmail label.

        Tags that stand for system flags are carried by ``FLAGS`` and yield a
        blank label; any other tag is used as the label name unchanged.
        """

        key = (tag or "").strip().lower()
        if not key or key in SYSTEM_FLAGS:
            return ""
        return TAG_LABELS.get(key, tag)

    def _labels_item(self) -> Optional[str]:
        return LABELS_ITEM

    def _decode_labels(self, data: Mapping[bytes, Any]) -> Tuple[str, ...]:
        raw = data.get(LABELS_ITEM.encode("ascii"), ())
        return tuple(_decode_label(label) for label in raw)

    def _store_labels(self, uid: int, additions: List[str], removals: List[str]) -> None:
        if additions:
            self._throttle()
            self.client.add_gmail_labels([uid], additions)
        if removals:
            self._throttle()
            self.client.remove_gmail_labels([uid], removals)
        if additions or removals:
            self._logger.info("labels_stored", uid=uid, added=additions, removed=removals)
