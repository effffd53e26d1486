"""MIME parsing helpers used by the default message receiver.

What:
  Turn raw RFC 822 payloads fetched from IMAP into a structured
  :class:`ParsedMessage` with the threading headers the receiver needs and a
  bounded plain-text body.

Why:
  Incoming mail is outside our control: multipart trees, odd charsets and
  oversized attachments are common. Normalising here lets the receiver focus
  on threading and persistence.

How:
  Use the ``email`` package's :class:`~email.parser.BytesParser` with the
  default policy, collect ``Message-ID``/``In-Reply-To``/``References`` ids,
  walk the MIME tree for the first ``text/*`` leaf and truncate it on encoded
  bytes.

Interfaces:
  :class:`ParsedMessage`, :func:`parse_message`, :func:`extract_message_ids`.

Invariants & Safety:
  - Body text is always valid UTF-8; undecodable bytes are dropped.
  - Truncation happens on encoded bytes so multi-byte characters are never
    split.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Dict, List, Optional


MAX_BODY_BYTES = 1_000_000
"""Upper bound for the stored body size in bytes."""

_MESSAGE_ID_RE = re.compile(r"<([^<>\s]+)>")


@dataclass
class ParsedMessage:
    """Headers and text extracted from one RFC 822 message.

    Attributes:
      headers: Header values keyed by lower-case names.
      message_id: ``Message-ID`` without angle brackets, if present.
      in_reply_to: Ids listed in ``In-Reply-To``.
      references: Ids listed in ``References``.
      subject: Decoded subject line (empty when absent).
      sender: Decoded ``From`` header (empty when absent).
      body: Plain-text body bounded by :data:`MAX_BODY_BYTES`.
    """

    headers: Dict[str, str]
    message_id: Optional[str]
    subject: str
    sender: str
    body: str
    in_reply_to: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)

    @property
    def thread_ids(self) -> List[str]:
        """Return parent candidates, closest first, without duplicates."""

        seen: List[str] = []
        for value in [*self.in_reply_to, *reversed(self.references)]:
            if value not in seen:
                seen.append(value)
        return seen


def extract_message_ids(value: Optional[str]) -> List[str]:
    """Return every ``<id>`` token found in a header value."""

    if not value:
        return []
    return _MESSAGE_ID_RE.findall(str(value))


def parse_message(raw: bytes) -> ParsedMessage:
    """Parse a raw IMAP message into a :class:`ParsedMessage`.

    What:
      Produce the header map, the threading ids and a safe text body.

    Why:
      The receiver stores posts and links replies to topics; both depend on
      predictable header access regardless of how the mail was authored.

    How:
      Parse with :class:`BytesParser`, lower-case header names, extract the
      bracketed ids from the threading headers and delegate body selection to
      :func:`_extract_body_text`.

    Args:
      raw: Message bytes as returned by an ``RFC822``/``BODY[]`` fetch.

    Returns:
      The parsed message.
    """

    parser = BytesParser(policy=policy.default)
    message = parser.parsebytes(raw)
    headers = {k.lower(): str(v) for k, v in message.items()}
    ids = extract_message_ids(headers.get("message-id"))
    return ParsedMessage(
        headers=headers,
        message_id=ids[0] if ids else None,
        subject=headers.get("subject", "").strip(),
        sender=headers.get("from", "").strip(),
        body=_extract_body_text(message),
        in_reply_to=extract_message_ids(headers.get("in-reply-to")),
        references=extract_message_ids(headers.get("references")),
    )


def _extract_body_text(message: EmailMessage) -> str:
    """Return the first textual part of ``message``, truncated.

    Multipart messages are walked depth-first skipping containers; the first
    ``text/*`` leaf wins. Parts that cannot be decoded yield an empty string.
    """

    if message.is_multipart():
        for part in message.walk():
            if part.is_multipart():
                continue
            if part.get_content_type().startswith("text/"):
                return _truncate(_decode_part(part))
        return ""
    if not message.get_content_type().startswith("text/"):
        return ""
    return _truncate(_decode_part(message))


def _decode_part(part: EmailMessage) -> str:
    try:
        payload = part.get_content()
    except (LookupError, UnicodeDecodeError):
        raw = part.get_payload(decode=True) or b""
        return raw.decode("utf-8", errors="ignore")
    if isinstance(payload, bytes):
        return payload.decode(part.get_content_charset("utf-8"), errors="ignore")
    return str(payload)


def _truncate(text: str) -> str:
    """Clamp ``text`` to :data:`MAX_BODY_BYTES` when encoded in UTF-8."""

    encoded = text.encode("utf-8")
    if len(encoded) <= MAX_BODY_BYTES:
        return text
    return encoded[:MAX_BODY_BYTES].decode("utf-8", errors="ignore")
