"""Facade for the IMAP integration layer.

What:
  Surface the provider contract and the concrete generic and Gmail providers,
  plus :func:`get_provider_class` to resolve the ``provider`` key of a
  configured mailbox.

Why:
  Keeping the import surface minimal prevents call sites from depending on
  internal helper modules. The engine only imports :mod:`.protocol`.

Interfaces:
  ``Provider``, ``RemoteMessage``, ``MailboxStatus``, ``UidRange``,
  ``FetchField``, ``ProviderError``, ``RateLimitExceeded``, ``ImapConfig``,
  ``ImapProvider``, ``GmailProvider``, ``get_provider_class``.
"""

from typing import Dict, Type

from .client import ImapConfig, ImapProvider
from .gmail import GmailProvider
from .protocol import (
    FetchField,
    MailboxStatus,
    Provider,
    ProviderError,
    RateLimitExceeded,
    RemoteMessage,
    UidRange,
)

PROVIDERS: Dict[str, Type[ImapProvider]] = {
    ImapProvider.name: ImapProvider,
    GmailProvider.name: GmailProvider,
}


def get_provider_class(name: str) -> Type[ImapProvider]:
    """Return the provider class registered under ``name``.

    Raises:
      ValueError: If ``name`` is not a known provider.
    """

    try:
        return PROVIDERS[name]
    except KeyError:
        raise ValueError(f"unknown provider: {name}") from None


__all__ = [
    "FetchField",
    "MailboxStatus",
    "Provider",
    "ProviderError",
    "RateLimitExceeded",
    "RemoteMessage",
    "UidRange",
    "ImapConfig",
    "ImapProvider",
    "GmailProvider",
    "PROVIDERS",
    "get_provider_class",
]
