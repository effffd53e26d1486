"""Pytest fixtures for unit tests requiring IMAP fakes and a local store.

What:
  Ensure ``tests/unit`` is importable and expose fixtures backed by
  :class:`FakeImapBackend`, :class:`FakeProvider` and an in-memory
  :class:`~mailmirror.store.sqlite.SqliteStore`.

Invariants & Safety:
  - Each test receives fresh fakes and a fresh database.
"""

import io
import sys
from pathlib import Path

import pytest

from mailmirror.imap.client import ImapConfig, ImapProvider
from mailmirror.imap.gmail import GmailProvider
from mailmirror.store.sqlite import SqliteStore
from mailmirror.utils.logging import JsonLogger

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeImapBackend, FakeProvider


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO) -> JsonLogger:
    return JsonLogger(stream=log_stream, component="test")


@pytest.fixture
def store():
    database = SqliteStore(":memory:")
    try:
        yield database
    finally:
        database.close()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def imap_backend(monkeypatch: pytest.MonkeyPatch) -> FakeImapBackend:
    """Replace ``IMAPClient`` with a fresh in-memory backend."""

    backend = FakeImapBackend()
    monkeypatch.setattr("mailmirror.imap.client.IMAPClient", lambda host, **kwargs: backend)
    return backend


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(host="localhost", username="user", password="pass")


@pytest.fixture
def generic_provider(imap_backend: FakeImapBackend, imap_config: ImapConfig, logger: JsonLogger):
    with ImapProvider(imap_config, logger=logger) as client:
        yield client


@pytest.fixture
def gmail_provider(imap_backend: FakeImapBackend, imap_config: ImapConfig, logger: JsonLogger):
    with GmailProvider(imap_config, logger=logger) as client:
        yield client
