"""Local mirror persistence: records, the store contract and SQLite backend."""

from .base import Store
from .models import IncomingMessage, Mailbox, Post, Topic
from .sqlite import SqliteStore

__all__ = ["Store", "IncomingMessage", "Mailbox", "Post", "Topic", "SqliteStore"]
