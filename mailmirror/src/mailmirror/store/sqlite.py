"""SQLite implementation of the local mirror store.

What:
  Persist mailboxes with their cursors, topics with archived state and tags,
  posts, and the incoming-message mirrors that tie remote UIDs to posts.

Why:
  The sync engine needs a durable record of what it already ingested and of
  local edits that still have to be pushed. SQLite ships with Python and keeps
  the whole mirror in one file next to ``status.yaml``.

How:
  One long-lived :mod:`sqlite3` connection (``:memory:`` works for tests) with
  ``sqlite3.Row`` rows. Every public method runs inside :meth:`_transaction`,
  which commits on success and rolls back on error. Tags are stored as a JSON
  array sorted for stable comparisons.

Interfaces:
  :class:`SqliteStore` implementing :class:`~mailmirror.store.base.Store`.

Invariants & Safety:
  - Mirrors are unique per ``(mailbox_id, uid_validity, uid)``.
  - ``post_number`` is assigned sequentially per topic starting at 1.
  - Local topic edits (``skip_sync=False``) flag the first-post mirrors of the
    topic so the next pass pushes them.
"""
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Union

from .models import IncomingMessage, Mailbox, Post, Topic

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mailboxes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    grp TEXT NOT NULL,
    uid_validity INTEGER NOT NULL DEFAULT 0,
    last_seen_uid INTEGER NOT NULL DEFAULT 0,
    UNIQUE(grp, name)
);

CREATE TABLE IF NOT EXISTS topics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    archived INTEGER NOT NULL DEFAULT 0,
    tags TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic_id INTEGER NOT NULL REFERENCES topics(id),
    post_number INTEGER NOT NULL,
    message_id TEXT NOT NULL,
    subject TEXT NOT NULL DEFAULT '',
    sender TEXT NOT NULL DEFAULT '',
    body TEXT NOT NULL DEFAULT '',
    UNIQUE(topic_id, post_number)
);

CREATE INDEX IF NOT EXISTS idx_posts_message_id ON posts(message_id);

CREATE TABLE IF NOT EXISTS incoming (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mailbox_id INTEGER NOT NULL REFERENCES mailboxes(id),
    uid_validity INTEGER NOT NULL,
    uid INTEGER NOT NULL,
    message_id TEXT NOT NULL,
    post_id INTEGER NOT NULL REFERENCES posts(id),
    sync_enabled INTEGER NOT NULL DEFAULT 0,
    UNIQUE(mailbox_id, uid_validity, uid)
);

CREATE INDEX IF NOT EXISTS idx_incoming_message_id ON incoming(mailbox_id, message_id);
"""

_INCOMING_SELECT = """
SELECT i.id, i.mailbox_id, i.uid_validity, i.uid, i.message_id, i.post_id,
       i.sync_enabled, p.topic_id, p.post_number
FROM incoming i JOIN posts p ON p.id = i.post_id
"""


class SqliteStore:
    """Local mirror backed by a single SQLite database."""

    def __init__(self, path: Union[str, Path] = ":memory:"):
        """Open (and create when needed) the database at ``path``."""

        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._path = str(path)
        self._conn = sqlite3.connect(self._path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    # Mailboxes

    def get_or_create_mailbox(self, name: str, group: str) -> Mailbox:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO mailboxes (name, grp) VALUES (?, ?)",
                (name, group),
            )
            row = conn.execute(
                "SELECT * FROM mailboxes WHERE name = ? AND grp = ?",
                (name, group),
            ).fetchone()
        return self._mailbox(row)

    def get_mailbox(self, mailbox_id: int) -> Mailbox:
        row = self._conn.execute("SELECT * FROM mailboxes WHERE id = ?", (mailbox_id,)).fetchone()
        if row is None:
            raise KeyError(f"mailbox {mailbox_id} not found")
        return self._mailbox(row)

    def list_mailboxes(self) -> List[Mailbox]:
        rows = self._conn.execute("SELECT * FROM mailboxes ORDER BY grp, name").fetchall()
        return [self._mailbox(row) for row in rows]

    def save_cursor(self, mailbox_id: int, uid_validity: int, last_seen_uid: int) -> Mailbox:
        """Persist both cursor fields in one statement."""

        with self._transaction() as conn:
            updated = conn.execute(
                "UPDATE mailboxes SET uid_validity = ?, last_seen_uid = ? WHERE id = ?",
                (uid_validity, last_seen_uid, mailbox_id),
            ).rowcount
        if not updated:
            raise KeyError(f"mailbox {mailbox_id} not found")
        return self.get_mailbox(mailbox_id)

    # Mirrors

    def find_incoming(self, mailbox_id: int, uid_validity: int, uid: int) -> Optional[IncomingMessage]:
        row = self._conn.execute(
            _INCOMING_SELECT + "WHERE i.mailbox_id = ? AND i.uid_validity = ? AND i.uid = ?",
            (mailbox_id, uid_validity, uid),
        ).fetchone()
        return self._incoming(row) if row else None

    def find_incoming_by_message_id(self, mailbox_id: int, message_id: str) -> Optional[IncomingMessage]:
        row = self._conn.execute(
            _INCOMING_SELECT + "WHERE i.mailbox_id = ? AND i.message_id = ? ORDER BY i.id LIMIT 1",
            (mailbox_id, message_id),
        ).fetchone()
        return self._incoming(row) if row else None

    def get_incoming(self, incoming_id: int) -> IncomingMessage:
        row = self._conn.execute(_INCOMING_SELECT + "WHERE i.id = ?", (incoming_id,)).fetchone()
        if row is None:
            raise KeyError(f"incoming message {incoming_id} not found")
        return self._incoming(row)

    def create_incoming(self, mailbox_id: int, uid_validity: int, uid: int, post: Post) -> IncomingMessage:
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO incoming (mailbox_id, uid_validity, uid, message_id, post_id)
                   VALUES (?, ?, ?, ?, ?)""",
                (mailbox_id, uid_validity, uid, post.message_id, post.id),
            )
        return self.get_incoming(cursor.lastrowid)

    def rebind_incoming(self, incoming_id: int, uid_validity: int, uid: int) -> IncomingMessage:
        """Point an existing mirror at a new ``(uid_validity, uid)``."""

        with self._transaction() as conn:
            conn.execute(
                "UPDATE incoming SET uid_validity = ?, uid = ? WHERE id = ?",
                (uid_validity, uid, incoming_id),
            )
        return self.get_incoming(incoming_id)

    def pending_sync(self, mailbox_id: int) -> List[IncomingMessage]:
        """Return first-post mirrors of ``mailbox_id`` waiting to be pushed."""

        rows = self._conn.execute(
            _INCOMING_SELECT
            + "WHERE i.mailbox_id = ? AND i.sync_enabled = 1 AND p.post_number = 1 ORDER BY i.uid",
            (mailbox_id,),
        ).fetchall()
        return [self._incoming(row) for row in rows]

    def clear_sync(self, incoming_id: int) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE incoming SET sync_enabled = 0 WHERE id = ?", (incoming_id,))

    # Topics and posts

    def create_topic(self, title: str) -> Topic:
        with self._transaction() as conn:
            cursor = conn.execute("INSERT INTO topics (title) VALUES (?)", (title,))
        return self.get_topic(cursor.lastrowid)

    def get_topic(self, topic_id: int) -> Topic:
        row = self._conn.execute("SELECT * FROM topics WHERE id = ?", (topic_id,)).fetchone()
        if row is None:
            raise KeyError(f"topic {topic_id} not found")
        return Topic(
            id=row["id"],
            title=row["title"],
            archived=bool(row["archived"]),
            tags=frozenset(json.loads(row["tags"])),
        )

    def create_post(self, topic_id: int, *, message_id: str, subject: str, sender: str, body: str) -> Post:
        with self._transaction() as conn:
            (current,) = conn.execute(
                "SELECT COALESCE(MAX(post_number), 0) FROM posts WHERE topic_id = ?",
                (topic_id,),
            ).fetchone()
            cursor = conn.execute(
                """INSERT INTO posts (topic_id, post_number, message_id, subject, sender, body)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (topic_id, current + 1, message_id, subject, sender, body),
            )
        return self.get_post(cursor.lastrowid)

    def get_post(self, post_id: int) -> Post:
        row = self._conn.execute("SELECT * FROM posts WHERE id = ?", (post_id,)).fetchone()
        if row is None:
            raise KeyError(f"post {post_id} not found")
        return self._post(row)

    def find_post_by_message_ids(self, message_ids: Sequence[str]) -> Optional[Post]:
        """Return the post of the first id in ``message_ids`` that is known."""

        for message_id in message_ids:
            row = self._conn.execute(
                "SELECT * FROM posts WHERE message_id = ? ORDER BY id LIMIT 1",
                (message_id,),
            ).fetchone()
            if row is not None:
                return self._post(row)
        return None

    def set_topic_archived(self, topic_id: int, archived: bool, *, skip_sync: bool = False) -> Topic:
        with self._transaction() as conn:
            conn.execute("UPDATE topics SET archived = ? WHERE id = ?", (int(archived), topic_id))
            if not skip_sync:
                self._flag_for_sync(conn, topic_id)
        return self.get_topic(topic_id)

    def set_topic_tags(self, topic_id: int, tags: Iterable[str], *, skip_sync: bool = False) -> Topic:
        payload = json.dumps(sorted({tag for tag in tags if tag}))
        with self._transaction() as conn:
            conn.execute("UPDATE topics SET tags = ? WHERE id = ?", (payload, topic_id))
            if not skip_sync:
                self._flag_for_sync(conn, topic_id)
        return self.get_topic(topic_id)

    @staticmethod
    def _flag_for_sync(conn: sqlite3.Connection, topic_id: int) -> None:
        conn.execute(
            """UPDATE incoming SET sync_enabled = 1
               WHERE post_id IN (SELECT id FROM posts WHERE topic_id = ? AND post_number = 1)""",
            (topic_id,),
        )

    @staticmethod
    def _mailbox(row: sqlite3.Row) -> Mailbox:
        return Mailbox(
            id=row["id"],
            name=row["name"],
            group=row["grp"],
            uid_validity=row["uid_validity"],
            last_seen_uid=row["last_seen_uid"],
        )

    @staticmethod
    def _post(row: sqlite3.Row) -> Post:
        return Post(
            id=row["id"],
            topic_id=row["topic_id"],
            post_number=row["post_number"],
            message_id=row["message_id"],
            subject=row["subject"],
            sender=row["sender"],
            body=row["body"],
        )

    @staticmethod
    def _incoming(row: sqlite3.Row) -> IncomingMessage:
        return IncomingMessage(
            id=row["id"],
            mailbox_id=row["mailbox_id"],
            uid_validity=row["uid_validity"],
            uid=row["uid"],
            message_id=row["message_id"],
            post_id=row["post_id"],
            topic_id=row["topic_id"],
            post_number=row["post_number"],
            sync_enabled=bool(row["sync_enabled"]),
        )
