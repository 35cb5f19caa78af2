"""SQLite persistence layer for HiveChat.

The in-memory store forgets everything on restart and keeps only the last
fifty root messages per channel. This backend keeps the full history on disk
with the same Store surface.

Design goals:
  - Zero extra dependencies (uses stdlib sqlite3)
  - Safe for multi-request use (single process): guarded by a lock
  - Keep APIs small and explicit

The DB file location is controlled by Config.SQLITE_DB_FILE.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import List, Optional, Set, Tuple

from HiveChat.core.server.errors import ConflictError, NotFoundError
from HiveChat.core.server.models import (
    Channel,
    ChannelKind,
    FileRef,
    Message,
    Principal,
    new_id,
)


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS principals (
  id TEXT PRIMARY KEY,
  display_name TEXT UNIQUE NOT NULL,
  password_hash TEXT,
  is_ephemeral INTEGER NOT NULL DEFAULT 0,
  created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS channels (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  kind TEXT NOT NULL, -- persistent / direct
  created_at REAL NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_channels_persistent_name
  ON channels(name) WHERE kind = 'persistent';

CREATE TABLE IF NOT EXISTS memberships (
  principal_id TEXT NOT NULL,
  channel_id TEXT NOT NULL,
  joined_at REAL NOT NULL,
  PRIMARY KEY(principal_id, channel_id),
  FOREIGN KEY(channel_id) REFERENCES channels(id) ON DELETE CASCADE
);

-- author_id has no foreign key: messages outlive guest principals.
CREATE TABLE IF NOT EXISTS messages (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT UNIQUE NOT NULL,
  channel_id TEXT NOT NULL,
  author_id TEXT NOT NULL,
  author_name TEXT NOT NULL,
  text TEXT NOT NULL,
  created_at REAL NOT NULL,
  file_url TEXT,
  file_type TEXT,
  file_name TEXT,
  file_size INTEGER,
  parent_id TEXT,
  FOREIGN KEY(channel_id) REFERENCES channels(id) ON DELETE CASCADE,
  FOREIGN KEY(parent_id) REFERENCES messages(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_messages_channel_roots ON messages(channel_id, parent_id, seq);
CREATE INDEX IF NOT EXISTS idx_messages_parent ON messages(parent_id, seq);

CREATE TABLE IF NOT EXISTS reactions (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  message_id TEXT NOT NULL,
  principal_id TEXT NOT NULL,
  emoji TEXT NOT NULL,
  UNIQUE(message_id, principal_id, emoji),
  FOREIGN KEY(message_id) REFERENCES messages(id) ON DELETE CASCADE
);
"""

_MESSAGE_COLUMNS = (
    "id, channel_id, author_id, author_name, text, created_at, "
    "file_url, file_type, file_name, file_size, parent_id"
)
_TREE_COLUMNS = ", ".join("m." + c.strip() for c in _MESSAGE_COLUMNS.split(","))


def _row_to_message(row: sqlite3.Row) -> Message:
    file_ref = None
    if row["file_url"] is not None:
        file_ref = FileRef(
            url=str(row["file_url"]),
            type=str(row["file_type"]),
            name=str(row["file_name"]),
            size=None if row["file_size"] is None else int(row["file_size"]),
        )
    return Message(
        id=str(row["id"]),
        channel_id=str(row["channel_id"]),
        author_id=str(row["author_id"]),
        author_name=str(row["author_name"]),
        text=str(row["text"]),
        created_at=float(row["created_at"]),
        file_ref=file_ref,
        parent_id=None if row["parent_id"] is None else str(row["parent_id"]),
    )


def _row_to_principal(row: sqlite3.Row) -> Principal:
    return Principal(
        id=str(row["id"]),
        display_name=str(row["display_name"]),
        is_ephemeral=bool(row["is_ephemeral"]),
        created_at=float(row["created_at"]),
    )


class SQLiteStore:
    """A tiny SQLite-backed store."""

    def __init__(self, db_path: str):
        self.db_path = str(Path(db_path))
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --------------------------- principals ---------------------------
    def create_principal(
        self,
        display_name: str,
        password_hash: Optional[str] = None,
        is_ephemeral: bool = False,
        principal_id: Optional[str] = None,
    ) -> Principal:
        pid = principal_id or new_id()
        now = time.time()
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO principals(id, display_name, password_hash, is_ephemeral, created_at)
                    VALUES(?,?,?,?,?)
                    """,
                    (pid, display_name, password_hash, 1 if is_ephemeral else 0, now),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                raise ConflictError(f"Name '{display_name}' is already taken")
        return Principal(id=pid, display_name=display_name, is_ephemeral=is_ephemeral, created_at=now)

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM principals WHERE id=?", (principal_id,))
            row = cur.fetchone()
            return None if row is None else _row_to_principal(row)

    def find_principal(self, display_name: str) -> Optional[Principal]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM principals WHERE display_name=?", (display_name,))
            row = cur.fetchone()
            return None if row is None else _row_to_principal(row)

    def get_password_hash(self, display_name: str) -> Optional[str]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT password_hash FROM principals WHERE display_name=?", (display_name,)
            )
            row = cur.fetchone()
            if row is None or row["password_hash"] is None:
                return None
            return str(row["password_hash"])

    def delete_principal(self, principal_id: str) -> bool:
        """Remove a principal and its memberships. Its messages stay."""
        with self._lock:
            self._conn.execute("DELETE FROM memberships WHERE principal_id=?", (principal_id,))
            cur = self._conn.execute("DELETE FROM principals WHERE id=?", (principal_id,))
            self._conn.commit()
            return cur.rowcount > 0

    def list_principals(self) -> List[Principal]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM principals ORDER BY display_name")
            return [_row_to_principal(r) for r in cur.fetchall()]

    # ----------------------- channels / membership -----------------------
    def create_channel(
        self,
        name: str,
        kind: ChannelKind = ChannelKind.PERSISTENT,
        channel_id: Optional[str] = None,
    ) -> Channel:
        cid = channel_id or new_id()
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO channels(id, name, kind, created_at) VALUES(?,?,?,?)",
                    (cid, name, kind.value, time.time()),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                raise ConflictError(f"Channel '{name}' already exists")
        return Channel(id=cid, name=name, kind=kind)

    def _load_channel_locked(self, row: sqlite3.Row) -> Channel:
        cur = self._conn.execute(
            "SELECT principal_id FROM memberships WHERE channel_id=?", (row["id"],)
        )
        return Channel(
            id=str(row["id"]),
            name=str(row["name"]),
            kind=ChannelKind(row["kind"]),
            member_ids={str(r["principal_id"]) for r in cur.fetchall()},
        )

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM channels WHERE id=?", (channel_id,))
            row = cur.fetchone()
            return None if row is None else self._load_channel_locked(row)

    def get_channel_by_name(self, name: str) -> Optional[Channel]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT * FROM channels WHERE name=? AND kind='persistent'", (name,)
            )
            row = cur.fetchone()
            return None if row is None else self._load_channel_locked(row)

    def list_channels(self) -> List[Channel]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM channels ORDER BY created_at, rowid")
            return [self._load_channel_locked(r) for r in cur.fetchall()]

    def add_membership(self, principal_id: str, channel_id: str) -> bool:
        with self._lock:
            try:
                cur = self._conn.execute(
                    "INSERT OR IGNORE INTO memberships(principal_id, channel_id, joined_at) VALUES(?,?,?)",
                    (principal_id, channel_id, time.time()),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                raise NotFoundError(f"Channel '{channel_id}' not found")
            return cur.rowcount > 0

    def is_member(self, principal_id: str, channel_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "SELECT 1 FROM memberships WHERE principal_id=? AND channel_id=?",
                (principal_id, channel_id),
            )
            return cur.fetchone() is not None

    def list_memberships(self, principal_id: str) -> List[str]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT channel_id FROM memberships WHERE principal_id=? ORDER BY joined_at",
                (principal_id,),
            )
            return [str(r["channel_id"]) for r in cur.fetchall()]

    def list_members(self, channel_id: str) -> Set[str]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT principal_id FROM memberships WHERE channel_id=?", (channel_id,)
            )
            return {str(r["principal_id"]) for r in cur.fetchall()}

    def remove_memberships(self, principal_id: str) -> int:
        with self._lock:
            cur = self._conn.execute("DELETE FROM memberships WHERE principal_id=?", (principal_id,))
            self._conn.commit()
            return cur.rowcount

    # ----------------------------- messages -----------------------------
    def create_message(
        self,
        channel_id: str,
        author_id: str,
        author_name: str,
        text: str,
        file_ref: Optional[FileRef] = None,
        parent_id: Optional[str] = None,
    ) -> Message:
        message = Message(
            id=new_id(),
            channel_id=channel_id,
            author_id=author_id,
            author_name=author_name,
            text=text,
            created_at=time.time(),
            file_ref=file_ref,
            parent_id=parent_id,
        )
        with self._lock:
            try:
                self._conn.execute(
                    f"INSERT INTO messages({_MESSAGE_COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?,?,?)",
                    (
                        message.id, channel_id, author_id, author_name, text, message.created_at,
                        file_ref.url if file_ref else None,
                        file_ref.type if file_ref else None,
                        file_ref.name if file_ref else None,
                        file_ref.size if file_ref else None,
                        parent_id,
                    ),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                raise NotFoundError("Channel or parent message not found")
        return message

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._lock:
            cur = self._conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id=?", (message_id,)
            )
            row = cur.fetchone()
            return None if row is None else _row_to_message(row)

    def list_messages(self, channel_id: str, limit: int = 50) -> List[Message]:
        with self._lock:
            cur = self._conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE channel_id=? AND parent_id IS NULL
                ORDER BY seq DESC
                LIMIT ?
                """,
                (channel_id, int(limit)),
            )
            rows = cur.fetchall()
            # Return chronological order
            rows.reverse()
            return [_row_to_message(r) for r in rows]

    def list_replies(self, parent_id: str) -> List[Message]:
        with self._lock:
            cur = self._conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE parent_id=? ORDER BY seq",
                (parent_id,),
            )
            return [_row_to_message(r) for r in cur.fetchall()]

    def count_replies(self, parent_id: str) -> int:
        with self._lock:
            cur = self._conn.execute(
                "SELECT COUNT(*) AS n FROM messages WHERE parent_id=?", (parent_id,)
            )
            return int(cur.fetchone()["n"])

    def delete_message(self, message_id: str) -> List[Message]:
        """Delete a message and every reply below it. Returns the removed messages."""
        with self._lock:
            cur = self._conn.execute(
                f"""
                WITH RECURSIVE tree(id, depth) AS (
                  SELECT id, 0 FROM messages WHERE id=?
                  UNION ALL
                  SELECT m.id, tree.depth + 1 FROM messages m JOIN tree ON m.parent_id = tree.id
                )
                SELECT {_TREE_COLUMNS}
                FROM tree JOIN messages m ON m.id = tree.id
                ORDER BY tree.depth, m.seq
                """,
                (message_id,),
            )
            removed = [_row_to_message(r) for r in cur.fetchall()]
            if removed:
                # Replies and reactions go with the root through ON DELETE CASCADE.
                self._conn.execute("DELETE FROM messages WHERE id=?", (message_id,))
                self._conn.commit()
            return removed

    # ----------------------------- reactions -----------------------------
    def create_reaction(self, message_id: str, principal_id: str, emoji: str) -> bool:
        with self._lock:
            try:
                cur = self._conn.execute(
                    "INSERT OR IGNORE INTO reactions(message_id, principal_id, emoji) VALUES(?,?,?)",
                    (message_id, principal_id, emoji),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                raise NotFoundError(f"Message '{message_id}' not found")
            return cur.rowcount > 0

    def delete_reaction(self, message_id: str, principal_id: str, emoji: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM reactions WHERE message_id=? AND principal_id=? AND emoji=?",
                (message_id, principal_id, emoji),
            )
            self._conn.commit()
            return cur.rowcount > 0

    def list_reactions(self, message_id: str) -> List[Tuple[str, str]]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT principal_id, emoji FROM reactions WHERE message_id=? ORDER BY seq",
                (message_id,),
            )
            return [(str(r["principal_id"]), str(r["emoji"])) for r in cur.fetchall()]
