"""SQLite persistence for accounts, rooms and chat history.

The service only talks to storage through the methods of ``SqliteStore``.
Every ``sqlite3.Error`` is re-raised as ``StoreError`` so callers can report
a failure to one client and carry on serving the others.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .constants import GLOBAL_ROOM, HISTORY_LIMIT, TIMESTAMP_FORMAT
from .paths import ensure_private_dir
from .util import expand_path


class StoreError(Exception):
    """Storage is unavailable or rejected an operation."""


class NotFoundError(StoreError):
    pass


class AlreadyExistsError(StoreError):
    pass


@dataclass(frozen=True)
class Account:
    password_hash: str
    current_room: str


@dataclass(frozen=True)
class StoredMessage:
    sender: str
    content: str
    sent_at: str


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS clients (
        username TEXT PRIMARY KEY,
        password_hash TEXT NOT NULL,
        current_room TEXT NOT NULL DEFAULT 'global'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rooms (
        name TEXT PRIMARY KEY,
        owner TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sender TEXT NOT NULL,
        content TEXT NOT NULL,
        room TEXT NOT NULL,
        sent_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room, id)",
)


class SqliteStore:
    """Thread-safe store backed by a single SQLite connection."""

    def __init__(self, path: str) -> None:
        self.log = logging.getLogger("tupochatd.store")
        self.path = path if path == ":memory:" else expand_path(path)
        self._lock = threading.Lock()
        self._closed = False

        if self.path != ":memory:":
            parent = Path(self.path).parent
            if str(parent):
                ensure_private_dir(parent)

        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            with self._conn:
                for stmt in _SCHEMA:
                    self._conn.execute(stmt)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open database {self.path}: {e}") from e

        self.log.info("Opened database path=%s", self.path)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._conn.close()
            except sqlite3.Error:
                self.log.debug("Database close failed", exc_info=True)

    def _fetchone(self, sql: str, params: tuple = ()) -> tuple | None:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _execute(self, sql: str, params: tuple = ()) -> int:
        with self._lock:
            try:
                with self._conn:
                    return self._conn.execute(sql, params).rowcount
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    # Accounts

    def account_exists(self, login: str) -> bool:
        row = self._fetchone("SELECT 1 FROM clients WHERE username = ?", (login,))
        return row is not None

    def create_account(self, login: str, password_hash: str) -> None:
        try:
            self._execute(
                "INSERT INTO clients (username, password_hash, current_room) VALUES (?, ?, ?)",
                (login, password_hash, GLOBAL_ROOM),
            )
        except StoreError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise AlreadyExistsError(f"account {login} already exists") from e
            raise

    def get_account(self, login: str) -> Account:
        row = self._fetchone(
            "SELECT password_hash, current_room FROM clients WHERE username = ?",
            (login,),
        )
        if row is None:
            raise NotFoundError(f"account {login} not found")
        return Account(password_hash=row[0], current_room=row[1] or GLOBAL_ROOM)

    def set_current_room(self, login: str, room: str) -> None:
        if not self._execute(
            "UPDATE clients SET current_room = ? WHERE username = ?", (room, login)
        ):
            raise NotFoundError(f"account {login} not found")

    # Rooms

    def room_exists(self, name: str) -> bool:
        if name == GLOBAL_ROOM:
            return True
        row = self._fetchone("SELECT 1 FROM rooms WHERE name = ?", (name,))
        return row is not None

    def get_room_owner(self, name: str) -> str:
        row = self._fetchone("SELECT owner FROM rooms WHERE name = ?", (name,))
        if row is None:
            raise NotFoundError(f"room {name} not found")
        return row[0]

    def create_room(self, name: str, owner: str, *, enter: bool = False) -> None:
        """Create a room owned by ``owner``.

        With ``enter``, the owner's current room is switched to it in the same
        transaction; a missing owner account then raises ``NotFoundError`` and
        nothing is created.
        """
        if name == GLOBAL_ROOM:
            raise AlreadyExistsError(f"room {name} already exists")
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO rooms (name, owner) VALUES (?, ?)", (name, owner)
                    )
                    if enter and not self._conn.execute(
                        "UPDATE clients SET current_room = ? WHERE username = ?",
                        (name, owner),
                    ).rowcount:
                        raise NotFoundError(f"account {owner} not found")
            except sqlite3.IntegrityError as e:
                raise AlreadyExistsError(f"room {name} already exists") from e
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def delete_room(self, name: str) -> None:
        """Delete a room, moving every account still in it back to global."""
        if name == GLOBAL_ROOM:
            raise StoreError("the global room cannot be deleted")
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "UPDATE clients SET current_room = ? WHERE current_room = ?",
                        (GLOBAL_ROOM, name),
                    )
                    deleted = self._conn.execute(
                        "DELETE FROM rooms WHERE name = ?", (name,)
                    ).rowcount
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e
        if not deleted:
            raise NotFoundError(f"room {name} not found")

    def list_room_names(self) -> list[str]:
        return [r[0] for r in self._fetchall("SELECT name FROM rooms ORDER BY name")]

    # Messages

    def append_message(
        self, sender: str, content: str, room: str, sent_at: datetime
    ) -> None:
        self._execute(
            "INSERT INTO messages (sender, content, room, sent_at) VALUES (?, ?, ?, ?)",
            (sender, content, room, sent_at.strftime(TIMESTAMP_FORMAT)),
        )

    def recent_messages(
        self, room: str, limit: int = HISTORY_LIMIT
    ) -> list[StoredMessage]:
        """Return the newest ``limit`` messages of ``room``, oldest first."""
        if limit <= 0:
            return []
        rows = self._fetchall(
            "SELECT sender, content, sent_at FROM messages WHERE room = ? "
            "ORDER BY id DESC LIMIT ?",
            (room, int(limit)),
        )
        return [StoredMessage(sender=r[0], content=r[1], sent_at=r[2]) for r in reversed(rows)]
