from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from .constants import GLOBAL_ROOM

if TYPE_CHECKING:
    from .connection import Connection


@dataclass(frozen=True)
class Client:
    login: str
    password_hash: str
    current_room: str = GLOBAL_ROOM
    connection: Connection | None = None


class ClientRegistry:
    """
    Directory of connected, authenticated clients keyed by login.

    Every method takes the registry lock for its whole duration and none of
    them performs network or storage I/O while holding it. Values are frozen
    ``Client`` records, so a snapshot can be iterated without the lock.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("tupochatd.registry")
        self._lock = threading.Lock()
        self._clients: dict[str, Client] = {}

    def register(self, client: Client) -> Client | None:
        """Insert or replace ``client``; returns the entry it replaced."""
        with self._lock:
            previous = self._clients.get(client.login)
            self._clients[client.login] = client
        if previous is not None:
            self.log.debug("Registry entry replaced login=%s", client.login)
        return previous

    def update(self, client: Client) -> bool:
        """Replace an existing entry. Returns False if the login is not registered."""
        with self._lock:
            if client.login not in self._clients:
                return False
            self._clients[client.login] = client
        return True

    def remove(self, login: str, *, connection: Any = None) -> Client | None:
        """Remove ``login``.

        With ``connection`` given, only removes the entry if it still owns that
        connection; a session replaced by a reconnect must not evict its
        successor when it is reaped.
        """
        with self._lock:
            current = self._clients.get(login)
            if current is None:
                return None
            if connection is not None and current.connection is not connection:
                return None
            return self._clients.pop(login)

    def get(self, login: str) -> Client | None:
        with self._lock:
            return self._clients.get(login)

    def set_room(self, login: str, room: str) -> Client | None:
        with self._lock:
            current = self._clients.get(login)
            if current is None:
                return None
            updated = replace(current, current_room=room)
            self._clients[login] = updated
        return updated

    def reassign_room(self, old_room: str, new_room: str) -> list[Client]:
        """Move every member of ``old_room`` to ``new_room``; returns the moved entries."""
        moved: list[Client] = []
        with self._lock:
            for login, client in self._clients.items():
                if client.current_room == old_room:
                    updated = replace(client, current_room=new_room)
                    self._clients[login] = updated
                    moved.append(updated)
        return moved

    def snapshot(self) -> tuple[Client, ...]:
        with self._lock:
            return tuple(self._clients.values())

    def members(self, room: str) -> list[Client]:
        return [c for c in self.snapshot() if c.current_room == room]

    def clear(self) -> list[Client]:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        return clients

    def get_stats(self) -> dict[str, Any]:
        clients = self.snapshot()
        by_room: dict[str, int] = {}
        for c in clients:
            by_room[c.current_room] = by_room.get(c.current_room, 0) + 1
        top_rooms = sorted(by_room.items(), key=lambda x: (-x[1], x[0]))[:5]
        return {"clients_total": len(clients), "rooms_active": len(by_room), "top_rooms": top_rooms}

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, login: object) -> bool:
        with self._lock:
            return login in self._clients
