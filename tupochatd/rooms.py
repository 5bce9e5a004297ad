"""Room management for the chat service.

Rooms themselves live in storage. This module decides when storage is
consulted and keeps the registry's view of room membership in step with it:
- Admission of authenticated clients into their stored room
- Room name validation
- Creation (caller becomes owner and moves in)
- Joining
- Owner-only deletion with reassignment of members to the global room
- History lookup for replay
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import TYPE_CHECKING

from .constants import GLOBAL_ROOM
from .store import AlreadyExistsError, NotFoundError, StoreError
from .util import validate_room_name

if TYPE_CHECKING:
    from .registry import Client
    from .service import ChatService
    from .store import StoredMessage


class NotOwnerError(Exception):
    """The requester does not own the room."""


class RoomManager:
    """Validates room operations and applies them to storage and the registry."""

    def __init__(self, service: ChatService) -> None:
        self.service = service
        self.log = logging.getLogger("tupochatd.rooms")

        # Serializes membership changes so storage and registry are updated
        # together. Distinct from the registry lock; storage calls happen here.
        self._room_lock = threading.Lock()

    def validate_name(self, name: str) -> str:
        return validate_room_name(name, max_len=int(self.service.config.max_room_name_len))

    def exists(self, name: str) -> bool:
        return self.service.store.room_exists(name)

    def list_names(self) -> list[str]:
        return self.service.store.list_room_names()

    def history(self, room: str) -> list[StoredMessage]:
        return self.service.store.recent_messages(room, int(self.service.config.history_limit))

    def admit(self, client: Client) -> tuple[Client, Client | None]:
        """Register a freshly authenticated ``client``.

        The stored room is checked again under the room lock, so a room
        deleted after login cannot be entered. Returns the registered entry
        and the one it replaced, if any.
        """
        store = self.service.store
        room = client.current_room
        with self._room_lock:
            if room != GLOBAL_ROOM:
                try:
                    gone = not store.room_exists(room)
                except StoreError:
                    self.log.warning("Room lookup failed login=%s room=%r", client.login, room)
                    gone = True
                if gone:
                    client = replace(client, current_room=GLOBAL_ROOM)
                    try:
                        store.set_current_room(client.login, GLOBAL_ROOM)
                    except StoreError:
                        self.log.warning(
                            "Could not reset stored room login=%s", client.login, exc_info=True
                        )
            previous = self.service.registry.register(client)

        if client.current_room != room:
            self.log.info(
                "Room gone at login, placed in %s login=%s room=%r",
                GLOBAL_ROOM,
                client.login,
                room,
            )
        return client, previous

    def create(self, name: str, owner: str) -> Client | None:
        """Create ``name`` owned by ``owner`` and move the owner into it."""
        store = self.service.store
        with self._room_lock:
            if store.room_exists(name):
                raise AlreadyExistsError(f"room {name} already exists")
            store.create_room(name, owner, enter=True)
            client = self.service.registry.set_room(owner, name)

        self.service.stats_manager.inc("rooms_created")
        self.log.info("Room created room=%r owner=%s", name, owner)
        return client

    def join(self, login: str, name: str) -> Client | None:
        store = self.service.store
        with self._room_lock:
            if not store.room_exists(name):
                raise NotFoundError(f"room {name} not found")
            store.set_current_room(login, name)
            client = self.service.registry.set_room(login, name)

        self.log.info("Room joined room=%r login=%s", name, login)
        return client

    def delete(self, name: str, requester: str) -> list[Client]:
        """Delete ``name`` if ``requester`` owns it.

        Every member is moved back to the global room, and so is the requester.
        Returns the registry entries that were moved out of the room.
        """
        store = self.service.store
        registry = self.service.registry
        with self._room_lock:
            if not store.room_exists(name):
                raise NotFoundError(f"room {name} not found")
            owner = None if name == GLOBAL_ROOM else store.get_room_owner(name)
            if owner != requester:
                raise NotOwnerError(f"{requester} does not own {name}")

            store.delete_room(name)
            moved = registry.reassign_room(name, GLOBAL_ROOM)
            store.set_current_room(requester, GLOBAL_ROOM)
            registry.set_room(requester, GLOBAL_ROOM)

        self.service.stats_manager.inc("rooms_deleted")
        self.log.info(
            "Room deleted room=%r owner=%s members_moved=%s", name, requester, len(moved)
        )
        return moved
