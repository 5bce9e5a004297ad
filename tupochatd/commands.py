"""Command handling for connected chat clients."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from .broadcast import render_history
from .constants import (
    CMD_DELETE_ROOM,
    CMD_EXIT,
    CMD_HELP,
    CMD_JOIN,
    CMD_LIST,
    CMD_ROOM,
    GLOBAL_ROOM,
    HELP_TEXT,
    KNOWN_COMMANDS,
    MSG_NO_ROOMS,
    MSG_NOT_OWNER,
    MSG_SERVER_ERROR,
)
from .rooms import NotOwnerError
from .store import AlreadyExistsError, NotFoundError, StoreError

if TYPE_CHECKING:
    from .connection import Connection
    from .registry import Client
    from .service import ChatService


@dataclass(frozen=True)
class ChatMessage:
    sender: str
    content: str
    room: str
    sent_at: datetime


@dataclass(frozen=True)
class DispatchOutcome:
    exit: bool = False
    message: ChatMessage | None = None


def parse_line(line: str) -> tuple[str, str]:
    """Split a line into (command, argument) on the first space.

    A line without a space is all argument, except that a bare known command
    such as ``/exit`` is taken as that command with an empty argument.
    """
    parts = line.split(" ")
    if len(parts) == 1:
        if parts[0] in KNOWN_COMMANDS:
            return parts[0], ""
        return "", parts[0]
    return parts[0], " ".join(parts[1:])


class CommandDispatcher:
    """Turns one client line into a reply, a room change or a broadcast."""

    def __init__(self, service: ChatService) -> None:
        self.service = service
        self.log = logging.getLogger("tupochatd.commands")
        self._handlers: dict[str, Callable[[Client, str], DispatchOutcome]] = {
            CMD_EXIT: self._cmd_exit,
            CMD_HELP: self._cmd_help,
            CMD_LIST: self._cmd_list,
            CMD_ROOM: self._cmd_room,
            CMD_JOIN: self._cmd_join,
            CMD_DELETE_ROOM: self._cmd_delete_room,
        }

    def dispatch(self, client: Client, line: str) -> DispatchOutcome:
        """Handle one line from ``client``'s session.

        Returns the chat message to persist, if any, and whether the session
        should end.
        """
        current = self.service.registry.get(client.login)
        if current is None or current.connection is not client.connection:
            # Replaced by a newer session for the same login.
            return DispatchOutcome(exit=True)

        cmd, arg = parse_line(line)
        handler = self._handlers.get(cmd)
        if handler is None:
            return self._chat(current, f"{cmd} {arg}" if cmd else arg)

        self.service.stats_manager.inc("commands")
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Command login=%s cmd=%s arg=%r", current.login, cmd, arg)
        return handler(current, arg)

    def replay_history(self, conn: Connection | None, room: str) -> bool:
        """Send the recent history of ``room`` to ``conn``, oldest first."""
        if conn is None:
            return False
        try:
            messages = self.service.rooms.history(room)
        except StoreError:
            self._store_failed(conn, "history lookup failed room=%r", room)
            return False
        conn.send_lines(render_history(m) for m in messages)
        return True

    def _reply(self, client: Client, text: str) -> None:
        if client.connection is not None:
            client.connection.send_line(text)

    def _store_failed(self, conn: Connection | None, msg: str, *args) -> None:
        self.service.stats_manager.inc("store_errors")
        self.log.exception("Storage error: " + msg, *args)
        if conn is not None:
            conn.send_line(MSG_SERVER_ERROR)

    def _chat(self, client: Client, text: str) -> DispatchOutcome:
        if not text.strip():
            return DispatchOutcome()

        when = datetime.now()
        self.service.broadcaster.distribute(client.login, text, client.current_room, when)
        self.service.stats_manager.inc("messages")
        return DispatchOutcome(
            message=ChatMessage(
                sender=client.login, content=text, room=client.current_room, sent_at=when
            )
        )

    def _cmd_exit(self, client: Client, arg: str) -> DispatchOutcome:
        self.log.info("Client exit login=%s", client.login)
        return DispatchOutcome(exit=True)

    def _cmd_help(self, client: Client, arg: str) -> DispatchOutcome:
        self._reply(client, HELP_TEXT)
        return DispatchOutcome()

    def _cmd_list(self, client: Client, arg: str) -> DispatchOutcome:
        try:
            names = self.service.rooms.list_names()
        except StoreError:
            self._store_failed(client.connection, "list rooms failed login=%s", client.login)
            return DispatchOutcome()

        if not names:
            self._reply(client, MSG_NO_ROOMS)
        elif client.connection is not None:
            client.connection.send_lines(names)
        return DispatchOutcome()

    def _cmd_room(self, client: Client, arg: str) -> DispatchOutcome:
        try:
            name = self.service.rooms.validate_name(arg)
        except ValueError as e:
            self._reply(client, str(e))
            return DispatchOutcome()

        try:
            self.service.rooms.create(name, client.login)
        except AlreadyExistsError:
            self._reply(client, f"room {name} already exists")
        except StoreError:
            self._store_failed(client.connection, "create room failed room=%r", name)
        else:
            self._reply(client, f"created room {name}")
        return DispatchOutcome()

    def _cmd_join(self, client: Client, arg: str) -> DispatchOutcome:
        try:
            name = self.service.rooms.validate_name(arg)
        except ValueError as e:
            self._reply(client, str(e))
            return DispatchOutcome()

        try:
            self.service.rooms.join(client.login, name)
        except NotFoundError:
            self._reply(client, f"room {name} does not exist")
            return DispatchOutcome()
        except StoreError:
            self._store_failed(client.connection, "join room failed room=%r", name)
            return DispatchOutcome()

        self.replay_history(client.connection, name)
        self._reply(client, f"joined {name}")
        return DispatchOutcome()

    def _cmd_delete_room(self, client: Client, arg: str) -> DispatchOutcome:
        try:
            name = self.service.rooms.validate_name(arg)
        except ValueError as e:
            self._reply(client, str(e))
            return DispatchOutcome()

        try:
            moved = self.service.rooms.delete(name, client.login)
        except NotFoundError:
            self._reply(client, f"room {name} does not exist")
            return DispatchOutcome()
        except NotOwnerError:
            self._reply(client, MSG_NOT_OWNER)
            return DispatchOutcome()
        except StoreError:
            self._store_failed(client.connection, "delete room failed room=%r", name)
            return DispatchOutcome()

        self.service.broadcaster.notify(
            (c for c in moved if c.login != client.login),
            f"room {name} was deleted, you are now in {GLOBAL_ROOM}",
        )
        self.replay_history(client.connection, GLOBAL_ROOM)
        self._reply(client, f"deleted room {name}")
        return DispatchOutcome()
