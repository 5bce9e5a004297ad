"""Operator console: reads commands from the server's standard input."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import IO, TYPE_CHECKING

from .constants import GLOBAL_ROOM, SERVER_SENDER
from .store import StoreError

if TYPE_CHECKING:
    from .service import ChatService

CONSOLE_HELP = "\n".join(
    (
        "console commands:",
        "/help - this help",
        "/stats - service statistics",
        "/who - connected clients and their rooms",
        "/rooms - stored rooms",
        "/shutdown - stop the server",
        "anything else is sent to the global room as 'server'",
    )
)


class AdminConsole:
    def __init__(self, service: ChatService, *, stream: IO[str], out: IO[str]) -> None:
        self.service = service
        self.stream = stream
        self.out = out
        self.log = logging.getLogger("tupochatd.console")

    def run(self) -> None:
        for raw in self.stream:
            if self.service.shutting_down:
                break
            if not self.handle(raw.rstrip("\r\n")):
                break
        self.log.debug("Console input closed")

    def _print(self, text: str) -> None:
        print(text, file=self.out, flush=True)

    def handle(self, line: str) -> bool:
        """Run one console line. Returns False once the console should stop."""
        cmd = line.strip()
        if not cmd:
            return True

        if cmd == "/help":
            self._print(CONSOLE_HELP)
        elif cmd == "/stats":
            self._print(self.service.stats_manager.format_stats())
        elif cmd == "/who":
            clients = sorted(self.service.registry.snapshot(), key=lambda c: c.login)
            if not clients:
                self._print("no clients connected")
            for c in clients:
                peer = c.connection.peer if c.connection is not None else "-"
                self._print(f"{c.login} room={c.current_room} peer={peer}")
        elif cmd == "/rooms":
            try:
                names = self.service.rooms.list_names()
            except StoreError:
                self.log.exception("Console room listing failed")
                self._print("room listing failed")
                return True
            self._print("\n".join(names) if names else "no rooms")
        elif cmd == "/shutdown":
            self.service.stop()
            return False
        else:
            self._announce(line)
        return True

    def _announce(self, text: str) -> None:
        when = datetime.now()
        delivered = self.service.broadcaster.distribute(SERVER_SENDER, text, GLOBAL_ROOM, when)
        try:
            self.service.store.append_message(SERVER_SENDER, text, GLOBAL_ROOM, when)
        except StoreError:
            self.log.exception("Failed to save console message")
        self._print(f"sent to {delivered} client(s) in {GLOBAL_ROOM}")
