from __future__ import annotations

import logging
import socket
from typing import TYPE_CHECKING, Any

from .connection import Connection
from .constants import MSG_NOT_SAVED, MSG_REPLACED, WELCOME_TEXT
from .session import AuthSession
from .store import StoreError

if TYPE_CHECKING:
    from .registry import Client
    from .service import ChatService


class ConnectionSupervisor:
    """Owns one accepted socket for its whole lifetime."""

    def __init__(self, service: ChatService, sock: socket.socket, address: Any) -> None:
        self.service = service
        self.log = logging.getLogger("tupochatd.supervisor")
        self.conn = Connection(
            sock,
            address,
            max_pending_lines=int(service.config.max_pending_lines),
            flush_timeout_s=float(service.config.flush_timeout_s),
            max_line_len=int(service.config.max_line_len),
        )
        self.client: Client | None = None

    def run(self) -> None:
        try:
            self._run()
        except Exception:
            self.log.exception("Connection handler crashed peer=%s", self.conn.peer)
        finally:
            self._teardown()

    def _run(self) -> None:
        stats = self.service.stats_manager
        stats.inc("connections")
        self.log.info("Connection accepted peer=%s", self.conn.peer)

        result = AuthSession(self.service, self.conn).run()
        if not result.ok or result.client is None:
            stats.inc("auth_failed")
            return
        stats.inc("auth_ok")

        if self.service.shutting_down:
            return

        self.client, previous = self.service.rooms.admit(result.client)
        if previous is not None and previous.connection is not None:
            if previous.connection is not self.conn:
                self.log.info(
                    "Replacing session login=%s old_peer=%s new_peer=%s",
                    self.client.login,
                    previous.connection.peer,
                    self.conn.peer,
                )
                previous.connection.close(notice=MSG_REPLACED)

        dispatcher = self.service.dispatcher
        dispatcher.replay_history(self.conn, self.client.current_room)
        self.conn.send_line(WELCOME_TEXT)
        if self.service.config.greeting:
            self.conn.send_line(str(self.service.config.greeting))

        while True:
            line = self.conn.readline()
            if line is None:
                self.log.info("Client disconnected login=%s", self.client.login)
                return

            outcome = dispatcher.dispatch(self.client, line)
            if outcome.message is not None:
                self._persist(outcome.message)
            if outcome.exit:
                return

    def _persist(self, message) -> None:
        try:
            self.service.store.append_message(
                message.sender, message.content, message.room, message.sent_at
            )
        except StoreError:
            self.service.stats_manager.inc("store_errors")
            self.log.exception(
                "Failed to save message sender=%s room=%r", message.sender, message.room
            )
            self.conn.send_line(MSG_NOT_SAVED)

    def _teardown(self) -> None:
        if self.client is not None:
            self.service.registry.remove(self.client.login, connection=self.conn)
        self.conn.close()
        self.log.info(
            "Connection closed login=%s peer=%s",
            self.client.login if self.client else None,
            self.conn.peer,
        )
