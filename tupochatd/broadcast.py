from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from .constants import TIMESTAMP_FORMAT

if TYPE_CHECKING:
    from .registry import Client
    from .service import ChatService
    from .store import StoredMessage


def render(sender: str, text: str, room: str, when: datetime) -> str:
    return f"{room} -- {when.strftime(TIMESTAMP_FORMAT)} -- {sender}: {text}"


def render_history(message: StoredMessage) -> str:
    return f"{message.sent_at} {message.sender}: {message.content}"


class Broadcaster:
    """
    Room-scoped fan-out of chat lines.

    Delivery is best-effort: a recipient whose connection is gone is skipped
    and left for its own supervisor to reap.
    """

    def __init__(self, service: ChatService) -> None:
        self.service = service
        self.log = logging.getLogger("tupochatd.broadcast")

    def distribute(
        self, sender: str, text: str, room: str, when: datetime | None = None
    ) -> int:
        """Send one rendered line to every client in ``room``, sender included.

        Returns the number of recipients the line was queued for.
        """
        line = render(sender, text, room, when or datetime.now())
        recipients = self.service.registry.members(room)
        delivered = self._deliver(recipients, line)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Distributed room=%r sender=%s recipients=%s delivered=%s",
                room,
                sender,
                len(recipients),
                delivered,
            )
        return delivered

    def notify(self, clients: Iterable[Client], text: str) -> int:
        return self._deliver(list(clients), text)

    def _deliver(self, recipients: list[Client], line: str) -> int:
        stats = self.service.stats_manager
        delivered = 0
        for client in recipients:
            conn = client.connection
            if conn is None:
                continue
            if conn.send_line(line):
                delivered += 1
            else:
                stats.inc("send_failures")
                self.log.debug("Skipped closed connection login=%s", client.login)
        stats.inc("lines_out", delivered)
        return delivered
