"""Statistics tracking and reporting for the chat service."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import ChatService


class StatsManager:
    """
    Manages service statistics collection and reporting.

    Tracks counters for:
    - Connections accepted and authentication outcomes
    - Commands handled and chat messages forwarded
    - Lines queued to clients and failed sends
    - Room creation/deletion
    - Storage errors
    """

    def __init__(self, service: ChatService) -> None:
        self.service = service
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "auth_ok": 0,
            "auth_failed": 0,
            "registrations": 0,
            "commands": 0,
            "messages": 0,
            "lines_out": 0,
            "send_failures": 0,
            "store_errors": 0,
            "rooms_created": 0,
            "rooms_deleted": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        reg = self.service.registry.get_stats()
        with self._lock:
            c = dict(self._counters)

        lines: list[str] = []
        lines.append(f"tupochatd {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"clients={reg['clients_total']} rooms_active={reg['rooms_active']}"
        )
        if reg["top_rooms"]:
            lines.append(
                "top_rooms=" + ", ".join(f"{r}:{n}" for r, n in reg["top_rooms"])
            )
        lines.append(
            "auth: connections={} ok={} failed={} registrations={}".format(
                c.get("connections", 0),
                c.get("auth_ok", 0),
                c.get("auth_failed", 0),
                c.get("registrations", 0),
            )
        )
        lines.append(
            "events: commands={} messages={} rooms_created={} rooms_deleted={}".format(
                c.get("commands", 0),
                c.get("messages", 0),
                c.get("rooms_created", 0),
                c.get("rooms_deleted", 0),
            )
        )
        lines.append(
            "io: lines_out={} send_failures={} store_errors={}".format(
                c.get("lines_out", 0),
                c.get("send_failures", 0),
                c.get("store_errors", 0),
            )
        )
        return "\n".join(lines)
