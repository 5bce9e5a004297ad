from __future__ import annotations

import logging
import signal
import socket
import sys
import threading
from typing import Any

from .broadcast import Broadcaster
from .commands import CommandDispatcher
from .config import ServerRuntimeConfig
from .constants import MSG_SHUTDOWN
from .registry import ClientRegistry
from .rooms import RoomManager
from .stats import StatsManager
from .store import SqliteStore
from .supervisor import ConnectionSupervisor


class ChatService:
    def __init__(self, config: ServerRuntimeConfig, store: Any = None) -> None:
        self.config = config
        self.log = logging.getLogger("tupochatd.service")

        self._shutdown = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False

        # The registry is the only shared mutable state between connection
        # threads; everything else is per-connection or delegated to storage.
        self.registry = ClientRegistry()
        self.stats_manager = StatsManager(self)
        self.broadcaster = Broadcaster(self)
        self.rooms = RoomManager(self)
        self.dispatcher = CommandDispatcher(self)

        self.store = store
        self._owns_store = store is None

        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._console_thread: threading.Thread | None = None

        self._supervisors_lock = threading.Lock()
        self._supervisors: dict[ConnectionSupervisor, threading.Thread] = {}

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    @property
    def address(self) -> tuple[str, int] | None:
        if self._listener is None:
            return None
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self) -> None:
        """Open storage and bind the listener.

        Failures here (``StoreError``, ``OSError``) are fatal to startup and
        propagate to the caller.
        """
        self.stats_manager.set_start_time()
        if self.store is None:
            self.store = SqliteStore(self.config.database)

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.config.host, int(self.config.port)))
            listener.listen()
            # Poll so stop() is noticed without relying on close() waking accept().
            listener.settimeout(0.5)
        except OSError:
            listener.close()
            raise
        self._listener = listener

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="tupochatd-accept", daemon=True
        )
        self._accept_thread.start()

        host, port = self.address or (self.config.host, self.config.port)
        self.log.info("Chat service listening host=%s port=%s", host, port)
        self.log.info(
            "Policy history_limit=%s max_room_name_len=%s max_auth_attempts=%s",
            self.config.history_limit,
            self.config.max_room_name_len,
            self.config.max_auth_attempts,
        )

    def _accept_loop(self) -> None:
        listener = self._listener
        while listener is not None and not self._shutdown.is_set():
            try:
                sock, addr = listener.accept()
            except TimeoutError:
                continue
            except OSError:
                if not self._shutdown.is_set():
                    self.log.exception("Accept failed")
                break

            sock.setblocking(True)
            if not self._spawn_supervisor(sock, addr):
                break

    def _spawn_supervisor(self, sock: socket.socket, addr: Any) -> bool:
        """Start a supervisor thread for an accepted socket.

        Returns False, after turning the client away, once shutdown has begun.
        """
        supervisor = ConnectionSupervisor(self, sock, addr)
        thread = threading.Thread(
            target=self._run_supervisor,
            args=(supervisor,),
            name=f"tupochatd-conn-{supervisor.conn.peer}",
            daemon=True,
        )
        # stop() sets the event before copying the table under this lock, so
        # every supervisor is either seen by stop() or refused here.
        with self._supervisors_lock:
            refused = self._shutdown.is_set()
            if not refused:
                self._supervisors[supervisor] = thread
                thread.start()
        if refused:
            supervisor.conn.close(notice=MSG_SHUTDOWN)
            return False
        return True

    def _run_supervisor(self, supervisor: ConnectionSupervisor) -> None:
        try:
            supervisor.run()
        finally:
            with self._supervisors_lock:
                self._supervisors.pop(supervisor, None)

    def start_console(self, stream=None, out=None) -> None:
        from .console import AdminConsole

        console = AdminConsole(self, stream=stream or sys.stdin, out=out or sys.stdout)
        self._console_thread = threading.Thread(
            target=console.run, name="tupochatd-console", daemon=True
        )
        self._console_thread.start()

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        if self.config.console:
            self.start_console()

        while not self._shutdown.is_set():
            self._shutdown.wait(0.25)

    def stop(self) -> None:
        """Stop accepting, notify and close every connection, release storage."""
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
        self._shutdown.set()
        self.log.info("Shutting down clients=%s", len(self.registry))

        if self._listener is not None:
            try:
                self._listener.close()
            except OSError:
                pass

        clients = self.registry.clear()
        with self._supervisors_lock:
            supervisors = dict(self._supervisors)

        # Broadcasts racing with this only see closed connections, which they
        # already tolerate.
        for client in clients:
            if client.connection is not None:
                client.connection.close(notice=MSG_SHUTDOWN)
        for supervisor in supervisors:
            supervisor.conn.close(notice=MSG_SHUTDOWN)

        for thread in supervisors.values():
            thread.join(timeout=max(1.0, float(self.config.flush_timeout_s)))
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=1.0)

        if self.store is not None and self._owns_store:
            self.store.close()
        self.log.info("Shutdown complete")
