"""Line-oriented socket wrapper with a per-connection send queue."""

from __future__ import annotations

import logging
import queue
import socket
import threading
from typing import Any

from .constants import MAX_LINE_LEN

_CLOSE = object()


class Connection:
    """
    One client's TCP stream.

    Reads happen on the owning supervisor thread. Writes from any thread are
    queued and drained by a dedicated writer thread, so lines from concurrent
    broadcasts never interleave on the wire.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Any = None,
        *,
        max_pending_lines: int = 1024,
        flush_timeout_s: float = 1.0,
        max_line_len: int = MAX_LINE_LEN,
    ) -> None:
        self.log = logging.getLogger("tupochatd.connection")
        self.sock = sock
        self.address = address
        self.max_pending_lines = int(max_pending_lines)
        self.flush_timeout_s = float(flush_timeout_s)
        self.max_line_len = int(max_line_len)

        self._file = sock.makefile("r", encoding="utf-8", errors="replace", newline="\n")
        self._queue: queue.Queue[object] = queue.Queue()
        self._close_lock = threading.Lock()
        self._closed = False

        self._writer = threading.Thread(
            target=self._write_loop,
            name=f"tupochatd-writer-{self.peer}",
            daemon=True,
        )
        self._writer.start()

    @property
    def peer(self) -> str:
        addr = self.address
        if isinstance(addr, tuple) and len(addr) >= 2:
            return f"{addr[0]}:{addr[1]}"
        return str(addr) if addr else "-"

    @property
    def closed(self) -> bool:
        return self._closed

    def readline(self) -> str | None:
        """Return the next line without its terminator.

        Returns None at EOF, on error, or when the peer sends a line longer
        than ``max_line_len``.
        """
        if self._closed:
            return None
        try:
            data = self._file.readline(self.max_line_len)
        except (OSError, ValueError):
            return None
        if not data:
            return None
        if len(data) >= self.max_line_len and not data.endswith("\n"):
            self.log.warning(
                "Line too long, dropping peer=%s limit=%s", self.peer, self.max_line_len
            )
            return None
        return data.rstrip("\r\n")

    def send(self, text: str) -> bool:
        """Queue raw text. Returns False if the connection is closed."""
        if self._closed:
            return False
        if self.max_pending_lines > 0 and self._queue.qsize() >= self.max_pending_lines:
            self.log.warning(
                "Send backlog full, dropping slow peer=%s pending=%s",
                self.peer,
                self._queue.qsize(),
            )
            self._abort()
            return False
        self._queue.put(text)
        return True

    def send_line(self, text: str) -> bool:
        return self.send(text + "\n")

    def send_lines(self, lines) -> bool:
        ok = True
        for line in lines:
            ok = self.send_line(line) and ok
        return ok

    def close(self, notice: str | None = None) -> None:
        """Flush queued output (bounded), then shut the socket down.

        Safe to call more than once and from any thread; the first call wins.
        """
        if notice and not self._closed:
            self._queue.put(notice + "\n")

        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        self._queue.put(_CLOSE)
        if threading.current_thread() is not self._writer:
            self._writer.join(self.flush_timeout_s)
        self._shutdown_socket()

    def _abort(self) -> None:
        # Runs on whichever thread tripped the backlog limit; never waits for
        # the writer. The writer finishes tearing the socket down.
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._queue.put(_CLOSE)

    def _shutdown_socket(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._file.close()
        except (OSError, ValueError):
            pass
        try:
            self.sock.close()
        except OSError:
            pass

    def _write_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _CLOSE:
                break
            try:
                self.sock.sendall(str(item).encode("utf-8"))
            except OSError as e:
                self.log.debug("Write failed peer=%s err=%s", self.peer, e)
                break

        # The reader may be blocked; unblock it so the supervisor can reap.
        with self._close_lock:
            self._closed = True
        self._shutdown_socket()
