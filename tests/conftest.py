import socket
import time

import pytest

from tupochatd.config import ServerRuntimeConfig
from tupochatd.constants import GLOBAL_ROOM
from tupochatd.passwords import hash_password
from tupochatd.registry import Client
from tupochatd.service import ChatService
from tupochatd.store import SqliteStore


class FakeConnection:
    """Records what the server would have written to a client."""

    def __init__(self, peer: str = "fake") -> None:
        self.peer = peer
        self.sent: list[str] = []
        self.closed = False

    def send(self, text: str) -> bool:
        if self.closed:
            return False
        self.sent.append(text)
        return True

    def send_line(self, text: str) -> bool:
        return self.send(text + "\n")

    def send_lines(self, lines) -> bool:
        ok = True
        for line in lines:
            ok = self.send_line(line) and ok
        return ok

    def close(self, notice: str | None = None) -> None:
        if notice and not self.closed:
            self.send_line(notice)
        self.closed = True

    @property
    def lines(self) -> list[str]:
        return "".join(self.sent).splitlines()

    def clear(self) -> None:
        self.sent.clear()


class LineClient:
    """Blocking test client that reads until an expected substring arrives."""

    def __init__(self, sock: socket.socket, timeout: float = 5.0) -> None:
        self.sock = sock
        self.sock.settimeout(timeout)
        self.timeout = timeout
        self.buf = ""

    @classmethod
    def connect(cls, address, timeout: float = 5.0) -> "LineClient":
        return cls(socket.create_connection(address, timeout=timeout), timeout)

    def send(self, line: str) -> None:
        self.sock.sendall((line + "\n").encode("utf-8"))

    def _recv(self) -> bool:
        try:
            data = self.sock.recv(4096)
        except (TimeoutError, OSError):
            return False
        if not data:
            return False
        self.buf += data.decode("utf-8")
        return True

    def expect(self, text: str) -> str:
        """Consume and return everything up to and including ``text``."""
        deadline = time.monotonic() + self.timeout
        while text not in self.buf:
            if time.monotonic() > deadline or not self._recv():
                raise AssertionError(f"expected {text!r}, got {self.buf!r}")
        idx = self.buf.index(text) + len(text)
        consumed, self.buf = self.buf[:idx], self.buf[idx:]
        return consumed

    def read_until_closed(self) -> str:
        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            try:
                data = self.sock.recv(4096)
            except TimeoutError:
                break
            except OSError:
                return self._drain()
            if not data:
                return self._drain()
            self.buf += data.decode("utf-8")
        raise AssertionError(f"connection still open, got {self.buf!r}")

    def _drain(self) -> str:
        out, self.buf = self.buf, ""
        return out

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass


@pytest.fixture
def config(tmp_path) -> ServerRuntimeConfig:
    return ServerRuntimeConfig(
        host="127.0.0.1",
        port=0,
        database=str(tmp_path / "chat.db"),
        console=False,
        flush_timeout_s=0.5,
        log_console=False,
    )


@pytest.fixture
def store(config):
    s = SqliteStore(config.database)
    yield s
    s.close()


@pytest.fixture
def service(config, store) -> ChatService:
    """A service wired to a real store but not listening."""
    return ChatService(config, store=store)


@pytest.fixture
def add_client(service):
    """Create an account and register a connected client backed by a FakeConnection."""

    def _add(login: str, room: str = GLOBAL_ROOM, password: str = "pw") -> Client:
        digest = hash_password(password)
        if not service.store.account_exists(login):
            service.store.create_account(login, digest)
        service.store.set_current_room(login, room)
        client = Client(
            login=login,
            password_hash=digest,
            current_room=room,
            connection=FakeConnection(login),
        )
        service.registry.register(client)
        return client

    return _add


@pytest.fixture
def running_service(config):
    svc = ChatService(config)
    svc.start()
    yield svc
    svc.stop()


@pytest.fixture
def connect(running_service):
    clients: list[LineClient] = []

    def _connect() -> LineClient:
        c = LineClient.connect(running_service.address)
        clients.append(c)
        return c

    yield _connect
    for c in clients:
        c.close()
