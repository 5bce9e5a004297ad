from datetime import datetime

from conftest import FakeConnection

from tupochatd.broadcast import render, render_history
from tupochatd.registry import Client
from tupochatd.store import StoredMessage


def _register(service, login: str, room: str) -> Client:
    client = Client(login=login, password_hash="h", current_room=room, connection=FakeConnection(login))
    service.registry.register(client)
    return client


def test_render_line_format() -> None:
    when = datetime(2024, 2, 3, 4, 5, 6)
    assert render("alice", "hi", "lobby", when) == "lobby -- 2024-02-03 04:05:06 -- alice: hi"


def test_render_history_format() -> None:
    msg = StoredMessage(sender="bob", content="old news", sent_at="2024-02-03 04:05:06")
    assert render_history(msg) == "2024-02-03 04:05:06 bob: old news"


def test_distribute_reaches_room_members_only(service) -> None:
    a = _register(service, "alice", "lobby")
    b = _register(service, "bob", "lobby")
    c = _register(service, "carol", "global")

    delivered = service.broadcaster.distribute("alice", "hello", "lobby", datetime(2024, 1, 1))

    assert delivered == 2
    assert a.connection.lines == ["lobby -- 2024-01-01 00:00:00 -- alice: hello"]
    assert b.connection.lines == a.connection.lines
    assert c.connection.lines == []


def test_closed_recipient_does_not_stop_delivery(service) -> None:
    a = _register(service, "alice", "lobby")
    b = _register(service, "bob", "lobby")
    c = _register(service, "carol", "lobby")
    b.connection.close()

    delivered = service.broadcaster.distribute("alice", "hello", "lobby")

    assert delivered == 2
    assert len(a.connection.lines) == 1
    assert len(c.connection.lines) == 1
    assert service.stats_manager.get("send_failures") == 1
    # Reaping is left to the recipient's own supervisor.
    assert "bob" in service.registry


def test_notify(service) -> None:
    a = _register(service, "alice", "lobby")
    b = _register(service, "bob", "lobby")
    assert service.broadcaster.notify([a, b], "heads up") == 2
    assert a.connection.lines == ["heads up"]
    assert b.connection.lines == ["heads up"]
