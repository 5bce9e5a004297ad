import io

from tupochatd.console import CONSOLE_HELP, AdminConsole
from tupochatd.constants import GLOBAL_ROOM


def _console(service) -> tuple[AdminConsole, io.StringIO]:
    out = io.StringIO()
    return AdminConsole(service, stream=io.StringIO(), out=out), out


def test_help(service) -> None:
    console, out = _console(service)
    assert console.handle("/help") is True
    assert out.getvalue() == CONSOLE_HELP + "\n"


def test_blank_lines_are_ignored(service) -> None:
    console, out = _console(service)
    assert console.handle("   ") is True
    assert out.getvalue() == ""


def test_who_lists_connected_clients(service, add_client) -> None:
    console, out = _console(service)
    console.handle("/who")
    assert out.getvalue() == "no clients connected\n"

    service.store.create_room("lobby", "bob")
    add_client("bob", "lobby")
    add_client("alice")
    out.seek(0)
    out.truncate()
    console.handle("/who")
    assert out.getvalue().splitlines() == [
        "alice room=global peer=alice",
        "bob room=lobby peer=bob",
    ]


def test_rooms(service) -> None:
    console, out = _console(service)
    console.handle("/rooms")
    assert out.getvalue() == "no rooms\n"

    service.store.create_room("zeta", "a")
    service.store.create_room("alpha", "a")
    out.seek(0)
    out.truncate()
    console.handle("/rooms")
    assert out.getvalue().splitlines() == ["alpha", "zeta"]


def test_stats(service, add_client) -> None:
    add_client("alice")
    console, out = _console(service)
    console.handle("/stats")
    text = out.getvalue()
    assert text.startswith("tupochatd ")
    assert "clients=1" in text


def test_announcement_goes_to_global_and_is_saved(service, add_client) -> None:
    service.store.create_room("lobby", "bob")
    alice = add_client("alice")
    bob = add_client("bob", "lobby")
    console, out = _console(service)

    assert console.handle("maintenance at noon") is True

    assert out.getvalue() == "sent to 1 client(s) in global\n"
    assert alice.connection.lines[-1].endswith(" -- server: maintenance at noon")
    assert alice.connection.lines[-1].startswith("global -- ")
    assert bob.connection.lines == []

    saved = service.store.recent_messages(GLOBAL_ROOM)
    assert [(m.sender, m.content) for m in saved] == [("server", "maintenance at noon")]


def test_shutdown_stops_service(service, add_client) -> None:
    alice = add_client("alice")
    console, _ = _console(service)
    assert console.handle("/shutdown") is False
    assert service.shutting_down
    assert alice.connection.closed
    assert alice.connection.lines[-1] == "server is shutting down"


def test_run_stops_after_shutdown(service) -> None:
    out = io.StringIO()
    console = AdminConsole(
        service, stream=io.StringIO("/rooms\n/shutdown\n/help\n"), out=out
    )
    console.run()
    assert out.getvalue() == "no rooms\n"
    assert service.shutting_down
