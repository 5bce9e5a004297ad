import socket
import time
from dataclasses import replace

from conftest import LineClient

from tupochatd.constants import MSG_REPLACED, MSG_SHUTDOWN, WELCOME_TEXT
from tupochatd.service import ChatService


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _register(client, login: str, password: str = "hunter2") -> str:
    client.expect("Login: ")
    client.send(login)
    client.expect("Password: ")
    client.send(password)
    client.expect("Confirm password: ")
    client.send(password)
    return client.expect(WELCOME_TEXT + "\n")


def _login(client, login: str, password: str = "hunter2") -> str:
    client.expect("Login: ")
    client.send(login)
    client.expect("Password: ")
    client.send(password)
    return client.expect(WELCOME_TEXT + "\n")


def test_end_to_end_room_chat(running_service, connect) -> None:
    first = connect()
    _register(first, "login")
    first.send("/room lobby")
    first.expect("created room lobby\n")

    second = connect()
    _register(second, "other")
    second.send("/join lobby")
    # Empty history, then the confirmation.
    assert second.expect("joined lobby\n") == "joined lobby\n"

    first.send("hello")
    line = second.expect("\n")
    assert "lobby" in line
    assert "login" in line
    assert "hello" in line
    assert line.startswith("lobby -- ")
    assert line.endswith(" -- login: hello\n")

    # The sender sees its own line too.
    assert first.expect("\n").endswith(" -- login: hello\n")


def test_messages_are_persisted_and_replayed(running_service, connect) -> None:
    alice = connect()
    _register(alice, "alice")
    alice.send("/room lobby")
    alice.expect("created room lobby\n")
    alice.send("one")
    alice.expect("alice: one\n")
    alice.send("two")
    alice.expect("alice: two\n")

    assert _wait_for(lambda: len(running_service.store.recent_messages("lobby")) == 2)

    bob = connect()
    _register(bob, "bob")
    bob.send("/join lobby")
    replay = bob.expect("joined lobby\n")
    assert replay.index("alice: one") < replay.index("alice: two")


def test_returning_user_gets_room_history_on_connect(running_service, connect) -> None:
    alice = connect()
    _register(alice, "alice")
    alice.send("/room lobby")
    alice.expect("created room lobby\n")
    alice.send("remember me")
    alice.expect("alice: remember me\n")
    alice.send("/exit")
    alice.read_until_closed()
    assert _wait_for(lambda: "alice" not in running_service.registry)

    again = connect()
    banner = _login(again, "alice")
    assert "alice: remember me\n" in banner
    assert running_service.registry.get("alice").current_room == "lobby"


def test_other_rooms_do_not_receive(running_service, connect) -> None:
    alice = connect()
    _register(alice, "alice")
    carol = connect()
    _register(carol, "carol")
    alice.send("/room lobby")
    alice.expect("created room lobby\n")

    alice.send("private-ish")
    alice.expect("alice: private-ish\n")
    carol.send("in global")
    seen = carol.expect("carol: in global\n")
    assert "private-ish" not in seen


def test_exit_deregisters_and_closes(running_service, connect) -> None:
    alice = connect()
    _register(alice, "alice")
    assert _wait_for(lambda: "alice" in running_service.registry)

    alice.send("/exit")
    assert alice.read_until_closed() == ""
    assert _wait_for(lambda: "alice" not in running_service.registry)


def test_disconnect_deregisters(running_service, connect) -> None:
    alice = connect()
    _register(alice, "alice")
    assert _wait_for(lambda: "alice" in running_service.registry)
    alice.close()
    assert _wait_for(lambda: "alice" not in running_service.registry)


def test_reconnect_replaces_previous_session(running_service, connect) -> None:
    old = connect()
    _register(old, "alice")
    new = connect()
    _login(new, "alice")

    assert MSG_REPLACED in old.read_until_closed()
    assert _wait_for(
        lambda: running_service.registry.get("alice") is not None
        and not running_service.registry.get("alice").connection.closed
    )

    new.send("/help")
    new.expect("/exit - leave the chat\n")


def test_failed_auth_closes_connection(running_service, connect) -> None:
    alice = connect()
    _register(alice, "alice")

    intruder = connect()
    intruder.expect("Login: ")
    intruder.send("alice")
    for _ in range(3):
        intruder.expect("Password: ")
        intruder.send("guess")
    assert "too many failed attempts" in intruder.read_until_closed()
    assert running_service.stats_manager.get("auth_failed") == 1


def test_shutdown_notifies_everyone(running_service, connect) -> None:
    alice = connect()
    _register(alice, "alice")
    bob = connect()
    _register(bob, "bob")
    pending = connect()
    pending.expect("Login: ")

    running_service.stop()

    assert MSG_SHUTDOWN in alice.read_until_closed()
    assert MSG_SHUTDOWN in bob.read_until_closed()
    assert MSG_SHUTDOWN in pending.read_until_closed()
    assert len(running_service.registry) == 0
    running_service.stop()


def test_greeting_follows_welcome(config) -> None:
    svc = ChatService(replace(config, greeting="be nice"))
    svc.start()
    try:
        client = LineClient.connect(svc.address)
        _register(client, "alice")
        client.expect("be nice\n")
        client.close()
    finally:
        svc.stop()


def test_connection_accepted_during_shutdown_is_turned_away(service) -> None:
    service.stop()
    server_sock, client_sock = socket.socketpair()
    client = LineClient(client_sock)
    try:
        assert service._spawn_supervisor(server_sock, ("127.0.0.1", 4242)) is False
        assert MSG_SHUTDOWN in client.read_until_closed()
        assert service._supervisors == {}
    finally:
        client.close()
