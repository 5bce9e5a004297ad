import pytest
from conftest import FakeConnection

from tupochatd.constants import GLOBAL_ROOM
from tupochatd.passwords import hash_password
from tupochatd.registry import Client
from tupochatd.store import NotFoundError


def _returning(service, login: str, room: str) -> Client:
    """A client whose login resolved to ``room`` but who is not registered yet."""
    digest = hash_password("pw")
    service.store.create_account(login, digest)
    service.store.set_current_room(login, room)
    return Client(
        login=login, password_hash=digest, current_room=room, connection=FakeConnection(login)
    )


def test_admit_keeps_existing_room(service, add_client) -> None:
    add_client("alice")
    service.rooms.create("lobby", "alice")
    bob = _returning(service, "bob", "lobby")

    admitted, previous = service.rooms.admit(bob)

    assert previous is None
    assert admitted.current_room == "lobby"
    assert service.registry.get("bob").current_room == "lobby"


def test_admit_after_room_deleted_during_login(service, add_client) -> None:
    add_client("alice")
    service.rooms.create("lobby", "alice")
    bob = _returning(service, "bob", "lobby")

    # The owner deletes the room between bob's login check and registration.
    moved = service.rooms.delete("lobby", "alice")
    assert [c.login for c in moved] == ["alice"]

    admitted, _ = service.rooms.admit(bob)

    assert admitted.current_room == GLOBAL_ROOM
    assert service.registry.get("bob").current_room == GLOBAL_ROOM
    assert service.store.get_account("bob").current_room == GLOBAL_ROOM
    assert not service.store.room_exists("lobby")


def test_admit_returns_replaced_entry(service, add_client) -> None:
    old = add_client("alice")
    fresh = Client(
        login="alice",
        password_hash=old.password_hash,
        current_room=GLOBAL_ROOM,
        connection=FakeConnection("alice-2"),
    )

    admitted, previous = service.rooms.admit(fresh)

    assert previous is old
    assert service.registry.get("alice") is admitted


def test_create_without_account_leaves_no_room(service) -> None:
    with pytest.raises(NotFoundError):
        service.rooms.create("lobby", "ghost")
    assert not service.store.room_exists("lobby")
    assert service.stats_manager.get("rooms_created") == 0
