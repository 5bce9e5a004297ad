from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .constants import (
    GLOBAL_ROOM,
    MSG_SERVER_ERROR,
    PROMPT_CONFIRM,
    PROMPT_LOGIN,
    PROMPT_PASSWORD,
)
from .passwords import hash_password, verify_password
from .registry import Client
from .store import AlreadyExistsError, StoreError
from .util import normalize_login

if TYPE_CHECKING:
    from .connection import Connection
    from .service import ChatService


class AuthState(enum.Enum):
    AWAIT_LOGIN = "await_login"
    AWAIT_PASSWORD = "await_password"
    AWAIT_NEW_PASSWORD = "await_new_password"
    AWAIT_CONFIRM = "await_confirm"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"

    @property
    def terminal(self) -> bool:
        return self in (AuthState.AUTHENTICATED, AuthState.REJECTED)


@dataclass(frozen=True)
class AuthResult:
    state: AuthState
    client: Client | None = None
    reason: str | None = None
    registered: bool = False

    @property
    def ok(self) -> bool:
        return self.state is AuthState.AUTHENTICATED


class AuthSession:
    """
    Per-connection login/registration state machine.

    Runs once at connect time on the connection's own thread:
    - AWAIT_LOGIN reads a login and looks the account up
    - AWAIT_PASSWORD checks an existing account's password (bounded attempts)
    - AWAIT_NEW_PASSWORD / AWAIT_CONFIRM register a new account (bounded
      confirmation attempts)

    Ends in AUTHENTICATED (carrying a ``Client``) or REJECTED. Rejection
    notices are written here; closing the connection is left to the caller.
    """

    def __init__(self, service: ChatService, conn: Connection) -> None:
        self.service = service
        self.conn = conn
        self.log = logging.getLogger("tupochatd.session")

        self.state = AuthState.AWAIT_LOGIN
        self.login: str | None = None
        self.attempts = 0
        self._password_hash: str | None = None
        self._current_room = GLOBAL_ROOM
        self._pending_password: str | None = None
        self._client: Client | None = None
        self._reason: str | None = None
        self._registered = False

        self._handlers: dict[AuthState, Callable[[], AuthState]] = {
            AuthState.AWAIT_LOGIN: self._on_await_login,
            AuthState.AWAIT_PASSWORD: self._on_await_password,
            AuthState.AWAIT_NEW_PASSWORD: self._on_await_new_password,
            AuthState.AWAIT_CONFIRM: self._on_await_confirm,
        }

    @property
    def max_attempts(self) -> int:
        return max(1, int(self.service.config.max_auth_attempts))

    def run(self) -> AuthResult:
        while not self.state.terminal:
            self._transition(self._handlers[self.state]())

        if self.state is AuthState.AUTHENTICATED:
            self.log.info(
                "Authenticated login=%s new=%s peer=%s",
                self.login,
                self._registered,
                self.conn.peer,
            )
        else:
            self.log.info(
                "Authentication rejected login=%r reason=%s peer=%s",
                self.login,
                self._reason,
                self.conn.peer,
            )
        return AuthResult(
            state=self.state,
            client=self._client,
            reason=self._reason,
            registered=self._registered,
        )

    def _transition(self, new_state: AuthState) -> None:
        if new_state is not self.state:
            self.log.debug(
                "Auth transition %s -> %s peer=%s",
                self.state.name,
                new_state.name,
                self.conn.peer,
            )
            # Attempt counters are per-state.
            self.attempts = 0
        self.state = new_state

    def _prompt(self, prompt: str) -> str | None:
        self.conn.send(prompt)
        return self.conn.readline()

    def _reject(self, reason: str, notice: str | None = None) -> AuthState:
        self._reason = reason
        if notice:
            self.conn.send_line(notice)
        return AuthState.REJECTED

    def _store_error(self, what: str) -> AuthState:
        self.service.stats_manager.inc("store_errors")
        self.log.exception("Storage error during %s login=%r", what, self.login)
        return self._reject("store error", MSG_SERVER_ERROR)

    def _authenticate(self, client: Client) -> AuthState:
        self._client = client
        return AuthState.AUTHENTICATED

    def _on_await_login(self) -> AuthState:
        raw = self._prompt(PROMPT_LOGIN)
        if raw is None:
            return self._reject("disconnected")

        login = normalize_login(raw, max_len=int(self.service.config.max_login_len))
        if login is None:
            return self._reject("invalid login", "invalid login name")
        self.login = login

        try:
            exists = self.service.store.account_exists(login)
        except StoreError:
            return self._store_error("account lookup")

        if not exists:
            self.conn.send_line("login not found, creating new account")
            return AuthState.AWAIT_NEW_PASSWORD

        try:
            account = self.service.store.get_account(login)
        except StoreError:
            return self._store_error("account fetch")
        self._password_hash = account.password_hash
        self._current_room = account.current_room
        return AuthState.AWAIT_PASSWORD

    def _on_await_password(self) -> AuthState:
        password = self._prompt(PROMPT_PASSWORD)
        if password is None:
            return self._reject("disconnected")

        if verify_password(password, self._password_hash or ""):
            return self._authenticate(
                Client(
                    login=str(self.login),
                    password_hash=str(self._password_hash),
                    current_room=self._resolve_room(self._current_room),
                    connection=self.conn,
                )
            )

        self.attempts += 1
        self.log.warning(
            "Bad password login=%s attempt=%s/%s peer=%s",
            self.login,
            self.attempts,
            self.max_attempts,
            self.conn.peer,
        )
        if self.attempts >= self.max_attempts:
            return self._reject(
                "too many password attempts",
                "too many failed attempts, connection closed",
            )
        self.conn.send_line("password is incorrect, try again")
        return AuthState.AWAIT_PASSWORD

    def _on_await_new_password(self) -> AuthState:
        password = self._prompt(PROMPT_PASSWORD)
        if password is None:
            return self._reject("disconnected")

        if not password:
            self.attempts += 1
            if self.attempts >= self.max_attempts:
                return self._reject(
                    "empty password", "password must not be empty, connection closed"
                )
            self.conn.send_line("password must not be empty")
            return AuthState.AWAIT_NEW_PASSWORD

        self._pending_password = password
        return AuthState.AWAIT_CONFIRM

    def _on_await_confirm(self) -> AuthState:
        confirm = self._prompt(PROMPT_CONFIRM)
        if confirm is None:
            return self._reject("disconnected")

        if confirm != self._pending_password:
            self.attempts += 1
            if self.attempts >= self.max_attempts:
                return self._reject(
                    "confirmation mismatch",
                    "passwords do not match, connection closed",
                )
            self.conn.send_line("passwords do not match, try again")
            return AuthState.AWAIT_CONFIRM

        password_hash = hash_password(confirm)
        self._pending_password = None
        try:
            self.service.store.create_account(str(self.login), password_hash)
        except AlreadyExistsError:
            return self._reject("login taken", "login already taken")
        except StoreError:
            return self._store_error("account creation")

        self._registered = True
        self.service.stats_manager.inc("registrations")
        return self._authenticate(
            Client(
                login=str(self.login),
                password_hash=password_hash,
                current_room=GLOBAL_ROOM,
                connection=self.conn,
            )
        )

    def _resolve_room(self, room: str) -> str:
        # A stored room may have been deleted while the account was offline.
        try:
            if room and self.service.store.room_exists(room):
                return room
        except StoreError:
            self.log.warning("Room lookup failed login=%s room=%r", self.login, room)
        return GLOBAL_ROOM
