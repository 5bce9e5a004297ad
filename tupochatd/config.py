from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    HISTORY_LIMIT,
    MAX_AUTH_ATTEMPTS,
    MAX_LINE_LEN,
    MAX_LOGIN_LEN,
    MAX_ROOM_NAME_LEN,
)
from .paths import default_database_path


@dataclass(frozen=True)
class ServerRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 5522
    database: str = str(default_database_path())
    history_limit: int = HISTORY_LIMIT
    max_room_name_len: int = MAX_ROOM_NAME_LEN
    max_login_len: int = MAX_LOGIN_LEN
    max_auth_attempts: int = MAX_AUTH_ATTEMPTS
    max_line_len: int = MAX_LINE_LEN
    max_pending_lines: int = 1024
    flush_timeout_s: float = 1.0
    greeting: str | None = None
    console: bool = True
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None
