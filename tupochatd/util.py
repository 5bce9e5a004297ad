from __future__ import annotations

import os

from .constants import MAX_LOGIN_LEN, MAX_ROOM_NAME_LEN, SERVER_SENDER


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def _has_control_chars(s: str) -> bool:
    return any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in s)


def normalize_login(value, *, max_len: int = MAX_LOGIN_LEN) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_len > 0 and len(s) > max_len:
        return None

    # Logins end up embedded in broadcast lines; keep them on one line.
    if _has_control_chars(s):
        return None

    if s.lower() == SERVER_SENDER:
        return None

    return s


def validate_room_name(name: str, *, max_len: int = MAX_ROOM_NAME_LEN) -> str:
    if not name or len(name) > max_len:
        raise ValueError(f"room name must be between 1 and {max_len} characters")
    if _has_control_chars(name):
        raise ValueError("room name must not contain control characters")
    return name
