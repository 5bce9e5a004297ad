from __future__ import annotations

import os
from pathlib import Path


def default_tupochatd_dir() -> Path:
    override = os.environ.get("TUPOCHATD_HOME")
    if override:
        return Path(override)
    return Path.home() / ".tupochatd"


def default_config_path() -> Path:
    return default_tupochatd_dir() / "tupochatd.toml"


def default_database_path() -> Path:
    return default_tupochatd_dir() / "tupochat.db"


def ensure_private_dir(path: Path) -> None:
    # Only tighten directories we create ourselves.
    if path.exists():
        return
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except OSError:
        pass
