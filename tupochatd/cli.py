from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import asdict, replace
from pathlib import Path

import tomlkit

from .config import ServerRuntimeConfig
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import ChatService
from .store import StoreError

# Environment variable -> (config field, converter)
ENV_VARS: dict[str, tuple[str, type]] = {
    "TUPOCHATD_DATABASE": ("database", str),
    "TUPOCHATD_HOST": ("host", str),
    "TUPOCHATD_PORT": ("port", int),
    "TUPOCHATD_LOG_LEVEL": ("log_level", str),
}


def _load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def _apply_config_data(cfg: ServerRuntimeConfig, data: dict) -> ServerRuntimeConfig:
    server = data.get("server") if isinstance(data, dict) else None
    if isinstance(server, dict):
        data = {**data, **server}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        data = {**data, **{f"log_{k}": v for k, v in log_table.items()}}

    allowed = set(asdict(cfg).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in ("greeting", "log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None
    return replace(cfg, **updates) if updates else cfg


def _apply_config_file(cfg: ServerRuntimeConfig, path: str) -> ServerRuntimeConfig:
    if not path or not os.path.exists(path):
        return cfg
    return _apply_config_data(cfg, _load_toml(path))


def _apply_environment(
    cfg: ServerRuntimeConfig, environ: Mapping[str, str]
) -> ServerRuntimeConfig:
    updates: dict[str, object] = {}
    for var, (field, conv) in ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or not raw.strip():
            continue
        try:
            updates[field] = conv(raw.strip())
        except ValueError:
            raise ValueError(f"{var} must be {conv.__name__}, got {raw!r}") from None
    return replace(cfg, **updates) if updates else cfg


def _default_config_document(cfg: ServerRuntimeConfig) -> tomlkit.TOMLDocument:
    doc = tomlkit.document()
    doc.add(tomlkit.comment("tupochatd configuration (TOML)"))
    doc.add(tomlkit.comment("This file was created on first run. Environment variables"))
    doc.add(tomlkit.comment("(TUPOCHATD_DATABASE, TUPOCHATD_HOST, TUPOCHATD_PORT,"))
    doc.add(tomlkit.comment("TUPOCHATD_LOG_LEVEL) and command-line flags override it."))
    doc.add(tomlkit.nl())

    server = tomlkit.table()
    server.add("host", cfg.host)
    server.add("port", cfg.port)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("SQLite database holding accounts, rooms and messages."))
    server.add("database", cfg.database)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("Messages replayed when a client enters a room."))
    server.add("history_limit", cfg.history_limit)
    server.add("max_room_name_len", cfg.max_room_name_len)
    server.add("max_login_len", cfg.max_login_len)
    server.add("max_auth_attempts", cfg.max_auth_attempts)
    server.add(tomlkit.comment("Longer input lines disconnect the client."))
    server.add("max_line_len", cfg.max_line_len)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("Clients with more queued output than this are disconnected."))
    server.add("max_pending_lines", cfg.max_pending_lines)
    server.add("flush_timeout_s", cfg.flush_timeout_s)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("Optional line sent after the welcome banner."))
    server.add("greeting", "")
    server.add(tomlkit.comment("Read operator commands from stdin."))
    server.add("console", cfg.console)
    doc.add("server", server)

    log_table = tomlkit.table()
    log_table.add("level", cfg.log_level)
    log_table.add("console", cfg.log_console)
    log_table.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    log_table.add("file", "")
    log_table.add("format", cfg.log_format)
    log_table.add("datefmt", "")
    doc.add("logging", log_table)
    return doc


def _ensure_config_file(config_path: str) -> bool:
    if os.path.exists(config_path):
        return False

    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(_default_config_document(ServerRuntimeConfig())))
    try:
        os.chmod(config_path, 0o600)
    except OSError:
        pass
    return True


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tupochatd", description="Run a tupochat server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 5522)")
    p.add_argument("--database", default=None, help="SQLite database path")
    p.add_argument(
        "--history-limit",
        type=int,
        default=None,
        help="Messages replayed when entering a room",
    )
    p.add_argument("--greeting", default=None, help="Line sent after the welcome banner")
    p.add_argument(
        "--no-console",
        action="store_true",
        help="Do not read operator commands from stdin",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )
    return p


def _apply_args(cfg: ServerRuntimeConfig, args: argparse.Namespace) -> ServerRuntimeConfig:
    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.database is not None:
        cfg = replace(cfg, database=str(args.database))
    if args.history_limit is not None:
        cfg = replace(cfg, history_limit=int(args.history_limit))
    if args.greeting is not None:
        cfg = replace(cfg, greeting=args.greeting or None)
    if args.no_console:
        cfg = replace(cfg, console=False)
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) or None)
    return cfg


def load_config(
    argv: list[str] | None = None, environ: Mapping[str, str] | None = None
) -> tuple[ServerRuntimeConfig, argparse.Namespace]:
    """Resolve configuration: defaults < config file < environment < flags."""
    parser = _build_arg_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    config_path = str(args.config)

    if _ensure_config_file(config_path):
        print(f"Created default tupochatd config: {config_path}", file=sys.stderr)

    cfg = ServerRuntimeConfig(config_path=config_path)
    try:
        cfg = _apply_config_file(cfg, config_path)
        cfg = _apply_environment(cfg, os.environ if environ is None else environ)
    except (OSError, ValueError) as e:
        parser.error(str(e))
    return _apply_args(cfg, args), args


def main(argv: list[str] | None = None) -> None:
    cfg, args = load_config(argv)
    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = ChatService(cfg)
    try:
        svc.start()
    except (OSError, StoreError) as e:
        logging.getLogger("tupochatd").critical("Startup failed: %s", e)
        raise SystemExit(1) from e
    svc.run_forever()


if __name__ == "__main__":
    main()
