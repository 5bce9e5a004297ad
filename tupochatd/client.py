"""Minimal terminal client for a tupochat server."""

from __future__ import annotations

import argparse
import socket
import sys
import threading
from typing import IO

from .constants import CMD_EXIT


def _pump_server(sock: socket.socket, out: IO[str], done: threading.Event) -> None:
    try:
        while True:
            data = sock.recv(4096)
            if not data:
                break
            out.write(data.decode("utf-8", errors="replace"))
            out.flush()
    except OSError:
        pass
    finally:
        done.set()


def run(sock: socket.socket, stdin: IO[str], out: IO[str]) -> int:
    """Relay ``stdin`` to ``sock`` and server output to ``out``.

    Returns 0 after ``/exit``, 1 if the server went away first.
    """
    done = threading.Event()
    reader = threading.Thread(
        target=_pump_server, args=(sock, out, done), name="tupochat-reader", daemon=True
    )
    reader.start()

    code = 1
    for line in stdin:
        if done.is_set():
            break
        try:
            sock.sendall(line.encode("utf-8"))
        except OSError:
            break
        if line.rstrip("\r\n") == CMD_EXIT:
            code = 0
            break
    else:
        code = 0

    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    sock.close()
    reader.join(timeout=1.0)
    if code:
        print("disconnected from server", file=sys.stderr)
    return code


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(prog="tupochat", description="Connect to a tupochat server")
    p.add_argument("--host", default="localhost", help="Server address")
    p.add_argument("--port", type=int, default=5522, help="Server port")
    args = p.parse_args(sys.argv[1:] if argv is None else argv)

    try:
        sock = socket.create_connection((args.host, args.port))
    except OSError as e:
        print(f"cannot connect to {args.host}:{args.port}: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    raise SystemExit(run(sock, sys.stdin, sys.stdout))
