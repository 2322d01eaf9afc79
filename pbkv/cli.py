"""Command-line entry points: the view server, key/value server and client."""

from __future__ import annotations

import sys
import time
from collections.abc import Sequence

from pbkv import pbserver, viewserver
from pbkv.pbclerk import Clerk

_IDLE_SLEEP = 1.0


def _args(argv: Sequence[str] | None) -> list[str]:
    return list(sys.argv[1:] if argv is None else argv)


def pbc_main(argv: Sequence[str] | None = None) -> int:
    """``pbc viewport key`` prints the value; ``pbc viewport key value`` sets it."""
    args = _args(argv)
    if len(args) == 2:
        vshost, key = args
        print(Clerk(vshost, "").get(key))
        return 0
    if len(args) == 3:
        vshost, key, value = args
        Clerk(vshost, "").put(key, value)
        return 0
    print("Usage: pbc viewport key")
    print("       pbc viewport key value")
    return 1


def _serve_forever(server) -> int:
    try:
        while not server.is_dead():
            time.sleep(_IDLE_SLEEP)
    except KeyboardInterrupt:
        server.kill()
    return 0


def pbd_main(argv: Sequence[str] | None = None) -> int:
    """``pbd viewport myport`` runs a key/value server until it dies."""
    args = _args(argv)
    if len(args) != 2:
        print("Usage: pbd viewport myport")
        return 1
    return _serve_forever(pbserver.start_server(args[0], args[1]))


def viewd_main(argv: Sequence[str] | None = None) -> int:
    """``viewd port`` runs the view server until it dies."""
    args = _args(argv)
    if len(args) != 1:
        print("Usage: viewd port")
        return 1
    return _serve_forever(viewserver.start_server(args[0]))