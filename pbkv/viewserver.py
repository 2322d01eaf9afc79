"""The view service: decides which server is primary and which is backup."""

from __future__ import annotations

import dataclasses
import threading
import time

from pbkv.rpc import RPCServer
from pbkv.views import DEAD_PINGS, PING_INTERVAL, View

_DEAD_AFTER = DEAD_PINGS * PING_INTERVAL


class ViewServer:
    """Tracks server liveness and advances views once the primary has acked."""

    def __init__(self, me: str) -> None:
        self.me = me
        self._lock = threading.Lock()
        self._dead = threading.Event()
        self._rpc: RPCServer | None = None
        self._view = View()
        self._primary_acked = False
        self._last_ping: dict[str, float] = {}
        self._current_tick = 0

    def ping(self, me: str, viewnum: int) -> View:
        """Record a ping from ``me`` which knows view ``viewnum``; return the current view."""
        with self._lock:
            # A primary pinging with 0 has restarted: leave its ping time alone
            # so that it times out and the backup takes over.
            primary_crashed = viewnum == 0 and self._view.primary == me
            if not primary_crashed:
                self._last_ping[me] = time.monotonic()
            if me == self._view.primary and viewnum == self._view.viewnum:
                self._primary_acked = True
            self._proceed_view()
            return self._view

    def get(self) -> View:
        with self._lock:
            return self._view

    def tick(self) -> None:
        with self._lock:
            self._current_tick += 1
            self._proceed_view()

    def kill(self) -> None:
        self._dead.set()
        if self._rpc is not None:
            self._rpc.close()

    def is_dead(self) -> bool:
        return self._dead.is_set()

    def rpc_count(self) -> int:
        return self._rpc.accepted if self._rpc is not None else 0

    def _is_dead_server(self, server: str, now: float) -> bool:
        last = self._last_ping.get(server)
        return not server or last is None or now - last > _DEAD_AFTER

    def _proceed_view(self) -> None:
        if self._view.viewnum > 0 and not self._primary_acked:
            return
        now = time.monotonic()
        current = self._view
        primary, backup, viewnum = current.primary, current.backup, current.viewnum
        changed = False

        if self._is_dead_server(current.primary, now):
            if not self._is_dead_server(current.backup, now) and current.backup:
                primary, backup = backup, ""
                changed = True

        if not backup or self._is_dead_server(backup, now):
            for server, last in self._last_ping.items():
                if server not in (primary, backup) and now - last <= _DEAD_AFTER:
                    backup = server
                    changed = True
                    break

        if viewnum == 0 and not primary:
            for server, last in self._last_ping.items():
                if now - last <= _DEAD_AFTER:
                    self._view = View(1, server, "")
                    self._primary_acked = False
                    return

        if changed:
            self._view = dataclasses.replace(
                current, viewnum=viewnum + 1, primary=primary, backup=backup
            )
            self._primary_acked = False

    def _handlers(self) -> dict:
        return {
            "ViewServer.Ping": lambda args: {
                "view": self.ping(str(args.get("me", "")), int(args.get("viewnum", 0))).to_dict()
            },
            "ViewServer.Get": lambda args: {"view": self.get().to_dict()},
        }

    def _serve(self) -> None:
        self._rpc = RPCServer(self.me, self._handlers()).start()
        self.me = self._rpc.address
        threading.Thread(target=self._tick_loop, daemon=True, name=f"viewserver-{self.me}").start()

    def _tick_loop(self) -> None:
        while not self._dead.is_set():
            self.tick()
            self._dead.wait(PING_INTERVAL)


def start_server(me: str) -> ViewServer:
    """Start a view server listening on ``me`` with its periodic ticker."""
    vs = ViewServer(me)
    vs._serve()
    return vs