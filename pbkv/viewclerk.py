"""Client side of the view service."""

from __future__ import annotations

from pbkv.rpc import call
from pbkv.views import View


class ViewClerk:
    """Talks to the view server at ``server`` on behalf of ``me``."""

    def __init__(self, me: str, server: str) -> None:
        self.me = me
        self.server = server

    def ping(self, viewnum: int) -> View:
        """Report liveness and knowledge of ``viewnum``; return the current view."""
        try:
            reply = call(self.server, "ViewServer.Ping", {"me": self.me, "viewnum": viewnum})
        except ConnectionError as exc:
            raise ConnectionError(f"Ping({viewnum}) failed") from exc
        return View.from_dict(reply.get("view", {}))

    def get(self) -> View:
        """Fetch the current view without volunteering as a server."""
        reply = call(self.server, "ViewServer.Get", {})
        return View.from_dict(reply.get("view", {}))

    def primary(self) -> str:
        """The current primary, or "" if none or the view server is unreachable."""
        try:
            return self.get().primary
        except ConnectionError:
            return ""