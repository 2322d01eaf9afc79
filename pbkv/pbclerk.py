"""Client side of the primary/backup key/value service."""

from __future__ import annotations

import secrets
import time
from typing import Any

from pbkv.pbcommon import APPEND, PUT, Err
from pbkv.rpc import call
from pbkv.viewclerk import ViewClerk
from pbkv.views import PING_INTERVAL, View


def nrand() -> int:
    """A random request identifier in [0, 2**62)."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Sends Get/Put/Append requests to the current primary, retrying until answered.

    The current view is cached and only refreshed from the view service when
    the primary cannot be reached or refuses a request.
    """

    def __init__(self, vshost: str, me: str) -> None:
        self._vs = ViewClerk(me, vshost)
        try:
            self._view = self._vs.get()
        except ConnectionError:
            self._view = View()

    @property
    def view(self) -> View:
        """The view this clerk currently believes in."""
        return self._view

    def get(self, key: str) -> str:
        """Fetch ``key``'s value from the primary; "" if it has never been set."""
        args = {"key": key, "id": nrand()}
        while True:
            reply = self._call_primary("PBServer.Get", args)
            if reply is not None:
                err = reply.get("err")
                if err == Err.OK.value:
                    return str(reply.get("value", ""))
                if err == Err.NO_KEY.value:
                    return ""
            self._refresh_view()

    def put_append(self, key: str, value: str, op: str) -> None:
        """Send a Put or Append to the primary and keep trying until it succeeds."""
        args = {"key": key, "value": value, "op": op, "id": nrand()}
        while True:
            reply = self._call_primary("PBServer.PutAppend", args)
            if reply is not None and reply.get("err") == Err.OK.value:
                return
            self._refresh_view()

    def put(self, key: str, value: str) -> None:
        """Set ``key`` to ``value``."""
        self.put_append(key, value, PUT)

    def append(self, key: str, value: str) -> None:
        """Append ``value`` to ``key``'s current value."""
        self.put_append(key, value, APPEND)

    def _call_primary(self, method: str, args: dict[str, Any]) -> dict | None:
        primary = self._view.primary
        if not primary:
            return None
        try:
            return call(primary, method, args)
        except ConnectionError:
            return None

    def _refresh_view(self) -> None:
        time.sleep(PING_INTERVAL)
        try:
            self._view = self._vs.get()
        except ConnectionError:
            pass