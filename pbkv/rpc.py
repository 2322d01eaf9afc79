"""Line-delimited JSON remote procedure calls over TCP or Unix sockets.

An address of the form ``host:port`` names a TCP endpoint; anything else
is taken as the path of a Unix domain socket.
"""

from __future__ import annotations

import contextlib
import json
import os
import random
import socket
import threading
from collections.abc import Callable, Mapping
from typing import Any

Handler = Callable[[dict], dict]

_CALL_TIMEOUT = 10.0
_ACCEPT_POLL = 0.1


def _parse_address(address: str) -> tuple[int, Any]:
    host, sep, port = address.rpartition(":")
    if sep and port.isdigit():
        return socket.AF_INET, (host or "127.0.0.1", int(port))
    return socket.AF_UNIX, address


class RPCServer:
    """Serves named handlers; ``target`` maps method names to callables.

    Each handler receives the decoded argument dict and returns a reply dict.
    """

    def __init__(self, address: str, target: Mapping[str, Handler]) -> None:
        self.address = address
        self.accepted = 0
        self._handlers = dict(target)
        self._family, self._sockaddr = _parse_address(address)
        self._listener: socket.socket | None = None
        self._dead = threading.Event()
        self._unreliable = threading.Event()
        self._lock = threading.Lock()

    def __enter__(self) -> RPCServer:
        return self if self._listener is not None else self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def start(self) -> RPCServer:
        """Bind, listen and begin accepting connections in the background."""
        if self._listener is not None:
            raise RuntimeError(f"server on {self.address} already started")
        if self._family == socket.AF_UNIX:
            with contextlib.suppress(FileNotFoundError):
                os.remove(self._sockaddr)
        sock = socket.socket(self._family, socket.SOCK_STREAM)
        try:
            if self._family == socket.AF_INET:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(self._sockaddr)
            sock.listen()
        except OSError:
            sock.close()
            raise
        if self._family == socket.AF_INET:
            host, port = sock.getsockname()[:2]
            self.address = f"{host}:{port}"
        sock.settimeout(_ACCEPT_POLL)
        self._listener = sock
        threading.Thread(
            target=self._accept_loop, args=(sock,), daemon=True, name=f"rpc-{self.address}"
        ).start()
        return self

    def close(self) -> None:
        """Stop accepting connections and release the listening socket."""
        self._dead.set()
        if self._listener is not None:
            self._listener.close()
            if self._family == socket.AF_UNIX:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(self._sockaddr)

    def set_unreliable(self, what: bool) -> None:
        if what:
            self._unreliable.set()
        else:
            self._unreliable.clear()

    def is_unreliable(self) -> bool:
        return self._unreliable.is_set()

    def _accept_loop(self, listener: socket.socket) -> None:
        while not self._dead.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                if not self._dead.is_set():
                    self.close()
                break
            if self._dead.is_set():
                conn.close()
                break
            with self._lock:
                self.accepted += 1
            if self.is_unreliable() and random.randrange(1000) < 100:
                # Drop the request unread.
                conn.close()
                continue
            send_reply = not (self.is_unreliable() and random.randrange(1000) < 200)
            threading.Thread(target=self._serve, args=(conn, send_reply), daemon=True).start()

    def _serve(self, conn: socket.socket, send_reply: bool) -> None:
        with conn:
            conn.settimeout(_CALL_TIMEOUT)
            try:
                with conn.makefile("rb") as stream:
                    line = stream.readline()
                if not line:
                    return
                response = self._dispatch(json.loads(line))
                if send_reply:
                    conn.sendall(json.dumps(response).encode() + b"\n")
            except (OSError, ValueError):
                return

    def _dispatch(self, request: Any) -> dict:
        if not isinstance(request, dict):
            return {"error": "rpc: malformed request"}
        method = request.get("method")
        args = request.get("args") or {}
        handler = self._handlers.get(method)
        if handler is None:
            return {"error": f"rpc: can't find method {method}"}
        try:
            return {"reply": handler(args)}
        except Exception as exc:  # reported back to the caller
            return {"error": f"{type(exc).__name__}: {exc}"}


def call(srv: str, rpcname: str, args: dict) -> dict:
    """Send one request to ``srv`` and return the reply dict.

    Raises ConnectionError if the server cannot be reached, gives no reply,
    or reports an error.
    """
    family, sockaddr = _parse_address(srv)
    payload = json.dumps({"method": rpcname, "args": args}).encode() + b"\n"
    try:
        with socket.socket(family, socket.SOCK_STREAM) as sock:
            sock.settimeout(_CALL_TIMEOUT)
            sock.connect(sockaddr)
            sock.sendall(payload)
            with sock.makefile("rb") as stream:
                line = stream.readline()
    except OSError as exc:
        raise ConnectionError(f"{rpcname} to {srv} failed: {exc}") from exc
    if not line:
        raise ConnectionError(f"{rpcname} to {srv}: no reply")
    try:
        response = json.loads(line)
    except ValueError as exc:
        raise ConnectionError(f"{rpcname} to {srv}: malformed reply") from exc
    if "error" in response:
        raise ConnectionError(response["error"])
    return response.get("reply") or {}