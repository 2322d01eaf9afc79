"""A primary/backup key/value server driven by the view service."""

from __future__ import annotations

import threading
from typing import Any

from pbkv.pbcommon import APPEND, GET, PUT, Err, GetReply, Request
from pbkv.rpc import RPCServer, call
from pbkv.viewclerk import ViewClerk
from pbkv.views import PING_INTERVAL, View


def _get_reply_dict(reply: GetReply) -> dict[str, Any]:
    return {"err": reply.err.value, "value": reply.value}


class PBServer:
    """Serves Get/Put/Append as primary and mirrors the primary as backup."""

    def __init__(self, vshost: str, me: str) -> None:
        self.me = me
        self.vshost = vshost
        self._vs = ViewClerk(me, vshost)
        self._lock = threading.Lock()
        self._dead = threading.Event()
        self._view = View()
        self._database: dict[str, str] = {}
        self._prev_requests: dict[int, Request] = {}
        self._synced = False
        self._rpc = RPCServer(me, self._handlers())

    @property
    def view(self) -> View:
        """The view this server currently believes in."""
        return self._view

    @property
    def database(self) -> dict[str, str]:
        """A copy of the key/value data held by this server."""
        with self._lock:
            return dict(self._database)

    # Get

    def is_dup_get(self, key: str, request_id: int) -> bool:
        prev = self._prev_requests.get(request_id)
        return prev is not None and prev.key == key

    def apply_get(self, key: str, request_id: int) -> GetReply:
        self._prev_requests[request_id] = Request(key, "", GET)
        if key in self._database:
            return GetReply(Err.OK, self._database[key])
        return GetReply(Err.NO_KEY)

    def fwd_get_to_backup(self, key: str, request_id: int) -> GetReply:
        """Record a Get forwarded by the primary; only the backup accepts it."""
        with self._lock:
            if self._view.backup != self.me:
                return GetReply(Err.WRONG_SERVER)
            if self.is_dup_get(key, request_id):
                return GetReply(Err.OK, self._database.get(key, ""))
            return self.apply_get(key, request_id)

    def get(self, key: str, request_id: int) -> GetReply:
        """Serve a client Get; only the primary answers, after the backup agrees."""
        with self._lock:
            view = self._view
            if view.primary != self.me:
                return GetReply(Err.WRONG_SERVER)
            if self.is_dup_get(key, request_id):
                return GetReply(Err.OK, self._database.get(key, ""))
            if view.backup and not self._forward(
                view.backup,
                "PBServer.FwdGetToBackup",
                {"key": key, "id": request_id},
                (Err.OK, Err.NO_KEY),
            ):
                return GetReply(Err.WRONG_SERVER)
            return self.apply_get(key, request_id)

    # Put / Append

    def is_dup_put_append(self, key: str, value: str, op: str, request_id: int) -> bool:
        prev = self._prev_requests.get(request_id)
        return prev is not None and prev == Request(key, value, op)

    def apply_put_append(self, key: str, value: str, op: str, request_id: int) -> Err:
        if op == PUT:
            self._database[key] = value
        elif op == APPEND:
            self._database[key] = self._database.get(key, "") + value
        self._prev_requests[request_id] = Request(key, value, op)
        return Err.OK

    def fwd_put_append_to_backup(self, key: str, value: str, op: str, request_id: int) -> Err:
        """Apply a Put/Append forwarded by the primary; only the backup accepts it."""
        with self._lock:
            if self._view.backup != self.me:
                return Err.WRONG_SERVER
            if self.is_dup_put_append(key, value, op, request_id):
                return Err.OK
            return self.apply_put_append(key, value, op, request_id)

    def put_append(self, key: str, value: str, op: str, request_id: int) -> Err:
        """Serve a client Put/Append; the backup must apply it before the primary does."""
        with self._lock:
            view = self._view
            if view.primary != self.me:
                return Err.WRONG_SERVER
            if self.is_dup_put_append(key, value, op, request_id):
                return Err.OK
            if view.backup and not self._forward(
                view.backup,
                "PBServer.FwdPutAppendToBackup",
                {"key": key, "value": value, "op": op, "id": request_id},
                (Err.OK,),
            ):
                return Err.WRONG_SERVER
            return self.apply_put_append(key, value, op, request_id)

    # State transfer and view tracking

    def fwd_database_to_backup(
        self, database: dict[str, str], prev_requests: dict[int, Request]
    ) -> Err:
        """Replace this server's state with the primary's, if it is the backup."""
        with self._lock:
            try:
                new_view = self._vs.ping(self._view.viewnum)
            except ConnectionError:
                return Err.WRONG_SERVER
            self._view = new_view
            if new_view.backup != self.me:
                return Err.WRONG_SERVER
            self._database = dict(database)
            self._prev_requests = dict(prev_requests)
            return Err.OK

    def tick(self) -> None:
        """Ping the view service and, as primary, bring a new backup up to date."""
        with self._lock:
            try:
                new_view = self._vs.ping(self._view.viewnum)
            except ConnectionError:
                return
            if new_view.primary == self.me and new_view.backup:
                if new_view.backup != self._view.backup or not self._synced:
                    self._synced = self._transfer(new_view.backup)
            else:
                self._synced = False
            self._view = new_view

    def _transfer(self, backup: str) -> bool:
        args = {
            "database": dict(self._database),
            "prev_requests": {str(rid): req.to_dict() for rid, req in self._prev_requests.items()},
        }
        try:
            reply = call(backup, "PBServer.FwdDatabaseToBackup", args)
        except ConnectionError:
            return False
        return reply.get("err") == Err.OK.value

    def _forward(
        self, backup: str, method: str, args: dict[str, Any], accepted: tuple[Err, ...]
    ) -> bool:
        if not self._synced:
            return False
        try:
            reply = call(backup, method, args)
        except ConnectionError:
            return False
        return reply.get("err") in {err.value for err in accepted}

    # Lifecycle

    def kill(self) -> None:
        self._dead.set()
        self._rpc.close()

    def is_dead(self) -> bool:
        return self._dead.is_set()

    def set_unreliable(self, what: bool) -> None:
        self._rpc.set_unreliable(what)

    def is_unreliable(self) -> bool:
        return self._rpc.is_unreliable()

    def _handlers(self) -> dict:
        def get(args: dict) -> dict:
            return _get_reply_dict(self.get(str(args["key"]), int(args["id"])))

        def fwd_get(args: dict) -> dict:
            return _get_reply_dict(self.fwd_get_to_backup(str(args["key"]), int(args["id"])))

        def put_append(args: dict) -> dict:
            err = self.put_append(
                str(args["key"]), str(args.get("value", "")), str(args["op"]), int(args["id"])
            )
            return {"err": err.value}

        def fwd_put_append(args: dict) -> dict:
            err = self.fwd_put_append_to_backup(
                str(args["key"]), str(args.get("value", "")), str(args["op"]), int(args["id"])
            )
            return {"err": err.value}

        def fwd_database(args: dict) -> dict:
            database = {str(k): str(v) for k, v in (args.get("database") or {}).items()}
            prev = {
                int(rid): Request.from_dict(req)
                for rid, req in (args.get("prev_requests") or {}).items()
            }
            return {"err": self.fwd_database_to_backup(database, prev).value}

        return {
            "PBServer.Get": get,
            "PBServer.FwdGetToBackup": fwd_get,
            "PBServer.PutAppend": put_append,
            "PBServer.FwdPutAppendToBackup": fwd_put_append,
            "PBServer.FwdDatabaseToBackup": fwd_database,
        }

    def _serve(self) -> None:
        self._rpc.start()
        self.me = self._rpc.address
        self._vs = ViewClerk(self.me, self.vshost)
        threading.Thread(target=self._tick_loop, daemon=True, name=f"pbserver-{self.me}").start()

    def _tick_loop(self) -> None:
        while not self._dead.is_set():
            self.tick()
            self._dead.wait(PING_INTERVAL)


def start_server(vshost: str, me: str) -> PBServer:
    """Start a key/value server on ``me`` that follows the view service at ``vshost``."""
    pb = PBServer(vshost, me)
    pb._serve()
    return pb