"""Shared types of the primary/backup key/value service."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

GET = "Get"
PUT = "Put"
APPEND = "Append"


class Err(str, Enum):
    """Outcome of a key/value request."""

    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_SERVER = "ErrWrongServer"


@dataclass(frozen=True)
class Request:
    """A client request as remembered for duplicate detection."""

    key: str
    value: str = ""
    op: str = GET

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value, "op": self.op}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Request:
        """Build a request from its dict form; ``key`` is required."""
        if "key" not in data:
            raise ValueError("request has no key")
        key = data["key"]
        value = data.get("value", "")
        op = data.get("op", GET)
        if not all(isinstance(field, str) for field in (key, value, op)):
            raise TypeError("key, value and op must be strings")
        return Request(key, value, op)


@dataclass(frozen=True)
class GetReply:
    """Result of a Get: an error code and, when found, the value."""

    err: Err
    value: str = ""