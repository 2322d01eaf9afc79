"""Views of the primary/backup service and the liveness timing constants.

The view service moves through numbered views, each naming a primary and,
when one is available, a backup. Servers ping once per PING_INTERVAL and are
declared dead after missing DEAD_PINGS pings in a row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

PING_INTERVAL = 0.1
"""Seconds between pings from each server."""

DEAD_PINGS = 5
"""Missed pings after which a server is considered dead."""


@dataclass(frozen=True)
class View:
    """A numbered view: the primary and backup addresses ("" when absent)."""

    viewnum: int = 0
    primary: str = ""
    backup: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"viewnum": self.viewnum, "primary": self.primary, "backup": self.backup}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> View:
        """Build a view from its dict form; missing fields take their defaults."""
        viewnum = data.get("viewnum", 0)
        primary = data.get("primary", "")
        backup = data.get("backup", "")
        if isinstance(viewnum, bool) or not isinstance(viewnum, int):
            raise TypeError(f"viewnum must be an integer, not {viewnum!r}")
        if viewnum < 0:
            raise ValueError(f"viewnum must not be negative: {viewnum}")
        if not isinstance(primary, str) or not isinstance(backup, str):
            raise TypeError("primary and backup must be strings")
        return View(viewnum, primary, backup)