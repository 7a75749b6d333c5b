"""Shared pieces of the client session engines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class SessionResult:
    """What a session operation reports back to its UI.

    Engines never let a ``RideOfferError`` escape an operation; the
    failure is turned into ``ok=False`` plus a user-facing message and
    the engine is left in a known-good phase.
    """

    ok: bool
    message: str = ""
    value: Optional[Any] = None

    @classmethod
    def success(cls, message: str = "", value: Any = None) -> "SessionResult":
        return cls(True, message, value)

    @classmethod
    def failure(cls, message: str) -> "SessionResult":
        return cls(False, message)
