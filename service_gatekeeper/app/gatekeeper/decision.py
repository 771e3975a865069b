"""
Gatekeeper decision types and script result decoding.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from shared.errors import ScriptError

# Value prefix marking an idempotency key reserved by an in-flight request.
PENDING_PREFIX = "__pending__:"


class Outcome(str, Enum):
    """Possible results of one gatekeeper evaluation."""

    ALLOW = "ALLOW"
    DUPLICATE = "DUPLICATE"
    RATE_LIMITED = "RATE_LIMITED"
    IN_PROGRESS = "IN_PROGRESS"


@dataclass(frozen=True)
class GatekeeperDecision:
    """Transient result of a gatekeeper evaluation.

    ``payload`` is set for DUPLICATE (the cached result). ``count`` and
    ``reset_in_ms`` describe the rate counter after the increment and are
    only set when the counter was touched (ALLOW, RATE_LIMITED).
    """

    outcome: Outcome
    payload: Optional[str] = None
    count: Optional[int] = None
    reset_in_ms: Optional[int] = None

    @classmethod
    def allow(cls, count: int, reset_in_ms: Optional[int] = None) -> "GatekeeperDecision":
        return cls(Outcome.ALLOW, count=count, reset_in_ms=reset_in_ms)

    @classmethod
    def duplicate(cls, payload: str) -> "GatekeeperDecision":
        return cls(Outcome.DUPLICATE, payload=payload)

    @classmethod
    def rate_limited(cls, count: int, reset_in_ms: Optional[int] = None) -> "GatekeeperDecision":
        return cls(Outcome.RATE_LIMITED, count=count, reset_in_ms=reset_in_ms)

    @classmethod
    def in_progress(cls) -> "GatekeeperDecision":
        return cls(Outcome.IN_PROGRESS)


@dataclass(frozen=True)
class Reservation:
    """Placeholder written atomically with an allow decision (strict mode)."""

    value: str
    ttl_seconds: float

    @classmethod
    def create(cls, ttl_seconds: float) -> "Reservation":
        return cls(value=f"{PENDING_PREFIX}{uuid.uuid4().hex}", ttl_seconds=ttl_seconds)


def is_reservation(value: str) -> bool:
    """Return True if a stored idempotency value is a pending placeholder."""
    return value.startswith(PENDING_PREFIX)


def _as_text(value: Any, field: str) -> str:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ScriptError(f"Script field '{field}' is not valid UTF-8") from exc
    if isinstance(value, str):
        return value
    raise ScriptError(
        f"Script field '{field}' has unexpected type",
        details={"field": field, "type": type(value).__name__},
    )


def _as_int(value: Any, field: str) -> int:
    # bool is an int subclass but never a valid counter
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise ScriptError(
        f"Script field '{field}' is not an integer",
        details={"field": field, "type": type(value).__name__},
    )


def decode_script_result(raw: Any) -> GatekeeperDecision:
    """Decode the gatekeeper script reply into a typed decision.

    Expected replies::

        ["DUPLICATE", <payload>]
        ["IN_PROGRESS", <placeholder>]
        ["ALLOW", <count>, <pttl ms>]
        ["RATE_LIMITED", <count>, <pttl ms>]

    Anything else raises ``ScriptError``.
    """
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        raise ScriptError(
            "Gatekeeper script returned an unexpected shape",
            details={"type": type(raw).__name__},
        )

    tag = _as_text(raw[0], "outcome")
    try:
        outcome = Outcome(tag)
    except ValueError as exc:
        raise ScriptError("Unknown gatekeeper outcome", details={"outcome": tag}) from exc

    if outcome in (Outcome.DUPLICATE, Outcome.IN_PROGRESS):
        if len(raw) != 2:
            raise ScriptError("Unexpected reply length", details={"outcome": tag, "length": len(raw)})
        if outcome is Outcome.IN_PROGRESS:
            _as_text(raw[1], "payload")
            return GatekeeperDecision.in_progress()
        return GatekeeperDecision.duplicate(_as_text(raw[1], "payload"))

    if len(raw) != 3:
        raise ScriptError("Unexpected reply length", details={"outcome": tag, "length": len(raw)})

    count = _as_int(raw[1], "count")
    pttl = _as_int(raw[2], "pttl")
    reset_in_ms = pttl if pttl >= 0 else None

    if outcome is Outcome.RATE_LIMITED:
        return GatekeeperDecision.rate_limited(count, reset_in_ms)
    return GatekeeperDecision.allow(count, reset_in_ms)
