"""
Gatekeeper decision package.

Holds the atomic decision procedure, its typed result, and the store
keyspace it operates on.
"""

from .decision import GatekeeperDecision, Outcome, Reservation, decode_script_result
from .keys import idempotency_key, rate_limit_key
from .transaction import GatekeeperTransaction, InMemoryGatekeeper, RedisScriptGatekeeper

__all__ = [
    "GatekeeperDecision",
    "Outcome",
    "Reservation",
    "decode_script_result",
    "idempotency_key",
    "rate_limit_key",
    "GatekeeperTransaction",
    "InMemoryGatekeeper",
    "RedisScriptGatekeeper",
]
