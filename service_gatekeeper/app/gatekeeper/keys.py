"""
Store keyspace for gatekeeper state.
"""

RATE_LIMIT_PREFIX = "lim:"
IDEMPOTENCY_PREFIX = "idem:"


def rate_limit_key(identity: str) -> str:
    """Key of the rate counter for a caller identity."""
    return f"{RATE_LIMIT_PREFIX}{identity}"


def idempotency_key(token: str) -> str:
    """Key of the cached result for an idempotency token."""
    return f"{IDEMPOTENCY_PREFIX}{token}"
