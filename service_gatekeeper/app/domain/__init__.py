"""
Domain utilities for the Gatekeeper Service.

Holds the transaction handling protocol that sits between the HTTP route
and the gatekeeper decision.
"""

from .transaction_handler import TransactionHandler, TransactionResult

__all__ = [
    "TransactionHandler",
    "TransactionResult",
]
