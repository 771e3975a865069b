"""
Adapters package for the Gatekeeper Service.

Contains clients for the downstream transaction processor. Adapters map
transport failures onto ``ProcessorFailureError`` and never retry.
"""

from .processor_client import (
    HttpTransactionProcessor,
    LocalTransactionProcessor,
    TransactionProcessor,
)

__all__ = [
    "HttpTransactionProcessor",
    "LocalTransactionProcessor",
    "TransactionProcessor",
]
