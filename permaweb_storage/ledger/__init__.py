"""
Ledger access layer: tag queries, signed writes, verified reads.
"""

from .client import Ledger
from .query import PACKAGE_FILE, QueryClient
from .reader import TransactionReader
from .writer import SettlePolicy, Submission, TransactionWriter

__all__ = [
    "Ledger",
    "QueryClient",
    "TransactionReader",
    "TransactionWriter",
    "SettlePolicy",
    "Submission",
    "PACKAGE_FILE",
]
