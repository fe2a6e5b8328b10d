"""
Indexer components: historical backfill, realtime subscription and
the coordinator that runs them.
"""

from .types import IndexerStatus, ProcessingStats, TransactionRecord

__all__ = [
    "IndexerStatus",
    "ProcessingStats",
    "TransactionRecord",
]
