"""
Solana Event Indexer

A backend service that keeps a deduplicated, resumable log of the events
emitted by a set of monitored Solana programs:
- Historical backfill over getSignaturesForAddress
- Realtime ingestion over logsSubscribe
- Anchor event decoding from "Program data" log lines
"""

__version__ = "0.1.0"
