"""
Core types for event indexing.
"""

from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Protocol

from solana_indexer.models.transaction import IngestionSource
from solana_indexer.services.event_parser import DecodedEvent, ParsedTransaction


class IndexerStatus(Enum):
    """Lifecycle state of a single indexer loop."""
    IDLE = "idle"
    RESUMING = "resuming"      # historical: reading the resume hint
    PAGING = "paging"          # historical: walking signatures backwards
    DRAINING = "draining"      # historical: history exhausted, cooling down
    SUBSCRIBED = "subscribed"  # realtime: subscription open
    DISABLED = "disabled"      # realtime: provider rejected the subscription filter
    STOPPED = "stopped"


@dataclass
class TransactionRecord:
    """A decoded transaction ready to persist for one program."""
    program_id: str
    signature: str
    slot: int
    block_time: Optional[int]
    err: Optional[Any]
    logs: List[str]
    events: List[DecodedEvent]
    source: IngestionSource

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedTransaction,
        program_id: str,
        source: IngestionSource
    ) -> "TransactionRecord":
        return cls(
            program_id=program_id,
            signature=parsed.signature,
            slot=parsed.slot,
            block_time=parsed.block_time,
            err=parsed.err,
            logs=parsed.logs,
            events=parsed.events,
            source=source,
        )


@dataclass
class ProcessingStats:
    """Statistics for a single indexer loop."""
    signatures_seen: int = 0
    transactions_indexed: int = 0
    events_indexed: int = 0
    skipped: int = 0
    errors: int = 0
    last_processed_slot: Optional[int] = None
    start_time: Optional[datetime] = None
    last_activity: Optional[datetime] = None


class Indexer(Protocol):
    """Capability shared by the historical and realtime indexers."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def get_status(self) -> dict: ...
