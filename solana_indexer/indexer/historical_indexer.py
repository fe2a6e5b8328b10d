"""
Historical backfill for one program.

Walks getSignaturesForAddress backwards from the newest signature using the
`before` cursor, stores every transaction that is not yet indexed, and starts
again from the top once history is exhausted.
"""

import asyncio
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from solana_indexer.core.config import ProgramTarget, Settings, settings
from solana_indexer.core.exceptions import TransactionNotFoundError
from solana_indexer.database.transaction_repository import TransactionRepository
from solana_indexer.models.transaction import IngestionSource
from solana_indexer.services.event_parser import EventParser
from solana_indexer.services.retry import RetryOptions, with_retry
from solana_indexer.services.solana_client import SignatureInfo, SolanaClient

from .types import IndexerStatus, ProcessingStats, TransactionRecord


logger = structlog.get_logger(__name__)


class HistoricalIndexer:
    """
    Backward-paginating backfill loop.

    - Resume hint from the repository at start (dedup is done by filter_new)
    - Transactions fetched one at a time and saved immediately
    - Batch size doubles after a good iteration and halves after a failed one
    """

    def __init__(
        self,
        program: ProgramTarget,
        client: SolanaClient,
        repository: TransactionRepository,
        parser: Optional[EventParser] = None,
        config: Optional[Settings] = None,
        log: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.program = program
        self.client = client
        self.repository = repository
        self.parser = parser or EventParser()
        self.config = config or settings
        self.retry_options = RetryOptions.from_settings(self.config)
        self.logger = (log or logger).bind(service="historical_indexer", program=program.name)

        self.status = IndexerStatus.IDLE
        self.stats = ProcessingStats()
        self.batch_size = self.config.indexer_batch_size
        self.before_signature: Optional[str] = None
        self.resume_slot: Optional[int] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Read the resume hint, then run the backfill loop until stopped."""
        if self._running:
            return
        self._running = True
        self.stats.start_time = datetime.now(timezone.utc)

        try:
            await self._read_resume_hint()

            self.status = IndexerStatus.PAGING
            while self._running:
                await self.run_iteration()
        finally:
            self._running = False
            self.status = IndexerStatus.STOPPED
            self.logger.info("Historical indexer stopped", stats=asdict(self.stats))

    async def _read_resume_hint(self):
        # Only a hint: dedup happens in filter_new, so a failed read means a fresh start
        self.status = IndexerStatus.RESUMING
        try:
            last_slot = await self.repository.last_indexed_slot(self.program.id)
        except Exception as e:
            self.stats.errors += 1
            self.logger.warning("Failed to read resume point, starting fresh", error=str(e))
            last_slot = None

        if last_slot is not None and last_slot > self.program.start_slot:
            self.resume_slot = last_slot
            self.logger.info("Resuming historical backfill", last_indexed_slot=last_slot)
        else:
            self.logger.info("Starting fresh backfill", start_slot=self.program.start_slot)

    async def stop(self):
        """Stop at the next checkpoint; in-flight calls are allowed to finish."""
        if self._running:
            self.logger.info("Stopping historical indexer")
        self._running = False

    async def run_iteration(self):
        """One page of the backfill loop, including its pacing delay."""
        try:
            signatures = await with_retry(
                lambda: self.client.get_signatures_for_address(
                    self.program.id,
                    limit=self.batch_size,
                    before=self.before_signature
                ),
                self.retry_options,
                self.logger
            )

            if not signatures:
                self.status = IndexerStatus.DRAINING
                self.logger.info("No more historical signatures, waiting before rescanning from newest")
                await asyncio.sleep(self.config.indexer_poll_interval * 5)
                self.before_signature = None
                self.status = IndexerStatus.PAGING
                return

            self.stats.signatures_seen += len(signatures)
            self.logger.info("Fetched historical signatures", count=len(signatures), batch_size=self.batch_size)

            new_signatures = await self.repository.filter_new(
                self.program.id,
                [sig.signature for sig in signatures]
            )

            if new_signatures:
                await self.process_batch(new_signatures)
            else:
                self.logger.debug("All signatures already indexed", count=len(signatures))

            # Newest first: the last entry is the oldest seen, continue before it
            self.before_signature = signatures[-1].signature
            self.grow_batch()

            await asyncio.sleep(self.config.indexer_poll_interval)

        except Exception as e:
            self.stats.errors += 1
            self.shrink_batch()
            self.logger.error("Backfill loop error", error=str(e), batch_size=self.batch_size)
            await asyncio.sleep(self.config.indexer_loop_error_delay)

    async def process_batch(self, signatures: List[str]):
        """Fetch, decode and save each signature in order, one at a time."""
        self.logger.info("Processing batch", count=len(signatures))

        for signature in signatures:
            if not self._running:
                break
            try:
                await self.index_signature(signature)
                await asyncio.sleep(self.config.indexer_tx_delay)
            except Exception as e:
                self.stats.errors += 1
                self.logger.warning("Failed to process transaction", signature=signature, error=str(e))
                await asyncio.sleep(self.config.indexer_tx_error_delay)

    async def index_signature(self, signature: str) -> bool:
        """Fetch and store one transaction. Returns False if it does not invoke the program."""
        tx_info = await with_retry(
            lambda: self.client.get_transaction(signature),
            self.retry_options,
            self.logger
        )
        if tx_info is None:
            raise TransactionNotFoundError(signature)

        parsed = self.parser.parse_transaction(tx_info, self.program.id)
        if parsed is None:
            self.stats.skipped += 1
            return False

        await self.repository.save_batch([
            TransactionRecord.from_parsed(parsed, self.program.id, IngestionSource.BACKFILL)
        ])

        self.stats.transactions_indexed += 1
        self.stats.events_indexed += len(parsed.events)
        self.stats.last_processed_slot = parsed.slot
        self.stats.last_activity = datetime.now(timezone.utc)
        self.logger.info("Indexed historical transaction", signature=signature, slot=parsed.slot)
        return True

    def grow_batch(self):
        self.batch_size = min(self.batch_size * 2, self.config.indexer_max_batch_size)

    def shrink_batch(self):
        self.batch_size = max(self.batch_size // 2, self.config.indexer_min_batch_size)

    def get_status(self) -> Dict[str, Any]:
        return {
            "mode": "historical",
            "program": self.program.name,
            "program_id": self.program.id,
            "status": self.status.value,
            "batch_size": self.batch_size,
            "cursor": self.before_signature,
            "resume_slot": self.resume_slot,
            "stats": asdict(self.stats),
        }
