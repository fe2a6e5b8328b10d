"""
Realtime indexer for one program using the logsSubscribe websocket.

Each notification only carries a signature; the full transaction is fetched
over RPC, decoded and stored through the same repository as the backfill.
"""

import asyncio
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import structlog

from solana_indexer.core.config import ProgramTarget, Settings, settings
from solana_indexer.core.exceptions import SubscriptionError
from solana_indexer.database.transaction_repository import TransactionRepository
from solana_indexer.models.transaction import IngestionSource
from solana_indexer.services.event_parser import EventParser
from solana_indexer.services.retry import RetryOptions, with_retry
from solana_indexer.services.solana_client import LogsSubscription, SolanaClient

from .types import IndexerStatus, ProcessingStats, TransactionRecord


logger = structlog.get_logger(__name__)


class RealtimeIndexer:
    """
    Subscription-driven indexer.

    Features:
    - "mentions" logs subscription, notifications consumed from a queue by one task
    - Debounce against the repository before fetching a transaction
    - Reconnect after any subscription failure except an unsupported filter,
      which disables this instance and leaves the backfill as the only source
    """

    def __init__(
        self,
        program: ProgramTarget,
        client: SolanaClient,
        repository: TransactionRepository,
        parser: Optional[EventParser] = None,
        config: Optional[Settings] = None,
        subscription_factory: Optional[Callable[[], LogsSubscription]] = None,
        log: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.program = program
        self.client = client
        self.repository = repository
        self.parser = parser or EventParser()
        self.config = config or settings
        self.retry_options = RetryOptions.from_settings(self.config)
        self.subscription_factory = subscription_factory or (
            lambda: LogsSubscription(self.program.id, self.config)
        )
        self.logger = (log or logger).bind(service="realtime_indexer", program=program.name)

        self.status = IndexerStatus.IDLE
        self.stats = ProcessingStats()
        self.subscription: Optional[LogsSubscription] = None
        self.subscription_attempts = 0
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Subscribe and process notifications until stopped or disabled."""
        if self._running:
            return
        self._running = True
        self.stats.start_time = datetime.now(timezone.utc)
        self.logger.info("Starting realtime indexer")

        try:
            while self._running:
                try:
                    await self._subscribe()
                except SubscriptionError as e:
                    if e.is_unsupported_filter:
                        self._disable(e)
                        return
                    await self._handle_connection_loss(e)
                    continue
                except Exception as e:
                    await self._handle_connection_loss(e)
                    continue

                try:
                    await self._consume()
                except Exception as e:
                    await self._handle_connection_loss(e)
        finally:
            if self.status != IndexerStatus.DISABLED:
                self.status = IndexerStatus.STOPPED
            self.logger.info("Realtime indexer stopped", stats=asdict(self.stats))

    async def stop(self):
        """Stop the loop and release the subscription; release errors are only logged."""
        if self._running:
            self.logger.info("Stopping realtime indexer")
        self._running = False
        await self._release_subscription()

    async def _subscribe(self):
        self.subscription_attempts += 1
        subscription = self.subscription_factory()
        self.subscription = subscription
        subscription_id = await subscription.open()
        if not self._running:
            # stop() ran while open() was connecting; it may already have
            # dropped the reference, so close this instance directly
            if self.subscription is subscription:
                self.subscription = None
            try:
                await subscription.close()
            except Exception as e:
                self.logger.warning("Failed to release subscription", error=str(e))
            return
        self.status = IndexerStatus.SUBSCRIBED
        self.logger.info("Subscribed to logs", subscription_id=subscription_id)

    async def _consume(self):
        while self._running and self.subscription is not None:
            signature = await self.subscription.next_signature()
            if signature is None or not self._running:
                break
            try:
                await self.process_signature(signature)
            except Exception as e:
                self.stats.errors += 1
                self.logger.error("Failed to process realtime transaction", signature=signature, error=str(e))

    async def process_signature(self, signature: str) -> bool:
        """Fetch, decode and store one notified transaction. Returns True if stored."""
        # Debounce: duplicate notifications or already backfilled
        if not await self.repository.filter_new(self.program.id, [signature]):
            return False

        self.stats.signatures_seen += 1
        self.logger.debug("Detected realtime transaction", signature=signature)

        tx_info = await with_retry(
            lambda: self.client.get_transaction(signature),
            self.retry_options,
            self.logger
        )
        if tx_info is None:
            self.stats.skipped += 1
            self.logger.warning("Transaction not found", signature=signature)
            return False

        parsed = self.parser.parse_transaction(tx_info, self.program.id)
        if parsed is None:
            self.stats.skipped += 1
            return False

        await self.repository.save_batch([
            TransactionRecord.from_parsed(parsed, self.program.id, IngestionSource.REALTIME)
        ])

        self.stats.transactions_indexed += 1
        self.stats.events_indexed += len(parsed.events)
        self.stats.last_processed_slot = parsed.slot
        self.stats.last_activity = datetime.now(timezone.utc)
        self.logger.info("Indexed realtime transaction", signature=signature, slot=parsed.slot)
        return True

    def _disable(self, error: SubscriptionError):
        self.status = IndexerStatus.DISABLED
        self._running = False
        self.subscription = None
        self.logger.error(
            "WebSocket 'mentions' filter not supported by RPC; realtime disabled, "
            "historical polling remains the source of truth",
            error=error.message,
            rpc_code=error.rpc_code
        )

    async def _handle_connection_loss(self, error: Exception):
        self.stats.errors += 1
        await self._release_subscription()
        if not self._running:
            return
        self.status = IndexerStatus.IDLE
        self.logger.error(
            "WebSocket subscription failed, reconnecting",
            error=str(error),
            retry_delay=self.config.ws_reconnect_delay
        )
        await asyncio.sleep(self.config.ws_reconnect_delay)

    async def _release_subscription(self):
        subscription, self.subscription = self.subscription, None
        if subscription is None:
            return
        try:
            await subscription.close()
        except Exception as e:
            self.logger.warning("Failed to release subscription", error=str(e))

    def get_status(self) -> Dict[str, Any]:
        return {
            "mode": "realtime",
            "program": self.program.name,
            "program_id": self.program.id,
            "status": self.status.value,
            "subscription_attempts": self.subscription_attempts,
            "stats": asdict(self.stats),
        }
