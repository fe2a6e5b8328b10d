"""
Main entry point for the indexer service.

Usage:
    python -m solana_indexer.indexer.main
"""

import asyncio
import signal
from typing import Optional

import structlog

from solana_indexer.core.config import settings
from solana_indexer.core.database import close_database, init_database, get_session_maker, DatabaseManager
from solana_indexer.core.exceptions import ConfigurationError, SolanaRPCError
from solana_indexer.core.logging import setup_logging
from solana_indexer.database.transaction_repository import TransactionRepository
from solana_indexer.services.solana_client import SolanaClient

from .coordinator import IndexerCoordinator


logger = structlog.get_logger(__name__)

HEALTH_CHECK_INTERVAL = 300  # seconds


class IndexerMain:
    """Process-level wrapper: bootstraps the store and RPC, runs the coordinator."""

    def __init__(self):
        self.client: Optional[SolanaClient] = None
        self.coordinator: Optional[IndexerCoordinator] = None
        self.running = False
        self._stopped = False
        self._health_task: Optional[asyncio.Task] = None
        self._wait_task: Optional[asyncio.Task] = None
        self._shutdown = asyncio.Event()

    async def initialize(self):
        """Connect to the store and the RPC; failures surface to the process boundary."""
        if not settings.programs:
            raise ConfigurationError("No programs configured (PROGRAMS is empty)")

        logger.info("Initializing indexer service", programs=[p.name for p in settings.programs])

        await init_database()
        if not await DatabaseManager.health_check():
            raise ConfigurationError("Database is not reachable", {"database_url": settings.database_url})

        self.client = SolanaClient()
        if not await self.client.get_health():
            raise SolanaRPCError("RPC endpoint is not reachable", {"rpc_url": settings.solana_rpc_url})

        self.coordinator = IndexerCoordinator(
            self.client,
            TransactionRepository(get_session_maker())
        )
        logger.info("Indexer service initialized")

    async def start(self):
        """Start every indexer and block until they finish or shutdown is requested."""
        self.running = True
        await self.coordinator.start()
        self._health_task = asyncio.create_task(self._periodic_health_check())

        self._wait_task = asyncio.create_task(self.coordinator.wait())
        shutdown = asyncio.create_task(self._shutdown.wait())
        try:
            await asyncio.wait({self._wait_task, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            shutdown.cancel()

    def request_shutdown(self):
        """Wake start(); teardown itself happens in stop()."""
        self._shutdown.set()

    async def stop(self):
        """Stop indexers and release connections."""
        if self._stopped:
            return
        self._stopped = True
        self.running = False
        self._shutdown.set()
        logger.info("Stopping indexer service")

        if self._health_task and not self._health_task.done():
            self._health_task.cancel()

        try:
            if self.coordinator:
                await self.coordinator.stop()
            if self._wait_task:
                await self._wait_task
            if self.client:
                await self.client.close()
        finally:
            await close_database()

        logger.info("Indexer service stopped")

    async def _periodic_health_check(self):
        while self.running:
            try:
                await asyncio.sleep(HEALTH_CHECK_INTERVAL)
                logger.info("Indexer health check", status=self.coordinator.get_status())
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Health check error", error=str(e))


async def main():
    """Run the indexer service until SIGINT/SIGTERM."""
    setup_logging()

    service = IndexerMain()
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info("Received signal, shutting down", signal=signum)
        service.request_shutdown()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        await service.initialize()
        await service.start()
    except Exception as e:
        logger.error("Indexer service failed", error=str(e))
        raise
    finally:
        await service.stop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
