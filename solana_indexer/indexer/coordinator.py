"""
Indexer coordinator.

Builds one historical and/or one realtime indexer per configured program and
runs each as its own asyncio task. Instances share nothing but the store.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import structlog

from solana_indexer.core.config import ProgramTarget, Settings, settings
from solana_indexer.database.transaction_repository import TransactionRepository
from solana_indexer.services.event_parser import EventParser
from solana_indexer.services.solana_client import SolanaClient

from .historical_indexer import HistoricalIndexer
from .realtime_indexer import RealtimeIndexer
from .types import Indexer


logger = structlog.get_logger(__name__)


class IndexerCoordinator:
    """
    Starts and stops every indexer instance.

    Usage:
        coordinator = IndexerCoordinator(client, repository)
        await coordinator.start()   # returns once all tasks are spawned
        ...
        await coordinator.stop()
    """

    def __init__(
        self,
        client: SolanaClient,
        repository: TransactionRepository,
        programs: Optional[Sequence[ProgramTarget]] = None,
        config: Optional[Settings] = None,
        log: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.config = config or settings
        self.programs = list(programs if programs is not None else self.config.programs)
        self.client = client
        self.repository = repository
        self.logger = (log or logger).bind(service="indexer_coordinator")
        self.indexers: List[Indexer] = self._build_indexers()
        self._tasks: List[asyncio.Task] = []

    def _build_indexers(self) -> List[Indexer]:
        indexers: List[Indexer] = []
        for program in self.programs:
            if program.historical:
                indexers.append(HistoricalIndexer(
                    program,
                    self.client,
                    self.repository,
                    parser=EventParser(self.logger),
                    config=self.config,
                    log=self.logger
                ))
            if program.realtime:
                indexers.append(RealtimeIndexer(
                    program,
                    self.client,
                    self.repository,
                    parser=EventParser(self.logger),
                    config=self.config,
                    log=self.logger
                ))
        return indexers

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self):
        """Spawn every indexer loop; does not wait for them to reach steady state."""
        if self._tasks:
            return

        self.logger.info(
            "Starting indexers",
            programs=len(self.programs),
            instances=len(self.indexers)
        )

        for indexer in self.indexers:
            task = asyncio.create_task(self._run(indexer))
            self._tasks.append(task)

        self.logger.info("All indexers started")

    async def _run(self, indexer: Indexer):
        try:
            await indexer.start()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("Indexer terminated with error", indexer=indexer.get_status(), error=str(e))
            raise

    async def wait(self):
        """Block until every indexer task has finished."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self):
        """Signal every indexer to stop at its next checkpoint and wait for the loops."""
        self.logger.info("Stopping all indexers")

        await asyncio.gather(
            *(indexer.stop() for indexer in self.indexers),
            return_exceptions=True
        )
        await self.wait()
        self._tasks = []

        self.logger.info("All indexers stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "indexers": [indexer.get_status() for indexer in self.indexers],
        }
