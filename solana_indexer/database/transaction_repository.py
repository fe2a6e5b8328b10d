"""
Repository for indexed transactions and their decoded events.

This is the only writer of durable state. The historical and realtime
loops never talk to each other; they coordinate through the unique
indexes on (program_id, signature) and (signature, event_type, log_index).
"""

from typing import List, Optional, Sequence
import structlog

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from solana_indexer.core.database import get_session_maker
from solana_indexer.core.exceptions import DatabaseError
from solana_indexer.indexer.types import TransactionRecord
from solana_indexer.models.event import EventType, StakingEvent
from solana_indexer.models.transaction import IndexedTransaction


logger = structlog.get_logger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _insert_for(db: AsyncSession):
    """Dialect insert construct that supports ON CONFLICT DO NOTHING."""
    dialect = db.bind.dialect.name
    if dialect not in _INSERT_BY_DIALECT:
        raise DatabaseError(f"Unsupported database dialect: {dialect}")
    return _INSERT_BY_DIALECT[dialect]


class TransactionRepository:
    """
    Idempotent persistence for the indexers.

    Inserts are insert-if-absent: a duplicate is absorbed by the store and is
    not an error, so any save can be retried wholesale.
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        log: Optional[structlog.stdlib.BoundLogger] = None
    ):
        """Initialize the repository; defaults to the global session maker."""
        self._session_maker = session_maker
        self.logger = (log or logger).bind(service="transaction_repository")

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            self._session_maker = get_session_maker()
        return self._session_maker

    async def filter_new(self, program_id: str, signatures: Sequence[str]) -> List[str]:
        """Return the signatures not yet stored for this program, in input order."""
        if not signatures:
            return []

        async with self.session_maker() as db:
            result = await db.execute(
                select(IndexedTransaction.signature)
                .where(IndexedTransaction.program_id == program_id)
                .where(IndexedTransaction.signature.in_(list(signatures)))
            )
            existing = set(result.scalars().all())

        return [signature for signature in signatures if signature not in existing]

    async def last_indexed_slot(self, program_id: str) -> Optional[int]:
        """Highest stored slot for this program, None if nothing is stored yet."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(func.max(IndexedTransaction.slot))
                .where(IndexedTransaction.program_id == program_id)
            )
            return result.scalar_one_or_none()

    async def save_batch(self, records: Sequence[TransactionRecord]) -> int:
        """
        Insert transactions and their events if absent.

        Args:
            records: Decoded transactions to store

        Returns:
            Number of transactions newly stored (duplicates count as zero)

        Raises:
            DatabaseError: On any store failure other than a duplicate key.
                Nothing from the batch is committed in that case.
        """
        if not records:
            return 0

        try:
            async with self.session_maker() as db:
                insert = _insert_for(db)
                saved = 0

                for record in records:
                    result = await db.execute(
                        insert(IndexedTransaction)
                        .values(
                            program_id=record.program_id,
                            signature=record.signature,
                            slot=record.slot,
                            block_time=record.block_time,
                            err=record.err,
                            logs=record.logs,
                            source=record.source,
                        )
                        .on_conflict_do_nothing(index_elements=["program_id", "signature"])
                    )
                    saved += result.rowcount or 0

                    for event in record.events:
                        await db.execute(
                            insert(StakingEvent)
                            .values(
                                event_type=event.event_type,
                                signature=event.signature,
                                log_index=event.log_index,
                                program_id=event.program_id,
                                slot=event.slot,
                                block_time=event.block_time,
                                **event.data,
                            )
                            .on_conflict_do_nothing(
                                index_elements=["signature", "event_type", "log_index"]
                            )
                        )

                await db.commit()

        except SQLAlchemyError as e:
            self.logger.error("Repository save failed", count=len(records), error=str(e))
            raise DatabaseError(f"Failed to save transactions: {e}") from e

        skipped = len(records) - saved
        if skipped:
            self.logger.debug("Skipped duplicate transactions", duplicates=skipped)
        return saved

    async def count_transactions(self, program_id: str) -> int:
        """Number of stored transactions for a program."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(func.count())
                .select_from(IndexedTransaction)
                .where(IndexedTransaction.program_id == program_id)
            )
            return result.scalar_one()

    async def events_for_address(
        self,
        address: str,
        limit: int = 50,
        offset: int = 0,
        program_id: Optional[str] = None,
        event_type: Optional[EventType] = None
    ) -> List[StakingEvent]:
        """Events where the address is the participant, newest first."""
        query = select(StakingEvent).where(StakingEvent.staker == address)
        if program_id:
            query = query.where(StakingEvent.program_id == program_id)
        if event_type:
            query = query.where(StakingEvent.event_type == event_type)

        query = (
            query.order_by(StakingEvent.slot.desc(), StakingEvent.log_index.desc())
            .limit(limit)
            .offset(offset)
        )

        async with self.session_maker() as db:
            result = await db.execute(query)
            return list(result.scalars().all())
