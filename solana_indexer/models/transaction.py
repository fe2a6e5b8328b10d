"""
IndexedTransaction model - one row per (program, transaction signature).
"""

from typing import Any, List, Optional
from enum import Enum

from sqlalchemy import (
    String, Integer, BigInteger, Index, JSON, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class IngestionSource(Enum):
    """Which indexing mode persisted the transaction first."""
    BACKFILL = "backfill"
    REALTIME = "realtime"


class IndexedTransaction(BaseModel, TimestampMixin):
    """A transaction that invoked a monitored program. Never updated after insert."""

    __tablename__ = "indexed_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    program_id: Mapped[str] = mapped_column(
        String(44),
        comment="Monitored program address"
    )

    signature: Mapped[str] = mapped_column(
        String(88),
        comment="Transaction signature"
    )

    slot: Mapped[int] = mapped_column(
        BigInteger,
        comment="Blockchain slot number"
    )

    block_time: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Unix block timestamp"
    )

    err: Mapped[Optional[Any]] = mapped_column(
        JSON,
        nullable=True,
        comment="On-chain error, null on success"
    )

    logs: Mapped[List[str]] = mapped_column(
        JSON,
        default=list,
        comment="Raw log lines"
    )

    source: Mapped[IngestionSource] = mapped_column(
        SQLEnum(IngestionSource),
        comment="Indexing mode that stored the row"
    )

    __table_args__ = (
        Index("idx_tx_program_signature_unique", "program_id", "signature", unique=True),
        Index("idx_tx_program_slot", "program_id", "slot"),
    )

    def __repr__(self) -> str:
        return f"<IndexedTransaction(program={self.program_id[:8]}..., signature={self.signature[:8]}..., slot={self.slot})>"

    @property
    def succeeded(self) -> bool:
        return self.err is None
