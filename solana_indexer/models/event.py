"""
Event model - stores decoded staking program events.
"""

from typing import Optional
from enum import Enum

from sqlalchemy import (
    String, Integer, BigInteger, Index, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class EventType(Enum):
    """Event kinds emitted by the staking program."""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    FEE_UPDATE = "fee_update"
    UNKNOWN = "unknown"


class StakingEvent(BaseModel, TimestampMixin):
    """One decoded event. Integer amounts are stored as decimal strings (u64)."""

    __tablename__ = "staking_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    event_type: Mapped[EventType] = mapped_column(
        SQLEnum(EventType),
        comment="Type of event"
    )

    signature: Mapped[str] = mapped_column(
        String(88),
        comment="Transaction signature"
    )

    log_index: Mapped[int] = mapped_column(
        Integer,
        comment="Position of the log line within the transaction"
    )

    program_id: Mapped[str] = mapped_column(
        String(44),
        comment="Emitting program address"
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

    # Kind-specific fields
    staker: Mapped[Optional[str]] = mapped_column(String(44), nullable=True)
    amount: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    fee: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    total_staked: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    old_fee: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_fee: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        Index("idx_event_signature_unique", "signature", "event_type", "log_index", unique=True),
        Index("idx_event_program_type_slot", "program_id", "event_type", "slot"),
        Index("idx_event_staker_slot", "staker", "slot"),
    )

    def __repr__(self) -> str:
        return f"<StakingEvent(id={self.id}, type={self.event_type.value}, signature={self.signature[:8]}...)>"

    def get_event_summary(self) -> str:
        """Get human-readable event summary."""
        summaries = {
            EventType.DEPOSIT: f"{self.staker} staked {self.amount}",
            EventType.WITHDRAW: f"{self.staker} withdrew {self.amount} (fee {self.fee})",
            EventType.FEE_UPDATE: f"Fee changed from {self.old_fee} to {self.new_fee}",
        }

        return summaries.get(
            self.event_type,
            f"{self.event_type.value} event"
        )
