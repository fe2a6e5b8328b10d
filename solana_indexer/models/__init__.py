"""
Database models for the Solana event indexer.

Contains SQLAlchemy models for indexed transactions and the
events decoded from their logs.
"""

from .base import Base, BaseModel, TimestampMixin
from .transaction import IndexedTransaction, IngestionSource
from .event import StakingEvent, EventType

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "IndexedTransaction",
    "IngestionSource",
    "StakingEvent",
    "EventType",
]
