"""
Shared fixtures: a throwaway SQLite store, test settings and a recorded,
non-blocking asyncio.sleep.
"""

import asyncio
from typing import List

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from solana_indexer.core.config import ProgramTarget, Settings
from solana_indexer.core.database import build_session_maker
from solana_indexer.database.transaction_repository import TransactionRepository
from solana_indexer.models.base import Base

from .fakes import PROGRAM_ID, real_sleep


@pytest.fixture
def program() -> ProgramTarget:
    return ProgramTarget(id=PROGRAM_ID, name="staking-contract")


@pytest.fixture
def config(program) -> Settings:
    return Settings(_env_file=None, programs=[program])


@pytest.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_maker(engine)

    await engine.dispose()


@pytest.fixture
def repository(session_maker) -> TransactionRepository:
    return TransactionRepository(session_maker)


@pytest.fixture
def sleeps(monkeypatch) -> List[float]:
    """Record every asyncio.sleep delay and yield to the loop instead of waiting."""
    delays: List[float] = []

    async def fake_sleep(delay, result=None):
        delays.append(delay)
        await real_sleep(0)
        return result

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return delays
