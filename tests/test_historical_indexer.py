"""Tests for the historical backfill loop."""

import asyncio

import pytest

from solana_indexer.indexer.historical_indexer import HistoricalIndexer
from solana_indexer.indexer.types import IndexerStatus, TransactionRecord
from solana_indexer.models.transaction import IngestionSource
from solana_indexer.services.event_parser import EventParser

from .fakes import PROGRAM_ID, FakeSolanaClient, make_tx, wait_until


def history(count: int, first_slot: int = 1000):
    return [make_tx(f"sig-{i:03d}", slot=first_slot + i) for i in range(count)]


@pytest.fixture
def make_indexer(program, repository, config):
    def _make(client):
        indexer = HistoricalIndexer(program, client, repository, config=config)
        indexer._running = True
        return indexer
    return _make


async def test_batch_grows_to_max_and_stays(make_indexer, repository, sleeps):
    client = FakeSolanaClient(history(80))
    indexer = make_indexer(client)

    await indexer.run_iteration()
    assert indexer.batch_size == 50

    await indexer.run_iteration()
    assert indexer.batch_size == 50

    assert [call["limit"] for call in client.signature_calls] == [25, 50]
    assert await repository.count_transactions(PROGRAM_ID) == 75


async def test_loop_error_halves_batch(make_indexer, sleeps, config):
    client = FakeSolanaClient(history(80))
    indexer = make_indexer(client)

    await indexer.run_iteration()
    assert indexer.batch_size == 50

    client.signature_errors.append(ValueError("Invalid params"))
    await indexer.run_iteration()

    assert indexer.batch_size == 25
    assert indexer.stats.errors == 1
    assert sleeps[-1] == config.indexer_loop_error_delay


async def test_batch_never_drops_below_minimum(make_indexer, sleeps):
    client = FakeSolanaClient()
    indexer = make_indexer(client)

    for _ in range(10):
        client.signature_errors.append(ValueError("boom"))
        await indexer.run_iteration()

    assert indexer.batch_size == 1


async def test_pages_backwards_with_before_cursor(make_indexer, sleeps):
    client = FakeSolanaClient(history(30))
    indexer = make_indexer(client)

    await indexer.run_iteration()
    await indexer.run_iteration()

    newest_first = sorted(client.transactions, reverse=True)
    assert client.signature_calls[0]["before"] is None
    assert client.signature_calls[1]["before"] == newest_first[24]
    assert indexer.before_signature == newest_first[-1]


async def test_empty_page_resets_cursor_after_cooldown(make_indexer, sleeps, config):
    client = FakeSolanaClient(history(3))
    indexer = make_indexer(client)

    await indexer.run_iteration()
    assert indexer.before_signature is not None

    await indexer.run_iteration()

    assert indexer.before_signature is None
    assert indexer.status == IndexerStatus.PAGING
    assert sleeps[-1] == config.indexer_poll_interval * 5


async def test_known_signatures_are_not_refetched(make_indexer, repository, sleeps):
    client = FakeSolanaClient(history(5))
    parser = EventParser()
    for tx in list(client.transactions.values())[:3]:
        await repository.save_batch([
            TransactionRecord.from_parsed(parser.parse_transaction(tx, PROGRAM_ID), PROGRAM_ID, IngestionSource.REALTIME)
        ])
    indexer = make_indexer(client)

    await indexer.run_iteration()

    assert len(client.transaction_calls) == 2
    assert await repository.count_transactions(PROGRAM_ID) == 5


async def test_transaction_error_is_skipped(make_indexer, repository, sleeps, config):
    client = FakeSolanaClient(history(3))
    client.transaction_errors["sig-001"] = ValueError("decode failure")
    indexer = make_indexer(client)

    await indexer.run_iteration()

    assert indexer.stats.errors == 1
    assert indexer.stats.transactions_indexed == 2
    assert config.indexer_tx_error_delay in sleeps
    assert await repository.filter_new(PROGRAM_ID, ["sig-001"]) == ["sig-001"]


async def test_missing_transaction_takes_error_path(make_indexer, sleeps, config):
    client = FakeSolanaClient(history(2))
    del client.transactions["sig-000"]
    indexer = make_indexer(client)

    await indexer.run_iteration()

    assert indexer.stats.errors == 1
    assert indexer.stats.transactions_indexed == 1
    assert config.indexer_tx_error_delay in sleeps


async def test_transactions_for_other_programs_are_skipped(make_indexer, repository, sleeps):
    client = FakeSolanaClient([make_tx("sig-foreign", slot=10, program_ids=["Other1111111111111111111111111111"])])
    indexer = make_indexer(client)

    await indexer.run_iteration()

    assert indexer.stats.skipped == 1
    assert await repository.count_transactions(PROGRAM_ID) == 0


async def test_start_resumes_and_stop_ends_loop(program, repository, config, sleeps):
    client = FakeSolanaClient(history(5))
    await repository.save_batch([
        TransactionRecord.from_parsed(
            EventParser().parse_transaction(make_tx("sig-old", slot=900), PROGRAM_ID),
            PROGRAM_ID,
            IngestionSource.BACKFILL
        )
    ])
    indexer = HistoricalIndexer(program, client, repository, config=config)

    task = asyncio.create_task(indexer.start())
    await wait_until(lambda: indexer.stats.transactions_indexed == 5)
    await indexer.stop()
    await asyncio.wait_for(task, timeout=5)

    assert indexer.resume_slot == 900
    assert indexer.stats.start_time.tzinfo is not None
    assert indexer.stats.last_activity.tzinfo is not None
    assert indexer.status == IndexerStatus.STOPPED
    assert await repository.count_transactions(PROGRAM_ID) == 6


class BrokenResumeRepository:
    """Delegates to a real repository, but the resume read fails."""

    def __init__(self, repository):
        self.repository = repository

    async def last_indexed_slot(self, program_id):
        raise RuntimeError("connection refused")

    def __getattr__(self, name):
        return getattr(self.repository, name)


async def test_failed_resume_read_starts_fresh(program, repository, config, sleeps):
    client = FakeSolanaClient(history(3))
    indexer = HistoricalIndexer(program, client, BrokenResumeRepository(repository), config=config)

    task = asyncio.create_task(indexer.start())
    await wait_until(lambda: indexer.stats.transactions_indexed == 3)

    assert indexer.is_running
    assert indexer.resume_slot is None
    assert indexer.stats.errors == 1

    await indexer.stop()
    await asyncio.wait_for(task, timeout=5)

    assert not indexer.is_running
    assert indexer.status == IndexerStatus.STOPPED


async def test_loop_cancellation_resets_state(program, repository, config, sleeps):
    client = FakeSolanaClient()
    indexer = HistoricalIndexer(program, client, repository, config=config)

    task = asyncio.create_task(indexer.start())
    await wait_until(lambda: client.signature_calls)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not indexer.is_running
    assert indexer.status == IndexerStatus.STOPPED
