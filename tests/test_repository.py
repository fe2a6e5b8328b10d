"""Tests for the idempotent transaction repository."""

import base58
import pytest
from sqlalchemy import func, select

from solana_indexer.indexer.types import TransactionRecord
from solana_indexer.models.event import EventType, StakingEvent
from solana_indexer.models.transaction import IndexedTransaction, IngestionSource
from solana_indexer.services.event_parser import EventParser

from .fakes import (
    OTHER_PROGRAM_ID,
    PROGRAM_ID,
    STAKER_BYTES,
    fee_update_payload,
    make_tx,
    program_data,
    withdraw_payload,
)


STAKER = base58.b58encode(STAKER_BYTES).decode("ascii")


def record_for(tx, source=IngestionSource.BACKFILL, program_id=PROGRAM_ID) -> TransactionRecord:
    parsed = EventParser().parse_transaction(tx, program_id)
    return TransactionRecord.from_parsed(parsed, program_id, source)


async def count(session_maker, model) -> int:
    async with session_maker() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def test_save_is_idempotent(repository, session_maker):
    record = record_for(make_tx("sig-1", slot=100))

    assert await repository.save_batch([record]) == 1
    assert await repository.save_batch([record]) == 0

    assert await count(session_maker, IndexedTransaction) == 1
    assert await count(session_maker, StakingEvent) == 1


async def test_realtime_duplicate_of_backfilled_row_is_absorbed(repository, session_maker):
    tx = make_tx("sig-1", slot=100)
    await repository.save_batch([record_for(tx, IngestionSource.BACKFILL)])

    saved = await repository.save_batch([record_for(tx, IngestionSource.REALTIME)])

    assert saved == 0
    async with session_maker() as db:
        row = (await db.execute(select(IndexedTransaction))).scalar_one()
    assert row.source == IngestionSource.BACKFILL


async def test_batch_with_mixed_new_and_known(repository):
    await repository.save_batch([record_for(make_tx("sig-1", slot=100))])

    saved = await repository.save_batch([
        record_for(make_tx("sig-1", slot=100)),
        record_for(make_tx("sig-2", slot=101)),
        record_for(make_tx("sig-3", slot=102)),
    ])

    assert saved == 2


async def test_save_empty_batch(repository):
    assert await repository.save_batch([]) == 0


async def test_filter_new_preserves_order(repository):
    await repository.save_batch([
        record_for(make_tx("sig-b", slot=101)),
        record_for(make_tx("sig-d", slot=103)),
    ])

    result = await repository.filter_new(PROGRAM_ID, ["sig-a", "sig-b", "sig-c", "sig-d", "sig-e"])

    assert result == ["sig-a", "sig-c", "sig-e"]


async def test_filter_new_is_scoped_by_program(repository):
    await repository.save_batch([record_for(make_tx("sig-a", slot=100))])

    assert await repository.filter_new(OTHER_PROGRAM_ID, ["sig-a"]) == ["sig-a"]


async def test_filter_new_empty_input(repository):
    assert await repository.filter_new(PROGRAM_ID, []) == []


async def test_last_indexed_slot(repository):
    assert await repository.last_indexed_slot(PROGRAM_ID) is None

    await repository.save_batch([
        record_for(make_tx("sig-1", slot=90)),
        record_for(make_tx("sig-2", slot=100)),
        record_for(make_tx("sig-3", slot=95)),
    ])

    assert await repository.last_indexed_slot(PROGRAM_ID) == 100
    assert await repository.last_indexed_slot(OTHER_PROGRAM_ID) is None


async def test_failed_transaction_is_stored_with_error(repository, session_maker):
    await repository.save_batch([record_for(make_tx("sig-failed", err="InstructionError"))])

    async with session_maker() as db:
        row = (await db.execute(select(IndexedTransaction))).scalar_one()
    assert row.err == "InstructionError"
    assert not row.succeeded
    assert await count(session_maker, StakingEvent) == 0


async def test_count_transactions(repository):
    await repository.save_batch([
        record_for(make_tx("sig-1", slot=1)),
        record_for(make_tx("sig-2", slot=2)),
    ])

    assert await repository.count_transactions(PROGRAM_ID) == 2
    assert await repository.count_transactions(OTHER_PROGRAM_ID) == 0


async def test_events_for_address_newest_first(repository):
    await repository.save_batch([
        record_for(make_tx("sig-old", slot=100)),
        record_for(make_tx(
            "sig-new",
            slot=200,
            logs=[program_data(withdraw_payload(300, 3, 700)), program_data(fee_update_payload(1, 2))],
        )),
    ])

    events = await repository.events_for_address(STAKER)

    assert [(e.signature, e.event_type) for e in events] == [
        ("sig-new", EventType.WITHDRAW),
        ("sig-old", EventType.DEPOSIT),
    ]
    assert events[0].fee == "3"
    assert events[1].amount == "1000000000"


async def test_events_for_address_filters_and_pages(repository):
    await repository.save_batch([
        record_for(make_tx(f"sig-{slot}", slot=slot)) for slot in range(100, 105)
    ])

    page = await repository.events_for_address(STAKER, limit=2, offset=1, event_type=EventType.DEPOSIT)

    assert [e.slot for e in page] == [103, 102]
    assert await repository.events_for_address(STAKER, event_type=EventType.WITHDRAW) == []
    assert await repository.events_for_address("unknown-address") == []


@pytest.mark.parametrize("source", list(IngestionSource))
async def test_source_is_recorded(repository, session_maker, source):
    await repository.save_batch([record_for(make_tx("sig-src"), source)])

    async with session_maker() as db:
        row = (await db.execute(select(IndexedTransaction))).scalar_one()
    assert row.source == source
