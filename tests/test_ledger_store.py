# tests/test_ledger_store.py

import asyncio

import pytest

from bonding_indexer.database.connection import DatabaseManager
from bonding_indexer.database.ledger_store import LedgerStore
from bonding_indexer.ledger.read_model import ReadModel
from bonding_indexer.pipeline.ingestion_pipeline import IngestionPipeline
from bonding_indexer.reconcile.reorg_reconciler import ReorgReconciler
from bonding_indexer.core.errors import DataIntegrityError
from bonding_indexer.types import DatabaseConfig, PoolStatus

from conftest import ALICE, BOB, CAROL, TOKEN, make_record, units


@pytest.fixture
def db_manager():
    manager = DatabaseManager(DatabaseConfig(url="sqlite://"))
    manager.initialize()
    manager.create_tables()
    yield manager
    manager.shutdown()


@pytest.fixture
def store(db_manager):
    return LedgerStore(db_manager)


@pytest.fixture
def stored_model(pool, other_pool, aggregation, store):
    return ReadModel([pool, other_pool], aggregation, store)


def restored(pool, other_pool, aggregation, store):
    read_model = ReadModel([pool, other_pool], aggregation, store)
    read_model.restore(TOKEN)
    return read_model.snapshot(TOKEN)


def test_batches_round_trip_through_the_store(chain, stored_model, store, event_source, decoder,
                                              ingestion, pool, other_pool, aggregation):
    chain.head = 220
    chain.add_trade(150, "buy", ALICE, base_amount=units(5_000) + 7)
    chain.add_trade(151, "sell", BOB)
    chain.add_trade(152, "buy", CAROL, token_amount=0)
    chain.add_graduation(200, final_market_cap=units(69_000))
    chain.add_claim(210, amount=units(2))
    pipeline = IngestionPipeline(stored_model, event_source, chain, decoder, ingestion)
    asyncio.run(pipeline.sync_token(TOKEN))

    live = stored_model.snapshot(TOKEN)
    state = restored(pool, other_pool, aggregation, store)

    assert state.ledger.read(TOKEN) == live.ledger.read(TOKEN)
    assert state.synced_through == 220
    assert state.ledger.known_blocks(TOKEN) == live.ledger.known_blocks(TOKEN)
    assert state.ledger.graduation(TOKEN) == live.ledger.graduation(TOKEN)
    assert state.ledger.claims(TOKEN) == live.ledger.claims(TOKEN)
    assert [q.record for q in state.ledger.quarantined(TOKEN)] == [q.record for q in live.ledger.quarantined(TOKEN)]
    assert state.pool_state.status == PoolStatus.GRADUATED
    assert state.aggregator.buckets(TOKEN, 3600) == live.aggregator.buckets(TOKEN, 3600)


def test_reorg_repair_is_persisted(chain, stored_model, store, event_source, decoder, ingestion,
                                   pool, other_pool, aggregation):
    chain.head = 200
    chain.add_trade(150, "buy", ALICE)
    chain.add_trade(190, "buy", BOB)
    pipeline = IngestionPipeline(stored_model, event_source, chain, decoder, ingestion)
    reconciler = ReorgReconciler(stored_model, event_source, chain, decoder, aggregation=aggregation)
    asyncio.run(pipeline.sync_token(TOKEN))

    chain.reorg(185)
    chain.add_trade(188, "buy", CAROL)
    asyncio.run(reconciler.reconcile(TOKEN))

    state = restored(pool, other_pool, aggregation, store)
    assert [r.trader for r in state.ledger.read(TOKEN)] == [ALICE, CAROL]
    assert state.ledger.block_hash_at(TOKEN, 200) == chain.block_hash(200)
    assert state.synced_through == 200


def test_invalidation_removes_stored_quarantine(stored_model, store, pool, other_pool, aggregation):
    with stored_model.batch(TOKEN) as working:
        for block in (120, 130):
            with pytest.raises(DataIntegrityError):
                working.ingest(make_record(block, base_amount=0))

    with stored_model.batch(TOKEN) as working:
        with pytest.raises(DataIntegrityError):
            working.ingest(make_record(140, base_amount=0))
        working.invalidate_from(125)

    live = stored_model.snapshot(TOKEN)
    state = restored(pool, other_pool, aggregation, store)
    assert [q.record.block_number for q in live.ledger.quarantined(TOKEN)] == [120]
    assert [q.record.block_number for q in state.ledger.quarantined(TOKEN)] == [120]


def test_failed_store_write_publishes_nothing(stored_model):
    def failing_apply(changes):
        raise RuntimeError("disk full")

    stored_model.store.apply = failing_apply

    with pytest.raises(RuntimeError):
        with stored_model.batch(TOKEN) as working:
            working.ingest(make_record(120))

    assert stored_model.version(TOKEN) == 0
    assert stored_model.snapshot(TOKEN).ledger.count(TOKEN) == 0


def test_restore_without_store_is_rejected(pool, other_pool, aggregation):
    from bonding_indexer.core.errors import ValidationError

    with pytest.raises(ValidationError):
        ReadModel([pool, other_pool], aggregation).restore(TOKEN)


def test_health_check(db_manager):
    assert db_manager.health_check() is True
