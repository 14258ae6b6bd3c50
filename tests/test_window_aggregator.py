# tests/test_window_aggregator.py

import pytest

from bonding_indexer.core.errors import DataIntegrityError, ValidationError
from bonding_indexer.ledger.window_aggregator import WindowAggregator, interval_start
from bonding_indexer.types import TradeSide, TradeSource

from conftest import ALICE, BOB, CAROL, BASE_TIME, HOUR, DAY, TOKEN, block_time, make_record, units


@pytest.fixture
def aggregator():
    return WindowAggregator(intervals=(HOUR, DAY), finality_depth=5)


@pytest.fixture
def records():
    # blocks 120 and 130 fall in the first hour after BASE_TIME, 400 in the second
    return [
        make_record(120, trader=ALICE, base_amount=units(1)),
        make_record(130, trader=BOB, side=TradeSide.SELL, base_amount=units(2)),
        make_record(400, trader=CAROL, base_amount=units(3)),
    ]


def test_interval_start_alignment():
    assert interval_start(BASE_TIME + 1, HOUR) == BASE_TIME
    assert interval_start(BASE_TIME + HOUR, HOUR) == BASE_TIME + HOUR


def test_update_fills_every_interval(aggregator, records):
    for record in records:
        aggregator.update(record)

    hourly = aggregator.buckets(TOKEN, HOUR)
    assert [b.interval_start for b in hourly] == [BASE_TIME, BASE_TIME + HOUR]
    first = hourly[0]
    assert first.buy_volume == units(1)
    assert first.sell_volume == units(2)
    assert first.trade_count == 2
    assert first.unique_traders == 2
    assert (first.min_block, first.max_block) == (120, 130)

    daily = aggregator.buckets(TOKEN, DAY)
    assert len(daily) == 1
    assert daily[0].total_volume == units(6)


def test_sources_are_separate_series(aggregator):
    aggregator.update(make_record(120, base_amount=units(1)))
    aggregator.update(make_record(121, side=TradeSide.SELL, base_amount=units(5),
                                  source=TradeSource.POST_GRADUATION))

    assert aggregator.buckets(TOKEN, HOUR)[0].total_volume == units(1)
    assert aggregator.buckets(TOKEN, HOUR, TradeSource.POST_GRADUATION)[0].total_volume == units(5)


def test_history_is_zero_filled_and_aligned(aggregator, records):
    for record in records:
        aggregator.update(record)

    history = aggregator.get_history(TOKEN, HOUR, 3, now=block_time(400))

    assert [b.interval_start for b in history] == [BASE_TIME - HOUR, BASE_TIME, BASE_TIME + HOUR]
    assert history[0].trade_count == 0
    assert history[1].trade_count == 2
    assert history[2].trade_count == 1


def test_history_rejects_unknown_interval(aggregator):
    with pytest.raises(ValidationError):
        aggregator.get_history(TOKEN, 900, 3, now=BASE_TIME)
    with pytest.raises(ValidationError):
        aggregator.get_history(TOKEN, HOUR, 0, now=BASE_TIME)


def test_seal_requires_finality_and_closed_interval(aggregator, records):
    for record in records:
        aggregator.update(record)

    # the first hour has not closed by block 200
    assert aggregator.seal(TOKEN, 200 + 5, block_time(200)) == 0
    # block 320 is past the end of the first hour
    assert aggregator.sealable_count(TOKEN, 320 + 5, block_time(320)) == 1
    assert aggregator.seal(TOKEN, 320 + 5, block_time(320)) == 1

    assert [b.sealed for b in aggregator.buckets(TOKEN, HOUR)] == [True, False]
    assert aggregator.buckets(TOKEN, DAY)[0].sealed is False


def test_sealed_bucket_rejects_late_trade(aggregator, records):
    for record in records:
        aggregator.update(record)
    aggregator.seal(TOKEN, 325, block_time(320))

    with pytest.raises(DataIntegrityError) as exc_info:
        aggregator.update(make_record(125, log_index=3))
    assert exc_info.value.reason == "sealed_bucket"
    assert aggregator.buckets(TOKEN, HOUR)[0].trade_count == 2


def test_invalidation_keeps_sealed_buckets_below_the_cut(aggregator, records):
    for record in records:
        aggregator.update(record)
    aggregator.seal(TOKEN, 325, block_time(320))
    sealed_before = aggregator.buckets(TOKEN, HOUR)[0].copy()

    dropped = aggregator.invalidate_from(TOKEN, 400, records[:2])

    assert dropped == 2  # second hour plus the day bucket
    hourly = aggregator.buckets(TOKEN, HOUR)
    assert len(hourly) == 1
    assert hourly[0] == sealed_before
    daily = aggregator.buckets(TOKEN, DAY)[0]
    assert daily.total_volume == units(3)
    assert daily.sealed is False


def test_invalidation_into_sealed_bucket_rebuilds_it_unsealed(aggregator, records):
    for record in records:
        aggregator.update(record)
    aggregator.seal(TOKEN, 325, block_time(320))

    aggregator.invalidate_from(TOKEN, 125, records[:1])

    first = aggregator.buckets(TOKEN, HOUR)[0]
    assert first.sealed is False
    assert first.trade_count == 1
    assert first.max_block == 120


def test_clone_is_copy_on_write(aggregator, records):
    aggregator.update(records[0])
    clone = aggregator.clone()
    clone.update(records[1])

    assert aggregator.buckets(TOKEN, HOUR)[0].trade_count == 1
    assert clone.buckets(TOKEN, HOUR)[0].trade_count == 2


def test_rejects_bad_settings():
    with pytest.raises(ValidationError):
        WindowAggregator(intervals=(0,))
    with pytest.raises(ValidationError):
        WindowAggregator(finality_depth=-1)
