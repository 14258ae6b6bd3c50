# tests/test_event_source.py

import asyncio

import pytest

from bonding_indexer.core.errors import (
    ProviderError,
    ProviderRangeError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ValidationError,
)
from bonding_indexer.stream.event_source import EventSource

from conftest import ALICE, BOB, CONTRACT, MANAGER, OTHER_TOKEN, TOKEN, block_time


def collect(event_source, token, from_block, to_block):
    async def run():
        return [chunk async for chunk in event_source.iter_ranges(token, from_block, to_block)]
    return asyncio.run(run())


def test_fetch_range_returns_token_logs_in_chain_order(chain, event_source):
    chain.head = 300
    chain.add_trade(210, "sell", BOB)
    chain.add_trade(150, "buy", ALICE)
    chain.add_trade(150, "buy", BOB)
    chain.add_trade(160, "buy", ALICE, token=OTHER_TOKEN)
    chain.add_claim(170, amount=5)

    logs = asyncio.run(event_source.fetch_range(TOKEN, 100, 300))

    assert [(log.block_number, log.log_index) for log in logs] == [(150, 0), (150, 1), (170, 0), (210, 0)]
    assert all(log.timestamp == block_time(log.block_number) for log in logs)


def test_ranges_are_paginated_with_checkpoints(chain, event_source):
    chain.head = 300
    chunks = collect(event_source, TOKEN, 100, 219)

    assert [(start, end) for start, end, _, _ in chunks] == [(100, 149), (150, 199), (200, 219)]
    assert [header.number for _, _, _, header in chunks] == [149, 199, 219]
    assert chunks[-1][3].hash == chain.block_hash(219)


def test_range_refusal_halves_the_span(chain, event_source):
    chain.head = 300
    chain.max_range = 20
    chain.add_trade(135, "buy", ALICE)

    chunks = collect(event_source, TOKEN, 100, 149)

    assert all(end - start + 1 <= 20 for start, end, _, _ in chunks)
    assert chunks[0][0] == 100 and chunks[-1][1] == 149
    assert sum(len(logs) for _, _, logs, _ in chunks) == 1


def test_range_refusal_at_minimum_split_gives_up(chain, ingestion, sleeper):
    chain.head = 300
    chain.max_range = 0
    source = EventSource(chain, chain, ingestion, sleep=sleeper)

    with pytest.raises(ProviderError) as exc_info:
        collect(source, TOKEN, 100, 149)
    assert exc_info.value.last_good_block == 99


def test_transient_errors_are_retried_with_backoff(chain, event_source, sleeper):
    chain.head = 300
    chain.add_trade(120, "buy", ALICE)
    chain.failures = [ProviderRateLimitError("429"), ProviderTimeoutError("slow")]

    logs = asyncio.run(event_source.fetch_range(TOKEN, 100, 140))

    assert len(logs) == 1
    assert sleeper.delays == [0.5, 1.0]


def test_exhausted_retries_report_last_good_block(chain, event_source, sleeper):
    chain.head = 300
    chain.add_trade(120, "buy", ALICE)

    async def run():
        seen = []
        async for start, end, _, _ in event_source.iter_ranges(TOKEN, 100, 199):
            seen.append((start, end))
            if len(seen) == 1:
                chain.failures = [ProviderTimeoutError("slow")] * 3
        return seen

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(run())

    error = exc_info.value
    assert not isinstance(error, ProviderRangeError)
    assert error.last_good_block == 149
    assert error.attempts == 3
    assert sleeper.delays == [0.5, 1.0]


def test_backoff_is_capped(chain, ingestion, sleeper):
    chain.head = 300
    ingestion.max_attempts = 6
    source = EventSource(chain, chain, ingestion, sleep=sleeper)
    chain.failures = [ProviderTimeoutError("slow")] * 5

    asyncio.run(source.fetch_range(TOKEN, 100, 110))

    assert sleeper.delays == [0.5, 1.0, 2.0, 2.0, 2.0]


def test_non_retryable_error_fails_immediately(chain, event_source, sleeper):
    chain.head = 300
    chain.failures = [ProviderError("bad request")]

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(event_source.fetch_range(TOKEN, 100, 110))
    assert exc_info.value.last_good_block == 99
    assert sleeper.delays == []


def test_invalid_ranges_are_rejected_before_io(chain, event_source):
    for from_block, to_block in ((10, 5), (-1, 5), (1, "5")):
        with pytest.raises(ValidationError):
            asyncio.run(event_source.fetch_range(TOKEN, from_block, to_block))
    with pytest.raises(ValidationError):
        asyncio.run(event_source.fetch_range("not-an-address", 1, 5))
    assert chain.get_logs_calls == []


def test_manager_logs_are_merged_in_chain_order(chain, ingestion, sleeper):
    ingestion.manager_address = MANAGER
    source = EventSource(chain, chain, ingestion, sleep=sleeper)
    chain.head = 200
    chain.add_trade(140, "buy", BOB, post_graduation=True)
    chain.add_trade(150, "buy", ALICE)
    chain.add_trade(150, "buy", BOB, post_graduation=True)

    logs = asyncio.run(source.fetch_range(TOKEN, 100, 200))

    assert [(log.block_number, log.log_index, log.address) for log in logs] == [
        (140, 0, MANAGER), (150, 0, CONTRACT), (150, 1, MANAGER),
    ]
    # curve trades, lifecycle events and manager trades for each of three sub-ranges
    assert len(chain.get_logs_calls) == 9
