# tests/test_decoder.py

import msgspec
import pytest

from bonding_indexer.core.errors import DataIntegrityError
from bonding_indexer.types import (
    CreatorFeeClaim,
    GraduationEvent,
    TradeRecord,
    TradeSide,
    TradeSource,
)
from bonding_indexer.utils.fixed_point import div

from conftest import ALICE, BOB, CREATOR, MANAGER, TOKEN, FakeChain, block_time, fake_hash, units


def with_time(log, block_number):
    return msgspec.structs.replace(log, timestamp=block_time(block_number))


def test_decodes_buy(decoder):
    chain = FakeChain(head=200)
    log = chain.add_trade(150, "buy", ALICE, base_amount=units(2), token_amount=units(5000),
                          price=units(1) // 2000, fee_rate=1000)

    record = decoder.decode(with_time(log, 150))

    assert isinstance(record, TradeRecord)
    assert record.token == TOKEN
    assert record.trader == ALICE
    assert record.side == TradeSide.BUY
    assert record.source == TradeSource.BONDING_CURVE
    assert record.base_amount == units(2)
    assert record.token_amount == units(5000)
    assert record.execution_price == div(units(2), units(5000))
    assert record.market_price == units(1) // 2000
    assert record.fee_rate_bps == 1000
    assert record.block_number == 150
    assert record.log_index == 0
    assert record.timestamp == block_time(150)
    assert record.block_hash == chain.block_hash(150)


def test_decodes_sell_and_post_graduation_sell(decoder):
    chain = FakeChain(head=200)
    sell = decoder.decode(with_time(chain.add_trade(150, "sell", BOB), 150))
    post = decoder.decode(with_time(chain.add_trade(151, "sell", BOB, post_graduation=True), 151))

    assert sell.side == TradeSide.SELL
    assert sell.source == TradeSource.BONDING_CURVE
    assert post.side == TradeSide.SELL
    assert post.source == TradeSource.POST_GRADUATION


def test_decodes_manager_post_graduation_buy(decoder):
    chain = FakeChain(head=200)
    log = chain.add_trade(150, "buy", ALICE, base_amount=units(2), token_amount=units(4000),
                          price=units(1) // 1000, post_graduation=True)

    record = decoder.decode(with_time(log, 150))

    assert log.address == MANAGER
    assert record.side == TradeSide.BUY
    assert record.source == TradeSource.POST_GRADUATION
    assert record.trader == ALICE
    assert record.token_amount == units(4000)
    assert record.market_price == units(1) // 1000
    assert record.fee_rate_bps == 0


def test_decodes_lifecycle_events(decoder):
    chain = FakeChain(head=200)
    graduation = decoder.decode(with_time(chain.add_graduation(160, final_market_cap=units(69_000)), 160))
    claim = decoder.decode(with_time(chain.add_claim(170, amount=units(3)), 170))

    assert isinstance(graduation, GraduationEvent)
    assert graduation.token == TOKEN
    assert graduation.final_market_cap == units(69_000)
    assert isinstance(claim, CreatorFeeClaim)
    assert claim.creator == CREATOR
    assert claim.amount == units(3)


def test_unknown_and_removed_logs_are_skipped(decoder):
    chain = FakeChain(head=200)
    unknown = chain.add_log(150, [fake_hash("Transfer(address,address,uint256)")], b"")
    removed = chain.add_trade(150, "buy", ALICE)
    removed = msgspec.structs.replace(removed, removed=True)

    assert decoder.decode(with_time(unknown, 150)) is None
    assert decoder.decode(removed) is None


def test_malformed_payload_raises(decoder):
    chain = FakeChain(head=200)
    log = with_time(chain.add_trade(150, "buy", ALICE), 150)

    with pytest.raises(DataIntegrityError) as exc_info:
        decoder.decode(msgspec.structs.replace(log, data="0x1234"))
    assert exc_info.value.reason == "decode_failed"

    with pytest.raises(DataIntegrityError):
        decoder.decode(msgspec.structs.replace(log, topics=log.topics[:2]))


def test_missing_timestamp_raises(decoder):
    chain = FakeChain(head=200)
    with pytest.raises(DataIntegrityError) as exc_info:
        decoder.decode(chain.add_trade(150, "buy", ALICE))
    assert exc_info.value.reason == "missing_timestamp"
