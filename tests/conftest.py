# tests/conftest.py
"""
pytest fixtures for the bonding curve indexer

FakeChain stands in for both chain providers: it serves logs by topic
filter, canonical headers per height, and can be reorganized from any block.
"""

from typing import Dict, List, Optional

import pytest
from eth_abi import encode
from web3 import Web3

from bonding_indexer.clients.interfaces import LogProviderInterface, ChainHeadProviderInterface
from bonding_indexer.core.errors import ProviderRangeError
from bonding_indexer.core.logging import IndexerLogger
from bonding_indexer.decode.abis import (
    TOKENS_BOUGHT,
    TOKENS_SOLD,
    POST_GRADUATION_SELL,
    POST_GRADUATION_BUY,
    POOL_GRADUATED,
    CREATOR_FEES_CLAIMED,
)
from bonding_indexer.decode.trade_decoder import TradeDecoder
from bonding_indexer.ledger.read_model import ReadModel
from bonding_indexer.pipeline.ingestion_pipeline import IngestionPipeline
from bonding_indexer.reconcile.reorg_reconciler import ReorgReconciler
from bonding_indexer.stream.event_source import EventSource
from bonding_indexer.types import (
    AggregationConfig,
    EvmBlockHeader,
    EvmLog,
    IngestionConfig,
    PoolConfig,
    ReconcileConfig,
    TradeRecord,
    TradeSide,
    TradeSource,
)
from bonding_indexer.utils.addresses import address_to_topic
from bonding_indexer.utils.fixed_point import SCALE, div


CONTRACT = "0x" + "cc" * 20
MANAGER = "0x" + "dd" * 20
TOKEN = "0x" + "11" * 20
OTHER_TOKEN = "0x" + "22" * 20
CREATOR = "0x" + "ee" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

# hour aligned, so block 0 opens a fresh 1h bucket
BASE_TIME = 1_699_999_200
BLOCK_TIME = 12
LAUNCH_BLOCK = 100

HOUR = 3600
DAY = 86400


def block_time(block_number: int) -> int:
    return BASE_TIME + block_number * BLOCK_TIME


def units(value) -> int:
    """Whole units to 18-decimal fixed point."""
    return int(value * SCALE) if isinstance(value, int) else int(round(value * SCALE))


def fake_hash(text: str) -> str:
    return Web3.to_hex(Web3.keccak(text=text)).lower()


def make_record(block_number: int,
                log_index: int = 0,
                side: TradeSide = TradeSide.BUY,
                trader: str = ALICE,
                base_amount: int = None,
                token_amount: int = None,
                fee_rate_bps: int = 200,
                market_price: int = 0,
                timestamp: Optional[int] = None,
                token: str = TOKEN,
                source: TradeSource = TradeSource.BONDING_CURVE,
                tx_hash: Optional[str] = None,
                block_hash: Optional[str] = None) -> TradeRecord:
    base_amount = units(1) if base_amount is None else base_amount
    token_amount = units(1000) if token_amount is None else token_amount
    return TradeRecord(
        token=token,
        trader=trader,
        side=side,
        base_amount=base_amount,
        token_amount=token_amount,
        execution_price=div(base_amount, token_amount),
        fee_rate_bps=fee_rate_bps,
        block_number=block_number,
        log_index=log_index,
        tx_hash=tx_hash or fake_hash(f"tx:{block_number}:{log_index}"),
        timestamp=block_time(block_number) if timestamp is None else timestamp,
        block_hash=block_hash,
        market_price=market_price,
        source=source,
    )


class FakeChain(LogProviderInterface, ChainHeadProviderInterface):
    """In-memory chain serving both provider interfaces."""

    def __init__(self, head: int = 0):
        self.head = head
        self.logs: List[EvmLog] = []
        self.failures: List[Optional[Exception]] = []
        # same as failures, for head and header lookups
        self.head_failures: List[Optional[Exception]] = []
        self.header_failures: List[Optional[Exception]] = []
        self.max_range: Optional[int] = None
        self.get_logs_calls: List[tuple] = []
        self.header_calls: List[int] = []
        self._reorgs: List[tuple] = []  # (from_block, generation)
        self._log_counts: Dict[int, int] = {}

    # === Chain shape ===

    def generation(self, block_number: int) -> int:
        current = 0
        for from_block, generation in self._reorgs:
            if block_number >= from_block:
                current = max(current, generation)
        return current

    def block_hash(self, block_number: int) -> str:
        return fake_hash(f"block:{self.generation(block_number)}:{block_number}")

    def reorg(self, from_block: int) -> None:
        """Replace every block at or above ``from_block`` with an empty fork."""
        self._reorgs.append((from_block, len(self._reorgs) + 1))
        self.logs = [log for log in self.logs if log.block_number < from_block]
        for block_number in [b for b in self._log_counts if b >= from_block]:
            del self._log_counts[block_number]

    # === Log builders ===

    def add_log(self, block_number: int, topics: list, data: bytes, tx_hash: Optional[str] = None,
                removed: bool = False, address: str = CONTRACT) -> EvmLog:
        log_index = self._log_counts.get(block_number, 0)
        self._log_counts[block_number] = log_index + 1
        log = EvmLog(
            address=address,
            blockHash=self.block_hash(block_number),
            blockNumber=hex(block_number),
            data="0x" + data.hex(),
            logIndex=hex(log_index),
            topics=topics,
            transactionHash=tx_hash or fake_hash(
                f"tx:{self.generation(block_number)}:{block_number}:{log_index}"),
            removed=removed,
        )
        self.logs.append(log)
        return log

    def add_trade(self, block_number: int, side: str = "buy", trader: str = ALICE,
                  base_amount: int = None, token_amount: int = None,
                  price: int = 0, fee_rate: int = 200, token: str = TOKEN,
                  post_graduation: bool = False, tx_hash: Optional[str] = None) -> EvmLog:
        base_amount = units(1) if base_amount is None else base_amount
        token_amount = units(1000) if token_amount is None else token_amount
        if post_graduation and side == "buy":
            # the manager's buy event has no fee rate word
            data = encode(["uint256"] * 3, [base_amount, token_amount, price])
            topics = [POST_GRADUATION_BUY.topic, address_to_topic(trader), address_to_topic(token)]
            return self.add_log(block_number, topics, data, tx_hash=tx_hash, address=MANAGER)
        if post_graduation:
            spec = POST_GRADUATION_SELL
        else:
            spec = TOKENS_BOUGHT if side == "buy" else TOKENS_SOLD
        data = encode(["uint256"] * 4, [base_amount, token_amount, price, fee_rate])
        topics = [spec.topic, address_to_topic(trader), address_to_topic(token)]
        return self.add_log(block_number, topics, data, tx_hash=tx_hash)

    def add_graduation(self, block_number: int, token: str = TOKEN, total_raised: int = 0,
                       final_market_cap: int = 0) -> EvmLog:
        data = encode(["uint256"] * 4, [total_raised, final_market_cap, 0, 0])
        return self.add_log(block_number, [POOL_GRADUATED.topic, address_to_topic(token)], data)

    def add_claim(self, block_number: int, amount: int, token: str = TOKEN,
                  creator: str = CREATOR) -> EvmLog:
        data = encode(["uint256"], [amount])
        topics = [CREATOR_FEES_CLAIMED.topic, address_to_topic(token), address_to_topic(creator)]
        return self.add_log(block_number, topics, data)

    # === Providers ===

    async def get_logs(self, address, topics, from_block, to_block) -> List[EvmLog]:
        self.get_logs_calls.append((from_block, to_block))
        self._maybe_fail(self.failures)
        if self.max_range is not None and to_block - from_block + 1 > self.max_range:
            raise ProviderRangeError(f"block range too large: {to_block - from_block + 1}",
                                     from_block=from_block, to_block=to_block)
        return [
            log for log in self.logs
            if log.address == address.lower()
            and from_block <= log.block_number <= min(to_block, self.head)
            and self._matches(log, topics)
        ]

    async def get_latest_block_number(self) -> int:
        self._maybe_fail(self.head_failures)
        return self.head

    async def get_block_header(self, block_number: int) -> EvmBlockHeader:
        self.header_calls.append(block_number)
        self._maybe_fail(self.header_failures)
        return EvmBlockHeader(
            number=block_number,
            hash=self.block_hash(block_number),
            timestamp=block_time(block_number),
            parentHash=self.block_hash(block_number - 1) if block_number else None,
        )

    @staticmethod
    def _maybe_fail(failures: List[Optional[Exception]]) -> None:
        if failures:
            # None lets one call through
            failure = failures.pop(0)
            if failure is not None:
                raise failure

    @staticmethod
    def _matches(log: EvmLog, topics: list) -> bool:
        for position, expected in enumerate(topics):
            if expected is None:
                continue
            if position >= len(log.topics):
                return False
            allowed = expected if isinstance(expected, list) else [expected]
            if log.topics[position].lower() not in [t.lower() for t in allowed]:
                return False
        return True


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# === Fixtures ===

@pytest.fixture(autouse=True)
def reset_logging():
    yield
    IndexerLogger.reset()


@pytest.fixture
def pool() -> PoolConfig:
    return PoolConfig(
        token=TOKEN,
        launch_block=LAUNCH_BLOCK,
        graduation_threshold=units(10_000),
        initial_token_reserve=units(800_000_000),
        virtual_base_reserve=units(30),
        total_supply=units(1_000_000_000),
        creator=CREATOR,
        launch_timestamp=block_time(LAUNCH_BLOCK),
    )


@pytest.fixture
def other_pool() -> PoolConfig:
    return PoolConfig(
        token=OTHER_TOKEN,
        launch_block=LAUNCH_BLOCK,
        graduation_threshold=units(10_000),
        initial_token_reserve=units(800_000_000),
        virtual_base_reserve=units(30),
    )


@pytest.fixture
def aggregation() -> AggregationConfig:
    return AggregationConfig(intervals=[HOUR, DAY], primary_interval=HOUR, finality_depth=5)


@pytest.fixture
def ingestion() -> IngestionConfig:
    return IngestionConfig(
        contract_address=CONTRACT,
        max_block_range=50,
        max_attempts=3,
        backoff_base_seconds=0.5,
        backoff_max_seconds=2.0,
        concurrency=2,
        channel_size=2,
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain(head=LAUNCH_BLOCK)


@pytest.fixture
def read_model(pool, other_pool, aggregation) -> ReadModel:
    return ReadModel([pool, other_pool], aggregation)


@pytest.fixture
def decoder() -> TradeDecoder:
    return TradeDecoder()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def event_source(chain, ingestion, sleeper) -> EventSource:
    return EventSource(chain, chain, ingestion, sleep=sleeper)


@pytest.fixture
def reconciler(read_model, event_source, chain, decoder, aggregation) -> ReorgReconciler:
    return ReorgReconciler(read_model, event_source, chain, decoder,
                           ReconcileConfig(max_reorg_depth=64), aggregation)


@pytest.fixture
def pipeline(read_model, event_source, chain, decoder, ingestion, reconciler) -> IngestionPipeline:
    return IngestionPipeline(read_model, event_source, chain, decoder, ingestion, reconciler)
