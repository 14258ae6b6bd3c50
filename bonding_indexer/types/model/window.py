# bonding_indexer/types/model/window.py

from typing import Optional

from msgspec import Struct, field

from ..new import EvmAddress
from .trade import TradeRecord, TradeSource


class WindowBucket(Struct):
    token: EvmAddress
    interval_start: int
    interval_seconds: int
    source: TradeSource = TradeSource.BONDING_CURVE
    buy_volume: int = 0
    sell_volume: int = 0
    buy_token_volume: int = 0
    sell_token_volume: int = 0
    buy_count: int = 0
    sell_count: int = 0
    unique_buyers: set[str] = field(default_factory=set)
    unique_sellers: set[str] = field(default_factory=set)
    min_block: Optional[int] = None
    max_block: Optional[int] = None
    sealed: bool = False

    @property
    def interval_end(self) -> int:
        return self.interval_start + self.interval_seconds

    @property
    def total_volume(self) -> int:
        return self.buy_volume + self.sell_volume

    @property
    def trade_count(self) -> int:
        return self.buy_count + self.sell_count

    @property
    def unique_traders(self) -> int:
        return len(self.unique_buyers | self.unique_sellers)

    def add(self, record: TradeRecord) -> None:
        trader = record.trader.lower()
        if record.is_buy:
            self.buy_volume += record.base_amount
            self.buy_token_volume += record.token_amount
            self.buy_count += 1
            self.unique_buyers.add(trader)
        else:
            self.sell_volume += record.base_amount
            self.sell_token_volume += record.token_amount
            self.sell_count += 1
            self.unique_sellers.add(trader)

        if self.min_block is None or record.block_number < self.min_block:
            self.min_block = record.block_number
        if self.max_block is None or record.block_number > self.max_block:
            self.max_block = record.block_number

    def copy(self) -> "WindowBucket":
        return WindowBucket(
            token=self.token,
            interval_start=self.interval_start,
            interval_seconds=self.interval_seconds,
            source=self.source,
            buy_volume=self.buy_volume,
            sell_volume=self.sell_volume,
            buy_token_volume=self.buy_token_volume,
            sell_token_volume=self.sell_token_volume,
            buy_count=self.buy_count,
            sell_count=self.sell_count,
            unique_buyers=set(self.unique_buyers),
            unique_sellers=set(self.unique_sellers),
            min_block=self.min_block,
            max_block=self.max_block,
            sealed=self.sealed,
        )
