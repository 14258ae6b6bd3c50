# bonding_indexer/types/model/trade.py

from enum import Enum
from typing import Optional

from msgspec import Struct

from ..new import EvmAddress, EvmHash
from ...utils.fixed_point import bps_of


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TradeSource(str, Enum):
    BONDING_CURVE = "bonding_curve"
    POST_GRADUATION = "post_graduation"


class PoolStatus(str, Enum):
    ACTIVE = "active"
    GRADUATED = "graduated"


class TradeRecord(Struct, frozen=True):
    token: EvmAddress
    trader: EvmAddress
    side: TradeSide
    base_amount: int
    token_amount: int
    execution_price: int
    fee_rate_bps: int
    block_number: int
    log_index: int
    tx_hash: EvmHash
    timestamp: int
    block_hash: Optional[EvmHash] = None
    # post-trade spot price reported by the pool
    market_price: int = 0
    source: TradeSource = TradeSource.BONDING_CURVE

    @property
    def key(self) -> tuple:
        return (self.block_number, self.tx_hash, self.log_index)

    @property
    def order_key(self) -> tuple:
        return (self.block_number, self.log_index, self.tx_hash)

    @property
    def is_buy(self) -> bool:
        return self.side == TradeSide.BUY

    @property
    def fee_amount(self) -> int:
        return bps_of(self.base_amount, self.fee_rate_bps)


class GraduationEvent(Struct, frozen=True):
    token: EvmAddress
    block_number: int
    log_index: int
    tx_hash: EvmHash
    timestamp: int
    total_raised: int = 0
    final_market_cap: int = 0
    base_for_venue: int = 0
    tokens_for_venue: int = 0
    block_hash: Optional[EvmHash] = None


class CreatorFeeClaim(Struct, frozen=True):
    token: EvmAddress
    creator: EvmAddress
    amount: int
    block_number: int
    log_index: int
    tx_hash: EvmHash
    timestamp: int
    block_hash: Optional[EvmHash] = None


class PoolState(Struct):
    token: EvmAddress
    base_reserve: int
    token_reserve: int
    virtual_base_reserve: int
    current_price: int
    status: PoolStatus = PoolStatus.ACTIVE
    graduated_at_block: Optional[int] = None
    last_block: Optional[int] = None
    trade_count: int = 0

    @property
    def graduated(self) -> bool:
        return self.status == PoolStatus.GRADUATED

    @property
    def effective_base_reserve(self) -> int:
        return self.virtual_base_reserve + self.base_reserve


class TraderAggregate(Struct):
    address: EvmAddress
    token: EvmAddress
    buy_volume: int = 0
    sell_volume: int = 0
    net_tokens: int = 0
    buy_count: int = 0
    sell_count: int = 0

    @property
    def total_volume(self) -> int:
        return self.buy_volume + self.sell_volume

    def apply(self, record: TradeRecord) -> None:
        if record.is_buy:
            self.buy_volume += record.base_amount
            self.buy_count += 1
            self.net_tokens += record.token_amount
        else:
            self.sell_volume += record.base_amount
            self.sell_count += 1
            self.net_tokens -= record.token_amount
