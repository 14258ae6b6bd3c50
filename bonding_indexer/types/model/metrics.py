# bonding_indexer/types/model/metrics.py
"""
Query results. Every amount is an exact 18-decimal fixed-point int;
percentages are signed basis points.
"""

from typing import Optional

from msgspec import Struct

from ..new import EvmAddress
from .trade import TradeSide, TradeSource
from ...core.errors import InsufficientDataError


class VolumeData(Struct, frozen=True):
    buy_volume: int = 0
    sell_volume: int = 0
    total_volume: int = 0
    buy_token_volume: int = 0
    sell_token_volume: int = 0
    buy_count: int = 0
    sell_count: int = 0
    trade_count: int = 0
    unique_buyers: int = 0
    unique_sellers: int = 0
    unique_traders: int = 0
    source: TradeSource = TradeSource.BONDING_CURVE


class VolumePoint(Struct, frozen=True):
    interval_start: int
    interval_seconds: int
    volume: VolumeData
    sealed: bool = False

    @property
    def timestamp(self) -> int:
        return self.interval_start + self.interval_seconds


class Volume24h(Struct, frozen=True):
    token: EvmAddress
    from_timestamp: int
    to_timestamp: int
    volume: VolumeData


class NoData(Struct, frozen=True):
    """Explicit absence of data. Never coerced into a zero-valued result."""
    token: EvmAddress
    reason: str
    from_timestamp: Optional[int] = None
    to_timestamp: Optional[int] = None

    def to_error(self) -> InsufficientDataError:
        return InsufficientDataError(
            f"No data for {self.token}: {self.reason}",
            token=self.token,
            from_timestamp=self.from_timestamp,
            to_timestamp=self.to_timestamp,
        )

    def raise_error(self) -> None:
        raise self.to_error()


class PriceChange(Struct, frozen=True):
    token: EvmAddress
    current_price: int
    reference_price: int
    change_bps: int
    reference_block: int
    reference_timestamp: int
    current_timestamp: int


class FeeInfo(Struct, frozen=True):
    token: EvmAddress
    current_fee_rate: int
    final_fee_rate: int
    blocks_since_launch: int
    blocks_until_next_tier: int
    seconds_until_next_tier: int
    fee_stage: str


class CreatorFeeInfo(Struct, frozen=True):
    token: EvmAddress
    creator: Optional[EvmAddress]
    accumulated_fees: int
    total_claimed: int
    claim_count: int
    last_claim_time: Optional[int]
    graduation_market_cap: int
    current_market_cap: int
    base_in_pool: int
    can_claim: bool


class PriceImpact(Struct, frozen=True):
    token: EvmAddress
    side: TradeSide
    amount_in: int
    amount_out: int
    fee_amount: int
    marginal_price: int
    average_price: int
    impact_bps: int
