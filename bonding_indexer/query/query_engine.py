# bonding_indexer/query/query_engine.py
"""
Derived market metrics.

Every query reads one published snapshot of a token and never mutates it,
so a query running next to ingestion sees either the state before a batch
or the state after it. Amounts come back as exact fixed-point ints.
"""

import time
from typing import Callable, Iterable, List, Optional, Tuple, Union

from ..core.errors import ValidationError
from ..core.logging import LoggingMixin
from ..ledger.pool_state import copy_pool_state, marginal_price
from ..ledger.read_model import ReadModel, TokenState
from ..types import (
    FEE_TIERS,
    AggregationConfig,
    CreatorFeeInfo,
    FeeInfo,
    NoData,
    PoolState,
    PriceChange,
    PriceImpact,
    QueryConfig,
    TradeRecord,
    TradeSide,
    TradeSource,
    TraderAggregate,
    Volume24h,
    VolumeData,
    VolumePoint,
    WindowBucket,
)
from ..types.constants import SECONDS_PER_DAY
from ..utils.fixed_point import (
    bps_of,
    div,
    format_fixed,
    mul,
    mul_div,
    ratio_bps,
)


SourceArg = Union[TradeSource, str, None]


def fee_tier(blocks_since_launch: int, final_fee_rate_bps: int) -> Tuple[int, int, str]:
    """Fee schedule step function.

    Returns ``(fee rate bps, blocks until the next tier, stage label)``;
    the block count is zero once the final rate applies.
    """
    for upper_bound, rate, label in FEE_TIERS:
        if blocks_since_launch < upper_bound:
            return rate, upper_bound - blocks_since_launch, label
    percent = format_fixed(final_fee_rate_bps, decimals=2)
    return final_fee_rate_bps, 0, f"Final ({percent}%)"


def trade_price(record: TradeRecord) -> int:
    """Pool spot price after the trade, falling back to its execution price."""
    return record.market_price or record.execution_price


class QueryEngine(LoggingMixin):
    def __init__(self,
                 read_model: ReadModel,
                 query: Optional[QueryConfig] = None,
                 aggregation: Optional[AggregationConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.read_model = read_model
        self.config = query or QueryConfig()
        self.aggregation = aggregation or read_model.aggregation
        self._clock = clock

    # === Volume ===

    def get_total_volume(self, token: str, from_block: int = 0,
                         source: SourceArg = TradeSource.BONDING_CURVE) -> VolumeData:
        """Volume from ``from_block`` onwards.

        Sealed buckets of the primary interval are summed as they are;
        blocks not covered by them are read straight from the ledger. Within
        one trade source, bucket block ranges never overlap, so the two
        parts never count a trade twice.
        """
        state = self._state(token)
        self._check_int('from_block', from_block)
        source = self._source(source)

        covered: List[WindowBucket] = []
        for bucket in state.aggregator.buckets(state.token, self.aggregation.primary_interval, source):
            if bucket.min_block is None or bucket.min_block < from_block:
                continue
            if not bucket.sealed:
                break
            covered.append(bucket)

        if not covered:
            return self._volume(state.ledger.read(state.token, from_block), source)

        head = state.ledger.read(state.token, from_block, covered[0].min_block - 1)
        tail = state.ledger.read(state.token, covered[-1].max_block + 1)
        return self._volume(head + tail, source, covered)

    def get_volume_for_period(self, token: str, from_block: int = 0, to_block: Optional[int] = None,
                              min_timestamp: Optional[int] = None,
                              source: SourceArg = TradeSource.BONDING_CURVE) -> VolumeData:
        state = self._state(token)
        self._check_int('from_block', from_block)
        if to_block is not None:
            self._check_int('to_block', to_block)
            if to_block < from_block:
                raise ValidationError(f"to_block {to_block} is before from_block {from_block}",
                                      field='to_block', value=to_block)
        if min_timestamp is not None:
            self._check_int('min_timestamp', min_timestamp)

        records = state.ledger.read(state.token, from_block, to_block)
        if min_timestamp is not None:
            records = [r for r in records if r.timestamp >= min_timestamp]
        return self._volume(records, self._source(source))

    def get_volume_history(self, token: str, interval_seconds: Optional[int] = None, periods: int = 24,
                           now: Optional[int] = None,
                           source: SourceArg = TradeSource.BONDING_CURVE) -> List[VolumePoint]:
        state = self._state(token)
        interval_seconds = interval_seconds or self.aggregation.primary_interval
        self._check_int('interval_seconds', interval_seconds, minimum=1)
        self._check_int('periods', periods, minimum=1)
        now = self._now(now)

        buckets = state.aggregator.get_history(state.token, interval_seconds, periods, now, self._source(source))
        return [
            VolumePoint(
                interval_start=bucket.interval_start,
                interval_seconds=bucket.interval_seconds,
                volume=self._volume((), bucket.source, [bucket]),
                sealed=bucket.sealed,
            )
            for bucket in buckets
        ]

    def get_24h_volume(self, token: str, now: Optional[int] = None,
                       source: SourceArg = TradeSource.BONDING_CURVE) -> Union[Volume24h, NoData]:
        state = self._state(token)
        now = self._now(now)
        since = now - SECONDS_PER_DAY

        if state.synced_through is None:
            return NoData(token=state.token, reason="token has not been synced",
                          from_timestamp=since, to_timestamp=now)

        records = []
        for record in reversed(state.ledger.read(state.token)):
            if record.timestamp < since:
                break
            if record.timestamp <= now:
                records.append(record)
        records.reverse()

        return Volume24h(token=state.token, from_timestamp=since, to_timestamp=now,
                         volume=self._volume(records, self._source(source)))

    # === Trades and traders ===

    def get_recent_trades(self, token: str, limit: Optional[int] = None) -> List[TradeRecord]:
        """Newest first, by (block_number, log_index)."""
        state = self._state(token)
        limit = self.config.recent_trades_limit if limit is None else limit
        self._check_int('limit', limit, minimum=1)
        return list(reversed(state.ledger.tail(state.token, limit)))

    def get_top_traders(self, token: str, limit: Optional[int] = None, from_block: int = 0,
                        source: SourceArg = TradeSource.BONDING_CURVE) -> List[TraderAggregate]:
        """Traders by total volume, largest first; equal volumes by ascending address.

        ``source=None`` ranks over every venue.
        """
        state = self._state(token)
        limit = self.config.top_traders_limit if limit is None else limit
        self._check_int('limit', limit, minimum=1)
        self._check_int('from_block', from_block)

        source = self._source(source) if source is not None else None
        records = state.ledger.read(state.token, from_block)
        if source is not None:
            records = [r for r in records if r.source == source]

        aggregates = self._aggregate_traders(state.token, records)
        ranked = sorted(aggregates, key=lambda a: (-a.total_volume, a.address))
        return ranked[:limit]

    def get_estimated_holder_count(self, token: str, from_block: int = 0) -> int:
        """Addresses with a positive net token balance from market trades.

        Transfers outside the market are not visible, so this is an estimate.
        """
        state = self._state(token)
        self._check_int('from_block', from_block)
        aggregates = self._aggregate_traders(state.token, state.ledger.read(state.token, from_block))
        return sum(1 for aggregate in aggregates if aggregate.net_tokens > 0)

    # === Price ===

    def get_24h_price_change(self, token: str, now: Optional[int] = None) -> Union[PriceChange, NoData]:
        """Change from the last trade at or before ``now - 24h`` to the last trade at or before ``now``.

        The reference trade must lie within ``price_lookback_seconds`` of the
        24h mark; otherwise the result is NoData, never a zero change.
        """
        state = self._state(token)
        now = self._now(now)
        reference_time = now - SECONDS_PER_DAY
        earliest = reference_time - self.config.price_lookback_seconds

        current = state.ledger.last_at_or_before(state.token, now)
        reference = state.ledger.last_at_or_before(state.token, reference_time)

        if current is None:
            return NoData(token=state.token, reason="no trades", from_timestamp=earliest, to_timestamp=now)
        if reference is None or reference.timestamp < earliest:
            return NoData(token=state.token, reason="no trade near the 24h reference point",
                          from_timestamp=earliest, to_timestamp=reference_time)

        reference_price = trade_price(reference)
        if reference_price == 0:
            return NoData(token=state.token, reason="reference trade has no price",
                          from_timestamp=earliest, to_timestamp=reference_time)

        current_price = trade_price(current)
        return PriceChange(
            token=state.token,
            current_price=current_price,
            reference_price=reference_price,
            change_bps=ratio_bps(current_price - reference_price, reference_price),
            reference_block=reference.block_number,
            reference_timestamp=reference.timestamp,
            current_timestamp=current.timestamp,
        )

    def get_price_impact(self, token: str, side: Union[TradeSide, str], amount: int,
                         current_block: Optional[int] = None) -> PriceImpact:
        """Quote a trade against the curve's virtual reserves.

        ``amount`` is base currency in for a buy and tokens in for a sell.
        ``impact_bps`` is positive whenever the average price is worse for
        the trader than the marginal price.
        """
        state = self._state(token)
        side = self._side(side)
        self._check_int('amount', amount, minimum=1)

        pool_state = state.pool_state
        if pool_state.graduated:
            raise ValidationError(f"Pool {state.token} has graduated; the curve no longer quotes",
                                  field='token', value=state.token)

        base_reserve = pool_state.effective_base_reserve
        token_reserve = pool_state.token_reserve
        if base_reserve <= 0 or token_reserve <= 0:
            raise ValidationError(f"Pool {state.token} has no reserves to quote against",
                                  field='token', value=state.token)

        fee_rate, _, _ = fee_tier(self._blocks_since_launch(state, current_block), state.pool.final_fee_rate_bps)
        spot = marginal_price(pool_state)

        if side == TradeSide.BUY:
            fee = bps_of(amount, fee_rate)
            net_in = amount - fee
            amount_out = mul_div(token_reserve, net_in, base_reserve + net_in)
            if amount_out == 0:
                raise ValidationError("Amount too small to buy any tokens", field='amount', value=amount)
            average = div(amount, amount_out)
            impact = ratio_bps(average - spot, spot)
        else:
            gross_out = mul_div(base_reserve, amount, token_reserve + amount)
            fee = bps_of(gross_out, fee_rate)
            amount_out = gross_out - fee
            if amount_out == 0:
                raise ValidationError("Amount too small to receive any base currency",
                                      field='amount', value=amount)
            average = div(amount_out, amount)
            impact = ratio_bps(spot - average, spot)

        return PriceImpact(
            token=state.token,
            side=side,
            amount_in=amount,
            amount_out=amount_out,
            fee_amount=fee,
            marginal_price=spot,
            average_price=average,
            impact_bps=impact,
        )

    # === Fees ===

    def get_fee_tier(self, token: str, current_block: Optional[int] = None) -> Tuple[int, int]:
        """``(active fee rate bps, blocks until the next tier)``."""
        state = self._state(token)
        rate, remaining, _ = fee_tier(self._blocks_since_launch(state, current_block),
                                      state.pool.final_fee_rate_bps)
        return rate, remaining

    def get_current_fee_rate(self, token: str, current_block: Optional[int] = None) -> int:
        return self.get_fee_tier(token, current_block)[0]

    def time_until_next_tier(self, token: str, current_block: Optional[int] = None) -> int:
        return self.get_fee_tier(token, current_block)[1] * self.config.block_time_seconds

    def get_fee_info(self, token: str, current_block: Optional[int] = None) -> FeeInfo:
        state = self._state(token)
        blocks = self._blocks_since_launch(state, current_block)
        rate, remaining, label = fee_tier(blocks, state.pool.final_fee_rate_bps)
        return FeeInfo(
            token=state.token,
            current_fee_rate=rate,
            final_fee_rate=state.pool.final_fee_rate_bps,
            blocks_since_launch=blocks,
            blocks_until_next_tier=remaining,
            seconds_until_next_tier=remaining * self.config.block_time_seconds,
            fee_stage=label,
        )

    def get_creator_fee_info(self, token: str, now: Optional[int] = None) -> CreatorFeeInfo:
        """Creator's share of trading fees since the last claim.

        Claims are allowed once per ``creator_claim_cooldown`` seconds. With
        no claim yet the cooldown runs from the pool launch (or its first
        trade when the launch time is unknown).
        """
        state = self._state(token)
        now = self._now(now)
        pool = state.pool
        claims = state.ledger.claims(state.token)
        last_claim = claims[-1] if claims else None

        records = state.ledger.read(state.token, last_claim.block_number if last_claim else 0)
        if last_claim is not None:
            records = [r for r in records
                       if (r.block_number, r.log_index) > (last_claim.block_number, last_claim.log_index)]
        accumulated = sum(bps_of(r.fee_amount, pool.creator_fee_share_bps) for r in records)

        if last_claim is not None:
            last_claim_time = last_claim.timestamp
        elif pool.launch_timestamp is not None:
            last_claim_time = pool.launch_timestamp
        else:
            first = state.ledger.read(state.token)[:1]
            last_claim_time = first[0].timestamp if first else None

        graduation = state.ledger.graduation(state.token)
        can_claim = (accumulated > 0
                     and last_claim_time is not None
                     and now - last_claim_time >= self.config.creator_claim_cooldown)

        return CreatorFeeInfo(
            token=state.token,
            creator=pool.creator or (last_claim.creator if last_claim else None),
            accumulated_fees=accumulated,
            total_claimed=sum(c.amount for c in claims),
            claim_count=len(claims),
            last_claim_time=last_claim_time,
            graduation_market_cap=graduation.final_market_cap if graduation else 0,
            current_market_cap=mul(state.pool_state.current_price, pool.total_supply),
            base_in_pool=state.pool_state.base_reserve,
            can_claim=can_claim,
        )

    # === Pool ===

    def get_pool_state(self, token: str) -> PoolState:
        return copy_pool_state(self._state(token).pool_state)

    # === Helpers ===

    def _state(self, token: str) -> TokenState:
        return self.read_model.snapshot(token)

    def _now(self, now: Optional[int]) -> int:
        if now is None:
            return int(self._clock())
        self._check_int('now', now)
        return now

    def _blocks_since_launch(self, state: TokenState, current_block: Optional[int]) -> int:
        if current_block is None:
            current_block = state.synced_through
            if current_block is None:
                current_block = state.ledger.latest_block(state.token) or state.pool.launch_block
        self._check_int('current_block', current_block)
        return max(0, current_block - state.pool.launch_block)

    @staticmethod
    def _check_int(name: str, value, minimum: int = 0) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            raise ValidationError(f"{name} must be an integer >= {minimum}, got {value!r}",
                                  field=name, value=value)

    @staticmethod
    def _source(source: SourceArg) -> TradeSource:
        try:
            return TradeSource(source)
        except ValueError:
            raise ValidationError(f"Unknown trade source: {source!r}", field='source', value=source)

    @staticmethod
    def _side(side: Union[TradeSide, str]) -> TradeSide:
        try:
            return TradeSide(side.lower() if isinstance(side, str) else side)
        except ValueError:
            raise ValidationError(f"Unknown trade side: {side!r}", field='side', value=side)

    @staticmethod
    def _aggregate_traders(token: str, records: Iterable[TradeRecord]) -> List[TraderAggregate]:
        aggregates = {}
        for record in records:
            aggregate = aggregates.get(record.trader)
            if aggregate is None:
                aggregate = aggregates[record.trader] = TraderAggregate(address=record.trader, token=token)
            aggregate.apply(record)
        return list(aggregates.values())

    @staticmethod
    def _volume(records: Iterable[TradeRecord], source: TradeSource,
                buckets: Iterable[WindowBucket] = ()) -> VolumeData:
        buy_volume = sell_volume = buy_tokens = sell_tokens = buy_count = sell_count = 0
        buyers, sellers = set(), set()

        for bucket in buckets:
            buy_volume += bucket.buy_volume
            sell_volume += bucket.sell_volume
            buy_tokens += bucket.buy_token_volume
            sell_tokens += bucket.sell_token_volume
            buy_count += bucket.buy_count
            sell_count += bucket.sell_count
            buyers |= bucket.unique_buyers
            sellers |= bucket.unique_sellers

        for record in records:
            if record.source != source:
                continue
            if record.is_buy:
                buy_volume += record.base_amount
                buy_tokens += record.token_amount
                buy_count += 1
                buyers.add(record.trader)
            else:
                sell_volume += record.base_amount
                sell_tokens += record.token_amount
                sell_count += 1
                sellers.add(record.trader)

        return VolumeData(
            buy_volume=buy_volume,
            sell_volume=sell_volume,
            total_volume=buy_volume + sell_volume,
            buy_token_volume=buy_tokens,
            sell_token_volume=sell_tokens,
            buy_count=buy_count,
            sell_count=sell_count,
            trade_count=buy_count + sell_count,
            unique_buyers=len(buyers),
            unique_sellers=len(sellers),
            unique_traders=len(buyers | sellers),
            source=source,
        )
