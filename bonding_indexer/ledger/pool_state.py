# bonding_indexer/ledger/pool_state.py

from typing import Iterable, Optional

from ..core.errors import DataIntegrityError
from ..types import (
    PoolConfig,
    PoolState,
    PoolStatus,
    TradeRecord,
    TradeSource,
    GraduationEvent,
)
from ..utils.fixed_point import SCALE, mul_div


def marginal_price(state: PoolState) -> int:
    """Spot price of one token in base units from the virtual reserves."""
    if state.token_reserve <= 0:
        return 0
    return mul_div(state.effective_base_reserve, SCALE, state.token_reserve)


def initial_pool_state(pool: PoolConfig) -> PoolState:
    state = PoolState(
        token=pool.token,
        base_reserve=pool.initial_base_reserve,
        token_reserve=pool.initial_token_reserve,
        virtual_base_reserve=pool.virtual_base_reserve,
        current_price=0,
    )
    state.current_price = marginal_price(state)
    return state


def check_trade_venue(state: PoolState, record: TradeRecord) -> None:
    """Bonding curve trades cannot happen after the pool graduated."""
    if (record.source == TradeSource.BONDING_CURVE
            and state.graduated
            and state.graduated_at_block is not None
            and record.block_number > state.graduated_at_block):
        raise DataIntegrityError(
            f"Bonding curve trade at block {record.block_number} after graduation "
            f"at block {state.graduated_at_block}",
            reason="trade_after_graduation",
            record=record,
        )


def apply_trade(state: PoolState, record: TradeRecord, pool: PoolConfig) -> None:
    """Apply one trade in ledger order.

    Buys add the base amount net of fee to the reserve; sells remove the
    amount paid out plus the fee. Post-graduation trades happen on another
    venue and leave the curve untouched.
    """
    state.last_block = record.block_number
    state.trade_count += 1
    if record.source != TradeSource.BONDING_CURVE:
        return

    fee = record.fee_amount
    if record.is_buy:
        state.base_reserve += record.base_amount - fee
        state.token_reserve -= record.token_amount
    else:
        state.base_reserve = max(0, state.base_reserve - record.base_amount - fee)
        state.token_reserve += record.token_amount

    state.current_price = record.market_price or marginal_price(state)

    if (state.status == PoolStatus.ACTIVE
            and pool.graduation_threshold > 0
            and state.base_reserve >= pool.graduation_threshold):
        graduate(state, record.block_number)


def graduate(state: PoolState, block_number: int) -> None:
    if state.status == PoolStatus.GRADUATED:
        return
    state.status = PoolStatus.GRADUATED
    state.graduated_at_block = block_number


def derive_pool_state(pool: PoolConfig,
                      records: Iterable[TradeRecord],
                      graduation: Optional[GraduationEvent] = None) -> PoolState:
    """Replay trades in ledger order on top of the launch configuration."""
    state = initial_pool_state(pool)
    for record in records:
        if graduation is not None and state.status == PoolStatus.ACTIVE \
                and record.block_number > graduation.block_number:
            graduate(state, graduation.block_number)
        apply_trade(state, record, pool)
    if graduation is not None:
        graduate(state, graduation.block_number)
    return state


def copy_pool_state(state: PoolState) -> PoolState:
    return PoolState(
        token=state.token,
        base_reserve=state.base_reserve,
        token_reserve=state.token_reserve,
        virtual_base_reserve=state.virtual_base_reserve,
        current_price=state.current_price,
        status=state.status,
        graduated_at_block=state.graduated_at_block,
        last_block=state.last_block,
        trade_count=state.trade_count,
    )
