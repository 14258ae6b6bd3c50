# bonding_indexer/types/configs/pool.py

from typing import Optional

from msgspec import Struct

from ..new import EvmAddress
from ..constants import DEFAULT_FINAL_FEE_RATE_BPS, DEFAULT_CREATOR_FEE_SHARE_BPS


class PoolConfig(Struct):
    """Launch metadata for one bonding-curve pool.

    Supplied by the registry (config file or ``PoolCreated`` data), never
    derived from trades. Amounts are 18-decimal fixed point.
    """
    token: EvmAddress
    launch_block: int
    graduation_threshold: int
    initial_token_reserve: int
    initial_base_reserve: int = 0
    virtual_base_reserve: int = 0
    total_supply: int = 0
    creator: Optional[EvmAddress] = None
    final_fee_rate_bps: int = DEFAULT_FINAL_FEE_RATE_BPS
    creator_fee_share_bps: int = DEFAULT_CREATOR_FEE_SHARE_BPS
    launch_timestamp: Optional[int] = None
