# bonding_indexer/types/configs/config.py

from typing import Optional

from msgspec import Struct, field

from ..constants import (
    SECONDS_PER_HOUR,
    SECONDS_PER_DAY,
    DEFAULT_BLOCK_TIME_SECONDS,
    DEFAULT_CREATOR_CLAIM_COOLDOWN,
)


class DatabaseConfig(Struct):
    url: str = "sqlite:///bonding_indexer.db"
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False


class RpcConfig(Struct):
    endpoint_url: str
    timeout: int = 30
    max_retries: int = 3


class IngestionConfig(Struct):
    contract_address: str
    # LaunchpadManager, emits PostGraduationBuy; None skips those buys
    manager_address: Optional[str] = None
    start_block: int = 0
    max_block_range: int = 5000
    min_split_range: int = 1
    max_attempts: int = 5
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 30.0
    concurrency: int = 4
    channel_size: int = 16
    # stay this many blocks behind head when syncing
    confirmations: int = 0


class AggregationConfig(Struct):
    intervals: list[int] = field(default_factory=lambda: [SECONDS_PER_HOUR, SECONDS_PER_DAY])
    primary_interval: int = SECONDS_PER_HOUR
    finality_depth: int = 15


class ReconcileConfig(Struct):
    max_reorg_depth: int = 64


class QueryConfig(Struct):
    price_lookback_seconds: int = SECONDS_PER_HOUR
    block_time_seconds: int = DEFAULT_BLOCK_TIME_SECONDS
    creator_claim_cooldown: int = DEFAULT_CREATOR_CLAIM_COOLDOWN
    recent_trades_limit: int = 50
    top_traders_limit: int = 10


class LoggingConfig(Struct):
    level: str = "INFO"
    log_dir: Optional[str] = None
    console: bool = True
    file: bool = False
    structured: bool = True
