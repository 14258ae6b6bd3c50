# bonding_indexer/types/__init__.py

from .constants import ZERO_ADDRESS, FEE_TIERS

# New Types
from .new import (
    EvmAddress,
    EvmHash,
    HexStr,
    HexInt,
    ErrorId,
    FixedPoint,
    BasisPoints,
    BlockNumber,
    Timestamp,
)

# EVM Types
from .evm import (
    EvmLog,
    EvmBlockHeader,
    hex_to_int,
)

# Configuration Types
from .configs.config import (
    DatabaseConfig,
    RpcConfig,
    IngestionConfig,
    AggregationConfig,
    ReconcileConfig,
    QueryConfig,
    LoggingConfig,
)
from .configs.pool import PoolConfig

# Domain Types
from .model.trade import (
    TradeSide,
    TradeSource,
    PoolStatus,
    TradeRecord,
    GraduationEvent,
    CreatorFeeClaim,
    PoolState,
    TraderAggregate,
)
from .model.window import WindowBucket
from .model.metrics import (
    VolumeData,
    VolumePoint,
    Volume24h,
    NoData,
    PriceChange,
    FeeInfo,
    CreatorFeeInfo,
    PriceImpact,
)
from .model.errors import (
    ProcessingError,
    QuarantinedTrade,
    create_ingest_error,
    create_decode_error,
)
from .model.results import IngestResult, SyncResult, ReconcileResult
