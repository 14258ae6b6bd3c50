# bonding_indexer/core/config.py

from typing import Dict, Optional, List, Any
from pathlib import Path
import os

import msgspec
import yaml
from msgspec import Struct, field
from eth_utils import is_address

from ..types import (
    EvmAddress,
    DatabaseConfig,
    RpcConfig,
    IngestionConfig,
    AggregationConfig,
    ReconcileConfig,
    QueryConfig,
    LoggingConfig,
    PoolConfig,
)
from ..utils.fixed_point import to_fixed
from ..utils.addresses import normalize_address
from .errors import ValidationError
from .logging import IndexerLogger, log_with_context, INFO, DEBUG


# Pool fields given in whole units in config files ("1.5" -> 1.5 * 10**18)
POOL_AMOUNT_FIELDS = (
    'graduation_threshold',
    'initial_token_reserve',
    'initial_base_reserve',
    'virtual_base_reserve',
    'total_supply',
)


class IndexerConfig(Struct):
    rpc: RpcConfig
    ingestion: IngestionConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    pools: List[PoolConfig] = field(default_factory=list)
    # optional separate endpoint for historical log reads
    event_rpc: Optional[RpcConfig] = None

    def __post_init__(self) -> None:
        self.validate()

    @property
    def pool_map(self) -> Dict[EvmAddress, PoolConfig]:
        return {pool.token.lower(): pool for pool in self.pools}

    @property
    def tokens(self) -> List[EvmAddress]:
        return [pool.token for pool in self.pools]

    def validate(self) -> None:
        if not is_address(self.ingestion.contract_address):
            raise ValidationError("Invalid bonding curve contract address",
                                  field='ingestion.contract_address',
                                  value=self.ingestion.contract_address)
        if self.ingestion.manager_address is not None and not is_address(self.ingestion.manager_address):
            raise ValidationError("Invalid launchpad manager address",
                                  field='ingestion.manager_address',
                                  value=self.ingestion.manager_address)
        if self.ingestion.max_block_range < 1:
            raise ValidationError("max_block_range must be positive",
                                  field='ingestion.max_block_range',
                                  value=self.ingestion.max_block_range)
        if self.ingestion.min_split_range < 1 or self.ingestion.min_split_range > self.ingestion.max_block_range:
            raise ValidationError("min_split_range must be between 1 and max_block_range",
                                  field='ingestion.min_split_range',
                                  value=self.ingestion.min_split_range)
        if self.ingestion.max_attempts < 1:
            raise ValidationError("max_attempts must be positive",
                                  field='ingestion.max_attempts',
                                  value=self.ingestion.max_attempts)
        if self.ingestion.concurrency < 1:
            raise ValidationError("concurrency must be positive",
                                  field='ingestion.concurrency',
                                  value=self.ingestion.concurrency)
        if not self.aggregation.intervals or any(i <= 0 for i in self.aggregation.intervals):
            raise ValidationError("aggregation intervals must be positive",
                                  field='aggregation.intervals',
                                  value=self.aggregation.intervals)
        if self.aggregation.primary_interval not in self.aggregation.intervals:
            raise ValidationError("primary_interval must be one of the configured intervals",
                                  field='aggregation.primary_interval',
                                  value=self.aggregation.primary_interval)
        if self.aggregation.finality_depth < 0:
            raise ValidationError("finality_depth must not be negative",
                                  field='aggregation.finality_depth',
                                  value=self.aggregation.finality_depth)
        if self.reconcile.max_reorg_depth < 1:
            raise ValidationError("max_reorg_depth must be positive",
                                  field='reconcile.max_reorg_depth',
                                  value=self.reconcile.max_reorg_depth)

        seen = set()
        for pool in self.pools:
            if not is_address(pool.token):
                raise ValidationError("Invalid pool token address", field='pools.token', value=pool.token)
            if pool.token.lower() in seen:
                raise ValidationError("Duplicate pool token", field='pools.token', value=pool.token)
            seen.add(pool.token.lower())
            if not 0 <= pool.final_fee_rate_bps <= 10_000:
                raise ValidationError("final_fee_rate_bps out of range",
                                      field='pools.final_fee_rate_bps',
                                      value=pool.final_fee_rate_bps)
            if not 0 <= pool.creator_fee_share_bps <= 10_000:
                raise ValidationError("creator_fee_share_bps out of range",
                                      field='pools.creator_fee_share_bps',
                                      value=pool.creator_fee_share_bps)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], env: Optional[dict] = None) -> 'IndexerConfig':
        env = os.environ if env is None else env
        data = cls._apply_env_overrides(dict(data or {}), env)
        data['pools'] = [cls._normalize_pool(pool) for pool in data.get('pools') or []]

        try:
            return msgspec.convert(data, type=cls)
        except msgspec.ValidationError as e:
            raise ValidationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, path, env: Optional[dict] = None) -> 'IndexerConfig':
        logger = IndexerLogger.get_logger('core.config')
        config_path = Path(path)

        if not config_path.exists():
            raise ValidationError(f"Config file not found: {config_path}", field='path', value=str(config_path))

        with open(config_path, 'r') as f:
            if config_path.suffix.lower() in ('.yaml', '.yml'):
                data = yaml.safe_load(f) or {}
            elif config_path.suffix.lower() == '.json':
                data = msgspec.json.decode(f.read())
            else:
                raise ValidationError(f"Unsupported config file type: {config_path.suffix}",
                                      field='path', value=str(config_path))

        config = cls.from_dict(data, env)

        log_with_context(logger, INFO, "Configuration loaded",
                         path=str(config_path),
                         pool_count=len(config.pools),
                         contract_address=config.ingestion.contract_address)
        return config

    @staticmethod
    def _apply_env_overrides(data: Dict[str, Any], env: dict) -> Dict[str, Any]:
        logger = IndexerLogger.get_logger('core.config.env')

        def section(name: str) -> Dict[str, Any]:
            data[name] = dict(data.get(name) or {})
            return data[name]

        if env.get("INDEXER_RPC_URL"):
            section('rpc')['endpoint_url'] = env["INDEXER_RPC_URL"]
        if env.get("INDEXER_EVENT_RPC_URL"):
            section('event_rpc')['endpoint_url'] = env["INDEXER_EVENT_RPC_URL"]
        if env.get("INDEXER_DB_URL"):
            section('database')['url'] = env["INDEXER_DB_URL"]
        if env.get("INDEXER_CONTRACT_ADDRESS"):
            section('ingestion')['contract_address'] = env["INDEXER_CONTRACT_ADDRESS"]
        if env.get("INDEXER_MANAGER_ADDRESS"):
            section('ingestion')['manager_address'] = env["INDEXER_MANAGER_ADDRESS"]
        if env.get("INDEXER_CONCURRENCY"):
            try:
                section('ingestion')['concurrency'] = int(env["INDEXER_CONCURRENCY"])
            except ValueError as e:
                raise ValidationError("INDEXER_CONCURRENCY must be an integer",
                                      field='INDEXER_CONCURRENCY',
                                      value=env["INDEXER_CONCURRENCY"]) from e
        if env.get("INDEXER_LOG_LEVEL"):
            section('logging')['level'] = env["INDEXER_LOG_LEVEL"]

        log_with_context(logger, DEBUG, "Environment overrides applied",
                         sections=sorted(data.keys()))
        return data

    @staticmethod
    def _normalize_pool(pool: Dict[str, Any]) -> Dict[str, Any]:
        pool = dict(pool)
        pool["token"] = normalize_address(pool.get("token"), field="pools.token")
        if pool.get("creator"):
            pool["creator"] = normalize_address(pool["creator"], field="pools.creator")

        for name in POOL_AMOUNT_FIELDS:
            if name in pool and pool[name] is not None:
                pool[name] = to_fixed(pool[name])
        return pool
