# bonding_indexer/__init__.py

import os
from pathlib import Path
from typing import Optional

from .core.container import IndexerContainer
from .core.config import IndexerConfig
from .core.logging import IndexerLogger, log_with_context, INFO
from .clients.interfaces import LogProviderInterface, ChainHeadProviderInterface
from .clients.quicknode_rpc import QuickNodeRpcClient
from .database.connection import DatabaseManager
from .database.ledger_store import LedgerStore
from .decode.trade_decoder import TradeDecoder
from .ledger.read_model import ReadModel
from .pipeline.ingestion_pipeline import IngestionPipeline
from .query.query_engine import QueryEngine
from .reconcile.reorg_reconciler import ReorgReconciler
from .stream.event_source import EventSource


def create_indexer(config_path=None,
                   env_vars: Optional[dict] = None,
                   config: Optional[IndexerConfig] = None,
                   log_provider: Optional[LogProviderInterface] = None,
                   head_provider: Optional[ChainHeadProviderInterface] = None,
                   persist: bool = True) -> IndexerContainer:
    """Build a wired container.

    ``config`` wins over ``config_path``; without either, the path comes from
    INDEXER_CONFIG. Providers default to QuickNodeRpcClient instances from
    the rpc settings, with ``event_rpc`` serving log queries when set. With
    ``persist=False`` the ledger lives in memory only.
    """
    env = os.environ if env_vars is None else env_vars

    if config is None:
        config_path = config_path or env.get("INDEXER_CONFIG")
        if not config_path:
            raise ValueError("Must provide config_path or set INDEXER_CONFIG environment variable")
        config = IndexerConfig.from_file(config_path, env)

    _configure_logging_early(env, config)

    logger = IndexerLogger.get_logger('core.init')
    log_with_context(logger, INFO, "Creating indexer",
                     pool_count=len(config.pools),
                     contract_address=config.ingestion.contract_address,
                     persist=persist)

    container = IndexerContainer(config)
    _register_services(container, log_provider, head_provider, persist)

    log_with_context(logger, INFO, "Indexer created successfully",
                     services=container.get_service_info()['registered_services'])
    return container


def _configure_logging_early(env: dict, config: IndexerConfig) -> None:
    settings = config.logging

    log_dir_env = env.get("INDEXER_LOG_DIR") or settings.log_dir
    log_dir = Path(log_dir_env) if log_dir_env else Path.cwd() / "logs"

    def flag(name: str, default: bool) -> bool:
        value = env.get(name)
        return default if value is None else value.lower() == "true"

    IndexerLogger.configure(
        log_dir=log_dir,
        log_level=env.get("INDEXER_LOG_LEVEL", settings.level),
        console_enabled=flag("INDEXER_LOG_CONSOLE", settings.console),
        file_enabled=flag("INDEXER_LOG_FILE", settings.file),
        structured_format=flag("INDEXER_LOG_STRUCTURED", settings.structured),
    )


def _register_services(container: IndexerContainer,
                       log_provider: Optional[LogProviderInterface],
                       head_provider: Optional[ChainHeadProviderInterface],
                       persist: bool) -> None:
    logger = IndexerLogger.get_logger('core.services')
    logger.info("Registering services in container")

    logger.debug("Registering chain providers")
    container.register_factory(QuickNodeRpcClient, _create_rpc_client)
    if head_provider is not None:
        container.register_instance(ChainHeadProviderInterface, head_provider)
    else:
        container.register_factory(ChainHeadProviderInterface, lambda c: c.get(QuickNodeRpcClient))
    if log_provider is not None:
        container.register_instance(LogProviderInterface, log_provider)
    else:
        container.register_factory(LogProviderInterface, _create_log_provider)

    if persist:
        logger.debug("Registering database services")
        container.register_factory(DatabaseManager, _create_database_manager)
        container.register_singleton(LedgerStore, LedgerStore)

    logger.debug("Registering ledger and pipeline services")
    container.register_singleton(TradeDecoder, TradeDecoder)
    container.register_factory(ReadModel, _create_read_model)
    container.register_factory(EventSource, _create_event_source)
    container.register_factory(ReorgReconciler, _create_reconciler)
    container.register_factory(IngestionPipeline, _create_pipeline)
    container.register_factory(QueryEngine, _create_query_engine)

    logger.info("Service registration completed")


def _create_rpc_client(container: IndexerContainer) -> QuickNodeRpcClient:
    return QuickNodeRpcClient.from_config(container.config.rpc)


def _create_log_provider(container: IndexerContainer) -> LogProviderInterface:
    """Historical log reads may go to their own endpoint."""
    if container.config.event_rpc is not None:
        return QuickNodeRpcClient.from_config(container.config.event_rpc)
    return container.get(QuickNodeRpcClient)


def _create_database_manager(container: IndexerContainer) -> DatabaseManager:
    db_manager = DatabaseManager(container.config.database)
    db_manager.initialize()
    db_manager.create_tables()
    return db_manager


def _create_read_model(container: IndexerContainer) -> ReadModel:
    config = container.config
    store = container.get(LedgerStore) if container.has_service(LedgerStore) else None
    read_model = ReadModel(config.pools, config.aggregation, store)
    if store is not None:
        for token in read_model.tokens():
            read_model.restore(token)
    return read_model


def _create_event_source(container: IndexerContainer) -> EventSource:
    return EventSource(
        log_provider=container.get(LogProviderInterface),
        head_provider=container.get(ChainHeadProviderInterface),
        ingestion=container.config.ingestion,
    )


def _create_reconciler(container: IndexerContainer) -> ReorgReconciler:
    return ReorgReconciler(
        read_model=container.get(ReadModel),
        event_source=container.get(EventSource),
        head_provider=container.get(ChainHeadProviderInterface),
        decoder=container.get(TradeDecoder),
        reconcile=container.config.reconcile,
        aggregation=container.config.aggregation,
    )


def _create_pipeline(container: IndexerContainer) -> IngestionPipeline:
    return IngestionPipeline(
        read_model=container.get(ReadModel),
        event_source=container.get(EventSource),
        head_provider=container.get(ChainHeadProviderInterface),
        decoder=container.get(TradeDecoder),
        ingestion=container.config.ingestion,
        reconciler=container.get(ReorgReconciler),
    )


def _create_query_engine(container: IndexerContainer) -> QueryEngine:
    return QueryEngine(
        read_model=container.get(ReadModel),
        query=container.config.query,
        aggregation=container.config.aggregation,
    )


__all__ = ['create_indexer', 'IndexerContainer', 'IndexerConfig']
