# tests/test_factory.py

import asyncio
import json

import pytest
from click.testing import CliRunner

from bonding_indexer import create_indexer
from bonding_indexer.cli.__main__ import cli, cli_context
from bonding_indexer.clients.interfaces import ChainHeadProviderInterface
from bonding_indexer.clients.quicknode_rpc import QuickNodeRpcClient
from bonding_indexer.core.config import IndexerConfig
from bonding_indexer.database.connection import DatabaseManager
from bonding_indexer.database.ledger_store import LedgerStore
from bonding_indexer.ledger.read_model import ReadModel
from bonding_indexer.pipeline.ingestion_pipeline import IngestionPipeline
from bonding_indexer.query.query_engine import QueryEngine
from bonding_indexer.reconcile.reorg_reconciler import ReorgReconciler

from conftest import ALICE, BOB, CONTRACT, TOKEN, units


def make_config(db_url: str = "sqlite://") -> IndexerConfig:
    return IndexerConfig.from_dict({
        "rpc": {"endpoint_url": "http://localhost:8545"},
        "ingestion": {"contract_address": CONTRACT, "max_block_range": 50},
        "database": {"url": db_url},
        "aggregation": {"finality_depth": 5},
        "logging": {"console": False},
        "pools": [{
            "token": TOKEN,
            "launch_block": 100,
            "graduation_threshold": "10000",
            "initial_token_reserve": "800000000",
            "virtual_base_reserve": "30",
        }],
    }, env={})


def test_in_memory_container_resolves_services(chain):
    container = create_indexer(config=make_config(), env_vars={},
                               log_provider=chain, head_provider=chain, persist=False)

    pipeline = container.get(IngestionPipeline)
    assert pipeline.read_model is container.get(ReadModel)
    assert container.get(ReorgReconciler).read_model is pipeline.read_model
    assert container.get(ChainHeadProviderInterface) is chain
    assert not container.has_service(LedgerStore)
    assert container.get(ReadModel).store is None


def test_default_providers_use_the_rpc_client():
    container = create_indexer(config=make_config(), env_vars={}, persist=False)

    provider = container.get(ChainHeadProviderInterface)
    assert isinstance(provider, QuickNodeRpcClient)
    assert provider.endpoint_url == "http://localhost:8545"


def test_missing_config_is_rejected():
    with pytest.raises(ValueError):
        create_indexer(env_vars={})


def test_persisted_ledger_survives_restart(chain, tmp_path):
    db_url = f"sqlite:///{tmp_path / 'ledger.db'}"
    chain.head = 200
    chain.add_trade(150, "buy", ALICE, base_amount=units(2))
    chain.add_trade(160, "sell", BOB)

    first = create_indexer(config=make_config(db_url), env_vars={},
                           log_provider=chain, head_provider=chain)
    asyncio.run(first.get(IngestionPipeline).sync_token(TOKEN))
    expected = first.get(QueryEngine).get_total_volume(TOKEN)
    first.get(DatabaseManager).shutdown()

    second = create_indexer(config=make_config(db_url), env_vars={},
                            log_provider=chain, head_provider=chain)
    state = second.get(ReadModel).snapshot(TOKEN)

    assert state.synced_through == 200
    assert second.get(QueryEngine).get_total_volume(TOKEN) == expected
    second.get(DatabaseManager).shutdown()


def test_cli_query_renders_json(chain, monkeypatch):
    container = create_indexer(config=make_config(), env_vars={},
                               log_provider=chain, head_provider=chain, persist=False)
    chain.head = 200
    chain.add_trade(150, "buy", ALICE)
    asyncio.run(container.get(IngestionPipeline).sync_token(TOKEN))
    monkeypatch.setattr(cli_context, "_container", container)

    result = CliRunner().invoke(cli, ["query", "holders", TOKEN])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"token": TOKEN, "estimated_holders": 1}


def test_cli_reports_query_errors(chain, monkeypatch):
    container = create_indexer(config=make_config(), env_vars={},
                               log_provider=chain, head_provider=chain, persist=False)
    monkeypatch.setattr(cli_context, "_container", container)

    result = CliRunner().invoke(cli, ["query", "recent", "not-an-address"])

    assert result.exit_code == 1
    assert "Query failed" in result.output


def test_cli_pool_state(chain, monkeypatch):
    container = create_indexer(config=make_config(), env_vars={},
                               log_provider=chain, head_provider=chain, persist=False)
    monkeypatch.setattr(cli_context, "_container", container)

    result = CliRunner().invoke(cli, ["query", "pool", TOKEN])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "active"
    assert payload["trade_count"] == 0
