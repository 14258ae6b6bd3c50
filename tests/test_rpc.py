# tests/test_rpc.py

import asyncio

import aiohttp
import pytest
from hexbytes import HexBytes

from bonding_indexer.clients.quicknode_rpc import QuickNodeRpcClient
from bonding_indexer.core.errors import (
    ProviderError,
    ProviderRangeError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from bonding_indexer.types import RpcConfig

from conftest import CONTRACT, fake_hash


@pytest.fixture
def client() -> QuickNodeRpcClient:
    return QuickNodeRpcClient.from_config(RpcConfig(endpoint_url="http://localhost:8545", timeout=1))


@pytest.mark.parametrize("message, expected", [
    ("query returned more than 10000 results", ProviderRangeError),
    ("eth_getLogs block range is too large", ProviderRangeError),
    ("429 Too Many Requests", ProviderRateLimitError),
    ("upstream request timed out", ProviderTimeoutError),
    ("execution reverted", ProviderError),
])
def test_error_messages_are_classified(client, message, expected):
    error = client._translate_error("eth_getLogs", ValueError(message), 10, 20)

    assert type(error) is expected
    assert (error.from_block, error.to_block) == (10, 20)


def test_connection_failures_are_retryable(client):
    error = client._translate_error("eth_blockNumber", ConnectionRefusedError("refused"), None, None)

    assert isinstance(error, ProviderUnavailableError)
    assert error.retryable is True


def test_call_translates_exceptions(client):
    async def failing():
        raise aiohttp.ClientConnectionError("connection reset")

    with pytest.raises(ProviderUnavailableError):
        asyncio.run(client._call("eth_getLogs", failing, 1, 2))


def test_call_enforces_timeout(client):
    async def slow():
        await asyncio.sleep(5)

    with pytest.raises(ProviderTimeoutError):
        asyncio.run(client._call("eth_getLogs", slow, 1, 2))


def test_raw_logs_are_normalized():
    raw = {
        'address': CONTRACT.upper().replace("0X", "0x"),
        'blockHash': HexBytes(fake_hash("block")),
        'blockNumber': 1234,
        'data': HexBytes("0x01"),
        'logIndex': 3,
        'topics': [HexBytes(fake_hash("topic"))],
        'transactionHash': HexBytes(fake_hash("tx")),
        'transactionIndex': 7,
        'blockTimestamp': "0x10",
    }

    log = QuickNodeRpcClient._to_evm_log(raw)

    assert log.address == CONTRACT
    assert log.block_number == 1234
    assert log.log_index == 3
    assert log.blockHash == fake_hash("block")
    assert log.topics == [fake_hash("topic")]
    assert log.timestamp == 16
    assert log.removed is False
