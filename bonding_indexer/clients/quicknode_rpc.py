# bonding_indexer/clients/quicknode_rpc.py

import asyncio
from typing import List, Dict, Any, Optional

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from .interfaces import LogProviderInterface, ChainHeadProviderInterface
from ..core.errors import (
    ProviderError,
    ProviderRangeError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ..core.logging import LoggingMixin
from ..types import EvmLog, EvmBlockHeader, EvmHash, RpcConfig


RANGE_ERROR_MARKERS = (
    "block range",
    "range is too large",
    "range too large",
    "query returned more than",
    "too many results",
    "limit exceeded",
    "response size exceeded",
)

RATE_LIMIT_MARKERS = (
    "rate limit",
    "too many requests",
    "request limit",
    "429",
)


class QuickNodeRpcClient(LogProviderInterface, ChainHeadProviderInterface, LoggingMixin):
    """
    Async JSON-RPC client for an EVM node (QuickNode or any compatible endpoint).

    Provider failures are translated into the ProviderError taxonomy so the
    EventSource can tell retryable errors from range refusals.
    """

    def __init__(self, endpoint_url: str, timeout: int = 30):
        self.endpoint_url = endpoint_url
        self.timeout = timeout
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            endpoint_url,
            request_kwargs={'timeout': aiohttp.ClientTimeout(total=timeout)},
        ))

    @classmethod
    def from_config(cls, config: RpcConfig) -> 'QuickNodeRpcClient':
        return cls(endpoint_url=config.endpoint_url, timeout=config.timeout)

    async def get_latest_block_number(self) -> int:
        return await self._call("eth_blockNumber", lambda: self.w3.eth.block_number)

    async def get_block_header(self, block_number: int) -> EvmBlockHeader:
        block = await self._call(
            "eth_getBlockByNumber",
            lambda: self.w3.eth.get_block(block_number, full_transactions=False),
            from_block=block_number,
            to_block=block_number,
        )
        return EvmBlockHeader(
            number=int(block['number']),
            hash=EvmHash(Web3.to_hex(block['hash']).lower()),
            timestamp=int(block['timestamp']),
            parentHash=EvmHash(Web3.to_hex(block['parentHash']).lower()) if block.get('parentHash') else None,
        )

    async def get_logs(self,
                       address: str,
                       topics: List[Optional[object]],
                       from_block: int,
                       to_block: int) -> List[EvmLog]:
        filter_params = {
            'address': Web3.to_checksum_address(address),
            'topics': topics,
            'fromBlock': from_block,
            'toBlock': to_block,
        }
        raw_logs = await self._call(
            "eth_getLogs",
            lambda: self.w3.eth.get_logs(filter_params),
            from_block=from_block,
            to_block=to_block,
        )
        return [self._to_evm_log(log) for log in raw_logs]

    async def _call(self, method: str, request, from_block: Optional[int] = None, to_block: Optional[int] = None):
        try:
            return await asyncio.wait_for(request(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"{method} timed out after {self.timeout}s",
                                       from_block=from_block, to_block=to_block) from e
        except (Web3Exception, aiohttp.ClientError, OSError, ValueError) as e:
            raise self._translate_error(method, e, from_block, to_block) from e

    def _translate_error(self, method: str, error: Exception,
                         from_block: Optional[int], to_block: Optional[int]) -> ProviderError:
        message = str(error)
        lowered = message.lower()
        status = getattr(error, 'status', None)

        if status == 429 or any(marker in lowered for marker in RATE_LIMIT_MARKERS):
            error_class = ProviderRateLimitError
        elif any(marker in lowered for marker in RANGE_ERROR_MARKERS):
            error_class = ProviderRangeError
        elif "timeout" in lowered or "timed out" in lowered:
            error_class = ProviderTimeoutError
        elif isinstance(error, (OSError, aiohttp.ClientConnectionError)) or (status is not None and status >= 500):
            error_class = ProviderUnavailableError
        else:
            error_class = ProviderError

        self.log_debug("Provider call failed",
                       method=method,
                       from_block=from_block,
                       to_block=to_block,
                       error=message,
                       error_class=error_class.__name__)
        return error_class(f"{method} failed: {message}", from_block=from_block, to_block=to_block)

    @staticmethod
    def _to_evm_log(log: Dict[str, Any]) -> EvmLog:
        timestamp = log.get('blockTimestamp')
        return EvmLog(
            address=log['address'].lower(),
            blockHash=Web3.to_hex(log['blockHash']).lower(),
            blockNumber=hex(int(log['blockNumber'])),
            data=Web3.to_hex(log['data']),
            logIndex=hex(int(log['logIndex'])),
            topics=[Web3.to_hex(topic).lower() for topic in log['topics']],
            transactionHash=Web3.to_hex(log['transactionHash']).lower(),
            transactionIndex=hex(int(log.get('transactionIndex', 0))),
            removed=bool(log.get('removed', False)),
            timestamp=int(timestamp, 16) if isinstance(timestamp, str) else timestamp,
        )
