# bonding_indexer/stream/retry.py

import asyncio
from typing import Awaitable, Callable, TypeVar

from ..clients.interfaces import ChainHeadProviderInterface
from ..core.errors import TransientProviderError
from ..core.logging import LoggingMixin
from ..types import EvmBlockHeader, EvmHash, IngestionConfig


T = TypeVar('T')


class RetryPolicy(LoggingMixin):
    """Capped exponential backoff for transient provider failures.

    Attempt ``n`` that fails is followed by a sleep of
    ``min(backoff_base_seconds * 2 ** (n - 1), backoff_max_seconds)``. The
    last failure is re-raised with ``attempts`` set once ``max_attempts``
    calls have failed. Non-transient errors pass straight through.
    """

    def __init__(self, ingestion: IngestionConfig,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.config = ingestion
        self._sleep = sleep

    def delay(self, attempt: int) -> float:
        return min(self.config.backoff_base_seconds * 2 ** (attempt - 1),
                   self.config.backoff_max_seconds)

    async def call(self, request: Callable[[], Awaitable[T]], operation: str, **context) -> T:
        attempt = 0
        while True:
            try:
                return await request()
            except TransientProviderError as e:
                attempt += 1
                e.attempts = attempt
                if attempt >= self.config.max_attempts:
                    raise
                delay = self.delay(attempt)
                self.log_warning("Transient provider error, retrying",
                                 operation=operation,
                                 attempt=attempt,
                                 delay=delay,
                                 error=str(e),
                                 **context)
                await self._sleep(delay)


class RetryingHeadProvider(ChainHeadProviderInterface):
    """Head provider whose every call goes through a RetryPolicy."""

    def __init__(self, provider: ChainHeadProviderInterface, policy: RetryPolicy):
        self.provider = provider
        self.policy = policy

    async def get_latest_block_number(self) -> int:
        return await self.policy.call(self.provider.get_latest_block_number, "eth_blockNumber")

    async def get_block_header(self, block_number: int) -> EvmBlockHeader:
        return await self.policy.call(lambda: self.provider.get_block_header(block_number),
                                      "eth_getBlockByNumber", block_number=block_number)

    async def get_block_hash(self, block_number: int) -> EvmHash:
        return await self.policy.call(lambda: self.provider.get_block_hash(block_number),
                                      "eth_getBlockByNumber", block_number=block_number)
