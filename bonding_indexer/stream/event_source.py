# bonding_indexer/stream/event_source.py

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Tuple

import msgspec

from ..clients.interfaces import LogProviderInterface, ChainHeadProviderInterface
from ..core.errors import (
    ProviderError,
    ProviderRangeError,
    ProviderUnavailableError,
    ValidationError,
)
from ..core.logging import LoggingMixin
from ..decode.abis import trade_topics, lifecycle_topics, manager_trade_topics
from ..types import EvmLog, EvmBlockHeader, IngestionConfig
from ..utils.addresses import normalize_address, address_to_topic
from .retry import RetryPolicy, RetryingHeadProvider


RangeChunk = Tuple[int, int, List[EvmLog], EvmBlockHeader]


class EventSource(LoggingMixin):
    """
    Paginated log reader for one bonding curve contract, plus the launchpad
    manager's post-graduation buys when a manager address is configured.

    Ranges are walked in sub-ranges of at most ``max_block_range`` blocks.
    Transient provider failures are retried with exponential backoff; a
    provider refusing the range size makes the sub-range shrink by halves.
    Every completed sub-range comes back with the header of its last block,
    which the caller records as a sync checkpoint.
    """

    def __init__(self,
                 log_provider: LogProviderInterface,
                 head_provider: ChainHeadProviderInterface,
                 ingestion: IngestionConfig,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if ingestion.max_block_range < 1 or ingestion.min_split_range < 1:
            raise ValidationError("Block ranges must be positive",
                                  field='max_block_range', value=ingestion.max_block_range)
        if ingestion.max_attempts < 1:
            raise ValidationError("max_attempts must be positive",
                                  field='max_attempts', value=ingestion.max_attempts)

        self.log_provider = log_provider
        self.head_provider = head_provider
        self.config = ingestion
        self.contract_address = normalize_address(ingestion.contract_address, field='contract_address')
        self.manager_address = (normalize_address(ingestion.manager_address, field='manager_address')
                                if ingestion.manager_address else None)
        self.retry = RetryPolicy(ingestion, sleep)

    def retrying(self, provider: ChainHeadProviderInterface) -> RetryingHeadProvider:
        """Wrap a head provider so its calls share this source's retry policy."""
        return RetryingHeadProvider(provider, self.retry)

    async def fetch_range(self, token: str, from_block: int, to_block: int) -> List[EvmLog]:
        """All tracked logs for ``token`` in ``[from_block, to_block]``, in chain order."""
        logs: List[EvmLog] = []
        async for _, _, chunk, _ in self.iter_ranges(token, from_block, to_block):
            logs.extend(chunk)
        return logs

    async def iter_ranges(self, token: str, from_block: int, to_block: int) -> AsyncIterator[RangeChunk]:
        """Yield ``(sub_from, sub_to, logs, checkpoint)`` per completed sub-range.

        Raises ProviderError once retries or range splitting are exhausted;
        its ``last_good_block`` is the end of the last sub-range yielded, or
        ``from_block - 1`` if none was.
        """
        token = normalize_address(token, field='token')
        self._validate_range(from_block, to_block)

        last_good = from_block - 1
        cursor = from_block
        span = self.config.max_block_range

        while cursor <= to_block:
            sub_to = min(cursor + span - 1, to_block)
            try:
                logs, checkpoint = await self.retry.call(
                    lambda: self._fetch_sub_range(token, cursor, sub_to),
                    "eth_getLogs", token=token, from_block=cursor, to_block=sub_to,
                )
            except ProviderRangeError as e:
                width = sub_to - cursor + 1
                if width <= self.config.min_split_range:
                    raise ProviderError(
                        f"Provider refused {width}-block range at minimum split size: {e}",
                        token=token,
                        from_block=from_block,
                        to_block=to_block,
                        last_good_block=last_good,
                    ) from e
                span = max(self.config.min_split_range, width // 2)
                self.log_info("Provider refused block range, splitting",
                              token=token,
                              from_block=cursor,
                              to_block=sub_to,
                              new_span=span)
                continue
            except ProviderError as e:
                self.log_error("Log fetch failed",
                               token=token,
                               from_block=cursor,
                               to_block=sub_to,
                               attempts=e.attempts,
                               error=str(e))
                raise ProviderError(
                    f"Fetching logs for {token} failed at blocks {cursor}-{sub_to}: {e}",
                    token=token,
                    from_block=from_block,
                    to_block=to_block,
                    last_good_block=last_good,
                    attempts=e.attempts,
                ) from e

            self.log_debug("Fetched sub-range",
                           token=token,
                           from_block=cursor,
                           to_block=sub_to,
                           logs=len(logs))
            yield cursor, sub_to, logs, checkpoint
            last_good = sub_to
            cursor = sub_to + 1

    async def _fetch_sub_range(self, token: str, from_block: int, to_block: int) -> Tuple[List[EvmLog], EvmBlockHeader]:
        token_topic = address_to_topic(token)
        trades = await self.log_provider.get_logs(
            self.contract_address, trade_topics(token_topic), from_block, to_block)
        lifecycle = await self.log_provider.get_logs(
            self.contract_address, lifecycle_topics(token_topic), from_block, to_block)
        if self.manager_address:
            trades = trades + await self.log_provider.get_logs(
                self.manager_address, manager_trade_topics(token_topic), from_block, to_block)

        headers: Dict[int, EvmBlockHeader] = {}
        logs = []
        for log in sorted(trades + lifecycle, key=lambda entry: entry.sort_key):
            logs.append(await self._with_block_data(log, headers))

        checkpoint = await self._header(to_block, headers)
        return logs, checkpoint

    async def _with_block_data(self, log: EvmLog, headers: Dict[int, EvmBlockHeader]) -> EvmLog:
        if log.timestamp is not None or log.removed:
            return log
        header = await self._header(log.block_number, headers)
        if header.hash.lower() != log.blockHash.lower():
            # the node answered from two different forks; ask again
            raise ProviderUnavailableError(
                f"Log block hash {log.blockHash} differs from header hash {header.hash} "
                f"at block {log.block_number}",
                from_block=log.block_number,
                to_block=log.block_number,
            )
        return msgspec.structs.replace(log, timestamp=header.timestamp)

    async def _header(self, block_number: int, headers: Dict[int, EvmBlockHeader]) -> EvmBlockHeader:
        header = headers.get(block_number)
        if header is None:
            header = headers[block_number] = await self.head_provider.get_block_header(block_number)
        return header

    @staticmethod
    def _validate_range(from_block: int, to_block: int) -> None:
        for name, value in (('from_block', from_block), ('to_block', to_block)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer", field=name, value=value)
        if from_block > to_block:
            raise ValidationError(f"from_block {from_block} is after to_block {to_block}",
                                  field='from_block', value=from_block)
