# bonding_indexer/clients/interfaces.py
"""
Interfaces for the chain collaborators.

The indexer only ever reads from the chain: logs for a block range, and the
head number plus block hashes and timestamps used for canonicality checks.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from ..types import EvmLog, EvmBlockHeader, EvmHash


class LogProviderInterface(ABC):
    """Interface for ``eth_getLogs`` style providers."""

    @abstractmethod
    async def get_logs(self,
                       address: str,
                       topics: List[Optional[object]],
                       from_block: int,
                       to_block: int) -> List[EvmLog]:
        """
        Query logs emitted by a contract.

        Args:
            address: Contract address
            topics: Topic filter; each position is a hash, a list of hashes or None
            from_block: First block, inclusive
            to_block: Last block, inclusive

        Returns:
            Logs in any order

        Raises:
            ProviderRangeError: the range is larger than the provider accepts
            TransientProviderError: rate limited, timed out or unavailable
        """
        pass


class ChainHeadProviderInterface(ABC):
    """Interface for head and canonical block lookups."""

    @abstractmethod
    async def get_latest_block_number(self) -> int:
        pass

    @abstractmethod
    async def get_block_header(self, block_number: int) -> EvmBlockHeader:
        """
        Get the canonical header at a height.

        Args:
            block_number: Block number

        Returns:
            Header with hash and timestamp
        """
        pass

    async def get_block_hash(self, block_number: int) -> EvmHash:
        header = await self.get_block_header(block_number)
        return header.hash

    async def get_block_timestamp(self, block_number: int) -> int:
        header = await self.get_block_header(block_number)
        return header.timestamp
