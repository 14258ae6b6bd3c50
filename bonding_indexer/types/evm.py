# bonding_indexer/types/evm.py

from typing import Optional

from msgspec import Struct

from .new import HexStr, HexInt, EvmAddress, EvmHash


def hex_to_int(value) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16) if str(value).startswith(("0x", "0X")) else int(value)


class EvmLog(Struct):
    """Raw log entry as returned by ``eth_getLogs`` (hex-encoded JSON form)."""
    address: EvmAddress
    blockHash: EvmHash
    blockNumber: HexStr
    data: HexStr
    logIndex: HexInt
    topics: list[EvmHash]
    transactionHash: EvmHash
    transactionIndex: HexStr = "0x0"
    removed: bool = False  # True when the node dropped the log during a reorg
    timestamp: Optional[int] = None  # filled in from the block header when known

    @property
    def block_number(self) -> int:
        return hex_to_int(self.blockNumber)

    @property
    def log_index(self) -> int:
        return hex_to_int(self.logIndex)

    @property
    def sort_key(self) -> tuple:
        return (self.block_number, self.log_index, self.transactionHash.lower())

    @property
    def signature(self) -> Optional[EvmHash]:
        return self.topics[0] if self.topics else None


class EvmBlockHeader(Struct):
    number: int
    hash: EvmHash
    timestamp: int
    parentHash: Optional[EvmHash] = None
