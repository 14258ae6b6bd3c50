# bonding_indexer/types/model/results.py

from typing import Optional

from msgspec import Struct

from ..new import EvmAddress


class IngestResult(Struct):
    token: EvmAddress
    from_block: int
    to_block: int
    fetched: int = 0
    ingested: int = 0
    duplicates: int = 0
    quarantined: int = 0
    undecoded: int = 0
    version: int = 0


class SyncResult(Struct):
    token: EvmAddress
    from_block: int
    to_block: int
    synced_through: int
    ingested: int = 0
    quarantined: int = 0
    stale_batches: int = 0
    error: Optional[str] = None


class ReconcileResult(Struct):
    token: EvmAddress
    head_block: int
    reorg_detected: bool = False
    diverged_at: Optional[int] = None
    removed: int = 0
    reingested: int = 0
    sealed: int = 0
    version: int = 0
