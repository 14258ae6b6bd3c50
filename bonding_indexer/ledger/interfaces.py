# bonding_indexer/ledger/interfaces.py

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from msgspec import Struct, field

from ..types import (
    EvmHash,
    TradeRecord,
    GraduationEvent,
    CreatorFeeClaim,
    QuarantinedTrade,
)


class BatchChanges(Struct):
    """Everything one read-model batch changed for a token.

    A store applies ``invalidated_from`` (delete at or above) before
    inserting anything else, so a batch can rewrite a range in one go.
    """
    token: str
    invalidated_from: Optional[int] = None
    added: List[TradeRecord] = field(default_factory=list)
    block_hashes: Dict[int, EvmHash] = field(default_factory=dict)
    graduations: List[GraduationEvent] = field(default_factory=list)
    claims: List[CreatorFeeClaim] = field(default_factory=list)
    quarantined: List[QuarantinedTrade] = field(default_factory=list)
    synced_through: Optional[int] = None

    def is_empty(self) -> bool:
        return (self.invalidated_from is None and not self.added and not self.block_hashes
                and not self.graduations and not self.claims and not self.quarantined
                and self.synced_through is None)

    def drop_from(self, block_number: int) -> None:
        self.invalidated_from = block_number if self.invalidated_from is None \
            else min(self.invalidated_from, block_number)
        self.added = [r for r in self.added if r.block_number < block_number]
        self.block_hashes = {b: h for b, h in self.block_hashes.items() if b < block_number}
        self.graduations = [g for g in self.graduations if g.block_number < block_number]
        self.claims = [c for c in self.claims if c.block_number < block_number]
        self.quarantined = [q for q in self.quarantined if q.record.block_number < block_number]


class StoredLedger(Struct):
    records: List[TradeRecord] = field(default_factory=list)
    block_hashes: Dict[int, EvmHash] = field(default_factory=dict)
    graduation: Optional[GraduationEvent] = None
    claims: List[CreatorFeeClaim] = field(default_factory=list)
    quarantined: List[QuarantinedTrade] = field(default_factory=list)
    synced_through: Optional[int] = None


class LedgerStoreInterface(ABC):
    """Durable backing for the in-memory ledger."""

    @abstractmethod
    def apply(self, changes: BatchChanges) -> None:
        """Persist one batch atomically; raise to abort the publish."""
        pass

    @abstractmethod
    def load(self, token: str) -> StoredLedger:
        """Load everything persisted for a token."""
        pass
