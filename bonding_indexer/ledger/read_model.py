# bonding_indexer/ledger/read_model.py
"""
Versioned, copy-on-write read model.

Each token has one published TokenState (ledger + window buckets + derived
pool state). Writers open a batch, which works on private clones; on success
the batch is persisted (when a store is attached) and swapped in as the next
version. Readers only ever hold published states, which are never mutated,
so they cannot observe a half-applied batch.
"""

import asyncio
import threading
from contextlib import contextmanager
from typing import Dict, Generator, Iterable, List, Optional, Set

from .interfaces import BatchChanges, LedgerStoreInterface
from .ledger import Ledger
from .pool_state import (
    apply_trade,
    check_trade_venue,
    copy_pool_state,
    derive_pool_state,
    graduate,
)
from .window_aggregator import WindowAggregator
from ..core.errors import DataIntegrityError, StaleResultError, ValidationError
from ..core.logging import LoggingMixin
from ..types import (
    AggregationConfig,
    CreatorFeeClaim,
    EvmAddress,
    EvmHash,
    GraduationEvent,
    PoolConfig,
    PoolState,
    ProcessingError,
    QuarantinedTrade,
    TradeRecord,
)
from ..utils.addresses import normalize_address


class TokenState:
    """Immutable published view of one token. Do not mutate."""

    __slots__ = ('token', 'pool', 'ledger', 'aggregator', 'pool_state',
                 'version', 'epoch', 'synced_through')

    def __init__(self, token: EvmAddress, pool: PoolConfig, ledger: Ledger,
                 aggregator: WindowAggregator, pool_state: PoolState,
                 version: int = 0, epoch: int = 0, synced_through: Optional[int] = None):
        self.token = token
        self.pool = pool
        self.ledger = ledger
        self.aggregator = aggregator
        self.pool_state = pool_state
        self.version = version
        self.epoch = epoch
        self.synced_through = synced_through


class TokenBatch(LoggingMixin):
    """Working copy of a TokenState. Obtain through ``ReadModel.batch``."""

    def __init__(self, base: TokenState):
        self.token = base.token
        self.pool = base.pool
        self.ledger = base.ledger.clone()
        self.aggregator = base.aggregator.clone()
        self.synced_through = base.synced_through
        self.changes = BatchChanges(token=base.token)
        self.invalidated = False
        self.sealed = 0
        self.ingested = 0
        self.duplicates = 0
        self.quarantined = 0

        self._pool_state = copy_pool_state(base.pool_state)
        latest = self.ledger.latest_record(self.token)
        self._last_order_key = latest.order_key if latest else None

    @property
    def pool_state(self) -> PoolState:
        return self._pool_state

    @property
    def dirty(self) -> bool:
        return self.sealed > 0 or not self.changes.is_empty()

    def ingest(self, record: TradeRecord) -> bool:
        """Add a trade to the ledger and its buckets.

        Duplicates return False. Invariant violations quarantine the record
        and raise DataIntegrityError; the batch stays usable.
        """
        if record.token != self.token:
            raise ValidationError(f"Record for {record.token} applied to {self.token}",
                                  field='token', value=record.token)
        if self.ledger.contains(record):
            self.duplicates += 1
            return False

        try:
            check_trade_venue(self._pool_state, record)
            self.aggregator.check_writable(record)
        except DataIntegrityError as e:
            self._track_quarantine(self.ledger.quarantine(record, e))
            raise

        try:
            self.ledger.ingest(record)
        except DataIntegrityError:
            # the ledger quarantined it already
            self._track_quarantine(self.ledger.quarantined(self.token)[-1])
            raise

        self.aggregator.update(record)
        self.changes.added.append(record)
        self.ingested += 1

        if self._last_order_key is None or record.order_key > self._last_order_key:
            apply_trade(self._pool_state, record, self.pool)
            self._last_order_key = record.order_key
        else:
            # backfill below the tip: replay from scratch
            self._rederive_pool_state()
        return True

    def record_graduation(self, event: GraduationEvent) -> bool:
        inserted = self.ledger.record_graduation(event)
        if inserted:
            self.changes.graduations.append(event)
            if event.block_hash:
                self.changes.block_hashes[event.block_number] = event.block_hash
            graduate(self._pool_state, event.block_number)
        return inserted

    def record_claim(self, claim: CreatorFeeClaim) -> bool:
        inserted = self.ledger.record_claim(claim)
        if inserted:
            self.changes.claims.append(claim)
            if claim.block_hash:
                self.changes.block_hashes[claim.block_number] = claim.block_hash
        return inserted

    def record_block_hash(self, block_number: int, block_hash: EvmHash) -> None:
        self.ledger.record_block_hash(self.token, block_number, block_hash)
        self.changes.block_hashes[block_number] = block_hash

    def record_error(self, error: ProcessingError) -> None:
        self.ledger.record_error(self.token, error)

    def set_synced_through(self, block_number: int) -> None:
        self.synced_through = block_number
        self.changes.synced_through = block_number

    def invalidate_from(self, block_number: int) -> List[TradeRecord]:
        removed = self.ledger.invalidate_from(self.token, block_number)
        self.aggregator.invalidate_from(self.token, block_number, self.ledger.read(self.token))
        self.changes.drop_from(block_number)
        self.invalidated = True

        if self.synced_through is not None and self.synced_through >= block_number:
            self.set_synced_through(block_number - 1)

        self._rederive_pool_state()
        latest = self.ledger.latest_record(self.token)
        self._last_order_key = latest.order_key if latest else None
        return removed

    def seal(self, up_to_block: int, finalized_timestamp: int) -> int:
        sealed = self.aggregator.seal(self.token, up_to_block, finalized_timestamp)
        self.sealed += sealed
        return sealed

    def _track_quarantine(self, entry: QuarantinedTrade) -> None:
        self.quarantined += 1
        self.changes.quarantined.append(entry)

    def _rederive_pool_state(self) -> None:
        self._pool_state = derive_pool_state(
            self.pool,
            self.ledger.read(self.token),
            self.ledger.graduation(self.token),
        )


class ReadModel(LoggingMixin):
    def __init__(self,
                 pools: Iterable[PoolConfig],
                 aggregation: Optional[AggregationConfig] = None,
                 store: Optional[LedgerStoreInterface] = None):
        self.aggregation = aggregation or AggregationConfig()
        self.store = store
        self._lock = threading.RLock()
        self._states: Dict[str, TokenState] = {}
        self._writers: Dict[str, asyncio.Lock] = {}
        self._fetches: Dict[str, Set[asyncio.Task]] = {}

        for pool in pools:
            token = normalize_address(pool.token, field='pool.token')
            self._states[token] = TokenState(
                token=token,
                pool=pool,
                ledger=Ledger(),
                aggregator=WindowAggregator(self.aggregation.intervals, self.aggregation.finality_depth),
                pool_state=derive_pool_state(pool, ()),
            )

    # === Readers ===

    def tokens(self) -> List[EvmAddress]:
        return sorted(self._states)

    def snapshot(self, token: str) -> TokenState:
        token = normalize_address(token, field='token')
        with self._lock:
            state = self._states.get(token)
        if state is None:
            raise ValidationError(f"Unknown token: {token}", field='token', value=token)
        return state

    def version(self, token: str) -> int:
        return self.snapshot(token).version

    def epoch(self, token: str) -> int:
        return self.snapshot(token).epoch

    # === Writers ===

    def writer(self, token: str) -> asyncio.Lock:
        """Single-writer lock for a token's ingestion and reconciliation."""
        token = self.snapshot(token).token
        with self._lock:
            lock = self._writers.get(token)
            if lock is None:
                lock = self._writers[token] = asyncio.Lock()
            return lock

    @contextmanager
    def batch(self, token: str) -> Generator[TokenBatch, None, None]:
        """Open a write batch; the new version is published when the block exits.

        An exception inside the block discards the working copy and leaves
        the published state as it was.
        """
        base = self.snapshot(token)
        working = TokenBatch(base)
        yield working

        if not working.dirty:
            return

        if self.store is not None and not working.changes.is_empty():
            self.store.apply(working.changes)

        self._publish(base, working)

    def restore(self, token: str) -> TokenState:
        """Rebuild a token's state from the attached store.

        Window buckets are not persisted; they are rebuilt from the records
        and sealed again by the next reconciliation.
        """
        if self.store is None:
            raise ValidationError("No ledger store attached", field='store')

        base = self.snapshot(token)
        stored = self.store.load(base.token)
        working = TokenBatch(base)

        for block_number, block_hash in sorted(stored.block_hashes.items()):
            working.ledger.record_block_hash(base.token, block_number, block_hash)
        if stored.graduation:
            working.ledger.record_graduation(stored.graduation)
        for claim in stored.claims:
            working.ledger.record_claim(claim)
        for entry in stored.quarantined:
            working.ledger.add_quarantined(entry)
        for record in stored.records:
            if working.ledger.ingest(record):
                working.aggregator.update(record)
        working.synced_through = stored.synced_through
        working._rederive_pool_state()

        state = self._publish(base, working)
        self.log_info("Token state restored from store",
                      token=state.token,
                      records=state.ledger.count(state.token),
                      synced_through=state.synced_through)
        return state

    def _publish(self, base: TokenState, working: TokenBatch) -> TokenState:
        with self._lock:
            current = self._states[base.token]
            if current is not base:
                raise StaleResultError(base.token, base.version, current.version)
            published = TokenState(
                token=base.token,
                pool=base.pool,
                ledger=working.ledger,
                aggregator=working.aggregator,
                pool_state=working.pool_state,
                version=base.version + 1,
                epoch=base.epoch + 1 if working.invalidated else base.epoch,
                synced_through=working.synced_through,
            )
            self._states[base.token] = published

        self.log_debug("Read model published",
                       token=base.token,
                       version=published.version,
                       epoch=published.epoch,
                       ingested=working.ingested,
                       quarantined=working.quarantined)
        return published

    # === In-flight fetches ===

    def register_fetch(self, token: str, task: asyncio.Task) -> None:
        with self._lock:
            self._fetches.setdefault(self.snapshot(token).token, set()).add(task)

    def unregister_fetch(self, token: str, task: asyncio.Task) -> None:
        with self._lock:
            self._fetches.get(self.snapshot(token).token, set()).discard(task)

    def cancel_fetches(self, token: str) -> int:
        with self._lock:
            tasks = [t for t in self._fetches.get(self.snapshot(token).token, set()) if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            self.log_info("Cancelled in-flight fetches", token=token, cancelled=len(tasks))
        return len(tasks)
