# bonding_indexer/reconcile/reorg_reconciler.py

from typing import Dict, List, Optional, Tuple

from ..clients.interfaces import ChainHeadProviderInterface
from ..core.errors import ReorgError, ValidationError
from ..core.logging import LoggingMixin
from ..decode.trade_decoder import TradeDecoder
from ..ledger.read_model import ReadModel, TokenState
from ..pipeline.apply import apply_logs
from ..stream.event_source import EventSource
from ..types import (
    AggregationConfig,
    EvmBlockHeader,
    EvmLog,
    ReconcileConfig,
    ReconcileResult,
)


class ReorgReconciler(LoggingMixin):
    """
    Keeps each token's ledger on the canonical chain.

    The hash stored for the highest tracked block is compared with the
    canonical hash at that height. On a mismatch the tracked blocks are
    walked downwards to the highest one that still matches; everything
    above it is re-fetched, then invalidated and re-ingested in a single
    read-model batch under the token's writer lock. A diverging block
    further back than ``max_reorg_depth`` raises a fatal ReorgError. Head,
    hash and header lookups are retried like log fetches.

    Each run also seals window buckets that are past finality depth.
    """

    def __init__(self,
                 read_model: ReadModel,
                 event_source: EventSource,
                 head_provider: ChainHeadProviderInterface,
                 decoder: TradeDecoder,
                 reconcile: Optional[ReconcileConfig] = None,
                 aggregation: Optional[AggregationConfig] = None):
        self.read_model = read_model
        self.event_source = event_source
        self.head_provider = event_source.retrying(head_provider)
        self.decoder = decoder
        self.config = reconcile or ReconcileConfig()
        self.finality_depth = (aggregation or read_model.aggregation).finality_depth

        if self.config.max_reorg_depth < 1:
            raise ValidationError("max_reorg_depth must be positive",
                                  field='max_reorg_depth', value=self.config.max_reorg_depth)

    async def reconcile(self, token: str) -> ReconcileResult:
        token = self.read_model.snapshot(token).token

        async with self.read_model.writer(token):
            head = await self.head_provider.get_latest_block_number()
            state = self.read_model.snapshot(token)
            result = ReconcileResult(token=token, head_block=head, version=state.version)

            divergence = await self._find_divergence(state, head)
            if divergence is not None:
                diverged_at, repair_from = divergence
                await self._repair(state, head, diverged_at, repair_from, result)

            result.sealed = await self._seal(token, head)
            result.version = self.read_model.version(token)
            return result

    async def reconcile_all(self, tokens: Optional[List[str]] = None) -> Dict[str, ReconcileResult]:
        """Reconcile tokens one after another; a fatal ReorgError stops the run."""
        results = {}
        for token in tokens or self.read_model.tokens():
            result = await self.reconcile(token)
            results[result.token] = result
        return results

    async def _find_divergence(self, state: TokenState, head: int) -> Optional[Tuple[int, int]]:
        """Return ``(lowest diverging tracked block, first block to re-fetch)`` or None."""
        token = state.token
        tracked = state.ledger.known_blocks(token)
        beyond_head = [b for b in tracked if b > head]
        if beyond_head:
            self.log_warning("Tracked blocks beyond reported head, skipping them",
                             token=token,
                             head=head,
                             beyond=len(beyond_head))
        candidates = [b for b in tracked if b <= head]
        if not candidates:
            return None

        if await self._is_canonical(state, candidates[0]):
            return None

        # the bound applies to the diverging block; the matching ancestor
        # below it may be any distance from head
        diverged_at = candidates[0]
        for block_number in candidates[1:]:
            if head - diverged_at + 1 > self.config.max_reorg_depth:
                break
            if await self._is_canonical(state, block_number):
                return self._divergence(token, head, diverged_at, block_number)
            diverged_at = block_number
        else:
            # nothing for this token exists before launch
            ancestor = state.pool.launch_block - 1
            if ancestor < diverged_at and head - diverged_at + 1 <= self.config.max_reorg_depth:
                return self._divergence(token, head, diverged_at, ancestor)

        depth = head - diverged_at + 1
        self.log_error("Reorganization deeper than tracked window",
                       token=token,
                       block_number=diverged_at,
                       depth=depth,
                       max_reorg_depth=self.config.max_reorg_depth)
        raise ReorgError(
            f"No common ancestor for {token} within {self.config.max_reorg_depth} blocks of head {head}; "
            f"lowest diverging tracked block {diverged_at}",
            token=token,
            diverged_at=diverged_at,
            depth=depth,
            fatal=True,
        )

    def _divergence(self, token: str, head: int, diverged_at: int, ancestor: int) -> Tuple[int, int]:
        self.log_warning("Chain reorganization detected",
                         token=token,
                         block_number=diverged_at,
                         common_ancestor=ancestor,
                         depth=head - ancestor)
        return diverged_at, ancestor + 1

    async def _is_canonical(self, state: TokenState, block_number: int) -> bool:
        stored = state.ledger.block_hash_at(state.token, block_number)
        canonical = await self.head_provider.get_block_hash(block_number)
        return stored is not None and stored.lower() == canonical.lower()

    async def _repair(self, state: TokenState, head: int, diverged_at: int, repair_from: int,
                      result: ReconcileResult) -> None:
        token = state.token
        result.reorg_detected = True
        result.diverged_at = diverged_at

        self.read_model.cancel_fetches(token)

        synced = state.synced_through
        if synced is None:
            synced = state.ledger.latest_block(token) or repair_from
        refetch_to = min(synced, head)

        # fetch the canonical range before touching anything, so a provider
        # failure leaves the published state as it was
        logs: List[EvmLog] = []
        checkpoint: Optional[EvmBlockHeader] = None
        if repair_from <= refetch_to:
            async for _, _, chunk, header in self.event_source.iter_ranges(token, repair_from, refetch_to):
                logs.extend(chunk)
                checkpoint = header

        with self.read_model.batch(token) as working:
            removed = working.invalidate_from(repair_from)
            applied = apply_logs(working, logs, self.decoder, repair_from, refetch_to)
            if checkpoint is not None:
                working.record_block_hash(checkpoint.number, checkpoint.hash)
            if repair_from <= refetch_to:
                working.set_synced_through(refetch_to)

        result.removed = len(removed)
        result.reingested = applied.ingested
        self.log_info("Reorganization reconciled",
                      token=token,
                      from_block=repair_from,
                      to_block=refetch_to,
                      removed=result.removed,
                      reingested=result.reingested,
                      quarantined=applied.quarantined,
                      epoch=self.read_model.epoch(token))

    async def _seal(self, token: str, head: int) -> int:
        """Seal buckets finalized at both the chain head and the sync cursor.

        Blocks above the sync cursor have not been ingested yet, so a bucket
        is only sealed once its interval closed before the finalized block
        and that block has been synced.
        """
        state = self.read_model.snapshot(token)
        if state.synced_through is None:
            return 0
        finalized_block = min(head - self.finality_depth, state.synced_through)
        if finalized_block < 0:
            return 0

        header = await self.head_provider.get_block_header(finalized_block)
        up_to_block = finalized_block + self.finality_depth
        if state.aggregator.sealable_count(token, up_to_block, header.timestamp) == 0:
            return 0

        with self.read_model.batch(token) as working:
            return working.seal(up_to_block, header.timestamp)
