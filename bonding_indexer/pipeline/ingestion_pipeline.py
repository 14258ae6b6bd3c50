# bonding_indexer/pipeline/ingestion_pipeline.py

import asyncio
from typing import Dict, List, Optional

from .apply import apply_logs
from ..clients.interfaces import ChainHeadProviderInterface
from ..core.errors import ProviderError, StaleResultError, ValidationError
from ..core.logging import LoggingMixin
from ..decode.trade_decoder import TradeDecoder
from ..ledger.read_model import ReadModel
from ..reconcile.reorg_reconciler import ReorgReconciler
from ..stream.channel import RangeBatch, TradeChannel
from ..stream.event_source import EventSource
from ..types import IngestionConfig, SyncResult


class IngestionPipeline(LoggingMixin):
    """
    Per-token ingestion: EventSource -> TradeChannel -> read-model batches.

    A producer task pulls sub-ranges from the EventSource into a bounded
    channel; the consumer applies each one as its own batch under the
    token's writer lock. Batches carry the epoch they were fetched in and
    are rejected once a reorg has moved the token to a newer epoch.
    """

    def __init__(self,
                 read_model: ReadModel,
                 event_source: EventSource,
                 head_provider: ChainHeadProviderInterface,
                 decoder: TradeDecoder,
                 ingestion: IngestionConfig,
                 reconciler: Optional[ReorgReconciler] = None):
        if ingestion.concurrency < 1:
            raise ValidationError("concurrency must be positive",
                                  field='concurrency', value=ingestion.concurrency)
        self.read_model = read_model
        self.event_source = event_source
        self.head_provider = event_source.retrying(head_provider)
        self.decoder = decoder
        self.config = ingestion
        self.reconciler = reconciler

    async def sync_token(self, token: str, to_block: Optional[int] = None) -> SyncResult:
        """Ingest everything after the token's sync cursor up to ``to_block``.

        Raises ProviderError when the EventSource gives up; batches applied
        before the failure stay published and the cursor points at the last
        one.
        """
        state = self.read_model.snapshot(token)
        token = state.token
        if to_block is not None and (isinstance(to_block, bool) or not isinstance(to_block, int) or to_block < 0):
            raise ValidationError("to_block must be a non-negative integer", field='to_block', value=to_block)

        head = await self.head_provider.get_latest_block_number()
        target = head - self.config.confirmations
        if to_block is not None:
            target = min(target, to_block)

        if state.synced_through is not None:
            from_block = state.synced_through + 1
        else:
            from_block = max(state.pool.launch_block, self.config.start_block)

        result = SyncResult(token=token, from_block=from_block, to_block=target,
                            synced_through=from_block - 1)
        if from_block > target:
            return result

        channel: TradeChannel[RangeBatch] = TradeChannel(self.config.channel_size)
        producer = asyncio.create_task(self._produce(token, from_block, target, state.epoch, channel))
        self.read_model.register_fetch(token, producer)

        self.log_info("Sync started",
                      token=token,
                      from_block=from_block,
                      to_block=target,
                      epoch=state.epoch)
        try:
            async for batch in channel:
                async with self.read_model.writer(token):
                    current = self.read_model.epoch(token)
                    if current != batch.epoch:
                        raise StaleResultError(token, batch.epoch, current)
                    self._apply(batch, result)
        except StaleResultError as e:
            result.stale_batches += 1
            self.log_warning("Dropping fetch results from an invalidated epoch",
                             token=token,
                             epoch=e.actual_epoch,
                             fetched_epoch=e.expected_epoch)
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
            self.read_model.unregister_fetch(token, producer)

        synced = self.read_model.snapshot(token).synced_through
        result.synced_through = synced if synced is not None else from_block - 1
        self.log_info("Sync finished",
                      token=token,
                      to_block=result.synced_through,
                      ingested=result.ingested,
                      quarantined=result.quarantined)
        return result

    async def sync_all(self, to_block: Optional[int] = None) -> Dict[str, SyncResult]:
        """Sync every tracked token, at most ``concurrency`` at a time.

        A token whose provider gives up reports the error in its result;
        the other tokens carry on. Any other error propagates.
        """
        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def run(token: str) -> SyncResult:
            async with semaphore:
                try:
                    return await self.sync_token(token, to_block)
                except ProviderError as e:
                    state = self.read_model.snapshot(token)
                    return SyncResult(
                        token=state.token,
                        from_block=e.from_block if e.from_block is not None else 0,
                        to_block=e.to_block if e.to_block is not None else 0,
                        synced_through=state.synced_through if state.synced_through is not None else -1,
                        error=str(e),
                    )

        tokens = self.read_model.tokens()
        results: List[SyncResult] = await asyncio.gather(*(run(token) for token in tokens))
        return {result.token: result for result in results}

    async def run_forever(self, poll_interval: float = 12.0, iterations: Optional[int] = None) -> None:
        """Reconcile then sync all tokens every ``poll_interval`` seconds."""
        completed = 0
        while iterations is None or completed < iterations:
            if self.reconciler is not None:
                await self.reconciler.reconcile_all()
            results = await self.sync_all()
            failed = [r.token for r in results.values() if r.error]
            if failed:
                self.log_warning("Sync round finished with provider errors", failed=len(failed))
            completed += 1
            if iterations is None or completed < iterations:
                await asyncio.sleep(poll_interval)

    async def _produce(self, token: str, from_block: int, to_block: int, epoch: int,
                       channel: TradeChannel) -> None:
        try:
            async for sub_from, sub_to, logs, checkpoint in self.event_source.iter_ranges(token, from_block, to_block):
                await channel.put(RangeBatch(
                    token=token,
                    from_block=sub_from,
                    to_block=sub_to,
                    logs=logs,
                    epoch=epoch,
                    checkpoint=checkpoint,
                ))
        except asyncio.CancelledError:
            channel.close(StaleResultError(token, epoch, self.read_model.epoch(token)))
            raise
        except Exception as e:
            # surfaced to the consumer
            channel.close(e)
        else:
            channel.close()

    def _apply(self, batch: RangeBatch, result: SyncResult) -> None:
        with self.read_model.batch(batch.token) as working:
            applied = apply_logs(working, batch.logs, self.decoder, batch.from_block, batch.to_block)
            if batch.checkpoint is not None:
                working.record_block_hash(batch.checkpoint.number, batch.checkpoint.hash)
            working.set_synced_through(batch.to_block)

        result.ingested += applied.ingested
        result.quarantined += applied.quarantined
        self.log_debug("Batch applied",
                       token=batch.token,
                       from_block=batch.from_block,
                       to_block=batch.to_block,
                       ingested=applied.ingested,
                       duplicates=applied.duplicates,
                       undecoded=applied.undecoded,
                       version=self.read_model.version(batch.token))
