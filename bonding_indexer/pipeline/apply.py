# bonding_indexer/pipeline/apply.py

from typing import Iterable

from ..core.errors import DataIntegrityError
from ..core.logging import IndexerLogger, log_with_context, WARNING
from ..decode.trade_decoder import TradeDecoder
from ..ledger.read_model import TokenBatch
from ..types import (
    EvmLog,
    TradeRecord,
    GraduationEvent,
    CreatorFeeClaim,
    IngestResult,
    create_decode_error,
    create_ingest_error,
)


logger = IndexerLogger.get_logger('pipeline.apply')


def apply_logs(batch: TokenBatch, logs: Iterable[EvmLog], decoder: TradeDecoder,
               from_block: int = 0, to_block: int = 0) -> IngestResult:
    """Decode logs in chain order and write them into an open batch.

    Undecodable logs are recorded as processing errors and quarantined
    trades stay in the ledger's quarantine; neither stops the batch.
    """
    result = IngestResult(token=batch.token, from_block=from_block, to_block=to_block)

    for log in logs:
        result.fetched += 1
        try:
            event = decoder.decode(log)
        except DataIntegrityError as e:
            result.undecoded += 1
            batch.record_error(create_decode_error(e.reason, str(e), log))
            continue

        if event is None or event.token != batch.token:
            continue

        if isinstance(event, TradeRecord):
            try:
                if batch.ingest(event):
                    result.ingested += 1
                else:
                    result.duplicates += 1
            except DataIntegrityError:
                result.quarantined += 1
        elif isinstance(event, GraduationEvent):
            try:
                batch.record_graduation(event)
            except DataIntegrityError as e:
                log_with_context(logger, WARNING, "Graduation event rejected",
                                 token=batch.token,
                                 tx_hash=event.tx_hash,
                                 block_number=event.block_number,
                                 error=str(e))
                batch.record_error(create_ingest_error(e.reason, str(e), event))
        elif isinstance(event, CreatorFeeClaim):
            batch.record_claim(event)

    return result
