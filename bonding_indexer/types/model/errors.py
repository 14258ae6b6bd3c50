# bonding_indexer/types/model/errors.py

from typing import Optional, Dict, Any, Union
import hashlib

import msgspec
from msgspec import Struct

from ..new import ErrorId
from ..evm import EvmLog
from .trade import TradeRecord, GraduationEvent, CreatorFeeClaim


class ProcessingError(Struct):
    stage: str  # "decode" or "ingest"
    error_type: str  # "decode_failed", "zero_amount", "trade_after_graduation", ...
    message: str
    error_id: Optional[ErrorId] = None
    context: Optional[Dict[str, Any]] = None  # token, tx_hash, block_number, log_index

    def __post_init__(self) -> None:
        if not self.error_id:
            self.error_id = self.generate_error_id()

    def generate_error_id(self) -> ErrorId:
        """Content hash, so the same failure seen twice gets the same id."""
        content_bytes = msgspec.msgpack.encode({
            "stage": self.stage,
            "error_type": self.error_type,
            "context": self.context or {},
        })
        return ErrorId(hashlib.sha256(content_bytes).hexdigest()[:12])


class QuarantinedTrade(Struct):
    """A record that failed an ingestion invariant, kept for inspection."""
    error: ProcessingError
    record: TradeRecord


def create_ingest_error(error_type: str, message: str,
                        event: Union[TradeRecord, GraduationEvent, CreatorFeeClaim]) -> ProcessingError:
    return ProcessingError(
        stage="ingest",
        error_type=error_type,
        message=message,
        context={
            "token": event.token,
            "tx_hash": event.tx_hash,
            "block_number": event.block_number,
            "log_index": event.log_index,
        },
    )


def create_decode_error(error_type: str, message: str, log: EvmLog) -> ProcessingError:
    return ProcessingError(
        stage="decode",
        error_type=error_type,
        message=message,
        context={
            "contract_address": log.address,
            "tx_hash": log.transactionHash,
            "block_number": log.block_number,
            "log_index": log.log_index,
        },
    )
