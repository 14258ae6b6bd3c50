# bonding_indexer/decode/trade_decoder.py

from typing import Optional, Union

from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from .abis import (
    EVENTS_BY_TOPIC,
    TOKENS_BOUGHT,
    TOKENS_SOLD,
    POST_GRADUATION_SELL,
    POST_GRADUATION_BUY,
    POOL_GRADUATED,
    CREATOR_FEES_CLAIMED,
    EventSpec,
)
from ..core.errors import DataIntegrityError
from ..core.logging import LoggingMixin
from ..types import (
    EvmLog,
    EvmHash,
    TradeRecord,
    TradeSide,
    TradeSource,
    GraduationEvent,
    CreatorFeeClaim,
)
from ..utils.addresses import topic_to_address
from ..utils.fixed_point import div


DecodedEvent = Union[TradeRecord, GraduationEvent, CreatorFeeClaim]


class TradeDecoder(LoggingMixin):
    """Maps raw bonding curve logs to TradeRecords and pool lifecycle events."""

    def __init__(self):
        self.w3 = Web3()

    def decode(self, log: EvmLog) -> Optional[DecodedEvent]:
        """Decode one log.

        Returns None for removed logs and for events this indexer does not
        track. Raises DataIntegrityError for a recognised event whose payload
        cannot be decoded.
        """
        if log.removed:
            self.log_debug("Skipping removed log",
                           tx_hash=log.transactionHash,
                           block_number=log.block_number,
                           log_index=log.log_index)
            return None

        spec = EVENTS_BY_TOPIC.get((log.signature or "").lower())
        if spec is None:
            return None

        args = self._decode_args(spec, log)

        if spec in (TOKENS_BOUGHT, TOKENS_SOLD, POST_GRADUATION_SELL, POST_GRADUATION_BUY):
            return self._build_trade(spec, args, log)
        if spec is POOL_GRADUATED:
            return GraduationEvent(
                token=args["token"],
                block_number=log.block_number,
                log_index=log.log_index,
                tx_hash=EvmHash(log.transactionHash.lower()),
                timestamp=self._require_timestamp(log),
                total_raised=args["total_raised"],
                final_market_cap=args["final_market_cap"],
                base_for_venue=args["base_for_venue"],
                tokens_for_venue=args["tokens_for_venue"],
                block_hash=EvmHash(log.blockHash.lower()),
            )
        if spec is CREATOR_FEES_CLAIMED:
            return CreatorFeeClaim(
                token=args["token"],
                creator=args["creator"],
                amount=args["amount"],
                block_number=log.block_number,
                log_index=log.log_index,
                tx_hash=EvmHash(log.transactionHash.lower()),
                timestamp=self._require_timestamp(log),
                block_hash=EvmHash(log.blockHash.lower()),
            )
        return None

    def _decode_args(self, spec: EventSpec, log: EvmLog) -> dict:
        if len(log.topics) != len(spec.indexed) + 1:
            raise DataIntegrityError(
                f"{spec.name} log has {len(log.topics)} topics, expected {len(spec.indexed) + 1}",
                reason="decode_failed",
                record=log,
            )
        try:
            values = self.w3.codec.decode(spec.data_types, HexBytes(log.data))
        except (DecodingError, ValueError) as e:
            self.log_error("Failed to decode event data",
                           tx_hash=log.transactionHash,
                           block_number=log.block_number,
                           log_index=log.log_index,
                           event_name=spec.name,
                           error=str(e))
            raise DataIntegrityError(f"Cannot decode {spec.name} data: {e}",
                                     reason="decode_failed", record=log) from e

        args = {name: topic_to_address(topic) for name, topic in zip(spec.indexed, log.topics[1:])}
        args.update(zip(spec.data, (int(v) for v in values)))
        return args

    def _build_trade(self, spec: EventSpec, args: dict, log: EvmLog) -> TradeRecord:
        if spec in (TOKENS_BOUGHT, POST_GRADUATION_BUY):
            trader, side = args["buyer"], TradeSide.BUY
        else:
            trader, side = args["seller"], TradeSide.SELL

        if spec in (POST_GRADUATION_SELL, POST_GRADUATION_BUY):
            source = TradeSource.POST_GRADUATION
        else:
            source = TradeSource.BONDING_CURVE
        token_amount = args["token_amount"]
        base_amount = args["base_amount"]

        return TradeRecord(
            token=args["token"],
            trader=trader,
            side=side,
            base_amount=base_amount,
            token_amount=token_amount,
            execution_price=div(base_amount, token_amount) if token_amount else 0,
            # manager buys carry no fee rate
            fee_rate_bps=args.get("fee_rate", 0),
            block_number=log.block_number,
            log_index=log.log_index,
            tx_hash=EvmHash(log.transactionHash.lower()),
            timestamp=self._require_timestamp(log),
            block_hash=EvmHash(log.blockHash.lower()),
            market_price=args["current_price"],
            source=source,
        )

    def _require_timestamp(self, log: EvmLog) -> int:
        if log.timestamp is None:
            raise DataIntegrityError("Log has no block timestamp attached",
                                     reason="missing_timestamp", record=log)
        return log.timestamp
