# bonding_indexer/ledger/ledger.py

from bisect import bisect_left, bisect_right
from typing import Dict, List, Optional, Set, Tuple

from ..core.errors import DataIntegrityError
from ..core.logging import LoggingMixin
from ..types import (
    EvmAddress,
    EvmHash,
    TradeRecord,
    TradeSide,
    TradeSource,
    GraduationEvent,
    CreatorFeeClaim,
    QuarantinedTrade,
    ProcessingError,
    create_ingest_error,
)
from ..utils.fixed_point import SCALE, BPS_DENOMINATOR, mul, bps_of, abs_diff


def validate_trade(record: TradeRecord) -> None:
    """Check the arithmetic invariants of a decoded trade.

    ``execution_price * token_amount`` must land within the trade's fee plus
    one unit of rounding per whole token of ``base_amount``. A bonding curve
    trade that reports its post-trade spot price must also sit on the right
    side of it: a buy pushes the price up, so it cannot average above the
    price it left behind, and a sell cannot average below it. The fee rate
    is allowed as slack either way.
    """
    for name in ('base_amount', 'token_amount', 'execution_price', 'market_price',
                 'fee_rate_bps', 'block_number', 'log_index', 'timestamp'):
        value = getattr(record, name)
        if not isinstance(value, int) or value < 0:
            raise DataIntegrityError(f"{name} must be a non-negative integer, got {value!r}",
                                     reason="negative_amount", record=record)

    if record.base_amount == 0 or record.token_amount == 0:
        raise DataIntegrityError("Trade moves no value",
                                 reason="zero_amount", record=record)

    if record.fee_rate_bps > BPS_DENOMINATOR:
        raise DataIntegrityError(f"Fee rate {record.fee_rate_bps} bps exceeds 100%",
                                 reason="fee_rate_out_of_range", record=record)

    implied_base = mul(record.execution_price, record.token_amount)
    tolerance = bps_of(record.base_amount, record.fee_rate_bps) + record.token_amount // SCALE + 1
    if abs_diff(implied_base, record.base_amount) > tolerance:
        raise DataIntegrityError(
            f"Execution price {record.execution_price} x {record.token_amount} tokens = {implied_base}, "
            f"base amount {record.base_amount}, tolerance {tolerance}",
            reason="price_mismatch",
            record=record,
        )

    if record.market_price and record.source == TradeSource.BONDING_CURVE:
        slack = bps_of(record.market_price, record.fee_rate_bps) + 1
        if record.side == TradeSide.BUY:
            off_curve = record.execution_price > record.market_price + slack
        else:
            off_curve = record.execution_price + slack < record.market_price
        if off_curve:
            raise DataIntegrityError(
                f"{record.side.value} averaged {record.execution_price} against post-trade "
                f"price {record.market_price}, slack {slack}",
                reason="price_mismatch",
                record=record,
            )


class Ledger(LoggingMixin):
    """Ordered, deduplicated, append-only trade store keyed per token.

    Records are unique by (block_number, tx_hash, log_index) and always read
    back in (block_number, log_index) order, whatever order they arrived in.
    Block hashes of every ingested block (plus sync checkpoints) are kept so
    the reorg reconciler can compare them with the canonical chain.
    """

    def __init__(self):
        self._records: Dict[str, List[TradeRecord]] = {}
        self._order_keys: Dict[str, List[Tuple]] = {}
        self._keys: Dict[str, Set[Tuple]] = {}
        self._block_hashes: Dict[str, Dict[int, EvmHash]] = {}
        self._graduations: Dict[str, GraduationEvent] = {}
        self._claims: Dict[str, List[CreatorFeeClaim]] = {}
        self._quarantine: Dict[str, List[QuarantinedTrade]] = {}
        self._errors: Dict[str, List[ProcessingError]] = {}

    # === Trades ===

    def contains(self, record: TradeRecord) -> bool:
        return record.key in self._keys.get(record.token, ())

    def ingest(self, record: TradeRecord) -> bool:
        """Insert a record if its key is new.

        Returns False for a duplicate. A record breaking an invariant is
        quarantined and DataIntegrityError is raised.
        """
        if self.contains(record):
            return False

        try:
            validate_trade(record)
            if record.block_hash:
                self._check_block_hash(record.token, record.block_number, record.block_hash, record)
        except DataIntegrityError as e:
            self.quarantine(record, e)
            raise

        token = record.token
        records = self._records.setdefault(token, [])
        order_keys = self._order_keys.setdefault(token, [])

        position = bisect_right(order_keys, record.order_key)
        records.insert(position, record)
        order_keys.insert(position, record.order_key)
        self._keys.setdefault(token, set()).add(record.key)

        if record.block_hash:
            self._block_hashes.setdefault(token, {})[record.block_number] = record.block_hash

        return True

    def read(self, token: str, from_block: int = 0, to_block: Optional[int] = None) -> List[TradeRecord]:
        start, end = self._slice(token, from_block, to_block)
        return self._records.get(token, [])[start:end]

    def count(self, token: str, from_block: int = 0, to_block: Optional[int] = None) -> int:
        start, end = self._slice(token, from_block, to_block)
        return end - start

    def tail(self, token: str, limit: int) -> List[TradeRecord]:
        records = self._records.get(token, [])
        return records[-limit:] if limit > 0 else []

    def last_at_or_before(self, token: str, timestamp: int) -> Optional[TradeRecord]:
        """Latest record whose timestamp is not after ``timestamp``.

        Block timestamps never decrease along the chain, so ledger order is
        also timestamp order.
        """
        records = self._records.get(token, [])
        lo, hi = 0, len(records)
        while lo < hi:
            mid = (lo + hi) // 2
            if records[mid].timestamp <= timestamp:
                lo = mid + 1
            else:
                hi = mid
        return records[lo - 1] if lo else None

    def latest_record(self, token: str) -> Optional[TradeRecord]:
        records = self._records.get(token)
        return records[-1] if records else None

    def invalidate_from(self, token: str, block_number: int) -> List[TradeRecord]:
        """Remove and return every record at or above ``block_number``.

        Block hashes, pool lifecycle events, quarantined trades and processing
        errors in that range are dropped too.
        """
        records = self._records.get(token, [])
        order_keys = self._order_keys.get(token, [])
        cut = bisect_left(order_keys, (block_number,))

        removed = records[cut:]
        del records[cut:]
        del order_keys[cut:]

        keys = self._keys.get(token)
        if keys:
            for record in removed:
                keys.discard(record.key)

        hashes = self._block_hashes.get(token)
        if hashes:
            for block in [b for b in hashes if b >= block_number]:
                del hashes[block]

        graduation = self._graduations.get(token)
        if graduation and graduation.block_number >= block_number:
            del self._graduations[token]

        if token in self._claims:
            self._claims[token] = [c for c in self._claims[token] if c.block_number < block_number]

        if token in self._quarantine:
            self._quarantine[token] = [q for q in self._quarantine[token]
                                       if q.record.block_number < block_number]
        if token in self._errors:
            self._errors[token] = [e for e in self._errors[token]
                                   if (e.context or {}).get("block_number", -1) < block_number]

        self.log_info("Ledger invalidated",
                      token=token,
                      block_number=block_number,
                      removed=len(removed))
        return removed

    # === Block hashes ===

    def record_block_hash(self, token: str, block_number: int, block_hash: EvmHash) -> None:
        self._check_block_hash(token, block_number, block_hash)
        self._block_hashes.setdefault(token, {})[block_number] = block_hash

    def block_hash_at(self, token: str, block_number: int) -> Optional[EvmHash]:
        return self._block_hashes.get(token, {}).get(block_number)

    def known_blocks(self, token: str) -> List[int]:
        """Tracked block numbers, highest first."""
        return sorted(self._block_hashes.get(token, {}), reverse=True)

    def latest_block(self, token: str) -> Optional[int]:
        blocks = self._block_hashes.get(token)
        candidates = [max(blocks)] if blocks else []
        latest = self.latest_record(token)
        if latest:
            candidates.append(latest.block_number)
        return max(candidates) if candidates else None

    def _check_block_hash(self, token: str, block_number: int, block_hash: EvmHash, record=None) -> None:
        known = self._block_hashes.get(token, {}).get(block_number)
        if known and known.lower() != block_hash.lower():
            raise DataIntegrityError(
                f"Block {block_number} already tracked with hash {known}, got {block_hash}",
                reason="block_hash_conflict",
                record=record,
            )

    # === Pool lifecycle ===

    def record_graduation(self, event: GraduationEvent) -> bool:
        existing = self._graduations.get(event.token)
        if existing:
            if (existing.block_number, existing.tx_hash, existing.log_index) == \
                    (event.block_number, event.tx_hash, event.log_index):
                return False
            raise DataIntegrityError(
                f"Pool {event.token} already graduated at block {existing.block_number}",
                reason="duplicate_graduation",
            )
        if event.block_hash:
            self._check_block_hash(event.token, event.block_number, event.block_hash)
            self._block_hashes.setdefault(event.token, {})[event.block_number] = event.block_hash
        self._graduations[event.token] = event
        return True

    def graduation(self, token: str) -> Optional[GraduationEvent]:
        return self._graduations.get(token)

    def record_claim(self, claim: CreatorFeeClaim) -> bool:
        claims = self._claims.setdefault(claim.token, [])
        key = (claim.block_number, claim.log_index, claim.tx_hash)
        if any((c.block_number, c.log_index, c.tx_hash) == key for c in claims):
            return False
        if claim.block_hash:
            self._check_block_hash(claim.token, claim.block_number, claim.block_hash)
            self._block_hashes.setdefault(claim.token, {})[claim.block_number] = claim.block_hash
        claims.append(claim)
        claims.sort(key=lambda c: (c.block_number, c.log_index, c.tx_hash))
        return True

    def claims(self, token: str) -> List[CreatorFeeClaim]:
        return list(self._claims.get(token, []))

    # === Quarantine ===

    def quarantine(self, record: TradeRecord, error: DataIntegrityError) -> QuarantinedTrade:
        entry = QuarantinedTrade(
            error=create_ingest_error(error.reason, str(error), record),
            record=record,
        )
        self._quarantine.setdefault(record.token, []).append(entry)
        self.log_warning("Trade quarantined",
                         token=record.token,
                         tx_hash=record.tx_hash,
                         block_number=record.block_number,
                         log_index=record.log_index,
                         error=str(error))
        return entry

    def add_quarantined(self, entry: QuarantinedTrade) -> None:
        self._quarantine.setdefault(entry.record.token, []).append(entry)

    def quarantined(self, token: str) -> List[QuarantinedTrade]:
        return list(self._quarantine.get(token, []))

    def record_error(self, token: str, error: ProcessingError) -> None:
        self._errors.setdefault(token, []).append(error)

    def errors(self, token: str) -> List[ProcessingError]:
        return list(self._errors.get(token, []))

    # === Snapshots ===

    def clone(self) -> 'Ledger':
        """Independent copy. TradeRecords are immutable and shared."""
        other = Ledger()
        other._records = {t: list(v) for t, v in self._records.items()}
        other._order_keys = {t: list(v) for t, v in self._order_keys.items()}
        other._keys = {t: set(v) for t, v in self._keys.items()}
        other._block_hashes = {t: dict(v) for t, v in self._block_hashes.items()}
        other._graduations = dict(self._graduations)
        other._claims = {t: list(v) for t, v in self._claims.items()}
        other._quarantine = {t: list(v) for t, v in self._quarantine.items()}
        other._errors = {t: list(v) for t, v in self._errors.items()}
        return other

    def tokens(self) -> List[EvmAddress]:
        return sorted(self._records)

    def _slice(self, token: str, from_block: int, to_block: Optional[int]) -> Tuple[int, int]:
        order_keys = self._order_keys.get(token, [])
        start = bisect_left(order_keys, (from_block,))
        end = len(order_keys) if to_block is None else bisect_left(order_keys, (to_block + 1,))
        return start, max(start, end)
