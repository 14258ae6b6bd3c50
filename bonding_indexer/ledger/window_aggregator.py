# bonding_indexer/ledger/window_aggregator.py

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.errors import DataIntegrityError, ValidationError
from ..core.logging import LoggingMixin
from ..types import TradeRecord, TradeSource, WindowBucket


SeriesKey = Tuple[str, int, TradeSource]  # (token, interval_seconds, source)


def interval_start(timestamp: int, interval_seconds: int) -> int:
    return (timestamp // interval_seconds) * interval_seconds


class WindowAggregator(LoggingMixin):
    """Rolling interval buckets per (token, interval, trade source).

    Bonding curve and post-graduation trades live in separate series and are
    never summed together. A bucket is sealed once every block it covers is
    beyond finality depth and its interval has closed; sealed buckets only
    change through ``invalidate_from``.

    Cloning is copy-on-write: a clone shares bucket objects with its parent
    until it mutates one, at which point it takes a private copy.
    """

    def __init__(self, intervals: Sequence[int] = (3600, 86400), finality_depth: int = 15):
        if not intervals or any(i <= 0 for i in intervals):
            raise ValidationError("Intervals must be positive", field='intervals', value=list(intervals))
        if finality_depth < 0:
            raise ValidationError("Finality depth must not be negative",
                                  field='finality_depth', value=finality_depth)
        self.intervals = tuple(sorted(set(intervals)))
        self.finality_depth = finality_depth
        self._series: Dict[SeriesKey, Dict[int, WindowBucket]] = {}
        self._owned: set = set()

    # === Writes ===

    def check_writable(self, record: TradeRecord) -> None:
        for interval in self.intervals:
            bucket = self._series.get((record.token, interval, record.source), {}).get(
                interval_start(record.timestamp, interval))
            if bucket is not None and bucket.sealed:
                raise DataIntegrityError(
                    f"Trade at block {record.block_number} falls into sealed "
                    f"{interval}s bucket starting {bucket.interval_start}",
                    reason="sealed_bucket",
                    record=record,
                )

    def update(self, record: TradeRecord) -> None:
        self.check_writable(record)
        for interval in self.intervals:
            self._mutable_bucket(record.token, interval, record.source,
                                 interval_start(record.timestamp, interval),
                                 create=True).add(record)

    def seal(self, token: str, up_to_block: int, finalized_timestamp: int) -> int:
        """Seal buckets whose blocks are all at or below ``up_to_block - finality_depth``.

        ``finalized_timestamp`` is the timestamp of that finalized block; a
        bucket whose interval has not ended by then may still receive trades
        and stays open.
        """
        threshold = up_to_block - self.finality_depth
        sealed = 0
        for (series_token, interval, source), buckets in self._series.items():
            if series_token != token:
                continue
            for start in [s for s, b in buckets.items() if self._is_sealable(b, threshold, finalized_timestamp)]:
                self._mutable_bucket(token, interval, source, start).sealed = True
                sealed += 1

        if sealed:
            self.log_debug("Buckets sealed",
                           token=token,
                           to_block=threshold,
                           sealed=sealed)
        return sealed

    def sealable_count(self, token: str, up_to_block: int, finalized_timestamp: int) -> int:
        threshold = up_to_block - self.finality_depth
        return sum(
            1
            for (series_token, _, _), buckets in self._series.items() if series_token == token
            for bucket in buckets.values() if self._is_sealable(bucket, threshold, finalized_timestamp)
        )

    def invalidate_from(self, token: str, block_number: int, surviving: Iterable[TradeRecord]) -> int:
        """Drop every bucket holding a block at or above ``block_number``.

        Dropped intervals are rebuilt, unsealed, from the surviving ledger
        records. Buckets lying entirely below the block are left untouched,
        sealed or not. Returns the number of buckets dropped.
        """
        dropped: Dict[SeriesKey, set] = {}
        for key, buckets in self._series.items():
            if key[0] != token:
                continue
            stale = [s for s, b in buckets.items() if b.max_block is not None and b.max_block >= block_number]
            if not stale:
                continue
            for start in stale:
                bucket = buckets.pop(start)
                if bucket.sealed:
                    self.log_warning("Unsealing bucket for reorg",
                                     token=token,
                                     block_number=block_number,
                                     interval=key[1],
                                     interval_start=start)
                self._owned.discard(id(bucket))
            dropped[key] = set(stale)

        if not dropped:
            return 0

        for record in surviving:
            if record.block_number >= block_number:
                continue
            for interval in self.intervals:
                key = (token, interval, record.source)
                start = interval_start(record.timestamp, interval)
                if start in dropped.get(key, ()):
                    self._mutable_bucket(token, interval, record.source, start, create=True).add(record)

        return sum(len(starts) for starts in dropped.values())

    # === Reads ===

    def bucket(self, token: str, interval: int, start: int,
               source: TradeSource = TradeSource.BONDING_CURVE) -> Optional[WindowBucket]:
        return self._series.get((token, interval, source), {}).get(start)

    def buckets(self, token: str, interval: int,
                source: TradeSource = TradeSource.BONDING_CURVE) -> List[WindowBucket]:
        series = self._series.get((token, interval, source), {})
        return [series[start] for start in sorted(series)]

    def sealed_buckets(self, token: str, interval: int,
                       source: TradeSource = TradeSource.BONDING_CURVE) -> List[WindowBucket]:
        return [b for b in self.buckets(token, interval, source) if b.sealed]

    def get_history(self, token: str, interval_seconds: int, periods: int, now: int,
                    source: TradeSource = TradeSource.BONDING_CURVE) -> List[WindowBucket]:
        """Exactly ``periods`` consecutive buckets, the last one containing ``now``.

        Intervals without trades come back as zero-valued buckets so the
        series stays aligned to wall-clock intervals.
        """
        if interval_seconds not in self.intervals:
            raise ValidationError(f"Interval {interval_seconds}s is not aggregated",
                                  field='interval_seconds', value=interval_seconds)
        if periods < 1:
            raise ValidationError("periods must be positive", field='periods', value=periods)

        series = self._series.get((token, interval_seconds, source), {})
        last_start = interval_start(now, interval_seconds)
        history = []
        for offset in range(periods - 1, -1, -1):
            start = last_start - offset * interval_seconds
            bucket = series.get(start)
            history.append(bucket if bucket is not None else WindowBucket(
                token=token,
                interval_start=start,
                interval_seconds=interval_seconds,
                source=source,
            ))
        return history

    # === Snapshots ===

    def clone(self) -> 'WindowAggregator':
        other = WindowAggregator(self.intervals, self.finality_depth)
        other._series = {key: dict(buckets) for key, buckets in self._series.items()}
        return other

    def _mutable_bucket(self, token: str, interval: int, source: TradeSource, start: int,
                        create: bool = False) -> WindowBucket:
        series = self._series.setdefault((token, interval, source), {})
        bucket = series.get(start)
        if bucket is None:
            if not create:
                raise KeyError(start)
            bucket = WindowBucket(token=token, interval_start=start,
                                  interval_seconds=interval, source=source)
        elif id(bucket) not in self._owned:
            bucket = bucket.copy()
        else:
            return bucket
        series[start] = bucket
        self._owned.add(id(bucket))
        return bucket

    @staticmethod
    def _is_sealable(bucket: WindowBucket, threshold: int, finalized_timestamp: int) -> bool:
        return (not bucket.sealed
                and bucket.max_block is not None
                and bucket.max_block <= threshold
                and bucket.interval_end <= finalized_timestamp)
