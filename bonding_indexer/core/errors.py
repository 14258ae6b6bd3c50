# bonding_indexer/core/errors.py
"""
Exception taxonomy shared by every component.

ValidationError is raised before any I/O. ProviderError and its transient
subclasses come from the chain providers and are absorbed by the EventSource
retry loop until attempts run out. ReorgError is fatal when the divergence is
deeper than the tracked window. DataIntegrityError marks a quarantined
record. InsufficientDataError is what a NoData result turns into when the
caller asks for an exception instead of a sentinel.
"""

from typing import Any, Optional


class IndexerError(Exception):
    """Base class for all indexer errors"""

    def context(self) -> dict:
        return {}


class ValidationError(IndexerError, ValueError):
    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value

    def context(self) -> dict:
        return {'field': self.field, 'value': self.value}


class ProviderError(IndexerError):
    """Log or head provider failure.

    ``last_good_block`` is the highest block whose logs were fully fetched
    before the failure, so a caller can resume at ``last_good_block + 1``.
    """

    retryable = False

    def __init__(self,
                 message: str,
                 token: Optional[str] = None,
                 from_block: Optional[int] = None,
                 to_block: Optional[int] = None,
                 last_good_block: Optional[int] = None,
                 attempts: int = 0):
        super().__init__(message)
        self.token = token
        self.from_block = from_block
        self.to_block = to_block
        self.last_good_block = last_good_block
        self.attempts = attempts

    def context(self) -> dict:
        return {
            'token': self.token,
            'from_block': self.from_block,
            'to_block': self.to_block,
            'last_good_block': self.last_good_block,
            'attempts': self.attempts,
        }


class TransientProviderError(ProviderError):
    retryable = True


class ProviderRateLimitError(TransientProviderError):
    pass


class ProviderTimeoutError(TransientProviderError):
    pass


class ProviderUnavailableError(TransientProviderError):
    pass


class ProviderRangeError(ProviderError):
    """The provider refused the block range as too large."""


class ReorgError(IndexerError):
    def __init__(self,
                 message: str,
                 token: Optional[str] = None,
                 diverged_at: Optional[int] = None,
                 depth: Optional[int] = None,
                 fatal: bool = True):
        super().__init__(message)
        self.token = token
        self.diverged_at = diverged_at
        self.depth = depth
        self.fatal = fatal

    def context(self) -> dict:
        return {
            'token': self.token,
            'diverged_at': self.diverged_at,
            'depth': self.depth,
            'fatal': self.fatal,
        }


class DataIntegrityError(IndexerError):
    def __init__(self, message: str, reason: str = "invariant_violation", record: Any = None):
        super().__init__(message)
        self.reason = reason
        self.record = record

    def context(self) -> dict:
        ctx = {'reason': self.reason}
        if self.record is not None:
            for attr in ('token', 'tx_hash', 'block_number', 'log_index'):
                if hasattr(self.record, attr):
                    ctx[attr] = getattr(self.record, attr)
        return ctx


class InsufficientDataError(IndexerError):
    def __init__(self,
                 message: str,
                 token: Optional[str] = None,
                 from_timestamp: Optional[int] = None,
                 to_timestamp: Optional[int] = None):
        super().__init__(message)
        self.token = token
        self.from_timestamp = from_timestamp
        self.to_timestamp = to_timestamp

    def context(self) -> dict:
        return {
            'token': self.token,
            'from_timestamp': self.from_timestamp,
            'to_timestamp': self.to_timestamp,
        }


class StaleResultError(IndexerError):
    """A fetch result arrived after its range was invalidated."""

    def __init__(self, token: str, expected_epoch: int, actual_epoch: int):
        super().__init__(
            f"Stale result for {token}: fetched at epoch {expected_epoch}, now at {actual_epoch}"
        )
        self.token = token
        self.expected_epoch = expected_epoch
        self.actual_epoch = actual_epoch
