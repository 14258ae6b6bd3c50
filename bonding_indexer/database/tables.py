# bonding_indexer/database/tables.py

from sqlalchemy import Column, String, Integer, BigInteger, Text, Index, Enum

from .base import Base, TimestampMixin
from .types import EvmAddressType, EvmHashType, FixedPointType
from ..types import TradeSide, TradeSource


class TradeRecordRow(Base, TimestampMixin):
    __tablename__ = 'trade_records'

    token = Column(EvmAddressType(), primary_key=True)
    block_number = Column(BigInteger, primary_key=True)
    tx_hash = Column(EvmHashType(), primary_key=True)
    log_index = Column(Integer, primary_key=True)

    trader = Column(EvmAddressType(), nullable=False, index=True)
    side = Column(Enum(TradeSide, native_enum=False, values_callable=lambda e: [m.value for m in e]),
                  nullable=False)
    source = Column(Enum(TradeSource, native_enum=False, values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=TradeSource.BONDING_CURVE)
    base_amount = Column(FixedPointType(), nullable=False)
    token_amount = Column(FixedPointType(), nullable=False)
    execution_price = Column(FixedPointType(), nullable=False)
    market_price = Column(FixedPointType(), nullable=False, default=0)
    fee_rate_bps = Column(Integer, nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    block_hash = Column(EvmHashType(), nullable=True)

    __table_args__ = (
        Index('idx_trade_records_token_order', 'token', 'block_number', 'log_index'),
    )

    def __repr__(self) -> str:
        return f"<TradeRecordRow(token={self.token}, block={self.block_number}, log_index={self.log_index})>"


class QuarantinedTradeRow(Base, TimestampMixin):
    __tablename__ = 'quarantined_trades'

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(EvmAddressType(), nullable=False, index=True)
    error_id = Column(String(12), nullable=False, index=True)
    error_type = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    block_number = Column(BigInteger, nullable=False)
    tx_hash = Column(EvmHashType(), nullable=False)
    log_index = Column(Integer, nullable=False)
    record = Column(Text, nullable=False)  # TradeRecord as JSON

    def __repr__(self) -> str:
        return f"<QuarantinedTradeRow(token={self.token}, error_type={self.error_type}, tx={self.tx_hash})>"


class BlockHashRow(Base):
    __tablename__ = 'block_hashes'

    token = Column(EvmAddressType(), primary_key=True)
    block_number = Column(BigInteger, primary_key=True)
    block_hash = Column(EvmHashType(), nullable=False)


class PoolEventRow(Base, TimestampMixin):
    """Pool lifecycle events (graduation, creator fee claims) as JSON payloads."""
    __tablename__ = 'pool_events'

    token = Column(EvmAddressType(), primary_key=True)
    block_number = Column(BigInteger, primary_key=True)
    log_index = Column(Integer, primary_key=True)
    tx_hash = Column(EvmHashType(), primary_key=True)
    event_type = Column(String(20), nullable=False, index=True)  # "graduation", "creator_claim"
    payload = Column(Text, nullable=False)


class SyncCursorRow(Base, TimestampMixin):
    __tablename__ = 'sync_cursors'

    token = Column(EvmAddressType(), primary_key=True)
    synced_through = Column(BigInteger, nullable=False)
