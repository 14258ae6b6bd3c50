# bonding_indexer/database/repositories/trade_repository.py

from typing import Iterable, List

import msgspec
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..tables import TradeRecordRow, QuarantinedTradeRow
from ...core.logging import IndexerLogger, log_with_context, DEBUG, ERROR
from ...types import TradeRecord, QuarantinedTrade, ProcessingError


class TradeRepository:
    """Ledger records and quarantined trades."""

    def __init__(self, db_manager):
        self.db_manager = db_manager
        self.logger = IndexerLogger.get_logger('database.repository.trade_records')

    def insert_many(self, session: Session, records: Iterable[TradeRecord]) -> int:
        rows = [self._to_row(record) for record in records]
        if not rows:
            return 0
        try:
            session.add_all(rows)
            session.flush()
            log_with_context(self.logger, DEBUG, "Trade records inserted", count=len(rows))
            return len(rows)
        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Error inserting trade records",
                             count=len(rows),
                             error=str(e))
            raise

    def delete_from(self, session: Session, token: str, block_number: int) -> int:
        try:
            return session.query(TradeRecordRow).filter(
                TradeRecordRow.token == token,
                TradeRecordRow.block_number >= block_number,
            ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Error deleting trade records",
                             token=token,
                             block_number=block_number,
                             error=str(e))
            raise

    def get_by_token(self, session: Session, token: str) -> List[TradeRecord]:
        try:
            rows = session.query(TradeRecordRow).filter(
                TradeRecordRow.token == token
            ).order_by(TradeRecordRow.block_number, TradeRecordRow.log_index, TradeRecordRow.tx_hash).all()
            return [self._from_row(row) for row in rows]
        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Error loading trade records",
                             token=token,
                             error=str(e))
            raise

    # === Quarantine ===

    def add_quarantined(self, session: Session, entries: Iterable[QuarantinedTrade]) -> int:
        rows = [
            QuarantinedTradeRow(
                token=entry.record.token,
                error_id=entry.error.error_id,
                error_type=entry.error.error_type,
                message=entry.error.message,
                block_number=entry.record.block_number,
                tx_hash=entry.record.tx_hash,
                log_index=entry.record.log_index,
                record=msgspec.json.encode(entry.record).decode(),
            )
            for entry in entries
        ]
        if rows:
            session.add_all(rows)
            session.flush()
        return len(rows)

    def delete_quarantined_from(self, session: Session, token: str, block_number: int) -> int:
        try:
            return session.query(QuarantinedTradeRow).filter(
                QuarantinedTradeRow.token == token,
                QuarantinedTradeRow.block_number >= block_number,
            ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Error deleting quarantined trades",
                             token=token,
                             block_number=block_number,
                             error=str(e))
            raise

    def get_quarantined(self, session: Session, token: str) -> List[QuarantinedTrade]:
        try:
            rows = session.query(QuarantinedTradeRow).filter(
                QuarantinedTradeRow.token == token
            ).order_by(QuarantinedTradeRow.id).all()
        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Error loading quarantined trades",
                             token=token,
                             error=str(e))
            raise

        entries = []
        for row in rows:
            record = msgspec.json.decode(row.record, type=TradeRecord)
            entries.append(QuarantinedTrade(
                error=ProcessingError(
                    stage="ingest",
                    error_type=row.error_type,
                    message=row.message,
                    error_id=row.error_id,
                    context={
                        "token": record.token,
                        "tx_hash": record.tx_hash,
                        "block_number": record.block_number,
                        "log_index": record.log_index,
                    },
                ),
                record=record,
            ))
        return entries

    @staticmethod
    def _to_row(record: TradeRecord) -> TradeRecordRow:
        return TradeRecordRow(
            token=record.token,
            block_number=record.block_number,
            tx_hash=record.tx_hash,
            log_index=record.log_index,
            trader=record.trader,
            side=record.side,
            source=record.source,
            base_amount=record.base_amount,
            token_amount=record.token_amount,
            execution_price=record.execution_price,
            market_price=record.market_price,
            fee_rate_bps=record.fee_rate_bps,
            timestamp=record.timestamp,
            block_hash=record.block_hash,
        )

    @staticmethod
    def _from_row(row: TradeRecordRow) -> TradeRecord:
        return TradeRecord(
            token=row.token,
            trader=row.trader,
            side=row.side,
            base_amount=row.base_amount,
            token_amount=row.token_amount,
            execution_price=row.execution_price,
            fee_rate_bps=row.fee_rate_bps,
            block_number=row.block_number,
            log_index=row.log_index,
            tx_hash=row.tx_hash,
            timestamp=row.timestamp,
            block_hash=row.block_hash,
            market_price=row.market_price,
            source=row.source,
        )
