# bonding_indexer/database/repositories/chain_repository.py

from typing import Dict, Iterable, List, Optional, Tuple, Union

import msgspec
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..tables import BlockHashRow, PoolEventRow, SyncCursorRow
from ...core.logging import IndexerLogger, log_with_context, ERROR
from ...types import EvmHash, GraduationEvent, CreatorFeeClaim


GRADUATION = "graduation"
CREATOR_CLAIM = "creator_claim"


class ChainStateRepository:
    """Tracked block hashes, pool lifecycle events and sync cursors."""

    def __init__(self, db_manager):
        self.db_manager = db_manager
        self.logger = IndexerLogger.get_logger('database.repository.chain_state')

    # === Block hashes ===

    def upsert_block_hashes(self, session: Session, token: str, hashes: Dict[int, EvmHash]) -> int:
        try:
            for block_number, block_hash in hashes.items():
                session.merge(BlockHashRow(token=token, block_number=block_number, block_hash=block_hash))
            session.flush()
            return len(hashes)
        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Error storing block hashes",
                             token=token,
                             count=len(hashes),
                             error=str(e))
            raise

    def get_block_hashes(self, session: Session, token: str) -> Dict[int, EvmHash]:
        rows = session.query(BlockHashRow).filter(BlockHashRow.token == token).all()
        return {row.block_number: row.block_hash for row in rows}

    # === Pool events ===

    def add_events(self, session: Session, token: str,
                   events: Iterable[Union[GraduationEvent, CreatorFeeClaim]]) -> int:
        count = 0
        for event in events:
            event_type = GRADUATION if isinstance(event, GraduationEvent) else CREATOR_CLAIM
            session.merge(PoolEventRow(
                token=token,
                block_number=event.block_number,
                log_index=event.log_index,
                tx_hash=event.tx_hash,
                event_type=event_type,
                payload=msgspec.json.encode(event).decode(),
            ))
            count += 1
        session.flush()
        return count

    def get_events(self, session: Session, token: str) -> Tuple[Optional[GraduationEvent], List[CreatorFeeClaim]]:
        rows = session.query(PoolEventRow).filter(
            PoolEventRow.token == token
        ).order_by(PoolEventRow.block_number, PoolEventRow.log_index).all()

        graduation = None
        claims = []
        for row in rows:
            if row.event_type == GRADUATION:
                graduation = msgspec.json.decode(row.payload, type=GraduationEvent)
            else:
                claims.append(msgspec.json.decode(row.payload, type=CreatorFeeClaim))
        return graduation, claims

    # === Invalidation ===

    def delete_from(self, session: Session, token: str, block_number: int) -> None:
        try:
            session.query(BlockHashRow).filter(
                BlockHashRow.token == token,
                BlockHashRow.block_number >= block_number,
            ).delete(synchronize_session=False)
            session.query(PoolEventRow).filter(
                PoolEventRow.token == token,
                PoolEventRow.block_number >= block_number,
            ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Error invalidating chain state",
                             token=token,
                             block_number=block_number,
                             error=str(e))
            raise

    # === Sync cursors ===

    def set_cursor(self, session: Session, token: str, synced_through: int) -> None:
        session.merge(SyncCursorRow(token=token, synced_through=synced_through))
        session.flush()

    def get_cursor(self, session: Session, token: str) -> Optional[int]:
        row = session.get(SyncCursorRow, token)
        return row.synced_through if row else None
