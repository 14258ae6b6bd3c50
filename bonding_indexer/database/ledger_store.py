# bonding_indexer/database/ledger_store.py

from .connection import DatabaseManager
from .repositories.chain_repository import ChainStateRepository
from .repositories.trade_repository import TradeRepository
from ..core.logging import LoggingMixin
from ..ledger.interfaces import BatchChanges, LedgerStoreInterface, StoredLedger


class LedgerStore(LedgerStoreInterface, LoggingMixin):
    """SQLAlchemy-backed ledger persistence.

    Each read-model batch is written in one transaction: the invalidated
    range is deleted first, then the batch's additions are inserted. A
    failure rolls the transaction back and the batch is not published.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.trades = TradeRepository(db_manager)
        self.chain = ChainStateRepository(db_manager)

    def apply(self, changes: BatchChanges) -> None:
        token = changes.token
        with self.db_manager.get_transaction() as session:
            if changes.invalidated_from is not None:
                removed = self.trades.delete_from(session, token, changes.invalidated_from)
                self.chain.delete_from(session, token, changes.invalidated_from)
                self.trades.delete_quarantined_from(session, token, changes.invalidated_from)
                self.log_info("Stored ledger invalidated",
                              token=token,
                              block_number=changes.invalidated_from,
                              removed=removed)

            self.trades.insert_many(session, changes.added)
            self.trades.add_quarantined(session, changes.quarantined)
            self.chain.upsert_block_hashes(session, token, changes.block_hashes)
            self.chain.add_events(session, token, changes.graduations + changes.claims)
            if changes.synced_through is not None:
                self.chain.set_cursor(session, token, changes.synced_through)

        self.log_debug("Batch persisted",
                       token=token,
                       added=len(changes.added),
                       quarantined=len(changes.quarantined),
                       to_block=changes.synced_through)

    def load(self, token: str) -> StoredLedger:
        with self.db_manager.get_session() as session:
            records = self.trades.get_by_token(session, token)
            graduation, claims = self.chain.get_events(session, token)
            stored = StoredLedger(
                records=records,
                block_hashes=self.chain.get_block_hashes(session, token),
                graduation=graduation,
                claims=claims,
                quarantined=self.trades.get_quarantined(session, token),
                synced_through=self.chain.get_cursor(session, token),
            )

        self.log_info("Stored ledger loaded",
                      token=token,
                      records=len(stored.records),
                      synced_through=stored.synced_through)
        return stored
