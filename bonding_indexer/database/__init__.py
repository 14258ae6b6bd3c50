# bonding_indexer/database/__init__.py

from .connection import DatabaseManager
from .ledger_store import LedgerStore

__all__ = ['DatabaseManager', 'LedgerStore']
