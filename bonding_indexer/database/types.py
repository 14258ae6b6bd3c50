# bonding_indexer/database/types.py

from typing import Optional

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

from ..types.new import EvmAddress, EvmHash


class EvmAddressType(TypeDecorator):
    impl = String(42)
    cache_ok = True

    def process_bind_param(self, value: Optional[EvmAddress], dialect) -> Optional[str]:
        return str(value).lower() if value else None

    def process_result_value(self, value: Optional[str], dialect) -> Optional[EvmAddress]:
        return EvmAddress(value) if value else None


class EvmHashType(TypeDecorator):
    impl = String(66)
    cache_ok = True

    def process_bind_param(self, value: Optional[EvmHash], dialect) -> Optional[str]:
        return str(value).lower() if value else None

    def process_result_value(self, value: Optional[str], dialect) -> Optional[EvmHash]:
        return EvmHash(value) if value else None


class FixedPointType(TypeDecorator):
    """Exact integer amount stored as its decimal string.

    uint256 values overflow every native integer column, and SQLite's
    NUMERIC affinity rounds through floating point.
    """
    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value: Optional[int], dialect) -> Optional[str]:
        return str(int(value)) if value is not None else None

    def process_result_value(self, value: Optional[str], dialect) -> Optional[int]:
        return int(value) if value is not None else None
