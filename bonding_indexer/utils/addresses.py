# bonding_indexer/utils/addresses.py

from eth_utils import is_address

from ..core.errors import ValidationError
from ..types.new import EvmAddress


def normalize_address(value, field: str = 'address') -> EvmAddress:
    """Lower-case hex address; every internal map is keyed this way."""
    if not isinstance(value, str) or not is_address(value):
        raise ValidationError(f"Invalid address: {value!r}", field=field, value=value)
    return EvmAddress(value.lower())


def topic_to_address(topic: str) -> EvmAddress:
    """Indexed address topic (32 bytes, left padded) to a lower-case address."""
    if isinstance(topic, (bytes, bytearray)):
        topic = "0x" + bytes(topic).hex()
    return EvmAddress("0x" + topic[-40:].lower())


def address_to_topic(address: str) -> str:
    return "0x" + normalize_address(address)[2:].rjust(64, "0")
