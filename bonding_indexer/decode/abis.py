# bonding_indexer/decode/abis.py
"""
Bonding curve DEX event layouts.

Every event carries its addresses as indexed topics and its amounts as a
packed run of uint256 words in ``data``.
"""

from typing import Dict, Tuple

from msgspec import Struct
from web3 import Web3


class EventSpec(Struct, frozen=True):
    name: str
    indexed: Tuple[str, ...]
    data: Tuple[str, ...]

    @property
    def signature_text(self) -> str:
        types = ",".join(["address"] * len(self.indexed) + ["uint256"] * len(self.data))
        return f"{self.name}({types})"

    @property
    def topic(self) -> str:
        return Web3.to_hex(Web3.keccak(text=self.signature_text)).lower()

    @property
    def data_types(self) -> list:
        return ["uint256"] * len(self.data)


TOKENS_BOUGHT = EventSpec(
    name="TokensBought",
    indexed=("buyer", "token"),
    data=("base_amount", "token_amount", "current_price", "fee_rate"),
)

TOKENS_SOLD = EventSpec(
    name="TokensSold",
    indexed=("seller", "token"),
    data=("base_amount", "token_amount", "current_price", "fee_rate"),
)

POST_GRADUATION_SELL = EventSpec(
    name="PostGraduationSell",
    indexed=("seller", "token"),
    data=("base_amount", "token_amount", "current_price", "fee_rate"),
)

# emitted by the launchpad manager, not the curve contract
POST_GRADUATION_BUY = EventSpec(
    name="PostGraduationBuy",
    indexed=("buyer", "token"),
    data=("base_amount", "token_amount", "current_price"),
)

POOL_GRADUATED = EventSpec(
    name="PoolGraduated",
    indexed=("token",),
    data=("total_raised", "final_market_cap", "base_for_venue", "tokens_for_venue"),
)

CREATOR_FEES_CLAIMED = EventSpec(
    name="CreatorFeesClaimed",
    indexed=("token", "creator"),
    data=("amount",),
)

TRADE_EVENTS = (TOKENS_BOUGHT, TOKENS_SOLD, POST_GRADUATION_SELL)
MANAGER_TRADE_EVENTS = (POST_GRADUATION_BUY,)
LIFECYCLE_EVENTS = (POOL_GRADUATED, CREATOR_FEES_CLAIMED)

EVENTS_BY_TOPIC: Dict[str, EventSpec] = {
    spec.topic: spec for spec in TRADE_EVENTS + MANAGER_TRADE_EVENTS + LIFECYCLE_EVENTS
}


def trade_topics(token_topic: str) -> list:
    """Filter for trade events of one token (token is the second indexed arg)."""
    return [[spec.topic for spec in TRADE_EVENTS], None, token_topic]


def lifecycle_topics(token_topic: str) -> list:
    """Filter for graduation and creator claims of one token (first indexed arg)."""
    return [[spec.topic for spec in LIFECYCLE_EVENTS], token_topic]


def manager_trade_topics(token_topic: str) -> list:
    """Filter for launchpad manager trades of one token (token is the second indexed arg)."""
    return [[spec.topic for spec in MANAGER_TRADE_EVENTS], None, token_topic]
