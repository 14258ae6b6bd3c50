# bonding_indexer/types/constants.py

from typing import Tuple


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

# (blocks since launch upper bound, fee rate bps, stage label)
# The pool's own final rate applies once the last bound is passed.
FEE_TIERS: Tuple[Tuple[int, int, str], ...] = (
    (20, 1000, "Tier 1 (10%)"),
    (50, 600, "Tier 2 (6%)"),
    (100, 400, "Tier 3 (4%)"),
)

DEFAULT_FINAL_FEE_RATE_BPS = 200
DEFAULT_CREATOR_FEE_SHARE_BPS = 5000
DEFAULT_BLOCK_TIME_SECONDS = 3
DEFAULT_CREATOR_CLAIM_COOLDOWN = SECONDS_PER_DAY
