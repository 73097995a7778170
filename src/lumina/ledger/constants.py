# src/lumina/ledger/constants.py
from __future__ import annotations

"""Staking ledger constants.

Anchors:
- Token precision: 18 decimals (1 LUMINA = 1e18 units)
- Percentages and rates are integer basis points (1/10000)
- Reward accrual and withdrawal caps are quantized to whole UTC days
"""

# Monetary precision (1 token = 1e18 units)
COIN_DECIMALS: int = 18
COIN: int = 10**COIN_DECIMALS

BPS_DENOMINATOR: int = 10_000

SECONDS_IN_DAY: int = 24 * 60 * 60

# Delay between a split-change request and the split taking effect.
GRACE_PERIOD: int = SECONDS_IN_DAY

# Unstaking time lock bounds enforced by the admin setter.
MIN_UNSTAKING_DURATION: int = 1 * SECONDS_IN_DAY
MAX_UNSTAKING_DURATION: int = 20 * SECONDS_IN_DAY
DEFAULT_UNSTAKING_DURATION: int = 7 * SECONDS_IN_DAY

# Linear model: 2000 bps = 20% of principal per day is the hard ceiling.
MAX_REWARD_RATE_PER_DAY_BPS: int = 2_000
DEFAULT_REWARD_RATE_PER_DAY_BPS: int = 0

DEFAULT_MINIMUM_STAKE: int = 1 * COIN
DEFAULT_STAKING_LIMIT: int = 1_000_000_000 * COIN

# Withdrawal throttle (permissionless pool)
DEFAULT_WITHDRAWAL_CAP_BPS: int = 1_000
DEFAULT_DAILY_WITHDRAWAL_THRESHOLD: int = 100_000 * COIN

# Addresses that are never valid role targets.
ZERO_ADDRESS: str = "0x" + "0" * 40
INVALID_ADDRESSES = frozenset({"", "0", "0x", ZERO_ADDRESS})

POOL_KINDS = ("permissioned", "permissionless")
