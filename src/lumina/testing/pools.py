# src/lumina/testing/pools.py
from __future__ import annotations

"""Test helpers: deterministic pools with a funded in-memory token."""

from dataclasses import replace
from typing import Any, Iterable, Tuple

from lumina.ledger.constants import COIN
from lumina.runtime.clock import ManualClock
from lumina.runtime.pool import StakingPool
from lumina.runtime.pool_boot import build_pool
from lumina.runtime.pool_config import default_pool_config, validate_pool_config
from lumina.runtime.token import InMemoryToken

ADMIN = "admin"
REWARDS_WALLET = "rewards"


def make_pool(kind: str, *, start: int = 1_700_000_000, **overrides: Any) -> Tuple[StakingPool, InMemoryToken, ManualClock]:
    cfg = default_pool_config(kind)
    if kind == "permissioned":
        cfg = replace(cfg, rewards_wallet=REWARDS_WALLET)
    if overrides:
        cfg = replace(cfg, **overrides)
    validate_pool_config(cfg)

    token = InMemoryToken()
    clock = ManualClock(start)
    pool = build_pool(cfg, token=token, clock=clock)

    if kind == "permissioned":
        fund(token, pool, [REWARDS_WALLET], 1_000_000 * COIN)
    return pool, token, clock


def fund(token: InMemoryToken, pool: StakingPool, addresses: Iterable[str], amount: int) -> None:
    """Mint `amount` to each address and approve the pool for all of it."""
    for a in addresses:
        token.mint(a, amount)
        token.approve(a, pool.address, token.balance_of(a))
