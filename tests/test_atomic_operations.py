from __future__ import annotations

import pytest

from lumina.ledger.constants import COIN, SECONDS_IN_DAY
from lumina.runtime.clock import ManualClock
from lumina.runtime.errors import ReentrancyError
from lumina.runtime.permissionless import PermissionlessPool
from lumina.runtime.pool_config import default_pool_config
from lumina.runtime.token import InMemoryToken, TokenTransferError

DAY = SECONDS_IN_DAY


class HookToken(InMemoryToken):
    """Token whose outbound transfer runs a callback (a malicious receiver)."""

    def __init__(self) -> None:
        super().__init__()
        self.on_transfer = None

    def transfer(self, sender: str, to: str, amount: int) -> None:
        super().transfer(sender, to, amount)
        if self.on_transfer is not None:
            self.on_transfer()


def _setup():
    token = HookToken()
    clock = ManualClock()
    pool = PermissionlessPool(default_pool_config("permissionless"), token=token, clock=clock)
    for who in ("alice", "bob"):
        token.mint(who, 100 * COIN)
        token.approve(who, pool.address, 100 * COIN)
    a = pool.stake("alice", 10 * COIN)
    b = pool.stake("bob", 10 * COIN)
    pool.request_unstake("alice", a)
    clock.advance(7 * DAY)
    return pool, token, a, b


def test_reentrant_call_during_payout_aborts_whole_operation() -> None:
    pool, token, a, b = _setup()
    before = pool.to_snapshot()
    balances = token.to_json()
    n_events = len(pool.events)

    def reenter() -> None:
        pool.request_unstake("bob", b)

    token.on_transfer = reenter
    with pytest.raises(ReentrancyError):
        pool.unstake("alice", a)

    assert pool.to_snapshot() == before
    assert token.to_json() == balances
    assert len(pool.events) == n_events
    assert pool.get_stake(a).status == "requested"

    # The guard is released after the failure.
    token.on_transfer = None
    pool.unstake("alice", a)
    assert pool.get_stake(a).status == "closed"


def test_nested_call_sees_post_settlement_state() -> None:
    pool, token, a, _ = _setup()
    seen = {}

    def reenter() -> None:
        seen["status"] = pool.get_stake(a).status
        seen["tokens_staked"] = pool.tokens_staked
        with pytest.raises(ReentrancyError):
            pool.unstake("alice", a)

    token.on_transfer = reenter
    pool.unstake("alice", a)

    # State was final before any tokens moved out.
    assert seen == {"status": "closed", "tokens_staked": 10 * COIN}


def test_failed_transfer_rolls_back_state_and_events() -> None:
    pool, token, a, _ = _setup()
    before = pool.to_snapshot()
    n_events = len(pool.events)

    def fail() -> None:
        raise TokenTransferError("receiver_rejected")

    token.on_transfer = fail
    with pytest.raises(TokenTransferError):
        pool.unstake("alice", a)

    assert pool.to_snapshot() == before
    assert len(pool.events) == n_events
    assert token.balance_of("alice") == 90 * COIN


def test_failed_deposit_leaves_no_stake() -> None:
    pool, token, _, _ = _setup()
    token.mint("carol", 5 * COIN)  # no allowance
    with pytest.raises(TokenTransferError):
        pool.stake("carol", 5 * COIN)
    assert pool.stakes_for_beneficiary("carol") == []
    assert pool.registry.next_id == 3
