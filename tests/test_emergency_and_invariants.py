from __future__ import annotations

import pytest

from lumina.ledger.constants import COIN, SECONDS_IN_DAY
from lumina.runtime.errors import AuthorizationError, InvariantViolation, StateConflictError
from lumina.testing.pools import ADMIN, fund, make_pool

DAY = SECONDS_IN_DAY


def test_emergency_withdraw_pool_share_leaves_reward_for_others() -> None:
    pool, token, _ = make_pool("permissionless")
    fund(token, pool, ["alice", "bob", "funder"], 1_000 * COIN)
    a = pool.stake("alice", 100 * COIN)
    b = pool.stake("bob", 100 * COIN)
    pool.add_reward_to_pool("funder", 20 * COIN)

    with pytest.raises(AuthorizationError):
        pool.emergency_withdraw_principal("alice", a)

    released = pool.emergency_withdraw_principal(ADMIN, a)
    assert released == 100 * COIN
    assert token.balance_of("alice") == 1_000 * COIN
    assert pool.get_stake(a).status == "closed"
    assert pool.get_claimable(b) == 120 * COIN
    assert pool.tokens_staked == 100 * COIN

    with pytest.raises(StateConflictError):
        pool.emergency_withdraw_principal(ADMIN, a)


def test_emergency_withdraw_linear_skips_lock_and_forfeits_reward() -> None:
    pool, token, clock = make_pool("permissioned", reward_rate_per_day_bps=1000)
    pool.add_whitelisted(ADMIN, "alice")
    fund(token, pool, ["alice"], 10 * COIN)
    sid = pool.stake("alice", 10 * COIN)
    pool.request_unstake("alice", sid)
    clock.advance(DAY)

    assert pool.emergency_withdraw_principal(ADMIN, sid) == 10 * COIN
    assert token.balance_of("alice") == 10 * COIN
    st = pool.get_stake(sid)
    assert st.status == "closed"
    assert st.unstake_request_time == 0
    assert pool.get_unpaid_reward(sid) == 0
    assert pool.events.names()[-1] == "EmergencyWithdrawal"


def test_invariant_audit_detects_tokens_staked_drift() -> None:
    pool, token, _ = make_pool("permissionless")
    fund(token, pool, ["alice"], 10 * COIN)
    pool.stake("alice", 5 * COIN)
    pool.check_invariants()

    pool.tokens_staked += 1
    with pytest.raises(InvariantViolation) as ei:
        pool.check_invariants()
    assert ei.value.reason == "tokens_staked_mismatch"


def test_invariant_audit_blocks_commit_of_corrupt_state() -> None:
    pool, token, _ = make_pool("permissionless")
    fund(token, pool, ["alice"], 10 * COIN)
    pool.stake("alice", 5 * COIN)
    pool.model.state.total_share_amount += 1

    with pytest.raises(InvariantViolation):
        pool.stake("alice", 1 * COIN)
    assert len(pool.registry) == 1
    assert token.balance_of("alice") == 5 * COIN


def test_linear_reward_below_paid_out_is_fatal() -> None:
    pool, token, clock = make_pool("permissioned", reward_rate_per_day_bps=2000)
    pool.add_whitelisted(ADMIN, "alice")
    fund(token, pool, ["alice"], 10 * COIN)
    sid = pool.stake("alice", 1 * COIN)
    clock.advance(2 * DAY)
    pool.claim("alice", sid)

    pool.registry.get(sid).paid_out_reward += 1
    with pytest.raises(InvariantViolation) as ei:
        pool.get_unpaid_reward(sid)
    assert ei.value.reason == "reward_below_paid_out"


def test_events_follow_operations() -> None:
    pool, token, clock = make_pool("permissionless")
    fund(token, pool, ["alice"], 10 * COIN)
    sid = pool.stake("alice", 5 * COIN)
    pool.reassign_payout_wallet("alice", sid, "vault")
    pool.request_unstake("alice", sid)
    clock.advance(7 * DAY)
    pool.unstake("alice", sid)

    assert pool.events.names() == ["StakeCreated", "PayoutWalletReassigned", "UnstakeRequested", "Unstaked"]
    unstaked = pool.events.for_stake(sid)[-1].to_json()
    assert unstaked["principal"] == 5 * COIN
    assert token.balance_of("vault") == 5 * COIN


def test_reward_left_by_last_emergency_exit_is_set_aside() -> None:
    pool, token, _ = make_pool("permissionless")
    fund(token, pool, ["alice", "bob", "funder"], 1_000 * COIN)
    a = pool.stake("alice", 100 * COIN)
    pool.add_reward_to_pool("funder", 50 * COIN)

    assert pool.emergency_withdraw_principal(ADMIN, a) == 100 * COIN
    st = pool.model.state
    assert (st.total_pool_size, st.total_share_amount, st.unallocated_reward) == (0, 0, 50 * COIN)
    assert pool.share_price() == COIN

    b = pool.stake("bob", 10 * COIN)
    assert pool.get_claimable(b) == 10 * COIN
    assert pool.get_reward(b) == 0
    assert token.balance_of(pool.address) == 60 * COIN


def test_unallocated_reward_release_is_admin_only() -> None:
    pool, token, _ = make_pool("permissionless")
    fund(token, pool, ["alice", "funder"], 1_000 * COIN)
    a = pool.stake("alice", 100 * COIN)
    pool.add_reward_to_pool("funder", 50 * COIN)
    pool.emergency_withdraw_principal(ADMIN, a)

    with pytest.raises(AuthorizationError):
        pool.release_unallocated_reward("alice", "alice")
    assert pool.model.state.unallocated_reward == 50 * COIN

    assert pool.release_unallocated_reward(ADMIN, "treasury") == 50 * COIN
    assert token.balance_of("treasury") == 50 * COIN
    assert token.balance_of(pool.address) == 0
    assert pool.model.state.unallocated_reward == 0
    assert pool.events.names()[-1] == "UnallocatedRewardReleased"
    assert pool.release_unallocated_reward(ADMIN, "treasury") == 0


def test_pool_value_without_shares_fails_the_audit() -> None:
    pool, token, _ = make_pool("permissionless")
    fund(token, pool, ["alice"], 10 * COIN)
    pool.check_invariants()

    pool.model.state.total_pool_size = 1
    with pytest.raises(InvariantViolation) as ei:
        pool.check_invariants()
    assert ei.value.reason == "pool_value_without_shares"
