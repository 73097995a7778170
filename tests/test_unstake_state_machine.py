from __future__ import annotations

import pytest

from lumina.ledger.constants import COIN, SECONDS_IN_DAY
from lumina.runtime.errors import AuthorizationError, BoundsError, StateConflictError
from lumina.testing.pools import ADMIN, fund, make_pool

DAY = SECONDS_IN_DAY


@pytest.fixture(params=["permissioned", "permissionless"])
def pool_env(request):
    pool, token, clock = make_pool(request.param)
    if pool.kind == "permissioned":
        pool.add_whitelisted(ADMIN, "alice")
    fund(token, pool, ["alice"], 100 * COIN)
    return pool, token, clock


def test_settle_one_second_before_lock_is_rejected(pool_env) -> None:
    pool, _, clock = pool_env
    sid = pool.stake("alice", 5 * COIN)
    unlock_at = pool.request_unstake("alice", sid)
    assert unlock_at == clock.now() + 7 * DAY

    clock.set(unlock_at - 1)
    with pytest.raises(StateConflictError) as ei:
        pool.unstake("alice", sid)
    assert ei.value.reason == "unstake_time_lock_active"

    clock.set(unlock_at)
    s = pool.unstake("alice", sid)
    assert s.principal == 5 * COIN


def test_unstake_without_request_is_rejected(pool_env) -> None:
    pool, _, _ = pool_env
    sid = pool.stake("alice", 5 * COIN)
    with pytest.raises(StateConflictError) as ei:
        pool.unstake("alice", sid)
    assert ei.value.reason == "unstake_not_requested"


def test_request_twice_is_rejected(pool_env) -> None:
    pool, _, clock = pool_env
    sid = pool.stake("alice", 5 * COIN)
    pool.request_unstake("alice", sid)
    first = pool.get_stake(sid).unstake_request_time

    clock.advance(60)
    with pytest.raises(StateConflictError):
        pool.request_unstake("alice", sid)
    assert pool.get_stake(sid).unstake_request_time == first


def test_request_needs_beneficiary_or_payout_wallet(pool_env) -> None:
    pool, _, _ = pool_env
    sid = pool.stake("alice", 5 * COIN)
    with pytest.raises(AuthorizationError):
        pool.request_unstake("mallory", sid)


def test_closed_stake_rejects_further_requests(pool_env) -> None:
    pool, _, clock = pool_env
    sid = pool.stake("alice", 5 * COIN)
    pool.request_unstake("alice", sid)
    clock.advance(7 * DAY)
    pool.unstake("alice", sid)

    st = pool.get_stake(sid)
    assert st.status == "closed"
    assert st.unstake_request_time == 0
    with pytest.raises(StateConflictError):
        pool.request_unstake("alice", sid)
    # Closed stakes stay queryable.
    assert pool.stakes_for_beneficiary("alice") == [sid]


def test_requested_stake_returns_to_active_after_partial_settle(pool_env) -> None:
    pool, _, clock = pool_env
    sid = pool.stake("alice", 5 * COIN)
    pool.request_unstake("alice", sid)
    clock.advance(7 * DAY)
    pool.unstake("alice", sid, 2 * COIN)

    assert pool.get_stake(sid).status == "active"
    pool.request_unstake("alice", sid)
    assert pool.get_stake(sid).status == "requested"


def test_unstaking_duration_setter_bounds(pool_env) -> None:
    pool, _, clock = pool_env
    with pytest.raises(BoundsError):
        pool.set_unstaking_duration(ADMIN, DAY - 1)
    with pytest.raises(BoundsError):
        pool.set_unstaking_duration(ADMIN, 20 * DAY + 1)
    with pytest.raises(AuthorizationError):
        pool.set_unstaking_duration("alice", 2 * DAY)

    pool.set_unstaking_duration(ADMIN, DAY)
    sid = pool.stake("alice", 5 * COIN)
    pool.request_unstake("alice", sid)
    clock.advance(DAY)
    pool.unstake("alice", sid)


def test_minimum_stake_is_enforced(pool_env) -> None:
    pool, _, _ = pool_env
    with pytest.raises(BoundsError) as ei:
        pool.stake("alice", COIN - 1)
    assert ei.value.reason == "amount_below_minimum_stake"

    pool.set_minimum_stake(ADMIN, 10 * COIN)
    with pytest.raises(BoundsError):
        pool.stake("alice", 5 * COIN)
