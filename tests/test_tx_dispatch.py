from __future__ import annotations

import pytest

from lumina.ledger.constants import COIN, SECONDS_IN_DAY
from lumina.runtime.dispatch import apply_tx, supported_tx_types
from lumina.runtime.errors import AuthorizationError, BoundsError, StakingError
from lumina.testing.pools import ADMIN, fund, make_pool


def _tx(tx_type: str, signer: str, **payload) -> dict:
    return {"tx_type": tx_type, "signer": signer, "payload": payload}


def test_stake_and_unstake_through_envelopes() -> None:
    pool, token, clock = make_pool("permissionless")
    fund(token, pool, ["alice"], 10 * COIN)

    r = apply_tx(pool, _tx("stake", "alice", amount=4 * COIN))
    assert r == {"ok": True, "applied": "STAKE", "result": {"stake_id": 1}}

    r = apply_tx(pool, _tx("UNSTAKE_REQUEST", "alice", stake_id=1))
    assert r["result"]["unlock_at"] == clock.now() + 7 * SECONDS_IN_DAY

    clock.advance(7 * SECONDS_IN_DAY)
    r = apply_tx(pool, _tx("UNSTAKE", "alice", stake_id=1))
    assert r["result"]["principal"] == 4 * COIN
    assert r["result"]["remaining_principal"] == 0
    assert token.balance_of("alice") == 10 * COIN


def test_envelope_shape_errors() -> None:
    pool, _, _ = make_pool("permissionless")

    with pytest.raises(BoundsError) as ei:
        apply_tx(pool, {"tx_type": "STAKE", "payload": {"amount": 1}})
    assert ei.value.reason == "missing_signer"

    with pytest.raises(StakingError) as ei:
        apply_tx(pool, _tx("MINT", "alice"))
    assert ei.value.code == "tx_unimplemented"

    with pytest.raises(BoundsError) as ei:
        apply_tx(pool, _tx("STAKE", "alice", amount=COIN, memo="hi"))
    assert ei.value.reason == "schema_validation_failed"

    # Strict schema: no string-to-int coercion.
    with pytest.raises(BoundsError):
        apply_tx(pool, _tx("STAKE", "alice", amount=str(COIN)))


def test_pool_kind_specific_tx_types() -> None:
    pool, _, _ = make_pool("permissionless")
    with pytest.raises(StakingError) as ei:
        apply_tx(pool, _tx("CLAIM", "alice", stake_id=1))
    assert ei.value.code == "tx_unimplemented"

    linear, _, _ = make_pool("permissioned")
    with pytest.raises(StakingError) as ei:
        apply_tx(linear, _tx("REWARD_ADD", "alice", amount=COIN))
    assert ei.value.code == "tx_unimplemented"

    r = apply_tx(linear, _tx("WHITELIST_ADD", ADMIN, address="alice"))
    assert r["result"] == {"changed": True}
    assert linear.is_whitelisted("alice")


def test_params_set() -> None:
    pool, _, _ = make_pool("permissionless")

    r = apply_tx(pool, _tx("PARAMS_SET", ADMIN, name="unstaking_duration", value=3 * SECONDS_IN_DAY))
    assert r["result"] == {"name": "unstaking_duration", "old": 7 * SECONDS_IN_DAY, "new": 3 * SECONDS_IN_DAY}
    assert pool.unstaking_duration == 3 * SECONDS_IN_DAY

    with pytest.raises(AuthorizationError):
        apply_tx(pool, _tx("PARAMS_SET", "alice", name="withdrawal_cap_bps", value=5))

    with pytest.raises(BoundsError) as ei:
        apply_tx(pool, _tx("PARAMS_SET", ADMIN, name="reward_rate_per_day", value=100))
    assert ei.value.reason == "unknown_param"


def test_supported_tx_types_are_listed() -> None:
    types = supported_tx_types()
    assert "STAKE" in types and "PARAMS_SET" in types
    assert types == sorted(types)


def test_unallocated_reward_release_through_envelope() -> None:
    pool, token, _ = make_pool("permissionless")
    fund(token, pool, ["alice", "funder"], 100 * COIN)
    apply_tx(pool, _tx("STAKE", "alice", amount=10 * COIN))
    apply_tx(pool, _tx("REWARD_ADD", "funder", amount=2 * COIN))
    apply_tx(pool, _tx("EMERGENCY_WITHDRAW", ADMIN, stake_id=1))

    r = apply_tx(pool, _tx("UNALLOCATED_REWARD_RELEASE", ADMIN, to="treasury"))
    assert r["result"] == {"released": 2 * COIN}
    assert token.balance_of("treasury") == 2 * COIN

    with pytest.raises(BoundsError):
        apply_tx(pool, _tx("UNALLOCATED_REWARD_RELEASE", ADMIN))


def test_unallocated_reward_release_unsupported_on_permissioned_pool() -> None:
    pool, _, _ = make_pool("permissioned")
    with pytest.raises(StakingError) as ei:
        apply_tx(pool, _tx("UNALLOCATED_REWARD_RELEASE", ADMIN, to="treasury"))
    assert ei.value.reason == "tx_type_not_supported_by_pool"
