from __future__ import annotations

import pytest

from lumina.ledger.constants import COIN, SECONDS_IN_DAY
from lumina.runtime.errors import AuthorizationError, BoundsError
from lumina.testing.pools import ADMIN, fund, make_pool

DAY = SECONDS_IN_DAY


def _pool():
    pool, token, clock = make_pool("permissioned", reward_rate_per_day_bps=2000)
    pool.add_whitelisted(ADMIN, "bob")
    fund(token, pool, ["alice"], 100 * COIN)
    # alice funds and holds the payout wallet; bob is the beneficiary.
    sid = pool.stake_for_address("alice", "bob", 1 * COIN, 0)
    return pool, token, clock, sid


def test_pending_split_takes_effect_after_grace_period() -> None:
    pool, _, clock, sid = _pool()
    out = pool.request_split_update("bob", sid, 5000)
    assert out["effective_at"] == clock.now() + DAY

    clock.advance(DAY - 1)
    assert pool.effective_split(sid) == 0
    clock.advance(1)
    assert pool.effective_split(sid) == 5000
    # Nothing is promoted in the background.
    assert pool.get_stake(sid).split_bps == 0


def test_settlement_uses_split_effective_at_settlement_time() -> None:
    pool, token, clock, sid = _pool()
    pool.request_split_update("bob", sid, 5000)
    clock.advance(2 * DAY)

    s = pool.claim("bob", sid)
    assert s.split_bps == 5000
    assert s.reward_to_payout_wallet == 2 * COIN // 10
    assert s.reward_to_beneficiary == 2 * COIN // 10
    assert token.balance_of("bob") == 2 * COIN // 10


def test_only_beneficiary_requests_and_bps_is_bounded() -> None:
    pool, _, _, sid = _pool()
    with pytest.raises(AuthorizationError):
        pool.request_split_update("alice", sid, 100)
    with pytest.raises(BoundsError):
        pool.request_split_update("bob", sid, 10_001)


def test_new_request_restarts_grace_from_current_effective_split() -> None:
    pool, _, clock, sid = _pool()
    pool.request_split_update("bob", sid, 4000)
    clock.advance(DAY)
    out = pool.request_split_update("bob", sid, 8000)

    assert out["old_bps"] == 4000
    assert pool.effective_split(sid) == 4000
    clock.advance(DAY)
    assert pool.effective_split(sid) == 8000


def test_full_split_pays_everything_to_payout_wallet() -> None:
    pool, token, clock, sid = _pool()
    pool.request_split_update("bob", sid, 10_000)
    clock.advance(DAY)
    s = pool.claim("alice", sid)
    assert s.reward_to_beneficiary == 0
    assert s.reward_to_payout_wallet == s.reward == 2 * COIN // 10
    assert token.balance_of("bob") == 0
