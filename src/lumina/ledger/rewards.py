# src/lumina/ledger/rewards.py
from __future__ import annotations

"""Reward accrual strategies.

Both strategies operate on the common Stake shape and are selected per pool:

  - LinearAccumulatorModel (permissioned pool):
        accrued = rate_bps_per_day * whole_days(window) * principal / 10000
    where the window ends at unstake_request_time once a request is filed.
    Each day is priced at the rate in force during it.

  - PoolShareModel (permissionless pool):
        claimable = pool_shares * total_pool_size / total_share_amount
    Reward injections grow total_pool_size without minting shares.

All arithmetic is integer. Divisions floor.
"""

from typing import Any, Dict, List

from lumina.ledger.constants import (
    BPS_DENOMINATOR,
    MAX_REWARD_RATE_PER_DAY_BPS,
    SECONDS_IN_DAY,
)
from lumina.ledger.types import AccrualState, PoolShareState, Stake, Withdrawal
from lumina.runtime.errors import BoundsError, InvariantViolation, StateConflictError

Json = Dict[str, Any]


def whole_days(passed_seconds: int) -> int:
    """Whole days in a span of seconds.

    Some historical deployments computed `passed / 24 * 60 * 60`, which
    divides by 24 and then multiplies by 3600. This is the corrected form.
    """
    if passed_seconds <= 0:
        return 0
    return int(passed_seconds) // SECONDS_IN_DAY


class RewardModel:
    """Strategy interface shared by both pool kinds."""

    name: str = ""

    def on_stake(self, stake: Stake, amount: int, now: int) -> None:
        raise NotImplementedError

    def unpaid_reward(self, stake: Stake, now: int) -> int:
        raise NotImplementedError

    def to_json(self) -> Json:
        raise NotImplementedError


class LinearAccumulatorModel(RewardModel):
    """Linear daily-rate model over a global cumulative rate.

    The cumulative rate C(t) is the integral of the daily rate over time, in
    bps-seconds. A stake snapshots C at the start of its window and is owed

        (C(start + whole_days * DAY) - snapshot) * principal / (10000 * DAY)

    With a constant rate this is exactly rate * whole_days * principal / 10000.
    A rate change only reprices time after the change, so accrual never goes
    backwards.
    """

    name = "linear"

    def __init__(self, state: AccrualState | None = None) -> None:
        self.state = state or AccrualState()

    # ---- global accumulator ----

    def _segments(self) -> List[List[int]]:
        st = self.state
        return st.rate_schedule or [[st.reward_last_update_time, st.reward_accumulator, st.reward_rate_per_day]]

    def cumulative_at(self, t: int) -> int:
        """C(t). Times before the first segment extend it backwards."""
        segs = self._segments()
        seg = segs[0]
        for s in segs:
            if s[0] > t:
                break
            seg = s
        return seg[1] + seg[2] * (int(t) - seg[0])

    def advance(self, now: int) -> int:
        """Advance the global accumulator by whole elapsed days.

        reward_last_update_time moves by exactly the days consumed, so the
        sub-day remainder carries over to the next call. Returns days consumed.
        """
        st = self.state
        if st.reward_last_update_time == 0 and not st.rate_schedule:
            st.reward_last_update_time = int(now)
            return 0
        days = whole_days(int(now) - st.reward_last_update_time)
        if days <= 0:
            return 0
        t = st.reward_last_update_time + days * SECONDS_IN_DAY
        st.reward_accumulator = self.cumulative_at(t)
        st.reward_last_update_time = t
        return days

    def set_rate(self, rate_bps: int, now: int) -> int:
        if isinstance(rate_bps, bool) or not isinstance(rate_bps, int):
            raise BoundsError("reward_rate_not_int", {"value": rate_bps})
        if rate_bps < 0 or rate_bps > MAX_REWARD_RATE_PER_DAY_BPS:
            raise BoundsError(
                "reward_rate_out_of_range",
                {"value": rate_bps, "max": MAX_REWARD_RATE_PER_DAY_BPS},
            )
        self.advance(now)
        st = self.state
        if not st.rate_schedule:
            st.rate_schedule.append(self._segments()[0])
        t = int(now)
        last = st.rate_schedule[-1]
        if last[0] == t and len(st.rate_schedule) > 1:
            last[2] = int(rate_bps)
        else:
            st.rate_schedule.append([t, self.cumulative_at(t), int(rate_bps)])
        old = st.reward_rate_per_day
        st.reward_rate_per_day = int(rate_bps)
        return old

    # ---- per-stake accrual ----

    def accrual_window_end(self, stake: Stake, now: int) -> int:
        if stake.unstake_request_time > 0:
            return min(int(now), stake.unstake_request_time)
        return int(now)

    def passed_days(self, stake: Stake, now: int) -> int:
        return whole_days(self.accrual_window_end(stake, now) - stake.start_time)

    def total_accrued(self, stake: Stake, now: int) -> int:
        days = self.passed_days(stake, now)
        if days == 0:
            return 0
        rate_seconds = self.cumulative_at(stake.start_time + days * SECONDS_IN_DAY) - stake.reward_snapshot
        return rate_seconds * stake.principal // (BPS_DENOMINATOR * SECONDS_IN_DAY)

    def on_stake(self, stake: Stake, amount: int, now: int) -> None:
        self.advance(now)
        self.restart_window(stake, stake.start_time or now)

    def unpaid_reward(self, stake: Stake, now: int) -> int:
        accrued = self.total_accrued(stake, now)
        if accrued < stake.paid_out_reward:
            raise InvariantViolation(
                "reward_below_paid_out",
                {"stake_id": stake.id, "accrued": accrued, "paid_out_reward": stake.paid_out_reward},
            )
        return accrued - stake.paid_out_reward

    def settle(self, stake: Stake, now: int) -> int:
        """Mark the currently owed reward as paid and return it."""
        self.advance(now)
        owed = self.unpaid_reward(stake, now)
        stake.paid_out_reward += owed
        return owed

    def restart_window(self, stake: Stake, now: int) -> None:
        stake.start_time = int(now)
        stake.paid_out_reward = 0
        stake.reward_snapshot = self.cumulative_at(now)

    def to_json(self) -> Json:
        return {"model": self.name, **self.state.to_json()}

    @classmethod
    def from_json(cls, d: Json) -> "LinearAccumulatorModel":
        return cls(AccrualState.from_json(d))


class PoolShareModel(RewardModel):
    name = "pool_share"

    def __init__(self, state: PoolShareState | None = None) -> None:
        self.state = state or PoolShareState()

    @property
    def empty(self) -> bool:
        return self.state.total_share_amount == 0 or self.state.total_pool_size == 0

    def shares_for(self, amount: int) -> int:
        st = self.state
        if self.empty:
            return int(amount)
        return int(amount) * st.total_share_amount // st.total_pool_size

    def on_stake(self, stake: Stake, amount: int, now: int) -> None:
        minted = self.shares_for(amount)
        if minted <= 0:
            raise BoundsError("stake_mints_no_shares", {"amount": amount})
        stake.pool_shares += minted
        self.state.total_pool_size += int(amount)
        self.state.total_share_amount += minted

    def inject(self, amount: int) -> None:
        if self.state.total_share_amount == 0:
            raise StateConflictError("pool_has_no_shares", {"amount": amount})
        self.state.total_pool_size += int(amount)

    def claimable(self, stake: Stake) -> int:
        st = self.state
        if stake.pool_shares == 0 or st.total_share_amount == 0:
            return 0
        return stake.pool_shares * st.total_pool_size // st.total_share_amount

    def unpaid_reward(self, stake: Stake, now: int = 0) -> int:
        # Floor rounding can leave claimable one unit under principal.
        return max(self.claimable(stake) - stake.principal, 0)

    def share_price(self, scale: int) -> int:
        st = self.state
        if st.total_share_amount == 0:
            return int(scale)
        return st.total_pool_size * int(scale) // st.total_share_amount

    def quote_withdrawal(self, stake: Stake, amount: int) -> Withdrawal:
        claimable = self.claimable(stake)
        if amount <= 0:
            raise BoundsError("withdrawal_amount_not_positive", {"amount": amount})
        if amount > claimable:
            raise BoundsError(
                "withdrawal_exceeds_claimable",
                {"stake_id": stake.id, "amount": amount, "claimable": claimable},
            )

        if amount == claimable:
            paid_principal = min(stake.principal, amount)
            return Withdrawal(
                amount=amount,
                principal_portion=paid_principal,
                reward_portion=amount - paid_principal,
                shares_removed=stake.pool_shares,
                principal_retired=stake.principal,
            )

        principal_portion = amount * stake.principal // claimable
        # Round shares up so the remaining holders never lose value to rounding.
        shares_removed = -(-(stake.pool_shares * amount) // claimable)
        shares_removed = min(shares_removed, stake.pool_shares)
        # A stake left without shares cannot keep principal.
        retired = stake.principal if shares_removed == stake.pool_shares else principal_portion
        return Withdrawal(
            amount=amount,
            principal_portion=principal_portion,
            reward_portion=amount - principal_portion,
            shares_removed=shares_removed,
            principal_retired=retired,
        )

    def withdraw(self, stake: Stake, amount: int) -> Withdrawal:
        w = self.quote_withdrawal(stake, amount)
        st = self.state
        if w.shares_removed > st.total_share_amount or w.amount > st.total_pool_size:
            raise InvariantViolation(
                "pool_underflow",
                {"stake_id": stake.id, "withdrawal": w.amount, "shares": w.shares_removed},
            )
        stake.principal -= w.principal_retired
        stake.pool_shares -= w.shares_removed
        st.total_pool_size -= w.amount
        st.total_share_amount -= w.shares_removed
        self._set_aside_orphaned()
        return w

    def burn_principal_only(self, stake: Stake) -> int:
        """Remove a stake's shares while taking only its principal out of the pool.

        Any reward the shares represented stays in the pool for remaining holders.
        Returns the principal amount released.
        """
        released = min(stake.principal, self.claimable(stake))
        st = self.state
        st.total_share_amount -= stake.pool_shares
        st.total_pool_size -= released
        stake.pool_shares = 0
        stake.principal = 0
        self._set_aside_orphaned()
        return released

    def _set_aside_orphaned(self) -> None:
        st = self.state
        if st.total_share_amount == 0 and st.total_pool_size > 0:
            st.unallocated_reward += st.total_pool_size
            st.total_pool_size = 0

    def release_unallocated(self) -> int:
        released = self.state.unallocated_reward
        self.state.unallocated_reward = 0
        return released

    def to_json(self) -> Json:
        return {"model": self.name, **self.state.to_json()}

    @classmethod
    def from_json(cls, d: Json) -> "PoolShareModel":
        return cls(PoolShareState.from_json(d))


__all__ = ["LinearAccumulatorModel", "PoolShareModel", "RewardModel", "whole_days"]
