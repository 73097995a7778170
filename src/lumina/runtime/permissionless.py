# src/lumina/runtime/permissionless.py
from __future__ import annotations

"""Permissionless pool: open staking, pool-share rewards, daily withdrawal cap."""

from typing import Any, Dict, Optional

from lumina.ledger.constants import BPS_DENOMINATOR, COIN
from lumina.ledger.registry import normalize_address, require_address
from lumina.ledger.rewards import PoolShareModel
from lumina.ledger.throttle import WithdrawalThrottle
from lumina.ledger.types import Settlement, Stake
from lumina.runtime import events as ev
from lumina.runtime.clock import Clock
from lumina.runtime.errors import AuthorizationError, BoundsError, InvariantViolation
from lumina.runtime.metrics import set_gauge
from lumina.runtime.pool import StakingPool, require_amount
from lumina.runtime.pool_config import PoolConfig
from lumina.runtime.token import TokenLedger

Json = Dict[str, Any]


class PermissionlessPool(StakingPool):
    kind = "permissionless"

    _STATE_ATTRS = StakingPool._STATE_ATTRS + ("throttle", "staking_limit")
    _PARAM_NAMES = StakingPool._PARAM_NAMES + ("staking_limit",)

    model: PoolShareModel

    def __init__(self, config: PoolConfig, *, token: TokenLedger, clock: Optional[Clock] = None) -> None:
        super().__init__(config, token=token, clock=clock)
        self.model = PoolShareModel()
        self.throttle = WithdrawalThrottle(
            withdrawal_cap_bps=config.withdrawal_cap_bps,
            daily_withdrawal_threshold=config.daily_withdrawal_threshold,
            enforce=config.enforce_withdrawal_cap,
        )
        self.staking_limit: int = int(config.staking_limit)

    def _check_can_stake(self, caller: str, beneficiary: str, amount: int) -> None:
        if self.tokens_staked + amount > self.staking_limit:
            raise BoundsError(
                "exceeds_pool_capacity",
                {"amount": amount, "remaining": max(self.staking_limit - self.tokens_staked, 0)},
            )

    def _require_unstake_caller(self, st: Stake, caller: str) -> None:
        if normalize_address(caller) != st.principal_unstaker:
            raise AuthorizationError("principal_unstaker_required", {"stake_id": st.id, "caller": caller})

    def _settle_unstake(self, st: Stake, amount: Optional[int], now: int) -> Settlement:
        amt = self.model.claimable(st) if amount is None else int(amount)
        # Bounds first so a bad amount is reported as such, not as a throttle hit.
        self.model.quote_withdrawal(st, amt)
        self.throttle.check_and_record(tokens_staked=self.tokens_staked, amount=amt, now=now)

        w = self.model.withdraw(st, amt)
        self.tokens_staked -= w.principal_retired
        split = self.splits.divide(st, w.reward_portion, now)

        st.unstake_request_time = 0
        if not st.closed:
            st.start_time = now

        self._pay(st.principal_payout_wallet, w.principal_portion + split.to_payout_wallet, "withdrawal")
        self._pay(st.beneficiary, split.to_beneficiary, "reward")
        return Settlement(
            stake_id=st.id,
            principal=w.principal_portion,
            reward=w.reward_portion,
            reward_to_payout_wallet=split.to_payout_wallet,
            reward_to_beneficiary=split.to_beneficiary,
            split_bps=split.bps,
            remaining_principal=st.principal,
        )

    def _emergency_release(self, st: Stake, now: int) -> int:
        return self.model.burn_principal_only(st)

    # ----------------------------
    # Rewards
    # ----------------------------

    def add_reward_to_pool(self, caller: str, amount: int) -> int:
        """Inject reward tokens. Raises every holder's claimable pro rata."""
        with self._operation("add_reward_to_pool") as now:
            amt = require_amount(amount)
            funder = require_address(caller, field="caller")
            self.model.inject(amt)
            self._pull(funder, amt)
            self.events.emit(
                ev.REWARD_ADDED,
                at=now,
                funder=funder,
                amount=amt,
                total_pool_size=self.model.state.total_pool_size,
            )
            return self.model.state.total_pool_size

    # ----------------------------
    # Admin
    # ----------------------------

    def release_unallocated_reward(self, caller: str, to: str) -> int:
        """Pay out value left behind when the last share was burned."""
        with self._operation("release_unallocated_reward") as now:
            self._require_admin(caller)
            dest = require_address(to, field="to")
            amt = self.model.release_unallocated()
            self._pay(dest, amt, "unallocated_reward")
            self.events.emit(ev.UNALLOCATED_REWARD_RELEASED, at=now, to=dest, amount=amt)
            return amt

    def set_withdrawal_cap_bps(self, caller: str, bps: int) -> int:
        with self._operation("set_withdrawal_cap_bps") as now:
            self._require_admin(caller)
            if isinstance(bps, bool) or not isinstance(bps, int) or not 0 <= bps <= BPS_DENOMINATOR:
                raise BoundsError("withdrawal_cap_bps_out_of_range", {"value": bps})
            old = self.throttle.withdrawal_cap_bps
            self.throttle.withdrawal_cap_bps = bps
            self.events.emit(ev.PARAM_CHANGED, at=now, param="withdrawal_cap_bps", old=old, new=bps)
            return old

    def set_daily_withdrawal_threshold(self, caller: str, amount: int) -> int:
        with self._operation("set_daily_withdrawal_threshold") as now:
            self._require_admin(caller)
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
                raise BoundsError("threshold_out_of_range", {"value": amount})
            old = self.throttle.daily_withdrawal_threshold
            self.throttle.daily_withdrawal_threshold = amount
            self.events.emit(ev.PARAM_CHANGED, at=now, param="daily_withdrawal_threshold", old=old, new=amount)
            return old

    def set_enforce_withdrawal_cap(self, caller: str, enforce: bool) -> bool:
        with self._operation("set_enforce_withdrawal_cap") as now:
            self._require_admin(caller)
            old = self.throttle.enforce
            self.throttle.enforce = bool(enforce)
            self.events.emit(ev.PARAM_CHANGED, at=now, param="enforce_withdrawal_cap", old=old, new=bool(enforce))
            return old

    def set_staking_limit(self, caller: str, limit: int) -> int:
        with self._operation("set_staking_limit"):
            return self._set_param(caller, "staking_limit", require_amount(limit, field="staking_limit"))

    # ----------------------------
    # Queries
    # ----------------------------

    def get_claimable(self, stake_id: int) -> int:
        return self.model.claimable(self.registry.get(stake_id))

    def get_reward(self, stake_id: int) -> int:
        return self.model.unpaid_reward(self.registry.get(stake_id))

    def share_price(self) -> int:
        """Pool value of one whole share, scaled by COIN."""
        return self.model.share_price(COIN)

    def remaining_daily_withdrawal(self) -> Optional[int]:
        return self.throttle.remaining_today(tokens_staked=self.tokens_staked, now=self.clock.now())

    def stake_view(self, stake_id: int) -> Json:
        out = super().stake_view(stake_id)
        out["claimable"] = self.get_claimable(stake_id)
        return out

    def pool_info(self) -> Json:
        out = super().pool_info()
        out["throttle"] = self.throttle.to_json()
        out["share_price"] = self.share_price()
        out["remaining_daily_withdrawal"] = self.remaining_daily_withdrawal()
        return out

    # ----------------------------
    # Invariants / snapshot
    # ----------------------------

    def _update_gauges(self) -> None:
        super()._update_gauges()
        set_gauge("permissionless_total_pool_size", self.model.state.total_pool_size)
        set_gauge("permissionless_total_share_amount", self.model.state.total_share_amount)
        set_gauge("permissionless_unallocated_reward", self.model.state.unallocated_reward)

    def _check_model_invariants(self) -> None:
        st = self.model.state
        shares = sum(s.pool_shares for s in self.registry)
        if shares != st.total_share_amount:
            raise InvariantViolation("share_total_mismatch", {"sum_shares": shares, "total": st.total_share_amount})
        claimable = sum(self.model.claimable(s) for s in self.registry)
        if st.total_share_amount == 0 and st.total_pool_size:
            raise InvariantViolation("pool_value_without_shares", {"total_pool_size": st.total_pool_size})
        if claimable > st.total_pool_size:
            raise InvariantViolation(
                "pool_overcommitted", {"sum_claimable": claimable, "total_pool_size": st.total_pool_size}
            )
        for s in self.registry:
            if s.closed and s.pool_shares:
                raise InvariantViolation("closed_stake_holds_shares", {"stake_id": s.id})

    def _extra_snapshot(self) -> Json:
        return {"throttle": self.throttle.to_json()}

    def _load_extra_snapshot(self, snap: Json) -> None:
        if snap.get("throttle"):
            self.throttle = WithdrawalThrottle.from_json(snap["throttle"])

    def _load_model(self, d: Json) -> PoolShareModel:
        return PoolShareModel.from_json(d)


__all__ = ["PermissionlessPool"]
