# src/lumina/runtime/permissioned.py
from __future__ import annotations

"""Permissioned pool: whitelisted beneficiaries, linear daily-rate rewards.

Rewards are not held by the pool. They are pulled from `rewards_wallet`
(which must have approved the pool) at claim/unstake time.
"""

from typing import Any, Dict, List, Optional, Set

from lumina.ledger.registry import normalize_address, require_address
from lumina.ledger.rewards import LinearAccumulatorModel
from lumina.ledger.types import AccrualState, RewardSplit, Settlement, Stake
from lumina.runtime import events as ev
from lumina.runtime.clock import Clock
from lumina.runtime.errors import AuthorizationError, BoundsError, StateConflictError
from lumina.runtime.pool import StakingPool
from lumina.runtime.pool_config import PoolConfig
from lumina.runtime.token import TokenLedger

Json = Dict[str, Any]


class PermissionedPool(StakingPool):
    kind = "permissioned"

    _STATE_ATTRS = StakingPool._STATE_ATTRS + ("whitelist", "rewards_wallet")
    _PARAM_NAMES = StakingPool._PARAM_NAMES + ("rewards_wallet",)

    model: LinearAccumulatorModel

    def __init__(self, config: PoolConfig, *, token: TokenLedger, clock: Optional[Clock] = None) -> None:
        super().__init__(config, token=token, clock=clock)
        self.model = LinearAccumulatorModel(
            AccrualState(
                reward_rate_per_day=int(config.reward_rate_per_day_bps),
                reward_last_update_time=int(self.clock.now()),
            )
        )
        self.whitelist: Set[str] = set()
        self.rewards_wallet: str = normalize_address(config.rewards_wallet)

    def _touch(self, now: int) -> None:
        self.model.advance(now)

    def _check_can_stake(self, caller: str, beneficiary: str, amount: int) -> None:
        if beneficiary not in self.whitelist:
            raise AuthorizationError("beneficiary_not_whitelisted", {"beneficiary": beneficiary})

    # ----------------------------
    # Reward payout
    # ----------------------------

    def _pay_reward(self, st: Stake, reward: int, now: int) -> RewardSplit:
        split = self.splits.divide(st, reward, now)
        if reward > 0 and not self.rewards_wallet:
            raise StateConflictError("rewards_wallet_unset", {"stake_id": st.id, "reward": reward})
        self._pay_from(self.rewards_wallet, st.principal_payout_wallet, split.to_payout_wallet, "reward")
        self._pay_from(self.rewards_wallet, st.beneficiary, split.to_beneficiary, "reward")
        return split

    def claim(self, caller: str, stake_id: int) -> Settlement:
        """Pay out accrued reward without touching principal or the accrual window."""
        with self._operation("claim") as now:
            st = self.registry.get(stake_id)
            self._require_beneficiary_or_wallet(st, caller)
            if st.closed:
                raise StateConflictError("stake_closed", {"stake_id": stake_id})

            owed = self.model.settle(st, now)
            split = self._pay_reward(st, owed, now)
            s = Settlement(
                stake_id=st.id,
                principal=0,
                reward=owed,
                reward_to_payout_wallet=split.to_payout_wallet,
                reward_to_beneficiary=split.to_beneficiary,
                split_bps=split.bps,
                remaining_principal=st.principal,
            )
            self.events.emit(
                ev.REWARD_CLAIMED,
                at=now,
                stake_id=st.id,
                reward=owed,
                reward_to_payout_wallet=split.to_payout_wallet,
                reward_to_beneficiary=split.to_beneficiary,
                split_bps=split.bps,
            )
            return s

    def _settle_unstake(self, st: Stake, amount: Optional[int], now: int) -> Settlement:
        amt = st.principal if amount is None else int(amount)
        if amt > st.principal:
            raise BoundsError("amount_exceeds_principal", {"stake_id": st.id, "amount": amt, "principal": st.principal})

        # Reward for the frozen window, then the window restarts for what remains.
        owed = self.model.settle(st, now)
        split = self._pay_reward(st, owed, now)

        st.principal -= amt
        self.tokens_staked -= amt
        st.unstake_request_time = 0
        self.model.restart_window(st, now)

        self._pay(st.principal_payout_wallet, amt, "principal")
        return Settlement(
            stake_id=st.id,
            principal=amt,
            reward=owed,
            reward_to_payout_wallet=split.to_payout_wallet,
            reward_to_beneficiary=split.to_beneficiary,
            split_bps=split.bps,
            remaining_principal=st.principal,
        )

    def _emergency_release(self, st: Stake, now: int) -> int:
        released = st.principal
        st.principal = 0
        self.model.restart_window(st, now)
        return released

    # ----------------------------
    # Admin
    # ----------------------------

    def set_reward_rate_per_day(self, caller: str, rate_bps: int) -> int:
        with self._operation("set_reward_rate_per_day") as now:
            self._require_admin(caller)
            old = self.model.set_rate(rate_bps, now)
            self.events.emit(ev.PARAM_CHANGED, at=now, param="reward_rate_per_day", old=old, new=int(rate_bps))
            return old

    def set_rewards_wallet(self, caller: str, wallet: str) -> str:
        with self._operation("set_rewards_wallet"):
            return self._set_param(caller, "rewards_wallet", require_address(wallet, field="rewards_wallet"))

    def add_whitelisted(self, caller: str, address: str) -> bool:
        with self._operation("whitelist_add") as now:
            self._require_admin(caller)
            a = require_address(address, field="address")
            added = a not in self.whitelist
            self.whitelist.add(a)
            self.events.emit(ev.WHITELIST_CHANGED, at=now, address=a, whitelisted=True, changed=added)
            return added

    def remove_whitelisted(self, caller: str, address: str) -> bool:
        """Existing stakes of a removed address are unaffected."""
        with self._operation("whitelist_remove") as now:
            self._require_admin(caller)
            a = require_address(address, field="address")
            removed = a in self.whitelist
            self.whitelist.discard(a)
            self.events.emit(ev.WHITELIST_CHANGED, at=now, address=a, whitelisted=False, changed=removed)
            return removed

    # ----------------------------
    # Queries
    # ----------------------------

    def is_whitelisted(self, address: str) -> bool:
        return normalize_address(address) in self.whitelist

    def get_reward_for_stake(self, stake_id: int) -> int:
        """Total accrued in the current window, paid or not."""
        return self.model.total_accrued(self.registry.get(stake_id), self.clock.now())

    def get_unpaid_reward(self, stake_id: int) -> int:
        return self.unpaid_reward(stake_id)

    def whitelisted(self) -> List[str]:
        return sorted(self.whitelist)

    # ----------------------------
    # Snapshot
    # ----------------------------

    def _extra_snapshot(self) -> Json:
        return {"whitelist": sorted(self.whitelist)}

    def _load_extra_snapshot(self, snap: Json) -> None:
        self.whitelist = {normalize_address(a) for a in (snap.get("whitelist") or [])}

    def _load_model(self, d: Json) -> LinearAccumulatorModel:
        return LinearAccumulatorModel.from_json(d)


__all__ = ["PermissionedPool"]
