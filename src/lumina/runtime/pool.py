# src/lumina/runtime/pool.py
from __future__ import annotations

"""Shared staking pool core.

Both pool kinds run the same state machine over the same Stake records:

    Active --request_unstake--> Requested --unstake (after time lock)--> Active | Closed

Every public entry point runs inside `_operation()`, which:
  - rejects nested calls (re-entry from a token callback)
  - snapshots mutable state and rolls it back on any failure
  - dispatches outbound transfers only after all internal state is updated
  - audits invariants before committing (LUMINA_CHECK_INVARIANTS, default on)

Subclasses plug in the reward model and the settlement rules.
"""

import copy
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, List, Optional, Tuple

from lumina.ledger.constants import (
    BPS_DENOMINATOR,
    MAX_UNSTAKING_DURATION,
    MIN_UNSTAKING_DURATION,
)
from lumina.ledger.registry import StakeRegistry, normalize_address, require_address
from lumina.ledger.rewards import RewardModel
from lumina.ledger.split import DelegationSplitManager
from lumina.ledger.types import Settlement, Stake
from lumina.runtime import events as ev
from lumina.runtime.clock import Clock, SystemClock
from lumina.runtime.errors import (
    AuthorizationError,
    BoundsError,
    InvariantViolation,
    ReentrancyError,
    StakingError,
    StateConflictError,
)
from lumina.runtime.events import EventLog
from lumina.runtime.log_events import log_event
from lumina.runtime.metrics import inc_counter, set_gauge
from lumina.runtime.pool_config import PoolConfig
from lumina.runtime.token import TokenLedger

Json = Dict[str, Any]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return bool(default)
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def require_amount(v: Any, *, field: str = "amount") -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise BoundsError("amount_not_int", {"field": field, "value": v})
    if v <= 0:
        raise BoundsError("amount_not_positive", {"field": field, "value": v})
    return v


@dataclass(frozen=True)
class OutboundTransfer:
    to: str
    amount: int
    purpose: str
    # Empty owner means "from pool custody"; otherwise pulled via allowance.
    owner: str = ""


class StakingPool:
    kind: str = ""

    # Attributes captured for rollback. Subclasses extend.
    _STATE_ATTRS: Tuple[str, ...] = (
        "registry",
        "model",
        "tokens_staked",
        "minimum_stake",
        "unstaking_duration",
        "require_reward_claimed_before_request",
    )

    # Admin-settable parameters included in snapshots.
    _PARAM_NAMES: Tuple[str, ...] = (
        "minimum_stake",
        "unstaking_duration",
        "require_reward_claimed_before_request",
    )

    model: RewardModel

    def __init__(self, config: PoolConfig, *, token: TokenLedger, clock: Optional[Clock] = None) -> None:
        self.config = config
        self.address = config.address
        self.admin = config.admin
        self.token = token
        self.clock: Clock = clock or SystemClock()

        self.registry = StakeRegistry()
        self.splits = DelegationSplitManager()
        self.events = EventLog()

        self.tokens_staked: int = 0
        self.minimum_stake: int = int(config.minimum_stake)
        self.unstaking_duration: int = int(config.unstaking_duration)
        self.require_reward_claimed_before_request: bool = bool(config.require_reward_claimed_before_request)

        self.check_invariants_after_ops = _env_bool("LUMINA_CHECK_INVARIANTS", True)

        self._in_progress = False
        self._outbound: List[OutboundTransfer] = []
        self._log = logging.getLogger("lumina.pool")

    # ----------------------------
    # Atomic operation guard
    # ----------------------------

    def _capture(self) -> Json:
        return copy.deepcopy({name: getattr(self, name) for name in self._STATE_ATTRS})

    def _restore(self, saved: Json) -> None:
        for name, value in saved.items():
            setattr(self, name, value)

    def checkpoint(self) -> Json:
        """Capture pool state, token balances and the event mark for a later rollback."""
        return {
            "state": self._capture(),
            "token": self.token.snapshot() if hasattr(self.token, "snapshot") else None,
            "events": self.events.mark(),
        }

    def rollback(self, cp: Json) -> None:
        self._restore(cp["state"])
        if cp["token"] is not None:
            self.token.restore(cp["token"])
        self.events.truncate(cp["events"])

    @contextmanager
    def _operation(self, name: str) -> Iterator[int]:
        if self._in_progress:
            inc_counter("reentrancy_rejected")
            raise ReentrancyError("operation_in_progress", {"op": name})

        self._in_progress = True
        cp = self.checkpoint()
        mark = cp["events"]
        self._outbound = []
        try:
            now = int(self.clock.now())
            self._touch(now)
            yield now
            self._dispatch_outbound()
            if self.check_invariants_after_ops:
                self.check_invariants()
        except Exception as e:
            self.rollback(cp)
            if isinstance(e, StakingError):
                inc_counter(f"rejected_{e.code}")
                log_event(self._log, "op_rejected", op=name, pool=self.address, code=e.code, reason=e.reason)
            raise
        else:
            inc_counter(f"op_{name}")
            self.events.publish_since(mark)
            self._update_gauges()
        finally:
            self._outbound = []
            self._in_progress = False

    def _touch(self, now: int) -> None:
        """Hook run at the start of every operation (lazy global accrual)."""

    def _pay(self, to: str, amount: int, purpose: str) -> None:
        if int(amount) > 0:
            self._outbound.append(OutboundTransfer(to=to, amount=int(amount), purpose=purpose))

    def _pay_from(self, owner: str, to: str, amount: int, purpose: str) -> None:
        if int(amount) > 0:
            self._outbound.append(OutboundTransfer(to=to, amount=int(amount), purpose=purpose, owner=owner))

    def _pull(self, owner: str, amount: int) -> None:
        """Inbound deposit. Runs immediately; a failure aborts the operation."""
        self.token.transfer_from(self.address, owner, self.address, int(amount))

    def _dispatch_outbound(self) -> None:
        for t in self._outbound:
            if t.owner:
                self.token.transfer_from(self.address, t.owner, t.to, t.amount)
            else:
                self.token.transfer(self.address, t.to, t.amount)

    def _update_gauges(self) -> None:
        set_gauge(f"{self.kind}_tokens_staked", self.tokens_staked)
        set_gauge(f"{self.kind}_stakes", len(self.registry))

    # ----------------------------
    # Authorization helpers
    # ----------------------------

    def _require_admin(self, caller: str) -> None:
        if normalize_address(caller) != self.admin:
            raise AuthorizationError("admin_required", {"caller": caller})

    def _require_beneficiary_or_wallet(self, st: Stake, caller: str) -> None:
        c = normalize_address(caller)
        if c not in (st.beneficiary, st.principal_payout_wallet):
            raise AuthorizationError("beneficiary_or_payout_wallet_required", {"stake_id": st.id, "caller": caller})

    def _require_unstake_caller(self, st: Stake, caller: str) -> None:
        self._require_beneficiary_or_wallet(st, caller)

    # ----------------------------
    # Subclass hooks
    # ----------------------------

    def _check_can_stake(self, caller: str, beneficiary: str, amount: int) -> None:
        pass

    def _settle_unstake(self, st: Stake, amount: Optional[int], now: int) -> Settlement:
        raise NotImplementedError

    def _emergency_release(self, st: Stake, now: int) -> int:
        raise NotImplementedError

    def _check_model_invariants(self) -> None:
        pass

    # ----------------------------
    # Stake registry operations
    # ----------------------------

    def stake(self, caller: str, amount: int, split_bps: int = 0) -> int:
        return self.stake_for_address(caller, caller, amount, split_bps)

    def stake_for_address(self, caller: str, beneficiary: str, amount: int, split_bps: int = 0) -> int:
        with self._operation("stake") as now:
            amt = require_amount(amount)
            if amt < self.minimum_stake:
                raise BoundsError("amount_below_minimum_stake", {"amount": amt, "minimum_stake": self.minimum_stake})
            caller_a = require_address(caller, field="caller")
            beneficiary_a = require_address(beneficiary, field="beneficiary")
            self._check_can_stake(caller_a, beneficiary_a, amt)

            self._pull(caller_a, amt)

            st = self.registry.create(
                caller=caller_a,
                beneficiary=beneficiary_a,
                amount=amt,
                split_bps=split_bps,
                now=now,
            )
            self.model.on_stake(st, amt, now)
            self.tokens_staked += amt

            self.events.emit(
                ev.STAKE_CREATED,
                at=now,
                stake_id=st.id,
                beneficiary=st.beneficiary,
                principal_payout_wallet=st.principal_payout_wallet,
                principal_unstaker=st.principal_unstaker,
                amount=amt,
                split_bps=st.split_bps,
                pool_shares=st.pool_shares,
            )
            return st.id

    def reassign_payout_wallet(self, caller: str, stake_id: int, new_wallet: str) -> str:
        with self._operation("reassign_payout_wallet") as now:
            old = self.registry.reassign_payout_wallet(stake_id, caller=caller, new_wallet=new_wallet)
            st = self.registry.get(stake_id)
            self.events.emit(
                ev.PAYOUT_WALLET_REASSIGNED, at=now, stake_id=stake_id, old=old, new=st.principal_payout_wallet
            )
            return old

    def reassign_unstaker(self, caller: str, stake_id: int, new_unstaker: str) -> str:
        with self._operation("reassign_unstaker") as now:
            old = self.registry.reassign_unstaker(stake_id, caller=caller, new_unstaker=new_unstaker)
            st = self.registry.get(stake_id)
            self.events.emit(ev.UNSTAKER_REASSIGNED, at=now, stake_id=stake_id, old=old, new=st.principal_unstaker)
            return old

    # ----------------------------
    # Delegation split
    # ----------------------------

    def request_split_update(self, caller: str, stake_id: int, new_bps: int) -> Json:
        with self._operation("request_split_update") as now:
            st = self.registry.get(stake_id)
            req = self.splits.request_update(st, caller=caller, new_bps=new_bps, now=now)
            self.events.emit(
                ev.SPLIT_UPDATE_REQUESTED,
                at=now,
                stake_id=stake_id,
                old_bps=req.old_bps,
                new_bps=req.new_bps,
                effective_at=req.effective_at,
            )
            return {"stake_id": stake_id, "old_bps": req.old_bps, "new_bps": req.new_bps, "effective_at": req.effective_at}

    # Name used by the external interface.
    request_principal_wallet_share_update = request_split_update

    def effective_split(self, stake_id: int) -> int:
        return self.splits.effective_split(self.registry.get(stake_id), self.clock.now())

    # ----------------------------
    # Unstake state machine
    # ----------------------------

    def unlock_time(self, st: Stake) -> int:
        return st.unstake_request_time + self.unstaking_duration

    def request_unstake(self, caller: str, stake_id: int) -> int:
        with self._operation("request_unstake") as now:
            st = self.registry.get(stake_id)
            self._require_beneficiary_or_wallet(st, caller)
            if st.closed:
                raise StateConflictError("stake_closed", {"stake_id": stake_id})
            if st.unstake_requested:
                raise StateConflictError(
                    "unstake_already_requested", {"stake_id": stake_id, "requested_at": st.unstake_request_time}
                )
            if self.require_reward_claimed_before_request:
                unpaid = self.model.unpaid_reward(st, now)
                if unpaid > 0:
                    raise StateConflictError("reward_unclaimed", {"stake_id": stake_id, "unpaid_reward": unpaid})

            st.unstake_request_time = now
            self.events.emit(ev.UNSTAKE_REQUESTED, at=now, stake_id=stake_id, unlock_at=self.unlock_time(st))
            return self.unlock_time(st)

    def _require_unlocked(self, st: Stake, now: int) -> None:
        if not st.unstake_requested:
            raise StateConflictError("unstake_not_requested", {"stake_id": st.id})
        unlock_at = self.unlock_time(st)
        if now < unlock_at:
            raise StateConflictError("unstake_time_lock_active", {"stake_id": st.id, "unlock_at": unlock_at, "now": now})

    def unstake(self, caller: str, stake_id: int, amount: Optional[int] = None) -> Settlement:
        with self._operation("unstake") as now:
            st = self.registry.get(stake_id)
            self._require_unstake_caller(st, caller)
            if st.closed:
                raise StateConflictError("stake_closed", {"stake_id": stake_id})
            self._require_unlocked(st, now)
            if amount is not None:
                require_amount(amount)

            s = self._settle_unstake(st, amount, now)
            self.events.emit(ev.UNSTAKED, at=now, stake_id=stake_id, **{k: v for k, v in s.to_json().items() if k != "stake_id"})
            return s

    def emergency_withdraw_principal(self, caller: str, stake_id: int) -> int:
        """Owner-gated exit that skips the time lock and forfeits unpaid reward."""
        with self._operation("emergency_withdraw") as now:
            self._require_admin(caller)
            st = self.registry.get(stake_id)
            if st.closed:
                raise StateConflictError("stake_closed", {"stake_id": stake_id})
            principal = st.principal
            released = self._emergency_release(st, now)
            self.tokens_staked -= principal
            st.unstake_request_time = 0
            self._pay(st.principal_payout_wallet, released, "emergency_principal")
            self.events.emit(
                ev.EMERGENCY_WITHDRAWAL, at=now, stake_id=stake_id, principal=principal, released=released
            )
            return released

    # ----------------------------
    # Admin parameters
    # ----------------------------

    def _set_param(self, caller: str, name: str, value: Any) -> Any:
        self._require_admin(caller)
        old = getattr(self, name)
        setattr(self, name, value)
        self.events.emit(ev.PARAM_CHANGED, at=self.clock.now(), param=name, old=old, new=value)
        return old

    def set_unstaking_duration(self, caller: str, seconds: int) -> int:
        with self._operation("set_unstaking_duration"):
            if isinstance(seconds, bool) or not isinstance(seconds, int):
                raise BoundsError("duration_not_int", {"value": seconds})
            if not MIN_UNSTAKING_DURATION <= seconds <= MAX_UNSTAKING_DURATION:
                raise BoundsError(
                    "unstaking_duration_out_of_range",
                    {"value": seconds, "min": MIN_UNSTAKING_DURATION, "max": MAX_UNSTAKING_DURATION},
                )
            return self._set_param(caller, "unstaking_duration", seconds)

    def set_minimum_stake(self, caller: str, amount: int) -> int:
        with self._operation("set_minimum_stake"):
            return self._set_param(caller, "minimum_stake", require_amount(amount))

    def set_require_reward_claimed_before_request(self, caller: str, enabled: bool) -> bool:
        with self._operation("set_require_reward_claimed_before_request"):
            return self._set_param(caller, "require_reward_claimed_before_request", bool(enabled))

    # ----------------------------
    # Queries
    # ----------------------------

    def get_stake(self, stake_id: int) -> Stake:
        return replace(self.registry.get(stake_id))

    def stakes_for_beneficiary(self, address: str) -> List[int]:
        return self.registry.ids_for_beneficiary(address)

    def stakes_for_payout_wallet(self, address: str) -> List[int]:
        return self.registry.ids_for_payout_wallet(address)

    def stakes_for_unstaker(self, address: str) -> List[int]:
        return self.registry.ids_for_unstaker(address)

    def unpaid_reward(self, stake_id: int) -> int:
        return self.model.unpaid_reward(self.registry.get(stake_id), self.clock.now())

    def stake_view(self, stake_id: int) -> Json:
        st = self.registry.get(stake_id)
        now = self.clock.now()
        out = st.to_json()
        out["effective_split_bps"] = self.splits.effective_split(st, now)
        out["unpaid_reward"] = self.model.unpaid_reward(st, now)
        out["unlock_at"] = self.unlock_time(st) if st.unstake_requested else 0
        return out

    def params(self) -> Json:
        return {name: getattr(self, name) for name in self._PARAM_NAMES}

    def pool_info(self) -> Json:
        return {
            "kind": self.kind,
            "address": self.address,
            "admin": self.admin,
            "tokens_staked": self.tokens_staked,
            "stakes": len(self.registry),
            "params": self.params(),
            "model": self.model.to_json(),
        }

    # ----------------------------
    # Invariant audit
    # ----------------------------

    def check_invariants(self) -> None:
        total = self.registry.total_principal()
        if total != self.tokens_staked:
            raise InvariantViolation("tokens_staked_mismatch", {"sum_principal": total, "tokens_staked": self.tokens_staked})
        for st in self.registry:
            if st.principal < 0:
                raise InvariantViolation("negative_principal", {"stake_id": st.id})
            for f in ("split_bps", "pending_split_bps"):
                v = getattr(st, f)
                if not 0 <= v <= BPS_DENOMINATOR:
                    raise InvariantViolation("split_out_of_range", {"stake_id": st.id, "field": f, "value": v})
        self.registry.verify_indices()
        self._check_model_invariants()

    # ----------------------------
    # Snapshot
    # ----------------------------

    def _extra_snapshot(self) -> Json:
        return {}

    def _load_extra_snapshot(self, snap: Json) -> None:
        pass

    def _load_model(self, d: Json) -> RewardModel:
        raise NotImplementedError

    def to_snapshot(self) -> Json:
        return {
            "kind": self.kind,
            "address": self.address,
            "admin": self.admin,
            "tokens_staked": self.tokens_staked,
            "params": self.params(),
            "registry": self.registry.to_json(),
            "model": self.model.to_json(),
            **self._extra_snapshot(),
        }

    def load_snapshot(self, snap: Json) -> None:
        kind = str(snap.get("kind") or "")
        if kind != self.kind:
            raise ValueError(f"snapshot kind {kind!r} does not match pool kind {self.kind!r}")
        self.registry = StakeRegistry.from_json(snap.get("registry") or {})
        self.model = self._load_model(snap.get("model") or {})
        self.tokens_staked = int(snap.get("tokens_staked", 0))
        for name, value in (snap.get("params") or {}).items():
            if name in self._PARAM_NAMES:
                setattr(self, name, value)
        self._load_extra_snapshot(snap)
        self.check_invariants()


__all__ = ["OutboundTransfer", "StakingPool", "require_amount"]
