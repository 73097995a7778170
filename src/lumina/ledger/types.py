"""lumina.ledger.types

Stake records and the aggregate state blocks of both pool kinds.

A Stake is a fixed-field record. STAKE_FIELDS is the positional order used by
persistence and by any caller that decodes records as tuples; do not reorder.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Tuple

Json = Dict[str, Any]

STAKE_FIELDS: Tuple[str, ...] = (
    "id",
    "beneficiary",
    "principal_payout_wallet",
    "principal_unstaker",
    "principal",
    "split_bps",
    "pending_split_bps",
    "pending_split_request_time",
    "start_time",
    "unstake_request_time",
    "paid_out_reward",
    "pool_shares",
    "reward_snapshot",
)

_INT_FIELDS = frozenset(
    {
        "id",
        "principal",
        "split_bps",
        "pending_split_bps",
        "pending_split_request_time",
        "start_time",
        "unstake_request_time",
        "paid_out_reward",
        "pool_shares",
        "reward_snapshot",
    }
)


def _coerce_int(v: Any, *, field: str) -> int:
    # bool is an int subclass; disallow it explicitly
    if isinstance(v, bool):
        raise ValueError(f"Stake schema error: field '{field}' must be int (got bool)")
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Stake schema error: field '{field}' must be int-coercible (got {type(v).__name__})") from e


@dataclass
class Stake:
    """One deposit event.

    `paid_out_reward` and `reward_snapshot` are used by the linear model,
    `pool_shares` by the pool-share model; the others stay zero.

    `reward_snapshot` is the linear model's cumulative rate (bps-seconds) at
    `start_time`. Accrual reads the cumulative rate at the end of the window
    against it.
    """

    id: int
    beneficiary: str
    principal_payout_wallet: str
    principal_unstaker: str
    principal: int
    split_bps: int
    pending_split_bps: int = 0
    pending_split_request_time: int = 0
    start_time: int = 0
    unstake_request_time: int = 0
    paid_out_reward: int = 0
    pool_shares: int = 0
    reward_snapshot: int = 0

    @property
    def unstake_requested(self) -> bool:
        return self.unstake_request_time != 0

    @property
    def closed(self) -> bool:
        return self.principal == 0

    @property
    def status(self) -> str:
        if self.closed:
            return "closed"
        if self.unstake_requested:
            return "requested"
        return "active"

    # ---- positional record layout ----

    def to_record(self) -> Tuple[Any, ...]:
        return tuple(getattr(self, name) for name in STAKE_FIELDS)

    @classmethod
    def from_record(cls, rec: Any) -> "Stake":
        vals = tuple(rec)
        if len(vals) != len(STAKE_FIELDS):
            raise ValueError(f"Stake record must have {len(STAKE_FIELDS)} fields, got {len(vals)}")
        return cls.from_json(dict(zip(STAKE_FIELDS, vals)))

    # ---- JSON interop ----

    def to_json(self) -> Json:
        d = asdict(self)
        d["status"] = self.status
        return d

    @classmethod
    def from_json(cls, d: Json) -> "Stake":
        kwargs: Json = {}
        for f in fields(cls):
            if f.name not in d:
                continue
            v = d[f.name]
            kwargs[f.name] = _coerce_int(v, field=f.name) if f.name in _INT_FIELDS else str(v or "")
        return cls(**kwargs)


@dataclass
class AccrualState:
    """Global accrual state of the linear model.

    `reward_accumulator` is the cumulative rate in bps-seconds at
    `reward_last_update_time`. `rate_schedule` holds one
    `[from_time, cumulative_at_from, rate]` entry per rate segment once the
    rate has changed; empty means a single segment anchored at the accumulator.
    """

    reward_rate_per_day: int = 0
    reward_accumulator: int = 0
    reward_last_update_time: int = 0
    rate_schedule: List[List[int]] = field(default_factory=list)

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, d: Json) -> "AccrualState":
        return cls(
            reward_rate_per_day=_coerce_int(d.get("reward_rate_per_day", 0), field="reward_rate_per_day"),
            reward_accumulator=_coerce_int(d.get("reward_accumulator", 0), field="reward_accumulator"),
            reward_last_update_time=_coerce_int(d.get("reward_last_update_time", 0), field="reward_last_update_time"),
            rate_schedule=[
                [_coerce_int(v, field="rate_schedule") for v in seg] for seg in (d.get("rate_schedule") or [])
            ],
        )


@dataclass
class PoolShareState:
    """Shared pool of the pool-share model.

    `unallocated_reward` is value left in the pool after the last share was
    burned. It belongs to no holder and is only released by the admin.
    """

    total_pool_size: int = 0
    total_share_amount: int = 0
    unallocated_reward: int = 0

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, d: Json) -> "PoolShareState":
        return cls(
            total_pool_size=_coerce_int(d.get("total_pool_size", 0), field="total_pool_size"),
            total_share_amount=_coerce_int(d.get("total_share_amount", 0), field="total_share_amount"),
            unallocated_reward=_coerce_int(d.get("unallocated_reward", 0), field="unallocated_reward"),
        )


@dataclass
class ThrottleState:
    total_daily_withdrawals: int = 0
    last_reset_day: int = 0

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, d: Json) -> "ThrottleState":
        return cls(
            total_daily_withdrawals=_coerce_int(d.get("total_daily_withdrawals", 0), field="total_daily_withdrawals"),
            last_reset_day=_coerce_int(d.get("last_reset_day", 0), field="last_reset_day"),
        )


@dataclass(frozen=True)
class RewardSplit:
    """Reward divided between the payout wallet and the beneficiary."""

    bps: int
    to_payout_wallet: int
    to_beneficiary: int

    @property
    def total(self) -> int:
        return self.to_payout_wallet + self.to_beneficiary


@dataclass(frozen=True)
class Settlement:
    """What an unstake, claim or emergency exit paid out."""

    stake_id: int
    principal: int
    reward: int
    reward_to_payout_wallet: int
    reward_to_beneficiary: int
    split_bps: int
    remaining_principal: int

    def to_json(self) -> Json:
        return asdict(self)


@dataclass(frozen=True)
class Withdrawal:
    """Breakdown of a pool-share withdrawal.

    `principal_retired` is what leaves the stake's principal (and tokensStaked).
    It equals `principal_portion` except on a full exit where floor rounding
    left the claimable value a few units under principal.
    """

    amount: int
    principal_portion: int
    reward_portion: int
    shares_removed: int
    principal_retired: int
