# src/lumina/ledger/throttle.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from lumina.ledger.constants import BPS_DENOMINATOR, SECONDS_IN_DAY
from lumina.ledger.types import ThrottleState
from lumina.runtime.errors import ThrottleError
from lumina.runtime.log_events import log_event

Json = Dict[str, Any]

_log = logging.getLogger("lumina.throttle")


@dataclass(frozen=True)
class ThrottleVerdict:
    applies: bool
    cap: int
    used: int
    requested: int

    @property
    def exceeded(self) -> bool:
        return self.applies and self.used + self.requested > self.cap


class WithdrawalThrottle:
    """Rolling daily cap on aggregate withdrawals.

    Only active while tokens_staked >= daily_withdrawal_threshold. With
    enforce=False the cap is advisory: breaches are logged and counted but
    the withdrawal goes through.
    """

    def __init__(
        self,
        state: ThrottleState | None = None,
        *,
        withdrawal_cap_bps: int,
        daily_withdrawal_threshold: int,
        enforce: bool = True,
    ) -> None:
        self.state = state or ThrottleState()
        self.withdrawal_cap_bps = int(withdrawal_cap_bps)
        self.daily_withdrawal_threshold = int(daily_withdrawal_threshold)
        self.enforce = bool(enforce)

    def _roll(self, now: int) -> None:
        today = int(now) // SECONDS_IN_DAY
        if today > self.state.last_reset_day:
            self.state.total_daily_withdrawals = 0
            self.state.last_reset_day = today

    def cap(self, tokens_staked: int) -> int:
        return int(tokens_staked) * self.withdrawal_cap_bps // BPS_DENOMINATOR

    def evaluate(self, *, tokens_staked: int, amount: int, now: int) -> ThrottleVerdict:
        self._roll(now)
        return ThrottleVerdict(
            applies=int(tokens_staked) >= self.daily_withdrawal_threshold,
            cap=self.cap(tokens_staked),
            used=self.state.total_daily_withdrawals,
            requested=int(amount),
        )

    def check_and_record(self, *, tokens_staked: int, amount: int, now: int) -> ThrottleVerdict:
        v = self.evaluate(tokens_staked=tokens_staked, amount=amount, now=now)
        if not v.applies:
            return v
        if v.exceeded:
            details = {"cap": v.cap, "used": v.used, "requested": v.requested, "day": self.state.last_reset_day}
            if self.enforce:
                raise ThrottleError("daily_withdrawal_cap_exceeded", details)
            log_event(_log, "withdrawal_cap_exceeded_advisory", **details)
        self.state.total_daily_withdrawals += int(amount)
        return v

    def remaining_today(self, *, tokens_staked: int, now: int) -> int | None:
        """None when the throttle does not apply at the current pool size."""
        if int(tokens_staked) < self.daily_withdrawal_threshold:
            return None
        used = self.state.total_daily_withdrawals
        if int(now) // SECONDS_IN_DAY > self.state.last_reset_day:
            used = 0
        return max(self.cap(tokens_staked) - used, 0)

    def to_json(self) -> Json:
        return {
            **self.state.to_json(),
            "withdrawal_cap_bps": self.withdrawal_cap_bps,
            "daily_withdrawal_threshold": self.daily_withdrawal_threshold,
            "enforce": self.enforce,
        }

    @classmethod
    def from_json(cls, d: Json) -> "WithdrawalThrottle":
        return cls(
            ThrottleState.from_json(d),
            withdrawal_cap_bps=int(d.get("withdrawal_cap_bps", 0)),
            daily_withdrawal_threshold=int(d.get("daily_withdrawal_threshold", 0)),
            enforce=bool(d.get("enforce", True)),
        )


__all__ = ["ThrottleVerdict", "WithdrawalThrottle"]
