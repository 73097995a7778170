# src/lumina/ledger/split.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from lumina.ledger.constants import BPS_DENOMINATOR, GRACE_PERIOD
from lumina.ledger.registry import normalize_address, require_bps
from lumina.ledger.types import RewardSplit, Stake
from lumina.runtime.errors import AuthorizationError

Json = Dict[str, Any]


@dataclass(frozen=True)
class SplitRequest:
    stake_id: int
    old_bps: int
    new_bps: int
    requested_at: int
    effective_at: int


class DelegationSplitManager:
    """Current and pending reward split between payout wallet and beneficiary.

    A pending split is never promoted in the background: it is simply read as
    effective once `requested_at + grace_period` has passed.
    """

    def __init__(self, *, grace_period: int = GRACE_PERIOD) -> None:
        self.grace_period = int(grace_period)

    def effective_split(self, stake: Stake, now: int) -> int:
        if stake.pending_split_request_time > 0 and int(now) >= stake.pending_split_request_time + self.grace_period:
            return stake.pending_split_bps
        return stake.split_bps

    def request_update(self, stake: Stake, *, caller: str, new_bps: Any, now: int) -> SplitRequest:
        if normalize_address(caller) != stake.beneficiary:
            raise AuthorizationError("beneficiary_required", {"stake_id": stake.id, "caller": caller})
        bps = require_bps(new_bps, field="new_bps")

        # A new request replaces the old one; whatever was effective becomes current.
        old = self.effective_split(stake, now)
        stake.split_bps = old
        stake.pending_split_bps = bps
        stake.pending_split_request_time = int(now)
        return SplitRequest(
            stake_id=stake.id,
            old_bps=old,
            new_bps=bps,
            requested_at=int(now),
            effective_at=int(now) + self.grace_period,
        )

    def divide(self, stake: Stake, reward: int, now: int) -> RewardSplit:
        bps = self.effective_split(stake, now)
        to_wallet = int(reward) * bps // BPS_DENOMINATOR
        return RewardSplit(bps=bps, to_payout_wallet=to_wallet, to_beneficiary=int(reward) - to_wallet)


__all__ = ["DelegationSplitManager", "SplitRequest"]
