from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lumina.runtime.log_events import log_event

Json = Dict[str, Any]

STAKE_CREATED = "StakeCreated"
UNSTAKE_REQUESTED = "UnstakeRequested"
UNSTAKED = "Unstaked"
REWARD_CLAIMED = "RewardClaimed"
SPLIT_UPDATE_REQUESTED = "SplitUpdateRequested"
PAYOUT_WALLET_REASSIGNED = "PayoutWalletReassigned"
UNSTAKER_REASSIGNED = "UnstakerReassigned"
REWARD_ADDED = "RewardAdded"
EMERGENCY_WITHDRAWAL = "EmergencyWithdrawal"
PARAM_CHANGED = "ParamChanged"
WHITELIST_CHANGED = "WhitelistChanged"
UNALLOCATED_REWARD_RELEASED = "UnallocatedRewardReleased"


@dataclass(frozen=True)
class StakingEvent:
    seq: int
    name: str
    at: int
    stake_id: Optional[int] = None
    fields: Json = field(default_factory=dict)

    def to_json(self) -> Json:
        return {**self.fields, "seq": self.seq, "name": self.name, "at": self.at, "stake_id": self.stake_id}


class EventLog:
    """Append-only notification log for external observers.

    Events emitted inside an operation that later fails are discarded by the
    pool (truncate to the mark taken at operation start).
    """

    def __init__(self, *, logger_name: str = "lumina.events") -> None:
        self._events: List[StakingEvent] = []
        self._seq = 0
        self._log = logging.getLogger(logger_name)

    def __len__(self) -> int:
        return len(self._events)

    def emit(self, name: str, /, *, at: int, stake_id: Optional[int] = None, **fields: Any) -> StakingEvent:
        self._seq += 1
        ev = StakingEvent(seq=self._seq, name=name, at=int(at), stake_id=stake_id, fields=dict(fields))
        self._events.append(ev)
        return ev

    def mark(self) -> int:
        return len(self._events)

    def truncate(self, mark: int) -> None:
        del self._events[mark:]
        self._seq = self._events[-1].seq if self._events else 0

    def publish_since(self, mark: int) -> None:
        """Write committed events to the structured log."""
        for ev in self._events[mark:]:
            log_event(self._log, ev.name, **{k: v for k, v in ev.to_json().items() if k != "name"})

    def since(self, seq: int = 0, *, limit: int = 100) -> List[StakingEvent]:
        out = [ev for ev in self._events if ev.seq > int(seq)]
        return out[: max(0, int(limit))]

    def for_stake(self, stake_id: int) -> List[StakingEvent]:
        return [ev for ev in self._events if ev.stake_id == stake_id]

    def names(self) -> List[str]:
        return [ev.name for ev in self._events]


__all__ = ["EventLog", "StakingEvent"]
