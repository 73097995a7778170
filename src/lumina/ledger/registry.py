# src/lumina/ledger/registry.py
from __future__ import annotations

from typing import Any, Dict, Iterator, List

from lumina.ledger.constants import BPS_DENOMINATOR, INVALID_ADDRESSES
from lumina.ledger.types import Stake
from lumina.runtime.errors import AuthorizationError, BoundsError, InvariantViolation, NotFoundError

Json = Dict[str, Any]

ROLES = ("beneficiary", "payout_wallet", "unstaker")


def normalize_address(v: Any) -> str:
    return str(v).strip() if isinstance(v, str) else ""


def is_valid_address(v: Any) -> bool:
    a = normalize_address(v)
    return bool(a) and a.lower() not in INVALID_ADDRESSES


def require_address(v: Any, *, field: str) -> str:
    a = normalize_address(v)
    if not is_valid_address(a):
        raise BoundsError("invalid_address", {"field": field, "value": v})
    return a


def require_bps(v: Any, *, field: str) -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise BoundsError("bps_not_int", {"field": field, "value": v})
    if v < 0 or v > BPS_DENOMINATOR:
        raise BoundsError("bps_out_of_range", {"field": field, "value": v, "max": BPS_DENOMINATOR})
    return v


def _index_add(index: Dict[str, List[int]], key: str, stake_id: int) -> None:
    index.setdefault(key, []).append(stake_id)


def _index_remove(index: Dict[str, List[int]], key: str, stake_id: int) -> None:
    """Swap-with-last-and-pop; order inside a key's list is not preserved."""
    ids = index.get(key)
    if not ids or stake_id not in ids:
        raise InvariantViolation("index_entry_missing", {"key": key, "stake_id": stake_id})
    i = ids.index(stake_id)
    ids[i] = ids[-1]
    ids.pop()
    if not ids:
        del index[key]


class StakeRegistry:
    """Canonical stake store keyed by monotonically increasing integer ids.

    Maintains reverse indices by beneficiary, principal payout wallet and
    principal unstaker. Stakes are never deleted.
    """

    def __init__(self) -> None:
        self._stakes: Dict[int, Stake] = {}
        self._next_id: int = 1
        self._by_beneficiary: Dict[str, List[int]] = {}
        self._by_payout_wallet: Dict[str, List[int]] = {}
        self._by_unstaker: Dict[str, List[int]] = {}

    def __len__(self) -> int:
        return len(self._stakes)

    def __iter__(self) -> Iterator[Stake]:
        for stake_id in sorted(self._stakes):
            yield self._stakes[stake_id]

    def __contains__(self, stake_id: object) -> bool:
        return stake_id in self._stakes

    @property
    def next_id(self) -> int:
        return self._next_id

    def get(self, stake_id: Any) -> Stake:
        if isinstance(stake_id, bool) or not isinstance(stake_id, int):
            raise BoundsError("stake_id_not_int", {"stake_id": stake_id})
        st = self._stakes.get(stake_id)
        if st is None:
            raise NotFoundError("stake_not_found", {"stake_id": stake_id})
        return st

    def create(self, *, caller: str, beneficiary: str, amount: int, split_bps: int, now: int) -> Stake:
        """Create a record. Amount floors/caps are checked by the pool."""
        caller_a = require_address(caller, field="caller")
        beneficiary_a = require_address(beneficiary, field="beneficiary")
        bps = require_bps(split_bps, field="split_bps")

        stake_id = self._next_id
        self._next_id += 1

        st = Stake(
            id=stake_id,
            beneficiary=beneficiary_a,
            principal_payout_wallet=caller_a,
            principal_unstaker=caller_a,
            principal=int(amount),
            split_bps=bps,
            pending_split_bps=bps,
            pending_split_request_time=0,
            start_time=int(now),
            unstake_request_time=0,
        )
        self._stakes[stake_id] = st

        _index_add(self._by_beneficiary, st.beneficiary, stake_id)
        _index_add(self._by_payout_wallet, st.principal_payout_wallet, stake_id)
        _index_add(self._by_unstaker, st.principal_unstaker, stake_id)
        return st

    def reassign_payout_wallet(self, stake_id: int, *, caller: str, new_wallet: str) -> str:
        st = self.get(stake_id)
        if normalize_address(caller) != st.principal_unstaker:
            raise AuthorizationError("principal_unstaker_required", {"stake_id": stake_id, "caller": caller})
        new_a = require_address(new_wallet, field="new_wallet")

        old = st.principal_payout_wallet
        _index_remove(self._by_payout_wallet, old, stake_id)
        st.principal_payout_wallet = new_a
        _index_add(self._by_payout_wallet, new_a, stake_id)
        return old

    def reassign_unstaker(self, stake_id: int, *, caller: str, new_unstaker: str) -> str:
        st = self.get(stake_id)
        if normalize_address(caller) != st.principal_unstaker:
            raise AuthorizationError("principal_unstaker_required", {"stake_id": stake_id, "caller": caller})
        new_a = require_address(new_unstaker, field="new_unstaker")

        old = st.principal_unstaker
        _index_remove(self._by_unstaker, old, stake_id)
        st.principal_unstaker = new_a
        _index_add(self._by_unstaker, new_a, stake_id)
        return old

    # ---- queries ----

    def ids_for_beneficiary(self, address: str) -> List[int]:
        return list(self._by_beneficiary.get(normalize_address(address), []))

    def ids_for_payout_wallet(self, address: str) -> List[int]:
        return list(self._by_payout_wallet.get(normalize_address(address), []))

    def ids_for_unstaker(self, address: str) -> List[int]:
        return list(self._by_unstaker.get(normalize_address(address), []))

    def ids_for_role(self, role: str, address: str) -> List[int]:
        r = str(role or "").strip().lower()
        if r == "beneficiary":
            return self.ids_for_beneficiary(address)
        if r == "payout_wallet":
            return self.ids_for_payout_wallet(address)
        if r == "unstaker":
            return self.ids_for_unstaker(address)
        raise BoundsError("unknown_role", {"role": role, "allowed": list(ROLES)})

    def total_principal(self) -> int:
        return sum(st.principal for st in self._stakes.values())

    def verify_indices(self) -> None:
        """Raise InvariantViolation unless every index matches the records exactly."""
        for name, index, attr in (
            ("by_beneficiary", self._by_beneficiary, "beneficiary"),
            ("by_payout_wallet", self._by_payout_wallet, "principal_payout_wallet"),
            ("by_unstaker", self._by_unstaker, "principal_unstaker"),
        ):
            expected: Dict[str, List[int]] = {}
            for st in self._stakes.values():
                expected.setdefault(getattr(st, attr), []).append(st.id)
            actual = {k: sorted(v) for k, v in index.items()}
            if actual != {k: sorted(v) for k, v in expected.items()}:
                raise InvariantViolation("reverse_index_mismatch", {"index": name})

    # ---- snapshot ----

    def to_json(self) -> Json:
        return {
            "next_id": self._next_id,
            "stakes": [list(st.to_record()) for st in self],
        }

    @classmethod
    def from_json(cls, d: Json) -> "StakeRegistry":
        reg = cls()
        for rec in d.get("stakes") or []:
            st = Stake.from_record(rec)
            reg._stakes[st.id] = st
            _index_add(reg._by_beneficiary, st.beneficiary, st.id)
            _index_add(reg._by_payout_wallet, st.principal_payout_wallet, st.id)
            _index_add(reg._by_unstaker, st.principal_unstaker, st.id)
        top = max(reg._stakes) if reg._stakes else 0
        reg._next_id = max(int(d.get("next_id", 1) or 1), top + 1)
        return reg


__all__ = [
    "ROLES",
    "StakeRegistry",
    "is_valid_address",
    "normalize_address",
    "require_address",
    "require_bps",
]
