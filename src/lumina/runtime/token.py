# src/lumina/runtime/token.py
from __future__ import annotations

"""Fungible token collaborator boundary.

The staking pools never hold balances themselves; they move value through a
TokenLedger. InMemoryToken is the reference implementation used by the dev
service and the test-suite. Production deployments plug their own ledger in.
"""

import copy
from typing import Any, Dict, Protocol, Tuple

from lumina.runtime.errors import StakingError

Json = Dict[str, Any]


class TokenTransferError(StakingError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("transfer_failed", reason, details)


class TokenLedger(Protocol):
    def balance_of(self, address: str) -> int: ...

    def transfer(self, sender: str, to: str, amount: int) -> None: ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None: ...

    def approve(self, owner: str, spender: str, amount: int) -> None: ...


class InMemoryToken:
    def __init__(self, symbol: str = "LUMINA") -> None:
        self.symbol = symbol
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}

    def mint(self, to: str, amount: int) -> None:
        if int(amount) < 0:
            raise TokenTransferError("negative_amount", {"amount": amount})
        self._balances[to] = self._balances.get(to, 0) + int(amount)

    def balance_of(self, address: str) -> int:
        return self._balances.get(address, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if int(amount) < 0:
            raise TokenTransferError("negative_allowance", {"amount": amount})
        self._allowances[(owner, spender)] = int(amount)

    def _move(self, frm: str, to: str, amount: int) -> None:
        amt = int(amount)
        if amt < 0:
            raise TokenTransferError("negative_amount", {"amount": amount})
        bal = self._balances.get(frm, 0)
        if bal < amt:
            raise TokenTransferError("insufficient_balance", {"from": frm, "balance": bal, "amount": amt})
        self._balances[frm] = bal - amt
        self._balances[to] = self._balances.get(to, 0) + amt

    def transfer(self, sender: str, to: str, amount: int) -> None:
        self._move(sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        if spender != owner:
            allowed = self.allowance(owner, spender)
            if allowed < int(amount):
                raise TokenTransferError(
                    "insufficient_allowance",
                    {"owner": owner, "spender": spender, "allowance": allowed, "amount": int(amount)},
                )
            self._allowances[(owner, spender)] = allowed - int(amount)
        self._move(owner, to, amount)

    # ---- rollback support (used by the pool's atomic operation guard) ----

    def snapshot(self) -> Json:
        return {"balances": dict(self._balances), "allowances": copy.deepcopy(self._allowances)}

    def restore(self, snap: Json) -> None:
        self._balances = dict(snap["balances"])
        self._allowances = dict(snap["allowances"])

    def to_json(self) -> Json:
        return {
            "symbol": self.symbol,
            "balances": dict(sorted(self._balances.items())),
            "allowances": [[o, s, a] for (o, s), a in sorted(self._allowances.items())],
        }

    @classmethod
    def from_json(cls, d: Json) -> "InMemoryToken":
        tok = cls(str(d.get("symbol") or "LUMINA"))
        tok._balances = {str(k): int(v) for k, v in (d.get("balances") or {}).items()}
        tok._allowances = {(str(o), str(s)): int(a) for o, s, a in (d.get("allowances") or [])}
        return tok


__all__ = ["InMemoryToken", "TokenLedger", "TokenTransferError"]
