from __future__ import annotations

import pytest

from lumina.ledger.registry import StakeRegistry
from lumina.ledger.types import STAKE_FIELDS, Stake
from lumina.runtime.errors import AuthorizationError, BoundsError, NotFoundError

T0 = 1_700_000_000


def _registry_with(n: int) -> StakeRegistry:
    reg = StakeRegistry()
    for i in range(n):
        reg.create(caller="alice", beneficiary=f"b{i % 2}", amount=10, split_bps=0, now=T0)
    return reg


def test_ids_are_monotonic_and_start_at_one() -> None:
    reg = _registry_with(3)
    assert [st.id for st in reg] == [1, 2, 3]
    assert reg.next_id == 4


def test_create_sets_caller_as_payout_wallet_and_unstaker() -> None:
    reg = StakeRegistry()
    st = reg.create(caller="alice", beneficiary="bob", amount=5, split_bps=2500, now=T0)
    assert st.beneficiary == "bob"
    assert st.principal_payout_wallet == "alice"
    assert st.principal_unstaker == "alice"
    assert st.split_bps == 2500
    assert st.pending_split_bps == 2500
    assert st.start_time == T0
    assert st.status == "active"
    assert reg.ids_for_beneficiary("bob") == [1]
    assert reg.ids_for_payout_wallet("alice") == [1]
    assert reg.ids_for_unstaker("alice") == [1]


def test_create_rejects_invalid_addresses_and_bps() -> None:
    reg = StakeRegistry()
    with pytest.raises(BoundsError) as ei:
        reg.create(caller="alice", beneficiary="0x" + "0" * 40, amount=1, split_bps=0, now=T0)
    assert ei.value.reason == "invalid_address"

    with pytest.raises(BoundsError) as ei:
        reg.create(caller="alice", beneficiary="bob", amount=1, split_bps=10_001, now=T0)
    assert ei.value.reason == "bps_out_of_range"
    assert len(reg) == 0


def test_get_unknown_id_is_not_found() -> None:
    reg = _registry_with(1)
    with pytest.raises(NotFoundError):
        reg.get(99)
    with pytest.raises(BoundsError):
        reg.get("1")


def test_reassign_payout_wallet_moves_reverse_index() -> None:
    reg = _registry_with(3)
    old = reg.reassign_payout_wallet(2, caller="alice", new_wallet="carol")
    assert old == "alice"
    assert sorted(reg.ids_for_payout_wallet("alice")) == [1, 3]
    assert reg.ids_for_payout_wallet("carol") == [2]
    reg.verify_indices()


def test_reassign_requires_principal_unstaker() -> None:
    reg = _registry_with(1)
    with pytest.raises(AuthorizationError):
        reg.reassign_unstaker(1, caller="b0", new_unstaker="mallory")

    reg.reassign_unstaker(1, caller="alice", new_unstaker="dave")
    # Old unstaker lost the right; the new one has it.
    with pytest.raises(AuthorizationError):
        reg.reassign_payout_wallet(1, caller="alice", new_wallet="x")
    reg.reassign_payout_wallet(1, caller="dave", new_wallet="x")
    assert reg.ids_for_unstaker("alice") == []
    assert reg.ids_for_role("unstaker", "dave") == [1]


def test_unknown_role_is_rejected() -> None:
    reg = _registry_with(1)
    with pytest.raises(BoundsError):
        reg.ids_for_role("owner", "alice")


def test_snapshot_rebuilds_indices_and_positional_records() -> None:
    reg = _registry_with(2)
    reg.reassign_payout_wallet(1, caller="alice", new_wallet="carol")
    snap = reg.to_json()

    assert all(len(rec) == len(STAKE_FIELDS) for rec in snap["stakes"])
    again = StakeRegistry.from_json(snap)
    assert again.next_id == 3
    assert again.ids_for_payout_wallet("carol") == [1]
    assert again.get(2) == reg.get(2)
    again.verify_indices()


def test_stake_record_rejects_wrong_arity() -> None:
    with pytest.raises(ValueError):
        Stake.from_record([1, "a", "b"])
