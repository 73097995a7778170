# src/lumina/runtime/dispatch.py
from __future__ import annotations

from typing import Any, Callable, Dict

from lumina.runtime.errors import BoundsError, StakingError
from lumina.runtime.pool import StakingPool
from lumina.runtime.tx_schema import validate_payload
from lumina.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]
HandlerFn = Callable[[StakingPool, TxEnvelope, Any], Any]

# PARAMS_SET name -> pool setter. Availability depends on the pool kind.
PARAM_SETTERS: Dict[str, str] = {
    "unstaking_duration": "set_unstaking_duration",
    "minimum_stake": "set_minimum_stake",
    "require_reward_claimed_before_request": "set_require_reward_claimed_before_request",
    "reward_rate_per_day": "set_reward_rate_per_day",
    "rewards_wallet": "set_rewards_wallet",
    "staking_limit": "set_staking_limit",
    "withdrawal_cap_bps": "set_withdrawal_cap_bps",
    "daily_withdrawal_threshold": "set_daily_withdrawal_threshold",
    "enforce_withdrawal_cap": "set_enforce_withdrawal_cap",
}


def _result_json(v: Any) -> Any:
    to_json = getattr(v, "to_json", None)
    return to_json() if callable(to_json) else v


def _pool_method(pool: StakingPool, name: str, tx_type: str) -> Callable[..., Any]:
    fn = getattr(pool, name, None)
    if not callable(fn):
        raise StakingError(
            "tx_unimplemented", "tx_type_not_supported_by_pool", {"tx_type": tx_type, "pool_kind": pool.kind}
        )
    return fn


def _apply_params_set(pool: StakingPool, env: TxEnvelope, p: Any) -> Any:
    setter = PARAM_SETTERS.get(p.name)
    if setter is None or not callable(getattr(pool, setter, None)):
        raise BoundsError("unknown_param", {"name": p.name, "pool_kind": pool.kind})
    old = getattr(pool, setter)(env.signer, p.value)
    return {"name": p.name, "old": old, "new": p.value}


_HANDLERS: Dict[str, HandlerFn] = {
    "STAKE": lambda pool, env, p: {"stake_id": pool.stake(env.signer, p.amount, p.split_bps)},
    "STAKE_FOR_ADDRESS": lambda pool, env, p: {
        "stake_id": pool.stake_for_address(env.signer, p.beneficiary, p.amount, p.split_bps)
    },
    "UNSTAKE_REQUEST": lambda pool, env, p: {"unlock_at": pool.request_unstake(env.signer, p.stake_id)},
    "UNSTAKE": lambda pool, env, p: pool.unstake(env.signer, p.stake_id, p.amount),
    "CLAIM": lambda pool, env, p: _pool_method(pool, "claim", env.tx_type)(env.signer, p.stake_id),
    "SPLIT_UPDATE_REQUEST": lambda pool, env, p: pool.request_split_update(env.signer, p.stake_id, p.new_bps),
    "PAYOUT_WALLET_REASSIGN": lambda pool, env, p: {
        "old": pool.reassign_payout_wallet(env.signer, p.stake_id, p.new_wallet)
    },
    "UNSTAKER_REASSIGN": lambda pool, env, p: {"old": pool.reassign_unstaker(env.signer, p.stake_id, p.new_unstaker)},
    "REWARD_ADD": lambda pool, env, p: {
        "total_pool_size": _pool_method(pool, "add_reward_to_pool", env.tx_type)(env.signer, p.amount)
    },
    "EMERGENCY_WITHDRAW": lambda pool, env, p: {
        "released": pool.emergency_withdraw_principal(env.signer, p.stake_id)
    },
    "WHITELIST_ADD": lambda pool, env, p: {
        "changed": _pool_method(pool, "add_whitelisted", env.tx_type)(env.signer, p.address)
    },
    "WHITELIST_REMOVE": lambda pool, env, p: {
        "changed": _pool_method(pool, "remove_whitelisted", env.tx_type)(env.signer, p.address)
    },
    "UNALLOCATED_REWARD_RELEASE": lambda pool, env, p: {
        "released": _pool_method(pool, "release_unallocated_reward", env.tx_type)(env.signer, p.to)
    },
    "PARAMS_SET": _apply_params_set,
}


def supported_tx_types() -> list[str]:
    return sorted(_HANDLERS)


def apply_tx(pool: StakingPool, env: Any) -> Json:
    """Validate and apply one envelope. Returns a receipt; raises StakingError on rejection."""

    env_norm = TxEnvelope.from_json(env)
    t = env_norm.tx_type
    if not t:
        raise BoundsError("missing_tx_type", {"tx_type": t})
    if not env_norm.signer:
        raise BoundsError("missing_signer", {"tx_type": t})

    fn = _HANDLERS.get(t)
    if fn is None:
        raise StakingError("tx_unimplemented", "tx_type_not_implemented", {"tx_type": t})

    payload = validate_payload(t, env_norm.payload)
    out = fn(pool, env_norm, payload)
    return {"ok": True, "applied": t, "result": _result_json(out)}


__all__ = ["PARAM_SETTERS", "apply_tx", "supported_tx_types"]
