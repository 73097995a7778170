# src/lumina/runtime/pool_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from lumina.ledger.constants import (
    BPS_DENOMINATOR,
    DEFAULT_DAILY_WITHDRAWAL_THRESHOLD,
    DEFAULT_MINIMUM_STAKE,
    DEFAULT_REWARD_RATE_PER_DAY_BPS,
    DEFAULT_STAKING_LIMIT,
    DEFAULT_UNSTAKING_DURATION,
    DEFAULT_WITHDRAWAL_CAP_BPS,
    MAX_REWARD_RATE_PER_DAY_BPS,
    MAX_UNSTAKING_DURATION,
    MIN_UNSTAKING_DURATION,
    POOL_KINDS,
)

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    if v is None or isinstance(v, bool):
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class PoolConfig:
    kind: str  # "permissioned" | "permissionless"
    admin: str
    address: str

    minimum_stake: int
    unstaking_duration: int

    # permissioned (linear model)
    reward_rate_per_day_bps: int
    rewards_wallet: str

    # permissionless (pool-share model)
    staking_limit: int
    withdrawal_cap_bps: int
    daily_withdrawal_threshold: int
    enforce_withdrawal_cap: bool

    require_reward_claimed_before_request: bool

    db_path: str
    log_level: str


def validate_pool_config(cfg: PoolConfig) -> None:
    """Fail-fast validation for operator config."""

    kind = str(cfg.kind or "").strip().lower()
    if kind not in POOL_KINDS:
        raise ValueError(f"kind must be one of {POOL_KINDS}; got: {cfg.kind!r}")

    if not isinstance(cfg.admin, str) or not cfg.admin.strip():
        raise ValueError("admin must be a non-empty string")

    if not isinstance(cfg.address, str) or not cfg.address.strip():
        raise ValueError("address must be a non-empty string")

    if int(cfg.minimum_stake) <= 0:
        raise ValueError(f"minimum_stake must be > 0; got: {cfg.minimum_stake}")

    if not MIN_UNSTAKING_DURATION <= int(cfg.unstaking_duration) <= MAX_UNSTAKING_DURATION:
        raise ValueError(
            f"unstaking_duration must be {MIN_UNSTAKING_DURATION}..{MAX_UNSTAKING_DURATION} seconds; "
            f"got: {cfg.unstaking_duration}"
        )

    if not 0 <= int(cfg.reward_rate_per_day_bps) <= MAX_REWARD_RATE_PER_DAY_BPS:
        raise ValueError(
            f"reward_rate_per_day_bps must be 0..{MAX_REWARD_RATE_PER_DAY_BPS}; got: {cfg.reward_rate_per_day_bps}"
        )

    if not 0 <= int(cfg.withdrawal_cap_bps) <= BPS_DENOMINATOR:
        raise ValueError(f"withdrawal_cap_bps must be 0..{BPS_DENOMINATOR}; got: {cfg.withdrawal_cap_bps}")

    if int(cfg.daily_withdrawal_threshold) < 0:
        raise ValueError(f"daily_withdrawal_threshold must be >= 0; got: {cfg.daily_withdrawal_threshold}")

    if int(cfg.staking_limit) < int(cfg.minimum_stake):
        raise ValueError(f"staking_limit must be >= minimum_stake; got: {cfg.staking_limit}")

    if not isinstance(cfg.db_path, str):
        raise ValueError("db_path must be a string (empty disables persistence)")


def default_pool_config(kind: str = "permissionless") -> PoolConfig:
    return PoolConfig(
        kind=kind,
        admin="admin",
        address=f"pool:{kind}",
        minimum_stake=DEFAULT_MINIMUM_STAKE,
        unstaking_duration=DEFAULT_UNSTAKING_DURATION,
        reward_rate_per_day_bps=DEFAULT_REWARD_RATE_PER_DAY_BPS,
        rewards_wallet="",
        staking_limit=DEFAULT_STAKING_LIMIT,
        withdrawal_cap_bps=DEFAULT_WITHDRAWAL_CAP_BPS,
        daily_withdrawal_threshold=DEFAULT_DAILY_WITHDRAWAL_THRESHOLD,
        enforce_withdrawal_cap=True,
        require_reward_claimed_before_request=False,
        db_path="",
        log_level="INFO",
    )


def pool_config_from_dict(raw: Json) -> PoolConfig:
    if not isinstance(raw, dict):
        raise ValueError("pool config must be a mapping")

    kind = _as_str(raw.get("kind"), "permissionless").strip().lower()
    d = default_pool_config(kind)

    cfg = PoolConfig(
        kind=kind,
        admin=_as_str(raw.get("admin"), d.admin),
        address=_as_str(raw.get("address"), d.address),
        minimum_stake=_as_int(raw.get("minimum_stake"), d.minimum_stake),
        unstaking_duration=_as_int(raw.get("unstaking_duration"), d.unstaking_duration),
        reward_rate_per_day_bps=_as_int(raw.get("reward_rate_per_day_bps"), d.reward_rate_per_day_bps),
        rewards_wallet=str(raw.get("rewards_wallet") or d.rewards_wallet),
        staking_limit=_as_int(raw.get("staking_limit"), d.staking_limit),
        withdrawal_cap_bps=_as_int(raw.get("withdrawal_cap_bps"), d.withdrawal_cap_bps),
        daily_withdrawal_threshold=_as_int(raw.get("daily_withdrawal_threshold"), d.daily_withdrawal_threshold),
        enforce_withdrawal_cap=_as_bool(raw.get("enforce_withdrawal_cap"), d.enforce_withdrawal_cap),
        require_reward_claimed_before_request=_as_bool(
            raw.get("require_reward_claimed_before_request"), d.require_reward_claimed_before_request
        ),
        db_path=str(raw.get("db_path") or d.db_path),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )

    validate_pool_config(cfg)
    return cfg


def read_pool_config_file(path: str) -> PoolConfig:
    """Read a JSON or YAML pool config (by file suffix)."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("pool config must be a JSON/YAML object")
    return pool_config_from_dict(raw)


def load_pool_config(*, config_path: Optional[str] = None) -> PoolConfig:
    p = config_path or os.environ.get("LUMINA_POOL_CONFIG_PATH")
    if p:
        cfg = read_pool_config_file(p)
    else:
        kind = (os.environ.get("LUMINA_POOL_KIND") or "permissionless").strip().lower()
        cfg = default_pool_config(kind)

    # Env overrides for deploy-time wiring.
    db_path = os.environ.get("LUMINA_DB_PATH")
    if db_path is not None:
        cfg = replace(cfg, db_path=db_path)
    admin = os.environ.get("LUMINA_ADMIN")
    if admin:
        cfg = replace(cfg, admin=admin.strip())

    validate_pool_config(cfg)
    return cfg


__all__ = [
    "PoolConfig",
    "default_pool_config",
    "load_pool_config",
    "pool_config_from_dict",
    "read_pool_config_file",
    "validate_pool_config",
]
