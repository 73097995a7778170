from __future__ import annotations

import json
from pathlib import Path

import pytest

from lumina.ledger.constants import SECONDS_IN_DAY
from lumina.runtime.pool_config import load_pool_config, pool_config_from_dict, read_pool_config_file


def test_defaults_when_no_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LUMINA_POOL_KIND", "permissioned")
    cfg = load_pool_config()
    assert cfg.kind == "permissioned"
    assert cfg.unstaking_duration == 7 * SECONDS_IN_DAY
    assert cfg.db_path == ""


def test_reads_yaml_and_json(tmp_path: Path) -> None:
    y = tmp_path / "pool.yaml"
    y.write_text("kind: permissionless\nadmin: ops\nwithdrawal_cap_bps: 500\n", encoding="utf-8")
    cfg = read_pool_config_file(str(y))
    assert cfg.admin == "ops"
    assert cfg.withdrawal_cap_bps == 500

    j = tmp_path / "pool.json"
    j.write_text(json.dumps({"kind": "permissioned", "reward_rate_per_day_bps": 150}), encoding="utf-8")
    assert read_pool_config_file(str(j)).reward_rate_per_day_bps == 150


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / "pool.json"
    p.write_text(json.dumps({"kind": "permissionless", "admin": "ops"}), encoding="utf-8")
    monkeypatch.setenv("LUMINA_POOL_CONFIG_PATH", str(p))
    monkeypatch.setenv("LUMINA_ADMIN", "root")
    monkeypatch.setenv("LUMINA_DB_PATH", str(tmp_path / "pool.db"))

    cfg = load_pool_config()
    assert cfg.admin == "root"
    assert cfg.db_path.endswith("pool.db")


@pytest.mark.parametrize(
    "raw",
    [
        {"kind": "custodial"},
        {"unstaking_duration": 21 * SECONDS_IN_DAY},
        {"reward_rate_per_day_bps": 2001},
        {"withdrawal_cap_bps": 10_001},
        {"minimum_stake": 10, "staking_limit": 5},
    ],
)
def test_invalid_config_fails_fast(raw: dict) -> None:
    with pytest.raises(ValueError):
        pool_config_from_dict(raw)
