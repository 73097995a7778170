from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "lumina" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Config/env knobs read at pool or app construction.
    for name in (
        "LUMINA_POOL_CONFIG_PATH",
        "LUMINA_POOL_KIND",
        "LUMINA_DB_PATH",
        "LUMINA_ADMIN",
        "LUMINA_METRICS_ENABLED",
        "LUMINA_MAX_REQUEST_BYTES",
        "LUMINA_SIZE_LIMIT_DISABLE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LUMINA_CHECK_INVARIANTS", "1")
    monkeypatch.setenv("LUMINA_MODE", "dev")
