# src/lumina/runtime/pool_boot.py

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

from lumina.runtime.clock import Clock
from lumina.runtime.dispatch import apply_tx
from lumina.runtime.log_events import log_event
from lumina.runtime.permissioned import PermissionedPool
from lumina.runtime.permissionless import PermissionlessPool
from lumina.runtime.pool import StakingPool
from lumina.runtime.pool_config import PoolConfig, load_pool_config
from lumina.runtime.sqlite_db import SqliteDB, SqlitePoolStore
from lumina.runtime.token import InMemoryToken, TokenLedger

Json = Dict[str, Any]

_log = logging.getLogger("lumina.boot")

_POOL_CLASSES = {
    PermissionedPool.kind: PermissionedPool,
    PermissionlessPool.kind: PermissionlessPool,
}


def build_pool(cfg: PoolConfig, *, token: Optional[TokenLedger] = None, clock: Optional[Clock] = None) -> StakingPool:
    cls = _POOL_CLASSES.get(cfg.kind)
    if cls is None:
        raise ValueError(f"unknown pool kind: {cfg.kind!r}")
    return cls(cfg, token=token if token is not None else InMemoryToken(), clock=clock)


class PoolRuntime:
    """A pool plus its optional SQLite store.

    Transactions are applied one at a time under a lock; a committed
    transaction is persisted before the next one starts.
    """

    def __init__(self, pool: StakingPool, *, store: Optional[SqlitePoolStore] = None) -> None:
        self.pool = pool
        self.store = store
        self._lock = threading.Lock()

    def snapshot(self) -> Json:
        snap = self.pool.to_snapshot()
        to_json = getattr(self.pool.token, "to_json", None)
        if callable(to_json):
            snap["token"] = to_json()
        return snap

    def persist(self) -> None:
        if self.store is not None:
            self.store.write(self.snapshot())

    def read(self, fn: Callable[[StakingPool], Any]) -> Any:
        """Run a query against a consistent (not mid-transaction) pool."""
        with self._lock:
            return fn(self.pool)

    def submit(self, env: Any) -> Json:
        with self._lock:
            cp = self.pool.checkpoint()
            receipt = apply_tx(self.pool, env)
            try:
                self.persist()
            except Exception as e:
                # Memory must not run ahead of the store.
                self.pool.rollback(cp)
                log_event(_log, "persist_failed", kind=self.pool.kind, applied=receipt.get("applied"), error=str(e))
                raise
            return receipt


def build_runtime(
    cfg: Optional[PoolConfig] = None,
    *,
    token: Optional[TokenLedger] = None,
    clock: Optional[Clock] = None,
) -> PoolRuntime:
    """Build the pool from config (env when omitted) and restore any persisted snapshot."""
    c = cfg or load_pool_config()
    store = SqlitePoolStore(db=SqliteDB(path=c.db_path)) if c.db_path else None

    snap: Optional[Json] = store.read() if store is not None and store.exists() else None
    if token is None:
        token = InMemoryToken.from_json(snap["token"]) if snap and snap.get("token") else InMemoryToken()

    pool = build_pool(c, token=token, clock=clock)
    if snap is not None:
        pool.load_snapshot(snap)
        log_event(_log, "pool_restored", kind=pool.kind, db_path=c.db_path, stakes=len(pool.registry))
    else:
        log_event(_log, "pool_created", kind=pool.kind, db_path=c.db_path or None)

    rt = PoolRuntime(pool, store=store)
    if store is not None and snap is None:
        rt.persist()
    return rt


__all__ = ["PoolRuntime", "build_pool", "build_runtime"]
