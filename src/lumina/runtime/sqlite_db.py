# src/lumina/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List

from lumina.ledger.types import STAKE_FIELDS

Json = Dict[str, Any]

# Token amounts exceed SQLite's 64-bit INTEGER range, so they are stored as TEXT.
_TEXT_INT_FIELDS = frozenset({"principal", "paid_out_reward", "pool_shares"})

_STAKE_COLUMN_TYPES: Dict[str, str] = {
    name: (
        "INTEGER PRIMARY KEY"
        if name == "id"
        else "TEXT NOT NULL"
        if name in _TEXT_INT_FIELDS or name in {"beneficiary", "principal_payout_wallet", "principal_unstaker"}
        else "INTEGER NOT NULL"
    )
    for name in STAKE_FIELDS
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    # No default=str: non-JSON types leaking into persisted state must fail fast.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite manager for the pool runtime.

    SQLite allows only one writer at a time. Under multi-process workloads
    BEGIN IMMEDIATE can transiently fail with "database is locked", so
    write_tx() retries with bounded backoff.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """FULL in prod, NORMAL otherwise. Override with LUMINA_SQLITE_SYNCHRONOUS."""
        mode = (os.environ.get("LUMINA_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("LUMINA_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()
        connect_timeout_s = float(_env_int("LUMINA_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        if mode and mode != "wal":
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("LUMINA_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")
        return con

    def init_schema(self) -> None:
        cols = ",\n".join(f"  {name} {_STAKE_COLUMN_TYPES[name]}" for name in STAKE_FIELDS)
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            con.execute(f"CREATE TABLE IF NOT EXISTS stakes (\n{cols}\n);")
            con.execute("CREATE INDEX IF NOT EXISTS idx_stakes_beneficiary ON stakes(beneficiary);")
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS pool_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  kind TEXT NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    def _backoff(self, attempt: int) -> None:
        base_sleep = max(0.001, float(_env_int("LUMINA_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("LUMINA_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)
        sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
        time.sleep(sleep_s * (0.5 + random.random()))

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Write transaction with bounded retry on writer-lock contention.

        Retries BEGIN IMMEDIATE and COMMIT with jittered exponential backoff
        until LUMINA_SQLITE_WRITE_DEADLINE_MS, then raises.
        """
        deadline_ts = _now_ms() + max(250, _env_int("LUMINA_SQLITE_WRITE_DEADLINE_MS", 30_000))

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    self._backoff(attempt)
                    attempt += 1

            try:
                yield con
                c_attempt = 0
                while True:
                    try:
                        con.execute("COMMIT;")
                        break
                    except sqlite3.OperationalError as e:
                        if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                            raise
                        self._backoff(c_attempt)
                        c_attempt += 1
            except Exception:
                con.execute("ROLLBACK;")
                raise


def _row_to_record(row: sqlite3.Row) -> List[Any]:
    return [int(row[name]) if name in _TEXT_INT_FIELDS else row[name] for name in STAKE_FIELDS]


def _record_to_row(rec: List[Any]) -> List[Any]:
    return [str(int(v)) if name in _TEXT_INT_FIELDS else v for name, v in zip(STAKE_FIELDS, rec)]


class SqlitePoolStore:
    """Pool snapshot store.

    Stakes live one row each in STAKE_FIELDS order. Everything else in the
    snapshot (aggregates, model state, params, throttle, whitelist, token) is a
    single JSON row. write() replaces both inside one transaction.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM pool_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM pool_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite pool_state is missing")
            snap = json.loads(str(row["state_json"]))
            if not isinstance(snap, dict):
                raise ValueError("pool_state is not a JSON object")
            cols = ", ".join(STAKE_FIELDS)
            rows = con.execute(f"SELECT {cols} FROM stakes ORDER BY id;").fetchall()

        registry = dict(snap.get("registry") or {})
        registry["stakes"] = [_row_to_record(r) for r in rows]
        snap["registry"] = registry
        return snap

    def write(self, snap: Json) -> None:
        if not isinstance(snap, dict):
            raise ValueError("pool write expects dict")
        registry = dict(snap.get("registry") or {})
        records = list(registry.pop("stakes", []) or [])
        rest = dict(snap)
        rest["registry"] = registry

        cols = ", ".join(STAKE_FIELDS)
        marks = ", ".join("?" for _ in STAKE_FIELDS)
        with self._db.write_tx() as con:
            con.execute("DELETE FROM stakes;")
            con.executemany(
                f"INSERT INTO stakes({cols}) VALUES({marks});",
                [_record_to_row(list(rec)) for rec in records],
            )
            con.execute(
                """
                INSERT INTO pool_state(id, kind, state_json, updated_ts_ms)
                VALUES(1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  kind=excluded.kind,
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (str(snap.get("kind") or ""), _canon_json(rest), _now_ms()),
            )


__all__ = ["SqliteDB", "SqlitePoolStore"]
