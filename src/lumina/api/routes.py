# src/lumina/api/routes.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, Response

from lumina.api.errors import ApiError
from lumina.runtime.dispatch import supported_tx_types
from lumina.runtime.metrics import format_prometheus, metrics_enabled
from lumina.runtime.pool_boot import PoolRuntime

router = APIRouter()

Json = Dict[str, Any]


def _runtime(request: Request) -> PoolRuntime:
    rt = getattr(request.app.state, "runtime", None)
    if rt is None:
        raise ApiError.internal("not_ready", "pool runtime not attached to app.state", {})
    return rt


@router.post("/tx")
async def tx_submit(request: Request) -> Json:
    """Apply one tx envelope. Returns the receipt, or an error body on rejection."""
    rt = _runtime(request)
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise ApiError.bad_request("bad_request", "Body must be valid JSON", {})
    if not isinstance(body, dict):
        raise ApiError.bad_request("bad_request", "Body must be a tx envelope object", {})
    return rt.submit(body)


@router.get("/tx/types")
def tx_types() -> Json:
    return {"ok": True, "tx_types": supported_tx_types()}


@router.get("/pool")
def pool_info(request: Request) -> Json:
    return {"ok": True, "pool": _runtime(request).read(lambda p: p.pool_info())}


@router.get("/stakes/{stake_id}")
def stake_get(request: Request, stake_id: int) -> Json:
    return {"ok": True, "stake": _runtime(request).read(lambda p: p.stake_view(stake_id))}


@router.get("/stakes/{stake_id}/reward")
def stake_reward(request: Request, stake_id: int) -> Json:
    def _reward(p: Any) -> Json:
        out: Json = {"stake_id": stake_id, "unpaid_reward": p.unpaid_reward(stake_id)}
        if hasattr(p, "get_claimable"):
            out["claimable"] = p.get_claimable(stake_id)
        if hasattr(p, "get_reward_for_stake"):
            out["accrued_reward"] = p.get_reward_for_stake(stake_id)
        return out

    return {"ok": True, **_runtime(request).read(_reward)}


@router.get("/stakes/{stake_id}/split")
def stake_split(request: Request, stake_id: int) -> Json:
    def _split(p: Any) -> Json:
        st = p.get_stake(stake_id)
        return {
            "stake_id": stake_id,
            "split_bps": st.split_bps,
            "pending_split_bps": st.pending_split_bps,
            "pending_split_request_time": st.pending_split_request_time,
            "effective_split_bps": p.effective_split(stake_id),
        }

    return {"ok": True, **_runtime(request).read(_split)}


@router.get("/roles/{role}/{address}")
def stakes_for_role(request: Request, role: str, address: str) -> Json:
    ids = _runtime(request).read(lambda p: p.registry.ids_for_role(role, address))
    return {"ok": True, "role": role, "address": address, "stake_ids": ids}


@router.get("/events")
def events(request: Request, since: int = 0, limit: int = 100, stake_id: Optional[int] = None) -> Json:
    limit = max(1, min(int(limit), 1000))

    def _events(p: Any) -> list:
        if stake_id is not None:
            evs = [e for e in p.events.for_stake(stake_id) if e.seq > since][:limit]
        else:
            evs = p.events.since(since, limit=limit)
        return [e.to_json() for e in evs]

    return {"ok": True, "events": _runtime(request).read(_events)}


@router.get("/health")
def health(request: Request) -> Json:
    rt = getattr(request.app.state, "runtime", None)
    if rt is None:
        return {"ok": True, "ready": False}
    pool = rt.pool
    return {
        "ok": True,
        "ready": True,
        "kind": pool.kind,
        "stakes": len(pool.registry),
        "tokens_staked": pool.tokens_staked,
        "persistent": rt.store is not None,
    }


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus-style metrics. Disabled unless LUMINA_METRICS_ENABLED=1."""
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    return Response(content=format_prometheus(), media_type="text/plain")
