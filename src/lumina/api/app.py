from __future__ import annotations

import logging
import os
from typing import Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lumina.api.errors import ApiError
from lumina.api.routes import router
from lumina.api.security import RequestSizeLimitMiddleware
from lumina.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from lumina.runtime.errors import StakingError
from lumina.runtime.log_events import log_event
from lumina.runtime.pool import StakingPool
from lumina.runtime.pool_boot import PoolRuntime
from lumina.runtime.pool_boot import build_runtime as _build_runtime

_log = logging.getLogger("lumina.api")


def build_runtime() -> PoolRuntime:
    """Build the pool runtime from env config.

    Wrapper so tests can monkeypatch `lumina.api.app.build_runtime`.
    """
    return _build_runtime()


def _error_response(err: ApiError) -> JSONResponse:
    return JSONResponse(status_code=err.status_code, content=err.to_json())


def create_app(pool: Optional[Union[StakingPool, PoolRuntime]] = None, *, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    pool:
      - a StakingPool or PoolRuntime to serve directly (tests, embedding)
    boot_runtime:
      - True (default): build the runtime from env config when `pool` is None
      - False: no runtime attached; only /v1/health answers usefully
    """
    mode = os.environ.get("LUMINA_MODE", "prod").strip().lower()

    if mode == "prod":
        app = FastAPI(title="Lumina Staking API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="Lumina Staking API")

    if isinstance(pool, StakingPool):
        app.state.runtime = PoolRuntime(pool)
    elif pool is not None:
        app.state.runtime = pool
    elif boot_runtime:
        app.state.runtime = build_runtime()
    else:
        app.state.runtime = None

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return _error_response(exc)

    @app.exception_handler(StakingError)
    async def _staking_error(request: Request, exc: StakingError) -> JSONResponse:
        err = ApiError.from_staking_error(exc)
        if err.status_code >= 500:
            log_event(_log, "staking_internal_error", code=exc.code, reason=exc.reason, path=request.url.path)
        return _error_response(err)

    # Size limiter first so oversized bodies fail fast; request log wraps everything.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    app.include_router(router, prefix="/v1")
    return app


def create_app_from_env() -> FastAPI:
    """uvicorn factory entry point (`uvicorn --factory lumina.api.app:create_app_from_env`)."""
    configure_structured_logging()
    return create_app()
