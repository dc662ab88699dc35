"""
Control server HTTP boundary.

Routes:
    GET    /               registry projection (id -> public view)
    POST   /bundle/{id}    store the request body as the archive for id, deploy, reconcile
    DELETE /bundle/{id}    remove archive and registry entry, reconcile

Any other path or method, including an id that is not a ULID, answers 404.
Failures answer 500 with ``{"error": kind, "message": text}``.

Usage:
    from launch_bundles.server import create_app

    app = create_app(Operations(settings))
"""
from __future__ import annotations

import logging
import tempfile
from contextlib import asynccontextmanager
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import LaunchError
from .models import parse_bundle_id
from .operations import Operations, error_body
from .settings import Settings

logger = logging.getLogger(__name__)

# Upload bodies larger than this spill from memory to disk
SPOOL_MAX_SIZE = 8 * 1024 * 1024

__all__ = ["create_app", "run_server"]


def create_app(ops: Operations) -> FastAPI:
    """
    Create the FastAPI application around an Operations facade.

    The app's lifespan runs ``ops.startup()`` (load stored bundles, first
    reconciliation) and ``ops.close()`` (release extraction directories).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(ops.startup)
        try:
            yield
        finally:
            await run_in_threadpool(ops.close)

    app = FastAPI(
        title="Launch Control Server",
        description="Deploys static-site bundles behind Caddy",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.ops = ops

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Unknown routes and wrong methods are both plain 404s
        if exc.status_code in (404, 405):
            return JSONResponse(status_code=404, content={"error": "not_found", "message": "Not Found"})
        return JSONResponse(status_code=exc.status_code, content={"error": "http", "message": str(exc.detail)})

    async def error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content=error_body(exc))

    for exc_class in (LaunchError, OSError, ValueError, Exception):
        app.add_exception_handler(exc_class, error_handler)

    @app.get("/")
    def list_bundles() -> Dict[str, Any]:
        return {
            bundle_id: view.model_dump(mode="json")
            for bundle_id, view in ops.list_bundles().items()
        }

    @app.post("/bundle/{bundle_id}")
    async def upload_bundle(bundle_id: str, request: Request) -> Dict[str, Any]:
        parsed = _route_id(bundle_id)

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as spool:
            # Past SPOOL_MAX_SIZE the spool is a disk file; keep its writes off the event loop
            async for chunk in request.stream():
                await run_in_threadpool(spool.write, chunk)
            spool.seek(0)
            view = await run_in_threadpool(ops.upload, parsed, spool)

        return view.model_dump(mode="json")

    @app.delete("/bundle/{bundle_id}")
    def delete_bundle(bundle_id: str) -> Dict[str, str]:
        parsed = _route_id(bundle_id)
        ops.delete(parsed)
        return {"deleted": str(parsed)}

    return app


def _route_id(value: str):
    try:
        return parse_bundle_id(value)
    except ValueError:
        raise StarletteHTTPException(status_code=404)


def run_server(settings: Settings) -> None:
    """Serve the control API on all interfaces at ``settings.port``."""
    app = create_app(Operations(settings))
    logger.info(f"Starting control server on port {settings.port} (storage: {settings.storage_dir})")
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())
