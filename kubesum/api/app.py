"""FastAPI application factory for kubesum.

Usage::

    from kubesum.api.app import create_app

    app = create_app(
        controller=controller,
        detector=detector,
        cluster=cluster,
        config=config,
    )

The factory is used by both the production bootstrap (``kubesum.app``) and
unit tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kubesum.api.routes import router
from kubesum.api.schemas import ErrorResponse

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def create_app(
    controller: Any,
    detector: Any = None,
    cluster: Any = None,
    config: Any = None,
) -> FastAPI:
    """Create and configure the kubesum FastAPI application.

    Args:
        controller: Controller instance (status, manual reconcile).
        detector:   Optional DriftDetector; ``/drift`` returns 503 without it.
        cluster:    ClusterClient used to list workloads for ``/drift``.
        config:     KubesumConfig. Supplies the watch scope for ``/drift``.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from kubesum import __version__

    app = FastAPI(
        title="kubesum",
        summary="Checksum-driven rollout controller for Secrets and ConfigMaps",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    app.state.controller = controller
    app.state.detector = detector
    app.state.cluster = cluster
    app.state.config = config

    app.include_router(router, prefix=_API_PREFIX)

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = exc.errors()
        first_msg = str(errors[0].get("msg", "")) if errors else ""
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_REQUEST", detail=first_msg).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app
