"""Route handlers for the kubesum REST API.

All dependencies come from ``request.app.state`` (populated by create_app).
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kubesum.api.schemas import (
    DriftResponse,
    ErrorResponse,
    HealthResponse,
    ReconcileAccepted,
    StatusResponse,
)
from kubesum.models.workloads import WorkloadKind, WorkloadRef
from kubesum.observability.logging import get_logger

_log = get_logger("api.routes")

router = APIRouter()


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, detail=detail).model_dump())


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    from kubesum import __version__

    controller = request.app.state.controller
    return HealthResponse(
        status="ok" if controller.running else "starting",
        version=__version__,
        tracked_workloads=len(controller.state),
        queue_depth=controller.queue.depth,
    )


@router.get("/status", response_model=StatusResponse, response_model_by_alias=True)
async def status(request: Request) -> StatusResponse:
    controller = request.app.state.controller
    return StatusResponse.model_validate(
        {
            "running": controller.running,
            "queue_depth": controller.queue.depth,
            "workloads": controller.state.snapshot(),
        }
    )


@router.get("/drift", response_model=DriftResponse, response_model_by_alias=True, responses={503: {"model": ErrorResponse}})
async def drift(request: Request, namespace: str | None = Query(default=None)) -> DriftResponse | JSONResponse:
    detector = request.app.state.detector
    cluster = request.app.state.cluster
    config = request.app.state.config
    if detector is None or cluster is None or config is None:
        return _error(503, "DRIFT_UNAVAILABLE", "Drift detection is not configured.")

    namespaces = [namespace] if namespace else config.watch.namespaces
    workloads = await cluster.list_tracked_workloads(
        config.watch.workload_kinds, namespaces, config.watch.opt_in_selector
    )
    report = await detector.detect(workloads)
    return DriftResponse.model_validate(
        {
            "generatedAt": report.generated_at.isoformat(),
            "hasDrift": report.has_drift,
            "entries": report.to_records(include_clean=True),
        }
    )


@router.post(
    "/reconcile/{kind}/{namespace}/{name}",
    response_model=ReconcileAccepted,
    status_code=202,
    responses={400: {"model": ErrorResponse}},
)
async def reconcile(request: Request, kind: str, namespace: str, name: str) -> ReconcileAccepted | JSONResponse:
    try:
        workload_kind = WorkloadKind(kind)
    except ValueError:
        valid = ", ".join(k.value for k in WorkloadKind)
        return _error(400, "INVALID_WORKLOAD_KIND", f"Unknown workload kind {kind!r}; expected one of {valid}.")

    ref = WorkloadRef(kind=workload_kind, namespace=namespace, name=name)
    request.app.state.controller.reconcile_now(ref)
    _log.info("manual_reconcile_requested", workload=str(ref))
    return ReconcileAccepted(workload=str(ref))


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
