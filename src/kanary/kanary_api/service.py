# -*- coding: utf-8 -*-
"""Kanary control API service.

FastAPI application exposing start/pause/resume/abort/status for rollouts
plus liveness, readiness and metrics endpoints.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from pydantic import BaseModel, ConfigDict
from starlette.responses import JSONResponse

from kanary import __version__
from kanary.kanary_monitor.health_check import (
    check_liveness,
    check_readiness,
    get_health_summary,
)
from kanary.kanary_orchestrator.factory import build_orchestrator
from kanary.kanary_orchestrator.orchestrator import RolloutOrchestrator
from kanary.kanary_utils.errors import KanaryError
from kanary.kanary_utils.output import OutputType, PrettyOutput
from kanary.models import RolloutPlan

logger = logging.getLogger(__name__)

PRUNE_INTERVAL = 60.0


class PlanRequest(BaseModel):
    """Request model for starting a rollout."""

    model_config = ConfigDict(extra="forbid")

    service: str
    stable_revision: str
    canary_revision: str
    initial_weight: Optional[int] = None
    step_size: Optional[int] = None
    step_interval: Optional[float] = None
    success_threshold: Optional[float] = None
    max_weight: Optional[int] = None
    namespace: Optional[str] = None
    stable_ingress: Optional[str] = None
    canary_ingress: Optional[str] = None
    hysteresis: Optional[float] = None
    bake_duration: Optional[float] = None
    grace_period: Optional[float] = None
    probe_interval: Optional[float] = None
    metric_window: Optional[float] = None
    max_latency_ms: Optional[float] = None
    probe_failure_threshold: Optional[int] = None

    def to_plan(self) -> RolloutPlan:
        return RolloutPlan.from_dict(self.model_dump(exclude_none=True))


def create_app(orchestrator: Optional[RolloutOrchestrator] = None) -> FastAPI:
    """Create the control API; builds an orchestrator from config when none is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        orch = orchestrator or build_orchestrator()
        app.state.orchestrator = orch

        async def _janitor() -> None:
            while True:
                await asyncio.sleep(PRUNE_INTERVAL)
                orch.prune()

        janitor = asyncio.create_task(_janitor())
        try:
            yield
        finally:
            janitor.cancel()
            await orch.shutdown()

    app = FastAPI(title="Kanary Control API", version=__version__, lifespan=lifespan)

    def get_orchestrator(request: Request) -> RolloutOrchestrator:
        return request.app.state.orchestrator

    @app.exception_handler(KanaryError)
    async def kanary_error_handler(request: Request, exc: KanaryError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_payload()})

    @app.post("/rollouts", status_code=201)
    async def start_rollout(body: PlanRequest, request: Request) -> Dict[str, Any]:
        state = await get_orchestrator(request).start(body.to_plan())
        return state.to_dict()

    @app.get("/rollouts")
    async def list_rollouts(request: Request) -> List[Dict[str, Any]]:
        return [state.to_dict() for state in get_orchestrator(request).list()]

    @app.get("/rollouts/{rollout_id}")
    async def rollout_status(rollout_id: str, request: Request) -> Dict[str, Any]:
        return get_orchestrator(request).status(rollout_id).to_dict()

    @app.post("/rollouts/{rollout_id}/pause")
    async def pause_rollout(rollout_id: str, request: Request) -> Dict[str, Any]:
        return (await get_orchestrator(request).pause(rollout_id)).to_dict()

    @app.post("/rollouts/{rollout_id}/resume")
    async def resume_rollout(rollout_id: str, request: Request) -> Dict[str, Any]:
        return (await get_orchestrator(request).resume(rollout_id)).to_dict()

    @app.post("/rollouts/{rollout_id}/abort")
    async def abort_rollout(rollout_id: str, request: Request) -> Dict[str, Any]:
        return (await get_orchestrator(request).abort(rollout_id)).to_dict()

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return check_liveness()

    @app.get("/readyz")
    def readyz(request: Request) -> JSONResponse:
        # 同步端点：集群连通性检查是阻塞调用，由线程池执行
        readiness = check_readiness(get_orchestrator(request))
        status_code = 200 if readiness["status"] == "ready" else 503
        return JSONResponse(status_code=status_code, content=readiness)

    @app.get("/health")
    def health(request: Request) -> Dict[str, Any]:
        return get_health_summary(get_orchestrator(request))

    @app.get("/metrics")
    async def metrics(request: Request) -> Dict[str, Any]:
        return get_orchestrator(request).metrics.get_metrics_summary()

    return app


def start_service(host: str, port: int, dry_run: bool = False) -> None:
    """Start the Kanary control API server."""
    orchestrator = build_orchestrator(dry_run=dry_run)
    app = create_app(orchestrator)
    PrettyOutput.print(f"Starting Kanary control API on {host}:{port}", OutputType.SUCCESS)
    if dry_run:
        PrettyOutput.print("Dry run: using in-memory cluster and static metrics", OutputType.WARNING)
    uvicorn.run(app, host=host, port=port, log_level="info", timeout_graceful_shutdown=30)
