"""FastAPI app factory.

Endpoints are thin wrappers over the orchestrator facade. Handlers are plain
`def` functions: every call blocks on a target, so FastAPI runs them in its
thread pool.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mcp_orchestrator import __version__
from mcp_orchestrator.core.orchestrator import Orchestrator
from mcp_orchestrator.errors import (
    ConfigurationError,
    NoCapabilityMatchError,
    NoCompatibleEndpointError,
    OrchestratorError,
    RpcTimeoutError,
)
from mcp_orchestrator.models import Target
from mcp_orchestrator.rpc.selector import transport_kind
from mcp_orchestrator.server.models import (
    ApiError,
    ApiOperation,
    ApiTarget,
    InvokeRequest,
    InvokeResponse,
    PlanResponse,
    RunResponse,
    WorkflowRequest,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[OrchestratorError], int], ...] = (
    (ConfigurationError, 409),
    (NoCapabilityMatchError, 404),
    (RpcTimeoutError, 504),
)


def status_for_error(error: OrchestratorError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 502


def _to_api_target(target: Target) -> ApiTarget:
    try:
        transport = transport_kind(target)
    except ConfigurationError:
        transport = "invalid"
    return ApiTarget(
        id=target.id,
        name=target.display_name,
        description=target.description,
        transport=transport,
        operations=[
            ApiOperation(
                name=op.name,
                description=op.description,
                capabilities=list(op.capabilities),
                slow=op.slow,
            )
            for op in target.operations
        ],
    )


def create_app(orchestrator: Orchestrator | None = None) -> FastAPI:
    owned = orchestrator is None
    orch = orchestrator or Orchestrator()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if owned:
            orch.close()

    app = FastAPI(
        title="MCP Workflow Orchestrator",
        version=__version__,
        description="REST API over the tool orchestrator: direct invocation and multi-step runs.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.orchestrator = orch
    app.state.settings = orch.settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=orch.settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OrchestratorError)
    async def _orchestrator_error(_: Request, exc: OrchestratorError) -> JSONResponse:
        status = status_for_error(exc)
        logger.warning(
            "Request failed",
            extra={"error_kind": exc.kind, "error": str(exc), "status": status},
        )
        body = ApiError(
            kind=exc.kind,
            message=str(exc),
            attempts=exc.attempts if isinstance(exc, NoCompatibleEndpointError) else [],
        )
        return JSONResponse(status_code=status, content={"detail": body.model_dump()})

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/v1/targets", response_model=list[ApiTarget])
    def list_targets() -> list[ApiTarget]:
        return [_to_api_target(t) for t in orch.targets()]

    @app.post("/api/v1/invoke", response_model=InvokeResponse)
    def invoke(req: InvokeRequest) -> InvokeResponse:
        if orch.registry.target(req.target_id) is None:
            raise HTTPException(status_code=404, detail="Target not found or disabled")
        result = orch.invoke(req.target_id, req.operation, req.arguments)
        return InvokeResponse(
            target_id=req.target_id,
            operation=req.operation,
            text=result.text,
            content=result.content,
            structured=result.structured,
        )

    @app.post("/api/v1/plan", response_model=PlanResponse)
    def plan(req: WorkflowRequest) -> PlanResponse:
        planned = orch.planner.requires_planning(req.request)
        workflow = orch.plan(req.request)
        return PlanResponse(
            request=req.request,
            planned=planned,
            steps=[s.to_json() for s in workflow.steps],
        )

    @app.post("/api/v1/run", response_model=RunResponse)
    def run(req: WorkflowRequest) -> RunResponse:
        outcome = orch.handle(req.request)
        return RunResponse(
            request=req.request,
            success=outcome.success,
            summary=outcome.summary,
            steps=[s.to_json() for s in outcome.steps],
        )

    return app
