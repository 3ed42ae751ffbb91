"""
FastAPI server for Routewise.

Exposes routing decisions, fallback selection, and outcome back-fill over
HTTP, plus read-only views of executors, policies, and metrics.
"""

from __future__ import annotations

from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import routewise
from routewise.core.config import get_settings
from routewise.core.errors import (
    Cancelled,
    ConfigError,
    DecisionNotFound,
    NoEligibleCandidates,
    OutcomeAlreadyRecorded,
    PolicyUnavailable,
    RoutingError,
)
from routewise.core.models import Outcome, RoutingDecision
from routewise.routing.router import Router, build_router
from routewise.utils.logging import setup_logging

logger = structlog.get_logger()

ERROR_STATUS: dict[type[RoutingError], int] = {
    NoEligibleCandidates: 503,
    PolicyUnavailable: 503,
    Cancelled: 504,
    DecisionNotFound: 404,
    OutcomeAlreadyRecorded: 409,
    ConfigError: 400,
}


class RecentDecisions:
    """Bounded map of recent decisions, so clients can ask for the next candidate."""

    def __init__(self, max_size: int = 10_000):
        self._max_size = max_size
        self._decisions: OrderedDict[str, RoutingDecision] = OrderedDict()

    def put(self, decision: RoutingDecision) -> None:
        self._decisions[decision.decision_id] = decision
        while len(self._decisions) > self._max_size:
            self._decisions.popitem(last=False)

    def get(self, decision_id: str) -> RoutingDecision:
        decision = self._decisions.get(decision_id)
        if decision is None:
            raise DecisionNotFound(decision_id)
        return decision

    def __len__(self) -> int:
        return len(self._decisions)


# Request models

class RouteRequest(BaseModel):
    """Request body for routing."""

    prompt: str
    context: list[str | dict[str, Any]] = Field(default_factory=list)
    excluded_model_ids: list[str] = Field(default_factory=list)
    deadline_ms: float | None = Field(default=None, gt=0)
    request_id: str | None = None


class NextCandidateRequest(BaseModel):
    """Request body for fallback selection."""

    excluded_model_ids: list[str] = Field(default_factory=list)


# Dependencies

def get_router(request: Request) -> Router:
    """Get the router instance."""
    router = getattr(request.app.state, "router", None)
    if router is None:
        raise HTTPException(status_code=503, detail="Router not initialized")
    return router


def get_recent(request: Request) -> RecentDecisions:
    return request.app.state.recent


def create_app(router: Router | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        router: Pre-built router; built from settings at startup if omitted
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler."""
        setup_logging()
        logger.info("Starting Routewise API server", version=routewise.__version__)

        app.state.router = router or build_router(settings)
        await app.state.router.start()
        logger.info("Router started", **app.state.router.registry.stats())

        yield

        logger.info("Shutting down Routewise API server")
        await app.state.router.close()

    app = FastAPI(
        title="Routewise API",
        description="Cost-aware LLM request routing",
        version=routewise.__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.router = None
    app.state.recent = RecentDecisions()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RoutingError)
    async def routing_error_handler(request: Request, exc: RoutingError) -> JSONResponse:
        status_code = next(
            (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
            500,
        )
        if status_code >= 500:
            logger.warning("Request failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.get("/health")
    async def health_check(router: Router = Depends(get_router)) -> dict[str, Any]:
        """Health check endpoint."""
        stats = router.registry.stats()
        return {
            "status": "healthy" if stats["live_models"] else "degraded",
            "version": routewise.__version__,
            "registry": stats,
            "checkpoint": router.scoring.checkpoint_version,
        }

    @app.get("/metrics")
    async def get_metrics(router: Router = Depends(get_router)) -> dict[str, Any]:
        """Get routing metrics."""
        summary = router.metrics.get_summary()
        if router.decision_log is not None:
            summary["decision_log"] = {
                "pending": router.decision_log.pending,
                "written": router.decision_log.written,
                "dropped": router.decision_log.dropped,
            }
        return summary

    @app.get("/v1/executors")
    async def list_executors(router: Router = Depends(get_router)) -> list[dict[str, Any]]:
        """List registered executors and their liveness."""
        return [e.to_dict() for e in router.registry.executors()]

    @app.get("/v1/policies")
    async def list_policies(router: Router = Depends(get_router)) -> list[dict[str, Any]]:
        """List routing policies."""
        return [p.to_dict() for p in await router.policies.list_policies()]

    @app.post("/v1/route")
    async def route_request(
        body: RouteRequest,
        router: Router = Depends(get_router),
        recent: RecentDecisions = Depends(get_recent),
    ) -> dict[str, Any]:
        """Route a prompt to the best live candidate model."""
        decision = await router.route(
            body.prompt,
            context=body.context,
            excluded_model_ids=body.excluded_model_ids,
            deadline=body.deadline_ms / 1000 if body.deadline_ms else None,
            request_id=body.request_id,
        )
        recent.put(decision)
        return decision.to_dict()

    @app.post("/v1/route/{decision_id}/next")
    async def next_candidate(
        decision_id: str,
        body: NextCandidateRequest,
        router: Router = Depends(get_router),
        recent: RecentDecisions = Depends(get_recent),
    ) -> dict[str, Any]:
        """Select the next-ranked candidate after the chosen model failed."""
        decision = await router.select(
            recent.get(decision_id), excluded_model_ids=body.excluded_model_ids
        )
        recent.put(decision)
        return decision.to_dict()

    @app.post("/v1/decisions/{decision_id}/outcome")
    async def record_outcome(
        decision_id: str,
        outcome: Outcome,
        router: Router = Depends(get_router),
    ) -> dict[str, Any]:
        """Back-fill the real-world outcome of a decision."""
        queued = router.record_outcome(decision_id, outcome)
        return {"decision_id": decision_id, "queued": queued}

    return app


app = create_app()


def run_server(
    host: str = "0.0.0.0",
    port: int = 8080,
    reload: bool = False,
) -> None:
    """Run the API server."""
    import uvicorn
    uvicorn.run(
        "routewise.api.server:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    run_server()
