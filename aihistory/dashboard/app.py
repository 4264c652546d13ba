"""aihistory debug API - FastAPI application over a live ObservabilityContext."""

import os
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .. import __version__
from ..context import ObservabilityContext
from ..core.types import InteractionStatus
from ..validation.render import to_markdown, to_prometheus


# =============================================================================
# Response Models
# =============================================================================


class TimeoutCheckResponse(BaseModel):
    """Response model for the timeout check endpoint."""
    timed_out: List[str]
    count: int


class CleanupResponse(BaseModel):
    """Response model for the cleanup endpoint."""
    purged: int
    timed_out: List[str]


# =============================================================================
# Setup Functions
# =============================================================================


def _setup_middleware(app: FastAPI) -> None:
    """Configure CORS."""
    origins = os.environ.get("AIHISTORY_CORS_ORIGINS", "")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()] or [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8080",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:8080",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _setup_rate_limiter(app: FastAPI) -> Limiter:
    """Setup rate limiting."""
    limiter = Limiter(key_func=get_remote_address)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    return limiter


def _context(app: FastAPI) -> ObservabilityContext:
    return app.state.context


# =============================================================================
# Endpoint Registration Functions
# =============================================================================


def _register_health_endpoints(app: FastAPI) -> None:
    """Register liveness and tracker health endpoints."""

    @app.get("/api/health", response_class=JSONResponse)
    async def health():
        """Liveness check."""
        return {"status": "ok", "version": __version__, "session_id": _context(app).session_id}

    @app.get("/api/health/check", response_class=JSONResponse)
    async def health_check():
        """Threshold-based health of the tracked data."""
        return _context(app).health_check().to_dict()


def _register_interaction_endpoints(app: FastAPI) -> None:
    """Register interaction and transformation endpoints."""

    @app.get("/api/interactions", response_class=JSONResponse)
    async def list_interactions(
        status: Optional[str] = Query(None, description="Filter by terminal status"),
        provider: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
    ):
        """Recorded interactions, ascending by start time."""
        if status is not None:
            try:
                status = InteractionStatus(status)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

        interactions = _context(app).interactions.get_all_interactions()
        if status is not None:
            interactions = [i for i in interactions if i.status == status]
        if provider is not None:
            interactions = [i for i in interactions if i.provider == provider]

        return {
            "total": len(interactions),
            "interactions": [i.to_dict() for i in interactions[-limit:]],
        }

    @app.get("/api/interactions/pending", response_class=JSONResponse)
    async def pending_interactions():
        """Interactions that have not reached a terminal state."""
        pending = _context(app).interactions.get_pending_interactions()
        return {"total": len(pending), "interactions": [i.to_dict() for i in pending]}

    @app.get("/api/interactions/statistics", response_class=JSONResponse)
    async def interaction_statistics():
        return _context(app).interaction_statistics().to_dict()

    @app.get("/api/interactions/{interaction_id}", response_class=JSONResponse)
    async def get_interaction(interaction_id: str):
        """One interaction with its calls and prompt transformations."""
        context = _context(app)
        interaction = context.interactions.get_interaction(interaction_id)
        if interaction is None:
            raise HTTPException(status_code=404, detail=f"Interaction not found: {interaction_id}")
        return {
            "interaction": interaction.to_dict(),
            "calls": [c.to_dict() for c in context.calls.get_calls_for_interaction(interaction_id)],
            "transformations": [t.to_dict() for t in context.transformations.get(interaction_id)],
        }

    @app.get("/api/transformations", response_class=JSONResponse)
    async def transformations(interaction_id: Optional[str] = Query(None)):
        entries = _context(app).transformations.get(interaction_id)
        return {"total": len(entries), "transformations": [t.to_dict() for t in entries]}


def _register_call_endpoints(app: FastAPI) -> None:
    """Register API call endpoints."""

    @app.get("/api/calls/statistics", response_class=JSONResponse)
    async def call_statistics():
        return _context(app).call_statistics().to_dict()

    @app.get("/api/calls/debug", response_class=JSONResponse)
    async def call_debug():
        """Pending calls, recently finalized calls and statistics."""
        return _context(app).calls.get_debug_info().to_dict()

    @app.post("/api/calls/check-timeouts", response_model=TimeoutCheckResponse)
    async def check_timeouts():
        timed_out = _context(app).check_timeouts()
        return TimeoutCheckResponse(timed_out=timed_out, count=len(timed_out))

    @app.post("/api/cleanup", response_model=CleanupResponse)
    async def cleanup():
        purged, timed_out = _context(app).cleanup()
        return CleanupResponse(purged=purged, timed_out=timed_out)


def _register_validation_endpoints(app: FastAPI, limiter: Limiter) -> None:
    """Register completeness validation endpoints."""

    @app.get("/api/validation", response_class=JSONResponse)
    async def validation():
        """Quick completeness report."""
        return _context(app).validate_completeness().to_dict()

    @app.get("/api/validation/comprehensive", response_class=JSONResponse)
    @limiter.limit("10/minute")
    async def comprehensive_validation(request: Request):  # noqa: ARG001 - required by rate limiter
        """Comprehensive report; falls back to a partial quick report on malformed state."""
        return _context(app).validate(comprehensive=True).to_dict()

    @app.get("/api/validation/report.md", response_class=PlainTextResponse)
    @limiter.limit("10/minute")
    async def validation_markdown(request: Request):  # noqa: ARG001 - required by rate limiter
        return to_markdown(_context(app).validate(comprehensive=True))

    @app.get("/api/validation/metrics", response_class=PlainTextResponse)
    async def validation_metrics():
        """Quick report in Prometheus exposition format."""
        context = _context(app)
        report = context.validate_completeness()
        report.call_statistics = context.call_statistics()
        return to_prometheus(report)


# =============================================================================
# Application Factory
# =============================================================================


def create_app(context: Optional[ObservabilityContext] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        context: Context to expose. A fresh one is created if not provided.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="aihistory debug API",
        description="Inspect tracked AI interactions, provider calls and completeness reports",
        version=__version__,
    )

    _setup_middleware(app)
    limiter = _setup_rate_limiter(app)
    app.state.context = context or ObservabilityContext()

    _register_health_endpoints(app)
    _register_interaction_endpoints(app)
    _register_call_endpoints(app)
    _register_validation_endpoints(app, limiter)

    return app


# =============================================================================
# Server Runner
# =============================================================================


def run_dashboard(
    context: Optional[ObservabilityContext] = None,
    host: str = "127.0.0.1",
    port: int = 8080,
    sweep: bool = True,
) -> None:
    """Run the debug API server.

    Args:
        context: Context to expose.
        host: Host to bind to.
        port: Port to bind to.
        sweep: Run the maintenance sweeper while serving.
    """
    import uvicorn

    app = create_app(context)
    context = app.state.context

    if sweep:
        context.start_sweeper()
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    finally:
        context.stop()
