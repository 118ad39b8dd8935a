"""
FastAPI Duplicate Detection API Server

Provides REST API endpoints for checking partner drafts for duplicates and
recording merge decisions.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Depends, Security, Header
from fastapi.security import APIKeyHeader

from api.models import (
    DuplicateCheckResponse,
    MatchResultResponse,
    MergeDecisionRequest,
    MergeDecisionResponse,
    DuplicateStatisticsResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import get_config, ConfigManager, ConfigurationError, configure_logging
from database.connection import DatabaseSettings, init_db, close_db
from database.duplicate_service import DatabaseDuplicateService, configure_duplicate_service
from database.monitoring import check_health, get_db_metrics
from duplicate_detector import SYSTEM_ACTOR_ID
from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yaml")
API_KEY = os.getenv("API_KEY", "")  # Required for authenticated endpoints

# Global state
_service: Optional[DatabaseDuplicateService] = None
_config: Optional[ConfigManager] = None
_startup_time: Optional[datetime] = None

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    if not API_KEY:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_service() -> DatabaseDuplicateService:
    """Dependency to get the duplicate service instance."""
    if _service is None:
        raise HTTPException(
            status_code=503, detail="Duplicate service not initialized. Service is starting up."
        )
    return _service


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


# Create FastAPI application
app = FastAPI(
    title="Partner Duplicate Detection API",
    description="API for checking business-partner drafts against existing partners",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Load configuration and connect to the database on startup."""
    global _service, _config, _startup_time

    try:
        _config = get_config(CONFIG_PATH)
        configure_logging(_config.logging)
        logger.info("Starting Partner Duplicate Detection API...")
        logger.info(f"Configuration loaded from {CONFIG_PATH}")

        provider = init_db(DatabaseSettings.from_config(_config.database))
        provider.create_tables()
        _service = configure_duplicate_service(provider, _config)

        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready (algorithm %s)", _config.algorithm.version)

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Partner Duplicate Detection API...")
    close_db()


@app.post(
    "/api/v1/drafts/{draft_id}/duplicate-check",
    response_model=DuplicateCheckResponse,
    responses={
        200: {"model": DuplicateCheckResponse, "description": "Duplicate check completed"},
        401: {"model": ErrorResponse, "description": "Missing API key"},
        403: {"model": ErrorResponse, "description": "Invalid API key"},
        404: {"model": ErrorResponse, "description": "Draft not found"},
        409: {"model": ErrorResponse, "description": "Check already running for this draft"},
        503: {"model": ErrorResponse, "description": "Record store unavailable"},
    },
    summary="Check a draft for duplicates",
    description="Find existing partners matching the draft and persist the ranked matches",
)
def run_duplicate_check(
    draft_id: UUID,
    service: DatabaseDuplicateService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    """Run the duplicate check for one draft.

    Requires API key authentication via X-API-Key header.
    """
    start_time = time.time()

    outcome = service.run_duplicate_check(draft_id)
    payload = outcome.to_dict()

    return DuplicateCheckResponse(
        draft_id=payload['draft_id'],
        match_count=payload['match_count'],
        previous_status=payload['previous_status'],
        new_status=payload['new_status'],
        review_triggered=payload['review_triggered'],
        matches=[MatchResultResponse(**m) for m in payload['matches']],
        processing_time_ms=int((time.time() - start_time) * 1000),
    )


@app.post(
    "/api/v1/match-results/{match_id}/decision",
    response_model=MergeDecisionResponse,
    responses={
        200: {"model": MergeDecisionResponse, "description": "Decision recorded"},
        404: {"model": ErrorResponse, "description": "Match result not found"},
        422: {"model": ErrorResponse, "description": "Invalid decision"},
        503: {"model": ErrorResponse, "description": "Record store unavailable"},
    },
    summary="Record a merge decision",
)
def record_merge_decision(
    match_id: UUID,
    request: MergeDecisionRequest,
    x_user_id: Optional[str] = Header(default=None),
    service: DatabaseDuplicateService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    """Record Merge or CreateNew on a match result.

    The decider is taken from the X-User-ID header, defaulting to 'system'.
    """
    decided_by = (x_user_id or '').strip() or SYSTEM_ACTOR_ID
    service.record_merge_decision(match_id, request.decision, decided_by, request.comment)
    logger.info("Decision %s on match %s by %s", sanitize_for_logging(request.decision, 20),
                match_id, sanitize_for_logging(decided_by, 100))

    return MergeDecisionResponse(
        match_id=str(match_id),
        decision=request.decision,
        decided_by=decided_by,
    )


@app.get(
    "/api/v1/drafts/{draft_id}/duplicate-statistics",
    response_model=DuplicateStatisticsResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Draft not found"},
        503: {"model": ErrorResponse, "description": "Record store unavailable"},
    },
    summary="Duplicate match statistics for a draft",
)
def duplicate_statistics(
    draft_id: UUID,
    service: DatabaseDuplicateService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    stats = service.get_duplicate_statistics(draft_id)
    return DuplicateStatisticsResponse(draft_id=str(draft_id), **stats)


@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and database health",
)
def health_check(config: ConfigManager = Depends(get_config_instance)):
    """Return health status. Always returns HTTP 200."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    if _service is None:
        return HealthResponse(
            status="starting",
            algorithm_version=config.algorithm.version,
            uptime_seconds=uptime_seconds,
        )

    provider = _service.db_provider
    health = check_health(provider.engine, provider.session_factory)
    return HealthResponse(
        status="healthy" if health.healthy else "degraded",
        database=health.to_dict(),
        algorithm_version=config.algorithm.version,
        uptime_seconds=uptime_seconds,
        metrics=get_db_metrics(),
        error_message=health.error,
    )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
