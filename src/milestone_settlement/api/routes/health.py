"""Health check endpoint.

Verifies database connectivity and reports the settlement peer routing
status (effective mode, cached peer health, real vs simulated call counts).
Used by Docker healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from milestone_settlement.api.deps import get_controller
from milestone_settlement.config import APP_VERSION
from milestone_settlement.infrastructure.database.engine import ping
from milestone_settlement.logging_config import get_logger
from milestone_settlement.schemas.agreements import HealthResponse
from milestone_settlement.services.fallback_controller import FallbackController

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(
    request: Request,
    controller: FallbackController = Depends(get_controller),
) -> HealthResponse:
    """Check the database and the settlement peer routing."""
    try:
        await ping(request.app.state.db_engine)
        db_status = "healthy"
    except (SQLAlchemyError, OSError) as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    peer = await controller.status()

    return HealthResponse(
        status="ok" if db_status == "healthy" else "degraded",
        version=APP_VERSION,
        database=db_status,
        mode=peer["effective_mode"],
        peer=peer,
    )
