"""FastAPI dependency injection providers.

The lifespan in main.py builds the long-lived services once and stores them
on ``app.state``; these providers hand them to route handlers via Depends().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from milestone_settlement.services.agreement_engine import AgreementEngine
    from milestone_settlement.services.fallback_controller import FallbackController
    from milestone_settlement.services.oracle_service import OracleService


def get_engine(request: Request) -> AgreementEngine:
    """Provide the Agreement Engine."""
    return request.app.state.engine


def get_oracle(request: Request) -> OracleService:
    """Provide the evidence ingestion service."""
    return request.app.state.oracle


def get_controller(request: Request) -> FallbackController:
    """Provide the settlement fallback controller."""
    return request.app.state.controller
