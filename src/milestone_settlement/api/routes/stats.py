"""Protocol statistics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from milestone_settlement.api.deps import get_engine
from milestone_settlement.schemas.agreements import StatsResponse
from milestone_settlement.services.agreement_engine import AgreementEngine

router = APIRouter(prefix="/api/v1/stats", tags=["Stats"])


@router.get("/summary", response_model=StatsResponse, summary="Protocol statistics")
async def stats_summary(engine: AgreementEngine = Depends(get_engine)) -> StatsResponse:
    """Agreement counts plus value locked and released in FUNDED/ACTIVE agreements."""
    return StatsResponse.model_validate(await engine.get_stats())
