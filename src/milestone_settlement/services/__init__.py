"""Application services — use case orchestration."""

from milestone_settlement.services.agreement_engine import AgreementEngine, MilestoneDraft
from milestone_settlement.services.fallback_controller import (
    FallbackController,
    PeerHealth,
    SettlementOutcome,
)
from milestone_settlement.services.oracle_service import OracleService

__all__ = [
    "AgreementEngine",
    "FallbackController",
    "MilestoneDraft",
    "OracleService",
    "PeerHealth",
    "SettlementOutcome",
]
