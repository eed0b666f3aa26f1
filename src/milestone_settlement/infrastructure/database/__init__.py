"""Database infrastructure — engine, ORM models, and repositories."""

from milestone_settlement.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    create_schema,
    init_db,
    ping,
)
from milestone_settlement.infrastructure.database.orm_models import (
    Agreement,
    Base,
    EvidenceEvent,
    Milestone,
    SettlementTransaction,
)
from milestone_settlement.infrastructure.database.repositories import (
    AgreementRepository,
    AgreementStats,
    EvidenceRepository,
    TransactionRepository,
)

__all__ = [
    "Agreement",
    "AgreementRepository",
    "AgreementStats",
    "Base",
    "EvidenceEvent",
    "EvidenceRepository",
    "Milestone",
    "SettlementTransaction",
    "TransactionRepository",
    "build_engine",
    "build_session_factory",
    "close_db",
    "create_schema",
    "init_db",
    "ping",
]
