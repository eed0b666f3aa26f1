"""Pydantic API schemas."""

from milestone_settlement.schemas.agreements import (
    AgreementListResponse,
    AgreementResponse,
    CreateAgreementRequest,
    DepositRequest,
    EvidenceEventResponse,
    HealthResponse,
    MilestoneInput,
    MilestoneResponse,
    RaiseDisputeRequest,
    RefundRequest,
    ResolveDisputeRequest,
    StatsResponse,
    TransactionResponse,
    TriggerMilestoneRequest,
    WebhookIgnoredResponse,
    WebhookRequest,
)

__all__ = [
    "AgreementListResponse",
    "AgreementResponse",
    "CreateAgreementRequest",
    "DepositRequest",
    "EvidenceEventResponse",
    "HealthResponse",
    "MilestoneInput",
    "MilestoneResponse",
    "RaiseDisputeRequest",
    "RefundRequest",
    "ResolveDisputeRequest",
    "StatsResponse",
    "TransactionResponse",
    "TriggerMilestoneRequest",
    "WebhookIgnoredResponse",
    "WebhookRequest",
]
