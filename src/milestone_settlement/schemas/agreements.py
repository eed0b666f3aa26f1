"""Pydantic schemas for the settlement API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API and
database layers. Amounts are integers in the ledger's smallest unit; numeric
strings are accepted on input.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from milestone_settlement.domain.enums import (
    AgreementState,
    EvidenceOutcome,
    MilestoneState,
    SourceKind,
    TransactionStatus,
    TransactionType,
)
from milestone_settlement.domain.fees import MAX_AMOUNT

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class MilestoneInput(BaseModel):
    """One milestone in a create-agreement request."""

    title: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=512)
    amount: int = Field(..., gt=0, le=MAX_AMOUNT, examples=[30000])
    verification_source: SourceKind = Field(
        default=SourceKind.MANUAL,
        description="Evidence source that proves this milestone",
    )


class CreateAgreementRequest(BaseModel):
    """Request body for creating a new agreement."""

    payer_address: str = Field(..., min_length=1, max_length=128)
    beneficiary_address: str = Field(..., min_length=1, max_length=128)
    oracle_address: str | None = Field(
        default=None,
        max_length=128,
        description="Oracle admin; defaults to the configured oracle address",
    )
    total_amount: int = Field(..., gt=0, le=MAX_AMOUNT, examples=[100000])
    title: str = Field(..., min_length=1, max_length=256)
    description: str | None = Field(default=None, max_length=1000)
    tags: list[str] = Field(default_factory=list)
    milestones: list[MilestoneInput] = Field(..., min_length=1)


class DepositRequest(BaseModel):
    amount: int = Field(..., gt=0, le=MAX_AMOUNT)
    from_address: str = Field(..., min_length=1)


class RefundRequest(BaseModel):
    payer_address: str = Field(..., min_length=1)


class TriggerMilestoneRequest(BaseModel):
    """Oracle admin's manual approval of a milestone."""

    oracle_address: str = Field(..., min_length=1)
    reason: str = Field(default="Manual trigger", max_length=512)


class RaiseDisputeRequest(BaseModel):
    caller_address: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    resolver_address: str = Field(..., min_length=1)
    refund_payer: bool


class WebhookRequest(BaseModel):
    """Generic milestone evidence webhook."""

    agreement_id: uuid.UUID
    milestone_id: uuid.UUID
    source: str = Field(..., min_length=1)
    event: str = Field(..., min_length=1)
    evidence: dict[str, Any] = Field(default_factory=dict)
    signature: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sequence_number: int
    title: str
    description: str | None
    amount: int
    verification_source: SourceKind
    state: MilestoneState
    evidence_fingerprint: str | None
    verified_at: datetime | None
    released_at: datetime | None


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: TransactionType
    amount: int
    fee_amount: int
    from_address: str
    to_address: str
    milestone_id: uuid.UUID | None
    tx_hash: str
    status: TransactionStatus
    created_at: datetime
    confirmed_at: datetime | None


class AgreementResponse(BaseModel):
    """Full agreement aggregate: balances, milestones and transaction history."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    external_ref: str | None
    payer_address: str
    beneficiary_address: str
    oracle_admin_address: str
    title: str
    description: str | None
    tags: list[str]
    total_amount: int
    locked_amount: int
    released_amount: int
    fees_accrued: int
    state: AgreementState
    dispute_reason: str | None
    created_at: datetime
    updated_at: datetime
    funded_at: datetime | None
    timeout_at: datetime | None
    completed_at: datetime | None
    refunded_at: datetime | None
    milestones: list[MilestoneResponse]
    transactions: list[TransactionResponse]


class AgreementListResponse(BaseModel):
    data: list[AgreementResponse]
    count: int


class EvidenceEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    agreement_id: uuid.UUID
    milestone_id: uuid.UUID
    source: SourceKind
    event_type: str
    payload: dict[str, Any]
    fingerprint: str | None
    outcome: EvidenceOutcome
    reason: str | None
    created_at: datetime


class StatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_agreements: int
    active_agreements: int
    total_locked: int
    total_released: int
    total_fees: int


class WebhookIgnoredResponse(BaseModel):
    ignored: bool = True
    reason: str


class HealthResponse(BaseModel):
    """Response for the health check endpoint."""

    status: str = Field(..., description="ok or degraded")
    version: str
    database: str
    mode: str = Field(..., description="Effective settlement mode: PEER or SIMULATED")
    peer: dict[str, Any]
