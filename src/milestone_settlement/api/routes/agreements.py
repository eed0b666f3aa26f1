"""Agreement REST API routes.

These endpoints provide the HTTP interface for the agreement lifecycle.
Webhook ingestion (api/routes/webhooks.py) reaches the same engine through
the oracle service, so both paths share one set of settlement rules.

Routes:
    GET    /api/v1/agreements                               — List (state/role/wallet filters)
    POST   /api/v1/agreements                               — Create an agreement
    GET    /api/v1/agreements/{id}                          — Agreement details
    POST   /api/v1/agreements/{id}/deposit                  — Lock the total in custody
    POST   /api/v1/agreements/{id}/refund                   — Refund after timeout
    POST   /api/v1/agreements/{id}/milestones/{mid}/trigger — Oracle admin approval
    POST   /api/v1/agreements/{id}/milestones/{mid}/release — Release a verified milestone
    POST   /api/v1/agreements/{id}/dispute                  — Raise a dispute
    POST   /api/v1/agreements/{id}/dispute/resolve          — Oracle admin resolution
    GET    /api/v1/agreements/{id}/evidence                 — Evidence event log
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from milestone_settlement.api.deps import get_engine, get_oracle
from milestone_settlement.domain.enums import AgreementState, ListRole
from milestone_settlement.schemas.agreements import (
    AgreementListResponse,
    AgreementResponse,
    CreateAgreementRequest,
    DepositRequest,
    EvidenceEventResponse,
    RaiseDisputeRequest,
    RefundRequest,
    ResolveDisputeRequest,
    TriggerMilestoneRequest,
)
from milestone_settlement.services.agreement_engine import AgreementEngine, MilestoneDraft
from milestone_settlement.services.oracle_service import OracleService

router = APIRouter(prefix="/api/v1/agreements", tags=["Agreements"])


# ---------------------------------------------------------------------------
# List / Create / Read
# ---------------------------------------------------------------------------


@router.get("", response_model=AgreementListResponse, summary="List agreements")
async def list_agreements(
    state: AgreementState | None = Query(default=None),
    role: ListRole = Query(default=ListRole.ALL),
    wallet: str | None = Query(default=None, description="Party address to match"),
    engine: AgreementEngine = Depends(get_engine),
) -> AgreementListResponse:
    agreements = await engine.list_agreements(state=state, role=role, address=wallet)
    data = [AgreementResponse.model_validate(a) for a in agreements]
    return AgreementListResponse(data=data, count=len(data))


@router.post(
    "",
    response_model=AgreementResponse,
    status_code=201,
    summary="Create a new agreement",
)
async def create_agreement(
    request: CreateAgreementRequest,
    engine: AgreementEngine = Depends(get_engine),
) -> AgreementResponse:
    """Create an agreement in CREATED state with PENDING milestones."""
    agreement = await engine.create_agreement(
        payer=request.payer_address,
        beneficiary=request.beneficiary_address,
        total_amount=request.total_amount,
        milestones=[
            MilestoneDraft(
                title=m.title,
                amount=m.amount,
                description=m.description,
                verification_source=m.verification_source,
            )
            for m in request.milestones
        ],
        oracle_admin=request.oracle_address,
        title=request.title,
        description=request.description,
        tags=request.tags,
    )
    return AgreementResponse.model_validate(agreement)


@router.get("/{agreement_id}", response_model=AgreementResponse, summary="Get agreement details")
async def get_agreement(
    agreement_id: uuid.UUID,
    engine: AgreementEngine = Depends(get_engine),
) -> AgreementResponse:
    return AgreementResponse.model_validate(await engine.get_agreement(agreement_id))


# ---------------------------------------------------------------------------
# Funding / Refund
# ---------------------------------------------------------------------------


@router.post("/{agreement_id}/deposit", response_model=AgreementResponse, summary="Deposit funds")
async def deposit(
    agreement_id: uuid.UUID,
    request: DepositRequest,
    engine: AgreementEngine = Depends(get_engine),
) -> AgreementResponse:
    """Lock the full total. Transitions CREATED -> FUNDED."""
    agreement = await engine.deposit(agreement_id, request.amount, request.from_address)
    return AgreementResponse.model_validate(agreement)


@router.post("/{agreement_id}/refund", response_model=AgreementResponse, summary="Refund payer")
async def refund(
    agreement_id: uuid.UUID,
    request: RefundRequest,
    engine: AgreementEngine = Depends(get_engine),
) -> AgreementResponse:
    """Return locked funds to the payer once the timeout has passed."""
    agreement = await engine.refund(agreement_id, request.payer_address)
    return AgreementResponse.model_validate(agreement)


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


@router.post(
    "/{agreement_id}/milestones/{milestone_id}/trigger",
    response_model=AgreementResponse,
    summary="Manually verify a milestone",
)
async def trigger_milestone(
    agreement_id: uuid.UUID,
    milestone_id: uuid.UUID,
    request: TriggerMilestoneRequest,
    oracle: OracleService = Depends(get_oracle),
) -> AgreementResponse:
    agreement = await oracle.manual_trigger(
        agreement_id, milestone_id, triggered_by=request.oracle_address, reason=request.reason
    )
    return AgreementResponse.model_validate(agreement)


@router.post(
    "/{agreement_id}/milestones/{milestone_id}/release",
    response_model=AgreementResponse,
    summary="Release a verified milestone",
)
async def release_milestone(
    agreement_id: uuid.UUID,
    milestone_id: uuid.UUID,
    engine: AgreementEngine = Depends(get_engine),
) -> AgreementResponse:
    agreement = await engine.release_milestone(agreement_id, milestone_id)
    return AgreementResponse.model_validate(agreement)


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.post("/{agreement_id}/dispute", response_model=AgreementResponse, summary="Raise a dispute")
async def raise_dispute(
    agreement_id: uuid.UUID,
    request: RaiseDisputeRequest,
    engine: AgreementEngine = Depends(get_engine),
) -> AgreementResponse:
    agreement = await engine.raise_dispute(agreement_id, request.caller_address, request.reason)
    return AgreementResponse.model_validate(agreement)


@router.post(
    "/{agreement_id}/dispute/resolve",
    response_model=AgreementResponse,
    summary="Resolve a dispute",
)
async def resolve_dispute(
    agreement_id: uuid.UUID,
    request: ResolveDisputeRequest,
    engine: AgreementEngine = Depends(get_engine),
) -> AgreementResponse:
    agreement = await engine.resolve_dispute(
        agreement_id, request.resolver_address, refund_payer=request.refund_payer
    )
    return AgreementResponse.model_validate(agreement)


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


@router.get(
    "/{agreement_id}/evidence",
    response_model=list[EvidenceEventResponse],
    summary="Evidence event log",
)
async def list_evidence(
    agreement_id: uuid.UUID,
    milestone_id: uuid.UUID | None = Query(default=None),
    oracle: OracleService = Depends(get_oracle),
) -> list[EvidenceEventResponse]:
    events = await oracle.list_evidence_events(agreement_id, milestone_id)
    return [EvidenceEventResponse.model_validate(e) for e in events]
