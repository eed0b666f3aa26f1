"""Webhook routes — external evidence arriving from GitHub, Zapier and others.

Routes:
    POST /api/v1/webhooks/milestone              — Generic evidence webhook
    POST /api/v1/webhooks/github                 — GitHub pull_request events
    POST /api/v1/webhooks/zapier                 — Zapier/Make automation trigger
    GET  /api/v1/webhooks/events/{agreement_id}  — Evidence events for an agreement

When a signature header is present it must be a valid HMAC-SHA256 of the
raw request body under the configured webhook secret.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request

from milestone_settlement.api.deps import get_oracle
from milestone_settlement.domain.enums import SourceKind
from milestone_settlement.domain.exceptions import InvalidSignatureError
from milestone_settlement.logging_config import get_logger
from milestone_settlement.schemas.agreements import (
    AgreementResponse,
    EvidenceEventResponse,
    WebhookIgnoredResponse,
    WebhookRequest,
)
from milestone_settlement.services.oracle_service import OracleService, extract_pr_references

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


async def _check_signature(request: Request, oracle: OracleService, signature: str | None) -> None:
    if signature is None:
        return
    if not oracle.verify_signature(await request.body(), signature):
        logger.warning("webhook.invalid_signature", path=request.url.path)
        raise InvalidSignatureError()


def _parse_uuid(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"{field} is not a valid id") from exc


@router.post("/milestone", response_model=AgreementResponse, summary="Generic milestone webhook")
async def milestone_webhook(
    request: Request,
    payload: WebhookRequest,
    x_webhook_signature: str | None = Header(default=None),
    oracle: OracleService = Depends(get_oracle),
) -> AgreementResponse:
    await _check_signature(request, oracle, x_webhook_signature)
    agreement = await oracle.process_webhook(
        payload.agreement_id,
        payload.milestone_id,
        payload.source,
        payload.event,
        payload.evidence,
        signature=x_webhook_signature or payload.signature,
    )
    return AgreementResponse.model_validate(agreement)


@router.post(
    "/github",
    response_model=AgreementResponse | WebhookIgnoredResponse,
    summary="GitHub pull request webhook",
)
async def github_webhook(
    request: Request,
    body: dict[str, Any] = Body(...),
    x_github_event: str | None = Header(default=None),
    x_hub_signature_256: str | None = Header(default=None),
    oracle: OracleService = Depends(get_oracle),
) -> AgreementResponse | WebhookIgnoredResponse:
    """Map a merged pull request to ``pr_merged`` evidence.

    The PR description names its target with ``agreement: <id>`` and
    ``milestone: <id>`` lines.
    """
    await _check_signature(request, oracle, x_hub_signature_256)

    pr = body.get("pull_request") or {}
    if x_github_event != "pull_request" or body.get("action") != "closed" or not pr.get("merged"):
        return WebhookIgnoredResponse(reason=f"Unhandled event: {x_github_event}")

    refs = extract_pr_references(pr.get("body"))
    if refs is None:
        logger.info("webhook.github_unlinked_pr", pr=pr.get("number"))
        return WebhookIgnoredResponse(reason="No agreement/milestone in PR body")

    agreement_id, milestone_id = refs
    agreement = await oracle.process_webhook(
        _parse_uuid(agreement_id, "agreement"),
        _parse_uuid(milestone_id, "milestone"),
        SourceKind.GITHUB.value,
        "pr_merged",
        {
            "repo": (body.get("repository") or {}).get("full_name"),
            "pr": pr.get("number"),
            "commit": pr.get("merge_commit_sha"),
            "merged": True,
            "author": (pr.get("user") or {}).get("login"),
            "title": pr.get("title"),
            "url": pr.get("html_url"),
        },
        signature=x_hub_signature_256,
    )
    return AgreementResponse.model_validate(agreement)


@router.post("/zapier", response_model=AgreementResponse, summary="Zapier/Make automation webhook")
async def zapier_webhook(
    request: Request,
    body: dict[str, Any] = Body(...),
    x_webhook_signature: str | None = Header(default=None),
    oracle: OracleService = Depends(get_oracle),
) -> AgreementResponse:
    await _check_signature(request, oracle, x_webhook_signature)

    extra = dict(body)
    agreement_id = extra.pop("agreement_id", None)
    milestone_id = extra.pop("milestone_id", None)
    if not agreement_id or not milestone_id:
        raise HTTPException(status_code=400, detail="agreement_id and milestone_id are required")
    reason = extra.pop("trigger_reason", None) or "Zapier automation trigger"

    agreement = await oracle.process_webhook(
        _parse_uuid(agreement_id, "agreement_id"),
        _parse_uuid(milestone_id, "milestone_id"),
        SourceKind.ZAPIER.value,
        "automation_trigger",
        {"reason": reason, **extra},
        signature=x_webhook_signature,
    )
    return AgreementResponse.model_validate(agreement)


@router.get(
    "/events/{agreement_id}",
    response_model=list[EvidenceEventResponse],
    summary="Evidence events for an agreement",
)
async def webhook_events(
    agreement_id: uuid.UUID,
    oracle: OracleService = Depends(get_oracle),
) -> list[EvidenceEventResponse]:
    events = await oracle.list_evidence_events(agreement_id)
    return [EvidenceEventResponse.model_validate(e) for e in events]
