"""Oracle Service — the evidence ingestion boundary.

Webhooks from GitHub, Jira, invoicing systems and automation platforms land
here. The service checks that the source is enabled, optionally verifies the
HMAC-SHA256 signature over the raw body, and forwards the evidence to the
Agreement Engine, which owns verification and the evidence log.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from typing import TYPE_CHECKING, Any

from milestone_settlement.domain.enums import SourceKind
from milestone_settlement.domain.exceptions import ForbiddenError, UnknownSourceError
from milestone_settlement.domain.verifier_protocol import EvidenceSubmission
from milestone_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from milestone_settlement.config import Settings
    from milestone_settlement.infrastructure.database.orm_models import Agreement, EvidenceEvent
    from milestone_settlement.services.agreement_engine import AgreementEngine

logger = get_logger(__name__)

_AGREEMENT_TAG = re.compile(r"agreement:\s*(\S+)", re.IGNORECASE)
_MILESTONE_TAG = re.compile(r"milestone:\s*(\S+)", re.IGNORECASE)


def extract_pr_references(body: str | None) -> tuple[str, str] | None:
    """Find ``agreement: <id>`` and ``milestone: <id>`` markers in a PR description."""
    if not body:
        return None
    agreement = _AGREEMENT_TAG.search(body)
    milestone = _MILESTONE_TAG.search(body)
    if agreement is None or milestone is None:
        return None
    return agreement.group(1), milestone.group(1)


class OracleService:
    """Accepts external evidence and triggers milestone verification."""

    def __init__(
        self,
        engine: AgreementEngine,
        *,
        allowed_sources: Iterable[SourceKind] | None = None,
        webhook_secret: str | None = None,
    ) -> None:
        self._engine = engine
        self._allowed = frozenset(allowed_sources) if allowed_sources is not None else frozenset(SourceKind)
        self._secret = webhook_secret

    @classmethod
    def from_settings(cls, settings: Settings, engine: AgreementEngine) -> OracleService:
        return cls(
            engine,
            allowed_sources=settings.allowed_sources,
            webhook_secret=settings.webhook_secret or None,
        )

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def verify_signature(self, body: bytes, signature: str) -> bool:
        """Constant-time check of a hex HMAC-SHA256 over the raw request body.

        Accepts GitHub's ``sha256=<hex>`` form as well as the bare hex digest.
        """
        if not self._secret:
            return False
        provided = signature.removeprefix("sha256=").strip().lower()
        expected = hmac.new(self._secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(provided, expected)

    def parse_source(self, source: str) -> SourceKind:
        try:
            kind = SourceKind(source.strip().lower())
        except ValueError as exc:
            raise UnknownSourceError(source) from exc
        if kind not in self._allowed:
            logger.warning("oracle.source_disabled", source=source)
            raise UnknownSourceError(source)
        return kind

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def process_webhook(
        self,
        agreement_id: uuid.UUID,
        milestone_id: uuid.UUID,
        source: str,
        event: str,
        evidence: dict[str, Any],
        signature: str | None = None,
    ) -> Agreement:
        """Forward one webhook's evidence to milestone verification.

        Raises:
            UnknownSourceError: The source is unknown or not enabled.
            ForbiddenError: Manual approval arrived outside manual_trigger.
            EvidenceRejectedError: The verifier did not accept the evidence.
        """
        kind = self.parse_source(source)
        if kind is SourceKind.MANUAL:
            logger.warning(
                "oracle.manual_webhook_refused",
                agreement_id=str(agreement_id),
                milestone_id=str(milestone_id),
            )
            raise ForbiddenError("Manual approval is only accepted from the oracle admin trigger")
        return await self._forward(agreement_id, milestone_id, kind, event, evidence, signature)

    async def _forward(
        self,
        agreement_id: uuid.UUID,
        milestone_id: uuid.UUID,
        kind: SourceKind,
        event: str,
        evidence: dict[str, Any],
        signature: str | None = None,
    ) -> Agreement:
        logger.info(
            "oracle.webhook_received",
            agreement_id=str(agreement_id),
            milestone_id=str(milestone_id),
            source=kind.value,
            event_type=event,
        )
        submission = EvidenceSubmission(
            source=kind,
            event_type=event,
            payload=dict(evidence),
            signature=signature,
        )
        return await self._engine.verify_milestone(agreement_id, milestone_id, submission)

    async def manual_trigger(
        self,
        agreement_id: uuid.UUID,
        milestone_id: uuid.UUID,
        triggered_by: str,
        reason: str = "Manual trigger",
    ) -> Agreement:
        """Oracle admin approval, bypassing the milestone's configured source."""
        agreement = await self._engine.get_agreement(agreement_id)
        if triggered_by != agreement.oracle_admin_address:
            raise ForbiddenError("Only the oracle admin can trigger a milestone manually")
        logger.info(
            "oracle.manual_trigger",
            agreement_id=str(agreement_id),
            milestone_id=str(milestone_id),
        )
        if SourceKind.MANUAL not in self._allowed:
            raise UnknownSourceError(SourceKind.MANUAL.value)
        return await self._forward(
            agreement_id,
            milestone_id,
            SourceKind.MANUAL,
            "manual_approval",
            {"reason": reason, "triggeredBy": triggered_by},
        )

    async def list_evidence_events(
        self, agreement_id: uuid.UUID, milestone_id: uuid.UUID | None = None
    ) -> list[EvidenceEvent]:
        return await self._engine.list_evidence(agreement_id, milestone_id)
