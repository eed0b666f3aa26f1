"""Unit tests for the manual approval and Zapier verifiers."""

from __future__ import annotations

import pytest

from milestone_settlement.domain.enums import SourceKind
from milestone_settlement.domain.verifier_protocol import EvidenceSubmission
from milestone_settlement.verifiers.manual import ManualVerifier, ZapierVerifier


class TestManualVerifier:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("event", ["manual_approval", "admin_trigger"])
    async def test_manual_events_accepted(self, event: str) -> None:
        submission = EvidenceSubmission(
            source=SourceKind.MANUAL, event_type=event, payload={"reason": "Looks good"}
        )
        verdict = await ManualVerifier().verify(submission)
        assert verdict.accepted is True

    @pytest.mark.asyncio
    async def test_same_content_same_fingerprint(self) -> None:
        submission = EvidenceSubmission(
            source=SourceKind.MANUAL,
            event_type="manual_approval",
            payload={"reason": "ok", "triggeredBy": "oracle-demo"},
        )
        first = await ManualVerifier().verify(submission)
        second = await ManualVerifier().verify(submission)
        assert first.fingerprint == second.fingerprint

    @pytest.mark.asyncio
    async def test_unknown_event_rejected(self) -> None:
        submission = EvidenceSubmission(source=SourceKind.MANUAL, event_type="vibes")
        verdict = await ManualVerifier().verify(submission)
        assert verdict.reason == "Unknown manual event: vibes"


class TestZapierVerifier:
    @pytest.mark.asyncio
    async def test_automation_trigger_accepted(self) -> None:
        submission = EvidenceSubmission(
            source=SourceKind.ZAPIER,
            event_type="automation_trigger",
            payload={"reason": "Form submitted"},
        )
        verdict = await ZapierVerifier().verify(submission)
        assert verdict.accepted is True

    @pytest.mark.asyncio
    async def test_other_events_rejected(self) -> None:
        submission = EvidenceSubmission(source=SourceKind.ZAPIER, event_type="zap_paused")
        verdict = await ZapierVerifier().verify(submission)
        assert verdict.accepted is False
        assert verdict.reason == "Unknown Zapier event: zap_paused"
