"""Manual and automation verifiers.

Manual approvals are the oracle admin's override: any ``manual_approval`` or
``admin_trigger`` event is accepted. Zapier/Make automations send a single
``automation_trigger`` event.

The fingerprint covers the event name and the full evidence body, so an
approval re-delivered with identical content fingerprints identically.
"""

from __future__ import annotations

from milestone_settlement.domain.enums import SourceKind
from milestone_settlement.domain.verifier_protocol import (
    EvidenceSubmission,
    EvidenceVerdict,
)

MANUAL_EVENTS = frozenset({"manual_approval", "admin_trigger"})


class ManualVerifier:
    source = SourceKind.MANUAL

    async def verify(self, submission: EvidenceSubmission) -> EvidenceVerdict:
        if submission.event_type not in MANUAL_EVENTS:
            return EvidenceVerdict.reject(f"Unknown manual event: {submission.event_type}")
        return EvidenceVerdict.accept({
            **submission.payload,
            "type": "manual",
            "event": submission.event_type,
        })


class ZapierVerifier:
    source = SourceKind.ZAPIER

    async def verify(self, submission: EvidenceSubmission) -> EvidenceVerdict:
        if submission.event_type != "automation_trigger":
            return EvidenceVerdict.reject(f"Unknown Zapier event: {submission.event_type}")
        return EvidenceVerdict.accept({
            **submission.payload,
            "type": "zapier",
            "event": submission.event_type,
        })
