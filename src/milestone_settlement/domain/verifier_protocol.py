"""Evidence Verifier Protocol.

Defines the interface that every per-source evidence verifier implements.
This is a Protocol (structural subtyping) so concrete verifiers don't need
to inherit from a base class — they just need to match the shape.

The domain layer has ZERO imports from HTTP clients or storage.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from milestone_settlement.domain.enums import EvidenceOutcome, SourceKind


@dataclass(frozen=True)
class EvidenceSubmission:
    """A claimed external event offered as proof for one milestone.

    Attributes:
        source: Which external system produced the event.
        event_type: Source-specific event name (e.g. "pr_merged").
        payload: The opaque evidence body as received.
        signature: Optional webhook signature, kept for the audit trail.
    """

    source: SourceKind
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    signature: str | None = None


@dataclass(frozen=True)
class EvidenceVerdict:
    """Output from a verifier.

    Attributes:
        accepted: Whether the event proves the milestone.
        reason: Human-readable explanation, always set on rejection.
        fingerprint: Hex SHA-256 of the canonical evidence, set on acceptance.
        error: Set when the verifier itself failed (not the evidence).
    """

    accepted: bool
    reason: str | None = None
    fingerprint: str | None = None
    error: str | None = None

    @property
    def outcome(self) -> EvidenceOutcome:
        if self.accepted:
            return EvidenceOutcome.ACCEPTED
        if self.error:
            return EvidenceOutcome.ERROR
        return EvidenceOutcome.REJECTED

    @classmethod
    def accept(cls, evidence: dict[str, Any]) -> EvidenceVerdict:
        return cls(accepted=True, fingerprint=fingerprint_evidence(evidence))

    @classmethod
    def reject(cls, reason: str) -> EvidenceVerdict:
        return cls(accepted=False, reason=reason)


def fingerprint_evidence(evidence: dict[str, Any]) -> str:
    """Deterministic digest of accepted evidence.

    Canonical JSON (sorted keys, compact separators) so the same payload
    always yields the same fingerprint regardless of key order.
    """
    canonical = json.dumps(evidence, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@runtime_checkable
class EvidenceVerifier(Protocol):
    """Protocol that all evidence verifiers must satisfy.

    Concrete implementations:
        - verifiers/code_hosting.py  (GitHub, GitLab merges)
        - verifiers/tracking.py      (Jira tickets, paid invoices)
        - verifiers/manual.py        (manual approvals, Zapier automations)
    """

    source: SourceKind

    async def verify(self, submission: EvidenceSubmission) -> EvidenceVerdict:
        """Decide whether the submitted event proves milestone completion.

        Must be deterministic: the same submission always yields the same
        verdict and fingerprint.
        """
        ...
