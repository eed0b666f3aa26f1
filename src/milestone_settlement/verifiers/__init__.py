"""Evidence verifier implementations and the static registry.

Six verifiers, one per SourceKind:
    - GitHubVerifier / GitLabVerifier:  merged pull/merge requests
    - JiraVerifier:                     completed tickets
    - InvoiceVerifier:                  paid invoices
    - ManualVerifier:                   oracle admin approvals
    - ZapierVerifier:                   automation triggers

The VerifierRegistry is built once at startup and maps each enabled
SourceKind to its verifier instance. There is no lookup-by-string and no
implicit default: an unregistered source is an error at the call site.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from milestone_settlement.domain.enums import SourceKind
from milestone_settlement.domain.exceptions import UnknownSourceError
from milestone_settlement.domain.verifier_protocol import (
    EvidenceSubmission,
    EvidenceVerdict,
    EvidenceVerifier,
)
from milestone_settlement.verifiers.code_hosting import GitHubVerifier, GitLabVerifier
from milestone_settlement.verifiers.manual import ManualVerifier, ZapierVerifier
from milestone_settlement.verifiers.tracking import InvoiceVerifier, JiraVerifier


class VerifierRegistry:
    """Immutable SourceKind -> EvidenceVerifier capability map.

    Usage:
        registry = VerifierRegistry.default()
        verdict = await registry.get(SourceKind.GITHUB).verify(submission)

        # Restrict to the configured webhook sources:
        registry = VerifierRegistry.default(enabled={SourceKind.MANUAL})
    """

    def __init__(self, verifiers: Mapping[SourceKind, EvidenceVerifier]) -> None:
        for kind, verifier in verifiers.items():
            if not isinstance(verifier, EvidenceVerifier):
                raise TypeError(f"{verifier!r} does not implement EvidenceVerifier")
            if verifier.source != kind:
                raise ValueError(f"Verifier for {verifier.source} registered under {kind}")
        self._verifiers: dict[SourceKind, EvidenceVerifier] = dict(verifiers)

    @classmethod
    def default(cls, enabled: Iterable[SourceKind] | None = None) -> VerifierRegistry:
        """Build the registry with every built-in verifier (or the enabled subset)."""
        builtins: list[EvidenceVerifier] = [
            GitHubVerifier(),
            GitLabVerifier(),
            JiraVerifier(),
            InvoiceVerifier(),
            ManualVerifier(),
            ZapierVerifier(),
        ]
        allowed = set(enabled) if enabled is not None else {v.source for v in builtins}
        return cls({v.source: v for v in builtins if v.source in allowed})

    def get(self, source: SourceKind) -> EvidenceVerifier:
        verifier = self._verifiers.get(source)
        if verifier is None:
            raise UnknownSourceError(str(source))
        return verifier

    def __contains__(self, source: object) -> bool:
        return source in self._verifiers

    @property
    def sources(self) -> list[SourceKind]:
        return sorted(self._verifiers)


__all__ = [
    "EvidenceSubmission",
    "EvidenceVerdict",
    "EvidenceVerifier",
    "GitHubVerifier",
    "GitLabVerifier",
    "InvoiceVerifier",
    "JiraVerifier",
    "ManualVerifier",
    "VerifierRegistry",
    "ZapierVerifier",
]
