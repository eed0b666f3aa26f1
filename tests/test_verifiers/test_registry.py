"""Unit tests for the VerifierRegistry."""

from __future__ import annotations

import pytest

from milestone_settlement.domain.enums import SourceKind
from milestone_settlement.domain.exceptions import UnknownSourceError
from milestone_settlement.verifiers import (
    GitHubVerifier,
    ManualVerifier,
    VerifierRegistry,
)


class TestVerifierRegistry:
    def test_default_registers_every_source(self) -> None:
        registry = VerifierRegistry.default()
        assert set(registry.sources) == set(SourceKind)
        assert isinstance(registry.get(SourceKind.GITHUB), GitHubVerifier)

    def test_enabled_subset(self) -> None:
        registry = VerifierRegistry.default(enabled={SourceKind.MANUAL})
        assert registry.sources == [SourceKind.MANUAL]
        assert SourceKind.GITHUB not in registry

    def test_unregistered_source_raises(self) -> None:
        registry = VerifierRegistry.default(enabled={SourceKind.MANUAL})
        with pytest.raises(UnknownSourceError) as exc_info:
            registry.get(SourceKind.JIRA)
        assert exc_info.value.code == "UNKNOWN_SOURCE"

    def test_mismatched_registration_rejected(self) -> None:
        with pytest.raises(ValueError, match="registered under"):
            VerifierRegistry({SourceKind.GITHUB: ManualVerifier()})

    def test_non_verifier_rejected(self) -> None:
        with pytest.raises(TypeError, match="does not implement"):
            VerifierRegistry({SourceKind.GITHUB: object()})  # type: ignore[dict-item]
