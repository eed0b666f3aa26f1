"""Tests for domain enumerations."""

from __future__ import annotations

from milestone_settlement.domain.enums import (
    AgreementState,
    EvidenceOutcome,
    MilestoneState,
    NetworkMode,
    SourceKind,
    TransactionType,
)


class TestAgreementState:
    def test_all_states_exist(self) -> None:
        expected = {"CREATED", "FUNDED", "ACTIVE", "COMPLETED", "REFUNDED", "DISPUTED"}
        assert {s.value for s in AgreementState} == expected

    def test_state_is_str_enum(self) -> None:
        assert isinstance(AgreementState.CREATED, str)
        assert AgreementState.FUNDED == "FUNDED"


class TestMilestoneState:
    def test_all_states_exist(self) -> None:
        assert {s.value for s in MilestoneState} == {"PENDING", "VERIFIED", "RELEASED", "CANCELLED"}


class TestTransactionType:
    def test_types(self) -> None:
        assert {t.value for t in TransactionType} == {"DEPOSIT", "RELEASE", "REFUND", "FEE"}


class TestSourceKind:
    def test_sources_are_lowercase(self) -> None:
        assert SourceKind.GITHUB == "github"
        assert SourceKind("zapier") is SourceKind.ZAPIER
        assert len(SourceKind) == 6


class TestMisc:
    def test_evidence_outcomes(self) -> None:
        assert {o.value for o in EvidenceOutcome} == {"ACCEPTED", "REJECTED", "ERROR"}

    def test_network_modes(self) -> None:
        assert NetworkMode("DEMO_OFFCHAIN") is NetworkMode.DEMO_OFFCHAIN
