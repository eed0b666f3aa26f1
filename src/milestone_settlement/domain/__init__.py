"""Domain layer — pure business logic with zero framework dependencies."""

from milestone_settlement.domain.enums import (
    AgreementState,
    EvidenceOutcome,
    MilestoneState,
    NetworkMode,
    SourceKind,
    TransactionStatus,
    TransactionType,
)
from milestone_settlement.domain.exceptions import (
    AgreementNotFoundError,
    InvalidStateError,
    PeerError,
    SettlementError,
)
from milestone_settlement.domain.fees import split_release
from milestone_settlement.domain.state_machine import (
    AgreementStateMachine,
    MilestoneStateMachine,
    fire_transition,
)
from milestone_settlement.domain.verifier_protocol import (
    EvidenceSubmission,
    EvidenceVerdict,
    EvidenceVerifier,
)

__all__ = [
    "AgreementState",
    "EvidenceOutcome",
    "MilestoneState",
    "NetworkMode",
    "SourceKind",
    "TransactionStatus",
    "TransactionType",
    "AgreementNotFoundError",
    "InvalidStateError",
    "PeerError",
    "SettlementError",
    "split_release",
    "AgreementStateMachine",
    "MilestoneStateMachine",
    "fire_transition",
    "EvidenceSubmission",
    "EvidenceVerdict",
    "EvidenceVerifier",
]
