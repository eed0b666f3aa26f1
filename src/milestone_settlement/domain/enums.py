"""Domain enumerations for milestone settlement.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class AgreementState(enum.StrEnum):
    """Lifecycle states of an escrow agreement.

    State transitions are enforced by the AgreementStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    CREATED = "CREATED"
    FUNDED = "FUNDED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"
    DISPUTED = "DISPUTED"


class MilestoneState(enum.StrEnum):
    """Lifecycle states of a single milestone. RELEASED and CANCELLED are terminal."""

    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    RELEASED = "RELEASED"
    CANCELLED = "CANCELLED"


class TransactionType(enum.StrEnum):
    """Types of rows in the append-only settlement_transactions table.

    FEE is reserved: the protocol fee withheld on a release is carried on
    the RELEASE row itself (fee_amount).
    """

    DEPOSIT = "DEPOSIT"
    RELEASE = "RELEASE"
    REFUND = "REFUND"
    FEE = "FEE"


class TransactionStatus(enum.StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class EvidenceOutcome(enum.StrEnum):
    """Outcome of one evidence submission against a milestone."""

    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ERROR = "ERROR"


class SourceKind(enum.StrEnum):
    """External evidence sources. Each maps to exactly one verifier."""

    GITHUB = "github"
    GITLAB = "gitlab"
    JIRA = "jira"
    INVOICE = "invoice"
    MANUAL = "manual"
    ZAPIER = "zapier"


class NetworkMode(enum.StrEnum):
    """Configured settlement network.

    DEMO_OFFCHAIN pins every peer call to the local simulation path.
    """

    LOCAL_DEV = "LOCAL_DEV"
    PUBLIC_TESTNET = "PUBLIC_TESTNET"
    DEMO_OFFCHAIN = "DEMO_OFFCHAIN"


class ListRole(enum.StrEnum):
    """Which party column a wallet address is matched against when listing."""

    PAYER = "payer"
    BENEFICIARY = "beneficiary"
    ORACLE = "oracle"
    ALL = "all"
