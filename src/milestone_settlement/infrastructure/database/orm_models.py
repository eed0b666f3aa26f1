"""SQLAlchemy 2.0 ORM models for milestone settlement.

Four tables:
    1. agreements               — Escrow agreements between payer and beneficiary.
    2. milestones               — Ordered tranches of an agreement's total.
    3. settlement_transactions  — Append-only record of every fund movement.
    4. evidence_events          — Append-only log of evidence submissions.

Design decisions:
    - UUIDs as primary keys (generic Uuid type: native on PostgreSQL, CHAR on SQLite).
    - BigInteger for amounts in the ledger's smallest unit (no floats, no Decimal
      round-trips through SQLite).
    - UTC-aware timestamps on every dialect (UTCDateTime re-attaches tzinfo).
    - ``version`` column drives SQLAlchemy's optimistic concurrency check on
      agreements: a lost update raises StaleDataError at flush.
    - Partial unique index: at most one ACCEPTED evidence event per milestone.
    - settlement_transactions and evidence_events are append-only: no UPDATE or
      DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from milestone_settlement.domain.enums import (
    AgreementState,
    EvidenceOutcome,
    MilestoneState,
    TransactionStatus,
    TransactionType,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_values(column: str, enum_cls: type) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always round-trips as UTC.

    SQLite stores naive timestamps; values are normalized to UTC on the way in
    and tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime is not allowed, use UTC-aware values")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# 1. agreements
# ---------------------------------------------------------------------------
class Agreement(Base):
    """An escrow agreement between a payer and a beneficiary."""

    __tablename__ = "agreements"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Settlement peer reference ---
    external_ref: Mapped[str | None] = mapped_column(
        String(80),
        nullable=True,
        default=None,
        comment="Agreement id on the settlement peer (or a simulated reference)",
    )
    peer_confirmed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether the peer itself acknowledged creation",
    )

    # --- Participants ---
    payer_address: Mapped[str] = mapped_column(String(128), nullable=False)
    beneficiary_address: Mapped[str] = mapped_column(String(128), nullable=False)
    oracle_admin_address: Mapped[str] = mapped_column(String(128), nullable=False)

    # --- Descriptive metadata ---
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # --- Financials (smallest ledger unit) ---
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    locked_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    released_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fees_accrued: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # --- Status (guarded by AgreementStateMachine) ---
    state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AgreementState.CREATED.value,
    )
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    funded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    timeout_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Optimistic concurrency ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Relationships ---
    milestones: Mapped[list[Milestone]] = relationship(
        "Milestone",
        back_populates="agreement",
        cascade="all, delete-orphan",
        order_by="Milestone.sequence_number",
        lazy="selectin",
    )
    transactions: Mapped[list[SettlementTransaction]] = relationship(
        "SettlementTransaction",
        back_populates="agreement",
        cascade="all, delete-orphan",
        order_by="SettlementTransaction.created_at.asc()",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(_in_values("state", AgreementState), name="ck_agreement_valid_state"),
        CheckConstraint("total_amount > 0", name="ck_agreement_positive_total"),
        CheckConstraint(
            "locked_amount >= 0 AND released_amount >= 0 AND fees_accrued >= 0",
            name="ck_agreement_non_negative_balances",
        ),
        CheckConstraint(
            "locked_amount + released_amount + fees_accrued <= total_amount",
            name="ck_agreement_conservation",
        ),
        Index("idx_agreement_state", "state"),
        Index("idx_agreement_payer", "payer_address"),
        Index("idx_agreement_beneficiary", "beneficiary_address"),
        Index("idx_agreement_oracle", "oracle_admin_address"),
        Index("idx_agreement_created_at", "created_at"),
    )

    def milestone(self, milestone_id: uuid.UUID) -> Milestone | None:
        for m in self.milestones:
            if m.id == milestone_id:
                return m
        return None

    def __repr__(self) -> str:
        return (
            f"<Agreement id={self.id} state={self.state} "
            f"locked={self.locked_amount} released={self.released_amount}>"
        )


# ---------------------------------------------------------------------------
# 2. milestones
# ---------------------------------------------------------------------------
class Milestone(Base):
    """One tranche of an agreement, released after verified evidence."""

    __tablename__ = "milestones"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    agreement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("agreements.id", ondelete="CASCADE"),
        nullable=False,
    )

    sequence_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based position in the agreement's input order",
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    verification_source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")

    state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=MilestoneState.PENDING.value,
    )
    evidence_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    agreement: Mapped[Agreement] = relationship("Agreement", back_populates="milestones")

    __table_args__ = (
        CheckConstraint(_in_values("state", MilestoneState), name="ck_milestone_valid_state"),
        CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
        CheckConstraint("sequence_number >= 1", name="ck_milestone_sequence"),
        UniqueConstraint("agreement_id", "sequence_number", name="uq_milestone_sequence"),
        Index("idx_milestone_agreement", "agreement_id"),
    )

    def __repr__(self) -> str:
        return f"<Milestone id={self.id} seq={self.sequence_number} state={self.state}>"


# ---------------------------------------------------------------------------
# 3. settlement_transactions (Append-Only)
# ---------------------------------------------------------------------------
class SettlementTransaction(Base):
    """Immutable record of one economically meaningful fund movement."""

    __tablename__ = "settlement_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    agreement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("agreements.id", ondelete="CASCADE"),
        nullable=False,
    )
    milestone_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("milestones.id", ondelete="SET NULL"),
        nullable=True,
        comment="Set for RELEASE rows",
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    from_address: Mapped[str] = mapped_column(String(128), nullable=False)
    to_address: Mapped[str] = mapped_column(String(128), nullable=False)

    tx_hash: Mapped[str] = mapped_column(String(80), nullable=False)
    simulated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="True when the settlement peer was not reached",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.CONFIRMED.value,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    agreement: Mapped[Agreement] = relationship("Agreement", back_populates="transactions")

    __table_args__ = (
        CheckConstraint(_in_values("type", TransactionType), name="ck_tx_valid_type"),
        CheckConstraint(_in_values("status", TransactionStatus), name="ck_tx_valid_status"),
        CheckConstraint("amount >= 0 AND fee_amount >= 0", name="ck_tx_non_negative"),
        Index("idx_tx_agreement", "agreement_id"),
        Index("idx_tx_type", "type"),
    )

    def __repr__(self) -> str:
        return f"<SettlementTransaction id={self.id} type={self.type} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 4. evidence_events (Append-Only)
# ---------------------------------------------------------------------------
class EvidenceEvent(Base):
    """Immutable record of one evidence submission and its verdict."""

    __tablename__ = "evidence_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    agreement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("agreements.id", ondelete="CASCADE"),
        nullable=False,
    )
    milestone_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("milestones.id", ondelete="CASCADE"),
        nullable=False,
    )

    source: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str] = mapped_column(String(60), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    signature: Mapped[str | None] = mapped_column(String(200), nullable=True)
    fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(_in_values("outcome", EvidenceOutcome), name="ck_evidence_valid_outcome"),
        Index("idx_evidence_agreement", "agreement_id"),
        Index("idx_evidence_milestone", "milestone_id"),
        Index(
            "uq_evidence_accepted_per_milestone",
            "milestone_id",
            unique=True,
            sqlite_where=text("outcome = 'ACCEPTED'"),
            postgresql_where=text("outcome = 'ACCEPTED'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<EvidenceEvent id={self.id} source={self.source} outcome={self.outcome}>"
