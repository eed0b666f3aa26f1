"""Agreement Engine — core business logic for the agreement lifecycle.

This is the application layer that coordinates between:
    - Domain state machines (transition guards)
    - Evidence verifiers (milestone proof)
    - Fallback controller (settlement peer or simulation)
    - Repositories (durable store)

Every mutating operation runs as one unit of work:
    per-agreement lock -> fresh session -> load -> validate -> peer call
    -> mutate -> commit

Nothing is persisted when validation or a fatal peer error fails the
operation. Both REST routes and the oracle ingestion service call into this
engine, so it is the single source of truth for all settlement rules.
"""

from __future__ import annotations

import asyncio
import uuid
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from milestone_settlement.domain.enums import (
    AgreementState,
    ListRole,
    MilestoneState,
    SourceKind,
    TransactionStatus,
    TransactionType,
)
from milestone_settlement.domain.exceptions import (
    AgreementNotFoundError,
    AmountMismatchError,
    ConcurrentModificationError,
    EvidenceRejectedError,
    ForbiddenError,
    InvalidStateError,
    MilestoneNotFoundError,
    TooEarlyError,
    ValidationError,
)
from milestone_settlement.domain.fees import MAX_AMOUNT, ReleaseSplit, split_release
from milestone_settlement.domain.state_machine import (
    AgreementStateMachine,
    MilestoneStateMachine,
    fire_transition,
)
from milestone_settlement.domain.verifier_protocol import EvidenceVerdict
from milestone_settlement.infrastructure.database.orm_models import (
    Agreement,
    EvidenceEvent,
    Milestone,
    SettlementTransaction,
)
from milestone_settlement.infrastructure.database.repositories import (
    AgreementRepository,
    AgreementStats,
    EvidenceRepository,
    TransactionRepository,
)
from milestone_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from milestone_settlement.config import Settings
    from milestone_settlement.domain.verifier_protocol import EvidenceSubmission
    from milestone_settlement.infrastructure.peer.protocol import PeerReceipt, SettlementPeer
    from milestone_settlement.services.fallback_controller import (
        FallbackController,
        SettlementOutcome,
    )
    from milestone_settlement.verifiers import VerifierRegistry

logger = get_logger(__name__)

VERIFIABLE_STATES = frozenset({AgreementState.FUNDED.value, AgreementState.ACTIVE.value})


@dataclass(frozen=True)
class MilestoneDraft:
    """One milestone as requested at agreement creation."""

    title: str
    amount: int
    description: str | None = None
    verification_source: SourceKind = SourceKind.MANUAL


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _check_amount(value: object, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer amount")
    if value <= 0:
        raise ValidationError(f"{label} must be positive")
    if value > MAX_AMOUNT:
        raise ValidationError(f"{label} exceeds the maximum storable amount")
    return value


class AgreementEngine:
    """Manages the agreement and milestone lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        controller: FallbackController,
        verifiers: VerifierRegistry,
        *,
        fee_basis_points: int = 50,
        timeout_window: timedelta = timedelta(days=30),
        max_milestones: int = 10,
        default_oracle: str = "oracle-demo",
        custody_address: str = "vault",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._controller = controller
        self._verifiers = verifiers
        self._fee_bps = fee_basis_points
        self._timeout_window = timeout_window
        self._max_milestones = max_milestones
        self._default_oracle = default_oracle
        self._custody_address = custody_address
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        controller: FallbackController,
        verifiers: VerifierRegistry,
    ) -> AgreementEngine:
        return cls(
            session_factory,
            controller,
            verifiers,
            fee_basis_points=settings.fee_basis_points,
            timeout_window=settings.timeout_window,
            max_milestones=settings.max_milestones,
            default_oracle=settings.oracle_address,
            custody_address=settings.vault_contract_address,
        )

    @property
    def verifiers(self) -> VerifierRegistry:
        return self._verifiers

    # ------------------------------------------------------------------
    # Agreement Creation
    # ------------------------------------------------------------------

    async def create_agreement(
        self,
        payer: str,
        beneficiary: str,
        total_amount: int,
        milestones: Sequence[MilestoneDraft],
        *,
        oracle_admin: str | None = None,
        title: str = "",
        description: str | None = None,
        tags: Sequence[str] = (),
    ) -> Agreement:
        """Create a new agreement in CREATED state with PENDING milestones."""
        if not payer or not beneficiary:
            raise ValidationError("payer and beneficiary are required")
        total_amount = _check_amount(total_amount, "total_amount")
        if not milestones:
            raise ValidationError("At least one milestone is required")
        if len(milestones) > self._max_milestones:
            raise ValidationError(f"Maximum {self._max_milestones} milestones allowed")
        amounts = [_check_amount(m.amount, f"milestone {i} amount") for i, m in enumerate(milestones, 1)]
        if sum(amounts) != total_amount:
            raise ValidationError(
                f"Milestone amounts ({sum(amounts)}) must equal total amount ({total_amount})"
            )

        oracle = oracle_admin or self._default_oracle
        now = self._clock()
        agreement = Agreement(
            id=uuid.uuid4(),
            external_ref=None,
            peer_confirmed=False,
            payer_address=payer,
            beneficiary_address=beneficiary,
            oracle_admin_address=oracle,
            title=title,
            description=description,
            tags=list(tags),
            total_amount=total_amount,
            locked_amount=0,
            released_amount=0,
            fees_accrued=0,
            state=AgreementState.CREATED.value,
            created_at=now,
            updated_at=now,
            milestones=[
                Milestone(
                    id=uuid.uuid4(),
                    sequence_number=seq,
                    title=draft.title,
                    description=draft.description,
                    amount=draft.amount,
                    verification_source=SourceKind(draft.verification_source).value,
                    state=MilestoneState.PENDING.value,
                )
                for seq, draft in enumerate(milestones, 1)
            ],
            transactions=[],
        )

        async def persist(outcome: SettlementOutcome) -> None:
            agreement.external_ref = outcome.reference
            agreement.peer_confirmed = not outcome.simulated
            async with self._session_factory() as session:
                await AgreementRepository(session).create(agreement)
                await session.commit()

        outcome = await self._controller.execute(
            "open_agreement",
            lambda peer: peer.open_agreement(
                payer=payer,
                beneficiary=beneficiary,
                oracle_admin=oracle,
                total=total_amount,
                milestone_amounts=amounts,
                title=title,
            ),
            on_late_receipt=persist,
            late_key=str(agreement.id),
            agreement_id=str(agreement.id),
            payer=payer,
        )
        await persist(outcome)

        logger.info(
            "agreement.created",
            agreement_id=str(agreement.id),
            total=str(total_amount),
            milestones=len(amounts),
            simulated=outcome.simulated,
        )
        return agreement

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def deposit(self, agreement_id: uuid.UUID, amount: int, payer: str) -> Agreement:
        """Lock the full total in custody and transition CREATED -> FUNDED."""
        async with self._unit_of_work(agreement_id) as session:
            agreement = await self._get_agreement_or_raise(session, agreement_id)
            if agreement.state != AgreementState.CREATED:
                raise InvalidStateError("Agreement is not in CREATED state", agreement.state)
            if payer != agreement.payer_address:
                raise ForbiddenError("Only payer can deposit")
            if amount != agreement.total_amount:
                raise AmountMismatchError(agreement.total_amount, amount)
            fire_transition(AgreementStateMachine, agreement.state, "deposit_confirmed")

            apply = partial(self._apply_deposit, amount=amount, payer=payer)
            outcome = await self._settle(
                agreement,
                "fund",
                lambda peer: peer.fund(
                    external_ref=agreement.external_ref, amount=amount, payer=payer
                ),
                apply,
            )
            await apply(session, agreement, outcome)

        logger.info(
            "agreement.funded",
            agreement_id=str(agreement_id),
            amount=str(amount),
            tx_hash=outcome.tx_hash,
        )
        return agreement

    async def _apply_deposit(
        self,
        session: AsyncSession,
        agreement: Agreement,
        outcome: SettlementOutcome,
        *,
        amount: int,
        payer: str,
    ) -> None:
        new_state = fire_transition(AgreementStateMachine, agreement.state, "deposit_confirmed")
        now = self._clock()
        agreement.locked_amount = amount
        agreement.state = new_state
        agreement.funded_at = now
        agreement.timeout_at = now + self._timeout_window
        agreement.updated_at = now
        self._append_transaction(
            session,
            agreement,
            TransactionType.DEPOSIT,
            amount,
            outcome,
            from_address=payer,
            to_address=self._custody_address,
            now=now,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify_milestone(
        self,
        agreement_id: uuid.UUID,
        milestone_id: uuid.UUID,
        submission: EvidenceSubmission,
    ) -> Agreement:
        """Check evidence for a PENDING milestone and mark it VERIFIED.

        Rejected evidence is still recorded (as REJECTED or ERROR) before
        EvidenceRejectedError is raised.
        """
        async with self._unit_of_work(agreement_id) as session:
            agreement = await self._get_agreement_or_raise(session, agreement_id)
            if agreement.state not in VERIFIABLE_STATES:
                raise InvalidStateError("Agreement is not in verifiable state", agreement.state)
            milestone = self._get_milestone_or_raise(agreement, milestone_id)
            if milestone.state != MilestoneState.PENDING:
                raise InvalidStateError("Milestone is not in PENDING state", milestone.state)

            verdict = await self._run_verifier(milestone, submission)

            if not verdict.accepted:
                event = await EvidenceRepository(session).record(
                    self._evidence_event(agreement, milestone, submission, verdict, self._clock())
                )
                await session.commit()
                logger.warning(
                    "milestone.evidence_rejected",
                    agreement_id=str(agreement_id),
                    milestone_id=str(milestone_id),
                    source=submission.source.value,
                    outcome=verdict.outcome.value,
                    reason=verdict.reason,
                )
                raise EvidenceRejectedError(
                    verdict.reason or verdict.error or "Evidence rejected",
                    evidence_event_id=str(event.id),
                )

            fire_transition(MilestoneStateMachine, milestone.state, "evidence_accepted")
            fire_transition(AgreementStateMachine, agreement.state, "milestone_verified")

            apply = partial(
                self._apply_attestation,
                milestone_id=milestone_id,
                submission=submission,
                verdict=verdict,
            )
            outcome = await self._settle(
                agreement,
                "attest_milestone",
                lambda peer: peer.attest_milestone(
                    external_ref=agreement.external_ref,
                    sequence_number=milestone.sequence_number,
                    fingerprint=verdict.fingerprint,
                    oracle_admin=agreement.oracle_admin_address,
                ),
                apply,
            )
            await apply(session, agreement, outcome)

        logger.info(
            "milestone.verified",
            agreement_id=str(agreement_id),
            milestone_id=str(milestone_id),
            source=submission.source.value,
            fingerprint=verdict.fingerprint,
        )
        return agreement

    async def _apply_attestation(
        self,
        session: AsyncSession,
        agreement: Agreement,
        outcome: SettlementOutcome,
        *,
        milestone_id: uuid.UUID,
        submission: EvidenceSubmission,
        verdict: EvidenceVerdict,
    ) -> None:
        if agreement.state not in VERIFIABLE_STATES:
            raise InvalidStateError("Agreement is not in verifiable state", agreement.state)
        milestone = self._get_milestone_or_raise(agreement, milestone_id)
        milestone_state = fire_transition(MilestoneStateMachine, milestone.state, "evidence_accepted")
        agreement_state = fire_transition(AgreementStateMachine, agreement.state, "milestone_verified")

        now = self._clock()
        milestone.state = milestone_state
        milestone.evidence_fingerprint = verdict.fingerprint
        milestone.verified_at = now
        agreement.state = agreement_state
        agreement.updated_at = now
        await EvidenceRepository(session).record(
            self._evidence_event(agreement, milestone, submission, verdict, now)
        )

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release_milestone(self, agreement_id: uuid.UUID, milestone_id: uuid.UUID) -> Agreement:
        """Pay out a VERIFIED milestone, less the protocol fee.

        Releasing the last open milestone completes the agreement.
        """
        async with self._unit_of_work(agreement_id) as session:
            agreement = await self._get_agreement_or_raise(session, agreement_id)
            milestone = self._get_milestone_or_raise(agreement, milestone_id)
            if milestone.state != MilestoneState.VERIFIED:
                raise InvalidStateError("Milestone must be VERIFIED before release", milestone.state)
            if agreement.state != AgreementState.ACTIVE:
                raise InvalidStateError("Agreement is not ACTIVE", agreement.state)
            self._release_transitions(agreement, milestone)

            apply = partial(self._apply_release, milestone_id=milestone_id)
            outcome = await self._settle(
                agreement,
                "release_milestone",
                lambda peer: peer.release_milestone(
                    external_ref=agreement.external_ref,
                    sequence_number=milestone.sequence_number,
                    sender=agreement.oracle_admin_address,
                ),
                apply,
            )
            split = await apply(session, agreement, outcome)

        logger.info(
            "milestone.released",
            agreement_id=str(agreement_id),
            milestone_id=str(milestone_id),
            payout=str(split.payout),
            fee=str(split.fee),
            completed=agreement.state == AgreementState.COMPLETED,
        )
        return agreement

    @staticmethod
    def _release_transitions(agreement: Agreement, milestone: Milestone) -> tuple[str, str]:
        remaining = [
            m for m in agreement.milestones
            if m.id != milestone.id and m.state != MilestoneState.RELEASED
        ]
        agreement_event = "milestone_released" if remaining else "all_milestones_released"
        return (
            fire_transition(AgreementStateMachine, agreement.state, agreement_event),
            fire_transition(MilestoneStateMachine, milestone.state, "funds_released"),
        )

    async def _apply_release(
        self,
        session: AsyncSession,
        agreement: Agreement,
        outcome: SettlementOutcome,
        *,
        milestone_id: uuid.UUID,
    ) -> ReleaseSplit:
        milestone = self._get_milestone_or_raise(agreement, milestone_id)
        agreement_state, milestone_state = self._release_transitions(agreement, milestone)
        split = split_release(milestone.amount, self._fee_bps)

        now = self._clock()
        milestone.state = milestone_state
        milestone.released_at = now
        agreement.locked_amount -= milestone.amount
        agreement.released_amount += split.payout
        agreement.fees_accrued += split.fee
        agreement.state = agreement_state
        agreement.updated_at = now
        if agreement_state == AgreementState.COMPLETED:
            agreement.completed_at = now
        self._append_transaction(
            session,
            agreement,
            TransactionType.RELEASE,
            split.payout,
            outcome,
            from_address=self._custody_address,
            to_address=agreement.beneficiary_address,
            now=now,
            fee_amount=split.fee,
            milestone_id=milestone.id,
        )
        return split

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def refund(self, agreement_id: uuid.UUID, payer: str) -> Agreement:
        """Return the locked balance to the payer once the timeout has passed."""
        async with self._unit_of_work(agreement_id) as session:
            agreement = await self._get_agreement_or_raise(session, agreement_id)
            if payer != agreement.payer_address:
                raise ForbiddenError("Only payer can request refund")
            if agreement.state not in VERIFIABLE_STATES:
                raise InvalidStateError("Agreement cannot be refunded", agreement.state)
            now = self._clock()
            if agreement.timeout_at is None or now < agreement.timeout_at:
                raise TooEarlyError(
                    agreement.timeout_at.isoformat() if agreement.timeout_at else "unknown"
                )
            fire_transition(AgreementStateMachine, agreement.state, "timeout_refund")
            refunded = await self._refund_locked(session, agreement, "timeout_refund")

        logger.info("agreement.refunded", agreement_id=str(agreement_id), amount=str(refunded))
        return agreement

    async def _refund_locked(self, session: AsyncSession, agreement: Agreement, event: str) -> int:
        amount = agreement.locked_amount
        apply = partial(self._apply_refund, event=event)
        outcome = await self._settle(
            agreement,
            "refund",
            lambda peer: peer.refund(
                external_ref=agreement.external_ref, payer=agreement.payer_address
            ),
            apply,
        )
        await apply(session, agreement, outcome)
        return amount

    async def _apply_refund(
        self,
        session: AsyncSession,
        agreement: Agreement,
        outcome: SettlementOutcome,
        *,
        event: str,
    ) -> None:
        new_state = fire_transition(AgreementStateMachine, agreement.state, event)
        amount = agreement.locked_amount
        now = self._clock()
        for milestone in agreement.milestones:
            if milestone.state in (MilestoneState.PENDING, MilestoneState.VERIFIED):
                milestone.state = fire_transition(
                    MilestoneStateMachine, milestone.state, "agreement_refunded"
                )
        agreement.locked_amount = 0
        agreement.state = new_state
        agreement.refunded_at = now
        agreement.updated_at = now
        self._append_transaction(
            session,
            agreement,
            TransactionType.REFUND,
            amount,
            outcome,
            from_address=self._custody_address,
            to_address=agreement.payer_address,
            now=now,
        )

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def raise_dispute(self, agreement_id: uuid.UUID, caller: str, reason: str) -> Agreement:
        """Freeze a funded agreement until the oracle admin resolves it."""
        async with self._unit_of_work(agreement_id) as session:
            agreement = await self._get_agreement_or_raise(session, agreement_id)
            if caller not in (agreement.payer_address, agreement.beneficiary_address):
                raise ForbiddenError("Only payer or beneficiary can raise a dispute")
            agreement.state = fire_transition(
                AgreementStateMachine, agreement.state, "dispute_raised"
            )
            agreement.dispute_reason = reason
            agreement.updated_at = self._clock()

        logger.info("agreement.dispute_raised", agreement_id=str(agreement_id), by=caller)
        return agreement

    async def resolve_dispute(
        self, agreement_id: uuid.UUID, resolver: str, refund_payer: bool
    ) -> Agreement:
        """Oracle admin decision: refund the payer, or resume the agreement."""
        async with self._unit_of_work(agreement_id) as session:
            agreement = await self._get_agreement_or_raise(session, agreement_id)
            if resolver != agreement.oracle_admin_address:
                raise ForbiddenError("Only the oracle admin can resolve a dispute")
            if refund_payer:
                fire_transition(AgreementStateMachine, agreement.state, "dispute_resolved_for_payer")
                await self._refund_locked(session, agreement, "dispute_resolved_for_payer")
            else:
                agreement.state = fire_transition(
                    AgreementStateMachine, agreement.state, "dispute_resolved_for_beneficiary"
                )
                agreement.updated_at = self._clock()

        logger.info(
            "agreement.dispute_resolved",
            agreement_id=str(agreement_id),
            refund_payer=refund_payer,
            state=agreement.state,
        )
        return agreement

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_agreement(self, agreement_id: uuid.UUID) -> Agreement:
        """Load one agreement, after any late peer receipt for it has been applied."""
        await self._controller.settle(str(agreement_id))
        async with self._session_factory() as session:
            return await self._get_agreement_or_raise(session, agreement_id)

    async def list_agreements(
        self,
        *,
        state: AgreementState | None = None,
        role: ListRole = ListRole.ALL,
        address: str | None = None,
    ) -> list[Agreement]:
        async with self._session_factory() as session:
            return await AgreementRepository(session).list_filtered(
                state=state, role=role, address=address
            )

    async def list_evidence(
        self, agreement_id: uuid.UUID, milestone_id: uuid.UUID | None = None
    ) -> list[EvidenceEvent]:
        await self._controller.settle(str(agreement_id))
        async with self._session_factory() as session:
            await self._get_agreement_or_raise(session, agreement_id)
            return await EvidenceRepository(session).list_by_agreement(agreement_id, milestone_id)

    async def get_stats(self) -> AgreementStats:
        """Counts and sums across the store. Locked/released cover FUNDED and ACTIVE only."""
        async with self._session_factory() as session:
            return await AgreementRepository(session).stats()

    def allowed_events(self, agreement: Agreement) -> list[str]:
        return AgreementStateMachine(current_status=agreement.state).get_allowed_events()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _lock_for(self, agreement_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(agreement_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[agreement_id] = lock
        return lock

    @asynccontextmanager
    async def _unit_of_work(
        self, agreement_id: uuid.UUID, *, settle_late: bool = True
    ) -> AsyncIterator[AsyncSession]:
        """Serialize work on one agreement and commit it atomically.

        Late peer receipts for the agreement are applied first, unless this
        unit is the one applying them.
        """
        if settle_late:
            await self._controller.settle(str(agreement_id))
        async with self._lock_for(agreement_id), self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except (StaleDataError, IntegrityError) as exc:
                await session.rollback()
                logger.warning(
                    "agreement.concurrent_modification",
                    agreement_id=str(agreement_id),
                    error=str(exc),
                )
                raise ConcurrentModificationError(str(agreement_id)) from exc
            except Exception:
                await session.rollback()
                raise

    async def _settle(
        self,
        agreement: Agreement,
        operation: str,
        call: Callable[[SettlementPeer], Awaitable[PeerReceipt]],
        apply: Callable[[AsyncSession, Agreement, SettlementOutcome], Awaitable[object]],
    ) -> SettlementOutcome:
        """Run one peer step for ``agreement`` through the fallback controller.

        ``apply`` is the local mutation for the step. It is replayed in its own
        unit of work if the receipt only lands after the caller was cancelled.
        A simulated step on a peer-confirmed agreement detaches the agreement
        from the peer for good.
        """
        agreement_id = agreement.id
        outcome = await self._controller.execute(
            operation,
            call,
            peer_reachable=agreement.peer_confirmed,
            on_late_receipt=partial(self._apply_late, agreement_id, operation, apply),
            late_key=str(agreement_id),
            agreement_id=str(agreement_id),
        )
        if outcome.simulated and agreement.peer_confirmed:
            agreement.peer_confirmed = False
            logger.warning(
                "agreement.detached_from_peer",
                agreement_id=str(agreement_id),
                operation=operation,
            )
        return outcome

    async def _apply_late(
        self,
        agreement_id: uuid.UUID,
        operation: str,
        apply: Callable[[AsyncSession, Agreement, SettlementOutcome], Awaitable[object]],
        outcome: SettlementOutcome,
    ) -> None:
        async with self._unit_of_work(agreement_id, settle_late=False) as session:
            agreement = await self._get_agreement_or_raise(session, agreement_id)
            await apply(session, agreement, outcome)
        logger.info(
            "agreement.late_receipt_applied",
            agreement_id=str(agreement_id),
            operation=operation,
            tx_hash=outcome.tx_hash,
        )

    async def _get_agreement_or_raise(
        self, session: AsyncSession, agreement_id: uuid.UUID
    ) -> Agreement:
        agreement = await AgreementRepository(session).get_by_id(agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        return agreement

    @staticmethod
    def _get_milestone_or_raise(agreement: Agreement, milestone_id: uuid.UUID) -> Milestone:
        milestone = agreement.milestone(milestone_id)
        if milestone is None:
            raise MilestoneNotFoundError(str(agreement.id), str(milestone_id))
        return milestone

    async def _run_verifier(
        self, milestone: Milestone, submission: EvidenceSubmission
    ) -> EvidenceVerdict:
        verifier = self._verifiers.get(submission.source)
        if (
            submission.source != SourceKind.MANUAL
            and submission.source != milestone.verification_source
        ):
            return EvidenceVerdict.reject(
                f"Evidence source {submission.source.value} does not match "
                f"milestone source {milestone.verification_source}"
            )
        try:
            return await verifier.verify(submission)
        except Exception as exc:
            logger.exception("milestone.verifier_error", source=submission.source.value)
            return EvidenceVerdict(
                accepted=False,
                reason=f"Verifier error: {exc}",
                error=type(exc).__name__,
            )

    @staticmethod
    def _evidence_event(
        agreement: Agreement,
        milestone: Milestone,
        submission: EvidenceSubmission,
        verdict: EvidenceVerdict,
        now: datetime,
    ) -> EvidenceEvent:
        return EvidenceEvent(
            id=uuid.uuid4(),
            agreement_id=agreement.id,
            milestone_id=milestone.id,
            source=submission.source.value,
            event_type=submission.event_type,
            payload=dict(submission.payload),
            signature=submission.signature,
            fingerprint=verdict.fingerprint,
            outcome=verdict.outcome.value,
            reason=verdict.reason or verdict.error,
            created_at=now,
        )

    def _append_transaction(
        self,
        session: AsyncSession,
        agreement: Agreement,
        tx_type: TransactionType,
        amount: int,
        outcome: SettlementOutcome,
        *,
        from_address: str,
        to_address: str,
        now: datetime,
        fee_amount: int = 0,
        milestone_id: uuid.UUID | None = None,
    ) -> SettlementTransaction:
        return TransactionRepository(session).append(
            agreement,
            SettlementTransaction(
                id=uuid.uuid4(),
                milestone_id=milestone_id,
                type=tx_type.value,
                amount=amount,
                fee_amount=fee_amount,
                from_address=from_address,
                to_address=to_address,
                tx_hash=outcome.tx_hash,
                simulated=outcome.simulated,
                status=TransactionStatus.CONFIRMED.value,
                created_at=now,
                confirmed_at=now,
            ),
        )
