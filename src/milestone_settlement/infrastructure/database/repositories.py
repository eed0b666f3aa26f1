"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from milestone_settlement.domain.enums import AgreementState, ListRole
from milestone_settlement.infrastructure.database.orm_models import (
    Agreement,
    EvidenceEvent,
    SettlementTransaction,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

ACTIVE_STATES = (AgreementState.FUNDED.value, AgreementState.ACTIVE.value)


@dataclass(frozen=True)
class AgreementStats:
    total_agreements: int
    active_agreements: int
    total_locked: int
    total_released: int
    total_fees: int


class AgreementRepository:
    """Data access for agreements and their milestones."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, agreement: Agreement) -> Agreement:
        """Insert a new agreement (milestones cascade)."""
        self._session.add(agreement)
        await self._session.flush()
        return agreement

    async def get_by_id(self, agreement_id: uuid.UUID) -> Agreement | None:
        """Fetch an agreement by its UUID, with milestones and transactions."""
        result = await self._session.execute(
            select(Agreement).where(Agreement.id == agreement_id)
        )
        return result.scalar_one_or_none()

    async def list_filtered(
        self,
        *,
        state: AgreementState | None = None,
        role: ListRole = ListRole.ALL,
        address: str | None = None,
    ) -> list[Agreement]:
        """List agreements, newest first, optionally filtered by state and party."""
        stmt = select(Agreement)
        if state is not None:
            stmt = stmt.where(Agreement.state == state.value)
        if address:
            columns = {
                ListRole.PAYER: [Agreement.payer_address],
                ListRole.BENEFICIARY: [Agreement.beneficiary_address],
                ListRole.ORACLE: [Agreement.oracle_admin_address],
                ListRole.ALL: [
                    Agreement.payer_address,
                    Agreement.beneficiary_address,
                    Agreement.oracle_admin_address,
                ],
            }[role]
            stmt = stmt.where(or_(*(col == address for col in columns)))
        result = await self._session.execute(stmt.order_by(Agreement.created_at.desc()))
        return list(result.scalars().all())

    async def stats(self) -> AgreementStats:
        """Aggregate counters over the whole store in one round trip each."""
        total = await self._session.scalar(select(func.count(Agreement.id)))
        active_row = (
            await self._session.execute(
                select(
                    func.count(Agreement.id),
                    func.coalesce(func.sum(Agreement.locked_amount), 0),
                    func.coalesce(func.sum(Agreement.released_amount), 0),
                ).where(Agreement.state.in_(ACTIVE_STATES))
            )
        ).one()
        fees = await self._session.scalar(
            select(func.coalesce(func.sum(Agreement.fees_accrued), 0))
        )
        return AgreementStats(
            total_agreements=int(total or 0),
            active_agreements=int(active_row[0]),
            total_locked=int(active_row[1]),
            total_released=int(active_row[2]),
            total_fees=int(fees or 0),
        )


class TransactionRepository:
    """Data access for the append-only settlement transaction log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def append(self, agreement: Agreement, record: SettlementTransaction) -> SettlementTransaction:
        """Append a transaction to the agreement. This is the ONLY write operation allowed."""
        agreement.transactions.append(record)
        return record


class EvidenceRepository:
    """Data access for the append-only evidence event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, event: EvidenceEvent) -> EvidenceEvent:
        """Append a new evidence event. This is the ONLY write operation allowed."""
        self._session.add(event)
        await self._session.flush()
        return event

    async def list_by_agreement(
        self,
        agreement_id: uuid.UUID,
        milestone_id: uuid.UUID | None = None,
    ) -> list[EvidenceEvent]:
        """Fetch evidence events for an agreement (or one milestone), oldest first."""
        stmt = select(EvidenceEvent).where(EvidenceEvent.agreement_id == agreement_id)
        if milestone_id is not None:
            stmt = stmt.where(EvidenceEvent.milestone_id == milestone_id)
        result = await self._session.execute(stmt.order_by(EvidenceEvent.created_at.asc()))
        return list(result.scalars().all())
