"""Concurrent operations on the same agreement.

Exactly one of two racing releases of a milestone may succeed, whether the
race is serialized by the engine's per-agreement lock or caught by the
store's version check across two engine instances.
"""

from __future__ import annotations

import asyncio

import pytest

from milestone_settlement.domain.enums import AgreementState, MilestoneState, SourceKind, TransactionType
from milestone_settlement.domain.exceptions import ConcurrentModificationError, InvalidStateError
from milestone_settlement.domain.verifier_protocol import EvidenceSubmission

APPROVAL = EvidenceSubmission(
    source=SourceKind.MANUAL,
    event_type="manual_approval",
    payload={"reason": "Delivered"},
)


def _release_count(agreement) -> int:  # noqa: ANN001
    return sum(1 for t in agreement.transactions if t.type == TransactionType.RELEASE)


class TestExactlyOnceRelease:
    @pytest.mark.asyncio
    async def test_same_engine_double_release(self, engine, create_agreement) -> None:  # noqa: ANN001
        agreement = await create_agreement(engine, funded=True)
        milestone_id = agreement.milestones[0].id
        await engine.verify_milestone(agreement.id, milestone_id, APPROVAL)

        results = await asyncio.gather(
            engine.release_milestone(agreement.id, milestone_id),
            engine.release_milestone(agreement.id, milestone_id),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidStateError)

        reloaded = await engine.get_agreement(agreement.id)
        assert reloaded.milestones[0].state == MilestoneState.RELEASED
        assert _release_count(reloaded) == 1
        assert reloaded.released_amount == 29_850

    @pytest.mark.asyncio
    async def test_two_engines_same_store(self, make_engine, create_agreement) -> None:  # noqa: ANN001
        first, second = make_engine(), make_engine()
        agreement = await create_agreement(first, funded=True)
        milestone_id = agreement.milestones[0].id
        await first.verify_milestone(agreement.id, milestone_id, APPROVAL)

        results = await asyncio.gather(
            first.release_milestone(agreement.id, milestone_id),
            second.release_milestone(agreement.id, milestone_id),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], (InvalidStateError, ConcurrentModificationError))

        reloaded = await first.get_agreement(agreement.id)
        assert _release_count(reloaded) == 1
        assert reloaded.locked_amount == 70_000


class TestIndependentMilestones:
    @pytest.mark.asyncio
    async def test_different_milestones_both_release(self, engine, create_agreement) -> None:  # noqa: ANN001
        agreement = await create_agreement(engine, funded=True)
        first_id, second_id = agreement.milestones[0].id, agreement.milestones[1].id
        await engine.verify_milestone(agreement.id, first_id, APPROVAL)
        await engine.verify_milestone(agreement.id, second_id, APPROVAL)

        await asyncio.gather(
            engine.release_milestone(agreement.id, first_id),
            engine.release_milestone(agreement.id, second_id),
        )

        reloaded = await engine.get_agreement(agreement.id)
        assert reloaded.state == AgreementState.ACTIVE
        assert _release_count(reloaded) == 2
        assert reloaded.locked_amount == 30_000
        assert reloaded.released_amount + reloaded.fees_accrued == 70_000

    @pytest.mark.asyncio
    async def test_concurrent_verifications_each_recorded_once(self, engine, create_agreement) -> None:  # noqa: ANN001
        agreement = await create_agreement(engine, funded=True)
        milestone_id = agreement.milestones[0].id

        results = await asyncio.gather(
            *(engine.verify_milestone(agreement.id, milestone_id, APPROVAL) for _ in range(3)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        events = await engine.list_evidence(agreement.id, milestone_id)
        assert len(events) == 1
