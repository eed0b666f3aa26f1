"""Shared test fixtures for the milestone settlement test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite)
    - Fake settlement peers (healthy, failing, rejecting, slow, stateful)
    - A controllable clock for timeout-dependent rules
    - Factory fixtures for engines and sample agreements
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from milestone_settlement.domain.enums import SourceKind
from milestone_settlement.domain.exceptions import PeerError, PeerRejectedError
from milestone_settlement.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    create_schema,
)
from milestone_settlement.infrastructure.peer.protocol import PeerReceipt
from milestone_settlement.services.agreement_engine import AgreementEngine, MilestoneDraft
from milestone_settlement.services.fallback_controller import FallbackController, PeerHealth
from milestone_settlement.verifiers import VerifierRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from milestone_settlement.infrastructure.database.orm_models import Agreement

PAYER = "0xPAYER"
BENEFICIARY = "0xBENEFICIARY"
ORACLE = "oracle-demo"

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Fake settlement peers
# ---------------------------------------------------------------------------


class FakePeer:
    """In-memory settlement peer that records every call.

    ``error`` makes every operation raise it; ``healthy`` drives probe().
    ``delays`` holds per-operation latency in seconds, applied after the call
    is recorded.
    """

    def __init__(
        self,
        *,
        healthy: bool = True,
        error: PeerError | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.healthy = healthy
        self.error = error
        self.delays = delays or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.probes = 0
        self._counter = itertools.count(1)

    async def probe(self) -> bool:
        self.probes += 1
        return self.healthy

    async def _receipt(self, name: str, kwargs: dict[str, Any], reference: str | None = None) -> PeerReceipt:
        self.calls.append((name, kwargs))
        if self.delays.get(name):
            await asyncio.sleep(self.delays[name])
        if self.error is not None:
            raise self.error
        return PeerReceipt(tx_hash=f"0x{next(self._counter):064x}", reference=reference)

    async def open_agreement(self, **kwargs: Any) -> PeerReceipt:
        return await self._receipt("open_agreement", kwargs, reference=f"peer-agreement-{len(self.calls) + 1}")

    async def fund(self, **kwargs: Any) -> PeerReceipt:
        return await self._receipt("fund", kwargs)

    async def attest_milestone(self, **kwargs: Any) -> PeerReceipt:
        return await self._receipt("attest_milestone", kwargs)

    async def release_milestone(self, **kwargs: Any) -> PeerReceipt:
        return await self._receipt("release_milestone", kwargs)

    async def refund(self, **kwargs: Any) -> PeerReceipt:
        return await self._receipt("refund", kwargs)

    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]


class LedgerPeer(FakePeer):
    """FakePeer that remembers which agreements it funded.

    Attestation, release and refund of an agreement it never funded are
    refused with a 409, the way a real ledger refuses out-of-order steps.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.funded: set[str] = set()

    def _require_funded(self, name: str, kwargs: dict[str, Any]) -> None:
        if kwargs["external_ref"] not in self.funded:
            self.calls.append((name, kwargs))
            raise PeerRejectedError(f"{name}: agreement is not funded", status_code=409)

    async def fund(self, **kwargs: Any) -> PeerReceipt:
        receipt = await super().fund(**kwargs)
        self.funded.add(kwargs["external_ref"])
        return receipt

    async def attest_milestone(self, **kwargs: Any) -> PeerReceipt:
        self._require_funded("attest_milestone", kwargs)
        return await super().attest_milestone(**kwargs)

    async def release_milestone(self, **kwargs: Any) -> PeerReceipt:
        self._require_funded("release_milestone", kwargs)
        return await super().release_milestone(**kwargs)

    async def refund(self, **kwargs: Any) -> PeerReceipt:
        self._require_funded("refund", kwargs)
        return await super().refund(**kwargs)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:  # noqa: ANN001
    """Fresh SQLite database file with the full schema."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}")
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


# ---------------------------------------------------------------------------
# Engine factories
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def make_engine(
    session_factory: async_sessionmaker[AsyncSession], clock: FrozenClock
) -> Callable[..., AgreementEngine]:
    """Build an AgreementEngine around an optional fake peer."""

    def _make(
        peer: FakePeer | None = None,
        *,
        force_simulation: bool = False,
        fee_basis_points: int = 50,
        timeout_window: timedelta = timedelta(days=30),
        health_interval: float = 30.0,
    ) -> AgreementEngine:
        controller = FallbackController(
            peer,
            PeerHealth(interval_seconds=health_interval),
            force_simulation=force_simulation,
        )
        return AgreementEngine(
            session_factory,
            controller,
            VerifierRegistry.default(),
            fee_basis_points=fee_basis_points,
            timeout_window=timeout_window,
            default_oracle=ORACLE,
            custody_address="vault",
            clock=clock,
        )

    return _make


@pytest.fixture
def engine(make_engine: Callable[..., AgreementEngine]) -> AgreementEngine:
    """Engine with no peer configured: every settlement call is simulated."""
    return make_engine()


@pytest.fixture
def create_agreement() -> Callable[..., Any]:
    """Async factory for a standard agreement (30000/40000/30000 by default)."""

    async def _create(
        engine: AgreementEngine,
        amounts: Sequence[int] = (30_000, 40_000, 30_000),
        *,
        source: SourceKind = SourceKind.MANUAL,
        funded: bool = False,
    ) -> Agreement:
        agreement = await engine.create_agreement(
            payer=PAYER,
            beneficiary=BENEFICIARY,
            total_amount=sum(amounts),
            milestones=[
                MilestoneDraft(title=f"Milestone {i}", amount=a, verification_source=source)
                for i, a in enumerate(amounts, 1)
            ],
            title="Website redesign",
        )
        if funded:
            agreement = await engine.deposit(agreement.id, sum(amounts), PAYER)
        return agreement

    return _create
