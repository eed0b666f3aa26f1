"""Tests for the FallbackController and PeerHealth cache.

Tests cover:
    - Configured simulation never touches the peer
    - Missing, unhealthy and local-only peers route to simulation
    - Fallback-eligible peer errors simulate and mark the peer unhealthy
    - Rejections propagate unchanged
    - Concurrent callers share a single health probe
    - Receipts of cancelled callers reach the late-receipt callback
"""

from __future__ import annotations

import asyncio
import re

import pytest

from milestone_settlement.domain.exceptions import PeerRejectedError, PeerUnavailableError
from milestone_settlement.infrastructure.peer.protocol import SettlementPeer
from milestone_settlement.services.fallback_controller import (
    FallbackController,
    PeerHealth,
    SettlementOutcome,
    simulated_reference,
)

from conftest import FakePeer

HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")


def _fund(peer: SettlementPeer):  # noqa: ANN202
    return peer.fund(external_ref="ref-1", amount=100, payer="0xPAYER")


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class TestSimulatedReference:
    def test_shape_matches_real_hashes(self) -> None:
        assert HASH_RE.match(simulated_reference())

    def test_references_are_unique(self) -> None:
        assert len({simulated_reference() for _ in range(50)}) == 50


class TestSimulationRouting:
    @pytest.mark.asyncio
    async def test_forced_simulation_skips_peer(self) -> None:
        peer = FakePeer()
        controller = FallbackController(peer, force_simulation=True)

        outcome = await controller.execute("fund", _fund)

        assert outcome.simulated is True
        assert HASH_RE.match(outcome.tx_hash)
        assert outcome.reference is None
        assert peer.calls == []
        assert peer.probes == 0

    @pytest.mark.asyncio
    async def test_no_peer_simulates(self) -> None:
        controller = FallbackController(None)
        outcome = await controller.execute("open_agreement", _fund)

        assert outcome.simulated is True
        # open_agreement also gets a simulated external reference
        assert HASH_RE.match(outcome.reference)
        assert controller.simulated_calls == 1

    @pytest.mark.asyncio
    async def test_unhealthy_peer_simulates_without_calling(self) -> None:
        peer = FakePeer(healthy=False)
        controller = FallbackController(peer)

        outcome = await controller.execute("fund", _fund)

        assert outcome.simulated is True
        assert peer.probes == 1
        assert peer.calls == []

    @pytest.mark.asyncio
    async def test_local_only_agreement_simulates(self) -> None:
        peer = FakePeer()
        controller = FallbackController(peer)

        outcome = await controller.execute("fund", _fund, peer_reachable=False)

        assert outcome.simulated is True
        assert peer.calls == []

    @pytest.mark.asyncio
    async def test_healthy_peer_used(self) -> None:
        peer = FakePeer()
        controller = FallbackController(peer)

        outcome = await controller.execute("fund", _fund)

        assert outcome.simulated is False
        assert outcome.tx_hash == f"0x{1:064x}"
        assert peer.operations() == ["fund"]
        assert controller.real_calls == 1


class TestPeerFailures:
    @pytest.mark.asyncio
    async def test_unavailable_falls_back_and_marks_unhealthy(self) -> None:
        peer = FakePeer(error=PeerUnavailableError("HTTP 503", status_code=503))
        controller = FallbackController(peer)

        outcome = await controller.execute("fund", _fund)

        assert outcome.simulated is True
        assert controller.fallbacks == 1
        assert controller.health.healthy is False

        # The next call trusts the cached unhealthy verdict and skips the peer
        await controller.execute("fund", _fund)
        assert len(peer.calls) == 1

    @pytest.mark.asyncio
    async def test_rejection_propagates(self) -> None:
        peer = FakePeer(error=PeerRejectedError("HTTP 400: bad params", status_code=400))
        controller = FallbackController(peer)

        with pytest.raises(PeerRejectedError):
            await controller.execute("fund", _fund)
        assert controller.simulated_calls == 0

    @pytest.mark.asyncio
    async def test_slow_call_times_out_into_simulation(self) -> None:
        peer = FakePeer()

        async def _hang(p: SettlementPeer):  # noqa: ANN202
            await asyncio.sleep(5)

        controller = FallbackController(peer, call_timeout_seconds=0.05)
        outcome = await controller.execute("fund", _hang)

        assert outcome.simulated is True
        assert controller.fallbacks == 1


class TestLateReceipts:
    @staticmethod
    async def _cancel_midway(controller: FallbackController, received: list[SettlementOutcome]) -> None:
        async def _record(outcome: SettlementOutcome) -> None:
            received.append(outcome)

        call = asyncio.create_task(
            controller.execute("fund", _fund, on_late_receipt=_record, late_key="agreement-1")
        )
        await asyncio.sleep(0.02)
        call.cancel()
        with pytest.raises(asyncio.CancelledError):
            await call

    @pytest.mark.asyncio
    async def test_cancelled_caller_hands_receipt_to_callback(self) -> None:
        peer = FakePeer(delays={"fund": 0.1})
        controller = FallbackController(peer)
        received: list[SettlementOutcome] = []

        await self._cancel_midway(controller, received)
        assert received == []
        assert controller.pending_late("agreement-1") == 1

        await controller.settle("agreement-1")

        [outcome] = received
        assert outcome.simulated is False
        assert outcome.tx_hash == f"0x{1:064x}"
        assert controller.real_calls == 1
        assert controller.pending_late() == 0

    @pytest.mark.asyncio
    async def test_late_failure_is_not_applied(self) -> None:
        peer = FakePeer(
            delays={"fund": 0.1},
            error=PeerUnavailableError("HTTP 503", status_code=503),
        )
        controller = FallbackController(peer)
        received: list[SettlementOutcome] = []

        await self._cancel_midway(controller, received)
        await controller.settle("agreement-1")

        assert received == []
        assert controller.real_calls == 0
        assert controller.health.healthy is False

    @pytest.mark.asyncio
    async def test_settle_without_followups_returns(self) -> None:
        controller = FallbackController(FakePeer())
        await controller.settle("nothing-pending")
        assert controller.pending_late() == 0

    @pytest.mark.asyncio
    async def test_drain_completes_cancelled_writes(self) -> None:
        peer = FakePeer(delays={"fund": 0.1})
        controller = FallbackController(peer)
        received: list[SettlementOutcome] = []

        await self._cancel_midway(controller, received)
        await controller.drain()

        assert len(received) == 1
        status = await controller.status()
        assert status["pending_late_receipts"] == 0


class TestPeerHealth:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_probe(self) -> None:
        probes = 0

        async def _probe() -> bool:
            nonlocal probes
            probes += 1
            await asyncio.sleep(0.01)
            return True

        health = PeerHealth(interval_seconds=30.0)
        results = await asyncio.gather(*(health.current(_probe) for _ in range(10)))

        assert results == [True] * 10
        assert probes == 1
        assert health.probe_count == 1

    @pytest.mark.asyncio
    async def test_reprobes_after_interval(self) -> None:
        clock = FakeClock()
        peer = FakePeer()
        health = PeerHealth(interval_seconds=30.0, clock=clock)

        await health.current(peer.probe)
        clock.now += 10
        await health.current(peer.probe)
        assert peer.probes == 1

        clock.now += 25
        await health.current(peer.probe)
        assert peer.probes == 2

    @pytest.mark.asyncio
    async def test_probe_timeout_counts_as_unhealthy(self) -> None:
        async def _slow() -> bool:
            await asyncio.sleep(5)
            return True

        health = PeerHealth(probe_timeout_seconds=0.05)
        assert await health.current(_slow) is False
        assert health.last_checked_wall is not None


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_reports_effective_mode(self) -> None:
        controller = FallbackController(FakePeer(), configured_mode="PUBLIC_TESTNET")
        await controller.execute("fund", _fund)

        status = await controller.status()

        assert status["configured_mode"] == "PUBLIC_TESTNET"
        assert status["effective_mode"] == "PEER"
        assert status["simulation_reason"] is None
        assert status["peer_healthy"] is True
        assert status["real_calls"] == 1

    @pytest.mark.asyncio
    async def test_status_when_forced(self) -> None:
        controller = FallbackController(None, force_simulation=True, configured_mode="DEMO_OFFCHAIN")
        status = await controller.status()

        assert status["effective_mode"] == "SIMULATED"
        assert status["simulation_reason"] == "configured"
        assert status["peer_configured"] is False
