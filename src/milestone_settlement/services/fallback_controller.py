"""Fallback Controller — routes every settlement call to the peer or the simulation.

Mode selection, per call, in order:
    1. Configured simulation (force_simulation or DEMO_OFFCHAIN) -> simulate
    2. No peer configured, or the agreement is not on the peer     -> simulate
    3. Cached peer health says unhealthy                            -> simulate
    4. Real call; a fallback-eligible PeerError                     -> simulate
    5. PeerRejectedError                                            -> propagate

Simulated references are ``0x`` + 64 hex chars, structurally identical to
real transaction hashes, so callers never special-case the two. The
``simulated`` flag on the outcome is kept for the audit trail only.

A peer write whose caller is cancelled keeps running. Its receipt is handed
to the ``on_late_receipt`` callback in the background, ``settle`` waits for
those follow-ups per key, and ``drain`` waits for everything at shutdown.

Usage:
    controller = FallbackController(peer, PeerHealth(interval_seconds=30))
    outcome = await controller.execute(
        "fund", lambda p: p.fund(external_ref=ref, amount=total, payer=payer)
    )
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
from typing import TYPE_CHECKING, Any

from milestone_settlement.domain.exceptions import PeerError, PeerTimeoutError
from milestone_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from milestone_settlement.config import Settings
    from milestone_settlement.infrastructure.peer.protocol import PeerReceipt, SettlementPeer

logger = get_logger(__name__)


def simulated_reference() -> str:
    """A random 32-byte hex reference in the peer's transaction-hash format."""
    return "0x" + secrets.token_hex(32)


@dataclass(frozen=True)
class SettlementOutcome:
    """Result of one settlement step, real or simulated."""

    tx_hash: str
    reference: str | None
    simulated: bool


class PeerHealth:
    """Cached health of the settlement peer.

    At most one probe runs per ``interval_seconds``; callers arriving while a
    probe is in flight wait on the lock and reuse its result.
    """

    def __init__(
        self,
        interval_seconds: float = 30.0,
        probe_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval_seconds
        self._probe_timeout = probe_timeout_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self.healthy = False
        self.checked_at: float | None = None
        self.last_checked_wall: datetime | None = None
        self.probe_count = 0

    def _is_fresh(self) -> bool:
        return self.checked_at is not None and self._clock() - self.checked_at < self._interval

    def _record(self, healthy: bool) -> None:
        self.healthy = healthy
        self.checked_at = self._clock()
        self.last_checked_wall = datetime.now(UTC)

    async def current(self, probe: Callable[[], Awaitable[bool]]) -> bool:
        """Return cached health, probing the peer when the cache is stale."""
        if self._is_fresh():
            return self.healthy
        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self._is_fresh():
                return self.healthy
            self.probe_count += 1
            try:
                async with asyncio.timeout(self._probe_timeout):
                    healthy = await probe()
            except TimeoutError:
                logger.warning("peer.probe_timeout", timeout=self._probe_timeout)
                healthy = False
            except PeerError as exc:
                logger.warning("peer.probe_error", code=exc.code, error=exc.message)
                healthy = False
            self._record(healthy)
            return healthy

    async def mark_unhealthy(self) -> None:
        async with self._lock:
            self._record(False)


class FallbackController:
    """Transparent real-or-simulated execution of settlement peer operations."""

    def __init__(
        self,
        peer: SettlementPeer | None,
        health: PeerHealth | None = None,
        *,
        force_simulation: bool = False,
        call_timeout_seconds: float = 30.0,
        configured_mode: str = "LOCAL_DEV",
    ) -> None:
        self._peer = peer
        self._health = health or PeerHealth()
        self._force_simulation = force_simulation
        self._call_timeout = call_timeout_seconds
        self._configured_mode = configured_mode
        self._inflight: set[asyncio.Task[PeerReceipt]] = set()
        self._late: dict[str, set[asyncio.Task[None]]] = {}
        self.real_calls = 0
        self.simulated_calls = 0
        self.fallbacks = 0

    @classmethod
    def from_settings(cls, settings: Settings, peer: SettlementPeer | None) -> FallbackController:
        return cls(
            peer,
            PeerHealth(
                interval_seconds=settings.health_check_interval_seconds,
                probe_timeout_seconds=settings.health_probe_timeout_seconds,
            ),
            force_simulation=settings.simulation_forced,
            call_timeout_seconds=settings.peer_call_timeout_seconds,
            configured_mode=settings.network_mode.value,
        )

    @property
    def health(self) -> PeerHealth:
        return self._health

    async def _simulation_reason(self, peer_reachable: bool) -> str | None:
        if self._force_simulation:
            return "configured"
        if self._peer is None:
            return "no_peer"
        if not peer_reachable:
            return "not_on_peer"
        if not await self._health.current(self._peer.probe):
            return "unhealthy"
        return None

    async def _call_with_deadline(
        self,
        peer: SettlementPeer,
        operation: str,
        call: Callable[[SettlementPeer], Awaitable[PeerReceipt]],
    ) -> PeerReceipt:
        try:
            async with asyncio.timeout(self._call_timeout):
                return await call(peer)
        except TimeoutError as exc:
            raise PeerTimeoutError(f"{operation} exceeded {self._call_timeout}s") from exc

    def _simulate(self, operation: str, reason: str, **context: Any) -> SettlementOutcome:
        self.simulated_calls += 1
        outcome = SettlementOutcome(
            tx_hash=simulated_reference(),
            reference=simulated_reference() if operation == "open_agreement" else None,
            simulated=True,
        )
        logger.info(
            "fallback.simulated",
            operation=operation,
            reason=reason,
            tx_hash=outcome.tx_hash,
            **context,
        )
        return outcome

    async def execute(
        self,
        operation: str,
        call: Callable[[SettlementPeer], Awaitable[PeerReceipt]],
        *,
        peer_reachable: bool = True,
        on_late_receipt: Callable[[SettlementOutcome], Awaitable[None]] | None = None,
        late_key: str | None = None,
        **context: Any,
    ) -> SettlementOutcome:
        """Run ``call`` against the peer, or simulate it.

        Args:
            operation: Name used for logs and simulated-reference shape.
            call: Receives the peer and performs one operation on it.
            peer_reachable: False when the agreement only exists locally.
            on_late_receipt: Applies a receipt that arrives after the caller
                was cancelled. Runs in the background under ``late_key``.
            late_key: Groups late follow-ups so ``settle`` can wait for them.
            **context: Extra structured log fields.

        Raises:
            PeerRejectedError: The peer refused the request itself.
        """
        reason = await self._simulation_reason(peer_reachable)
        peer = self._peer
        if reason is not None or peer is None:
            return self._simulate(operation, reason or "no_peer", **context)

        # Shielded: cancelling the caller does not cancel the peer write.
        task = asyncio.create_task(self._call_with_deadline(peer, operation, call))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            receipt = await asyncio.shield(task)
        except asyncio.CancelledError:
            self._follow_late(task, operation, on_late_receipt, late_key or operation, context)
            raise
        except PeerError as exc:
            if not exc.should_fallback:
                logger.error("fallback.peer_rejected", operation=operation, error=exc.message, **context)
                raise
            self.fallbacks += 1
            await self._health.mark_unhealthy()
            logger.warning(
                "fallback.peer_failed",
                operation=operation,
                code=exc.code,
                error=exc.message,
                **context,
            )
            return self._simulate(operation, f"peer_error:{exc.code}", **context)

        self.real_calls += 1
        logger.info("fallback.peer_call_succeeded", operation=operation, tx_hash=receipt.tx_hash, **context)
        return SettlementOutcome(tx_hash=receipt.tx_hash, reference=receipt.reference, simulated=False)

    # ------------------------------------------------------------------
    # Late receipts
    # ------------------------------------------------------------------

    def _follow_late(
        self,
        task: asyncio.Task[PeerReceipt],
        operation: str,
        on_late_receipt: Callable[[SettlementOutcome], Awaitable[None]] | None,
        key: str,
        context: dict[str, Any],
    ) -> None:
        logger.warning("fallback.caller_cancelled", operation=operation, **context)
        follower = asyncio.create_task(self._collect_late(task, operation, on_late_receipt, context))
        self._late.setdefault(key, set()).add(follower)
        follower.add_done_callback(partial(self._forget_late, key))

    async def _collect_late(
        self,
        task: asyncio.Task[PeerReceipt],
        operation: str,
        on_late_receipt: Callable[[SettlementOutcome], Awaitable[None]] | None,
        context: dict[str, Any],
    ) -> None:
        try:
            receipt = await task
        except PeerError as exc:
            if exc.should_fallback:
                self.fallbacks += 1
                await self._health.mark_unhealthy()
            logger.warning(
                "fallback.late_call_failed",
                operation=operation,
                code=exc.code,
                error=exc.message,
                **context,
            )
            return

        self.real_calls += 1
        outcome = SettlementOutcome(tx_hash=receipt.tx_hash, reference=receipt.reference, simulated=False)
        logger.warning("fallback.late_receipt", operation=operation, tx_hash=outcome.tx_hash, **context)
        if on_late_receipt is not None:
            await on_late_receipt(outcome)

    def _forget_late(self, key: str, follower: asyncio.Task[None]) -> None:
        group = self._late.get(key)
        if group is not None:
            group.discard(follower)
            if not group:
                del self._late[key]
        if follower.cancelled():
            return
        exc = follower.exception()
        if exc is not None:
            logger.error("fallback.late_receipt_unapplied", key=key, error=repr(exc), exc_info=exc)

    def pending_late(self, key: str | None = None) -> int:
        """Number of late follow-ups still running, for one key or overall."""
        if key is not None:
            return len(self._late.get(key, ()))
        return sum(len(group) for group in self._late.values())

    async def settle(self, key: str) -> None:
        """Wait until every late follow-up registered under ``key`` has finished."""
        group = self._late.get(key)
        if group:
            await asyncio.gather(*group, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for every in-flight peer call and its late follow-up, if any."""
        while self._inflight or self._late:
            pending: list[asyncio.Task[Any]] = [*self._inflight]
            for group in self._late.values():
                pending.extend(group)
            logger.info("fallback.draining", pending=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    async def status(self) -> dict[str, Any]:
        """Current routing status: what the next call would do and why."""
        reason = await self._simulation_reason(peer_reachable=True)
        return {
            "configured_mode": self._configured_mode,
            "effective_mode": "SIMULATED" if reason else "PEER",
            "simulation_reason": reason,
            "peer_configured": self._peer is not None,
            "peer_healthy": self._health.healthy,
            "last_health_check": (
                self._health.last_checked_wall.isoformat() if self._health.last_checked_wall else None
            ),
            "real_calls": self.real_calls,
            "simulated_calls": self.simulated_calls,
            "fallbacks": self.fallbacks,
            "pending_late_receipts": self.pending_late(),
        }
