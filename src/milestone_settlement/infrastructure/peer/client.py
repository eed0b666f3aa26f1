"""HTTP settlement peer adapter for the ledger RPC bridge.

Talks JSON over HTTP to the bridge:
    GET  /status          — health probe, {"status": "ok"}
    POST /contract/call   — {"contractAddress", "method", "params", "from"}
                            -> {"txHash": "...", "result": ...}

Failure classification (see domain/exceptions.py):
    httpx timeouts           -> PeerTimeoutError       (fallback)
    transport/network errors -> PeerConnectionError    (fallback)
    5xx / malformed body     -> PeerUnavailableError   (fallback)
    4xx                      -> PeerRejectedError      (fatal)

Fallback-eligible failures are retried with exponential backoff (tenacity)
up to a fixed attempt budget before they surface to the fallback controller.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from milestone_settlement.domain.exceptions import (
    PeerConnectionError,
    PeerError,
    PeerRejectedError,
    PeerTimeoutError,
    PeerUnavailableError,
)
from milestone_settlement.infrastructure.peer.protocol import PeerReceipt
from milestone_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from tenacity import RetryCallState

    from milestone_settlement.config import Settings

logger = get_logger(__name__)

HEALTHY_STATUSES = frozenset({"ok", "healthy"})


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, PeerError) and exc.should_fallback


class HttpSettlementPeer:
    """Resilient client for the ledger RPC bridge."""

    def __init__(
        self,
        base_url: str,
        contract_address: str,
        *,
        timeout_seconds: float = 10.0,
        probe_timeout_seconds: float = 5.0,
        retry_count: int = 3,
        backoff_min_seconds: float = 0.2,
        backoff_max_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._contract_address = contract_address
        self._probe_timeout = probe_timeout_seconds
        self._retry_count = retry_count
        self._backoff_min = backoff_min_seconds
        self._backoff_max = backoff_max_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpSettlementPeer:
        return cls(
            base_url=settings.rpc_url,
            contract_address=settings.vault_contract_address,
            timeout_seconds=settings.rpc_timeout_seconds,
            probe_timeout_seconds=settings.health_probe_timeout_seconds,
            retry_count=settings.rpc_retry_count,
            backoff_min_seconds=settings.rpc_backoff_min_seconds,
            backoff_max_seconds=settings.rpc_backoff_max_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def probe(self) -> bool:
        """Single GET /status with a short timeout. Never retried."""
        try:
            body = await self._request("GET", "/status", timeout=self._probe_timeout)
        except PeerError as exc:
            logger.warning("peer.probe_failed", code=exc.code, error=exc.message)
            return False

        healthy = str(body.get("status", "")).lower() in HEALTHY_STATUSES
        if healthy:
            logger.info("peer.probe_passed", block_height=body.get("blockHeight"))
        else:
            logger.warning("peer.probe_unhealthy", response=body)
        return healthy

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.request(method, endpoint, json=body, **kwargs)
        except httpx.TimeoutException as exc:
            raise PeerTimeoutError(f"Request timeout: {endpoint}") from exc
        except httpx.TransportError as exc:
            raise PeerConnectionError(f"RPC request failed: {exc}") from exc

        if response.status_code >= 500:
            raise PeerUnavailableError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PeerRejectedError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise PeerUnavailableError("Malformed peer response (not JSON)") from exc
        if not isinstance(data, dict):
            raise PeerUnavailableError("Malformed peer response (not an object)")
        return data

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "peer.request_retry",
            attempt=retry_state.attempt_number,
            max_attempts=self._retry_count,
            error=str(exc),
        )

    async def _call_contract(self, method: str, params: list[Any], sender: str) -> dict[str, Any]:
        """POST /contract/call with bounded exponential-backoff retries."""
        body = {
            "contractAddress": self._contract_address,
            "method": method,
            "params": params,
            "from": sender,
        }
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_count),
            wait=wait_exponential(
                multiplier=self._backoff_min,
                min=self._backoff_min,
                max=self._backoff_max,
            ),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return await self._request("POST", "/contract/call", body=body)
        raise PeerUnavailableError("All retry attempts failed")  # pragma: no cover

    @staticmethod
    def _receipt(data: dict[str, Any], *, reference: str | None = None) -> PeerReceipt:
        tx_hash = data.get("txHash")
        if not tx_hash:
            raise PeerUnavailableError("Peer response missing txHash")
        return PeerReceipt(tx_hash=str(tx_hash), reference=reference)

    # ------------------------------------------------------------------
    # Settlement operations
    # ------------------------------------------------------------------

    async def open_agreement(
        self,
        *,
        payer: str,
        beneficiary: str,
        oracle_admin: str,
        total: int,
        milestone_amounts: Sequence[int],
        title: str,
    ) -> PeerReceipt:
        logger.info("peer.open_agreement", beneficiary=beneficiary)
        data = await self._call_contract(
            "createAgreement",
            [beneficiary, oracle_admin, str(total), [str(a) for a in milestone_amounts], title],
            sender=payer,
        )
        reference = data.get("result")
        if not reference:
            raise PeerUnavailableError("Peer response missing agreement id")
        return self._receipt(data, reference=str(reference))

    async def fund(self, *, external_ref: str, amount: int, payer: str) -> PeerReceipt:
        logger.info("peer.fund", external_ref=external_ref, amount=str(amount))
        data = await self._call_contract("deposit", [external_ref, str(amount)], sender=payer)
        return self._receipt(data)

    async def attest_milestone(
        self,
        *,
        external_ref: str,
        sequence_number: int,
        fingerprint: str,
        oracle_admin: str,
    ) -> PeerReceipt:
        logger.info("peer.attest_milestone", external_ref=external_ref, milestone=sequence_number)
        data = await self._call_contract(
            "markMilestoneVerified",
            [external_ref, sequence_number, fingerprint],
            sender=oracle_admin,
        )
        return self._receipt(data)

    async def release_milestone(
        self, *, external_ref: str, sequence_number: int, sender: str
    ) -> PeerReceipt:
        logger.info("peer.release_milestone", external_ref=external_ref, milestone=sequence_number)
        data = await self._call_contract(
            "releaseMilestone", [external_ref, sequence_number], sender=sender
        )
        return self._receipt(data)

    async def refund(self, *, external_ref: str, payer: str) -> PeerReceipt:
        logger.info("peer.refund", external_ref=external_ref)
        data = await self._call_contract("refund", [external_ref], sender=payer)
        return self._receipt(data)
