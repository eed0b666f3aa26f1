"""Tests for the HTTP settlement peer adapter.

Uses httpx.MockTransport so no network is touched. Backoff is zeroed so
retries run immediately.
"""

from __future__ import annotations

import json

import httpx
import pytest

from milestone_settlement.domain.exceptions import (
    PeerConnectionError,
    PeerRejectedError,
    PeerTimeoutError,
    PeerUnavailableError,
)
from milestone_settlement.infrastructure.peer import HttpSettlementPeer, SettlementPeer

TX_HASH = "0x" + "ab" * 32


def _peer(handler, retry_count: int = 3) -> HttpSettlementPeer:  # noqa: ANN001
    client = httpx.AsyncClient(base_url="http://bridge.test", transport=httpx.MockTransport(handler))
    return HttpSettlementPeer(
        "http://bridge.test",
        "0xVAULT",
        retry_count=retry_count,
        backoff_min_seconds=0,
        backoff_max_seconds=0,
        client=client,
    )


class TestProtocol:
    def test_satisfies_settlement_peer(self) -> None:
        assert isinstance(_peer(lambda request: httpx.Response(200, json={})), SettlementPeer)


class TestProbe:
    @pytest.mark.asyncio
    async def test_ok_status_is_healthy(self) -> None:
        peer = _peer(lambda request: httpx.Response(200, json={"status": "ok", "blockHeight": 12}))
        assert await peer.probe() is True

    @pytest.mark.asyncio
    async def test_degraded_status_is_unhealthy(self) -> None:
        peer = _peer(lambda request: httpx.Response(200, json={"status": "syncing"}))
        assert await peer.probe() is False

    @pytest.mark.asyncio
    async def test_server_error_is_unhealthy(self) -> None:
        peer = _peer(lambda request: httpx.Response(503))
        assert await peer.probe() is False

    @pytest.mark.asyncio
    async def test_probe_is_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            raise httpx.ConnectError("refused", request=request)

        assert await _peer(handler).probe() is False
        assert calls == ["/status"]


class TestContractCalls:
    @pytest.mark.asyncio
    async def test_fund_sends_contract_call(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"txHash": TX_HASH})

        receipt = await _peer(handler).fund(external_ref="7", amount=100_000, payer="0xPAYER")

        assert receipt.tx_hash == TX_HASH
        assert seen == [{
            "contractAddress": "0xVAULT",
            "method": "deposit",
            "params": ["7", "100000"],
            "from": "0xPAYER",
        }]

    @pytest.mark.asyncio
    async def test_open_agreement_returns_reference(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["method"] == "createAgreement"
            assert body["params"][3] == ["30000", "70000"]
            return httpx.Response(200, json={"txHash": TX_HASH, "result": 7})

        receipt = await _peer(handler).open_agreement(
            payer="0xPAYER",
            beneficiary="0xBEN",
            oracle_admin="oracle-demo",
            total=100_000,
            milestone_amounts=[30_000, 70_000],
            title="Build",
        )
        assert receipt.reference == "7"

    @pytest.mark.asyncio
    async def test_missing_tx_hash_is_unavailable(self) -> None:
        peer = _peer(lambda request: httpx.Response(200, json={"ok": True}), retry_count=1)
        with pytest.raises(PeerUnavailableError, match="txHash"):
            await peer.refund(external_ref="7", payer="0xPAYER")


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_server_errors_retried_then_raised(self) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(502)

        with pytest.raises(PeerUnavailableError) as exc_info:
            await _peer(handler, retry_count=3).release_milestone(
                external_ref="7", sequence_number=1, sender="0xBEN"
            )
        assert exc_info.value.status_code == 502
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self) -> None:
        responses = iter([httpx.Response(503), httpx.Response(200, json={"txHash": TX_HASH})])
        peer = _peer(lambda request: next(responses))

        receipt = await peer.refund(external_ref="7", payer="0xPAYER")
        assert receipt.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(400, text="bad params")

        with pytest.raises(PeerRejectedError) as exc_info:
            await _peer(handler).refund(external_ref="7", payer="0xPAYER")
        assert exc_info.value.should_fallback is False
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_timeout_mapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(PeerTimeoutError):
            await _peer(handler, retry_count=1).refund(external_ref="7", payer="0xPAYER")

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(PeerConnectionError):
            await _peer(handler, retry_count=2).refund(external_ref="7", payer="0xPAYER")

    @pytest.mark.asyncio
    async def test_non_json_body_is_unavailable(self) -> None:
        peer = _peer(lambda request: httpx.Response(200, text="<html>"), retry_count=1)
        with pytest.raises(PeerUnavailableError, match="not JSON"):
            await peer.refund(external_ref="7", payer="0xPAYER")
