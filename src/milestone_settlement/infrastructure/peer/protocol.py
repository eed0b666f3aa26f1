"""Settlement Peer Protocol.

The settlement peer is the remote transactional system of record for fund
custody (a ledger RPC bridge). Every operation is idempotent by design on
the peer side and returns a PeerReceipt.

Failures are raised as PeerError subclasses (domain/exceptions.py) so the
fallback controller can tell availability problems from rejected requests.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class PeerReceipt:
    """What the peer returned for one operation.

    Attributes:
        tx_hash: Transaction hash of the ledger write.
        reference: External agreement id (only set by open_agreement).
    """

    tx_hash: str
    reference: str | None = None


@runtime_checkable
class SettlementPeer(Protocol):
    """Protocol that every settlement peer adapter must satisfy.

    Concrete implementations:
        - infrastructure/peer/client.py (HTTP RPC bridge via httpx)
    """

    async def probe(self) -> bool:
        """Lightweight status probe. True when the peer reports healthy."""
        ...

    async def open_agreement(
        self,
        *,
        payer: str,
        beneficiary: str,
        oracle_admin: str,
        total: int,
        milestone_amounts: Sequence[int],
        title: str,
    ) -> PeerReceipt: ...

    async def fund(self, *, external_ref: str, amount: int, payer: str) -> PeerReceipt: ...

    async def attest_milestone(
        self,
        *,
        external_ref: str,
        sequence_number: int,
        fingerprint: str,
        oracle_admin: str,
    ) -> PeerReceipt: ...

    async def release_milestone(
        self, *, external_ref: str, sequence_number: int, sender: str
    ) -> PeerReceipt: ...

    async def refund(self, *, external_ref: str, payer: str) -> PeerReceipt: ...
