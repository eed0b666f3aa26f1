"""Settlement peer infrastructure — protocol and HTTP adapter."""

from milestone_settlement.infrastructure.peer.client import HttpSettlementPeer
from milestone_settlement.infrastructure.peer.protocol import PeerReceipt, SettlementPeer

__all__ = ["HttpSettlementPeer", "PeerReceipt", "SettlementPeer"]
