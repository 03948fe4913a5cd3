"""
Contrat d'un adaptateur de passerelle de paiement (PayPal, Stripe).

L'orchestrateur ne parle qu'à cette interface:
- create_remote_order: crée la commande distante pour le total dû par le client
- capture_remote_order: capture (règle) la commande distante, au plus une fois
- map_status: traduit un statut distant; seule une capture terminée donne 'paid'
Les erreurs du processeur remontent en GatewayError (jamais de retry automatique).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from marketplace.fees import to_money
from marketplace.orders.models import Order, OrderStatus


@dataclass(frozen=True)
class RemoteOrder:
    remote_order_id: str
    status: str
    approve_url: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class SettlementResult:
    remote_order_id: str
    capture_id: str
    status: str
    amount: Decimal
    currency: str
    captured_at: str

    def as_dict(self) -> Dict[str, Any]:
        # Forme persistée dans orders.settlement et renvoyée telle quelle au client
        return {
            "remoteOrderId": self.remote_order_id,
            "captureId": self.capture_id,
            "status": self.status,
            "amount": float(self.amount),
            "currency": self.currency,
            "capturedAt": self.captured_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettlementResult":
        return cls(
            remote_order_id=str(data.get("remoteOrderId") or ""),
            capture_id=str(data.get("captureId") or ""),
            status=str(data.get("status") or ""),
            amount=to_money(data.get("amount") or 0),
            currency=str(data.get("currency") or ""),
            captured_at=str(data.get("capturedAt") or ""),
        )


class PaymentGateway(ABC):
    name = "gateway"

    @abstractmethod
    async def create_remote_order(self, order: Order) -> RemoteOrder:
        ...

    @abstractmethod
    async def capture_remote_order(self, order: Order, remote_order_id: str) -> SettlementResult:
        ...

    @abstractmethod
    def map_status(self, remote_status: str) -> OrderStatus:
        ...

    async def aclose(self) -> None:
        return None
