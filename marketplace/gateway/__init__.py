"""
Module 'gateway': sélection de l'adaptateur de paiement (PAYMENT_GATEWAY).
"""
from typing import Optional

from marketplace.config import PAYMENT_GATEWAY

from .base import PaymentGateway, RemoteOrder, SettlementResult

_gateway: Optional[PaymentGateway] = None


def build_gateway(name: str = PAYMENT_GATEWAY) -> PaymentGateway:
    if name == "stripe":
        from .stripe_client import StripeGateway
        return StripeGateway()
    if name == "paypal":
        from .paypal_client import PayPalGateway
        return PayPalGateway()
    raise ValueError(f"PAYMENT_GATEWAY inconnu: {name}")


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = build_gateway()
    return _gateway


async def close_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None


__all__ = [
    "PaymentGateway",
    "RemoteOrder",
    "SettlementResult",
    "build_gateway",
    "get_gateway",
    "close_gateway",
]
