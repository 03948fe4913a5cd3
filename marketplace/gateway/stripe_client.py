"""
Adaptateur Stripe: PaymentIntent en capture manuelle (autorisation puis capture).

- L'autorisation bloque les fonds côté client, la capture les règle: séquestre simplifié
- Clés d'idempotence dérivées de la commande locale (création et capture)
- Le SDK est synchrone: les appels passent par le threadpool
"""
from datetime import datetime, timezone
from decimal import Decimal
import logging

import stripe
from starlette.concurrency import run_in_threadpool

from marketplace.config import PAYMENT_CURRENCY, STRIPE_SECRET_KEY
from marketplace.errors import GatewayError
from marketplace.fees import to_money
from marketplace.orders.models import Order, OrderStatus

from .base import PaymentGateway, RemoteOrder, SettlementResult

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"


def require_stripe(api_key: str = STRIPE_SECRET_KEY):
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    En absence de clé, les appels Stripe échoueront côté SDK (No API key provided).
    """
    if api_key:
        stripe.api_key = api_key
    return stripe


def _to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, api_key: str = STRIPE_SECRET_KEY, currency: str = PAYMENT_CURRENCY):
        self.api_key = api_key
        self.currency = currency.lower()

    async def _call(self, func, *args, **kwargs):
        require_stripe(self.api_key)
        try:
            result = await run_in_threadpool(func, *args, **kwargs)
        except stripe.StripeError as e:
            logger.exception("stripe call failed")
            detail = getattr(e, "user_message", None) or None
            raise GatewayError(detail, reason=f"stripe: {e}")
        # stripe retourne un objet; on le traite comme dict-compatible
        return dict(result)

    async def create_remote_order(self, order: Order) -> RemoteOrder:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=_to_cents(order.total_amount),
            currency=self.currency,
            capture_method="manual",
            description=f"Payment for: {order.title}",
            metadata={"order_id": order.id, "service_id": order.service_id},
            idempotency_key=f"create-{order.id}",
        )
        return RemoteOrder(
            remote_order_id=intent["id"],
            status=intent.get("status", ""),
            client_secret=intent.get("client_secret"),
        )

    async def capture_remote_order(self, order: Order, remote_order_id: str) -> SettlementResult:
        intent = await self._call(stripe.PaymentIntent.retrieve, remote_order_id)
        if intent.get("status") != SUCCEEDED:
            if intent.get("status") != "requires_capture":
                raise GatewayError(
                    f"Paiement non autorisé (statut Stripe: {intent.get('status')})",
                    reason=f"stripe intent {remote_order_id}: status {intent.get('status')}",
                )
            intent = await self._call(
                stripe.PaymentIntent.capture,
                remote_order_id,
                idempotency_key=f"capture-{order.id}",
            )
        status = intent.get("status", "")
        if self.map_status(status) != OrderStatus.PAID:
            raise GatewayError(
                f"Paiement non finalisé (statut Stripe: {status})",
                reason=f"stripe capture {remote_order_id}: status {status}",
            )
        created = intent.get("created")
        captured_at = (
            datetime.fromtimestamp(int(created), tz=timezone.utc).isoformat() if created else ""
        )
        return SettlementResult(
            remote_order_id=remote_order_id,
            capture_id=str(intent.get("latest_charge") or intent["id"]),
            status=status,
            amount=to_money(Decimal(int(intent.get("amount_received") or 0)) / 100),
            currency=str(intent.get("currency") or "").upper(),
            captured_at=captured_at,
        )

    def map_status(self, remote_status: str) -> OrderStatus:
        return OrderStatus.PAID if remote_status == SUCCEEDED else OrderStatus.PENDING_PAYMENT
