"""
Adaptateur PayPal (API REST Orders v2) via httpx.AsyncClient.

- Jeton OAuth2 (client_credentials) mis en cache jusqu'à expiration
- En-tête PayPal-Request-Id déterministe par commande locale: une création ou une capture
  rejouée renvoie le même résultat côté PayPal (idempotence chez le processeur)
- Une commande déjà capturée (ORDER_ALREADY_CAPTURED) est relue plutôt que signalée en erreur
"""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from marketplace.config import (
    PAYPAL_API_URL,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_TIMEOUT_SECONDS,
    PAYMENT_CURRENCY,
)
from marketplace.errors import GatewayError
from marketplace.fees import to_money
from marketplace.orders.models import Order, OrderStatus

from .base import PaymentGateway, RemoteOrder, SettlementResult

logger = logging.getLogger(__name__)

COMPLETED = "COMPLETED"


class PayPalAPIError(GatewayError):
    def __init__(self, detail: Optional[str] = None, *, reason: Optional[str] = None, issue: Optional[str] = None):
        super().__init__(detail, reason=reason)
        self.issue = issue


def _error_from_response(resp: httpx.Response) -> PayPalAPIError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    details = body.get("details") or [{}]
    issue = details[0].get("issue") or body.get("name")
    detail = details[0].get("description") or body.get("message") or f"PayPal a répondu {resp.status_code}"
    return PayPalAPIError(detail, reason=f"paypal {resp.status_code} {issue}: {detail}", issue=issue)


class PayPalGateway(PaymentGateway):
    name = "paypal"

    def __init__(
        self,
        client_id: str = PAYPAL_CLIENT_ID,
        client_secret: str = PAYPAL_CLIENT_SECRET,
        base_url: str = PAYPAL_API_URL,
        currency: str = PAYMENT_CURRENCY,
        timeout: float = PAYPAL_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.currency = currency
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def _access_token(self) -> str:
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            if not self.client_id or not self.client_secret:
                raise GatewayError(reason="PAYPAL_CLIENT_ID / PAYPAL_CLIENT_SECRET manquants")
            try:
                resp = await self._client.post(
                    "/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                logger.exception("paypal oauth request failed")
                raise GatewayError(reason=f"paypal oauth: {e}")
            if resp.status_code >= 400:
                raise _error_from_response(resp)
            body = resp.json()
            self._token = body["access_token"]
            # Marge d'une minute avant l'expiration annoncée
            self._token_expires_at = time.monotonic() + max(int(body.get("expires_in", 0)) - 60, 0)
            return self._token

    async def _request(self, method: str, path: str, *, json: Any = None, request_id: Optional[str] = None) -> Dict[str, Any]:
        token = await self._access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        try:
            resp = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            # Réponse inconnue: la commande reste en attente, l'utilisateur peut relancer
            logger.exception("paypal %s %s failed", method, path)
            raise GatewayError(reason=f"paypal {method} {path}: {e}")
        if resp.status_code >= 400:
            raise _error_from_response(resp)
        try:
            return resp.json()
        except ValueError:
            raise GatewayError(reason=f"paypal {method} {path}: invalid JSON")

    async def create_remote_order(self, order: Order) -> RemoteOrder:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": order.id,
                "custom_id": order.id,
                "description": f"Payment for: {order.title}"[:127],
                "amount": {"currency_code": self.currency, "value": f"{order.total_amount:.2f}"},
            }],
        }
        data = await self._request("POST", "/v2/checkout/orders", json=body, request_id=f"create-{order.id}")
        approve_url = None
        for link in data.get("links") or []:
            if link.get("rel") in ("approve", "payer-action"):
                approve_url = link.get("href")
                break
        if not data.get("id"):
            raise GatewayError(reason="paypal create order: missing id")
        return RemoteOrder(remote_order_id=data["id"], status=data.get("status", ""), approve_url=approve_url)

    async def capture_remote_order(self, order: Order, remote_order_id: str) -> SettlementResult:
        try:
            data = await self._request(
                "POST",
                f"/v2/checkout/orders/{remote_order_id}/capture",
                json={},
                request_id=f"capture-{order.id}",
            )
        except PayPalAPIError as e:
            if e.issue != "ORDER_ALREADY_CAPTURED":
                raise
            logger.info("paypal order %s already captured, reading it back", remote_order_id)
            data = await self._request("GET", f"/v2/checkout/orders/{remote_order_id}")
        return self._settlement_from_order(remote_order_id, data)

    def _settlement_from_order(self, remote_order_id: str, data: Dict[str, Any]) -> SettlementResult:
        try:
            capture = data["purchase_units"][0]["payments"]["captures"][0]
        except (KeyError, IndexError, TypeError):
            raise GatewayError(
                f"Paiement non finalisé (statut PayPal: {data.get('status') or 'inconnu'})",
                reason=f"paypal capture {remote_order_id}: no capture in response",
            )
        status = capture.get("status") or data.get("status") or ""
        if self.map_status(status) != OrderStatus.PAID:
            raise GatewayError(
                f"Paiement non finalisé (statut PayPal: {status})",
                reason=f"paypal capture {remote_order_id}: status {status}",
            )
        amount = capture.get("amount") or {}
        return SettlementResult(
            remote_order_id=remote_order_id,
            capture_id=str(capture.get("id") or ""),
            status=status,
            amount=to_money(amount.get("value") or "0"),
            currency=str(amount.get("currency_code") or ""),
            captured_at=str(capture.get("create_time") or capture.get("update_time") or ""),
        )

    def map_status(self, remote_status: str) -> OrderStatus:
        return OrderStatus.PAID if (remote_status or "").upper() == COMPLETED else OrderStatus.PENDING_PAYMENT

    async def aclose(self) -> None:
        await self._client.aclose()
