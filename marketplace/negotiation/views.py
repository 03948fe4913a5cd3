# module marketplace.negotiation.views

"""Endpoints de la négociation sur un Service (chat, demandes de paiement, commandes).
- Les rôles (client / développeur) sont vérifiés par le service à partir du Service stocké.
- Les erreurs métier (MarketplaceError) sont traduites en JSON par app_setup.exceptions.
- optional_rate_limit: limite les écritures (messages, actions de paiement, passerelle).
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from marketplace.negotiation.models import CaptureBody, PaymentActionBody, PaymentRequestBody, PostMessageBody
from marketplace.negotiation.service import NegotiationService, get_negotiation_service
from marketplace.orders.models import OrderProposal
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.utils.security import require_user

router = APIRouter(prefix="/api/v1/marketplace", tags=["Marketplace API"])


@router.get("/services/{service_id}/messages")
async def list_messages(
    service_id: str,
    after: Optional[str] = Query(default=None, description="Dernier message connu (reconnexion)"),
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    messages = await service.list_messages(service_id, user["id"], after=after)
    return [m.to_wire() for m in messages]


@router.post("/services/{service_id}/messages", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
async def post_message(
    service_id: str,
    body: PostMessageBody,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    message = await service.post_message(service_id, user["id"], body.text)
    return message.to_wire()


@router.post("/services/{service_id}/payment-requests", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_payment_request(
    service_id: str,
    body: PaymentRequestBody,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    """Demande de paiement du développeur: message + PaymentDetails 'pending'."""
    message = await service.create_payment_request(
        service_id,
        user["id"],
        body.amount,
        body.payment_type,
        text=body.text,
        title=body.title,
        description=body.description,
        delivery_time=body.delivery_time,
        revisions=body.revisions,
    )
    return message.to_wire()


@router.post("/services/{service_id}/orders", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def propose_order(
    service_id: str,
    body: OrderProposal,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    """Commande directe du développeur; réutilise la commande ouverte du Service s'il y en a une."""
    order, created = await service.propose_order(service_id, user["id"], body)
    return {"order": order.to_wire(), "created": created}


@router.get("/services/{service_id}/orders")
async def list_orders(
    service_id: str,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    orders = await service.list_orders(service_id, user["id"])
    return [o.to_wire() for o in orders]


@router.get("/messages/{message_id}")
async def get_message(
    message_id: str,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    message = await service.get_message(message_id, user["id"])
    return message.to_wire()


@router.post("/messages/{message_id}/payment-action", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def payment_action(
    message_id: str,
    body: PaymentActionBody,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    """
    Accepter / refuser une demande de paiement (client du Service uniquement).
    Une demande déjà traitée renvoie 409 already_handled, sans effet de bord.
    """
    result = await service.handle_payment_action(message_id, user["id"], body.action)
    return result.to_wire()


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    order = await service.get_order(order_id, user["id"])
    return order.to_wire()


@router.post("/orders/{order_id}/create-paypal-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
@router.post("/orders/{order_id}/create-remote-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_remote_order(
    order_id: str,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    remote = await service.create_remote_order(order_id, user["id"])
    payload = {"paypalOrderId": remote.remote_order_id, "remoteOrderId": remote.remote_order_id}
    if remote.approve_url:
        payload["approveUrl"] = remote.approve_url
    if remote.client_secret:
        payload["clientSecret"] = remote.client_secret
    return payload


@router.post("/orders/{order_id}/capture-paypal-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
@router.post("/orders/{order_id}/capture-remote-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def capture_remote_order(
    order_id: str,
    body: CaptureBody,
    user: dict = Depends(require_user),
    service: NegotiationService = Depends(get_negotiation_service),
):
    """Capture idempotente: une commande déjà réglée renvoie le règlement enregistré (alreadySettled)."""
    result = await service.capture_remote_order(order_id, user["id"], body.order_ref)
    return result.to_wire()
