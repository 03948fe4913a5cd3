"""
Cas d'usage 'negotiation': seul écrivain des messages, demandes de paiement et commandes.

Règles communes aux opérations mutantes:
- rôles déduits du Service stocké (client / développeur), jamais du payload
- sérialisation par Service (ServiceLocks) + compare-and-set en base
- diffusion temps réel uniquement après l'écriture, dans la même section critique
- un échec de diffusion n'est jamais une erreur pour l'appelant
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from starlette.concurrency import run_in_threadpool

from marketplace.chat import repository as chat_repo
from marketplace.chat.models import (
    PaymentDetails,
    PaymentRequestMessage,
    PaymentStatus,
    PaymentType,
    TextMessage,
    message_from_row,
    payment_details_from_row,
)
from marketplace.errors import (
    DuplicateOrder,
    InvalidTransition,
    NotFound,
    SettlementMismatch,
    StorageError,
    Unauthorized,
)
from marketplace.fees import calculate_fees, settlement_amount
from marketplace.gateway import PaymentGateway, RemoteOrder, SettlementResult, get_gateway
from marketplace.orders import repository as orders_repo
from marketplace.orders.models import DEFAULT_DELIVERY_TIME, Order, OrderProposal, OrderStatus, order_from_row
from marketplace.realtime.channels import ChannelManager, get_channels
from marketplace.services import repository as services_repo
from marketplace.services.models import Participants, Role, participants_from_rows

from .locks import ServiceLocks
from .state_machine import PaymentAction, check_order_transition, next_payment_status

logger = logging.getLogger(__name__)

NEW_MESSAGE = "newMessage"
PAYMENT_STATUS_UPDATE = "paymentStatusUpdate"

# Statuts d'une commande déjà réglée (capture faite)
SETTLED_STATUSES = (OrderStatus.PAID, OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED, OrderStatus.COMPLETED)

AnyMessage = Union[TextMessage, PaymentRequestMessage]


@dataclass
class PaymentActionResult:
    message: PaymentRequestMessage
    payment_details: PaymentDetails
    order: Optional[Order] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "message": self.message.to_wire(),
            "paymentDetails": self.payment_details.to_wire(),
            "order": self.order.to_wire() if self.order else None,
        }


@dataclass
class CaptureResult:
    order: Order
    settlement: SettlementResult
    already_settled: bool = False

    def to_wire(self) -> Dict[str, Any]:
        return {
            "success": True,
            "alreadySettled": self.already_settled,
            "order": self.order.to_wire(),
            "settlement": self.settlement.as_dict(),
        }


def status_update_payload(details: PaymentDetails) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"messageId": details.message_id, "status": details.status.value}
    if details.order_id:
        payload["orderId"] = details.order_id
    return payload


class NegotiationService:
    def __init__(
        self,
        channels: ChannelManager,
        gateway: Optional[PaymentGateway] = None,
        locks: Optional[ServiceLocks] = None,
    ):
        self.channels = channels
        self._gateway = gateway
        self.locks = locks or ServiceLocks()

    @property
    def gateway(self) -> PaymentGateway:
        # Instancié à la première utilisation (client HTTP PayPal / clé Stripe)
        if self._gateway is None:
            self._gateway = get_gateway()
        return self._gateway

    # --- Lectures internes ---

    async def _participants(self, service_id: str) -> Participants:
        service = await run_in_threadpool(services_repo.get_service, service_id)
        if not service:
            raise NotFound("Service introuvable", reason=f"service {service_id} not found")
        application = None
        if not service.get("developer_id"):
            application = await run_in_threadpool(services_repo.get_accepted_application, service_id)
        return participants_from_rows(service, application)

    async def ensure_participant(self, service_id: str, user_id: str) -> Role:
        participants = await self._participants(service_id)
        return participants.require_member(user_id)

    async def _load_message(self, message_id: str) -> AnyMessage:
        row = await run_in_threadpool(chat_repo.get_message, message_id)
        if not row:
            raise NotFound("Message introuvable", reason=f"message {message_id} not found")
        return message_from_row(row)

    async def _load_order(self, order_id: str) -> Order:
        row = await run_in_threadpool(orders_repo.get_order, order_id)
        if not row:
            raise NotFound("Commande introuvable", reason=f"order {order_id} not found")
        return order_from_row(row)

    # --- Diffusion ---

    async def _broadcast(self, service_id: str, event: str, payload: Dict[str, Any], dedupe_key: Optional[str] = None) -> None:
        try:
            await self.channels.publish(service_id, event, payload, dedupe_key=dedupe_key)
        except Exception:
            logger.exception("broadcast %s failed for service %s", event, service_id)

    async def _broadcast_message(self, message: AnyMessage) -> None:
        await self._broadcast(message.service_id, NEW_MESSAGE, message.to_wire(), dedupe_key=message.id)

    async def _broadcast_status(self, service_id: str, details: PaymentDetails) -> None:
        await self._broadcast(service_id, PAYMENT_STATUS_UPDATE, status_update_payload(details))

    # --- Messages ---

    async def post_message(self, service_id: str, user_id: str, text: str) -> AnyMessage:
        participants = await self._participants(service_id)
        participants.require_member(user_id)
        async with self.locks.hold(service_id):
            row = await run_in_threadpool(chat_repo.insert_message, service_id, user_id, text)
            message = message_from_row(row)
            await self._broadcast_message(message)
        return message

    async def list_messages(self, service_id: str, user_id: str, after: Optional[str] = None) -> List[AnyMessage]:
        """Historique complet, ou seulement les messages postérieurs à 'after' (reconnexion)."""
        participants = await self._participants(service_id)
        participants.require_member(user_id)
        after_row = None
        if after:
            after_row = await run_in_threadpool(chat_repo.get_message, after)
            if not after_row or str(after_row.get("service_id")) != str(service_id):
                raise NotFound("Message introuvable", reason=f"cursor {after} not in service {service_id}")
        rows = await run_in_threadpool(chat_repo.list_messages, service_id, after_row)
        return [message_from_row(r) for r in rows]

    async def get_message(self, message_id: str, user_id: str) -> AnyMessage:
        message = await self._load_message(message_id)
        participants = await self._participants(message.service_id)
        participants.require_member(user_id)
        return message

    async def relay_message(self, service_id: str, message_id: str, user_id: str) -> AnyMessage:
        """
        Relais temps réel d'un message déjà persisté (événement sendMessage).
        Le message est relu en base: il doit exister, appartenir au Service et venir de l'utilisateur.
        """
        message = await self._load_message(message_id)
        if message.service_id != str(service_id) or message.sender_id != str(user_id):
            raise Unauthorized(reason=f"message {message_id} cannot be relayed by {user_id} in {service_id}")
        await self._broadcast_message(message)
        return message

    async def create_payment_request(
        self,
        service_id: str,
        user_id: str,
        amount,
        payment_type,
        text: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        delivery_time: Optional[int] = None,
        revisions: Optional[int] = None,
    ) -> PaymentRequestMessage:
        participants = await self._participants(service_id)
        participants.require(user_id, Role.DEVELOPER)
        payment_type = PaymentType(payment_type)
        amount = calculate_fees(amount).amount
        title = title or f"Payment for: {participants.title}"
        async with self.locks.hold(service_id):
            row = await run_in_threadpool(
                lambda: chat_repo.insert_payment_request_message(
                    service_id=service_id,
                    sender_id=user_id,
                    text=text or title,
                    amount=amount,
                    payment_type=payment_type.value,
                    title=title,
                    description=description,
                    delivery_time=delivery_time,
                    revisions=revisions,
                )
            )
            message = message_from_row(row)
            logger.info("negotiation.request message_id=%s service_id=%s amount=%s", message.id, service_id, amount)
            await self._broadcast_message(message)
        return message

    # --- Commandes ---

    def _order_payload(
        self,
        participants: Participants,
        *,
        amount,
        payment_type: PaymentType,
        title: str,
        description: Optional[str],
        delivery_time: Optional[int],
        revisions: Optional[int],
        message_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not participants.developer_id:
            raise NotFound("Aucun développeur n'est assigné à ce service", reason=f"service {participants.service_id} has no developer")
        due_now, remaining = settlement_amount(amount, payment_type)
        fees = calculate_fees(due_now)
        return {
            "service_id": participants.service_id,
            "message_id": message_id,
            "title": title or f"Payment for: {participants.title}",
            "description": description or "",
            "price": str(fees.developer_receives),
            "platform_fee": str(fees.platform_fee),
            "total_amount": str(fees.client_total),
            "remaining_amount": str(remaining),
            "delivery_time": delivery_time or DEFAULT_DELIVERY_TIME,
            "revisions": revisions or 0,
            "payment_type": payment_type.value,
            "status": OrderStatus.PENDING_PAYMENT.value,
            "client_id": participants.client_id,
            "developer_id": participants.developer_id,
        }

    async def _find_or_create_order(self, service_id: str, payload: Dict[str, Any]) -> Tuple[Order, bool]:
        """Réutilise la commande ouverte du Service, sinon la crée (l'index unique tranche les courses)."""
        existing = await run_in_threadpool(orders_repo.find_open_order, service_id)
        if existing:
            return order_from_row(existing), False
        try:
            row = await run_in_threadpool(orders_repo.insert_order, payload)
            return order_from_row(row), True
        except DuplicateOrder:
            existing = await run_in_threadpool(orders_repo.find_open_order, service_id)
            if not existing:
                raise
            logger.info("negotiation.order_race service_id=%s reused order_id=%s", service_id, existing.get("id"))
            return order_from_row(existing), False

    async def propose_order(self, service_id: str, user_id: str, proposal: OrderProposal) -> Tuple[Order, bool]:
        participants = await self._participants(service_id)
        participants.require(user_id, Role.DEVELOPER)
        payload = self._order_payload(
            participants,
            amount=proposal.price,
            payment_type=proposal.payment_type,
            title=proposal.title,
            description=proposal.description,
            delivery_time=proposal.delivery_time,
            revisions=proposal.revisions,
        )
        async with self.locks.hold(service_id):
            order, created = await self._find_or_create_order(service_id, payload)
        logger.info("negotiation.propose service_id=%s order_id=%s created=%s", service_id, order.id, created)
        return order, created

    async def list_orders(self, service_id: str, user_id: str) -> List[Order]:
        participants = await self._participants(service_id)
        participants.require_member(user_id)
        rows = await run_in_threadpool(orders_repo.list_service_orders, service_id)
        return [order_from_row(r) for r in rows]

    async def get_order(self, order_id: str, user_id: str) -> Order:
        order = await self._load_order(order_id)
        participants = await self._participants(order.service_id)
        participants.require_member(user_id)
        return order

    # --- Accepter / refuser ---

    async def _cancel_created_order(self, order: Order) -> None:
        check_order_transition(order.status, OrderStatus.CANCELLED)
        try:
            await run_in_threadpool(
                lambda: orders_repo.update_order_status(
                    order.id, expected=OrderStatus.PENDING_PAYMENT, new=OrderStatus.CANCELLED
                )
            )
        except StorageError:
            logger.exception("compensating cancel failed for order %s", order.id)

    async def handle_payment_action(self, message_id: str, user_id: str, action) -> PaymentActionResult:
        action = PaymentAction(action)
        if action == PaymentAction.CAPTURE:
            # Réservé à une capture réussie auprès de la passerelle
            raise Unauthorized(reason="capture is not a user action")
        message = await self._load_message(message_id)
        if not isinstance(message, PaymentRequestMessage):
            raise NotFound("Demande de paiement introuvable", reason=f"message {message_id} has no payment request")
        participants = await self._participants(message.service_id)
        participants.require(user_id, Role.CLIENT)

        async with self.locks.hold(message.service_id):
            # Relecture sous verrou: l'état lu avant l'attente a pu changer
            message = await self._load_message(message_id)
            details = message.payment_details
            new_status = next_payment_status(details.status, action)

            order: Optional[Order] = None
            created = False
            if action == PaymentAction.ACCEPT:
                payload = self._order_payload(
                    participants,
                    amount=details.amount,
                    payment_type=details.payment_type,
                    title=details.title or "",
                    description=details.description,
                    delivery_time=details.delivery_time,
                    revisions=details.revisions,
                    message_id=message.id,
                )
                order, created = await self._find_or_create_order(message.service_id, payload)
                if order.status != OrderStatus.PENDING_PAYMENT:
                    # Commande déjà réglée: une nouvelle demande attendra sa clôture
                    raise DuplicateOrder(
                        "Une commande déjà réglée est en cours pour ce service",
                        reason=f"open order {order.id} is {order.status.value}",
                    )

            try:
                updated = await run_in_threadpool(
                    lambda: chat_repo.update_payment_request_status(
                        details.id,
                        expected=details.status.value,
                        new=new_status.value,
                        order_id=order.id if order else None,
                    )
                )
            except StorageError:
                if created:
                    await self._cancel_created_order(order)
                raise
            if updated is None:
                # Un autre processus a tranché avant nous: rien ne doit rester visible
                if created:
                    await self._cancel_created_order(order)
                raise InvalidTransition(reason=f"payment request {details.id} is no longer {details.status.value}")

            details = payment_details_from_row(updated)
            message = message.model_copy(update={"payment_details": details})
            logger.info(
                "negotiation.%s message_id=%s order_id=%s",
                action.value, message.id, order.id if order else None,
            )
            await self._broadcast_status(message.service_id, details)
        return PaymentActionResult(message=message, payment_details=details, order=order)

    # --- Passerelle ---

    async def create_remote_order(self, order_id: str, user_id: str) -> RemoteOrder:
        order = await self._load_order(order_id)
        participants = await self._participants(order.service_id)
        participants.require(user_id, Role.CLIENT)

        async with self.locks.hold(order.service_id):
            order = await self._load_order(order_id)
            if order.status != OrderStatus.PENDING_PAYMENT:
                raise InvalidTransition(reason=f"order {order.id} is {order.status.value}")
            if order.remote_order_id:
                return RemoteOrder(remote_order_id=order.remote_order_id, status="existing")

            remote = await self.gateway.create_remote_order(order)
            updated = await run_in_threadpool(
                orders_repo.set_remote_order_id, order.id, remote.remote_order_id, self.gateway.name
            )
            if updated is None:
                current = await self._load_order(order_id)
                if current.remote_order_id:
                    return RemoteOrder(remote_order_id=current.remote_order_id, status="existing")
                raise InvalidTransition(reason=f"order {order.id} left pending_payment during remote creation")
            logger.info("negotiation.remote_order order_id=%s remote_order_id=%s", order.id, remote.remote_order_id)
        return remote

    async def capture_remote_order(self, order_id: str, user_id: str, remote_order_id: str) -> CaptureResult:
        order = await self._load_order(order_id)
        participants = await self._participants(order.service_id)
        participants.require(user_id, Role.CLIENT)
        # La section critique va au bout même si la requête HTTP est abandonnée
        task = asyncio.ensure_future(self._capture(order.service_id, order_id, remote_order_id))
        return await asyncio.shield(task)

    async def _capture(self, service_id: str, order_id: str, remote_order_id: str) -> CaptureResult:
        async with self.locks.hold(service_id):
            order = await self._load_order(order_id)
            if order.status in SETTLED_STATUSES and order.settlement:
                return CaptureResult(order, SettlementResult.from_dict(order.settlement), already_settled=True)
            check_order_transition(order.status, OrderStatus.PAID)
            if order.settlement:
                # Capture déjà constatée avec un montant divergent: pas de nouvel appel au processeur
                raise SettlementMismatch(reason=f"order {order.id} holds an unmatched settlement")
            if not order.remote_order_id or order.remote_order_id != remote_order_id:
                raise InvalidTransition(reason=f"remote order {remote_order_id} does not match order {order.id}")

            settlement = await self.gateway.capture_remote_order(order, remote_order_id)
            if settlement.amount != order.total_amount:
                logger.error(
                    "capture amount mismatch order_id=%s remote_order_id=%s capture_id=%s expected=%s captured=%s",
                    order.id, remote_order_id, settlement.capture_id, order.total_amount, settlement.amount,
                )
                await run_in_threadpool(orders_repo.record_unmatched_settlement, order.id, settlement.as_dict())
                raise SettlementMismatch(
                    reason=f"captured {settlement.amount} for order total {order.total_amount}",
                )

            try:
                updated = await run_in_threadpool(
                    lambda: orders_repo.update_order_status(
                        order.id,
                        expected=OrderStatus.PENDING_PAYMENT,
                        new=OrderStatus.PAID,
                        extra={
                            "settlement": settlement.as_dict(),
                            "paid_at": datetime.now(timezone.utc).isoformat(),
                        },
                    )
                )
            except StorageError:
                # Fonds capturés mais non enregistrés: une nouvelle capture relira la commande distante
                logger.exception("capture of %s succeeded but was not persisted for order %s", remote_order_id, order.id)
                raise
            if updated is None:
                current = await self._load_order(order_id)
                if current.status in SETTLED_STATUSES and current.settlement:
                    return CaptureResult(current, SettlementResult.from_dict(current.settlement), already_settled=True)
                raise InvalidTransition(reason=f"order {order.id} left pending_payment during capture")
            order = order_from_row(updated)

            requests = await run_in_threadpool(
                chat_repo.list_payment_requests_for_order, order.id, PaymentStatus.ACCEPTED.value
            )
            for row in requests:
                new_status = next_payment_status(row["status"], PaymentAction.CAPTURE)
                promoted = await run_in_threadpool(
                    lambda: chat_repo.update_payment_request_status(
                        row["id"], expected=PaymentStatus.ACCEPTED.value, new=new_status.value
                    )
                )
                if promoted:
                    await self._broadcast_status(service_id, payment_details_from_row(promoted))
            logger.info(
                "negotiation.capture order_id=%s remote_order_id=%s amount=%s",
                order.id, remote_order_id, settlement.amount,
            )
        return CaptureResult(order, settlement, already_settled=False)


_service: Optional[NegotiationService] = None


def get_negotiation_service() -> NegotiationService:
    global _service
    if _service is None:
        _service = NegotiationService(channels=get_channels())
    return _service
