"""
Machine à états des demandes de paiement et cycle de vie des commandes (logique pure).

Demande de paiement:
    pending --accept--> accepted --capture--> paid
    pending --decline--> declined
Toute autre tentative lève InvalidTransition (y compris ré-accepter / re-refuser / re-payer).

Commande:
    pending_payment -> paid -> in_progress -> delivered -> completed
    cancelled depuis pending_payment ou paid
"""
from enum import Enum
from typing import Dict, Tuple

from marketplace.chat.models import PaymentStatus
from marketplace.errors import InvalidTransition
from marketplace.orders.models import OrderStatus


class PaymentAction(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    CAPTURE = "capture"


PAYMENT_TRANSITIONS: Dict[Tuple[PaymentStatus, PaymentAction], PaymentStatus] = {
    (PaymentStatus.PENDING, PaymentAction.ACCEPT): PaymentStatus.ACCEPTED,
    (PaymentStatus.PENDING, PaymentAction.DECLINE): PaymentStatus.DECLINED,
    (PaymentStatus.ACCEPTED, PaymentAction.CAPTURE): PaymentStatus.PAID,
}

ORDER_TRANSITIONS = {
    OrderStatus.PENDING_PAYMENT: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED},
    OrderStatus.IN_PROGRESS: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


def next_payment_status(current, action) -> PaymentStatus:
    current = PaymentStatus(current)
    action = PaymentAction(action)
    try:
        return PAYMENT_TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransition(reason=f"payment request {current.value} cannot {action.value}")


def check_order_transition(current, target) -> OrderStatus:
    current = OrderStatus(current)
    target = OrderStatus(target)
    if target not in ORDER_TRANSITIONS[current]:
        raise InvalidTransition(reason=f"order {current.value} cannot become {target.value}")
    return target
