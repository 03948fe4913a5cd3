"""
Modèles des commandes (Order) issues d'une négociation.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from marketplace.chat.models import PaymentType
from marketplace.fees import MIN_AMOUNT
from marketplace.utils.serialization import Money, WireModel


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Au plus une commande par Service dans l'un de ces statuts (index unique partiel côté SQL)
NON_TERMINAL_STATUSES = (
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.PAID,
    OrderStatus.IN_PROGRESS,
    OrderStatus.DELIVERED,
)

DEFAULT_DELIVERY_TIME = 7


class Order(WireModel):
    id: str
    service_id: str
    message_id: Optional[str] = None
    title: str
    description: str = ""
    price: Money
    platform_fee: Money
    total_amount: Money
    remaining_amount: Money
    delivery_time: int = DEFAULT_DELIVERY_TIME
    revisions: int = 0
    payment_type: PaymentType
    status: OrderStatus
    client_id: str
    developer_id: str
    gateway: Optional[str] = None
    remote_order_id: Optional[str] = None
    settlement: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class OrderProposal(WireModel):
    """Conditions d'une commande proposée par le développeur (formulaire 'custom order')."""
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    price: Money = Field(ge=MIN_AMOUNT)
    delivery_time: int = Field(default=DEFAULT_DELIVERY_TIME, ge=1, le=365)
    payment_type: PaymentType = PaymentType.FULL_UPFRONT
    revisions: int = Field(default=0, ge=0, le=100)


def order_from_row(row: Dict[str, Any]) -> Order:
    data = dict(row)
    for key in ("id", "service_id", "message_id", "client_id", "developer_id"):
        if data.get(key) is not None:
            data[key] = str(data[key])
    if data.get("remaining_amount") is None:
        data["remaining_amount"] = 0
    data.setdefault("description", "")
    return Order.model_validate(data)
