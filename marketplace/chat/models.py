"""
Modèles du journal de chat d'un Service.

Un message est une variante étiquetée (champ 'kind'):
- TextMessage: simple texte
- PaymentRequestMessage: texte + exactement un PaymentDetails
Le PaymentDetails vit dans sa propre table (payment_requests) et référence le message;
son statut est le seul attribut mutable.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import Field, computed_field

from marketplace.fees import calculate_fees
from marketplace.utils.serialization import Money, WireModel


class PaymentType(str, Enum):
    HALF_UPFRONT = "half_upfront"
    FULL_UPFRONT = "full_upfront"
    ON_COMPLETION = "on_completion"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    PAID = "paid"


class PaymentDetails(WireModel):
    id: str
    message_id: str
    service_id: str
    amount: Money
    payment_type: PaymentType
    status: PaymentStatus
    order_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    delivery_time: Optional[int] = None
    revisions: Optional[int] = None

    @computed_field
    @property
    def fees(self) -> Dict[str, float]:
        return calculate_fees(self.amount).as_dict()


class TextMessage(WireModel):
    kind: Literal["text"] = "text"
    id: str
    service_id: str
    sender_id: str
    text: str
    created_at: datetime


class PaymentRequestMessage(WireModel):
    kind: Literal["payment_request"] = "payment_request"
    id: str
    service_id: str
    sender_id: str
    text: str
    created_at: datetime
    payment_details: PaymentDetails


Message = Annotated[Union[TextMessage, PaymentRequestMessage], Field(discriminator="kind")]


def _single(embedded: Any) -> Optional[Dict[str, Any]]:
    # PostgREST renvoie une liste pour une relation 1-n, un objet pour une relation 1-1
    if isinstance(embedded, list):
        if len(embedded) > 1:
            raise ValueError("Un message ne peut porter qu'une seule demande de paiement")
        return embedded[0] if embedded else None
    return embedded or None


def payment_details_from_row(row: Dict[str, Any]) -> PaymentDetails:
    return PaymentDetails(
        id=str(row["id"]),
        message_id=str(row["message_id"]),
        service_id=str(row["service_id"]),
        amount=row["amount"],
        payment_type=row["payment_type"],
        status=row["status"],
        order_id=str(row["order_id"]) if row.get("order_id") else None,
        title=row.get("title"),
        description=row.get("description"),
        delivery_time=row.get("delivery_time"),
        revisions=row.get("revisions"),
    )


def message_from_row(row: Dict[str, Any]) -> Union[TextMessage, PaymentRequestMessage]:
    """
    Convertit une ligne 'messages' (avec payment_requests embarqué) en variante typée.
    - kind='payment_request' exige un PaymentDetails, kind='text' n'en tolère aucun.
    """
    details_row = _single(row.get("payment_requests"))
    base = {
        "id": str(row["id"]),
        "service_id": str(row["service_id"]),
        "sender_id": str(row["sender_id"]),
        "text": row.get("text") or "",
        "created_at": row["created_at"],
    }
    kind = row.get("kind") or ("payment_request" if details_row else "text")
    if kind == "payment_request":
        if not details_row:
            raise ValueError(f"Message {base['id']} sans demande de paiement")
        return PaymentRequestMessage(**base, payment_details=payment_details_from_row(details_row))
    if details_row:
        raise ValueError(f"Message texte {base['id']} avec une demande de paiement")
    return TextMessage(**base)


def messages_to_wire(messages: List[Union[TextMessage, PaymentRequestMessage]]) -> List[Dict[str, Any]]:
    return [m.to_wire() for m in messages]
