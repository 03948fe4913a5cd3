"""
Corps des requêtes de l'API négociation (clés camelCase, comme le front).
"""
from typing import Literal, Optional

from pydantic import Field, model_validator

from marketplace.chat.models import PaymentType
from marketplace.fees import MIN_AMOUNT
from marketplace.utils.serialization import Money, WireModel


class PostMessageBody(WireModel):
    text: str = Field(min_length=1, max_length=5000)


class PaymentRequestBody(WireModel):
    amount: Money = Field(ge=MIN_AMOUNT)
    payment_type: PaymentType
    text: Optional[str] = Field(default=None, max_length=5000)
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    delivery_time: Optional[int] = Field(default=None, ge=1, le=365)
    revisions: Optional[int] = Field(default=None, ge=0, le=100)


class PaymentActionBody(WireModel):
    action: Literal["accept", "decline"]


class CaptureBody(WireModel):
    # Le front PayPal envoie paypalOrderId; remoteOrderId pour les autres passerelles
    paypal_order_id: Optional[str] = None
    remote_order_id: Optional[str] = None

    @model_validator(mode="after")
    def _one_id(self):
        if not (self.paypal_order_id or self.remote_order_id):
            raise ValueError("paypalOrderId ou remoteOrderId requis")
        return self

    @property
    def order_ref(self) -> str:
        return self.paypal_order_id or self.remote_order_id
