import pytest
from marketplace.chat.models import (
    PaymentRequestMessage,
    PaymentStatus,
    TextMessage,
    message_from_row,
)

def _text_row(**kw):
    row = {
        "id": "m1",
        "service_id": "svc-1",
        "sender_id": "client-1",
        "kind": "text",
        "text": "Bonjour",
        "created_at": "2024-01-01T00:00:01+00:00",
        "payment_requests": [],
    }
    row.update(kw)
    return row

def _details_row(**kw):
    row = {
        "id": "pr1",
        "message_id": "m2",
        "service_id": "svc-1",
        "amount": "100.00",
        "payment_type": "half_upfront",
        "status": "pending",
        "order_id": None,
        "title": "Payment for: Landing page",
        "description": None,
        "delivery_time": 7,
        "revisions": 2,
    }
    row.update(kw)
    return row

def test_text_message_from_row():
    msg = message_from_row(_text_row())
    assert isinstance(msg, TextMessage)
    assert msg.to_wire()["kind"] == "text"
    assert msg.to_wire()["senderId"] == "client-1"

def test_payment_request_message_from_row_embeds_details():
    row = _text_row(id="m2", kind="payment_request", sender_id="dev-1", payment_requests=[_details_row()])
    msg = message_from_row(row)
    assert isinstance(msg, PaymentRequestMessage)
    assert msg.payment_details.status == PaymentStatus.PENDING
    wire = msg.to_wire()
    details = wire["paymentDetails"]
    assert details["paymentType"] == "half_upfront"
    assert details["amount"] == 100.0
    assert details["deliveryTime"] == 7
    assert details["fees"] == {"amount": 100.0, "platformFee": 5.0, "developerReceives": 100.0, "clientTotal": 105.0}

def test_embedded_details_as_object_is_accepted():
    row = _text_row(id="m2", kind="payment_request", payment_requests=_details_row())
    assert isinstance(message_from_row(row), PaymentRequestMessage)

def test_payment_request_without_details_is_rejected():
    with pytest.raises(ValueError):
        message_from_row(_text_row(kind="payment_request"))

def test_text_message_with_details_is_rejected():
    with pytest.raises(ValueError):
        message_from_row(_text_row(payment_requests=[_details_row()]))

def test_more_than_one_details_is_rejected():
    with pytest.raises(ValueError):
        message_from_row(_text_row(kind="payment_request", payment_requests=[_details_row(), _details_row(id="pr2")]))
