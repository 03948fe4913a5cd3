import pytest
from marketplace.chat.models import PaymentStatus
from marketplace.errors import InvalidTransition
from marketplace.negotiation.state_machine import (
    PaymentAction,
    check_order_transition,
    next_payment_status,
)
from marketplace.orders.models import OrderStatus

def test_allowed_payment_transitions():
    assert next_payment_status("pending", "accept") == PaymentStatus.ACCEPTED
    assert next_payment_status("pending", "decline") == PaymentStatus.DECLINED
    assert next_payment_status(PaymentStatus.ACCEPTED, PaymentAction.CAPTURE) == PaymentStatus.PAID

@pytest.mark.parametrize("status,action", [
    ("accepted", "accept"),
    ("accepted", "decline"),
    ("declined", "accept"),
    ("declined", "decline"),
    ("declined", "capture"),
    ("paid", "accept"),
    ("paid", "decline"),
    ("paid", "capture"),
    ("pending", "capture"),
])
def test_every_other_payment_transition_is_invalid(status, action):
    with pytest.raises(InvalidTransition) as exc:
        next_payment_status(status, action)
    assert exc.value.status_code == 409
    assert exc.value.code == "already_handled"

def test_unknown_action_is_a_value_error():
    with pytest.raises(ValueError):
        next_payment_status("pending", "refund")

def test_order_lifecycle():
    assert check_order_transition("pending_payment", "paid") == OrderStatus.PAID
    assert check_order_transition("pending_payment", "cancelled") == OrderStatus.CANCELLED
    assert check_order_transition("paid", "in_progress") == OrderStatus.IN_PROGRESS
    assert check_order_transition("paid", "cancelled") == OrderStatus.CANCELLED
    assert check_order_transition("in_progress", "delivered") == OrderStatus.DELIVERED
    assert check_order_transition("delivered", "completed") == OrderStatus.COMPLETED

@pytest.mark.parametrize("current,target", [
    ("paid", "paid"),
    ("pending_payment", "in_progress"),
    ("in_progress", "cancelled"),
    ("completed", "cancelled"),
    ("cancelled", "pending_payment"),
    ("delivered", "paid"),
])
def test_order_invalid_transitions(current, target):
    with pytest.raises(InvalidTransition):
        check_order_transition(current, target)
