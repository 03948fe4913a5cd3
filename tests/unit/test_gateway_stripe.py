from decimal import Decimal

import pytest
import stripe

from marketplace.errors import GatewayError
from marketplace.gateway import build_gateway
from marketplace.gateway.stripe_client import StripeGateway
from marketplace.orders.models import OrderStatus, order_from_row

def _order():
    return order_from_row({
        "id": "ord-1", "service_id": "svc-1", "title": "Landing page", "price": "100.00",
        "platform_fee": "5.00", "total_amount": "105.00", "remaining_amount": "0.00",
        "payment_type": "full_upfront", "status": "pending_payment",
        "client_id": "client-1", "developer_id": "dev-1",
    })

class FakeIntents:
    def __init__(self):
        self.calls = []
        self.status = "requires_capture"

    def create(self, **kwargs):
        self.calls.append(("create", kwargs))
        return {"id": "pi_1", "status": "requires_payment_method", "client_secret": "pi_1_secret"}

    def retrieve(self, intent_id, **kwargs):
        self.calls.append(("retrieve", intent_id))
        return {"id": intent_id, "status": self.status, "amount_received": 0}

    def capture(self, intent_id, **kwargs):
        self.calls.append(("capture", kwargs))
        return {
            "id": intent_id,
            "status": "succeeded",
            "amount_received": 10500,
            "currency": "usd",
            "latest_charge": "ch_1",
            "created": 1704067200,
        }

@pytest.fixture
def intents(monkeypatch):
    fake = FakeIntents()
    monkeypatch.setattr(stripe.PaymentIntent, "create", fake.create)
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake.retrieve)
    monkeypatch.setattr(stripe.PaymentIntent, "capture", fake.capture)
    return fake

@pytest.mark.asyncio
async def test_create_uses_manual_capture_and_idempotency(intents):
    gw = StripeGateway(api_key="sk_test", currency="USD")
    remote = await gw.create_remote_order(_order())

    assert remote.remote_order_id == "pi_1"
    assert remote.client_secret == "pi_1_secret"
    name, kwargs = intents.calls[0]
    assert kwargs["amount"] == 10500
    assert kwargs["currency"] == "usd"
    assert kwargs["capture_method"] == "manual"
    assert kwargs["idempotency_key"] == "create-ord-1"

@pytest.mark.asyncio
async def test_capture_authorized_intent(intents):
    gw = StripeGateway(api_key="sk_test")
    settlement = await gw.capture_remote_order(_order(), "pi_1")

    assert settlement.amount == Decimal("105.00")
    assert settlement.capture_id == "ch_1"
    assert settlement.currency == "USD"
    assert settlement.captured_at.startswith("2024-01-01")
    assert intents.calls[-1] == ("capture", {"idempotency_key": "capture-ord-1"})

@pytest.mark.asyncio
async def test_unauthorized_intent_is_not_captured(intents):
    intents.status = "requires_payment_method"
    gw = StripeGateway(api_key="sk_test")
    with pytest.raises(GatewayError):
        await gw.capture_remote_order(_order(), "pi_1")
    assert [c[0] for c in intents.calls] == ["retrieve"]

@pytest.mark.asyncio
async def test_sdk_error_becomes_gateway_error(monkeypatch):
    def boom(**kwargs):
        raise stripe.StripeError("Your card was declined.")
    monkeypatch.setattr(stripe.PaymentIntent, "create", boom)
    gw = StripeGateway(api_key="sk_test")
    with pytest.raises(GatewayError) as exc:
        await gw.create_remote_order(_order())
    assert exc.value.retryable is True

def test_map_status_and_factory():
    gw = build_gateway("stripe")
    assert isinstance(gw, StripeGateway)
    assert gw.map_status("succeeded") == OrderStatus.PAID
    assert gw.map_status("requires_capture") == OrderStatus.PENDING_PAYMENT
    with pytest.raises(ValueError):
        build_gateway("bitcoin")
