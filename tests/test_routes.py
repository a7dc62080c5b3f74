from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
import pytest_asyncio

from api import dependencies
from core.config import settings
from domain.common.exceptions import InvalidSignature
from domain.payment.events import PaymentSucceeded
from main import app


def _token(sub="user-1", roles=(), expires_in=timedelta(minutes=10)):
    payload = {"sub": sub, "roles": list(roles), "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _auth(sub="user-1", roles=()):
    return {"Authorization": f"Bearer {_token(sub, roles)}"}


class RejectingGateway:
    provider = "stripe"

    async def parse_webhook(self, headers, body):
        raise InvalidSignature("No signatures found", provider="stripe")


@pytest_asyncio.fixture
async def client(order_service, method_service, checkout_service, proof_service, reconciler):
    app.dependency_overrides.update({
        dependencies.get_order_service: lambda: order_service,
        dependencies.get_payment_method_service: lambda: method_service,
        dependencies.get_checkout_session_service: lambda: checkout_service,
        dependencies.get_payment_proof_service: lambda: proof_service,
        dependencies.get_webhook_reconciler: lambda: reconciler,
    })
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert resp.headers["x-request-id"]


@pytest.mark.asyncio
async def test_orders_require_a_token(client):
    resp = await client.get("/api/v1/orders")
    assert resp.status_code == 401

    expired = {"Authorization": f"Bearer {_token(expires_in=timedelta(minutes=-1))}"}
    resp = await client.get("/api/v1/orders", headers=expired)
    assert resp.status_code == 401
    assert resp.json()["error"]["type"] == "TokenExpired"


@pytest.mark.asyncio
async def test_order_lifecycle_over_http(client):
    resp = await client.post(
        "/api/v1/orders",
        json={"items": [{"product_id": "ebook", "quantity": 1}], "payment_method": "manual"},
        headers=_auth(),
    )
    assert resp.status_code == 200
    order = resp.json()["data"]
    assert order["payment_method"] == "bank_transfer"

    resp = await client.get(f"/api/v1/orders/{order['id']}", headers=_auth("user-2"))
    assert resp.status_code == 403

    resp = await client.post(
        f"/api/v1/orders/{order['id']}/payment-proofs",
        json={"proof_url": "proofs/transfer.jpg"},
        headers=_auth(),
    )
    assert resp.status_code == 200
    proof_id = resp.json()["data"]["id"]

    resp = await client.post(f"/api/v1/admin/payment-proofs/{proof_id}/approve", headers=_auth())
    assert resp.status_code == 403

    resp = await client.get("/api/v1/admin/payment-proofs", headers=_auth("rev-1", ["reviewer"]))
    assert resp.json()["data"]["total"] == 1

    resp = await client.post(f"/api/v1/admin/payment-proofs/{proof_id}/approve", headers=_auth("rev-1", ["reviewer"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "paid"

    resp = await client.post(f"/api/v1/admin/payment-proofs/{proof_id}/reject", json={"reason": "late"}, headers=_auth("rev-2", ["admin"]))
    assert resp.status_code == 409
    assert resp.json()["error"]["type"] == "AlreadyDecided"

    resp = await client.post(f"/api/v1/orders/{order['id']}/cancel", headers=_auth())
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_unknown_method_and_minimum_errors(client):
    resp = await client.post(
        "/api/v1/orders",
        json={"items": [{"product_id": "ebook"}], "payment_method": "crypto"},
        headers=_auth(),
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "UnknownPaymentMethod"

    resp = await client.post(
        "/api/v1/orders",
        json={"items": [{"product_id": "sticker"}], "payment_method": "stripe"},
        headers=_auth(),
    )
    order_id = resp.json()["data"]["id"]
    resp = await client.post(f"/api/v1/orders/{order_id}/checkout-session", headers=_auth())
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["type"] == "AmountTooSmall"
    assert body["error"]["retryable"] is True


@pytest.mark.asyncio
async def test_checkout_session_and_webhook(client, gateways):
    resp = await client.post(
        "/api/v1/orders",
        json={"items": [{"product_id": "ebook"}], "payment_method": "stripe"},
        headers=_auth(),
    )
    order_id = resp.json()["data"]["id"]

    resp = await client.post(f"/api/v1/orders/{order_id}/checkout-session", headers=_auth())
    assert resp.status_code == 200
    session = resp.json()["data"]
    assert session["redirect_url"].startswith("https://pay.example/")

    gateways["stripe"].next_event = PaymentSucceeded(
        provider="stripe",
        event_id="evt_http",
        event_type="checkout.session.completed",
        order_id=order_id,
        reference=session["session_id"],
    )
    resp = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=b'{"id": "evt_http"}',
        headers={"Content-Type": "application/json", "Stripe-Signature": "t=1,v1=x"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == {"received": True, "outcome": "applied"}

    resp = await client.get(f"/api/v1/orders/{order_id}", headers=_auth())
    assert resp.json()["data"]["status"] == "paid"


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_acknowledged(client, gateways):
    gateways["stripe"] = RejectingGateway()
    resp = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=b"{}",
        headers={"Content-Type": "application/json", "Stripe-Signature": "forged"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == {"received": False, "outcome": "invalid_signature"}


@pytest.mark.asyncio
async def test_webhook_requires_json(client):
    resp = await client.post("/api/v1/payments/webhooks/stripe", content=b"a=b", headers={"Content-Type": "text/plain"})
    assert resp.status_code == 200
    assert resp.json()["data"]["received"] is False


@pytest.mark.asyncio
async def test_paypal_return_redirects_to_failure_page_for_unknown_order(client):
    resp = await client.get("/api/v1/payments/paypal/capture", params={"order_id": "missing", "token": "PAYPAL-1"})
    assert resp.status_code == 303
    assert resp.headers["location"].endswith("/order/missing/payment?failed=1")


@pytest.mark.asyncio
async def test_payment_methods_listing(client):
    resp = await client.get("/api/v1/payments/methods")
    assert resp.status_code == 200
    methods = {m["method"]: m for m in resp.json()["data"]["methods"]}
    assert set(methods) == {"bank_transfer", "stripe", "paypal"}
    assert methods["bank_transfer"]["instructions"]["bank_name"] == "BCA"


@pytest.mark.asyncio
async def test_reject_without_reason(client):
    resp = await client.post(
        "/api/v1/orders",
        json={"items": [{"product_id": "ebook"}], "payment_method": "bank_transfer"},
        headers=_auth(),
    )
    order_id = resp.json()["data"]["id"]
    resp = await client.post(
        f"/api/v1/orders/{order_id}/payment-proofs",
        json={"proof_url": "proofs/transfer.jpg"},
        headers=_auth(),
    )
    proof_id = resp.json()["data"]["id"]

    resp = await client.post(f"/api/v1/admin/payment-proofs/{proof_id}/reject", json={}, headers=_auth("rev-1", ["reviewer"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "pending_payment"

    resp = await client.get(f"/api/v1/orders/{order_id}", headers=_auth())
    proof = resp.json()["data"]["proofs"][0]
    assert proof["status"] == "rejected"
    assert proof["notes"] is None


@pytest.mark.asyncio
async def test_webhook_allowlist_comes_from_injected_config(client, payment_config):
    payment_config.webhook.ip_allowlist = ["10.0.0.0/8"]
    resp = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=b"{}",
        headers={"Content-Type": "application/json", "Stripe-Signature": "t=1,v1=x"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["received"] is False


@pytest.mark.asyncio
async def test_paypal_return_uses_injected_urls(client, payment_config):
    payment_config.urls.failure_url = "https://shop.test/checkout/{order_id}/failed"
    resp = await client.get("/api/v1/payments/paypal/capture", params={"order_id": "missing", "token": "PAYPAL-1"})
    assert resp.status_code == 303
    assert resp.headers["location"] == "https://shop.test/checkout/missing/failed"
