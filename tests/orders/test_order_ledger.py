import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from application.dtos.orders import CreateOrderRequest
from application.services import order_service as order_service_module
from application.services.order_service import generate_order_number
from domain.common.exceptions import (
    InvalidStateTransition,
    OrderAccessDenied,
    OrderNotFound,
    PaymentMethodUnavailable,
    ProductUnavailable,
    UnknownPaymentMethod,
)


def test_order_number_format():
    number = generate_order_number("ORD", datetime(2026, 10, 1, tzinfo=timezone.utc))
    assert re.fullmatch(r"ORD-[0-9A-Z]+-[0-9A-Z]{4}", number)


@pytest.mark.asyncio
async def test_create_order_snapshots_catalog_prices(place_order, load_order, audit):
    created = await place_order(
        "bank_transfer",
        items=[{"product_id": "ebook", "quantity": 2}, {"product_id": "course", "quantity": 1}],
        customer={"name": "Budi", "email": "budi@example.com"},
    )

    assert created.total == Decimal("375000.50")
    assert created.currency == "IDR"
    assert created.status == "pending_payment"
    assert created.payment_status == "pending"
    assert created.payment_method == "bank_transfer"
    assert created.gateway_provider is None

    stored = await load_order(created.id)
    assert stored.version == 0
    assert [(i.product_id, i.unit_price, i.quantity) for i in stored.items] == [
        ("ebook", Decimal("150000.00"), 2),
        ("course", Decimal("75000.50"), 1),
    ]
    assert stored.customer.email == "budi@example.com"
    assert audit.names == ["OrderPlaced"]


@pytest.mark.asyncio
async def test_gateway_choice_is_normalized(place_order):
    created = await place_order("gateway", gateway_provider="paypal")
    assert created.payment_method == "paypal"
    assert created.gateway_provider == "paypal"


@pytest.mark.asyncio
@pytest.mark.parametrize("product_id,reason", [("missing", "not_found"), ("draft", "unpublished"), ("gone", "sold_out")])
async def test_unavailable_products_are_rejected(place_order, product_id, reason):
    with pytest.raises(ProductUnavailable) as exc_info:
        await place_order(items=[{"product_id": product_id, "quantity": 1}])
    assert exc_info.value.details["reason"] == reason


@pytest.mark.asyncio
async def test_unknown_method_is_rejected(place_order):
    with pytest.raises(UnknownPaymentMethod):
        await place_order("crypto")
    with pytest.raises(UnknownPaymentMethod):
        await place_order("gateway")


@pytest.mark.asyncio
async def test_unconfigured_gateway_is_unavailable(place_order, payment_config):
    payment_config.stripe.secret_key = None
    with pytest.raises(PaymentMethodUnavailable):
        await place_order("stripe")


def test_duplicate_products_fail_validation():
    with pytest.raises(ValueError):
        CreateOrderRequest(items=[{"product_id": "ebook"}, {"product_id": "ebook"}])


@pytest.mark.asyncio
async def test_order_number_conflict_is_retried(place_order, monkeypatch):
    numbers = iter(["ORD-FIXED-AAAA", "ORD-FIXED-AAAA", "ORD-FIXED-BBBB"])
    monkeypatch.setattr(order_service_module, "generate_order_number", lambda prefix, now=None: next(numbers))

    first = await place_order()
    second = await place_order()
    assert first.order_number == "ORD-FIXED-AAAA"
    assert second.order_number == "ORD-FIXED-BBBB"


@pytest.mark.asyncio
async def test_orders_are_scoped_to_their_owner(place_order, order_service):
    mine = await place_order(user_id="user-1")
    await place_order(user_id="user-1")
    await place_order(user_id="user-2")

    items, total = await order_service.list_orders("user-1", page=1, size=10)
    assert total == 2
    assert {o.id for o in items} >= {mine.id}

    with pytest.raises(OrderAccessDenied):
        await order_service.get_order(mine.id, "user-2")
    with pytest.raises(OrderNotFound):
        await order_service.get_order("does-not-exist", "user-1")

    detail = await order_service.get_order(mine.id)
    assert detail.id == mine.id
    assert detail.proofs == []


@pytest.mark.asyncio
async def test_cancel_open_session_expires_it_remotely(place_order, checkout_service, order_service, gateways, load_order):
    created = await place_order("stripe")
    session = await checkout_service.create_session(created.id, "user-1")

    canceled = await order_service.cancel_order(created.id, "user-1")
    assert canceled.status == "canceled"
    assert canceled.payment_status == "expired"
    assert gateways["stripe"].expired == [session.session_id]

    stored = await load_order(created.id)
    assert stored.gateway_reference is None
    assert stored.superseded_references == [session.session_id]


@pytest.mark.asyncio
async def test_cancel_rejects_pending_proofs(place_order, proof_service, order_service, uow_factory):
    from application.dtos.orders import SubmitProofRequest

    created = await place_order("bank_transfer")
    proof = await proof_service.submit_proof(
        created.id, "user-1", SubmitProofRequest(proof_url="proofs/transfer.jpg")
    )
    await order_service.cancel_order(created.id, "user-1")

    async with uow_factory(readonly=True) as uow:
        stored = await uow.payment_proof_repository.get_by_id(proof.id)
    assert stored.status.value == "rejected"
    assert stored.notes == "Order canceled"


@pytest.mark.asyncio
async def test_fulfill_requires_paid_order(place_order, order_service):
    created = await place_order("bank_transfer")
    with pytest.raises(InvalidStateTransition):
        await order_service.fulfill_order(created.id, "reviewer-1")
