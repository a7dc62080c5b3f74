import pytest

from domain.common.exceptions import (
    AmountTooSmall,
    CurrencyNotSupported,
    GatewayNotConfigured,
    OrderAccessDenied,
    UnknownPaymentMethod,
)


@pytest.mark.asyncio
async def test_stripe_session_uses_idr_minor_units(place_order, checkout_service, gateways, load_order, audit):
    created = await place_order(
        "stripe",
        items=[{"product_id": "ebook", "quantity": 2}, {"product_id": "course", "quantity": 1}],
    )
    session = await checkout_service.create_session(created.id, "user-1")

    request = gateways["stripe"].requests[0]
    assert request.currency == "IDR"
    assert request.exponent == 2
    assert request.total_minor == 37500050
    assert [(line.product_id, line.unit_amount, line.quantity) for line in request.lines] == [
        ("ebook", 15000000, 2),
        ("course", 7500050, 1),
    ]
    assert created.id in request.success_url
    assert request.idempotency_key

    stored = await load_order(created.id)
    assert stored.payment_status.value == "processing"
    assert stored.gateway_reference == session.session_id
    assert stored.gateway_data["session"]["redirect_url"] == session.redirect_url
    assert audit.names[-1] == "PaymentSessionOpened"


@pytest.mark.asyncio
async def test_minimum_is_enforced_before_gateway_call(place_order, checkout_service, gateways, load_order):
    created = await place_order("stripe", items=[{"product_id": "sticker", "quantity": 1}])

    with pytest.raises(AmountTooSmall) as exc_info:
        await checkout_service.create_session(created.id, "user-1")
    assert exc_info.value.details["minimum"] == "7000"
    assert gateways["stripe"].requests == []

    stored = await load_order(created.id)
    assert stored.gateway_reference is None
    assert stored.version == 0


@pytest.mark.asyncio
async def test_switching_to_paypal_then_opening_session(place_order, method_service, checkout_service, gateways, load_order):
    created = await place_order("stripe")
    first = await checkout_service.create_session(created.id, "user-1")

    await method_service.select_method(created.id, "user-1", "gateway", "paypal")
    second = await checkout_service.create_session(created.id, "user-1")

    assert second.provider == "paypal"
    assert gateways["stripe"].expired == [first.session_id]
    assert gateways["paypal"].requests[0].currency == "IDR"
    assert "/paypal/capture" in gateways["paypal"].requests[0].success_url

    stored = await load_order(created.id)
    assert stored.reference_matches("paypal", second.session_id)
    assert not stored.reference_matches("stripe", first.session_id)


@pytest.mark.asyncio
async def test_new_session_supersedes_previous(place_order, checkout_service, gateways, load_order):
    created = await place_order("stripe")
    first = await checkout_service.create_session(created.id, "user-1")
    second = await checkout_service.create_session(created.id, "user-1")

    assert first.session_id != second.session_id
    assert gateways["stripe"].expired == [first.session_id]
    stored = await load_order(created.id)
    assert stored.gateway_reference == second.session_id
    assert stored.superseded_references == [first.session_id]


@pytest.mark.asyncio
async def test_bank_transfer_order_needs_a_provider(place_order, checkout_service):
    created = await place_order("bank_transfer")
    with pytest.raises(UnknownPaymentMethod):
        await checkout_service.create_session(created.id, "user-1")


@pytest.mark.asyncio
async def test_missing_credentials(place_order, checkout_service, payment_config, gateways):
    created = await place_order("paypal")
    payment_config.paypal.client_id = None
    with pytest.raises(GatewayNotConfigured) as exc_info:
        await checkout_service.create_session(created.id, "user-1")
    assert exc_info.value.details["missing"] == "paypal.client_id"
    assert gateways["paypal"].requests == []


@pytest.mark.asyncio
async def test_unsupported_currency_fails_without_gateway_call(place_order, checkout_service, payment_config, gateways):
    created = await place_order("paypal")
    del payment_config.paypal.unit_exponents["IDR"]
    with pytest.raises(CurrencyNotSupported):
        await checkout_service.create_session(created.id, "user-1")
    assert gateways["paypal"].requests == []


@pytest.mark.asyncio
async def test_only_owner_can_open_session(place_order, checkout_service):
    created = await place_order("stripe")
    with pytest.raises(OrderAccessDenied):
        await checkout_service.create_session(created.id, "user-2")
