from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import InvalidStateTransition, MethodLockedError, ProofNotAccepted
from domain.order.entity import Order, OrderItem
from domain.order.state_machine import (
    OrderStatus,
    PaymentStatus,
    can_transition_order,
    can_transition_payment,
    ensure_order_transition,
    is_terminal,
)
from domain.payment.method import GatewayProvider, PaymentMethod


NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _order(method=PaymentMethod.STRIPE, provider=GatewayProvider.STRIPE) -> Order:
    return Order.place(
        order_id="o-1",
        order_number="ORD-TEST-0001",
        user_id="user-1",
        items=[OrderItem(product_id="ebook", name="Ebook", unit_price=Decimal("150000"), quantity=1)],
        currency="IDR",
        payment_method=method,
        gateway_provider=provider,
        now=NOW,
    )


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (OrderStatus.CREATED, OrderStatus.PENDING_PAYMENT, True),
        (OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_REVIEW, True),
        (OrderStatus.PAYMENT_REVIEW, OrderStatus.PENDING_PAYMENT, True),
        (OrderStatus.PAYMENT_REVIEW, OrderStatus.PAID, True),
        (OrderStatus.PAID, OrderStatus.FULFILLED, True),
        (OrderStatus.PAID, OrderStatus.PENDING_PAYMENT, False),
        (OrderStatus.PAID, OrderStatus.CANCELED, False),
        (OrderStatus.FULFILLED, OrderStatus.PAID, False),
        (OrderStatus.CANCELED, OrderStatus.PENDING_PAYMENT, False),
        (OrderStatus.PENDING_PAYMENT, OrderStatus.FULFILLED, False),
    ],
)
def test_order_transitions(current, target, allowed):
    assert can_transition_order(current, target) is allowed


def test_paid_payment_status_has_no_exit():
    for target in PaymentStatus:
        assert not can_transition_payment(PaymentStatus.PAID, target)


def test_failed_and_expired_payments_can_retry():
    for current in (PaymentStatus.FAILED, PaymentStatus.EXPIRED):
        assert can_transition_payment(current, PaymentStatus.PROCESSING)
        assert can_transition_payment(current, PaymentStatus.PENDING)


def test_invalid_transition_carries_axis_and_states():
    with pytest.raises(InvalidStateTransition) as exc_info:
        ensure_order_transition(OrderStatus.FULFILLED, OrderStatus.PAID)
    assert exc_info.value.details["axis"] == "status"
    assert exc_info.value.details["current"] == "fulfilled"
    assert is_terminal(OrderStatus.FULFILLED)
    assert is_terminal(OrderStatus.CANCELED)
    assert not is_terminal(OrderStatus.PAID)


def test_place_computes_total_from_items():
    order = _order()
    assert order.total == Decimal("150000")
    assert order.status is OrderStatus.PENDING_PAYMENT
    assert order.payment_status is PaymentStatus.PENDING
    assert [e.name for e in order.pull_events()] == ["OrderPlaced"]


def test_mark_paid_sets_paid_at_once():
    order = _order()
    order.open_gateway_session(GatewayProvider.STRIPE, "cs_1", {}, NOW)
    order.mark_paid(NOW + timedelta(minutes=1), source="stripe", reference="cs_1")
    assert order.paid_at == NOW + timedelta(minutes=1)

    with pytest.raises(InvalidStateTransition):
        order.mark_paid(NOW + timedelta(minutes=5), source="stripe", reference="cs_1")
    assert order.paid_at == NOW + timedelta(minutes=1)


def test_rejected_transition_leaves_order_untouched():
    order = _order()
    order.open_gateway_session(GatewayProvider.STRIPE, "cs_1", {}, NOW)
    order.mark_paid(NOW, source="stripe", reference="cs_1")
    before = (order.status, order.payment_status, order.payment_last_error, dict(order.gateway_data))

    with pytest.raises(InvalidStateTransition):
        order.mark_payment_failed(NOW, reason="card declined", provider="stripe")
    with pytest.raises(InvalidStateTransition):
        order.mark_payment_expired(NOW, provider="stripe")
    assert (order.status, order.payment_status, order.payment_last_error, dict(order.gateway_data)) == before


def test_method_locked_after_payment():
    order = _order()
    order.open_gateway_session(GatewayProvider.STRIPE, "cs_1", {}, NOW)
    order.mark_paid(NOW, source="stripe", reference="cs_1")
    with pytest.raises(MethodLockedError):
        order.choose_payment_method(PaymentMethod.PAYPAL, GatewayProvider.PAYPAL, NOW)


def test_method_change_clears_reference_and_keeps_history():
    order = _order()
    order.open_gateway_session(GatewayProvider.STRIPE, "cs_1", {"url": "https://x"}, NOW)
    assert order.payment_status is PaymentStatus.PROCESSING

    changed = order.choose_payment_method(PaymentMethod.PAYPAL, GatewayProvider.PAYPAL, NOW)
    assert changed is True
    assert order.gateway_reference is None
    assert order.payment_status is PaymentStatus.PENDING
    assert "session" not in order.gateway_data
    assert order.superseded_references == ["cs_1"]
    assert not order.reference_matches("stripe", "cs_1")


def test_same_method_is_not_a_change():
    order = _order()
    assert order.choose_payment_method(PaymentMethod.STRIPE, GatewayProvider.STRIPE, NOW) is False


def test_new_session_supersedes_previous_one():
    order = _order()
    order.open_gateway_session(GatewayProvider.STRIPE, "cs_1", {}, NOW)
    superseded = order.open_gateway_session(GatewayProvider.STRIPE, "cs_2", {}, NOW)
    assert superseded == "cs_1"
    assert order.reference_matches("stripe", "cs_2")
    assert not order.reference_matches("stripe", "cs_1")
    assert not order.reference_matches("paypal", "cs_2")


def test_failed_payment_is_retryable():
    order = _order()
    order.open_gateway_session(GatewayProvider.STRIPE, "cs_1", {}, NOW)
    order.mark_payment_failed(NOW, reason="card declined", provider="stripe")
    assert order.status is OrderStatus.PENDING_PAYMENT
    assert order.payment_status is PaymentStatus.FAILED
    assert order.payment_last_error == "card declined"

    order.open_gateway_session(GatewayProvider.STRIPE, "cs_2", {}, NOW)
    assert order.payment_status is PaymentStatus.PROCESSING
    assert order.payment_last_error is None
    assert "failure" not in order.gateway_data


def test_gateway_orders_do_not_accept_proofs():
    order = _order()
    with pytest.raises(ProofNotAccepted):
        order.submit_for_review(NOW)


def test_review_cycle_for_bank_transfer():
    order = _order(PaymentMethod.BANK_TRANSFER, None)
    order.submit_for_review(NOW)
    assert order.status is OrderStatus.PAYMENT_REVIEW
    with pytest.raises(MethodLockedError):
        order.choose_payment_method(PaymentMethod.STRIPE, GatewayProvider.STRIPE, NOW)

    order.reject_review(NOW, "blurry image")
    assert order.status is OrderStatus.PENDING_PAYMENT
    assert order.payment_last_error == "blurry image"

    order.submit_for_review(NOW)
    order.approve_review(NOW)
    assert order.status is OrderStatus.PAID
    assert order.payment_status is PaymentStatus.PAID


def test_cancel_expires_open_session():
    order = _order()
    order.open_gateway_session(GatewayProvider.STRIPE, "cs_1", {}, NOW)
    superseded = order.cancel(NOW)
    assert superseded == "cs_1"
    assert order.status is OrderStatus.CANCELED
    assert order.payment_status is PaymentStatus.EXPIRED
    assert order.canceled_at == NOW


def test_paid_order_cannot_be_canceled():
    order = _order(PaymentMethod.BANK_TRANSFER, None)
    order.submit_for_review(NOW)
    order.approve_review(NOW)
    with pytest.raises(InvalidStateTransition):
        order.cancel(NOW)
    order.fulfill(NOW)
    assert order.status is OrderStatus.FULFILLED
    assert order.payment_status is PaymentStatus.PAID
