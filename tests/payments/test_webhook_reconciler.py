from datetime import datetime, timedelta, timezone

import pytest

from domain.order.state_machine import OrderStatus, PaymentStatus
from domain.payment.events import PaymentFailed, PaymentSucceeded, SessionExpired, UnhandledEvent
from domain.payment.reconciliation import ReconcileOutcome, apply_gateway_event
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository


def utc(minutes: int = 0) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


def _succeeded(session, order_id=None, event_id="evt_1"):
    return PaymentSucceeded(
        provider=session.provider,
        event_id=event_id,
        event_type="checkout.session.completed",
        order_id=order_id,
        reference=session.session_id,
        snapshot={"payment_intent": "pi_1"},
    )


@pytest.fixture
def open_session(place_order, checkout_service):
    async def _open(method="stripe"):
        created = await place_order(method)
        session = await checkout_service.create_session(created.id, "user-1")
        return created, session

    return _open


@pytest.mark.asyncio
async def test_success_marks_order_paid(open_session, reconciler, load_order, audit):
    created, session = await open_session()

    outcome = await reconciler.reconcile(_succeeded(session, created.id))

    assert outcome is ReconcileOutcome.APPLIED
    stored = await load_order(created.id)
    assert stored.status is OrderStatus.PAID
    assert stored.payment_status is PaymentStatus.PAID
    assert stored.paid_at is not None
    assert stored.gateway_data["settlement"]["event_id"] == "evt_1"
    assert audit.names[-1] == "OrderPaid"


@pytest.mark.asyncio
async def test_order_resolved_by_reference_without_metadata(open_session, reconciler, load_order):
    created, session = await open_session()
    assert await reconciler.reconcile(_succeeded(session)) is ReconcileOutcome.APPLIED
    assert (await load_order(created.id)).is_paid


@pytest.mark.asyncio
async def test_duplicate_delivery_keeps_first_paid_at(open_session, reconciler, load_order):
    created, session = await open_session()
    await reconciler.reconcile(_succeeded(session, created.id))
    first = await load_order(created.id)

    outcome = await reconciler.reconcile(_succeeded(session, created.id, event_id="evt_1_retry"))

    assert outcome is ReconcileOutcome.DUPLICATE
    again = await load_order(created.id)
    assert again.paid_at == first.paid_at
    assert again.version == first.version


@pytest.mark.asyncio
async def test_concurrent_writers_only_one_wins(open_session, uow_factory, reconciler, load_order):
    created, session = await open_session()
    event = _succeeded(session, created.id)

    # two deliveries decide against the same snapshot
    copy_a = await load_order(created.id)
    copy_b = await load_order(created.id)
    assert apply_gateway_event(copy_a, event, utc()) is ReconcileOutcome.APPLIED
    assert apply_gateway_event(copy_b, event, utc(1)) is ReconcileOutcome.APPLIED

    async with uow_factory() as uow:
        assert await uow.order_repository.save(copy_a, expected_version=copy_a.version, require_unpaid=True)
    async with uow_factory() as uow:
        assert not await uow.order_repository.save(copy_b, expected_version=copy_b.version, require_unpaid=True)

    # the loser re-reads and finds the order settled
    assert await reconciler.reconcile(event) is ReconcileOutcome.DUPLICATE
    stored = await load_order(created.id)
    assert stored.paid_at == copy_a.paid_at


@pytest.mark.asyncio
async def test_lost_compare_and_set_is_retried(open_session, reconciler, load_order, monkeypatch):
    created, session = await open_session()
    original_save = SQLAlchemyOrderRepository.save
    calls = []

    async def flaky_save(self, order, *, expected_version, require_unpaid=False):
        calls.append(expected_version)
        if len(calls) == 1:
            return False
        return await original_save(self, order, expected_version=expected_version, require_unpaid=require_unpaid)

    monkeypatch.setattr(SQLAlchemyOrderRepository, "save", flaky_save)

    assert await reconciler.reconcile(_succeeded(session, created.id)) is ReconcileOutcome.APPLIED
    assert len(calls) == 2
    assert (await load_order(created.id)).is_paid


@pytest.mark.asyncio
@pytest.mark.parametrize("late_event", [SessionExpired, PaymentFailed])
async def test_no_regression_after_paid(open_session, reconciler, load_order, late_event):
    created, session = await open_session()
    await reconciler.reconcile(_succeeded(session, created.id))
    before = await load_order(created.id)

    outcome = await reconciler.reconcile(late_event(
        provider="stripe", event_id="evt_late", event_type="late", order_id=created.id, reference=session.session_id,
    ))

    assert outcome is ReconcileOutcome.NOT_APPLICABLE
    after = await load_order(created.id)
    assert after.payment_status is PaymentStatus.PAID
    assert after.version == before.version


@pytest.mark.asyncio
async def test_success_on_superseded_session_is_stale(open_session, checkout_service, reconciler, load_order):
    created, first = await open_session()
    second = await checkout_service.create_session(created.id, "user-1")

    outcome = await reconciler.reconcile(_succeeded(first, created.id))

    assert outcome is ReconcileOutcome.STALE_REFERENCE
    stored = await load_order(created.id)
    assert stored.payment_status is PaymentStatus.PROCESSING
    assert stored.gateway_reference == second.session_id


@pytest.mark.asyncio
async def test_old_gateway_event_after_method_change_is_stale(open_session, method_service, checkout_service, reconciler, load_order):
    created, stripe_session = await open_session()
    await method_service.select_method(created.id, "user-1", "paypal")
    paypal_session = await checkout_service.create_session(created.id, "user-1")

    assert await reconciler.reconcile(_succeeded(stripe_session, created.id)) is ReconcileOutcome.STALE_REFERENCE
    assert await reconciler.reconcile(_succeeded(paypal_session, created.id)) is ReconcileOutcome.APPLIED
    assert (await load_order(created.id)).gateway_provider.value == "paypal"


@pytest.mark.asyncio
async def test_unknown_order_is_unresolved(reconciler):
    event = PaymentSucceeded(provider="stripe", event_id="evt_x", event_type="checkout.session.completed", reference="cs_unknown")
    assert await reconciler.reconcile(event) is ReconcileOutcome.UNRESOLVED


@pytest.mark.asyncio
async def test_unhandled_event_is_ignored(reconciler):
    event = UnhandledEvent(provider="stripe", event_id="evt_y", event_type="customer.created")
    assert await reconciler.reconcile(event) is ReconcileOutcome.IGNORED


@pytest.mark.asyncio
async def test_failure_allows_retry_with_new_session(open_session, checkout_service, reconciler, load_order):
    created, session = await open_session()
    failed = PaymentFailed(
        provider="stripe", event_id="evt_f", event_type="payment_intent.payment_failed",
        order_id=created.id, reference=session.session_id, reason="card_declined",
    )
    assert await reconciler.reconcile(failed) is ReconcileOutcome.APPLIED
    assert await reconciler.reconcile(failed) is ReconcileOutcome.DUPLICATE

    stored = await load_order(created.id)
    assert stored.status is OrderStatus.PENDING_PAYMENT
    assert stored.payment_status is PaymentStatus.FAILED
    assert stored.payment_last_error == "card_declined"

    retry = await checkout_service.create_session(created.id, "user-1")
    assert (await load_order(created.id)).gateway_reference == retry.session_id


@pytest.mark.asyncio
async def test_expired_session(open_session, reconciler, load_order):
    created, session = await open_session()
    expired = SessionExpired(
        provider="stripe", event_id="evt_e", event_type="checkout.session.expired",
        order_id=created.id, reference=session.session_id,
    )
    assert await reconciler.reconcile(expired) is ReconcileOutcome.APPLIED
    assert (await load_order(created.id)).payment_status is PaymentStatus.EXPIRED


@pytest.mark.asyncio
async def test_handle_webhook_parses_through_gateway(open_session, reconciler, gateways, load_order):
    created, session = await open_session()
    gateways["stripe"].next_event = _succeeded(session, created.id)

    outcome = await reconciler.handle_webhook("stripe", {"stripe-signature": "t=1,v1=x"}, b"{}")
    assert outcome is ReconcileOutcome.APPLIED
    assert (await load_order(created.id)).is_paid


@pytest.mark.asyncio
async def test_capture_only_for_current_reference(open_session, checkout_service, reconciler, gateways, load_order):
    created, first = await open_session("paypal")
    second = await checkout_service.create_session(created.id, "user-1")

    assert await reconciler.capture_paypal(created.id, first.session_id) is ReconcileOutcome.STALE_REFERENCE
    assert gateways["paypal"].captured == []

    gateways["paypal"].capture_event = PaymentSucceeded(
        provider="paypal", event_id=f"capture:{second.session_id}", event_type="paypal.capture",
        reference=second.session_id,
    )
    assert await reconciler.capture_paypal(created.id, second.session_id) is ReconcileOutcome.APPLIED
    assert gateways["paypal"].captured == [second.session_id]
    assert (await load_order(created.id)).is_paid

    # a second return visit does not capture again
    assert await reconciler.capture_paypal(created.id, second.session_id) is ReconcileOutcome.DUPLICATE
    assert gateways["paypal"].captured == [second.session_id]


@pytest.mark.asyncio
async def test_capture_for_unknown_order(reconciler):
    assert await reconciler.capture_paypal("missing", "PAYPAL-1") is ReconcileOutcome.UNRESOLVED


@pytest.mark.asyncio
async def test_sweep_expires_abandoned_sessions(open_session, place_order, reconciler, gateways, load_order):
    created, session = await open_session()
    untouched = await place_order("bank_transfer")

    counts = await reconciler.expire_stale_sessions(now=utc() + timedelta(days=1))

    assert counts == {"applied": 1}
    assert gateways["stripe"].expired == [session.session_id]
    assert (await load_order(created.id)).payment_status is PaymentStatus.EXPIRED
    assert (await load_order(untouched.id)).payment_status is PaymentStatus.PENDING

    # fresh sessions are left alone
    assert await reconciler.expire_stale_sessions() == {}
