"""
Webhook reconciliation: apply asynchronous, unordered, at-least-once gateway
events to the order ledger exactly once in effect.

Flow per event:
1. the provider adapter verifies the signature and yields a GatewayEvent
2. resolve the order (metadata order id first, then current reference)
3. decide against freshly read state (domain.payment.reconciliation)
4. persist with a single conditional UPDATE (version + not-paid guard)

A lost compare-and-set re-reads and re-decides, so the second of two
concurrent deliveries observes the first one's write and becomes a no-op.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from application.ports.audit import AuditPort
from application.ports.payment_gateway import CapturingGateway, GatewayResolver
from application.services.common import expire_remote_session, publish_events, utcnow
from core.logging_config import get_logger
from core.settings import PaymentGatewayConfig
from domain.common.exceptions import ConcurrentModification, GatewayNotConfigured
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.payment.events import (
    GatewayEvent,
    PaymentFailed,
    PaymentSucceeded,
    SessionExpired,
)
from domain.payment.method import GatewayProvider
from domain.payment.reconciliation import ReconcileOutcome, apply_gateway_event


logger = get_logger(__name__)

_ACTIONABLE = (PaymentSucceeded, PaymentFailed, SessionExpired)


class WebhookReconciler:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        config: PaymentGatewayConfig,
        gateways: GatewayResolver,
        *,
        audit: Optional[AuditPort] = None,
    ):
        self._uow_factory = uow_factory
        self._config = config
        self._gateways = gateways
        self._audit = audit

    @property
    def config(self) -> PaymentGatewayConfig:
        return self._config

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def handle_webhook(self, provider: str, headers: dict[str, Any], body: bytes) -> ReconcileOutcome:
        """Verify and apply one inbound delivery.

        Raises InvalidSignature (nothing applied), GatewayNotConfigured,
        GatewayUnavailable or ConcurrentModification (retryable: the caller
        must not acknowledge the delivery).
        """
        gateway = self._gateways(provider)
        event = await gateway.parse_webhook(headers, body)
        logger.info(
            "payment_webhook_received",
            provider=event.provider,
            event_id=event.event_id,
            event_type=event.event_type,
            order_id=event.order_id,
            reference=event.reference,
        )
        return await self.reconcile(event)

    async def reconcile(self, event: GatewayEvent) -> ReconcileOutcome:
        if not isinstance(event, _ACTIONABLE):
            self._log_outcome(event, ReconcileOutcome.IGNORED, None)
            return ReconcileOutcome.IGNORED

        outcome, order = ReconcileOutcome.UNRESOLVED, None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(int(self._config.reconcile_max_attempts), 1)),
            retry=retry_if_exception_type(ConcurrentModification),
            reraise=True,
        ):
            with attempt:
                outcome, order = await self._reconcile_once(event)

        self._log_outcome(event, outcome, order)
        if outcome is ReconcileOutcome.APPLIED and order is not None:
            await publish_events(self._audit, order.pull_events(), actor=f"{event.provider}:webhook")
        return outcome

    async def capture_paypal(self, order_id: str, token: str) -> ReconcileOutcome:
        """Return-URL capture: only the order's current PayPal reference is ever captured."""
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        provider = GatewayProvider.PAYPAL.value
        if order is None:
            logger.warning("paypal_capture_unresolved", order_id=order_id, reference=token)
            return ReconcileOutcome.UNRESOLVED
        if not order.reference_matches(provider, token):
            logger.warning(
                "paypal_capture_stale_reference",
                order_id=order.id,
                reference=token,
                current_reference=order.gateway_reference,
            )
            return ReconcileOutcome.STALE_REFERENCE
        if order.is_paid:
            logger.info("paypal_capture_duplicate", order_id=order.id, reference=token)
            return ReconcileOutcome.DUPLICATE

        gateway = self._gateways(provider)
        if not isinstance(gateway, CapturingGateway):
            raise GatewayNotConfigured(provider, "capture support")
        event = await gateway.capture_order(token)
        if event.order_id is None:
            event.order_id = order.id
        return await self.reconcile(event)

    async def expire_stale_sessions(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> dict[str, int]:
        """Expire PROCESSING sessions the gateway never reported on."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self._config.session_ttl_seconds + self._config.sweep_grace_seconds)
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_stale_sessions(
                cutoff, limit=limit or self._config.sweep_batch_size
            )

        counts: Counter[str] = Counter()
        for stale in orders:
            provider = stale.gateway_provider.value if stale.gateway_provider else ""
            event = SessionExpired(
                provider=provider,
                event_id=f"sweep:{stale.id}:{stale.gateway_reference}",
                event_type="local.session_expired",
                order_id=stale.id,
                reference=stale.gateway_reference,
                snapshot={"source": "sweep", "cutoff": cutoff.isoformat()},
                occurred_at=now,
            )
            try:
                outcome = await self.reconcile(event)
            except ConcurrentModification:
                logger.warning("stale_session_sweep_conflict", order_id=stale.id)
                counts["conflict"] += 1
                continue
            counts[outcome.value] += 1
            if outcome is ReconcileOutcome.APPLIED:
                await expire_remote_session(self._gateways, provider, stale.gateway_reference)

        if orders:
            logger.info("stale_session_sweep_finished", cutoff=cutoff.isoformat(), **counts)
        return dict(counts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _resolve_order(self, uow: AbstractUnitOfWork, event: GatewayEvent) -> Optional[Order]:
        order = None
        if event.order_id:
            order = await uow.order_repository.get_by_id(event.order_id)
        if order is None and event.reference:
            order = await uow.order_repository.get_by_gateway_reference(event.provider, event.reference)
        return order

    async def _reconcile_once(self, event: GatewayEvent) -> tuple[ReconcileOutcome, Optional[Order]]:
        async with self._uow_factory() as uow:
            order = await self._resolve_order(uow, event)
            if order is None:
                return ReconcileOutcome.UNRESOLVED, None
            expected = order.version
            outcome = apply_gateway_event(order, event, utcnow())
            if outcome is ReconcileOutcome.APPLIED:
                if not await uow.order_repository.save(order, expected_version=expected, require_unpaid=True):
                    logger.info("payment_event_retry", order_id=order.id, event_id=event.event_id)
                    raise ConcurrentModification(order.id)
            return outcome, order

    def _log_outcome(self, event: GatewayEvent, outcome: ReconcileOutcome, order: Optional[Order]) -> None:
        fields = dict(
            provider=event.provider,
            event_id=event.event_id,
            event_type=event.event_type,
            reference=event.reference,
            order_id=order.id if order is not None else event.order_id,
            outcome=outcome.value,
        )
        if outcome is ReconcileOutcome.STALE_REFERENCE:
            if isinstance(event, PaymentSucceeded):
                # 顾客在已被替换的会话上完成了付款，需要人工处理
                logger.error(
                    "payment_succeeded_on_stale_reference",
                    current_reference=order.gateway_reference if order is not None else None,
                    **fields,
                )
            else:
                logger.warning("payment_event_stale_reference", **fields)
        elif outcome is ReconcileOutcome.UNRESOLVED:
            logger.warning("payment_event_unresolved", **fields)
        else:
            logger.info(f"payment_event_{outcome.value}", **fields)
