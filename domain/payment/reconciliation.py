"""
对账规则 - 将网关事件幂等地应用到订单上

纯领域逻辑：只有返回 APPLIED 时才会修改订单，其余结果保证订单未被改动。
持久化与并发控制（条件更新）由应用层负责。
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from domain.order.entity import Order
from domain.order.state_machine import METHOD_MUTABLE_STATUSES, PaymentStatus
from domain.payment.events import (
    GatewayEvent,
    PaymentFailed,
    PaymentSucceeded,
    SessionExpired,
)


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE_REFERENCE = "stale_reference"
    NOT_APPLICABLE = "not_applicable"
    UNRESOLVED = "unresolved"
    IGNORED = "ignored"


def apply_gateway_event(order: Order, event: GatewayEvent, now: datetime) -> ReconcileOutcome:
    if isinstance(event, PaymentSucceeded):
        return _apply_succeeded(order, event, now)
    if isinstance(event, SessionExpired):
        return _apply_expired(order, event, now)
    if isinstance(event, PaymentFailed):
        return _apply_failed(order, event, now)
    return ReconcileOutcome.IGNORED


def _apply_succeeded(order: Order, event: PaymentSucceeded, now: datetime) -> ReconcileOutcome:
    # 引用不匹配优先：已被替换的会话即使订单已支付也要单独上报
    if not order.reference_matches(event.provider, event.reference):
        return ReconcileOutcome.STALE_REFERENCE
    if order.is_paid:
        return ReconcileOutcome.DUPLICATE
    order.mark_paid(
        now,
        source=event.provider,
        reference=event.reference,
        snapshot={**event.snapshot, "event_id": event.event_id, "event_type": event.event_type},
    )
    return ReconcileOutcome.APPLIED


def _apply_expired(order: Order, event: SessionExpired, now: datetime) -> ReconcileOutcome:
    if order.is_paid:
        return ReconcileOutcome.NOT_APPLICABLE
    if not order.reference_matches(event.provider, event.reference):
        return ReconcileOutcome.STALE_REFERENCE
    if order.payment_status is PaymentStatus.EXPIRED:
        return ReconcileOutcome.DUPLICATE
    if order.status not in METHOD_MUTABLE_STATUSES or order.payment_status not in (
        PaymentStatus.PENDING, PaymentStatus.PROCESSING
    ):
        return ReconcileOutcome.NOT_APPLICABLE
    order.mark_payment_expired(
        now,
        provider=event.provider,
        snapshot={**event.snapshot, "event_id": event.event_id, "event_type": event.event_type},
    )
    return ReconcileOutcome.APPLIED


def _apply_failed(order: Order, event: PaymentFailed, now: datetime) -> ReconcileOutcome:
    if order.is_paid:
        return ReconcileOutcome.NOT_APPLICABLE
    if not order.reference_matches(event.provider, event.reference):
        return ReconcileOutcome.STALE_REFERENCE
    if order.payment_status is PaymentStatus.FAILED:
        return ReconcileOutcome.DUPLICATE
    if order.status not in METHOD_MUTABLE_STATUSES or order.payment_status not in (
        PaymentStatus.PENDING, PaymentStatus.PROCESSING
    ):
        return ReconcileOutcome.NOT_APPLICABLE
    order.mark_payment_failed(
        now,
        reason=event.reason,
        provider=event.provider,
        snapshot={**event.snapshot, "event_id": event.event_id, "event_type": event.event_type},
    )
    return ReconcileOutcome.APPLIED
