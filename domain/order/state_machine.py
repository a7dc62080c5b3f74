"""
订单状态机 - 订单状态与支付状态两条独立轴上的合法迁移表

所有写入方（支付方式选择、网关会话、人工凭证审核、Webhook 对账）都必须经过这里校验，
非法迁移抛出 InvalidStateTransition，且调用方在校验通过前不得修改任何字段。
"""
from __future__ import annotations

from enum import Enum
from typing import Mapping

from domain.common.exceptions import InvalidStateTransition


class OrderStatus(str, Enum):
    """订单状态（业务/履约轴）"""
    CREATED = "created"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_REVIEW = "payment_review"
    PAID = "paid"
    FULFILLED = "fulfilled"
    CANCELED = "canceled"


class PaymentStatus(str, Enum):
    """支付状态（支付通道轴，与订单状态独立）"""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"


ORDER_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.PAYMENT_REVIEW,
        OrderStatus.PAID,
        OrderStatus.CANCELED,
    }),
    OrderStatus.PENDING_PAYMENT: frozenset({
        OrderStatus.PAYMENT_REVIEW,
        OrderStatus.PAID,
        OrderStatus.CANCELED,
    }),
    OrderStatus.PAYMENT_REVIEW: frozenset({
        OrderStatus.PAID,
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.CANCELED,
    }),
    OrderStatus.PAID: frozenset({OrderStatus.FULFILLED}),
    OrderStatus.FULFILLED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}

PAYMENT_TRANSITIONS: Mapping[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.EXPIRED,
    }),
    # PROCESSING -> PROCESSING: a new session supersedes the previous one
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.EXPIRED,
        PaymentStatus.PENDING,
    }),
    PaymentStatus.FAILED: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.PENDING,
    }),
    PaymentStatus.EXPIRED: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.PENDING,
    }),
    PaymentStatus.PAID: frozenset(),
}

TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.FULFILLED, OrderStatus.CANCELED})
SETTLED_ORDER_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.FULFILLED})
# 允许切换支付方式 / 创建网关会话的订单状态
METHOD_MUTABLE_STATUSES = frozenset({OrderStatus.CREATED, OrderStatus.PENDING_PAYMENT})


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def ensure_order_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition_order(current, target):
        raise InvalidStateTransition("status", current.value, target.value)


def ensure_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if not can_transition_payment(current, target):
        raise InvalidStateTransition("payment_status", current.value, target.value)


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_ORDER_STATUSES
