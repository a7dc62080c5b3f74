"""
订单领域实体 - 订单聚合根（订单头 + 明细快照）及其子实体支付凭证
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from domain.common.exceptions import (
    AlreadyDecided,
    DomainValidationException,
    InvalidStateTransition,
    MethodLockedError,
    ProofNotAccepted,
)
from domain.order.events import (
    OrderCanceled,
    OrderEvent,
    OrderFulfilled,
    OrderPaid,
    OrderPaymentExpired,
    OrderPaymentFailed,
    OrderPlaced,
    PaymentMethodChanged,
    PaymentSessionOpened,
)
from domain.order.state_machine import (
    METHOD_MUTABLE_STATUSES,
    SETTLED_ORDER_STATUSES,
    OrderStatus,
    PaymentStatus,
    can_transition_order,
    ensure_order_transition,
    ensure_payment_transition,
)
from domain.payment.method import GatewayProvider, PaymentMethod, method_for


# gateway_data 中属于“当前会话”的键；会话被替换时移除
SESSION_KEYS = ("session", "failure", "expiry", "expired_at")
SUPERSEDED_KEY = "superseded_sessions"


class ProofStatus(str, Enum):
    """支付凭证审核状态"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _validate_currency(currency: str) -> None:
    if not currency or len(currency) != 3 or not currency.isalpha():
        raise DomainValidationException(f"无效的货币代码: {currency}", field="currency")


@dataclass(frozen=True)
class OrderItem:
    """订单明细快照：下单时冻结，之后不随商品目录变化"""

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    id: Optional[int] = None

    def __post_init__(self):
        if self.quantity < 1:
            raise DomainValidationException(
                f"商品数量必须大于0: {self.quantity}", field="quantity"
            )
        if self.unit_price < 0:
            raise DomainValidationException(
                f"商品单价不能为负: {self.unit_price}", field="unit_price"
            )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CustomerContact:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. total 等于明细 unit_price × quantity 之和，创建后不再变更
    2. paid_at 只设置一次；进入 PAID/FULFILLED 后支付状态不可回退
    3. 支付方式仅在 CREATED/PENDING_PAYMENT 且未支付时可变更
    4. gateway_reference 绑定一次支付尝试；更换方式/会话时清除
    5. 所有状态变更先校验状态机，校验失败不修改任何字段
    """

    id: str
    order_number: str
    user_id: str
    items: tuple[OrderItem, ...]
    subtotal: Decimal
    total: Decimal
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    gateway_provider: Optional[GatewayProvider] = None
    gateway_reference: Optional[str] = None
    gateway_data: dict = field(default_factory=dict)
    payment_last_error: Optional[str] = None
    customer: CustomerContact = field(default_factory=CustomerContact)
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0
    events: list = field(default_factory=list, repr=False, compare=False)

    def __post_init__(self):
        """初始化后验证"""
        self.items = tuple(self.items)
        if self.gateway_data is None:
            self.gateway_data = {}
        _validate_currency(self.currency)
        self._validate_totals()
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.paid_at = _ensure_utc(self.paid_at)
        self.canceled_at = _ensure_utc(self.canceled_at)
        self.fulfilled_at = _ensure_utc(self.fulfilled_at)

    def _validate_totals(self) -> None:
        if not self.items:
            raise DomainValidationException("订单至少包含一个商品", field="items")
        computed = sum((item.line_total for item in self.items), Decimal("0"))
        if computed != self.subtotal or self.subtotal != self.total:
            raise DomainValidationException(
                f"订单金额与明细不一致: total={self.total} items={computed}",
                field="total",
            )

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        *,
        order_id: str,
        order_number: str,
        user_id: str,
        items: Iterable[OrderItem],
        currency: str,
        payment_method: PaymentMethod,
        gateway_provider: Optional[GatewayProvider],
        customer: Optional[CustomerContact] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Order":
        now = now or datetime.now(timezone.utc)
        items = tuple(items)
        total = sum((item.line_total for item in items), Decimal("0"))
        order = cls(
            id=order_id,
            order_number=order_number,
            user_id=user_id,
            items=items,
            subtotal=total,
            total=total,
            currency=currency.upper(),
            status=OrderStatus.PENDING_PAYMENT,
            payment_status=PaymentStatus.PENDING,
            payment_method=payment_method,
            gateway_provider=gateway_provider,
            customer=customer or CustomerContact(),
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        order._record(OrderPlaced(
            order_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            total=order.total,
            currency=order.currency,
            payment_method=order.payment_method.value,
        ))
        return order

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------
    @property
    def is_paid(self) -> bool:
        return self.payment_status is PaymentStatus.PAID or self.status in SETTLED_ORDER_STATUSES

    def is_owned_by(self, user_id: Optional[str]) -> bool:
        return user_id is not None and str(user_id) == str(self.user_id)

    def reference_matches(self, provider: str, reference: Optional[str]) -> bool:
        """事件引用是否指向当前这次支付尝试"""
        if not reference or self.gateway_reference is None:
            return False
        if self.gateway_provider is not None and self.gateway_provider.value != provider:
            return False
        return self.gateway_reference == reference

    @property
    def superseded_references(self) -> list[str]:
        return [entry.get("reference") for entry in self.gateway_data.get(SUPERSEDED_KEY, [])]

    # ------------------------------------------------------------------
    # 支付方式 / 网关会话
    # ------------------------------------------------------------------
    def ensure_method_mutable(self) -> None:
        if self.status not in METHOD_MUTABLE_STATUSES or self.is_paid:
            raise MethodLockedError(self.id, self.status.value, self.payment_status.value)

    def choose_payment_method(
        self,
        method: PaymentMethod,
        provider: Optional[GatewayProvider],
        now: datetime,
    ) -> bool:
        """设置支付方式；返回是否实际发生变更"""
        self.ensure_method_mutable()
        if method == self.payment_method and provider == self.gateway_provider:
            return False
        reset = self.payment_status in (
            PaymentStatus.PROCESSING, PaymentStatus.FAILED, PaymentStatus.EXPIRED
        )
        if reset:
            ensure_payment_transition(self.payment_status, PaymentStatus.PENDING)

        previous = self.payment_method
        superseded = self._supersede_session(now)
        self.payment_method = method
        self.gateway_provider = provider
        if reset:
            self.payment_status = PaymentStatus.PENDING
        self.payment_last_error = None
        self.updated_at = now
        self._record(PaymentMethodChanged(
            order_id=self.id,
            previous_method=previous.value,
            payment_method=method.value,
            superseded_reference=superseded,
        ))
        return True

    def open_gateway_session(
        self,
        provider: GatewayProvider,
        reference: str,
        snapshot: dict[str, Any],
        now: datetime,
    ) -> Optional[str]:
        """绑定新的网关会话；返回被替换的旧会话引用"""
        self.ensure_method_mutable()
        ensure_payment_transition(self.payment_status, PaymentStatus.PROCESSING)
        if self.status is OrderStatus.CREATED:
            ensure_order_transition(self.status, OrderStatus.PENDING_PAYMENT)

        superseded = self._supersede_session(now)
        self.payment_method = method_for(provider)
        self.gateway_provider = provider
        self.gateway_reference = reference
        self.gateway_data = {**self.gateway_data, "session": dict(snapshot)}
        self.payment_status = PaymentStatus.PROCESSING
        self.status = OrderStatus.PENDING_PAYMENT
        self.payment_last_error = None
        self.updated_at = now
        self._record(PaymentSessionOpened(
            order_id=self.id,
            provider=provider.value,
            reference=reference,
            superseded_reference=superseded,
        ))
        return superseded

    # ------------------------------------------------------------------
    # 支付结果
    # ------------------------------------------------------------------
    def mark_paid(
        self,
        now: datetime,
        *,
        source: str,
        reference: Optional[str] = None,
        snapshot: Optional[dict[str, Any]] = None,
    ) -> None:
        ensure_order_transition(self.status, OrderStatus.PAID)
        ensure_payment_transition(self.payment_status, PaymentStatus.PAID)

        self.status = OrderStatus.PAID
        self.payment_status = PaymentStatus.PAID
        if self.paid_at is None:
            self.paid_at = now
        if snapshot:
            self.gateway_data = {**self.gateway_data, "settlement": dict(snapshot)}
        self.payment_last_error = None
        self.updated_at = now
        self._record(OrderPaid(order_id=self.id, source=source, reference=reference))

    def mark_payment_failed(
        self,
        now: datetime,
        *,
        reason: Optional[str],
        provider: str,
        snapshot: Optional[dict[str, Any]] = None,
    ) -> None:
        if self.status not in METHOD_MUTABLE_STATUSES:
            raise InvalidStateTransition("payment_status", self.payment_status.value, PaymentStatus.FAILED.value)
        ensure_payment_transition(self.payment_status, PaymentStatus.FAILED)

        message = reason or "Payment failed"
        failure = {**(snapshot or {}), "reason": message, "failed_at": now.isoformat()}
        self.payment_status = PaymentStatus.FAILED
        self.payment_last_error = message
        self.gateway_data = {**self.gateway_data, "failure": failure}
        self.updated_at = now
        self._record(OrderPaymentFailed(
            order_id=self.id, provider=provider, reference=self.gateway_reference, reason=message
        ))

    def mark_payment_expired(
        self,
        now: datetime,
        *,
        provider: str,
        snapshot: Optional[dict[str, Any]] = None,
    ) -> None:
        if self.status not in METHOD_MUTABLE_STATUSES:
            raise InvalidStateTransition("payment_status", self.payment_status.value, PaymentStatus.EXPIRED.value)
        ensure_payment_transition(self.payment_status, PaymentStatus.EXPIRED)

        self.payment_status = PaymentStatus.EXPIRED
        self.payment_last_error = "Payment session expired"
        self.gateway_data = {
            **self.gateway_data,
            "expired_at": now.isoformat(),
            "expiry": dict(snapshot or {}),
        }
        self.updated_at = now
        self._record(OrderPaymentExpired(order_id=self.id, provider=provider, reference=self.gateway_reference))

    # ------------------------------------------------------------------
    # 人工凭证审核
    # ------------------------------------------------------------------
    def submit_for_review(self, now: datetime) -> None:
        if self.payment_method is not PaymentMethod.BANK_TRANSFER:
            raise ProofNotAccepted(self.id, "order is paid through a payment gateway")
        if self.is_paid:
            raise ProofNotAccepted(self.id, "order is already paid")
        if self.status not in METHOD_MUTABLE_STATUSES:
            raise InvalidStateTransition("status", self.status.value, OrderStatus.PAYMENT_REVIEW.value)
        ensure_order_transition(self.status, OrderStatus.PAYMENT_REVIEW)
        self.status = OrderStatus.PAYMENT_REVIEW
        self.updated_at = now

    def approve_review(self, now: datetime) -> None:
        if self.status is not OrderStatus.PAYMENT_REVIEW:
            raise InvalidStateTransition("status", self.status.value, OrderStatus.PAID.value)
        self.mark_paid(now, source=PaymentMethod.BANK_TRANSFER.value)

    def reject_review(self, now: datetime, reason: Optional[str] = None) -> None:
        if self.status is not OrderStatus.PAYMENT_REVIEW:
            raise InvalidStateTransition("status", self.status.value, OrderStatus.PENDING_PAYMENT.value)
        ensure_order_transition(self.status, OrderStatus.PENDING_PAYMENT)
        self.status = OrderStatus.PENDING_PAYMENT
        self.payment_last_error = reason
        self.updated_at = now

    # ------------------------------------------------------------------
    # 取消 / 履约
    # ------------------------------------------------------------------
    def cancel(self, now: datetime) -> Optional[str]:
        """取消未支付订单；返回被丢弃的网关会话引用"""
        if self.is_paid or not can_transition_order(self.status, OrderStatus.CANCELED):
            raise InvalidStateTransition("status", self.status.value, OrderStatus.CANCELED.value)
        expire_payment = self.payment_status is PaymentStatus.PROCESSING
        if expire_payment:
            ensure_payment_transition(self.payment_status, PaymentStatus.EXPIRED)

        superseded = self._supersede_session(now)
        self.status = OrderStatus.CANCELED
        if expire_payment:
            self.payment_status = PaymentStatus.EXPIRED
        self.canceled_at = now
        self.updated_at = now
        self._record(OrderCanceled(order_id=self.id, superseded_reference=superseded))
        return superseded

    def fulfill(self, now: datetime) -> None:
        ensure_order_transition(self.status, OrderStatus.FULFILLED)
        self.status = OrderStatus.FULFILLED
        self.fulfilled_at = now
        self.updated_at = now
        self._record(OrderFulfilled(order_id=self.id))

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------
    def _supersede_session(self, now: datetime) -> Optional[str]:
        previous = self.gateway_reference
        data = {k: v for k, v in self.gateway_data.items() if k not in SESSION_KEYS}
        if previous:
            history = list(data.get(SUPERSEDED_KEY, []))
            history.append({
                "reference": previous,
                "provider": self.gateway_provider.value if self.gateway_provider else None,
                "superseded_at": now.isoformat(),
            })
            data[SUPERSEDED_KEY] = history
        self.gateway_data = data
        self.gateway_reference = None
        return previous

    def _record(self, event: OrderEvent) -> None:
        self.events.append(event)

    def pull_events(self) -> list[OrderEvent]:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events


@dataclass
class PaymentProof:
    """
    支付凭证 - 订单的子实体

    业务规则：
    1. 创建时为 PENDING，只能被审核一次（APPROVED/REJECTED 为终态）
    2. amount 为提交时的订单金额快照
    3. 被拒绝的凭证保留用于审计，重新提交会创建新凭证
    """

    id: Optional[int]
    order_id: str
    user_id: str
    proof_url: str
    amount: Decimal
    currency: str
    status: ProofStatus
    submitter: CustomerContact = field(default_factory=CustomerContact)
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        _validate_currency(self.currency)
        self.reviewed_at = _ensure_utc(self.reviewed_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @classmethod
    def submit(
        cls,
        order: Order,
        *,
        proof_url: str,
        submitter: CustomerContact,
        content_type: Optional[str] = None,
        size_bytes: Optional[int] = None,
        now: datetime,
    ) -> "PaymentProof":
        return cls(
            id=None,
            order_id=order.id,
            user_id=order.user_id,
            proof_url=proof_url,
            amount=order.total,
            currency=order.currency,
            status=ProofStatus.PENDING,
            submitter=submitter,
            content_type=content_type,
            size_bytes=size_bytes,
            created_at=now,
            updated_at=now,
        )

    def _ensure_pending(self) -> None:
        if self.status is not ProofStatus.PENDING:
            raise AlreadyDecided(self.id, self.status.value)

    def approve(self, reviewer_id: str, now: datetime) -> None:
        self._ensure_pending()
        self.status = ProofStatus.APPROVED
        self.reviewed_by = reviewer_id
        self.reviewed_at = now
        self.updated_at = now

    def reject(self, reviewer_id: str, reason: Optional[str], now: datetime) -> None:
        self._ensure_pending()
        self.status = ProofStatus.REJECTED
        self.notes = reason
        self.reviewed_by = reviewer_id
        self.reviewed_at = now
        self.updated_at = now
