"""
订单领域事件 - 记录订单与支付生命周期中的重要事实

事件在事务提交后由应用层取出并交给审计端口（只读通知）。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass
class OrderPlaced(OrderEvent):
    """订单创建事件"""
    order_number: str = ""
    user_id: str = ""
    total: Decimal = Decimal("0")
    currency: str = ""
    payment_method: str = ""


@dataclass
class PaymentMethodChanged(OrderEvent):
    """支付方式变更事件"""
    previous_method: str = ""
    payment_method: str = ""
    superseded_reference: Optional[str] = None


@dataclass
class PaymentSessionOpened(OrderEvent):
    """网关会话创建事件"""
    provider: str = ""
    reference: str = ""
    superseded_reference: Optional[str] = None


@dataclass
class OrderPaid(OrderEvent):
    """订单支付完成事件"""
    source: str = ""
    reference: Optional[str] = None


@dataclass
class OrderPaymentFailed(OrderEvent):
    provider: str = ""
    reference: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class OrderPaymentExpired(OrderEvent):
    provider: str = ""
    reference: Optional[str] = None


@dataclass
class ProofSubmitted(OrderEvent):
    proof_id: Optional[int] = None


@dataclass
class ProofApproved(OrderEvent):
    proof_id: Optional[int] = None
    reviewer_id: str = ""


@dataclass
class ProofRejected(OrderEvent):
    proof_id: Optional[int] = None
    reviewer_id: str = ""
    reason: Optional[str] = None


@dataclass
class OrderCanceled(OrderEvent):
    superseded_reference: Optional[str] = None


@dataclass
class OrderFulfilled(OrderEvent):
    pass
