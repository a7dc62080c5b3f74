"""
订单相关 DTO（Pydantic v2）
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import EmailStr, Field, field_validator

from application.dtos.base import DTOBase
from domain.order.entity import CustomerContact, Order, PaymentProof


class OrderItemInput(DTOBase):
    product_id: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(1, ge=1, le=100)


class CustomerContactInput(DTOBase):
    name: Optional[str] = Field(None, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)

    def to_contact(self) -> CustomerContact:
        return CustomerContact(name=self.name, email=self.email, phone=self.phone)


class CreateOrderRequest(DTOBase):
    """下单请求：价格一律取自商品目录，客户端只提交商品与数量"""
    items: list[OrderItemInput] = Field(..., min_length=1)
    payment_method: str = Field("bank_transfer", description="bank_transfer / stripe / paypal（兼容 manual / gateway）")
    gateway_provider: Optional[str] = Field(None, description="payment_method=gateway 时必填")
    customer: CustomerContactInput = Field(default_factory=CustomerContactInput)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("items")
    @classmethod
    def _unique_products(cls, v: list[OrderItemInput]) -> list[OrderItemInput]:
        seen = set()
        for item in v:
            if item.product_id in seen:
                raise ValueError(f"duplicate product_id: {item.product_id}")
            seen.add(item.product_id)
        return v


class ChangePaymentMethodRequest(DTOBase):
    payment_method: str
    gateway_provider: Optional[str] = None


class CheckoutSessionRequest(DTOBase):
    # 省略时使用订单当前的网关
    provider: Optional[str] = None


class SubmitProofRequest(DTOBase):
    proof_url: str = Field(..., min_length=1, max_length=1024, description="外部存储中的凭证地址或相对路径")
    content_type: Optional[str] = Field(None, max_length=100)
    size_bytes: Optional[int] = Field(None, ge=1)
    submitter: CustomerContactInput = Field(default_factory=CustomerContactInput)


class RejectProofRequest(DTOBase):
    reason: Optional[str] = Field(None, max_length=500, description="拒绝原因，可省略")


class OrderItemResponse(DTOBase):
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class PaymentProofResponse(DTOBase):
    id: int
    order_id: str
    proof_url: str
    amount: Decimal
    currency: str
    status: str
    notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, proof: PaymentProof) -> "PaymentProofResponse":
        return cls(
            id=proof.id,
            order_id=proof.order_id,
            proof_url=proof.proof_url,
            amount=proof.amount,
            currency=proof.currency,
            status=proof.status.value,
            notes=proof.notes,
            reviewed_by=proof.reviewed_by,
            reviewed_at=proof.reviewed_at,
            created_at=proof.created_at,
        )


class OrderResponse(DTOBase):
    """订单摘要（不暴露 gateway_data 原始快照）"""
    id: str
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    gateway_provider: Optional[str] = None
    gateway_reference: Optional[str] = None
    subtotal: Decimal
    total: Decimal
    currency: str
    payment_last_error: Optional[str] = None
    items: list[OrderItemResponse]
    paid_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method.value,
            gateway_provider=order.gateway_provider.value if order.gateway_provider else None,
            gateway_reference=order.gateway_reference,
            subtotal=order.subtotal,
            total=order.total,
            currency=order.currency,
            payment_last_error=order.payment_last_error,
            items=[
                OrderItemResponse(
                    product_id=item.product_id,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    line_total=item.line_total,
                )
                for item in order.items
            ],
            paid_at=order.paid_at,
            canceled_at=order.canceled_at,
            fulfilled_at=order.fulfilled_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderDetailResponse(OrderResponse):
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    proofs: list[PaymentProofResponse] = Field(default_factory=list)

    @classmethod
    def from_order(cls, order: Order, proofs: list[PaymentProof]) -> "OrderDetailResponse":
        summary = OrderResponse.from_entity(order)
        return cls(
            **dict(summary),
            customer_name=order.customer.name,
            customer_email=order.customer.email,
            notes=order.notes,
            proofs=[PaymentProofResponse.from_entity(p) for p in proofs],
        )
