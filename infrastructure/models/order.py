"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    所有业务规则都在 domain.order.entity.Order 中；
    version 列用于条件更新（比较并交换）
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, comment="订单ID (UUID)")
    order_number = Column(String(64), unique=True, index=True, nullable=False, comment="对外展示的订单号")
    user_id = Column(String(64), nullable=False, index=True, comment="下单用户ID")

    # 金额（下单时冻结）
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False, comment="明细合计")
    total = Column(Numeric(precision=15, scale=2), nullable=False, comment="应付金额")
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")

    # 双轴状态
    status = Column(String(32), nullable=False, index=True, comment="订单状态")
    payment_status = Column(String(32), nullable=False, index=True, comment="支付状态")
    payment_method = Column(String(32), nullable=False, comment="支付方式: bank_transfer/stripe/paypal")

    # 当前支付尝试
    gateway_provider = Column(String(32), nullable=True, comment="网关: stripe/paypal")
    gateway_reference = Column(String(255), nullable=True, comment="网关会话/订单ID")
    gateway_data = Column(JSON, nullable=True, comment="网关快照与历史会话")
    payment_last_error = Column(Text, nullable=True, comment="最近一次支付失败原因")

    # 联系人快照
    customer_name = Column(String(200), nullable=True)
    customer_email = Column(String(200), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=0, comment="乐观并发版本号")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")
    canceled_at = Column(DateTime(timezone=True), nullable=True, comment="取消时间")
    fulfilled_at = Column(DateTime(timezone=True), nullable=True, comment="履约时间")

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.id",
    )

    __table_args__ = (
        UniqueConstraint("gateway_provider", "gateway_reference", name="uq_orders_gateway_reference"),
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_payment_sweep", "payment_status", "updated_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id='{self.id}', order_number='{self.order_number}', "
            f"status='{self.status}', payment_status='{self.payment_status}', version={self.version})>"
        )


class OrderItemModel(Base):
    """订单明细快照"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(String(64), nullable=False, comment="商品ID")
    name = Column(String(255), nullable=False, comment="下单时商品名")
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="下单时单价")
    quantity = Column(Integer, nullable=False)

    order = relationship("OrderModel", back_populates="items")

    def __repr__(self):
        return f"<OrderItemModel(order_id='{self.order_id}', product_id='{self.product_id}', quantity={self.quantity})>"


class PaymentProofModel(Base):
    """人工转账凭证"""
    __tablename__ = "payment_proofs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False, index=True)
    proof_url = Column(String(1024), nullable=False, comment="凭证文件地址")
    content_type = Column(String(100), nullable=True)
    size_bytes = Column(Integer, nullable=True)

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="提交时订单金额快照")
    currency = Column(String(3), nullable=False)

    status = Column(String(20), nullable=False, default="pending", index=True, comment="pending/approved/rejected")
    submitter_name = Column(String(200), nullable=True)
    submitter_email = Column(String(200), nullable=True)
    submitter_phone = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True, comment="审核备注/拒绝原因")

    reviewed_by = Column(String(64), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_payment_proofs_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return f"<PaymentProofModel(id={self.id}, order_id='{self.order_id}', status='{self.status}')>"
