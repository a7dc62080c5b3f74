"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import OrderNumberConflict
from domain.order.entity import CustomerContact, Order, OrderItem
from domain.order.repository import OrderRepository
from domain.order.state_machine import METHOD_MUTABLE_STATUSES, OrderStatus, PaymentStatus
from domain.payment.method import GatewayProvider, PaymentMethod
from infrastructure.models.order import OrderItemModel, OrderModel


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        items = tuple(
            OrderItem(
                id=item.id,
                product_id=item.product_id,
                name=item.name,
                unit_price=Decimal(str(item.unit_price)),
                quantity=item.quantity,
            )
            for item in model.items
        )
        return Order(
            id=model.id,
            order_number=model.order_number,
            user_id=model.user_id,
            items=items,
            subtotal=Decimal(str(model.subtotal)),
            total=Decimal(str(model.total)),
            currency=model.currency,
            status=OrderStatus(model.status),
            payment_status=PaymentStatus(model.payment_status),
            payment_method=PaymentMethod(model.payment_method),
            gateway_provider=GatewayProvider(model.gateway_provider) if model.gateway_provider else None,
            gateway_reference=model.gateway_reference,
            gateway_data=dict(model.gateway_data or {}),
            payment_last_error=model.payment_last_error,
            customer=CustomerContact(
                name=model.customer_name,
                email=model.customer_email,
                phone=model.customer_phone,
            ),
            notes=model.notes,
            paid_at=model.paid_at,
            canceled_at=model.canceled_at,
            fulfilled_at=model.fulfilled_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            version=model.version,
        )

    @staticmethod
    def _mutable_values(entity: Order) -> dict:
        """条件更新时写入的列（明细与金额下单后不可变）"""
        return {
            "status": entity.status.value,
            "payment_status": entity.payment_status.value,
            "payment_method": entity.payment_method.value,
            "gateway_provider": entity.gateway_provider.value if entity.gateway_provider else None,
            "gateway_reference": entity.gateway_reference,
            "gateway_data": entity.gateway_data,
            "payment_last_error": entity.payment_last_error,
            "paid_at": entity.paid_at,
            "canceled_at": entity.canceled_at,
            "fulfilled_at": entity.fulfilled_at,
            "updated_at": entity.updated_at,
        }

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            id=entity.id,
            order_number=entity.order_number,
            user_id=entity.user_id,
            subtotal=entity.subtotal,
            total=entity.total,
            currency=entity.currency,
            customer_name=entity.customer.name,
            customer_email=entity.customer.email,
            customer_phone=entity.customer.phone,
            notes=entity.notes,
            created_at=entity.created_at,
            version=entity.version,
            items=[
                OrderItemModel(
                    product_id=item.product_id,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                )
                for item in entity.items
            ],
            **self._mutable_values(entity),
        )

    async def add(self, order: Order) -> Order:
        """写入订单头与明细"""
        db_order = self._to_model(order)
        self.session.add(db_order)
        try:
            await self.session.flush()
        except IntegrityError as e:
            if "order_number" in str(e).lower():
                logger.warning("order_number_conflict", order_number=order.order_number)
                raise OrderNumberConflict(order.order_number)
            raise
        logger.info(
            "order_created",
            order_id=db_order.id,
            order_number=db_order.order_number,
            total=str(db_order.total),
            currency=db_order.currency,
        )
        return self._to_entity(db_order)

    def _select(self):
        # 同一会话内可能先后读取同一订单；条件更新绕过了 ORM，需刷新身份映射
        return select(OrderModel).execution_options(populate_existing=True)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单"""
        result = await self.session.execute(self._select().where(OrderModel.id == order_id))
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_gateway_reference(self, provider: str, reference: str) -> Optional[Order]:
        """根据网关会话引用获取订单"""
        result = await self.session.execute(
            self._select().where(
                OrderModel.gateway_provider == provider,
                OrderModel.gateway_reference == reference,
            )
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def list_by_user(self, user_id: str, skip: int = 0, limit: int = 20) -> List[Order]:
        """获取用户的订单列表"""
        result = await self.session.execute(
            self._select()
            .where(OrderModel.user_id == user_id)
            .order_by(OrderModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_user(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(OrderModel).where(OrderModel.user_id == user_id)
        )
        return int(result.scalar_one())

    async def list_stale_sessions(self, updated_before: datetime, limit: int = 100) -> List[Order]:
        """获取网关会话处理中、且在 updated_before 之前最后更新的订单"""
        result = await self.session.execute(
            self._select()
            .where(
                OrderModel.payment_status == PaymentStatus.PROCESSING.value,
                OrderModel.status.in_([s.value for s in METHOD_MUTABLE_STATUSES]),
                OrderModel.gateway_reference.is_not(None),
                OrderModel.updated_at < updated_before,
            )
            .order_by(OrderModel.updated_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def save(self, order: Order, *, expected_version: int, require_unpaid: bool = False) -> bool:
        """比较并交换：版本不匹配（或已支付）时不写入任何字段"""
        stmt = update(OrderModel).where(
            OrderModel.id == order.id,
            OrderModel.version == expected_version,
        )
        if require_unpaid:
            stmt = stmt.where(OrderModel.payment_status != PaymentStatus.PAID.value)
        stmt = stmt.values(
            version=expected_version + 1,
            **self._mutable_values(order),
        ).execution_options(synchronize_session=False)

        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            logger.info(
                "order_save_conflict",
                order_id=order.id,
                expected_version=expected_version,
                require_unpaid=require_unpaid,
            )
            return False

        order.version = expected_version + 1
        logger.info(
            "order_updated",
            order_id=order.id,
            status=order.status.value,
            payment_status=order.payment_status.value,
            version=order.version,
        )
        return True
