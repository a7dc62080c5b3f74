"""
订单应用服务 - 下单、查询、取消与履约

订单头与明细在同一事务中写入；所有状态变更经由实体方法（状态机）并以
条件更新持久化，版本冲突时抛出 ConcurrentModification。
"""
from __future__ import annotations

import secrets
import string
import uuid
from datetime import datetime
from typing import Callable, Optional

from application.dtos.orders import CreateOrderRequest, OrderDetailResponse, OrderResponse
from application.ports.audit import AuditPort
from application.ports.catalog import CatalogPort
from application.ports.payment_gateway import GatewayResolver
from application.services.common import (
    expire_remote_session,
    load_order,
    publish_events,
    utcnow,
)
from core.config import StoreSettings
from core.logging_config import get_logger
from core.settings import PaymentGatewayConfig
from domain.common.exceptions import (
    ConcurrentModification,
    OrderNumberConflict,
    PaymentMethodUnavailable,
    ProductUnavailable,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderItem
from domain.payment.method import resolve_method_choice


logger = get_logger(__name__)

_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
_ORDER_NUMBER_ATTEMPTS = 3
_DIGITS36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_DIGITS36[rem])
    return "".join(reversed(out))


def generate_order_number(prefix: str, now: Optional[datetime] = None) -> str:
    """ORD-<毫秒时间戳 base36>-<4位随机>"""
    now = now or utcnow()
    stamp = _base36(int(now.timestamp() * 1000))
    suffix = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(4))
    return f"{prefix}-{stamp}-{suffix}"


class OrderApplicationService:
    """Order ledger use-cases bridging API and domain layers."""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        catalog: CatalogPort,
        config: PaymentGatewayConfig,
        store: StoreSettings,
        *,
        audit: Optional[AuditPort] = None,
        gateways: Optional[GatewayResolver] = None,
    ):
        self._uow_factory = uow_factory
        self._catalog = catalog
        self._config = config
        self._store = store
        self._audit = audit
        self._gateways = gateways

    async def _snapshot_items(self, request: CreateOrderRequest) -> list[OrderItem]:
        """按商品目录当前价格冻结明细"""
        products = await self._catalog.get_products(item.product_id for item in request.items)
        items = []
        for line in request.items:
            product = products.get(line.product_id)
            if product is None:
                raise ProductUnavailable(line.product_id, "not_found")
            if not product.is_published:
                raise ProductUnavailable(line.product_id, "unpublished")
            if product.is_sold_out:
                raise ProductUnavailable(line.product_id, "sold_out")
            items.append(OrderItem(
                product_id=product.id,
                name=product.name,
                unit_price=product.price,
                quantity=line.quantity,
            ))
        return items

    async def create_order(self, user_id: str, request: CreateOrderRequest) -> OrderResponse:
        method, provider = resolve_method_choice(request.payment_method, request.gateway_provider)
        if not self._config.is_enabled(method.value, self._store.currency):
            raise PaymentMethodUnavailable(method.value)
        items = await self._snapshot_items(request)

        for attempt in range(1, _ORDER_NUMBER_ATTEMPTS + 1):
            now = utcnow()
            order = Order.place(
                order_id=str(uuid.uuid4()),
                order_number=generate_order_number(self._store.order_number_prefix, now),
                user_id=user_id,
                items=items,
                currency=self._store.currency,
                payment_method=method,
                gateway_provider=provider,
                customer=request.customer.to_contact(),
                notes=request.notes,
                now=now,
            )
            try:
                async with self._uow_factory() as uow:
                    created = await uow.order_repository.add(order)
                break
            except OrderNumberConflict:
                if attempt == _ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.warning("order_number_retry", attempt=attempt)

        logger.info(
            "order_placed",
            order_id=created.id,
            order_number=created.order_number,
            user_id=user_id,
            total=str(created.total),
            currency=created.currency,
            payment_method=created.payment_method.value,
        )
        await publish_events(self._audit, order.pull_events(), actor=user_id)
        return OrderResponse.from_entity(created)

    async def list_orders(self, user_id: str, *, page: int = 1, size: int = 20) -> tuple[list[OrderResponse], int]:
        skip = (page - 1) * size
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_by_user(user_id, skip=skip, limit=size)
            total = await uow.order_repository.count_by_user(user_id)
        return [OrderResponse.from_entity(o) for o in orders], total

    async def get_order(self, order_id: str, user_id: Optional[str] = None) -> OrderDetailResponse:
        """user_id 为 None 表示审核员视角（不校验归属）"""
        async with self._uow_factory(readonly=True) as uow:
            order = await load_order(uow, order_id, user_id)
            proofs = await uow.payment_proof_repository.list_by_order(order.id)
        return OrderDetailResponse.from_order(order, proofs)

    async def cancel_order(self, order_id: str, user_id: str) -> OrderResponse:
        now = utcnow()
        async with self._uow_factory() as uow:
            order = await load_order(uow, order_id, user_id)
            provider = order.gateway_provider.value if order.gateway_provider else None
            expected = order.version
            superseded = order.cancel(now)
            if not await uow.order_repository.save(order, expected_version=expected, require_unpaid=True):
                raise ConcurrentModification(order.id)
            await uow.payment_proof_repository.reject_pending_for_order(
                order.id, reason="Order canceled", reviewed_at=now
            )

        logger.info("order_canceled", order_id=order.id, superseded_reference=superseded)
        await publish_events(self._audit, order.pull_events(), actor=user_id)
        await expire_remote_session(self._gateways, provider, superseded)
        return OrderResponse.from_entity(order)

    async def fulfill_order(self, order_id: str, reviewer_id: str) -> OrderResponse:
        now = utcnow()
        async with self._uow_factory() as uow:
            order = await load_order(uow, order_id)
            expected = order.version
            order.fulfill(now)
            if not await uow.order_repository.save(order, expected_version=expected):
                raise ConcurrentModification(order.id)

        logger.info("order_fulfilled", order_id=order.id, reviewer_id=reviewer_id)
        await publish_events(self._audit, order.pull_events(), actor=reviewer_id)
        return OrderResponse.from_entity(order)
