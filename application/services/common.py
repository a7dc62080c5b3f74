"""Helpers shared by the order/payment application services."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from application.ports.audit import AuditPort
from application.ports.payment_gateway import GatewayResolver
from core.logging_config import get_logger
from domain.common.exceptions import OrderAccessDenied, OrderNotFound, PaymentDependencyError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.events import OrderEvent


logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def load_order(uow: AbstractUnitOfWork, order_id: str, user_id: Optional[str] = None) -> Order:
    """加载订单；传入 user_id 时校验归属"""
    order = await uow.order_repository.get_by_id(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    if user_id is not None and not order.is_owned_by(user_id):
        raise OrderAccessDenied()
    return order


async def publish_events(audit: Optional[AuditPort], events: Sequence[OrderEvent], actor: Optional[str]) -> None:
    """事务提交后把领域事件交给审计端口"""
    if audit is None or not events:
        return
    await audit.record(list(events), actor=actor)


async def expire_remote_session(
    gateways: Optional[GatewayResolver],
    provider: Optional[str],
    reference: Optional[str],
) -> None:
    """尽力让网关侧的旧会话失效；失败只记录，不影响已提交的本地状态"""
    if gateways is None or not provider or not reference:
        return
    try:
        gateway = gateways(provider)
    except PaymentDependencyError as exc:
        logger.warning("remote_session_expire_skipped", provider=provider, reference=reference, error=exc.message)
        return
    await gateway.expire_session(reference)
