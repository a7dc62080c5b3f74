"""
支付方式选择服务

只修改订单上的 (payment_method, gateway_provider)，不调用网关创建会话；
变更时旧会话引用被清除，迟到的旧会话事件会被对账的引用校验拒绝。
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.orders import OrderResponse
from application.dtos.payments import PaymentMethodOption, PaymentMethodsResponse
from application.ports.audit import AuditPort
from application.ports.payment_gateway import GatewayResolver
from application.services.common import (
    expire_remote_session,
    load_order,
    publish_events,
    utcnow,
)
from core.logging_config import get_logger
from core.settings import PaymentGatewayConfig
from domain.common.exceptions import ConcurrentModification, PaymentMethodUnavailable
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.method import PaymentMethod, provider_for, resolve_method_choice


logger = get_logger(__name__)


class PaymentMethodService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        config: PaymentGatewayConfig,
        *,
        audit: Optional[AuditPort] = None,
        gateways: Optional[GatewayResolver] = None,
    ):
        self._uow_factory = uow_factory
        self._config = config
        self._audit = audit
        self._gateways = gateways

    def available_methods(self, currency: str) -> PaymentMethodsResponse:
        """当前配置下可提供给顾客的支付渠道"""
        bank = self._config.bank_transfer
        options = []
        for method in PaymentMethod:
            provider = provider_for(method)
            instructions = None
            if method is PaymentMethod.BANK_TRANSFER and bank.enabled:
                instructions = {
                    "bank_name": bank.bank_name,
                    "account_name": bank.account_name,
                    "account_number": bank.account_number,
                }
            options.append(PaymentMethodOption(
                method=method.value,
                provider=provider.value if provider else None,
                enabled=self._config.is_enabled(method.value, currency),
                instructions=instructions,
            ))
        return PaymentMethodsResponse(currency=currency, methods=options)

    async def select_method(
        self,
        order_id: str,
        user_id: str,
        choice: str,
        gateway_provider: Optional[str] = None,
    ) -> OrderResponse:
        method, provider = resolve_method_choice(choice, gateway_provider)
        if not self._config.is_enabled(method.value):
            raise PaymentMethodUnavailable(method.value)

        now = utcnow()
        async with self._uow_factory() as uow:
            order = await load_order(uow, order_id, user_id)
            # 网关不支持订单币种时在选择阶段拒绝，而不是等到创建会话
            if not self._config.is_enabled(method.value, order.currency):
                raise PaymentMethodUnavailable(method.value)
            previous_provider = order.gateway_provider.value if order.gateway_provider else None
            previous_reference = order.gateway_reference
            expected = order.version
            changed = order.choose_payment_method(method, provider, now)
            if changed and not await uow.order_repository.save(
                order, expected_version=expected, require_unpaid=True
            ):
                raise ConcurrentModification(order.id)

        if not changed:
            logger.info("payment_method_unchanged", order_id=order.id, payment_method=method.value)
            return OrderResponse.from_entity(order)

        logger.info(
            "payment_method_changed",
            order_id=order.id,
            payment_method=method.value,
            gateway_provider=provider.value if provider else None,
            superseded_reference=previous_reference,
        )
        await publish_events(self._audit, order.pull_events(), actor=user_id)
        await expire_remote_session(self._gateways, previous_provider, previous_reference)
        return OrderResponse.from_entity(order)
