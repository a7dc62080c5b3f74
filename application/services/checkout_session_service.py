"""
网关会话服务 - 为网关类支付方式创建托管收银台会话

顺序：读取订单并校验 -> 最低金额 -> 金额规范化（精确、逐行求和校验）
-> 调用网关 -> 条件更新订单。任何一步失败都不会写入部分会话状态。
"""
from __future__ import annotations

import hashlib
from datetime import timedelta
from typing import Callable, Optional

from application.dtos.payments import (
    CheckoutLine,
    CheckoutSessionResponse,
    CreateCheckoutSession,
)
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
from domain.common.exceptions import (
    ConcurrentModification,
    GatewayNotConfigured,
    PaymentMethodUnavailable,
    UnknownPaymentMethod,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.payment.amounts import NormalizedAmount, ensure_minimum, normalize_order_amount
from domain.payment.method import GatewayProvider, parse_provider


logger = get_logger(__name__)


def _idempotency_key(order: Order, provider: str, amount: NormalizedAmount, expires_epoch: int) -> str:
    # Stable for one attempt at one order version; a later attempt gets a new key
    base = f"checkout|{order.id}|{order.version}|{provider}|{amount.total_minor}|{amount.currency}|{expires_epoch}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


class CheckoutSessionService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        config: PaymentGatewayConfig,
        gateways: GatewayResolver,
        *,
        audit: Optional[AuditPort] = None,
    ):
        self._uow_factory = uow_factory
        self._config = config
        self._gateways = gateways
        self._audit = audit

    def _resolve_provider(self, order: Order, requested: Optional[str]) -> GatewayProvider:
        if requested:
            provider = parse_provider(requested)
        elif order.gateway_provider is not None:
            provider = order.gateway_provider
        else:
            # 银行转账订单需先切换到网关类支付方式
            raise UnknownPaymentMethod(order.payment_method.value)
        missing = self._config.missing_credentials(provider.value)
        if missing:
            raise GatewayNotConfigured(provider.value, missing)
        if not self._config.is_enabled(provider.value):
            raise PaymentMethodUnavailable(provider.value)
        return provider

    def normalize_amount(self, order: Order, provider: GatewayProvider) -> NormalizedAmount:
        """最低金额在任何外部调用前校验；逐行金额之和必须精确还原订单总额"""
        settings = getattr(self._config, provider.value)
        ensure_minimum(
            provider.value,
            order.total,
            order.currency,
            settings.minimums,
            settings.default_minimum,
        )
        return normalize_order_amount(
            provider=provider.value,
            total=order.total,
            currency=order.currency,
            items=order.items,
            unit_exponents=settings.unit_exponents,
        )

    def _urls(self, order: Order, provider: GatewayProvider) -> tuple[str, str]:
        urls = self._config.urls
        success = urls.paypal_return_url if provider is GatewayProvider.PAYPAL else urls.success_url
        # str.replace: Stripe's {CHECKOUT_SESSION_ID} placeholder must survive
        return success.replace("{order_id}", order.id), urls.cancel_url.replace("{order_id}", order.id)

    async def create_session(
        self,
        order_id: str,
        user_id: str,
        provider: Optional[str] = None,
    ) -> CheckoutSessionResponse:
        async with self._uow_factory(readonly=True) as uow:
            order = await load_order(uow, order_id, user_id)
        order.ensure_method_mutable()
        gateway_provider = self._resolve_provider(order, provider)
        amount = self.normalize_amount(order, gateway_provider)

        now = utcnow()
        expires_at = now + timedelta(seconds=self._config.session_ttl_seconds)
        success_url, cancel_url = self._urls(order, gateway_provider)
        request = CreateCheckoutSession(
            order_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            currency=amount.currency,
            exponent=amount.exponent,
            lines=[
                CheckoutLine(
                    product_id=line.product_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_amount=line.unit_amount,
                )
                for line in amount.lines
            ],
            total_minor=amount.total_minor,
            customer_email=order.customer.email,
            success_url=success_url,
            cancel_url=cancel_url,
            expires_at=expires_at,
            idempotency_key=_idempotency_key(order, gateway_provider.value, amount, int(expires_at.timestamp())),
        )

        gateway = self._gateways(gateway_provider.value)
        logger.info(
            "checkout_session_request",
            order_id=order.id,
            provider=gateway_provider.value,
            total_minor=amount.total_minor,
            currency=amount.currency,
        )
        session = await gateway.create_checkout_session(request)

        expected = order.version
        previous_provider = order.gateway_provider.value if order.gateway_provider else None
        snapshot = {
            **session.snapshot,
            "provider": session.provider,
            "reference": session.reference,
            "redirect_url": session.redirect_url,
            "created_at": now.isoformat(),
        }
        try:
            async with self._uow_factory() as uow:
                current = await load_order(uow, order_id, user_id)
                if current.version != expected:
                    raise ConcurrentModification(order.id)
                superseded = current.open_gateway_session(gateway_provider, session.reference, snapshot, now)
                if not await uow.order_repository.save(current, expected_version=expected, require_unpaid=True):
                    raise ConcurrentModification(order.id)
        except ConcurrentModification:
            # 本次会话已无法绑定到订单，避免顾客在孤立会话上付款
            logger.warning("checkout_session_orphaned", order_id=order.id, reference=session.reference)
            await gateway.expire_session(session.reference)
            raise

        logger.info(
            "checkout_session_opened",
            order_id=current.id,
            provider=gateway_provider.value,
            reference=session.reference,
            superseded_reference=superseded,
        )
        await publish_events(self._audit, current.pull_events(), actor=user_id)
        await expire_remote_session(self._gateways, previous_provider, superseded)
        return CheckoutSessionResponse(
            order_id=current.id,
            provider=session.provider,
            session_id=session.reference,
            redirect_url=session.redirect_url,
            expires_at=session.expires_at,
        )
