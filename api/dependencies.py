"""
API依赖项 - 调用方身份与应用服务装配（组合根）
"""
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.dtos.auth import Principal
from application.ports.payment_gateway import PaymentGateway
from application.services.checkout_session_service import CheckoutSessionService
from application.services.order_service import OrderApplicationService
from application.services.payment_method_service import PaymentMethodService
from application.services.payment_proof_service import PaymentProofService
from application.services.webhook_reconciler import WebhookReconciler
from core.config import settings
from core.exceptions import ForbiddenException, TokenExpiredException, UnauthorizedException
from core.logging_config import get_logger
from core.settings import get_payment_config
from infrastructure.adapters.audit_port import StructlogAuditAdapter
from infrastructure.adapters.catalog_port import SQLAlchemyCatalogAdapter
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token issued by the identity service",
    auto_error=False,
)

# 网关适配器按 provider 复用（PayPal 令牌缓存、HTTP 连接池），应用关闭时统一释放
_gateways: dict[str, PaymentGateway] = {}
_audit = StructlogAuditAdapter()


def resolve_gateway(provider: str) -> PaymentGateway:
    key = provider.strip().lower()
    gateway = _gateways.get(key)
    if gateway is None:
        gateway = get_payment_gateway(key, get_payment_config())
        _gateways[key] = gateway
    return gateway


async def close_gateways() -> None:
    while _gateways:
        _, gateway = _gateways.popitem()
        await gateway.aclose()


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> str:
    """从 Bearer token 中提取 token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="未提供认证凭据",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_principal(token: str) -> Principal:
    """校验 JWT 并解析调用方身份"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.InvalidTokenError:
        raise UnauthorizedException("Invalid token")
    if not payload.get("sub"):
        raise UnauthorizedException("Token has no subject")
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Principal(
        sub=str(payload["sub"]),
        email=payload.get("email"),
        name=payload.get("name"),
        is_superuser=bool(payload.get("is_superuser", False)),
        roles=[str(r) for r in roles],
    )


async def get_current_principal(token: str = Depends(get_token)) -> Principal:
    return decode_principal(token)


async def get_current_reviewer(principal: Principal = Depends(get_current_principal)) -> Principal:
    """获取具备凭证审核权限的调用方"""
    if not principal.can_review(settings.REVIEWER_ROLES):
        raise ForbiddenException("Reviewer capability required")
    return principal


async def get_order_service() -> OrderApplicationService:
    return OrderApplicationService(
        uow_factory=SQLAlchemyUnitOfWork,
        catalog=SQLAlchemyCatalogAdapter(),
        config=get_payment_config(),
        store=settings.store,
        audit=_audit,
        gateways=resolve_gateway,
    )


async def get_payment_method_service() -> PaymentMethodService:
    return PaymentMethodService(
        uow_factory=SQLAlchemyUnitOfWork,
        config=get_payment_config(),
        audit=_audit,
        gateways=resolve_gateway,
    )


async def get_checkout_session_service() -> CheckoutSessionService:
    return CheckoutSessionService(
        uow_factory=SQLAlchemyUnitOfWork,
        config=get_payment_config(),
        gateways=resolve_gateway,
        audit=_audit,
    )


async def get_payment_proof_service() -> PaymentProofService:
    return PaymentProofService(uow_factory=SQLAlchemyUnitOfWork, store=settings.store, audit=_audit)


async def get_webhook_reconciler() -> WebhookReconciler:
    return WebhookReconciler(
        uow_factory=SQLAlchemyUnitOfWork,
        config=get_payment_config(),
        gateways=resolve_gateway,
        audit=_audit,
    )
