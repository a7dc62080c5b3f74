"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。

异常按处理方式分族：
- 校验类：输入不合法，同步拒绝，不产生任何变更
- 前置条件/状态类：调用方持有的状态已过期，应刷新后重试
- 外部依赖类：网关不可用/未配置/金额低于下限，可重试或更换支付方式
- 完整性类：金额不一致、签名校验失败，本次尝试直接中止并高优先级记录
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    retryable: bool = False

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


# ----------------------------------------------------------------------
# 校验类
# ----------------------------------------------------------------------
class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class UnknownPaymentMethod(BusinessException):
    def __init__(self, choice: Optional[str], provider: Optional[str] = None):
        super().__init__(
            code=PaymentCode.UNKNOWN_PAYMENT_METHOD,
            message=f"Unknown payment method: {choice}",
            error_type="UnknownPaymentMethod",
            details={"payment_method": choice, "gateway_provider": provider},
            field="payment_method",
            message_key="payment.method.unknown",
        )


class ProductUnavailable(BusinessException):
    def __init__(self, product_id: str, reason: str):
        super().__init__(
            code=PaymentCode.PRODUCT_UNAVAILABLE,
            message=f"Product {product_id} is not available: {reason}",
            error_type="ProductUnavailable",
            details={"product_id": product_id, "reason": reason},
            field="items",
            message_key="order.product.unavailable",
        )


class InvalidProofArtifact(BusinessException):
    def __init__(self, message: str, *, field: str = "proof_url", details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.INVALID_PROOF_ARTIFACT,
            message=message,
            error_type="InvalidProofArtifact",
            details=details,
            field=field,
            message_key="proof.artifact.invalid",
        )


# ----------------------------------------------------------------------
# 查找/授权类
# ----------------------------------------------------------------------
class OrderNotFound(BusinessException):
    def __init__(self, order_id: Optional[str] = None):
        details = {"order_id": order_id} if order_id else None
        super().__init__(
            code=PaymentCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details=details,
            message_key="order.not_found",
        )


class PaymentProofNotFound(BusinessException):
    def __init__(self, proof_id: Optional[int] = None):
        details = {"proof_id": proof_id} if proof_id is not None else None
        super().__init__(
            code=PaymentCode.PROOF_NOT_FOUND,
            message="Payment proof not found",
            error_type="PaymentProofNotFound",
            details=details,
            message_key="proof.not_found",
        )


class OrderAccessDenied(BusinessException):
    def __init__(self, message: str = "You are not allowed to act on this order"):
        super().__init__(
            code=PaymentCode.ORDER_ACCESS_DENIED,
            message=message,
            error_type="OrderAccessDenied",
            message_key="order.access_denied",
        )


# ----------------------------------------------------------------------
# 前置条件/状态类
# ----------------------------------------------------------------------
class PaymentPreconditionError(BusinessException):
    """调用方基于过期状态操作，不会产生任何变更"""


class InvalidStateTransition(PaymentPreconditionError):
    def __init__(self, axis: str, current: str, target: str):
        super().__init__(
            code=PaymentCode.INVALID_STATE_TRANSITION,
            message=f"Cannot move {axis} from {current} to {target}",
            error_type="InvalidStateTransition",
            details={"axis": axis, "current": current, "target": target},
            field=axis,
            message_key="order.transition.invalid",
        )


class MethodLockedError(PaymentPreconditionError):
    def __init__(self, order_id: str, status: str, payment_status: str):
        super().__init__(
            code=PaymentCode.METHOD_LOCKED,
            message="Payment method can no longer be changed for this order",
            error_type="MethodLocked",
            details={"order_id": order_id, "status": status, "payment_status": payment_status},
            field="payment_method",
            message_key="payment.method.locked",
        )


class AlreadyDecided(PaymentPreconditionError):
    def __init__(self, proof_id: Optional[int], status: Optional[str] = None):
        super().__init__(
            code=PaymentCode.ALREADY_DECIDED,
            message="Payment proof has already been decided",
            error_type="AlreadyDecided",
            details={"proof_id": proof_id, "status": status},
            message_key="proof.already_decided",
        )


class ProofNotAccepted(PaymentPreconditionError):
    def __init__(self, order_id: str, reason: str):
        super().__init__(
            code=PaymentCode.PROOF_NOT_ACCEPTED,
            message=f"Order does not accept payment proofs: {reason}",
            error_type="ProofNotAccepted",
            details={"order_id": order_id, "reason": reason},
            message_key="proof.not_accepted",
        )


class ConcurrentModification(PaymentPreconditionError):
    """乐观锁冲突：订单在读取后已被其他写入方修改"""

    retryable = True

    def __init__(self, order_id: str):
        super().__init__(
            code=PaymentCode.CONCURRENT_MODIFICATION,
            message="Order was modified concurrently, please retry",
            error_type="ConcurrentModification",
            details={"order_id": order_id},
            message_key="order.concurrent_modification",
        )


class OrderNumberConflict(BusinessException):
    def __init__(self, order_number: str):
        super().__init__(
            code=PaymentCode.ORDER_NUMBER_CONFLICT,
            message=f"Order number {order_number} already exists",
            error_type="OrderNumberConflict",
            details={"order_number": order_number},
        )


# ----------------------------------------------------------------------
# 外部依赖类（可重试 / 更换支付方式）
# ----------------------------------------------------------------------
class PaymentDependencyError(BusinessException):
    retryable = True


class AmountTooSmall(PaymentDependencyError):
    def __init__(self, provider: str, amount: Decimal, minimum: Decimal, currency: str):
        super().__init__(
            code=PaymentCode.AMOUNT_TOO_SMALL,
            message=f"Order total {amount} {currency} is below the {provider} minimum of {minimum} {currency}",
            error_type="AmountTooSmall",
            details={
                "provider": provider,
                "amount": str(amount),
                "minimum": str(minimum),
                "currency": currency,
            },
            message_key="payment.amount.too_small",
        )


class CurrencyNotSupported(PaymentDependencyError):
    def __init__(self, provider: str, currency: str):
        super().__init__(
            code=PaymentCode.CURRENCY_NOT_SUPPORTED,
            message=f"{provider} does not support currency {currency}",
            error_type="CurrencyNotSupported",
            details={"provider": provider, "currency": currency},
            message_key="payment.currency.unsupported",
        )


class GatewayNotConfigured(PaymentDependencyError):
    def __init__(self, provider: str, missing: Optional[str] = None):
        super().__init__(
            code=PaymentCode.GATEWAY_NOT_CONFIGURED,
            message=f"Payment provider {provider} is not configured",
            error_type="GatewayNotConfigured",
            details={"provider": provider, "missing": missing},
            message_key="payment.gateway.not_configured",
        )


class PaymentMethodUnavailable(PaymentDependencyError):
    def __init__(self, method: str):
        super().__init__(
            code=PaymentCode.METHOD_UNAVAILABLE,
            message=f"Payment method {method} is currently unavailable",
            error_type="PaymentMethodUnavailable",
            details={"payment_method": method},
            field="payment_method",
            message_key="payment.method.unavailable",
        )


class GatewayUnavailable(PaymentDependencyError):
    """网关超时/网络错误/限流：不产生订单变更，可稍后重试"""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_RECOVERABLE,
            message=message,
            error_type="GatewayUnavailable",
            details=full_details,
            message_key="payment.gateway.unavailable",
        )


class GatewayRejected(PaymentDependencyError):
    """网关明确拒绝请求（参数错误、账户限制等）"""

    retryable = False

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="GatewayRejected",
            details=full_details,
            message_key="payment.gateway.rejected",
        )


# ----------------------------------------------------------------------
# 完整性类
# ----------------------------------------------------------------------
class PaymentIntegrityError(BusinessException):
    pass


class AmountMismatch(PaymentIntegrityError):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.AMOUNT_MISMATCH,
            message=message,
            error_type="AmountMismatch",
            details=details,
            message_key="payment.amount.mismatch",
        )


class InvalidSignature(PaymentIntegrityError):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="InvalidSignature",
            details=full_details,
            message_key="payment.webhook.signature_invalid",
        )
