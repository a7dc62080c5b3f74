"""
自定义异常映射与全局异常处理器
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import traceback
import uuid
from starlette import status as http_status

from .response import error_response
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    PaymentDependencyError,
    PaymentIntegrityError,
)
from core.i18n import t, get_locale


class UnauthorizedException(BusinessException):
    """未授权异常"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="Unauthorized",
            message_key="auth.unauthorized",
        )


class TokenExpiredException(BusinessException):
    """Token过期异常"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_EXPIRED,
            message="Token expired",
            error_type="TokenExpired",
            message_key="auth.token.expired",
        )


class ForbiddenException(BusinessException):
    """权限不足异常"""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="Forbidden",
            message_key="auth.forbidden",
        )


_BUSINESS_CODE_STATUS = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_MISSING: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_TYPE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,

    BusinessCode.BUSINESS_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.TOKEN_INVALID: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.TOKEN_EXPIRED: http_status.HTTP_401_UNAUTHORIZED,

    BusinessCode.PERMISSION_ERROR: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,

    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,

    BusinessCode.RATE_LIMIT_ERROR: http_status.HTTP_429_TOO_MANY_REQUESTS,
    BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,
}

_PAYMENT_CODE_STATUS = {
    PaymentCode.PROVIDER_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.PROVIDER_RECOVERABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.SIGNATURE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.GATEWAY_NOT_CONFIGURED: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.AMOUNT_TOO_SMALL: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.CURRENCY_NOT_SUPPORTED: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.METHOD_UNAVAILABLE: http_status.HTTP_400_BAD_REQUEST,

    PaymentCode.AMOUNT_MISMATCH: http_status.HTTP_500_INTERNAL_SERVER_ERROR,

    PaymentCode.ORDER_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    PaymentCode.PROOF_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    PaymentCode.INVALID_STATE_TRANSITION: http_status.HTTP_409_CONFLICT,
    PaymentCode.METHOD_LOCKED: http_status.HTTP_409_CONFLICT,
    PaymentCode.ALREADY_DECIDED: http_status.HTTP_409_CONFLICT,
    PaymentCode.PROOF_NOT_ACCEPTED: http_status.HTTP_409_CONFLICT,
    PaymentCode.CONCURRENT_MODIFICATION: http_status.HTTP_409_CONFLICT,
    PaymentCode.ORDER_ACCESS_DENIED: http_status.HTTP_403_FORBIDDEN,
    PaymentCode.UNKNOWN_PAYMENT_METHOD: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.PRODUCT_UNAVAILABLE: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.INVALID_PROOF_ARTIFACT: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.ORDER_NUMBER_CONFLICT: http_status.HTTP_503_SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    """根据业务码映射HTTP状态码（默认400）。"""
    for enum_cls, mapping in ((BusinessCode, _BUSINESS_CODE_STATUS), (PaymentCode, _PAYMENT_CODE_STATUS)):
        try:
            return mapping.get(enum_cls(code), http_status.HTTP_400_BAD_REQUEST)
        except ValueError:
            continue
    return http_status.HTTP_400_BAD_REQUEST


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    # logger
    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常"""
        request_id = getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())
        locale = get_locale()
        # Render i18n message if message_key is provided, otherwise fallback to original message
        fmt_params = getattr(exc, "format_params", None)
        params = fmt_params if isinstance(fmt_params, dict) else (exc.details or {})
        translated = t(getattr(exc, "message_key", "") or exc.message, default=exc.message, **params)
        response = error_response(
            code=exc.code,
            message=translated,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
            locale=locale,
            message_key=getattr(exc, "message_key", None),
            retryable=exc.retryable,
        )
        status_code = business_code_to_http_status(exc.code)

        # 完整性错误需要运维介入；外部依赖错误仅告警
        if isinstance(exc, PaymentIntegrityError):
            logger.error("payment_integrity_error", error_type=exc.error_type, error=exc.message, details=exc.details)
        elif isinstance(exc, PaymentDependencyError):
            logger.warning("payment_dependency_error", error_type=exc.error_type, error=exc.message, details=exc.details)

        # 对于401可选地返回WWW-Authenticate，但仅对需要的场景添加
        headers = {"WWW-Authenticate": "Bearer"} if status_code == http_status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(status_code=status_code, content=response.model_dump(mode='json'), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常"""
        request_id = getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())
        errors = exc.errors()

        # 提取第一个错误的详细信息
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])

        locale = get_locale()
        response = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=t("validation.failed", default="Validation failed: {reason}", reason=first_error.get('msg', 'unknown')),
            error_type="ValidationError",
            details={"errors": [{k: v for k, v in e.items() if k != "ctx"} for e in errors]},
            field=field,
            request_id=request_id,
            locale=locale,
            message_key="validation.failed",
        )
        return JSONResponse(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=response.model_dump(mode='json')
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理HTTP异常"""
        request_id = getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())

        # 映射HTTP状态码到业务码
        code_mapping = {
            401: BusinessCode.UNAUTHORIZED,
            403: BusinessCode.FORBIDDEN,
            404: BusinessCode.NOT_FOUND,
            429: BusinessCode.TOO_MANY_REQUESTS,
            500: BusinessCode.SYSTEM_ERROR,
            503: BusinessCode.SERVICE_UNAVAILABLE
        }
        code = code_mapping.get(exc.status_code, BusinessCode.SYSTEM_ERROR)

        locale = get_locale()
        response = error_response(
            code=code,
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=request_id,
            locale=locale,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=response.model_dump(mode='json'),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        request_id = getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())

        # 在开发环境可以返回详细错误信息
        details = None
        if app.debug:
            details = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        locale = get_locale()
        response = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message=t("error.internal", default="Internal server error"),
            error_type="SystemError",
            details=details,
            request_id=request_id,
            locale=locale,
            message_key="error.internal",
        )

        # 记录日志（使用结构化日志）
        logger.error(
            "unhandled_exception",
            request_id=request_id,
            error=str(exc),
            exc_info=True,
        )

        return JSONResponse(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode='json')
        )
