"""
Payments API routes.

Gateway-facing webhook endpoints, the PayPal return-URL capture and the
payment-method listing. Keep this thin: no SDK details here.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from api.dependencies import get_payment_method_service, get_webhook_reconciler
from application.dtos.payments import PaymentMethodsResponse, WebhookAck
from application.services.payment_method_service import PaymentMethodService
from application.services.webhook_reconciler import WebhookReconciler
from core.config import settings
from core.i18n import t
from core.logging_config import get_logger
from core.response import Response as ApiResponse, success_response
from domain.common.exceptions import ConcurrentModification, InvalidSignature, PaymentDependencyError
from domain.payment.reconciliation import ReconcileOutcome


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)

_CAPTURE_OK = (ReconcileOutcome.APPLIED, ReconcileOutcome.DUPLICATE)


def _ip_permitted(remote_ip: str, allowlist: list[str]) -> bool:
    """remote_ip 是否命中 IP / CIDR 白名单；无法解析的条目忽略"""
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


@router.get("/methods", summary="可用支付方式", response_model=ApiResponse[PaymentMethodsResponse])
async def list_payment_methods(service: PaymentMethodService = Depends(get_payment_method_service)):
    return success_response(data=service.available_methods(settings.store.currency))


@router.post("/webhooks/{provider}", summary="Gateway webhook", response_model=ApiResponse[WebhookAck])
async def payments_webhook(
    provider: str,
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    接收网关异步通知

    - 签名校验失败、无法匹配订单、重复事件：记录日志并返回成功，避免网关重试风暴
    - 网关不可用 / 未配置 / 并发冲突：返回 5xx，由网关稍后重投
    """
    ct = (request.headers.get("content-type") or "").lower()
    if "application/json" not in ct:
        logger.warning("webhook_content_type_unsupported", provider=provider, content_type=ct)
        return success_response(
            data=WebhookAck(received=False),
            message=t("payments.webhook.content_type.unsupported_json", default="Unsupported content type"),
        )

    # Optional IP allowlist
    allowlist = reconciler.config.webhook.ip_allowlist or []
    if allowlist and request.client and request.client.host:
        if not _ip_permitted(request.client.host, allowlist):
            logger.warning("webhook_ip_not_allowed", provider=provider, remote_ip=request.client.host)
            return success_response(
                data=WebhookAck(received=False),
                message=t("payments.webhook.ip_not_allowed", default="Remote address not allowed"),
            )

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    try:
        outcome = await reconciler.handle_webhook(provider, headers, raw_body)
    except InvalidSignature as exc:
        # 可能是伪造请求：不做任何修改，也不让网关重试
        logger.error("webhook_signature_invalid", provider=provider, error=exc.message, details=exc.details)
        return success_response(
            data=WebhookAck(received=False, outcome="invalid_signature"),
            message=t("payments.webhook.signature_invalid", default="Signature verification failed"),
        )
    except ConcurrentModification as exc:
        logger.error("webhook_reconcile_conflict", provider=provider, order_id=exc.details.get("order_id"))
        raise HTTPException(
            status_code=500,
            detail=t("payments.webhook.retry_later", default="Event not applied, retry later"),
        )

    return success_response(
        data=WebhookAck(received=True, outcome=outcome.value),
        message=t("payments.webhook.received", default="Webhook received"),
    )


@router.get("/paypal/capture", summary="PayPal return URL")
async def paypal_capture(
    order_id: str = Query(...),
    token: str = Query(..., description="PayPal order id appended by PayPal"),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    顾客在 PayPal 确认付款后回跳到此处，捕获当前会话并跳转到前端结果页

    捕获失败时订单保持待支付，后续的 webhook 仍会完成对账
    """
    urls = reconciler.config.urls
    try:
        outcome = await reconciler.capture_paypal(order_id, token)
    except (PaymentDependencyError, ConcurrentModification) as exc:
        logger.warning("paypal_capture_failed", order_id=order_id, reference=token, error=exc.message)
        outcome = None

    target = urls.success_url if outcome in _CAPTURE_OK else urls.failure_url
    return RedirectResponse(url=target.replace("{order_id}", order_id), status_code=303)
