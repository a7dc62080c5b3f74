"""
订单API路由 - 下单、查询、支付方式、网关会话与转账凭证
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    get_checkout_session_service,
    get_current_principal,
    get_order_service,
    get_payment_method_service,
    get_payment_proof_service,
)
from application.dtos.auth import Principal
from application.dtos.orders import (
    ChangePaymentMethodRequest,
    CheckoutSessionRequest,
    CreateOrderRequest,
    OrderDetailResponse,
    OrderResponse,
    PaymentProofResponse,
    SubmitProofRequest,
)
from application.dtos.payments import CheckoutSessionResponse
from application.services.checkout_session_service import CheckoutSessionService
from application.services.order_service import OrderApplicationService
from application.services.payment_method_service import PaymentMethodService
from application.services.payment_proof_service import PaymentProofService
from core.config import settings
from core.i18n import t
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response


router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", summary="创建订单", response_model=ApiResponse[OrderResponse])
async def create_order(
    payload: CreateOrderRequest,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    按商品目录当前价格创建订单

    - **items**: 商品与数量（同一商品只能出现一次）
    - **payment_method**: bank_transfer / stripe / paypal
    """
    order = await service.create_order(principal.user_id, payload)
    return success_response(data=order, message=t("orders.created", default="Order created"))


@router.get("", summary="我的订单", response_model=ApiResponse[PaginatedData[OrderResponse]])
async def list_orders(
    page: int = Query(1, ge=1),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    items, total = await service.list_orders(principal.user_id, page=page, size=size)
    return paginated_response(items=items, total=total, page=page, size=size)


@router.get("/{order_id}", summary="订单详情", response_model=ApiResponse[OrderDetailResponse])
async def get_order(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order(order_id, principal.user_id)
    return success_response(data=order)


@router.post("/{order_id}/cancel", summary="取消订单", response_model=ApiResponse[OrderResponse])
async def cancel_order(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.cancel_order(order_id, principal.user_id)
    return success_response(data=order, message=t("orders.canceled", default="Order canceled"))


@router.put("/{order_id}/payment-method", summary="更换支付方式", response_model=ApiResponse[OrderResponse])
async def change_payment_method(
    order_id: str,
    payload: ChangePaymentMethodRequest,
    principal: Principal = Depends(get_current_principal),
    service: PaymentMethodService = Depends(get_payment_method_service),
):
    """
    付款完成前可以更换支付方式；已打开的网关会话会被作废
    """
    order = await service.select_method(
        order_id, principal.user_id, payload.payment_method, payload.gateway_provider
    )
    return success_response(data=order, message=t("orders.payment_method.updated", default="Payment method updated"))


@router.post(
    "/{order_id}/checkout-session",
    summary="创建网关支付会话",
    response_model=ApiResponse[CheckoutSessionResponse],
)
async def create_checkout_session(
    order_id: str,
    payload: Optional[CheckoutSessionRequest] = None,
    principal: Principal = Depends(get_current_principal),
    service: CheckoutSessionService = Depends(get_checkout_session_service),
):
    """
    为 Stripe / PayPal 订单创建托管收银台会话，返回跳转地址

    再次调用会替换之前的会话
    """
    provider = payload.provider if payload else None
    session = await service.create_session(order_id, principal.user_id, provider)
    return success_response(data=session, message=t("orders.checkout.created", default="Checkout session created"))


@router.post(
    "/{order_id}/payment-proofs",
    summary="提交转账凭证",
    response_model=ApiResponse[PaymentProofResponse],
)
async def submit_payment_proof(
    order_id: str,
    payload: SubmitProofRequest,
    principal: Principal = Depends(get_current_principal),
    service: PaymentProofService = Depends(get_payment_proof_service),
):
    proof = await service.submit_proof(order_id, principal.user_id, payload)
    return success_response(data=proof, message=t("orders.proof.submitted", default="Payment proof submitted"))
