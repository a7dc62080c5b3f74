"""
审核员API路由 - 转账凭证审核与订单履约
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_current_reviewer, get_order_service, get_payment_proof_service
from application.dtos.auth import Principal
from application.dtos.orders import (
    OrderDetailResponse,
    OrderResponse,
    PaymentProofResponse,
    RejectProofRequest,
)
from application.services.order_service import OrderApplicationService
from application.services.payment_proof_service import PaymentProofService
from core.config import settings
from core.i18n import t
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response


router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get(
    "/payment-proofs",
    summary="待审核凭证",
    response_model=ApiResponse[PaginatedData[PaymentProofResponse]],
)
async def list_pending_proofs(
    page: int = Query(1, ge=1),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    reviewer: Principal = Depends(get_current_reviewer),
    service: PaymentProofService = Depends(get_payment_proof_service),
):
    items, total = await service.list_pending(page=page, size=size)
    return paginated_response(items=items, total=total, page=page, size=size)


@router.post(
    "/payment-proofs/{proof_id}/approve",
    summary="批准凭证",
    response_model=ApiResponse[OrderResponse],
)
async def approve_proof(
    proof_id: int,
    reviewer: Principal = Depends(get_current_reviewer),
    service: PaymentProofService = Depends(get_payment_proof_service),
):
    """批准后订单标记为已支付"""
    order = await service.approve(proof_id, reviewer.user_id)
    return success_response(data=order, message=t("admin.proof.approved", default="Payment proof approved"))


@router.post(
    "/payment-proofs/{proof_id}/reject",
    summary="拒绝凭证",
    response_model=ApiResponse[OrderResponse],
)
async def reject_proof(
    proof_id: int,
    payload: Optional[RejectProofRequest] = None,
    reviewer: Principal = Depends(get_current_reviewer),
    service: PaymentProofService = Depends(get_payment_proof_service),
):
    """拒绝后订单回到待支付，顾客可重新提交或更换支付方式"""
    reason = payload.reason if payload else None
    order = await service.reject(proof_id, reviewer.user_id, reason)
    return success_response(data=order, message=t("admin.proof.rejected", default="Payment proof rejected"))


@router.get("/orders/{order_id}", summary="订单详情（审核视角）", response_model=ApiResponse[OrderDetailResponse])
async def get_order(
    order_id: str,
    reviewer: Principal = Depends(get_current_reviewer),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order(order_id)
    return success_response(data=order)


@router.post("/orders/{order_id}/fulfill", summary="订单履约", response_model=ApiResponse[OrderResponse])
async def fulfill_order(
    order_id: str,
    reviewer: Principal = Depends(get_current_reviewer),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.fulfill_order(order_id, reviewer.user_id)
    return success_response(data=order, message=t("admin.order.fulfilled", default="Order fulfilled"))
