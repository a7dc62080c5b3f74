"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts sent to gateways are already normalized to the provider's minor
units; adapters never re-derive them from business amounts.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from application.dtos.base import DTOBase


class CheckoutLine(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_amount: int  # minor units for the target provider


class CreateCheckoutSession(BaseModel):
    """Input to PaymentGateway.create_checkout_session."""
    order_id: str
    order_number: str
    user_id: str
    currency: str
    exponent: int
    lines: list[CheckoutLine]
    total_minor: int
    customer_email: Optional[str] = None
    success_url: str
    cancel_url: str
    expires_at: Optional[datetime] = None
    idempotency_key: Optional[str] = None
    brand_name: Optional[str] = None


class CheckoutSession(BaseModel):
    """Result of creating a hosted checkout session at a gateway."""
    provider: str
    reference: str
    redirect_url: str
    expires_at: Optional[datetime] = None
    # JSON-safe snapshot merged into Order.gateway_data["session"]
    snapshot: dict[str, Any] = Field(default_factory=dict)


class CheckoutSessionResponse(DTOBase):
    order_id: str
    provider: str
    session_id: str
    redirect_url: str
    expires_at: Optional[datetime] = None


class PaymentMethodOption(DTOBase):
    method: str
    provider: Optional[str] = None
    enabled: bool
    instructions: Optional[dict[str, Any]] = None


class PaymentMethodsResponse(DTOBase):
    currency: str
    methods: list[PaymentMethodOption]


class WebhookAck(DTOBase):
    received: bool = True
    outcome: Optional[str] = None
