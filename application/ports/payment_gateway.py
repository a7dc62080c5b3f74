"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from application.dtos.payments import CheckoutSession, CreateCheckoutSession
from domain.payment.events import GatewayEvent


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for hosted-checkout payment providers.

    Implementations should be async and side-effect free beyond IO.
    Errors are raised as typed PaymentDependencyError / InvalidSignature.
    """

    provider: str

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession: ...

    async def expire_session(self, reference: str) -> None: ...

    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> GatewayEvent: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class CapturingGateway(PaymentGateway, Protocol):
    """Gateways whose approved orders must be captured on return (PayPal)."""

    async def capture_order(self, reference: str) -> GatewayEvent: ...


# Composition roots provide provider-name -> adapter resolution
GatewayResolver = Callable[[str], PaymentGateway]
