"""
Exceptions for payment providers mapped to the typed payment error families.

Adapters raise these; the application sees them as GatewayRejected /
GatewayUnavailable / InvalidSignature and never inspects message text.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import GatewayRejected, GatewayUnavailable, InvalidSignature


def _details(provider_code: Optional[str], details: Optional[dict]) -> dict:
    full_details = {"provider_code": provider_code}
    if details:
        full_details.update(details)
    return full_details


class PaymentProviderError(GatewayRejected):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(message, provider=provider, details=_details(provider_code, details))


class PaymentRecoverableError(GatewayUnavailable):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(message, provider=provider, details=_details(provider_code, details))


class PaymentSignatureError(InvalidSignature):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(message, provider=provider, details=details)
