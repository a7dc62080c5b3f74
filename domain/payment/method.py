"""
支付方式 - 将用户选择的支付渠道映射为规范化的 (payment_method, gateway_provider)
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from domain.common.exceptions import UnknownPaymentMethod


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    STRIPE = "stripe"
    PAYPAL = "paypal"


class GatewayProvider(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"


_METHOD_FOR_PROVIDER = {
    GatewayProvider.STRIPE: PaymentMethod.STRIPE,
    GatewayProvider.PAYPAL: PaymentMethod.PAYPAL,
}

# Accepted spellings, including the legacy "manual" / "gateway" choices
_CHOICE_ALIASES = {
    "bank_transfer": PaymentMethod.BANK_TRANSFER,
    "bank-transfer": PaymentMethod.BANK_TRANSFER,
    "manual": PaymentMethod.BANK_TRANSFER,
    "stripe": PaymentMethod.STRIPE,
    "card": PaymentMethod.STRIPE,
    "paypal": PaymentMethod.PAYPAL,
}


def provider_for(method: PaymentMethod) -> Optional[GatewayProvider]:
    """银行转账没有网关；网关类支付方式的 provider 与方式同名"""
    if method is PaymentMethod.BANK_TRANSFER:
        return None
    return GatewayProvider(method.value)


def method_for(provider: GatewayProvider) -> PaymentMethod:
    return _METHOD_FOR_PROVIDER[provider]


def parse_provider(value: Optional[str]) -> GatewayProvider:
    try:
        return GatewayProvider((value or "").strip().lower())
    except ValueError:
        raise UnknownPaymentMethod(value) from None


def resolve_method_choice(
    choice: Optional[str],
    gateway_provider: Optional[str] = None,
) -> tuple[PaymentMethod, Optional[GatewayProvider]]:
    """
    规范化支付方式选择

    支持：
    - bank_transfer / manual -> (BANK_TRANSFER, None)
    - stripe / paypal -> (STRIPE, STRIPE) / (PAYPAL, PAYPAL)
    - gateway + gateway_provider -> 由 provider 决定
    """
    key = (choice or "").strip().lower()
    if key == "gateway":
        if not gateway_provider:
            raise UnknownPaymentMethod(choice, gateway_provider)
        provider = parse_provider(gateway_provider)
        return method_for(provider), provider
    method = _CHOICE_ALIASES.get(key)
    if method is None:
        raise UnknownPaymentMethod(choice, gateway_provider)
    provider = provider_for(method)
    if gateway_provider and (provider is None or provider.value != gateway_provider.strip().lower()):
        # e.g. "stripe" with gateway_provider="paypal"
        raise UnknownPaymentMethod(choice, gateway_provider)
    return method, provider
