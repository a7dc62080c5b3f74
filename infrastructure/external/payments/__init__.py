"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import PaymentGatewayConfig, get_payment_config
from application.ports.payment_gateway import PaymentGateway
from domain.payment.method import GatewayProvider, parse_provider


def get_payment_gateway(provider: str, config: Optional[PaymentGatewayConfig] = None) -> PaymentGateway:
    """Build the adapter for provider; raises GatewayNotConfigured when credentials are missing."""
    config = config or get_payment_config()
    name = parse_provider(provider)
    if name is GatewayProvider.STRIPE:
        from .stripe_client import StripeClient
        return StripeClient(config)
    if name is GatewayProvider.PAYPAL:
        from .paypal_client import PayPalClient
        return PayPalClient(config)
    raise ValueError(f"Unsupported payment provider: {provider}")
