"""
Payment gateway settings using pydantic-settings v2 with nested env keys.

The configuration object is built once at the composition root and passed
explicitly into the checkout/reconciliation services and gateway adapters,
so tests can substitute fixtures without touching process-wide state.

Env examples: PAYMENT__STRIPE__SECRET_KEY, PAYMENT__PAYPAL__WEBHOOK_ID,
PAYMENT__SESSION_TTL_SECONDS.
"""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Stripe: amounts are always in the smallest unit; these currencies have none.
# IDR is deliberately two-decimal here: Stripe expects IDR amounts x100.
_STRIPE_ZERO_DECIMAL = (
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
)
_STRIPE_TWO_DECIMAL = (
    "IDR", "USD", "EUR", "GBP", "AUD", "CAD", "SGD", "MYR", "PHP", "THB", "HKD", "NZD",
)

# PayPal: decimal strings; a currency absent from the table is unsupported.
_PAYPAL_ZERO_DECIMAL = ("JPY", "HUF", "TWD")
_PAYPAL_TWO_DECIMAL = ("USD", "EUR", "GBP", "AUD", "CAD", "SGD", "HKD", "NZD", "PHP", "THB", "MYR")


def _exponents(zero: tuple[str, ...], two: tuple[str, ...]) -> dict[str, int]:
    table = {code: 0 for code in zero}
    table.update({code: 2 for code in two})
    return table


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class CheckoutUrls(BaseModel):
    # {order_id} is substituted; Stripe also fills {CHECKOUT_SESSION_ID}
    success_url: str = "http://localhost:3000/order/success?order_id={order_id}"
    cancel_url: str = "http://localhost:3000/order/{order_id}/payment?canceled=1"
    paypal_return_url: str = "http://localhost:8000/api/v1/payments/paypal/capture?order_id={order_id}"
    failure_url: str = "http://localhost:3000/order/{order_id}/payment?failed=1"


class StripeSettings(BaseModel):
    enabled: bool = True
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    # Business-unit minimums per currency
    minimums: dict[str, Decimal] = Field(default_factory=lambda: {
        "IDR": Decimal("7000"),
        "USD": Decimal("0.50"),
        "EUR": Decimal("0.50"),
    })
    default_minimum: Optional[Decimal] = None
    unit_exponents: dict[str, int] = Field(
        default_factory=lambda: _exponents(_STRIPE_ZERO_DECIMAL, _STRIPE_TWO_DECIMAL)
    )


class PayPalSettings(BaseModel):
    enabled: bool = True
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    webhook_id: Optional[str] = None
    environment: Literal["sandbox", "live"] = "sandbox"
    brand_name: Optional[str] = None
    minimums: dict[str, Decimal] = Field(default_factory=dict)
    default_minimum: Optional[Decimal] = None
    unit_exponents: dict[str, int] = Field(
        default_factory=lambda: _exponents(_PAYPAL_ZERO_DECIMAL, _PAYPAL_TWO_DECIMAL)
    )

    @property
    def base_url(self) -> str:
        if self.environment == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


class BankTransferSettings(BaseModel):
    enabled: bool = True
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None


class PaymentGatewayConfig(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    urls: CheckoutUrls = Field(default_factory=CheckoutUrls)

    # Gateway session lifetime (Stripe accepts 30 minutes to 24 hours)
    session_ttl_seconds: int = 1800
    # Extra wait before the sweep expires a PROCESSING order locally
    sweep_grace_seconds: int = 600
    sweep_batch_size: int = 100
    # Celery beat interval for the stale-session sweep
    sweep_interval_seconds: int = 300
    # Optimistic-concurrency attempts for a single webhook event
    reconcile_max_attempts: int = 3

    stripe: StripeSettings = Field(default_factory=StripeSettings)
    paypal: PayPalSettings = Field(default_factory=PayPalSettings)
    bank_transfer: BankTransferSettings = Field(default_factory=BankTransferSettings)

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    def missing_credentials(self, provider: str) -> Optional[str]:
        """Name of the first missing credential for provider, or None."""
        if provider == "stripe":
            if not self.stripe.secret_key:
                return "stripe.secret_key"
            return None
        if provider == "paypal":
            if not self.paypal.client_id:
                return "paypal.client_id"
            if not self.paypal.client_secret:
                return "paypal.client_secret"
            return None
        return None

    def supports_currency(self, provider: str, currency: str) -> bool:
        """Whether provider has a unit exponent configured for currency."""
        if provider == "stripe":
            return currency.upper() in self.stripe.unit_exponents
        if provider == "paypal":
            return currency.upper() in self.paypal.unit_exponents
        return False

    def is_enabled(self, method: str, currency: Optional[str] = None) -> bool:
        """Whether a payment method can be offered to customers right now.

        With currency given, a gateway that cannot charge in it counts as disabled.
        """
        if method == "bank_transfer":
            return self.bank_transfer.enabled
        if method == "stripe":
            enabled = self.stripe.enabled and self.missing_credentials("stripe") is None
        elif method == "paypal":
            enabled = self.paypal.enabled and self.missing_credentials("paypal") is None
        else:
            return False
        if enabled and currency:
            return self.supports_currency(method, currency)
        return enabled


@lru_cache()
def get_payment_config() -> PaymentGatewayConfig:
    return PaymentGatewayConfig()
