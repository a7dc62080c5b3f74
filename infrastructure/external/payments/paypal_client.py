"""
PayPal Orders v2 adapter over httpx.

- OAuth2 client-credentials token, cached until shortly before expiry.
- Hosted checkout = a CAPTURE-intent order; the buyer approves it on PayPal
  and is sent back to our return URL, where the order is captured.
- Webhooks are verified by PayPal itself via
  /v1/notifications/verify-webhook-signature using the transmission headers.
"""
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Optional

import httpx

from application.dtos.payments import CheckoutSession, CreateCheckoutSession
from core.logging_config import get_logger
from core.settings import PaymentGatewayConfig
from domain.common.exceptions import GatewayNotConfigured
from domain.payment.amounts import format_minor_units
from domain.payment.events import (
    GatewayEvent,
    PaymentFailed,
    PaymentSucceeded,
    SessionExpired,
    UnhandledEvent,
)
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)


logger = get_logger(__name__)

_SIGNATURE_HEADERS = {
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
    "cert_url": "PAYPAL-CERT-URL",
    "auth_algo": "PAYPAL-AUTH-ALGO",
}

_SUCCEEDED_EVENTS = {"PAYMENT.CAPTURE.COMPLETED", "CHECKOUT.ORDER.COMPLETED"}
_FAILED_EVENTS = {"PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"}
_EXPIRED_EVENTS = {"CHECKOUT.ORDER.VOIDED"}

# Token is refreshed this many seconds before PayPal says it expires
_TOKEN_SKEW_SECONDS = 60


class PayPalClient(BasePaymentClient):
    provider = "paypal"

    def __init__(self, config: PaymentGatewayConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            timeouts=config.timeouts,
            retry=config.retry,
            base_url=config.paypal.base_url,
            transport=transport,
        )
        missing = config.missing_credentials(self.provider)
        if missing:
            raise GatewayNotConfigured(self.provider, missing)
        self._config = config
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        name = body.get("name") or body.get("error")
        issue = None
        details = body.get("details") or []
        if details:
            issue = details[0].get("issue")
        message = body.get("message") or body.get("error_description") or f"PayPal HTTP {resp.status_code}"
        if resp.status_code == 429 or resp.status_code >= 500:
            raise PaymentRecoverableError(message, provider=self.provider, provider_code=name)
        raise PaymentProviderError(
            message,
            provider=self.provider,
            provider_code=name,
            details={"status_code": resp.status_code, "issue": issue},
        )

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            async with self.client() as c:
                resp = await self._retry(lambda: c.post(
                    "/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self._config.paypal.client_id, self._config.paypal.client_secret),
                ))
            self._raise_for_status(resp)
            body = resp.json()
            self._token = body["access_token"]
            expires_in = int(body.get("expires_in") or 0)
            self._token_expires_at = time.monotonic() + max(expires_in - _TOKEN_SKEW_SECONDS, 0)
            self._log("paypal_token_refreshed", expires_in=expires_in)
            return self._token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        token = await self._access_token()
        request_headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            **(headers or {}),
        }
        async with self.client() as c:
            resp = await self._retry(lambda: c.request(method, path, json=json_body, headers=request_headers))
        if resp.status_code == 401:
            # Revoked or rotated credentials; next call fetches a new token
            self._token = None
            raise PaymentRecoverableError("PayPal token rejected", provider=self.provider, provider_code="401")
        self._raise_for_status(resp)
        return resp.json() if resp.content else {}

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:  # type: ignore[override]
        currency = req.currency.upper()
        total = format_minor_units(req.total_minor, req.exponent)
        context: dict[str, Any] = {
            "return_url": req.success_url,
            "cancel_url": req.cancel_url,
            "user_action": "PAY_NOW",
            "shipping_preference": "NO_SHIPPING",
        }
        brand = req.brand_name or self._config.paypal.brand_name
        if brand:
            context["brand_name"] = brand

        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": req.order_id,
                    "custom_id": req.order_id,
                    "invoice_id": req.order_number,
                    "amount": {
                        "currency_code": currency,
                        "value": total,
                        "breakdown": {"item_total": {"currency_code": currency, "value": total}},
                    },
                    "items": [
                        {
                            "name": line.name[:127],
                            "sku": line.product_id,
                            "quantity": str(line.quantity),
                            "category": "DIGITAL_GOODS",
                            "unit_amount": {
                                "currency_code": currency,
                                "value": format_minor_units(line.unit_amount, req.exponent),
                            },
                        }
                        for line in req.lines
                    ],
                }
            ],
            "application_context": context,
        }
        headers = {"PayPal-Request-Id": req.idempotency_key} if req.idempotency_key else None
        data = await self._request("POST", "/v2/checkout/orders", json_body=body, headers=headers)

        reference = str(data.get("id") or "")
        approve_url = next(
            (link.get("href") for link in data.get("links") or [] if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if not reference or not approve_url:
            raise PaymentProviderError("PayPal did not return an approval link", provider=self.provider)

        self._log("checkout_session_created", order_id=req.order_id, reference=reference)
        return CheckoutSession(
            provider=self.provider,
            reference=reference,
            redirect_url=approve_url,
            expires_at=req.expires_at,
            snapshot={
                "paypal_order_id": reference,
                "status": data.get("status"),
                "amount": total,
                "currency": currency,
                "total_minor": req.total_minor,
                "exponent": req.exponent,
            },
        )

    async def capture_order(self, reference: str) -> GatewayEvent:
        """Capture an approved order; an already-captured order is read back instead."""
        try:
            data = await self._request(
                "POST",
                f"/v2/checkout/orders/{reference}/capture",
                json_body={},
                headers={"PayPal-Request-Id": f"capture-{reference}"},
            )
        except PaymentProviderError as exc:
            if (exc.details or {}).get("issue") != "ORDER_ALREADY_CAPTURED":
                raise
            data = await self._request("GET", f"/v2/checkout/orders/{reference}")

        units = data.get("purchase_units") or [{}]
        captures = ((units[0].get("payments") or {}).get("captures")) or []
        capture = captures[0] if captures else {}
        status = capture.get("status") or data.get("status") or ""
        common = dict(
            provider=self.provider,
            event_id=f"capture:{reference}",
            event_type="CAPTURE",
            order_id=units[0].get("custom_id") or units[0].get("reference_id"),
            reference=reference,
            snapshot={
                "paypal_order_id": reference,
                "order_status": data.get("status"),
                "capture_id": capture.get("id"),
                "capture_status": capture.get("status"),
                "amount": (capture.get("amount") or {}).get("value"),
                "currency": (capture.get("amount") or {}).get("currency_code"),
            },
        )
        mapped = self._map_status(status)
        self._log("paypal_order_captured", reference=reference, status=status)
        if mapped == "succeeded":
            return PaymentSucceeded(**common)
        if mapped == "failed":
            reason = (capture.get("status_details") or {}).get("reason")
            return PaymentFailed(**common, reason=reason or "PayPal capture declined")
        return UnhandledEvent(**common)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> GatewayEvent:  # type: ignore[override]
        webhook_id = self._config.paypal.webhook_id
        if not webhook_id:
            raise GatewayNotConfigured(self.provider, "paypal.webhook_id")

        verification: dict[str, Any] = {}
        for field_name, header in _SIGNATURE_HEADERS.items():
            value = self._header(headers, header)
            if not value:
                raise PaymentSignatureError(f"Missing {header} header", provider=self.provider)
            verification[field_name] = value
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise PaymentSignatureError("Invalid webhook payload", provider=self.provider) from exc

        verification["webhook_id"] = webhook_id
        verification["webhook_event"] = event
        try:
            result = await self._request(
                "POST", "/v1/notifications/verify-webhook-signature", json_body=verification
            )
        except PaymentProviderError as exc:
            raise PaymentSignatureError(exc.message, provider=self.provider) from exc
        if result.get("verification_status") != "SUCCESS":
            raise PaymentSignatureError("PayPal webhook signature verification failed", provider=self.provider)

        return self._to_gateway_event(event)

    def _to_gateway_event(self, event: dict[str, Any]) -> GatewayEvent:
        event_type = str(event.get("event_type") or "")
        resource = event.get("resource") or {}

        if event_type.startswith("PAYMENT.CAPTURE."):
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            reference = related.get("order_id")
            order_id = resource.get("custom_id")
        else:
            units = resource.get("purchase_units") or [{}]
            reference = resource.get("id")
            order_id = units[0].get("custom_id") or units[0].get("reference_id")

        common = dict(
            provider=self.provider,
            event_id=str(event.get("id") or ""),
            event_type=event_type,
            order_id=order_id,
            reference=reference,
            snapshot={
                "paypal_order_id": reference,
                "resource_id": resource.get("id"),
                "status": resource.get("status"),
                "amount": (resource.get("amount") or {}).get("value"),
                "currency": (resource.get("amount") or {}).get("currency_code"),
            },
        )
        if event_type in _SUCCEEDED_EVENTS:
            return PaymentSucceeded(**common)
        if event_type in _FAILED_EVENTS:
            reason = (resource.get("status_details") or {}).get("reason")
            return PaymentFailed(**common, reason=reason or "PayPal capture denied")
        if event_type in _EXPIRED_EVENTS:
            return SessionExpired(**common)
        return UnhandledEvent(**common)
