"""
Stripe Checkout Sessions adapter using the official stripe-python SDK.

Notes on SDK usage:
- Module-level resources with a per-call `api_key`, so several configs can
  coexist in one process (tests, multi-tenant). Idempotency keys are passed
  via the `idempotency_key` kwarg.
- SDK calls are blocking; they run in a worker thread bounded by the
  configured total timeout.
- Webhook verification uses `stripe.Webhook.construct_event` with the
  `Stripe-Signature` header.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from application.dtos.payments import CheckoutSession, CreateCheckoutSession
from core.logging_config import get_logger
from core.settings import PaymentGatewayConfig
from domain.common.exceptions import GatewayNotConfigured
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


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, config: PaymentGatewayConfig):
        super().__init__(timeouts=config.timeouts, retry=config.retry)
        missing = config.missing_credentials(self.provider)
        if missing:
            raise GatewayNotConfigured(self.provider, missing)
        self._config = config
        self._api_key = config.stripe.secret_key

    def _translate_error(self, exc: Exception) -> Exception:
        code = _get(exc, "code")
        if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError)):
            return PaymentRecoverableError(str(exc), provider=self.provider, provider_code=code)
        return PaymentProviderError(
            getattr(exc, "user_message", None) or str(exc),
            provider=self.provider,
            provider_code=code,
        )

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:  # type: ignore[override]
        metadata = {
            "order_id": req.order_id,
            "order_number": req.order_number,
            "user_id": req.user_id,
        }
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "quantity": line.quantity,
                    "price_data": {
                        "currency": req.currency.lower(),
                        "unit_amount": line.unit_amount,
                        "product_data": {
                            "name": line.name,
                            "metadata": {"product_id": line.product_id},
                        },
                    },
                }
                for line in req.lines
            ],
            "success_url": req.success_url,
            "cancel_url": req.cancel_url,
            "client_reference_id": req.order_id,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if req.customer_email:
            params["customer_email"] = req.customer_email
        if req.expires_at is not None:
            params["expires_at"] = int(req.expires_at.timestamp())

        try:
            session = await self._run_blocking(
                lambda: stripe.checkout.Session.create(
                    api_key=self._api_key,
                    idempotency_key=req.idempotency_key,
                    **params,
                )
            )
        except stripe.StripeError as exc:
            raise self._translate_error(exc) from exc

        reference = str(_get(session, "id"))
        expires_at = _get(session, "expires_at")
        expires_dt = datetime.fromtimestamp(expires_at, tz=timezone.utc) if expires_at else req.expires_at
        self._log("checkout_session_created", order_id=req.order_id, reference=reference)
        return CheckoutSession(
            provider=self.provider,
            reference=reference,
            redirect_url=str(_get(session, "url") or ""),
            expires_at=expires_dt,
            snapshot={
                "session_id": reference,
                "status": _get(session, "status"),
                "payment_status": _get(session, "payment_status"),
                "amount_total": _get(session, "amount_total", req.total_minor),
                "currency": req.currency,
                "total_minor": req.total_minor,
                "exponent": req.exponent,
                "expires_at": expires_dt.isoformat() if expires_dt else None,
            },
        )

    async def expire_session(self, reference: str) -> None:  # type: ignore[override]
        """Best effort: a session that already completed or expired cannot be expired."""
        try:
            await self._run_blocking(
                lambda: stripe.checkout.Session.expire(reference, api_key=self._api_key)
            )
            self._log("checkout_session_expired_remote", reference=reference)
        except (stripe.StripeError, PaymentRecoverableError) as exc:
            logger.warning("checkout_session_expire_failed", provider=self.provider, reference=reference, error=str(exc))

    async def _session_for_payment_intent(self, payment_intent_id: str) -> Optional[Any]:
        try:
            result = await self._run_blocking(
                lambda: stripe.checkout.Session.list(
                    payment_intent=payment_intent_id, limit=1, api_key=self._api_key
                )
            )
        except stripe.StripeError as exc:
            # Stripe will redeliver the event; the lookup may succeed later
            raise PaymentRecoverableError(str(exc), provider=self.provider, provider_code=_get(exc, "code")) from exc
        data = _get(result, "data") or []
        return data[0] if data else None

    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> GatewayEvent:  # type: ignore[override]
        secret = self._config.stripe.webhook_secret
        if not secret:
            raise GatewayNotConfigured(self.provider, "stripe.webhook_secret")
        sig = self._header(headers, "Stripe-Signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=secret,
                tolerance=self._config.webhook.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc
        except ValueError as exc:
            raise PaymentSignatureError("Invalid webhook payload", provider=self.provider) from exc

        event = json.loads(body)
        return await self._to_gateway_event(event)

    async def _to_gateway_event(self, event: dict[str, Any]) -> GatewayEvent:
        event_id = str(event.get("id") or "")
        event_type = str(event.get("type") or "")
        obj = (event.get("data") or {}).get("object") or {}
        created = event.get("created")
        occurred_at = datetime.fromtimestamp(created, tz=timezone.utc) if created else datetime.now(timezone.utc)

        if event_type.startswith("checkout.session."):
            metadata = obj.get("metadata") or {}
            common = dict(
                provider=self.provider,
                event_id=event_id,
                event_type=event_type,
                order_id=metadata.get("order_id") or obj.get("client_reference_id"),
                reference=obj.get("id"),
                occurred_at=occurred_at,
                snapshot={
                    "session_id": obj.get("id"),
                    "payment_intent": obj.get("payment_intent"),
                    "status": obj.get("status"),
                    "payment_status": obj.get("payment_status"),
                    "amount_total": obj.get("amount_total"),
                    "currency": (obj.get("currency") or "").upper() or None,
                },
            )
            if event_type == "checkout.session.completed":
                # Delayed methods complete the session before funds arrive
                if self._map_status(str(obj.get("payment_status"))) == "succeeded":
                    return PaymentSucceeded(**common)
                return UnhandledEvent(**common)
            if event_type == "checkout.session.async_payment_succeeded":
                return PaymentSucceeded(**common)
            if event_type == "checkout.session.async_payment_failed":
                return PaymentFailed(**common, reason="Asynchronous payment failed")
            if event_type == "checkout.session.expired":
                return SessionExpired(**common)
            return UnhandledEvent(**common)

        if event_type == "payment_intent.payment_failed":
            metadata = obj.get("metadata") or {}
            error = obj.get("last_payment_error") or {}
            session = await self._session_for_payment_intent(str(obj.get("id")))
            return PaymentFailed(
                provider=self.provider,
                event_id=event_id,
                event_type=event_type,
                order_id=metadata.get("order_id"),
                reference=str(_get(session, "id")) if session is not None else None,
                occurred_at=occurred_at,
                reason=error.get("message") or "Payment failed",
                snapshot={
                    "payment_intent": obj.get("id"),
                    "failure_code": error.get("code"),
                    "decline_code": error.get("decline_code"),
                },
            )

        return UnhandledEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            occurred_at=occurred_at,
        )
