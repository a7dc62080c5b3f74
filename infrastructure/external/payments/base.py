"""
Base payment client implementing shared concerns: http, retry, timeouts, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import PaymentRetry, PaymentTimeouts
from application.dtos.payments import CheckoutSession, CreateCheckoutSession
from application.ports.payment_gateway import PaymentGateway
from domain.payment.events import GatewayEvent
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[PaymentTimeouts] = None,
        retry: Optional[PaymentRetry] = None,
        base_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or PaymentTimeouts()
        self._retry_cfg = retry or PaymentRetry()
        self._base_url = base_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg.connect,
            read=self._timeouts_cfg.read,
            write=self._timeouts_cfg.write,
            pool=self._timeouts_cfg.total,
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self.timeouts,
                transport=self._transport,
            )
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        """Retry transport failures, then surface them as a recoverable gateway error."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(int(self._retry_cfg.max) + 1),
                wait=wait_exponential(multiplier=self._retry_cfg.base_backoff, min=0.1, max=2.0),
                retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
                reraise=True,
            ):
                with attempt:
                    return await asyncio.wait_for(fn(), timeout=self._timeouts_cfg.total)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise PaymentRecoverableError(
                f"{self.provider} request timed out", provider=self.provider, provider_code="timeout"
            ) from exc
        except httpx.TransportError as exc:
            raise PaymentRecoverableError(
                f"{self.provider} unreachable: {exc}", provider=self.provider, provider_code="transport"
            ) from exc

    async def _run_blocking(self, fn: Callable[[], Any]):
        """Run a blocking SDK call in a worker thread, bounded by the total timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self._timeouts_cfg.total)
        except asyncio.TimeoutError as exc:
            raise PaymentRecoverableError(
                f"{self.provider} request timed out", provider=self.provider, provider_code="timeout"
            ) from exc

    # Default implementations raise to force override where needed
    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:  # type: ignore[override]
        raise NotImplementedError

    async def expire_session(self, reference: str) -> None:  # type: ignore[override]
        self._log("payment_session_expire_skipped", reference=reference)

    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> GatewayEvent:  # type: ignore[override]
        raise NotImplementedError

    # Helpers
    @staticmethod
    def _header(headers: dict[str, Any], name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lname = name.lower()
        for key, value in headers.items():
            if key.lower() == lname:
                return value
        return None

    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
