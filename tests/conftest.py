"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings. Every test gets
its own sqlite database file; services are wired with in-memory fakes for
the catalog, the audit sink and the payment gateways.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import partial

import pytest
import pytest_asyncio

from application.dtos.orders import CreateOrderRequest
from application.dtos.payments import CheckoutSession, CreateCheckoutSession
from application.ports.catalog import CatalogProduct
from application.services.checkout_session_service import CheckoutSessionService
from application.services.order_service import OrderApplicationService
from application.services.payment_method_service import PaymentMethodService
from application.services.payment_proof_service import PaymentProofService
from application.services.webhook_reconciler import WebhookReconciler
from core.config import StoreSettings
from core.settings import (
    BankTransferSettings,
    PaymentGatewayConfig,
    PayPalSettings,
    StripeSettings,
)
from domain.payment.events import GatewayEvent
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


PRODUCTS = {
    "ebook": CatalogProduct(id="ebook", name="Python Ebook", price=Decimal("150000")),
    "course": CatalogProduct(id="course", name="Video Course", price=Decimal("75000.50")),
    "sticker": CatalogProduct(id="sticker", name="Sticker Pack", price=Decimal("5000")),
    "draft": CatalogProduct(id="draft", name="Draft", price=Decimal("1000"), is_published=False),
    "gone": CatalogProduct(id="gone", name="Sold Out", price=Decimal("1000"), is_sold_out=True),
}


class StubCatalog:
    def __init__(self, products=None):
        self.products = dict(products or PRODUCTS)

    async def get_products(self, product_ids):
        return {pid: self.products[pid] for pid in product_ids if pid in self.products}


class RecordingAudit:
    def __init__(self):
        self.records = []

    async def record(self, events, *, actor=None):
        self.records.extend((event, actor) for event in events)

    @property
    def names(self):
        return [event.name for event, _ in self.records]


class FakeGateway:
    """In-memory hosted-checkout gateway: sequential references, queued webhook events."""

    _counter = itertools.count(1)

    def __init__(self, provider: str):
        self.provider = provider
        self.requests: list[CreateCheckoutSession] = []
        self.expired: list[str] = []
        self.captured: list[str] = []
        self.next_event: GatewayEvent | None = None
        self.capture_event: GatewayEvent | None = None
        self.closed = False

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:
        self.requests.append(req)
        reference = f"{self.provider}_sess_{next(self._counter)}"
        return CheckoutSession(
            provider=self.provider,
            reference=reference,
            redirect_url=f"https://pay.example/{reference}",
            expires_at=req.expires_at,
            snapshot={"total_minor": req.total_minor, "currency": req.currency},
        )

    async def expire_session(self, reference: str) -> None:
        self.expired.append(reference)

    async def parse_webhook(self, headers, body) -> GatewayEvent:
        assert self.next_event is not None
        return self.next_event

    async def capture_order(self, reference: str) -> GatewayEvent:
        self.captured.append(reference)
        assert self.capture_event is not None
        return self.capture_event

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def payment_config() -> PaymentGatewayConfig:
    # IDR 不在 PayPal 默认币种表中，测试店铺显式开通
    paypal = PayPalSettings(
        client_id="paypal-client",
        client_secret="paypal-secret",
        webhook_id="WH-TEST",
        unit_exponents={**PayPalSettings().unit_exponents, "IDR": 2},
    )
    return PaymentGatewayConfig(
        stripe=StripeSettings(secret_key="sk_test_123", webhook_secret="whsec_test"),
        paypal=paypal,
        bank_transfer=BankTransferSettings(bank_name="BCA", account_name="Toko Digital", account_number="1234567890"),
    )


@pytest.fixture
def store() -> StoreSettings:
    return StoreSettings(currency="IDR", order_number_prefix="ORD")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return partial(SQLAlchemyUnitOfWork, build_session_factory(engine))


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def gateways():
    return {"stripe": FakeGateway("stripe"), "paypal": FakeGateway("paypal")}


@pytest.fixture
def resolve_gateway(gateways):
    return lambda provider: gateways[provider]


@pytest.fixture
def order_service(uow_factory, payment_config, store, audit, resolve_gateway):
    return OrderApplicationService(
        uow_factory=uow_factory,
        catalog=StubCatalog(),
        config=payment_config,
        store=store,
        audit=audit,
        gateways=resolve_gateway,
    )


@pytest.fixture
def method_service(uow_factory, payment_config, audit, resolve_gateway):
    return PaymentMethodService(uow_factory=uow_factory, config=payment_config, audit=audit, gateways=resolve_gateway)


@pytest.fixture
def checkout_service(uow_factory, payment_config, audit, resolve_gateway):
    return CheckoutSessionService(uow_factory=uow_factory, config=payment_config, gateways=resolve_gateway, audit=audit)


@pytest.fixture
def proof_service(uow_factory, store, audit):
    return PaymentProofService(uow_factory=uow_factory, store=store, audit=audit)


@pytest.fixture
def reconciler(uow_factory, payment_config, audit, resolve_gateway):
    return WebhookReconciler(uow_factory=uow_factory, config=payment_config, gateways=resolve_gateway, audit=audit)


@pytest.fixture
def place_order(order_service):
    async def _place(payment_method="stripe", items=None, user_id="user-1", **extra):
        request = CreateOrderRequest(
            items=items or [{"product_id": "ebook", "quantity": 1}],
            payment_method=payment_method,
            **extra,
        )
        return await order_service.create_order(user_id, request)

    return _place


@pytest.fixture
def load_order(uow_factory):
    async def _load(order_id):
        async with uow_factory(readonly=True) as uow:
            return await uow.order_repository.get_by_id(order_id)

    return _load


def utc(minutes: int = 0) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)
