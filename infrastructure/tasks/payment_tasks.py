"""
Celery tasks for payment housekeeping: expire gateway sessions whose webhook
never arrived so the customer can retry or switch method.
"""
from __future__ import annotations

import asyncio
from functools import partial

from celery import shared_task

from application.ports.payment_gateway import PaymentGateway
from application.services.webhook_reconciler import WebhookReconciler
from core.config import settings
from core.logging_config import get_logger
from core.settings import get_payment_config
from domain.common.exceptions import PaymentDependencyError
from infrastructure.adapters.audit_port import StructlogAuditAdapter
from infrastructure.database import build_engine, build_session_factory
from infrastructure.external.payments import get_payment_gateway
from infrastructure.tasks.utils.base_task import BaseTask
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


async def _expire_stale_sessions(limit: int | None) -> dict[str, int]:
    # asyncio.run gives every task its own loop; pooled connections cannot cross loops
    engine = build_engine(settings.database.url)
    gateways: dict[str, PaymentGateway] = {}
    config = get_payment_config()

    def resolve(provider: str) -> PaymentGateway:
        if provider not in gateways:
            gateways[provider] = get_payment_gateway(provider, config)
        return gateways[provider]

    reconciler = WebhookReconciler(
        uow_factory=partial(SQLAlchemyUnitOfWork, build_session_factory(engine)),
        config=config,
        gateways=resolve,
        audit=StructlogAuditAdapter(),
    )
    try:
        return await reconciler.expire_stale_sessions(limit=limit)
    finally:
        for gateway in gateways.values():
            await gateway.aclose()
        await engine.dispose()


@shared_task(
    name="payments.expire_stale_sessions",
    base=BaseTask,
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def task_expire_stale_sessions(self, limit: int | None = None) -> dict[str, int]:
    try:
        counts = asyncio.run(_expire_stale_sessions(limit))
    except PaymentDependencyError as exc:
        logger.warning("stale_session_sweep_retry", error=exc.message)
        raise self.retry(exc=exc)
    logger.info("stale_session_sweep_done", **counts)
    return counts
