"""AuditPort adapter writing order transitions to the structured log."""
from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal
from typing import Optional, Sequence

from application.ports.audit import AuditPort
from core.logging_config import get_logger
from domain.order.events import OrderEvent


logger = get_logger("audit")


def _plain(value):
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class StructlogAuditAdapter(AuditPort):
    async def record(self, events: Sequence[OrderEvent], *, actor: Optional[str] = None) -> None:
        for event in events:
            payload = {k: _plain(v) for k, v in asdict(event).items()}
            logger.info("audit_event", audit_type=event.name, actor=actor, **payload)
