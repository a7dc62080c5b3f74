"""
Gateway event variants.

Provider adapters translate raw webhook payloads into this closed set of
dataclass events so reconciliation stays provider-agnostic. Domain remains
free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass
class GatewayEvent:
    provider: str
    event_id: str
    event_type: str
    order_id: Optional[str] = None  # from event metadata, when present
    reference: Optional[str] = None  # checkout session / provider order id
    snapshot: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentSucceeded(GatewayEvent):
    pass


@dataclass
class SessionExpired(GatewayEvent):
    pass


@dataclass
class PaymentFailed(GatewayEvent):
    reason: Optional[str] = None


@dataclass
class UnhandledEvent(GatewayEvent):
    pass
