"""Application-owned audit port.

Receives read-only notifications of order transitions after they commit.
Audit storage itself is an external collaborator.
"""
from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from domain.order.events import OrderEvent


@runtime_checkable
class AuditPort(Protocol):
    async def record(self, events: Sequence[OrderEvent], *, actor: Optional[str] = None) -> None: ...
