"""Application-owned catalog port.

Product CRUD lives outside this service; order placement only needs the
current name, price and availability of the requested products.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol, runtime_checkable


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    name: str
    price: Decimal
    is_published: bool = True
    is_sold_out: bool = False

    @property
    def purchasable(self) -> bool:
        return self.is_published and not self.is_sold_out


@runtime_checkable
class CatalogPort(Protocol):
    async def get_products(self, product_ids: Iterable[str]) -> dict[str, CatalogProduct]:
        """Products keyed by id; unknown ids are simply absent."""
        ...
