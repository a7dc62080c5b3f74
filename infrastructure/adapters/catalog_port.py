"""Infrastructure adapter that implements the application CatalogPort
on top of the read-only products table.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from application.ports.catalog import CatalogPort, CatalogProduct
from infrastructure.database import AsyncSessionLocal
from infrastructure.models.product import ProductModel


class SQLAlchemyCatalogAdapter(CatalogPort):
    def __init__(self, session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
        self._session_factory = session_factory

    async def get_products(self, product_ids: Iterable[str]) -> dict[str, CatalogProduct]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(ProductModel).where(ProductModel.id.in_(ids)))
            rows = result.scalars().all()
        return {
            row.id: CatalogProduct(
                id=row.id,
                name=row.name,
                price=Decimal(str(row.price)),
                is_published=bool(row.is_published),
                is_sold_out=bool(row.is_sold_out),
            )
            for row in rows
        }
