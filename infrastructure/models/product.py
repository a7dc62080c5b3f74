"""
商品目录只读映射

商品的维护不在本服务内，这里只读取下单所需的名称、价格与上架状态
"""
from sqlalchemy import Column, String, Numeric, Boolean, DateTime
from datetime import datetime, timezone

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="当前售价（店铺币种）")
    is_published = Column(Boolean, nullable=False, default=True)
    is_sold_out = Column(Boolean, nullable=False, default=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<ProductModel(id='{self.id}', name='{self.name}', price={self.price})>"
