"""Unit of Work 抽象定义

一个工作单元对应一个数据库事务。订单的乐观锁写入（版本号条件更新）与
凭证审核写入必须在同一工作单元内提交，任一失败则整体回滚。
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.order.repository import OrderRepository, PaymentProofRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界

    readonly=True 时不开启显式事务也不提交，用于查询与网关调用前的读取。
    退出时：有异常回滚，否则自动提交。
    """

    order_repository: OrderRepository
    payment_proof_repository: PaymentProofRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            await self.rollback()
        elif not self._readonly and not self._committed:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...
