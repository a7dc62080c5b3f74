"""
订单仓储接口 - 定义订单与支付凭证数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Order, PaymentProof


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """写入订单头与明细；订单号冲突时抛出 OrderNumberConflict"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单（含明细）"""
        pass

    @abstractmethod
    async def get_by_gateway_reference(self, provider: str, reference: str) -> Optional[Order]:
        """根据当前绑定的网关会话引用获取订单"""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: str, skip: int = 0, limit: int = 20) -> List[Order]:
        """获取用户的订单列表（按创建时间倒序）"""
        pass

    @abstractmethod
    async def count_by_user(self, user_id: str) -> int:
        """统计用户订单数量"""
        pass

    @abstractmethod
    async def list_stale_sessions(self, updated_before: datetime, limit: int = 100) -> List[Order]:
        """获取会话处理中且长时间未更新的订单"""
        pass

    @abstractmethod
    async def save(self, order: Order, *, expected_version: int, require_unpaid: bool = False) -> bool:
        """
        条件更新（比较并交换）

        仅当数据库中的版本仍为 expected_version（且 require_unpaid 时支付状态不为 paid）
        才写入；返回是否写入成功。成功后 order.version 递增。
        """
        pass


class PaymentProofRepository(ABC):
    """支付凭证仓储抽象接口"""

    @abstractmethod
    async def add(self, proof: PaymentProof) -> PaymentProof:
        """创建凭证记录"""
        pass

    @abstractmethod
    async def get_by_id(self, proof_id: int) -> Optional[PaymentProof]:
        pass

    @abstractmethod
    async def list_by_order(self, order_id: str) -> List[PaymentProof]:
        """订单的全部凭证（含已拒绝），按提交时间正序"""
        pass

    @abstractmethod
    async def list_pending(self, skip: int = 0, limit: int = 20) -> List[PaymentProof]:
        pass

    @abstractmethod
    async def count_pending(self) -> int:
        pass

    @abstractmethod
    async def record_decision(self, proof: PaymentProof) -> bool:
        """仅当凭证仍为 pending 时写入审核结果；返回是否写入成功"""
        pass

    @abstractmethod
    async def reject_pending_for_order(self, order_id: str, *, reason: str, reviewed_at: datetime) -> int:
        """订单取消时关闭其待审核凭证，返回影响行数"""
        pass
