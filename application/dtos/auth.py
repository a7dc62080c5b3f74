"""
调用方身份 - 由外部身份服务签发的 JWT 解析而来（本服务不签发令牌）
"""
from typing import Iterable, Optional

from pydantic import BaseModel, Field


class Principal(BaseModel):
    sub: str
    email: Optional[str] = None
    name: Optional[str] = None
    is_superuser: bool = False
    roles: list[str] = Field(default_factory=list)

    @property
    def user_id(self) -> str:
        return self.sub

    def has_any_role(self, roles: Iterable[str]) -> bool:
        wanted = {r.lower() for r in roles}
        return any(r.lower() in wanted for r in self.roles)

    def can_review(self, reviewer_roles: Iterable[str]) -> bool:
        return self.is_superuser or self.has_any_role(reviewer_roles)
