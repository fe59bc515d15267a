"""
core/security/store.py - 角色分配存储接口

定义 IRoleAssignmentStore 抽象接口，app 层用数据库实现。
"没有分配" 是正常状态：查询返回空集合，不抛异常；存储不可达时抛 StoreUnavailable。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Set

from core.security.legacy import LegacyRole
from core.security.permission import PermissionGrant
from core.security.scope import TenantScope


@dataclass(frozen=True)
class RoleRef:
    """生效中的自定义角色分配"""
    role_id: int
    name: str
    priority: int = 0
    is_system_role: bool = False
    tenant: TenantScope = field(default_factory=TenantScope)
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class Principal:
    """用户的基础租户属性与旧版角色字段"""
    user_id: int
    legacy_role: Optional[LegacyRole] = None
    tenant: TenantScope = field(default_factory=TenantScope)
    is_active: bool = True


class IRoleAssignmentStore(ABC):
    """角色分配存储接口"""

    @abstractmethod
    def granted_permissions(self, role_id: int) -> Set[PermissionGrant]:
        """角色上的授权 / 拒绝记录"""

    @abstractmethod
    def active_role_assignments(self, user_id: int, as_of: datetime) -> List[RoleRef]:
        """is_active 且 (expires_at 为空或晚于 as_of) 的角色分配"""

    @abstractmethod
    def overrides(self, user_id: int, as_of: Optional[datetime] = None) -> Set[PermissionGrant]:
        """用户直接授权 / 拒绝记录"""

    @abstractmethod
    def principal(self, user_id: int) -> Optional[Principal]:
        """用户的旧版角色与租户属性；用户不存在时返回 None"""

    def users_with_role(self, role_id: int) -> List[int]:
        """持有某角色的用户（用于失效缓存）"""
        return []


__all__ = ["RoleRef", "Principal", "IRoleAssignmentStore"]
