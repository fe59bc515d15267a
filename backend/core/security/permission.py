"""
core/security/permission.py - 权限三元组与聚合结果类型

权限统一表示为类型化的 (resource, action, scope) 三元组，构造时即校验，
避免种子脚本与守卫之间字符串字面量不一致导致的授权错误。
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set, Tuple, Union

from core.security.errors import InvalidPermission
from core.security.scope import ScopeLevel, TenantScope

WILDCARD = "*"

_IDENTIFIER = re.compile(r"^(\*|[a-z][a-z0-9_\-]*)$")


@dataclass(frozen=True)
class Permission:
    """
    权限定义

    Attributes:
        resource: 资源类型 (如 "reservation", "guest", "unit", "*")
        action: 操作类型 (如 "read", "update", "*")
        scope: 作用域级别
    """

    resource: str
    action: str
    scope: ScopeLevel

    def __post_init__(self):
        for name in ("resource", "action"):
            value = getattr(self, name)
            if not isinstance(value, str):
                raise InvalidPermission(f"Invalid permission {name}: {value!r}")
            normalized = value.strip().lower()
            if not _IDENTIFIER.match(normalized):
                raise InvalidPermission(f"Invalid permission {name}: {value!r}")
            object.__setattr__(self, name, normalized)
        try:
            object.__setattr__(self, "scope", ScopeLevel.parse(self.scope))
        except ValueError as e:
            raise InvalidPermission(str(e)) from None

    def __str__(self) -> str:
        return f"{self.resource}.{self.action}.{self.scope.value}"

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.resource, self.action, self.scope.value)

    @property
    def is_wildcard(self) -> bool:
        return self.resource == WILDCARD or self.action == WILDCARD

    def require_concrete(self) -> "Permission":
        """要求必须是具体的权限（通配符只允许出现在授权上）"""
        if self.is_wildcard:
            raise InvalidPermission(f"Requirement must be concrete: {self}")
        return self

    def matches_target(self, required: "Permission") -> bool:
        """资源 / 操作匹配（支持授权侧通配符，不比较作用域）"""
        if self.resource != WILDCARD and self.resource != required.resource:
            return False
        if self.action != WILDCARD and self.action != required.action:
            return False
        return True

    @classmethod
    def parse(cls, value: Union[str, "Permission"]) -> "Permission":
        """
        从 "resource.action.scope" 字符串解析

        Raises:
            InvalidPermission: 格式不是三段式
        """
        if isinstance(value, Permission):
            return value
        if not isinstance(value, str):
            raise InvalidPermission(f"Invalid permission: {value!r}")
        parts = value.split(".")
        if len(parts) != 3:
            raise InvalidPermission(
                f"Invalid permission format: {value!r}. Expected resource.action.scope"
            )
        resource, action, scope = (p.strip() for p in parts)
        return cls(resource=resource, action=action, scope=scope)

    @classmethod
    def of(cls, resource: str, action: str, scope: Union[str, ScopeLevel]) -> "Permission":
        return cls(resource=resource, action=action, scope=scope)


PermissionLike = Union[str, Permission]


class GrantSource(str, Enum):
    """授权来源"""
    ROLE = "role"
    OVERRIDE = "override"
    LEGACY = "legacy"


class Provenance(str, Enum):
    """有效权限集合的来源标记（审计用）"""
    CUSTOM_ROLE = "custom_role"
    LEGACY = "legacy"


@dataclass(frozen=True)
class PermissionGrant:
    """单条授权 / 拒绝记录"""
    permission: Permission
    granted: bool = True
    source: GrantSource = GrantSource.ROLE
    tenant: TenantScope = field(default_factory=TenantScope)
    role_id: Optional[int] = None
    # 来源记录（分配 / 直接授权）的到期时间，不参与相等比较
    expires_at: Optional[datetime] = field(default=None, compare=False)


@dataclass(frozen=True)
class ResolvedPermission:
    """冲突消解后的权限条目（拒绝优先）"""
    permission: Permission
    granted: bool
    tenants: FrozenSet[TenantScope] = frozenset()
    sources: FrozenSet[GrantSource] = frozenset()

    def to_dict(self) -> Dict:
        return {
            "permission": str(self.permission),
            "resource": self.permission.resource,
            "action": self.permission.action,
            "scope": self.permission.scope.value,
            "granted": self.granted,
            "sources": sorted(s.value for s in self.sources),
        }


@dataclass
class EffectivePermissions:
    """某用户在某一时刻的有效权限集合"""
    user_id: int
    entries: Dict[Permission, ResolvedPermission] = field(default_factory=dict)
    provenance: Provenance = Provenance.CUSTOM_ROLE
    role_ids: Tuple[int, ...] = ()
    home_tenant: TenantScope = field(default_factory=TenantScope)
    computed_at: Optional[datetime] = None
    legacy_table_version: Optional[str] = None
    # 集合中最早到期的分配或直接授权；此后结果不再可信
    valid_until: Optional[datetime] = None

    def __iter__(self):
        return iter(self.entries.values())

    def __len__(self) -> int:
        return len(self.entries)

    def granted(self) -> List[ResolvedPermission]:
        return [e for e in self.entries.values() if e.granted]

    def denied(self) -> List[ResolvedPermission]:
        return [e for e in self.entries.values() if not e.granted]

    def codes(self) -> Set[str]:
        """已授权的权限码集合"""
        return {str(e.permission) for e in self.entries.values() if e.granted}

    @property
    def is_legacy(self) -> bool:
        return self.provenance is Provenance.LEGACY


__all__ = [
    "WILDCARD",
    "Permission",
    "PermissionLike",
    "GrantSource",
    "Provenance",
    "PermissionGrant",
    "ResolvedPermission",
    "EffectivePermissions",
]
