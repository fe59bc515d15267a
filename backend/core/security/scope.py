"""
core/security/scope.py

作用域解析 - 领域无关的多租户作用域层级

作用域级别决定授权的广度，租户标识比较决定授权的适用范围：
    own < department < property < organization < platform

covers() 是纯函数，不访问存储。
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ScopeLevel(str, Enum):
    """授权作用域级别（全序）"""
    OWN = "own"
    DEPARTMENT = "department"
    PROPERTY = "property"
    ORGANIZATION = "organization"
    PLATFORM = "platform"

    @property
    def rank(self) -> int:
        return _SCOPE_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, ScopeLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, ScopeLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, ScopeLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, ScopeLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "ScopeLevel":
        """解析作用域（兼容旧数据中的 "all" 写法）"""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid scope: {value!r}")
        normalized = value.strip().lower()
        if normalized == "all":
            return cls.PLATFORM
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Invalid scope: {value!r}") from None


_SCOPE_ORDER = (
    ScopeLevel.OWN,
    ScopeLevel.DEPARTMENT,
    ScopeLevel.PROPERTY,
    ScopeLevel.ORGANIZATION,
    ScopeLevel.PLATFORM,
)


@dataclass(frozen=True)
class TenantScope:
    """授权所属的租户位置（组织 / 物业 / 部门）"""
    organization_id: Optional[int] = None
    property_id: Optional[int] = None
    department_id: Optional[int] = None

    def merged_over(self, fallback: "TenantScope") -> "TenantScope":
        """用 fallback 补齐本对象未指定的标识"""
        return TenantScope(
            organization_id=(
                self.organization_id if self.organization_id is not None
                else fallback.organization_id
            ),
            property_id=(
                self.property_id if self.property_id is not None
                else fallback.property_id
            ),
            department_id=(
                self.department_id if self.department_id is not None
                else fallback.department_id
            ),
        )


@dataclass(frozen=True)
class TenantContext:
    """
    请求的租户上下文

    Attributes:
        user_id: 执行操作的用户
        organization_id / property_id / department_id: 请求作用的租户位置
        resource_owner_id: 目标资源的所有者（own 作用域使用）
    """
    user_id: int
    organization_id: Optional[int] = None
    property_id: Optional[int] = None
    department_id: Optional[int] = None
    resource_owner_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "property_id": self.property_id,
            "department_id": self.department_id,
            "resource_owner_id": self.resource_owner_id,
        }


# 每个级别自身必须提供的上下文标识
_LEVEL_IDENTIFIER = {
    ScopeLevel.ORGANIZATION: "organization_id",
    ScopeLevel.PROPERTY: "property_id",
    ScopeLevel.DEPARTMENT: "department_id",
    ScopeLevel.OWN: "resource_owner_id",
}

# 需要比对的租户标识（由窄到宽）
_TENANT_CHAIN = {
    ScopeLevel.ORGANIZATION: ("organization_id",),
    ScopeLevel.PROPERTY: ("organization_id", "property_id"),
    ScopeLevel.DEPARTMENT: ("organization_id", "property_id", "department_id"),
}


def required_identifiers(scope: ScopeLevel) -> Tuple[str, ...]:
    """要求在该作用域上评估时，上下文必须携带的标识"""
    scope = ScopeLevel.parse(scope)
    identifier = _LEVEL_IDENTIFIER.get(scope)
    return (identifier,) if identifier else ()


def missing_identifiers(scope: ScopeLevel, context: TenantContext) -> Tuple[str, ...]:
    return tuple(
        name for name in required_identifiers(scope)
        if getattr(context, name) is None
    )


def _tenant_matches(granted_scope: ScopeLevel, granted_tenant: TenantScope,
                    context: TenantContext) -> bool:
    """
    租户兼容性检查

    授权级别本身的标识必须存在且相等；上级标识在请求中出现时也必须相等，
    未出现时视为未指定。None 永远不与任何值相等。
    """
    chain = _TENANT_CHAIN[granted_scope]
    own_identifier = chain[-1]
    for name in chain:
        granted_value = getattr(granted_tenant, name)
        required_value = getattr(context, name)
        if name == own_identifier:
            if granted_value is None or required_value is None:
                return False
            if granted_value != required_value:
                return False
        elif required_value is not None and granted_value != required_value:
            return False
    return True


def covers(
    granted_scope: ScopeLevel,
    granted_tenant: TenantScope,
    required_scope: ScopeLevel,
    required_tenant: TenantContext,
) -> bool:
    """
    判断一条授权的作用域是否覆盖要求的作用域

    1. 授权级别低于要求级别 → 不覆盖（窄授权不能满足宽要求）
    2. 级别足够时再比对租户标识：
       - platform: 无条件匹配
       - organization: organization_id 相同
       - property: organization_id + property_id 相同
       - department: organization_id + property_id + department_id 相同
       - own: 资源所有者即当前用户
    """
    granted_scope = ScopeLevel.parse(granted_scope)
    required_scope = ScopeLevel.parse(required_scope)

    if granted_scope < required_scope:
        return False

    if granted_scope is ScopeLevel.PLATFORM:
        return True

    if granted_scope is ScopeLevel.OWN:
        owner = required_tenant.resource_owner_id
        return owner is not None and owner == required_tenant.user_id

    return _tenant_matches(granted_scope, granted_tenant, required_tenant)


def scope_filters(granted_scope: ScopeLevel, context: TenantContext) -> Dict[str, Any]:
    """
    根据命中授权的作用域生成数据查询过滤条件

    调用方必须把这些条件 AND 到后续的数据查询中。
    """
    granted_scope = ScopeLevel.parse(granted_scope)
    filters: Dict[str, Any] = {}

    if granted_scope is ScopeLevel.PLATFORM:
        return filters

    if granted_scope is ScopeLevel.OWN:
        filters["ownerId"] = context.user_id
        return filters

    if context.organization_id is not None:
        filters["organizationId"] = context.organization_id
    if granted_scope <= ScopeLevel.PROPERTY and context.property_id is not None:
        filters["propertyId"] = context.property_id
    if granted_scope is ScopeLevel.DEPARTMENT and context.department_id is not None:
        filters["departmentId"] = context.department_id
    return filters


__all__ = [
    "ScopeLevel",
    "TenantScope",
    "TenantContext",
    "required_identifiers",
    "missing_identifiers",
    "covers",
    "scope_filters",
]
