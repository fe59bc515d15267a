"""
core/security - 授权模块

多租户作用域权限评估引擎（领域无关部分）：
- scope: 作用域级别与租户兼容性判断
- permission: 类型化权限三元组、授权记录、有效权限集合
- legacy: 旧版角色映射（仅作回退）
- store: 角色分配存储接口
- aggregator: 有效权限聚合
- cache: 有效权限缓存
- evaluator: 评估入口
- registry: 操作 → 所需权限 声明

使用方式:
    >>> from core.security import PermissionAggregator, PermissionEvaluator, DecisionCache
    >>> from core.security import TenantContext
    >>> evaluator = PermissionEvaluator(PermissionAggregator(store), cache=DecisionCache())
    >>> evaluator.evaluate("reservation.read.property",
    ...                    TenantContext(user_id=1, property_id=3)).granted
"""

from core.security.errors import (
    AuthorizationError,
    NotFound,
    Conflict,
    StoreUnavailable,
    EvaluationTimeout,
    InvalidPermission,
)

from core.security.scope import (
    ScopeLevel,
    TenantScope,
    TenantContext,
    covers,
    required_identifiers,
    missing_identifiers,
    scope_filters,
)

from core.security.permission import (
    WILDCARD,
    Permission,
    PermissionLike,
    GrantSource,
    Provenance,
    PermissionGrant,
    ResolvedPermission,
    EffectivePermissions,
)

from core.security.legacy import (
    LegacyRole,
    UserType,
    LegacyRoleTable,
    LEGACY_ROLE_TABLE_V1,
    SystemRoleInfo,
    system_role_info,
    can_assign_role,
    assignable_roles,
)

from core.security.store import RoleRef, Principal, IRoleAssignmentStore
from core.security.aggregator import PermissionAggregator, resolve_grants
from core.security.cache import DecisionCache
from core.security.evaluator import (
    Decision,
    Condition,
    PermissionEvaluator,
    SAME_ORGANIZATION,
    SAME_PROPERTY,
    SAME_DEPARTMENT,
    IS_OWNER,
)
from core.security.registry import OperationRegistry, OperationRequirement, CoverageReport

__all__ = [
    # 异常
    "AuthorizationError",
    "NotFound",
    "Conflict",
    "StoreUnavailable",
    "EvaluationTimeout",
    "InvalidPermission",
    # 作用域
    "ScopeLevel",
    "TenantScope",
    "TenantContext",
    "covers",
    "required_identifiers",
    "missing_identifiers",
    "scope_filters",
    # 权限
    "WILDCARD",
    "Permission",
    "PermissionLike",
    "GrantSource",
    "Provenance",
    "PermissionGrant",
    "ResolvedPermission",
    "EffectivePermissions",
    # 旧版角色
    "LegacyRole",
    "UserType",
    "LegacyRoleTable",
    "LEGACY_ROLE_TABLE_V1",
    "SystemRoleInfo",
    "system_role_info",
    "can_assign_role",
    "assignable_roles",
    # 存储 / 聚合 / 缓存 / 评估
    "RoleRef",
    "Principal",
    "IRoleAssignmentStore",
    "PermissionAggregator",
    "resolve_grants",
    "DecisionCache",
    "Decision",
    "Condition",
    "PermissionEvaluator",
    "SAME_ORGANIZATION",
    "SAME_PROPERTY",
    "SAME_DEPARTMENT",
    "IS_OWNER",
    # 操作注册
    "OperationRegistry",
    "OperationRequirement",
    "CoverageReport",
]
