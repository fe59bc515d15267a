"""
core/security/aggregator.py

权限聚合器 - 计算用户在某一时刻的有效权限集合

聚合顺序：
1. 生效的自定义角色分配为空 → 使用旧版角色映射（标记为 legacy）
2. 否则合并所有生效角色的授权
3. 叠加用户直接授权 / 拒绝
4. 同一三元组只要有任一来源拒绝即为拒绝
5. 返回结果与来源标记（custom_role / legacy）

回退只由"零个生效分配"触发，绝不因为"没有匹配的权限"而回退到旧版映射。
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from core.security.legacy import LEGACY_ROLE_TABLE_V1, LegacyRoleTable
from core.security.permission import (
    EffectivePermissions,
    GrantSource,
    Permission,
    PermissionGrant,
    Provenance,
    ResolvedPermission,
)
from core.security.scope import TenantScope
from core.security.store import IRoleAssignmentStore, RoleRef

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """带时区的时间换算为 naive UTC（数据库列与 utcnow() 都是 naive UTC）"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_grants(grants: Iterable[PermissionGrant]) -> Dict[Permission, ResolvedPermission]:
    """
    冲突消解：对每个 (resource, action, scope) 键，任一来源拒绝则最终拒绝

    拒绝不区分租户：某个门店上的拒绝角色同样压过其他门店上的授权。

    Args:
        grants: 所有来源的授权记录

    Returns:
        Permission → ResolvedPermission
    """
    grouped: Dict[Permission, List[PermissionGrant]] = defaultdict(list)
    for grant in grants:
        grouped[grant.permission].append(grant)

    resolved: Dict[Permission, ResolvedPermission] = {}
    for permission, items in grouped.items():
        denied = any(not g.granted for g in items)
        if denied and any(g.granted for g in items):
            logger.debug(
                f"Permission conflict on {permission}: deny wins over "
                f"{sum(1 for g in items if g.granted)} grant(s)"
            )
        resolved[permission] = ResolvedPermission(
            permission=permission,
            granted=not denied,
            tenants=frozenset(g.tenant for g in items),
            sources=frozenset(g.source for g in items),
        )
    return resolved


class PermissionAggregator:
    """
    权限聚合器

    Example:
        >>> aggregator = PermissionAggregator(store, legacy_table=LEGACY_ROLE_TABLE_V1)
        >>> effective = aggregator.effective_permissions(42)
        >>> effective.provenance
        <Provenance.CUSTOM_ROLE: 'custom_role'>
    """

    def __init__(self, store: IRoleAssignmentStore,
                 legacy_table: Optional[LegacyRoleTable] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            clock: 返回 naive UTC 当前时间，用于判断分配是否到期
        """
        self._store = store
        self._legacy_table = legacy_table if legacy_table is not None else LEGACY_ROLE_TABLE_V1
        self._clock = clock or utcnow

    @property
    def store(self) -> IRoleAssignmentStore:
        return self._store

    @property
    def legacy_table(self) -> LegacyRoleTable:
        return self._legacy_table

    def now(self) -> datetime:
        return self._clock()

    def effective_permissions(self, user_id: int,
                              as_of: Optional[datetime] = None) -> EffectivePermissions:
        as_of = as_of or self._clock()

        principal = self._store.principal(user_id)
        home = principal.tenant if principal else TenantScope()

        roles = self._store.active_role_assignments(user_id, as_of)
        if roles:
            grants = self._role_grants(roles, home)
            provenance = Provenance.CUSTOM_ROLE
        else:
            legacy_role = principal.legacy_role if principal else None
            grants = [
                PermissionGrant(
                    permission=p, granted=True,
                    source=GrantSource.LEGACY, tenant=home,
                )
                for p in self._legacy_table.permissions_for(legacy_role)
            ]
            provenance = Provenance.LEGACY
            logger.debug(
                f"User {user_id} has no active custom roles, using legacy role "
                f"{legacy_role.value if legacy_role else None} "
                f"(table {self._legacy_table.version})"
            )

        overrides = self._store.overrides(user_id, as_of)
        for override in overrides:
            grants.append(PermissionGrant(
                permission=override.permission,
                granted=override.granted,
                source=GrantSource.OVERRIDE,
                tenant=override.tenant.merged_over(home),
                expires_at=override.expires_at,
            ))

        expiries = [r.expires_at for r in roles if r.expires_at is not None]
        expiries += [o.expires_at for o in overrides if o.expires_at is not None]

        entries = resolve_grants(grants)
        logger.debug(
            f"User {user_id} resolved {len(entries)} permissions "
            f"from {len(roles)} custom roles ({provenance.value})"
        )
        return EffectivePermissions(
            user_id=user_id,
            entries=entries,
            provenance=provenance,
            role_ids=tuple(r.role_id for r in roles),
            home_tenant=home,
            computed_at=as_of,
            legacy_table_version=(
                self._legacy_table.version if provenance is Provenance.LEGACY else None
            ),
            valid_until=min(expiries) if expiries else None,
        )

    def _role_grants(self, roles: List[RoleRef], home: TenantScope) -> List[PermissionGrant]:
        grants: List[PermissionGrant] = []
        for role in roles:
            tenant = role.tenant.merged_over(home)
            for grant in self._store.granted_permissions(role.role_id):
                grants.append(PermissionGrant(
                    permission=grant.permission,
                    granted=grant.granted,
                    source=GrantSource.ROLE,
                    tenant=tenant,
                    role_id=role.role_id,
                    expires_at=role.expires_at,
                ))
        return grants


__all__ = ["PermissionAggregator", "resolve_grants", "utcnow", "to_naive_utc"]
