"""
core 层测试 fixtures - 内存版角色分配存储
"""
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

import pytest

from core.security.aggregator import PermissionAggregator
from core.security.cache import DecisionCache
from core.security.errors import StoreUnavailable
from core.security.evaluator import PermissionEvaluator
from core.security.legacy import LegacyRole
from core.security.permission import GrantSource, Permission, PermissionGrant
from core.security.scope import TenantScope
from core.security.store import IRoleAssignmentStore, Principal, RoleRef


class InMemoryRoleStore(IRoleAssignmentStore):
    """测试用内存存储，可模拟故障"""

    def __init__(self):
        self.principals: Dict[int, Principal] = {}
        self.roles: Dict[int, RoleRef] = {}
        self.role_grants: Dict[int, Set[PermissionGrant]] = {}
        self.assignments: Dict[int, List[Tuple[int, Optional[datetime], bool]]] = {}
        self.user_overrides: Dict[int, List[Tuple[PermissionGrant, Optional[datetime]]]] = {}
        self.fail = False
        self.calls = 0

    # ----- 构造数据 -----

    def add_user(self, user_id: int, legacy_role: Optional[LegacyRole] = None,
                 organization_id=None, property_id=None, department_id=None) -> Principal:
        principal = Principal(
            user_id=user_id,
            legacy_role=legacy_role,
            tenant=TenantScope(organization_id, property_id, department_id),
        )
        self.principals[user_id] = principal
        return principal

    def add_role(self, role_id: int, grants=(), denies=(), organization_id=None,
                 property_id=None, name: Optional[str] = None) -> RoleRef:
        role = RoleRef(
            role_id=role_id,
            name=name or f"role-{role_id}",
            tenant=TenantScope(organization_id=organization_id, property_id=property_id),
        )
        self.roles[role_id] = role
        self.role_grants[role_id] = {
            PermissionGrant(Permission.parse(p), True, GrantSource.ROLE, role_id=role_id)
            for p in grants
        } | {
            PermissionGrant(Permission.parse(p), False, GrantSource.ROLE, role_id=role_id)
            for p in denies
        }
        return role

    def assign(self, user_id: int, role_id: int, expires_at: Optional[datetime] = None,
               is_active: bool = True) -> None:
        self.assignments.setdefault(user_id, []).append((role_id, expires_at, is_active))

    def revoke(self, user_id: int, role_id: int) -> None:
        self.assignments[user_id] = [
            (rid, exp, active and rid != role_id)
            for rid, exp, active in self.assignments.get(user_id, [])
        ]

    def add_override(self, user_id: int, permission: str, granted: bool = True,
                     expires_at: Optional[datetime] = None) -> None:
        grant = PermissionGrant(Permission.parse(permission), granted, GrantSource.OVERRIDE)
        self.user_overrides.setdefault(user_id, []).append((grant, expires_at))

    # ----- IRoleAssignmentStore -----

    def _check(self):
        self.calls += 1
        if self.fail:
            raise StoreUnavailable("store is down")

    def granted_permissions(self, role_id):
        self._check()
        return set(self.role_grants.get(role_id, set()))

    def active_role_assignments(self, user_id, as_of):
        self._check()
        return [
            replace(self.roles[rid], expires_at=expires_at)
            for rid, expires_at, active in self.assignments.get(user_id, [])
            if active and (expires_at is None or expires_at > as_of)
        ]

    def overrides(self, user_id, as_of=None):
        self._check()
        return {
            replace(grant, expires_at=expires_at)
            for grant, expires_at in self.user_overrides.get(user_id, [])
            if expires_at is None or as_of is None or expires_at > as_of
        }

    def principal(self, user_id):
        self._check()
        return self.principals.get(user_id)

    def users_with_role(self, role_id):
        return [uid for uid, items in self.assignments.items() if any(r == role_id for r, _, _ in items)]


@pytest.fixture
def store():
    return InMemoryRoleStore()


@pytest.fixture
def aggregator(store):
    return PermissionAggregator(store)


@pytest.fixture
def cache():
    return DecisionCache(ttl_seconds=300)


@pytest.fixture
def evaluator(aggregator, cache):
    evaluator = PermissionEvaluator(aggregator, cache=cache, store_timeout=2.0)
    yield evaluator
    evaluator.shutdown()


@pytest.fixture
def uncached_evaluator(aggregator):
    evaluator = PermissionEvaluator(aggregator, cache=DecisionCache(enabled=False))
    yield evaluator
    evaluator.shutdown()
