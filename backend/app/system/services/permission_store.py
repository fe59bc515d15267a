"""
SqlRoleAssignmentStore - IRoleAssignmentStore 的数据库实现

每次查询使用独立会话（由 session_factory 创建，用完即关闭），
可以安全地在评估器的加载线程中执行。
数据库异常统一包装为 StoreUnavailable，由评估器转为拒绝。
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Set

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.system.models.rbac import (
    CustomRole, Permission as PermissionRow, RolePermission, User,
    UserCustomRole, UserPermission,
)
from core.security.aggregator import to_naive_utc, utcnow
from core.security.errors import InvalidPermission, StoreUnavailable
from core.security.legacy import LegacyRole
from core.security.permission import GrantSource, Permission, PermissionGrant
from core.security.scope import TenantScope
from core.security.store import IRoleAssignmentStore, Principal, RoleRef

logger = logging.getLogger(__name__)


def to_permission(row: PermissionRow) -> Permission:
    """ORM 权限行 → 类型化 Permission"""
    return Permission(resource=row.resource, action=row.action, scope=row.scope)


class SqlRoleAssignmentStore(IRoleAssignmentStore):
    """基于数据库的角色分配存储"""

    def __init__(self, db_session_factory: Callable[[], Session]):
        """
        Args:
            db_session_factory: callable that returns a new DB session
        """
        self._db_session_factory = db_session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = None
        try:
            db = self._db_session_factory()
            yield db
        except SQLAlchemyError as e:
            logger.error(f"Role assignment store query failed: {e}")
            raise StoreUnavailable("Role assignment store unavailable", e) from e
        finally:
            if db is not None:
                db.close()

    def granted_permissions(self, role_id: int) -> Set[PermissionGrant]:
        with self._session() as db:
            rows = (
                db.query(RolePermission)
                .join(PermissionRow, RolePermission.permission_id == PermissionRow.id)
                .filter(
                    RolePermission.role_id == role_id,
                    PermissionRow.is_active == True,  # noqa: E712
                )
                .all()
            )
            return self._to_grants(
                ((rp.permission, rp.granted, None) for rp in rows),
                source=GrantSource.ROLE, role_id=role_id,
            )

    def active_role_assignments(self, user_id: int, as_of: datetime) -> List[RoleRef]:
        as_of = to_naive_utc(as_of)
        with self._session() as db:
            rows = (
                db.query(UserCustomRole, CustomRole)
                .join(CustomRole, UserCustomRole.role_id == CustomRole.id)
                .filter(
                    UserCustomRole.user_id == user_id,
                    UserCustomRole.is_active == True,  # noqa: E712
                    CustomRole.is_active == True,  # noqa: E712
                    or_(UserCustomRole.expires_at.is_(None), UserCustomRole.expires_at > as_of),
                )
                .order_by(CustomRole.priority.desc(), CustomRole.id)
                .all()
            )
            return [
                RoleRef(
                    role_id=role.id,
                    name=role.name,
                    priority=role.priority or 0,
                    is_system_role=bool(role.is_system_role),
                    tenant=TenantScope(
                        organization_id=role.organization_id,
                        property_id=role.property_id,
                    ),
                    expires_at=assignment.expires_at,
                )
                for assignment, role in rows
            ]

    def overrides(self, user_id: int, as_of: Optional[datetime] = None) -> Set[PermissionGrant]:
        as_of = to_naive_utc(as_of) or utcnow()
        with self._session() as db:
            rows = (
                db.query(UserPermission)
                .join(PermissionRow, UserPermission.permission_id == PermissionRow.id)
                .filter(
                    UserPermission.user_id == user_id,
                    UserPermission.is_active == True,  # noqa: E712
                    PermissionRow.is_active == True,  # noqa: E712
                    or_(UserPermission.expires_at.is_(None), UserPermission.expires_at > as_of),
                )
                .all()
            )
            return self._to_grants(
                ((up.permission, up.granted, up.expires_at) for up in rows),
                source=GrantSource.OVERRIDE,
            )

    def principal(self, user_id: int) -> Optional[Principal]:
        with self._session() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                return None
            legacy_role = None
            if user.legacy_role is not None:
                legacy_role = LegacyRole(user.legacy_role)
            return Principal(
                user_id=user.id,
                legacy_role=legacy_role,
                tenant=TenantScope(
                    organization_id=user.organization_id,
                    property_id=user.property_id,
                    department_id=user.department_id,
                ),
                is_active=bool(user.is_active),
            )

    def users_with_role(self, role_id: int) -> List[int]:
        with self._session() as db:
            rows = (
                db.query(UserCustomRole.user_id)
                .filter(UserCustomRole.role_id == role_id)
                .distinct()
                .all()
            )
            return [r[0] for r in rows]

    @staticmethod
    def _to_grants(rows, source: GrantSource, role_id: Optional[int] = None) -> Set[PermissionGrant]:
        grants: Set[PermissionGrant] = set()
        for row, granted, expires_at in rows:
            try:
                permission = to_permission(row)
            except InvalidPermission:
                # 目录中的脏数据不参与授权，但拒绝记录不能被忽略
                logger.error(f"Malformed permission row {row.id}: {row.code}")
                if not granted:
                    raise StoreUnavailable(f"Malformed denied permission row {row.id}")
                continue
            grants.add(PermissionGrant(
                permission=permission, granted=bool(granted),
                source=source, role_id=role_id, expires_at=expires_at,
            ))
        return grants
