"""
RBAC Service - 自定义角色管理 + 用户角色分配 + 分配历史 + 用户直接授权

所有修改在提交事务后、返回调用方之前同步失效受影响用户的权限缓存，
管理员撤销角色后的下一个请求即可看到效果。
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.system.models.rbac import (
    CustomRole, Permission as PermissionRow, RoleAssignmentHistory, RoleHistoryAction,
    RolePermission, User, UserCustomRole, UserPermission,
)
from app.system.services.catalog_service import PermissionCatalogService
from core.security.aggregator import to_naive_utc, utcnow
from core.security.cache import DecisionCache
from core.security.errors import Conflict, NotFound

logger = logging.getLogger(__name__)

# 角色权限条目: "guest.read.property" 或 ("guest.read.property", False)
PermissionEntry = Union[str, Tuple[str, bool], Dict]

_UPDATABLE_ROLE_FIELDS = ("name", "description", "priority", "is_active")


def _normalize_entry(entry: PermissionEntry) -> Tuple[str, bool]:
    if isinstance(entry, str):
        return entry, True
    if isinstance(entry, dict):
        return entry["permission"], bool(entry.get("granted", True))
    code, granted = entry
    return code, bool(granted)


class _CacheAwareService:
    """提交事务并同步失效缓存"""

    def __init__(self, db: Session, cache: Optional[DecisionCache] = None):
        self.db = db
        self.cache = cache

    def _commit(self, affected_users: Iterable[int] = (), all_users: bool = False) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict(f"Integrity error: {e.orig}") from e
        if self.cache is None:
            return
        if all_users:
            self.cache.invalidate_all()
            return
        for user_id in set(affected_users):
            self.cache.invalidate(user_id)


class RoleService(_CacheAwareService):
    """自定义角色管理服务"""

    def __init__(self, db: Session, cache: Optional[DecisionCache] = None):
        super().__init__(db, cache)
        self.catalog = PermissionCatalogService(db)

    # ===== 查询 =====

    def get_roles(self, organization_id: Optional[int] = None,
                  property_id: Optional[int] = None,
                  include_inactive: bool = False) -> List[CustomRole]:
        q = self.db.query(CustomRole)
        if not include_inactive:
            q = q.filter(CustomRole.is_active == True)  # noqa: E712
        if organization_id is not None:
            q = q.filter(CustomRole.organization_id == organization_id)
        if property_id is not None:
            q = q.filter(CustomRole.property_id == property_id)
        return q.order_by(CustomRole.priority.desc(), CustomRole.id).all()

    def get_role(self, role_id: int) -> CustomRole:
        role = self.db.query(CustomRole).filter(CustomRole.id == role_id).first()
        if role is None:
            raise NotFound("role", role_id)
        return role

    def holders(self, role_id: int) -> List[int]:
        rows = self.db.query(UserCustomRole.user_id).filter(
            UserCustomRole.role_id == role_id
        ).distinct().all()
        return [r[0] for r in rows]

    def _name_taken(self, name: str, organization_id: Optional[int],
                    property_id: Optional[int], exclude_id: Optional[int] = None) -> bool:
        q = self.db.query(CustomRole).filter(
            CustomRole.name == name,
            CustomRole.organization_id.is_(None) if organization_id is None
            else CustomRole.organization_id == organization_id,
            CustomRole.property_id.is_(None) if property_id is None
            else CustomRole.property_id == property_id,
        )
        if exclude_id is not None:
            q = q.filter(CustomRole.id != exclude_id)
        return q.first() is not None

    # ===== 角色 CRUD =====

    def create_role(self, name: str, description: str = "", priority: int = 100,
                    organization_id: Optional[int] = None,
                    property_id: Optional[int] = None,
                    is_system_role: bool = False, is_active: bool = True,
                    permissions: Sequence[PermissionEntry] = ()) -> CustomRole:
        """
        创建角色

        Raises:
            Conflict: 同一租户下角色名已存在
            NotFound: 引用的权限不存在
        """
        if is_system_role:
            organization_id = property_id = None
        if self._name_taken(name, organization_id, property_id):
            raise Conflict(f"A role named '{name}' already exists in this context")

        rows = self._resolve_entries(permissions)

        role = CustomRole(
            name=name, description=description, priority=priority,
            organization_id=organization_id, property_id=property_id,
            is_system_role=is_system_role, is_active=is_active,
        )
        self.db.add(role)
        self.db.flush()
        for row, granted in rows:
            self.db.add(RolePermission(role_id=role.id, permission_id=row.id, granted=granted))
        self._commit()
        self.db.refresh(role)
        logger.info(f"Role created: {role.name} ({role.id}) with {len(rows)} permissions")
        return role

    def update_role(self, role_id: int, **kwargs) -> CustomRole:
        role = self.get_role(role_id)
        name = kwargs.get("name")
        if name and name != role.name and self._name_taken(
                name, role.organization_id, role.property_id, exclude_id=role.id):
            raise Conflict(f"A role named '{name}' already exists in this context")

        for key, value in kwargs.items():
            if key in _UPDATABLE_ROLE_FIELDS and value is not None:
                setattr(role, key, value)

        self._commit(self.holders(role_id))
        self.db.refresh(role)
        return role

    def delete_role(self, role_id: int) -> None:
        """
        Raises:
            Conflict: 系统角色，或仍有生效分配
        """
        role = self.get_role(role_id)
        if role.is_system_role:
            raise Conflict(f"System role '{role.name}' cannot be deleted")
        active = self.db.query(UserCustomRole).filter(
            UserCustomRole.role_id == role_id,
            UserCustomRole.is_active == True,  # noqa: E712
        ).count()
        if active:
            raise Conflict(f"Role '{role.name}' is still assigned to {active} user(s)")

        affected = self.holders(role_id)
        self.db.delete(role)
        self._commit(affected)
        logger.info(f"Role deleted: {role_id}")

    # ===== 角色权限 =====

    def _resolve_entries(self, entries: Sequence[PermissionEntry]) -> List[Tuple[PermissionRow, bool]]:
        resolved: Dict[int, Tuple[PermissionRow, bool]] = {}
        for entry in entries:
            code, granted = _normalize_entry(entry)
            row = self.catalog.lookup_code(code)
            previous = resolved.get(row.id)
            # 同一批次内重复出现时拒绝优先
            if previous is not None:
                granted = granted and previous[1]
            resolved[row.id] = (row, granted)
        return list(resolved.values())

    def set_role_permissions(self, role_id: int, entries: Sequence[PermissionEntry]) -> CustomRole:
        """整体替换角色的权限"""
        role = self.get_role(role_id)
        rows = self._resolve_entries(entries)
        self.db.query(RolePermission).filter(RolePermission.role_id == role_id).delete()
        for row, granted in rows:
            self.db.add(RolePermission(role_id=role_id, permission_id=row.id, granted=granted))
        self._commit(self.holders(role_id))
        self.db.refresh(role)
        return role

    def add_role_permission(self, role_id: int, code: str, granted: bool = True) -> RolePermission:
        self.get_role(role_id)
        row = self.catalog.lookup_code(code)
        link = self.db.query(RolePermission).filter(
            RolePermission.role_id == role_id,
            RolePermission.permission_id == row.id,
        ).first()
        if link is None:
            link = RolePermission(role_id=role_id, permission_id=row.id, granted=granted)
            self.db.add(link)
        else:
            link.granted = granted
        self._commit(self.holders(role_id))
        return link

    def remove_role_permission(self, role_id: int, code: str) -> None:
        self.get_role(role_id)
        row = self.catalog.lookup_code(code)
        deleted = self.db.query(RolePermission).filter(
            RolePermission.role_id == role_id,
            RolePermission.permission_id == row.id,
        ).delete()
        if not deleted:
            raise NotFound("role permission", f"{role_id}:{code}")
        self._commit(self.holders(role_id))

    def bulk_role_permissions(self, assignments: Dict[int, Sequence[PermissionEntry]]) -> Dict[int, int]:
        """批量为多个角色追加权限（已有条目更新 granted）"""
        affected: Set[int] = set()
        counts: Dict[int, int] = {}
        for role_id, entries in assignments.items():
            self.get_role(role_id)
            rows = self._resolve_entries(entries)
            for row, granted in rows:
                link = self.db.query(RolePermission).filter(
                    RolePermission.role_id == role_id,
                    RolePermission.permission_id == row.id,
                ).first()
                if link is None:
                    self.db.add(RolePermission(role_id=role_id, permission_id=row.id, granted=granted))
                else:
                    link.granted = granted
            counts[role_id] = len(rows)
            affected.update(self.holders(role_id))
        self._commit(affected)
        return counts


class AssignmentService(_CacheAwareService):
    """用户角色分配 + 用户直接授权"""

    def __init__(self, db: Session, cache: Optional[DecisionCache] = None):
        super().__init__(db, cache)
        self.catalog = PermissionCatalogService(db)

    def _get_user(self, user_id: int) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise NotFound("user", user_id)
        return user

    # ===== User-Role Operations =====

    def get_user_roles(self, user_id: int, include_inactive: bool = False) -> List[UserCustomRole]:
        self._get_user(user_id)
        q = self.db.query(UserCustomRole).filter(UserCustomRole.user_id == user_id)
        if not include_inactive:
            q = q.filter(UserCustomRole.is_active == True)  # noqa: E712
        return q.order_by(UserCustomRole.assigned_at).all()

    def _record(self, user_id: int, role: CustomRole, action: RoleHistoryAction,
                performed_by: Optional[int], reason: Optional[str] = None,
                source: str = "manual", expires_at: Optional[datetime] = None,
                parent_id: Optional[int] = None) -> RoleAssignmentHistory:
        """写入分配历史（随本次变更一起提交）"""
        entry = RoleAssignmentHistory(
            user_id=user_id, role_id=role.id, role_name=role.name,
            action=action, source=source, performed_by=performed_by,
            reason=reason, expires_at=expires_at, parent_id=parent_id,
        )
        self.db.add(entry)
        return entry

    def _assign(self, user_id: int, role_id: int, expires_at: Optional[datetime],
                assigned_by: Optional[int]) -> UserCustomRole:
        self._get_user(user_id)
        role = self.db.query(CustomRole).filter(CustomRole.id == role_id).first()
        if role is None:
            raise NotFound("role", role_id)
        if not role.is_active:
            raise Conflict(f"Role '{role.name}' is inactive")

        expires_at = to_naive_utc(expires_at)
        assignment = self.db.query(UserCustomRole).filter(
            UserCustomRole.user_id == user_id,
            UserCustomRole.role_id == role_id,
        ).first()
        if assignment is None:
            assignment = UserCustomRole(
                user_id=user_id, role_id=role_id,
                expires_at=expires_at, assigned_by=assigned_by,
            )
            self.db.add(assignment)
        else:
            assignment.is_active = True
            assignment.expires_at = expires_at
            assignment.assigned_by = assigned_by
            assignment.assigned_at = utcnow()
        assignment.role = role
        return assignment

    def _revoke(self, user_id: int, role_id: int) -> UserCustomRole:
        assignment = self.db.query(UserCustomRole).filter(
            UserCustomRole.user_id == user_id,
            UserCustomRole.role_id == role_id,
            UserCustomRole.is_active == True,  # noqa: E712
        ).first()
        if assignment is None:
            raise NotFound("role assignment", f"{user_id}:{role_id}")
        assignment.is_active = False
        return assignment

    def assign_role(self, user_id: int, role_id: int, expires_at: Optional[datetime] = None,
                    assigned_by: Optional[int] = None,
                    reason: Optional[str] = None) -> UserCustomRole:
        """
        分配角色（已存在的分配会被重新激活）

        expires_at 带时区时换算为 UTC 存储。

        Raises:
            NotFound: 用户或角色不存在
            Conflict: 角色未启用
        """
        assignment = self._assign(user_id, role_id, expires_at, assigned_by)
        self._record(user_id, assignment.role, RoleHistoryAction.ASSIGNED, assigned_by,
                     reason=reason, expires_at=assignment.expires_at)
        self._commit([user_id])
        self.db.refresh(assignment)
        logger.info(f"Role {role_id} assigned to user {user_id} by {assigned_by}")
        return assignment

    def revoke_role(self, user_id: int, role_id: int, revoked_by: Optional[int] = None,
                    reason: Optional[str] = None) -> None:
        assignment = self._revoke(user_id, role_id)
        self._record(user_id, assignment.role, RoleHistoryAction.REMOVED, revoked_by,
                     reason=reason, expires_at=assignment.expires_at)
        self._commit([user_id])
        logger.info(f"Role {role_id} revoked from user {user_id} by {revoked_by}")

    def bulk_assign(self, user_ids: Sequence[int], role_id: int,
                    expires_at: Optional[datetime] = None,
                    assigned_by: Optional[int] = None,
                    reason: Optional[str] = None) -> Dict[str, List]:
        """批量分配；单个用户失败不影响其他用户"""
        results: Dict[str, List] = {"assigned": [], "errors": []}
        for user_id in user_ids:
            try:
                assignment = self._assign(user_id, role_id, expires_at, assigned_by)
                self._record(user_id, assignment.role, RoleHistoryAction.BULK_ASSIGNED,
                             assigned_by, reason=reason, source="bulk",
                             expires_at=assignment.expires_at)
                self.db.flush()
                results["assigned"].append(user_id)
            except (NotFound, Conflict) as e:
                results["errors"].append({"user_id": user_id, "error": str(e)})
        self._commit(results["assigned"])
        return results

    def bulk_revoke(self, user_ids: Sequence[int], role_id: int,
                    revoked_by: Optional[int] = None,
                    reason: Optional[str] = None) -> Dict[str, List]:
        """批量撤销；没有生效分配的用户记入 errors"""
        results: Dict[str, List] = {"revoked": [], "errors": []}
        for user_id in user_ids:
            try:
                assignment = self._revoke(user_id, role_id)
            except NotFound as e:
                results["errors"].append({"user_id": user_id, "error": str(e)})
                continue
            self._record(user_id, assignment.role, RoleHistoryAction.BULK_REMOVED,
                         revoked_by, reason=reason, source="bulk",
                         expires_at=assignment.expires_at)
            self.db.flush()
            results["revoked"].append(user_id)
        self._commit(results["revoked"])
        logger.info(f"Role {role_id} revoked from {len(results['revoked'])} user(s) by {revoked_by}")
        return results

    # ===== 分配历史 =====

    def get_user_role_history(self, user_id: int, limit: int = 100) -> List[RoleAssignmentHistory]:
        self._get_user(user_id)
        return self.db.query(RoleAssignmentHistory).filter(
            RoleAssignmentHistory.user_id == user_id,
        ).order_by(RoleAssignmentHistory.id.desc()).limit(limit).all()

    def get_role_history(self, role_id: int, limit: int = 100) -> List[RoleAssignmentHistory]:
        return self.db.query(RoleAssignmentHistory).filter(
            RoleAssignmentHistory.role_id == role_id,
        ).order_by(RoleAssignmentHistory.id.desc()).limit(limit).all()

    def get_history_entry(self, entry_id: int) -> RoleAssignmentHistory:
        entry = self.db.query(RoleAssignmentHistory).filter(
            RoleAssignmentHistory.id == entry_id,
        ).first()
        if entry is None:
            raise NotFound("role history entry", entry_id)
        return entry

    def rollback(self, entry_id: int, performed_by: Optional[int] = None,
                 reason: Optional[str] = None) -> RoleAssignmentHistory:
        """
        回滚一条分配历史：分配 → 撤销，撤销 → 恢复（沿用原到期时间）

        Returns:
            新写入的历史记录（parent_id 指向被回滚的记录）

        Raises:
            NotFound: 历史记录或角色不存在，或要撤销的分配已不再生效
            Conflict: 要恢复的角色未启用
        """
        entry = self.get_history_entry(entry_id)
        note = f"Rollback: {reason}" if reason else "Rollback"
        if entry.action in (RoleHistoryAction.ASSIGNED, RoleHistoryAction.BULK_ASSIGNED):
            assignment = self._revoke(entry.user_id, entry.role_id)
            action = RoleHistoryAction.REMOVED
        else:
            assignment = self._assign(entry.user_id, entry.role_id, entry.expires_at, performed_by)
            action = RoleHistoryAction.ASSIGNED
        record = self._record(entry.user_id, assignment.role, action, performed_by,
                              reason=note, source="rollback",
                              expires_at=assignment.expires_at, parent_id=entry.id)
        self._commit([entry.user_id])
        self.db.refresh(record)
        logger.info(f"Rolled back role history {entry_id} ({entry.action.value} -> "
                    f"{action.value}) by {performed_by}")
        return record

    # ===== Direct permissions =====

    def get_overrides(self, user_id: int) -> List[UserPermission]:
        self._get_user(user_id)
        return self.db.query(UserPermission).filter(
            UserPermission.user_id == user_id,
            UserPermission.is_active == True,  # noqa: E712
        ).all()

    def set_override(self, user_id: int, code: str, granted: bool,
                     expires_at: Optional[datetime] = None,
                     granted_by: Optional[int] = None) -> UserPermission:
        """直接授权 / 拒绝（按 user + permission 覆盖写）"""
        self._get_user(user_id)
        expires_at = to_naive_utc(expires_at)
        row = self.catalog.lookup_code(code)
        override = self.db.query(UserPermission).filter(
            UserPermission.user_id == user_id,
            UserPermission.permission_id == row.id,
        ).first()
        if override is None:
            override = UserPermission(
                user_id=user_id, permission_id=row.id, granted=granted,
                expires_at=expires_at, granted_by=granted_by,
            )
            self.db.add(override)
        else:
            override.granted = granted
            override.is_active = True
            override.expires_at = expires_at
            override.granted_by = granted_by
        self._commit([user_id])
        self.db.refresh(override)
        return override

    def remove_override(self, user_id: int, code: str) -> None:
        row = self.catalog.lookup_code(code)
        deleted = self.db.query(UserPermission).filter(
            UserPermission.user_id == user_id,
            UserPermission.permission_id == row.id,
        ).delete()
        if not deleted:
            raise NotFound("permission override", f"{user_id}:{code}")
        self._commit([user_id])


class CatalogAdminService(_CacheAwareService):
    """权限目录的管理写操作（影响所有用户）"""

    def __init__(self, db: Session, cache: Optional[DecisionCache] = None):
        super().__init__(db, cache)
        self.catalog = PermissionCatalogService(db)

    def seed(self, definitions: Iterable[Dict]) -> Dict[str, int]:
        stats = self.catalog.bulk_seed(definitions)
        self._commit(all_users=True)
        return stats

    def set_active(self, permission_id: int, is_active: bool) -> PermissionRow:
        row = self.catalog.get(permission_id)
        row.is_active = is_active
        self._commit(all_users=True)
        return row
