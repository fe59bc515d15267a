"""
权限目录服务 - 注册 / 查询 / 批量种子

注册按三元组幂等：种子脚本会反复在线上系统运行，重复注册不是错误。
"""
import logging
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from app.system.models.rbac import Permission as PermissionRow
from core.security.errors import NotFound
from core.security.permission import Permission
from core.security.scope import ScopeLevel

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"


def _default_name(permission: Permission) -> str:
    action = permission.action.replace("_", " ").title()
    resource = permission.resource.replace("_", " ").title()
    return f"{action} {resource} ({permission.scope.value})"


class PermissionCatalogService:
    """权限目录服务"""

    def __init__(self, db: Session):
        self.db = db

    def _find(self, permission: Permission) -> Optional[PermissionRow]:
        return self.db.query(PermissionRow).filter(
            PermissionRow.resource == permission.resource,
            PermissionRow.action == permission.action,
            PermissionRow.scope == permission.scope.value,
        ).first()

    def register(self, resource: str, action: str, scope: Union[str, ScopeLevel],
                 name: Optional[str] = None, description: Optional[str] = None,
                 category: Optional[str] = None) -> PermissionRow:
        """
        注册权限（幂等）

        已存在的三元组直接返回，只补齐空白的元数据。

        Raises:
            InvalidPermission: 三元组格式错误
        """
        permission = Permission(resource=resource, action=action, scope=scope)
        existing = self._find(permission)
        if existing is not None:
            if name and not existing.name:
                existing.name = name
            if description and not existing.description:
                existing.description = description
            if category and (not existing.category or existing.category == DEFAULT_CATEGORY):
                existing.category = category
            self.db.flush()
            return existing

        row = PermissionRow(
            resource=permission.resource,
            action=permission.action,
            scope=permission.scope.value,
            name=name or _default_name(permission),
            description=description or "",
            category=category or DEFAULT_CATEGORY,
        )
        self.db.add(row)
        self.db.flush()
        logger.debug(f"Registered permission {permission}")
        return row

    def lookup(self, resource: str, action: str, scope: Union[str, ScopeLevel]) -> PermissionRow:
        """
        Raises:
            NotFound: 三元组不存在
        """
        permission = Permission(resource=resource, action=action, scope=scope)
        row = self._find(permission)
        if row is None:
            raise NotFound("permission", str(permission))
        return row

    def lookup_code(self, code: str) -> PermissionRow:
        permission = Permission.parse(code)
        return self.lookup(permission.resource, permission.action, permission.scope)

    def get(self, permission_id: int) -> PermissionRow:
        row = self.db.query(PermissionRow).filter(PermissionRow.id == permission_id).first()
        if row is None:
            raise NotFound("permission", permission_id)
        return row

    def list_permissions(self, include_inactive: bool = False) -> List[PermissionRow]:
        q = self.db.query(PermissionRow)
        if not include_inactive:
            q = q.filter(PermissionRow.is_active == True)  # noqa: E712
        return q.order_by(PermissionRow.category, PermissionRow.resource,
                          PermissionRow.action, PermissionRow.scope).all()

    def list_by_category(self, category: str) -> List[PermissionRow]:
        return self.db.query(PermissionRow).filter(
            PermissionRow.category == category,
            PermissionRow.is_active == True,  # noqa: E712
        ).order_by(PermissionRow.resource, PermissionRow.action, PermissionRow.scope).all()

    def list_categories(self) -> List[str]:
        rows = self.db.query(PermissionRow.category).distinct().all()
        return sorted(r[0] for r in rows if r[0])

    def all_permissions(self) -> List[Permission]:
        return [
            Permission(resource=r.resource, action=r.action, scope=r.scope)
            for r in self.list_permissions()
        ]

    def bulk_seed(self, definitions: Iterable[Dict]) -> Dict[str, int]:
        """
        批量幂等写入

        Args:
            definitions: [{"resource", "action", "scope", "name"?, "description"?, "category"?}]

        Returns:
            {"created": n, "existing": m}
        """
        stats = {"created": 0, "existing": 0}
        for d in definitions:
            permission = Permission(resource=d["resource"], action=d["action"], scope=d["scope"])
            is_new = self._find(permission) is None
            self.register(
                permission.resource, permission.action, permission.scope,
                name=d.get("name"), description=d.get("description"),
                category=d.get("category"),
            )
            stats["created" if is_new else "existing"] += 1
        return stats
