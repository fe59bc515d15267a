"""
权限目录与系统角色种子数据 - 幂等，可在线上系统重复执行

系统角色与旧版角色一一对应，权限取自同一份旧版映射表，
迁移到自定义角色时只需给用户分配对应的系统角色。
"""
import logging
from typing import Dict, Iterable, List, Tuple

from sqlalchemy.orm import Session

from app.system.models.rbac import CustomRole, RolePermission
from app.system.services.catalog_service import PermissionCatalogService
from core.security.legacy import LEGACY_ROLE_TABLE_V1, LegacyRoleTable, system_role_info

logger = logging.getLogger(__name__)


# (resource, actions, scopes, category)
_CATALOG_SPEC: List[Tuple[str, Tuple[str, ...], Tuple[str, ...], str]] = [
    # 酒店运营
    ("reservation", ("create", "read", "update", "delete", "checkin", "checkout"),
     ("own", "property", "organization", "platform"), "Operations"),
    ("guest", ("create", "read", "update", "delete"),
     ("property", "organization", "platform"), "Operations"),
    ("unit", ("create", "read", "update", "delete"),
     ("property", "organization", "platform"), "Operations"),
    ("task", ("create", "read", "update", "assign", "delete"),
     ("own", "department", "property"), "Operations"),
    ("concierge", ("create", "read", "update"), ("property", "organization"), "Operations"),
    ("vendor", ("create", "read", "update"), ("own", "property", "organization"), "Operations"),
    # 人事
    ("user", ("create", "read", "update", "delete"),
     ("own", "department", "property", "organization", "platform"), "HR"),
    ("profile", ("read", "update"), ("own", "department", "property"), "HR"),
    ("vacation", ("create", "read", "approve"), ("own", "department", "property"), "HR"),
    ("payslip", ("create", "read"), ("own", "department", "property"), "HR"),
    ("training", ("create", "read", "enroll"), ("own", "department", "property"), "Training"),
    ("document", ("create", "read", "update", "delete"),
     ("own", "department", "property"), "Documents"),
    ("benefit", ("create", "read", "update"), ("property", "organization"), "HR"),
    # 管理
    ("organization", ("create", "read", "update", "delete"), ("organization", "platform"), "Admin"),
    ("property", ("create", "read", "update", "delete"), ("property", "organization", "platform"), "Admin"),
    ("department", ("create", "read", "update", "delete"), ("property", "organization", "platform"), "Admin"),
    ("role", ("create", "read", "update", "delete", "assign"),
     ("department", "property", "organization", "platform"), "Admin"),
    ("permission", ("read", "manage"), ("organization", "platform"), "Admin"),
    ("branding", ("read", "update"), ("property", "organization", "platform"), "Admin"),
    ("module", ("read", "manage"), ("property", "organization", "platform"), "Admin"),
    ("portal", ("access",), ("own",), "Self-service"),
]


def default_catalog() -> List[Dict]:
    """默认权限目录定义"""
    definitions: List[Dict] = []
    for resource, actions, scopes, category in _CATALOG_SPEC:
        for action in actions:
            for scope in scopes:
                definitions.append({
                    "resource": resource,
                    "action": action,
                    "scope": scope,
                    "category": category,
                })
    return definitions


def legacy_grant_definitions(table: LegacyRoleTable) -> List[Dict]:
    """旧版映射中出现的（含通配符）授权也必须存在于目录中"""
    seen = set()
    definitions: List[Dict] = []
    for role in table.roles():
        for permission in table.permissions_for(role):
            if permission in seen:
                continue
            seen.add(permission)
            definitions.append({
                "resource": permission.resource,
                "action": permission.action,
                "scope": permission.scope.value,
                "category": "Wildcard" if permission.is_wildcard else None,
                "name": f"{permission}" if permission.is_wildcard else None,
            })
    return definitions


def seed_permission_catalog(db: Session, extra: Iterable[Dict] = ()) -> Dict[str, int]:
    catalog = PermissionCatalogService(db)
    stats = catalog.bulk_seed(default_catalog())
    legacy_stats = catalog.bulk_seed(legacy_grant_definitions(LEGACY_ROLE_TABLE_V1))
    extra_stats = catalog.bulk_seed(extra)
    return {
        "created": stats["created"] + legacy_stats["created"] + extra_stats["created"],
        "existing": stats["existing"] + legacy_stats["existing"] + extra_stats["existing"],
    }


def seed_system_roles(db: Session, table: LegacyRoleTable = LEGACY_ROLE_TABLE_V1) -> Dict[str, int]:
    """为每个旧版角色创建对应的系统角色（已存在则只补齐缺失的权限）"""
    catalog = PermissionCatalogService(db)
    stats = {"roles": 0, "permissions": 0}
    for legacy_role in table.roles():
        info = system_role_info(legacy_role)
        role = db.query(CustomRole).filter(
            CustomRole.name == info.name,
            CustomRole.is_system_role == True,  # noqa: E712
        ).first()
        if role is None:
            role = CustomRole(
                name=info.name,
                description=info.description,
                priority=info.level * 10,
                is_system_role=True,
            )
            db.add(role)
            db.flush()
            stats["roles"] += 1

        existing = {rp.permission_id for rp in role.permissions}
        for permission in table.permissions_for(legacy_role):
            row = catalog.register(permission.resource, permission.action, permission.scope)
            if row.id in existing:
                continue
            db.add(RolePermission(role_id=role.id, permission_id=row.id, granted=True))
            existing.add(row.id)
            stats["permissions"] += 1
    db.flush()
    return stats


def seed_rbac_data(db: Session) -> Dict[str, int]:
    """初始化权限目录与系统角色（幂等）"""
    catalog_stats = seed_permission_catalog(db)
    role_stats = seed_system_roles(db)
    db.commit()
    stats = {
        "permissions_created": catalog_stats["created"],
        "system_roles_created": role_stats["roles"],
        "role_permissions_created": role_stats["permissions"],
    }
    logger.info(f"RBAC seed: {stats}")
    return stats
