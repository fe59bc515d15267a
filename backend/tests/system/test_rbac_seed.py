"""
权限目录 / 系统角色种子数据测试
"""
from app.system.models.rbac import CustomRole, Permission as PermissionRow, RolePermission
from app.system.services.rbac_seed import (
    default_catalog,
    legacy_grant_definitions,
    seed_rbac_data,
)
from core.security.legacy import LEGACY_ROLE_TABLE_V1, LegacyRole, system_role_info


def test_default_catalog_is_unique():
    keys = [(d["resource"], d["action"], d["scope"]) for d in default_catalog()]
    assert len(keys) == len(set(keys))
    assert ("reservation", "read", "property") in keys
    assert ("portal", "access", "own") in keys


def test_legacy_definitions_include_wildcards():
    codes = {f"{d['resource']}.{d['action']}.{d['scope']}"
             for d in legacy_grant_definitions(LEGACY_ROLE_TABLE_V1)}
    assert "*.*.platform" in codes
    assert "reservation.*.property" in codes


def test_seed_creates_catalog_and_system_roles(db_session):
    stats = seed_rbac_data(db_session)

    assert stats["permissions_created"] == db_session.query(PermissionRow).count()
    assert stats["system_roles_created"] == len(LegacyRole)
    roles = db_session.query(CustomRole).filter(CustomRole.is_system_role == True).all()  # noqa: E712
    assert {r.name for r in roles} == {system_role_info(r).name for r in LegacyRole}

    manager = next(r for r in roles if r.name == system_role_info(LegacyRole.PROPERTY_MANAGER).name)
    codes = {rp.permission.code for rp in manager.permissions}
    assert codes == {str(p) for p in LEGACY_ROLE_TABLE_V1.permissions_for(LegacyRole.PROPERTY_MANAGER)}
    assert manager.organization_id is None


def test_seed_is_idempotent(db_session):
    seed_rbac_data(db_session)
    permissions = db_session.query(PermissionRow).count()
    links = db_session.query(RolePermission).count()

    stats = seed_rbac_data(db_session)
    assert stats == {
        "permissions_created": 0,
        "system_roles_created": 0,
        "role_permissions_created": 0,
    }
    assert db_session.query(PermissionRow).count() == permissions
    assert db_session.query(RolePermission).count() == links
