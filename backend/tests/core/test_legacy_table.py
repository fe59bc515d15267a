"""
Tests for core/security/legacy.py - 旧版角色映射
"""
import pytest

from core.security.legacy import (
    LEGACY_ROLE_TABLE_V1,
    LegacyRole,
    LegacyRoleTable,
    UserType,
    assignable_roles,
    can_assign_role,
    system_role_info,
)
from core.security.permission import Permission


class TestLegacyRoleTable:
    def test_every_role_has_permissions(self):
        for role in LegacyRole:
            assert LEGACY_ROLE_TABLE_V1.permissions_for(role), role

    def test_table_is_versioned(self):
        assert LEGACY_ROLE_TABLE_V1.version == "2024.1"

    def test_property_manager_reads_reservations(self):
        perms = LEGACY_ROLE_TABLE_V1.permissions_for(LegacyRole.PROPERTY_MANAGER)
        assert Permission.parse("reservation.*.property") in perms

    def test_client_is_limited_to_own(self):
        perms = LEGACY_ROLE_TABLE_V1.permissions_for(LegacyRole.CLIENT)
        assert {p.scope.value for p in perms} == {"own"}

    def test_unknown_or_missing_role(self):
        assert LEGACY_ROLE_TABLE_V1.permissions_for(None) == frozenset()
        assert LEGACY_ROLE_TABLE_V1.permissions_for("JANITOR") == frozenset()

    def test_mapping_is_read_only(self):
        with pytest.raises(TypeError):
            LEGACY_ROLE_TABLE_V1.mapping[LegacyRole.CLIENT] = frozenset()

    def test_from_strings_validates(self):
        table = LegacyRoleTable.from_strings("test", {"STAFF": ["guest.read.property"]})
        assert table.permissions_for(LegacyRole.STAFF) == {Permission.parse("guest.read.property")}
        with pytest.raises(ValueError):
            LegacyRoleTable.from_strings("bad", {"STAFF": ["guest.read"]})


class TestSystemRoleInfo:
    def test_levels(self):
        assert system_role_info(LegacyRole.PLATFORM_ADMIN).level == 10
        assert system_role_info(LegacyRole.PROPERTY_MANAGER).level == 7
        assert system_role_info(LegacyRole.CLIENT).user_type is UserType.CLIENT

    def test_unknown_role(self):
        assert system_role_info(None).name == "Unknown Role"
        assert system_role_info(None).level == 0

    def test_can_assign_role(self):
        assert can_assign_role(LegacyRole.PLATFORM_ADMIN, LegacyRole.PLATFORM_ADMIN)
        assert can_assign_role(LegacyRole.ORGANIZATION_ADMIN, LegacyRole.PROPERTY_MANAGER)
        assert not can_assign_role(LegacyRole.ORGANIZATION_ADMIN, LegacyRole.ORGANIZATION_ADMIN)
        assert not can_assign_role(LegacyRole.STAFF, LegacyRole.PROPERTY_MANAGER)

    def test_assignable_roles(self):
        roles = assignable_roles(LegacyRole.DEPARTMENT_ADMIN)
        assert LegacyRole.STAFF in roles
        assert LegacyRole.CLIENT in roles
        assert LegacyRole.DEPARTMENT_ADMIN not in roles
        assert set(assignable_roles(LegacyRole.PLATFORM_ADMIN)) == set(LegacyRole)
