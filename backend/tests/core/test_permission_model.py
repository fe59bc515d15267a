"""
Tests for core/security/permission.py - 类型化权限三元组
"""
import pytest

from core.security.errors import InvalidPermission
from core.security.permission import (
    EffectivePermissions,
    GrantSource,
    Permission,
    Provenance,
    ResolvedPermission,
)
from core.security.scope import ScopeLevel


class TestPermission:
    def test_parse_and_str(self):
        p = Permission.parse("reservation.read.property")
        assert p.resource == "reservation"
        assert p.action == "read"
        assert p.scope is ScopeLevel.PROPERTY
        assert str(p) == "reservation.read.property"
        assert p.key == ("reservation", "read", "property")

    def test_normalizes_case(self):
        assert Permission.parse("Guest.Read.Organization") == Permission.of("guest", "read", "organization")

    def test_all_scope_alias(self):
        assert Permission.parse("user.read.all").scope is ScopeLevel.PLATFORM

    @pytest.mark.parametrize("value", [
        "reservation.read",
        "reservation.read.property.extra",
        "reservation..property",
        "reservation.read.global",
        "reservation.read.client",
        "1room.read.property",
        "room read.read.property",
        "",
    ])
    def test_invalid_raises(self, value):
        with pytest.raises(InvalidPermission):
            Permission.parse(value)

    def test_invalid_permission_is_value_error(self):
        with pytest.raises(ValueError):
            Permission(resource="guest", action="read", scope="nowhere")

    def test_hashable_and_equal(self):
        a = Permission.parse("guest.read.property")
        b = Permission.of("guest", "read", ScopeLevel.PROPERTY)
        assert a == b
        assert len({a, b}) == 1

    def test_wildcard(self):
        p = Permission.parse("*.read.organization")
        assert p.is_wildcard
        with pytest.raises(InvalidPermission):
            p.require_concrete()
        assert not Permission.parse("guest.read.property").is_wildcard

    def test_matches_target(self):
        required = Permission.parse("guest.read.property")
        assert Permission.parse("guest.read.property").matches_target(required)
        assert Permission.parse("*.read.own").matches_target(required)
        assert Permission.parse("guest.*.platform").matches_target(required)
        assert Permission.parse("*.*.department").matches_target(required)
        assert not Permission.parse("guest.update.property").matches_target(required)
        assert not Permission.parse("unit.*.property").matches_target(required)


class TestEffectivePermissions:
    def _effective(self):
        granted = Permission.parse("guest.read.property")
        denied = Permission.parse("guest.delete.property")
        return EffectivePermissions(
            user_id=1,
            entries={
                granted: ResolvedPermission(granted, True, sources=frozenset({GrantSource.ROLE})),
                denied: ResolvedPermission(denied, False, sources=frozenset({GrantSource.OVERRIDE})),
            },
            provenance=Provenance.CUSTOM_ROLE,
        )

    def test_granted_and_denied(self):
        effective = self._effective()
        assert len(effective) == 2
        assert [str(e.permission) for e in effective.granted()] == ["guest.read.property"]
        assert [str(e.permission) for e in effective.denied()] == ["guest.delete.property"]
        assert effective.codes() == {"guest.read.property"}
        assert not effective.is_legacy

    def test_entry_to_dict(self):
        entry = self._effective().denied()[0]
        assert entry.to_dict() == {
            "permission": "guest.delete.property",
            "resource": "guest",
            "action": "delete",
            "scope": "property",
            "granted": False,
            "sources": ["override"],
        }
