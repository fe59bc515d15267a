"""
RoleService / AssignmentService / CatalogAdminService tests

重点：写操作提交后必须同步失效受影响用户的缓存，撤销后下一次评估立即生效。
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.system.models.rbac import RoleAssignmentHistory, RoleHistoryAction, UserCustomRole, UserPermission
from app.system.services.catalog_service import PermissionCatalogService
from app.system.services.permission_store import SqlRoleAssignmentStore
from app.system.services.rbac_service import AssignmentService, CatalogAdminService, RoleService
from core.security.aggregator import utcnow
from core.security.errors import Conflict, NotFound
from core.security.legacy import LegacyRole
from core.security.scope import TenantContext


@pytest.fixture
def catalog(db_session):
    catalog = PermissionCatalogService(db_session)
    for code in ("guest.read.property", "guest.update.property", "unit.read.property",
                 "unit.update.property", "reservation.read.property"):
        resource, action, scope = code.split(".")
        catalog.register(resource, action, scope)
    db_session.commit()
    return catalog


@pytest.fixture
def cache(permission_engine):
    return permission_engine.cache


@pytest.fixture
def evaluator(permission_engine):
    return permission_engine.evaluator


@pytest.fixture
def role_svc(db_session, catalog, cache):
    return RoleService(db_session, cache)


@pytest.fixture
def assign_svc(db_session, catalog, cache):
    return AssignmentService(db_session, cache)


def _ctx(user):
    return TenantContext(user_id=user.id, organization_id=user.organization_id,
                         property_id=user.property_id)


class TestRoleService:
    def test_create_role_with_permissions(self, role_svc):
        role = role_svc.create_role(
            "前台", organization_id=1, property_id=10,
            permissions=["guest.read.property", ("guest.update.property", False)],
        )
        grants = {rp.permission.code: rp.granted for rp in role.permissions}
        assert grants == {"guest.read.property": True, "guest.update.property": False}

    def test_duplicate_entries_deny_wins(self, role_svc):
        role = role_svc.create_role("前台", permissions=[
            "guest.read.property", {"permission": "guest.read.property", "granted": False},
        ])
        assert [rp.granted for rp in role.permissions] == [False]

    def test_duplicate_name_in_tenant(self, role_svc):
        role_svc.create_role("前台", organization_id=1)
        with pytest.raises(Conflict):
            role_svc.create_role("前台", organization_id=1)
        role_svc.create_role("前台", organization_id=2)

    def test_unknown_permission(self, role_svc):
        with pytest.raises(NotFound):
            role_svc.create_role("前台", permissions=["spa.read.property"])

    def test_system_role_is_global(self, role_svc):
        role = role_svc.create_role("Auditor", organization_id=1, is_system_role=True)
        assert role.organization_id is None
        with pytest.raises(Conflict):
            role_svc.delete_role(role.id)

    def test_update_role(self, role_svc):
        role = role_svc.create_role("前台", organization_id=1)
        role_svc.create_role("夜班", organization_id=1)
        updated = role_svc.update_role(role.id, description="前台接待", priority=5)
        assert updated.description == "前台接待"
        assert updated.priority == 5
        with pytest.raises(Conflict):
            role_svc.update_role(role.id, name="夜班")

    def test_delete_role_in_use(self, role_svc, assign_svc, make_user):
        user = make_user()
        role = role_svc.create_role("前台")
        assign_svc.assign_role(user.id, role.id)
        with pytest.raises(Conflict):
            role_svc.delete_role(role.id)
        assign_svc.revoke_role(user.id, role.id)
        role_svc.delete_role(role.id)
        with pytest.raises(NotFound):
            role_svc.get_role(role.id)

    def test_role_permission_edits(self, role_svc):
        role = role_svc.create_role("前台", permissions=["guest.read.property"])
        role_svc.add_role_permission(role.id, "unit.read.property")
        role_svc.add_role_permission(role.id, "guest.read.property", granted=False)
        codes = {rp.permission.code: rp.granted for rp in role_svc.get_role(role.id).permissions}
        assert codes == {"guest.read.property": False, "unit.read.property": True}

        role_svc.remove_role_permission(role.id, "unit.read.property")
        with pytest.raises(NotFound):
            role_svc.remove_role_permission(role.id, "unit.read.property")

        role_svc.set_role_permissions(role.id, ["reservation.read.property"])
        assert [rp.permission.code for rp in role_svc.get_role(role.id).permissions] == [
            "reservation.read.property"
        ]

    def test_bulk_role_permissions(self, role_svc):
        r1 = role_svc.create_role("前台")
        r2 = role_svc.create_role("客房")
        counts = role_svc.bulk_role_permissions({
            r1.id: ["guest.read.property"],
            r2.id: ["unit.read.property", "unit.update.property"],
        })
        assert counts == {r1.id: 1, r2.id: 2}

    def test_get_roles_filters_tenant(self, role_svc):
        role_svc.create_role("A", organization_id=1)
        role_svc.create_role("B", organization_id=2)
        assert [r.name for r in role_svc.get_roles(organization_id=1)] == ["A"]


class TestAssignmentService:
    def test_assign_and_revoke(self, assign_svc, role_svc, make_user):
        user = make_user()
        role = role_svc.create_role("前台")
        assignment = assign_svc.assign_role(user.id, role.id, assigned_by=None)
        assert assignment.is_active
        assert [a.role_id for a in assign_svc.get_user_roles(user.id)] == [role.id]

        assign_svc.revoke_role(user.id, role.id)
        assert assign_svc.get_user_roles(user.id) == []
        with pytest.raises(NotFound):
            assign_svc.revoke_role(user.id, role.id)

    def test_reassign_reactivates(self, assign_svc, role_svc, make_user, db_session):
        user = make_user()
        role = role_svc.create_role("前台")
        assign_svc.assign_role(user.id, role.id)
        assign_svc.revoke_role(user.id, role.id)
        expires = utcnow() + timedelta(days=7)
        assign_svc.assign_role(user.id, role.id, expires_at=expires)

        rows = db_session.query(UserCustomRole).filter(UserCustomRole.user_id == user.id).all()
        assert len(rows) == 1
        assert rows[0].is_active
        assert rows[0].expires_at == expires

    def test_assign_errors(self, assign_svc, role_svc, make_user):
        user = make_user()
        with pytest.raises(NotFound):
            assign_svc.assign_role(user.id, 999)
        with pytest.raises(NotFound):
            assign_svc.assign_role(999, 1)
        role = role_svc.create_role("停用", is_active=False)
        with pytest.raises(Conflict):
            assign_svc.assign_role(user.id, role.id)

    def test_bulk_assign(self, assign_svc, role_svc, make_user):
        u1, u2 = make_user(), make_user()
        role = role_svc.create_role("前台")
        result = assign_svc.bulk_assign([u1.id, 999, u2.id], role.id)
        assert result["assigned"] == [u1.id, u2.id]
        assert result["errors"] == [{"user_id": 999, "error": "user not found: 999"}]

    def test_overrides(self, assign_svc, make_user):
        user = make_user()
        assign_svc.set_override(user.id, "unit.read.property", granted=True)
        override = assign_svc.set_override(user.id, "unit.read.property", granted=False)
        assert override.granted is False
        assert len(assign_svc.get_overrides(user.id)) == 1

        assign_svc.remove_override(user.id, "unit.read.property")
        assert assign_svc.get_overrides(user.id) == []
        with pytest.raises(NotFound):
            assign_svc.remove_override(user.id, "unit.read.property")


class TestCacheInvalidation:
    def test_revoke_is_visible_on_next_evaluation(self, assign_svc, role_svc, make_user, evaluator):
        user = make_user(organization_id=1, property_id=10)
        role = role_svc.create_role("客房", permissions=["unit.update.property"])
        assign_svc.assign_role(user.id, role.id)

        assert evaluator.evaluate("unit.update.property", _ctx(user)).granted
        assign_svc.revoke_role(user.id, role.id)
        assert not evaluator.evaluate("unit.update.property", _ctx(user)).granted

    def test_role_permission_change_reaches_holders(self, assign_svc, role_svc, make_user, evaluator):
        user = make_user(organization_id=1, property_id=10)
        role = role_svc.create_role("客房", permissions=["unit.read.property"])
        assign_svc.assign_role(user.id, role.id)

        assert not evaluator.evaluate("unit.update.property", _ctx(user)).granted
        role_svc.add_role_permission(role.id, "unit.update.property")
        assert evaluator.evaluate("unit.update.property", _ctx(user)).granted

    def test_deny_override_applies_immediately(self, assign_svc, make_user, evaluator):
        user = make_user(LegacyRole.PROPERTY_MANAGER, organization_id=1, property_id=10)
        assert evaluator.evaluate("guest.read.property", _ctx(user)).granted

        assign_svc.set_override(user.id, "guest.read.property", granted=False)
        decision = evaluator.evaluate("guest.read.property", _ctx(user))
        assert not decision.granted
        assert decision.reason == "explicitly denied"

    def test_first_assignment_ends_legacy_fallback(self, assign_svc, role_svc, make_user, evaluator):
        user = make_user(LegacyRole.PROPERTY_MANAGER, organization_id=1, property_id=10)
        assert evaluator.evaluate("unit.update.property", _ctx(user)).granted

        role = role_svc.create_role("只读", permissions=["guest.read.property"])
        assign_svc.assign_role(user.id, role.id)
        assert not evaluator.evaluate("unit.update.property", _ctx(user)).granted
        assert evaluator.evaluate("guest.read.property", _ctx(user)).granted

    def test_catalog_deactivation_invalidates_everyone(self, db_session, catalog, cache,
                                                       make_user, evaluator):
        user = make_user(LegacyRole.PROPERTY_MANAGER, organization_id=1, property_id=10)
        AssignmentService(db_session, cache).set_override(user.id, "unit.read.property", granted=False)
        assert not evaluator.evaluate("unit.read.property", _ctx(user)).granted

        row = catalog.lookup_code("unit.read.property")
        CatalogAdminService(db_session, cache).set_active(row.id, False)
        assert evaluator.evaluate("unit.read.property", _ctx(user)).granted


class TestTimezoneAwareExpiry:
    """带时区的到期时间换算为 UTC 存储，与 naive UTC 比较时不偏移"""

    @staticmethod
    def _an_hour_ago_in_shanghai():
        return datetime.now(timezone(timedelta(hours=8))) - timedelta(hours=1)

    def test_expired_assignment_is_not_active(self, assign_svc, role_svc, make_user,
                                              session_factory, db_session):
        user = make_user()
        role = role_svc.create_role("前台", permissions=["unit.read.property"])
        assign_svc.assign_role(user.id, role.id, expires_at=self._an_hour_ago_in_shanghai())

        row = db_session.query(UserCustomRole).filter(UserCustomRole.user_id == user.id).one()
        assert row.expires_at.tzinfo is None
        assert row.expires_at < utcnow()
        store = SqlRoleAssignmentStore(session_factory)
        assert store.active_role_assignments(user.id, utcnow()) == []

    def test_expired_assignment_grants_nothing(self, assign_svc, role_svc, make_user, evaluator):
        user = make_user(organization_id=1, property_id=10)
        role = role_svc.create_role("客房", permissions=["unit.update.property"])
        assign_svc.assign_role(user.id, role.id, expires_at=self._an_hour_ago_in_shanghai())
        assert not evaluator.evaluate("unit.update.property", _ctx(user)).granted

    def test_future_aware_expiry_keeps_assignment(self, assign_svc, role_svc, make_user,
                                                  session_factory):
        user = make_user()
        role = role_svc.create_role("前台")
        expires = datetime.now(timezone(timedelta(hours=-5))) + timedelta(hours=2)
        assignment = assign_svc.assign_role(user.id, role.id, expires_at=expires)

        assert assignment.expires_at == expires.astimezone(timezone.utc).replace(tzinfo=None)
        store = SqlRoleAssignmentStore(session_factory)
        assert [r.role_id for r in store.active_role_assignments(user.id, utcnow())] == [role.id]

    def test_expired_override_is_ignored(self, assign_svc, make_user, session_factory,
                                         db_session):
        user = make_user()
        assign_svc.set_override(user.id, "unit.read.property", granted=True,
                                expires_at=self._an_hour_ago_in_shanghai())

        row = db_session.query(UserPermission).filter(UserPermission.user_id == user.id).one()
        assert row.expires_at.tzinfo is None
        store = SqlRoleAssignmentStore(session_factory)
        assert store.overrides(user.id) == set()
        assert store.overrides(user.id, datetime.now(timezone.utc)) == set()


class TestRoleHistory:
    def test_assign_and_revoke_are_recorded(self, assign_svc, role_svc, make_user):
        admin, user = make_user(), make_user()
        role = role_svc.create_role("前台")
        assign_svc.assign_role(user.id, role.id, assigned_by=admin.id, reason="入职")
        assign_svc.revoke_role(user.id, role.id, revoked_by=admin.id, reason="离职")

        history = assign_svc.get_user_role_history(user.id)
        assert [h.action for h in history] == [RoleHistoryAction.REMOVED, RoleHistoryAction.ASSIGNED]
        assert [h.reason for h in history] == ["离职", "入职"]
        assert all(h.performed_by == admin.id for h in history)
        assert all(h.role_name == "前台" and h.source == "manual" for h in history)

    def test_failed_assign_writes_nothing(self, assign_svc, make_user, db_session):
        user = make_user()
        with pytest.raises(NotFound):
            assign_svc.assign_role(user.id, 999)
        with pytest.raises(NotFound):
            assign_svc.revoke_role(user.id, 999)
        assert db_session.query(RoleAssignmentHistory).count() == 0

    def test_bulk_operations_are_recorded_per_user(self, assign_svc, role_svc, make_user):
        u1, u2 = make_user(), make_user()
        role = role_svc.create_role("前台")
        assign_svc.bulk_assign([u1.id, 999, u2.id], role.id, reason="开业")

        history = assign_svc.get_role_history(role.id)
        assert sorted(h.user_id for h in history) == [u1.id, u2.id]
        assert {h.action for h in history} == {RoleHistoryAction.BULK_ASSIGNED}
        assert {h.source for h in history} == {"bulk"}

    def test_history_keeps_expiry(self, assign_svc, role_svc, make_user):
        user = make_user()
        role = role_svc.create_role("前台")
        expires = utcnow() + timedelta(days=3)
        assign_svc.assign_role(user.id, role.id, expires_at=expires)
        assert assign_svc.get_user_role_history(user.id)[0].expires_at == expires

    def test_history_limit_and_unknown_user(self, assign_svc, role_svc, make_user):
        user = make_user()
        role = role_svc.create_role("前台")
        for _ in range(3):
            assign_svc.assign_role(user.id, role.id)
        assert len(assign_svc.get_user_role_history(user.id, limit=2)) == 2
        with pytest.raises(NotFound):
            assign_svc.get_user_role_history(999)


class TestBulkRevoke:
    def test_revokes_and_reports_errors(self, assign_svc, role_svc, make_user):
        u1, u2, u3 = make_user(), make_user(), make_user()
        role = role_svc.create_role("前台")
        assign_svc.bulk_assign([u1.id, u2.id], role.id)

        result = assign_svc.bulk_revoke([u1.id, u3.id, u2.id], role.id, reason="调岗")
        assert result["revoked"] == [u1.id, u2.id]
        assert result["errors"] == [
            {"user_id": u3.id, "error": f"role assignment not found: {u3.id}:{role.id}"},
        ]
        assert assign_svc.get_user_roles(u1.id) == []
        assert assign_svc.get_user_roles(u2.id) == []

        history = assign_svc.get_role_history(role.id)
        removed = [h for h in history if h.action == RoleHistoryAction.BULK_REMOVED]
        assert sorted(h.user_id for h in removed) == [u1.id, u2.id]
        assert {h.reason for h in removed} == {"调岗"}

    def test_revoke_reaches_cached_decisions(self, assign_svc, role_svc, make_user, evaluator):
        u1, u2 = make_user(organization_id=1, property_id=10), make_user(organization_id=1, property_id=10)
        role = role_svc.create_role("客房", permissions=["unit.update.property"])
        assign_svc.bulk_assign([u1.id, u2.id], role.id)
        assert evaluator.evaluate("unit.update.property", _ctx(u1)).granted
        assert evaluator.evaluate("unit.update.property", _ctx(u2)).granted

        assign_svc.bulk_revoke([u1.id, u2.id], role.id)
        assert not evaluator.evaluate("unit.update.property", _ctx(u1)).granted
        assert not evaluator.evaluate("unit.update.property", _ctx(u2)).granted


class TestRollback:
    def test_rollback_assignment_revokes(self, assign_svc, role_svc, make_user, evaluator):
        admin, user = make_user(), make_user(organization_id=1, property_id=10)
        role = role_svc.create_role("客房", permissions=["unit.update.property"])
        assign_svc.assign_role(user.id, role.id)
        entry = assign_svc.get_user_role_history(user.id)[0]
        assert evaluator.evaluate("unit.update.property", _ctx(user)).granted

        record = assign_svc.rollback(entry.id, performed_by=admin.id, reason="误操作")
        assert record.action == RoleHistoryAction.REMOVED
        assert record.source == "rollback"
        assert record.parent_id == entry.id
        assert record.reason == "Rollback: 误操作"
        assert assign_svc.get_user_roles(user.id) == []
        assert not evaluator.evaluate("unit.update.property", _ctx(user)).granted

    def test_rollback_removal_restores_expiry(self, assign_svc, role_svc, make_user):
        user = make_user()
        role = role_svc.create_role("前台")
        expires = utcnow() + timedelta(days=5)
        assign_svc.assign_role(user.id, role.id, expires_at=expires)
        assign_svc.revoke_role(user.id, role.id)
        removal = assign_svc.get_user_role_history(user.id)[0]

        record = assign_svc.rollback(removal.id)
        assert record.action == RoleHistoryAction.ASSIGNED
        assert record.reason == "Rollback"
        roles = assign_svc.get_user_roles(user.id)
        assert [a.role_id for a in roles] == [role.id]
        assert roles[0].expires_at == expires

    def test_rollback_of_inactive_assignment_fails(self, assign_svc, role_svc, make_user):
        user = make_user()
        role = role_svc.create_role("前台")
        assign_svc.assign_role(user.id, role.id)
        entry = assign_svc.get_user_role_history(user.id)[0]
        assign_svc.revoke_role(user.id, role.id)
        with pytest.raises(NotFound):
            assign_svc.rollback(entry.id)

    def test_unknown_entry(self, assign_svc):
        with pytest.raises(NotFound):
            assign_svc.rollback(999)
