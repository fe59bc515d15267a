"""
授权管理 API 路由 - 权限目录 + 自定义角色 + 用户角色分配 + 分配历史 + 直接授权 + 有效权限报表
前缀: /authz

每个接口由 require_operation 守卫；守卫返回的 scope_filters 决定管理员能看到 / 修改哪些数据。
"""
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.security import permissions as ops
from app.security.auth import get_current_user, get_permission_filters, require_operation
from app.security.engine import PermissionEngine, get_permission_engine
from app.security.query_filters import apply_scope_filters, within_scope
from app.system.models.rbac import CustomRole, User
from app.system.schemas import (
    BulkAssignResult, BulkRevokeResult, BulkRoleAssign, BulkRoleRevoke, DecisionResponse,
    EffectivePermissionsReport, EvaluateRequest, ExplainResponse, OverrideResponse, OverrideSet,
    PermissionDefinition, PermissionResponse, PermissionStatusUpdate, RoleCreate,
    RoleDetailResponse, RoleHistoryResponse, RolePermissionEntry, RolePermissionResponse,
    RolePermissionsSet, RoleResponse, RoleUpdate, RollbackRequest, SeedResult,
    SystemRoleResponse, UserRoleAssign, UserRoleResponse,
)
from app.system.services.catalog_service import PermissionCatalogService
from app.system.services.permission_report import PermissionReportService
from app.system.services.rbac_seed import default_catalog, legacy_grant_definitions
from app.system.services.rbac_service import AssignmentService, CatalogAdminService, RoleService
from core.security.errors import (
    AuthorizationError, Conflict, InvalidPermission, NotFound, StoreUnavailable,
)
from core.security.legacy import LegacyRole, SYSTEM_ROLE_INFO, can_assign_role
from core.security.permission import Permission
from core.security.scope import TenantContext

router = APIRouter(prefix="/authz", tags=["授权管理"])


def _http_error(e: Exception) -> HTTPException:
    """服务层异常 → HTTP 状态码"""
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, Conflict):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidPermission):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, StoreUnavailable):
        return HTTPException(status_code=503, detail="权限存储暂不可用")
    return HTTPException(status_code=400, detail=str(e))


def _forbidden(detail: str = "权限不足") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


# ========== 作用域检查 ==========

def _role_visible(role: CustomRole, filters: Dict) -> bool:
    """可见范围：系统角色，或租户在过滤范围内（未指定物业的组织角色对物业管理员可见）"""
    return bool(role.is_system_role) or within_scope(role, filters, include_unscoped=True)


def _role_editable(role: CustomRole, filters: Dict) -> bool:
    return within_scope(role, filters)


def _load_role(db: Session, role_id: int, filters: Dict, editable: bool = False) -> CustomRole:
    try:
        role = RoleService(db).get_role(role_id)
    except NotFound as e:
        raise _http_error(e)
    allowed = _role_editable(role, filters) if editable else _role_visible(role, filters)
    if not allowed:
        # 范围外的角色与不存在的角色同样处理
        raise HTTPException(status_code=404, detail=f"role not found: {role_id}")
    return role


def _load_user(db: Session, user_id: int, filters: Dict) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not within_scope(user, filters, owner_column="id"):
        raise HTTPException(status_code=404, detail=f"user not found: {user_id}")
    return user


def _grant_ceiling(request: Request):
    """管理员能授出的最大作用域 = 守卫命中的权限的作用域"""
    decision = getattr(request.state, "permission_decision", None)
    return decision.matched.scope if decision and decision.matched else None


def _check_grantable(request: Request, codes: List[str]) -> None:
    ceiling = _grant_ceiling(request)
    for code in codes:
        try:
            permission = Permission.parse(code)
        except InvalidPermission as e:
            raise _http_error(e)
        if ceiling is None or permission.scope > ceiling:
            raise _forbidden(f"不能授出超出自身作用域的权限: {code}")


def _load_assignable_role(db: Session, role_id: int, filters: Dict, actor: User) -> CustomRole:
    """
    可分配的角色：作用域内的自定义角色，或层级低于操作者的系统角色

    系统角色对应旧版角色层级，非平台管理员只能分配低于自身层级的系统角色。
    """
    role = _load_role(db, role_id, filters)
    if not role.is_system_role:
        if not _role_editable(role, filters):
            raise HTTPException(status_code=404, detail=f"role not found: {role_id}")
        return role
    if not filters:
        return role
    target = next((r for r, info in SYSTEM_ROLE_INFO.items() if info.name == role.name), None)
    actor_role = LegacyRole(actor.legacy_role) if actor.legacy_role else None
    if target is None or actor_role is None or not can_assign_role(actor_role, target):
        raise _forbidden(f"不能分配系统角色: {role.name}")
    return role


# ========== 响应转换 ==========

def _role_response(role: CustomRole) -> RoleResponse:
    resp = RoleResponse.model_validate(role)
    resp.permission_count = len(role.permissions) if role.permissions else 0
    return resp


def _role_detail(role: CustomRole) -> RoleDetailResponse:
    resp = RoleDetailResponse(**_role_response(role).model_dump())
    resp.permissions = [
        RolePermissionResponse(
            permission=rp.permission.code,
            granted=rp.granted,
            category=rp.permission.category,
        )
        for rp in role.permissions
    ]
    return resp


def _entries(items: List[RolePermissionEntry]) -> List[Dict]:
    return [{"permission": e.permission, "granted": e.granted} for e in items]


# ========== 权限目录 ==========

@router.get("/permissions", response_model=List[PermissionResponse])
def list_permissions(
    category: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_operation(ops.PERMISSION_LIST)),
):
    """获取权限目录"""
    catalog = PermissionCatalogService(db)
    if category:
        return catalog.list_by_category(category)
    return catalog.list_permissions(include_inactive=include_inactive)


@router.get("/permissions/categories", response_model=List[str])
def list_permission_categories(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_operation(ops.PERMISSION_LIST)),
):
    """获取权限分类"""
    return PermissionCatalogService(db).list_categories()


@router.post("/permissions/seed", response_model=SeedResult)
def seed_permissions(
    definitions: Optional[List[PermissionDefinition]] = None,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.PERMISSION_MANAGE)),
):
    """批量写入权限目录（幂等）；不传内容时写入默认目录"""
    if definitions:
        items = [d.model_dump() for d in definitions]
    else:
        items = default_catalog() + legacy_grant_definitions(engine.aggregator.legacy_table)
    try:
        return CatalogAdminService(db, engine.cache).seed(items)
    except (AuthorizationError, InvalidPermission) as e:
        raise _http_error(e)


@router.patch("/permissions/{permission_id}", response_model=PermissionResponse)
def update_permission_status(
    permission_id: int,
    data: PermissionStatusUpdate,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.PERMISSION_MANAGE)),
):
    """启用 / 停用权限（影响所有用户）"""
    try:
        return CatalogAdminService(db, engine.cache).set_active(permission_id, data.is_active)
    except AuthorizationError as e:
        raise _http_error(e)


# ========== 角色 ==========

@router.get("/roles", response_model=List[RoleResponse])
def list_roles(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_operation(ops.ROLE_READ)),
    filters: Dict = Depends(get_permission_filters),
):
    """获取角色列表（系统角色 + 作用域内的自定义角色）"""
    q = db.query(CustomRole)
    if not include_inactive:
        q = q.filter(CustomRole.is_active == True)  # noqa: E712
    q = apply_scope_filters(q, CustomRole, filters, include_unscoped=True)
    roles = q.order_by(CustomRole.priority.desc(), CustomRole.id).all()
    return [_role_response(r) for r in roles if _role_visible(r, filters)]


@router.get("/roles/{role_id}", response_model=RoleDetailResponse)
def get_role(
    role_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_operation(ops.ROLE_READ)),
    filters: Dict = Depends(get_permission_filters),
):
    """获取角色详情（含权限列表）"""
    return _role_detail(_load_role(db, role_id, filters))


@router.post("/roles", response_model=RoleDetailResponse, status_code=201)
def create_role(
    data: RoleCreate,
    request: Request,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_CREATE)),
    filters: Dict = Depends(get_permission_filters),
):
    """创建自定义角色（租户默认取管理员的作用域）"""
    tenant = {
        "organization_id": data.organization_id if data.organization_id is not None
        else filters.get("organizationId"),
        "property_id": data.property_id if data.property_id is not None
        else filters.get("propertyId"),
    }
    if not within_scope(tenant, filters):
        raise _forbidden("角色租户超出管理范围")
    _check_grantable(request, [e.permission for e in data.permissions])

    try:
        role = RoleService(db, engine.cache).create_role(
            name=data.name,
            description=data.description,
            priority=data.priority,
            organization_id=tenant["organization_id"],
            property_id=tenant["property_id"],
            permissions=_entries(data.permissions),
        )
    except (AuthorizationError, InvalidPermission) as e:
        raise _http_error(e)
    return _role_detail(role)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    role_id: int,
    data: RoleUpdate,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_UPDATE)),
    filters: Dict = Depends(get_permission_filters),
):
    """更新角色"""
    _load_role(db, role_id, filters, editable=True)
    try:
        role = RoleService(db, engine.cache).update_role(role_id, **data.model_dump(exclude_unset=True))
    except AuthorizationError as e:
        raise _http_error(e)
    return _role_response(role)


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    role_id: int,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_DELETE)),
    filters: Dict = Depends(get_permission_filters),
):
    """删除角色（系统角色与仍有分配的角色不可删除）"""
    _load_role(db, role_id, filters, editable=True)
    try:
        RoleService(db, engine.cache).delete_role(role_id)
    except AuthorizationError as e:
        raise _http_error(e)


@router.put("/roles/{role_id}/permissions", response_model=RoleDetailResponse)
def set_role_permissions(
    role_id: int,
    data: RolePermissionsSet,
    request: Request,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_UPDATE)),
    filters: Dict = Depends(get_permission_filters),
):
    """整体替换角色权限（授权 / 拒绝）"""
    _load_role(db, role_id, filters, editable=True)
    _check_grantable(request, [e.permission for e in data.permissions])
    try:
        role = RoleService(db, engine.cache).set_role_permissions(role_id, _entries(data.permissions))
    except (AuthorizationError, InvalidPermission) as e:
        raise _http_error(e)
    return _role_detail(role)


@router.post("/roles/{role_id}/permissions", response_model=RolePermissionResponse, status_code=201)
def add_role_permission(
    role_id: int,
    data: RolePermissionEntry,
    request: Request,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_UPDATE)),
    filters: Dict = Depends(get_permission_filters),
):
    """为角色添加单个权限"""
    _load_role(db, role_id, filters, editable=True)
    _check_grantable(request, [data.permission])
    try:
        link = RoleService(db, engine.cache).add_role_permission(role_id, data.permission, data.granted)
    except (AuthorizationError, InvalidPermission) as e:
        raise _http_error(e)
    return RolePermissionResponse(
        permission=link.permission.code, granted=link.granted, category=link.permission.category,
    )


@router.delete("/roles/{role_id}/permissions/{code}", status_code=204)
def remove_role_permission(
    role_id: int,
    code: str,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_UPDATE)),
    filters: Dict = Depends(get_permission_filters),
):
    """移除角色的单个权限"""
    _load_role(db, role_id, filters, editable=True)
    try:
        RoleService(db, engine.cache).remove_role_permission(role_id, code)
    except (AuthorizationError, InvalidPermission) as e:
        raise _http_error(e)


@router.get("/system-roles", response_model=List[SystemRoleResponse])
def list_system_roles(
    current_user: User = Depends(require_operation(ops.ROLE_READ)),
):
    """旧版系统角色说明，以及当前用户可分配哪些"""
    actor = LegacyRole(current_user.legacy_role) if current_user.legacy_role else None
    return [
        SystemRoleResponse(
            role=role.value,
            assignable=actor is not None and can_assign_role(actor, role),
            **info.to_dict(),
        )
        for role, info in SYSTEM_ROLE_INFO.items()
    ]


# ========== 用户角色分配 ==========

@router.get("/users/{user_id}/roles", response_model=List[UserRoleResponse])
def get_user_roles(
    user_id: int,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_operation(ops.ROLE_ASSIGN)),
    filters: Dict = Depends(get_permission_filters),
):
    """获取用户的角色分配"""
    _load_user(db, user_id, filters)
    assignments = AssignmentService(db).get_user_roles(user_id, include_inactive=include_inactive)
    return [
        UserRoleResponse(
            role_id=a.role_id,
            role_name=a.role.name if a.role else "",
            is_active=a.is_active,
            expires_at=a.expires_at,
            assigned_by=a.assigned_by,
            assigned_at=a.assigned_at,
        )
        for a in assignments
    ]


@router.post("/users/{user_id}/roles", response_model=UserRoleResponse, status_code=201)
def assign_user_role(
    user_id: int,
    data: UserRoleAssign,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_ASSIGN)),
    filters: Dict = Depends(get_permission_filters),
):
    """为用户分配角色"""
    _load_user(db, user_id, filters)
    role = _load_assignable_role(db, data.role_id, filters, current_user)
    try:
        assignment = AssignmentService(db, engine.cache).assign_role(
            user_id, data.role_id, expires_at=data.expires_at, assigned_by=current_user.id,
        )
    except AuthorizationError as e:
        raise _http_error(e)
    return UserRoleResponse(
        role_id=assignment.role_id,
        role_name=role.name,
        is_active=assignment.is_active,
        expires_at=assignment.expires_at,
        assigned_by=assignment.assigned_by,
        assigned_at=assignment.assigned_at,
    )


@router.delete("/users/{user_id}/roles/{role_id}", status_code=204)
def revoke_user_role(
    user_id: int,
    role_id: int,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_ASSIGN)),
    filters: Dict = Depends(get_permission_filters),
):
    """撤销用户角色（下一个请求即生效）"""
    _load_user(db, user_id, filters)
    try:
        AssignmentService(db, engine.cache).revoke_role(user_id, role_id, revoked_by=current_user.id)
    except AuthorizationError as e:
        raise _http_error(e)


@router.post("/roles/{role_id}/assignments", response_model=BulkAssignResult)
def bulk_assign_role(
    role_id: int,
    data: BulkRoleAssign,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_ASSIGN)),
    filters: Dict = Depends(get_permission_filters),
):
    """批量分配角色；范围外或不存在的用户记入 errors"""
    role = _load_assignable_role(db, role_id, filters, current_user)

    users = {u.id: u for u in db.query(User).filter(User.id.in_(data.user_ids)).all()}
    in_scope, errors = [], []
    for user_id in data.user_ids:
        user = users.get(user_id)
        if user is None or not within_scope(user, filters, owner_column="id"):
            errors.append({"user_id": user_id, "error": f"user not found: {user_id}"})
        else:
            in_scope.append(user_id)

    try:
        result = AssignmentService(db, engine.cache).bulk_assign(
            in_scope, role_id, expires_at=data.expires_at, assigned_by=current_user.id,
        )
    except AuthorizationError as e:
        raise _http_error(e)
    result["errors"] = errors + result["errors"]
    return result


@router.post("/roles/{role_id}/assignments/revoke", response_model=BulkRevokeResult)
def bulk_revoke_role(
    role_id: int,
    data: BulkRoleRevoke,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_ASSIGN)),
    filters: Dict = Depends(get_permission_filters),
):
    """批量撤销角色；范围外的用户或没有生效分配的用户记入 errors"""
    _load_assignable_role(db, role_id, filters, current_user)

    users = {u.id: u for u in db.query(User).filter(User.id.in_(data.user_ids)).all()}
    in_scope, errors = [], []
    for user_id in data.user_ids:
        user = users.get(user_id)
        if user is None or not within_scope(user, filters, owner_column="id"):
            errors.append({"user_id": user_id, "error": f"user not found: {user_id}"})
        else:
            in_scope.append(user_id)

    result = AssignmentService(db, engine.cache).bulk_revoke(
        in_scope, role_id, revoked_by=current_user.id, reason=data.reason,
    )
    result["errors"] = errors + result["errors"]
    return result


# ========== 分配历史 ==========

@router.get("/users/{user_id}/role-history", response_model=List[RoleHistoryResponse])
def get_user_role_history(
    user_id: int,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_operation(ops.ROLE_ASSIGN)),
    filters: Dict = Depends(get_permission_filters),
):
    """用户的角色分配变更历史（最新在前）"""
    _load_user(db, user_id, filters)
    return AssignmentService(db).get_user_role_history(user_id, limit=limit)


@router.get("/roles/{role_id}/history", response_model=List[RoleHistoryResponse])
def get_role_history(
    role_id: int,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_operation(ops.ROLE_ASSIGN)),
    filters: Dict = Depends(get_permission_filters),
):
    """角色的分配变更历史；只返回作用域内用户的记录"""
    _load_role(db, role_id, filters)
    entries = AssignmentService(db).get_role_history(role_id, limit=limit)
    if not filters:
        return entries
    user_ids = {e.user_id for e in entries}
    users = {u.id: u for u in db.query(User).filter(User.id.in_(user_ids)).all()}
    return [
        e for e in entries
        if e.user_id in users and within_scope(users[e.user_id], filters, owner_column="id")
    ]


@router.post("/role-history/{entry_id}/rollback", response_model=RoleHistoryResponse)
def rollback_role_history(
    entry_id: int,
    data: RollbackRequest,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.ROLE_ASSIGN)),
    filters: Dict = Depends(get_permission_filters),
):
    """回滚一次分配 / 撤销"""
    service = AssignmentService(db, engine.cache)
    try:
        entry = service.get_history_entry(entry_id)
    except NotFound as e:
        raise _http_error(e)
    _load_user(db, entry.user_id, filters)
    _load_assignable_role(db, entry.role_id, filters, current_user)
    try:
        return service.rollback(entry_id, performed_by=current_user.id, reason=data.reason)
    except AuthorizationError as e:
        raise _http_error(e)


# ========== 用户直接授权 ==========

@router.get("/users/{user_id}/overrides", response_model=List[OverrideResponse])
def get_user_overrides(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_operation(ops.OVERRIDE_MANAGE)),
    filters: Dict = Depends(get_permission_filters),
):
    """获取用户的直接授权 / 拒绝"""
    _load_user(db, user_id, filters)
    return [
        OverrideResponse(
            permission=o.permission.code, granted=o.granted,
            expires_at=o.expires_at, granted_by=o.granted_by,
        )
        for o in AssignmentService(db).get_overrides(user_id)
    ]


@router.put("/users/{user_id}/overrides", response_model=OverrideResponse)
def set_user_override(
    user_id: int,
    data: OverrideSet,
    request: Request,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.OVERRIDE_MANAGE)),
    filters: Dict = Depends(get_permission_filters),
):
    """直接授权 / 拒绝某个权限"""
    _load_user(db, user_id, filters)
    if data.granted:
        _check_grantable(request, [data.permission])
    try:
        override = AssignmentService(db, engine.cache).set_override(
            user_id, data.permission, data.granted,
            expires_at=data.expires_at, granted_by=current_user.id,
        )
    except (AuthorizationError, InvalidPermission) as e:
        raise _http_error(e)
    return OverrideResponse(
        permission=override.permission.code, granted=override.granted,
        expires_at=override.expires_at, granted_by=override.granted_by,
    )


@router.delete("/users/{user_id}/overrides/{code}", status_code=204)
def remove_user_override(
    user_id: int,
    code: str,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.OVERRIDE_MANAGE)),
    filters: Dict = Depends(get_permission_filters),
):
    """移除直接授权 / 拒绝"""
    _load_user(db, user_id, filters)
    try:
        AssignmentService(db, engine.cache).remove_override(user_id, code)
    except (AuthorizationError, InvalidPermission) as e:
        raise _http_error(e)


# ========== 有效权限报表 ==========

@router.get("/users/{user_id}/effective-permissions", response_model=EffectivePermissionsReport)
def get_effective_permissions(
    user_id: int,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.USER_PERMISSION_REPORT, owner_param="user_id")),
    filters: Dict = Depends(get_permission_filters),
):
    """列出用户的有效权限（与实际评估走同一条路径）"""
    _load_user(db, user_id, filters)
    try:
        return PermissionReportService(engine.evaluator).effective_permissions_report(user_id)
    except StoreUnavailable as e:
        raise _http_error(e)


@router.get("/users/{user_id}/explain", response_model=ExplainResponse)
def explain_permission(
    user_id: int,
    permission: str,
    organization_id: Optional[int] = None,
    property_id: Optional[int] = None,
    department_id: Optional[int] = None,
    resource_owner_id: Optional[int] = None,
    db: Session = Depends(get_db),
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(require_operation(ops.USER_PERMISSION_REPORT, owner_param="user_id")),
    filters: Dict = Depends(get_permission_filters),
):
    """解释某个权限对该用户在给定租户上下文中的评估结果"""
    _load_user(db, user_id, filters)
    return PermissionReportService(engine.evaluator).explain(
        user_id, permission,
        organization_id=organization_id,
        property_id=property_id,
        department_id=department_id,
        resource_owner_id=resource_owner_id,
    )


@router.get("/me/permissions", response_model=List[str])
def my_permissions(
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(get_current_user),
):
    """当前用户已授权的权限码"""
    try:
        return PermissionReportService(engine.evaluator).codes(current_user.id)
    except StoreUnavailable as e:
        raise _http_error(e)


@router.post("/me/evaluate", response_model=DecisionResponse)
def evaluate_for_me(
    data: EvaluateRequest,
    engine: PermissionEngine = Depends(get_permission_engine),
    current_user: User = Depends(get_current_user),
):
    """评估当前用户是否拥有任一权限（租户未指定时使用用户所属租户）"""
    context = TenantContext(
        user_id=current_user.id,
        organization_id=data.organization_id if data.organization_id is not None
        else current_user.organization_id,
        property_id=data.property_id if data.property_id is not None
        else current_user.property_id,
        department_id=data.department_id if data.department_id is not None
        else current_user.department_id,
        resource_owner_id=data.resource_owner_id,
    )
    return engine.evaluator.evaluate_any(data.permissions, context).to_dict()
