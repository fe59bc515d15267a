"""
认证与授权依赖

- get_current_user: 校验 Bearer token（只校验，不签发），sub 为用户 ID
- require_operation: 按操作注册表声明的权限调用评估器，拒绝时返回 403，
  授权时把数据过滤条件放到 request.state.permission_filters
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.security.engine import PermissionEngine, get_permission_engine
from app.security.permissions import DECLARED_OPERATIONS
from app.system.models.rbac import User
from core.security.errors import NotFound
from core.security.scope import TenantContext

logger = logging.getLogger(__name__)

security = HTTPBearer()

_TENANT_PARAMS = ("organization_id", "property_id", "department_id")


def decode_token(token: str) -> dict:
    """解码 JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """获取当前登录用户"""
    payload = decode_token(credentials.credentials)

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户不存在"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="账号已停用"
        )

    return user


def _int_param(request: Request, name: str) -> Optional[int]:
    raw = request.path_params.get(name)
    if raw is None:
        raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"参数 {name} 必须是整数"
        )


def build_tenant_context(request: Request, user: User,
                         owner_param: Optional[str] = None) -> TenantContext:
    """
    从请求构建租户上下文

    organization_id / property_id / department_id 取自路径或查询参数，
    未提供时使用当前用户所属的租户；owner_param 指定的路径参数作为资源所有者。
    """
    values: Dict[str, Any] = {}
    for name in _TENANT_PARAMS:
        value = _int_param(request, name)
        values[name] = value if value is not None else getattr(user, name)

    resource_owner_id = _int_param(request, owner_param) if owner_param else None
    return TenantContext(user_id=user.id, resource_owner_id=resource_owner_id, **values)


def require_operation(operation_id: str, owner_param: Optional[str] = None):
    """
    操作级权限守卫

    Args:
        operation_id: app.security.permissions 中声明的操作
        owner_param: 作为资源所有者的路径参数名（own 作用域使用）

    Example:
        @router.get("/users/{user_id}/effective-permissions")
        def report(user_id: int, user: User = Depends(
                require_operation(USER_PERMISSION_REPORT, owner_param="user_id"))):
            ...
    """
    DECLARED_OPERATIONS.add(operation_id)

    def operation_checker(
        request: Request,
        current_user: User = Depends(get_current_user),
        engine: PermissionEngine = Depends(get_permission_engine),
    ) -> User:
        try:
            requirement = engine.registry.requirement(operation_id)
        except NotFound:
            logger.error(f"Operation {operation_id} has no declared permission, denying")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"权限不足: {operation_id}"
            )

        context = build_tenant_context(request, current_user, owner_param)
        decision = engine.evaluator.evaluate_any(
            requirement.permissions, context, conditions=requirement.conditions
        )
        if not decision.granted:
            logger.info(
                f"Denied {operation_id} for user {current_user.id}: {decision.reason}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"权限不足: {decision.reason}"
            )

        request.state.permission_filters = dict(decision.scope_filters)
        request.state.permission_decision = decision
        return current_user

    return operation_checker


def get_permission_filters(request: Request) -> Dict[str, Any]:
    """当前请求授权后必须应用的数据过滤条件（未经过守卫的请求一律 403）"""
    filters = getattr(request.state, "permission_filters", None)
    if filters is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="请求未经过权限校验"
        )
    return filters
