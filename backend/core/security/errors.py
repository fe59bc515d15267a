"""
core/security/errors.py - 授权子系统异常体系

评估路径上的所有异常最终都收敛为拒绝（fail closed）；
只有管理写路径会把 NotFound / Conflict 等具体类型抛给调用方。
"""
from typing import Optional


class AuthorizationError(Exception):
    """授权子系统异常基类"""


class NotFound(AuthorizationError):
    """引用的权限 / 角色 / 用户不存在"""

    def __init__(self, kind: str, key: object):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class Conflict(AuthorizationError):
    """管理操作与现有数据冲突（重名、删除仍被使用的角色等）"""


class StoreUnavailable(AuthorizationError):
    """角色分配存储不可达"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class EvaluationTimeout(StoreUnavailable):
    """有效权限加载超过时限"""


class InvalidPermission(ValueError):
    """权限三元组格式错误"""


__all__ = [
    "AuthorizationError",
    "NotFound",
    "Conflict",
    "StoreUnavailable",
    "EvaluationTimeout",
    "InvalidPermission",
]
