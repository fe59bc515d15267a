"""
系统管理 ORM 模型
"""
from app.system.models.rbac import (
    User, Permission, CustomRole, RolePermission, UserCustomRole, UserPermission,
    RoleAssignmentHistory, RoleHistoryAction,
)

__all__ = [
    "User", "Permission", "CustomRole", "RolePermission", "UserCustomRole", "UserPermission",
    "RoleAssignmentHistory", "RoleHistoryAction",
]
