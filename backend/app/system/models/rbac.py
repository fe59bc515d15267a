"""
权限模型 ORM - 用户 / 权限目录 / 自定义角色 / 分配关系

- Permission: (resource, action, scope) 三元组唯一
- CustomRole: 名称在 (organization_id, property_id) 内唯一，系统角色全局
- RolePermission: 角色 → 权限，granted=False 表示显式拒绝
- UserCustomRole: 用户 → 角色，支持 is_active / expires_at
- UserPermission: 用户直接授权 / 拒绝（绕过角色）
- RoleAssignmentHistory: 角色分配变更历史（审计 / 回滚）
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text,
    UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from app.database import Base
from core.security.legacy import LegacyRole


class User(Base):
    """用户表 - 仅保留授权需要的租户属性与旧版角色字段"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(200), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    legacy_role = Column(SQLEnum(LegacyRole), nullable=True)
    organization_id = Column(Integer, nullable=True, index=True)
    property_id = Column(Integer, nullable=True, index=True)
    department_id = Column(Integer, nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    role_assignments = relationship(
        "UserCustomRole",
        back_populates="user",
        foreign_keys="UserCustomRole.user_id",
        lazy="selectin",
    )


class Permission(Base):
    """权限目录"""
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("resource", "action", "scope", name="uq_permission_triple"),
    )

    id = Column(Integer, primary_key=True, index=True)
    resource = Column(String(50), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    scope = Column(String(20), nullable=False)  # own, department, property, organization, platform
    name = Column(String(200), nullable=False)
    description = Column(String(500), default="")
    category = Column(String(50), default="General", index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def code(self) -> str:
        return f"{self.resource}.{self.action}.{self.scope}"


class CustomRole(Base):
    """自定义角色"""
    __tablename__ = "custom_roles"
    __table_args__ = (
        UniqueConstraint("name", "organization_id", "property_id", name="uq_role_name_tenant"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, default="")
    is_system_role = Column(Boolean, default=False)
    priority = Column(Integer, default=100)  # 仅用于展示排序，不参与授权
    is_active = Column(Boolean, default=True)
    organization_id = Column(Integer, nullable=True, index=True)
    property_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    permissions = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    assignments = relationship(
        "UserCustomRole",
        back_populates="role",
        cascade="all, delete-orphan",
    )


class RolePermission(Base):
    """角色 → 权限"""
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    id = Column(Integer, primary_key=True, index=True)
    role_id = Column(Integer, ForeignKey("custom_roles.id"), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey("permissions.id"), nullable=False)
    granted = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    role = relationship("CustomRole", back_populates="permissions")
    permission = relationship("Permission", lazy="joined")


class UserCustomRole(Base):
    """用户 → 自定义角色分配"""
    __tablename__ = "user_custom_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("custom_roles.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    assigned_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="role_assignments", foreign_keys=[user_id])
    role = relationship("CustomRole", back_populates="assignments", lazy="joined")


class UserPermission(Base):
    """用户直接授权 / 拒绝"""
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey("permissions.id"), nullable=False)
    granted = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    granted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    permission = relationship("Permission", lazy="joined")


class RoleHistoryAction(str, Enum):
    """角色分配变更类型"""
    ASSIGNED = "ASSIGNED"
    REMOVED = "REMOVED"
    BULK_ASSIGNED = "BULK_ASSIGNED"
    BULK_REMOVED = "BULK_REMOVED"


class RoleAssignmentHistory(Base):
    """角色分配变更历史，与变更本身在同一事务中写入"""
    __tablename__ = "role_assignment_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role_id = Column(Integer, nullable=False, index=True)  # 角色删除后历史仍保留
    role_name = Column(String(100), default="")
    action = Column(SQLEnum(RoleHistoryAction), nullable=False)
    source = Column(String(20), default="manual")  # manual, bulk, rollback
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reason = Column(String(500), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    parent_id = Column(Integer, ForeignKey("role_assignment_history.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
