"""
授权管理 API 的 Pydantic 模式
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.system.models.rbac import RoleHistoryAction


# ============== 权限目录 ==============

class PermissionDefinition(BaseModel):
    resource: str = Field(..., max_length=50)
    action: str = Field(..., max_length=50)
    scope: str = Field(..., max_length=20)
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=50)


class PermissionResponse(BaseModel):
    id: int
    resource: str
    action: str
    scope: str
    code: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class PermissionStatusUpdate(BaseModel):
    is_active: bool


class SeedResult(BaseModel):
    created: int
    existing: int


# ============== 角色 ==============

class RolePermissionEntry(BaseModel):
    permission: str = Field(..., description="resource.action.scope")
    granted: bool = True


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    priority: int = Field(default=100, ge=0)
    organization_id: Optional[int] = None
    property_id: Optional[int] = None
    permissions: List[RolePermissionEntry] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    priority: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class RolePermissionsSet(BaseModel):
    permissions: List[RolePermissionEntry]


class RolePermissionResponse(BaseModel):
    permission: str
    granted: bool
    category: Optional[str] = None


class RoleResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    priority: int
    is_system_role: bool
    is_active: bool
    organization_id: Optional[int] = None
    property_id: Optional[int] = None
    created_at: Optional[datetime] = None
    permission_count: int = 0
    model_config = ConfigDict(from_attributes=True)


class RoleDetailResponse(RoleResponse):
    permissions: List[RolePermissionResponse] = Field(default_factory=list)


# ============== 分配 ==============

class UserRoleAssign(BaseModel):
    role_id: int
    expires_at: Optional[datetime] = None


class BulkRoleAssign(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)
    expires_at: Optional[datetime] = None


class BulkAssignResult(BaseModel):
    assigned: List[int]
    errors: List[Dict[str, Any]]


class BulkRoleRevoke(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class BulkRevokeResult(BaseModel):
    revoked: List[int]
    errors: List[Dict[str, Any]]


class UserRoleResponse(BaseModel):
    role_id: int
    role_name: str
    is_active: bool
    expires_at: Optional[datetime] = None
    assigned_by: Optional[int] = None
    assigned_at: Optional[datetime] = None


class RoleHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    role_id: int
    role_name: str = ""
    action: RoleHistoryAction
    source: str = "manual"
    performed_by: Optional[int] = None
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    parent_id: Optional[int] = None
    created_at: Optional[datetime] = None


class RollbackRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OverrideSet(BaseModel):
    permission: str = Field(..., description="resource.action.scope")
    granted: bool
    expires_at: Optional[datetime] = None


class OverrideResponse(BaseModel):
    permission: str
    granted: bool
    expires_at: Optional[datetime] = None
    granted_by: Optional[int] = None


# ============== 评估 / 报表 ==============

class EvaluateRequest(BaseModel):
    permissions: List[str] = Field(..., min_length=1)
    organization_id: Optional[int] = None
    property_id: Optional[int] = None
    department_id: Optional[int] = None
    resource_owner_id: Optional[int] = None


class DecisionResponse(BaseModel):
    granted: bool
    reason: str
    scope_filters: Dict[str, Any] = Field(default_factory=dict)
    matched: Optional[str] = None
    provenance: Optional[str] = None


class ExplainResponse(DecisionResponse):
    permission: str
    context: Dict[str, Any]


class ResolvedPermissionResponse(BaseModel):
    permission: str
    resource: str
    action: str
    scope: str
    granted: bool
    sources: List[str]


class EffectivePermissionsReport(BaseModel):
    user_id: int
    provenance: str
    legacy_role: Optional[str] = None
    legacy_role_info: Optional[Dict[str, Any]] = None
    legacy_table_version: Optional[str] = None
    role_ids: List[int]
    granted: List[ResolvedPermissionResponse]
    denied: List[ResolvedPermissionResponse]
    computed_at: Optional[str] = None


class SystemRoleResponse(BaseModel):
    role: str
    name: str
    description: str
    level: int
    user_type: str
    capabilities: List[str]
    assignable: bool = False
