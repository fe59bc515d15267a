# Security module
from app.security.auth import (
    get_current_user, require_operation, get_permission_filters, build_tenant_context
)
from app.security.engine import PermissionEngine, build_engine, get_engine, set_engine
from app.security.query_filters import apply_scope_filters, within_scope

__all__ = [
    'get_current_user', 'require_operation', 'get_permission_filters', 'build_tenant_context',
    'PermissionEngine', 'build_engine', 'get_engine', 'set_engine',
    'apply_scope_filters', 'within_scope',
]
