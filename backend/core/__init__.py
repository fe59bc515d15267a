"""
core - 授权引擎框架层

独立于具体领域的多租户权限评估引擎，包含：
- security: 作用域解析、权限聚合、缓存、评估入口
- scheduler: 后台任务抽象（缓存清理）

使用方式:
    >>> from core.security import PermissionEvaluator, TenantContext
    >>> from core.scheduler import ISchedulerBackend, SchedulerRegistry

架构原则:
    - 默认拒绝 (Fail Closed)
    - 单一评估入口 (Single Canonical Evaluator)
    - app 层通过接口注入存储与调度实现
"""

from core.security import (
    Permission,
    ScopeLevel,
    TenantContext,
    Decision,
    PermissionEvaluator,
    PermissionAggregator,
    DecisionCache,
)

__version__ = "0.1.0"

__all__ = [
    "Permission",
    "ScopeLevel",
    "TenantContext",
    "Decision",
    "PermissionEvaluator",
    "PermissionAggregator",
    "DecisionCache",
]
