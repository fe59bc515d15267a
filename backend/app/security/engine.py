"""
授权引擎装配 - store / cache / aggregator / evaluator / registry

进程内只有一个评估器实例，路由守卫、管理服务（缓存失效）和报表共用它。
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.security.permissions import register_operations
from app.system.services.permission_store import SqlRoleAssignmentStore
from core.security.aggregator import PermissionAggregator
from core.security.cache import DecisionCache
from core.security.evaluator import PermissionEvaluator
from core.security.legacy import LEGACY_ROLE_TABLE_V1, LegacyRoleTable
from core.security.registry import OperationRegistry
from core.security.store import IRoleAssignmentStore

logger = logging.getLogger(__name__)

_LEGACY_TABLES = {LEGACY_ROLE_TABLE_V1.version: LEGACY_ROLE_TABLE_V1}


@dataclass
class PermissionEngine:
    """授权子系统的各个组件"""
    store: IRoleAssignmentStore
    cache: DecisionCache
    aggregator: PermissionAggregator
    evaluator: PermissionEvaluator
    registry: OperationRegistry

    def shutdown(self) -> None:
        self.evaluator.shutdown()


def legacy_table_for(version: Optional[str]) -> LegacyRoleTable:
    """
    Raises:
        ValueError: 未知的旧版映射版本
    """
    if version is None:
        return LEGACY_ROLE_TABLE_V1
    table = _LEGACY_TABLES.get(version)
    if table is None:
        raise ValueError(f"Unknown legacy role table version: {version}")
    return table


def build_engine(session_factory: Callable[[], Session],
                 config: Optional[Settings] = None,
                 store: Optional[IRoleAssignmentStore] = None) -> PermissionEngine:
    """
    装配授权引擎

    Args:
        session_factory: 返回新数据库会话的 callable（通常是 SessionLocal）
        config: 配置，默认使用全局 settings
        store: 自定义存储实现（测试用），默认 SqlRoleAssignmentStore
    """
    config = config if config is not None else default_settings
    store = store if store is not None else SqlRoleAssignmentStore(session_factory)
    cache = DecisionCache(
        ttl_seconds=config.PERMISSION_CACHE_TTL_SECONDS,
        enabled=config.PERMISSION_CACHE_ENABLED,
    )
    aggregator = PermissionAggregator(store, legacy_table=legacy_table_for(config.LEGACY_ROLE_TABLE_VERSION))
    evaluator = PermissionEvaluator(
        aggregator,
        cache=cache,
        store_timeout=config.PERMISSION_STORE_TIMEOUT_SECONDS,
    )
    registry = register_operations(OperationRegistry())
    logger.info(
        f"Permission engine ready (cache={'on' if cache.enabled else 'off'}, "
        f"ttl={cache.ttl_seconds}s, legacy table {aggregator.legacy_table.version}, "
        f"{len(registry.operations())} operations)"
    )
    return PermissionEngine(
        store=store,
        cache=cache,
        aggregator=aggregator,
        evaluator=evaluator,
        registry=registry,
    )


# ========== 全局实例 ==========

_engine: Optional[PermissionEngine] = None


def set_engine(engine: Optional[PermissionEngine]) -> None:
    global _engine
    if _engine is not None and _engine is not engine:
        _engine.shutdown()
    _engine = engine


def get_engine() -> PermissionEngine:
    """获取全局授权引擎（未初始化时按默认配置创建）"""
    global _engine
    if _engine is None:
        from app.database import SessionLocal
        _engine = build_engine(SessionLocal)
    return _engine


def get_permission_engine() -> PermissionEngine:
    """FastAPI 依赖"""
    return get_engine()
