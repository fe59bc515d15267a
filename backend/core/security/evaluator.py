"""
core/security/evaluator.py

权限评估器 - 授权子系统的唯一入口

evaluate(required, context) -> Decision
- 通过缓存 / 聚合器加载有效权限（带超时）
- 用作用域解析器匹配要求的权限
- 授权时生成调用方必须应用的数据过滤条件

任何内部错误都收敛为拒绝（fail closed），绝不放行。
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from core.security.aggregator import PermissionAggregator
from core.security.cache import DecisionCache
from core.security.errors import EvaluationTimeout, InvalidPermission, StoreUnavailable
from core.security.permission import (
    EffectivePermissions,
    Permission,
    PermissionLike,
    Provenance,
    ResolvedPermission,
)
from core.security.scope import TenantContext, covers, missing_identifiers, scope_filters

logger = logging.getLogger(__name__)

DEFAULT_STORE_TIMEOUT_SECONDS = 2.0

REASON_NO_MATCH = "no matching permission"
REASON_DENIED = "explicitly denied"
REASON_INVALID_CONTEXT = "invalid context"
REASON_INVALID_REQUIREMENT = "invalid requirement"
REASON_UNAVAILABLE = "permission store unavailable"
REASON_ERROR = "permission evaluation error"


@dataclass(frozen=True)
class Decision:
    """
    评估结果

    Attributes:
        granted: 是否授权
        reason: 拒绝原因（授权时为 "granted"）
        scope_filters: 授权时调用方必须 AND 到数据查询中的过滤条件
        matched: 命中的权限条目
        provenance: 有效权限集合的来源
    """
    granted: bool
    reason: str
    scope_filters: Dict[str, Any] = field(default_factory=dict)
    matched: Optional[Permission] = None
    provenance: Optional[Provenance] = None

    def __bool__(self) -> bool:
        return self.granted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "granted": self.granted,
            "reason": self.reason,
            "scope_filters": dict(self.scope_filters),
            "matched": str(self.matched) if self.matched else None,
            "provenance": self.provenance.value if self.provenance else None,
        }

    @classmethod
    def deny(cls, reason: str, matched: Optional[Permission] = None,
             provenance: Optional[Provenance] = None) -> "Decision":
        return cls(granted=False, reason=reason, matched=matched, provenance=provenance)


# ========== 附加条件 ==========

@dataclass(frozen=True)
class Condition:
    """
    授权后的附加条件

    Attributes:
        name: 条件名（用于拒绝原因）
        check: (context, effective) -> bool
        description: 失败时的说明
    """
    name: str
    check: Callable[[TenantContext, EffectivePermissions], bool]
    description: str = ""


def _same(attribute: str, label: str) -> Condition:
    def check(context: TenantContext, effective: EffectivePermissions) -> bool:
        required = getattr(context, attribute)
        if required is None:
            return True
        return getattr(effective.home_tenant, attribute) == required

    return Condition(
        name=f"same_{label}",
        check=check,
        description=f"User is not in the same {label} as the resource",
    )


SAME_ORGANIZATION = _same("organization_id", "organization")
SAME_PROPERTY = _same("property_id", "property")
SAME_DEPARTMENT = _same("department_id", "department")
IS_OWNER = Condition(
    name="is_owner",
    check=lambda ctx, eff: ctx.resource_owner_id is None or ctx.resource_owner_id == ctx.user_id,
    description="User is not the owner of the resource",
)


class PermissionEvaluator:
    """
    权限评估器

    Example:
        >>> evaluator = PermissionEvaluator(aggregator, cache=DecisionCache())
        >>> ctx = TenantContext(user_id=7, organization_id=1, property_id=3)
        >>> decision = evaluator.evaluate("reservation.read.property", ctx)
        >>> decision.scope_filters
        {'organizationId': 1, 'propertyId': 3}
    """

    def __init__(self, aggregator: PermissionAggregator,
                 cache: Optional[DecisionCache] = None,
                 store_timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS,
                 max_workers: int = 8):
        self._aggregator = aggregator
        self._cache = cache if cache is not None else DecisionCache(enabled=False)
        self._store_timeout = store_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="permission-fetch"
        )

    @property
    def cache(self) -> DecisionCache:
        return self._cache

    @property
    def aggregator(self) -> PermissionAggregator:
        return self._aggregator

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # ----- 有效权限加载 -----

    def effective_permissions(self, user_id: int,
                              deadline: Optional[float] = None) -> EffectivePermissions:
        """
        加载用户有效权限（缓存优先，未命中时通过聚合器计算）

        这也是"查看用户 X 的有效权限"报表使用的唯一路径。

        Args:
            deadline: 调用方截止时间（time.monotonic() 值）

        Raises:
            StoreUnavailable: 存储不可达或超时
        """
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached

        token = self._cache.generation(user_id)
        timeout = self._store_timeout
        if deadline is not None:
            timeout = min(timeout, max(0.0, deadline - time.monotonic()))

        future = self._executor.submit(self._aggregator.effective_permissions, user_id)
        try:
            effective = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            raise EvaluationTimeout(
                f"Loading permissions for user {user_id} exceeded {timeout:.3f}s"
            ) from None
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(f"Failed to load permissions for user {user_id}", e) from e

        self._cache.put(user_id, effective, ttl=self._entry_ttl(effective), token=token)
        return effective

    def _entry_ttl(self, effective: EffectivePermissions) -> Optional[float]:
        """缓存时长不超过集合中最早到期的分配 / 直接授权"""
        if effective.valid_until is None:
            return None
        remaining = (effective.valid_until - self._aggregator.now()).total_seconds()
        return min(self._cache.ttl_seconds, remaining)

    # ----- 评估 -----

    def evaluate(self, required: PermissionLike, context: TenantContext,
                 conditions: Sequence[Condition] = (),
                 deadline: Optional[float] = None) -> Decision:
        """
        评估单个权限要求

        Args:
            required: 要求的具体权限（字符串或 Permission）
            context: 请求租户上下文
            conditions: 授权后的附加条件
            deadline: 调用方截止时间

        Returns:
            Decision；任何异常都转为 granted=False
        """
        try:
            return self._evaluate(required, context, conditions, deadline)
        except StoreUnavailable as e:
            logger.error(f"Permission store unavailable for user "
                         f"{getattr(context, 'user_id', None)}: {e}")
            return Decision.deny(REASON_UNAVAILABLE)
        except Exception:
            logger.exception(f"Error evaluating permission {required!r}")
            return Decision.deny(REASON_ERROR)

    def evaluate_any(self, requirements: Iterable[PermissionLike], context: TenantContext,
                     conditions: Sequence[Condition] = (),
                     deadline: Optional[float] = None) -> Decision:
        """多个权限要求（OR 逻辑），第一个授权的结果胜出"""
        requirements = list(requirements)
        last: Optional[Decision] = None
        for required in requirements:
            decision = self.evaluate(required, context, conditions, deadline)
            if decision.granted:
                return decision
            last = decision
        if last is None:
            return Decision.deny(REASON_INVALID_REQUIREMENT)
        if len(requirements) == 1:
            return last
        return Decision.deny(
            f"none of the required permissions granted: "
            f"{', '.join(str(r) for r in requirements)}",
            provenance=last.provenance,
        )

    def _evaluate(self, required: PermissionLike, context: TenantContext,
                  conditions: Sequence[Condition],
                  deadline: Optional[float]) -> Decision:
        try:
            requirement = Permission.parse(required).require_concrete()
        except InvalidPermission as e:
            logger.warning(f"Invalid permission requirement {required!r}: {e}")
            return Decision.deny(REASON_INVALID_REQUIREMENT)

        if context is None or context.user_id is None:
            return Decision.deny(f"{REASON_INVALID_CONTEXT}: missing user_id")

        missing = missing_identifiers(requirement.scope, context)
        if missing:
            return Decision.deny(f"{REASON_INVALID_CONTEXT}: missing {', '.join(missing)}")

        effective = self.effective_permissions(context.user_id, deadline=deadline)
        provenance = effective.provenance

        candidates = self._covering_entries(requirement, context, effective)
        if not candidates:
            logger.debug(f"User {context.user_id} has no permission covering {requirement} "
                         f"({provenance.value})")
            return Decision.deny(REASON_NO_MATCH, provenance=provenance)

        denied = [e for e in candidates if not e.granted]
        if denied:
            return Decision.deny(REASON_DENIED, matched=denied[0].permission, provenance=provenance)

        best = max(candidates, key=lambda e: e.permission.scope.rank)

        for condition in conditions:
            if not condition.check(context, effective):
                return Decision.deny(
                    condition.description or f"condition {condition.name} not met",
                    matched=best.permission, provenance=provenance,
                )

        return Decision(
            granted=True,
            reason="granted",
            scope_filters=scope_filters(best.permission.scope, context),
            matched=best.permission,
            provenance=provenance,
        )

    @staticmethod
    def _covering_entries(requirement: Permission, context: TenantContext,
                          effective: EffectivePermissions) -> List[ResolvedPermission]:
        matches = []
        for entry in effective:
            if not entry.permission.matches_target(requirement):
                continue
            tenants = entry.tenants or {effective.home_tenant}
            if any(covers(entry.permission.scope, t, requirement.scope, context) for t in tenants):
                matches.append(entry)
        return matches


__all__ = [
    "Decision",
    "Condition",
    "PermissionEvaluator",
    "SAME_ORGANIZATION",
    "SAME_PROPERTY",
    "SAME_DEPARTMENT",
    "IS_OWNER",
    "REASON_NO_MATCH",
    "REASON_DENIED",
    "REASON_INVALID_CONTEXT",
    "REASON_INVALID_REQUIREMENT",
    "REASON_UNAVAILABLE",
    "REASON_ERROR",
    "DEFAULT_STORE_TIMEOUT_SECONDS",
]
