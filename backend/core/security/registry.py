"""
core/security/registry.py - 操作 → 所需权限 的显式声明

每个操作在注册时声明所需的 (resource, action, scope)，
启动时对照完整的操作清单与权限目录做一次覆盖校验。
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from core.security.errors import InvalidPermission, NotFound
from core.security.evaluator import Condition
from core.security.permission import Permission, PermissionLike

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationRequirement:
    """操作的权限要求（多个权限为 OR 逻辑）"""
    operation_id: str
    permissions: Tuple[Permission, ...]
    conditions: Tuple[Condition, ...] = ()
    description: str = ""


@dataclass
class CoverageReport:
    """覆盖校验结果"""
    undeclared_operations: List[str] = field(default_factory=list)
    unknown_permissions: Dict[str, List[str]] = field(default_factory=dict)
    unused_permissions: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.undeclared_operations and not self.unknown_permissions

    def summary(self) -> str:
        parts = []
        if self.undeclared_operations:
            parts.append(f"operations without requirement: {', '.join(self.undeclared_operations)}")
        for op, perms in self.unknown_permissions.items():
            parts.append(f"{op} requires unknown permission(s): {', '.join(perms)}")
        return "; ".join(parts) or "ok"


class OperationRegistry:
    """
    操作权限注册表

    Example:
        >>> registry = OperationRegistry()
        >>> registry.register("reservation.list", "reservation.read.property")
        >>> registry.requirement("reservation.list").permissions
        (Permission(resource='reservation', action='read', scope=<ScopeLevel.PROPERTY: 'property'>),)
    """

    def __init__(self):
        self._operations: Dict[str, OperationRequirement] = {}
        self._lock = threading.Lock()

    def register(self, operation_id: str,
                 required: Union[PermissionLike, Sequence[PermissionLike]],
                 conditions: Iterable[Condition] = (),
                 description: str = "") -> OperationRequirement:
        """
        注册操作所需权限

        Raises:
            InvalidPermission: 权限格式错误或包含通配符
            ValueError: 操作重复注册且要求不同
        """
        if isinstance(required, (str, Permission)):
            required = [required]
        permissions = tuple(Permission.parse(p).require_concrete() for p in required)
        if not permissions:
            raise InvalidPermission(f"Operation {operation_id} declares no permission")

        requirement = OperationRequirement(
            operation_id=operation_id,
            permissions=permissions,
            conditions=tuple(conditions),
            description=description,
        )
        with self._lock:
            existing = self._operations.get(operation_id)
            if existing is not None and existing.permissions != permissions:
                raise ValueError(f"Operation {operation_id} already registered with "
                                 f"{', '.join(str(p) for p in existing.permissions)}")
            self._operations[operation_id] = requirement
        logger.debug(f"Registered operation {operation_id}: "
                     f"{', '.join(str(p) for p in permissions)}")
        return requirement

    def requirement(self, operation_id: str) -> OperationRequirement:
        requirement = self._operations.get(operation_id)
        if requirement is None:
            raise NotFound("operation", operation_id)
        return requirement

    def has(self, operation_id: str) -> bool:
        return operation_id in self._operations

    def operations(self) -> List[str]:
        return sorted(self._operations)

    def required_permissions(self) -> Set[Permission]:
        return {p for r in self._operations.values() for p in r.permissions}

    def validate(self, declared_operations: Iterable[str],
                 catalog: Iterable[PermissionLike]) -> CoverageReport:
        """
        覆盖校验

        Args:
            declared_operations: 系统中所有需要授权的操作
            catalog: 权限目录中的全部三元组
        """
        known = {Permission.parse(p) for p in catalog}
        report = CoverageReport()

        for op in sorted(set(declared_operations)):
            if op not in self._operations:
                report.undeclared_operations.append(op)

        for op, requirement in sorted(self._operations.items()):
            unknown = [str(p) for p in requirement.permissions if p not in known]
            if unknown:
                report.unknown_permissions[op] = unknown

        required = self.required_permissions()
        report.unused_permissions = sorted(str(p) for p in known - required)
        return report

    def clear(self) -> None:
        """清除注册（用于测试）"""
        with self._lock:
            self._operations.clear()


__all__ = ["OperationRequirement", "CoverageReport", "OperationRegistry"]
