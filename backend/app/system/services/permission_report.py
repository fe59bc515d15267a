"""
有效权限报表 - "列出用户 X 的有效权限"

必须复用评估器的加载路径（缓存 + 聚合器），不允许另写一套聚合逻辑，
否则排查脚本与真实评估结果会逐渐不一致。
"""
from typing import Dict, List, Optional

from core.security.evaluator import PermissionEvaluator
from core.security.legacy import system_role_info
from core.security.scope import TenantContext


class PermissionReportService:
    """用户有效权限报表"""

    def __init__(self, evaluator: PermissionEvaluator):
        self.evaluator = evaluator

    def effective_permissions_report(self, user_id: int) -> Dict:
        """
        Raises:
            StoreUnavailable: 存储不可达（报表是管理路径，错误需要暴露给调用方）
        """
        effective = self.evaluator.effective_permissions(user_id)
        principal = self.evaluator.aggregator.store.principal(user_id)
        entries = sorted(
            (e.to_dict() for e in effective),
            key=lambda d: (d["resource"], d["action"], d["scope"]),
        )
        return {
            "user_id": user_id,
            "provenance": effective.provenance.value,
            "legacy_role": principal.legacy_role.value if principal and principal.legacy_role else None,
            "legacy_role_info": (
                system_role_info(principal.legacy_role).to_dict()
                if principal and principal.legacy_role else None
            ),
            "legacy_table_version": effective.legacy_table_version,
            "role_ids": list(effective.role_ids),
            "granted": [e for e in entries if e["granted"]],
            "denied": [e for e in entries if not e["granted"]],
            "computed_at": effective.computed_at.isoformat() if effective.computed_at else None,
        }

    def explain(self, user_id: int, permission: str,
                organization_id: Optional[int] = None,
                property_id: Optional[int] = None,
                department_id: Optional[int] = None,
                resource_owner_id: Optional[int] = None) -> Dict:
        """用真实评估器解释某个权限对该用户的评估结果"""
        context = TenantContext(
            user_id=user_id,
            organization_id=organization_id,
            property_id=property_id,
            department_id=department_id,
            resource_owner_id=resource_owner_id,
        )
        decision = self.evaluator.evaluate(permission, context)
        return {"permission": permission, "context": context.to_dict(), **decision.to_dict()}

    def codes(self, user_id: int) -> List[str]:
        return sorted(self.evaluator.effective_permissions(user_id).codes())
