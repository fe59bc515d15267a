"""
集中声明所有需要授权的操作及其所需权限

每个操作列出一个或多个 (resource, action, scope)，多个时为 OR 逻辑：
组织管理员命中 *.organization，平台管理员命中 *.platform。
启动时 OperationRegistry.validate() 会对照权限目录检查这里的每一条。
"""
from typing import Dict, Sequence, Set, Tuple

from core.security.evaluator import Condition
from core.security.registry import OperationRegistry

# ========== 授权管理（/authz 接口） ==========

PERMISSION_LIST = "authz.permission.list"
PERMISSION_MANAGE = "authz.permission.manage"
ROLE_READ = "authz.role.read"
ROLE_CREATE = "authz.role.create"
ROLE_UPDATE = "authz.role.update"
ROLE_DELETE = "authz.role.delete"
ROLE_ASSIGN = "authz.role.assign"
OVERRIDE_MANAGE = "authz.override.manage"
USER_PERMISSION_REPORT = "authz.report.read"

# ========== 酒店业务 ==========

RESERVATION_LIST = "reservation.list"
RESERVATION_CREATE = "reservation.create"
RESERVATION_CHECKIN = "reservation.checkin"
RESERVATION_CHECKOUT = "reservation.checkout"
GUEST_READ = "guest.read"
GUEST_UPDATE = "guest.update"
UNIT_READ = "unit.read"
TASK_ASSIGN = "task.assign"
VACATION_APPROVE = "vacation.approve"
PAYSLIP_READ = "payslip.read"
USER_UPDATE = "user.update"
PORTAL_ACCESS = "portal.access"


OPERATION_REQUIREMENTS: Dict[str, Tuple[Sequence[str], str]] = {
    PERMISSION_LIST: (
        ("permission.read.organization", "permission.read.platform"),
        "查看权限目录",
    ),
    PERMISSION_MANAGE: (("permission.manage.platform",), "维护权限目录"),
    ROLE_READ: (("role.read.organization", "role.read.platform"), "查看角色"),
    ROLE_CREATE: (("role.create.organization", "role.create.platform"), "创建角色"),
    ROLE_UPDATE: (("role.update.organization", "role.update.platform"), "修改角色及其权限"),
    ROLE_DELETE: (("role.delete.organization", "role.delete.platform"), "删除角色"),
    ROLE_ASSIGN: (
        ("role.assign.property", "role.assign.organization", "role.assign.platform"),
        "分配 / 撤销用户角色",
    ),
    OVERRIDE_MANAGE: (
        ("permission.manage.organization", "permission.manage.platform"),
        "用户直接授权 / 拒绝",
    ),
    USER_PERMISSION_REPORT: (
        ("user.read.own", "user.read.organization", "user.read.platform"),
        "查看用户有效权限",
    ),

    RESERVATION_LIST: (
        ("reservation.read.own", "reservation.read.property"),
        "预订列表",
    ),
    RESERVATION_CREATE: (
        ("reservation.create.property", "reservation.create.organization"),
        "创建预订",
    ),
    RESERVATION_CHECKIN: (("reservation.checkin.property",), "办理入住"),
    RESERVATION_CHECKOUT: (("reservation.checkout.property",), "办理退房"),
    GUEST_READ: (("guest.read.property", "guest.read.organization"), "查看客人"),
    GUEST_UPDATE: (("guest.update.property",), "修改客人"),
    UNIT_READ: (("unit.read.property", "unit.read.organization"), "查看房源"),
    TASK_ASSIGN: (("task.assign.department", "task.assign.property"), "分配任务"),
    VACATION_APPROVE: (("vacation.approve.department", "vacation.approve.property"), "审批休假"),
    PAYSLIP_READ: (("payslip.read.own", "payslip.read.department"), "查看工资单"),
    USER_UPDATE: (("user.update.property", "user.update.organization"), "修改员工资料"),
    PORTAL_ACCESS: (("portal.access.own",), "访问自助门户"),
}

# 系统中所有需要授权的操作（路由守卫在导入时追加）
DECLARED_OPERATIONS: Set[str] = set(OPERATION_REQUIREMENTS)


def register_operations(registry: OperationRegistry,
                        conditions: Dict[str, Sequence[Condition]] = None) -> OperationRegistry:
    """把上面的声明注册到操作注册表"""
    conditions = conditions or {}
    for operation_id, (required, description) in OPERATION_REQUIREMENTS.items():
        registry.register(
            operation_id,
            list(required),
            conditions=conditions.get(operation_id, ()),
            description=description,
        )
    return registry
