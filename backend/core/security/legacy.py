"""
core/security/legacy.py - 旧版角色枚举与权限映射（兼容回退）

仅当用户没有任何生效的自定义角色分配时才会使用这里的映射。
映射表不可变、带版本号，启动时构建并注入聚合器，而不是作为全局可变状态引用。
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from core.security.permission import Permission


class LegacyRole(str, Enum):
    """旧版固定角色"""
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    ORGANIZATION_OWNER = "ORGANIZATION_OWNER"
    ORGANIZATION_ADMIN = "ORGANIZATION_ADMIN"
    PROPERTY_MANAGER = "PROPERTY_MANAGER"
    DEPARTMENT_ADMIN = "DEPARTMENT_ADMIN"
    STAFF = "STAFF"
    CLIENT = "CLIENT"
    VENDOR = "VENDOR"


class UserType(str, Enum):
    INTERNAL = "INTERNAL"
    CLIENT = "CLIENT"
    VENDOR = "VENDOR"


@dataclass(frozen=True)
class LegacyRoleTable:
    """
    旧角色 → 权限集合的只读映射

    Attributes:
        version: 映射表版本，记录在有效权限集合上便于审计
        mapping: LegacyRole → frozenset[Permission]
    """
    version: str
    mapping: Mapping[LegacyRole, FrozenSet[Permission]] = field(default_factory=dict)

    def __post_init__(self):
        frozen = {
            LegacyRole(role): frozenset(Permission.parse(p) for p in perms)
            for role, perms in dict(self.mapping).items()
        }
        object.__setattr__(self, "mapping", MappingProxyType(frozen))

    def permissions_for(self, role: Optional[LegacyRole]) -> FrozenSet[Permission]:
        if role is None:
            return frozenset()
        try:
            role = LegacyRole(role)
        except ValueError:
            return frozenset()
        return self.mapping.get(role, frozenset())

    def roles(self) -> Tuple[LegacyRole, ...]:
        return tuple(self.mapping.keys())

    @classmethod
    def from_strings(cls, version: str, mapping: Dict[str, Iterable[str]]) -> "LegacyRoleTable":
        return cls(version=version, mapping={LegacyRole(k): list(v) for k, v in mapping.items()})


LEGACY_ROLE_TABLE_V1 = LegacyRoleTable.from_strings("2024.1", {
    "PLATFORM_ADMIN": [
        "*.*.platform",
        "*.*.organization",
        "*.*.property",
        "*.*.department",
        "*.*.own",
    ],
    "ORGANIZATION_OWNER": [
        "*.*.organization",
        "*.*.property",
        "*.*.department",
        "*.*.own",
        "role.create.organization",
        "role.assign.organization",
        "role.read.organization",
    ],
    "ORGANIZATION_ADMIN": [
        "*.read.organization",
        "*.update.organization",
        "*.create.property",
        "*.*.property",
        "*.*.department",
        "*.*.own",
        "role.read.organization",
        "role.assign.property",
    ],
    "PROPERTY_MANAGER": [
        "*.*.property",
        "*.*.department",
        "*.*.own",
        "unit.*.property",
        "guest.*.property",
        "reservation.*.property",
        "concierge.*.property",
        "vendor.*.property",
        "role.assign.department",
        "role.read.property",
    ],
    "DEPARTMENT_ADMIN": [
        "*.read.property",
        "department.read.property",
        "*.*.department",
        "*.*.own",
        "user.*.department",
        "training.*.department",
        "document.*.department",
    ],
    "STAFF": [
        "profile.read.department",
        "document.read.department",
        "training.read.department",
        "benefit.read.property",
        "vacation.read.department",
        "*.*.own",
        "unit.read.property",
        "guest.read.property",
        "reservation.read.property",
    ],
    "CLIENT": [
        "profile.read.own",
        "profile.update.own",
        "reservation.read.own",
        "document.read.own",
        "portal.access.own",
    ],
    "VENDOR": [
        "profile.read.own",
        "profile.update.own",
        "vendor.read.own",
        "vendor.update.own",
        "portal.access.own",
        "concierge.read.property",
        "concierge.update.property",
    ],
})


# ========== 系统角色信息（层级 / 用户类型） ==========

@dataclass(frozen=True)
class SystemRoleInfo:
    name: str
    description: str
    level: int
    user_type: UserType
    capabilities: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "user_type": self.user_type.value,
            "capabilities": list(self.capabilities),
        }


SYSTEM_ROLE_INFO: Mapping[LegacyRole, SystemRoleInfo] = MappingProxyType({
    LegacyRole.PLATFORM_ADMIN: SystemRoleInfo(
        "Platform Admin",
        "Full system access across all organizations and properties",
        10, UserType.INTERNAL,
        ("Manage all users", "Manage all roles", "System configuration", "Cross-tenant access"),
    ),
    LegacyRole.ORGANIZATION_OWNER: SystemRoleInfo(
        "Organization Owner",
        "Owns and manages entire hotel chains or groups",
        9, UserType.INTERNAL,
        ("Manage organization", "Create properties", "Manage org users", "Assign org roles"),
    ),
    LegacyRole.ORGANIZATION_ADMIN: SystemRoleInfo(
        "Organization Admin",
        "Administers organization settings and properties",
        8, UserType.INTERNAL,
        ("Update organization", "Manage properties", "Limited user management"),
    ),
    LegacyRole.PROPERTY_MANAGER: SystemRoleInfo(
        "Property Manager",
        "Manages individual hotel properties and operations",
        7, UserType.INTERNAL,
        ("Hotel operations", "Property staff", "Guest management", "Vendor coordination"),
    ),
    LegacyRole.DEPARTMENT_ADMIN: SystemRoleInfo(
        "Department Admin",
        "Manages specific departments within properties",
        6, UserType.INTERNAL,
        ("Department management", "Team coordination", "Training oversight"),
    ),
    LegacyRole.STAFF: SystemRoleInfo(
        "Staff",
        "Regular hotel staff with operational access",
        5, UserType.INTERNAL,
        ("Daily operations", "Guest service", "Basic reporting"),
    ),
    LegacyRole.VENDOR: SystemRoleInfo(
        "Vendor",
        "External vendors and suppliers with work-related access",
        3, UserType.VENDOR,
        ("Vendor portal access", "Update work status", "Receive notifications"),
    ),
    LegacyRole.CLIENT: SystemRoleInfo(
        "Client",
        "External clients with limited access to their data",
        2, UserType.CLIENT,
        ("View own reservations", "Update profile", "Access client portal"),
    ),
})

_UNKNOWN_ROLE = SystemRoleInfo("Unknown Role", "Role information not found", 0, UserType.INTERNAL)


def system_role_info(role: Optional[LegacyRole]) -> SystemRoleInfo:
    try:
        return SYSTEM_ROLE_INFO.get(LegacyRole(role), _UNKNOWN_ROLE)
    except ValueError:
        return _UNKNOWN_ROLE


def can_assign_role(actor: LegacyRole, target: LegacyRole) -> bool:
    """平台管理员可分配任意角色，其他角色只能分配严格低于自身层级的角色"""
    if actor == LegacyRole.PLATFORM_ADMIN:
        return True
    return system_role_info(actor).level > system_role_info(target).level


def assignable_roles(actor: LegacyRole) -> List[LegacyRole]:
    return [role for role in LegacyRole if can_assign_role(actor, role)]


__all__ = [
    "LegacyRole",
    "UserType",
    "LegacyRoleTable",
    "LEGACY_ROLE_TABLE_V1",
    "SystemRoleInfo",
    "SYSTEM_ROLE_INFO",
    "system_role_info",
    "can_assign_role",
    "assignable_roles",
]
