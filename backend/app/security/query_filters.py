"""
把评估器返回的 scope_filters 应用到 SQLAlchemy 查询

过滤键 → 模型列：
    organizationId → organization_id
    propertyId     → property_id
    departmentId   → department_id
    ownerId        → owner_column（默认 owner_id）

模型缺少对应列时直接报错：静默跳过会让查询范围大于授权范围。
"""
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Query

FILTER_COLUMNS: Dict[str, str] = {
    "organizationId": "organization_id",
    "propertyId": "property_id",
    "departmentId": "department_id",
}


def _column_name(key: str, owner_column: str) -> str:
    if key == "ownerId":
        return owner_column
    try:
        return FILTER_COLUMNS[key]
    except KeyError:
        raise ValueError(f"Unknown scope filter: {key}") from None


def apply_scope_filters(query: Query, model, filters: Optional[Mapping[str, Any]],
                        owner_column: str = "owner_id",
                        include_unscoped: bool = False) -> Query:
    """
    Args:
        query: 待过滤的查询
        model: 查询的 ORM 模型
        filters: Decision.scope_filters
        owner_column: ownerId 对应的列
        include_unscoped: 同时保留租户列为 NULL 的全局记录（如系统角色）

    Raises:
        ValueError: 模型没有过滤条件对应的列
    """
    for key, value in (filters or {}).items():
        name = _column_name(key, owner_column)
        column = getattr(model, name, None)
        if column is None:
            raise ValueError(f"{model.__name__} has no column {name} for filter {key}")
        if include_unscoped and key != "ownerId":
            query = query.filter(or_(column == value, column.is_(None)))
        else:
            query = query.filter(column == value)
    return query


def within_scope(obj: Any, filters: Optional[Mapping[str, Any]],
                 owner_column: str = "owner_id",
                 include_unscoped: bool = False) -> bool:
    """单个对象（ORM 实例或 dict）是否落在过滤范围内，语义与 apply_scope_filters 一致"""
    for key, value in (filters or {}).items():
        name = _column_name(key, owner_column)
        if isinstance(obj, Mapping):
            actual = obj.get(name)
        else:
            actual = getattr(obj, name, None)
        if actual is None and include_unscoped and key != "ownerId":
            continue
        if actual is None or actual != value:
            return False
    return True
