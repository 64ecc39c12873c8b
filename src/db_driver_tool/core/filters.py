"""
关系型数据浏览的 SQL 子句构建模块

将 DataOptions 中的过滤、排序与分页参数转换为 WHERE / ORDER BY / LIMIT 子句。
标识符引号字符和参数占位符由各后端驱动传入：

- SQLite: 双引号 + ``?``
- MySQL / MariaDB: 反引号 + ``%s``
- PostgreSQL: 双引号 + ``%s``
- ClickHouse: 反引号 + 值内联（传入 inline 转义函数）
"""

from typing import Any, Callable, List, Optional, Sequence, Tuple

from .exceptions import ValidationError
from .types import DataOptions, Filter, FilterOperator, SortDirection

_NULL_OPERATORS = (FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL)
_SET_OPERATORS = (FilterOperator.IN, FilterOperator.NOT_IN)
_PATTERN_OPERATORS = (FilterOperator.LIKE, FilterOperator.NOT_LIKE)


def quote_identifier(name: str, quote: str = '"') -> str:
    """
    使用指定引号包裹标识符，内部出现的引号字符加倍转义

    Example:
        >>> quote_identifier("user", "`")
        '`user`'
        >>> quote_identifier('a"b')
        '"a""b"'
    """
    return f"{quote}{name.replace(quote, quote * 2)}{quote}"


def build_where_clause(
    filters: Sequence[Filter],
    quote: str = '"',
    placeholder: str = "?",
    inline: Optional[Callable[[Any], str]] = None,
) -> Tuple[str, List[Any]]:
    """
    构建 WHERE 子句及其绑定参数

    规则：
    - IS NULL / IS NOT NULL 不绑定参数
    - IN / NOT IN 仅在值为列表时生效，否则整个条件被忽略
    - LIKE / NOT LIKE 绑定 ``%值%``
    - 其余比较运算符直接绑定值
    - 多个条件以 AND 连接

    Args:
        filters: 过滤条件列表
        quote: 标识符引号字符
        placeholder: 参数占位符
        inline: 非 None 时将值转换为字面量直接写入语句，返回的参数列表为空

    Returns:
        Tuple[str, List[Any]]: (以 "WHERE " 开头的子句或空字符串, 参数列表)

    Example:
        >>> build_where_clause([Filter("age", ">", 18)], quote="`")
        ('WHERE `age` > ?', [18])
    """
    conditions: List[str] = []
    values: List[Any] = []

    def bind(value: Any) -> str:
        if inline is not None:
            return inline(value)
        values.append(value)
        return placeholder

    for item in filters:
        column = quote_identifier(item.column, quote)
        operator = item.operator

        if operator in _NULL_OPERATORS:
            conditions.append(f"{column} {operator.value}")
        elif operator in _SET_OPERATORS:
            if not isinstance(item.value, (list, tuple)):
                continue
            if not item.value:
                continue
            placeholders = ", ".join(bind(v) for v in item.value)
            conditions.append(f"{column} {operator.value} ({placeholders})")
        elif operator in _PATTERN_OPERATORS:
            conditions.append(f"{column} {operator.value} {bind(f'%{item.value}%')}")
        else:
            conditions.append(f"{column} {operator.value} {bind(item.value)}")

    if not conditions:
        return "", []
    return "WHERE " + " AND ".join(conditions), values


def build_order_clause(options: DataOptions, quote: str = '"') -> str:
    """
    构建 ORDER BY 子句，未指定排序列时返回空字符串

    Example:
        >>> build_order_clause(DataOptions(order_by="id", order_direction=SortDirection.DESC))
        'ORDER BY "id" DESC'
    """
    if not options.order_by:
        return ""
    direction = SortDirection(options.order_direction or SortDirection.ASC)
    return f"ORDER BY {quote_identifier(options.order_by, quote)} {direction.value}"


def build_limit_clause(
    options: DataOptions, default_limit: Optional[int] = None
) -> str:
    """
    构建 LIMIT / OFFSET 子句

    Raises:
        ValidationError: limit 或 offset 为负数或不是整数
    """
    limit = options.limit if options.limit is not None else default_limit
    parts: List[str] = []
    if limit is not None:
        parts.append(f"LIMIT {non_negative_int(limit, 'limit')}")
    if options.offset is not None:
        parts.append(f"OFFSET {non_negative_int(options.offset, 'offset')}")
    return " ".join(parts)


def non_negative_int(value: Any, field_name: str) -> int:
    """
    校验分页参数为非负整数

    Raises:
        ValidationError: 不是整数或为负数
    """
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"{field_name} must be an integer",
            "INVALID_PAGINATION",
            field_name=field_name,
            expected="non-negative integer",
        ) from e
    if number < 0:
        raise ValidationError(
            f"{field_name} must not be negative",
            "INVALID_PAGINATION",
            field_name=field_name,
            expected="non-negative integer",
        )
    return number


def join_clauses(*clauses: str) -> str:
    """以空格连接非空子句"""
    return " ".join(c for c in clauses if c)
