"""
键值数据库（Redis）通用算法模块

- 命令行分词（支持单引号与双引号参数）
- 命令结果格式化为统一的结果集
- 数据库编号解析、keyspace 解析、键前缀分组
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .types import ColumnInfo, DatabaseInfo, QueryResult, TableInfo

# 返回交替 field/value 序列的命令
KEY_VALUE_COMMANDS = frozenset(
    {"HGETALL", "CONFIG", "ZRANGEBYSCORE", "ZRANGEBYLEX", "XRANGE", "XREVRANGE"}
)

MAX_DATABASE_INDEX = 15
# 超过该数量的键按前缀分组展示
GROUPING_THRESHOLD = 200
SCAN_BATCH_SIZE = 100
SCAN_MAX_KEYS = 10000
# list / set / zset / stream 展示的最大元素数
VALUE_PREVIEW_SIZE = 100

NIL_PLACEHOLDER = "(nil)"
EMPTY_PLACEHOLDER = "(empty list or set)"

_DATABASE_NUMBER = re.compile(r"(\d+)")
_KEYSPACE_NAME = re.compile(r"^db(\d+)$")


def tokenize_command(command: str) -> List[str]:
    """
    将命令行拆分为参数列表

    空格分隔参数；单引号或双引号内的空格保留，引号本身不进入结果。

    Example:
        >>> tokenize_command("SET greeting 'hello world'")
        ['SET', 'greeting', 'hello world']
        >>> tokenize_command('HSET h field "a b"')
        ['HSET', 'h', 'field', 'a b']
    """
    parts: List[str] = []
    current: List[str] = []
    in_single = False
    in_double = False

    for char in command:
        if char == "'" and not in_double:
            in_single = not in_single
            continue
        if char == '"' and not in_single:
            in_double = not in_double
            continue
        if char == " " and not in_single and not in_double:
            if current:
                parts.append("".join(current))
                current = []
            continue
        current.append(char)

    if current:
        parts.append("".join(current))
    return parts


def parse_database_number(database: Optional[str]) -> int:
    """
    解析数据库编号

    接受 "3"、"db3"、"db3 (empty)" 等形式，超出 0-15 或无法解析时返回 0。

    Example:
        >>> parse_database_number("db3 (empty)")
        3
        >>> parse_database_number("db42")
        0
    """
    if not database:
        return 0
    match = _DATABASE_NUMBER.search(str(database))
    if match is None:
        return 0
    number = int(match.group(1))
    return number if 0 <= number <= MAX_DATABASE_INDEX else 0


def keyspace_databases(keyspace: Dict[str, Any]) -> List[DatabaseInfo]:
    """
    从 INFO keyspace 的解析结果构建数据库列表

    只返回包含键的数据库，按编号排序；键数量记录在 charset 字段中。

    Example:
        >>> keyspace_databases({"db1": {"keys": 5}, "db0": {"keys": 2}})[0].name
        'db0'
    """
    counts: List[Tuple[int, int]] = []
    for name, stats in keyspace.items():
        match = _KEYSPACE_NAME.match(str(name))
        if match is None:
            continue
        keys = stats.get("keys", 0) if isinstance(stats, dict) else 0
        counts.append((int(match.group(1)), int(keys)))
    return [DatabaseInfo(name=f"db{n}", charset=str(keys)) for n, keys in sorted(counts)]


def group_keys(keys: Iterable[str], threshold: int = GROUPING_THRESHOLD) -> List[TableInfo]:
    """
    将键列表转换为“表”列表

    键数量不超过阈值时逐个列出；否则按第一个冒号前的前缀分组，
    每组以 ``prefix:*`` 命名并记录键数量，没有冒号的键单独成组。

    Example:
        >>> [t.name for t in group_keys(["b", "a"])]
        ['a', 'b']
    """
    key_list = sorted(keys)
    if len(key_list) <= threshold:
        return [TableInfo(name=key) for key in key_list]

    counts: Dict[str, int] = {}
    for key in key_list:
        colon = key.find(":")
        prefix = key[:colon] + ":*" if colon > 0 else key
        counts[prefix] = counts.get(prefix, 0) + 1
    return [TableInfo(name=prefix, row_count=count) for prefix, count in sorted(counts.items())]


def format_uptime(seconds: Any) -> Optional[str]:
    """
    将运行秒数格式化为 "Nd Nh" 或 "Nh"

    Example:
        >>> format_uptime(90000)
        '1d 1h'
    """
    try:
        total = int(seconds)
    except (TypeError, ValueError):
        return None
    days, remainder = divmod(total, 86400)
    hours = remainder // 3600
    return f"{days}d {hours}h" if days > 0 else f"{hours}h"


def normalize_ttl(ttl: Optional[int]) -> Optional[int]:
    """负数 TTL（-1 永不过期、-2 键不存在）统一为 None"""
    if ttl is None or ttl < 0:
        return None
    return ttl


def render_value(value: Any) -> Optional[str]:
    """字符串原样返回，其余结构以 JSON 文本返回"""
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _text(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _pair_rows(result: Sequence[Any]) -> Optional[List[Dict[str, Any]]]:
    """将交替序列或二元组序列转换为 field/value 行，无法配对时返回 None"""
    if all(isinstance(item, (tuple, list)) and len(item) == 2 for item in result):
        return [{"field": _text(f), "value": _text(v)} for f, v in result]
    if len(result) % 2 == 0:
        return [
            {"field": _text(result[i]), "value": _text(result[i + 1])}
            for i in range(0, len(result), 2)
        ]
    return None


def _scalar_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


def format_command_result(
    command: str, result: Any, execution_time: float = 0.0
) -> QueryResult:
    """
    按结果形状格式化命令返回值

    - None: 单行 ``(nil)``
    - 字符串 / 数值: 单行 result
    - 空集合: 单行 ``(empty list or set)``
    - 返回 field/value 的命令（HGETALL、CONFIG 等）: field / value 两列
    - 其他列表: ``#`` / value 两列，序号从 1 开始
    - 其他字典: 单行 JSON 文本

    Example:
        >>> format_command_result("GET", None).rows
        [{'result': '(nil)'}]
    """
    command = command.upper()

    if result is None:
        return QueryResult(
            columns=[ColumnInfo(name="result", type="string")],
            rows=[{"result": NIL_PLACEHOLDER}],
            row_count=1,
            execution_time=execution_time,
        )

    if isinstance(result, bytes):
        result = result.decode("utf-8", errors="replace")

    if isinstance(result, (str, int, float)):
        return QueryResult(
            columns=[ColumnInfo(name="result", type=_scalar_type(result), nullable=False)],
            rows=[{"result": str(result)}],
            row_count=1,
            execution_time=execution_time,
        )

    if isinstance(result, (set, frozenset)):
        result = sorted(result, key=str)

    if isinstance(result, dict) and command in KEY_VALUE_COMMANDS:
        result = list(result.items())

    if isinstance(result, (list, tuple)):
        if not result:
            return QueryResult(
                columns=[ColumnInfo(name="result", type="string")],
                rows=[{"result": EMPTY_PLACEHOLDER}],
                row_count=1,
                execution_time=execution_time,
            )

        rows = _pair_rows(result) if command in KEY_VALUE_COMMANDS else None
        if rows is not None:
            return QueryResult(
                columns=[
                    ColumnInfo(name="field", type="string", nullable=False),
                    ColumnInfo(name="value", type="string"),
                ],
                rows=rows,
                row_count=len(rows),
                execution_time=execution_time,
            )

        rows = [{"#": index, "value": _text(item)} for index, item in enumerate(result, 1)]
        return QueryResult(
            columns=[
                ColumnInfo(name="#", type="integer", nullable=False),
                ColumnInfo(name="value", type="string"),
            ],
            rows=rows,
            row_count=len(rows),
            execution_time=execution_time,
        )

    return QueryResult(
        columns=[ColumnInfo(name="result", type="string", nullable=False)],
        rows=[{"result": json.dumps(result, ensure_ascii=False, indent=2, default=str)}],
        row_count=1,
        execution_time=execution_time,
    )


def mask_acl_password(arguments: Sequence[str]) -> List[str]:
    """将 ACL SETUSER 参数中的 >password 替换为 >****"""
    return [">****" if arg.startswith(">") else arg for arg in arguments]
