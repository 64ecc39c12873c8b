"""
文档数据库（MongoDB）通用算法模块

- 解析 shell 风格命令 ``db.<collection>.<method>(<args>)``
- 从样本文档推断字段类型
- 将 BSON 值转换为可 JSON 序列化的基础值
- 将数据浏览过滤条件翻译为 MongoDB 查询文档

这些函数不持有连接，MongoDB 驱动与测试共同使用。
"""

import datetime
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bson import Binary, Decimal128, Int64, ObjectId, Timestamp, json_util
from dateutil import parser as date_parser

from .exceptions import ValidationError
from .types import Column, ColumnInfo, DataOptions, Filter, FilterOperator, SortDirection

# 支持的集合方法（封闭白名单）
SUPPORTED_METHODS = (
    "find",
    "findOne",
    "aggregate",
    "insertOne",
    "insertMany",
    "updateOne",
    "updateMany",
    "deleteOne",
    "deleteMany",
    "countDocuments",
    "distinct",
    "createIndex",
    "dropIndex",
    "drop",
)

# 整库命令
DATABASE_METHODS = ("getCollectionNames", "stats")

SAMPLE_SIZE = 100
ID_FIELD = "_id"

INVALID_QUERY_MESSAGE = (
    "Invalid MongoDB query. Use format: db.collection.method(...)\n"
    "Supported methods: find, aggregate, insertOne, insertMany, updateOne, updateMany, "
    "deleteOne, deleteMany, countDocuments, distinct, createIndex, dropIndex, drop"
)

_COLLECTION_CALL = re.compile(r"^db\.(\w+)\.(\w+)\((.*)\)$", re.DOTALL)
_STATS_CALL = re.compile(r"^db\.stats\(\s*\)$")
_OBJECT_ID = re.compile(r"^[0-9a-fA-F]{24}$")


# ==================== 命令解析 ====================


@dataclass
class ShellCommand:
    """
    解析后的 shell 命令

    Attributes:
        collection: 集合名，整库命令为 None
        method: 方法名
        args: 位置参数（已从扩展 JSON 解码）
    """

    method: str
    collection: Optional[str] = None
    args: List[Any] = field(default_factory=list)

    def arg(self, index: int, default: Any = None) -> Any:
        """取第 index 个参数，缺失或为 None 时返回 default"""
        if index < len(self.args) and self.args[index] is not None:
            return self.args[index]
        return default


def parse_arguments(text: str) -> List[Any]:
    """
    解析括号内的参数文本

    先整体包裹为 JSON 数组解析，失败后再按单个 JSON 值解析。
    支持 MongoDB 扩展 JSON（如 ``{"$oid": "..."}``、``{"$date": "..."}``）。

    Raises:
        ValidationError: 两种方式都无法解析

    Example:
        >>> parse_arguments('{"a": 1}, {"b": 0}')
        [{'a': 1}, {'b': 0}]
    """
    text = text.strip()
    if not text:
        return []
    try:
        return list(json_util.loads(f"[{text}]"))
    except (ValueError, TypeError):
        pass
    try:
        return [json_util.loads(text)]
    except (ValueError, TypeError) as e:
        raise ValidationError(
            f"Failed to parse arguments: {text}", "MONGO_PARSE_ERROR"
        ) from e


def parse_shell_command(query: str) -> ShellCommand:
    """
    解析 shell 风格命令

    Raises:
        ValidationError: 命令格式无效、参数无法解析或方法不受支持

    Example:
        >>> parse_shell_command('db.users.find({"age": {"$gt": 18}})').method
        'find'
        >>> parse_shell_command("db.getCollectionNames()").collection is None
        True
    """
    trimmed = query.strip()
    match = _COLLECTION_CALL.match(trimmed)
    if match is None:
        if trimmed == "db.getCollectionNames()":
            return ShellCommand(method="getCollectionNames")
        if _STATS_CALL.match(trimmed):
            return ShellCommand(method="stats")
        raise ValidationError(INVALID_QUERY_MESSAGE, "MONGO_INVALID_QUERY")

    collection, method, args_text = match.group(1), match.group(2), match.group(3)
    args = parse_arguments(args_text)
    if method not in SUPPORTED_METHODS:
        raise ValidationError(
            f"Unsupported MongoDB method: {method}", "MONGO_UNSUPPORTED_METHOD"
        )
    return ShellCommand(method=method, collection=collection, args=args)


# ==================== 类型推断与序列化 ====================


def _format_datetime(value: datetime.datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


def _number_type(value: float) -> str:
    if isinstance(value, float) and not value.is_integer():
        return "Number (Double)"
    return "Number (Int)"


# BSON 值分类表：按顺序匹配，子类必须排在父类之前
# （bool < int、Int64 < int、Binary < bytes）
_VALUE_KINDS: Tuple[Tuple[type, Callable[[Any], str], Callable[[Any], Any]], ...] = (
    (bool, lambda v: "Boolean", lambda v: v),
    (Int64, lambda v: "Int64", int),
    (int, _number_type, lambda v: v),
    (float, _number_type, lambda v: v),
    (str, lambda v: "String", lambda v: v),
    (ObjectId, lambda v: "ObjectId", str),
    (datetime.datetime, lambda v: "Date", _format_datetime),
    (Binary, lambda v: "Binary", lambda v: "<Binary data>"),
    (bytes, lambda v: "Binary", lambda v: f"<Binary: {len(v)} bytes>"),
    (Decimal128, lambda v: "Decimal128", str),
    (Timestamp, lambda v: "Timestamp", lambda v: f"Timestamp({v.time}, {v.inc})"),
    ((list, tuple), lambda v: "Array", lambda v: [serialize_value(i) for i in v]),
    (dict, lambda v: "Object", lambda v: serialize_document(v)),
)


def infer_value_type(value: Any) -> str:
    """
    推断单个值的 BSON 类型名

    Example:
        >>> infer_value_type(1), infer_value_type(1.5), infer_value_type(None)
        ('Number (Int)', 'Number (Double)', 'Null')
    """
    if value is None:
        return "Null"
    for kind, type_name, _ in _VALUE_KINDS:
        if isinstance(value, kind):
            return type_name(value)
    return "Unknown"


def serialize_value(value: Any) -> Any:
    """
    将 BSON 值转换为可 JSON 序列化的基础值

    ObjectId 转为十六进制字符串，日期转为 ISO-8601，二进制转为占位字符串，
    Int64 转为 int，Decimal128 / Timestamp 转为字符串，列表与字典递归处理，
    无法识别的类型转为 "Unknown"。
    """
    if value is None:
        return None
    for kind, _, convert in _VALUE_KINDS:
        if isinstance(value, kind):
            return convert(value)
    return "Unknown"


def serialize_document(document: Dict[str, Any]) -> Dict[str, Any]:
    return {str(key): serialize_value(value) for key, value in document.items()}


def _ordered_keys(keys: Iterable[str]) -> List[str]:
    """_id 排在最前，其余按字母顺序"""
    return sorted(set(keys), key=lambda k: (k != ID_FIELD, k))


def infer_columns(documents: Sequence[Dict[str, Any]]) -> List[Column]:
    """
    从样本文档推断字段结构

    - 同一字段出现多种类型时报告为 ``Mixed (A, B)``，None 计为 ``Null`` 类型
    - 所有样本值均为 None 时类型为 ``Null``
    - 在部分文档中缺失或为 None 的字段可为空；缺失时注释记录出现比例
    - _id 总是排在第一位并作为主键

    Example:
        >>> [c.type for c in infer_columns([{"v": "x"}, {"v": 1}])]
        ['Mixed (String, Number (Int))']
    """
    if not documents:
        return [
            Column(
                name=ID_FIELD,
                type="ObjectId",
                nullable=False,
                primary_key=True,
                unique=True,
                comment="Primary key",
            )
        ]

    total = len(documents)
    types: Dict[str, List[str]] = {}
    null_counts: Dict[str, int] = {}
    present_counts: Dict[str, int] = {}

    for document in documents:
        for key, value in document.items():
            observed = types.setdefault(key, [])
            present_counts[key] = present_counts.get(key, 0) + 1
            if value is None:
                null_counts[key] = null_counts.get(key, 0) + 1
            type_name = infer_value_type(value)
            if type_name not in observed:
                observed.append(type_name)

    columns: List[Column] = []
    for key in _ordered_keys(types):
        observed = types[key]
        if len(observed) == 1:
            type_name = observed[0]
        else:
            type_name = f"Mixed ({', '.join(observed)})"

        present = present_counts[key]
        columns.append(
            Column(
                name=key,
                type=type_name,
                nullable=null_counts.get(key, 0) > 0 or present < total,
                primary_key=key == ID_FIELD,
                unique=key == ID_FIELD,
                comment=(
                    f"Present in {present}/{total} sampled docs"
                    if present < total
                    else None
                ),
            )
        )
    return columns


def documents_to_result(
    documents: Sequence[Dict[str, Any]],
) -> Tuple[List[ColumnInfo], List[Dict[str, Any]]]:
    """
    将文档列表转换为结果集的列与行

    列类型取该字段第一个非空值的类型，没有非空值时为 String。
    """
    if not documents:
        return [], []

    keys = _ordered_keys(key for document in documents for key in document)
    columns: List[ColumnInfo] = []
    for key in keys:
        type_name = "String"
        for document in documents:
            if document.get(key) is not None:
                type_name = infer_value_type(document[key])
                break
        columns.append(ColumnInfo(name=key, type=type_name, primary_key=key == ID_FIELD))

    rows = [serialize_document(document) for document in documents]
    return columns, rows


def index_type(key_spec: Dict[str, Any]) -> str:
    """根据索引键规格返回索引类型"""
    values = list(key_spec.values())
    for special in ("text", "2dsphere", "2d", "hashed"):
        if special in values:
            return special
    return "btree"


def to_extended_json(value: Any) -> str:
    """将命令参数渲染为扩展 JSON 文本（用于返回的审计语句）"""
    return json_util.dumps(value)


# ==================== 过滤条件翻译 ====================


def _parse_number(text: str) -> Optional[float | int]:
    stripped = text.strip()
    if not stripped:
        return None
    try:
        return int(stripped)
    except ValueError:
        pass
    try:
        number = float(stripped)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _coerce_by_heuristic(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if _OBJECT_ID.match(value):
        return ObjectId(value)
    number = _parse_number(value)
    return value if number is None else number


def coerce_filter_value(value: Any, field_type: Optional[str] = None) -> Any:
    """
    将过滤值转换为字段对应的原生类型

    已知字段类型时按类型转换：包含 ObjectId 的字段将 24 位十六进制字符串转为
    ObjectId，数值字段将数字字符串转为数值，日期字段将 ISO 字符串转为 datetime，
    其余类型保持原值。字段类型未知时退回启发式规则（十六进制串 -> ObjectId，
    数字串 -> 数值）。

    Example:
        >>> coerce_filter_value("42", "String")
        '42'
        >>> coerce_filter_value("42", "Number (Int)")
        42
        >>> coerce_filter_value("42")
        42
    """
    if value is None:
        return None
    if field_type is None:
        return _coerce_by_heuristic(value)
    if not isinstance(value, str):
        return value

    if "ObjectId" in field_type and _OBJECT_ID.match(value):
        return ObjectId(value)
    if any(t in field_type for t in ("Number", "Int64", "Decimal128")):
        number = _parse_number(value)
        if number is not None:
            return number
    if "Date" in field_type:
        try:
            return date_parser.isoparse(value)
        except ValueError:
            return value
    return value


def like_to_regex(pattern: Any) -> str:
    """
    将 LIKE 模式转换为正则表达式

    其余正则特殊字符先转义，再将 % 替换为 .*、_ 替换为 .

    Example:
        >>> like_to_regex("a.b%")
        'a\\\\.b.*'
    """
    return re.escape(str(pattern)).replace("%", ".*").replace("_", ".")


def build_document_filter(
    filters: Sequence[Filter],
    field_types: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    将过滤条件翻译为 MongoDB 查询文档

    Args:
        filters: 过滤条件列表
        field_types: 字段名到推断类型的映射，用于按类型转换过滤值

    Returns:
        Dict[str, Any]: 无条件时为空字典；单个条件直接返回；多个条件以 $and 组合

    Example:
        >>> build_document_filter([Filter("age", ">", 18)])
        {'age': {'$gt': 18}}
    """
    comparison = {
        FilterOperator.NE: "$ne",
        FilterOperator.GT: "$gt",
        FilterOperator.LT: "$lt",
        FilterOperator.GE: "$gte",
        FilterOperator.LE: "$lte",
    }
    field_types = field_types or {}
    conditions: List[Dict[str, Any]] = []

    for item in filters:
        name = item.column
        field_type = field_types.get(name)

        def coerce(value: Any) -> Any:
            return coerce_filter_value(value, field_type)

        operator = item.operator
        if operator == FilterOperator.EQ:
            conditions.append({name: coerce(item.value)})
        elif operator in comparison:
            conditions.append({name: {comparison[operator]: coerce(item.value)}})
        elif operator in (FilterOperator.LIKE, FilterOperator.NOT_LIKE):
            regex = {"$regex": like_to_regex(item.value), "$options": "i"}
            if operator == FilterOperator.NOT_LIKE:
                conditions.append({name: {"$not": regex}})
            else:
                conditions.append({name: regex})
        elif operator in (FilterOperator.IN, FilterOperator.NOT_IN):
            if isinstance(item.value, (list, tuple)):
                key = "$in" if operator == FilterOperator.IN else "$nin"
                conditions.append({name: {key: [coerce(v) for v in item.value]}})
        elif operator == FilterOperator.IS_NULL:
            conditions.append({name: {"$eq": None}})
        elif operator == FilterOperator.IS_NOT_NULL:
            conditions.append({name: {"$ne": None}})

    if not conditions:
        return {}
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


def build_document_sort(options: DataOptions) -> List[Tuple[str, int]]:
    """返回 pymongo sort() 使用的 (字段, 方向) 列表"""
    if not options.order_by:
        return []
    direction = -1 if SortDirection(options.order_direction) == SortDirection.DESC else 1
    return [(options.order_by, direction)]


def primary_key_filter(primary_key_values: Dict[str, Any]) -> Dict[str, Any]:
    """由主键值构建定位单个文档的查询，_id 的十六进制字符串转为 ObjectId"""
    query: Dict[str, Any] = {}
    for key, value in primary_key_values.items():
        if key == ID_FIELD and isinstance(value, str) and _OBJECT_ID.match(value):
            query[key] = ObjectId(value)
        else:
            query[key] = value
    return query


def parse_view_definition(text: str) -> Tuple[str, List[Dict[str, Any]]]:
    """
    解析视图定义 ``{"source": "<collection>", "pipeline": [...]}``

    Raises:
        ValidationError: 不是合法的 JSON 或缺少 source
    """
    try:
        definition = json_util.loads(text)
    except (ValueError, TypeError) as e:
        raise ValidationError(
            "For MongoDB views, provide a JSON object "
            '{"source": "<collection>", "pipeline": [...]} in the select statement field.',
            "MONGO_VIEW_DEFINITION",
        ) from e

    if not isinstance(definition, dict) or not definition.get("source"):
        raise ValidationError(
            'MongoDB view definition requires a "source" collection',
            "MONGO_VIEW_DEFINITION",
            field_name="source",
        )
    pipeline = definition.get("pipeline") or []
    if not isinstance(pipeline, list):
        raise ValidationError(
            "MongoDB view pipeline must be a JSON array",
            "MONGO_VIEW_DEFINITION",
            field_name="pipeline",
        )
    return str(definition["source"]), pipeline


def dumps_plain(value: Any) -> str:
    """以普通 JSON 渲染已序列化的值"""
    return json.dumps(value, ensure_ascii=False, default=str)
