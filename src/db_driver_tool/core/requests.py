"""
结构与数据变更请求模型

描述加列、建索引、建表、插入行、建视图、建触发器、建用户等操作的请求记录，
以及所有变更操作统一返回的 SchemaOperationResult 和各后端的数据类型目录。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .types import Record

# 外键引用动作
REFERENCE_ACTIONS = ("CASCADE", "SET NULL", "SET DEFAULT", "RESTRICT", "NO ACTION")


@dataclass
class SchemaOperationResult(Record):
    """
    变更操作结果

    Attributes:
        success: 是否成功
        sql: 实际下发的原生语句（用于审计与展示）
        error: 失败原因
        affected_rows: 影响的行数
    """

    success: bool
    sql: Optional[str] = None
    error: Optional[str] = None
    affected_rows: Optional[int] = None


# ==================== 列 ====================


@dataclass
class ColumnDefinition(Record):
    name: str
    type: str
    nullable: bool = True
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    default_value: Any = None
    primary_key: bool = False
    auto_increment: bool = False
    unique: bool = False
    comment: Optional[str] = None
    # MySQL: "FIRST" 或要跟随的列名
    after_column: Optional[str] = None


@dataclass
class AddColumnRequest(Record):
    table: str
    column: ColumnDefinition


@dataclass
class ModifyColumnRequest(Record):
    table: str
    old_name: str
    new_definition: ColumnDefinition


@dataclass
class DropColumnRequest(Record):
    table: str
    column_name: str


@dataclass
class RenameColumnRequest(Record):
    table: str
    old_name: str
    new_name: str


# ==================== 索引与外键 ====================


@dataclass
class IndexDefinition(Record):
    name: str
    columns: List[str]
    unique: bool = False
    type: Optional[str] = None


@dataclass
class CreateIndexRequest(Record):
    table: str
    index: IndexDefinition
    schema: Optional[str] = None


@dataclass
class DropIndexRequest(Record):
    table: str
    index_name: str


@dataclass
class ForeignKeyDefinition(Record):
    name: str
    columns: List[str]
    referenced_table: str
    referenced_columns: List[str]
    referenced_schema: Optional[str] = None
    on_update: Optional[str] = None
    on_delete: Optional[str] = None


@dataclass
class AddForeignKeyRequest(Record):
    table: str
    foreign_key: ForeignKeyDefinition


@dataclass
class DropForeignKeyRequest(Record):
    table: str
    constraint_name: str


# ==================== 表 ====================


@dataclass
class TableDefinition(Record):
    name: str
    columns: List[ColumnDefinition]
    primary_key: List[str] = field(default_factory=list)
    indexes: List[IndexDefinition] = field(default_factory=list)
    foreign_keys: List[ForeignKeyDefinition] = field(default_factory=list)
    comment: Optional[str] = None


@dataclass
class CreateTableRequest(Record):
    table: TableDefinition
    schema: Optional[str] = None


@dataclass
class DropTableRequest(Record):
    table: str


@dataclass
class RenameTableRequest(Record):
    old_name: str
    new_name: str


# ==================== 行 ====================


@dataclass
class InsertRowRequest(Record):
    table: str
    values: Dict[str, Any]


@dataclass
class DeleteRowRequest(Record):
    table: str
    primary_key_values: Dict[str, Any]


@dataclass
class UpdateRowRequest(Record):
    table: str
    primary_key_values: Dict[str, Any]
    values: Dict[str, Any]


# ==================== 视图 ====================


@dataclass
class ViewDefinition(Record):
    name: str
    select_statement: str
    replace_if_exists: bool = False


@dataclass
class CreateViewRequest(Record):
    view: ViewDefinition


@dataclass
class DropViewRequest(Record):
    view_name: str
    cascade: bool = False


@dataclass
class RenameViewRequest(Record):
    old_name: str
    new_name: str


# ==================== 触发器 ====================


@dataclass
class TriggerDefinition(Record):
    """
    触发器定义

    Attributes:
        timing: BEFORE / AFTER / INSTEAD OF
        event: INSERT / UPDATE / DELETE
        body: 触发器主体语句
        function_name: PostgreSQL 触发器调用的函数
        condition: WHEN 条件
    """

    name: str
    table: str
    timing: str
    event: str
    body: str = ""
    schema: Optional[str] = None
    function_name: Optional[str] = None
    for_each_row: bool = True
    condition: Optional[str] = None


@dataclass
class CreateTriggerRequest(Record):
    trigger: TriggerDefinition


@dataclass
class DropTriggerRequest(Record):
    trigger_name: str
    table: Optional[str] = None
    schema: Optional[str] = None
    cascade: bool = False


# ==================== 用户 ====================


@dataclass
class UserDefinition(Record):
    name: str
    password: Optional[str] = None
    host: Optional[str] = None
    superuser: bool = False
    login: bool = True


@dataclass
class CreateUserRequest(Record):
    user: UserDefinition


@dataclass
class DropUserRequest(Record):
    name: str
    host: Optional[str] = None


# ==================== 数据类型目录 ====================


@dataclass(frozen=True)
class DataTypeInfo(Record):
    """
    数据类型描述

    category 取值：numeric / string / datetime / binary / json / boolean / other
    """

    name: str
    category: str
    has_length: bool = False
    has_precision: bool = False
    default_length: Optional[int] = None
    default_precision: Optional[int] = None
    default_scale: Optional[int] = None


def _t(name: str, category: str, **kwargs: Any) -> DataTypeInfo:
    return DataTypeInfo(name, category, **kwargs)


SQLITE_DATA_TYPES = [
    _t("INTEGER", "numeric"),
    _t("REAL", "numeric"),
    _t("TEXT", "string"),
    _t("BLOB", "binary"),
    _t("NUMERIC", "numeric", has_precision=True),
]

MYSQL_DATA_TYPES = [
    _t("TINYINT", "numeric", has_length=True, default_length=4),
    _t("SMALLINT", "numeric", has_length=True, default_length=6),
    _t("MEDIUMINT", "numeric", has_length=True, default_length=9),
    _t("INT", "numeric", has_length=True, default_length=11),
    _t("BIGINT", "numeric", has_length=True, default_length=20),
    _t("DECIMAL", "numeric", has_precision=True, default_precision=10, default_scale=0),
    _t("FLOAT", "numeric"),
    _t("DOUBLE", "numeric"),
    _t("CHAR", "string", has_length=True, default_length=1),
    _t("VARCHAR", "string", has_length=True, default_length=255),
    _t("TINYTEXT", "string"),
    _t("TEXT", "string"),
    _t("MEDIUMTEXT", "string"),
    _t("LONGTEXT", "string"),
    _t("BINARY", "binary", has_length=True, default_length=1),
    _t("VARBINARY", "binary", has_length=True, default_length=255),
    _t("TINYBLOB", "binary"),
    _t("BLOB", "binary"),
    _t("MEDIUMBLOB", "binary"),
    _t("LONGBLOB", "binary"),
    _t("DATE", "datetime"),
    _t("TIME", "datetime"),
    _t("DATETIME", "datetime"),
    _t("TIMESTAMP", "datetime"),
    _t("YEAR", "datetime"),
    _t("JSON", "json"),
    _t("ENUM", "other"),
    _t("SET", "other"),
]

POSTGRESQL_DATA_TYPES = [
    _t("SMALLINT", "numeric"),
    _t("INTEGER", "numeric"),
    _t("BIGINT", "numeric"),
    _t("DECIMAL", "numeric", has_precision=True, default_precision=10, default_scale=0),
    _t("NUMERIC", "numeric", has_precision=True, default_precision=10, default_scale=0),
    _t("REAL", "numeric"),
    _t("DOUBLE PRECISION", "numeric"),
    _t("SERIAL", "numeric"),
    _t("BIGSERIAL", "numeric"),
    _t("CHAR", "string", has_length=True, default_length=1),
    _t("VARCHAR", "string", has_length=True, default_length=255),
    _t("TEXT", "string"),
    _t("BYTEA", "binary"),
    _t("BOOLEAN", "boolean"),
    _t("DATE", "datetime"),
    _t("TIME", "datetime"),
    _t("TIMESTAMP", "datetime"),
    _t("TIMESTAMPTZ", "datetime"),
    _t("INTERVAL", "datetime"),
    _t("JSON", "json"),
    _t("JSONB", "json"),
    _t("UUID", "other"),
    _t("INET", "other"),
    _t("CIDR", "other"),
    _t("MACADDR", "other"),
]

CLICKHOUSE_DATA_TYPES = [
    _t("UInt8", "numeric"),
    _t("UInt16", "numeric"),
    _t("UInt32", "numeric"),
    _t("UInt64", "numeric"),
    _t("Int8", "numeric"),
    _t("Int16", "numeric"),
    _t("Int32", "numeric"),
    _t("Int64", "numeric"),
    _t("Float32", "numeric"),
    _t("Float64", "numeric"),
    _t("Decimal", "numeric", has_precision=True, default_precision=10, default_scale=0),
    _t("String", "string"),
    _t("FixedString", "string", has_length=True, default_length=16),
    _t("UUID", "other"),
    _t("Date", "datetime"),
    _t("Date32", "datetime"),
    _t("DateTime", "datetime"),
    _t("DateTime64", "datetime", has_precision=True, default_precision=3),
    _t("Bool", "boolean"),
    _t("Enum8", "other"),
    _t("Enum16", "other"),
    _t("Array", "other"),
    _t("Map", "other"),
    _t("Tuple", "other"),
    _t("JSON", "json"),
    _t("IPv4", "other"),
    _t("IPv6", "other"),
    _t("LowCardinality(String)", "string"),
]

MONGODB_DATA_TYPES = [
    _t("String", "string"),
    _t("Number", "numeric"),
    _t("Boolean", "boolean"),
    _t("Date", "datetime"),
    _t("ObjectId", "other"),
    _t("Array", "other"),
    _t("Object", "json"),
    _t("Binary", "binary"),
    _t("Int32", "numeric"),
    _t("Int64", "numeric"),
    _t("Double", "numeric"),
    _t("Decimal128", "numeric"),
    _t("Timestamp", "datetime"),
    _t("Null", "other"),
    _t("RegExp", "other"),
]

REDIS_DATA_TYPES = [
    _t("string", "string"),
    _t("list", "string"),
    _t("set", "string"),
    _t("zset", "string"),
    _t("hash", "string"),
    _t("stream", "other"),
]


# ==================== PostgreSQL 扩展对象 ====================


@dataclass
class SequenceDefinition(Record):
    """
    序列定义

    Attributes:
        owned_by: 绑定的列，格式为 table.column
    """

    name: str
    schema: Optional[str] = None
    data_type: Optional[str] = None
    start_with: Optional[int] = None
    increment: Optional[int] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    cycle: bool = False
    cache: Optional[int] = None
    owned_by: Optional[str] = None


@dataclass
class CreateSequenceRequest(Record):
    sequence: SequenceDefinition


@dataclass
class DropSequenceRequest(Record):
    sequence_name: str
    schema: Optional[str] = None
    cascade: bool = False


@dataclass
class AlterSequenceRequest(Record):
    """修改序列；未设置的字段保持不变，min_value / max_value 设为 "none" 时取消限制"""

    sequence_name: str
    schema: Optional[str] = None
    restart_with: Optional[int] = None
    increment: Optional[int] = None
    min_value: Any = None
    max_value: Any = None
    cycle: Optional[bool] = None
    cache: Optional[int] = None
    owned_by: Optional[str] = None


@dataclass
class RefreshMaterializedViewRequest(Record):
    view_name: str
    schema: Optional[str] = None
    concurrently: bool = False
    with_data: bool = True


@dataclass
class CreateExtensionRequest(Record):
    name: str
    schema: Optional[str] = None
    version: Optional[str] = None
    cascade: bool = False


@dataclass
class DropExtensionRequest(Record):
    name: str
    cascade: bool = False


# ==================== MySQL 事件 ====================


@dataclass
class EventDefinition(Record):
    """
    事件定义

    Attributes:
        schedule: ON SCHEDULE 之后的子句，例如 "EVERY 1 DAY"
        on_completion: PRESERVE / NOT PRESERVE
        status: ENABLED / DISABLED
    """

    name: str
    schedule: str
    body: str
    on_completion: Optional[str] = None
    status: Optional[str] = None
    comment: Optional[str] = None


@dataclass
class AlterEventRequest(Record):
    name: str
    schedule: Optional[str] = None
    body: Optional[str] = None
    new_name: Optional[str] = None
    on_completion: Optional[str] = None
    status: Optional[str] = None
    comment: Optional[str] = None
