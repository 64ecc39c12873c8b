"""
驱动层数据模型

定义连接配置、查询结果、结构元数据和分页浏览参数等记录类型。
所有结果记录均为 dataclass，并提供 to_dict() 以输出仅含基础类型的字典，
保证跨越调用边界时不携带任何原生连接对象或驱动包装类型。
"""

import dataclasses
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class DatabaseType(str, enum.Enum):
    """支持的数据库类型标签"""

    SQLITE = "sqlite"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"
    CLICKHOUSE = "clickhouse"
    MONGODB = "mongodb"
    REDIS = "redis"


DEFAULT_PORTS: Dict[DatabaseType, int] = {
    DatabaseType.SQLITE: 0,
    DatabaseType.MYSQL: 3306,
    DatabaseType.MARIADB: 3306,
    DatabaseType.POSTGRESQL: 5432,
    DatabaseType.CLICKHOUSE: 8123,
    DatabaseType.MONGODB: 27017,
    DatabaseType.REDIS: 6379,
}


class SSLMode(str, enum.Enum):
    DISABLE = "disable"
    PREFER = "prefer"
    REQUIRE = "require"
    VERIFY_CA = "verify-ca"
    VERIFY_FULL = "verify-full"


class TableObjectType(str, enum.Enum):
    TABLE = "table"
    VIEW = "view"


class RoutineType(str, enum.Enum):
    PROCEDURE = "PROCEDURE"
    FUNCTION = "FUNCTION"


class SortDirection(str, enum.Enum):
    ASC = "ASC"
    DESC = "DESC"


class FilterOperator(str, enum.Enum):
    """数据浏览过滤运算符"""

    EQ = "="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    IN = "IN"
    NOT_IN = "NOT IN"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"


def to_plain(value: Any) -> Any:
    """
    将 dataclass / 枚举 / 容器递归转换为基础类型

    Example:
        >>> to_plain({"mode": SSLMode.PREFER, "items": (1, 2)})
        {'mode': 'prefer', 'items': [1, 2]}
    """
    if isinstance(value, enum.Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_plain(v) for v in value]
    return value


class Record:
    """为 dataclass 记录提供 to_dict()"""

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


# ==================== 连接配置 ====================


@dataclass(frozen=True)
class SSLConfig(Record):
    """
    SSL/TLS 配置

    Attributes:
        enabled: 是否启用 SSL
        mode: SSL 模式，未设置时按 disable 处理
        ca / cert / key: PEM 内容或文件路径（取决于后端驱动的要求）
        reject_unauthorized: 是否校验服务端证书，None 表示使用默认值
        min_version: 最低 TLS 版本（如 "TLSv1.2"）
        server_name: SNI 服务器名称
    """

    enabled: bool = False
    mode: Optional[SSLMode] = None
    ca: Optional[str] = None
    cert: Optional[str] = None
    key: Optional[str] = None
    reject_unauthorized: Optional[bool] = None
    min_version: Optional[str] = None
    server_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SSLConfig":
        mode = data.get("mode")
        return cls(
            enabled=bool(data.get("enabled", False)),
            mode=SSLMode(mode) if mode else None,
            ca=data.get("ca"),
            cert=data.get("cert"),
            key=data.get("key"),
            reject_unauthorized=data.get("reject_unauthorized"),
            min_version=data.get("min_version"),
            server_name=data.get("server_name"),
        )


@dataclass(frozen=True)
class ConnectionConfig(Record):
    """
    单次连接尝试的配置（不可变）

    Attributes:
        id: 连接标识
        name: 显示名称
        type: 数据库类型
        host / port / database / username / password: 常规连接参数
        ssl: 旧版布尔 SSL 开关
        ssl_config: SSL 配置
        filepath: 嵌入式数据库文件路径
    """

    type: DatabaseType
    database: str = ""
    id: str = ""
    name: str = ""
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    ssl: bool = False
    ssl_config: Optional[SSLConfig] = None
    filepath: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionConfig":
        """
        从字典构建连接配置

        Example:
            >>> ConnectionConfig.from_dict({"type": "sqlite", "database": ":memory:"}).type
            <DatabaseType.SQLITE: 'sqlite'>
        """
        ssl_data = data.get("ssl_config")
        port = data.get("port")
        return cls(
            type=DatabaseType(data["type"]),
            database=data.get("database") or "",
            id=data.get("id") or "",
            name=data.get("name") or "",
            host=data.get("host"),
            port=int(port) if port not in (None, "") else None,
            username=data.get("username"),
            password=data.get("password"),
            ssl=bool(data.get("ssl", False)),
            ssl_config=SSLConfig.from_dict(ssl_data) if ssl_data else None,
            filepath=data.get("filepath"),
        )

    def __repr__(self) -> str:
        return (
            f"ConnectionConfig(type={self.type.value!r}, host={self.host!r}, "
            f"port={self.port!r}, database={self.database!r}, password=***)"
        )


# ==================== 查询结果 ====================


@dataclass
class ColumnInfo(Record):
    """结果集中的列描述"""

    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    default_value: Any = None
    auto_increment: bool = False


@dataclass
class QueryResult(Record):
    """
    命令执行结果

    成功的读取结果满足 len(rows) == row_count；错误结果 rows 为空、row_count 为 0。
    execution_time 单位为毫秒。
    """

    columns: List[ColumnInfo] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    affected_rows: Optional[int] = None
    execution_time: float = 0.0
    error: Optional[str] = None

    @classmethod
    def failure(cls, message: str, execution_time: float = 0.0) -> "QueryResult":
        return cls(execution_time=execution_time, error=message)


@dataclass
class MultiQueryResult(Record):
    results: List[QueryResult] = field(default_factory=list)
    total_execution_time: float = 0.0


@dataclass
class TestConnectionResult(Record):
    """连接测试结果，latency 单位为毫秒"""

    __test__ = False  # 避免被 pytest 当作测试类收集

    success: bool
    error: Optional[str] = None
    latency: Optional[float] = None
    server_version: Optional[str] = None
    server_info: Dict[str, str] = field(default_factory=dict)


# ==================== 结构元数据 ====================


@dataclass
class DatabaseInfo(Record):
    name: str
    charset: Optional[str] = None
    collation: Optional[str] = None


@dataclass
class TableInfo(Record):
    """表或视图，行数与大小为可选估计值"""

    name: str
    type: TableObjectType = TableObjectType.TABLE
    schema: Optional[str] = None
    row_count: Optional[int] = None
    size: Optional[int] = None
    comment: Optional[str] = None


@dataclass
class Column(Record):
    name: str
    type: str
    nullable: bool = True
    default_value: Any = None
    primary_key: bool = False
    auto_increment: bool = False
    unique: bool = False
    comment: Optional[str] = None
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None

    def to_column_info(self) -> ColumnInfo:
        return ColumnInfo(
            name=self.name,
            type=self.type,
            nullable=self.nullable,
            primary_key=self.primary_key,
            default_value=self.default_value,
            auto_increment=self.auto_increment,
        )


@dataclass
class Index(Record):
    name: str
    columns: List[str] = field(default_factory=list)
    unique: bool = False
    primary: bool = False
    type: Optional[str] = None


@dataclass
class ForeignKey(Record):
    name: str
    column: str
    referenced_table: str
    referenced_column: str
    referenced_schema: Optional[str] = None
    on_update: Optional[str] = None
    on_delete: Optional[str] = None


@dataclass
class Routine(Record):
    name: str
    type: RoutineType
    schema: Optional[str] = None
    return_type: Optional[str] = None
    language: Optional[str] = None
    definition: Optional[str] = None
    created_at: Optional[str] = None
    modified_at: Optional[str] = None


@dataclass
class DatabaseUser(Record):
    name: str
    host: Optional[str] = None
    superuser: Optional[bool] = None
    create_role: Optional[bool] = None
    create_db: Optional[bool] = None
    login: Optional[bool] = None
    has_password: Optional[bool] = None
    connection_limit: Optional[int] = None
    valid_until: Optional[str] = None
    roles: Optional[List[str]] = None


@dataclass
class UserPrivilege(Record):
    privilege: str
    grantee: str
    object_type: Optional[str] = None
    object_name: Optional[str] = None
    grantable: bool = False


@dataclass
class Trigger(Record):
    name: str
    table: str
    event: str
    timing: str
    schema: Optional[str] = None
    enabled: Optional[bool] = None
    definition: Optional[str] = None


# ==================== 数据浏览 ====================


@dataclass
class Filter(Record):
    """
    单个过滤条件

    IN / NOT IN 只在 value 为列表时生效；IS NULL / IS NOT NULL 忽略 value。
    """

    column: str
    operator: FilterOperator
    value: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.operator, FilterOperator):
            self.operator = FilterOperator(str(self.operator).upper())


@dataclass
class DataOptions(Record):
    filters: List[Filter] = field(default_factory=list)
    order_by: Optional[str] = None
    order_direction: SortDirection = SortDirection.ASC
    limit: Optional[int] = None
    offset: Optional[int] = None


@dataclass
class DataResult(Record):
    columns: List[ColumnInfo] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    offset: int = 0
    limit: int = 0


# ==================== 后端扩展信息 ====================


@dataclass
class CharsetInfo(Record):
    charset: str
    description: Optional[str] = None
    default_collation: Optional[str] = None
    max_length: Optional[int] = None


@dataclass
class CollationInfo(Record):
    collation: str
    charset: str
    id: Optional[int] = None
    is_default: bool = False
    is_compiled: bool = False
    sort_length: Optional[int] = None


@dataclass
class PartitionInfo(Record):
    """
    表分区

    MySQL 来自 information_schema.PARTITIONS；ClickHouse 来自 system.parts，
    此时 name 为数据片段名，partition 为分区键取值。
    """

    name: str
    partition: Optional[str] = None
    ordinal_position: Optional[int] = None
    method: Optional[str] = None
    expression: Optional[str] = None
    description: Optional[str] = None
    subpartition_name: Optional[str] = None
    rows: Optional[int] = None
    data_length: Optional[int] = None
    index_length: Optional[int] = None
    comment: Optional[str] = None
    engine: Optional[str] = None


@dataclass
class ScheduledEvent(Record):
    """MySQL 事件调度器中的事件"""

    name: str
    database: Optional[str] = None
    definer: Optional[str] = None
    time_zone: Optional[str] = None
    event_type: Optional[str] = None
    execute_at: Optional[str] = None
    interval_value: Optional[str] = None
    interval_field: Optional[str] = None
    starts: Optional[str] = None
    ends: Optional[str] = None
    status: Optional[str] = None
    on_completion: Optional[str] = None
    created: Optional[str] = None
    last_altered: Optional[str] = None
    last_executed: Optional[str] = None
    comment: Optional[str] = None


@dataclass
class DatabaseSchema(Record):
    name: str
    owner: Optional[str] = None
    is_system: bool = False
    table_count: Optional[int] = None


@dataclass
class Sequence(Record):
    name: str
    schema: str
    data_type: Optional[str] = None
    start_value: Optional[str] = None
    min_value: Optional[str] = None
    max_value: Optional[str] = None
    increment: Optional[str] = None
    cycled: bool = False
    cache_size: Optional[str] = None
    last_value: Optional[str] = None
    owner: Optional[str] = None


@dataclass
class MaterializedView(Record):
    name: str
    schema: str
    definition: Optional[str] = None
    owner: Optional[str] = None
    tablespace: Optional[str] = None
    has_indexes: Optional[bool] = None
    is_populated: Optional[bool] = None


@dataclass
class Extension(Record):
    name: str
    version: Optional[str] = None
    schema: Optional[str] = None
    description: Optional[str] = None
    relocatable: Optional[bool] = None


@dataclass
class EnumType(Record):
    name: str
    schema: str
    values: List[str] = field(default_factory=list)


@dataclass
class TableEngineInfo(Record):
    """ClickHouse 表引擎信息"""

    engine: str
    engine_full: Optional[str] = None
    partition_key: Optional[str] = None
    sorting_key: Optional[str] = None
    primary_key: Optional[str] = None
    sampling_key: Optional[str] = None
