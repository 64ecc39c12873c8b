"""
ClickHouse 驱动

基于 clickhouse-connect 的 HTTP 客户端。ClickHouse 没有服务端预处理语句，
过滤条件与行数据的值以转义后的字面量写入语句；每条查询携带生成的 query_id，
取消查询时通过独立的短生命周期客户端发送 KILL QUERY。
"""

import datetime
import decimal
import re
import threading
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

import clickhouse_connect
from clickhouse_connect.driver.client import Client

from ..core.exceptions import NOT_CONNECTED_MESSAGE, ConnectionError, error_message
from ..core.filters import (
    build_limit_clause,
    build_order_clause,
    build_where_clause,
    join_clauses,
    quote_identifier,
)
from ..core.requests import (
    CLICKHOUSE_DATA_TYPES,
    AddColumnRequest,
    AddForeignKeyRequest,
    ColumnDefinition,
    CreateIndexRequest,
    CreateTableRequest,
    CreateTriggerRequest,
    CreateUserRequest,
    CreateViewRequest,
    DataTypeInfo,
    DeleteRowRequest,
    DropColumnRequest,
    DropForeignKeyRequest,
    DropIndexRequest,
    DropTableRequest,
    DropTriggerRequest,
    DropUserRequest,
    DropViewRequest,
    IndexDefinition,
    InsertRowRequest,
    ModifyColumnRequest,
    RenameColumnRequest,
    RenameTableRequest,
    RenameViewRequest,
    SchemaOperationResult,
    UpdateRowRequest,
)
from ..core.tls import TLSOptions, connect_with_tls_fallback, pem_path
from ..core.types import (
    DEFAULT_PORTS,
    Column,
    ColumnInfo,
    ConnectionConfig,
    DatabaseInfo,
    DatabaseType,
    DatabaseUser,
    DataOptions,
    DataResult,
    ForeignKey,
    Index,
    PartitionInfo,
    QueryResult,
    Routine,
    RoutineType,
    TableEngineInfo,
    TableInfo,
    TableObjectType,
    Trigger,
    UserPrivilege,
)
from ..utils.logging_utils import get_logger
from .base import BaseDriver, elapsed_ms, failed, schema_operation
from .sql_base import plain_value, type_with_size

logger = get_logger(__name__)

FOREIGN_KEYS_UNSUPPORTED = "ClickHouse does not support foreign keys"
TRIGGERS_UNSUPPORTED = "ClickHouse does not support triggers"

DEFAULT_USER = "default"
DEFAULT_DATABASE = "default"
DEFAULT_DATA_LIMIT = 100
SKIPPING_INDEX_GRANULARITY = 4

_QUERY_PATTERN = re.compile(r"^\s*(SELECT|SHOW|DESCRIBE|DESC|EXPLAIN|EXISTS|WITH)\b", re.IGNORECASE)
# 字符串（反斜杠转义）、引号标识符与注释之外的 ? 占位符
_QMARK_PATTERN = re.compile(
    r"'(?:[^'\\]|\\.)*'"
    r'|"(?:[^"\\]|\\.)*"'
    r"|`(?:[^`\\]|\\.)*`"
    r"|--[^\n]*"
    r"|/\*.*?\*/"
    r"|\?",
    re.DOTALL,
)
# 以函数调用形式给出的默认值按表达式原样写入，例如 now()、today()
_EXPRESSION_DEFAULT = re.compile(r"^\w+\(.*\)$")
_GRANT_PATTERN = re.compile(r"GRANT\s+(.+?)\s+ON\s+(.+?)\s+TO", re.IGNORECASE)
_VIEW_ENGINES = ("View", "MaterializedView", "LiveView", "WindowView")


def escape_string(value: str) -> str:
    """
    转义 ClickHouse 字符串字面量的内容（先转义反斜杠，再转义单引号）

    Example:
        >>> escape_string("it's")
        "it\\\\'s"
    """
    return value.replace("\\", "\\\\").replace("'", "\\'")


def literal(value: Any) -> str:
    """
    将 Python 值转换为 ClickHouse 字面量

    Example:
        >>> literal(None)
        'NULL'
        >>> literal("a'b")
        "'a\\\\'b'"
        >>> literal([1, 2])
        '[1, 2]'
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, decimal.Decimal)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(literal(v) for v in value) + "]"
    if isinstance(value, datetime.datetime):
        value = value.strftime("%Y-%m-%d %H:%M:%S")
    return f"'{escape_string(str(value))}'"


def inline_params(sql: str, params: Optional[Sequence[Any]]) -> str:
    """
    把 ``?`` 占位符替换为转义后的字面量，字符串字面量中的 ``?`` 保持不变

    Example:
        >>> inline_params("SELECT * FROM t WHERE a = ? AND b = '?'", ["x"])
        "SELECT * FROM t WHERE a = 'x' AND b = '?'"
    """
    if not params:
        return sql
    values = iter(params)

    def replace(match: "re.Match[str]") -> str:
        token = match.group(0)
        if token != "?":
            return token
        try:
            return literal(next(values))
        except StopIteration:
            return token

    return _QMARK_PATTERN.sub(replace, sql)


def _split_key(expression: Optional[str]) -> List[str]:
    """拆分 system.tables 中以逗号分隔的排序键/主键表达式"""
    if not expression:
        return []
    return [part.strip() for part in expression.split(",") if part.strip()]


class ClickHouseDriver(BaseDriver):
    """
    ClickHouse 驱动

    Attributes:
        current_database (str): 连接时选定的数据库，未指定数据库的操作均以它为准
    """

    db_type = DatabaseType.CLICKHOUSE
    QUOTE = "`"
    DATA_TYPES: List[DataTypeInfo] = CLICKHOUSE_DATA_TYPES

    def __init__(self) -> None:
        super().__init__()
        self.client: Optional[Client] = None
        self.current_database = DEFAULT_DATABASE
        self._tls: Optional[TLSOptions] = None
        self._query_id: Optional[str] = None
        self._lock = threading.Lock()

    # ==================== 连接 ====================

    def _create_client(self, config: ConnectionConfig, tls: Optional[TLSOptions]) -> Client:
        kwargs: Dict[str, Any] = {
            "host": config.host or "localhost",
            "port": config.port or DEFAULT_PORTS[self.db_type],
            "username": config.username or DEFAULT_USER,
            "password": config.password or "",
            "database": config.database or DEFAULT_DATABASE,
            "secure": tls is not None,
        }
        if tls is not None:
            kwargs["verify"] = tls.verify
            if tls.ca:
                kwargs["ca_cert"] = pem_path(tls.ca)
            if tls.cert:
                kwargs["client_cert"] = pem_path(tls.cert)
            if tls.key:
                kwargs["client_cert_key"] = pem_path(tls.key)
            if tls.server_name:
                kwargs["server_host_name"] = tls.server_name
        return clickhouse_connect.get_client(**kwargs)

    def connect(self, config: ConnectionConfig) -> None:
        """
        建立 HTTP 客户端并以 SELECT 1 探测连通性

        Raises:
            ConnectionError: 连接或探测失败
        """
        if self._connected:
            logger.warning("数据库连接已存在，无需重复连接")
            return

        def attempt(tls: Optional[TLSOptions]) -> None:
            self._tls = tls
            self.client = self._create_client(config, tls)
            self.client.command("SELECT 1")

        try:
            self.config = config
            connect_with_tls_fallback(config, attempt, self._release)
        except Exception as e:
            self._release()
            self.config = None
            message = error_message(e)
            logger.error(f"clickhouse 连接建立失败: {message}")
            raise ConnectionError(
                message,
                "CONNECTION_FAILED",
                database_type=self.db_type.value,
                host=config.host,
                port=config.port,
                database=config.database,
            ) from e

        self.current_database = config.database or DEFAULT_DATABASE
        self._connected = True
        logger.info(f"clickhouse 连接成功: {config.host or 'localhost'}/{self.current_database}")

    def _release(self) -> None:
        client = self.client
        self.client = None
        self._connected = False
        if client is not None:
            client.close()

    def disconnect(self) -> None:
        if self.client is None:
            self._connected = False
            logger.debug("数据库连接已断开，无需重复操作")
            return
        try:
            self._release()
            logger.info("clickhouse 连接已断开")
        except Exception as e:
            logger.warning(f"关闭 ClickHouse 客户端失败: {e}")
        finally:
            self.config = None

    def ping(self) -> bool:
        if not self._connected or self.client is None:
            return False
        try:
            self.client.command("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"clickhouse ping 失败: {e}")
            return False

    def cancel_query(self) -> bool:
        """
        取消正在执行的查询

        以独立客户端发送 ``KILL QUERY WHERE query_id = '...'``，无论成功与否都会关闭该客户端。
        """
        with self._lock:
            query_id = self._query_id
        if query_id is None or not self._connected or self.config is None:
            return False

        helper: Optional[Client] = None
        try:
            helper = self._create_client(self.config, self._tls)
            helper.command(f"KILL QUERY WHERE query_id = {literal(query_id)} ASYNC")
            logger.info(f"已发送取消请求: query_id={query_id}")
            return True
        except Exception as e:
            logger.warning(f"取消查询失败: {e}")
            return False
        finally:
            if helper is not None:
                try:
                    helper.close()
                except Exception as e:
                    logger.warning(f"关闭取消查询客户端失败: {e}")

    def _server_details(self) -> Tuple[Optional[str], Dict[str, str]]:
        row = self._rows(
            "SELECT version() AS version, timezone() AS timezone, uptime() AS uptime, "
            "(SELECT count() FROM system.databases) AS databases"
        )[0]
        return str(row["version"]), {
            "Timezone": row["timezone"],
            "Uptime": f"{row['uptime']}s",
            "Databases": row["databases"],
        }

    # ==================== 语句执行 ====================

    def q(self, name: str) -> str:
        return quote_identifier(name, self.QUOTE)

    def _qualified(self, table: str, database: Optional[str] = None) -> str:
        return f"{self.q(database or self.current_database)}.{self.q(table)}"

    def _require_client(self) -> Client:
        if self.client is None:
            raise ConnectionError(NOT_CONNECTED_MESSAGE, "NOT_CONNECTED", self.db_type.value)
        return self.client

    def _rows(self, sql: str) -> List[Dict[str, Any]]:
        """执行查询并以 列名→值 的字典列表返回"""
        logger.debug(f"执行SQL: {sql}")
        result = self._require_client().query(sql)
        names = list(result.column_names)
        return [dict(zip(names, row)) for row in result.result_rows]

    def _run(self, sql: str, affected_rows: Optional[int] = None) -> SchemaOperationResult:
        """以 command 执行单条变更语句并构建结果"""
        logger.debug(f"执行SQL: {sql}")
        try:
            self._require_client().command(sql)
            return SchemaOperationResult(success=True, sql=sql, affected_rows=affected_rows)
        except Exception as e:
            message = error_message(e)
            logger.error(f"语句执行失败: {message}")
            return failed(message, sql)

    def _run_all(self, statements: List[str]) -> SchemaOperationResult:
        """依次执行多条语句，遇到第一条错误即停止"""
        sql = ";\n".join(statements)
        for statement in statements:
            result = self._run(statement)
            if not result.success:
                return failed(result.error, sql)
        return SchemaOperationResult(success=True, sql=sql)

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """
        执行单条语句

        SELECT/SHOW/DESCRIBE/DESC/EXPLAIN/EXISTS/WITH 开头的语句返回行，
        列类型取自结果集声明的类型；其余语句以 command 执行，affected_rows 为 0。

        Args:
            sql: 语句，``?`` 占位符的值以字面量内联
            params: 位置参数
        """
        if not self._connected or self.client is None:
            return QueryResult.failure(NOT_CONNECTED_MESSAGE)

        statement = inline_params(sql, params)
        query_id = str(uuid.uuid4())
        settings = {"query_id": query_id}
        start = time.perf_counter()
        with self._lock:
            self._query_id = query_id
        try:
            logger.debug(f"执行SQL: {statement}")
            if not _QUERY_PATTERN.match(statement):
                self.client.command(statement, settings=settings)
                return QueryResult(affected_rows=0, execution_time=elapsed_ms(start))

            result = self.client.query(statement, settings=settings)
            names = list(result.column_names)
            types = [column_type.name for column_type in result.column_types]
            columns = [
                ColumnInfo(name=name, type=type_name, nullable=type_name.startswith("Nullable"))
                for name, type_name in zip(names, types)
            ]
            rows = [
                {name: plain_value(value) for name, value in zip(names, row)}
                for row in result.result_rows
            ]
            return QueryResult(
                columns=columns,
                rows=rows,
                row_count=len(rows),
                execution_time=elapsed_ms(start),
            )
        except Exception as e:
            message = error_message(e)
            logger.error(f"clickhouse 查询执行失败: {message}")
            return QueryResult.failure(message, elapsed_ms(start))
        finally:
            with self._lock:
                self._query_id = None

    # ==================== 元数据 ====================

    def get_databases(self) -> List[DatabaseInfo]:
        self.ensure_connected("get_databases")
        return [DatabaseInfo(name=row["name"]) for row in self._rows("SHOW DATABASES")]

    def get_tables(self, database: Optional[str] = None) -> List[TableInfo]:
        self.ensure_connected("get_tables")
        schema = database or self.current_database
        rows = self._rows(
            "SELECT name, engine, total_rows, total_bytes, comment FROM system.tables "
            f"WHERE database = {literal(schema)} ORDER BY name"
        )
        return [
            TableInfo(
                name=row["name"],
                type=TableObjectType.VIEW if row["engine"] in _VIEW_ENGINES else TableObjectType.TABLE,
                schema=schema,
                row_count=row["total_rows"],
                size=row["total_bytes"],
                comment=row["comment"] or None,
            )
            for row in rows
        ]

    def get_columns(self, table: str, database: Optional[str] = None) -> List[Column]:
        self.ensure_connected("get_columns")
        rows = self._rows(
            "SELECT name, type, default_expression, comment, is_in_primary_key "
            "FROM system.columns "
            f"WHERE database = {literal(database or self.current_database)} "
            f"AND table = {literal(table)} ORDER BY position"
        )
        return [
            Column(
                name=row["name"],
                type=row["type"],
                nullable=row["type"].startswith("Nullable"),
                default_value=row["default_expression"] or None,
                primary_key=bool(row["is_in_primary_key"]),
                comment=row["comment"] or None,
            )
            for row in rows
        ]

    def get_primary_key_columns(self, table: str, database: Optional[str] = None) -> List[str]:
        return [col.name for col in self.get_columns(table, database) if col.primary_key]

    def get_indexes(self, table: str, database: Optional[str] = None) -> List[Index]:
        """
        主键、与主键不同的排序键以及数据跳数索引

        Returns:
            List[Index]: PRIMARY（type 为 PRIMARY KEY）、ORDER BY（type 为 SORTING KEY）
            以及 system.data_skipping_indices 中的索引
        """
        self.ensure_connected("get_indexes")
        schema = database or self.current_database
        indexes: List[Index] = []
        keys = self._rows(
            "SELECT primary_key, sorting_key FROM system.tables "
            f"WHERE database = {literal(schema)} AND name = {literal(table)}"
        )
        if keys:
            primary_key = keys[0]["primary_key"]
            sorting_key = keys[0]["sorting_key"]
            if primary_key:
                indexes.append(
                    Index(
                        name="PRIMARY",
                        columns=_split_key(primary_key),
                        unique=True,
                        primary=True,
                        type="PRIMARY KEY",
                    )
                )
            if sorting_key and sorting_key != primary_key:
                indexes.append(
                    Index(name="ORDER BY", columns=_split_key(sorting_key), type="SORTING KEY")
                )

        skipping = self._rows(
            "SELECT name, type, expr FROM system.data_skipping_indices "
            f"WHERE database = {literal(schema)} AND table = {literal(table)}"
        )
        indexes.extend(
            Index(name=row["name"], columns=_split_key(row["expr"]), type=row["type"])
            for row in skipping
        )
        return indexes

    def get_foreign_keys(self, table: str, database: Optional[str] = None) -> List[ForeignKey]:
        return []

    def get_table_ddl(self, table: str, database: Optional[str] = None) -> str:
        self.ensure_connected("get_table_ddl")
        rows = self._rows(f"SHOW CREATE TABLE {self._qualified(table, database)}")
        return str(rows[0]["statement"]) if rows else ""

    def get_data_types(self) -> List[DataTypeInfo]:
        return list(self.DATA_TYPES)

    def get_table_data(
        self, table: str, options: Optional[DataOptions] = None, database: Optional[str] = None
    ) -> DataResult:
        """
        分页浏览表数据，未指定 limit 时每页 100 行

        Raises:
            NotConnectedError: 尚未连接
            ValidationError: 分页参数非法
        """
        self.ensure_connected("get_table_data")
        options = options or DataOptions()
        qualified = self._qualified(table, database)

        where, _ = build_where_clause(options.filters, self.QUOTE, inline=literal)
        order = build_order_clause(options, self.QUOTE)
        limit = build_limit_clause(options, default_limit=DEFAULT_DATA_LIMIT)

        total = self._rows(join_clauses(f"SELECT count() AS total FROM {qualified}", where))
        columns = [col.to_column_info() for col in self.get_columns(table, database)]
        rows = [
            {key: plain_value(value) for key, value in row.items()}
            for row in self._rows(join_clauses(f"SELECT * FROM {qualified}", where, order, limit))
        ]
        return DataResult(
            columns=columns,
            rows=rows,
            total_count=int(total[0]["total"]) if total else 0,
            offset=options.offset or 0,
            limit=DEFAULT_DATA_LIMIT if options.limit is None else options.limit,
        )

    # ==================== 列 ====================

    def _default_literal(self, value: Any) -> str:
        if isinstance(value, str) and _EXPRESSION_DEFAULT.match(value):
            return value
        return literal(value)

    def _column_definition(self, column: ColumnDefinition) -> str:
        """`name` Type，可空列包裹为 Nullable(Type)（主键列除外）"""
        column_type = type_with_size(column)
        if column.nullable and not column.primary_key and not column_type.startswith("Nullable"):
            column_type = f"Nullable({column_type})"
        definition = f"{self.q(column.name)} {column_type}"
        if column.default_value is not None:
            definition += f" DEFAULT {self._default_literal(column.default_value)}"
        if column.comment:
            definition += f" COMMENT {literal(column.comment)}"
        return definition

    @schema_operation
    def add_column(self, request: AddColumnRequest) -> SchemaOperationResult:
        sql = (
            f"ALTER TABLE {self._qualified(request.table)} "
            f"ADD COLUMN {self._column_definition(request.column)}"
        )
        if request.column.after_column:
            sql += f" AFTER {self.q(request.column.after_column)}"
        return self._run(sql)

    @schema_operation
    def modify_column(self, request: ModifyColumnRequest) -> SchemaOperationResult:
        """列名变化时先 RENAME COLUMN，再 MODIFY COLUMN"""
        table = self._qualified(request.table)
        new = request.new_definition
        statements: List[str] = []
        if new.name != request.old_name:
            statements.append(
                f"ALTER TABLE {table} RENAME COLUMN {self.q(request.old_name)} TO {self.q(new.name)}"
            )
        statements.append(f"ALTER TABLE {table} MODIFY COLUMN {self._column_definition(new)}")
        return self._run_all(statements)

    @schema_operation
    def drop_column(self, request: DropColumnRequest) -> SchemaOperationResult:
        return self._run(
            f"ALTER TABLE {self._qualified(request.table)} DROP COLUMN {self.q(request.column_name)}"
        )

    @schema_operation
    def rename_column(self, request: RenameColumnRequest) -> SchemaOperationResult:
        return self._run(
            f"ALTER TABLE {self._qualified(request.table)} "
            f"RENAME COLUMN {self.q(request.old_name)} TO {self.q(request.new_name)}"
        )

    # ==================== 索引与外键 ====================

    def _index_clause(self, index: IndexDefinition) -> str:
        columns = ", ".join(self.q(c) for c in index.columns)
        return (
            f"INDEX {self.q(index.name)} ({columns}) TYPE {index.type or 'minmax'} "
            f"GRANULARITY {SKIPPING_INDEX_GRANULARITY}"
        )

    @schema_operation
    def create_index(self, request: CreateIndexRequest) -> SchemaOperationResult:
        """添加数据跳数索引，未指定类型时使用 minmax"""
        table = self._qualified(request.table, request.schema)
        return self._run(f"ALTER TABLE {table} ADD {self._index_clause(request.index)}")

    @schema_operation
    def drop_index(self, request: DropIndexRequest) -> SchemaOperationResult:
        return self._run(
            f"ALTER TABLE {self._qualified(request.table)} DROP INDEX {self.q(request.index_name)}"
        )

    @schema_operation
    def add_foreign_key(self, request: AddForeignKeyRequest) -> SchemaOperationResult:
        return failed(FOREIGN_KEYS_UNSUPPORTED)

    @schema_operation
    def drop_foreign_key(self, request: DropForeignKeyRequest) -> SchemaOperationResult:
        return failed(FOREIGN_KEYS_UNSUPPORTED)

    # ==================== 表 ====================

    def _create_table_sql(self, request: CreateTableRequest) -> str:
        table = request.table
        primary_key = table.primary_key or [col.name for col in table.columns if col.primary_key]
        definitions = [self._column_definition(col) for col in table.columns]
        definitions.extend(self._index_clause(index) for index in table.indexes)

        sql = (
            f"CREATE TABLE {self._qualified(table.name, request.schema)} (\n  "
            + ",\n  ".join(definitions)
            + "\n) ENGINE = MergeTree()"
        )
        if primary_key:
            key = ", ".join(self.q(c) for c in primary_key)
            sql += f"\nORDER BY ({key})\nPRIMARY KEY ({key})"
        else:
            sql += "\nORDER BY tuple()"
        if table.comment:
            sql += f"\nCOMMENT {literal(table.comment)}"
        return sql

    @schema_operation
    def create_table(self, request: CreateTableRequest) -> SchemaOperationResult:
        """
        以 MergeTree 引擎建表

        主键列同时作为 ORDER BY 与 PRIMARY KEY；没有主键时按 tuple() 排序。
        附带的索引以数据跳数索引的形式写在建表语句中。
        """
        return self._run(self._create_table_sql(request))

    @schema_operation
    def drop_table(self, request: DropTableRequest) -> SchemaOperationResult:
        return self._run(f"DROP TABLE {self._qualified(request.table)}")

    @schema_operation
    def rename_table(self, request: RenameTableRequest) -> SchemaOperationResult:
        return self._run(
            f"RENAME TABLE {self._qualified(request.old_name)} TO {self._qualified(request.new_name)}"
        )

    # ==================== 行 ====================

    def _key_condition(self, keys: Dict[str, Any]) -> str:
        return " AND ".join(
            f"{self.q(col)} IS NULL" if value is None else f"{self.q(col)} = {literal(value)}"
            for col, value in keys.items()
        )

    @schema_operation
    def insert_row(self, request: InsertRowRequest) -> SchemaOperationResult:
        columns = ", ".join(self.q(col) for col in request.values)
        values = ", ".join(literal(value) for value in request.values.values())
        sql = f"INSERT INTO {self._qualified(request.table)} ({columns}) VALUES ({values})"
        return self._run(sql, affected_rows=1)

    @schema_operation
    def delete_row(self, request: DeleteRowRequest) -> SchemaOperationResult:
        """以 ALTER TABLE ... DELETE 变更（mutation）删除行"""
        if not request.primary_key_values:
            return failed("Primary key values are required to delete a row")
        return self._run(
            f"ALTER TABLE {self._qualified(request.table)} "
            f"DELETE WHERE {self._key_condition(request.primary_key_values)}"
        )

    @schema_operation
    def update_row(self, request: UpdateRowRequest) -> SchemaOperationResult:
        """以 ALTER TABLE ... UPDATE 变更（mutation）更新行，主键列不可更新"""
        if not request.primary_key_values:
            return failed("Primary key values are required to update a row")
        if not request.values:
            return failed("No values to update")
        assignments = ", ".join(
            f"{self.q(col)} = {literal(value)}" for col, value in request.values.items()
        )
        return self._run(
            f"ALTER TABLE {self._qualified(request.table)} UPDATE {assignments} "
            f"WHERE {self._key_condition(request.primary_key_values)}"
        )

    # ==================== 视图 ====================

    @schema_operation
    def create_view(self, request: CreateViewRequest) -> SchemaOperationResult:
        view = request.view
        replace = "OR REPLACE " if view.replace_if_exists else ""
        return self._run(
            f"CREATE {replace}VIEW {self._qualified(view.name)} AS {view.select_statement}"
        )

    @schema_operation
    def drop_view(self, request: DropViewRequest) -> SchemaOperationResult:
        return self._run(f"DROP VIEW IF EXISTS {self._qualified(request.view_name)}")

    @schema_operation
    def rename_view(self, request: RenameViewRequest) -> SchemaOperationResult:
        return self._run(
            f"RENAME TABLE {self._qualified(request.old_name)} TO {self._qualified(request.new_name)}"
        )

    def get_view_ddl(self, view: str, database: Optional[str] = None) -> str:
        return self.get_table_ddl(view, database)

    # ==================== 例程（SQL 用户自定义函数） ====================

    def get_routines(self, database: Optional[str] = None) -> List[Routine]:
        self.ensure_connected("get_routines")
        rows = self._rows(
            "SELECT name, create_query FROM system.functions "
            "WHERE origin = 'SQLUserDefined' ORDER BY name"
        )
        return [
            Routine(
                name=row["name"],
                type=RoutineType.FUNCTION,
                language="SQL",
                definition=row["create_query"] or None,
            )
            for row in rows
        ]

    def get_routine_definition(
        self, name: str, routine_type: str, database: Optional[str] = None
    ) -> str:
        self.ensure_connected("get_routine_definition")
        try:
            rows = self._rows(
                "SELECT create_query FROM system.functions "
                f"WHERE name = {literal(name)} AND origin = 'SQLUserDefined'"
            )
        except Exception as e:
            return f"-- Error getting function definition: {error_message(e)}"
        if not rows or not rows[0]["create_query"]:
            return f"-- Function '{name}' not found"
        return str(rows[0]["create_query"])

    # ==================== 用户 ====================

    def get_users(self) -> List[DatabaseUser]:
        """读取 system.users，权限不足时退回 currentUser()"""
        self.ensure_connected("get_users")
        try:
            rows = self._rows("SELECT name FROM system.users ORDER BY name")
        except Exception as e:
            logger.warning(f"读取 system.users 失败，改用 currentUser(): {e}")
            rows = self._rows("SELECT currentUser() AS name")
        return [DatabaseUser(name=row["name"], login=True) for row in rows]

    def get_user_privileges(self, username: str, host: Optional[str] = None) -> List[UserPrivilege]:
        """解析 SHOW GRANTS 的结果，失败时返回空列表"""
        self.ensure_connected("get_user_privileges")
        try:
            result = self._require_client().query(f"SHOW GRANTS FOR {self.q(username)}")
            grants = [str(row[0]) for row in result.result_rows]
        except Exception as e:
            logger.warning(f"读取用户 {username} 的授权失败: {e}")
            return []

        privileges: List[UserPrivilege] = []
        for grant in grants:
            match = _GRANT_PATTERN.search(grant)
            if match is None:
                continue
            grantable = "WITH GRANT OPTION" in grant.upper()
            for privilege in match.group(1).split(","):
                privileges.append(
                    UserPrivilege(
                        privilege=privilege.strip(),
                        grantee=username,
                        object_name=match.group(2).replace("`", ""),
                        grantable=grantable,
                    )
                )
        return privileges

    @schema_operation
    def create_user(self, request: CreateUserRequest) -> SchemaOperationResult:
        user = request.user
        sql = f"CREATE USER {self.q(user.name)}"
        if user.password:
            display = f"{sql} IDENTIFIED BY '****'"
            sql += f" IDENTIFIED BY {literal(user.password)}"
        else:
            sql += " NOT IDENTIFIED"
            display = sql
        result = self._run(sql)
        if not result.success:
            return failed(result.error, display)
        if user.superuser:
            grant = f"GRANT ALL ON *.* TO {self.q(user.name)} WITH GRANT OPTION"
            display = f"{display};\n{grant}"
            grant_result = self._run(grant)
            if not grant_result.success:
                return failed(grant_result.error, display)
        return SchemaOperationResult(success=True, sql=display)

    @schema_operation
    def drop_user(self, request: DropUserRequest) -> SchemaOperationResult:
        return self._run(f"DROP USER IF EXISTS {self.q(request.name)}")

    # ==================== 触发器（不支持） ====================

    def get_triggers(self, database: Optional[str] = None, table: Optional[str] = None) -> List[Trigger]:
        return []

    def get_trigger_definition(
        self, name: str, table: Optional[str] = None, database: Optional[str] = None
    ) -> str:
        return f"-- {TRIGGERS_UNSUPPORTED}"

    @schema_operation
    def create_trigger(self, request: CreateTriggerRequest) -> SchemaOperationResult:
        return failed(TRIGGERS_UNSUPPORTED)

    @schema_operation
    def drop_trigger(self, request: DropTriggerRequest) -> SchemaOperationResult:
        return failed(TRIGGERS_UNSUPPORTED)

    # ==================== 分区与引擎 ====================

    def get_partitions(self, table: str, database: Optional[str] = None) -> List[PartitionInfo]:
        """列出表的活动数据分片（system.parts 中 active = 1 的记录）"""
        self.ensure_connected("get_partitions")
        rows = self._rows(
            "SELECT partition, name, rows, bytes_on_disk, engine FROM system.parts "
            f"WHERE database = {literal(database or self.current_database)} "
            f"AND table = {literal(table)} AND active = 1 ORDER BY partition, name"
        )
        return [
            PartitionInfo(
                name=row["name"],
                partition=row["partition"],
                rows=row["rows"],
                data_length=row["bytes_on_disk"],
                engine=row["engine"],
            )
            for row in rows
        ]

    def get_engine_info(self, table: str, database: Optional[str] = None) -> Optional[TableEngineInfo]:
        """
        读取表引擎及分区键、排序键、主键、采样键

        Returns:
            Optional[TableEngineInfo]: 表不存在时返回 None
        """
        self.ensure_connected("get_engine_info")
        rows = self._rows(
            "SELECT engine, engine_full, partition_key, sorting_key, primary_key, sampling_key "
            f"FROM system.tables WHERE database = {literal(database or self.current_database)} "
            f"AND name = {literal(table)}"
        )
        if not rows:
            return None
        row = rows[0]
        return TableEngineInfo(
            engine=row["engine"],
            engine_full=row["engine_full"] or None,
            partition_key=row["partition_key"] or None,
            sorting_key=row["sorting_key"] or None,
            primary_key=row["primary_key"] or None,
            sampling_key=row["sampling_key"] or None,
        )

    def __repr__(self) -> str:
        status = "已连接" if self._connected else "未连接"
        return f"<ClickHouseDriver database={self.current_database}, status={status}>"
