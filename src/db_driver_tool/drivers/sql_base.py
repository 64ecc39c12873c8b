"""
基于 SQLAlchemy 的关系型驱动基类

SQLite、MySQL/MariaDB、PostgreSQL 驱动共享的实现：
- 通过连接 URL 模板创建引擎（NullPool，每个驱动实例只持有一个原生连接）
- AUTOCOMMIT 隔离级别，显式事务由语句自身控制
- 原始 SQL 通过 exec_driver_sql 执行，元数据查询通过 text() 绑定参数执行
- 数据浏览、行级增删改、建表、视图等与方言无关的通用操作
"""

import datetime
import decimal
import re
import threading
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.pool import NullPool

from ..core.exceptions import (
    NOT_CONNECTED_MESSAGE,
    ConnectionError,
    error_message,
)
from ..core.filters import (
    build_limit_clause,
    build_order_clause,
    build_where_clause,
    join_clauses,
    quote_identifier,
)
from ..core.requests import (
    ColumnDefinition,
    CreateIndexRequest,
    CreateTableRequest,
    DataTypeInfo,
    DeleteRowRequest,
    DropIndexRequest,
    DropTableRequest,
    DropViewRequest,
    ForeignKeyDefinition,
    InsertRowRequest,
    RenameTableRequest,
    SchemaOperationResult,
    UpdateRowRequest,
)
from ..core.tls import TLSOptions, connect_with_tls_fallback
from ..core.types import (
    Column,
    ColumnInfo,
    DEFAULT_PORTS,
    ConnectionConfig,
    DataOptions,
    DataResult,
    QueryResult,
)
from ..utils.logging_utils import get_logger, mask_secrets
from .base import BaseDriver, elapsed_ms, failed, schema_operation

logger = get_logger(__name__)

# 字符串、引号标识符与注释之外的 ? 占位符
_QMARK_PATTERN = re.compile(
    r"'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r"|`(?:[^`]|``)*`"
    r"|--[^\n]*"
    r"|/\*.*?\*/"
    r"|\?",
    re.DOTALL,
)


def native_message(error: BaseException) -> str:
    """
    提取原生驱动的错误文本

    SQLAlchemy 将 DB-API 异常包装为 DBAPIError，原始异常保存在 orig 属性中。
    """
    orig = getattr(error, "orig", None)
    return error_message(orig if orig is not None else error)


def plain_value(value: Any) -> Any:
    """
    将驱动返回的值转换为 JSON 安全的基础类型

    Example:
        >>> plain_value(datetime.date(2024, 1, 2))
        '2024-01-02'
        >>> plain_value(b"ab")
        '6162'
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (datetime.timedelta, uuid.UUID)):
        return str(value)
    if isinstance(value, dict):
        return {str(k): plain_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [plain_value(v) for v in value]
    return str(value)


def format_default(value: Any) -> str:
    """
    将默认值格式化为 SQL 字面量，字符串加单引号并转义内部单引号

    Example:
        >>> format_default("it's")
        "'it''s'"
        >>> format_default(0)
        '0'
    """
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


def type_with_size(column: Any) -> str:
    """拼接类型与长度或精度，例如 VARCHAR(255)、DECIMAL(10,2)"""
    if column.length:
        return f"{column.type}({column.length})"
    if column.precision and column.scale is not None:
        return f"{column.type}({column.precision},{column.scale})"
    if column.precision:
        return f"{column.type}({column.precision})"
    return column.type


class SQLDriver(BaseDriver):
    """
    SQLAlchemy 关系型驱动基类

    子类需提供 URL_TEMPLATE、QUOTE、DATA_TYPES，并实现 _column_definition
    与各项元数据查询。

    Attributes:
        QUOTE (str): 标识符引号字符
        PLACEHOLDER (str): 原始 SQL 的参数占位符
        URL_TEMPLATE (str): 连接 URL 模板
        DATA_TYPES (List[DataTypeInfo]): 可选数据类型目录
    """

    QUOTE = '"'
    PLACEHOLDER = "?"
    URL_TEMPLATE = ""
    DEFAULT_DATABASE = ""
    DATA_TYPES: List[DataTypeInfo] = []

    def __init__(self) -> None:
        super().__init__()
        self.engine: Optional[Engine] = None
        self._conn: Optional[Connection] = None
        self._tls: Optional[TLSOptions] = None
        self._query_running = False
        self._lock = threading.Lock()

    # ==================== 连接管理 ====================

    def _build_connection_url(self, config: ConnectionConfig, tls: Optional[TLSOptions]) -> str:
        """
        构建连接 URL

        用户名和密码进行 URL 编码，未提供端口时使用默认端口。
        """
        url = self.URL_TEMPLATE.format(
            username=quote_plus(config.username or ""),
            password=quote_plus(config.password or ""),
            host=config.host or "localhost",
            port=config.port or DEFAULT_PORTS[self.db_type],
            database=quote_plus(config.database or self.DEFAULT_DATABASE),
        )
        logger.debug(f"构建的连接URL: {mask_secrets(url)}")
        return url

    def _connect_args(self, config: ConnectionConfig, tls: Optional[TLSOptions]) -> Dict[str, Any]:
        """返回传给 DB-API connect() 的附加参数"""
        return {}

    def _after_connect(self) -> None:
        """连接建立后的初始化钩子（记录会话 ID、设置 PRAGMA 等）"""

    def connect(self, config: ConnectionConfig) -> None:
        """
        建立数据库连接

        按 SSL 模式建立连接，prefer 模式下 TLS 失败会以明文重试一次。

        Raises:
            ConnectionError: 连接失败，消息为原生驱动的错误文本
        """
        if self._connected:
            logger.warning("数据库连接已存在，无需重复连接")
            return

        def attempt(tls: Optional[TLSOptions]) -> None:
            self._tls = tls
            self.engine = create_engine(
                self._build_connection_url(config, tls),
                poolclass=NullPool,
                connect_args=self._connect_args(config, tls),
            )
            self._conn = self.engine.connect().execution_options(
                isolation_level="AUTOCOMMIT"
            )
            self._after_connect()

        try:
            self.config = config
            connect_with_tls_fallback(config, attempt, self._release)
        except Exception as e:
            self._release()
            self.config = None
            message = native_message(e)
            logger.error(f"{self.db_type.value} 连接建立失败: {message}")
            raise ConnectionError(
                message,
                "CONNECTION_FAILED",
                database_type=self.db_type.value,
                host=config.host,
                port=config.port,
                database=config.filepath or config.database,
            ) from e

        self._connected = True
        logger.info(
            f"{self.db_type.value} 连接成功: {config.host or config.filepath or config.database}"
        )

    def _release(self) -> None:
        """关闭连接并释放引擎，状态重置为未连接"""
        conn, engine = self._conn, self.engine
        self._conn = None
        self.engine = None
        self._connected = False
        if conn is not None:
            conn.close()
        if engine is not None:
            engine.dispose()

    def disconnect(self) -> None:
        """断开连接，未连接时为空操作"""
        if self._conn is None and self.engine is None:
            self._connected = False
            logger.debug("数据库连接已断开，无需重复操作")
            return
        try:
            self._release()
            logger.info(f"{self.db_type.value} 连接已断开")
        except Exception as e:
            logger.warning(f"断开连接时释放资源失败: {e}")
        finally:
            self.config = None

    def ping(self) -> bool:
        if not self._connected or self._conn is None:
            return False
        try:
            self._conn.exec_driver_sql("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"{self.db_type.value} ping 失败: {native_message(e)}")
            return False

    def _cancel_statement(self) -> Optional[str]:
        """取消当前会话正在执行的语句所用的 SQL，不支持取消时返回 None"""
        return None

    def cancel_query(self) -> bool:
        """
        取消正在执行的查询

        通过独立的短生命周期连接发送取消语句，无论成功与否都会关闭该连接。
        当前没有正在执行的查询或后端不支持取消时返回 False。
        """
        with self._lock:
            running = self._query_running
        statement = self._cancel_statement() if running and self._connected else None
        if statement is None or self.config is None:
            return False

        engine: Optional[Engine] = None
        try:
            engine = create_engine(
                self._build_connection_url(self.config, self._tls),
                poolclass=NullPool,
                connect_args=self._connect_args(self.config, self._tls),
            )
            with engine.connect() as conn:
                conn.execution_options(isolation_level="AUTOCOMMIT")
                conn.exec_driver_sql(statement)
            logger.info(f"已发送取消请求: {statement}")
            return True
        except Exception as e:
            logger.warning(f"取消查询失败: {native_message(e)}")
            return False
        finally:
            if engine is not None:
                engine.dispose()

    # ==================== 语句执行 ====================

    def q(self, name: str) -> str:
        return quote_identifier(name, self.QUOTE)

    def _qualified(self, table: str, database: Optional[str] = None) -> str:
        return self.q(table)

    def _prepare_sql(self, sql: str, params: Optional[Sequence[Any]]) -> str:
        """将调用方 SQL 中的 ? 占位符转换为驱动的占位符"""
        if not params or self.PLACEHOLDER == "?":
            return sql
        escaped = sql.replace("%", "%%")
        return _QMARK_PATTERN.sub(
            lambda m: self.PLACEHOLDER if m.group(0) == "?" else m.group(0), escaped
        )

    def _exec(self, sql: str, params: Optional[Sequence[Any]] = None) -> CursorResult:
        """执行原始 SQL，无参数时不向游标传递参数集合"""
        if self._conn is None:
            raise ConnectionError(NOT_CONNECTED_MESSAGE, "NOT_CONNECTED", self.db_type.value)
        logger.debug(f"执行SQL: {sql}")
        if params:
            return self._conn.exec_driver_sql(sql, tuple(params))
        return self._conn.exec_driver_sql(sql, execution_options={"no_parameters": True})

    def _fetch_all(self, sql: str, **params: Any) -> List[Dict[str, Any]]:
        """以 text() 绑定命名参数执行元数据查询"""
        if self._conn is None:
            raise ConnectionError(NOT_CONNECTED_MESSAGE, "NOT_CONNECTED", self.db_type.value)
        result = self._conn.execute(text(sql), params)
        return [dict(row._mapping) for row in result]

    def _fetch_one(self, sql: str, **params: Any) -> Optional[Dict[str, Any]]:
        rows = self._fetch_all(sql, **params)
        return rows[0] if rows else None

    def _run_statement(
        self, sql: str, params: Optional[Sequence[Any]] = None
    ) -> SchemaOperationResult:
        """执行单条变更语句并构建结果"""
        try:
            result = self._exec(sql, params)
            affected = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else None
            return SchemaOperationResult(success=True, sql=sql, affected_rows=affected)
        except Exception as e:
            message = native_message(e)
            logger.error(f"语句执行失败: {message}")
            return failed(message, sql)

    def _cursor_metadata(self, result: CursorResult) -> List[Any]:
        """在读取行之前取出游标描述（读取完毕后游标会被关闭）"""
        cursor = result.cursor
        return list(cursor.description or []) if cursor is not None else []

    def _result_columns(
        self, keys: List[str], metadata: List[Any], rows: List[Dict[str, Any]]
    ) -> List[ColumnInfo]:
        """由列名、游标描述与原始行构建结果列，子类按方言补充类型信息"""
        return [ColumnInfo(name=name, type="unknown") for name in keys]

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """
        执行单条 SQL

        返回行的语句给出列与行；其余语句给出 affected_rows。
        失败不抛出异常，错误信息写入结果的 error 字段。

        Args:
            sql: SQL 语句，参数占位符统一使用 ``?``
            params: 位置参数

        Example:
            >>> result = driver.execute("SELECT ? AS n", [1])
            >>> result.rows
            [{'n': 1}]
        """
        if not self._connected:
            return QueryResult.failure(NOT_CONNECTED_MESSAGE)

        start = time.perf_counter()
        with self._lock:
            self._query_running = True
        try:
            result = self._exec(self._prepare_sql(sql, params), params)
            if result.returns_rows:
                metadata = self._cursor_metadata(result)
                keys = list(result.keys())
                raw_rows = [dict(row._mapping) for row in result]
                columns = self._result_columns(keys, metadata, raw_rows)
                rows = [
                    {key: plain_value(value) for key, value in row.items()} for row in raw_rows
                ]
                return QueryResult(
                    columns=columns,
                    rows=rows,
                    row_count=len(rows),
                    execution_time=elapsed_ms(start),
                )
            affected = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else 0
            return QueryResult(affected_rows=affected, execution_time=elapsed_ms(start))
        except Exception as e:
            message = native_message(e)
            logger.error(f"{self.db_type.value} 查询执行失败: {message}")
            return QueryResult.failure(message, elapsed_ms(start))
        finally:
            with self._lock:
                self._query_running = False

    # ==================== 数据浏览 ====================

    def get_columns(self, table: str, database: Optional[str] = None) -> List[Column]:
        raise NotImplementedError

    def get_primary_key_columns(self, table: str, database: Optional[str] = None) -> List[str]:
        self.ensure_connected("get_primary_key_columns")
        return [col.name for col in self.get_columns(table, database) if col.primary_key]

    def get_data_types(self) -> List[DataTypeInfo]:
        return list(self.DATA_TYPES)

    def get_table_data(
        self, table: str, options: Optional[DataOptions] = None, database: Optional[str] = None
    ) -> DataResult:
        """
        分页浏览表数据

        Raises:
            NotConnectedError: 尚未连接
            ValidationError: 分页参数非法
        """
        self.ensure_connected("get_table_data")
        options = options or DataOptions()
        qualified = self._qualified(table, database)

        where, values = build_where_clause(options.filters, self.QUOTE, self.PLACEHOLDER)
        order = build_order_clause(options, self.QUOTE)
        limit = build_limit_clause(options)

        count_sql = join_clauses(f"SELECT COUNT(*) AS total FROM {qualified}", where)
        total = self._exec(count_sql, values).scalar() or 0

        columns = [col.to_column_info() for col in self.get_columns(table, database)]

        data_sql = join_clauses(f"SELECT * FROM {qualified}", where, order, limit)
        result = self._exec(data_sql, values)
        rows = [
            {key: plain_value(value) for key, value in row._mapping.items()} for row in result
        ]
        return DataResult(
            columns=columns,
            rows=rows,
            total_count=int(total),
            offset=options.offset or 0,
            limit=options.limit or len(rows),
        )

    # ==================== 行操作 ====================

    def _key_condition(self, keys: Dict[str, Any]) -> str:
        return " AND ".join(f"{self.q(col)} = {self.PLACEHOLDER}" for col in keys)

    @schema_operation
    def insert_row(self, request: InsertRowRequest) -> SchemaOperationResult:
        columns = ", ".join(self.q(col) for col in request.values)
        placeholders = ", ".join(self.PLACEHOLDER for _ in request.values)
        sql = f"INSERT INTO {self.q(request.table)} ({columns}) VALUES ({placeholders})"
        return self._run_statement(sql, list(request.values.values()))

    @schema_operation
    def delete_row(self, request: DeleteRowRequest) -> SchemaOperationResult:
        if not request.primary_key_values:
            return failed("Primary key values are required to delete a row")
        sql = (
            f"DELETE FROM {self.q(request.table)} "
            f"WHERE {self._key_condition(request.primary_key_values)}"
        )
        return self._run_statement(sql, list(request.primary_key_values.values()))

    @schema_operation
    def update_row(self, request: UpdateRowRequest) -> SchemaOperationResult:
        if not request.primary_key_values:
            return failed("Primary key values are required to update a row")
        if not request.values:
            return failed("No values to update")
        assignments = ", ".join(f"{self.q(col)} = {self.PLACEHOLDER}" for col in request.values)
        sql = (
            f"UPDATE {self.q(request.table)} SET {assignments} "
            f"WHERE {self._key_condition(request.primary_key_values)}"
        )
        params = list(request.values.values()) + list(request.primary_key_values.values())
        return self._run_statement(sql, params)

    # ==================== 表结构 ====================

    def _column_definition(self, column: ColumnDefinition) -> str:
        raise NotImplementedError

    def _foreign_key_clause(self, fk: ForeignKeyDefinition) -> str:
        """CONSTRAINT ... FOREIGN KEY ... REFERENCES ...，未设置的引用动作省略"""
        columns = ", ".join(self.q(c) for c in fk.columns)
        referenced = ", ".join(self.q(c) for c in fk.referenced_columns)
        target = self.q(fk.referenced_table)
        if fk.referenced_schema:
            target = f"{self.q(fk.referenced_schema)}.{target}"
        clause = (
            f"CONSTRAINT {self.q(fk.name)} FOREIGN KEY ({columns}) "
            f"REFERENCES {target} ({referenced})"
        )
        if fk.on_update:
            clause += f" ON UPDATE {fk.on_update}"
        if fk.on_delete:
            clause += f" ON DELETE {fk.on_delete}"
        return clause

    def _create_table_sql(self, request: CreateTableRequest) -> str:
        table = request.table
        definitions = [self._column_definition(col) for col in table.columns]
        if table.primary_key and not any(col.primary_key for col in table.columns):
            columns = ", ".join(self.q(c) for c in table.primary_key)
            definitions.append(f"PRIMARY KEY ({columns})")
        definitions.extend(self._foreign_key_clause(fk) for fk in table.foreign_keys)
        name = self._qualified(table.name, request.schema)
        return f"CREATE TABLE {name} (\n  " + ",\n  ".join(definitions) + "\n)"

    @schema_operation
    def create_table(self, request: CreateTableRequest) -> SchemaOperationResult:
        """
        建表并创建附带的索引

        索引创建失败不回滚已创建的表，错误记录在日志中。
        """
        sql = self._create_table_sql(request)
        result = self._run_statement(sql)
        if not result.success:
            return result
        for index in request.table.indexes:
            index_result = self.create_index(
                CreateIndexRequest(table=request.table.name, index=index, schema=request.schema)
            )
            if not index_result.success:
                logger.warning(f"建表后创建索引 {index.name} 失败: {index_result.error}")
        return result

    @schema_operation
    def drop_table(self, request: DropTableRequest) -> SchemaOperationResult:
        return self._run_statement(f"DROP TABLE {self.q(request.table)}")

    @schema_operation
    def rename_table(self, request: RenameTableRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self.q(request.old_name)} RENAME TO {self.q(request.new_name)}"
        )

    def _create_index_sql(self, request: CreateIndexRequest) -> str:
        index = request.index
        unique = "UNIQUE " if index.unique else ""
        columns = ", ".join(self.q(c) for c in index.columns)
        return (
            f"CREATE {unique}INDEX {self.q(index.name)} "
            f"ON {self._qualified(request.table, request.schema)} ({columns})"
        )

    @schema_operation
    def create_index(self, request: CreateIndexRequest) -> SchemaOperationResult:
        return self._run_statement(self._create_index_sql(request))

    @schema_operation
    def drop_index(self, request: DropIndexRequest) -> SchemaOperationResult:
        return self._run_statement(f"DROP INDEX {self.q(request.index_name)}")

    @schema_operation
    def drop_view(self, request: DropViewRequest) -> SchemaOperationResult:
        cascade = " CASCADE" if request.cascade else ""
        return self._run_statement(f"DROP VIEW IF EXISTS {self.q(request.view_name)}{cascade}")

    def _server_details(self) -> Tuple[Optional[str], Dict[str, str]]:
        return None, {}

    def __repr__(self) -> str:
        status = "已连接" if self._connected else "未连接"
        target = ""
        if self.config is not None:
            target = f", target={self.config.host or self.config.filepath or self.config.database}"
        return f"<{self.__class__.__name__} type={self.db_type.value}{target}, status={status}>"
