"""
PostgreSQL 驱动

基于 SQLAlchemy 的 postgresql+psycopg 方言。一个连接绑定一个数据库，
对象按 current_schema（默认 public）定位；除通用操作外还提供模式、序列、
物化视图、扩展和枚举类型管理。
"""

from typing import Any, Dict, List, Optional, Tuple

from ..core.requests import (
    POSTGRESQL_DATA_TYPES,
    AddColumnRequest,
    AddForeignKeyRequest,
    AlterSequenceRequest,
    ColumnDefinition,
    CreateExtensionRequest,
    CreateIndexRequest,
    CreateSequenceRequest,
    CreateTableRequest,
    CreateTriggerRequest,
    CreateUserRequest,
    CreateViewRequest,
    DropColumnRequest,
    DropExtensionRequest,
    DropForeignKeyRequest,
    DropIndexRequest,
    DropSequenceRequest,
    DropTableRequest,
    DropTriggerRequest,
    DropUserRequest,
    ModifyColumnRequest,
    RefreshMaterializedViewRequest,
    RenameColumnRequest,
    RenameTableRequest,
    RenameViewRequest,
    SchemaOperationResult,
    TableDefinition,
)
from ..core.tls import TLSOptions, pem_path
from ..core.types import (
    Column,
    ColumnInfo,
    ConnectionConfig,
    DatabaseInfo,
    DatabaseSchema,
    DatabaseType,
    DatabaseUser,
    DataOptions,
    DataResult,
    EnumType,
    Extension,
    ForeignKey,
    Index,
    MaterializedView,
    Routine,
    RoutineType,
    Sequence,
    SSLMode,
    TableInfo,
    TableObjectType,
    Trigger,
    UserPrivilege,
)
from ..utils.logging_utils import get_logger
from .base import failed, schema_operation
from .sql_base import SQLDriver, format_default, native_message, plain_value, type_with_size

logger = get_logger(__name__)

DEFAULT_SCHEMA = "public"

# 类型 OID → 类型名称
PG_TYPE_NAMES: Dict[int, str] = {
    16: "BOOLEAN",
    17: "BYTEA",
    18: "CHAR",
    19: "NAME",
    20: "BIGINT",
    21: "SMALLINT",
    23: "INTEGER",
    25: "TEXT",
    26: "OID",
    114: "JSON",
    142: "XML",
    600: "POINT",
    700: "REAL",
    701: "DOUBLE PRECISION",
    790: "MONEY",
    829: "MACADDR",
    869: "INET",
    1042: "CHAR",
    1043: "VARCHAR",
    1082: "DATE",
    1083: "TIME",
    1114: "TIMESTAMP",
    1184: "TIMESTAMPTZ",
    1186: "INTERVAL",
    1700: "NUMERIC",
    2950: "UUID",
    3802: "JSONB",
}

TRIGGER_FUNCTION_REQUIRED = (
    "PostgreSQL triggers require a function name. Create a trigger function first."
)
TRIGGER_TABLE_REQUIRED = "PostgreSQL requires the table name to drop a trigger"

_SYSTEM_SCHEMAS = "('pg_catalog', 'information_schema')"


def _int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _text(value: Any) -> Optional[str]:
    return plain_value(value) if value is not None else None


def _is_none(value: Any) -> bool:
    return isinstance(value, str) and value.lower() == "none"


class PostgreSQLDriver(SQLDriver):
    """
    PostgreSQL 驱动

    Attributes:
        current_schema (str): 未指定模式时使用的模式
        backend_pid (int | None): 当前会话的后端进程 ID，用于取消查询
    """

    db_type = DatabaseType.POSTGRESQL
    QUOTE = '"'
    PLACEHOLDER = "%s"
    URL_TEMPLATE = "postgresql+psycopg://{username}:{password}@{host}:{port}/{database}"
    DEFAULT_DATABASE = "postgres"
    DATA_TYPES = POSTGRESQL_DATA_TYPES

    def __init__(self) -> None:
        super().__init__()
        self.current_schema = DEFAULT_SCHEMA
        self.backend_pid: Optional[int] = None

    # ==================== 连接 ====================

    def _connect_args(self, config: ConnectionConfig, tls: Optional[TLSOptions]) -> Dict[str, Any]:
        """
        构建 libpq 连接参数

        prefer 模式首轮以 require 尝试，回退时 tls 为 None 即 sslmode=disable。
        """
        if tls is None:
            return {"sslmode": "disable"}

        if tls.mode in (SSLMode.VERIFY_CA, SSLMode.VERIFY_FULL):
            sslmode = tls.mode.value
        elif tls.verify and tls.ca:
            sslmode = "verify-full" if tls.check_hostname else "verify-ca"
        else:
            sslmode = "require"

        args: Dict[str, Any] = {"sslmode": sslmode}
        if tls.ca:
            args["sslrootcert"] = pem_path(tls.ca)
        if tls.cert:
            args["sslcert"] = pem_path(tls.cert)
        if tls.key:
            args["sslkey"] = pem_path(tls.key)
        if tls.min_version:
            args["ssl_min_protocol_version"] = tls.min_version
        return args

    def _after_connect(self) -> None:
        self.backend_pid = _int(self._exec("SELECT pg_backend_pid()").scalar())
        self.current_schema = DEFAULT_SCHEMA

    def _release(self) -> None:
        self.backend_pid = None
        super()._release()

    def _cancel_statement(self) -> Optional[str]:
        if not self.backend_pid:
            return None
        return f"SELECT pg_cancel_backend({int(self.backend_pid)})"

    def _server_details(self) -> Tuple[Optional[str], Dict[str, str]]:
        version = self._exec("SELECT version()").scalar()
        info: Dict[str, str] = {}
        try:
            info["Encoding"] = str(self._exec("SHOW server_encoding").scalar() or "")
            info["Timezone"] = str(self._exec("SHOW timezone").scalar() or "")
            info["Max Connections"] = str(self._exec("SHOW max_connections").scalar() or "")
        except Exception as e:
            logger.warning(f"读取 PostgreSQL 服务端参数失败: {native_message(e)}")
        return str(version or "Unknown"), info

    def _result_columns(
        self, keys: List[str], metadata: List[Any], rows: List[Dict[str, Any]]
    ) -> List[ColumnInfo]:
        columns: List[ColumnInfo] = []
        for i, name in enumerate(keys):
            type_code = metadata[i][1] if i < len(metadata) else None
            columns.append(ColumnInfo(name=name, type=PG_TYPE_NAMES.get(type_code, "UNKNOWN")))
        return columns

    # ==================== 模式 ====================

    def _schema(self, schema: Optional[str] = None) -> str:
        return schema or self.current_schema

    def _qualified(self, table: str, schema: Optional[str] = None) -> str:
        """返回 "schema"."table"，未指定模式时使用 current_schema"""
        return f"{self.q(self._schema(schema))}.{self.q(table)}"

    def get_schemas(self) -> List[DatabaseSchema]:
        """列出模式，public 排在首位，系统模式标记 is_system"""
        self.ensure_connected("get_schemas")
        rows = self._fetch_all(
            """
            SELECT schema_name AS name, schema_owner AS owner,
                   (schema_name IN ('pg_catalog', 'information_schema', 'pg_toast')
                    OR schema_name LIKE 'pg!_temp%' ESCAPE '!'
                    OR schema_name LIKE 'pg!_toast!_temp%' ESCAPE '!') AS is_system
            FROM information_schema.schemata
            ORDER BY CASE WHEN schema_name = 'public' THEN 0 ELSE 1 END, schema_name
            """
        )
        return [
            DatabaseSchema(name=row["name"], owner=row["owner"], is_system=bool(row["is_system"]))
            for row in rows
        ]

    @schema_operation
    def create_schema(self, name: str) -> SchemaOperationResult:
        return self._run_statement(f"CREATE SCHEMA {self.q(name)}")

    def set_current_schema(self, schema: str) -> None:
        """
        切换当前模式

        已连接时同步设置 search_path，保证未限定模式的语句落在同一模式。
        """
        self.current_schema = schema
        if self._connected:
            self._exec(f"SET search_path TO {self.q(schema)}, public")

    def get_current_schema(self) -> str:
        return self.current_schema

    # ==================== 元数据 ====================

    def get_databases(self) -> List[DatabaseInfo]:
        self.ensure_connected("get_databases")
        rows = self._fetch_all(
            """
            SELECT datname AS name, pg_encoding_to_char(encoding) AS charset,
                   datcollate AS collation
            FROM pg_database
            WHERE datistemplate = false
            ORDER BY datname
            """
        )
        return [
            DatabaseInfo(name=row["name"], charset=row["charset"], collation=row["collation"])
            for row in rows
        ]

    def get_tables(
        self, database: Optional[str] = None, schema: Optional[str] = None
    ) -> List[TableInfo]:
        self.ensure_connected("get_tables")
        target = self._schema(schema)
        rows = self._fetch_all(
            """
            SELECT c.relname AS name, c.relkind AS kind, s.n_live_tup AS row_count,
                   CASE WHEN c.relkind IN ('r', 'p') THEN pg_total_relation_size(c.oid) END AS size,
                   obj_description(c.oid, 'pg_class') AS comment
            FROM pg_class c
            JOIN pg_namespace n ON n.oid = c.relnamespace
            LEFT JOIN pg_stat_user_tables s ON s.relid = c.oid
            WHERE n.nspname = :schema AND c.relkind IN ('r', 'p', 'v', 'f')
            ORDER BY c.relname
            """,
            schema=target,
        )
        return [
            TableInfo(
                name=row["name"],
                type=TableObjectType.VIEW if row["kind"] == "v" else TableObjectType.TABLE,
                schema=target,
                row_count=_int(row["row_count"]),
                size=_int(row["size"]),
                comment=row["comment"],
            )
            for row in rows
        ]

    def get_columns(self, table: str, database: Optional[str] = None) -> List[Column]:
        self.ensure_connected("get_columns")
        rows = self._fetch_all(
            """
            SELECT c.column_name AS name, c.data_type AS data_type, c.udt_name AS udt_name,
                   c.is_nullable AS nullable, c.column_default AS default_value,
                   c.is_identity AS is_identity,
                   c.character_maximum_length AS length, c.numeric_precision AS "precision",
                   c.numeric_scale AS scale,
                   EXISTS (
                       SELECT 1
                       FROM information_schema.table_constraints tc
                       JOIN information_schema.key_column_usage ku
                         ON ku.constraint_name = tc.constraint_name
                        AND ku.table_schema = tc.table_schema
                        AND ku.table_name = tc.table_name
                       WHERE tc.constraint_type = 'PRIMARY KEY'
                         AND tc.table_schema = c.table_schema
                         AND tc.table_name = c.table_name
                         AND ku.column_name = c.column_name
                   ) AS primary_key,
                   EXISTS (
                       SELECT 1
                       FROM information_schema.table_constraints tc
                       JOIN information_schema.key_column_usage ku
                         ON ku.constraint_name = tc.constraint_name
                        AND ku.table_schema = tc.table_schema
                        AND ku.table_name = tc.table_name
                       WHERE tc.constraint_type = 'UNIQUE'
                         AND tc.table_schema = c.table_schema
                         AND tc.table_name = c.table_name
                         AND ku.column_name = c.column_name
                   ) AS is_unique,
                   col_description(pc.oid, c.ordinal_position) AS comment
            FROM information_schema.columns c
            LEFT JOIN pg_namespace pn ON pn.nspname = c.table_schema
            LEFT JOIN pg_class pc ON pc.relname = c.table_name AND pc.relnamespace = pn.oid
            WHERE c.table_schema = :schema AND c.table_name = :table
            ORDER BY c.ordinal_position
            """,
            schema=self.current_schema,
            table=table,
        )
        columns = []
        for row in rows:
            data_type = str(row["data_type"])
            if data_type in ("USER-DEFINED", "ARRAY"):
                data_type = str(row["udt_name"])
            default = row["default_value"]
            columns.append(
                Column(
                    name=row["name"],
                    type=data_type.upper(),
                    nullable=row["nullable"] == "YES",
                    default_value=default,
                    primary_key=bool(row["primary_key"]),
                    auto_increment=str(default or "").startswith("nextval")
                    or row["is_identity"] == "YES",
                    unique=bool(row["is_unique"]),
                    comment=row["comment"],
                    length=_int(row["length"]),
                    precision=_int(row["precision"]),
                    scale=_int(row["scale"]),
                )
            )
        return columns

    def get_indexes(self, table: str, database: Optional[str] = None) -> List[Index]:
        self.ensure_connected("get_indexes")
        rows = self._fetch_all(
            """
            SELECT i.relname AS name,
                   array_agg(a.attname ORDER BY array_position(ix.indkey::int2[], a.attnum))
                       AS columns,
                   ix.indisunique AS is_unique, ix.indisprimary AS is_primary, am.amname AS type
            FROM pg_index ix
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
            JOIN pg_am am ON am.oid = i.relam
            WHERE t.relname = :table AND n.nspname = :schema
            GROUP BY i.relname, ix.indisunique, ix.indisprimary, am.amname
            ORDER BY i.relname
            """,
            table=table,
            schema=self.current_schema,
        )
        return [
            Index(
                name=row["name"],
                columns=list(row["columns"] or []),
                unique=bool(row["is_unique"]),
                primary=bool(row["is_primary"]),
                type=row["type"],
            )
            for row in rows
        ]

    def get_foreign_keys(self, table: str, database: Optional[str] = None) -> List[ForeignKey]:
        self.ensure_connected("get_foreign_keys")
        rows = self._fetch_all(
            """
            SELECT tc.constraint_name AS name, kcu.column_name AS column_name,
                   ccu.table_schema AS referenced_schema, ccu.table_name AS referenced_table,
                   ccu.column_name AS referenced_column,
                   rc.update_rule AS on_update, rc.delete_rule AS on_delete
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON kcu.constraint_name = tc.constraint_name
             AND kcu.constraint_schema = tc.constraint_schema
            JOIN information_schema.constraint_column_usage ccu
              ON ccu.constraint_name = tc.constraint_name
             AND ccu.constraint_schema = tc.constraint_schema
            JOIN information_schema.referential_constraints rc
              ON rc.constraint_name = tc.constraint_name
             AND rc.constraint_schema = tc.constraint_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = :schema AND tc.table_name = :table
            ORDER BY tc.constraint_name, kcu.ordinal_position
            """,
            schema=self.current_schema,
            table=table,
        )
        return [
            ForeignKey(
                name=row["name"],
                column=row["column_name"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
                referenced_schema=row["referenced_schema"],
                on_update=row["on_update"],
                on_delete=row["on_delete"],
            )
            for row in rows
        ]

    def get_table_ddl(self, table: str, database: Optional[str] = None) -> str:
        """
        由元数据拼装建表语句

        PostgreSQL 没有 SHOW CREATE TABLE，这里依次输出列、主键、外键与非主键索引。
        """
        self.ensure_connected("get_table_ddl")
        columns = self.get_columns(table)
        indexes = self.get_indexes(table)
        foreign_keys = self.get_foreign_keys(table)

        definitions = []
        for col in columns:
            definition = f"  {self.q(col.name)} {type_with_size(col)}"
            if not col.nullable:
                definition += " NOT NULL"
            if col.default_value is not None:
                definition += f" DEFAULT {col.default_value}"
            definitions.append(definition)

        pk_columns = [self.q(col.name) for col in columns if col.primary_key]
        if pk_columns:
            definitions.append(f"  PRIMARY KEY ({', '.join(pk_columns)})")

        for fk in foreign_keys:
            clause = (
                f"  CONSTRAINT {self.q(fk.name)} FOREIGN KEY ({self.q(fk.column)}) "
                f"REFERENCES {self.q(fk.referenced_table)} ({self.q(fk.referenced_column)})"
            )
            if fk.on_update:
                clause += f" ON UPDATE {fk.on_update}"
            if fk.on_delete:
                clause += f" ON DELETE {fk.on_delete}"
            definitions.append(clause)

        ddl = f"CREATE TABLE {self.q(table)} (\n" + ",\n".join(definitions) + "\n);"
        for index in indexes:
            if index.primary:
                continue
            unique = "UNIQUE " if index.unique else ""
            cols = ", ".join(self.q(c) for c in index.columns)
            ddl += f"\n\nCREATE {unique}INDEX {self.q(index.name)} ON {self.q(table)} ({cols});"
        return ddl

    def get_table_data(
        self, table: str, options: Optional[DataOptions] = None, database: Optional[str] = None
    ) -> DataResult:
        """连接只绑定一个数据库，database 参数不参与定位，表按 current_schema 查找"""
        return super().get_table_data(table, options)

    def get_view_ddl(self, view: str, database: Optional[str] = None) -> str:
        self.ensure_connected("get_view_ddl")
        definition = self._exec(
            "SELECT pg_get_viewdef(CAST(%s AS regclass), true)", [self._qualified(view)]
        ).scalar()
        return f"CREATE OR REPLACE VIEW {self.q(view)} AS\n{definition or ''}"

    # ==================== 列 ====================

    def _column_type(self, column: ColumnDefinition) -> str:
        return type_with_size(column)

    def _column_definition(self, column: ColumnDefinition) -> str:
        sql = f"{self.q(column.name)} {self._column_type(column)}"
        if not column.nullable:
            sql += " NOT NULL"
        if column.default_value is not None:
            sql += f" DEFAULT {format_default(column.default_value)}"
        if column.unique and not column.primary_key:
            sql += " UNIQUE"
        return sql

    def _run_in_transaction(self, statements: List[str]) -> SchemaOperationResult:
        """在一个事务中依次执行多条 DDL，失败时回滚并返回原始错误"""
        executed: List[str] = []
        try:
            self._exec("BEGIN")
            for statement in statements:
                executed.append(statement)
                self._exec(statement)
            self._exec("COMMIT")
        except Exception as e:
            message = native_message(e)
            try:
                self._exec("ROLLBACK")
            except Exception as rollback_error:
                logger.warning(f"回滚失败: {native_message(rollback_error)}")
            logger.error(f"PostgreSQL 变更失败: {message}")
            return failed(message, ";\n".join(executed))
        return SchemaOperationResult(success=True, sql=";\n".join(statements))

    @schema_operation
    def add_column(self, request: AddColumnRequest) -> SchemaOperationResult:
        statements = [
            f"ALTER TABLE {self._qualified(request.table)} "
            f"ADD COLUMN {self._column_definition(request.column)}"
        ]
        if request.column.comment:
            statements.append(self._column_comment(request.table, request.column))
        if len(statements) == 1:
            return self._run_statement(statements[0])
        return self._run_in_transaction(statements)

    @schema_operation
    def modify_column(self, request: ModifyColumnRequest) -> SchemaOperationResult:
        """依次修改列名、类型、可空性与默认值，全部语句在同一事务中执行"""
        table = self._qualified(request.table)
        definition = request.new_definition
        column = self.q(definition.name)

        statements = []
        if request.old_name != definition.name:
            statements.append(
                f"ALTER TABLE {table} RENAME COLUMN {self.q(request.old_name)} TO {column}"
            )
        statements.append(
            f"ALTER TABLE {table} ALTER COLUMN {column} TYPE {self._column_type(definition)}"
        )
        if definition.nullable:
            statements.append(f"ALTER TABLE {table} ALTER COLUMN {column} DROP NOT NULL")
        else:
            statements.append(f"ALTER TABLE {table} ALTER COLUMN {column} SET NOT NULL")
        if definition.default_value is None:
            statements.append(f"ALTER TABLE {table} ALTER COLUMN {column} DROP DEFAULT")
        else:
            statements.append(
                f"ALTER TABLE {table} ALTER COLUMN {column} "
                f"SET DEFAULT {format_default(definition.default_value)}"
            )
        if definition.comment is not None:
            statements.append(self._column_comment(request.table, definition))
        return self._run_in_transaction(statements)

    @schema_operation
    def drop_column(self, request: DropColumnRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self._qualified(request.table)} DROP COLUMN {self.q(request.column_name)}"
        )

    @schema_operation
    def rename_column(self, request: RenameColumnRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self._qualified(request.table)} "
            f"RENAME COLUMN {self.q(request.old_name)} TO {self.q(request.new_name)}"
        )

    def _column_comment(self, table: str, column: ColumnDefinition) -> str:
        return (
            f"COMMENT ON COLUMN {self._qualified(table)}.{self.q(column.name)} "
            f"IS {format_default(column.comment or '')}"
        )

    # ==================== 索引与外键 ====================

    def _create_index_sql(self, request: CreateIndexRequest) -> str:
        index = request.index
        unique = "UNIQUE " if index.unique else ""
        using = f" USING {index.type}" if index.type else ""
        columns = ", ".join(self.q(c) for c in index.columns)
        return (
            f"CREATE {unique}INDEX {self.q(index.name)} "
            f"ON {self._qualified(request.table, request.schema)}{using} ({columns})"
        )

    @schema_operation
    def drop_index(self, request: DropIndexRequest) -> SchemaOperationResult:
        return self._run_statement(f"DROP INDEX {self._qualified(request.index_name)}")

    @schema_operation
    def add_foreign_key(self, request: AddForeignKeyRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self._qualified(request.table)} "
            f"ADD {self._foreign_key_clause(request.foreign_key)}"
        )

    @schema_operation
    def drop_foreign_key(self, request: DropForeignKeyRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self._qualified(request.table)} "
            f"DROP CONSTRAINT {self.q(request.constraint_name)}"
        )

    # ==================== 表与视图 ====================

    def _create_table_sql(self, request: CreateTableRequest) -> str:
        """
        自增主键列使用 SERIAL / BIGSERIAL，主键以表级约束声明
        """
        table = request.table
        definitions = []
        for col in table.columns:
            if col.primary_key and col.auto_increment:
                serial = "SERIAL" if col.type.upper() in ("INTEGER", "INT", "INT4") else "BIGSERIAL"
                definitions.append(f"{self.q(col.name)} {serial}")
                continue
            definition = f"{self.q(col.name)} {self._column_type(col)}"
            if not col.nullable and not col.primary_key:
                definition += " NOT NULL"
            if col.default_value is not None and not col.auto_increment:
                definition += f" DEFAULT {format_default(col.default_value)}"
            if col.unique and not col.primary_key:
                definition += " UNIQUE"
            definitions.append(definition)

        pk_columns = [col.name for col in table.columns if col.primary_key] or table.primary_key
        if pk_columns:
            definitions.append("PRIMARY KEY (" + ", ".join(self.q(c) for c in pk_columns) + ")")
        definitions.extend(self._foreign_key_clause(fk) for fk in table.foreign_keys)

        return (
            f"CREATE TABLE {self._qualified(table.name, request.schema)} (\n  "
            + ",\n  ".join(definitions)
            + "\n)"
        )

    def _comment_statements(self, table: TableDefinition, schema: Optional[str]) -> List[str]:
        statements = []
        if table.comment:
            statements.append(
                f"COMMENT ON TABLE {self._qualified(table.name, schema)} "
                f"IS {format_default(table.comment)}"
            )
        for col in table.columns:
            if col.comment:
                statements.append(self._column_comment(table.name, col))
        return statements

    @schema_operation
    def create_table(self, request: CreateTableRequest) -> SchemaOperationResult:
        """建表、建索引，然后写入表与列注释"""
        result = super().create_table(request)
        if not result.success:
            return result
        for statement in self._comment_statements(request.table, request.schema):
            comment_result = self._run_statement(statement)
            if not comment_result.success:
                return failed(comment_result.error, f"{result.sql};\n{statement}")
        return result

    @schema_operation
    def drop_table(self, request: DropTableRequest) -> SchemaOperationResult:
        return self._run_statement(f"DROP TABLE {self._qualified(request.table)}")

    @schema_operation
    def rename_table(self, request: RenameTableRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self._qualified(request.old_name)} RENAME TO {self.q(request.new_name)}"
        )

    @schema_operation
    def create_view(self, request: CreateViewRequest) -> SchemaOperationResult:
        view = request.view
        create = "CREATE OR REPLACE VIEW" if view.replace_if_exists else "CREATE VIEW"
        return self._run_statement(f"{create} {self._qualified(view.name)} AS {view.select_statement}")

    @schema_operation
    def rename_view(self, request: RenameViewRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER VIEW {self._qualified(request.old_name)} RENAME TO {self.q(request.new_name)}"
        )

    # ==================== 例程 ====================

    def get_routines(
        self, database: Optional[str] = None, routine_type: Optional[str] = None
    ) -> List[Routine]:
        self.ensure_connected("get_routines")
        sql = f"""
            SELECT p.proname AS name,
                   CASE WHEN p.prokind = 'p' THEN 'PROCEDURE' ELSE 'FUNCTION' END AS type,
                   n.nspname AS routine_schema,
                   pg_get_function_result(p.oid) AS return_type,
                   l.lanname AS language
            FROM pg_proc p
            JOIN pg_namespace n ON p.pronamespace = n.oid
            JOIN pg_language l ON p.prolang = l.oid
            WHERE n.nspname NOT IN {_SYSTEM_SCHEMAS}
        """
        if routine_type:
            if RoutineType(routine_type.upper()) == RoutineType.PROCEDURE:
                sql += " AND p.prokind = 'p'"
            else:
                sql += " AND p.prokind != 'p'"
        rows = self._fetch_all(sql + " ORDER BY n.nspname, p.proname")
        return [
            Routine(
                name=row["name"],
                type=RoutineType(row["type"]),
                schema=row["routine_schema"],
                return_type=row["return_type"],
                language=row["language"],
            )
            for row in rows
        ]

    def get_routine_definition(
        self, name: str, routine_type: str, database: Optional[str] = None
    ) -> str:
        self.ensure_connected("get_routine_definition")
        row = self._fetch_one(
            f"""
            SELECT pg_get_functiondef(p.oid) AS definition
            FROM pg_proc p
            JOIN pg_namespace n ON p.pronamespace = n.oid
            WHERE p.proname = :name AND n.nspname NOT IN {_SYSTEM_SCHEMAS}
            LIMIT 1
            """,
            name=name,
        )
        if row is not None and row["definition"]:
            return row["definition"]
        return f"-- {routine_type.upper()} '{name}' not found"

    # ==================== 用户 ====================

    def get_users(self) -> List[DatabaseUser]:
        self.ensure_connected("get_users")
        rows = self._fetch_all(
            """
            SELECT rolname AS name, rolsuper AS superuser, rolcreaterole AS create_role,
                   rolcreatedb AS create_db, rolcanlogin AS login,
                   rolconnlimit AS connection_limit, rolvaliduntil AS valid_until,
                   ARRAY(
                       SELECT b.rolname
                       FROM pg_catalog.pg_auth_members m
                       JOIN pg_catalog.pg_roles b ON m.roleid = b.oid
                       WHERE m.member = r.oid
                   ) AS roles
            FROM pg_catalog.pg_roles r
            WHERE rolname NOT LIKE 'pg!_%' ESCAPE '!'
            ORDER BY rolname
            """
        )
        return [
            DatabaseUser(
                name=row["name"],
                superuser=bool(row["superuser"]),
                create_role=bool(row["create_role"]),
                create_db=bool(row["create_db"]),
                login=bool(row["login"]),
                connection_limit=None
                if row["connection_limit"] in (None, -1)
                else int(row["connection_limit"]),
                valid_until=_text(row["valid_until"]),
                roles=list(row["roles"] or []),
            )
            for row in rows
        ]

    def get_user_privileges(self, username: str, host: Optional[str] = None) -> List[UserPrivilege]:
        """汇总表、列与例程上的授权"""
        self.ensure_connected("get_user_privileges")
        rows = self._fetch_all(
            """
            SELECT privilege_type AS privilege, grantee,
                   table_catalog || '.' || table_schema || '.' || table_name AS object_name,
                   'TABLE' AS object_type, is_grantable = 'YES' AS is_grantable
            FROM information_schema.table_privileges
            WHERE grantee = :username
            UNION ALL
            SELECT privilege_type, grantee,
                   table_catalog || '.' || table_schema || '.' || table_name || '.' || column_name,
                   'COLUMN', is_grantable = 'YES'
            FROM information_schema.column_privileges
            WHERE grantee = :username
            UNION ALL
            SELECT privilege_type, grantee,
                   specific_catalog || '.' || specific_schema || '.' || routine_name,
                   'ROUTINE', is_grantable = 'YES'
            FROM information_schema.routine_privileges
            WHERE grantee = :username
            ORDER BY object_type, object_name, privilege
            """,
            username=username,
        )
        return [
            UserPrivilege(
                privilege=row["privilege"],
                grantee=row["grantee"],
                object_type=row["object_type"],
                object_name=row["object_name"],
                grantable=bool(row["is_grantable"]),
            )
            for row in rows
        ]

    @schema_operation
    def create_user(self, request: CreateUserRequest) -> SchemaOperationResult:
        user = request.user
        sql = f"CREATE ROLE {self.q(user.name)}"
        sql += " LOGIN" if user.login else " NOLOGIN"
        if user.superuser:
            sql += " SUPERUSER"
        display = sql
        if user.password:
            sql += f" PASSWORD {format_default(user.password)}"
            display += " PASSWORD '****'"
        result = self._run_statement(sql)
        if not result.success:
            return failed(result.error, display)
        result.sql = display
        return result

    @schema_operation
    def drop_user(self, request: DropUserRequest) -> SchemaOperationResult:
        return self._run_statement(f"DROP ROLE IF EXISTS {self.q(request.name)}")

    # ==================== 序列 ====================

    _SEQUENCE_COLUMNS = """
        SELECT s.sequencename AS name, s.schemaname AS sequence_schema,
               s.data_type::text AS data_type, s.start_value::text AS start_value,
               s.min_value::text AS min_value, s.max_value::text AS max_value,
               s.increment_by::text AS increment, s.cycle AS cycled,
               s.cache_size::text AS cache_size, s.last_value::text AS last_value,
               s.sequenceowner AS owner
        FROM pg_sequences s
    """

    @staticmethod
    def _sequence(row: Dict[str, Any]) -> Sequence:
        return Sequence(
            name=row["name"],
            schema=row["sequence_schema"],
            data_type=row["data_type"],
            start_value=row["start_value"],
            min_value=row["min_value"],
            max_value=row["max_value"],
            increment=row["increment"],
            cycled=bool(row["cycled"]),
            cache_size=row["cache_size"],
            last_value=row["last_value"],
            owner=row["owner"],
        )

    def get_sequences(self, schema: Optional[str] = None) -> List[Sequence]:
        self.ensure_connected("get_sequences")
        rows = self._fetch_all(
            self._SEQUENCE_COLUMNS + " WHERE s.schemaname = :schema ORDER BY s.sequencename",
            schema=self._schema(schema),
        )
        return [self._sequence(row) for row in rows]

    def get_sequence_details(self, name: str, schema: Optional[str] = None) -> Optional[Sequence]:
        """返回单个序列，不存在时返回 None"""
        self.ensure_connected("get_sequence_details")
        row = self._fetch_one(
            self._SEQUENCE_COLUMNS + " WHERE s.schemaname = :schema AND s.sequencename = :name",
            schema=self._schema(schema),
            name=name,
        )
        return self._sequence(row) if row is not None else None

    @schema_operation
    def create_sequence(self, request: CreateSequenceRequest) -> SchemaOperationResult:
        sequence = request.sequence
        sql = f"CREATE SEQUENCE {self._qualified(sequence.name, sequence.schema)}"
        if sequence.data_type:
            sql += f" AS {sequence.data_type}"
        if sequence.start_with is not None:
            sql += f" START WITH {int(sequence.start_with)}"
        if sequence.increment is not None:
            sql += f" INCREMENT BY {int(sequence.increment)}"
        if sequence.min_value is not None:
            sql += f" MINVALUE {int(sequence.min_value)}"
        if sequence.max_value is not None:
            sql += f" MAXVALUE {int(sequence.max_value)}"
        sql += " CYCLE" if sequence.cycle else " NO CYCLE"
        if sequence.cache is not None:
            sql += f" CACHE {int(sequence.cache)}"
        if sequence.owned_by:
            sql += f" OWNED BY {sequence.owned_by}"
        return self._run_statement(sql)

    @schema_operation
    def drop_sequence(self, request: DropSequenceRequest) -> SchemaOperationResult:
        cascade = " CASCADE" if request.cascade else ""
        return self._run_statement(
            f"DROP SEQUENCE IF EXISTS {self._qualified(request.sequence_name, request.schema)}{cascade}"
        )

    @schema_operation
    def alter_sequence(self, request: AlterSequenceRequest) -> SchemaOperationResult:
        """
        修改序列

        未设置任何字段时不执行语句，直接返回成功。
        """
        clauses = []
        if request.restart_with is not None:
            clauses.append(f"RESTART WITH {int(request.restart_with)}")
        if request.increment is not None:
            clauses.append(f"INCREMENT BY {int(request.increment)}")
        if request.min_value is not None:
            clauses.append(
                "NO MINVALUE" if _is_none(request.min_value) else f"MINVALUE {int(request.min_value)}"
            )
        if request.max_value is not None:
            clauses.append(
                "NO MAXVALUE" if _is_none(request.max_value) else f"MAXVALUE {int(request.max_value)}"
            )
        if request.cycle is not None:
            clauses.append("CYCLE" if request.cycle else "NO CYCLE")
        if request.cache is not None:
            clauses.append(f"CACHE {int(request.cache)}")
        if request.owned_by is not None:
            clauses.append(
                "OWNED BY NONE" if _is_none(request.owned_by) else f"OWNED BY {request.owned_by}"
            )
        if not clauses:
            return SchemaOperationResult(success=True, sql="-- No changes specified")
        return self._run_statement(
            f"ALTER SEQUENCE {self._qualified(request.sequence_name, request.schema)} "
            + " ".join(clauses)
        )

    # ==================== 物化视图 ====================

    def get_materialized_views(self, schema: Optional[str] = None) -> List[MaterializedView]:
        self.ensure_connected("get_materialized_views")
        rows = self._fetch_all(
            """
            SELECT matviewname AS name, schemaname AS view_schema, definition,
                   matviewowner AS owner, tablespace, hasindexes AS has_indexes,
                   ispopulated AS is_populated
            FROM pg_matviews
            WHERE schemaname = :schema
            ORDER BY matviewname
            """,
            schema=self._schema(schema),
        )
        return [
            MaterializedView(
                name=row["name"],
                schema=row["view_schema"],
                definition=row["definition"],
                owner=row["owner"],
                tablespace=row["tablespace"],
                has_indexes=row["has_indexes"],
                is_populated=row["is_populated"],
            )
            for row in rows
        ]

    @schema_operation
    def refresh_materialized_view(
        self, request: RefreshMaterializedViewRequest
    ) -> SchemaOperationResult:
        concurrently = " CONCURRENTLY" if request.concurrently else ""
        with_data = "" if request.with_data else " WITH NO DATA"
        return self._run_statement(
            f"REFRESH MATERIALIZED VIEW{concurrently} "
            f"{self._qualified(request.view_name, request.schema)}{with_data}"
        )

    def get_materialized_view_ddl(self, view: str, schema: Optional[str] = None) -> str:
        self.ensure_connected("get_materialized_view_ddl")
        target = self._schema(schema)
        row = self._fetch_one(
            "SELECT definition FROM pg_matviews WHERE schemaname = :schema AND matviewname = :view",
            schema=target,
            view=view,
        )
        definition = (row or {}).get("definition") or ""
        return f"CREATE MATERIALIZED VIEW {self._qualified(view, target)} AS\n{definition}"

    # ==================== 扩展 ====================

    def get_extensions(self) -> List[Extension]:
        self.ensure_connected("get_extensions")
        rows = self._fetch_all(
            """
            SELECT e.extname AS name, e.extversion AS version, n.nspname AS ext_schema,
                   d.description, e.extrelocatable AS relocatable
            FROM pg_extension e
            JOIN pg_namespace n ON n.oid = e.extnamespace
            LEFT JOIN pg_description d
              ON d.objoid = e.oid AND d.classoid = CAST('pg_extension' AS regclass)
            ORDER BY e.extname
            """
        )
        return [
            Extension(
                name=row["name"],
                version=row["version"],
                schema=row["ext_schema"],
                description=row["description"],
                relocatable=row["relocatable"],
            )
            for row in rows
        ]

    def get_available_extensions(self) -> List[Extension]:
        """列出可安装但尚未安装的扩展"""
        self.ensure_connected("get_available_extensions")
        rows = self._fetch_all(
            """
            SELECT name, default_version AS version, comment AS description
            FROM pg_available_extensions
            WHERE installed_version IS NULL
            ORDER BY name
            """
        )
        return [
            Extension(
                name=row["name"],
                version=row["version"] or "",
                description=row["description"] or "",
            )
            for row in rows
        ]

    @schema_operation
    def create_extension(self, request: CreateExtensionRequest) -> SchemaOperationResult:
        sql = f"CREATE EXTENSION IF NOT EXISTS {self.q(request.name)}"
        if request.schema:
            sql += f" SCHEMA {self.q(request.schema)}"
        if request.version:
            sql += f" VERSION {format_default(request.version)}"
        if request.cascade:
            sql += " CASCADE"
        return self._run_statement(sql)

    @schema_operation
    def drop_extension(self, request: DropExtensionRequest) -> SchemaOperationResult:
        cascade = " CASCADE" if request.cascade else ""
        return self._run_statement(f"DROP EXTENSION IF EXISTS {self.q(request.name)}{cascade}")

    # ==================== 枚举类型 ====================

    _ENUM_QUERY = """
        SELECT t.typname AS name, n.nspname AS enum_schema,
               array_agg(e.enumlabel ORDER BY e.enumsortorder) AS labels
        FROM pg_type t
        JOIN pg_enum e ON t.oid = e.enumtypid
        JOIN pg_namespace n ON t.typnamespace = n.oid
    """

    def get_enums(self, schema: Optional[str] = None) -> List[EnumType]:
        self.ensure_connected("get_enums")
        rows = self._fetch_all(
            self._ENUM_QUERY
            + " WHERE n.nspname = :schema GROUP BY t.typname, n.nspname ORDER BY t.typname",
            schema=self._schema(schema),
        )
        return [self._enum(row) for row in rows]

    def get_all_enums(self) -> List[EnumType]:
        self.ensure_connected("get_all_enums")
        rows = self._fetch_all(
            self._ENUM_QUERY
            + f" WHERE n.nspname NOT IN {_SYSTEM_SCHEMAS}"
            + " GROUP BY t.typname, n.nspname ORDER BY n.nspname, t.typname"
        )
        return [self._enum(row) for row in rows]

    @staticmethod
    def _enum(row: Dict[str, Any]) -> EnumType:
        return EnumType(name=row["name"], schema=row["enum_schema"], values=list(row["labels"] or []))

    # ==================== 触发器 ====================

    def get_triggers(self, database: Optional[str] = None, table: Optional[str] = None) -> List[Trigger]:
        """时机与事件由 pg_trigger.tgtype 的位标志解析"""
        self.ensure_connected("get_triggers")
        sql = f"""
            SELECT t.tgname AS name, c.relname AS table_name, n.nspname AS trigger_schema,
                   t.tgenabled != 'D' AS enabled,
                   CASE
                       WHEN t.tgtype & 2 = 2 THEN 'BEFORE'
                       WHEN t.tgtype & 64 = 64 THEN 'INSTEAD OF'
                       ELSE 'AFTER'
                   END AS timing,
                   ARRAY_TO_STRING(ARRAY[
                       CASE WHEN t.tgtype & 4 = 4 THEN 'INSERT' END,
                       CASE WHEN t.tgtype & 8 = 8 THEN 'DELETE' END,
                       CASE WHEN t.tgtype & 16 = 16 THEN 'UPDATE' END
                   ], ' OR ') AS event,
                   pg_get_triggerdef(t.oid) AS definition
            FROM pg_trigger t
            JOIN pg_class c ON t.tgrelid = c.oid
            JOIN pg_namespace n ON c.relnamespace = n.oid
            WHERE NOT t.tgisinternal AND n.nspname NOT IN {_SYSTEM_SCHEMAS}
        """
        params: Dict[str, Any] = {}
        if table:
            sql += " AND c.relname = :table"
            params["table"] = table
        rows = self._fetch_all(sql + " ORDER BY n.nspname, c.relname, t.tgname", **params)
        return [
            Trigger(
                name=row["name"],
                table=row["table_name"],
                event=row["event"],
                timing=row["timing"],
                schema=row["trigger_schema"],
                enabled=bool(row["enabled"]),
                definition=row["definition"],
            )
            for row in rows
        ]

    def get_trigger_definition(
        self, name: str, table: Optional[str] = None, database: Optional[str] = None
    ) -> str:
        self.ensure_connected("get_trigger_definition")
        sql = """
            SELECT pg_get_triggerdef(t.oid, true) AS definition
            FROM pg_trigger t
            JOIN pg_class c ON t.tgrelid = c.oid
            WHERE t.tgname = :name AND NOT t.tgisinternal
        """
        params: Dict[str, Any] = {"name": name}
        if table:
            sql += " AND c.relname = :table"
            params["table"] = table
        row = self._fetch_one(sql + " LIMIT 1", **params)
        if row is not None and row["definition"]:
            return row["definition"]
        return f"-- Trigger '{name}' not found"

    @schema_operation
    def create_trigger(self, request: CreateTriggerRequest) -> SchemaOperationResult:
        trigger = request.trigger
        if not trigger.function_name:
            return failed(TRIGGER_FUNCTION_REQUIRED)
        sql = (
            f"CREATE TRIGGER {self.q(trigger.name)}\n"
            f"{trigger.timing} {trigger.event}\n"
            f"ON {self._qualified(trigger.table, trigger.schema)}\n"
            f"FOR EACH {'ROW' if trigger.for_each_row else 'STATEMENT'}\n"
        )
        if trigger.condition:
            sql += f"WHEN ({trigger.condition})\n"
        sql += f"EXECUTE FUNCTION {trigger.function_name}()"
        return self._run_statement(sql)

    @schema_operation
    def drop_trigger(self, request: DropTriggerRequest) -> SchemaOperationResult:
        if not request.table:
            return failed(TRIGGER_TABLE_REQUIRED)
        cascade = " CASCADE" if request.cascade else ""
        return self._run_statement(
            f"DROP TRIGGER IF EXISTS {self.q(request.trigger_name)} "
            f"ON {self._qualified(request.table, request.schema)}{cascade}"
        )
