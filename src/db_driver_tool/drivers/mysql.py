"""
MySQL 驱动

基于 SQLAlchemy 的 mysql+pymysql 方言。除通用的结构与数据操作外，
还提供字符集/排序规则、分区、事件调度器、例程、触发器和用户管理。
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.engine import CursorResult

from ..core.requests import (
    MYSQL_DATA_TYPES,
    AddColumnRequest,
    AddForeignKeyRequest,
    AlterEventRequest,
    ColumnDefinition,
    CreateIndexRequest,
    CreateTableRequest,
    CreateTriggerRequest,
    CreateUserRequest,
    CreateViewRequest,
    DropColumnRequest,
    DropForeignKeyRequest,
    DropIndexRequest,
    DropTriggerRequest,
    DropUserRequest,
    EventDefinition,
    ModifyColumnRequest,
    RenameColumnRequest,
    RenameTableRequest,
    RenameViewRequest,
    SchemaOperationResult,
)
from ..core.tls import TLSOptions, build_ssl_context
from ..core.types import (
    CharsetInfo,
    CollationInfo,
    Column,
    ColumnInfo,
    ConnectionConfig,
    DatabaseInfo,
    DatabaseType,
    DatabaseUser,
    ForeignKey,
    Index,
    PartitionInfo,
    Routine,
    RoutineType,
    ScheduledEvent,
    TableInfo,
    TableObjectType,
    Trigger,
    UserPrivilege,
)
from ..utils.logging_utils import get_logger
from .base import failed, schema_operation
from .sql_base import SQLDriver, format_default, native_message, plain_value, type_with_size

logger = get_logger(__name__)

# 协议字段类型代码 → 类型名称
MYSQL_TYPE_NAMES: Dict[int, str] = {
    0: "DECIMAL",
    1: "TINYINT",
    2: "SMALLINT",
    3: "INT",
    4: "FLOAT",
    5: "DOUBLE",
    6: "NULL",
    7: "TIMESTAMP",
    8: "BIGINT",
    9: "MEDIUMINT",
    10: "DATE",
    11: "TIME",
    12: "DATETIME",
    13: "YEAR",
    14: "NEWDATE",
    15: "VARCHAR",
    16: "BIT",
    245: "JSON",
    246: "NEWDECIMAL",
    247: "ENUM",
    248: "SET",
    249: "TINY_BLOB",
    250: "MEDIUM_BLOB",
    251: "LONG_BLOB",
    252: "BLOB",
    253: "VAR_STRING",
    254: "STRING",
    255: "GEOMETRY",
}

# 协议字段标志位：PRI_KEY_FLAG
PRIMARY_KEY_FLAG = 2

# 原样保留（不加引号）的默认值表达式
_RAW_DEFAULT_PATTERN = re.compile(
    r"^(-?\d+(\.\d+)?|NULL|CURRENT_TIMESTAMP(\(\d*\))?|NOW\(\)|b'[01]*')$", re.IGNORECASE
)
_GRANT_PATTERN = re.compile(r"GRANT\s+(.+?)\s+ON\s+(.+?)\s+TO", re.IGNORECASE)


def _int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _text(value: Any) -> Optional[str]:
    return plain_value(value) if value is not None else None


class MySQLDriver(SQLDriver):
    """
    MySQL 驱动

    Attributes:
        current_database (str): 当前 USE 的数据库
        session_id (int | None): 当前连接的 CONNECTION_ID()，用于取消查询
    """

    db_type = DatabaseType.MYSQL
    QUOTE = "`"
    PLACEHOLDER = "%s"
    URL_TEMPLATE = "mysql+pymysql://{username}:{password}@{host}:{port}/{database}"
    DATA_TYPES = MYSQL_DATA_TYPES

    def __init__(self) -> None:
        super().__init__()
        self.current_database = ""
        self.session_id: Optional[int] = None

    # ==================== 连接 ====================

    def _connect_args(self, config: ConnectionConfig, tls: Optional[TLSOptions]) -> Dict[str, Any]:
        if tls is None:
            return {}
        return {"ssl": build_ssl_context(tls)}

    def _after_connect(self) -> None:
        self.session_id = _int(self._exec("SELECT CONNECTION_ID()").scalar())
        self.current_database = self.config.database if self.config else ""

    def _release(self) -> None:
        self.session_id = None
        super()._release()

    def _cancel_statement(self) -> Optional[str]:
        if not self.session_id:
            return None
        return f"KILL QUERY {int(self.session_id)}"

    def _server_details(self) -> Tuple[Optional[str], Dict[str, str]]:
        version = self._exec("SELECT VERSION() AS version").scalar()
        info: Dict[str, str] = {}
        try:
            info["Charset"] = self._variable("character_set_server")
            info["Max Connections"] = self._variable("max_connections")
            info["Timezone"] = str(self._exec("SELECT @@global.time_zone").scalar() or "")
        except Exception as e:
            logger.warning(f"读取 MySQL 服务端变量失败: {native_message(e)}")
        return str(version or "Unknown"), info

    def _variable(self, name: str) -> str:
        row = self._fetch_one("SHOW VARIABLES LIKE :name", name=name)
        return str((row or {}).get("Value") or "")

    # ==================== 执行 ====================

    def _cursor_metadata(self, result: CursorResult) -> List[Any]:
        """描述信息附带协议字段标志位（pymysql 仅在结果对象中保留）"""
        cursor = result.cursor
        if cursor is None:
            return []
        fields = getattr(getattr(cursor, "_result", None), "fields", None) or []
        flags = [getattr(f, "flags", 0) for f in fields]
        description = list(cursor.description or [])
        return [(desc, flags[i] if i < len(flags) else 0) for i, desc in enumerate(description)]

    def _result_columns(
        self, keys: List[str], metadata: List[Any], rows: List[Dict[str, Any]]
    ) -> List[ColumnInfo]:
        columns: List[ColumnInfo] = []
        for i, name in enumerate(keys):
            if i < len(metadata):
                desc, flags = metadata[i]
                type_name = MYSQL_TYPE_NAMES.get(desc[1] or 0, "UNKNOWN")
                primary_key = bool(flags & PRIMARY_KEY_FLAG)
            else:
                type_name, primary_key = "UNKNOWN", False
            columns.append(ColumnInfo(name=name, type=type_name, primary_key=primary_key))
        return columns

    # ==================== 元数据 ====================

    def _schema(self, database: Optional[str]) -> str:
        return database or self.current_database

    def _use(self, database: Optional[str]) -> None:
        if database and database != self.current_database:
            self._exec(f"USE {self.q(database)}")
            self.current_database = database

    def _qualified(self, table: str, database: Optional[str] = None) -> str:
        if database:
            return f"{self.q(database)}.{self.q(table)}"
        return self.q(table)

    def get_databases(self) -> List[DatabaseInfo]:
        self.ensure_connected("get_databases")
        return [DatabaseInfo(name=row["Database"]) for row in self._fetch_all("SHOW DATABASES")]

    def get_tables(self, database: Optional[str] = None) -> List[TableInfo]:
        self.ensure_connected("get_tables")
        self._use(database)
        rows = self._fetch_all(
            """
            SELECT TABLE_NAME AS name, TABLE_TYPE AS type, TABLE_ROWS AS row_count,
                   DATA_LENGTH + INDEX_LENGTH AS size, TABLE_COMMENT AS comment
            FROM information_schema.TABLES
            WHERE TABLE_SCHEMA = COALESCE(:schema, DATABASE())
            ORDER BY TABLE_NAME
            """,
            schema=self._schema(database) or None,
        )
        return [
            TableInfo(
                name=row["name"],
                type=TableObjectType.VIEW if row["type"] == "VIEW" else TableObjectType.TABLE,
                row_count=_int(row["row_count"]),
                size=_int(row["size"]),
                comment=row["comment"] or None,
            )
            for row in rows
        ]

    def get_columns(self, table: str, database: Optional[str] = None) -> List[Column]:
        self.ensure_connected("get_columns")
        rows = self._fetch_all(
            """
            SELECT COLUMN_NAME AS name, DATA_TYPE AS type, IS_NULLABLE AS nullable,
                   COLUMN_DEFAULT AS default_value, COLUMN_KEY AS column_key, EXTRA AS extra,
                   CHARACTER_MAXIMUM_LENGTH AS length, NUMERIC_PRECISION AS `precision`,
                   NUMERIC_SCALE AS scale, COLUMN_COMMENT AS comment
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = COALESCE(:schema, DATABASE()) AND TABLE_NAME = :table
            ORDER BY ORDINAL_POSITION
            """,
            schema=self._schema(database) or None,
            table=table,
        )
        return [
            Column(
                name=row["name"],
                type=str(row["type"]).upper(),
                nullable=row["nullable"] == "YES",
                default_value=_text(row["default_value"]),
                primary_key=row["column_key"] == "PRI",
                auto_increment="auto_increment" in (row["extra"] or ""),
                unique=row["column_key"] == "UNI",
                comment=row["comment"] or None,
                length=_int(row["length"]),
                precision=_int(row["precision"]),
                scale=_int(row["scale"]),
            )
            for row in rows
        ]

    def get_indexes(self, table: str, database: Optional[str] = None) -> List[Index]:
        self.ensure_connected("get_indexes")
        indexes: Dict[str, Index] = {}
        for row in self._exec(f"SHOW INDEX FROM {self._qualified(table, database)}"):
            data = row._mapping
            name = data["Key_name"]
            if name in indexes:
                indexes[name].columns.append(data["Column_name"])
                continue
            indexes[name] = Index(
                name=name,
                columns=[data["Column_name"]],
                unique=int(data["Non_unique"]) == 0,
                primary=name == "PRIMARY",
                type=data["Index_type"],
            )
        return list(indexes.values())

    def get_foreign_keys(self, table: str, database: Optional[str] = None) -> List[ForeignKey]:
        self.ensure_connected("get_foreign_keys")
        rows = self._fetch_all(
            """
            SELECT k.CONSTRAINT_NAME AS name, k.COLUMN_NAME AS column_name,
                   k.REFERENCED_TABLE_SCHEMA AS referenced_schema,
                   k.REFERENCED_TABLE_NAME AS referenced_table,
                   k.REFERENCED_COLUMN_NAME AS referenced_column,
                   r.UPDATE_RULE AS on_update, r.DELETE_RULE AS on_delete
            FROM information_schema.KEY_COLUMN_USAGE k
            LEFT JOIN information_schema.REFERENTIAL_CONSTRAINTS r
              ON r.CONSTRAINT_SCHEMA = k.TABLE_SCHEMA
             AND r.TABLE_NAME = k.TABLE_NAME
             AND r.CONSTRAINT_NAME = k.CONSTRAINT_NAME
            WHERE k.TABLE_SCHEMA = COALESCE(:schema, DATABASE())
              AND k.TABLE_NAME = :table
              AND k.REFERENCED_TABLE_NAME IS NOT NULL
            ORDER BY k.CONSTRAINT_NAME, k.ORDINAL_POSITION
            """,
            schema=self._schema(database) or None,
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
        self.ensure_connected("get_table_ddl")
        row = self._exec(f"SHOW CREATE TABLE {self._qualified(table, database)}").first()
        if row is None:
            return ""
        data = row._mapping
        return data.get("Create Table") or data.get("Create View") or ""

    def get_view_ddl(self, view: str, database: Optional[str] = None) -> str:
        self.ensure_connected("get_view_ddl")
        row = self._exec(f"SHOW CREATE VIEW {self._qualified(view, database)}").first()
        return (row._mapping.get("Create View") if row is not None else None) or ""

    # ==================== 列定义 ====================

    def _column_definition(self, column: ColumnDefinition) -> str:
        sql = f"{self.q(column.name)} {type_with_size(column)}"
        sql += " NULL" if column.nullable else " NOT NULL"
        if column.auto_increment:
            sql += " AUTO_INCREMENT"
        if column.default_value is not None:
            sql += f" DEFAULT {format_default(column.default_value)}"
        if column.unique and not column.primary_key:
            sql += " UNIQUE"
        if column.comment:
            sql += f" COMMENT {format_default(column.comment)}"
        return sql

    @schema_operation
    def add_column(self, request: AddColumnRequest) -> SchemaOperationResult:
        definition = self._column_definition(request.column)
        after = request.column.after_column
        if after:
            definition += " FIRST" if after.upper() == "FIRST" else f" AFTER {self.q(after)}"
        return self._run_statement(f"ALTER TABLE {self.q(request.table)} ADD COLUMN {definition}")

    @schema_operation
    def modify_column(self, request: ModifyColumnRequest) -> SchemaOperationResult:
        """列名变化时使用 CHANGE COLUMN，否则使用 MODIFY COLUMN"""
        definition = self._column_definition(request.new_definition)
        if request.old_name != request.new_definition.name:
            sql = (
                f"ALTER TABLE {self.q(request.table)} "
                f"CHANGE COLUMN {self.q(request.old_name)} {definition}"
            )
        else:
            sql = f"ALTER TABLE {self.q(request.table)} MODIFY COLUMN {definition}"
        return self._run_statement(sql)

    @schema_operation
    def drop_column(self, request: DropColumnRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self.q(request.table)} DROP COLUMN {self.q(request.column_name)}"
        )

    @schema_operation
    def rename_column(self, request: RenameColumnRequest) -> SchemaOperationResult:
        """
        重命名列

        使用 CHANGE COLUMN 以兼容旧版本服务端，列的完整类型、可空性、默认值、
        自增与注释从 information_schema 读取后原样保留。
        """
        row = self._fetch_one(
            """
            SELECT COLUMN_TYPE AS column_type, IS_NULLABLE AS nullable,
                   COLUMN_DEFAULT AS default_value, EXTRA AS extra, COLUMN_COMMENT AS comment
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table AND COLUMN_NAME = :column
            """,
            table=request.table,
            column=request.old_name,
        )
        if row is None:
            return failed(f"Column '{request.old_name}' not found")

        definition = f"{self.q(request.new_name)} {row['column_type']}"
        if row["nullable"] != "YES":
            definition += " NOT NULL"
        if "auto_increment" in (row["extra"] or ""):
            definition += " AUTO_INCREMENT"
        default = row["default_value"]
        if default is not None:
            default = str(default)
            literal = default if _RAW_DEFAULT_PATTERN.match(default) else format_default(default)
            definition += f" DEFAULT {literal}"
        if row["comment"]:
            definition += f" COMMENT {format_default(row['comment'])}"

        return self._run_statement(
            f"ALTER TABLE {self.q(request.table)} "
            f"CHANGE COLUMN {self.q(request.old_name)} {definition}"
        )

    # ==================== 索引与外键 ====================

    def _create_index_sql(self, request: CreateIndexRequest) -> str:
        sql = super()._create_index_sql(request)
        if request.index.type:
            sql += f" USING {request.index.type}"
        return sql

    @schema_operation
    def drop_index(self, request: DropIndexRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"DROP INDEX {self.q(request.index_name)} ON {self.q(request.table)}"
        )

    @schema_operation
    def add_foreign_key(self, request: AddForeignKeyRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self.q(request.table)} "
            f"ADD {self._foreign_key_clause(request.foreign_key)}"
        )

    @schema_operation
    def drop_foreign_key(self, request: DropForeignKeyRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self.q(request.table)} "
            f"DROP FOREIGN KEY {self.q(request.constraint_name)}"
        )

    # ==================== 表与视图 ====================

    def _create_table_sql(self, request: CreateTableRequest) -> str:
        """主键、索引与外键以表级子句写入 CREATE TABLE，表注释写入 COMMENT="""
        table = request.table
        definitions = [self._column_definition(col) for col in table.columns]

        pk_columns = [col.name for col in table.columns if col.primary_key] or table.primary_key
        if pk_columns:
            definitions.append("PRIMARY KEY (" + ", ".join(self.q(c) for c in pk_columns) + ")")
        for index in table.indexes:
            unique = "UNIQUE " if index.unique else ""
            columns = ", ".join(self.q(c) for c in index.columns)
            definitions.append(f"{unique}INDEX {self.q(index.name)} ({columns})")
        definitions.extend(self._foreign_key_clause(fk) for fk in table.foreign_keys)

        sql = (
            f"CREATE TABLE {self._qualified(table.name, request.schema)} (\n  "
            + ",\n  ".join(definitions)
            + "\n)"
        )
        if table.comment:
            sql += f" COMMENT={format_default(table.comment)}"
        return sql

    @schema_operation
    def create_table(self, request: CreateTableRequest) -> SchemaOperationResult:
        return self._run_statement(self._create_table_sql(request))

    @schema_operation
    def rename_table(self, request: RenameTableRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"RENAME TABLE {self.q(request.old_name)} TO {self.q(request.new_name)}"
        )

    @schema_operation
    def create_view(self, request: CreateViewRequest) -> SchemaOperationResult:
        view = request.view
        create = "CREATE OR REPLACE VIEW" if view.replace_if_exists else "CREATE VIEW"
        return self._run_statement(f"{create} {self.q(view.name)} AS {view.select_statement}")

    @schema_operation
    def rename_view(self, request: RenameViewRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"RENAME TABLE {self.q(request.old_name)} TO {self.q(request.new_name)}"
        )

    # ==================== 例程 ====================

    def get_routines(
        self, database: Optional[str] = None, routine_type: Optional[str] = None
    ) -> List[Routine]:
        self.ensure_connected("get_routines")
        sql = """
            SELECT ROUTINE_NAME AS name, ROUTINE_TYPE AS type, ROUTINE_SCHEMA AS routine_schema,
                   DATA_TYPE AS return_type, EXTERNAL_LANGUAGE AS language,
                   CREATED AS created_at, LAST_ALTERED AS modified_at
            FROM information_schema.ROUTINES
            WHERE ROUTINE_SCHEMA = COALESCE(:schema, DATABASE())
        """
        params: Dict[str, Any] = {"schema": self._schema(database) or None}
        if routine_type:
            sql += " AND ROUTINE_TYPE = :routine_type"
            params["routine_type"] = RoutineType(routine_type.upper()).value
        rows = self._fetch_all(sql + " ORDER BY ROUTINE_NAME", **params)
        return [
            Routine(
                name=row["name"],
                type=RoutineType(row["type"]),
                schema=row["routine_schema"],
                return_type=row["return_type"] or None,
                language=row["language"] or "SQL",
                created_at=_text(row["created_at"]),
                modified_at=_text(row["modified_at"]),
            )
            for row in rows
        ]

    def get_routine_definition(
        self, name: str, routine_type: str, database: Optional[str] = None
    ) -> str:
        self.ensure_connected("get_routine_definition")
        kind = RoutineType(routine_type.upper()).value
        column = "Create Procedure" if kind == "PROCEDURE" else "Create Function"
        try:
            row = self._exec(f"SHOW CREATE {kind} {self._qualified(name, database)}").first()
        except Exception as e:
            return f"-- Error getting {kind} definition: {native_message(e)}"
        definition = row._mapping.get(column) if row is not None else None
        return definition or f"-- {kind} '{name}' not found"

    # ==================== 用户 ====================

    def get_users(self) -> List[DatabaseUser]:
        """读取 mysql.user，权限不足时退回当前用户"""
        self.ensure_connected("get_users")
        try:
            rows = self._fetch_all(
                """
                SELECT User AS name, Host AS host, Super_priv = 'Y' AS superuser,
                       Create_user_priv = 'Y' AS create_role, Create_priv = 'Y' AS create_db
                FROM mysql.user
                ORDER BY User, Host
                """
            )
        except Exception as e:
            logger.warning(f"读取 mysql.user 失败，改用 CURRENT_USER(): {native_message(e)}")
            current = str(self._exec("SELECT CURRENT_USER()").scalar() or "unknown@%")
            name, _, host = current.partition("@")
            return [DatabaseUser(name=name, host=host or None, login=True)]
        return [
            DatabaseUser(
                name=row["name"],
                host=row["host"],
                superuser=bool(row["superuser"]),
                create_role=bool(row["create_role"]),
                create_db=bool(row["create_db"]),
                login=True,
            )
            for row in rows
        ]

    def get_user_privileges(self, username: str, host: Optional[str] = None) -> List[UserPrivilege]:
        """解析 SHOW GRANTS 的结果，失败时返回空列表"""
        self.ensure_connected("get_user_privileges")
        user_host = host or "%"
        try:
            result = self._exec("SHOW GRANTS FOR %s@%s", [username, user_host])
            grants = [str(row[0]) for row in result]
        except Exception as e:
            logger.warning(f"读取用户 {username}@{user_host} 的授权失败: {native_message(e)}")
            return []

        privileges: List[UserPrivilege] = []
        for grant in grants:
            match = _GRANT_PATTERN.search(grant)
            if match is None:
                continue
            object_name = match.group(2).replace("`", "")
            grantable = "WITH GRANT OPTION" in grant.upper()
            for privilege in match.group(1).split(","):
                privileges.append(
                    UserPrivilege(
                        privilege=privilege.strip(),
                        grantee=f"{username}@{user_host}",
                        object_name=object_name,
                        grantable=grantable,
                    )
                )
        return privileges

    @schema_operation
    def create_user(self, request: CreateUserRequest) -> SchemaOperationResult:
        user = request.user
        account = f"{format_default(user.name)}@{format_default(user.host or '%')}"
        sql = f"CREATE USER {account}"
        display = sql
        if user.password:
            sql += f" IDENTIFIED BY {format_default(user.password)}"
            display += " IDENTIFIED BY '****'"
        result = self._run_statement(sql)
        if not result.success:
            return failed(result.error, display)
        if user.superuser:
            grant = f"GRANT ALL PRIVILEGES ON *.* TO {account} WITH GRANT OPTION"
            grant_result = self._run_statement(grant)
            if not grant_result.success:
                return failed(grant_result.error, f"{display};\n{grant}")
            display = f"{display};\n{grant}"
        result.sql = display
        return result

    @schema_operation
    def drop_user(self, request: DropUserRequest) -> SchemaOperationResult:
        account = f"{format_default(request.name)}@{format_default(request.host or '%')}"
        return self._run_statement(f"DROP USER {account}")

    # ==================== 字符集 ====================

    def get_charsets(self) -> List[CharsetInfo]:
        self.ensure_connected("get_charsets")
        return [
            CharsetInfo(
                charset=row["Charset"],
                description=row["Description"],
                default_collation=row["Default collation"],
                max_length=_int(row["Maxlen"]),
            )
            for row in self._fetch_all("SHOW CHARACTER SET")
        ]

    def get_collations(self, charset: Optional[str] = None) -> List[CollationInfo]:
        self.ensure_connected("get_collations")
        if charset:
            rows = self._fetch_all("SHOW COLLATION WHERE Charset = :charset", charset=charset)
        else:
            rows = self._fetch_all("SHOW COLLATION")
        return [
            CollationInfo(
                collation=row["Collation"],
                charset=row["Charset"],
                id=_int(row["Id"]),
                is_default=row["Default"] == "Yes",
                is_compiled=row["Compiled"] == "Yes",
                sort_length=_int(row["Sortlen"]),
            )
            for row in rows
        ]

    @schema_operation
    def set_table_charset(
        self, table: str, charset: str, collation: Optional[str] = None
    ) -> SchemaOperationResult:
        sql = f"ALTER TABLE {self.q(table)} CONVERT TO CHARACTER SET {charset}"
        if collation:
            sql += f" COLLATE {collation}"
        return self._run_statement(sql)

    @schema_operation
    def set_database_charset(
        self, database: str, charset: str, collation: Optional[str] = None
    ) -> SchemaOperationResult:
        sql = f"ALTER DATABASE {self.q(database)} CHARACTER SET {charset}"
        if collation:
            sql += f" COLLATE {collation}"
        return self._run_statement(sql)

    # ==================== 分区 ====================

    def get_partitions(self, table: str, database: Optional[str] = None) -> List[PartitionInfo]:
        self.ensure_connected("get_partitions")
        rows = self._fetch_all(
            """
            SELECT PARTITION_NAME AS name, SUBPARTITION_NAME AS subpartition_name,
                   PARTITION_ORDINAL_POSITION AS ordinal_position,
                   PARTITION_METHOD AS method, PARTITION_EXPRESSION AS expression,
                   PARTITION_DESCRIPTION AS description, TABLE_ROWS AS table_rows,
                   DATA_LENGTH AS data_length, INDEX_LENGTH AS index_length,
                   PARTITION_COMMENT AS comment
            FROM information_schema.PARTITIONS
            WHERE TABLE_SCHEMA = COALESCE(:schema, DATABASE()) AND TABLE_NAME = :table
            ORDER BY PARTITION_ORDINAL_POSITION, SUBPARTITION_ORDINAL_POSITION
            """,
            schema=self._schema(database) or None,
            table=table,
        )
        return [
            PartitionInfo(
                name=row["name"],
                subpartition_name=row["subpartition_name"],
                ordinal_position=_int(row["ordinal_position"]),
                method=row["method"],
                expression=row["expression"],
                description=row["description"],
                rows=_int(row["table_rows"]),
                data_length=_int(row["data_length"]),
                index_length=_int(row["index_length"]),
                comment=row["comment"] or None,
            )
            for row in rows
            if row["name"] is not None
        ]

    @schema_operation
    def create_partition(
        self,
        table: str,
        partition_name: str,
        partition_type: str,
        values: Optional[str] = None,
    ) -> SchemaOperationResult:
        """
        新增分区

        Args:
            partition_type: RANGE / LIST / HASH / KEY
            values: RANGE 的上界或 LIST 的取值列表
        """
        kind = partition_type.upper()
        if kind == "RANGE":
            partition = f"PARTITION {self.q(partition_name)} VALUES LESS THAN ({values})"
        elif kind == "LIST":
            partition = f"PARTITION {self.q(partition_name)} VALUES IN ({values})"
        else:
            partition = f"PARTITION {self.q(partition_name)}"
        return self._run_statement(f"ALTER TABLE {self.q(table)} ADD PARTITION ({partition})")

    @schema_operation
    def drop_partition(self, table: str, partition_name: str) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self.q(table)} DROP PARTITION {self.q(partition_name)}"
        )

    # ==================== 事件 ====================

    def get_events(self) -> List[ScheduledEvent]:
        self.ensure_connected("get_events")
        rows = self._fetch_all(
            """
            SELECT EVENT_NAME AS name, EVENT_SCHEMA AS event_schema, DEFINER AS definer,
                   TIME_ZONE AS time_zone, EVENT_TYPE AS event_type, EXECUTE_AT AS execute_at,
                   INTERVAL_VALUE AS interval_value, INTERVAL_FIELD AS interval_field,
                   STARTS AS starts, ENDS AS ends, STATUS AS status,
                   ON_COMPLETION AS on_completion, CREATED AS created,
                   LAST_ALTERED AS last_altered, LAST_EXECUTED AS last_executed,
                   EVENT_COMMENT AS comment
            FROM information_schema.EVENTS
            WHERE EVENT_SCHEMA = DATABASE()
            ORDER BY EVENT_NAME
            """
        )
        return [
            ScheduledEvent(
                name=row["name"],
                database=row["event_schema"],
                definer=row["definer"],
                time_zone=row["time_zone"],
                event_type=row["event_type"],
                execute_at=_text(row["execute_at"]),
                interval_value=_text(row["interval_value"]),
                interval_field=row["interval_field"],
                starts=_text(row["starts"]),
                ends=_text(row["ends"]),
                status=row["status"],
                on_completion=row["on_completion"],
                created=_text(row["created"]),
                last_altered=_text(row["last_altered"]),
                last_executed=_text(row["last_executed"]),
                comment=row["comment"] or None,
            )
            for row in rows
        ]

    def get_event_definition(self, name: str) -> str:
        self.ensure_connected("get_event_definition")
        try:
            row = self._exec(f"SHOW CREATE EVENT {self.q(name)}").first()
        except Exception as e:
            return f"-- Error getting event definition: {native_message(e)}"
        definition = row._mapping.get("Create Event") if row is not None else None
        return definition or f"-- EVENT '{name}' not found"

    @schema_operation
    def create_event(self, event: EventDefinition) -> SchemaOperationResult:
        sql = f"CREATE EVENT {self.q(event.name)}\n  ON SCHEDULE {event.schedule}\n"
        if event.on_completion:
            sql += f"  ON COMPLETION {event.on_completion}\n"
        if event.status:
            sql += f"  {event.status}\n"
        if event.comment:
            sql += f"  COMMENT {format_default(event.comment)}\n"
        sql += f"  DO {event.body}"
        return self._run_statement(sql)

    @schema_operation
    def drop_event(self, name: str) -> SchemaOperationResult:
        return self._run_statement(f"DROP EVENT IF EXISTS {self.q(name)}")

    @schema_operation
    def alter_event(self, request: AlterEventRequest) -> SchemaOperationResult:
        sql = f"ALTER EVENT {self.q(request.name)}"
        if request.schedule:
            sql += f"\n  ON SCHEDULE {request.schedule}"
        if request.on_completion:
            sql += f"\n  ON COMPLETION {request.on_completion}"
        if request.new_name:
            sql += f"\n  RENAME TO {self.q(request.new_name)}"
        if request.status:
            sql += f"\n  {request.status}"
        if request.comment is not None:
            sql += f"\n  COMMENT {format_default(request.comment)}"
        if request.body:
            sql += f"\n  DO {request.body}"
        return self._run_statement(sql)

    # ==================== 触发器 ====================

    def get_triggers(self, database: Optional[str] = None, table: Optional[str] = None) -> List[Trigger]:
        self.ensure_connected("get_triggers")
        sql = """
            SELECT TRIGGER_NAME AS name, TRIGGER_SCHEMA AS trigger_schema,
                   EVENT_OBJECT_TABLE AS table_name, EVENT_MANIPULATION AS event,
                   ACTION_TIMING AS timing, ACTION_STATEMENT AS action_statement
            FROM information_schema.TRIGGERS
            WHERE TRIGGER_SCHEMA = COALESCE(:schema, DATABASE())
        """
        params: Dict[str, Any] = {"schema": self._schema(database) or None}
        if table:
            sql += " AND EVENT_OBJECT_TABLE = :table"
            params["table"] = table
        rows = self._fetch_all(sql + " ORDER BY TRIGGER_NAME", **params)
        return [
            Trigger(
                name=row["name"],
                table=row["table_name"],
                event=row["event"],
                timing=row["timing"],
                schema=row["trigger_schema"],
                enabled=True,
                definition=row["action_statement"],
            )
            for row in rows
        ]

    def get_trigger_definition(
        self, name: str, table: Optional[str] = None, database: Optional[str] = None
    ) -> str:
        self.ensure_connected("get_trigger_definition")
        try:
            row = self._exec(f"SHOW CREATE TRIGGER {self._qualified(name, database)}").first()
        except Exception as e:
            return f"-- Error getting trigger definition: {native_message(e)}"
        definition = row._mapping.get("SQL Original Statement") if row is not None else None
        return definition or f"-- Trigger '{name}' not found"

    @schema_operation
    def create_trigger(self, request: CreateTriggerRequest) -> SchemaOperationResult:
        trigger = request.trigger
        sql = (
            f"CREATE TRIGGER {self.q(trigger.name)}\n"
            f"{trigger.timing} {trigger.event}\n"
            f"ON {self.q(trigger.table)} FOR EACH ROW\n"
            f"{trigger.body}"
        )
        return self._run_statement(sql)

    @schema_operation
    def drop_trigger(self, request: DropTriggerRequest) -> SchemaOperationResult:
        return self._run_statement(f"DROP TRIGGER IF EXISTS {self.q(request.trigger_name)}")
