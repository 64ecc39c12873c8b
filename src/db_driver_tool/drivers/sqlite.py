"""
SQLite 驱动

嵌入式数据库驱动，基于 SQLAlchemy 的 pysqlite 方言。SQLite 无法原地修改列类型、
可空性、唯一性，也无法增删外键，这些操作通过“重建表”流程完成：

快照列/索引/外键 → BEGIN → 创建临时表 → 复制数据 → 删除原表 → 重命名临时表
→ 重建索引 → COMMIT；任一步失败则 ROLLBACK 并返回最初的错误。
"""

import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.requests import (
    SQLITE_DATA_TYPES,
    AddColumnRequest,
    AddForeignKeyRequest,
    ColumnDefinition,
    CreateTriggerRequest,
    CreateUserRequest,
    CreateViewRequest,
    DropColumnRequest,
    DropForeignKeyRequest,
    DropTriggerRequest,
    DropUserRequest,
    ModifyColumnRequest,
    RenameColumnRequest,
    RenameViewRequest,
    SchemaOperationResult,
)
from ..core.tls import TLSOptions
from ..core.types import (
    Column,
    ColumnInfo,
    ConnectionConfig,
    DatabaseInfo,
    DatabaseType,
    DatabaseUser,
    ForeignKey,
    Index,
    Routine,
    TableInfo,
    TableObjectType,
    Trigger,
    UserPrivilege,
)
from ..utils.logging_utils import get_logger
from ..utils.path_utils import PathHelper
from .base import failed, schema_operation
from .sql_base import SQLDriver, format_default, native_message, type_with_size

logger = get_logger(__name__)

MEMORY_DATABASE = ":memory:"

# 触发重建表流程的错误特征
RECREATE_ERROR_PATTERNS = ("no such column", "syntax error")

_TRIGGER_PATTERN = re.compile(
    r"\b(BEFORE|AFTER|INSTEAD\s+OF)\s+(INSERT|UPDATE|DELETE)\b", re.IGNORECASE
)
_VIEW_SELECT_PATTERN = re.compile(r"\bAS\s+(SELECT.+)$", re.IGNORECASE | re.DOTALL)


@dataclass
class _TableSnapshot:
    """重建表前采集的表结构"""

    columns: List[Column]
    indexes: List[Tuple[Index, str]]
    foreign_keys: List[ForeignKey]
    ddl: str

    @property
    def has_autoincrement(self) -> bool:
        return "AUTOINCREMENT" in self.ddl.upper()


@dataclass
class _TablePlan:
    """
    重建后的表结构

    Attributes:
        definitions: 列定义 SQL
        constraints: 表级约束 SQL（主键、唯一、外键）
        column_map: 旧列名 → 新列名，仅包含需要复制数据的列
    """

    definitions: List[str] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    column_map: Dict[str, str] = field(default_factory=dict)


def _storage_class(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bool, int)):
        return "INTEGER"
    if isinstance(value, float):
        return "REAL"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "BLOB"
    return "TEXT"


class SQLiteDriver(SQLDriver):
    """
    SQLite 驱动

    Example:
        >>> driver = SQLiteDriver()
        >>> driver.connect(ConnectionConfig.from_dict({"type": "sqlite", "database": ":memory:"}))
        >>> driver.execute("SELECT 1 AS one").rows
        [{'one': 1}]
    """

    db_type = DatabaseType.SQLITE
    QUOTE = '"'
    PLACEHOLDER = "?"
    URL_TEMPLATE = "sqlite:///{path}"
    DATA_TYPES = SQLITE_DATA_TYPES

    @property
    def path(self) -> str:
        if self.config is None:
            return MEMORY_DATABASE
        return self.config.filepath or self.config.database or MEMORY_DATABASE

    def _build_connection_url(self, config: ConnectionConfig, tls: Optional[TLSOptions]) -> str:
        return self.URL_TEMPLATE.format(path=config.filepath or config.database or MEMORY_DATABASE)

    def _after_connect(self) -> None:
        if self.path != MEMORY_DATABASE:
            self._exec("PRAGMA journal_mode = WAL").scalar()

    def _server_details(self) -> Tuple[Optional[str], Dict[str, str]]:
        version = self._exec("SELECT sqlite_version()").scalar()
        info: Dict[str, str] = {}
        if self.path != MEMORY_DATABASE and os.path.exists(self.path):
            info["File Size"] = PathHelper.format_file_size(os.path.getsize(self.path))
        info["Journal Mode"] = str(self._exec("PRAGMA journal_mode").scalar() or "")
        return f"SQLite {version or 'Unknown'}", info

    def _result_columns(
        self, keys: List[str], metadata: List[Any], rows: List[Dict[str, Any]]
    ) -> List[ColumnInfo]:
        """列类型取第一个非空值的存储类别"""
        columns: List[ColumnInfo] = []
        for name in keys:
            storage = next(
                (s for s in (_storage_class(row.get(name)) for row in rows) if s), None
            )
            columns.append(ColumnInfo(name=name, type=storage or "unknown"))
        return columns

    # ==================== 元数据 ====================

    def get_databases(self) -> List[DatabaseInfo]:
        self.ensure_connected("get_databases")
        return [DatabaseInfo(name=os.path.basename(self.path) or "main")]

    def get_tables(self, database: Optional[str] = None) -> List[TableInfo]:
        self.ensure_connected("get_tables")
        rows = self._fetch_all(
            "SELECT name, type FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [
            TableInfo(
                name=row["name"],
                type=TableObjectType.VIEW if row["type"] == "view" else TableObjectType.TABLE,
            )
            for row in rows
        ]

    def _pragma(self, pragma: str, name: str) -> List[Dict[str, Any]]:
        result = self._exec(f"PRAGMA {pragma}({self.q(name)})")
        return [dict(row._mapping) for row in result]

    def get_columns(self, table: str, database: Optional[str] = None) -> List[Column]:
        self.ensure_connected("get_columns")
        return [
            Column(
                name=row["name"],
                type=row["type"] or "TEXT",
                nullable=row["notnull"] == 0,
                default_value=row["dflt_value"],
                primary_key=row["pk"] > 0,
                auto_increment=row["pk"] > 0 and (row["type"] or "").upper() == "INTEGER",
            )
            for row in self._pragma("table_info", table)
        ]

    def _index_list(self, table: str) -> List[Tuple[Index, str]]:
        """返回 (索引, 来源)；来源 c=CREATE INDEX，u=UNIQUE 约束，pk=主键"""
        indexes: List[Tuple[Index, str]] = []
        for row in self._pragma("index_list", table):
            columns = [info["name"] for info in self._pragma("index_info", row["name"])]
            index = Index(
                name=row["name"],
                columns=columns,
                unique=row["unique"] == 1,
                primary=row["origin"] == "pk",
            )
            indexes.append((index, row["origin"]))
        return indexes

    def get_indexes(self, table: str, database: Optional[str] = None) -> List[Index]:
        self.ensure_connected("get_indexes")
        return [index for index, _ in self._index_list(table)]

    def get_foreign_keys(self, table: str, database: Optional[str] = None) -> List[ForeignKey]:
        self.ensure_connected("get_foreign_keys")
        return [
            ForeignKey(
                name=f"fk_{table}_{row['from']}",
                column=row["from"],
                referenced_table=row["table"],
                referenced_column=row["to"],
                on_update=row["on_update"],
                on_delete=row["on_delete"],
            )
            for row in self._pragma("foreign_key_list", table)
        ]

    def get_table_ddl(self, table: str, database: Optional[str] = None) -> str:
        self.ensure_connected("get_table_ddl")
        row = self._fetch_one(
            "SELECT sql FROM sqlite_master WHERE name = :name AND type IN ('table', 'view')",
            name=table,
        )
        return (row or {}).get("sql") or ""

    def get_view_ddl(self, view: str, database: Optional[str] = None) -> str:
        self.ensure_connected("get_view_ddl")
        row = self._fetch_one(
            "SELECT sql FROM sqlite_master WHERE type = 'view' AND name = :name", name=view
        )
        return (row or {}).get("sql") or ""

    # ==================== 列定义 ====================

    def _column_definition(self, column: ColumnDefinition, constraints: bool = True) -> str:
        """
        生成列定义

        Args:
            column: 列定义
            constraints: 是否包含 PRIMARY KEY / AUTOINCREMENT / UNIQUE，
                ALTER TABLE ADD COLUMN 时为 False
        """
        sql = f"{self.q(column.name)} {type_with_size(column)}"
        if constraints and column.primary_key:
            sql += " PRIMARY KEY"
            if column.auto_increment:
                sql += " AUTOINCREMENT"
        if not column.nullable and not (constraints and column.primary_key):
            sql += " NOT NULL"
        if constraints and column.unique and not column.primary_key:
            sql += " UNIQUE"
        if column.default_value is not None:
            sql += f" DEFAULT {format_default(column.default_value)}"
        return sql

    def _existing_column_sql(self, column: Column, inline_pk: bool, autoincrement: bool) -> str:
        """由 PRAGMA table_info 的结果还原列定义，默认值为原样 SQL 文本"""
        sql = f"{self.q(column.name)} {column.type}"
        if inline_pk:
            sql += " PRIMARY KEY"
            if autoincrement and column.auto_increment:
                sql += " AUTOINCREMENT"
        if not column.nullable:
            sql += " NOT NULL"
        if column.default_value is not None:
            sql += f" DEFAULT {column.default_value}"
        return sql

    # ==================== 重建表 ====================

    def _plan_table(
        self,
        snapshot: _TableSnapshot,
        replace: Optional[Tuple[str, ColumnDefinition]] = None,
        drop: Optional[str] = None,
        add_foreign_key: Optional[str] = None,
        drop_foreign_key: Optional[str] = None,
    ) -> _TablePlan:
        """根据快照与修改项计算重建后的表结构"""
        plan = _TablePlan()
        pk_columns = [c.name for c in snapshot.columns if c.primary_key]
        inline_pk = len(pk_columns) == 1

        for column in snapshot.columns:
            if column.name == drop:
                continue
            if replace is not None and column.name == replace[0]:
                new_definition = replace[1]
                plan.definitions.append(self._column_definition(new_definition))
                plan.column_map[column.name] = new_definition.name
                continue
            plan.definitions.append(
                self._existing_column_sql(
                    column, inline_pk and column.primary_key, snapshot.has_autoincrement
                )
            )
            plan.column_map[column.name] = column.name

        replaced_pk = replace is not None and replace[1].primary_key
        if not inline_pk and pk_columns and not replaced_pk:
            remaining = [plan.column_map[c] for c in pk_columns if c in plan.column_map]
            if remaining:
                plan.constraints.append(
                    "PRIMARY KEY (" + ", ".join(self.q(c) for c in remaining) + ")"
                )

        for index, origin in snapshot.indexes:
            if origin != "u":
                continue
            if not all(c in plan.column_map for c in index.columns):
                continue
            columns = ", ".join(self.q(plan.column_map[c]) for c in index.columns)
            plan.constraints.append(f"UNIQUE ({columns})")

        for fk in snapshot.foreign_keys:
            if fk.name == drop_foreign_key or fk.column not in plan.column_map:
                continue
            clause = (
                f"CONSTRAINT {self.q(fk.name)} FOREIGN KEY ({self.q(plan.column_map[fk.column])}) "
                f"REFERENCES {self.q(fk.referenced_table)} ({self.q(fk.referenced_column)})"
            )
            if fk.on_update:
                clause += f" ON UPDATE {fk.on_update}"
            if fk.on_delete:
                clause += f" ON DELETE {fk.on_delete}"
            plan.constraints.append(clause)

        if add_foreign_key:
            plan.constraints.append(add_foreign_key)
        return plan

    def _recreate_table(
        self, table: str, planner: Callable[[_TableSnapshot], _TablePlan]
    ) -> SchemaOperationResult:
        """
        以重建表的方式修改表结构

        整个流程在一个事务中执行。失败时尝试回滚，回滚本身的错误只记录日志，
        返回的错误始终是最初导致失败的错误。

        Returns:
            SchemaOperationResult: sql 为已执行语句以 ";\\n" 连接的文本
        """
        temp_table = f"_{table}_temp_{int(time.time() * 1000)}"
        statements: List[str] = []

        def run(sql: str) -> None:
            self._exec(sql)
            statements.append(sql)

        try:
            snapshot = _TableSnapshot(
                columns=self.get_columns(table),
                indexes=self._index_list(table),
                foreign_keys=self.get_foreign_keys(table),
                ddl=self.get_table_ddl(table),
            )
            if not snapshot.columns:
                return failed(f"no such table: {table}")
            plan = planner(snapshot)

            run("BEGIN TRANSACTION")
            body = ",\n  ".join(plan.definitions + plan.constraints)
            run(f"CREATE TABLE {self.q(temp_table)} (\n  {body}\n)")

            old_columns = ", ".join(self.q(c) for c in plan.column_map)
            new_columns = ", ".join(self.q(c) for c in plan.column_map.values())
            run(
                f"INSERT INTO {self.q(temp_table)} ({new_columns}) "
                f"SELECT {old_columns} FROM {self.q(table)}"
            )
            run(f"DROP TABLE {self.q(table)}")
            run(f"ALTER TABLE {self.q(temp_table)} RENAME TO {self.q(table)}")

            for index, origin in snapshot.indexes:
                if origin != "c":
                    continue
                if not all(c in plan.column_map for c in index.columns):
                    continue
                unique = "UNIQUE " if index.unique else ""
                columns = ", ".join(self.q(plan.column_map[c]) for c in index.columns)
                run(f"CREATE {unique}INDEX {self.q(index.name)} ON {self.q(table)} ({columns})")

            run("COMMIT")
            logger.info(f"表 {table} 重建完成")
            return SchemaOperationResult(success=True, sql=";\n".join(statements))
        except Exception as e:
            message = native_message(e)
            logger.error(f"重建表 {table} 失败: {message}")
            if statements:
                try:
                    self._exec("ROLLBACK")
                except Exception as rollback_error:
                    logger.warning(f"重建表回滚失败: {native_message(rollback_error)}")
            return failed(message, ";\n".join(statements))

    # ==================== 列操作 ====================

    @schema_operation
    def add_column(self, request: AddColumnRequest) -> SchemaOperationResult:
        column = request.column
        if column.primary_key:
            return failed(
                "SQLite does not support adding PRIMARY KEY columns. Table must be recreated."
            )
        if not column.nullable and column.default_value is None:
            return failed("SQLite requires a default value when adding NOT NULL columns")
        sql = (
            f"ALTER TABLE {self.q(request.table)} "
            f"ADD COLUMN {self._column_definition(column, constraints=False)}"
        )
        return self._run_statement(sql)

    @schema_operation
    def modify_column(self, request: ModifyColumnRequest) -> SchemaOperationResult:
        return self._recreate_table(
            request.table,
            lambda snapshot: self._plan_table(
                snapshot, replace=(request.old_name, request.new_definition)
            ),
        )

    @schema_operation
    def drop_column(self, request: DropColumnRequest) -> SchemaOperationResult:
        """先尝试 ALTER TABLE DROP COLUMN，旧版本不支持时回退到重建表"""
        sql = f"ALTER TABLE {self.q(request.table)} DROP COLUMN {self.q(request.column_name)}"
        result = self._run_statement(sql)
        if result.success:
            return result
        if not any(pattern in (result.error or "") for pattern in RECREATE_ERROR_PATTERNS):
            return result
        logger.info(f"DROP COLUMN 不可用，改为重建表: {result.error}")
        return self._recreate_table(
            request.table, lambda snapshot: self._plan_table(snapshot, drop=request.column_name)
        )

    @schema_operation
    def rename_column(self, request: RenameColumnRequest) -> SchemaOperationResult:
        return self._run_statement(
            f"ALTER TABLE {self.q(request.table)} "
            f"RENAME COLUMN {self.q(request.old_name)} TO {self.q(request.new_name)}"
        )

    # ==================== 外键 ====================

    @schema_operation
    def add_foreign_key(self, request: AddForeignKeyRequest) -> SchemaOperationResult:
        clause = self._foreign_key_clause(request.foreign_key)
        return self._recreate_table(
            request.table, lambda snapshot: self._plan_table(snapshot, add_foreign_key=clause)
        )

    @schema_operation
    def drop_foreign_key(self, request: DropForeignKeyRequest) -> SchemaOperationResult:
        return self._recreate_table(
            request.table,
            lambda snapshot: self._plan_table(snapshot, drop_foreign_key=request.constraint_name),
        )

    # ==================== 视图 ====================

    @schema_operation
    def create_view(self, request: CreateViewRequest) -> SchemaOperationResult:
        view = request.view
        create = "CREATE VIEW IF NOT EXISTS" if view.replace_if_exists else "CREATE VIEW"
        return self._run_statement(f"{create} {self.q(view.name)} AS {view.select_statement}")

    @schema_operation
    def rename_view(self, request: RenameViewRequest) -> SchemaOperationResult:
        """SQLite 不支持重命名视图，按原定义删除后重建"""
        match = _VIEW_SELECT_PATTERN.search(self.get_view_ddl(request.old_name))
        if match is None:
            return failed("Could not parse view definition")

        drop_sql = f"DROP VIEW {self.q(request.old_name)}"
        create_sql = f"CREATE VIEW {self.q(request.new_name)} AS {match.group(1)}"
        sql = f"{drop_sql};\n{create_sql}"
        try:
            self._exec("BEGIN TRANSACTION")
            self._exec(drop_sql)
            self._exec(create_sql)
            self._exec("COMMIT")
            return SchemaOperationResult(success=True, sql=sql)
        except Exception as e:
            try:
                self._exec("ROLLBACK")
            except Exception as rollback_error:
                logger.warning(f"重命名视图回滚失败: {native_message(rollback_error)}")
            return failed(native_message(e), sql)

    # ==================== 例程与用户 ====================

    def get_routines(self, database: Optional[str] = None) -> List[Routine]:
        return []

    def get_routine_definition(
        self, name: str, routine_type: str, database: Optional[str] = None
    ) -> str:
        return "-- SQLite does not support stored procedures or functions"

    def get_users(self) -> List[DatabaseUser]:
        return []

    def get_user_privileges(self, username: str, host: Optional[str] = None) -> List[UserPrivilege]:
        return []

    def create_user(self, request: CreateUserRequest) -> SchemaOperationResult:
        return failed("SQLite does not support user management")

    def drop_user(self, request: DropUserRequest) -> SchemaOperationResult:
        return failed("SQLite does not support user management")

    # ==================== 触发器 ====================

    def get_triggers(self, database: Optional[str] = None, table: Optional[str] = None) -> List[Trigger]:
        """从 sqlite_master 读取触发器，时机与事件由定义文本解析"""
        self.ensure_connected("get_triggers")
        sql = "SELECT name, tbl_name, sql FROM sqlite_master WHERE type = 'trigger'"
        if table:
            sql += " AND tbl_name = :table"
        rows = self._fetch_all(sql + " ORDER BY name", **({"table": table} if table else {}))

        triggers: List[Trigger] = []
        for row in rows:
            match = _TRIGGER_PATTERN.search(row["sql"] or "")
            timing, event = "UNKNOWN", "UNKNOWN"
            if match is not None:
                timing = " ".join(match.group(1).upper().split())
                event = match.group(2).upper()
            triggers.append(
                Trigger(
                    name=row["name"],
                    table=row["tbl_name"],
                    timing=timing,
                    event=event,
                    definition=row["sql"],
                )
            )
        return triggers

    def get_trigger_definition(
        self, name: str, table: Optional[str] = None, database: Optional[str] = None
    ) -> str:
        self.ensure_connected("get_trigger_definition")
        row = self._fetch_one(
            "SELECT sql FROM sqlite_master WHERE type = 'trigger' AND name = :name", name=name
        )
        return (row or {}).get("sql") or f"-- Trigger '{name}' not found"

    @schema_operation
    def create_trigger(self, request: CreateTriggerRequest) -> SchemaOperationResult:
        trigger = request.trigger
        sql = f"CREATE TRIGGER {self.q(trigger.name)}\n"
        sql += f"{trigger.timing} {trigger.event} ON {self.q(trigger.table)}\n"
        if trigger.for_each_row:
            sql += "FOR EACH ROW\n"
        if trigger.condition:
            sql += f"WHEN {trigger.condition}\n"
        sql += f"BEGIN\n{trigger.body}\nEND"
        return self._run_statement(sql)

    @schema_operation
    def drop_trigger(self, request: DropTriggerRequest) -> SchemaOperationResult:
        return self._run_statement(f"DROP TRIGGER IF EXISTS {self.q(request.trigger_name)}")
