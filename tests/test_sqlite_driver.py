"""
SQLite 驱动测试

使用临时目录中的真实数据库文件。
"""

import os
import shutil
import tempfile
from unittest.mock import patch

import pytest

from db_driver_tool.core.exceptions import NOT_CONNECTED_MESSAGE, ConnectionError, NotConnectedError
from db_driver_tool.core.requests import (
    AddColumnRequest,
    AddForeignKeyRequest,
    ColumnDefinition,
    CreateIndexRequest,
    CreateTableRequest,
    CreateTriggerRequest,
    CreateUserRequest,
    CreateViewRequest,
    DeleteRowRequest,
    DropColumnRequest,
    DropForeignKeyRequest,
    DropTableRequest,
    ForeignKeyDefinition,
    IndexDefinition,
    InsertRowRequest,
    ModifyColumnRequest,
    RenameColumnRequest,
    RenameTableRequest,
    RenameViewRequest,
    TableDefinition,
    TriggerDefinition,
    UpdateRowRequest,
    UserDefinition,
    ViewDefinition,
)
from db_driver_tool.core.types import (
    ConnectionConfig,
    DataOptions,
    Filter,
    SortDirection,
    TableObjectType,
)
from db_driver_tool.drivers.sqlite import SQLiteDriver


class TestSQLiteDriver:
    """SQLite 驱动测试类"""

    def setup_method(self):
        """测试前准备：创建临时数据库文件并建立连接"""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.config = ConnectionConfig.from_dict({"type": "sqlite", "filepath": self.db_path})
        self.driver = SQLiteDriver()
        self.driver.connect(self.config)
        self.driver.execute_many(
            "CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "name TEXT NOT NULL, age INTEGER);"
            "CREATE INDEX idx_users_name ON users (name);"
            "INSERT INTO users (name, age) VALUES ('alice', 30);"
            "INSERT INTO users (name, age) VALUES ('bob', 25);"
            "INSERT INTO users (name, age) VALUES ('carol', 41);"
            "INSERT INTO users (name, age) VALUES ('dave', NULL);"
        )

    def teardown_method(self):
        """测试后清理"""
        self.driver.disconnect()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    # ==================== 连接 ====================

    def test_lifecycle(self):
        """测试连接状态与重复断开"""
        assert self.driver.is_connected
        assert self.driver.ping() is True
        self.driver.disconnect()
        assert not self.driver.is_connected
        assert self.driver.ping() is False
        self.driver.disconnect()

    def test_connect_failure(self):
        """测试无法打开的文件路径"""
        driver = SQLiteDriver()
        config = ConnectionConfig.from_dict(
            {"type": "sqlite", "filepath": os.path.join(self.temp_dir, "missing", "x.db")}
        )
        with pytest.raises(ConnectionError) as exc_info:
            driver.connect(config)
        assert exc_info.value.error_code == "CONNECTION_FAILED"
        assert not driver.is_connected

    def test_test_connection(self):
        """测试连接测试返回版本与延迟"""
        result = SQLiteDriver().test_connection(self.config)
        assert result.success is True
        assert result.server_version.startswith("SQLite ")
        assert result.latency is not None
        assert result.server_info["Journal Mode"] == "wal"

    def test_not_connected(self):
        """测试未连接时的行为"""
        driver = SQLiteDriver()
        assert driver.execute("SELECT 1").error == NOT_CONNECTED_MESSAGE
        with pytest.raises(NotConnectedError):
            driver.get_tables()
        result = driver.insert_row(InsertRowRequest(table="users", values={"name": "x"}))
        assert result.success is False
        assert result.error == NOT_CONNECTED_MESSAGE

    def test_context_manager(self):
        """测试上下文管理器退出时断开连接"""
        with SQLiteDriver() as driver:
            driver.connect(ConnectionConfig.from_dict({"type": "sqlite", "database": ":memory:"}))
            assert driver.execute("SELECT 1 AS one").rows == [{"one": 1}]
        assert not driver.is_connected

    # ==================== 执行 ====================

    def test_execute_select(self):
        """测试查询返回列与行"""
        result = self.driver.execute("SELECT name, age FROM users WHERE age > ? ORDER BY age", [26])
        assert result.error is None
        assert result.rows == [{"name": "alice", "age": 30}, {"name": "carol", "age": 41}]
        assert [c.name for c in result.columns] == ["name", "age"]
        assert result.columns[1].type == "INTEGER"
        assert result.row_count == 2

    def test_execute_write(self):
        """测试写语句返回影响行数"""
        result = self.driver.execute("UPDATE users SET age = age + 1 WHERE age IS NOT NULL")
        assert result.affected_rows == 3

    def test_execute_error(self):
        """测试错误写入结果而不抛出"""
        result = self.driver.execute("SELECT * FROM missing_table")
        assert "no such table" in result.error

    def test_execute_many_stops_at_error(self):
        """测试多语句在第一条错误处停止"""
        result = self.driver.execute_many("SELECT 1; SELECT * FROM nope; SELECT 2")
        assert len(result.results) == 2
        assert result.results[0].error is None
        assert result.results[1].error is not None

    # ==================== 元数据 ====================

    def test_metadata(self):
        """测试表、列、索引与 DDL"""
        assert [d.name for d in self.driver.get_databases()] == ["test.db"]
        tables = self.driver.get_tables()
        assert [t.name for t in tables] == ["users"]

        columns = {c.name: c for c in self.driver.get_columns("users")}
        assert columns["id"].primary_key is True
        assert columns["id"].auto_increment is True
        assert columns["name"].nullable is False
        assert self.driver.get_primary_key_columns("users") == ["id"]

        indexes = self.driver.get_indexes("users")
        assert [i.name for i in indexes] == ["idx_users_name"]
        assert "CREATE TABLE users" in self.driver.get_table_ddl("users")

    def test_get_table_data(self):
        """测试过滤、排序与分页"""
        options = DataOptions(
            filters=[Filter("age", "IS NOT NULL")],
            order_by="age",
            order_direction=SortDirection.DESC,
            limit=2,
            offset=1,
        )
        result = self.driver.get_table_data("users", options)
        assert result.total_count == 3
        assert [row["name"] for row in result.rows] == ["alice", "bob"]
        assert result.offset == 1
        assert result.limit == 2

    def test_get_table_data_like_and_in(self):
        """测试 LIKE 与 IN 过滤"""
        options = DataOptions(filters=[Filter("name", "LIKE", "a"), Filter("id", "IN", [1, 3, 4])])
        result = self.driver.get_table_data("users", options)
        assert sorted(row["name"] for row in result.rows) == ["alice", "carol", "dave"]

    # ==================== 行操作 ====================

    def test_row_operations(self):
        """测试插入、更新与删除行"""
        inserted = self.driver.insert_row(
            InsertRowRequest(table="users", values={"name": "erin", "age": 19})
        )
        assert inserted.success
        assert inserted.affected_rows == 1

        updated = self.driver.update_row(
            UpdateRowRequest(table="users", primary_key_values={"id": 5}, values={"age": 20})
        )
        assert updated.success
        assert self.driver.execute("SELECT age FROM users WHERE id = 5").rows == [{"age": 20}]

        deleted = self.driver.delete_row(DeleteRowRequest(table="users", primary_key_values={"id": 5}))
        assert deleted.affected_rows == 1

    def test_row_operations_require_keys(self):
        """测试缺少主键值的行操作"""
        assert not self.driver.delete_row(DeleteRowRequest(table="users", primary_key_values={})).success
        result = self.driver.update_row(
            UpdateRowRequest(table="users", primary_key_values={"id": 1}, values={})
        )
        assert result.error == "No values to update"

    # ==================== 表结构 ====================

    def test_create_and_drop_table(self):
        """测试建表（含索引）与删表"""
        request = CreateTableRequest(
            table=TableDefinition(
                name="products",
                columns=[
                    ColumnDefinition("id", "INTEGER", primary_key=True, auto_increment=True),
                    ColumnDefinition("title", "TEXT", nullable=False, default_value="it's"),
                    ColumnDefinition("sku", "TEXT", unique=True),
                ],
                indexes=[IndexDefinition("idx_products_title", ["title"])],
            )
        )
        result = self.driver.create_table(request)
        assert result.success, result.error
        assert "AUTOINCREMENT" in result.sql
        assert "DEFAULT 'it''s'" in result.sql
        assert "idx_products_title" in [i.name for i in self.driver.get_indexes("products")]

        assert self.driver.drop_table(DropTableRequest(table="products")).success
        assert "products" not in [t.name for t in self.driver.get_tables()]

    def test_rename_table(self):
        """测试重命名表"""
        assert self.driver.rename_table(RenameTableRequest("users", "people")).success
        assert [t.name for t in self.driver.get_tables()] == ["people"]

    def test_add_and_rename_column(self):
        """测试加列与重命名列"""
        result = self.driver.add_column(
            AddColumnRequest("users", ColumnDefinition("email", "TEXT", nullable=False, default_value=""))
        )
        assert result.success, result.error
        assert self.driver.rename_column(RenameColumnRequest("users", "email", "mail")).success
        assert "mail" in [c.name for c in self.driver.get_columns("users")]

    def test_add_column_restrictions(self):
        """测试 SQLite 不支持的加列方式"""
        pk = self.driver.add_column(AddColumnRequest("users", ColumnDefinition("k", "INTEGER", primary_key=True)))
        assert "PRIMARY KEY" in pk.error
        not_null = self.driver.add_column(AddColumnRequest("users", ColumnDefinition("k", "TEXT", nullable=False)))
        assert not_null.success is False

    def test_modify_column_recreates_table(self):
        """测试修改列通过重建表完成并保留数据与索引"""
        result = self.driver.modify_column(
            ModifyColumnRequest("users", "age", ColumnDefinition("years", "TEXT"))
        )
        assert result.success, result.error
        assert result.sql.startswith("BEGIN TRANSACTION")
        assert result.sql.endswith("COMMIT")

        columns = {c.name: c for c in self.driver.get_columns("users")}
        assert "age" not in columns
        assert columns["years"].type == "TEXT"
        assert columns["id"].primary_key is True
        assert [i.name for i in self.driver.get_indexes("users")] == ["idx_users_name"]
        rows = self.driver.execute("SELECT name, years FROM users ORDER BY id").rows
        assert rows[0] == {"name": "alice", "years": "30"}
        assert len(rows) == 4
        assert [t.name for t in self.driver.get_tables()] == ["users"]

    def test_modify_missing_table(self):
        """测试重建不存在的表"""
        result = self.driver.modify_column(
            ModifyColumnRequest("ghost", "a", ColumnDefinition("a", "TEXT"))
        )
        assert result.success is False
        assert "no such table" in result.error

    def test_drop_column(self):
        """测试删除列"""
        assert self.driver.drop_column(DropColumnRequest("users", "age")).success
        assert "age" not in [c.name for c in self.driver.get_columns("users")]

    def test_modify_column_copy_failure_keeps_table(self):
        """测试复制数据失败时原表与数据保持不变"""
        result = self.driver.modify_column(
            ModifyColumnRequest("users", "age", ColumnDefinition("age", "INTEGER", nullable=False))
        )
        assert result.success is False
        assert "NOT NULL constraint failed" in result.error
        assert [t.name for t in self.driver.get_tables()] == ["users"]
        columns = {c.name: c for c in self.driver.get_columns("users")}
        assert columns["age"].nullable is True
        assert self.driver.execute("SELECT COUNT(*) AS n FROM users").rows == [{"n": 4}]

    def test_recreate_rollback_failure_returns_original_error(self):
        """测试回滚同样失败时仍返回最初的错误"""
        execute = self.driver._exec

        def failing_exec(sql, params=None):
            if sql.startswith("INSERT INTO"):
                raise RuntimeError("copy failed")
            if sql == "ROLLBACK":
                raise RuntimeError("rollback failed")
            return execute(sql, params)

        with patch.object(self.driver, "_exec", side_effect=failing_exec):
            result = self.driver.modify_column(
                ModifyColumnRequest("users", "age", ColumnDefinition("years", "TEXT"))
            )
        assert result.success is False
        assert result.error == "copy failed"

        execute("ROLLBACK")
        assert [t.name for t in self.driver.get_tables()] == ["users"]
        assert "age" in [c.name for c in self.driver.get_columns("users")]
        assert self.driver.execute("SELECT COUNT(*) AS n FROM users").rows == [{"n": 4}]

    def test_drop_column_falls_back_to_recreate(self):
        """测试 DROP COLUMN 报语法错误时改为重建表"""
        execute = self.driver._exec

        def old_sqlite_exec(sql, params=None):
            if "DROP COLUMN" in sql:
                raise RuntimeError('near "DROP": syntax error')
            return execute(sql, params)

        with patch.object(self.driver, "_exec", side_effect=old_sqlite_exec):
            result = self.driver.drop_column(DropColumnRequest("users", "age"))
        assert result.success, result.error
        assert result.sql.startswith("BEGIN TRANSACTION")
        assert [c.name for c in self.driver.get_columns("users")] == ["id", "name"]
        assert [i.name for i in self.driver.get_indexes("users")] == ["idx_users_name"]
        assert len(self.driver.execute("SELECT * FROM users").rows) == 4

    def test_drop_column_other_error_not_recreated(self):
        """测试其他错误直接返回，不重建表"""
        execute = self.driver._exec

        def locked_exec(sql, params=None):
            if "DROP COLUMN" in sql:
                raise RuntimeError("database is locked")
            return execute(sql, params)

        with patch.object(self.driver, "_exec", side_effect=locked_exec) as mocked:
            result = self.driver.drop_column(DropColumnRequest("users", "age"))
        assert result.success is False
        assert result.error == "database is locked"
        assert mocked.call_count == 1
        assert "age" in [c.name for c in self.driver.get_columns("users")]

    def test_recreate_keeps_not_null_primary_key(self):
        """测试重建表保留非整数主键的 NOT NULL 约束"""
        self.driver.execute("CREATE TABLE codes (code TEXT PRIMARY KEY NOT NULL, label TEXT)")
        result = self.driver.modify_column(
            ModifyColumnRequest("codes", "label", ColumnDefinition("title", "TEXT"))
        )
        assert result.success, result.error
        columns = {c.name: c for c in self.driver.get_columns("codes")}
        assert columns["code"].primary_key is True
        assert columns["code"].nullable is False
        assert '"code" TEXT PRIMARY KEY NOT NULL' in self.driver.get_table_ddl("codes")

    def test_foreign_keys(self):
        """测试通过重建表添加与删除外键"""
        self.driver.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, user_id INTEGER)")
        self.driver.execute("INSERT INTO orders (user_id) VALUES (1)")

        added = self.driver.add_foreign_key(
            AddForeignKeyRequest(
                "orders",
                ForeignKeyDefinition(
                    name="fk_orders_user",
                    columns=["user_id"],
                    referenced_table="users",
                    referenced_columns=["id"],
                    on_delete="CASCADE",
                ),
            )
        )
        assert added.success, added.error
        foreign_keys = self.driver.get_foreign_keys("orders")
        assert len(foreign_keys) == 1
        assert foreign_keys[0].referenced_table == "users"
        assert foreign_keys[0].on_delete == "CASCADE"

        dropped = self.driver.drop_foreign_key(DropForeignKeyRequest("orders", foreign_keys[0].name))
        assert dropped.success, dropped.error
        assert self.driver.get_foreign_keys("orders") == []
        assert self.driver.execute("SELECT COUNT(*) AS n FROM orders").rows == [{"n": 1}]

    def test_create_index(self):
        """测试创建唯一索引"""
        result = self.driver.create_index(
            CreateIndexRequest("users", IndexDefinition("uq_users_age", ["age"], unique=True))
        )
        assert result.success
        index = [i for i in self.driver.get_indexes("users") if i.name == "uq_users_age"][0]
        assert index.unique is True

    # ==================== 视图与触发器 ====================

    def test_views(self):
        """测试创建与重命名视图"""
        created = self.driver.create_view(
            CreateViewRequest(
                view=ViewDefinition(
                    name="adults", select_statement="SELECT id, name FROM users WHERE age >= 30"
                )
            )
        )
        assert created.success, created.error
        renamed = self.driver.rename_view(RenameViewRequest("adults", "grownups"))
        assert renamed.success, renamed.error

        tables = {t.name: t.type for t in self.driver.get_tables()}
        assert tables["grownups"] == TableObjectType.VIEW
        assert "adults" not in tables
        assert "SELECT id, name FROM users" in self.driver.get_view_ddl("grownups")

    def test_triggers(self):
        """测试创建与读取触发器"""
        request = CreateTriggerRequest(
            trigger=TriggerDefinition(
                name="trg_users_age",
                table="users",
                timing="AFTER",
                event="INSERT",
                body="UPDATE users SET age = 0 WHERE id = NEW.id AND NEW.age IS NULL;",
            )
        )
        assert self.driver.create_trigger(request).success
        triggers = self.driver.get_triggers(table="users")
        assert [(t.name, t.timing, t.event) for t in triggers] == [("trg_users_age", "AFTER", "INSERT")]
        assert "CREATE TRIGGER" in self.driver.get_trigger_definition("trg_users_age")
        assert self.driver.get_trigger_definition("nope") == "-- Trigger 'nope' not found"

    def test_unsupported_features(self):
        """测试 SQLite 不支持的例程与用户管理"""
        assert self.driver.get_routines() == []
        assert self.driver.get_users() == []
        result = self.driver.create_user(CreateUserRequest(UserDefinition(name="app")))
        assert result.error == "SQLite does not support user management"


if __name__ == "__main__":
    pytest.main()
