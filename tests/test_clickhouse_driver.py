"""
ClickHouse 驱动测试

以 Mock 替换 clickhouse_connect.get_client 返回的 HTTP 客户端。
"""

import datetime
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from db_driver_tool.core.exceptions import NOT_CONNECTED_MESSAGE, ConnectionError
from db_driver_tool.core.requests import (
    AddForeignKeyRequest,
    ColumnDefinition,
    CreateIndexRequest,
    CreateTableRequest,
    CreateTriggerRequest,
    CreateUserRequest,
    DeleteRowRequest,
    ForeignKeyDefinition,
    IndexDefinition,
    ModifyColumnRequest,
    TableDefinition,
    TriggerDefinition,
    UpdateRowRequest,
    UserDefinition,
)
from db_driver_tool.core.types import ConnectionConfig, DataOptions, Filter
from db_driver_tool.drivers.clickhouse import (
    FOREIGN_KEYS_UNSUPPORTED,
    TRIGGERS_UNSUPPORTED,
    ClickHouseDriver,
    inline_params,
    literal,
)

GET_CLIENT = "db_driver_tool.drivers.clickhouse.clickhouse_connect.get_client"


def connected_driver():
    """返回持有 Mock 客户端的已连接驱动"""
    driver = ClickHouseDriver()
    driver.client = Mock()
    driver._connected = True
    driver.config = ConnectionConfig.from_dict({"type": "clickhouse", "host": "ch"})
    return driver


def commands(driver):
    return [c.args[0] for c in driver.client.command.call_args_list]


class TestLiterals:
    """字面量转换测试类"""

    def test_literal(self):
        """测试各类值的字面量"""
        assert literal(None) == "NULL"
        assert literal(True) == "true"
        assert literal(3) == "3"
        assert literal(1.5) == "1.5"
        assert literal("it's") == "'it\\'s'"
        assert literal("a\\b") == "'a\\\\b'"
        assert literal([1, "x"]) == "[1, 'x']"
        assert literal(datetime.datetime(2024, 1, 2, 3, 4, 5)) == "'2024-01-02 03:04:05'"

    def test_inline_params(self):
        """测试占位符内联，字符串中的 ? 不替换"""
        sql = inline_params("SELECT * FROM t WHERE a = ? AND b = '?' AND c = ?", ["x", 2])
        assert sql == "SELECT * FROM t WHERE a = 'x' AND b = '?' AND c = 2"
        assert inline_params("SELECT ?", None) == "SELECT ?"
        assert inline_params("SELECT ?, ?", [1]) == "SELECT 1, ?"

    def test_inline_params_skips_identifiers_and_comments(self):
        """测试引号标识符与注释中的 ? 不替换"""
        sql = inline_params("SELECT `a?` FROM t -- ok?\nWHERE b = ? /* ? */", [5])
        assert sql == "SELECT `a?` FROM t -- ok?\nWHERE b = 5 /* ? */"


class TestClickHouseConnection:
    """连接管理测试类"""

    def test_connect(self):
        """测试连接参数与连通性探测"""
        client = Mock()
        with patch(GET_CLIENT, return_value=client) as get_client:
            driver = ClickHouseDriver()
            driver.connect(ConnectionConfig.from_dict({"type": "clickhouse", "database": "logs"}))
        get_client.assert_called_once_with(
            host="localhost",
            port=8123,
            username="default",
            password="",
            database="logs",
            secure=False,
        )
        client.command.assert_called_once_with("SELECT 1")
        assert driver.is_connected
        assert driver.current_database == "logs"
        assert repr(driver) == "<ClickHouseDriver database=logs, status=已连接>"

    def test_connect_failure(self):
        """测试探测失败时抛出连接异常并释放客户端"""
        client = Mock()
        client.command.side_effect = Exception("Authentication failed")
        with patch(GET_CLIENT, return_value=client):
            driver = ClickHouseDriver()
            with pytest.raises(ConnectionError) as exc_info:
                driver.connect(ConnectionConfig.from_dict({"type": "clickhouse"}))
        assert exc_info.value.message == "Authentication failed"
        client.close.assert_called()
        assert not driver.is_connected

    def test_prefer_falls_back_to_plaintext(self):
        """测试 prefer 模式 TLS 失败后以明文重试"""
        tls_client, plain_client = Mock(), Mock()
        tls_client.command.side_effect = Exception("SSL handshake failed")
        config = ConnectionConfig.from_dict(
            {"type": "clickhouse", "ssl_config": {"enabled": True, "mode": "prefer"}}
        )
        with patch(GET_CLIENT, side_effect=[tls_client, plain_client]) as get_client:
            driver = ClickHouseDriver()
            driver.connect(config)
        first, second = get_client.call_args_list
        assert first.kwargs["secure"] is True
        assert first.kwargs["verify"] is False
        assert second.kwargs["secure"] is False
        tls_client.close.assert_called_once()
        assert driver.client is plain_client

    def test_disconnect(self):
        """测试断开连接关闭客户端"""
        driver = connected_driver()
        client = driver.client
        driver.disconnect()
        client.close.assert_called_once()
        assert not driver.is_connected
        driver.disconnect()

    def test_cancel_query(self):
        """测试以独立客户端发送 KILL QUERY"""
        driver = connected_driver()
        assert driver.cancel_query() is False

        driver._query_id = "abc-123"
        helper = Mock()
        with patch(GET_CLIENT, return_value=helper):
            assert driver.cancel_query() is True
        helper.command.assert_called_once_with("KILL QUERY WHERE query_id = 'abc-123' ASYNC")
        helper.close.assert_called_once()


class TestClickHouseExecute:
    """语句执行测试类"""

    def test_not_connected(self):
        """测试未连接时执行返回错误"""
        assert ClickHouseDriver().execute("SELECT 1").error == NOT_CONNECTED_MESSAGE

    def test_query(self):
        """测试查询返回列类型与行"""
        driver = connected_driver()
        driver.client.query.return_value = SimpleNamespace(
            column_names=("id", "name"),
            column_types=[SimpleNamespace(name="UInt32"), SimpleNamespace(name="Nullable(String)")],
            result_rows=[(1, "a"), (2, None)],
        )
        result = driver.execute("SELECT id, name FROM t WHERE id > ?", [0])
        assert result.error is None
        assert result.rows == [{"id": 1, "name": "a"}, {"id": 2, "name": None}]
        assert [(c.type, c.nullable) for c in result.columns] == [
            ("UInt32", False),
            ("Nullable(String)", True),
        ]
        call = driver.client.query.call_args
        assert call.args[0] == "SELECT id, name FROM t WHERE id > 0"
        assert "query_id" in call.kwargs["settings"]
        assert driver._query_id is None

    def test_command(self):
        """测试非查询语句以 command 执行"""
        driver = connected_driver()
        result = driver.execute("INSERT INTO t VALUES (?)", ["x"])
        assert result.affected_rows == 0
        assert driver.client.command.call_args.args[0] == "INSERT INTO t VALUES ('x')"

    def test_error(self):
        """测试执行错误写入结果"""
        driver = connected_driver()
        driver.client.query.side_effect = Exception("Code: 60. Table default.nope does not exist")
        result = driver.execute("SELECT * FROM nope")
        assert "does not exist" in result.error


class TestClickHouseMetadata:
    """元数据与数据浏览测试类"""

    def test_get_table_data(self):
        """测试过滤值内联与默认每页行数"""
        driver = connected_driver()
        driver._rows = Mock(
            side_effect=[
                [{"total": 3}],
                [{"name": "id", "type": "UInt64", "default_expression": "", "comment": "", "is_in_primary_key": 1}],
                [{"id": 1}],
            ]
        )
        result = driver.get_table_data("events", DataOptions(filters=[Filter("name", "=", "it's")]))
        assert result.total_count == 3
        assert result.limit == 100
        assert result.columns[0].primary_key is True
        sql = [c.args[0] for c in driver._rows.call_args_list]
        assert sql[0] == "SELECT count() AS total FROM `default`.`events` WHERE `name` = 'it\\'s'"
        assert sql[2] == "SELECT * FROM `default`.`events` WHERE `name` = 'it\\'s' LIMIT 100"

    def test_get_indexes(self):
        """测试主键、排序键与跳数索引"""
        driver = connected_driver()
        driver._rows = Mock(
            side_effect=[
                [{"primary_key": "id", "sorting_key": "id, ts"}],
                [{"name": "idx_name", "type": "bloom_filter", "expr": "name"}],
            ]
        )
        indexes = driver.get_indexes("events")
        assert [(i.name, i.columns, i.type) for i in indexes] == [
            ("PRIMARY", ["id"], "PRIMARY KEY"),
            ("ORDER BY", ["id", "ts"], "SORTING KEY"),
            ("idx_name", ["name"], "bloom_filter"),
        ]


class TestClickHouseStatements:
    """SQL 生成测试类"""

    def test_create_table(self):
        """测试 MergeTree 建表语句"""
        driver = connected_driver()
        request = CreateTableRequest(
            table=TableDefinition(
                name="events",
                columns=[
                    ColumnDefinition("id", "UInt64", primary_key=True),
                    ColumnDefinition("name", "String", default_value="n/a"),
                    ColumnDefinition("ts", "DateTime", nullable=False, default_value="now()"),
                ],
                indexes=[IndexDefinition("idx_name", ["name"], type="bloom_filter")],
                comment="事件",
            )
        )
        result = driver.create_table(request)
        assert result.success
        assert result.sql == (
            "CREATE TABLE `default`.`events` (\n"
            "  `id` UInt64,\n"
            "  `name` Nullable(String) DEFAULT 'n/a',\n"
            "  `ts` DateTime DEFAULT now(),\n"
            "  INDEX `idx_name` (`name`) TYPE bloom_filter GRANULARITY 4\n"
            ") ENGINE = MergeTree()\n"
            "ORDER BY (`id`)\n"
            "PRIMARY KEY (`id`)\n"
            "COMMENT '事件'"
        )

    def test_create_table_without_primary_key(self):
        """测试没有主键时按 tuple() 排序"""
        driver = connected_driver()
        request = CreateTableRequest(
            table=TableDefinition(name="raw", columns=[ColumnDefinition("line", "String", nullable=False)])
        )
        assert driver.create_table(request).sql.endswith("ORDER BY tuple()")

    def test_row_mutations(self):
        """测试行更新与删除使用 mutation 语句"""
        driver = connected_driver()
        driver.update_row(
            UpdateRowRequest("events", primary_key_values={"id": 7, "shard": None}, values={"name": "x"})
        )
        driver.delete_row(DeleteRowRequest("events", primary_key_values={"id": 7}))
        assert commands(driver) == [
            "ALTER TABLE `default`.`events` UPDATE `name` = 'x' WHERE `id` = 7 AND `shard` IS NULL",
            "ALTER TABLE `default`.`events` DELETE WHERE `id` = 7",
        ]

    def test_modify_column_with_rename(self):
        """测试列名变化时先重命名再修改"""
        driver = connected_driver()
        result = driver.modify_column(
            ModifyColumnRequest("events", "name", ColumnDefinition("title", "String", nullable=False))
        )
        assert result.success
        assert commands(driver) == [
            "ALTER TABLE `default`.`events` RENAME COLUMN `name` TO `title`",
            "ALTER TABLE `default`.`events` MODIFY COLUMN `title` String",
        ]

    def test_create_index_defaults_to_minmax(self):
        """测试跳数索引默认类型"""
        driver = connected_driver()
        driver.create_index(CreateIndexRequest("events", IndexDefinition("idx_ts", ["ts"])))
        assert commands(driver) == [
            "ALTER TABLE `default`.`events` ADD INDEX `idx_ts` (`ts`) TYPE minmax GRANULARITY 4"
        ]

    def test_unsupported_features(self):
        """测试外键与触发器不受支持"""
        driver = connected_driver()
        fk = AddForeignKeyRequest("a", ForeignKeyDefinition("fk", ["b"], "c", ["d"]))
        assert driver.add_foreign_key(fk).error == FOREIGN_KEYS_UNSUPPORTED
        trigger = CreateTriggerRequest(TriggerDefinition("t", "a", "AFTER", "INSERT"))
        assert driver.create_trigger(trigger).error == TRIGGERS_UNSUPPORTED
        assert driver.get_foreign_keys("a") == []
        assert driver.get_triggers() == []

    def test_create_user_masks_password(self):
        """测试建用户返回的语句不包含密码"""
        driver = connected_driver()
        result = driver.create_user(CreateUserRequest(UserDefinition(name="reader", password="pw")))
        assert result.sql == "CREATE USER `reader` IDENTIFIED BY '****'"
        assert commands(driver) == ["CREATE USER `reader` IDENTIFIED BY 'pw'"]


if __name__ == "__main__":
    pytest.main()
