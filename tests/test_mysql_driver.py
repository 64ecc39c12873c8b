"""
MySQL / MariaDB 驱动测试

不连接真实服务端：以 Mock 替换语句执行入口，校验生成的 SQL。
"""

import ssl
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from db_driver_tool.core.exceptions import NOT_CONNECTED_MESSAGE
from db_driver_tool.core.requests import (
    AddColumnRequest,
    AddForeignKeyRequest,
    AlterEventRequest,
    ColumnDefinition,
    CreateIndexRequest,
    CreateTableRequest,
    CreateUserRequest,
    DropIndexRequest,
    EventDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    ModifyColumnRequest,
    RenameColumnRequest,
    RenameTableRequest,
    TableDefinition,
    UserDefinition,
)
from db_driver_tool.core.tls import resolve_tls
from db_driver_tool.core.types import Column, ConnectionConfig, DataOptions, Filter, SortDirection
from db_driver_tool.drivers.mariadb import MariaDBDriver
from db_driver_tool.drivers.mysql import MySQLDriver


def connected_driver(driver_cls=MySQLDriver):
    """返回已标记为连接状态、语句执行被替换为 Mock 的驱动"""
    driver = driver_cls()
    driver._connected = True
    driver._exec = Mock(return_value=Mock(rowcount=1))
    return driver


def executed_sql(driver):
    return [c.args[0] for c in driver._exec.call_args_list]


class TestMySQLConnection:
    """连接参数测试类"""

    def test_connection_url(self):
        """测试连接 URL 的编码与默认端口"""
        config = ConnectionConfig.from_dict(
            {"type": "mysql", "host": "db", "username": "root", "password": "p@ss word", "database": "shop"}
        )
        url = MySQLDriver()._build_connection_url(config, None)
        assert url == "mysql+pymysql://root:p%40ss+word@db:3306/shop"

    def test_connect_args(self):
        """测试 TLS 参数转换为 SSLContext"""
        driver = MySQLDriver()
        plain = ConnectionConfig.from_dict({"type": "mysql"})
        assert driver._connect_args(plain, None) == {}

        config = ConnectionConfig.from_dict(
            {"type": "mysql", "ssl_config": {"enabled": True, "mode": "prefer"}}
        )
        args = driver._connect_args(config, resolve_tls(config))
        assert isinstance(args["ssl"], ssl.SSLContext)
        assert args["ssl"].verify_mode == ssl.CERT_NONE

    def test_cancel_statement(self):
        """测试取消语句使用会话 ID"""
        driver = MySQLDriver()
        assert driver._cancel_statement() is None
        driver.session_id = 42
        assert driver._cancel_statement() == "KILL QUERY 42"
        assert driver.cancel_query() is False

    def test_prepare_sql(self):
        """测试 ? 占位符转换，字符串中的 ? 与 % 保持原义"""
        driver = MySQLDriver()
        sql = driver._prepare_sql("SELECT '?', ? FROM t WHERE a LIKE '5%'", [1])
        assert sql == "SELECT '?', %s FROM t WHERE a LIKE '5%%'"
        assert driver._prepare_sql("SELECT '5%'", None) == "SELECT '5%'"

    def test_prepare_sql_skips_identifiers_and_comments(self):
        """测试引号标识符与注释中的 ? 不视为占位符"""
        driver = MySQLDriver()
        sql = driver._prepare_sql(
            "SELECT `a?`, \"b?\" FROM t -- why?\nWHERE x = ? /* ? */", [1]
        )
        assert sql == "SELECT `a?`, \"b?\" FROM t -- why?\nWHERE x = %s /* ? */"

    def test_result_columns(self):
        """测试协议类型代码与主键标志位"""
        driver = MySQLDriver()
        metadata = [(("id", 3, None, None, None, None, None), 2), (("name", 253, None, None, None, None, None), 0)]
        columns = driver._result_columns(["id", "name"], metadata, [])
        assert [(c.type, c.primary_key) for c in columns] == [("INT", True), ("VAR_STRING", False)]


class TestMySQLStatements:
    """SQL 生成测试类"""

    def test_not_connected(self):
        """测试未连接时变更操作返回失败"""
        result = MySQLDriver().drop_index(DropIndexRequest("t", "idx"))
        assert result.error == NOT_CONNECTED_MESSAGE

    def test_add_column_first(self):
        """测试加列与位置子句"""
        driver = connected_driver()
        column = ColumnDefinition("code", "VARCHAR", length=32, nullable=False, default_value="x", after_column="first")
        result = driver.add_column(AddColumnRequest("items", column))
        assert result.success
        assert result.sql == "ALTER TABLE `items` ADD COLUMN `code` VARCHAR(32) NOT NULL DEFAULT 'x' FIRST"

    def test_modify_column_with_rename(self):
        """测试列名变化时使用 CHANGE COLUMN"""
        driver = connected_driver()
        driver.modify_column(ModifyColumnRequest("items", "qty", ColumnDefinition("amount", "INT")))
        driver.modify_column(ModifyColumnRequest("items", "qty", ColumnDefinition("qty", "BIGINT")))
        assert executed_sql(driver) == [
            "ALTER TABLE `items` CHANGE COLUMN `qty` `amount` INT NULL",
            "ALTER TABLE `items` MODIFY COLUMN `qty` BIGINT NULL",
        ]

    def test_rename_column_preserves_definition(self):
        """测试重命名列保留原有定义"""
        driver = connected_driver()
        driver._fetch_one = Mock(
            return_value={
                "column_type": "timestamp",
                "nullable": "NO",
                "default_value": "CURRENT_TIMESTAMP",
                "extra": "",
                "comment": "created",
            }
        )
        result = driver.rename_column(RenameColumnRequest("items", "created", "created_at"))
        assert result.sql == (
            "ALTER TABLE `items` CHANGE COLUMN `created` `created_at` timestamp NOT NULL "
            "DEFAULT CURRENT_TIMESTAMP COMMENT 'created'"
        )

    def test_rename_column_quotes_text_default(self):
        """测试文本默认值加引号"""
        driver = connected_driver()
        driver._fetch_one = Mock(
            return_value={"column_type": "varchar(10)", "nullable": "YES", "default_value": "new", "extra": "", "comment": ""}
        )
        result = driver.rename_column(RenameColumnRequest("items", "state", "status"))
        assert result.sql.endswith("`status` varchar(10) DEFAULT 'new'")

    def test_rename_missing_column(self):
        """测试重命名不存在的列"""
        driver = connected_driver()
        driver._fetch_one = Mock(return_value=None)
        result = driver.rename_column(RenameColumnRequest("items", "ghost", "x"))
        assert result.error == "Column 'ghost' not found"

    def test_create_table(self):
        """测试建表语句包含主键、索引、外键与注释"""
        driver = connected_driver()
        request = CreateTableRequest(
            table=TableDefinition(
                name="orders",
                columns=[
                    ColumnDefinition("id", "INT", nullable=False, primary_key=True, auto_increment=True),
                    ColumnDefinition("user_id", "INT"),
                ],
                indexes=[IndexDefinition("idx_user", ["user_id"])],
                foreign_keys=[
                    ForeignKeyDefinition("fk_user", ["user_id"], "users", ["id"], on_delete="CASCADE")
                ],
                comment="订单",
            )
        )
        result = driver.create_table(request)
        assert result.sql == (
            "CREATE TABLE `orders` (\n"
            "  `id` INT NOT NULL AUTO_INCREMENT,\n"
            "  `user_id` INT NULL,\n"
            "  PRIMARY KEY (`id`),\n"
            "  INDEX `idx_user` (`user_id`),\n"
            "  CONSTRAINT `fk_user` FOREIGN KEY (`user_id`) REFERENCES `users` (`id`) ON DELETE CASCADE\n"
            ") COMMENT='订单'"
        )

    def test_index_and_foreign_key_statements(self):
        """测试索引与外键语句"""
        driver = connected_driver()
        driver.create_index(CreateIndexRequest("t", IndexDefinition("idx_a", ["a"], unique=True, type="BTREE")))
        driver.drop_index(DropIndexRequest("t", "idx_a"))
        driver.add_foreign_key(
            AddForeignKeyRequest("t", ForeignKeyDefinition("fk_b", ["b"], "u", ["id"]))
        )
        driver.rename_table(RenameTableRequest("t", "t2"))
        assert executed_sql(driver) == [
            "CREATE UNIQUE INDEX `idx_a` ON `t` (`a`) USING BTREE",
            "DROP INDEX `idx_a` ON `t`",
            "ALTER TABLE `t` ADD CONSTRAINT `fk_b` FOREIGN KEY (`b`) REFERENCES `u` (`id`)",
            "RENAME TABLE `t` TO `t2`",
        ]

    def test_create_user_masks_password(self):
        """测试建用户返回的语句不包含密码"""
        driver = connected_driver()
        result = driver.create_user(
            CreateUserRequest(UserDefinition(name="app", password="s3cret", superuser=True))
        )
        assert result.success
        assert "s3cret" not in result.sql
        assert result.sql == (
            "CREATE USER 'app'@'%' IDENTIFIED BY '****';\n"
            "GRANT ALL PRIVILEGES ON *.* TO 'app'@'%' WITH GRANT OPTION"
        )
        assert executed_sql(driver)[0] == "CREATE USER 'app'@'%' IDENTIFIED BY 's3cret'"

    def test_get_user_privileges(self):
        """测试解析 SHOW GRANTS"""
        driver = connected_driver()
        driver._exec = Mock(
            return_value=[("GRANT SELECT, INSERT ON `shop`.* TO `app`@`%` WITH GRANT OPTION",)]
        )
        privileges = driver.get_user_privileges("app")
        assert [p.privilege for p in privileges] == ["SELECT", "INSERT"]
        assert privileges[0].object_name == "shop.*"
        assert privileges[0].grantee == "app@%"
        assert privileges[0].grantable is True

    def test_get_table_data_sql(self):
        """测试数据浏览的计数与分页语句"""
        driver = connected_driver()
        driver._exec = Mock(
            side_effect=[
                Mock(scalar=Mock(return_value=7)),
                [SimpleNamespace(_mapping={"id": 1, "age": 30})],
            ]
        )
        driver.get_columns = Mock(return_value=[Column("id", "INT", primary_key=True)])
        options = DataOptions(
            filters=[Filter("age", ">", 18)],
            order_by="id",
            order_direction=SortDirection.DESC,
            limit=10,
        )
        result = driver.get_table_data("users", options, database="shop")
        assert result.total_count == 7
        assert result.rows == [{"id": 1, "age": 30}]
        count_call, data_call = driver._exec.call_args_list
        assert count_call.args == ("SELECT COUNT(*) AS total FROM `shop`.`users` WHERE `age` > %s", [18])
        assert data_call.args == (
            "SELECT * FROM `shop`.`users` WHERE `age` > %s ORDER BY `id` DESC LIMIT 10",
            [18],
        )


class TestMySQLExtras:
    """字符集、分区与事件测试类"""

    def test_set_charset_statements(self):
        """测试表与数据库字符集修改语句"""
        driver = connected_driver()
        assert driver.set_table_charset("t", "utf8mb4", "utf8mb4_general_ci").success
        assert driver.set_database_charset("shop", "latin1").success
        assert executed_sql(driver) == [
            "ALTER TABLE `t` CONVERT TO CHARACTER SET utf8mb4 COLLATE utf8mb4_general_ci",
            "ALTER DATABASE `shop` CHARACTER SET latin1",
        ]

    def test_get_charsets(self):
        """测试字符集列表解析"""
        driver = connected_driver()
        driver._fetch_all = Mock(
            return_value=[
                {"Charset": "utf8mb4", "Description": "UTF-8 Unicode", "Default collation": "utf8mb4_0900_ai_ci", "Maxlen": 4}
            ]
        )
        charsets = driver.get_charsets()
        assert charsets[0].charset == "utf8mb4"
        assert charsets[0].max_length == 4

    def test_partition_statements(self):
        """测试 RANGE / LIST / HASH 分区与删除分区语句"""
        driver = connected_driver()
        driver.create_partition("logs", "p2024", "range", "2025")
        driver.create_partition("logs", "p_east", "LIST", "1, 2")
        driver.create_partition("logs", "p0", "HASH")
        driver.drop_partition("logs", "p2024")
        assert executed_sql(driver) == [
            "ALTER TABLE `logs` ADD PARTITION (PARTITION `p2024` VALUES LESS THAN (2025))",
            "ALTER TABLE `logs` ADD PARTITION (PARTITION `p_east` VALUES IN (1, 2))",
            "ALTER TABLE `logs` ADD PARTITION (PARTITION `p0`)",
            "ALTER TABLE `logs` DROP PARTITION `p2024`",
        ]

    def test_get_partitions_skips_unpartitioned(self):
        """测试未分区的表不返回分区信息"""
        driver = connected_driver()
        driver._fetch_all = Mock(
            return_value=[
                {
                    "name": None, "subpartition_name": None, "ordinal_position": None,
                    "method": None, "expression": None, "description": None,
                    "table_rows": 5, "data_length": 16384, "index_length": 0, "comment": "",
                }
            ]
        )
        assert driver.get_partitions("plain") == []

    def test_create_event(self):
        """测试建事件语句"""
        driver = connected_driver()
        event = EventDefinition(
            name="purge",
            schedule="EVERY 1 DAY",
            body="DELETE FROM logs WHERE ts < NOW() - INTERVAL 30 DAY",
            on_completion="PRESERVE",
            status="ENABLE",
            comment="nightly",
        )
        result = driver.create_event(event)
        assert result.success
        assert result.sql == (
            "CREATE EVENT `purge`\n"
            "  ON SCHEDULE EVERY 1 DAY\n"
            "  ON COMPLETION PRESERVE\n"
            "  ENABLE\n"
            "  COMMENT 'nightly'\n"
            "  DO DELETE FROM logs WHERE ts < NOW() - INTERVAL 30 DAY"
        )

    def test_alter_and_drop_event(self):
        """测试修改与删除事件语句"""
        driver = connected_driver()
        driver.alter_event(AlterEventRequest(name="purge", new_name="purge_old", status="DISABLE"))
        driver.drop_event("purge_old")
        assert executed_sql(driver) == [
            "ALTER EVENT `purge`\n  RENAME TO `purge_old`\n  DISABLE",
            "DROP EVENT IF EXISTS `purge_old`",
        ]

    def test_event_definition_not_found(self):
        """测试事件不存在时返回注释文本"""
        driver = connected_driver()
        driver._exec = Mock(return_value=Mock(first=Mock(return_value=None)))
        assert driver.get_event_definition("ghost") == "-- EVENT 'ghost' not found"


class TestMariaDBDriver:
    """MariaDB 驱动测试类"""

    def test_is_mariadb(self):
        """测试服务端版本识别"""
        driver = connected_driver(MariaDBDriver)
        driver._exec = Mock(return_value=Mock(scalar=Mock(return_value="11.4.2-MariaDB")))
        assert driver.is_mariadb() is True
        driver._exec = Mock(return_value=Mock(scalar=Mock(return_value="8.0.36")))
        assert driver.is_mariadb() is False

    def test_is_mariadb_not_connected(self):
        """测试未连接时返回 False"""
        assert MariaDBDriver().is_mariadb() is False

    def test_system_variables(self):
        """测试系统变量读取"""
        driver = connected_driver(MariaDBDriver)
        driver._fetch_all = Mock(return_value=[{"Variable_name": "version", "Value": "11.4.2-MariaDB"}])
        assert driver.get_system_variables("version%") == {"version": "11.4.2-MariaDB"}
        driver._fetch_all.assert_called_once_with("SHOW VARIABLES LIKE :pattern", pattern="version%")


if __name__ == "__main__":
    pytest.main()
