"""
PostgreSQL 驱动测试

不连接真实服务端：以 Mock 替换语句执行入口，校验生成的 SQL 与 libpq 参数。
"""

from unittest.mock import Mock

import pytest

from db_driver_tool.core.exceptions import NotConnectedError
from db_driver_tool.core.requests import (
    AlterSequenceRequest,
    ColumnDefinition,
    CreateExtensionRequest,
    CreateSequenceRequest,
    CreateTableRequest,
    CreateTriggerRequest,
    CreateUserRequest,
    DropExtensionRequest,
    DropIndexRequest,
    DropSequenceRequest,
    DropTriggerRequest,
    ModifyColumnRequest,
    RefreshMaterializedViewRequest,
    SequenceDefinition,
    TableDefinition,
    TriggerDefinition,
    UserDefinition,
)
from db_driver_tool.core.tls import resolve_tls
from db_driver_tool.core.types import ConnectionConfig
from db_driver_tool.drivers.postgres import (
    TRIGGER_FUNCTION_REQUIRED,
    TRIGGER_TABLE_REQUIRED,
    PostgreSQLDriver,
)

PEM = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"


def connected_driver():
    """返回已标记为连接状态、语句执行被替换为 Mock 的驱动"""
    driver = PostgreSQLDriver()
    driver._connected = True
    driver._exec = Mock(return_value=Mock(rowcount=0))
    return driver


def executed_sql(driver):
    return [c.args[0] for c in driver._exec.call_args_list]


def tls_args(**ssl_config):
    config = ConnectionConfig.from_dict({"type": "postgresql", "ssl_config": ssl_config})
    return PostgreSQLDriver()._connect_args(config, resolve_tls(config))


class TestPostgreSQLConnection:
    """连接参数测试类"""

    def test_connection_url_defaults(self):
        """测试默认数据库与端口"""
        config = ConnectionConfig.from_dict({"type": "postgresql", "username": "pg"})
        url = PostgreSQLDriver()._build_connection_url(config, None)
        assert url == "postgresql+psycopg://pg:@localhost:5432/postgres"

    def test_plaintext_disables_ssl(self):
        """测试明文连接"""
        config = ConnectionConfig.from_dict({"type": "postgresql"})
        assert PostgreSQLDriver()._connect_args(config, None) == {"sslmode": "disable"}

    def test_sslmode_mapping(self):
        """测试 SSL 模式映射为 libpq sslmode"""
        assert tls_args(enabled=True, mode="prefer")["sslmode"] == "require"
        assert tls_args(enabled=True, mode="require")["sslmode"] == "require"
        assert tls_args(enabled=True, mode="require", ca=PEM)["sslmode"] == "verify-full"
        assert tls_args(enabled=True, mode="verify-ca")["sslmode"] == "verify-ca"

    def test_pem_material_written_to_files(self):
        """测试 PEM 内容转换为文件路径"""
        args = tls_args(enabled=True, mode="verify-full", ca=PEM, min_version="TLSv1.2")
        assert args["sslrootcert"].endswith(".pem")
        assert args["ssl_min_protocol_version"] == "TLSv1.2"

    def test_cancel_statement(self):
        """测试取消语句使用后端进程 ID"""
        driver = PostgreSQLDriver()
        assert driver._cancel_statement() is None
        driver.backend_pid = 1234
        assert driver._cancel_statement() == "SELECT pg_cancel_backend(1234)"

    def test_prepare_sql_skips_quoted_identifiers(self):
        """测试双引号标识符与注释中的 ? 保持原样"""
        driver = PostgreSQLDriver()
        sql = driver._prepare_sql('SELECT "ok?" FROM t WHERE a = ? -- 50% done?', [1])
        assert sql == 'SELECT "ok?" FROM t WHERE a = %s -- 50%% done?'


class TestPostgreSQLStatements:
    """SQL 生成测试类"""

    def test_qualified_uses_current_schema(self):
        """测试对象名按当前模式限定"""
        driver = PostgreSQLDriver()
        assert driver._qualified("users") == '"public"."users"'
        driver.set_current_schema("sales")
        assert driver._qualified("users") == '"sales"."users"'
        assert driver._qualified("users", "audit") == '"audit"."users"'

    def test_set_current_schema_updates_search_path(self):
        """测试已连接时同步 search_path"""
        driver = connected_driver()
        driver.set_current_schema("sales")
        assert executed_sql(driver) == ['SET search_path TO "sales", public']

    def test_modify_column_in_transaction(self):
        """测试修改列的全部语句在同一事务中执行"""
        driver = connected_driver()
        definition = ColumnDefinition("amount", "NUMERIC", precision=10, scale=2, nullable=False, default_value=0)
        result = driver.modify_column(ModifyColumnRequest("orders", "total", definition))
        assert result.success
        assert executed_sql(driver) == [
            "BEGIN",
            'ALTER TABLE "public"."orders" RENAME COLUMN "total" TO "amount"',
            'ALTER TABLE "public"."orders" ALTER COLUMN "amount" TYPE NUMERIC(10,2)',
            'ALTER TABLE "public"."orders" ALTER COLUMN "amount" SET NOT NULL',
            'ALTER TABLE "public"."orders" ALTER COLUMN "amount" SET DEFAULT 0',
            "COMMIT",
        ]

    def test_modify_column_rolls_back(self):
        """测试失败时回滚并返回原始错误"""
        driver = connected_driver()
        driver._exec = Mock(side_effect=[None, RuntimeError("type mismatch"), None])
        result = driver.modify_column(ModifyColumnRequest("orders", "a", ColumnDefinition("a", "INTEGER")))
        assert result.success is False
        assert result.error == "type mismatch"
        assert driver._exec.call_args_list[-1].args == ("ROLLBACK",)

    def test_create_table_with_serial_and_comments(self):
        """测试自增主键使用 SERIAL 并写入注释"""
        driver = connected_driver()
        request = CreateTableRequest(
            table=TableDefinition(
                name="users",
                columns=[
                    ColumnDefinition("id", "INTEGER", primary_key=True, auto_increment=True),
                    ColumnDefinition("email", "VARCHAR", length=255, nullable=False, unique=True, comment="邮箱"),
                ],
                comment="用户",
            )
        )
        result = driver.create_table(request)
        assert result.success
        statements = executed_sql(driver)
        assert statements[0] == (
            'CREATE TABLE "public"."users" (\n'
            '  "id" SERIAL,\n'
            '  "email" VARCHAR(255) NOT NULL UNIQUE,\n'
            '  PRIMARY KEY ("id")\n'
            ")"
        )
        assert statements[1] == "COMMENT ON TABLE \"public\".\"users\" IS '用户'"
        assert statements[2] == "COMMENT ON COLUMN \"public\".\"users\".\"email\" IS '邮箱'"

    def test_drop_index_is_schema_qualified(self):
        """测试删除索引按模式限定"""
        driver = connected_driver()
        driver.drop_index(DropIndexRequest("users", "idx_email"))
        assert executed_sql(driver) == ['DROP INDEX "public"."idx_email"']

    def test_create_user_masks_password(self):
        """测试建角色返回的语句不包含密码"""
        driver = connected_driver()
        result = driver.create_user(CreateUserRequest(UserDefinition(name="app", password="pw")))
        assert result.sql == "CREATE ROLE \"app\" LOGIN PASSWORD '****'"
        assert executed_sql(driver) == ["CREATE ROLE \"app\" LOGIN PASSWORD 'pw'"]

    def test_trigger_requirements(self):
        """测试触发器必须提供函数名与表名"""
        driver = connected_driver()
        trigger = TriggerDefinition(name="trg", table="users", timing="BEFORE", event="UPDATE")
        assert driver.create_trigger(CreateTriggerRequest(trigger)).error == TRIGGER_FUNCTION_REQUIRED
        assert driver.drop_trigger(DropTriggerRequest("trg")).error == TRIGGER_TABLE_REQUIRED

        trigger.function_name = "touch_updated_at"
        trigger.condition = "OLD.* IS DISTINCT FROM NEW.*"
        result = driver.create_trigger(CreateTriggerRequest(trigger))
        assert result.sql == (
            'CREATE TRIGGER "trg"\n'
            "BEFORE UPDATE\n"
            'ON "public"."users"\n'
            "FOR EACH ROW\n"
            "WHEN (OLD.* IS DISTINCT FROM NEW.*)\n"
            "EXECUTE FUNCTION touch_updated_at()"
        )


class TestPostgreSQLExtras:
    """序列、物化视图与扩展测试类"""

    def test_create_sequence(self):
        """测试建序列语句"""
        driver = connected_driver()
        sequence = SequenceDefinition(
            name="order_seq", data_type="bigint", start_with=100, increment=5, cache=10
        )
        result = driver.create_sequence(CreateSequenceRequest(sequence))
        assert result.success
        assert result.sql == (
            'CREATE SEQUENCE "public"."order_seq" AS bigint START WITH 100 INCREMENT BY 5 NO CYCLE CACHE 10'
        )

    def test_alter_sequence(self):
        """测试修改序列时 none 取消上下限"""
        driver = connected_driver()
        driver.alter_sequence(
            AlterSequenceRequest("order_seq", restart_with=1, max_value="none", cycle=True)
        )
        assert executed_sql(driver) == [
            'ALTER SEQUENCE "public"."order_seq" RESTART WITH 1 NO MAXVALUE CYCLE'
        ]

    def test_alter_sequence_without_changes(self):
        """测试未指定修改项时不执行语句"""
        driver = connected_driver()
        result = driver.alter_sequence(AlterSequenceRequest("order_seq"))
        assert result.success
        assert result.sql == "-- No changes specified"
        driver._exec.assert_not_called()

    def test_drop_sequence(self):
        """测试删除序列语句"""
        driver = connected_driver()
        driver.drop_sequence(DropSequenceRequest("order_seq", schema="billing", cascade=True))
        assert executed_sql(driver) == ['DROP SEQUENCE IF EXISTS "billing"."order_seq" CASCADE']

    def test_get_sequence_details_missing(self):
        """测试序列不存在时返回 None"""
        driver = connected_driver()
        driver._fetch_one = Mock(return_value=None)
        assert driver.get_sequence_details("ghost") is None

    def test_refresh_materialized_view(self):
        """测试刷新物化视图语句"""
        driver = connected_driver()
        driver.refresh_materialized_view(
            RefreshMaterializedViewRequest("daily_sales", concurrently=True)
        )
        driver.refresh_materialized_view(
            RefreshMaterializedViewRequest("daily_sales", with_data=False)
        )
        assert executed_sql(driver) == [
            'REFRESH MATERIALIZED VIEW CONCURRENTLY "public"."daily_sales"',
            'REFRESH MATERIALIZED VIEW "public"."daily_sales" WITH NO DATA',
        ]

    def test_extension_statements(self):
        """测试安装与卸载扩展语句"""
        driver = connected_driver()
        driver.create_extension(
            CreateExtensionRequest("postgis", schema="gis", version="3.4", cascade=True)
        )
        driver.drop_extension(DropExtensionRequest("postgis"))
        assert executed_sql(driver) == [
            "CREATE EXTENSION IF NOT EXISTS \"postgis\" SCHEMA \"gis\" VERSION '3.4' CASCADE",
            'DROP EXTENSION IF EXISTS "postgis"',
        ]

    def test_extensions_not_connected(self):
        """测试未连接时读取扩展抛出异常"""
        with pytest.raises(NotConnectedError):
            PostgreSQLDriver().get_extensions()


if __name__ == "__main__":
    pytest.main()
