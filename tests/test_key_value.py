"""
键值数据库通用算法测试
"""

import json

import pytest

from db_driver_tool.core.key_value import (
    EMPTY_PLACEHOLDER,
    NIL_PLACEHOLDER,
    format_command_result,
    format_uptime,
    group_keys,
    keyspace_databases,
    mask_acl_password,
    normalize_ttl,
    parse_database_number,
    render_value,
    tokenize_command,
)


class TestTokenizeCommand:
    """命令行分词测试类"""

    def test_plain_arguments(self):
        """测试以空格分隔参数"""
        assert tokenize_command("GET  user:1 ") == ["GET", "user:1"]

    def test_quoted_arguments(self):
        """测试引号内空格保留"""
        assert tokenize_command("SET greeting 'hello world'") == ["SET", "greeting", "hello world"]
        assert tokenize_command('HSET h f "it\'s ok"') == ["HSET", "h", "f", "it's ok"]

    def test_empty_command(self):
        """测试空命令"""
        assert tokenize_command("   ") == []


class TestDatabaseNumbers:
    """数据库编号与 keyspace 测试类"""

    def test_parse_database_number(self):
        """测试各种编号写法"""
        assert parse_database_number("3") == 3
        assert parse_database_number("db7 (empty)") == 7
        assert parse_database_number("db16") == 0
        assert parse_database_number("abc") == 0
        assert parse_database_number(None) == 0

    def test_keyspace_databases(self):
        """测试 keyspace 解析按编号排序并记录键数量"""
        databases = keyspace_databases(
            {"db10": {"keys": 1, "expires": 0}, "db2": {"keys": 40}, "other": {}}
        )
        assert [d.name for d in databases] == ["db2", "db10"]
        assert databases[0].charset == "40"


class TestGroupKeys:
    """键分组测试类"""

    def test_small_keyspace_listed_individually(self):
        """测试键数量不超过阈值时逐个列出"""
        tables = group_keys(["b", "a:1", "a:2"])
        assert [t.name for t in tables] == ["a:1", "a:2", "b"]
        assert all(t.row_count is None for t in tables)

    def test_large_keyspace_grouped_by_prefix(self):
        """测试超过阈值时按前缀分组"""
        keys = [f"user:{i}" for i in range(5)] + [f"order:{i}" for i in range(3)] + ["plain"]
        tables = group_keys(keys, threshold=4)
        assert {t.name: t.row_count for t in tables} == {
            "order:*": 3,
            "plain": 1,
            "user:*": 5,
        }


class TestSmallHelpers:
    """辅助函数测试类"""

    def test_format_uptime(self):
        """测试运行时间格式化"""
        assert format_uptime(90000) == "1d 1h"
        assert format_uptime("7200") == "2h"
        assert format_uptime(None) is None

    def test_normalize_ttl(self):
        """测试负数 TTL 归一化"""
        assert normalize_ttl(-1) is None
        assert normalize_ttl(-2) is None
        assert normalize_ttl(30) == 30

    def test_render_value(self):
        """测试值渲染"""
        assert render_value("text") == "text"
        assert json.loads(render_value({"a": 1})) == {"a": 1}
        assert render_value(None) is None

    def test_mask_acl_password(self):
        """测试 ACL 密码掩码"""
        assert mask_acl_password(["app", "on", ">secret", "~*"]) == ["app", "on", ">****", "~*"]


class TestFormatCommandResult:
    """命令结果格式化测试类"""

    def test_nil(self):
        """测试 None 结果"""
        result = format_command_result("GET", None)
        assert result.rows == [{"result": NIL_PLACEHOLDER}]
        assert result.row_count == 1

    def test_scalar(self):
        """测试标量结果"""
        result = format_command_result("INCR", 5)
        assert result.rows == [{"result": "5"}]
        assert result.columns[0].type == "number"
        assert format_command_result("GET", "v").columns[0].type == "string"

    def test_empty_list(self):
        """测试空集合结果"""
        result = format_command_result("KEYS", [])
        assert result.rows == [{"result": EMPTY_PLACEHOLDER}]
        assert result.row_count == 1

    def test_hgetall_dict(self):
        """测试 HGETALL 返回字典时转换为 field/value 行"""
        result = format_command_result("hgetall", {"name": "bob", "age": "3"})
        assert [c.name for c in result.columns] == ["field", "value"]
        assert result.rows == [
            {"field": "name", "value": "bob"},
            {"field": "age", "value": "3"},
        ]

    def test_zrangebyscore_flat_pairs(self):
        """测试交替序列转换为 field/value 行"""
        result = format_command_result("ZRANGEBYSCORE", ["a", "1", "b", "2"])
        assert result.rows == [{"field": "a", "value": "1"}, {"field": "b", "value": "2"}]

    def test_generic_list(self):
        """测试普通列表带序号"""
        result = format_command_result("LRANGE", ["x", "y"])
        assert result.rows == [{"#": 1, "value": "x"}, {"#": 2, "value": "y"}]
        assert result.row_count == 2

    def test_generic_dict(self):
        """测试其他字典结果以 JSON 输出"""
        result = format_command_result("INFO", {"redis_version": "7.2"})
        assert json.loads(result.rows[0]["result"]) == {"redis_version": "7.2"}


if __name__ == "__main__":
    pytest.main()
