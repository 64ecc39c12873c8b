"""
多语句 SQL 拆分测试
"""

import pytest

from db_driver_tool.core.sql_splitter import split_sql_statements


class TestSplitSqlStatements:
    """split_sql_statements 测试类"""

    def test_simple_statements(self):
        """测试普通分号拆分"""
        assert split_sql_statements("SELECT 1; SELECT 2;") == ["SELECT 1", "SELECT 2"]

    def test_trailing_statement_without_semicolon(self):
        """测试末尾没有分号的语句"""
        assert split_sql_statements("SELECT 1;\nSELECT 2") == ["SELECT 1", "SELECT 2"]

    def test_semicolon_inside_string(self):
        """测试单引号字符串中的分号"""
        assert split_sql_statements("SELECT 'a;b'; SELECT 1") == ["SELECT 'a;b'", "SELECT 1"]

    def test_doubled_quote_escape(self):
        """测试连续两个单引号视为转义"""
        sql = "INSERT INTO t VALUES ('it''s; fine'); SELECT 2"
        assert split_sql_statements(sql) == ["INSERT INTO t VALUES ('it''s; fine')", "SELECT 2"]

    def test_quoted_identifiers(self):
        """测试双引号与反引号标识符中的分号"""
        sql = 'SELECT "a;b" FROM `c;d`; SELECT 3'
        assert split_sql_statements(sql) == ['SELECT "a;b" FROM `c;d`', "SELECT 3"]

    def test_line_comment(self):
        """测试行注释中的分号"""
        sql = "SELECT 1 -- note; here\n; SELECT 2"
        assert split_sql_statements(sql) == ["SELECT 1 -- note; here", "SELECT 2"]

    def test_block_comment(self):
        """测试块注释中的分号"""
        sql = "SELECT /* ; */ 1; SELECT 2"
        assert split_sql_statements(sql) == ["SELECT /* ; */ 1", "SELECT 2"]

    def test_empty_statements_dropped(self):
        """测试空语句被丢弃"""
        assert split_sql_statements("  ; ;;  \n ") == []
        assert split_sql_statements("") == []

    def test_unterminated_string(self):
        """测试未闭合的字符串吞掉剩余文本"""
        assert split_sql_statements("SELECT 'abc; SELECT 2") == ["SELECT 'abc; SELECT 2"]

    def test_unterminated_block_comment(self):
        """测试未闭合的块注释"""
        assert split_sql_statements("SELECT 1 /* ; SELECT 2") == ["SELECT 1 /* ; SELECT 2"]


if __name__ == "__main__":
    pytest.main()
