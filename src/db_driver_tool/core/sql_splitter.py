"""
多语句 SQL 拆分模块

单遍扫描输入文本，按分号拆分为独立语句。扫描器识别以下状态：
普通文本、单引号字符串、双引号标识符、反引号标识符、行注释（-- 至行尾）、
块注释（/* ... */）。只有在普通文本状态下分号才结束一条语句；
引号内连续两个相同引号视为转义而不是结束。

拆分结果保留注释与引号原文，去除首尾空白并丢弃空语句。
"""

from typing import List

_QUOTES = ("'", '"', "`")


def _scan_quoted(sql: str, start: int, quote: str) -> int:
    """
    从起始引号处扫描到匹配的结束引号

    Returns:
        int: 结束引号之后的位置；未闭合时返回文本长度
    """
    i = start + 1
    length = len(sql)
    while i < length:
        if sql[i] == quote:
            if i + 1 < length and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return length


def _scan_line_comment(sql: str, start: int) -> int:
    """扫描行注释，返回换行符的位置（换行符不属于注释）"""
    end = sql.find("\n", start + 2)
    return len(sql) if end == -1 else end


def _scan_block_comment(sql: str, start: int) -> int:
    """扫描块注释，返回 */ 之后的位置；未闭合时返回文本长度"""
    end = sql.find("*/", start + 2)
    return len(sql) if end == -1 else end + 2


def split_sql_statements(sql: str) -> List[str]:
    """
    将包含多条语句的 SQL 文本拆分为语句列表

    Args:
        sql: 原始 SQL 文本

    Returns:
        List[str]: 去除首尾空白后的非空语句列表，顺序与原文一致

    Example:
        >>> split_sql_statements("SELECT 'a;b'; SELECT 1")
        ["SELECT 'a;b'", 'SELECT 1']
        >>> split_sql_statements("SELECT 1 /* x; y */; -- z;\\n SELECT 2;")
        ['SELECT 1 /* x; y */', '-- z;\\n SELECT 2']
    """
    statements: List[str] = []
    segment_start = 0
    i = 0
    length = len(sql)

    while i < length:
        ch = sql[i]
        if ch in _QUOTES:
            i = _scan_quoted(sql, i, ch)
        elif ch == "-" and sql.startswith("--", i):
            i = _scan_line_comment(sql, i)
        elif ch == "/" and sql.startswith("/*", i):
            i = _scan_block_comment(sql, i)
        elif ch == ";":
            statement = sql[segment_start:i].strip()
            if statement:
                statements.append(statement)
            i += 1
            segment_start = i
        else:
            i += 1

    tail = sql[segment_start:].strip()
    if tail:
        statements.append(tail)
    return statements
