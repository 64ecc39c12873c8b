"""
DB Driver CLI 工具
==================

提供命令行界面来管理已保存的连接，并通过统一的驱动接口浏览和操作数据库。

功能特性:
- 支持 SQLite, MySQL, MariaDB, PostgreSQL, ClickHouse, MongoDB, Redis
- 连接配置管理 (添加、更新、删除、测试、查看)
- 执行 SQL / shell 命令 / Redis 命令，多条 SQL 语句自动拆分
- 浏览库、表、列、DDL 与表数据（过滤、排序、分页）
- 多种输出格式支持 (表格、JSON、CSV)

使用示例:
    db-driver add pg-dev --type postgresql --host localhost --username postgres
    db-driver list
    db-driver query pg-dev "SELECT 1; SELECT 2"
    db-driver data pg-dev users --filter age:>:18 --order-by id --desc --limit 20
"""

import argparse
import csv
import json
import sys
from typing import Any, Dict, List, Optional, Union

from .core.config import ConfigManager
from .core.exceptions import ValidationError
from .core.types import (
    DatabaseType,
    DataOptions,
    Filter,
    FilterOperator,
    QueryResult,
    SortDirection,
)
from .drivers import SUPPORTED_DATABASE_TYPES, BaseDriver, create_driver
from .utils.logging_utils import VALID_LOG_LEVELS, get_logger, setup_logging

logger = get_logger(__name__)

# 命令不是 SQL、不按分号拆分的后端
COMMAND_BACKENDS = (DatabaseType.MONGODB, DatabaseType.REDIS)

# --filter 中可用的运算符别名
OPERATOR_ALIASES = {
    "eq": FilterOperator.EQ,
    "ne": FilterOperator.NE,
    "gt": FilterOperator.GT,
    "lt": FilterOperator.LT,
    "ge": FilterOperator.GE,
    "le": FilterOperator.LE,
    "like": FilterOperator.LIKE,
    "notlike": FilterOperator.NOT_LIKE,
    "in": FilterOperator.IN,
    "notin": FilterOperator.NOT_IN,
    "null": FilterOperator.IS_NULL,
    "notnull": FilterOperator.IS_NOT_NULL,
}


def convert_value_type(value: str) -> Union[str, int, float, bool]:
    """
    智能转换参数值的数据类型

    支持转换: 布尔值(true/false)、整数、浮点数、字符串

    Example:
        >>> convert_value_type("true")
        True
        >>> convert_value_type("123")
        123
        >>> convert_value_type("3.14")
        3.14
        >>> convert_value_type("hello")
        'hello'
    """
    value_lower = value.lower().strip()

    if value_lower in ("true", "false"):
        return value_lower == "true"

    if value.lstrip("-").isdigit():
        return int(value)

    try:
        return float(value)
    except ValueError:
        pass

    return value


def parse_filter(text: str) -> Filter:
    """
    解析 ``列:运算符:值`` 形式的过滤条件

    运算符可以是 ``=``、``>=``、``LIKE`` 等原文，也可以是 eq / gt / like / in / null 等别名；
    IN / NOT IN 的值以逗号分隔。

    Raises:
        ValidationError: 格式错误或运算符未知

    Example:
        >>> parse_filter("age:>:18")
        Filter(column='age', operator=<FilterOperator.GT: '>'>, value=18)
        >>> parse_filter("status:in:a,b").value
        ['a', 'b']
    """
    parts = text.split(":", 2)
    if len(parts) < 2 or not parts[0]:
        raise ValidationError(
            f"无效的过滤条件: {text}",
            "INVALID_FILTER",
            field_name="filter",
            expected="column:operator:value",
        )
    column, op_text = parts[0], parts[1].strip()
    raw_value = parts[2] if len(parts) == 3 else None

    operator = OPERATOR_ALIASES.get(op_text.lower().replace(" ", "").replace("_", ""))
    if operator is None:
        try:
            operator = FilterOperator(op_text.upper())
        except ValueError as e:
            raise ValidationError(
                f"未知的过滤运算符: {op_text}",
                "INVALID_FILTER",
                field_name="filter",
                expected=", ".join(o.value for o in FilterOperator),
            ) from e

    value: Any = None
    if operator in (FilterOperator.IN, FilterOperator.NOT_IN):
        value = [convert_value_type(v.strip()) for v in (raw_value or "").split(",") if v.strip()]
    elif operator not in (FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL):
        value = convert_value_type(raw_value) if raw_value is not None else None
    return Filter(column=column, operator=operator, value=value)


class DBDriverCLI:
    """
    DB Driver 命令行接口主类

    Attributes:
        config_manager (Optional[ConfigManager]): 连接配置管理器，首次使用时创建
        BASIC_PARAMS (List[str]): 基本连接参数列表
    """

    BASIC_PARAMS = [
        "type",
        "host",
        "port",
        "username",
        "password",
        "database",
        "filepath",
        "ssl",
    ]

    def __init__(self) -> None:
        self.config_manager: Optional[ConfigManager] = None

    def _ensure_config_manager(self) -> ConfigManager:
        """
        确保配置管理器已初始化

        Raises:
            SystemExit: 初始化失败
        """
        if self.config_manager is None:
            try:
                self.config_manager = ConfigManager()
            except Exception as e:
                logger.error(f"初始化配置管理器失败: {e}")
                print(f"❌ 初始化配置管理器失败: {e}")
                sys.exit(1)
        return self.config_manager

    # ==================== 连接配置 ====================

    def _build_connection_config(
        self, args: argparse.Namespace, base: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """由命令行参数构建（或在 base 上更新）连接字典"""
        config = dict(base or {})
        for param in self.BASIC_PARAMS:
            value = getattr(args, param, None)
            if value is not None and value is not False:
                config[param] = value

        ssl_mode = getattr(args, "ssl_mode", None)
        materials = {
            field: getattr(args, f"ssl_{field}", None) for field in ("ca", "cert", "key")
        }
        if ssl_mode or any(materials.values()):
            ssl_config = dict(config.get("ssl_config") or {})
            if ssl_mode:
                ssl_config.update({"enabled": ssl_mode != "disable", "mode": ssl_mode})
            else:
                ssl_config.setdefault("enabled", True)
            ssl_config.update({k: v for k, v in materials.items() if v})
            config["ssl_config"] = ssl_config
        return config

    def add_connection(self, args: argparse.Namespace) -> None:
        """
        添加新的连接配置

        Raises:
            SystemExit: 添加失败
        """
        manager = self._ensure_config_manager()
        try:
            manager.add_connection(args.name, self._build_connection_config(args))
            print(f"✅ 连接 '{args.name}' 添加成功")
        except Exception as e:
            logger.error(f"添加连接失败: {e}")
            print(f"❌ 添加连接失败: {e}")
            sys.exit(1)

    def update_connection(self, args: argparse.Namespace) -> None:
        """
        更新连接配置，未指定的参数保持不变

        Raises:
            SystemExit: 更新失败
        """
        manager = self._ensure_config_manager()
        try:
            existing = manager.get_connection(args.name)
            manager.update_connection(args.name, self._build_connection_config(args, existing))
            print(f"✅ 连接 '{args.name}' 更新成功")
        except Exception as e:
            logger.error(f"更新连接失败: {e}")
            print(f"❌ 更新连接失败: {e}")
            sys.exit(1)

    def remove_connection(self, args: argparse.Namespace) -> None:
        manager = self._ensure_config_manager()
        try:
            manager.remove_connection(args.name)
            print(f"✅ 连接 '{args.name}' 已删除")
        except Exception as e:
            logger.error(f"删除连接失败: {e}")
            print(f"❌ 删除连接失败: {e}")
            sys.exit(1)

    @staticmethod
    def _sanitize_sensitive_info(config: Dict[str, Any]) -> Dict[str, Any]:
        """隐藏密码与 SSL 私钥"""
        safe_config = dict(config)
        if safe_config.get("password"):
            safe_config["password"] = "***"
        ssl_config = safe_config.get("ssl_config")
        if isinstance(ssl_config, dict) and ssl_config.get("key"):
            safe_config["ssl_config"] = {**ssl_config, "key": "***"}
        return safe_config

    def show_connection(self, args: argparse.Namespace) -> None:
        """显示连接详情，敏感信息隐藏显示"""
        manager = self._ensure_config_manager()
        try:
            config = self._sanitize_sensitive_info(manager.get_connection(args.name))
        except Exception as e:
            logger.error(f"获取连接详情失败: {e}")
            print(f"❌ 获取连接详情失败: {e}")
            sys.exit(1)

        print(f"🔍 连接 '{args.name}' 的配置:")
        for key, value in config.items():
            if isinstance(value, dict):
                print(f"  {key}:")
                for sub_key, sub_value in value.items():
                    print(f"    {sub_key}: {sub_value}")
            else:
                print(f"  {key}: {value}")

    def list_connections(self, _args: argparse.Namespace) -> None:
        manager = self._ensure_config_manager()
        try:
            connections = manager.list_connections()
        except Exception as e:
            logger.error(f"列出连接失败: {e}")
            print(f"❌ 列出连接失败: {e}")
            sys.exit(1)

        if connections:
            print("📋 已配置的连接:")
            for i, conn in enumerate(connections, 1):
                print(f"  {i}. {conn}")
        else:
            print("ℹ️  没有配置任何连接")

    def test_connection(self, args: argparse.Namespace) -> None:
        """
        测试连接并显示延迟与服务端信息

        Raises:
            SystemExit: 测试失败
        """
        manager = self._ensure_config_manager()
        try:
            config = manager.get_connection_config(args.name)
            result = create_driver(config.type).test_connection(config)
        except Exception as e:
            logger.error(f"连接测试失败: {e}")
            print(f"❌ 连接测试失败: {e}")
            sys.exit(1)

        if not result.success:
            print(f"❌ 连接 '{args.name}' 测试失败: {result.error}")
            sys.exit(1)
        print(f"✅ 连接 '{args.name}' 测试成功 ({result.latency} ms)")
        if result.server_version:
            print(f"  版本: {result.server_version}")
        for key, value in result.server_info.items():
            print(f"  {key}: {value}")

    # ==================== 驱动操作 ====================

    def _open_driver(self, name: str) -> BaseDriver:
        """
        按连接名称创建驱动并建立连接

        Raises:
            SystemExit: 连接失败
        """
        manager = self._ensure_config_manager()
        try:
            config = manager.get_connection_config(name)
            driver = create_driver(config.type)
            driver.connect(config)
            return driver
        except Exception as e:
            logger.error(f"连接 '{name}' 失败: {e}")
            print(f"❌ 连接 '{name}' 失败: {e}")
            sys.exit(1)

    def execute_query(self, args: argparse.Namespace) -> None:
        """
        执行命令

        SQL 后端按分号拆分为多条语句依次执行，遇到第一条错误即停止；
        MongoDB 与 Redis 的命令整体执行。

        Raises:
            SystemExit: 任一语句执行失败
        """
        with self._open_driver(args.connection) as driver:
            if driver.db_type in COMMAND_BACKENDS:
                results = [driver.execute(args.query)]
            else:
                results = driver.execute_many(args.query).results

        has_error = False
        for index, result in enumerate(results, 1):
            if len(results) > 1:
                print(f"-- 语句 {index}/{len(results)}")
            if result.error:
                has_error = True
                print(f"❌ 执行失败: {result.error}")
                continue
            self._display_query_result(result, args.format)
        if has_error:
            sys.exit(1)

    def list_databases(self, args: argparse.Namespace) -> None:
        with self._open_driver(args.connection) as driver:
            databases = driver.get_databases()
        self._display_results([d.to_dict() for d in databases], args.format)

    def list_tables(self, args: argparse.Namespace) -> None:
        with self._open_driver(args.connection) as driver:
            tables = driver.get_tables(args.database)
        self._display_results([t.to_dict() for t in tables], args.format)

    def show_columns(self, args: argparse.Namespace) -> None:
        with self._open_driver(args.connection) as driver:
            columns = driver.get_columns(args.table, args.database)
        self._display_results([c.to_dict() for c in columns], args.format)

    def show_ddl(self, args: argparse.Namespace) -> None:
        with self._open_driver(args.connection) as driver:
            print(driver.get_table_ddl(args.table, args.database))

    def browse_data(self, args: argparse.Namespace) -> None:
        """
        浏览表数据

        Raises:
            SystemExit: 过滤条件或分页参数无效
        """
        try:
            options = DataOptions(
                filters=[parse_filter(f) for f in args.filter or []],
                order_by=args.order_by,
                order_direction=SortDirection.DESC if args.desc else SortDirection.ASC,
                limit=args.limit,
                offset=args.offset,
            )
        except ValidationError as e:
            print(f"❌ {e}")
            sys.exit(1)

        with self._open_driver(args.connection) as driver:
            try:
                result = driver.get_table_data(args.table, options, args.database)
            except Exception as e:
                logger.error(f"读取表数据失败: {e}")
                print(f"❌ 读取表数据失败: {e}")
                sys.exit(1)

        self._display_results(result.rows, args.format)
        if args.format == "table":
            print(f"共 {result.total_count} 行，偏移 {result.offset}，每页 {result.limit}")

    # ==================== 输出 ====================

    def _display_query_result(self, result: QueryResult, format: str) -> None:
        if result.columns:
            self._display_results(result.rows, format, [c.name for c in result.columns])
        if result.affected_rows is not None:
            print(f"✅ 执行成功，影响行数: {result.affected_rows}")
        if format == "table":
            print(f"耗时: {result.execution_time} ms")

    def _display_results(
        self, results: List[Dict[str, Any]], format: str = "table", headers: Optional[List[str]] = None
    ) -> None:
        """以指定格式显示结果行"""
        if format == "json":
            print(json.dumps(results, indent=2, ensure_ascii=False, default=str))
            return
        if not results:
            print("没有结果")
            return
        headers = headers or list(results[0].keys())
        if format == "csv":
            writer = csv.DictWriter(sys.stdout, fieldnames=headers, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(results)
        else:
            self._display_table(results, headers)

    def _display_table(self, results: List[Dict[str, Any]], headers: List[str]) -> None:
        """以表格形式显示结果，单列最宽 50 个字符"""
        max_col_width = 50
        col_widths = {header: len(str(header)) for header in headers}
        for row in results:
            for header in headers:
                col_widths[header] = max(col_widths[header], len(self._cell(row.get(header))))
        for header in headers:
            col_widths[header] = min(col_widths[header], max_col_width)

        header_line = " | ".join(f"{header:<{col_widths[header]}}" for header in headers)
        separator = "-+-".join("-" * col_widths[header] for header in headers)

        print(separator)
        print(header_line)
        print(separator)
        for row in results:
            print(
                " | ".join(
                    f"{self._truncate_value(self._cell(row.get(h)), col_widths[h]):<{col_widths[h]}}"
                    for h in headers
                )
            )
        print(separator)
        print(f"总计: {len(results)} 行")

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False, default=str)
        return str(value)

    @staticmethod
    def _truncate_value(value: str, max_length: int) -> str:
        if len(value) <= max_length:
            return value
        return value[: max_length - 3] + "..."


class ChineseHelpFormatter(argparse.RawDescriptionHelpFormatter):
    """中文帮助格式化器，优化帮助信息显示"""

    def _format_usage(self, usage, actions, groups, prefix):
        if prefix is None:
            prefix = "\n使用情况: "
        return super()._format_usage(usage, actions, groups, prefix)

    def start_section(self, heading):
        if heading == "options":
            heading = "下列选项可用"
        super().start_section(heading)


def _setup_connection_arguments(parser: argparse.ArgumentParser, required_type: bool) -> None:
    """设置连接相关的命令行参数"""
    parser.add_argument("name", help="连接名称")
    parser.add_argument(
        "-T",
        "--type",
        required=required_type,
        choices=sorted(SUPPORTED_DATABASE_TYPES),
        help="数据库类型",
    )
    parser.add_argument("-H", "--host", help="数据库主机")
    parser.add_argument("-P", "--port", type=int, help="数据库端口")
    parser.add_argument("-u", "--username", help="用户名")
    parser.add_argument("-p", "--password", help="密码")
    parser.add_argument("-d", "--database", help="数据库名（Redis 为库编号，MongoDB 可为完整 URI）")
    parser.add_argument("-f", "--filepath", help="SQLite 数据库文件路径")
    parser.add_argument("--ssl", action="store_true", help="启用 SSL（等同于 --ssl-mode require）")
    parser.add_argument(
        "--ssl-mode",
        choices=["disable", "prefer", "require", "verify-ca", "verify-full"],
        help="SSL 模式",
    )
    parser.add_argument("--ssl-ca", help="CA 证书文件路径")
    parser.add_argument("--ssl-cert", help="客户端证书文件路径")
    parser.add_argument("--ssl-key", help="客户端私钥文件路径")


def _add_output_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=["table", "json", "csv"],
        default="table",
        help="输出格式 (默认: table)",
    )


def create_argument_parser(cli_instance: DBDriverCLI) -> argparse.ArgumentParser:
    """
    创建命令行参数解析器

    Args:
        cli_instance (DBDriverCLI): 已初始化的CLI实例
    """
    parser = argparse.ArgumentParser(
        prog="db-driver",
        usage="db-driver [<命令>] [<选项>]",
        description="DB Driver - 多数据库统一驱动工具",
        formatter_class=ChineseHelpFormatter,
        epilog="""
使用示例:
  db-driver add pg-dev --type postgresql --host localhost --username postgres
  db-driver list
  db-driver query pg-dev "SELECT * FROM users"
  db-driver tables redis-dev --database db1
  db-driver data pg-dev users --filter name:like:bob --limit 10
        """,
        add_help=False,
    )
    parser.add_argument(
        "-h",
        "--help",
        action="help",
        default=argparse.SUPPRESS,
        help="显示选定命令的帮助信息",
    )
    parser.add_argument(
        "--log-level",
        choices=VALID_LOG_LEVELS,
        default="WARNING",
        help="日志级别 (默认: WARNING)",
    )

    subparsers = parser.add_subparsers(title="下列命令有效", dest="command")

    add_parser = subparsers.add_parser("add", help="添加新的数据库连接")
    _setup_connection_arguments(add_parser, required_type=True)
    add_parser.set_defaults(func=cli_instance.add_connection)

    update_parser = subparsers.add_parser("update", help="更新连接配置")
    _setup_connection_arguments(update_parser, required_type=False)
    update_parser.set_defaults(func=cli_instance.update_connection)

    remove_parser = subparsers.add_parser("remove", help="删除连接")
    remove_parser.add_argument("name", help="连接名称")
    remove_parser.set_defaults(func=cli_instance.remove_connection)

    show_parser = subparsers.add_parser("show", help="显示连接详情")
    show_parser.add_argument("name", help="连接名称")
    show_parser.set_defaults(func=cli_instance.show_connection)

    list_parser = subparsers.add_parser("list", help="列出所有连接")
    list_parser.set_defaults(func=cli_instance.list_connections)

    test_parser = subparsers.add_parser("test", help="测试连接")
    test_parser.add_argument("name", help="连接名称")
    test_parser.set_defaults(func=cli_instance.test_connection)

    query_parser = subparsers.add_parser("query", help="执行 SQL / shell 命令 / Redis 命令")
    query_parser.add_argument("connection", help="连接名称")
    query_parser.add_argument("query", help="命令文本，SQL 可包含多条以分号分隔的语句")
    _add_output_argument(query_parser)
    query_parser.set_defaults(func=cli_instance.execute_query)

    databases_parser = subparsers.add_parser("databases", help="列出数据库")
    databases_parser.add_argument("connection", help="连接名称")
    _add_output_argument(databases_parser)
    databases_parser.set_defaults(func=cli_instance.list_databases)

    tables_parser = subparsers.add_parser("tables", help="列出表 / 集合 / 键")
    tables_parser.add_argument("connection", help="连接名称")
    tables_parser.add_argument("--database", help="数据库（PostgreSQL 为 schema）")
    _add_output_argument(tables_parser)
    tables_parser.set_defaults(func=cli_instance.list_tables)

    for command, help_text, func in (
        ("columns", "显示表的列", cli_instance.show_columns),
        ("ddl", "显示表的 DDL", cli_instance.show_ddl),
    ):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("connection", help="连接名称")
        sub.add_argument("table", help="表名")
        sub.add_argument("--database", help="数据库（PostgreSQL 为 schema）")
        if command == "columns":
            _add_output_argument(sub)
        sub.set_defaults(func=func)

    data_parser = subparsers.add_parser("data", help="浏览表数据")
    data_parser.add_argument("connection", help="连接名称")
    data_parser.add_argument("table", help="表名")
    data_parser.add_argument("--database", help="数据库（PostgreSQL 为 schema）")
    data_parser.add_argument(
        "--filter",
        action="append",
        help="过滤条件，格式 列:运算符:值，可重复指定",
    )
    data_parser.add_argument("--order-by", help="排序列")
    data_parser.add_argument("--desc", action="store_true", help="倒序排列")
    data_parser.add_argument("--limit", type=int, help="每页行数")
    data_parser.add_argument("--offset", type=int, help="偏移量")
    _add_output_argument(data_parser)
    data_parser.set_defaults(func=cli_instance.browse_data)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """DB Driver CLI 主入口函数"""
    cli = DBDriverCLI()
    parser = create_argument_parser(cli)

    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        parser.print_help()
        sys.exit(0)

    args = parser.parse_args(argv)
    try:
        setup_logging(level=args.log_level)
    except (OSError, ValueError) as e:
        print(f"⚠️  日志初始化失败: {e}", file=sys.stderr)

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
