# SPDX-FileCopyrightText: 2025-present wangquanqing <wangquanqing1636@sina.com>
#
# SPDX-License-Identifier: MIT
"""
数据库驱动模块包

所有后端驱动实现同一份 DatabaseDriver 协议，调用方通过 create_driver()
按类型标签取得驱动实例，无需关心各后端的客户端库差异。

支持的数据库类型：
- SQLite (SQLAlchemy + 内置 sqlite3)
- MySQL / MariaDB (SQLAlchemy + PyMySQL)
- PostgreSQL (SQLAlchemy + psycopg)
- ClickHouse (clickhouse-connect)
- MongoDB (pymongo)
- Redis (redis-py)

使用示例：
    >>> from db_driver_tool.drivers import create_driver
    >>> from db_driver_tool.core.types import ConnectionConfig
    >>>
    >>> driver = create_driver("sqlite")
    >>> driver.connect(ConnectionConfig.from_dict({"type": "sqlite", "database": ":memory:"}))
    >>> driver.execute("SELECT 1 AS one").rows
    [{'one': 1}]
    >>> driver.disconnect()
"""

from typing import Dict, Type, Union

from ..core.exceptions import ValidationError
from ..core.types import DatabaseType
from .base import BaseDriver, DatabaseDriver
from .clickhouse import ClickHouseDriver
from .mariadb import MariaDBDriver
from .mongodb import MongoDBDriver
from .mysql import MySQLDriver
from .postgres import PostgreSQLDriver
from .redis import RedisDriver
from .sqlite import SQLiteDriver

# 数据库类型到驱动实现的映射（封闭集合）
DRIVER_CLASSES: Dict[DatabaseType, Type[BaseDriver]] = {
    DatabaseType.SQLITE: SQLiteDriver,
    DatabaseType.MYSQL: MySQLDriver,
    DatabaseType.MARIADB: MariaDBDriver,
    DatabaseType.POSTGRESQL: PostgreSQLDriver,
    DatabaseType.CLICKHOUSE: ClickHouseDriver,
    DatabaseType.MONGODB: MongoDBDriver,
    DatabaseType.REDIS: RedisDriver,
}

SUPPORTED_DATABASE_TYPES = frozenset(t.value for t in DRIVER_CLASSES)


def create_driver(db_type: Union[str, DatabaseType]) -> BaseDriver:
    """
    按类型标签创建未连接的驱动实例

    Args:
        db_type: 数据库类型标签，例如 "mysql" 或 DatabaseType.MYSQL

    Returns:
        BaseDriver: 新的驱动实例

    Raises:
        ValidationError: 不支持的数据库类型

    Example:
        >>> create_driver("redis")
        <RedisDriver database=db0, status=未连接>
    """
    try:
        key = DatabaseType(str(getattr(db_type, "value", db_type)).lower())
    except ValueError as e:
        raise ValidationError(
            f"Unsupported database type: {db_type}",
            "UNSUPPORTED_DATABASE_TYPE",
            field_name="type",
            expected=", ".join(sorted(SUPPORTED_DATABASE_TYPES)),
        ) from e
    return DRIVER_CLASSES[key]()


# 按驱动类型分组，便于用户理解和导入
__all__ = [
    # ==================== 驱动契约 ====================
    "DatabaseDriver",
    "BaseDriver",
    # ==================== 关系型驱动 ====================
    "SQLiteDriver",
    "MySQLDriver",
    "MariaDBDriver",
    "PostgreSQLDriver",
    # ==================== 分析型驱动 ====================
    "ClickHouseDriver",
    # ==================== NoSQL 驱动 ====================
    "MongoDBDriver",
    "RedisDriver",
    # ==================== 工厂 ====================
    "DRIVER_CLASSES",
    "SUPPORTED_DATABASE_TYPES",
    "create_driver",
]
