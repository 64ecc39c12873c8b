# SPDX-FileCopyrightText: 2025-present wangquanqing <wangquanqing1636@sina.com>
#
# SPDX-License-Identifier: MIT
"""
DB Driver - 多数据库统一驱动模块
================================

以同一份驱动接口连接、浏览和变更六类数据库，所有结果以统一的数据结构返回。

主要特性:
- 支持 SQLite, MySQL, MariaDB, PostgreSQL, ClickHouse, MongoDB, Redis
- 统一的元数据浏览、数据分页与结构变更接口
- SSL/TLS 模式解析与 prefer 模式明文回退
- 已保存连接的配置管理与密码加密存储
- 命令行界面 (db-driver)

使用示例:
    >>> from db_driver_tool import ConnectionConfig, create_driver
    >>> config = ConnectionConfig.from_dict({"type": "sqlite", "database": ":memory:"})
    >>> with create_driver(config.type) as driver:
    ...     driver.connect(config)
    ...     driver.execute("SELECT 1 AS one").rows
    [{'one': 1}]
"""

__version__ = "0.1.0"
__author__ = "wangquanqing <wangquanqing1636@sina.com>"
__license__ = "MIT"

# 核心模块导入
from .core.config import ConfigManager
from .core.exceptions import (
    ConfigError,
    ConnectionError,
    CryptoError,
    DatabaseError,
    DBDriverError,
    NotConnectedError,
    ValidationError,
)
from .core.types import ConnectionConfig, DatabaseType, DataOptions, Filter, QueryResult
from .drivers import (
    DRIVER_CLASSES,
    SUPPORTED_DATABASE_TYPES,
    BaseDriver,
    DatabaseDriver,
    create_driver,
)

# 公共API导出列表
__all__ = [
    # 驱动
    "DatabaseDriver",
    "BaseDriver",
    "DRIVER_CLASSES",
    "SUPPORTED_DATABASE_TYPES",
    "create_driver",
    # 数据模型
    "ConnectionConfig",
    "DatabaseType",
    "DataOptions",
    "Filter",
    "QueryResult",
    # 配置管理
    "ConfigManager",
    # 异常类
    "DBDriverError",
    "ConfigError",
    "CryptoError",
    "ValidationError",
    "DatabaseError",
    "ConnectionError",
    "NotConnectedError",
]
