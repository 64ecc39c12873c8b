# SPDX-FileCopyrightText: 2025-present wangquanqing <wangquanqing1636@sina.com>
#
# SPDX-License-Identifier: MIT
"""
驱动层核心模块

提供各后端驱动共享的数据模型与算法，以及连接配置的持久化与加密。

主要功能模块：
- 数据模型: ConnectionConfig / QueryResult / Column 等记录类型与请求类型
- 共享算法: SQL 语句拆分、过滤条件构建、TLS 模式解析、文档与键值命令解析
- ConfigManager: TOML 连接配置存储，敏感字段加密
- CryptoManager: 基于 Fernet 的加密解密
- 异常处理: DBDriverError 异常体系

使用示例：
    >>> from db_driver_tool.core import ConfigManager
    >>>
    >>> config = ConfigManager()
    >>> config.add_connection("local", {"type": "sqlite", "database": "/tmp/app.db"})
    >>> config.get_connection_config("local").type
    <DatabaseType.SQLITE: 'sqlite'>
"""

from .config import ConfigManager
from .crypto import CryptoManager
from .exceptions import (
    NOT_CONNECTED_MESSAGE,
    ConfigError,
    ConnectionError,
    CryptoError,
    DatabaseError,
    DBDriverError,
    DriverError,
    NotConnectedError,
    QueryError,
    ValidationError,
)
from .sql_splitter import split_sql_statements
from .types import (
    DEFAULT_PORTS,
    ConnectionConfig,
    DatabaseType,
    DataOptions,
    DataResult,
    Filter,
    FilterOperator,
    QueryResult,
    SortDirection,
    SSLConfig,
    SSLMode,
)

# 按功能模块分组，便于用户理解和导入
__all__ = [
    # ==================== 配置管理模块 ====================
    "ConfigManager",
    # ==================== 加密管理模块 ====================
    "CryptoManager",
    # ==================== 数据模型 ====================
    "DatabaseType",
    "DEFAULT_PORTS",
    "SSLMode",
    "SSLConfig",
    "ConnectionConfig",
    "QueryResult",
    "Filter",
    "FilterOperator",
    "SortDirection",
    "DataOptions",
    "DataResult",
    # ==================== 共享算法 ====================
    "split_sql_statements",
    # ==================== 异常处理体系 ====================
    # 基础异常类
    "DBDriverError",
    # 配置相关异常
    "ConfigError",
    "ValidationError",
    # 加密相关异常
    "CryptoError",
    # 数据库操作异常
    "DatabaseError",
    "ConnectionError",
    "NotConnectedError",
    "DriverError",
    "QueryError",
    "NOT_CONNECTED_MESSAGE",
]
