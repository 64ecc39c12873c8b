# SPDX-FileCopyrightText: 2025-present wangquanqing <wangquanqing1636@sina.com>
#
# SPDX-License-Identifier: MIT
"""
驱动层通用工具模块

- 日志管理：setup_logging / get_logger / set_log_level / LogManager / mask_secrets
- 路径处理：PathHelper（用户配置目录、目录创建、文件大小显示）

使用示例：
    >>> from db_driver_tool.utils import get_logger, setup_logging
    >>> setup_logging(level="INFO", log_to_console=True, log_to_file=False)
    >>> logger = get_logger(__name__)
"""

from .logging_utils import (
    DEFAULT_LOG_FORMAT,
    VALID_LOG_LEVELS,
    LogManager,
    get_logger,
    mask_secrets,
    set_log_level,
    setup_logging,
)
from .path_utils import PathHelper

__all__ = [
    # ==================== 日志管理模块 ====================
    "setup_logging",
    "get_logger",
    "set_log_level",
    "mask_secrets",
    "LogManager",
    "DEFAULT_LOG_FORMAT",
    "VALID_LOG_LEVELS",
    # ==================== 路径处理模块 ====================
    "PathHelper",
]
