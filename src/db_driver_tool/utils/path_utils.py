"""
路径处理工具模块

为连接配置、密钥文件和日志文件提供统一的存放位置。
支持 Windows、macOS 和 Linux，并允许通过环境变量覆盖根目录。

主要功能：
- 跨平台用户配置目录获取（可被 DB_DRIVER_TOOL_HOME 覆盖）
- 目录存在性检查与自动创建
- 嵌入式数据库文件大小的可读化显示
"""

import os
import platform
from pathlib import Path

# 覆盖配置根目录的环境变量名称
CONFIG_HOME_ENV = "DB_DRIVER_TOOL_HOME"


class PathHelper:
    """
    路径辅助类

    所有方法均为静态方法，无需实例化。

    Example:
        >>> config_dir = PathHelper.get_user_config_dir("db_driver_tool")
        >>> PathHelper.ensure_dir_exists(config_dir / "logs")
        True
    """

    @staticmethod
    def get_user_config_dir(app_name: str = "db_driver_tool") -> Path:
        """
        获取用户配置目录路径

        优先使用环境变量 DB_DRIVER_TOOL_HOME 指定的根目录，否则按操作系统
        选择标准配置目录，并在其下创建应用子目录。创建失败时回退到当前工作目录。

        Args:
            app_name: 应用名称，默认为"db_driver_tool"

        Returns:
            Path: 配置目录的Path对象

        Raises:
            ValueError: 当应用名称为空或不是字符串时
            OSError: 当回退目录也无法创建时

        Note:
            - Windows: %APPDATA%\\{app_name}
            - macOS: ~/Library/Application Support/{app_name}
            - Linux: ~/.config/{app_name}
        """
        if not app_name or not isinstance(app_name, str):
            raise ValueError("应用名称不能为空且必须是字符串")

        override = os.environ.get(CONFIG_HOME_ENV)
        system = platform.system().lower()

        try:
            if override:
                base_dir = Path(override)
            elif system == "windows":
                base_dir = Path(os.environ.get("APPDATA", Path.home()))
            elif system == "darwin":
                base_dir = Path.home() / "Library" / "Application Support"
            else:
                base_dir = Path.home() / ".config"

            config_dir = base_dir / app_name
            config_dir.mkdir(parents=True, exist_ok=True)
            return config_dir

        except OSError as e:
            fallback_dir = Path.cwd() / f".{app_name}"
            try:
                fallback_dir.mkdir(exist_ok=True)
                return fallback_dir
            except OSError:
                raise OSError(f"无法创建配置目录: {str(e)}")

    @staticmethod
    def ensure_dir_exists(dir_path: str | Path) -> bool:
        """
        确保目录存在，不存在时递归创建

        Args:
            dir_path: 目录路径

        Returns:
            bool: 目录存在或创建成功返回True；路径为空或指向普通文件返回False
        """
        if not dir_path:
            return False

        path = Path(dir_path)
        if path.exists():
            return path.is_dir()

        path.mkdir(parents=True, exist_ok=True)
        return True

    @staticmethod
    def format_file_size(size_bytes: int) -> str:
        """
        将文件大小格式化为KB或MB字符串

        小于1MB时以KB显示，否则以MB显示，均保留两位小数。

        Example:
            >>> PathHelper.format_file_size(2048)
            '2.00 KB'
        """
        if size_bytes < 1024 * 1024:
            return f"{size_bytes / 1024:.2f} KB"
        return f"{size_bytes / (1024 * 1024):.2f} MB"
