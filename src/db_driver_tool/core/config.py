"""
已保存连接的配置管理模块

使用 TOML 文件（tomllib 读取，tomli_w 写入）在用户配置目录下保存命名连接。
普通字段以明文保存，便于查看与手工编辑；密码与 SSL 私钥经 CryptoManager
加密后保存在每个连接的 secrets 子表中。

文件结构示例::

    version = "1.0.3"
    app_name = "db_driver_tool"

    [connections.local_pg]
    type = "postgresql"
    host = "localhost"
    port = 5432
    database = "app"
    username = "postgres"

    [connections.local_pg.ssl_config]
    enabled = true
    mode = "prefer"

    [connections.local_pg.secrets]
    password = "gAAAAAB..."

    [metadata]
    created = "2025-01-01T00:00:00+08:00"
    last_modified = "2025-01-02T00:00:00+08:00"
"""

import os
import shutil
import tomllib
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomli_w

from ..utils.logging_utils import get_logger
from ..utils.path_utils import PathHelper
from .crypto import CryptoManager
from .exceptions import ConfigError
from .types import ConnectionConfig

logger = get_logger(__name__)

DEFAULT_APP_NAME = "db_driver_tool"
DEFAULT_CONFIG_FILE = "connections.toml"
KEY_FILE_NAME = "encryption.key"

# 顶层需要加密的字段
SECRET_FIELDS = ("password",)
# ssl_config 中需要加密的字段
SSL_SECRET_FIELDS = ("key",)

REQUIRED_SECTIONS = ("version", "app_name", "connections", "metadata")

ERROR_EMPTY_CONNECTION_NAME = "连接名称不能为空且必须是字符串"
ERROR_INVALID_CONFIG_DICT = "连接配置不能为空且必须是字典"


def _now() -> str:
    return datetime.now().astimezone().isoformat()


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    """TOML 不支持空值，保存前移除值为 None 的键"""
    return {k: v for k, v in data.items() if v is not None}


class ConfigManager:
    """
    命名连接配置管理器

    Attributes:
        app_name (str): 应用名称，决定配置目录
        config_file (str): 配置文件名
        config_dir (Path): 配置目录
        config_path (Path): 配置文件完整路径
        crypto (CryptoManager): 敏感字段加密管理器

    Example:
        >>> manager = ConfigManager()
        >>> manager.add_connection("local", {"type": "sqlite", "database": "/tmp/app.db"})
        >>> manager.get_connection_config("local").type
        <DatabaseType.SQLITE: 'sqlite'>
    """

    def __init__(
        self, app_name: str = DEFAULT_APP_NAME, config_file: str = DEFAULT_CONFIG_FILE
    ) -> None:
        """
        初始化配置管理器，不存在时创建默认配置文件与密钥文件

        Raises:
            ConfigError: 配置文件或密钥初始化失败
        """
        self.app_name = app_name
        self.config_file = config_file
        self.config_dir = PathHelper.get_user_config_dir(app_name)
        self.config_path = self.config_dir / config_file
        try:
            PathHelper.ensure_dir_exists(self.config_dir)
            if not self.config_path.exists():
                self._create_default_config()
            self.crypto = self._load_or_create_crypto()
        except ConfigError:
            raise
        except Exception as e:
            logger.error(f"初始化配置文件失败: {str(e)}")
            raise ConfigError(
                f"配置文件初始化失败: {str(e)}",
                "CONFIG_INIT",
                config_file=str(self.config_path),
            ) from e
        logger.debug(f"配置文件就绪: {self.config_path}")

    # ==================== 文件读写 ====================

    def _create_default_config(self) -> None:
        created = _now()
        self._save_config(
            {
                "version": "1.0.0",
                "app_name": self.app_name,
                "connections": {},
                "metadata": {"created": created, "last_modified": created},
            }
        )
        logger.info(f"创建默认配置文件: {self.config_path}")

    def _load_config(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, "rb") as f:
                config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"配置文件TOML格式错误: {str(e)}")
            raise ConfigError(
                f"配置文件格式无效: {str(e)}",
                "CONFIG_INVALID",
                config_file=str(self.config_path),
            ) from e
        except OSError as e:
            raise ConfigError(
                f"配置文件加载失败: {str(e)}",
                "CONFIG_READ",
                config_file=str(self.config_path),
            ) from e

        for section in REQUIRED_SECTIONS:
            if section not in config:
                raise ConfigError(
                    f"配置文件缺少必需字段: {section}",
                    "CONFIG_INVALID",
                    config_file=str(self.config_path),
                )
        return config

    def _save_config(self, config: Dict[str, Any]) -> None:
        config["metadata"]["last_modified"] = _now()
        try:
            with open(self.config_path, "wb") as f:
                tomli_w.dump(config, f)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"保存配置文件失败: {str(e)}")
            raise ConfigError(
                f"配置文件保存失败: {str(e)}",
                "CONFIG_WRITE",
                config_file=str(self.config_path),
            ) from e
        logger.debug(f"配置文件已保存: {self.config_path}")

    def _load_or_create_crypto(self) -> CryptoManager:
        key_file = self.config_dir / KEY_FILE_NAME
        if key_file.exists():
            with open(key_file, "rb") as f:
                key_data = tomllib.load(f)
            if "password" not in key_data or "salt" not in key_data:
                raise ConfigError("密钥文件格式无效", "CONFIG_KEY_INVALID", config_file=str(key_file))
            logger.debug("加密密钥加载成功")
            return CryptoManager.from_saved_key(key_data["password"], key_data["salt"])

        crypto = CryptoManager()
        fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(crypto.get_key_info(), f)
        logger.info("新加密密钥创建成功")
        return crypto

    @staticmethod
    def _bump_version(config: Dict[str, Any]) -> None:
        """递增修订号（x.y.z 的 z），非标准格式时追加 .1"""
        current = str(config.get("version", "1.0.0"))
        parts = current.split(".")
        if len(parts) == 3 and all(p.isdigit() for p in parts):
            config["version"] = f"{parts[0]}.{parts[1]}.{int(parts[2]) + 1}"
        else:
            config["version"] = f"{current}.1"

    # ==================== 加密转换 ====================

    def _encode_connection(self, connection_config: Dict[str, Any]) -> Dict[str, Any]:
        """将连接字典转换为待保存的形式：密钥字段加密后移入 secrets"""
        stored = _drop_none(dict(connection_config))
        secrets: Dict[str, str] = {}

        for field in SECRET_FIELDS:
            value = stored.pop(field, None)
            if value:
                secrets[field] = self.crypto.encrypt(str(value))

        ssl_config = stored.get("ssl_config")
        if isinstance(ssl_config, dict):
            ssl_config = _drop_none(dict(ssl_config))
            for field in SSL_SECRET_FIELDS:
                value = ssl_config.pop(field, None)
                if value:
                    secrets[f"ssl_{field}"] = self.crypto.encrypt(str(value))
            stored["ssl_config"] = ssl_config

        stored.pop("secrets", None)
        if secrets:
            stored["secrets"] = secrets
        return stored

    def _decode_connection(self, stored: Dict[str, Any]) -> Dict[str, Any]:
        """还原连接字典：解密 secrets 中的字段"""
        connection = dict(stored)
        secrets = connection.pop("secrets", {}) or {}

        for field in SECRET_FIELDS:
            if field in secrets:
                connection[field] = self.crypto.decrypt(secrets[field])

        for field in SSL_SECRET_FIELDS:
            token = secrets.get(f"ssl_{field}")
            if token:
                ssl_config = dict(connection.get("ssl_config") or {})
                ssl_config[field] = self.crypto.decrypt(token)
                connection["ssl_config"] = ssl_config
        return connection

    # ==================== 连接管理 ====================

    @staticmethod
    def _check_name(name: Any) -> None:
        if not name or not isinstance(name, str):
            raise ConfigError(ERROR_EMPTY_CONNECTION_NAME, "CONFIG_INVALID_NAME")

    @staticmethod
    def _check_connection(name: str, connection_config: Any) -> None:
        if not connection_config or not isinstance(connection_config, dict):
            raise ConfigError(ERROR_INVALID_CONFIG_DICT, "CONFIG_INVALID_CONNECTION", connection_name=name)
        try:
            ConnectionConfig.from_dict(connection_config)
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigError(
                f"连接配置无效: {str(e)}",
                "CONFIG_INVALID_CONNECTION",
                connection_name=name,
            ) from e

    def add_connection(self, name: str, connection_config: Dict[str, Any]) -> None:
        """
        添加命名连接

        Args:
            name: 连接名称（唯一）
            connection_config: 连接字典，至少包含 type

        Raises:
            ConfigError: 名称为空、配置无效或连接已存在

        Example:
            >>> manager.add_connection("pg", {
            ...     "type": "postgresql", "host": "localhost", "port": 5432,
            ...     "database": "app", "username": "postgres", "password": "secret",
            ... })
        """
        self._check_name(name)
        self._check_connection(name, connection_config)

        config = self._load_config()
        if name in config["connections"]:
            raise ConfigError(f"连接配置已存在: {name}", "CONFIG_DUPLICATE", connection_name=name)

        config["connections"][name] = self._encode_connection(connection_config)
        self._bump_version(config)
        self._save_config(config)
        logger.info(f"连接配置已添加: {name}")

    def update_connection(self, name: str, connection_config: Dict[str, Any]) -> None:
        """
        覆盖已存在的命名连接

        Raises:
            ConfigError: 连接不存在或配置无效
        """
        self._check_name(name)
        self._check_connection(name, connection_config)

        config = self._load_config()
        if name not in config["connections"]:
            raise ConfigError(f"连接配置不存在: {name}", "CONFIG_NOT_FOUND", connection_name=name)

        config["connections"][name] = self._encode_connection(connection_config)
        self._bump_version(config)
        self._save_config(config)
        logger.info(f"连接配置已更新: {name}")

    def remove_connection(self, name: str) -> None:
        """
        删除命名连接

        Raises:
            ConfigError: 连接不存在
        """
        self._check_name(name)
        config = self._load_config()
        if name not in config["connections"]:
            raise ConfigError(f"连接配置不存在: {name}", "CONFIG_NOT_FOUND", connection_name=name)

        del config["connections"][name]
        self._bump_version(config)
        self._save_config(config)
        logger.info(f"连接配置已删除: {name}")

    def get_connection(self, name: str) -> Dict[str, Any]:
        """
        获取解密后的连接字典

        Security Note:
            返回值包含明文密码，使用后不要写入日志。

        Raises:
            ConfigError: 连接不存在
            CryptoError: 密钥不匹配导致解密失败
        """
        self._check_name(name)
        config = self._load_config()
        if name not in config["connections"]:
            raise ConfigError(f"连接配置不存在: {name}", "CONFIG_NOT_FOUND", connection_name=name)

        connection = self._decode_connection(config["connections"][name])
        logger.debug(f"连接配置已获取: {name}")
        return connection

    def get_connection_config(self, name: str) -> ConnectionConfig:
        """获取命名连接的 ConnectionConfig，id 与 name 缺省为连接名称"""
        data = self.get_connection(name)
        data.setdefault("id", name)
        data.setdefault("name", name)
        return ConnectionConfig.from_dict(data)

    def list_connections(self) -> List[str]:
        """返回所有连接名称"""
        return list(self._load_config()["connections"].keys())

    def get_config_info(self) -> Dict[str, Any]:
        """返回配置文件的版本、连接数量与时间戳"""
        config = self._load_config()
        return {
            "version": config["version"],
            "app_name": config["app_name"],
            "connection_count": len(config["connections"]),
            "created": config["metadata"].get("created"),
            "last_modified": config["metadata"].get("last_modified"),
            "config_file": str(self.config_path),
        }

    def backup_config(self, backup_path: Optional[Path] = None) -> Path:
        """
        备份配置文件

        Args:
            backup_path: 备份路径，None 时在配置目录生成带时间戳的文件名

        Raises:
            ConfigError: 复制失败
        """
        if backup_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = self.config_dir / f"{self.config_file}.backup.{timestamp}"
        try:
            shutil.copy2(self.config_path, backup_path)
        except OSError as e:
            logger.error(f"备份配置文件失败: {str(e)}")
            raise ConfigError(
                f"配置文件备份失败: {str(e)}",
                "CONFIG_BACKUP",
                config_file=str(self.config_path),
            ) from e
        logger.info(f"配置文件已备份: {backup_path}")
        return Path(backup_path)

    def __repr__(self) -> str:
        return (
            f"ConfigManager(app_name='{self.app_name}', "
            f"config_path='{self.config_path}')"
        )
