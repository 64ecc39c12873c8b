"""
MariaDB 驱动

与 MySQL 共用协议与方言，额外提供服务端版本识别和系统/状态变量查询。
"""

from typing import Dict, Optional

from ..core.types import DatabaseType
from ..utils.logging_utils import get_logger
from .mysql import MySQLDriver

logger = get_logger(__name__)


class MariaDBDriver(MySQLDriver):
    """MariaDB 驱动（mysql+pymysql 协议）"""

    db_type = DatabaseType.MARIADB

    def get_server_version(self) -> str:
        """
        获取服务端版本字符串

        Raises:
            NotConnectedError: 尚未连接
        """
        self.ensure_connected("get_server_version")
        return str(self._exec("SELECT VERSION()").scalar() or "")

    def is_mariadb(self) -> bool:
        """
        判断服务端是否为 MariaDB（版本字符串包含 "mariadb"）

        通过 MySQL 兼容端口连接到 MySQL 服务端时返回 False。
        """
        try:
            return "mariadb" in self.get_server_version().lower()
        except Exception as e:
            logger.warning(f"读取服务端版本失败: {e}")
            return False

    def _variables(self, statement: str, pattern: Optional[str]) -> Dict[str, str]:
        if pattern:
            rows = self._fetch_all(f"{statement} LIKE :pattern", pattern=pattern)
        else:
            rows = self._fetch_all(statement)
        return {row["Variable_name"]: str(row["Value"]) for row in rows}

    def get_system_variables(self, pattern: Optional[str] = None) -> Dict[str, str]:
        """
        读取系统变量（SHOW VARIABLES）

        Args:
            pattern: LIKE 模式，例如 "character_set%"

        Example:
            >>> driver.get_system_variables("version%")["version"]
            '11.4.2-MariaDB'
        """
        self.ensure_connected("get_system_variables")
        return self._variables("SHOW VARIABLES", pattern)

    def get_status_variables(self, pattern: Optional[str] = None) -> Dict[str, str]:
        """读取状态变量（SHOW STATUS）"""
        self.ensure_connected("get_status_variables")
        return self._variables("SHOW STATUS", pattern)
