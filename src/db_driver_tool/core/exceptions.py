"""
驱动层自定义异常模块

驱动层有两条失败通道：
1. 建立连接的调用（connect / 部分 test_connection 内部流程）抛出 ConnectionError；
2. 其余操作不抛出预期内的失败，而是返回带 error 字段的结果对象。

本模块的异常主要服务于第一条通道，以及配置、加密、参数校验等周边功能。

异常类层次结构：
DBDriverError
├── ConfigError (连接配置存储异常)
├── CryptoError (加密解密异常)
├── ValidationError (参数/数据校验异常)
└── DatabaseError (数据库操作基础异常)
    ├── ConnectionError (连接建立失败)
    ├── NotConnectedError (未连接时调用了需要连接的操作)
    ├── DriverError (驱动类型或驱动库异常)
    └── QueryError (命令执行异常)
"""

from typing import Any, Dict

# 未连接时的统一错误消息
NOT_CONNECTED_MESSAGE = "Not connected to database"


class DBDriverError(Exception):
    """
    驱动层基础异常类

    Attributes:
        message (str): 异常描述信息
        error_code (str | None): 错误代码
        details (Dict[str, Any]): 上下文信息

    Example:
        >>> try:
        ...     raise DBDriverError("测试异常", "TEST_001", {"key": "value"})
        ... except DBDriverError as e:
        ...     print(e.to_dict()["error_code"])
        TEST_001
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        """
        返回异常的字符串表示

        Example:
            >>> str(DBDriverError("连接失败", "CONN_001"))
            'DBDriverError: 连接失败 (错误代码: CONN_001)'
        """
        base_str = f"{self.__class__.__name__}: {self.message}"
        if self.error_code:
            base_str += f" (错误代码: {self.error_code})"
        return base_str

    def to_dict(self) -> Dict[str, Any]:
        """将异常信息转换为可序列化的字典"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ConfigError(DBDriverError):
    """
    连接配置存储异常

    处理 TOML 配置文件的读取、写入、校验以及连接条目不存在等错误。

    Attributes:
        config_file (str | None): 相关的配置文件路径
        connection_name (str | None): 相关的连接名称
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        config_file: str | None = None,
        connection_name: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code, details)
        self.config_file = config_file
        self.connection_name = connection_name

        if config_file:
            self.details["config_file"] = config_file
        if connection_name:
            self.details["connection_name"] = connection_name


class CryptoError(DBDriverError):
    """
    加密解密异常

    Attributes:
        operation (str | None): 失败的操作（encrypt/decrypt/derive_key）
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        operation: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code, details)
        self.operation = operation
        if operation:
            self.details["operation"] = operation


class ValidationError(DBDriverError):
    """
    参数校验异常

    用于未知数据库类型、非法过滤条件、格式错误的命令行参数等。

    Attributes:
        field_name (str | None): 校验失败的字段名
        expected (str | None): 期望的取值说明

    Notes:
        - 不记录实际值，避免泄露密码等敏感信息
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        field_name: str | None = None,
        expected: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code, details)
        self.field_name = field_name
        self.expected = expected
        if field_name:
            self.details["field_name"] = field_name
        if expected:
            self.details["expected"] = expected


class DatabaseError(DBDriverError):
    """
    数据库操作基础异常

    Attributes:
        database_type (str | None): 数据库类型（sqlite/mysql/postgresql/...）
        operation (str | None): 操作名称（connect/execute/get_tables/...）
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        database_type: str | None = None,
        operation: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code, details)
        self.database_type = database_type
        self.operation = operation
        if database_type:
            self.details["database_type"] = database_type
        if operation:
            self.details["operation"] = operation


class ConnectionError(DatabaseError):
    """
    连接建立失败

    message 保留原生驱动的错误文本；prefer 模式回退失败时即为回退
    （明文）连接的错误。

    Attributes:
        host (str | None): 主机地址
        port (int | None): 端口
        database (str | None): 数据库名称或文件路径

    Example:
        >>> raise ConnectionError(
        ...     "Access denied for user 'root'",
        ...     "CONN_001",
        ...     database_type="mysql",
        ...     host="localhost",
        ...     port=3306,
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        database_type: str | None = None,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message, error_code, database_type, operation="connect", details=details
        )
        self.host = host
        self.port = port
        self.database = database
        if host:
            self.details["host"] = host
        if port:
            self.details["port"] = port
        if database:
            self.details["database"] = database


class NotConnectedError(DatabaseError):
    """在 connect 成功之前调用了需要连接的操作"""

    def __init__(
        self,
        message: str = NOT_CONNECTED_MESSAGE,
        database_type: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, "NOT_CONNECTED", database_type, operation)


class DriverError(DatabaseError):
    """
    驱动异常

    未知的数据库类型标签、驱动库缺失或驱动内部状态异常。

    Attributes:
        driver_name (str | None): 驱动名称
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        driver_name: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code, details=details)
        self.driver_name = driver_name
        if driver_name:
            self.details["driver_name"] = driver_name


class QueryError(DatabaseError):
    """
    命令执行异常

    Attributes:
        query (str | None): 执行的语句或命令

    Notes:
        - details 中仅保存前100个字符的预览
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        query: str | None = None,
        database_type: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code, database_type, "execute", details)
        self.query = query
        if query:
            self.details["query_preview"] = self._get_query_preview(query)

    @staticmethod
    def _get_query_preview(query: str, max_length: int = 100) -> str:
        if len(query) <= max_length:
            return query
        return query[:max_length] + "..."


def error_message(error: BaseException | Any) -> str:
    """
    提取用于结果对象 error 字段的消息文本

    自定义异常返回 message（不含类名与错误代码），其他异常返回 str()，
    非异常对象同样字符串化。

    Example:
        >>> error_message(ValueError("bad value"))
        'bad value'
        >>> error_message(NotConnectedError())
        'Not connected to database'
    """
    if isinstance(error, DBDriverError):
        return error.message
    return str(error)
