"""
SSL/TLS 模式解析模块

把 ConnectionConfig 中的旧版布尔开关与 SSLConfig 解析为统一的 TLSOptions，
各后端驱动再将其转换为自身客户端库的参数（pymysql 的 SSLContext、libpq 的
sslmode、redis-py 的 ssl_* 参数、pymongo 的 tls* 参数、clickhouse-connect 的
secure/verify）。

模式语义：
- disable: 不使用 TLS
- prefer: 先尝试 TLS（不校验证书），失败后释放句柄并以明文重试一次
- require: 使用 TLS，是否校验证书由 reject_unauthorized 决定（默认校验）
- verify-ca / verify-full: 使用 TLS 并校验证书，verify-full 额外校验主机名
"""

import hashlib
import os
import ssl
import tempfile
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ..utils.logging_utils import get_logger
from .types import ConnectionConfig, Record, SSLMode

logger = get_logger(__name__)

T = TypeVar("T")

_PEM_MARKER = "-----BEGIN"

_TLS_VERSIONS = {
    "TLSv1": ssl.TLSVersion.TLSv1,
    "TLSv1.1": ssl.TLSVersion.TLSv1_1,
    "TLSv1.2": ssl.TLSVersion.TLSv1_2,
    "TLSv1.3": ssl.TLSVersion.TLSv1_3,
}


@dataclass(frozen=True)
class TLSOptions(Record):
    """
    解析后的 TLS 参数

    Attributes:
        mode: 生效的 SSL 模式
        verify: 是否校验服务端证书
        check_hostname: 是否校验证书主机名
        ca / cert / key: 证书材料（PEM 内容或文件路径）
    """

    mode: SSLMode
    verify: bool
    check_hostname: bool
    ca: Optional[str] = None
    cert: Optional[str] = None
    key: Optional[str] = None
    min_version: Optional[str] = None
    server_name: Optional[str] = None

    @property
    def allows_fallback(self) -> bool:
        """prefer 模式允许回退到明文连接"""
        return self.mode == SSLMode.PREFER


def resolve_tls(config: ConnectionConfig) -> Optional[TLSOptions]:
    """
    解析连接配置中的 SSL 设置

    旧版 ``ssl=True`` 且未指定模式时按 require 处理。

    Returns:
        Optional[TLSOptions]: 不使用 TLS 时返回 None

    Example:
        >>> cfg = ConnectionConfig.from_dict(
        ...     {"type": "mysql", "ssl_config": {"enabled": True, "mode": "prefer"}}
        ... )
        >>> resolve_tls(cfg).verify
        False
    """
    ssl_config = config.ssl_config
    enabled = config.ssl or (ssl_config is not None and ssl_config.enabled)
    if not enabled:
        return None

    mode = ssl_config.mode if ssl_config is not None else None
    if mode is None:
        mode = SSLMode.REQUIRE if config.ssl else SSLMode.DISABLE
    mode = SSLMode(mode)
    if mode == SSLMode.DISABLE:
        return None

    if mode == SSLMode.PREFER:
        verify = False
    elif mode in (SSLMode.VERIFY_CA, SSLMode.VERIFY_FULL):
        verify = True
    else:
        explicit = ssl_config.reject_unauthorized if ssl_config is not None else None
        verify = True if explicit is None else bool(explicit)

    return TLSOptions(
        mode=mode,
        verify=verify,
        check_hostname=verify and mode != SSLMode.VERIFY_CA,
        ca=ssl_config.ca if ssl_config else None,
        cert=ssl_config.cert if ssl_config else None,
        key=ssl_config.key if ssl_config else None,
        min_version=ssl_config.min_version if ssl_config else None,
        server_name=ssl_config.server_name if ssl_config else None,
    )


def is_pem_content(value: Optional[str]) -> bool:
    return bool(value) and _PEM_MARKER in value


def pem_path(value: Optional[str]) -> Optional[str]:
    """
    返回证书材料对应的文件路径

    值本身是 PEM 内容时写入临时目录（按内容哈希命名，权限 0600）并返回该路径；
    否则视为已有的文件路径原样返回。
    """
    if not value:
        return None
    if not is_pem_content(value):
        return value

    cert_dir = os.path.join(tempfile.gettempdir(), "db_driver_tool_certs")
    os.makedirs(cert_dir, mode=0o700, exist_ok=True)
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    path = os.path.join(cert_dir, f"{digest}.pem")
    if not os.path.exists(path):
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(value)
    return path


def build_ssl_context(options: TLSOptions) -> ssl.SSLContext:
    """
    根据 TLSOptions 构建标准库 SSLContext

    Raises:
        ssl.SSLError / OSError: 证书材料无法加载
    """
    context = ssl.create_default_context()
    if options.ca:
        if is_pem_content(options.ca):
            context.load_verify_locations(cadata=options.ca)
        else:
            context.load_verify_locations(cafile=options.ca)
    if options.cert:
        context.load_cert_chain(pem_path(options.cert), pem_path(options.key))

    context.check_hostname = options.check_hostname
    context.verify_mode = ssl.CERT_REQUIRED if options.verify else ssl.CERT_NONE

    if options.min_version:
        version = _TLS_VERSIONS.get(options.min_version)
        if version is None:
            logger.warning(f"忽略未知的最低 TLS 版本: {options.min_version}")
        else:
            context.minimum_version = version
    return context


def connect_with_tls_fallback(
    config: ConnectionConfig,
    attempt: Callable[[Optional[TLSOptions]], T],
    release: Callable[[], None],
) -> T:
    """
    按 SSL 模式建立连接，prefer 模式下失败后以明文重试一次

    Args:
        config: 连接配置
        attempt: 以 TLSOptions（或 None 表示明文）建立连接的回调
        release: 释放首轮尝试遗留句柄的回调，自身异常会被记录并忽略

    Returns:
        T: attempt 的返回值

    Raises:
        Exception: 非 prefer 模式时抛出首轮错误；prefer 模式下重试仍失败时抛出重试的错误
    """
    options = resolve_tls(config)
    try:
        return attempt(options)
    except Exception as e:
        if options is None or not options.allows_fallback:
            raise
        logger.warning(f"{config.type.value} TLS 连接失败，按 prefer 模式回退到明文连接: {e}")

    try:
        release()
    except Exception as release_error:
        logger.warning(f"释放 TLS 连接句柄失败: {release_error}")

    result = attempt(None)
    logger.info(f"{config.type.value} 已通过明文连接（prefer 回退）")
    return result
