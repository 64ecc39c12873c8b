"""
连接密钥加密模块

使用 cryptography 的 Fernet 对已保存连接中的敏感字段（密码、SSL 私钥）进行
对称加密。Fernet 密钥由 PBKDF2HMAC-SHA256 从随机口令和盐值派生，
口令与盐值保存在配置目录的 encryption.key 中。
"""

import base64
import secrets
from typing import Any, Dict

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..utils.logging_utils import get_logger
from .exceptions import CryptoError

logger = get_logger(__name__)


class CryptoManager:
    """
    敏感字段加密管理器

    Attributes:
        SALT_LENGTH (int): 盐值长度（字节）
        PASSWORD_LENGTH (int): 自动生成口令的随机字节数
        ITERATIONS (int): PBKDF2 迭代次数

    Example:
        >>> crypto = CryptoManager()
        >>> token = crypto.encrypt("secret")
        >>> crypto.decrypt(token)
        'secret'
    """

    SALT_LENGTH = 16
    PASSWORD_LENGTH = 32
    ITERATIONS = 480000

    def __init__(self, password: str | None = None, salt: bytes | None = None):
        """
        初始化加密管理器

        Args:
            password: 派生密钥的口令，None 时自动生成
            salt: 盐值，None 时自动生成

        Raises:
            CryptoError: 密钥派生失败
        """
        self.password = password or base64.urlsafe_b64encode(
            secrets.token_bytes(self.PASSWORD_LENGTH)
        ).decode("utf-8")
        self.salt = salt or secrets.token_bytes(self.SALT_LENGTH)
        self.fernet = self._derive_fernet()
        logger.debug(f"加密管理器初始化完成，盐值长度: {len(self.salt)}")

    def _derive_fernet(self) -> Fernet:
        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=self.salt,
                iterations=self.ITERATIONS,
            )
            key = base64.urlsafe_b64encode(kdf.derive(self.password.encode("utf-8")))
            return Fernet(key)
        except Exception as e:
            logger.error(f"加密密钥派生失败: {str(e)}")
            raise CryptoError(
                f"加密密钥派生失败: {str(e)}", "CRYPTO_DERIVE", operation="derive_key"
            ) from e

    def encrypt(self, data: str) -> str:
        """
        加密字符串

        Returns:
            str: Fernet 令牌文本

        Raises:
            CryptoError: 输入不是非空字符串或加密失败
        """
        if not data or not isinstance(data, str):
            raise CryptoError(
                "加密数据不能为空且必须是字符串", "CRYPTO_INPUT", operation="encrypt"
            )
        try:
            return self.fernet.encrypt(data.encode("utf-8")).decode("utf-8")
        except Exception as e:
            logger.error(f"数据加密失败: {str(e)}")
            raise CryptoError(
                f"加密失败: {str(e)}", "CRYPTO_ENCRYPT", operation="encrypt"
            ) from e

    def decrypt(self, token: str) -> str:
        """
        解密 Fernet 令牌

        Raises:
            CryptoError: 令牌被篡改、密钥不匹配或输入无效
        """
        if not token or not isinstance(token, str):
            raise CryptoError(
                "解密数据不能为空且必须是字符串", "CRYPTO_INPUT", operation="decrypt"
            )
        try:
            return self.fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            logger.error("解密令牌无效")
            raise CryptoError(
                "解密失败: 加密数据可能被篡改或密钥不匹配",
                "CRYPTO_INVALID_TOKEN",
                operation="decrypt",
            ) from e

    def get_key_info(self) -> Dict[str, Any]:
        """
        返回用于持久化的密钥信息

        Warning:
            返回值包含口令，只能写入权限受限的密钥文件。
        """
        return {
            "salt": base64.urlsafe_b64encode(self.salt).decode("utf-8"),
            "password": self.password,
            "iterations": self.ITERATIONS,
        }

    @classmethod
    def from_saved_key(cls, password: str, salt: str) -> "CryptoManager":
        """
        从保存的口令与 base64 盐值恢复加密管理器

        Raises:
            CryptoError: 口令或盐值缺失、格式无效
        """
        if not password or not salt:
            raise CryptoError(
                "密码和盐值不能为空", "CRYPTO_KEY_MISSING", operation="derive_key"
            )
        try:
            salt_bytes = base64.urlsafe_b64decode(salt.encode("utf-8"))
        except (ValueError, TypeError) as e:
            raise CryptoError(
                f"盐值格式无效: {str(e)}", "CRYPTO_KEY_INVALID", operation="derive_key"
            ) from e
        return cls(password, salt_bytes)

    def __repr__(self) -> str:
        return f"<CryptoManager salt_length={len(self.salt)}, iterations={self.ITERATIONS}>"
