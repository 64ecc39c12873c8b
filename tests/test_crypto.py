"""
加密模块测试
"""

import pytest

from db_driver_tool.core.crypto import CryptoManager
from db_driver_tool.core.exceptions import CryptoError


class TestCryptoManager:
    """CryptoManager测试类"""

    def test_encrypt_decrypt(self):
        """测试加密解密功能"""
        crypto = CryptoManager()
        test_data = "这是一个测试字符串"

        encrypted = crypto.encrypt(test_data)
        decrypted = crypto.decrypt(encrypted)

        assert decrypted == test_data
        assert encrypted != test_data

    def test_empty_string(self):
        """测试空字符串被拒绝"""
        crypto = CryptoManager()

        with pytest.raises(CryptoError) as exc_info:
            crypto.encrypt("")
        assert exc_info.value.error_code == "CRYPTO_INPUT"

    def test_special_characters(self):
        """测试特殊字符"""
        crypto = CryptoManager()
        test_data = '特殊字符!@#$%^&*()_+{}[]|:;"<>,.?/'

        assert crypto.decrypt(crypto.encrypt(test_data)) == test_data

    def test_decrypt_invalid_data(self):
        """测试解密无效数据"""
        crypto = CryptoManager()

        with pytest.raises(CryptoError) as exc_info:
            crypto.decrypt("invalid_encrypted_data")
        assert exc_info.value.error_code == "CRYPTO_INVALID_TOKEN"

    def test_key_persistence(self):
        """测试密钥持久化"""
        crypto1 = CryptoManager()
        key_info = crypto1.get_key_info()

        crypto2 = CryptoManager.from_saved_key(key_info["password"], key_info["salt"])

        test_data = "测试数据"
        assert crypto2.decrypt(crypto1.encrypt(test_data)) == test_data

    def test_different_keys(self):
        """测试不同密钥无法互相解密"""
        token = CryptoManager().encrypt("secret")
        with pytest.raises(CryptoError):
            CryptoManager().decrypt(token)

    def test_missing_saved_key(self):
        """测试缺少口令或盐值"""
        with pytest.raises(CryptoError) as exc_info:
            CryptoManager.from_saved_key("", "c2FsdA==")
        assert exc_info.value.error_code == "CRYPTO_KEY_MISSING"

    def test_repr(self):
        """测试字符串表示不包含口令"""
        crypto = CryptoManager(password="hunter2")
        assert "hunter2" not in repr(crypto)
        assert "salt_length=16" in repr(crypto)


if __name__ == "__main__":
    pytest.main()
