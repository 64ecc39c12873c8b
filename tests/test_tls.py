"""
SSL/TLS 模式解析与 prefer 回退测试
"""

import os
import stat
from unittest.mock import Mock

import pytest

from db_driver_tool.core.tls import (
    connect_with_tls_fallback,
    is_pem_content,
    pem_path,
    resolve_tls,
)
from db_driver_tool.core.types import ConnectionConfig, SSLMode

PEM = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"


def make_config(**ssl_config):
    data = {"type": "mysql", "host": "localhost"}
    if ssl_config:
        data["ssl_config"] = ssl_config
    return ConnectionConfig.from_dict(data)


class TestResolveTls:
    """resolve_tls 测试类"""

    def test_no_ssl(self):
        """测试未配置 SSL"""
        assert resolve_tls(make_config()) is None

    def test_legacy_flag_means_require(self):
        """测试旧版布尔开关按 require 处理"""
        config = ConnectionConfig.from_dict({"type": "postgresql", "ssl": True})
        options = resolve_tls(config)
        assert options.mode == SSLMode.REQUIRE
        assert options.verify is True
        assert options.check_hostname is True

    def test_enabled_without_mode_is_disabled(self):
        """测试启用但未指定模式时不使用 TLS"""
        assert resolve_tls(make_config(enabled=True)) is None
        assert resolve_tls(make_config(enabled=True, mode="disable")) is None

    def test_prefer(self):
        """测试 prefer 不校验证书且允许回退"""
        options = resolve_tls(make_config(enabled=True, mode="prefer"))
        assert options.verify is False
        assert options.check_hostname is False
        assert options.allows_fallback is True

    def test_require_respects_reject_unauthorized(self):
        """测试 require 模式的证书校验开关"""
        options = resolve_tls(
            make_config(enabled=True, mode="require", reject_unauthorized=False)
        )
        assert options.verify is False
        assert options.allows_fallback is False

    def test_verify_ca_skips_hostname(self):
        """测试 verify-ca 不校验主机名"""
        options = resolve_tls(make_config(enabled=True, mode="verify-ca", ca=PEM))
        assert options.verify is True
        assert options.check_hostname is False
        assert options.ca == PEM

    def test_verify_full(self):
        """测试 verify-full 同时校验证书与主机名"""
        options = resolve_tls(
            make_config(enabled=True, mode="verify-full", reject_unauthorized=False)
        )
        assert options.verify is True
        assert options.check_hostname is True


class TestTlsFallback:
    """prefer 回退测试类"""

    def test_success_on_first_attempt(self):
        """测试首轮成功时不回退"""
        attempt = Mock(return_value="conn")
        release = Mock()
        result = connect_with_tls_fallback(
            make_config(enabled=True, mode="prefer"), attempt, release
        )
        assert result == "conn"
        assert attempt.call_count == 1
        release.assert_not_called()

    def test_prefer_retries_plaintext(self):
        """测试 prefer 失败后释放句柄并以明文重试"""
        attempt = Mock(side_effect=[OSError("handshake failed"), "plain"])
        release = Mock()
        result = connect_with_tls_fallback(
            make_config(enabled=True, mode="prefer"), attempt, release
        )
        assert result == "plain"
        release.assert_called_once()
        assert attempt.call_args_list[1].args == (None,)

    def test_prefer_retry_error_propagates(self):
        """测试回退仍失败时抛出回退的错误"""
        attempt = Mock(side_effect=[OSError("tls"), OSError("plain refused")])
        with pytest.raises(OSError, match="plain refused"):
            connect_with_tls_fallback(
                make_config(enabled=True, mode="prefer"), attempt, Mock()
            )

    def test_release_failure_is_ignored(self):
        """测试释放句柄失败不影响回退"""
        attempt = Mock(side_effect=[OSError("tls"), "plain"])
        release = Mock(side_effect=RuntimeError("already closed"))
        assert (
            connect_with_tls_fallback(make_config(enabled=True, mode="prefer"), attempt, release)
            == "plain"
        )

    def test_require_does_not_fallback(self):
        """测试 require 模式不回退"""
        attempt = Mock(side_effect=OSError("tls"))
        release = Mock()
        with pytest.raises(OSError, match="tls"):
            connect_with_tls_fallback(
                make_config(enabled=True, mode="require"), attempt, release
            )
        assert attempt.call_count == 1
        release.assert_not_called()

    def test_plaintext_errors_propagate(self):
        """测试未启用 TLS 时直接抛出错误"""
        attempt = Mock(side_effect=OSError("refused"))
        with pytest.raises(OSError):
            connect_with_tls_fallback(make_config(), attempt, Mock())
        attempt.assert_called_once_with(None)


class TestPemPath:
    """证书材料路径测试类"""

    def test_path_passthrough(self):
        """测试文件路径原样返回"""
        assert pem_path("/etc/ssl/ca.pem") == "/etc/ssl/ca.pem"
        assert pem_path(None) is None
        assert is_pem_content("/etc/ssl/ca.pem") is False

    def test_pem_content_written_to_file(self):
        """测试 PEM 内容写入权限为 0600 的临时文件"""
        path = pem_path(PEM)
        assert os.path.exists(path)
        with open(path, encoding="utf-8") as f:
            assert f.read() == PEM
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert pem_path(PEM) == path


if __name__ == "__main__":
    pytest.main()
