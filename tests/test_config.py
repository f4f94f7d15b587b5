"""Config 模块测试。

测试 CLOSURE_* 环境变量解析和配置管理。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from unittest import mock

import pytest

from closure_bridge.config import Config, get_config, load_config, reload_config
from closure_bridge.errors import BridgeConfigError
from closure_bridge.runtime.arbiter import BannerFilter
from closure_bridge.runtime.feeder import DEFAULT_CHUNK_SIZE
from closure_bridge.types import BannerPolicy


def _env_without_closure() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if not k.startswith("CLOSURE_")}


class TestDefaults:
    """测试默认值。"""

    def test_defaults(self):
        """未设置任何变量时的默认配置。"""
        with mock.patch.dict(os.environ, _env_without_closure(), clear=True):
            config = load_config()

        assert config.java == "java"
        assert config.jar_file is None
        assert config.timeout is None
        assert config.banner is None
        assert config.banner_policy is BannerPolicy.NONE
        assert config.chunk_size == DEFAULT_CHUNK_SIZE
        assert config.debug is False
        assert config.log_debug is False
        assert config.log_file is None

    def test_java_and_jar(self):
        """Java 与 jar 路径。"""
        env = {"CLOSURE_JAVA": "/usr/lib/jvm/bin/java", "CLOSURE_JAR": "/opt/compiler.jar"}
        with mock.patch.dict(os.environ, env, clear=False):
            config = load_config()

        assert config.java == "/usr/lib/jvm/bin/java"
        assert config.jar_file == Path("/opt/compiler.jar")


class TestParseTimeout:
    """测试超时解析。"""

    @pytest.mark.parametrize("value,expected", [("30", 30.0), ("2.5", 2.5)])
    def test_valid(self, value: str, expected: float):
        """有效超时。"""
        with mock.patch.dict(os.environ, {"CLOSURE_TIMEOUT": value}, clear=False):
            assert load_config().timeout == expected

    @pytest.mark.parametrize("value", ["", "abc", "0", "-5"])
    def test_invalid_means_unbounded(self, value: str):
        """无效或非正数视为不限时。"""
        with mock.patch.dict(os.environ, {"CLOSURE_TIMEOUT": value}, clear=False):
            assert load_config().timeout is None


class TestParseBool:
    """测试布尔值解析。"""

    @pytest.mark.parametrize("value", ["true", "True", "TRUE", "1", "yes", "on"])
    def test_truthy_values(self, value: str):
        """真值。"""
        with mock.patch.dict(os.environ, {"CLOSURE_DEBUG": value}, clear=False):
            assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "0", "no", "off", ""])
    def test_falsy_values(self, value: str):
        """假值。"""
        with mock.patch.dict(os.environ, {"CLOSURE_DEBUG": value}, clear=False):
            assert load_config().debug is False


class TestChunkSize:
    """测试块大小解析。"""

    def test_valid(self):
        with mock.patch.dict(os.environ, {"CLOSURE_CHUNK_SIZE": "8192"}, clear=False):
            assert load_config().chunk_size == 8192

    def test_clamped(self):
        """超出范围时被限制。"""
        with mock.patch.dict(os.environ, {"CLOSURE_CHUNK_SIZE": "1"}, clear=False):
            assert load_config().chunk_size == 512
        with mock.patch.dict(os.environ, {"CLOSURE_CHUNK_SIZE": str(10**9)}, clear=False):
            assert load_config().chunk_size == 1024 * 1024

    def test_invalid(self):
        with mock.patch.dict(os.environ, {"CLOSURE_CHUNK_SIZE": "big"}, clear=False):
            assert load_config().chunk_size == DEFAULT_CHUNK_SIZE

    def test_invalid_logs_warning(self, caplog: pytest.LogCaptureFixture):
        """无效值记录警告，与 CLOSURE_TIMEOUT 一致。"""
        with caplog.at_level(logging.WARNING, logger="closure_bridge.config"):
            with mock.patch.dict(os.environ, {"CLOSURE_CHUNK_SIZE": "big"}, clear=False):
                load_config()

        assert "CLOSURE_CHUNK_SIZE" in caplog.text


class TestBanner:
    """测试 banner 配置。"""

    def test_banner_defaults_to_fixed(self):
        """设置 banner 文本时默认使用 fixed 策略。"""
        env = {**_env_without_closure(), "CLOSURE_BANNER": "Closure v1\\n"}
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config()

        assert config.banner == "Closure v1\n"
        assert config.banner_policy is BannerPolicy.FIXED
        assert config.banner_filter() == BannerFilter.fixed(b"Closure v1\n")

    def test_first_line_policy(self):
        env = {**_env_without_closure(), "CLOSURE_BANNER_POLICY": "first-line"}
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config()

        assert config.banner_policy is BannerPolicy.FIRST_LINE
        assert config.banner_filter() == BannerFilter.first_line()

    def test_none_policy_ignores_banner(self):
        """none 策略下 banner 文本不生效。"""
        env = {
            **_env_without_closure(),
            "CLOSURE_BANNER": "Closure v1",
            "CLOSURE_BANNER_POLICY": "none",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config()

        assert config.banner_filter() == BannerFilter()

    def test_fixed_without_banner(self):
        """fixed 策略缺少 banner 文本时报错。"""
        env = {**_env_without_closure(), "CLOSURE_BANNER_POLICY": "fixed"}
        with mock.patch.dict(os.environ, env, clear=True):
            with pytest.raises(BridgeConfigError):
                load_config()

    def test_unknown_policy(self):
        with mock.patch.dict(os.environ, {"CLOSURE_BANNER_POLICY": "sometimes"}, clear=False):
            with pytest.raises(BridgeConfigError):
                load_config()


class TestLogDebug:
    """测试日志调试模式。"""

    def test_log_file_generated(self):
        """开启日志调试时生成日志文件路径。"""
        with mock.patch.dict(os.environ, {"CLOSURE_LOG_DEBUG": "true"}, clear=False):
            config = load_config()

        assert config.log_debug is True
        assert config.log_file is not None
        assert Path(config.log_file).parent.name == "closure-bridge"
        assert Path(config.log_file).name.startswith("closure_bridge_debug_")


class TestGlobalConfig:
    """测试全局配置实例。"""

    def test_get_config_is_cached(self):
        """get_config 返回同一实例。"""
        reload_config()
        assert get_config() is get_config()

    def test_reload_config(self):
        """reload_config 重新读取环境变量。"""
        with mock.patch.dict(os.environ, {"CLOSURE_JAVA": "java-a"}, clear=False):
            assert reload_config().java == "java-a"
        with mock.patch.dict(os.environ, {"CLOSURE_JAVA": "java-b"}, clear=False):
            assert reload_config().java == "java-b"
        reload_config()

    def test_config_is_frozen(self):
        config = Config()

        with pytest.raises(AttributeError):
            config.java = "other"  # type: ignore[misc]

    def test_repr(self):
        """repr 包含关键字段。"""
        text = repr(Config(jar_file=Path("c.jar")))

        assert "jar_file=c.jar" in text
        assert "banner_policy=none" in text
