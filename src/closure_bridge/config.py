"""closure-bridge 环境变量配置管理。

环境变量:
    CLOSURE_JAVA: Java 可执行文件
        - 默认 "java"

    CLOSURE_JAR: Closure Compiler jar 路径
        - 未设置时 Compiler 必须显式传入 jar_file

    CLOSURE_TIMEOUT: 单次编译超时（秒）
        - 未设置/无效 = 不限时
        - 例: "30" 或 "2.5"

    CLOSURE_BANNER: 编译器启动时写到 stderr 的固定 banner 文本
        - 设置后默认使用 fixed 策略（只有超出 banner 的 stderr 内容才算失败）
        - 支持 "\\n" 转义

    CLOSURE_BANNER_POLICY: banner 处理策略
        - none = 任何 stderr 内容都算失败
        - fixed = 忽略固定 banner 前缀 (CLOSURE_BANNER 已设置时的默认值)
        - first_line = 总是丢弃 stderr 第一行

    CLOSURE_CHUNK_SIZE: 流式写入/读取块大小（字节）
        - 默认 4096，限制在 512 - 1 MiB

    CLOSURE_DEBUG: 调试模式
        - true/1/yes = 开启 (MCP 响应包含统计信息)
        - false/0/no = 关闭 (默认)

    CLOSURE_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .errors import BridgeConfigError
from .runtime.arbiter import BannerFilter
from .runtime.feeder import DEFAULT_CHUNK_SIZE
from .types import BannerPolicy

__all__ = ["Config", "load_config", "get_config", "reload_config"]

logger = logging.getLogger(__name__)

DEFAULT_JAVA = "java"
MIN_CHUNK_SIZE = 512
MAX_CHUNK_SIZE = 1024 * 1024


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None) -> float | None:
    """解析超时环境变量，无效或非正数视为不限时。"""
    if not value or not value.strip():
        return None
    try:
        timeout = float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid CLOSURE_TIMEOUT={value!r}")
        return None
    return timeout if timeout > 0 else None


def _parse_chunk_size(value: str | None) -> int:
    """解析块大小环境变量。"""
    if not value:
        return DEFAULT_CHUNK_SIZE
    try:
        size = int(value)
    except ValueError:
        logger.warning(f"Ignoring invalid CLOSURE_CHUNK_SIZE={value!r}")
        return DEFAULT_CHUNK_SIZE
    return max(MIN_CHUNK_SIZE, min(size, MAX_CHUNK_SIZE))  # 限制在 512B-1MiB 范围


def _parse_banner(value: str | None) -> str | None:
    """解析 banner 文本，支持 \\n 转义。"""
    if not value:
        return None
    return value.replace("\\n", "\n")


def _parse_banner_policy(value: str | None, banner: str | None) -> BannerPolicy:
    """解析 banner 策略。

    未设置时：有 banner 文本用 fixed，否则 none。

    Raises:
        BridgeConfigError: 策略名无效，或 fixed 策略缺少 banner 文本
    """
    if not value or not value.strip():
        return BannerPolicy.FIXED if banner else BannerPolicy.NONE
    try:
        policy = BannerPolicy.from_string(value)
    except ValueError as e:
        raise BridgeConfigError(str(e)) from e
    if policy is BannerPolicy.FIXED and not banner:
        raise BridgeConfigError("CLOSURE_BANNER_POLICY=fixed requires CLOSURE_BANNER")
    return policy


@dataclass(frozen=True)
class Config:
    """closure-bridge 配置。

    Attributes:
        java: Java 可执行文件
        jar_file: Compiler jar 路径（可选）
        timeout: 单次编译超时（秒），None 表示不限时
        banner: stderr 启动 banner 文本
        banner_policy: banner 处理策略
        chunk_size: 流式块大小
        debug: 调试模式（响应包含统计信息）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    java: str = DEFAULT_JAVA
    jar_file: Path | None = None
    timeout: float | None = None
    banner: str | None = None
    banner_policy: BannerPolicy = BannerPolicy.NONE
    chunk_size: int = DEFAULT_CHUNK_SIZE
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def banner_filter(self) -> BannerFilter:
        """按配置构建 stderr banner 过滤器。"""
        if self.banner_policy is BannerPolicy.FIXED and self.banner:
            return BannerFilter.fixed(self.banner)
        if self.banner_policy is BannerPolicy.FIRST_LINE:
            return BannerFilter.first_line()
        return BannerFilter()

    def __repr__(self) -> str:
        return (
            f"Config(java={self.java}, "
            f"jar_file={self.jar_file}, "
            f"timeout={self.timeout}, "
            f"banner={self.banner!r}, "
            f"banner_policy={self.banner_policy.value}, "
            f"chunk_size={self.chunk_size}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "closure-bridge"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"closure_bridge_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("CLOSURE_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None
    banner = _parse_banner(os.environ.get("CLOSURE_BANNER"))
    jar = os.environ.get("CLOSURE_JAR")

    return Config(
        java=os.environ.get("CLOSURE_JAVA") or DEFAULT_JAVA,
        jar_file=Path(jar) if jar else None,
        timeout=_parse_timeout(os.environ.get("CLOSURE_TIMEOUT")),
        banner=banner,
        banner_policy=_parse_banner_policy(
            os.environ.get("CLOSURE_BANNER_POLICY"), banner
        ),
        chunk_size=_parse_chunk_size(os.environ.get("CLOSURE_CHUNK_SIZE")),
        debug=_parse_bool(os.environ.get("CLOSURE_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
