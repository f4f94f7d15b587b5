"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import stat
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 假编译器脚本
FAKE_COMPILER_PATH = PROJECT_ROOT / "tests" / "fixtures" / "fake_compiler.py"

IS_WINDOWS = sys.platform == "win32"


@pytest.fixture
def fake_compiler_path() -> Path:
    """假编译器脚本路径。"""
    return FAKE_COMPILER_PATH


@pytest.fixture
def fake_argv() -> Callable[..., tuple[str, ...]]:
    """构建运行假编译器的 argv。

    用法: fake_argv("--mode", "echo")
    """

    def build(*args: str) -> tuple[str, ...]:
        return (sys.executable, str(FAKE_COMPILER_PATH), *args)

    return build


@pytest.fixture
def fake_java(tmp_path: Path) -> Path:
    """伪装成 java 的包装脚本：忽略 JVM 参数，转交给假编译器。"""
    if IS_WINDOWS:
        pytest.skip("POSIX shell wrapper")
    script = tmp_path / "fake-java"
    script.write_text(
        "#!/bin/sh\n"
        f'exec "{sys.executable}" "{FAKE_COMPILER_PATH}" "$@"\n'
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """清除 CLOSURE_* 环境变量。"""
    for key in list(os.environ):
        if key.startswith("CLOSURE_"):
            monkeypatch.delenv(key, raising=False)
