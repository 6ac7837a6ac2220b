"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest import mock

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

IS_WINDOWS = sys.platform == "win32"

# 测试用 shell：不读取用户 rc 文件，结果可复现
TEST_SHELL = ("/bin/sh",)


@pytest.fixture
def test_shell() -> tuple[str, ...]:
    """测试用 shell argv。"""
    if IS_WINDOWS or not os.path.exists(TEST_SHELL[0]):
        pytest.skip("POSIX shell required")
    return TEST_SHELL


@pytest.fixture
def clean_env():
    """清除 WATCHER_* 环境变量并在测试后恢复全局配置。"""
    from shell_watcher.config import reload_config

    env = {k: v for k, v in os.environ.items() if not k.startswith("WATCHER_")}
    with mock.patch.dict(os.environ, env, clear=True):
        yield
    reload_config()
