"""SignalManager 模块测试。

测试信号管理器的基本功能：
- 信号处理策略
- 配置支持
- 双击强制退出
"""

from __future__ import annotations

import os
import signal
import threading
from unittest import mock

import pytest

from shell_watcher.config import SigintMode, reload_config
from shell_watcher.runtime.cancellation import CancellationToken
from shell_watcher.signal_manager import SignalManager


class TestSigintMode:
    """SigintMode 枚举测试。"""

    def test_from_string_valid(self):
        """有效字符串解析。"""
        assert SigintMode.from_string("cancel") == SigintMode.CANCEL
        assert SigintMode.from_string("cancel_then_exit") == SigintMode.CANCEL_THEN_EXIT

    def test_from_string_case_insensitive(self):
        """大小写不敏感。"""
        assert SigintMode.from_string("CANCEL") == SigintMode.CANCEL
        assert SigintMode.from_string(" Cancel_Then_Exit ") == SigintMode.CANCEL_THEN_EXIT

    def test_from_string_invalid(self):
        """无效字符串返回默认值 CANCEL_THEN_EXIT。"""
        assert SigintMode.from_string("invalid") == SigintMode.CANCEL_THEN_EXIT
        assert SigintMode.from_string("") == SigintMode.CANCEL_THEN_EXIT


class TestSignalManagerInit:
    """SignalManager 初始化测试。"""

    def test_init_with_defaults(self, clean_env):
        """使用默认配置初始化。"""
        reload_config()
        token = CancellationToken()

        manager = SignalManager(token)

        assert manager.token is token
        assert manager.sigint_mode == SigintMode.CANCEL_THEN_EXIT
        assert manager.double_tap_window == 1.0
        assert manager.is_cancel_requested is False
        assert manager.is_force_exit is False

    def test_init_from_env(self, clean_env):
        """从环境变量读取默认值。"""
        env = {"WATCHER_SIGINT_MODE": "cancel", "WATCHER_SIGINT_DOUBLE_TAP_WINDOW": "3"}
        with mock.patch.dict(os.environ, env):
            reload_config()
            manager = SignalManager(CancellationToken())

        assert manager.sigint_mode == SigintMode.CANCEL
        assert manager.double_tap_window == 3.0

    def test_init_with_custom_values(self):
        """使用自定义值初始化。"""
        manager = SignalManager(
            CancellationToken(),
            sigint_mode=SigintMode.CANCEL,
            double_tap_window=2.0,
        )

        assert manager.sigint_mode == SigintMode.CANCEL
        assert manager.double_tap_window == 2.0

    def test_explicit_values_skip_config(self):
        """两个参数都给出时不读取配置（避免创建日志目录）。"""
        with mock.patch("shell_watcher.signal_manager.get_config") as get_config:
            SignalManager(
                CancellationToken(),
                sigint_mode=SigintMode.CANCEL,
                double_tap_window=2.0,
            )
        get_config.assert_not_called()

    def test_partial_values_read_config(self, clean_env):
        """只给出一个参数时其余从配置读取。"""
        with mock.patch.dict(os.environ, {"WATCHER_SIGINT_DOUBLE_TAP_WINDOW": "4"}):
            reload_config()
            manager = SignalManager(CancellationToken(), sigint_mode=SigintMode.CANCEL)

        assert manager.sigint_mode == SigintMode.CANCEL
        assert manager.double_tap_window == 4.0


class TestSignalManagerSigintCancel:
    """SignalManager SIGINT CANCEL 模式测试。"""

    def test_sigint_cancels_token(self):
        """SIGINT 设置取消令牌。"""
        token = CancellationToken()
        manager = SignalManager(token, sigint_mode=SigintMode.CANCEL)

        # 模拟 SIGINT
        manager._handle_sigint()

        assert token.is_cancelled
        assert token.reason == "sigint"
        assert manager.is_cancel_requested is True
        assert manager.is_force_exit is False

    def test_repeated_sigint_never_forces_exit(self):
        """CANCEL 模式下重复 SIGINT 不会强制退出。"""
        callback = mock.MagicMock()
        manager = SignalManager(
            CancellationToken(),
            sigint_mode=SigintMode.CANCEL,
            double_tap_window=10.0,
            on_force_exit=callback,
        )

        manager._handle_sigint()
        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is False
        callback.assert_not_called()


class TestSignalManagerDoubleTap:
    """SignalManager 双击退出测试。"""

    def test_first_sigint_only_cancels(self):
        """CANCEL_THEN_EXIT 模式：第一次只取消。"""
        callback = mock.MagicMock()
        token = CancellationToken()
        manager = SignalManager(
            token,
            sigint_mode=SigintMode.CANCEL_THEN_EXIT,
            double_tap_window=1.0,
            on_force_exit=callback,
        )

        manager._handle_sigint()

        assert token.is_cancelled
        assert manager.is_force_exit is False
        callback.assert_not_called()

    def test_double_tap_forces_exit(self):
        """双击 SIGINT 设置强制退出标志并调用回调。

        实际的进程退出由 app 在清理完成后执行。
        """
        callback = mock.MagicMock()
        manager = SignalManager(
            CancellationToken(),
            sigint_mode=SigintMode.CANCEL_THEN_EXIT,
            double_tap_window=5.0,
            on_force_exit=callback,
        )

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True
        callback.assert_called_once()

    def test_slow_second_tap_does_not_force_exit(self):
        """窗口外的第二次 SIGINT 不会强制退出。"""
        manager = SignalManager(
            CancellationToken(),
            sigint_mode=SigintMode.CANCEL_THEN_EXIT,
            double_tap_window=0.5,
        )

        with mock.patch("shell_watcher.signal_manager.time.monotonic", side_effect=[100.0, 101.0]):
            manager._handle_sigint()
            manager._handle_sigint()

        assert manager.is_force_exit is False

    def test_force_exit_callback_called_once(self):
        """多次双击只调用一次回调。"""
        callback = mock.MagicMock()
        manager = SignalManager(
            CancellationToken(),
            sigint_mode=SigintMode.CANCEL_THEN_EXIT,
            double_tap_window=5.0,
            on_force_exit=callback,
        )

        for _ in range(4):
            manager._handle_sigint()

        callback.assert_called_once()

    def test_callback_error_is_logged(self, caplog):
        """回调异常只记录日志。"""
        manager = SignalManager(
            CancellationToken(),
            sigint_mode=SigintMode.CANCEL_THEN_EXIT,
            double_tap_window=5.0,
            on_force_exit=mock.MagicMock(side_effect=RuntimeError("boom")),
        )

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True
        assert "boom" in caplog.text


class TestSignalManagerSigterm:
    """SignalManager SIGTERM 测试。"""

    def test_sigterm_cancels_token(self):
        """SIGTERM 请求取消。"""
        token = CancellationToken()
        manager = SignalManager(token)

        manager._handle_sigterm()

        assert token.is_cancelled
        assert token.reason == "sigterm"
        assert manager.is_force_exit is False


class TestSignalManagerInstall:
    """SignalManager 安装/卸载测试。"""

    def test_install_and_uninstall_restore_handlers(self):
        """卸载后恢复原始处理器。"""
        original = signal.getsignal(signal.SIGINT)
        manager = SignalManager(CancellationToken(), sigint_mode=SigintMode.CANCEL)

        assert manager.install() is True
        assert manager.is_installed
        assert signal.getsignal(signal.SIGINT) is not original

        manager.uninstall()
        assert not manager.is_installed
        assert signal.getsignal(signal.SIGINT) is original

    def test_install_from_worker_thread_fails(self):
        """非主线程无法安装。"""
        manager = SignalManager(CancellationToken(), sigint_mode=SigintMode.CANCEL)
        results = []

        thread = threading.Thread(target=lambda: results.append(manager.install()))
        thread.start()
        thread.join()

        assert results == [False]
        assert not manager.is_installed

    @pytest.mark.skipif(not hasattr(signal, "raise_signal"), reason="signal.raise_signal unavailable")
    def test_real_sigint_cancels(self):
        """真实的 SIGINT 设置令牌而不是抛出 KeyboardInterrupt。"""
        token = CancellationToken()
        with SignalManager(token, sigint_mode=SigintMode.CANCEL):
            signal.raise_signal(signal.SIGINT)

        assert token.is_cancelled


class TestSignalManagerProgrammatic:
    """SignalManager 程序化取消测试。"""

    def test_request_cancel(self):
        """程序化请求取消。"""
        token = CancellationToken()
        manager = SignalManager(token)

        assert manager.request_cancel("test") is True
        assert manager.request_cancel("again") is False
        assert token.reason == "test"
