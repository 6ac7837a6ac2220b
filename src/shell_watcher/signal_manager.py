"""信号管理模块。

将 OS 信号转换为 watcher 的取消操作：
- SIGINT: 请求取消（runner 在当前迭代结束后退出，而不是直接杀进程）
- SIGTERM: 请求取消

支持的配置：
- WATCHER_SIGINT_MODE: cancel | cancel_then_exit
- WATCHER_SIGINT_DOUBLE_TAP_WINDOW: 双击强制退出窗口时间

取消只在迭代边界被 runner 观察到，正在执行的命令会跑完或超时。
cancel_then_exit 模式下第二次 Ctrl+C 触发 on_force_exit，用于立即中止。
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from typing import Callable, Optional

from .config import SigintMode, get_config
from .runtime.cancellation import CancellationToken

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    管理 SIGINT 和 SIGTERM 信号的处理：
    - 将 SIGINT 转换为"取消 watcher"操作，双击可强制退出
    - 将 SIGTERM 转换为"取消 watcher"操作

    处理器只能在主线程安装（Python signal 模块的限制）。

    Example:
        ```python
        token = CancellationToken()
        signal_manager = SignalManager(token, on_force_exit=session.terminate)

        signal_manager.install()
        try:
            runner.start()
            ...
        finally:
            signal_manager.uninstall()
        ```

    Attributes:
        token: 要设置的取消令牌
        sigint_mode: SIGINT 处理模式
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        token: CancellationToken,
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_force_exit: Optional[Callable[[], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            token: 取消令牌
            sigint_mode: SIGINT 处理模式（默认从配置读取）
            double_tap_window: 双击退出窗口时间（默认从配置读取）
            on_force_exit: 强制退出时的回调函数
        """
        self.token = token

        # 只在缺少参数时读取配置（get_config 可能创建日志目录）
        if sigint_mode is None or double_tap_window is None:
            config = get_config()
            if sigint_mode is None:
                sigint_mode = config.sigint_mode
            if double_tap_window is None:
                double_tap_window = config.sigint_double_tap_window
        self.sigint_mode = sigint_mode
        self.double_tap_window = double_tap_window
        self._on_force_exit = on_force_exit

        # 内部状态
        self._last_sigint_time: float = 0.0
        self._force_exit: bool = False
        self._original_sigint_handler = None
        self._original_sigterm_handler = None
        self._installed: bool = False

    @property
    def is_cancel_requested(self) -> bool:
        """是否已请求取消。"""
        return self.token.is_cancelled

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    @property
    def is_installed(self) -> bool:
        return self._installed

    def install(self) -> bool:
        """安装信号处理器。

        Returns:
            是否成功安装（非主线程调用时返回 False）
        """
        if self._installed:
            logger.warning("SignalManager already installed")
            return True

        if threading.current_thread() is not threading.main_thread():
            logger.warning("Signal handlers can only be installed from the main thread")
            return False

        # 保存原始处理器
        self._original_sigint_handler = signal.signal(
            signal.SIGINT,
            lambda sig, frame: self._handle_sigint(),
        )
        if sys.platform != "win32":
            self._original_sigterm_handler = signal.signal(
                signal.SIGTERM,
                lambda sig, frame: self._handle_sigterm(),
            )
        self._installed = True
        logger.debug(
            f"Signal handlers installed (mode={self.sigint_mode.value}, "
            f"double_tap_window={self.double_tap_window}s)"
        )
        return True

    def uninstall(self) -> None:
        """恢复原始信号处理器。"""
        if not self._installed:
            return

        self._installed = False

        if self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except (ValueError, OSError) as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")
        if self._original_sigterm_handler is not None:
            try:
                signal.signal(signal.SIGTERM, self._original_sigterm_handler)
            except (ValueError, OSError) as e:
                logger.debug(f"Error restoring SIGTERM handler: {e}")

        logger.debug("Signal handlers removed")

    def __enter__(self) -> "SignalManager":
        self.install()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.uninstall()

    def _handle_sigint(self) -> None:
        """处理 SIGINT 信号。

        根据配置的模式和当前状态决定行为：
        - 首次 SIGINT：请求取消
        - CANCEL_THEN_EXIT 模式下，双击窗口内再次收到 SIGINT：强制退出
        - CANCEL 模式下重复的 SIGINT 只会被记录
        """
        current_time = time.monotonic()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if not self.token.is_cancelled:
            self.token.cancel("sigint")
            if self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
                logger.info(
                    "SIGINT received, stopping after the current iteration. "
                    f"Press Ctrl+C again within {self.double_tap_window}s to force exit."
                )
            else:
                logger.info("SIGINT received, stopping after the current iteration")
            return

        # 检查双击退出
        if (
            self.sigint_mode == SigintMode.CANCEL_THEN_EXIT
            and time_since_last < self.double_tap_window
        ):
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
        else:
            logger.info("SIGINT received, cancellation already requested")

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM 信号。

        始终请求取消。
        """
        logger.info("SIGTERM received, stopping after the current iteration")
        self.token.cancel("sigterm")

    def _force_shutdown(self) -> None:
        """强制退出。

        设置 force_exit 标志并调用回调（通常是杀掉 shell，让正在执行的命令立即失败）。
        实际的进程退出由 app 在清理完成后执行。
        """
        if self._force_exit:
            return
        self._force_exit = True
        self.token.cancel("force_exit")

        if self._on_force_exit:
            try:
                self._on_force_exit()
            except Exception as e:
                logger.warning(f"Error in force exit callback: {e}")

    def request_cancel(self, reason: str = "programmatic") -> bool:
        """程序化请求取消。

        Returns:
            是否由本次调用设置了取消令牌
        """
        logger.info(f"Programmatic cancel requested ({reason})")
        return self.token.cancel(reason)
