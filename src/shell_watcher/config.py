"""shell-watcher 环境变量配置管理。

环境变量:
    WATCHER_COMMAND_TIMEOUT: 单条命令超时（秒）
        - 默认 30

    WATCHER_INTERVAL: 两次命令执行之间的间隔（秒）
        - 默认 1.0，可为 0

    WATCHER_WATCH_DURATION: 总运行时长（秒）
        - 空/未设置 = 无限运行 (默认)
        - 时长小于 interval (+ timeout) 时，执行完第一次迭代后退出

    WATCHER_SHELL: shell 可执行文件及参数（空格分割）
        - 默认 /bin/bash

    WATCHER_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到文件，级别 DEBUG)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    WATCHER_LOGS_DIR: 日志目录
        - 设置后在其下创建 watcher_<毫秒时间戳> 子目录
        - 未设置时使用系统临时目录下的 shell-watcher 子目录

    WATCHER_RECORD: 是否把事件以 JSONL 追加写入日志目录下的 events.jsonl
        - true/1/yes = 开启
        - false/0/no = 关闭 (默认)

    WATCHER_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 每次 SIGINT 只请求取消（当前迭代结束后退出）
        - cancel_then_exit = 先取消，双击窗口内第二次 SIGINT 强制退出 (默认)

    WATCHER_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒，限制在 0.1-10 秒
"""

from __future__ import annotations

import math
import os
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import ConfigError

__all__ = [
    "Config",
    "WatcherConfig",
    "SigintMode",
    "load_config",
    "get_config",
    "reload_config",
    "DEFAULT_COMMAND_TIMEOUT",
    "DEFAULT_INTERVAL",
    "DEFAULT_SHELL",
]

DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_INTERVAL = 1.0
DEFAULT_SHELL: tuple[str, ...] = ("/bin/bash",)


class SigintMode(Enum):
    """SIGINT 处理模式。

    - CANCEL: 只请求取消，runner 在当前迭代结束后退出
    - CANCEL_THEN_EXIT: 先请求取消，第二次 SIGINT 强制退出（杀掉 shell）
    """

    CANCEL = "cancel"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式。

        Args:
            value: 模式字符串 (cancel/cancel_then_exit)

        Returns:
            对应的 SigintMode 枚举值，无效值返回 CANCEL_THEN_EXIT
        """
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL_THEN_EXIT  # 默认值


@dataclass(frozen=True)
class WatcherConfig:
    """单次 watcher 运行的配置。runner 启动后不可变。

    Attributes:
        main_command: 每次迭代执行的命令（必需，非空）
        command_timeout: 单条命令超时（秒）
        interval: 两次执行之间的间隔（秒）
        watch_duration: 总运行时长（秒），None 表示无限
        setup_command: 主循环前执行一次的命令（可选）
        shell: shell argv
        init_commands: shell 初始化命令（None = 按 shell 选择默认值，"" = 跳过）
    """

    main_command: str
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    interval: float = DEFAULT_INTERVAL
    watch_duration: float | None = None
    setup_command: str | None = None
    shell: tuple[str, ...] = DEFAULT_SHELL
    init_commands: str | None = None

    def __post_init__(self) -> None:
        """校验取值，并规范化 shell 与空的 setup_command。"""
        if not isinstance(self.main_command, str) or not self.main_command.strip():
            raise ConfigError("main_command must be a non-empty string")
        for name in ("command_timeout", "interval", "watch_duration"):
            value = getattr(self, name)
            if value is not None and not math.isfinite(value):
                raise ConfigError(f"{name} must be a finite number, got {value}")
        if self.command_timeout <= 0:
            raise ConfigError(f"command_timeout must be > 0, got {self.command_timeout}")
        if self.interval < 0:
            raise ConfigError(f"interval must be >= 0, got {self.interval}")
        if self.watch_duration is not None and self.watch_duration <= 0:
            raise ConfigError(f"watch_duration must be > 0, got {self.watch_duration}")

        # frozen dataclass 需要 object.__setattr__
        if self.setup_command is not None and not self.setup_command.strip():
            object.__setattr__(self, "setup_command", None)
        shell = tuple(self.shell)
        if not shell:
            raise ConfigError("shell argv must not be empty")
        object.__setattr__(self, "shell", shell)


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_seconds(value: str | None, default: float, minimum: float = 0.0) -> float:
    """解析秒数环境变量，无效或小于下限时返回默认值。"""
    if not value or not value.strip():
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    if not math.isfinite(seconds) or seconds < minimum:
        return default
    return seconds


def _parse_optional_seconds(value: str | None) -> float | None:
    """解析可选秒数，空值或无效值表示不限制。"""
    if not value or not value.strip():
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) and seconds > 0 else None


def _parse_shell(value: str | None) -> tuple[str, ...]:
    """解析 shell argv，空格分割。"""
    if not value or not value.strip():
        return DEFAULT_SHELL
    return tuple(value.split())


def _parse_sigint_mode(value: str | None) -> SigintMode:
    """解析 SIGINT 模式环境变量。"""
    if not value:
        return SigintMode.CANCEL_THEN_EXIT
    return SigintMode.from_string(value)


def _parse_double_tap_window(value: str | None) -> float:
    """解析双击窗口时间环境变量。"""
    if not value:
        return 1.0
    try:
        window = float(value)
        return max(0.1, min(window, 10.0))  # 限制在 0.1-10 秒范围
    except ValueError:
        return 1.0


def _generate_logs_dir(base: str | None) -> str:
    """生成本次运行的日志目录。

    Args:
        base: WATCHER_LOGS_DIR 的值

    Returns:
        已创建目录的绝对路径
    """
    if base:
        # 每次运行一个带毫秒时间戳的子目录
        timestamp = int(time.time() * 1000)
        logs_dir = Path(base) / f"watcher_{timestamp}"
    else:
        logs_dir = Path(tempfile.gettempdir()) / "shell-watcher"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return str(logs_dir.resolve())


@dataclass
class Config:
    """shell-watcher 进程级配置（来自环境变量）。

    Attributes:
        command_timeout: 单条命令超时（秒）
        interval: 执行间隔（秒）
        watch_duration: 总运行时长（秒），None 表示无限
        shell: shell argv
        log_debug: 日志调试模式（输出到文件）
        logs_dir: 日志目录（log_debug 或 record 开启时自动创建）
        log_file: 日志文件路径（log_debug=True 时设置）
        record: 是否记录事件 JSONL
        record_file: 事件记录文件路径（record=True 时设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    interval: float = DEFAULT_INTERVAL
    watch_duration: float | None = None
    shell: tuple[str, ...] = DEFAULT_SHELL
    log_debug: bool = False
    logs_dir: str | None = None
    log_file: str | None = None
    record: bool = False
    record_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL_THEN_EXIT
    sigint_double_tap_window: float = 1.0

    def to_watcher_config(
        self,
        main_command: str,
        *,
        setup_command: str | None = None,
        command_timeout: float | None = None,
        interval: float | None = None,
        watch_duration: float | None = None,
    ) -> WatcherConfig:
        """生成单次运行配置，显式传入的参数覆盖环境变量。

        Raises:
            ConfigError: 取值无效
        """
        return WatcherConfig(
            main_command=main_command,
            command_timeout=command_timeout if command_timeout is not None else self.command_timeout,
            interval=interval if interval is not None else self.interval,
            watch_duration=watch_duration if watch_duration is not None else self.watch_duration,
            setup_command=setup_command,
            shell=self.shell,
        )

    def __repr__(self) -> str:
        return (
            f"Config(command_timeout={self.command_timeout}, "
            f"interval={self.interval}, "
            f"watch_duration={self.watch_duration}, "
            f"shell={' '.join(self.shell)}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"record={self.record}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("WATCHER_LOG_DEBUG"), default=False)
    record = _parse_bool(os.environ.get("WATCHER_RECORD"), default=False)

    logs_dir = None
    if log_debug or record:
        logs_dir = _generate_logs_dir(os.environ.get("WATCHER_LOGS_DIR"))

    return Config(
        command_timeout=_parse_seconds(
            os.environ.get("WATCHER_COMMAND_TIMEOUT"), DEFAULT_COMMAND_TIMEOUT, minimum=0.001
        ),
        interval=_parse_seconds(os.environ.get("WATCHER_INTERVAL"), DEFAULT_INTERVAL),
        watch_duration=_parse_optional_seconds(os.environ.get("WATCHER_WATCH_DURATION")),
        shell=_parse_shell(os.environ.get("WATCHER_SHELL")),
        log_debug=log_debug,
        logs_dir=logs_dir,
        log_file=str(Path(logs_dir) / "watcher.log") if log_debug and logs_dir else None,
        record=record,
        record_file=str(Path(logs_dir) / "events.jsonl") if record and logs_dir else None,
        sigint_mode=_parse_sigint_mode(os.environ.get("WATCHER_SIGINT_MODE")),
        sigint_double_tap_window=_parse_double_tap_window(
            os.environ.get("WATCHER_SIGINT_DOUBLE_TAP_WINDOW")
        ),
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
