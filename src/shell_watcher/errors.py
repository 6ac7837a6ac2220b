"""shell-watcher 异常类。

所有致命错误都会先经过 runner 的终止步骤（杀掉 shell 进程、发送 Terminated 事件），
然后才抛给调用方。不做任何自动重试。
"""

from __future__ import annotations

__all__ = [
    "WatcherError",
    "ConfigError",
    "SpawnError",
    "ExecTimeoutError",
    "StreamClosedError",
    "SendFailureError",
    "TerminationError",
]


class WatcherError(Exception):
    """shell-watcher 基础异常。"""
    pass


class ConfigError(WatcherError):
    """配置错误（如命令为空、超时非正数）。"""
    pass


class SpawnError(WatcherError):
    """无法创建 shell 子进程。启动阶段致命，run 不会开始。

    Attributes:
        argv: 尝试启动的 shell argv
    """

    def __init__(self, argv: list[str], message: str) -> None:
        self.argv = argv
        self.message = message
        super().__init__(f"Failed to spawn shell {argv!r}: {message}")


class ExecTimeoutError(WatcherError):
    """在超时时间内没有读到 sentinel。

    对 run 致命：共享的 shell 状态已不可信。

    Attributes:
        command: 执行的命令
        timeout: 超时时间（秒）
        partial_output: 超时前已读到的输出
    """

    def __init__(self, command: str, timeout: float, partial_output: str = "") -> None:
        self.command = command
        self.timeout = timeout
        self.partial_output = partial_output
        super().__init__(f"No output boundary within {timeout}s for command: {command!r}")


class StreamClosedError(WatcherError):
    """sentinel 出现之前 shell 的输出流已关闭（子进程退出）。

    Attributes:
        command: 执行的命令
        partial_output: 关闭前已读到的输出
    """

    def __init__(self, command: str, partial_output: str = "", message: str = "") -> None:
        self.command = command
        self.partial_output = partial_output
        super().__init__(message or f"Shell output stream closed while running: {command!r}")


class SendFailureError(WatcherError):
    """事件管道拒绝接收事件（关闭后继续发送）。属于编程错误，不可恢复。"""
    pass


class TerminationError(WatcherError):
    """子进程无法被干净地杀掉。只记录日志，不致命。

    Attributes:
        pid: 子进程 PID
    """

    def __init__(self, pid: int, message: str = "") -> None:
        self.pid = pid
        super().__init__(message or f"Shell process pid={pid} did not exit after kill")
