"""shell-watcher - 在一个常驻 shell 中反复执行命令并实时显示输出。

环境变量:
    WATCHER_COMMAND_TIMEOUT: 单条命令超时（秒，默认 30）
    WATCHER_INTERVAL: 执行间隔（秒，默认 1）
    WATCHER_WATCH_DURATION: 总运行时长（秒，默认无限）
    WATCHER_LOG_DEBUG: 日志输出到文件 (默认 false)

用法:
    shell-watcher -c "date; ls -l" -n 2
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
