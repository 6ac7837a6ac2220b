"""shell-watcher 应用入口。

包含命令行解析、日志配置、watcher 生命周期管理和主入口点。

线程模型：
- runner 线程：持有 shell 会话，阻塞在命令读取和间隔睡眠上
- 主线程：anyio 事件循环，按 tick 轮询事件管道并渲染；同时接收 OS 信号
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence, TextIO

import anyio

from . import __version__
from .config import Config, WatcherConfig, get_config
from .display import TerminalDisplay, run_consumer
from .errors import ConfigError
from .recorder import EventRecorder
from .runtime.cancellation import CancellationToken
from .runtime.pipeline import DEFAULT_TICK, EventPipeline, EventReceiver
from .runtime.runner import CommandRunner
from .signal_manager import SignalManager

__all__ = ["build_parser", "run_watcher", "main"]

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_FORCED = 130  # 128 + SIGINT(2)


def build_parser() -> argparse.ArgumentParser:
    """创建命令行解析器。"""
    parser = argparse.ArgumentParser(
        prog="shell-watcher",
        description="Run a command repeatedly in one persistent shell and show its latest output.",
    )
    parser.add_argument(
        "-c", "--command", required=True,
        help="Main command to execute and watch on.",
    )
    parser.add_argument(
        "-t", "--timeout", type=float, default=None,
        help="Individual command run timeout, in seconds (default 30).",
    )
    parser.add_argument(
        "-n", "--interval", type=float, default=None,
        help="Interval between two command invocations, in seconds (default 1).",
    )
    parser.add_argument(
        "-w", "--watch-duration", type=float, default=None,
        help=(
            "Total duration of the watcher, in seconds. If it is smaller than "
            "interval (+ timeout) the watcher exits after the first run. "
            "Defaults to infinite runs."
        ),
    )
    setup = parser.add_mutually_exclusive_group()
    setup.add_argument(
        "-s", "--setup", default=None,
        help="Setup commands, run once in the same shell before the main loop.",
    )
    setup.add_argument(
        "--setup-file", type=Path, default=None,
        help="File containing setup commands.",
    )
    parser.add_argument(
        "--no-clear", action="store_true",
        help="Append each result instead of redrawing the screen.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(config: Config) -> None:
    """配置日志输出。"""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 shell_watcher 命名空间启用详细日志
    logging.getLogger("shell_watcher").setLevel(log_level)


async def _consume(
    display_receiver: EventReceiver,
    display: TerminalDisplay,
    record_receiver: EventReceiver | None,
    recorder: EventRecorder | None,
    tick: float,
) -> None:
    """并发运行所有消费者，直到各自收到 Terminated。"""
    async with anyio.create_task_group() as tg:
        tg.start_soon(run_consumer, display_receiver, display.handle, tick)
        if record_receiver is not None and recorder is not None:
            tg.start_soon(run_consumer, record_receiver, recorder.record, tick)


def run_watcher(
    watcher_config: WatcherConfig,
    config: Config | None = None,
    *,
    stream: TextIO | None = None,
    clear: bool = True,
    tick: float = DEFAULT_TICK,
    install_signals: bool = True,
) -> int:
    """运行一次 watcher，直到取消、到时或出错。

    Args:
        watcher_config: 本次运行配置
        config: 进程级配置（默认从环境变量读取）
        stream: 显示输出流（默认 stdout）
        clear: 每次重绘是否清屏
        tick: 消费者轮询周期（秒）
        install_signals: 是否安装 SIGINT/SIGTERM 处理器

    Returns:
        进程退出码
    """
    config = config or get_config()

    pipeline = EventPipeline()
    display_receiver = pipeline.subscribe("display")
    display = TerminalDisplay(stream=stream, clear=clear)

    recorder: EventRecorder | None = None
    record_receiver: EventReceiver | None = None
    if config.record and config.record_file:
        recorder = EventRecorder(config.record_file)
        record_receiver = pipeline.subscribe("recorder")

    token = CancellationToken()
    runner = CommandRunner(watcher_config, pipeline.sender, token)

    def force_exit() -> None:
        """双击 Ctrl+C：杀掉 shell，让正在执行的命令立即失败。"""
        session = runner.session
        if session is not None:
            session.terminate()

    signal_manager = SignalManager(
        token,
        sigint_mode=config.sigint_mode,
        double_tap_window=config.sigint_double_tap_window,
        on_force_exit=force_exit,
    )

    logger.info(f"Starting watcher: {config}")

    try:
        if install_signals:
            signal_manager.install()
        runner.start()
        anyio.run(_consume, display_receiver, display, record_receiver, recorder, tick)
        runner.join()
    finally:
        # 消费者异常退出时也要停止 runner 并释放 shell
        if not runner.join(timeout=0):
            token.cancel("shutdown")
            force_exit()
            runner.join(timeout=watcher_config.command_timeout)
        signal_manager.uninstall()
        if recorder is not None:
            recorder.close()

    if signal_manager.is_force_exit:
        logger.warning("Force exit requested, terminating with exit code 130")
        return EXIT_FORCED
    if runner.error is not None:
        return EXIT_ERROR
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """主入口点。"""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = get_config()
    configure_logging(config)

    setup_command = args.setup
    if args.setup_file is not None:
        try:
            setup_command = args.setup_file.read_text(encoding="utf-8")
        except OSError as e:
            parser.error(f"cannot read setup file: {e}")

    try:
        watcher_config = config.to_watcher_config(
            args.command,
            setup_command=setup_command,
            command_timeout=args.timeout,
            interval=args.interval,
            watch_duration=args.watch_duration,
        )
    except ConfigError as e:
        print(f"shell-watcher: {e}", file=sys.stderr)
        return EXIT_USAGE

    return run_watcher(watcher_config, config, clear=not args.no_clear)


if __name__ == "__main__":
    sys.exit(main())
