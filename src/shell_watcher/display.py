"""终端显示消费者。

最简单的纯文本渲染：每收到一个结果就重绘一屏，
顶部显示捕获时间和迭代号，下面是命令输出。
按固定 tick 非阻塞地轮询事件管道，不影响 runner 的节奏。
"""

from __future__ import annotations

import sys
from datetime import datetime
from typing import Callable, TextIO

from .runtime.events import (
    IterationCompleted,
    IterationResult,
    RunnerEvent,
    SetupCompleted,
    Terminated,
    TerminationReason,
)
from .runtime.pipeline import DEFAULT_TICK, EventReceiver, aiter_events

__all__ = ["TerminalDisplay", "run_consumer", "format_header"]

# 清屏并把光标移到左上角
CLEAR_SCREEN = "\x1b[2J\x1b[H"


def format_header(result: IterationResult, width: int = 80) -> str:
    """生成标题行：左边是时间，右边是迭代号。"""
    captured = datetime.fromtimestamp(result.captured_at)
    # 精确到百分之一秒
    time_string = f"{captured:%b %d %H:%M:%S}.{captured.microsecond // 10000:02d}"
    label = "Setup" if result.iteration == 0 else f"Itr: {result.iteration}"
    padding = max(1, width - len(time_string) - len(label))
    return f"{time_string}{' ' * padding}{label}"


class TerminalDisplay:
    """把最新一次结果渲染到文本流。

    Attributes:
        stream: 输出流（默认 stdout）
        clear: 每次重绘前是否清屏
        current: 最近一次渲染的结果
    """

    def __init__(self, stream: TextIO | None = None, clear: bool = True, width: int = 80) -> None:
        self.stream = stream if stream is not None else sys.stdout
        self.clear = clear
        self.width = width
        self.current: IterationResult | None = None
        self.terminated: Terminated | None = None

    def handle(self, event: RunnerEvent) -> None:
        """处理一个事件。"""
        if isinstance(event, (SetupCompleted, IterationCompleted)):
            self.current = event.result
            self._render(event.result)
        elif isinstance(event, Terminated):
            self.terminated = event
            self._render_end(event)

    def _render(self, result: IterationResult) -> None:
        parts = []
        if self.clear:
            parts.append(CLEAR_SCREEN)
        parts.append(format_header(result, self.width))
        parts.append("\n")
        parts.append("-" * self.width)
        parts.append("\n")
        parts.append(result.output)
        if result.output and not result.output.endswith("\n"):
            parts.append("\n")
        self.stream.write("".join(parts))
        self.stream.flush()

    def _render_end(self, event: Terminated) -> None:
        if event.reason == TerminationReason.ERROR:
            line = f"watcher stopped with error: {event.error}"
        else:
            line = f"watcher stopped ({event.reason.value})"
        self.stream.write(f"\n{line}\n")
        self.stream.flush()


async def run_consumer(
    receiver: EventReceiver,
    handler: Callable[[RunnerEvent], None],
    tick: float = DEFAULT_TICK,
) -> int:
    """按 tick 轮询 receiver 并把事件交给 handler，直到 Terminated。

    Args:
        receiver: 事件接收端
        handler: 事件处理函数（如 TerminalDisplay.handle、EventRecorder.record）
        tick: 轮询周期（秒）

    Returns:
        处理的事件数量
    """
    count = 0
    async for event in aiter_events(receiver, tick):
        handler(event)
        count += 1
    return count
