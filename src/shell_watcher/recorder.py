"""事件记录器。

把 runner 事件按 JSONL 追加写入文件（每行一个事件，model_dump_json 格式），
是唯一的落盘输出。可用 runtime.events.parse_event 读回。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import IO

from .runtime.events import RunnerEvent

__all__ = ["EventRecorder"]

logger = logging.getLogger(__name__)


class EventRecorder:
    """追加写入的 JSONL 事件记录器。

    Example:
        with EventRecorder(config.record_file) as recorder:
            for event in receiver:
                recorder.record(event)
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._file: IO[str] | None = None
        self._lock = threading.Lock()
        self._count = 0

    @property
    def count(self) -> int:
        """已记录的事件数量。"""
        return self._count

    def _open(self) -> IO[str]:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "a", encoding="utf-8")
            logger.debug(f"Recording events to {self.path}")
        return self._file

    def record(self, event: RunnerEvent) -> None:
        """写入一个事件并立即 flush。"""
        with self._lock:
            f = self._open()
            f.write(event.model_dump_json())
            f.write("\n")
            f.flush()
            self._count += 1

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> "EventRecorder":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
