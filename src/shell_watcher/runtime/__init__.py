"""Runtime module for the persistent shell session and its event pipeline.

This module provides sentinel-framed command execution in one long-lived
shell, the runner loop that drives it, and the thread-safe channel that
carries results to consumers.
"""

from __future__ import annotations

from .cancellation import CancellationToken
from .events import (
    IterationCompleted,
    IterationResult,
    RunnerEvent,
    SetupCompleted,
    Terminated,
    TerminationReason,
)
from .pipeline import EventPipeline, EventReceiver, EventSender, aiter_events
from .runner import CommandRunner, RunnerState
from .sentinel import generate_sentinel
from .shell_session import ShellSession

__all__ = [
    "CancellationToken",
    "CommandRunner",
    "EventPipeline",
    "EventReceiver",
    "EventSender",
    "IterationCompleted",
    "IterationResult",
    "RunnerEvent",
    "RunnerState",
    "SetupCompleted",
    "ShellSession",
    "Terminated",
    "TerminationReason",
    "aiter_events",
    "generate_sentinel",
]
