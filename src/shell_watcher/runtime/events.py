"""Runner event models.

Events flow from the runner thread to consumers through the event pipeline.
Design points:
1. Tagged union - every event carries a literal ``kind`` discriminator
2. Immutable - events are frozen once emitted, consumers may share them
3. Serializable - ``model_dump_json()`` is the recorder's line format
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

__all__ = [
    "IterationResult",
    "TerminationReason",
    "SetupCompleted",
    "IterationCompleted",
    "Terminated",
    "RunnerEvent",
    "parse_event",
]


class TerminationReason(str, Enum):
    """Why a run ended."""

    CANCELLED = "cancelled"
    DURATION_ELAPSED = "duration_elapsed"
    ERROR = "error"


class IterationResult(BaseModel):
    """Output captured by one exec call.

    Attributes:
        iteration: 0 for the setup phase, 1.. for main loop passes
        output: Combined stdout/stderr up to the sentinel
        captured_at: Unix timestamp (seconds) when the capture finished
    """

    model_config = ConfigDict(frozen=True)

    iteration: int = Field(ge=0)
    output: str = ""
    captured_at: float = Field(default_factory=time.time)


class _RunnerEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)


class SetupCompleted(_RunnerEventBase):
    """The setup command finished (always iteration 0)."""

    kind: Literal["setup_completed"] = "setup_completed"
    result: IterationResult


class IterationCompleted(_RunnerEventBase):
    """A main loop pass finished."""

    kind: Literal["iteration_completed"] = "iteration_completed"
    result: IterationResult


class Terminated(_RunnerEventBase):
    """The run is over. Emitted exactly once, always last.

    Attributes:
        reason: Why the run ended
        error: Message of the fatal error when reason is ERROR
    """

    kind: Literal["terminated"] = "terminated"
    reason: TerminationReason
    error: str | None = None


RunnerEvent = Annotated[
    Union[SetupCompleted, IterationCompleted, Terminated],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[RunnerEvent] = TypeAdapter(RunnerEvent)


def parse_event(data: str | bytes | dict) -> RunnerEvent:
    """Rebuild an event from a JSON line or a dict (e.g. a recorder file)."""
    if isinstance(data, dict):
        return _event_adapter.validate_python(data)
    return _event_adapter.validate_json(data)
