"""EventPipeline tests.

Test coverage:
- Fan-out to several receivers, in order
- Late subscribers only see later events
- Send after Terminated is rejected
- Events with no subscriber are counted as dropped
- Cross-thread delivery and tick-based async polling
"""

from __future__ import annotations

import threading

import pytest

from shell_watcher.errors import SendFailureError
from shell_watcher.runtime.events import (
    IterationCompleted,
    IterationResult,
    SetupCompleted,
    Terminated,
    TerminationReason,
)
from shell_watcher.runtime.pipeline import EventPipeline, aiter_events


def _iteration(n: int, output: str = "") -> IterationCompleted:
    return IterationCompleted(result=IterationResult(iteration=n, output=output))


def _terminated() -> Terminated:
    return Terminated(reason=TerminationReason.CANCELLED)


class TestFanOut:
    """Test delivery to receivers."""

    def test_single_receiver_in_order(self):
        pipeline = EventPipeline()
        receiver = pipeline.subscribe("display")
        for n in (1, 2, 3):
            pipeline.sender.send(_iteration(n))

        events = receiver.drain()
        assert [e.result.iteration for e in events] == [1, 2, 3]

    def test_every_receiver_gets_every_event(self):
        pipeline = EventPipeline()
        first = pipeline.subscribe("a")
        second = pipeline.subscribe("b")
        pipeline.sender.send(SetupCompleted(result=IterationResult(iteration=0)))
        pipeline.sender.send(_iteration(1))

        assert [e.kind for e in first.drain()] == ["setup_completed", "iteration_completed"]
        assert [e.kind for e in second.drain()] == ["setup_completed", "iteration_completed"]

    def test_late_subscriber_sees_only_later_events(self):
        pipeline = EventPipeline()
        early = pipeline.subscribe("early")
        pipeline.sender.send(_iteration(1))
        late = pipeline.subscribe("late")
        pipeline.sender.send(_iteration(2))

        assert [e.result.iteration for e in early.drain()] == [1, 2]
        assert [e.result.iteration for e in late.drain()] == [2]

    def test_unsubscribe(self):
        pipeline = EventPipeline()
        receiver = pipeline.subscribe()
        assert pipeline.unsubscribe(receiver) is True
        assert pipeline.unsubscribe(receiver) is False
        pipeline.sender.send(_iteration(1))
        assert receiver.drain() == []

    def test_try_recv_empty(self):
        pipeline = EventPipeline()
        receiver = pipeline.subscribe()
        assert receiver.try_recv() is None
        assert receiver.recv(timeout=0.01) is None


class TestTermination:
    """Test the Terminated event closing the pipeline."""

    def test_send_after_terminated_fails(self):
        pipeline = EventPipeline()
        pipeline.subscribe()
        pipeline.sender.send(_terminated())

        assert pipeline.closed
        assert pipeline.sender.closed
        with pytest.raises(SendFailureError):
            pipeline.sender.send(_iteration(1))

    def test_second_terminated_fails(self):
        pipeline = EventPipeline()
        pipeline.sender.send(_terminated())
        with pytest.raises(SendFailureError):
            pipeline.sender.send(_terminated())

    def test_receiver_finishes_after_terminated(self):
        pipeline = EventPipeline()
        receiver = pipeline.subscribe()
        pipeline.sender.send(_iteration(1))
        pipeline.sender.send(_terminated())

        events = receiver.drain()
        assert isinstance(events[-1], Terminated)
        assert receiver.finished
        assert receiver.try_recv() is None

    def test_subscribe_after_terminated_is_finished(self):
        """A late receiver neither blocks nor polls forever."""
        pipeline = EventPipeline()
        pipeline.sender.send(_terminated())

        receiver = pipeline.subscribe("late")

        assert receiver.finished
        assert receiver.recv(timeout=0.05) is None
        assert list(receiver) == []

    @pytest.mark.asyncio
    async def test_aiter_events_on_closed_pipeline(self):
        pipeline = EventPipeline()
        pipeline.sender.send(_terminated())
        receiver = pipeline.subscribe("late")

        events = [event async for event in aiter_events(receiver, tick=0.005)]

        assert events == []

    def test_dropped_without_subscribers(self):
        pipeline = EventPipeline()
        pipeline.sender.send(_iteration(1))
        pipeline.sender.send(_iteration(2))
        receiver = pipeline.subscribe()
        pipeline.sender.send(_iteration(3))

        assert pipeline.sent == 3
        assert pipeline.dropped == 2
        assert [e.result.iteration for e in receiver.drain()] == [3]


class TestCrossThread:
    """Test delivery from a producer thread."""

    def test_blocking_iteration_until_terminated(self):
        pipeline = EventPipeline()
        receiver = pipeline.subscribe()

        def produce():
            for n in range(1, 101):
                pipeline.sender.send(_iteration(n))
            pipeline.sender.send(_terminated())

        thread = threading.Thread(target=produce)
        thread.start()
        events = list(receiver)
        thread.join()

        assert len(events) == 101
        assert [e.result.iteration for e in events[:-1]] == list(range(1, 101))
        assert isinstance(events[-1], Terminated)

    @pytest.mark.asyncio
    async def test_aiter_events_stops_after_terminated(self):
        pipeline = EventPipeline()
        receiver = pipeline.subscribe()

        def produce():
            pipeline.sender.send(_iteration(1, "a"))
            pipeline.sender.send(_iteration(2, "b"))
            pipeline.sender.send(_terminated())

        timer = threading.Timer(0.05, produce)
        timer.start()
        events = [event async for event in aiter_events(receiver, tick=0.005)]
        timer.join()

        assert [e.kind for e in events] == [
            "iteration_completed",
            "iteration_completed",
            "terminated",
        ]
