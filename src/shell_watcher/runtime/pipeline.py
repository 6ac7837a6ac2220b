"""Event pipeline between the runner thread and its consumers.

One producer (the runner) fans events out to any number of receivers. Each
receiver owns an unbounded queue, so ``send`` never blocks and never waits
for a slow consumer. Receivers only see events emitted after they subscribed.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import AsyncIterator, Iterator

import anyio

from ..errors import SendFailureError
from .events import RunnerEvent, Terminated

__all__ = [
    "DEFAULT_TICK",
    "EventPipeline",
    "EventReceiver",
    "EventSender",
    "aiter_events",
]

logger = logging.getLogger(__name__)

# Consumer poll period (seconds)
DEFAULT_TICK = 0.015


class EventReceiver:
    """Consumer end of the pipeline.

    All reads are non-blocking unless a timeout is given. Once Terminated has
    been returned, the receiver is finished and yields nothing else.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._queue: queue.SimpleQueue[RunnerEvent] = queue.SimpleQueue()
        self._finished = False

    def _put(self, event: RunnerEvent) -> None:
        self._queue.put(event)

    @property
    def finished(self) -> bool:
        """Whether Terminated has been observed."""
        return self._finished

    def _accept(self, event: RunnerEvent) -> RunnerEvent:
        if isinstance(event, Terminated):
            self._finished = True
        return event

    def try_recv(self) -> RunnerEvent | None:
        """Return the next event, or None if nothing is queued."""
        if self._finished:
            return None
        try:
            return self._accept(self._queue.get_nowait())
        except queue.Empty:
            return None

    def recv(self, timeout: float | None = None) -> RunnerEvent | None:
        """Wait for the next event.

        Args:
            timeout: Seconds to wait (None = forever)

        Returns:
            The event, or None on timeout / after Terminated
        """
        if self._finished:
            return None
        try:
            return self._accept(self._queue.get(timeout=timeout))
        except queue.Empty:
            return None

    def drain(self) -> list[RunnerEvent]:
        """Return every event queued right now, stopping after Terminated."""
        events: list[RunnerEvent] = []
        while True:
            event = self.try_recv()
            if event is None:
                return events
            events.append(event)

    def __iter__(self) -> Iterator[RunnerEvent]:
        """Block on events until Terminated (inclusive)."""
        while not self._finished:
            event = self.recv()
            if event is not None:
                yield event


class EventSender:
    """Producer end of the pipeline. Owned by the runner."""

    def __init__(self, pipeline: EventPipeline) -> None:
        self._pipeline = pipeline

    @property
    def closed(self) -> bool:
        return self._pipeline.closed

    def send(self, event: RunnerEvent) -> None:
        """Deliver an event to every current receiver.

        Raises:
            SendFailureError: If Terminated was already sent
        """
        self._pipeline._publish(event)


class EventPipeline:
    """Fan-out channel for RunnerEvent values.

    Example:
        pipeline = EventPipeline()
        receiver = pipeline.subscribe()
        runner = CommandRunner(config, pipeline.sender, token)
        runner.start()
        for event in receiver:
            render(event)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._receivers: list[EventReceiver] = []
        self._closed = False
        self._sent = 0
        self._dropped = 0
        self.sender = EventSender(self)

    def subscribe(self, name: str = "") -> EventReceiver:
        """Create a receiver for events emitted from now on.

        A receiver created after Terminated is already finished.
        """
        receiver = EventReceiver(name)
        with self._lock:
            if self._closed:
                # No further events will be sent
                logger.debug(f"Subscriber {name!r} joined a closed pipeline")
                receiver._finished = True
            self._receivers.append(receiver)
        return receiver

    def unsubscribe(self, receiver: EventReceiver) -> bool:
        with self._lock:
            if receiver in self._receivers:
                self._receivers.remove(receiver)
                return True
            return False

    @property
    def closed(self) -> bool:
        """Whether Terminated has been sent."""
        return self._closed

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def dropped(self) -> int:
        """Events sent while nobody was subscribed."""
        return self._dropped

    def _publish(self, event: RunnerEvent) -> None:
        with self._lock:
            if self._closed:
                raise SendFailureError(
                    f"Pipeline already terminated, cannot send {event.kind}"
                )
            if isinstance(event, Terminated):
                self._closed = True
            self._sent += 1
            receivers = list(self._receivers)
            if not receivers:
                self._dropped += 1

        for receiver in receivers:
            receiver._put(event)


async def aiter_events(
    receiver: EventReceiver,
    tick: float = DEFAULT_TICK,
) -> AsyncIterator[RunnerEvent]:
    """Poll a receiver on a fixed tick from async code.

    Drains everything queued on each tick, then sleeps. The loop never blocks
    the event loop and stops after Terminated.

    Args:
        receiver: Receiver to poll
        tick: Poll period in seconds
    """
    while not receiver.finished:
        for event in receiver.drain():
            yield event
        if receiver.finished:
            return
        await anyio.sleep(tick)
