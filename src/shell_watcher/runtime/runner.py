"""Command runner: drives a shell session in a loop and emits events.

State machine:
    idle -> setting_up -> looping -> terminating -> terminated

Cadence is "execution time + interval": the sleep starts after a command
returns, there is no fixed-period clock and no catch-up. Cancellation is
observed between iterations and during the sleep, never in the middle of an
exec. Any exec failure is fatal for the run; the session is always killed and
exactly one Terminated event is always sent, even on error paths.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum

from ..config import WatcherConfig
from ..errors import WatcherError
from .cancellation import CancellationToken
from .events import (
    IterationCompleted,
    IterationResult,
    SetupCompleted,
    Terminated,
    TerminationReason,
)
from .pipeline import EventSender
from .shell_session import ShellSession

__all__ = ["CommandRunner", "RunnerState"]

logger = logging.getLogger(__name__)


class RunnerState(str, Enum):
    """Runner lifecycle state."""

    IDLE = "idle"
    SETTING_UP = "setting_up"
    LOOPING = "looping"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class CommandRunner:
    """Runs setup once, then the main command repeatedly.

    Example:
        pipeline = EventPipeline()
        receiver = pipeline.subscribe()
        token = CancellationToken()
        runner = CommandRunner(config, pipeline.sender, token)
        runner.start()  # own thread
        ...
        token.cancel()
        runner.join()

    Attributes:
        config: Immutable run configuration
        sender: Producer end of the event pipeline
        cancel_token: Shared cancellation flag
    """

    def __init__(
        self,
        config: WatcherConfig,
        sender: EventSender,
        cancel_token: CancellationToken,
        session: ShellSession | None = None,
    ) -> None:
        self.config = config
        self.sender = sender
        self.cancel_token = cancel_token

        self._session = session
        self._state = RunnerState.IDLE
        self._iterations = 0
        self._error: BaseException | None = None
        self._thread: threading.Thread | None = None
        self._started = False
        self._start_lock = threading.Lock()

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def iterations(self) -> int:
        """Completed main loop iterations."""
        return self._iterations

    @property
    def session(self) -> ShellSession | None:
        return self._session

    @property
    def error(self) -> BaseException | None:
        """Fatal error of the run, if any."""
        return self._error

    def _transition(self, state: RunnerState) -> None:
        logger.debug(f"Runner state: {self._state.value} -> {state.value}")
        self._state = state

    def _claim(self) -> None:
        with self._start_lock:
            if self._started:
                raise RuntimeError("CommandRunner can only be run once")
            self._started = True

    def start(self) -> threading.Thread:
        """Run on a background thread.

        Returns:
            The started thread
        """
        self._claim()
        self._thread = threading.Thread(
            target=self._thread_main, daemon=True, name="shell-watcher-runner"
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the background thread.

        Returns:
            True if the run has finished
        """
        if self._thread is None:
            return self._state == RunnerState.TERMINATED
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _thread_main(self) -> None:
        try:
            self._run()
        except BaseException as e:
            # Already logged and reported through Terminated; kept for the owner
            self._error = e

    def run(self) -> TerminationReason:
        """Run on the calling thread until cancelled, elapsed or failed.

        Returns:
            The termination reason

        Raises:
            WatcherError: The fatal error, after the session is killed and
                Terminated has been sent
        """
        self._claim()
        return self._run()

    def _run(self) -> TerminationReason:
        reason = TerminationReason.ERROR
        error: BaseException | None = None

        try:
            session = self._ensure_session()
            self._run_setup(session)
            reason = self._run_loop(session)
        except BaseException as e:
            error = e
            self._error = e
            if isinstance(e, WatcherError):
                logger.error(f"Watcher run failed: {e}")
            else:
                logger.exception(f"Watcher run crashed: {type(e).__name__}: {e}")
        finally:
            self._terminate(reason if error is None else TerminationReason.ERROR, error)

        if error is not None:
            raise error
        return reason

    def _ensure_session(self) -> ShellSession:
        if self._session is None:
            self._session = ShellSession.start(
                self.config.shell,
                init_commands=self.config.init_commands,
                init_timeout=self.config.command_timeout,
            )
        return self._session

    def _exec(self, session: ShellSession, command: str) -> str:
        logger.debug(f"STDIN  > {command}")
        output = session.exec(command, self.config.command_timeout)
        logger.debug(f"STDOUT = {len(output)} chars")
        return output

    def _run_setup(self, session: ShellSession) -> None:
        setup_command = self.config.setup_command
        if not setup_command:
            return

        self._transition(RunnerState.SETTING_UP)
        logger.debug(f"Executing setup commands: {setup_command}")
        output = self._exec(session, setup_command)
        self.sender.send(
            SetupCompleted(result=IterationResult(iteration=0, output=output))
        )

    def _run_loop(self, session: ShellSession) -> TerminationReason:
        self._transition(RunnerState.LOOPING)
        checkpoint = time.monotonic()
        watch_duration = self.config.watch_duration
        iteration = 0

        while True:
            iteration += 1
            output = self._exec(session, self.config.main_command)
            self.sender.send(
                IterationCompleted(
                    result=IterationResult(iteration=iteration, output=output)
                )
            )
            self._iterations = iteration

            if self.cancel_token.is_cancelled:
                logger.debug(f"Cancellation observed after iteration {iteration}")
                return TerminationReason.CANCELLED

            # The next pass would start after the deadline
            elapsed = time.monotonic() - checkpoint
            if watch_duration is not None and elapsed + self.config.interval > watch_duration:
                logger.debug(f"Watch duration {watch_duration}s elapsed")
                return TerminationReason.DURATION_ELAPSED

            if self.cancel_token.wait(self.config.interval):
                logger.debug(f"Cancellation observed during sleep after iteration {iteration}")
                return TerminationReason.CANCELLED

    def _terminate(self, reason: TerminationReason, error: BaseException | None) -> None:
        self._transition(RunnerState.TERMINATING)
        try:
            if self._session is not None:
                self._session.terminate()
        finally:
            try:
                self.sender.send(
                    Terminated(
                        reason=reason,
                        error=str(error) if error is not None else None,
                    )
                )
            finally:
                self._transition(RunnerState.TERMINATED)
                logger.info(
                    f"Watcher terminated (reason={reason.value}, "
                    f"iterations={self._iterations})"
                )
