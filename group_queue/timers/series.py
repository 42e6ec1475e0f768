"""
Recurring task scheduler driven by command-supplied waits.

A TaskSeriesTimer runs a single command over and over on one asyncio task.
Each run returns the awaitable to complete before the next run, so the
command decides its own pacing (a backoff sleep, a drain of in-flight work,
or nothing at all). Cancellation is cooperative: the loop checks the token
between runs and races it against every wait.
"""

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from group_queue.errors import (
    InvalidOperationError,
    ObjectDisposedError,
    OperationCancelledError,
)
from group_queue.timers.cancellation import CancellationToken

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TaskSeriesCommandResult:
    """
    Result of one command run.

    Attributes:
        wait: Awaitable to complete before the command runs again.
            None means run again immediately.
    """

    wait: Awaitable[Any] | None = None


class TaskSeriesCommand(Protocol):
    """A unit of work a TaskSeriesTimer runs repeatedly."""

    async def execute(self, cancel_token: CancellationToken) -> TaskSeriesCommandResult:
        ...


class TaskSeriesTimer:
    """
    Runs a TaskSeriesCommand repeatedly until cancelled.

    Lifecycle is one-way: not started -> running -> stopping -> stopped.
    start() and stop() raise InvalidOperationError when called out of
    order; every method except close() raises ObjectDisposedError after
    close().

    Usage:
        timer = TaskSeriesTimer(command)
        timer.start()
        ...
        await timer.stop(timeout=30.0)
    """

    def __init__(
        self,
        command: TaskSeriesCommand,
        initial_wait: Awaitable[Any] | None = None,
        name: str | None = None,
    ):
        """
        Initialize the timer.

        Args:
            command: Command to run on every iteration
            initial_wait: Awaitable completed before the first run
            name: Name used for the loop task and in logs
        """
        if command is None:
            raise ValueError("command is required")

        self._command = command
        self._initial_wait = initial_wait
        self._name = name or type(command).__name__
        self._cancel_token = CancellationToken()
        self._run_task: asyncio.Task[None] | None = None
        self._started = False
        self._stopped = False
        self._disposed = False

    @property
    def cancel_token(self) -> CancellationToken:
        """Token observed by the loop and passed to the command."""
        return self._cancel_token

    @property
    def is_running(self) -> bool:
        """True while the run loop task is alive."""
        return self._run_task is not None and not self._run_task.done()

    def start(self) -> None:
        """
        Start the run loop on the current event loop.

        Raises:
            ObjectDisposedError: If the timer was closed
            InvalidOperationError: If the timer was already started
        """
        self._throw_if_disposed()
        if self._started:
            raise InvalidOperationError(
                "The timer has already been started; it cannot be restarted."
            )

        self._run_task = asyncio.create_task(
            self._run(), name=f"task-series:{self._name}"
        )
        self._run_task.add_done_callback(self._on_run_done)
        self._started = True
        logger.debug("Task series timer started", timer=self._name)

    async def stop(self, timeout: float | None = None) -> None:
        """
        Cancel the loop and wait for it to exit.

        Args:
            timeout: Maximum seconds to wait for the loop; None waits forever

        Raises:
            ObjectDisposedError: If the timer was closed
            InvalidOperationError: If not started or already stopped
            Exception: Whatever fatal error terminated the run loop
        """
        self._throw_if_disposed()
        if not self._started:
            raise InvalidOperationError("The timer has not yet been started.")
        if self._stopped:
            raise InvalidOperationError("The timer has already been stopped.")

        self._cancel_token.cancel()
        assert self._run_task is not None
        try:
            await asyncio.wait({self._run_task}, timeout=timeout)
        finally:
            self._stopped = True

        if not self._run_task.done():
            logger.warning(
                "Task series timer did not stop within timeout",
                timer=self._name,
                timeout=timeout,
            )
            return

        if not self._run_task.cancelled():
            error = self._run_task.exception()
            if error is not None:
                raise error

        logger.debug("Task series timer stopped", timer=self._name)

    def cancel(self) -> None:
        """Request cooperative cancellation without waiting."""
        self._throw_if_disposed()
        self._cancel_token.cancel()

    async def join(self) -> None:
        """Wait for the run loop to finish, re-raising a fatal error."""
        if self._run_task is None:
            raise InvalidOperationError("The timer has not yet been started.")
        await self._run_task

    def close(self) -> None:
        """Release the timer. Idempotent; does not wait for the loop."""
        if self._disposed:
            return
        self._cancel_token.cancel()
        self._disposed = True

    async def _run(self) -> None:
        await asyncio.sleep(0)

        token = self._cancel_token
        wait = self._as_future(self._initial_wait)
        try:
            while not token.is_cancellation_requested:
                await self._wait_or_cancel(wait)
                if token.is_cancellation_requested:
                    break

                try:
                    result = await self._command.execute(token)
                except OperationCancelledError:
                    logger.debug("Command cancelled", timer=self._name)
                    continue

                wait = self._as_future(result.wait)
        finally:
            if wait is not None and not wait.done():
                wait.cancel()

    async def _wait_or_cancel(self, wait: asyncio.Future[Any] | None) -> None:
        """Suspend until ``wait`` completes or cancellation is requested."""
        if wait is None:
            await asyncio.sleep(0)
            return

        cancelled = asyncio.ensure_future(self._cancel_token.wait())
        try:
            await asyncio.wait({wait, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if wait.done() and not wait.cancelled() and wait.exception() is not None:
            logger.error(
                "Timer wait failed",
                timer=self._name,
                error=str(wait.exception()),
            )

    @staticmethod
    def _as_future(wait: Awaitable[Any] | None) -> asyncio.Future[Any] | None:
        if wait is None:
            return None
        return asyncio.ensure_future(wait)

    def _on_run_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Task series timer terminated",
                timer=self._name,
                error=str(error),
                error_type=type(error).__name__,
            )

    def _throw_if_disposed(self) -> None:
        if self._disposed:
            raise ObjectDisposedError(f"Timer {self._name!r} has been closed.")
