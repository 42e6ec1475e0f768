"""
Cooperative cancellation token shared by the poll loop and its batches.

The token is passed explicitly to every call that may suspend (fetch,
executor invocation, delete) instead of living in global state.
"""

import asyncio

from group_queue.errors import OperationCancelledError


class CancellationToken:
    """
    One-shot cancellation signal.

    Usage:
        token = CancellationToken()
        ...
        token.raise_if_cancellation_requested()
        await token.wait()  # completes once cancel() is called
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def is_cancellation_requested(self) -> bool:
        """True once cancel() has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Safe to call more than once."""
        self._event.set()

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""
        await self._event.wait()

    def raise_if_cancellation_requested(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError("The operation was cancelled.")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancellation_requested})"
