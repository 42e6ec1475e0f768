"""
Randomized exponential backoff for queue polling.

Computes the delay before the next poll from whether the previous cycles
found any work. Idle cycles grow the delay geometrically with jitter until
it saturates at the maximum; finding work snaps it back to the minimum.
"""

import random


class QueuePollingIntervals:
    """Default polling bounds, in seconds."""

    MINIMUM = 2.0
    DEFAULT_MAXIMUM = 60.0


class RandomizedExponentialBackoff:
    """
    Exponential backoff with a randomized delta.

    Each idle cycle computes ``minimum + uniform(0.8, 1.2) * 2^(n-1) * delta``
    where ``n`` is the number of consecutive idle cycles. Once the result
    reaches ``maximum`` it stays there until work is found again.

    Usage:
        backoff = RandomizedExponentialBackoff(minimum=2.0, maximum=60.0)
        while True:
            found = await poll()
            await asyncio.sleep(backoff.next_delay(found))
    """

    RANDOMIZATION_FACTOR = 0.2

    def __init__(
        self,
        minimum: float,
        maximum: float,
        delta_backoff: float | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the strategy.

        Args:
            minimum: Shortest delay in seconds (returned after work is found)
            maximum: Longest delay in seconds
            delta_backoff: Base growth step in seconds (defaults to minimum)
            rng: Random source; a non-deterministically seeded one is
                created on first use when omitted

        Raises:
            ValueError: If either bound is negative or minimum > maximum
        """
        if minimum < 0:
            raise ValueError("minimum must not be negative")
        if maximum < 0:
            raise ValueError("maximum must not be negative")
        if minimum > maximum:
            raise ValueError("minimum must not be greater than maximum")

        self.minimum = minimum
        self.maximum = maximum
        self.delta_backoff = minimum if delta_backoff is None else delta_backoff
        self._rng = rng
        self._current_interval = 0.0
        self._exponent = 0

    @property
    def current_interval(self) -> float:
        """Delay returned by the last call."""
        return self._current_interval

    @property
    def exponent(self) -> int:
        """Number of growth steps taken since the last reset."""
        return self._exponent

    @property
    def is_saturated(self) -> bool:
        """True if the delay has reached the maximum."""
        return self._current_interval == self.maximum

    def next_delay(self, found_work_since_last_call: bool) -> float:
        """
        Compute the next polling delay.

        Args:
            found_work_since_last_call: Whether any poll since the previous
                call returned messages

        Returns:
            Delay in seconds
        """
        if found_work_since_last_call:
            self._current_interval = self.minimum
            self._exponent = 1
        elif self._current_interval != self.maximum:
            candidate = self.minimum
            if self._exponent > 0:
                if self._rng is None:
                    self._rng = random.Random()
                factor = self._rng.uniform(
                    1.0 - self.RANDOMIZATION_FACTOR,
                    1.0 + self.RANDOMIZATION_FACTOR,
                )
                candidate += factor * 2 ** (self._exponent - 1) * self.delta_backoff

            if candidate < self.maximum:
                self._current_interval = candidate
                self._exponent += 1
            else:
                self._current_interval = self.maximum

        return self._current_interval

    def stats(self) -> dict:
        """Get backoff statistics."""
        return {
            "current_interval": self._current_interval,
            "exponent": self._exponent,
            "saturated": self.is_saturated,
        }
