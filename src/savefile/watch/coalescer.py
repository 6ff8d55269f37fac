"""Debounce coalescing of watch events.

A single deadline is kept. Every event pushes it to ``now + debounce``;
once the clock passes the deadline with no newer event, one
``SettledTrigger`` is emitted and the coalescer goes idle again. How many
events arrived only affects ``event_count``, never the timing.

``DebounceCoalescer`` is usable as a plain state machine (``push`` /
``poll`` with an injectable clock) or through the async driver
``settle()``, which reads a watcher queue.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable

from savefile.watch.events import SettledTrigger, WatchEvent

logger = logging.getLogger(__name__)


class DebounceCoalescer:
    """Turn bursts of events into one trigger per quiet period.

    Args:
        debounce: Quiet period in seconds.
        clock: Monotonic clock, overridable for tests.
    """

    def __init__(self, debounce: float, clock: Callable[[], float] = time.monotonic) -> None:
        if debounce < 0:
            raise ValueError(f"debounce must be >= 0, got {debounce}")
        self.debounce = debounce
        self._clock = clock
        self._deadline: float | None = None
        self._count = 0

    @property
    def pending(self) -> bool:
        return self._deadline is not None

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def push(self, event: WatchEvent | None = None) -> None:
        """Record an event and re-arm the deadline."""
        self._deadline = self._clock() + self.debounce
        self._count += 1

    def timeout(self) -> float | None:
        """Seconds until the deadline, or ``None`` when idle."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def poll(self) -> SettledTrigger | None:
        """Return a trigger if the deadline has passed, else ``None``."""
        if self._deadline is None:
            return None
        now = self._clock()
        if now < self._deadline:
            return None
        trigger = SettledTrigger(fired_at=now, event_count=self._count)
        self.cancel()
        return trigger

    def cancel(self) -> None:
        """Drop any pending deadline."""
        self._deadline = None
        self._count = 0

    async def settle(self, queue: asyncio.Queue) -> AsyncIterator[SettledTrigger]:
        """Yield a trigger each time the queue has been quiet for ``debounce``.

        Reads ``WatchEvent``s from ``queue`` until it yields ``None``. A
        deadline still pending at that point is dropped. While the caller
        is busy with a yielded trigger, new events simply wait in the
        queue and open the next cycle once iteration resumes.
        """
        while True:
            trigger = self.poll()
            if trigger is not None:
                yield trigger
                continue

            try:
                item = await asyncio.wait_for(queue.get(), self.timeout())
            except TimeoutError:
                continue

            if item is None:
                if self.pending:
                    logger.debug(f"Stream ended; dropping pending trigger ({self._count} events)")
                self.cancel()
                return
            self.push(item)
