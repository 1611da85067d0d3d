"""Summary: Cancellable one-shot timers for connection housekeeping.

Importance: Drives listen refresh and reconnect delays without stale callbacks.
Alternatives: Chain threading.Timer objects ad hoc inside the connection.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class ScheduledTimer:
    """Summary: A single re-schedulable timer with generation-checked firing.

    Importance: Guarantees a cancelled or replaced timer never runs its callback.
    Alternatives: Rely on threading.Timer.cancel, which races with a firing timer.
    """

    def __init__(self, name: str) -> None:
        """Summary: Initialize an idle timer.

        Importance: Names the timer so log lines identify the owning account.
        Alternatives: Create a new timer object for every schedule call.
        """

        self._name = name
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        """Summary: Arm the timer, replacing any pending schedule.

        Importance: Keeps at most one outstanding callback per timer.
        Alternatives: Allow overlapping schedules and deduplicate in callbacks.
        """

        with self._lock:
            self._cancel_locked()
            generation = self._generation
            timer = threading.Timer(delay, self._fire, args=(generation, callback))
            timer.daemon = True
            timer.name = self._name
            self._timer = timer
            timer.start()
        logger.debug("Timer %s scheduled in %.2fs", self._name, delay)

    def cancel(self) -> None:
        """Summary: Cancel the pending schedule, if any.

        Importance: A callback already waiting on the lock is discarded too.
        Alternatives: Flag cancellation inside the callback owner.
        """

        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int, callback: Callable[[], None]) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            callback()
