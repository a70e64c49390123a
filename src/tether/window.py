"""
Shared state of the sending side.

SendWindow is the bounded buffer of unacknowledged frames. It is touched by
the thread calling send() (appends) and by the acknowledgment listener
(drains), so every operation takes the window's condition. Callers that need
several steps to be atomic, such as assigning a sequence number and
appending, hold ``window.guard`` around them; the condition wraps an RLock so
the individual operations can be nested inside.

RetransmitTimer is the single cancellable timer of the go-back-N sender.
"""

import threading
import logging
from collections import deque
from typing import Callable, Deque, List, Optional

from .protocol import OutboundRecord

logger = logging.getLogger(__name__)


class SendWindow:
    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"window capacity must be positive: {capacity}")
        self.capacity = capacity
        self.guard = threading.Condition(threading.RLock())
        self._records: Deque[OutboundRecord] = deque()

    # ------------------------------------------------------------------

    def size(self) -> int:
        with self.guard:
            return len(self._records)

    def is_empty(self) -> bool:
        with self.guard:
            return not self._records

    def is_full(self) -> bool:
        with self.guard:
            return len(self._records) >= self.capacity

    def peek_oldest(self) -> Optional[OutboundRecord]:
        with self.guard:
            return self._records[0] if self._records else None

    def snapshot(self) -> List[OutboundRecord]:
        """Copy of the outstanding records, oldest first."""
        with self.guard:
            return list(self._records)

    def sequence_numbers(self) -> List[int]:
        with self.guard:
            return [r.sequence_number for r in self._records]

    # ------------------------------------------------------------------

    def try_append(self, record: OutboundRecord) -> bool:
        """
        Append without waiting. Returns False when the window is full.

        The new record must continue the window's sequence numbers.
        """
        with self.guard:
            if len(self._records) >= self.capacity:
                return False
            if self._records and record.sequence_number != self._records[-1].sequence_number + 1:
                raise ValueError(
                    f"sequence {record.sequence_number} does not follow "
                    f"{self._records[-1].sequence_number}"
                )
            self._records.append(record)
            return True

    def drain_prefix(self, count: int) -> List[OutboundRecord]:
        """Remove and return the ``count`` oldest records, waking any waiters."""
        with self.guard:
            count = min(count, len(self._records))
            drained = [self._records.popleft() for _ in range(count)]
            if drained:
                self.guard.notify_all()
            return drained

    # ------------------------------------------------------------------

    def wait_until(self, predicate: Callable[[], bool], timeout: Optional[float] = None) -> bool:
        """
        Block on the window condition until ``predicate`` holds.

        The predicate is evaluated with the guard held, both before the first
        wait and after every wake-up.
        """
        with self.guard:
            return self.guard.wait_for(predicate, timeout=timeout)

    def notify_all(self) -> None:
        with self.guard:
            self.guard.notify_all()


class RetransmitTimer:
    """
    One-shot timer that can be armed, re-armed and cancelled.

    Each arming gets a new generation number. The callback receives the
    generation it was armed with, and ``is_current(generation)`` tells it
    whether it has since been cancelled or superseded: threading.Timer.cancel()
    cannot stop a callback that has already started and is waiting for a lock.
    All methods are expected to be called with the owner's lock held.
    """

    def __init__(self, interval: float, callback: Callable[[int], None], name: str = "retransmit-timer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def is_current(self, generation: int) -> bool:
        return self._timer is not None and generation == self._generation

    def arm(self) -> None:
        """Start the timer unless it is already running."""
        if self._timer is None:
            self._start()

    def rearm(self) -> None:
        """Restart the full interval from now."""
        self.cancel()
        self._start()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self._generation += 1

    def _start(self) -> None:
        self._generation += 1
        self._timer = threading.Timer(self.interval, self.callback, args=(self._generation,))
        self._timer.name = self.name
        self._timer.daemon = True
        self._timer.start()
