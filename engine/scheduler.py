"""
Schedulers - delayed callbacks used to expire timed boosts.

QtScheduler drives callbacks from a running Qt event loop.
ManualScheduler keeps its own clock and only fires when advanced,
which makes expiry deterministic in tests and headless simulations.
"""

import heapq
import itertools
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from PySide6.QtCore import QObject, Qt, QTimer

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """What the accumulator needs from a timer service."""

    def now(self) -> datetime:
        ...

    def after(self, seconds: float, callback: Callable[[], None]) -> int:
        ...

    def cancel(self, token: int) -> None:
        ...


class QtScheduler(QObject):
    """
    Deadline queue driven by one QTimer.

    Callbacks run on the thread that owns the scheduler, inside its event loop.
    The timer is armed for the earliest pending deadline and re-armed after
    every fire or cancel. Delays longer than QTimer can represent are covered
    in several hops.

    Usage:
        scheduler = QtScheduler()
        token = scheduler.after(30.0, on_expired)
        scheduler.cancel(token)
    """

    # QTimer intervals are signed 32-bit milliseconds
    MAX_INTERVAL_MS = 2**31 - 1

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._queue: list[tuple[datetime, int]] = []
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._tokens = itertools.count(1)

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setTimerType(Qt.TimerType.CoarseTimer)
        self._timer.timeout.connect(self._fire_due)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    @property
    def pending_count(self) -> int:
        """Number of callbacks that have not fired or been cancelled."""
        return len(self._callbacks)

    @property
    def armed_interval(self) -> Optional[int]:
        """Milliseconds the timer is currently armed for, or None when idle."""
        return self._timer.interval() if self._timer.isActive() else None

    def is_pending(self, token: int) -> bool:
        return token in self._callbacks

    def after(self, seconds: float, callback: Callable[[], None]) -> int:
        """Run callback once after the given delay. Returns a cancellation token."""
        token = next(self._tokens)
        deadline = self.now() + timedelta(seconds=max(0.0, seconds))
        self._callbacks[token] = callback
        heapq.heappush(self._queue, (deadline, token))
        self._rearm()
        return token

    def cancel(self, token: int) -> None:
        """Drop a pending callback. Unknown or already-fired tokens are ignored."""
        if self._callbacks.pop(token, None) is None:
            return
        if len(self._queue) > 2 * len(self._callbacks) + 16:
            self._queue = [entry for entry in self._queue if entry[1] in self._callbacks]
            heapq.heapify(self._queue)
        self._rearm()

    def cancel_all(self) -> None:
        self._callbacks.clear()
        self._queue.clear()
        self._timer.stop()

    def _rearm(self) -> None:
        while self._queue and self._queue[0][1] not in self._callbacks:
            heapq.heappop(self._queue)
        if not self._queue:
            self._timer.stop()
            return

        delay = (self._queue[0][0] - self.now()).total_seconds()
        interval_ms = min(max(0, math.ceil(delay * 1000)), self.MAX_INTERVAL_MS)
        self._timer.start(interval_ms)

    def _fire_due(self) -> None:
        now = self.now()
        while self._queue and self._queue[0][0] <= now:
            _, token = heapq.heappop(self._queue)
            callback = self._callbacks.pop(token, None)
            if callback is None:
                continue
            try:
                callback()
            except Exception:
                logger.exception("Scheduled callback %d failed", token)
        self._rearm()


class ManualScheduler:
    """
    Scheduler with a controllable clock.

    Time only moves when advance() or advance_to() is called; due callbacks
    then fire in deadline order, each seeing now() equal to its deadline.

    Usage:
        scheduler = ManualScheduler()
        scheduler.after(10, on_expired)
        scheduler.advance(10)   # on_expired runs here
    """

    DEFAULT_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or self.DEFAULT_EPOCH
        self._queue: list[tuple[datetime, int, Callable[[], None]]] = []
        self._cancelled: set[int] = set()
        self._tokens = itertools.count(1)

    def now(self) -> datetime:
        return self._now

    @property
    def pending_count(self) -> int:
        return sum(1 for _, token, _ in self._queue if token not in self._cancelled)

    def is_pending(self, token: int) -> bool:
        if token in self._cancelled:
            return False
        return any(t == token for _, t, _ in self._queue)

    def callback_for(self, token: int) -> Optional[Callable[[], None]]:
        """Look up the callback behind a token, even a cancelled one."""
        for _, t, callback in self._queue:
            if t == token:
                return callback
        return None

    def after(self, seconds: float, callback: Callable[[], None]) -> int:
        token = next(self._tokens)
        deadline = self._now + timedelta(seconds=max(0.0, seconds))
        heapq.heappush(self._queue, (deadline, token, callback))
        return token

    def cancel(self, token: int) -> None:
        """Skip a queued callback. Fired or unknown tokens are ignored."""
        if any(t == token for _, t, _ in self._queue):
            self._cancelled.add(token)

    def advance(self, seconds: float) -> int:
        """Move the clock forward and fire everything that became due."""
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        return self.advance_to(self._now + timedelta(seconds=seconds))

    def advance_to(self, when: datetime) -> int:
        """
        Move the clock to `when`, firing due callbacks in order.

        Returns:
            Number of callbacks that ran
        """
        fired = 0
        while self._queue and self._queue[0][0] <= when:
            deadline, token, callback = heapq.heappop(self._queue)
            if token in self._cancelled:
                self._cancelled.discard(token)
                continue
            self._now = max(self._now, deadline)
            callback()
            fired += 1
        self._now = max(self._now, when)
        return fired
