# Shared test helpers: a deterministic clock for overlay, win and grace timers
import heapq
import itertools

import pytest


class _ManualTimer:
    def __init__(self, due, callback, args):
        self.due = due
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler driven by ``advance()``; time starts at 0."""

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay, callback, *args):
        timer = _ManualTimer(self.now + delay, callback, args)
        heapq.heappush(self._queue, (timer.due, next(self._seq), timer))
        return timer

    def now_ms(self):
        return self.now * 1000.0

    def pending(self):
        return sum(1 for _, _, t in self._queue if not t.cancelled)

    def advance(self, seconds):
        """Move time forward, firing due callbacks in order."""
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            self.now = max(self.now, due)
            if not timer.cancelled:
                timer.callback(*timer.args)
        self.now = target


@pytest.fixture
def scheduler():
    return ManualScheduler()
