# candymaze/timers.py - delayed callbacks for overlays, win confirmation and grace periods
import asyncio
import time


def wall_clock_ms():
    return time.time() * 1000.0


class AsyncioScheduler:
    """Schedules callbacks on the running event loop."""

    def call_later(self, delay, callback, *args):
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, callback, *args)

    def now_ms(self):
        return wall_clock_ms()

