"""Wall-clock aligned tickers for the flush, aggregation and retention schedules."""

import threading
from datetime import datetime, timedelta
from typing import Callable

import structlog

from aggregation.intervals import floor_to_interval, next_boundary_delay, utc_now

log = structlog.get_logger(component="scheduler")


class AlignedTicker:
    """
    Daemon thread that fires ``handler(boundary)`` shortly after every aligned
    boundary of ``width``, e.g. at hh:10:15 for a 10-minute width with a 15 s
    offset. Boundaries come from the interval clock rather than process start,
    so restarted processes cut intervals at the same instants.

    The handler runs on the ticker thread and is expected to catch its own
    errors; anything that escapes is logged and the ticker keeps going.
    """

    def __init__(
        self,
        name: str,
        width: timedelta,
        handler: Callable[[datetime], None],
        offset: timedelta = timedelta(0),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.name = name
        self.width = width
        self.offset = offset
        self._handler = handler
        self._clock = clock
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=f"ticker-{name}", daemon=True)

    def seconds_until_next(self) -> float:
        now = self._clock()
        delay = next_boundary_delay(now - self.offset, self.width)
        return delay.total_seconds()

    def _loop(self):
        while not self._stop.wait(self.seconds_until_next()):
            boundary = floor_to_interval(self._clock() - self.offset, self.width)
            try:
                self._handler(boundary)
            except Exception as e:
                log.error("tick_failed", ticker=self.name, boundary=boundary.isoformat(), error=str(e))

    def start(self):
        self._thread.start()
        log.info("ticker_started", ticker=self.name, width_sec=self.width.total_seconds())

    def stop(self, timeout: float | None = 5.0):
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout)
        log.info("ticker_stopped", ticker=self.name)
