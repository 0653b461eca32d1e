"""
PoWERC20 hash-rate telemetry
A single thread drains the hash-count queue and reports once per interval
"""

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HashRateReport:
    hashes: int       # hashes counted during this interval
    rate: float       # hashes per second
    average: float    # mean rate over the recent history
    total: int        # hashes counted since start
    timestamp: float  # wall clock time of the report


def format_hashrate(rate):
    """Human readable hash rate, e.g. '12.34 K/s'"""
    for divisor, unit in ((1_000_000_000, 'G'), (1_000_000, 'M'), (1_000, 'K')):
        if rate >= divisor:
            return f"{rate / divisor:.2f} {unit}/s"
    return f"{rate:.2f} H/s"


class HashRateAggregator:
    """
    Sole owner of the hash counter.

    Workers only put counts on the intake queue. The aggregator thread adds
    them up and, every interval, emits a HashRateReport and resets the
    counter to zero. It never influences the outcome of a round.
    """

    def __init__(self, intake, interval=1.0, on_report=None, history=60, clock=time.monotonic):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.intake = intake
        self.interval = interval
        self.on_report = on_report
        self.clock = clock
        self.hashrate_history = deque(maxlen=history)
        self._pending = 0
        self._total = 0
        self._stop = threading.Event()
        self._thread = None

    @property
    def pending(self):
        return self._pending

    @property
    def total(self):
        return self._total

    def consume(self, count):
        self._pending += count
        self._total += count

    def tick(self):
        """Close the current interval and emit its report"""
        hashes = self._pending
        self._pending = 0
        rate = hashes / self.interval
        self.hashrate_history.append(rate)
        report = HashRateReport(
            hashes=hashes,
            rate=rate,
            average=float(np.mean(self.hashrate_history)),
            total=self._total,
            timestamp=time.time(),
        )
        if self.on_report is not None:
            try:
                self.on_report(report)
            except Exception:
                logger.exception("Hash-rate report callback failed")
        return report

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name='hash-telemetry', daemon=True)
        self._thread.start()

    def stop(self, timeout=2.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _run(self):
        next_tick = self.clock() + self.interval
        while not self._stop.is_set():
            # Short waits so stop() is noticed promptly
            wait = min(max(0.0, next_tick - self.clock()), 0.1)
            try:
                self.consume(self.intake.get(timeout=wait))
            except queue.Empty:
                pass
            if self.clock() >= next_tick:
                self.tick()
                next_tick += self.interval
